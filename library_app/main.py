from typing import Optional

from fastapi import FastAPI

from .book_router import book_router
from .borrow_router import borrow_router
from .borrower_router import borrower_router
from .config import Settings, get_settings
from .error_handlers import register_error_handlers
from .ledger import Ledger
from .logging_config import setup_logging


def create_app(ledger: Optional[Ledger] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    if ledger is None:
        ledger = Ledger.from_url(settings.database_url, default_page_size=settings.default_page_size)

    app = FastAPI(title="Library lending API")
    app.state.ledger = ledger

    @app.get("/")
    def welcome():
        return {"message": "Welcome to the library REST API!"}

    app.include_router(book_router)
    app.include_router(borrow_router)
    app.include_router(borrower_router)
    register_error_handlers(app)
    return app


# uvicorn library_app.main:create_app --factory
if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    uvicorn.run(create_app(settings=settings), host=settings.api_host, port=settings.api_port)
