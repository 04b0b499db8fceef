import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .errors import LedgerError, NotFound, InvalidArgument, Conflict, DuplicateKey

logger = logging.getLogger(__name__)

HTTP_STATUS = {
    NotFound: status.HTTP_404_NOT_FOUND,
    InvalidArgument: status.HTTP_400_BAD_REQUEST,
    Conflict: status.HTTP_409_CONFLICT,
    DuplicateKey: status.HTTP_400_BAD_REQUEST,
}


def http_status_for(exc: LedgerError) -> int:
    return HTTP_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)


def register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        code = http_status_for(exc)
        if code >= 500:
            logger.error("ledger failure on %s: %s", request.url.path, exc.message,
                         extra={"error": exc.kind, "path": request.url.path})
        else:
            logger.warning("rejected %s %s: %s", request.method, request.url.path, exc.message,
                           extra={"error": exc.kind, "path": request.url.path})
        return JSONResponse(status_code=code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.warning("validation error on %s: %s", request.url.path, exc.errors())
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "detail": "Invalid request data",
                "error": "invalid_argument",
                "fields": [
                    {"field": ".".join(str(loc) for loc in e["loc"]), "message": e["msg"]}
                    for e in exc.errors()
                ],
            },
        )

    # never leaks internal details
    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        logger.error("unhandled exception on %s: %s", request.url.path, exc, exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "An unexpected error occurred", "error": "internal"},
        )
