"""gRPC front end for the ledger.

Two services, library.BookService and library.BorrowerService, all unary.
Messages travel as UTF-8 JSON and are validated with the same pydantic
schemas as the REST routers, so both transports accept and return the
same shapes.
"""

import logging
from concurrent import futures
from typing import Optional

import grpc
from pydantic import BaseModel, ValidationError

from .config import Settings, get_settings
from .errors import LedgerError, NotFound, InvalidArgument, Conflict, DuplicateKey
from .ledger import Ledger
from .logging_config import setup_logging
from .schemas import (
    BookCreate, BorrowerCreate, IdRequest, PageRequest, UpdateBookRequest,
    UpdateBorrowerRequest, SearchRequest, BookLoanRequest, StatisticsRequest,
    SearchResult, LoanHistory, DeleteResult,
)

logger = logging.getLogger(__name__)

BOOK_SERVICE = "library.BookService"
BORROWER_SERVICE = "library.BorrowerService"

GRPC_STATUS = {
    NotFound: grpc.StatusCode.NOT_FOUND,
    InvalidArgument: grpc.StatusCode.INVALID_ARGUMENT,
    Conflict: grpc.StatusCode.FAILED_PRECONDITION,
    DuplicateKey: grpc.StatusCode.ALREADY_EXISTS,
}


def grpc_status_for(exc: LedgerError) -> grpc.StatusCode:
    return GRPC_STATUS.get(type(exc), grpc.StatusCode.INTERNAL)


def encode_request(message: BaseModel) -> bytes:
    return message.model_dump_json(exclude_unset=True).encode("utf-8")


def encode_response(message: BaseModel) -> bytes:
    return message.model_dump_json().encode("utf-8")


def unary(request_model, handler):
    """Wrap handler(message) as a unary-unary RPC with JSON codec and status mapping."""

    def method(request: bytes, context):
        try:
            message = request_model.model_validate_json(request or b"{}")
        except ValidationError as e:
            logger.warning("invalid %s request: %s", request_model.__name__, e)
            context.abort(grpc.StatusCode.INVALID_ARGUMENT, f"Invalid request: {e}")

        try:
            return handler(message)
        except LedgerError as e:
            code = grpc_status_for(e)
            if code == grpc.StatusCode.INTERNAL:
                logger.error("ledger failure in %s: %s", handler.__name__, e.message, extra={"error": e.kind})
            else:
                logger.warning("rejected %s: %s", handler.__name__, e.message, extra={"error": e.kind})
            context.abort(code, e.message)
        except Exception:
            logger.exception("unhandled exception in %s", handler.__name__)
            context.abort(grpc.StatusCode.INTERNAL, "An unexpected error occurred")

    return grpc.unary_unary_rpc_method_handler(method, response_serializer=encode_response)


class BookService:

    def __init__(self, ledger: Ledger):
        self.ledger = ledger

    def list_books(self, request: PageRequest):
        return self.ledger.list_books(request.page, request.page_size)

    def get_book(self, request: IdRequest):
        return self.ledger.get_book(request.id)

    def create_book(self, request: BookCreate):
        return self.ledger.create_book(request)

    def update_book(self, request: UpdateBookRequest):
        return self.ledger.update_book(request.id, request)

    def delete_book(self, request: IdRequest):
        self.ledger.delete_book(request.id)
        return DeleteResult(success=True, message="Book deleted.")

    def search_books(self, request: SearchRequest):
        books = self.ledger.search_books(request.term, request.field)
        return SearchResult(books=books, total=len(books))

    def borrow_book(self, request: BookLoanRequest):
        return self.ledger.borrow(request.book_id, request.borrower_id)

    def return_book(self, request: BookLoanRequest):
        return self.ledger.return_book(request.book_id, request.borrower_id)

    # one book when book_id is given, the whole library otherwise
    def get_statistics(self, request: StatisticsRequest):
        if request.book_id is not None:
            return self.ledger.book_statistics(request.book_id)
        return self.ledger.statistics()

    def handler(self):
        return grpc.method_handlers_generic_handler(BOOK_SERVICE, {
            "ListBooks": unary(PageRequest, self.list_books),
            "GetBook": unary(IdRequest, self.get_book),
            "CreateBook": unary(BookCreate, self.create_book),
            "UpdateBook": unary(UpdateBookRequest, self.update_book),
            "DeleteBook": unary(IdRequest, self.delete_book),
            "SearchBooks": unary(SearchRequest, self.search_books),
            "BorrowBook": unary(BookLoanRequest, self.borrow_book),
            "ReturnBook": unary(BookLoanRequest, self.return_book),
            "GetStatistics": unary(StatisticsRequest, self.get_statistics),
        })


class BorrowerService:

    def __init__(self, ledger: Ledger):
        self.ledger = ledger

    def list_borrowers(self, request: PageRequest):
        return self.ledger.list_borrowers(request.page, request.page_size)

    def get_borrower(self, request: IdRequest):
        return self.ledger.get_borrower(request.id)

    def create_borrower(self, request: BorrowerCreate):
        return self.ledger.create_borrower(request)

    def update_borrower(self, request: UpdateBorrowerRequest):
        return self.ledger.update_borrower(request.id, request)

    def delete_borrower(self, request: IdRequest):
        self.ledger.delete_borrower(request.id)
        return DeleteResult(success=True, message="Borrower deleted.")

    def get_borrowed_books(self, request: IdRequest):
        books = self.ledger.borrowed_books(request.id)
        return SearchResult(books=books, total=len(books))

    def get_loan_history(self, request: IdRequest):
        loans = self.ledger.loan_history(request.id)
        return LoanHistory(loans=loans, total=len(loans))

    def handler(self):
        return grpc.method_handlers_generic_handler(BORROWER_SERVICE, {
            "ListBorrowers": unary(PageRequest, self.list_borrowers),
            "GetBorrower": unary(IdRequest, self.get_borrower),
            "CreateBorrower": unary(BorrowerCreate, self.create_borrower),
            "UpdateBorrower": unary(UpdateBorrowerRequest, self.update_borrower),
            "DeleteBorrower": unary(IdRequest, self.delete_borrower),
            "GetBorrowedBooks": unary(IdRequest, self.get_borrowed_books),
            "GetLoanHistory": unary(IdRequest, self.get_loan_history),
        })


def create_server(ledger: Ledger, address: str = "[::]:0", max_workers: int = 10):
    """Build (but do not start) a server; returns it with the bound port."""
    server = grpc.server(futures.ThreadPoolExecutor(max_workers=max_workers))
    server.add_generic_rpc_handlers((BookService(ledger).handler(), BorrowerService(ledger).handler()))
    port = server.add_insecure_port(address)
    return server, port


def serve(settings: Optional[Settings] = None):
    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_format)

    ledger = Ledger.from_url(settings.database_url, default_page_size=settings.default_page_size)
    server, port = create_server(
        ledger, f"{settings.grpc_host}:{settings.grpc_port}", settings.grpc_max_workers,
    )
    server.start()
    logger.info("gRPC server listening on port %s", port)
    try:
        server.wait_for_termination()
    finally:
        ledger.close()


if __name__ == "__main__":
    serve()
