from typing import Optional

import grpc

from .grpc_server import BOOK_SERVICE, BORROWER_SERVICE, encode_request
from .schemas import (
    BookCreate, BookRead, BookPage, BorrowerCreate, BorrowerRead, BorrowerPage,
    IdRequest, PageRequest, UpdateBookRequest, UpdateBorrowerRequest, SearchRequest,
    BookLoanRequest, StatisticsRequest, SearchResult, LoanHistory, DeleteResult,
    LibraryStatistics, BookStatistics,
)


class LibraryClient:
    """Calls both library services over one channel. Failures raise grpc.RpcError."""

    def __init__(self, target: str, timeout: Optional[float] = 10.0):
        self._channel = grpc.insecure_channel(target)
        self.timeout = timeout

    def close(self):
        self._channel.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _call(self, service, method, request, response_model):
        rpc = self._channel.unary_unary(
            f"/{service}/{method}",
            request_serializer=encode_request,
            response_deserializer=response_model.model_validate_json,
        )
        return rpc(request, timeout=self.timeout)

    # books
    def list_books(self, page: int = 1, page_size: Optional[int] = None) -> BookPage:
        return self._call(BOOK_SERVICE, "ListBooks", PageRequest(page=page, page_size=page_size), BookPage)

    def get_book(self, book_id: int) -> BookRead:
        return self._call(BOOK_SERVICE, "GetBook", IdRequest(id=book_id), BookRead)

    def create_book(self, **fields) -> BookRead:
        return self._call(BOOK_SERVICE, "CreateBook", BookCreate(**fields), BookRead)

    def update_book(self, book_id: int, **fields) -> BookRead:
        request = UpdateBookRequest.model_validate({**fields, "id": book_id})
        return self._call(BOOK_SERVICE, "UpdateBook", request, BookRead)

    def delete_book(self, book_id: int) -> DeleteResult:
        return self._call(BOOK_SERVICE, "DeleteBook", IdRequest(id=book_id), DeleteResult)

    def search_books(self, term: str, field: Optional[str] = None) -> SearchResult:
        return self._call(BOOK_SERVICE, "SearchBooks", SearchRequest(term=term, field=field), SearchResult)

    def borrow(self, book_id: int, borrower_id: Optional[int]) -> BookRead:
        request = BookLoanRequest(book_id=book_id, borrower_id=borrower_id)
        return self._call(BOOK_SERVICE, "BorrowBook", request, BookRead)

    def return_book(self, book_id: int, borrower_id: Optional[int]) -> BookRead:
        request = BookLoanRequest(book_id=book_id, borrower_id=borrower_id)
        return self._call(BOOK_SERVICE, "ReturnBook", request, BookRead)

    def statistics(self) -> LibraryStatistics:
        return self._call(BOOK_SERVICE, "GetStatistics", StatisticsRequest(), LibraryStatistics)

    def book_statistics(self, book_id: int) -> BookStatistics:
        return self._call(BOOK_SERVICE, "GetStatistics", StatisticsRequest(book_id=book_id), BookStatistics)

    # borrowers
    def list_borrowers(self, page: int = 1, page_size: Optional[int] = None) -> BorrowerPage:
        return self._call(BORROWER_SERVICE, "ListBorrowers", PageRequest(page=page, page_size=page_size),
                          BorrowerPage)

    def get_borrower(self, borrower_id: int) -> BorrowerRead:
        return self._call(BORROWER_SERVICE, "GetBorrower", IdRequest(id=borrower_id), BorrowerRead)

    def create_borrower(self, **fields) -> BorrowerRead:
        return self._call(BORROWER_SERVICE, "CreateBorrower", BorrowerCreate(**fields), BorrowerRead)

    def update_borrower(self, borrower_id: int, **fields) -> BorrowerRead:
        request = UpdateBorrowerRequest.model_validate({**fields, "id": borrower_id})
        return self._call(BORROWER_SERVICE, "UpdateBorrower", request, BorrowerRead)

    def delete_borrower(self, borrower_id: int) -> DeleteResult:
        return self._call(BORROWER_SERVICE, "DeleteBorrower", IdRequest(id=borrower_id), DeleteResult)

    def borrowed_books(self, borrower_id: int) -> SearchResult:
        return self._call(BORROWER_SERVICE, "GetBorrowedBooks", IdRequest(id=borrower_id), SearchResult)

    def loan_history(self, borrower_id: int) -> LoanHistory:
        return self._call(BORROWER_SERVICE, "GetLoanHistory", IdRequest(id=borrower_id), LoanHistory)
