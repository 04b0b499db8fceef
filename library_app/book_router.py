from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from .ledger import Ledger
from .schemas import (
    BookCreate, BookUpdate, BookRead, BookPage, SearchResult,
    LibraryStatistics, BookStatistics, MAX_PAGE_SIZE,
)


# the ledger lives on the app, built once in create_app
def get_ledger(request: Request) -> Ledger:
    return request.app.state.ledger


# router
book_router = APIRouter(prefix="/books", tags=["books"])


@book_router.post("/", response_model=BookRead, status_code=201) # create book
def create_book(book: BookCreate, ledger: Ledger = Depends(get_ledger)):
    return ledger.create_book(book)


@book_router.get("/", response_model=BookPage) # get the books, one page at a time
def list_books(
    ledger: Ledger = Depends(get_ledger),
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1, le=MAX_PAGE_SIZE),
):
    return ledger.list_books(page=page, page_size=page_size)


@book_router.get("/search", response_model=SearchResult) # search title, author or genre
def search_books(
    ledger: Ledger = Depends(get_ledger),
    term: Optional[str] = Query(None),
    field: Optional[str] = Query(None),
):
    books = ledger.search_books(term, field)
    return SearchResult(books=books, total=len(books))


@book_router.get("/statistics", response_model=LibraryStatistics) # lending statistics
def get_statistics(ledger: Ledger = Depends(get_ledger)):
    return ledger.statistics()


@book_router.get("/{id}/statistics", response_model=BookStatistics) # lending statistics for one book
def get_book_statistics(id: int, ledger: Ledger = Depends(get_ledger)):
    return ledger.book_statistics(id)


@book_router.get("/{id}", response_model=BookRead) # get book by id
def get_book(id: int, ledger: Ledger = Depends(get_ledger)):
    return ledger.get_book(id)


# lending fields in the body are dropped, only borrow and return change them
@book_router.put("/{id}", response_model=BookRead) # update book by id
def update_book(id: int, book_update: BookUpdate, ledger: Ledger = Depends(get_ledger)):
    return ledger.update_book(id, book_update)


@book_router.delete("/{id}", status_code=204) # delete book by id
def delete_book(id: int, ledger: Ledger = Depends(get_ledger)):
    ledger.delete_book(id)
    return None
