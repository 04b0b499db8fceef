from typing import Optional

from fastapi import APIRouter, Depends, Query

from .book_router import get_ledger
from .ledger import Ledger
from .schemas import (
    BorrowerCreate, BorrowerUpdate, BorrowerRead, BorrowerPage,
    SearchResult, LoanHistory, MAX_PAGE_SIZE,
)


# router
borrower_router = APIRouter(prefix="/borrowers", tags=["borrowers"])


@borrower_router.post("/", response_model=BorrowerRead, status_code=201) # create borrower
def create_borrower(borrower: BorrowerCreate, ledger: Ledger = Depends(get_ledger)):
    return ledger.create_borrower(borrower)


@borrower_router.get("/", response_model=BorrowerPage) # get the borrowers, one page at a time
def list_borrowers(
    ledger: Ledger = Depends(get_ledger),
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1, le=MAX_PAGE_SIZE),
):
    return ledger.list_borrowers(page=page, page_size=page_size)


@borrower_router.get("/{id}", response_model=BorrowerRead) # get borrower by id
def get_borrower(id: int, ledger: Ledger = Depends(get_ledger)):
    return ledger.get_borrower(id)


@borrower_router.put("/{id}", response_model=BorrowerRead) # update borrower by id
def update_borrower(id: int, borrower_update: BorrowerUpdate, ledger: Ledger = Depends(get_ledger)):
    return ledger.update_borrower(id, borrower_update)


@borrower_router.delete("/{id}", status_code=204) # delete borrower by id
def delete_borrower(id: int, ledger: Ledger = Depends(get_ledger)):
    ledger.delete_borrower(id)
    return None


@borrower_router.get("/{id}/books", response_model=SearchResult) # books the borrower holds now
def get_borrowed_books(id: int, ledger: Ledger = Depends(get_ledger)):
    books = ledger.borrowed_books(id)
    return SearchResult(books=books, total=len(books))


@borrower_router.get("/{id}/history", response_model=LoanHistory) # every loan, oldest first
def get_loan_history(id: int, ledger: Ledger = Depends(get_ledger)):
    loans = ledger.loan_history(id)
    return LoanHistory(loans=loans, total=len(loans))
