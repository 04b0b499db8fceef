from fastapi import APIRouter, Depends

from .book_router import get_ledger
from .ledger import Ledger
from .schemas import BookRead, LoanRequest

borrow_router = APIRouter(tags=["borrowing"])


@borrow_router.post("/borrow/{book_id}", response_model=BookRead)
def borrow_book(book_id: int, loan: LoanRequest, ledger: Ledger = Depends(get_ledger)):
    return ledger.borrow(book_id, loan.borrower_id)


@borrow_router.post("/return/{book_id}", response_model=BookRead)
def return_book(book_id: int, loan: LoanRequest, ledger: Ledger = Depends(get_ledger)):
    return ledger.return_book(book_id, loan.borrower_id)
