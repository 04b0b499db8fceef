"""Borrow and return transitions.

A book is either available or on loan to exactly one borrower. These
functions check the guards and apply the transition to a book and a
borrower in memory; committing the result is the caller's job, so they
work the same on transient objects and on objects bound to a session.
"""

from .errors import InvalidArgument
from .models import LoanRecord

BORROW_LIMIT = 5


def ensure_available(book):
    if not book.available:
        raise InvalidArgument("This book is already borrowed.")


def ensure_held_by(book, borrower):
    if book.available or book.borrower_id != borrower.id:
        raise InvalidArgument("This book is not borrowed by this user.")


def lend(book, borrower, now):
    """Available -> on loan. Returns the opened loan record."""
    ensure_available(book)
    if len(borrower.books) >= BORROW_LIMIT:
        raise InvalidArgument(f"Borrow limit reached: a borrower cannot hold more than {BORROW_LIMIT} books.")

    book.available = False
    book.borrower_id = borrower.id
    book.borrowed_at = now
    book.borrow_count = (book.borrow_count or 0) + 1
    borrower.books.append(book)

    record = LoanRecord(book_id=book.id, book_title=book.title, borrowed_at=now, returned_at=None)
    borrower.history.append(record)
    return record


def take_back(book, borrower, now):
    """On loan -> available. Returns the closed loan record, if one was open."""
    ensure_held_by(book, borrower)

    book.available = True
    book.borrower_id = None
    book.borrowed_at = None
    book.returned_at = now
    if book in borrower.books:
        borrower.books.remove(book)

    for record in borrower.history:
        if record.book_id == book.id and record.returned_at is None:
            record.returned_at = now
            return record
    return None
