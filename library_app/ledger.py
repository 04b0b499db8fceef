"""Lending ledger: owns book and borrower records and the borrow/return rules.

Every public method runs in its own transaction and either returns a
pydantic read model or raises exactly one LedgerError subclass. Checks
always run before anything is written, so a failed call leaves no trace.
"""

import logging
import math
import threading
from contextlib import contextmanager, nullcontext
from typing import List, Optional

from pydantic import BaseModel, ValidationError
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from . import lending
from .database import make_engine, make_session_factory, create_tables
from .errors import LedgerError, NotFound, InvalidArgument, Conflict, DuplicateKey, Internal
from .models import Book, Borrower, utcnow
from .schemas import (
    BookCreate, BookUpdate, BookRead, BookPage,
    BorrowerCreate, BorrowerUpdate, BorrowerRead, BorrowerPage, LoanRead,
    LibraryStatistics, BookStatistics, PopularBook, SEARCH_FIELDS,
)

logger = logging.getLogger(__name__)

# owned by borrow/return, never writable through an update
BOOK_PROTECTED = {"id", "available", "borrower_id", "borrowed_at", "returned_at", "borrow_count",
                  "created_at", "updated_at"}
BORROWER_PROTECTED = {"id", "borrowed_books", "books", "history", "created_at", "updated_at"}
NULLABLE = {"description"}
POPULAR_LIMIT = 10


class RecordLocks:
    """A fixed set of lock stripes shared by all record keys.

    Keys hash onto stripes, so memory stays flat no matter which ids callers
    send. Stripes are taken in index order so two holders never deadlock.
    """

    def __init__(self, stripes: int = 64):
        self._stripes = [threading.Lock() for _ in range(stripes)]

    def __len__(self):
        return len(self._stripes)

    @contextmanager
    def hold(self, *keys):
        locks = [self._stripes[i] for i in sorted({hash(key) % len(self._stripes) for key in keys})]
        for lock in locks:
            lock.acquire()
        try:
            yield
        finally:
            for lock in reversed(locks):
                lock.release()


def _validate(model, data):
    if isinstance(data, model):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude_unset=True)
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InvalidArgument(str(e)) from e


def _patch_fields(model, patch, protected):
    raw = patch.model_dump(exclude_unset=True) if isinstance(patch, BaseModel) else dict(patch)
    raw = {k: v for k, v in raw.items() if k not in protected}
    fields = _validate(model, raw).model_dump(exclude_unset=True)
    return {k: v for k, v in fields.items() if v is not None or k in NULLABLE}


def _pages(total, page_size):
    return math.ceil(total / page_size)


def _check_page(page, page_size):
    if page < 1:
        raise InvalidArgument("page must be 1 or greater.")
    if page_size < 1:
        raise InvalidArgument("page_size must be 1 or greater.")


def _book_read(book) -> BookRead:
    return BookRead.model_validate(book)


def _borrower_read(borrower) -> BorrowerRead:
    return BorrowerRead(
        id=borrower.id,
        last_name=borrower.last_name,
        first_name=borrower.first_name,
        email=borrower.email,
        borrowed_books=[book.id for book in borrower.books],
        history=[LoanRead.model_validate(record) for record in borrower.history],
        created_at=borrower.created_at,
        updated_at=borrower.updated_at,
    )


class Ledger:

    def __init__(self, session_factory, engine=None, default_page_size: int = 10):
        self._session_factory = session_factory
        self._engine = engine
        self._locks = RecordLocks()
        self.default_page_size = default_page_size

        # a StaticPool hands every thread the same connection, so only one
        # transaction may be open on it at a time
        bind = engine if engine is not None else session_factory.kw.get("bind")
        if bind is not None and isinstance(bind.pool, StaticPool):
            self._storage_lock = threading.Lock()
        else:
            self._storage_lock = nullcontext()

    @classmethod
    def from_url(cls, database_url: str, default_page_size: int = 10) -> "Ledger":
        """Build a ledger on its own engine and create the tables if needed."""
        engine = make_engine(database_url)
        create_tables(engine)
        return cls(make_session_factory(engine), engine=engine, default_page_size=default_page_size)

    def close(self):
        if self._engine is not None:
            self._engine.dispose()

    @contextmanager
    def _transaction(self, action: str):
        try:
            with self._storage_lock, self._session_factory.begin() as db:
                yield db
        except LedgerError:
            raise
        except IntegrityError as e:
            logger.warning("unique constraint hit during %s: %s", action, e.orig)
            raise DuplicateKey("A record with this value already exists.") from e
        except SQLAlchemyError as e:
            logger.error("storage failure during %s: %s", action, e)
            raise Internal(f"Storage failure during {action}.") from e

    @staticmethod
    def _get_book(db, book_id) -> Book:
        book = db.get(Book, book_id)
        if book is None:
            raise NotFound("Book not found.")
        return book

    @staticmethod
    def _get_borrower(db, borrower_id) -> Borrower:
        borrower = db.get(Borrower, borrower_id)
        if borrower is None:
            raise NotFound("Borrower not found.")
        return borrower

    # ------------------------- books ------------------------- #
    def create_book(self, data) -> BookRead:
        data = _validate(BookCreate, data)
        with self._transaction("create_book") as db:
            if db.query(Book).filter(Book.isbn == data.isbn).first():
                raise DuplicateKey("Book with this ISBN already exists.")
            book = Book(**data.model_dump(), available=True, borrow_count=0)
            db.add(book)
            db.flush()
            return _book_read(book)

    def get_book(self, book_id: int) -> BookRead:
        with self._transaction("get_book") as db:
            return _book_read(self._get_book(db, book_id))

    def list_books(self, page: int = 1, page_size: Optional[int] = None) -> BookPage:
        if page_size is None:
            page_size = self.default_page_size
        _check_page(page, page_size)
        with self._transaction("list_books") as db:
            total = db.query(func.count(Book.id)).scalar()
            books = (db.query(Book).order_by(Book.id)
                     .offset((page - 1) * page_size).limit(page_size).all())
            return BookPage(
                books=[_book_read(b) for b in books],
                total=total, page=page, page_size=page_size, pages=_pages(total, page_size),
            )

    def update_book(self, book_id: int, patch) -> BookRead:
        fields = _patch_fields(BookUpdate, patch, BOOK_PROTECTED)
        with self._locks.hold(("book", book_id)), self._transaction("update_book") as db:
            book = self._get_book(db, book_id)
            isbn = fields.get("isbn")
            if isbn is not None and isbn != book.isbn:
                if db.query(Book).filter(Book.isbn == isbn, Book.id != book_id).first():
                    raise DuplicateKey("Book with this ISBN already exists.")
            for name, value in fields.items():
                setattr(book, name, value)
            db.flush()
            return _book_read(book)

    def delete_book(self, book_id: int) -> None:
        with self._locks.hold(("book", book_id)), self._transaction("delete_book") as db:
            book = self._get_book(db, book_id)
            if not book.available:
                raise Conflict("Cannot delete a book that is currently on loan.")
            db.delete(book)

    def search_books(self, term: Optional[str], field: Optional[str] = None) -> List[BookRead]:
        """Case-insensitive substring search on one field, or on title, author and genre."""
        if not term or not term.strip():
            raise InvalidArgument("A search term is required.")
        field = field or None
        if field is not None and field not in SEARCH_FIELDS:
            raise InvalidArgument(f"Cannot search on '{field}', use one of: {', '.join(SEARCH_FIELDS)}.")

        columns = [getattr(Book, field)] if field else [Book.title, Book.author, Book.genre]
        with self._transaction("search_books") as db:
            books = (db.query(Book)
                     .filter(or_(*[c.icontains(term, autoescape=True) for c in columns]))
                     .order_by(Book.id).all())
            return [_book_read(b) for b in books]

    # ------------------------- lending ------------------------- #
    def borrow(self, book_id: int, borrower_id: Optional[int]) -> BookRead:
        if borrower_id is None:
            raise InvalidArgument("Borrower id is required.")
        with self._locks.hold(("book", book_id), ("borrower", borrower_id)), \
                self._transaction("borrow") as db:
            book = self._get_book(db, book_id)
            lending.ensure_available(book)
            borrower = self._get_borrower(db, borrower_id)
            lending.lend(book, borrower, utcnow())
            db.flush()
            logger.info("book %s borrowed by borrower %s", book_id, borrower_id,
                        extra={"book_id": book_id, "borrower_id": borrower_id})
            return _book_read(book)

    def return_book(self, book_id: int, borrower_id: Optional[int]) -> BookRead:
        if borrower_id is None:
            raise InvalidArgument("Borrower id is required.")
        with self._locks.hold(("book", book_id), ("borrower", borrower_id)), \
                self._transaction("return_book") as db:
            book = self._get_book(db, book_id)
            borrower = self._get_borrower(db, borrower_id)
            lending.take_back(book, borrower, utcnow())
            db.flush()
            logger.info("book %s returned by borrower %s", book_id, borrower_id,
                        extra={"book_id": book_id, "borrower_id": borrower_id})
            return _book_read(book)

    # ------------------------- borrowers ------------------------- #
    def create_borrower(self, data) -> BorrowerRead:
        data = _validate(BorrowerCreate, data)
        with self._transaction("create_borrower") as db:
            if db.query(Borrower).filter(Borrower.email == data.email).first():
                raise DuplicateKey("Borrower with this email already exists.")
            borrower = Borrower(**data.model_dump())
            db.add(borrower)
            db.flush()
            return _borrower_read(borrower)

    def get_borrower(self, borrower_id: int) -> BorrowerRead:
        with self._transaction("get_borrower") as db:
            return _borrower_read(self._get_borrower(db, borrower_id))

    def list_borrowers(self, page: int = 1, page_size: Optional[int] = None) -> BorrowerPage:
        if page_size is None:
            page_size = self.default_page_size
        _check_page(page, page_size)
        with self._transaction("list_borrowers") as db:
            total = db.query(func.count(Borrower.id)).scalar()
            borrowers = (db.query(Borrower).order_by(Borrower.id)
                         .offset((page - 1) * page_size).limit(page_size).all())
            return BorrowerPage(
                borrowers=[_borrower_read(b) for b in borrowers],
                total=total, page=page, page_size=page_size, pages=_pages(total, page_size),
            )

    def update_borrower(self, borrower_id: int, patch) -> BorrowerRead:
        fields = _patch_fields(BorrowerUpdate, patch, BORROWER_PROTECTED)
        with self._locks.hold(("borrower", borrower_id)), self._transaction("update_borrower") as db:
            borrower = self._get_borrower(db, borrower_id)
            email = fields.get("email")
            if email is not None and email != borrower.email:
                if db.query(Borrower).filter(Borrower.email == email, Borrower.id != borrower_id).first():
                    raise DuplicateKey("Borrower with this email already exists.")
            for name, value in fields.items():
                setattr(borrower, name, value)
            db.flush()
            return _borrower_read(borrower)

    def delete_borrower(self, borrower_id: int) -> None:
        with self._locks.hold(("borrower", borrower_id)), self._transaction("delete_borrower") as db:
            borrower = self._get_borrower(db, borrower_id)
            if borrower.books:
                raise Conflict("Cannot delete a borrower who still holds borrowed books.")
            db.delete(borrower)

    def borrowed_books(self, borrower_id: int) -> List[BookRead]:
        with self._transaction("borrowed_books") as db:
            return [_book_read(b) for b in self._get_borrower(db, borrower_id).books]

    def loan_history(self, borrower_id: int) -> List[LoanRead]:
        with self._transaction("loan_history") as db:
            return [LoanRead.model_validate(r) for r in self._get_borrower(db, borrower_id).history]

    # ------------------------- statistics ------------------------- #
    def statistics(self) -> LibraryStatistics:
        with self._transaction("statistics") as db:
            total_books = db.query(func.count(Book.id)).scalar()
            total_borrows = db.query(func.coalesce(func.sum(Book.borrow_count), 0)).scalar()
            available = db.query(func.count(Book.id)).filter(Book.available.is_(True)).scalar()
            popular = (db.query(Book).order_by(Book.borrow_count.desc(), Book.id)
                       .limit(POPULAR_LIMIT).all())
            return LibraryStatistics(
                total_books=total_books,
                total_borrows=total_borrows,
                available_books=available,
                borrowed_books=total_books - available,
                average_borrows=total_borrows / total_books if total_books else 0.0,
                popular_books=[
                    PopularBook(id=b.id, title=b.title, author=b.author, borrow_count=b.borrow_count)
                    for b in popular
                ],
            )

    def book_statistics(self, book_id: int) -> BookStatistics:
        with self._transaction("book_statistics") as db:
            book = self._get_book(db, book_id)
            return BookStatistics(id=book.id, title=book.title,
                                  borrow_count=book.borrow_count, available=book.available)
