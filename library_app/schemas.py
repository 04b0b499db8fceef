# pydantic schemas shared by the REST routers and the gRPC services
import re
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import get_settings

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
SEARCH_FIELDS = ("title", "author", "genre")
MAX_PAGE_SIZE = get_settings().max_page_size


def _check_email(v):
    if v is None:
        return v
    v = v.strip().lower()
    if not EMAIL_RE.match(v):
        raise ValueError('email is not a valid address')
    return v


# books
class BookCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1)
    author: str = Field(min_length=1)
    isbn: str = Field(min_length=1)
    publication_year: int = Field(ge=0)
    genre: str = Field(min_length=1)
    description: Optional[str] = None


class BookUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(None, min_length=1)
    author: Optional[str] = Field(None, min_length=1)
    isbn: Optional[str] = Field(None, min_length=1)
    publication_year: Optional[int] = Field(None, ge=0)
    genre: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None


class BookRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    author: str
    isbn: str
    publication_year: int
    genre: str
    description: Optional[str] = None
    available: bool
    borrower_id: Optional[int] = None
    borrowed_at: Optional[datetime] = None
    returned_at: Optional[datetime] = None
    borrow_count: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BookPage(BaseModel):
    books: List[BookRead]
    total: int
    page: int
    page_size: int
    pages: int


class SearchResult(BaseModel):
    books: List[BookRead]
    total: int


# borrowers
class BorrowerCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    last_name: str = Field(min_length=1)
    first_name: str = Field(min_length=1)
    email: str

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        return _check_email(v)


class BorrowerUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    last_name: Optional[str] = Field(None, min_length=1)
    first_name: Optional[str] = Field(None, min_length=1)
    email: Optional[str] = None

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        return _check_email(v)


class LoanRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    book_id: int
    book_title: str
    borrowed_at: datetime
    returned_at: Optional[datetime] = None


class BorrowerRead(BaseModel):
    id: int
    last_name: str
    first_name: str
    email: str
    borrowed_books: List[int] = []
    history: List[LoanRead] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BorrowerPage(BaseModel):
    borrowers: List[BorrowerRead]
    total: int
    page: int
    page_size: int
    pages: int


class LoanHistory(BaseModel):
    loans: List[LoanRead]
    total: int


# statistics
class PopularBook(BaseModel):
    id: int
    title: str
    author: str
    borrow_count: int


class LibraryStatistics(BaseModel):
    total_books: int
    total_borrows: int
    available_books: int
    borrowed_books: int
    average_borrows: float
    popular_books: List[PopularBook]


class BookStatistics(BaseModel):
    id: int
    title: str
    borrow_count: int
    available: bool


# borrow / return body; borrower_id is checked by the ledger so a missing one
# gets the same answer on both transports
class LoanRequest(BaseModel):
    borrower_id: Optional[int] = None


class DeleteResult(BaseModel):
    success: bool
    message: str


# grpc request messages
class IdRequest(BaseModel):
    id: int


class PageRequest(BaseModel):
    page: int = Field(1, ge=1)
    page_size: Optional[int] = Field(None, ge=1, le=MAX_PAGE_SIZE)


class UpdateBookRequest(BookUpdate):
    id: int


class UpdateBorrowerRequest(BorrowerUpdate):
    id: int


class SearchRequest(BaseModel):
    term: str = ""
    field: Optional[str] = None


class BookLoanRequest(LoanRequest):
    book_id: int


class StatisticsRequest(BaseModel):
    book_id: Optional[int] = None
