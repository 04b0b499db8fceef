from datetime import datetime, UTC

from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship, declarative_base
from sqlalchemy.types import TypeDecorator

Base = declarative_base()


def utcnow():
    return datetime.now(UTC)


# stores UTC, always hands back aware datetimes (sqlite drops the offset)
class UTCDateTime(TypeDecorator):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value


# table for book model
class Book(Base):
    __tablename__ = 'book'
    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    author = Column(String, nullable=False)
    isbn = Column(String, unique=True, nullable=False)
    publication_year = Column(Integer, nullable=False)
    genre = Column(String, nullable=False)
    description = Column(Text)

    # lending state, only written by borrow and return
    available = Column(Boolean, nullable=False, default=True)
    borrower_id = Column(Integer, ForeignKey('borrower.id'), index=True)
    borrowed_at = Column(UTCDateTime)
    returned_at = Column(UTCDateTime)
    borrow_count = Column(Integer, nullable=False, default=0)

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    borrower = relationship('Borrower', back_populates='books') # relationship with borrower model


# table for borrower model
class Borrower(Base):
    __tablename__ = 'borrower'
    id = Column(Integer, primary_key=True, index=True)
    last_name = Column(String, nullable=False)
    first_name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    # books currently held, the inverse of Book.borrower_id
    books = relationship('Book', back_populates='borrower', order_by=[Book.borrowed_at, Book.id])
    history = relationship(
        'LoanRecord', back_populates='borrower', order_by='LoanRecord.id',
        cascade='all, delete-orphan',
    )


# table for loan history, one row per borrow/return cycle
class LoanRecord(Base):
    __tablename__ = 'loan_record'
    id = Column(Integer, primary_key=True)
    borrower_id = Column(Integer, ForeignKey('borrower.id'), nullable=False, index=True)
    # no foreign key: the record outlives the book
    book_id = Column(Integer, nullable=False, index=True)
    book_title = Column(String, nullable=False)
    borrowed_at = Column(UTCDateTime, nullable=False)
    returned_at = Column(UTCDateTime)
    borrower = relationship('Borrower', back_populates='history')
