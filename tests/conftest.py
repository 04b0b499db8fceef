import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import pytest
from fastapi.testclient import TestClient

from library_app.ledger import Ledger
from library_app.main import create_app


def book_data(n=1, **overrides):
    data = {
        "title": f"Book{n}",
        "author": f"Author{n}",
        "isbn": f"978000000{n:04d}",
        "publication_year": 2000 + n,
        "genre": "Novel",
        "description": f"Description {n}",
    }
    data.update(overrides)
    return data


def borrower_data(n=1, **overrides):
    data = {"last_name": f"Last{n}", "first_name": f"First{n}", "email": f"user{n}@example.com"}
    data.update(overrides)
    return data


@pytest.fixture
def ledger():
    # fresh in-memory database for every test
    ledger = Ledger.from_url("sqlite://")
    yield ledger
    ledger.close()


@pytest.fixture
def client(ledger):
    return TestClient(create_app(ledger=ledger))
