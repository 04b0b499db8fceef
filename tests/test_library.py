import importlib
import logging

import pytest
from fastapi.testclient import TestClient

from conftest import book_data, borrower_data
from library_app import main
from library_app.config import Settings
from library_app.ledger import Ledger
from library_app.main import create_app


# Helper functions
def create_book(client, n=1, **overrides):
    r = client.post("/books/", json=book_data(n, **overrides))
    assert r.status_code == 201
    return r.json()


def create_borrower(client, n=1, **overrides):
    r = client.post("/borrowers/", json=borrower_data(n, **overrides))
    assert r.status_code == 201
    return r.json()


@pytest.fixture
def setup_borrower_and_books(client):
    borrower = create_borrower(client)
    books = [create_book(client, i) for i in range(1, 7)]
    return {"borrower": borrower, "books": books}


def test_welcome(client):
    r = client.get("/")
    assert r.status_code == 200
    assert "message" in r.json()


def test_book_crud(client):
    book = create_book(client, 1, title="1984", isbn="X")
    assert book["available"] is True
    assert book["borrow_count"] == 0

    r = client.get(f"/books/{book['id']}")
    assert r.status_code == 200
    assert r.json()["title"] == "1984"

    r = client.put(f"/books/{book['id']}", json={"genre": "Dystopia", "borrow_count": 10, "borrower_id": 3})
    assert r.status_code == 200
    assert r.json()["genre"] == "Dystopia"
    assert r.json()["borrow_count"] == 0
    assert r.json()["borrower_id"] is None

    r = client.delete(f"/books/{book['id']}")
    assert r.status_code == 204
    r = client.get(f"/books/{book['id']}")
    assert r.status_code == 404
    assert r.json()["error"] == "not_found"


def test_create_book_validation(client):
    r = client.post("/books/", json={"title": "Missing fields"})
    assert r.status_code == 400
    fields = {f["field"] for f in r.json()["fields"]}
    assert "body.author" in fields

    r = client.post("/books/", json=book_data(1, publication_year=-5))
    assert r.status_code == 400


def test_create_book_duplicate_isbn(client):
    create_book(client, 1)
    r = client.post("/books/", json=book_data(2, isbn=book_data(1)["isbn"]))
    assert r.status_code == 400
    assert r.json()["error"] == "duplicate_key"


def test_list_books_pagination(client):
    for i in range(1, 13):
        create_book(client, i)

    r = client.get("/books/", params={"page": 2})
    body = r.json()
    assert r.status_code == 200
    assert [b["title"] for b in body["books"]] == ["Book11", "Book12"]
    assert (body["total"], body["page"], body["pages"]) == (12, 2, 2)

    r = client.get("/books/", params={"page": 9, "page_size": 5})
    assert r.json()["books"] == []

    r = client.get("/books/", params={"page": 0})
    assert r.status_code == 400


def test_search_books(client):
    create_book(client, 1, title="The Hobbit", genre="Fantasy")
    create_book(client, 2, title="Dune", genre="Science Fiction")

    r = client.get("/books/search", params={"term": "fantasy", "field": "genre"})
    assert r.status_code == 200
    assert r.json()["total"] == 1
    assert r.json()["books"][0]["title"] == "The Hobbit"

    r = client.get("/books/search", params={"term": "DUNE"})
    assert [b["title"] for b in r.json()["books"]] == ["Dune"]

    r = client.get("/books/search")
    assert r.status_code == 400
    r = client.get("/books/search", params={"term": "x", "field": "isbn"})
    assert r.status_code == 400


def test_borrow_return_workflow(client, setup_borrower_and_books):
    borrower_id = setup_borrower_and_books["borrower"]["id"]
    book_id = setup_borrower_and_books["books"][0]["id"]

    r = client.post(f"/borrow/{book_id}", json={"borrower_id": borrower_id})
    assert r.status_code == 200
    assert r.json()["available"] is False
    assert r.json()["borrower_id"] == borrower_id

    r = client.get(f"/borrowers/{borrower_id}/books")
    assert [b["id"] for b in r.json()["books"]] == [book_id]

    r = client.post(f"/return/{book_id}", json={"borrower_id": borrower_id})
    assert r.status_code == 200
    assert r.json()["available"] is True
    assert r.json()["borrow_count"] == 1

    r = client.get(f"/borrowers/{borrower_id}/history")
    loans = r.json()["loans"]
    assert r.json()["total"] == 1
    assert loans[0]["book_id"] == book_id
    assert loans[0]["returned_at"] is not None

    r = client.get("/books/statistics")
    assert r.json()["total_borrows"] == 1
    assert r.json()["average_borrows"] == pytest.approx(1 / 6)

    r = client.get(f"/books/{book_id}/statistics")
    assert r.json() == {"id": book_id, "title": "Book1", "borrow_count": 1, "available": True}


def test_borrow_errors(client, setup_borrower_and_books):
    borrower_id = setup_borrower_and_books["borrower"]["id"]
    other = create_borrower(client, 2)
    book_id = setup_borrower_and_books["books"][0]["id"]

    r = client.post(f"/borrow/{book_id}", json={})
    assert r.status_code == 400
    r = client.post("/borrow/999", json={"borrower_id": borrower_id})
    assert r.status_code == 404
    r = client.post(f"/borrow/{book_id}", json={"borrower_id": 999})
    assert r.status_code == 404

    client.post(f"/borrow/{book_id}", json={"borrower_id": borrower_id})
    r = client.post(f"/borrow/{book_id}", json={"borrower_id": other["id"]})
    assert r.status_code == 400
    assert "already borrowed" in r.json()["detail"]

    r = client.post(f"/return/{book_id}", json={"borrower_id": other["id"]})
    assert r.status_code == 400
    assert "not borrowed by this user" in r.text


def test_borrow_limit(client, setup_borrower_and_books):
    borrower_id = setup_borrower_and_books["borrower"]["id"]
    books = setup_borrower_and_books["books"]
    # Borrow 5 books
    for book in books[:5]:
        r = client.post(f"/borrow/{book['id']}", json={"borrower_id": borrower_id})
        assert r.status_code == 200
    # Try to borrow a 6th book
    r = client.post(f"/borrow/{books[5]['id']}", json={"borrower_id": borrower_id})
    assert r.status_code == 400
    assert "limit" in r.text
    assert client.get(f"/books/{books[5]['id']}").json()["available"] is True


def test_delete_guards(client, setup_borrower_and_books):
    borrower_id = setup_borrower_and_books["borrower"]["id"]
    book_id = setup_borrower_and_books["books"][0]["id"]
    client.post(f"/borrow/{book_id}", json={"borrower_id": borrower_id})

    r = client.delete(f"/books/{book_id}")
    assert r.status_code == 409
    assert r.json()["error"] == "conflict"
    r = client.delete(f"/borrowers/{borrower_id}")
    assert r.status_code == 409

    client.post(f"/return/{book_id}", json={"borrower_id": borrower_id})
    assert client.delete(f"/books/{book_id}").status_code == 204
    assert client.delete(f"/borrowers/{borrower_id}").status_code == 204
    assert client.get(f"/borrowers/{borrower_id}").status_code == 404


def test_borrower_crud(client):
    borrower = create_borrower(client, 1, email="Jane@Example.com")
    assert borrower["email"] == "jane@example.com"

    r = client.put(f"/borrowers/{borrower['id']}", json={"last_name": "Smith", "history": [{"book_id": 1}]})
    assert r.status_code == 200
    assert r.json()["last_name"] == "Smith"
    assert r.json()["history"] == []

    r = client.post("/borrowers/", json=borrower_data(2, email="jane@example.com"))
    assert r.status_code == 400
    r = client.post("/borrowers/", json=borrower_data(3, email="nope"))
    assert r.status_code == 400

    r = client.get("/borrowers/")
    assert r.json()["total"] == 1
    assert client.get("/borrowers/42").status_code == 404


def test_default_page_size_setting():
    ledger = Ledger.from_url("sqlite://", default_page_size=3)
    try:
        client = TestClient(create_app(ledger=ledger))
        for n in range(1, 6):
            create_book(client, n)
        r = client.get("/books/")
        assert r.status_code == 200
        assert (len(r.json()["books"]), r.json()["page_size"], r.json()["pages"]) == (3, 3, 2)
    finally:
        ledger.close()


def test_app_built_from_settings_uses_default_page_size():
    client = TestClient(create_app(settings=Settings(database_url="sqlite://", default_page_size=4)))
    try:
        assert client.get("/borrowers/").json()["page_size"] == 4
    finally:
        client.app.state.ledger.close()


def test_importing_main_builds_nothing():
    handlers = list(logging.getLogger().handlers)
    module = importlib.reload(main)
    assert not hasattr(module, "app")
    assert logging.getLogger().handlers == handlers
