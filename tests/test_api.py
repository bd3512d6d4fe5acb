from datetime import date, timedelta

from libraryapp import services
from libraryapp.models import BLOCKED, CopyStatus, Order, Role
from libraryapp.schemas import BookCreate
from conftest import PASSWORD, make_user


def auth(user):
    return (user.username, PASSWORD)


def request_order(client, reader, book_id, order_type="HOME"):
    return client.post(
        "/orders/request",
        json={"book_id": book_id, "type": order_type},
        auth=auth(reader),
    )


# Public endpoints
def test_register_user(client):
    response = client.post(
        "/register",
        json={"username": "newuser", "email": "newuser@example.com", "password": "pw"},
    )
    assert response.status_code == 201
    data = response.json()
    assert data["username"] == "newuser"
    assert data["role"] == "READER"
    assert data["status"] == "ACTIVE"
    assert "password" not in data


def test_register_duplicate_username(client, reader):
    response = client.post(
        "/register",
        json={"username": "reader", "email": "dup@example.com", "password": "pw"},
    )
    assert response.status_code == 409
    assert response.json()["detail"] == "Username already exists"


def test_register_invalid_email(client):
    response = client.post(
        "/register",
        json={"username": "bad", "email": "not-an-email", "password": "pw"},
    )
    assert response.status_code == 422


def test_login(client, reader):
    response = client.post("/login", json={"username": "reader", "password": PASSWORD})
    assert response.status_code == 200
    assert response.json()["id"] == reader.id


def test_login_wrong_password(client, reader):
    response = client.post("/login", json={"username": "reader", "password": "nope"})
    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Basic"


def test_login_blocked_user(client, db_session):
    make_user(db_session, "blocked", Role.READER, status=BLOCKED)
    response = client.post("/login", json={"username": "blocked", "password": PASSWORD})
    assert response.status_code == 401
    assert response.json()["detail"] == "User is not active"


def test_catalog(client, test_book):
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["current_page"] == 1
    assert data["total_pages"] == 1
    assert data["items"][0]["title"] == test_book.title
    assert data["items"][0]["author_full_name"] == "Test Author"


def test_catalog_search_by_field(client, test_book):
    response = client.get("/", params={"field": "genre", "query": "fict"})
    assert len(response.json()["items"]) == 1

    response = client.get("/", params={"field": "author", "query": "tolkien"})
    assert response.json()["items"] == []


def test_book_details_anonymous(client, test_copy):
    response = client.get(f"/book/{test_copy.book_id}")
    assert response.status_code == 200
    data = response.json()
    assert data["available_count"] == 1
    assert data["has_active_order"] is False
    assert data["user_status"] is None


def test_book_details_with_active_order(client, reader, test_copy):
    request_order(client, reader, test_copy.book_id)
    response = client.get(f"/book/{test_copy.book_id}", auth=auth(reader))
    data = response.json()
    assert data["available_count"] == 0
    assert data["has_active_order"] is True
    assert data["user_status"] == "ACTIVE"


def test_book_details_not_found(client):
    response = client.get("/book/999")
    assert response.status_code == 404
    assert response.json()["detail"] == "Book with ID 999 not found"


# Access control
def test_orders_require_authentication(client):
    response = client.get("/orders")
    assert response.status_code == 401


def test_reader_cannot_use_librarian_endpoints(client, reader):
    response = client.get("/librarian/orders", auth=auth(reader))
    assert response.status_code == 403


def test_librarian_cannot_use_admin_endpoints(client, librarian):
    response = client.get("/admin/reports", auth=auth(librarian))
    assert response.status_code == 403


def test_admin_cannot_place_orders(client, admin, test_copy):
    response = request_order(client, admin, test_copy.book_id)
    assert response.status_code == 403


# Order workflow
def test_request_form(client, reader, test_book):
    response = client.get(f"/orders/request/{test_book.id}", auth=auth(reader))
    assert response.status_code == 200
    data = response.json()
    assert data["book"]["id"] == test_book.id
    assert set(data["order_types"]) == {"HOME", "READING_ROOM"}


def test_order_lifecycle(client, db_session, reader, librarian, test_copy):
    response = request_order(client, reader, test_copy.book_id)
    assert response.status_code == 201
    order = response.json()
    assert order["status"] == "PENDING"
    assert order["inventory_number"] == "INV-0001"
    assert order["due_date"] == (date.today() + timedelta(days=14)).isoformat()
    db_session.refresh(test_copy)
    assert test_copy.status == CopyStatus.RESERVED

    due = (date.today() + timedelta(days=7)).isoformat()
    response = client.post(
        "/librarian/orders/confirm",
        json={"order_id": order["id"], "due_date": due},
        auth=auth(librarian),
    )
    assert response.status_code == 200
    assert response.json()["status"] == "ISSUED"
    assert response.json()["due_date"] == due
    db_session.refresh(test_copy)
    assert test_copy.status == CopyStatus.ISSUED

    response = client.post(
        "/librarian/orders/return", json={"order_id": order["id"]}, auth=auth(librarian)
    )
    assert response.status_code == 200
    assert response.json()["status"] == "RETURNED"
    assert response.json()["return_date"] == date.today().isoformat()
    db_session.refresh(test_copy)
    assert test_copy.status == CopyStatus.AVAILABLE


def test_request_without_type(client, reader, test_copy):
    response = client.post(
        "/orders/request", json={"book_id": test_copy.book_id}, auth=auth(reader)
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Order type must not be null"


def test_request_without_available_copies(client, reader, test_book):
    response = request_order(client, reader, test_book.id)
    assert response.status_code == 400
    assert response.json()["detail"] == "No available copies"


def test_second_active_order_for_book(client, db_session, reader, test_copy):
    services.add_copy(db_session, test_copy.book_id)
    request_order(client, reader, test_copy.book_id)
    response = request_order(client, reader, test_copy.book_id, "READING_ROOM")
    assert response.status_code == 409


def test_return_pending_order_fails(client, reader, librarian, test_copy):
    order = request_order(client, reader, test_copy.book_id).json()
    response = client.post(
        "/librarian/orders/return", json={"order_id": order["id"]}, auth=auth(librarian)
    )
    assert response.status_code == 409
    assert response.json()["detail"] == "Only ISSUED orders can be returned"


def test_confirm_unknown_order(client, librarian):
    response = client.post(
        "/librarian/orders/confirm",
        json={"order_id": 123, "due_date": date.today().isoformat()},
        auth=auth(librarian),
    )
    assert response.status_code == 404
    assert response.json()["detail"] == "Order not found"


def test_cancel_order(client, db_session, reader, test_copy):
    order = request_order(client, reader, test_copy.book_id).json()
    response = client.post(f"/orders/cancel/{order['id']}", auth=auth(reader))
    assert response.status_code == 200
    assert response.json()["status"] == "CANCELED"
    assert response.json()["due_date"] is None
    db_session.refresh(test_copy)
    assert test_copy.status == CopyStatus.AVAILABLE


def test_cancel_other_readers_order(client, db_session, reader, test_copy):
    other = make_user(db_session, "other", Role.READER)
    order = request_order(client, reader, test_copy.book_id).json()
    response = client.post(f"/orders/cancel/{order['id']}", auth=auth(other))
    assert response.status_code == 403
    assert response.json()["detail"] == "Unauthorized to cancel this order"


def test_reader_orders_paginated(client, db_session, reader):
    for number in range(1, 4):
        book = services.save_book(db_session, BookCreate(title=f"Book {number}"))
        services.add_copy(db_session, book.id)
        request_order(client, reader, book.id)

    response = client.get("/orders", params={"page": 2, "size": 2}, auth=auth(reader))
    assert response.status_code == 200
    data = response.json()
    assert data["current_page"] == 2
    assert data["total_pages"] == 2
    assert len(data["items"]) == 1


# Librarian views
def test_librarian_lists_orders(client, reader, librarian, test_copy):
    request_order(client, reader, test_copy.book_id)
    response = client.get("/librarian/orders", auth=auth(librarian))
    assert response.status_code == 200
    assert response.json()["items"][0]["username"] == "reader"


def test_librarian_book_copies_show_holder(client, reader, librarian, test_copy):
    request_order(client, reader, test_copy.book_id)
    response = client.get(f"/librarian/books/{test_copy.book_id}", auth=auth(librarian))
    assert response.status_code == 200
    data = response.json()
    assert data["copies"][0]["status"] == "RESERVED"
    assert data["issued_users"] == {str(test_copy.id): "reader"}


def test_librarian_books_include_copies(client, librarian, test_copy):
    response = client.get("/librarian/books", auth=auth(librarian))
    item = response.json()["items"][0]
    assert item["book"]["title"] == "Test Book"
    assert [copy["inventory_number"] for copy in item["copies"]] == ["INV-0001"]


def test_librarian_readers(client, reader, librarian, test_copy):
    request_order(client, reader, test_copy.book_id)
    response = client.get("/librarian/readers", auth=auth(librarian))
    assert response.status_code == 200
    data = response.json()
    assert len(data) == 1
    assert data[0]["user"]["username"] == "reader"
    assert data[0]["orders"][0]["status"] == "PENDING"


# Admin: users
def test_admin_lists_other_users(client, admin, reader, librarian):
    response = client.get("/admin/users", auth=auth(admin))
    assert response.status_code == 200
    usernames = [user["username"] for user in response.json()["items"]]
    assert usernames == ["reader", "librarian"]


def test_admin_updates_user(client, admin, reader):
    response = client.put(
        f"/admin/users/{reader.id}",
        json={
            "email": "promoted@example.com",
            "role": "LIBRARIAN",
            "status": "ACTIVE",
            "password": "",
        },
        auth=auth(admin),
    )
    assert response.status_code == 200
    assert response.json()["role"] == "LIBRARIAN"
    # password left unchanged
    response = client.get("/librarian/orders", auth=auth(reader))
    assert response.status_code == 200


def test_admin_update_rejects_unknown_status(client, admin, reader):
    response = client.put(
        f"/admin/users/{reader.id}",
        json={"email": "x@example.com", "role": "READER", "status": "SUSPENDED"},
        auth=auth(admin),
    )
    assert response.status_code == 422


def test_admin_toggles_user_status(client, admin, reader):
    response = client.post(f"/admin/users/toggle-status/{reader.id}", auth=auth(admin))
    assert response.json()["status"] == "BLOCKED"
    response = client.get("/orders", auth=auth(reader))
    assert response.status_code == 401


def test_admin_deletes_user(client, db_session, admin, reader, librarian, test_copy):
    request_order(client, reader, test_copy.book_id)
    response = client.delete(f"/admin/users/{reader.id}", auth=auth(admin))
    assert response.status_code == 200
    response = client.get(f"/admin/users/{reader.id}", auth=auth(admin))
    assert response.status_code == 404

    assert db_session.query(Order).count() == 0
    response = client.get("/librarian/orders", auth=auth(librarian))
    assert response.json()["items"] == []
    db_session.refresh(test_copy)
    assert test_copy.status == CopyStatus.AVAILABLE


# Admin: books and copies
def test_admin_book_crud(client, admin):
    response = client.post(
        "/admin/books",
        json={"title": "Dune", "author_first_name": "Frank", "author_last_name": "Herbert"},
        auth=auth(admin),
    )
    assert response.status_code == 201
    book_id = response.json()["id"]

    response = client.put(
        f"/admin/books/{book_id}",
        json={"title": "Dune", "genre": "Science Fiction"},
        auth=auth(admin),
    )
    assert response.json()["genre"] == "Science Fiction"

    response = client.get("/admin/books", params={"genre": "science"}, auth=auth(admin))
    assert [book["id"] for book in response.json()["items"]] == [book_id]

    response = client.delete(f"/admin/books/{book_id}", auth=auth(admin))
    assert response.status_code == 200
    response = client.get(f"/admin/books/{book_id}", auth=auth(admin))
    assert response.status_code == 404


def test_admin_book_requires_title(client, admin):
    response = client.post("/admin/books", json={"title": ""}, auth=auth(admin))
    assert response.status_code == 422


def test_admin_copy_management(client, admin, test_copy):
    book_id = test_copy.book_id
    response = client.get(f"/admin/books/{book_id}/copies/new", auth=auth(admin))
    assert response.json()["inventory_number"] == "INV-0002"

    response = client.post(f"/admin/books/{book_id}/copies", json={}, auth=auth(admin))
    assert response.status_code == 201
    copy = response.json()
    assert copy["inventory_number"] == "INV-0002"
    assert copy["book_title"] == "Test Book"

    response = client.post(
        f"/admin/books/{book_id}/copies",
        json={"inventory_number": "INV-0002"},
        auth=auth(admin),
    )
    assert response.status_code == 409

    response = client.put(
        f"/admin/books/copies/{copy['id']}",
        json={"book_id": book_id, "inventory_number": "INV-0002", "status": "LOST"},
        auth=auth(admin),
    )
    assert response.json()["status"] == "LOST"

    response = client.put(
        f"/admin/books/copies/{copy['id']}",
        json={"book_id": book_id, "inventory_number": "INV-0001", "status": "LOST"},
        auth=auth(admin),
    )
    assert response.status_code == 409
    assert response.json()["detail"] == "Inventory number INV-0001 already exists"

    response = client.delete(f"/admin/books/copies/{copy['id']}", auth=auth(admin))
    assert response.json()["book_id"] == book_id

    response = client.get(f"/admin/books/{book_id}", auth=auth(admin))
    assert [c["inventory_number"] for c in response.json()["copies"]] == ["INV-0001"]


def test_admin_cannot_delete_reserved_copy(client, admin, reader, test_copy):
    request_order(client, reader, test_copy.book_id)
    response = client.delete(f"/admin/books/copies/{test_copy.id}", auth=auth(admin))
    assert response.status_code == 409
    assert "reader" in response.json()["detail"]


def test_admin_reports(client, admin, reader, librarian, test_copy):
    order = request_order(client, reader, test_copy.book_id).json()
    client.post(
        "/librarian/orders/confirm",
        json={"order_id": order["id"], "due_date": date.today().isoformat()},
        auth=auth(librarian),
    )

    response = client.get("/admin/reports", auth=auth(admin))
    assert response.status_code == 200
    data = response.json()
    assert data["total_books"] == 1
    assert data["total_copies"] == 1
    assert data["issued_copies"] == 1
    assert data["active_users"] == 3
    assert data["top_books"] == [
        {"title": "Test Book", "author_full_name": "Test Author", "request_count": 1}
    ]
    assert data["top_users"] == [{"username": "reader", "request_count": 1}]
