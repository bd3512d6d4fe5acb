from contextlib import asynccontextmanager
import logging
from fastapi import FastAPI, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional

from exceptions.exceptions import add_exception_handlers
from libraryapp import models, services
from libraryapp.auth import (
    get_optional_user,
    require_admin,
    require_librarian,
    require_reader,
)
from libraryapp.config import settings
from libraryapp.pagination import build_page
from libraryapp.schemas import (
    BookCopyCreate,
    BookCopySchema,
    BookCopyUpdate,
    BookCreate,
    BookDetail,
    BookSchema,
    BookWithCopies,
    LibrarianBookDetail,
    NewCopyForm,
    OrderConfirm,
    OrderRequest,
    OrderRequestForm,
    OrderReturn,
    OrderSchema,
    Page,
    ReaderOrders,
    ReportDashboard,
    UserCreate,
    UserLogin,
    UserSchema,
    UserUpdate,
)
from libraryapp.seed import init_db
from libraryapp.storage import SessionLocal, get_db

# Set up logging
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

SEARCH_FIELDS = ("title", "author", "genre")


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.testing = app.state.testing if hasattr(app.state, "testing") else False

    if not app.state.testing:
        logger.info("Initializing database")
        db = SessionLocal()
        try:
            init_db(db)
        finally:
            db.close()
    yield


app = FastAPI(
    title="Library API",
    lifespan=lifespan,
    description="Catalog, inventory and borrowing orders for a lending library",
    version="1.0.0",
)

add_exception_handlers(app)


def search_by_field(db: Session, field: Optional[str], query: Optional[str]):
    criteria = {name: None for name in SEARCH_FIELDS}
    if field in criteria:
        criteria[field] = query
    return services.search_books(db, **criteria)


# Public catalog and accounts
@app.get("/", response_model=Page[BookSchema])
def show_catalog(
    field: Optional[str] = None,
    query: Optional[str] = None,
    page: int = Query(1, ge=1),
    db: Session = Depends(get_db),
):
    books = search_by_field(db, field, query)
    return build_page(books, page, settings.catalog_page_size)


@app.get("/book/{book_id}", response_model=BookDetail)
def get_book_details(
    book_id: int,
    db: Session = Depends(get_db),
    user: Optional[models.User] = Depends(get_optional_user),
):
    book = services.get_book(db, book_id)
    detail = {
        "book": book,
        "available_count": services.get_available_copies_count(db, book_id),
        "has_active_order": False,
    }
    if user is not None:
        detail["has_active_order"] = services.has_active_order_for_book(
            db, book_id, user.id
        )
        detail["user_status"] = user.status
    return detail


@app.post("/register", response_model=UserSchema, status_code=status.HTTP_201_CREATED)
def register_user(user: UserCreate, db: Session = Depends(get_db)):
    return services.register(db, user)


@app.post("/login", response_model=UserSchema)
def login(credentials: UserLogin, db: Session = Depends(get_db)):
    return services.authenticate(db, credentials.username, credentials.password)


# Reader
@app.get("/orders", response_model=Page[OrderSchema])
def view_orders(
    page: int = Query(1, ge=1),
    size: int = Query(10, ge=1),
    db: Session = Depends(get_db),
    reader: models.User = Depends(require_reader),
):
    orders = services.get_orders_by_username(db, reader.username)
    return build_page(orders, page, size)


@app.get(
    "/orders/request/{book_id}",
    response_model=OrderRequestForm,
    dependencies=[Depends(require_reader)],
)
def show_request_form(book_id: int, db: Session = Depends(get_db)):
    return {"book": services.get_book(db, book_id), "order_types": list(models.OrderType)}


@app.post(
    "/orders/request", response_model=OrderSchema, status_code=status.HTTP_201_CREATED
)
def submit_order(
    request: OrderRequest,
    db: Session = Depends(get_db),
    reader: models.User = Depends(require_reader),
):
    return services.create_order(db, request.book_id, reader.username, request.type)


@app.post("/orders/cancel/{order_id}", response_model=OrderSchema)
def cancel_order(
    order_id: int,
    db: Session = Depends(get_db),
    reader: models.User = Depends(require_reader),
):
    return services.cancel_order(db, order_id, reader.username)


# Librarian
@app.get(
    "/librarian/orders",
    response_model=Page[OrderSchema],
    dependencies=[Depends(require_librarian)],
)
def view_all_orders(page: int = Query(1, ge=1), db: Session = Depends(get_db)):
    return build_page(services.get_all_orders(db), page, settings.page_size)


@app.post(
    "/librarian/orders/confirm",
    response_model=OrderSchema,
    dependencies=[Depends(require_librarian)],
)
def confirm_order(confirmation: OrderConfirm, db: Session = Depends(get_db)):
    return services.confirm_order_issue(db, confirmation.order_id, confirmation.due_date)


@app.post(
    "/librarian/orders/return",
    response_model=OrderSchema,
    dependencies=[Depends(require_librarian)],
)
def mark_returned(order_return: OrderReturn, db: Session = Depends(get_db)):
    return services.mark_as_returned(db, order_return.order_id)


@app.get(
    "/librarian/books",
    response_model=Page[BookWithCopies],
    dependencies=[Depends(require_librarian)],
)
def show_all_books(
    field: Optional[str] = None,
    query: Optional[str] = None,
    page: int = Query(1, ge=1),
    db: Session = Depends(get_db),
):
    result = build_page(search_by_field(db, field, query), page, settings.page_size)
    result["items"] = [
        {"book": book, "copies": services.get_copies(db, book.id)}
        for book in result["items"]
    ]
    return result


@app.get(
    "/librarian/books/{book_id}",
    response_model=LibrarianBookDetail,
    dependencies=[Depends(require_librarian)],
)
def view_book_copies(book_id: int, db: Session = Depends(get_db)):
    book = services.get_book(db, book_id)
    copies = services.get_copies(db, book_id)
    issued_users = {}
    for copy in copies:
        holder = services.get_issued_or_reserved(db, copy.id)
        if holder is not None:
            issued_users[copy.id] = holder
    return {"book": book, "copies": copies, "issued_users": issued_users}


@app.get(
    "/librarian/readers",
    response_model=List[ReaderOrders],
    dependencies=[Depends(require_librarian)],
)
def show_readers_orders(db: Session = Depends(get_db)):
    return [
        {"user": user, "orders": orders}
        for user, orders in services.get_readers_with_active_orders(db)
    ]


# Admin: users
@app.get("/admin/users", response_model=Page[UserSchema])
def list_users(
    page: int = Query(1, ge=1),
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
):
    users = [user for user in services.get_users(db) if user.username != admin.username]
    return build_page(users, page, settings.page_size)


@app.get(
    "/admin/users/{user_id}",
    response_model=UserSchema,
    dependencies=[Depends(require_admin)],
)
def show_user(user_id: int, db: Session = Depends(get_db)):
    return services.get_user(db, user_id)


@app.put(
    "/admin/users/{user_id}",
    response_model=UserSchema,
    dependencies=[Depends(require_admin)],
)
def update_user(user_id: int, user_update: UserUpdate, db: Session = Depends(get_db)):
    return services.update_user(
        db,
        user_id,
        email=user_update.email,
        role=user_update.role,
        status=user_update.status,
        password=user_update.password,
    )


@app.post(
    "/admin/users/toggle-status/{user_id}",
    response_model=UserSchema,
    dependencies=[Depends(require_admin)],
)
def toggle_user_status(user_id: int, db: Session = Depends(get_db)):
    return services.toggle_status(db, user_id)


@app.delete(
    "/admin/users/{user_id}", response_model=dict, dependencies=[Depends(require_admin)]
)
def delete_user(user_id: int, db: Session = Depends(get_db)):
    services.delete_user(db, user_id)
    return {"message": f"User {user_id} deleted"}


# Admin: books and copies
@app.get(
    "/admin/books",
    response_model=Page[BookSchema],
    dependencies=[Depends(require_admin)],
)
def show_book_list(
    title: Optional[str] = None,
    author: Optional[str] = None,
    genre: Optional[str] = None,
    page: int = Query(1, ge=1),
    db: Session = Depends(get_db),
):
    books = services.search_books(db, title, author, genre)
    return build_page(books, page, settings.page_size)


@app.post(
    "/admin/books",
    response_model=BookSchema,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin)],
)
def add_book(book: BookCreate, db: Session = Depends(get_db)):
    return services.save_book(db, book)


@app.get(
    "/admin/books/{book_id}",
    response_model=BookWithCopies,
    dependencies=[Depends(require_admin)],
)
def view_book_details(book_id: int, db: Session = Depends(get_db)):
    book = services.get_book(db, book_id)
    return {"book": book, "copies": services.get_copies(db, book_id)}


@app.put(
    "/admin/books/{book_id}",
    response_model=BookSchema,
    dependencies=[Depends(require_admin)],
)
def update_book(book_id: int, book: BookCreate, db: Session = Depends(get_db)):
    return services.update_book(db, book_id, book)


@app.delete(
    "/admin/books/{book_id}", response_model=dict, dependencies=[Depends(require_admin)]
)
def delete_book(book_id: int, db: Session = Depends(get_db)):
    services.delete_book(db, book_id)
    return {"message": f"Book {book_id} deleted"}


@app.get(
    "/admin/books/{book_id}/copies/new",
    response_model=NewCopyForm,
    dependencies=[Depends(require_admin)],
)
def show_add_copy_form(book_id: int, db: Session = Depends(get_db)):
    book = services.get_book(db, book_id)
    return {
        "book": book,
        "inventory_number": services.generate_next_inventory_number(db, book_id),
    }


@app.post(
    "/admin/books/{book_id}/copies",
    response_model=BookCopySchema,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin)],
)
def save_new_copy(book_id: int, copy: BookCopyCreate, db: Session = Depends(get_db)):
    return services.add_copy(db, book_id, copy.inventory_number, copy.status)


@app.put(
    "/admin/books/copies/{copy_id}",
    response_model=BookCopySchema,
    dependencies=[Depends(require_admin)],
)
def update_copy(copy_id: int, copy: BookCopyUpdate, db: Session = Depends(get_db)):
    return services.update_copy(
        db, copy_id, copy.book_id, copy.inventory_number, copy.status
    )


@app.delete(
    "/admin/books/copies/{copy_id}",
    response_model=dict,
    dependencies=[Depends(require_admin)],
)
def delete_copy(copy_id: int, db: Session = Depends(get_db)):
    book_id = services.delete_copy(db, copy_id)
    return {"message": f"Copy {copy_id} deleted", "book_id": book_id}


# Admin: reports
@app.get(
    "/admin/reports",
    response_model=ReportDashboard,
    dependencies=[Depends(require_admin)],
)
def show_report_dashboard(db: Session = Depends(get_db)):
    return services.build_report(db)


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting library server on port {settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port)
