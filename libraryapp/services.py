"""Business rules of the library.

Every write goes through :func:`libraryapp.storage.transaction`, so an order
row and the copy row it reserves, issues or releases are committed together.
Order and copy statuses move in lockstep::

    order PENDING   <-> copy RESERVED
    order ISSUED    <-> copy ISSUED
    order RETURNED  --> copy AVAILABLE
    order CANCELED  --> copy AVAILABLE
"""

from datetime import date, timedelta
import logging
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import Iterable, List, Optional, Tuple
import bcrypt

from libraryapp import crud, models, schemas
from libraryapp.config import settings
from libraryapp.storage import transaction
from exceptions.exceptions import (
    ActiveOrderExistsError,
    BookCopyNotFoundError,
    BookNotFoundError,
    CopyInUseError,
    DatabaseError,
    DuplicateInventoryNumberError,
    InvalidCredentialsError,
    InvalidOrderStatusError,
    InvalidOrderTypeError,
    NoAvailableCopiesError,
    OrderAccessDeniedError,
    OrderNotFoundError,
    UserNotActiveError,
    UserNotFoundError,
    UsernameAlreadyExistsError,
    is_unique_violation,
)

logger = logging.getLogger(__name__)

INVENTORY_FORMAT = "INV-{:04d}"

LOAN_PERIODS = {
    models.OrderType.HOME: timedelta(days=14),
    models.OrderType.READING_ROOM: timedelta(days=1),
}


# Passwords
def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


# Books
def search_books(
    db: Session,
    title: Optional[str] = None,
    author: Optional[str] = None,
    genre: Optional[str] = None,
) -> List[models.Book]:
    return crud.search_books(db, title, author, genre)


def get_book(db: Session, book_id: int) -> models.Book:
    book = crud.get_book(db, book_id)
    if book is None:
        raise BookNotFoundError(book_id)
    return book


def save_book(db: Session, item: schemas.BookCreate) -> models.Book:
    with transaction(db):
        book = crud.create_book(db, **item.model_dump())
    logger.info(f"Saved book id={book.id} title={book.title!r}")
    return book


def update_book(db: Session, book_id: int, item: schemas.BookCreate) -> models.Book:
    book = get_book(db, book_id)
    with transaction(db):
        crud.update_book(db, book, **item.model_dump())
    return book


def delete_book(db: Session, book_id: int):
    book = get_book(db, book_id)
    with transaction(db):
        crud.delete_book(db, book)
    logger.info(f"Deleted book id={book_id}")


def count_books(db: Session) -> int:
    return crud.count_books(db)


# Book copies
def get_available_copies_count(db: Session, book_id: int) -> int:
    return crud.count_available_copies(db, book_id)


def get_copies(db: Session, book_id: int) -> List[models.BookCopy]:
    return crud.find_copies_by_book_id(db, book_id)


def get_copy(db: Session, copy_id: int) -> models.BookCopy:
    copy = crud.get_copy(db, copy_id)
    if copy is None:
        raise BookCopyNotFoundError(copy_id)
    return copy


def generate_next_inventory_number(db: Session, book_id: int) -> str:
    last = crud.find_last_inventory_number(db, book_id)
    next_number = 1
    if last is not None:
        number = crud.parse_inventory_number(last)
        if number is None:
            logger.warning(f"Invalid inventory number format: {last}")
        else:
            next_number = number + 1
    return INVENTORY_FORMAT.format(next_number)


def _raise_for_integrity_error(e: IntegrityError, inventory_number: str):
    if is_unique_violation(e):
        logger.warning(f"Duplicate inventory number: {inventory_number}")
        raise DuplicateInventoryNumberError(inventory_number) from e
    logger.error(f"Unexpected integrity error: {e}")
    raise DatabaseError("save", str(e)) from e


def add_copy(
    db: Session,
    book_id: int,
    inventory_number: Optional[str] = None,
    status: models.CopyStatus = models.CopyStatus.AVAILABLE,
) -> models.BookCopy:
    get_book(db, book_id)
    if not inventory_number:
        inventory_number = generate_next_inventory_number(db, book_id)
    try:
        with transaction(db):
            copy = crud.create_copy(db, book_id, inventory_number, status)
    except IntegrityError as e:
        _raise_for_integrity_error(e, inventory_number)
    logger.info(f"Added copy {inventory_number} to book id={book_id}")
    return copy


def _ensure_copy_not_in_use(db: Session, copy_id: int, action: str):
    holder = crud.find_issued_or_reserved(db, copy_id)
    if holder is not None:
        logger.warning(f"Refused to {action} copy id={copy_id}: held by {holder}")
        raise CopyInUseError(copy_id, holder, action)


def update_copy(
    db: Session,
    copy_id: int,
    book_id: int,
    inventory_number: str,
    status: models.CopyStatus,
) -> models.BookCopy:
    get_book(db, book_id)
    copy = get_copy(db, copy_id)
    _ensure_copy_not_in_use(db, copy_id, "edit")
    try:
        with transaction(db):
            crud.update_copy(db, copy, inventory_number, status)
    except IntegrityError as e:
        _raise_for_integrity_error(e, inventory_number)
    return copy


def delete_copy(db: Session, copy_id: int) -> int:
    """Delete a copy that nobody holds and return the id of its book."""
    copy = get_copy(db, copy_id)
    _ensure_copy_not_in_use(db, copy_id, "delete")
    book_id = copy.book_id
    with transaction(db):
        crud.delete_copy(db, copy)
    logger.info(f"Deleted copy id={copy_id} of book id={book_id}")
    return book_id


def count_copies(db: Session) -> int:
    return crud.count_copies(db)


def count_copies_by_status(db: Session, status: models.CopyStatus) -> int:
    return crud.count_copies_by_status(db, status)


# Orders
def calculate_due_date(order_type: models.OrderType, issue_date: date) -> date:
    if order_type is None:
        logger.error("Order type must not be null")
        raise InvalidOrderTypeError()
    if order_type not in LOAN_PERIODS:
        logger.error(f"Unknown order type: {order_type}")
        raise InvalidOrderTypeError(order_type)
    return issue_date + LOAN_PERIODS[order_type]


def _get_order(db: Session, order_id: int, context: str) -> models.Order:
    order = crud.get_order(db, order_id)
    if order is None:
        logger.warning(f"Order not found with id={order_id} ({context})")
        raise OrderNotFoundError(order_id)
    return order


def create_order(
    db: Session, book_id: int, username: str, order_type: Optional[models.OrderType]
) -> models.Order:
    user = crud.get_user_by_username(db, username)
    if user is None:
        logger.warning(f"User '{username}' not found when creating order")
        raise UserNotFoundError(username)

    issue_date = date.today()
    due_date = calculate_due_date(order_type, issue_date)

    if crud.has_active_order_for_book(db, book_id, user.id):
        logger.warning(f"User '{username}' already has an active order for bookId={book_id}")
        raise ActiveOrderExistsError(book_id, username)

    with transaction(db):
        copy = crud.find_available_copy(db, book_id)
        if copy is None:
            logger.warning(f"No available copies for bookId={book_id}")
            raise NoAvailableCopiesError(book_id)
        order = crud.create_order(db, user, copy, order_type, issue_date, due_date)
        copy.status = models.CopyStatus.RESERVED
    logger.info(
        f"Order id={order.id} created by '{username}' for copy {copy.inventory_number}"
    )
    return order


def confirm_order_issue(db: Session, order_id: int, due_date: date) -> models.Order:
    order = _get_order(db, order_id, f"confirm, due date={due_date}")
    if order.order_status != models.OrderStatus.PENDING:
        logger.warning(
            f"Librarian tried to confirm order ID={order_id} which is not in PENDING state, "
            f"current status: {order.order_status.value}"
        )
        raise InvalidOrderStatusError(
            order_id, order.order_status, "Order is not in PENDING status"
        )
    with transaction(db):
        order.order_status = models.OrderStatus.ISSUED
        order.due_date = due_date
        order.book_copy.status = models.CopyStatus.ISSUED
    logger.info(f"Order id={order_id} issued until {due_date}")
    return order


def mark_as_returned(db: Session, order_id: int) -> models.Order:
    order = _get_order(db, order_id, "return")
    if order.order_status != models.OrderStatus.ISSUED:
        logger.warning(
            f"Attempt to return order not in ISSUED status: id={order_id}, "
            f"status={order.order_status.value}"
        )
        raise InvalidOrderStatusError(
            order_id, order.order_status, "Only ISSUED orders can be returned"
        )
    with transaction(db):
        order.order_status = models.OrderStatus.RETURNED
        order.return_date = date.today()
        order.book_copy.status = models.CopyStatus.AVAILABLE
    logger.info(f"Order id={order_id} returned")
    return order


def cancel_order(db: Session, order_id: int, username: str) -> models.Order:
    order = _get_order(db, order_id, f"cancel, requested by user={username}")
    if order.user.username != username:
        logger.warning(f"User '{username}' tried to cancel someone else's order ID={order_id}")
        raise OrderAccessDeniedError(order_id, username)
    if order.order_status != models.OrderStatus.PENDING:
        logger.warning(
            f"User '{username}' tried to cancel non-pending order ID={order_id} "
            f"with status={order.order_status.value}"
        )
        raise InvalidOrderStatusError(
            order_id, order.order_status, "Only pending orders can be canceled"
        )
    with transaction(db):
        order.order_status = models.OrderStatus.CANCELED
        order.due_date = None
        order.book_copy.status = models.CopyStatus.AVAILABLE
    logger.info(f"Order id={order_id} canceled by '{username}'")
    return order


def get_orders_by_username(db: Session, username: str) -> List[models.Order]:
    return crud.get_orders_by_username(db, username)


def get_all_orders(db: Session) -> List[models.Order]:
    return crud.get_all_orders(db)


def get_issued_or_reserved(db: Session, copy_id: int) -> Optional[str]:
    return crud.find_issued_or_reserved(db, copy_id)


def has_active_order_for_book(db: Session, book_id: int, user_id: int) -> bool:
    return crud.has_active_order_for_book(db, book_id, user_id)


def get_count_by_statuses(db: Session, statuses: Iterable[models.OrderStatus]) -> int:
    return crud.count_orders_by_statuses(db, statuses)


def get_top_requested_books(db: Session, limit: int) -> List[schemas.BookStatsSchema]:
    stats = []
    for row in crud.find_top_requested_books(db, limit):
        author = " ".join(part for part in (row.author_first_name, row.author_last_name) if part)
        stats.append(
            schemas.BookStatsSchema(
                title=row.title, author_full_name=author, request_count=row.request_count
            )
        )
    return stats


def get_top_active_users(db: Session, limit: int) -> List[schemas.UserStatsSchema]:
    return [
        schemas.UserStatsSchema(username=row.username, request_count=row.order_count)
        for row in crud.find_top_active_users(db, limit)
    ]


# Users
def register(db: Session, user: schemas.UserCreate) -> models.User:
    try:
        with transaction(db):
            db_user = crud.create_user(
                db,
                username=user.username,
                email=user.email,
                hashed_password=hash_password(user.password),
                status=models.ACTIVE,
                role=models.Role.READER,
            )
    except IntegrityError as e:
        if is_unique_violation(e):
            logger.warning(f"Username already exists: {user.username}")
            raise UsernameAlreadyExistsError(user.username) from e
        raise DatabaseError("create", str(e)) from e
    logger.info(f"Registered reader '{db_user.username}'")
    return db_user


def authenticate(db: Session, username: str, password: str) -> models.User:
    user = crud.get_user_by_username(db, username)
    if user is None or not verify_password(password, user.password):
        logger.warning(f"Failed login for '{username}'")
        raise InvalidCredentialsError()
    if not user.is_active:
        logger.warning(f"Blocked user '{username}' tried to log in")
        raise UserNotActiveError(username)
    return user


def get_user(db: Session, user_id: int) -> models.User:
    user = crud.get_user_by_id(db, user_id)
    if user is None:
        raise UserNotFoundError(user_id)
    return user


def get_user_by_username(db: Session, username: str) -> Optional[models.User]:
    return crud.get_user_by_username(db, username)


def get_users(db: Session) -> List[models.User]:
    return crud.get_users(db)


def update_user(
    db: Session,
    user_id: int,
    email: str,
    role: models.Role,
    status: str,
    password: Optional[str] = None,
) -> models.User:
    user = crud.get_user_by_id(db, user_id)
    if user is None:
        logger.warning(f"Attempted to update non-existent user ID={user_id}")
        raise UserNotFoundError(user_id)
    hashed_password = user.password
    if password is not None and password.strip():
        hashed_password = hash_password(password)
    with transaction(db):
        crud.update_user(db, user, email, role, status, hashed_password)
    return user


def toggle_status(db: Session, user_id: int) -> models.User:
    user = get_user(db, user_id)
    new_status = models.BLOCKED if user.status == models.ACTIVE else models.ACTIVE
    return update_user(db, user_id, user.email, user.role, new_status)


def delete_user(db: Session, user_id: int):
    user = get_user(db, user_id)
    with transaction(db):
        # release copies held by the user's active orders
        for order in user.orders:
            if order.order_status in models.ACTIVE_ORDER_STATUSES:
                order.book_copy.status = models.CopyStatus.AVAILABLE
        crud.delete_user(db, user)
    logger.info(f"Deleted user id={user_id}")


def count_users_by_status(db: Session, status: str) -> int:
    return crud.count_users_by_status(db, status)


def get_readers_with_active_orders(
    db: Session,
) -> List[Tuple[models.User, List[models.Order]]]:
    return crud.find_users_with_active_orders(db)


# Reports
def build_report(db: Session) -> schemas.ReportDashboard:
    return schemas.ReportDashboard(
        total_books=count_books(db),
        total_copies=count_copies(db),
        issued_copies=count_copies_by_status(db, models.CopyStatus.ISSUED),
        completed_orders=get_count_by_statuses(db, [models.OrderStatus.RETURNED]),
        active_users=count_users_by_status(db, models.ACTIVE),
        top_books=get_top_requested_books(db, settings.top_books_limit),
        top_users=get_top_active_users(db, settings.top_users_limit),
    )
