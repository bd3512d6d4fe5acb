from datetime import date
import logging
import re
from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.exc import SQLAlchemyError
from typing import Iterable, List, Optional, Tuple

from libraryapp import models
from exceptions.exceptions import DatabaseError, RoleNotFoundError

logger = logging.getLogger(__name__)

INVENTORY_NUMBER_PATTERN = re.compile(r"^INV-(\d+)\Z", re.ASCII)


def parse_inventory_number(inventory_number: Optional[str]) -> Optional[int]:
    match = INVENTORY_NUMBER_PATTERN.match(inventory_number or "")
    return int(match.group(1)) if match else None


def _inventory_sort_key(copy: models.BookCopy):
    number = parse_inventory_number(copy.inventory_number)
    return (number is None, number or 0, copy.id)


def _order_query(db: Session):
    return db.query(models.Order).options(
        joinedload(models.Order.user),
        joinedload(models.Order.book_copy).joinedload(models.BookCopy.book),
    )


# Books
def search_books(
    db: Session,
    title: Optional[str] = None,
    author: Optional[str] = None,
    genre: Optional[str] = None,
) -> List[models.Book]:
    try:
        query = db.query(models.Book)
        if title and title.strip():
            query = query.filter(func.lower(models.Book.title).like(f"%{title.lower()}%"))
        if author and author.strip():
            pattern = f"%{author.lower()}%"
            query = query.filter(
                or_(
                    func.lower(models.Book.author_first_name).like(pattern),
                    func.lower(models.Book.author_last_name).like(pattern),
                )
            )
        if genre and genre.strip():
            query = query.filter(func.lower(models.Book.genre).like(f"%{genre.lower()}%"))
        return query.order_by(models.Book.id).all()
    except SQLAlchemyError as e:
        logger.error(
            f"Error while searching books - title: {title}, author: {author}, genre: {genre}: {e}"
        )
        return []


def get_book(db: Session, book_id: int) -> Optional[models.Book]:
    try:
        return db.query(models.Book).filter(models.Book.id == book_id).first()
    except SQLAlchemyError as e:
        logger.error(f"Error finding book by id={book_id}: {e}")
        return None


def create_book(db: Session, **fields) -> models.Book:
    db_book = models.Book(**fields)
    db.add(db_book)
    db.flush()
    return db_book


def update_book(db: Session, book: models.Book, **fields) -> models.Book:
    for name, value in fields.items():
        setattr(book, name, value)
    db.flush()
    return book


def delete_book(db: Session, book: models.Book):
    db.delete(book)
    db.flush()


def count_books(db: Session) -> int:
    try:
        return db.query(func.count(models.Book.id)).scalar() or 0
    except SQLAlchemyError as e:
        logger.error(f"Failed to count books: {e}")
        return 0


# Book copies
def find_available_copy(db: Session, book_id: int) -> Optional[models.BookCopy]:
    try:
        return (
            db.query(models.BookCopy)
            .filter(
                models.BookCopy.book_id == book_id,
                models.BookCopy.status == models.CopyStatus.AVAILABLE,
            )
            .order_by(models.BookCopy.id)
            .with_for_update(skip_locked=True)
            .first()
        )
    except SQLAlchemyError as e:
        logger.error(f"Error while finding available copy for bookId={book_id}: {e}")
        return None


def find_copies_by_book_id(db: Session, book_id: int) -> List[models.BookCopy]:
    try:
        copies = (
            db.query(models.BookCopy)
            .options(joinedload(models.BookCopy.book))
            .filter(models.BookCopy.book_id == book_id)
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(f"Error while finding copies for bookId={book_id}: {e}")
        return []
    return sorted(copies, key=_inventory_sort_key)


def get_copy(db: Session, copy_id: int) -> Optional[models.BookCopy]:
    try:
        return (
            db.query(models.BookCopy)
            .options(joinedload(models.BookCopy.book))
            .filter(models.BookCopy.id == copy_id)
            .first()
        )
    except SQLAlchemyError as e:
        logger.error(f"Error while finding book copy with id={copy_id}: {e}")
        return None


def find_last_inventory_number(db: Session, book_id: int) -> Optional[str]:
    try:
        rows = (
            db.query(models.BookCopy.inventory_number)
            .filter(models.BookCopy.book_id == book_id)
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(f"Error while finding last inventory number for bookId={book_id}: {e}")
        return None
    numbers = [row.inventory_number for row in rows]
    if not numbers:
        return None

    def numeric_rank(inventory_number: str):
        number = parse_inventory_number(inventory_number)
        return (number is not None, number or 0)

    return max(numbers, key=numeric_rank)


def count_copies(db: Session) -> int:
    try:
        return db.query(func.count(models.BookCopy.id)).scalar() or 0
    except SQLAlchemyError as e:
        logger.error(f"Failed to count all book copies: {e}")
        return 0


def count_copies_by_status(db: Session, status: models.CopyStatus) -> int:
    try:
        return (
            db.query(func.count(models.BookCopy.id))
            .filter(models.BookCopy.status == status)
            .scalar()
            or 0
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to count book copies with status {status.value}: {e}")
        return 0


def count_available_copies(db: Session, book_id: int) -> int:
    try:
        return (
            db.query(func.count(models.BookCopy.id))
            .filter(
                models.BookCopy.book_id == book_id,
                models.BookCopy.status == models.CopyStatus.AVAILABLE,
            )
            .scalar()
            or 0
        )
    except SQLAlchemyError as e:
        logger.error(f"Error while counting available copies for bookId={book_id}: {e}")
        return 0


def create_copy(
    db: Session,
    book_id: int,
    inventory_number: str,
    status: models.CopyStatus = models.CopyStatus.AVAILABLE,
) -> models.BookCopy:
    db_copy = models.BookCopy(
        book_id=book_id, inventory_number=inventory_number, status=status
    )
    db.add(db_copy)
    db.flush()
    return db_copy


def update_copy(
    db: Session,
    copy: models.BookCopy,
    inventory_number: str,
    status: models.CopyStatus,
) -> models.BookCopy:
    copy.inventory_number = inventory_number
    copy.status = status
    db.flush()
    return copy


def delete_copy(db: Session, copy: models.BookCopy):
    db.delete(copy)
    db.flush()


# Orders
def create_order(
    db: Session,
    user: models.User,
    copy: models.BookCopy,
    order_type: models.OrderType,
    issue_date: date,
    due_date: date,
) -> models.Order:
    db_order = models.Order(
        user=user,
        book_copy=copy,
        order_type=order_type,
        order_status=models.OrderStatus.PENDING,
        issue_date=issue_date,
        due_date=due_date,
    )
    db.add(db_order)
    db.flush()
    return db_order


def get_order(db: Session, order_id: int) -> Optional[models.Order]:
    try:
        return _order_query(db).filter(models.Order.id == order_id).first()
    except SQLAlchemyError as e:
        logger.error(f"Error retrieving order by id={order_id}: {e}")
        raise DatabaseError("fetch", str(e))


def get_orders_by_username(db: Session, username: str) -> List[models.Order]:
    try:
        return (
            _order_query(db)
            .join(models.Order.user)
            .filter(func.lower(models.User.username) == username.lower())
            .order_by(models.Order.issue_date.desc(), models.Order.id.desc())
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(f"Error retrieving orders for username={username}: {e}")
        raise DatabaseError("fetch", str(e))


def get_all_orders(db: Session) -> List[models.Order]:
    try:
        return (
            _order_query(db)
            .order_by(models.Order.issue_date.desc(), models.Order.id.desc())
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to load all orders: {e}")
        raise DatabaseError("fetch", str(e))


def has_active_order_for_book(db: Session, book_id: int, user_id: int) -> bool:
    try:
        match = (
            db.query(models.Order.id)
            .join(models.BookCopy, models.Order.copy_id == models.BookCopy.id)
            .filter(
                models.Order.user_id == user_id,
                models.BookCopy.book_id == book_id,
                models.Order.order_status.in_(models.ACTIVE_ORDER_STATUSES),
            )
            .first()
        )
        return match is not None
    except SQLAlchemyError as e:
        logger.error(
            f"Error checking active order for bookId={book_id} and userId={user_id}: {e}"
        )
        raise DatabaseError("fetch", str(e))


def find_issued_or_reserved(db: Session, copy_id: int) -> Optional[str]:
    try:
        row = (
            db.query(models.User.username)
            .join(models.Order, models.Order.user_id == models.User.id)
            .filter(
                models.Order.copy_id == copy_id,
                models.Order.order_status.in_(models.ACTIVE_ORDER_STATUSES),
            )
            .first()
        )
        return row.username if row else None
    except SQLAlchemyError as e:
        logger.error(f"Failed to find issued user for copyId={copy_id}: {e}")
        raise DatabaseError("fetch", str(e))


def count_orders_by_statuses(
    db: Session, statuses: Iterable[models.OrderStatus]
) -> int:
    statuses = list(statuses)
    if not statuses:
        return 0
    try:
        return (
            db.query(func.count(models.Order.id))
            .filter(models.Order.order_status.in_(statuses))
            .scalar()
            or 0
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to count orders by statuses: {e}")
        raise DatabaseError("count", str(e))


def find_top_requested_books(db: Session, limit: int) -> List[Tuple]:
    request_count = func.count(models.Order.id).label("request_count")
    try:
        return (
            db.query(
                models.Book.id,
                models.Book.title,
                models.Book.author_first_name,
                models.Book.author_last_name,
                models.Book.genre,
                request_count,
            )
            .join(models.BookCopy, models.BookCopy.book_id == models.Book.id)
            .join(models.Order, models.Order.copy_id == models.BookCopy.id)
            .filter(models.Order.order_status.in_(models.COMPLETED_ORDER_STATUSES))
            .group_by(
                models.Book.id,
                models.Book.title,
                models.Book.author_first_name,
                models.Book.author_last_name,
                models.Book.genre,
            )
            .order_by(request_count.desc(), models.Book.id)
            .limit(limit)
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to load top requested books: {e}")
        raise DatabaseError("fetch", str(e))


def find_top_active_users(db: Session, limit: int) -> List[Tuple]:
    order_count = func.count(models.Order.id).label("order_count")
    try:
        return (
            db.query(models.User.id, models.User.username, order_count)
            .join(models.Order, models.Order.user_id == models.User.id)
            .filter(
                models.User.status == models.ACTIVE,
                models.Order.order_status.in_(models.COMPLETED_ORDER_STATUSES),
            )
            .group_by(models.User.id, models.User.username)
            .order_by(order_count.desc(), models.User.id)
            .limit(limit)
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to load top active users: {e}")
        raise DatabaseError("fetch", str(e))


# Users and roles
def get_role(db: Session, role: models.Role) -> models.RoleRecord:
    try:
        record = (
            db.query(models.RoleRecord)
            .filter(models.RoleRecord.name == role.value)
            .first()
        )
    except SQLAlchemyError as e:
        logger.error(f"Error retrieving role ID for role={role.value}: {e}")
        raise DatabaseError("fetch", str(e))
    if record is None:
        logger.error(f"Role not found: {role.value}")
        raise RoleNotFoundError(role.value)
    return record


def create_role(db: Session, role: models.Role) -> models.RoleRecord:
    record = models.RoleRecord(name=role.value)
    db.add(record)
    db.flush()
    return record


def create_user(
    db: Session,
    username: str,
    email: str,
    hashed_password: str,
    status: str,
    role: models.Role,
) -> models.User:
    db_user = models.User(
        username=username,
        email=email,
        password=hashed_password,
        status=status,
        role_record=get_role(db, role),
    )
    db.add(db_user)
    db.flush()
    return db_user


def get_user_by_username(db: Session, username: str) -> Optional[models.User]:
    try:
        return db.query(models.User).filter(models.User.username == username).first()
    except SQLAlchemyError as e:
        logger.error(f"Error finding user by username={username}: {e}")
        raise DatabaseError("fetch", str(e))


def get_user_by_id(db: Session, user_id: int) -> Optional[models.User]:
    try:
        return db.query(models.User).filter(models.User.id == user_id).first()
    except SQLAlchemyError as e:
        logger.error(f"Error finding user by ID: {user_id}: {e}")
        raise DatabaseError("fetch", str(e))


def get_users(db: Session) -> List[models.User]:
    try:
        return db.query(models.User).order_by(models.User.id).all()
    except SQLAlchemyError as e:
        logger.error(f"Failed to load users: {e}")
        raise DatabaseError("fetch", str(e))


def update_user(
    db: Session,
    user: models.User,
    email: str,
    role: models.Role,
    status: str,
    hashed_password: str,
) -> models.User:
    user.email = email
    user.role_record = get_role(db, role)
    user.status = status
    user.password = hashed_password
    db.flush()
    return user


def delete_user(db: Session, user: models.User):
    db.delete(user)
    db.flush()


def count_users_by_status(db: Session, status: str) -> int:
    try:
        return (
            db.query(func.count(models.User.id))
            .filter(models.User.status == status)
            .scalar()
            or 0
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to count users with status {status}: {e}")
        raise DatabaseError("count", str(e))


def find_users_with_active_orders(
    db: Session,
) -> List[Tuple[models.User, List[models.Order]]]:
    try:
        orders = (
            _order_query(db)
            .join(models.Order.user)
            .filter(models.Order.order_status.in_(models.ACTIVE_ORDER_STATUSES))
            .order_by(
                models.User.username,
                models.Order.issue_date.desc(),
                models.Order.id.desc(),
            )
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to load readers with active orders: {e}")
        raise DatabaseError("fetch", str(e))

    grouped = {}
    for order in orders:
        grouped.setdefault(order.user, []).append(order)
    return list(grouped.items())
