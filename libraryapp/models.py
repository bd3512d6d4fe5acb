import enum

from sqlalchemy import (
    Column,
    Date,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

ACTIVE = "ACTIVE"
BLOCKED = "BLOCKED"


class Role(str, enum.Enum):
    READER = "READER"
    LIBRARIAN = "LIBRARIAN"
    ADMIN = "ADMIN"


class CopyStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    RESERVED = "RESERVED"
    ISSUED = "ISSUED"
    LOST = "LOST"
    WRITTEN_OFF = "WRITTEN_OFF"


class OrderType(str, enum.Enum):
    READING_ROOM = "READING_ROOM"
    HOME = "HOME"


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    ISSUED = "ISSUED"
    RETURNED = "RETURNED"
    CANCELED = "CANCELED"


ACTIVE_ORDER_STATUSES = (OrderStatus.PENDING, OrderStatus.ISSUED)
COMPLETED_ORDER_STATUSES = (OrderStatus.ISSUED, OrderStatus.RETURNED)


class RoleRecord(Base):
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(20), unique=True, nullable=False)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    email = Column(String(255), nullable=False)
    password = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=ACTIVE)
    role_id = Column(Integer, ForeignKey("roles.id"), nullable=False)

    role_record = relationship("RoleRecord", lazy="joined")
    orders = relationship(
        "Order", back_populates="user", cascade="all, delete-orphan"
    )

    @property
    def role(self) -> Role:
        return Role(self.role_record.name)

    @property
    def is_active(self) -> bool:
        return self.status == ACTIVE


class Book(Base):
    __tablename__ = "books"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    author_first_name = Column(String(100))
    author_last_name = Column(String(100))
    genre = Column(String(100))
    description = Column(Text)
    cover_url = Column(String(500))

    copies = relationship(
        "BookCopy", back_populates="book", cascade="all, delete-orphan"
    )

    @property
    def author_full_name(self) -> str:
        parts = [self.author_first_name, self.author_last_name]
        return " ".join(part for part in parts if part)


class BookCopy(Base):
    __tablename__ = "book_copies"
    __table_args__ = (
        UniqueConstraint("book_id", "inventory_number", name="uq_book_copy_inventory"),
    )

    id = Column(Integer, primary_key=True, index=True)
    inventory_number = Column(String(20), nullable=False)
    book_id = Column(Integer, ForeignKey("books.id", ondelete="CASCADE"), nullable=False)
    status = Column(
        Enum(CopyStatus, native_enum=False, length=20),
        nullable=False,
        default=CopyStatus.AVAILABLE,
    )

    book = relationship("Book", back_populates="copies")
    orders = relationship(
        "Order", back_populates="book_copy", cascade="all, delete-orphan"
    )

    @property
    def book_title(self) -> str:
        return self.book.title if self.book else None


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    copy_id = Column(
        Integer, ForeignKey("book_copies.id", ondelete="CASCADE"), nullable=False
    )
    order_type = Column(Enum(OrderType, native_enum=False, length=20), nullable=False)
    order_status = Column(
        Enum(OrderStatus, native_enum=False, length=20),
        nullable=False,
        default=OrderStatus.PENDING,
    )
    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=True)
    return_date = Column(Date, nullable=True)

    user = relationship("User", back_populates="orders")
    book_copy = relationship("BookCopy", back_populates="orders")

    # Flattened views used by the order schemas
    @property
    def type(self) -> OrderType:
        return self.order_type

    @property
    def status(self) -> OrderStatus:
        return self.order_status

    @property
    def username(self) -> str:
        return self.user.username

    @property
    def inventory_number(self) -> str:
        return self.book_copy.inventory_number

    @property
    def book_id(self) -> int:
        return self.book_copy.book_id

    @property
    def book_title(self) -> str:
        return self.book_copy.book.title

    @property
    def author_full_name(self) -> str:
        return self.book_copy.book.author_full_name
