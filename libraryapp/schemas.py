from datetime import date
from pydantic import BaseModel, Field
from typing import Dict, Generic, List, Optional, TypeVar

from libraryapp.models import CopyStatus, OrderStatus, OrderType, Role

T = TypeVar("T")

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class Page(BaseModel, Generic[T]):
    items: List[T]
    current_page: int
    total_pages: int


# Books
class BookBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    author_first_name: Optional[str] = None
    author_last_name: Optional[str] = None
    genre: Optional[str] = None
    description: Optional[str] = None
    cover_url: Optional[str] = None


class BookCreate(BookBase):
    pass


class BookSchema(BookBase):
    id: int
    author_full_name: str

    class Config:
        from_attributes = True


# Copies
class BookCopyCreate(BaseModel):
    inventory_number: Optional[str] = Field(None, min_length=1, max_length=20)
    status: CopyStatus = CopyStatus.AVAILABLE


class BookCopyUpdate(BaseModel):
    book_id: int
    inventory_number: str = Field(..., min_length=1, max_length=20)
    status: CopyStatus


class BookCopySchema(BaseModel):
    id: int
    inventory_number: str
    book_id: int
    book_title: Optional[str] = None
    status: CopyStatus

    class Config:
        from_attributes = True


class NewCopyForm(BaseModel):
    book: BookSchema
    inventory_number: str


class BookWithCopies(BaseModel):
    book: BookSchema
    copies: List[BookCopySchema] = []


class LibrarianBookDetail(BookWithCopies):
    issued_users: Dict[int, str] = {}


class BookDetail(BaseModel):
    book: BookSchema
    available_count: int
    has_active_order: bool = False
    user_status: Optional[str] = None


# Orders
class OrderRequest(BaseModel):
    book_id: int
    type: Optional[OrderType] = None


class OrderConfirm(BaseModel):
    order_id: int
    due_date: date


class OrderReturn(BaseModel):
    order_id: int


class OrderSchema(BaseModel):
    id: int
    book_id: int
    book_title: str
    author_full_name: str
    inventory_number: str
    username: str
    type: OrderType
    status: OrderStatus
    issue_date: date
    due_date: Optional[date] = None
    return_date: Optional[date] = None

    class Config:
        from_attributes = True


class OrderRequestForm(BaseModel):
    book: BookSchema
    order_types: List[OrderType]


# Users
class UserBase(BaseModel):
    username: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., pattern=EMAIL_PATTERN)


class UserCreate(UserBase):
    password: str = Field(..., min_length=1)


class UserLogin(BaseModel):
    username: str
    password: str


class UserUpdate(BaseModel):
    email: str = Field(..., pattern=EMAIL_PATTERN)
    role: Role
    status: str = Field(..., pattern=r"^(ACTIVE|BLOCKED)$")
    password: Optional[str] = None


class UserSchema(UserBase):
    id: int
    status: str
    role: Role

    class Config:
        from_attributes = True


class ReaderOrders(BaseModel):
    user: UserSchema
    orders: List[OrderSchema]


# Reports
class BookStatsSchema(BaseModel):
    title: str
    author_full_name: str
    request_count: int


class UserStatsSchema(BaseModel):
    username: str
    request_count: int


class ReportDashboard(BaseModel):
    total_books: int
    total_copies: int
    issued_copies: int
    completed_orders: int
    active_users: int
    top_books: List[BookStatsSchema]
    top_users: List[UserStatsSchema]
