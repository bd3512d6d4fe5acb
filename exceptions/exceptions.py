from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError, ResponseValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION_SQLSTATE = "23505"


class LibraryException(Exception):
    """Base exception for library-related errors."""

    status_code = 403

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# Lookups
class BookNotFoundError(LibraryException):
    status_code = 404

    def __init__(self, book_id: int):
        self.book_id = book_id
        super().__init__(f"Book with ID {book_id} not found")


class BookCopyNotFoundError(LibraryException):
    status_code = 404

    def __init__(self, copy_id: int):
        self.copy_id = copy_id
        super().__init__(f"Book copy with ID {copy_id} not found")


class OrderNotFoundError(LibraryException):
    status_code = 404

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__("Order not found")


class UserNotFoundError(LibraryException):
    status_code = 404

    def __init__(self, user_ref):
        self.user_ref = user_ref
        super().__init__("User not found")


class RoleNotFoundError(LibraryException):
    status_code = 404

    def __init__(self, role: str):
        self.role = role
        super().__init__(f"Role not found {role}")


# Ordering
class NoAvailableCopiesError(LibraryException):
    status_code = 400

    def __init__(self, book_id: int):
        self.book_id = book_id
        super().__init__("No available copies")


class InvalidOrderTypeError(LibraryException):
    status_code = 400

    def __init__(self, order_type=None):
        if order_type is None:
            super().__init__("Order type must not be null")
        else:
            super().__init__(f"Unknown order type: {order_type}")


class InvalidOrderStatusError(LibraryException):
    """Raised when an order transition is attempted from the wrong status."""

    status_code = 409

    def __init__(self, order_id: int, status, message: str):
        self.order_id = order_id
        self.status = status
        super().__init__(message)


class OrderAccessDeniedError(LibraryException):
    status_code = 403

    def __init__(self, order_id: int, username: str):
        self.order_id = order_id
        self.username = username
        super().__init__("Unauthorized to cancel this order")


class ActiveOrderExistsError(LibraryException):
    status_code = 409

    def __init__(self, book_id: int, username: str):
        self.book_id = book_id
        self.username = username
        super().__init__("You already have an active order for this book")


# Inventory
class CopyInUseError(LibraryException):
    status_code = 409

    def __init__(self, copy_id: int, holder: str, action: str):
        self.copy_id = copy_id
        self.holder = holder
        super().__init__(
            f"Cannot {action} book copy: it is issued or reserved by {holder}"
        )


class DuplicateInventoryNumberError(LibraryException):
    status_code = 409

    def __init__(self, inventory_number: str):
        self.inventory_number = inventory_number
        super().__init__(f"Inventory number {inventory_number} already exists")


# Accounts
class UsernameAlreadyExistsError(LibraryException):
    status_code = 409

    def __init__(self, username: str):
        self.username = username
        super().__init__("Username already exists")


class InvalidCredentialsError(LibraryException):
    status_code = 401

    def __init__(self):
        super().__init__("Invalid username or password")


class UserNotActiveError(LibraryException):
    status_code = 401

    def __init__(self, username: str):
        self.username = username
        super().__init__("User is not active")


class DatabaseError(LibraryException):
    status_code = 500

    def __init__(self, operation: str, details: str):
        super().__init__(f"Database error during {operation}: {details}")


def is_unique_violation(exc: Exception) -> bool:
    """Tell whether a DBAPI error wrapped by SQLAlchemy is a duplicate key."""
    orig = getattr(exc, "orig", exc)
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate == UNIQUE_VIOLATION_SQLSTATE:
        return True
    return "UNIQUE constraint failed" in str(orig)


# Exception handlers
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.error(f"HTTP error {exc.status_code}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Request validation error: {exc.errors()}")
    return JSONResponse(
        status_code=422,
        content={"detail": "Invalid request parameters. Please check your input."},
    )


async def response_validation_exception_handler(
    request: Request, exc: ResponseValidationError
):
    logger.error(f"Response validation error: {exc.errors()}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "The server encountered an unexpected error. Please contact support."
        },
    )


async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={"detail": "An unexpected error occurred. Please contact support."},
    )


async def library_exception_handler(request: Request, exc: LibraryException):
    if exc.status_code >= 500:
        logger.error(f"Library error: {str(exc)}")
    else:
        logger.warning(f"Library error: {str(exc)}")
    headers = None
    if exc.status_code == 401:
        headers = {"WWW-Authenticate": "Basic"}
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc)},
        headers=headers,
    )


def add_exception_handlers(app: FastAPI):
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(
        ResponseValidationError, response_validation_exception_handler
    )
    app.add_exception_handler(Exception, general_exception_handler)
    app.add_exception_handler(LibraryException, library_exception_handler)
