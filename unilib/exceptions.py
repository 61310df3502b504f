from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError, ResponseValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "internal error"


class LibraryException(Exception):
    """Base exception for library-related errors.

    The message of every subclass is stable and safe to show to end users.
    """

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# Not found


class UserNotFoundError(LibraryException):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, user_id=None):
        self.user_id = user_id
        super().__init__("user not found")


class ItemNotFoundError(LibraryException):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, item_id=None):
        self.item_id = item_id
        super().__init__("item not found")


class LoanNotFoundError(LibraryException):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, loan_id=None):
        self.loan_id = loan_id
        super().__init__("loan not found")


# Validation


class InvalidNationalIdError(LibraryException):
    def __init__(self, national_id: str = ""):
        self.national_id = national_id
        super().__init__("invalid national id")


class InvalidEmailError(LibraryException):
    def __init__(self, email: str = ""):
        self.email = email
        super().__init__("invalid email")


class InvalidQuantityError(LibraryException):
    def __init__(self, new_total: int, borrowed: int = None):
        self.new_total = new_total
        self.borrowed = borrowed
        if borrowed is None:
            super().__init__(f"invalid quantity: {new_total}")
        else:
            super().__init__(
                f"cannot reduce to {new_total}: {borrowed} copies on loan"
            )


# State conflicts


class UserInactiveError(LibraryException):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, user_id=None):
        self.user_id = user_id
        super().__init__("user inactive")


class ItemNotAvailableError(LibraryException):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, item_id=None):
        self.item_id = item_id
        super().__init__("item not available for loan")


class LoanLimitReachedError(LibraryException):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"limit of {limit} loans reached")


class LoanAlreadyReturnedError(LibraryException):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, loan_id=None):
        self.loan_id = loan_id
        super().__init__("loan already returned")


class UserHasActiveLoansError(LibraryException):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, user_id=None, count: int = 0):
        self.user_id = user_id
        self.count = count
        super().__init__("user has active loans")


class ItemHasActiveLoansError(LibraryException):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, item_id=None, count: int = 0):
        self.item_id = item_id
        self.count = count
        super().__init__("item has active loans")


class DuplicateNationalIdError(LibraryException):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, national_id: str = ""):
        self.national_id = national_id
        super().__init__("national id already registered")


class DuplicateItemCodeError(LibraryException):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, code: str = ""):
        self.code = code
        super().__init__("item code already registered")


class DuplicateIsbnError(LibraryException):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, isbn: str = ""):
        self.isbn = isbn
        super().__init__("isbn already registered")


# Infrastructure


class DatabaseError(LibraryException):
    """Storage failure. The details are for logs only, never for callers."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, operation: str, details: str):
        self.operation = operation
        self.details = details
        super().__init__(f"Database error during {operation}: {details}")


class InternalError(LibraryException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str = INTERNAL_ERROR_MESSAGE):
        super().__init__(message)


class QueryError(InternalError):
    def __init__(self, subject: str):
        self.subject = subject
        super().__init__(f"error querying {subject}")


def _envelope(error: str) -> dict:
    return {"success": False, "data": None, "error": error}


# Exception handlers
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.error(f"HTTP error {exc.status_code}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content=_envelope(str(exc.detail)))


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Request validation error: {exc.errors()}")
    return JSONResponse(
        status_code=422,
        content=_envelope("Invalid request parameters. Please check your input."),
    )


async def response_validation_exception_handler(
    request: Request, exc: ResponseValidationError
):
    logger.error(f"Response validation error: {exc.errors()}")
    return JSONResponse(status_code=500, content=_envelope(INTERNAL_ERROR_MESSAGE))


async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error: {str(exc)}")
    return JSONResponse(status_code=500, content=_envelope(INTERNAL_ERROR_MESSAGE))


def add_exception_handlers(app: FastAPI):
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(
        ResponseValidationError, response_validation_exception_handler
    )
    app.add_exception_handler(Exception, general_exception_handler)
