from fastapi import FastAPI, Request, status
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
import traceback
from typing import Optional
from .logging import get_logger
from .responses import ResponseBuilder

logger = get_logger()


class AppError(Exception):
    """Base for errors that map onto an API error response."""

    default_error_code = "APP_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_error_code


class DatabaseError(AppError):
    """Custom exception for database-related errors."""

    default_error_code = "DB_ERROR"


class BusinessLogicError(AppError):
    """Raised when an operation conflicts with the current state, e.g. retrying a job that has not failed."""

    default_error_code = "BLOC_ERROR"


class NotFoundError(AppError):
    """Custom exception for resource not found errors."""

    default_error_code = "NOT_FOUND"

    def __init__(
        self, message: str = "Resource not found", error_code: Optional[str] = None
    ):
        super().__init__(message, error_code)


class ConfigurationError(AppError):
    """Raised when a configuration update is rejected before it takes effect."""

    default_error_code = "CONFIG_ERROR"


# exception class -> (HTTP status, meta error_type, log label)
_APP_ERROR_RESPONSES = (
    (DatabaseError, status.HTTP_500_INTERNAL_SERVER_ERROR, "DATABASE_ERROR", "Database Error"),
    (BusinessLogicError, status.HTTP_409_CONFLICT, "BUSINESS_ERROR", "Business Logic Error"),
    (ConfigurationError, status.HTTP_400_BAD_REQUEST, "CONFIGURATION_ERROR", "Configuration Error"),
    (NotFoundError, status.HTTP_404_NOT_FOUND, "NOT_FOUND_ERROR", "Not Found Error"),
)


def _format_validation_errors(errors) -> list:
    return [
        {
            "field": " -> ".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in errors
    ]


def _app_error_handler(status_code: int, error_type: str, label: str):
    async def handler(request: Request, exc: AppError):
        logger.bind(error_code=exc.error_code).error(f"{label}: {exc.message}")

        return ResponseBuilder.error(
            request=request,
            message=exc.message,
            error_code=exc.error_code,
            status_code=status_code,
            meta={"error_type": error_type},
        )

    return handler


def setup_error_handlers(app: FastAPI):
    """Setup custom error handlers."""

    for exc_class, status_code, error_type, label in _APP_ERROR_RESPONSES:
        app.add_exception_handler(
            exc_class, _app_error_handler(status_code, error_type, label)
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        logger.error(f"HTTP Exception: {exc.status_code} - {exc.detail}")
        return ResponseBuilder.error(
            request=request,
            message=str(exc.detail),
            error_code="HTTP_ERROR",
            status_code=exc.status_code,
            meta={"http_status": exc.status_code},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        logger.error(f"Request Validation Error: {exc.errors()}")

        return ResponseBuilder.error(
            request=request,
            message="Request validation failed",
            errors=_format_validation_errors(exc.errors()),
            error_code="VALIDATION_ERROR",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        )

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
        logger.error(f"SQLAlchemy Error: {str(exc)}")

        # Don't expose internal database errors to users
        return ResponseBuilder.error(
            request=request,
            message="A database error occurred",
            error_code="DATABASE_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            meta={"error_type": "SQLALCHEMY_ERROR"},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle all other unhandled exceptions"""
        logger.error(f"Unhandled Exception: {str(exc)}")
        logger.error(f"Traceback: {traceback.format_exc()}")

        return ResponseBuilder.error(
            request=request,
            message="An internal server error occurred",
            error_code="INTERNAL_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            meta={"error_type": "INTERNAL_ERROR"},
        )
