"""
Error taxonomy for the collaboration engine and its HTTP exception handlers
"""
from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.exc import SQLAlchemyError
import traceback
from datetime import datetime
from typing import Optional
from loguru import logger

from formsync.core.config import get_settings


class CollaborationError(Exception):
    """Base class for every failure surfaced to a collaborating session"""
    status_code = 500
    error_code = "COLLABORATION_ERROR"

    def __init__(self, message: str, error_code: str = None, status_code: int = None):
        self.message = message
        if error_code:
            self.error_code = error_code
        if status_code:
            self.status_code = status_code
        super().__init__(message)

    def to_payload(self) -> dict:
        """Body of the `error` socket event"""
        return {"message": self.message, "code": self.error_code}


class AuthenticationError(CollaborationError):
    """Missing, invalid or expired credential"""
    status_code = 401
    error_code = "AUTHENTICATION_ERROR"

    def __init__(self, message: str = "Authentication error: Invalid token"):
        super().__init__(message)


class NotFoundError(CollaborationError):
    """Group, field, form or response is absent"""
    status_code = 404
    error_code = "NOT_FOUND"


class InactiveError(NotFoundError):
    """Group or its parent form has been deactivated"""
    status_code = 410
    error_code = "INACTIVE"


class LockConflictError(CollaborationError):
    """Field is held by another participant"""
    status_code = 409
    error_code = "LOCK_CONFLICT"

    def __init__(self, field_id: str, holder: str, reason: str = "Field already locked"):
        self.field_id = field_id
        self.holder = holder
        self.reason = reason
        super().__init__(f"Field is locked by {holder}")

    def to_payload(self) -> dict:
        """Body of the `lock-failed` socket event"""
        return {"fieldId": self.field_id, "reason": self.reason, "lockedBy": self.holder}


class InvalidValueError(CollaborationError):
    """Value failed the type or length check of its field"""
    status_code = 422
    error_code = "INVALID_VALUE"

    def __init__(self, message: str, field_id: Optional[str] = None):
        self.field_id = field_id
        super().__init__(message)

    def to_payload(self) -> dict:
        payload = super().to_payload()
        if self.field_id:
            payload["fieldId"] = self.field_id
        return payload


class InvalidPayloadError(CollaborationError):
    """Socket event payload does not match its schema"""
    status_code = 400
    error_code = "INVALID_PAYLOAD"


class StorageFailureError(CollaborationError):
    """The relational store rejected or failed an operation"""
    status_code = 503
    error_code = "STORAGE_FAILURE"

    def __init__(self, message: str = "Storage temporarily unavailable", cause: Exception = None):
        self.cause = cause
        super().__init__(message)


def create_error_response(
    status_code: int,
    message: str,
    error_code: str = None,
    details: dict = None,
    request_id: str = None
) -> JSONResponse:
    """Create standardized error response"""
    settings = get_settings()

    error_response = {
        "error": {
            "message": message,
            "status_code": status_code,
            "timestamp": datetime.utcnow().isoformat(),
        }
    }

    if error_code:
        error_response["error"]["error_code"] = error_code

    if details and settings.environment != "production":
        error_response["error"]["details"] = details

    if request_id:
        error_response["error"]["request_id"] = request_id

    return JSONResponse(
        status_code=status_code,
        content=error_response
    )


# Exception handlers
async def collaboration_error_handler(request: Request, exc: CollaborationError) -> JSONResponse:
    """Handle collaboration errors raised from HTTP routes"""
    logger.warning(f"Collaboration Error: {exc.message} (Status: {exc.status_code})")

    return create_error_response(
        status_code=exc.status_code,
        message=exc.message,
        error_code=exc.error_code,
        request_id=getattr(request.state, 'request_id', None)
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions"""
    logger.warning(f"HTTP Exception: {exc.detail} (Status: {exc.status_code})")

    return create_error_response(
        status_code=exc.status_code,
        message=exc.detail or "An error occurred",
        error_code="HTTP_ERROR",
        request_id=getattr(request.state, 'request_id', None)
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors"""
    logger.warning(f"Validation Error: {exc.errors()}")

    formatted_errors = []
    for error in exc.errors():
        formatted_errors.append({
            "field": " -> ".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        })

    return create_error_response(
        status_code=422,
        message="Validation failed",
        error_code="VALIDATION_ERROR",
        details={"validation_errors": formatted_errors},
        request_id=getattr(request.state, 'request_id', None)
    )


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle database errors"""
    settings = get_settings()

    logger.error(f"Database Error: {str(exc)}")

    details = None
    if settings.environment == "development":
        details = {"database_error": str(exc)}

    return create_error_response(
        status_code=StorageFailureError.status_code,
        message="Database temporarily unavailable. Please try again later.",
        error_code=StorageFailureError.error_code,
        details=details,
        request_id=getattr(request.state, 'request_id', None)
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle all other unhandled exceptions"""
    settings = get_settings()

    error_id = f"ERR_{datetime.utcnow().strftime('%Y%m%d_%H%M%S')}_{id(exc)}"

    logger.error(
        f"Unhandled Exception [{error_id}]: {str(exc)}\n"
        f"Request: {request.method} {request.url}\n"
        f"Traceback: {''.join(traceback.format_exception(type(exc), exc, exc.__traceback__))}"
    )

    details = None
    if settings.environment == "development":
        details = {
            "error_id": error_id,
            "exception_type": type(exc).__name__,
            "exception_message": str(exc)
        }

    return create_error_response(
        status_code=500,
        message="An internal error occurred",
        error_code="INTERNAL_ERROR",
        details=details,
        request_id=getattr(request.state, 'request_id', None)
    )


def register_exception_handlers(app):
    """Attach every handler above to a FastAPI application"""
    app.add_exception_handler(CollaborationError, collaboration_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)
