"""
lms/errors.py
API error contract and the mapping from domain exceptions to it.

ERROR RESPONSE STRUCTURE:
{
    "success": false,
    "error": "ErrorType",
    "message": "Human-readable description",
    "code": "UNIQUE_ERROR_CODE",
    "details": {} (optional)
}

HTTP STATUS CODE DISCIPLINE:
- 400: Invalid input / malformed request
- 403: Attempt not allowed (eligibility)
- 404: Resource does not exist
- 409: Conflicting state (invalid transition, duplicate enrollment)
- 410: Invitation expired
- 422: Validation error (Pydantic / domain validation)
- 500: NEVER caused by user input (internal only)
"""
import logging
import uuid
from typing import Optional, Dict, Any

from fastapi import status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from lms import exceptions as domain

logger = logging.getLogger(__name__)


class ErrorCode:
    """Unique error codes for machine-readable error handling"""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"

    NOT_FOUND = "NOT_FOUND"

    INELIGIBLE_ATTEMPT = "INELIGIBLE_ATTEMPT"
    MAX_ATTEMPTS_REACHED = "MAX_ATTEMPTS_REACHED"

    INVALID_TRANSITION = "INVALID_TRANSITION"
    ALREADY_ENROLLED = "ALREADY_ENROLLED"
    COURSE_NOT_PUBLISHED = "COURSE_NOT_PUBLISHED"
    INVITATION_NOT_PENDING = "INVITATION_NOT_PENDING"
    INVITATION_EXPIRED = "INVITATION_EXPIRED"

    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorResponse(BaseModel):
    """Standard error response model"""
    success: bool = False
    error: str
    message: str
    code: str
    details: Optional[Dict[str, Any]] = None


class APIError(Exception):
    """Base API exception with consistent structure"""

    def __init__(
        self,
        status_code: int,
        error: str,
        message: str,
        code: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.status_code = status_code
        self.error = error
        self.message = message
        self.code = code
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return ErrorResponse(
            error=self.error,
            message=self.message,
            code=self.code,
            details=self.details or None,
        ).model_dump(exclude_none=True)

    def to_response(self) -> JSONResponse:
        """Convert to FastAPI JSONResponse"""
        return JSONResponse(status_code=self.status_code, content=self.to_dict())


class BadRequestError(APIError):
    """400 Bad Request - Invalid input"""
    def __init__(self, message: str, code: str = ErrorCode.INVALID_INPUT, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="Bad Request",
            message=message,
            code=code,
            details=details
        )


class ForbiddenError(APIError):
    """403 Forbidden - Rule forbids the action for this user"""
    def __init__(self, message: str, code: str, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error="Forbidden",
            message=message,
            code=code,
            details=details
        )


class NotFoundError(APIError):
    """404 Not Found - Resource does not exist"""
    def __init__(self, message: str, code: str = ErrorCode.NOT_FOUND, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error="Not Found",
            message=message,
            code=code,
            details=details
        )


class ConflictError(APIError):
    """409 Conflict - Current state does not allow the operation"""
    def __init__(self, message: str, code: str, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error="Conflict",
            message=message,
            code=code,
            details=details
        )


class GoneError(APIError):
    """410 Gone - Resource existed but is no longer usable"""
    def __init__(self, message: str, code: str, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_410_GONE,
            error="Gone",
            message=message,
            code=code,
            details=details
        )


class UnprocessableError(APIError):
    """422 Unprocessable Entity - Well-formed but invalid payload"""
    def __init__(self, message: str, code: str = ErrorCode.VALIDATION_ERROR, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error="Validation Error",
            message=message,
            code=code,
            details=details
        )


class InternalError(APIError):
    """500 Internal Server Error - Use sparingly, only for true internal failures"""
    def __init__(self, message: str = "An internal error occurred", log_id: Optional[str] = None):
        details = {"log_id": log_id} if log_id else None
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error="Internal Error",
            message=message,
            code=ErrorCode.INTERNAL_ERROR,
            details=details
        )


# Most specific class first; subclasses must precede their parents.
DOMAIN_ERROR_MAPPING = [
    (domain.NotFoundError, NotFoundError),
    (domain.MaxAttemptsReachedError, ForbiddenError),
    (domain.IneligibleAttemptError, ForbiddenError),
    (domain.InvalidTransitionError, ConflictError),
    (domain.AlreadyEnrolledError, ConflictError),
    (domain.InvitationNotPendingError, ConflictError),
    (domain.CourseNotPublishedError, ForbiddenError),
    (domain.InvitationExpiredError, GoneError),
    (domain.ValidationFailureError, UnprocessableError),
]


def from_domain_exception(exc: domain.LMSException) -> APIError:
    """Translate a domain exception into its API error."""
    for exc_type, api_type in DOMAIN_ERROR_MAPPING:
        if isinstance(exc, exc_type):
            return api_type(exc.message, code=exc.code, details=exc.context)
    return BadRequestError(exc.message, code=exc.code, details=exc.context)


def internal_error_for(error: Exception, context: str = "") -> InternalError:
    """Log an unexpected error and build a safe 500 with a log id."""
    log_id = str(uuid.uuid4())[:8]
    logger.error(f"[{log_id}] Internal error in {context}: {type(error).__name__}: {str(error)}")
    return InternalError(
        message="An internal error occurred. Please try again later.",
        log_id=log_id,
    )
