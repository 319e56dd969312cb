"""
Error taxonomy and standardized error responses for the fulfillment API
"""

import uuid
import traceback
import logging
from typing import Optional
from datetime import datetime
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

# HTTP-agnostic classifications
NOT_FOUND = "not_found"
FORBIDDEN = "forbidden"
CONFLICT = "conflict"
INVALID_INPUT = "invalid_input"
INTERNAL = "internal"

CLASSIFICATION_STATUS_CODES = {
    NOT_FOUND: 404,
    FORBIDDEN: 403,
    CONFLICT: 409,
    INVALID_INPUT: 400,
    INTERNAL: 500,
}


class ErrorContext:
    """Context object for tracking error information across the request lifecycle"""

    def __init__(self, request: Request):
        self.request_id = str(uuid.uuid4())
        self.request = request
        self.endpoint = str(request.url.path)
        self.method = request.method
        self.client_ip = self._get_client_ip()
        self.user_agent = request.headers.get("user-agent")
        self.timestamp = datetime.utcnow()

    def _get_client_ip(self) -> Optional[str]:
        """Extract client IP from request headers"""
        if "x-forwarded-for" in self.request.headers:
            return self.request.headers["x-forwarded-for"].split(",")[0].strip()
        elif "x-real-ip" in self.request.headers:
            return self.request.headers["x-real-ip"]
        elif self.request.client:
            return self.request.client.host
        return None


class DatabaseError(Exception):
    """Custom exception for database-related errors"""
    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.message = message
        self.original_error = original_error
        super().__init__(self.message)


class WorkflowError(Exception):
    """Base class for expected, caller-recoverable fulfillment errors"""
    error_code = "WORKFLOW_ERROR"
    classification = INTERNAL

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    @property
    def status_code(self) -> int:
        return CLASSIFICATION_STATUS_CODES[self.classification]


class NotFound(WorkflowError):
    """Entity absent"""
    error_code = "NOT_FOUND"
    classification = NOT_FOUND


class Forbidden(WorkflowError):
    """Actor lacks the role or ownership required for this action"""
    error_code = "FORBIDDEN"
    classification = FORBIDDEN


class InvalidTransition(WorkflowError):
    """Target status is not reachable from the current status"""
    error_code = "INVALID_TRANSITION"
    classification = CONFLICT


class InvalidState(WorkflowError):
    """Action-specific precondition failed"""
    error_code = "INVALID_STATE"
    classification = INVALID_INPUT


class SlotConflict(WorkflowError):
    """Appointment triple already committed to an active order"""
    error_code = "SLOT_CONFLICT"
    classification = CONFLICT


class UploadFailed(WorkflowError):
    """Uploaded blob could not be verified as persisted"""
    error_code = "UPLOAD_FAILED"
    classification = INTERNAL


class Conflict(WorkflowError):
    """Order changed underneath a conditional update"""
    error_code = "CONFLICT"
    classification = CONFLICT


class ErrorHandler:
    """Centralized error handling service"""

    @staticmethod
    def create_error_response(
        error_context: ErrorContext,
        error: Exception,
        status_code: int = 500,
        error_code: Optional[str] = None,
    ) -> JSONResponse:
        """Create a standardized error response"""

        error_data = {
            "error": {
                "code": error_code or ErrorHandler._get_error_code(error),
                "message": ErrorHandler._get_user_friendly_message(error),
                "request_id": error_context.request_id,
                "timestamp": error_context.timestamp.isoformat(),
                "endpoint": error_context.endpoint,
                "method": error_context.method
            }
        }

        ErrorHandler._log_error(error_context, error, status_code)

        return JSONResponse(
            status_code=status_code,
            content=error_data
        )

    @staticmethod
    def _get_error_code(error: Exception) -> str:
        """Generate appropriate error codes based on exception type"""
        if isinstance(error, WorkflowError):
            return error.error_code
        elif isinstance(error, HTTPException):
            return f"HTTP_{error.status_code}"
        elif isinstance(error, DatabaseError):
            return "DATABASE_ERROR"
        else:
            return "INTERNAL_ERROR"

    @staticmethod
    def _get_user_friendly_message(error: Exception) -> str:
        """Generate user-friendly error messages"""
        if isinstance(error, UploadFailed):
            # Storage details stay in the logs
            return "The report could not be stored. Please upload it again."
        elif isinstance(error, WorkflowError):
            return error.message
        elif isinstance(error, HTTPException):
            return error.detail
        elif isinstance(error, DatabaseError):
            return "A database error occurred. Please try again later."
        else:
            return "An unexpected error occurred. Please try again later."

    @staticmethod
    def _log_error(error_context: ErrorContext, error: Exception, status_code: int):
        """Log error with comprehensive context"""
        extra = {
            "request_id": error_context.request_id,
            "endpoint": error_context.endpoint,
            "method": error_context.method,
            "status_code": status_code,
            "client_ip": error_context.client_ip,
            "error_type": type(error).__name__,
            "error_message": str(error),
        }
        if status_code >= 500:
            extra["stack_trace"] = traceback.format_exc()
            logger.error(
                f"Error {error_context.request_id}: {type(error).__name__} in {error_context.method} {error_context.endpoint}",
                extra=extra
            )
        else:
            logger.info(
                f"Rejected {error_context.method} {error_context.endpoint}: {type(error).__name__}: {error}",
                extra=extra
            )


async def workflow_error_handler(request: Request, exc: WorkflowError):
    """Render a WorkflowError with its classification's status code"""
    return ErrorHandler.create_error_response(
        ErrorContext(request), exc, status_code=exc.status_code
    )


async def database_error_handler(request: Request, exc: DatabaseError):
    return ErrorHandler.create_error_response(ErrorContext(request), exc, status_code=500)


def register_exception_handlers(app: FastAPI):
    """Attach the taxonomy handlers to an application"""
    app.add_exception_handler(WorkflowError, workflow_error_handler)
    app.add_exception_handler(DatabaseError, database_error_handler)
