"""
Error Handling System for EduAssess

This module provides the error handling framework of the engine:
1. Exception hierarchy matching the engine's failure taxonomy
2. Retry decorator with backoff for transient data-store failures
3. Structured error logging
4. Error response generation for the HTTP layer
"""

import time
import logging
import traceback
import asyncio
import random
import functools
import json
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar, Union, cast
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, field_validator

from eduassess.common.logger import app_logger

F = TypeVar('F', bound=Callable)

logger = app_logger.getChild("errors")


class ErrorSeverity(Enum):
    """Severity levels for errors"""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCode(Enum):
    """Standard error codes for EduAssess"""
    UNKNOWN_ERROR = "unknown_error"
    VALIDATION_ERROR = "validation_error"
    AUTHENTICATION_ERROR = "authentication_error"
    FORBIDDEN = "forbidden"
    NOT_FOUND_ERROR = "not_found_error"
    CONFLICT = "conflict"

    TEST_NOT_FOUND = "test_not_found"
    ATTEMPT_NOT_FOUND = "attempt_not_found"
    QUESTION_NOT_FOUND = "question_not_found"
    TEST_EDIT_LOCKED = "test_edit_locked"
    INVALID_TRANSITION = "invalid_transition"
    ATTEMPT_IN_PROGRESS = "attempt_in_progress"
    ATTEMPT_LIMIT_REACHED = "attempt_limit_reached"
    STALE_VERSION = "stale_version"
    OUTSIDE_TEST_WINDOW = "outside_test_window"
    NOT_IN_AUDIENCE = "not_in_audience"

    DATABASE_ERROR = "database_error"
    DATABASE_TRANSIENT_ERROR = "database_transient_error"


class ErrorInfo(BaseModel):
    """Structured information about an error"""
    model_config = ConfigDict(use_enum_values=True)

    code: ErrorCode
    message: str
    timestamp: datetime = Field(default_factory=datetime.now)
    severity: ErrorSeverity = ErrorSeverity.ERROR
    details: Optional[Dict[str, Any]] = None
    exception_type: Optional[str] = None
    stack_trace: Optional[List[str]] = None
    context: Optional[Dict[str, Any]] = None

    @field_validator('stack_trace', mode='before')
    @classmethod
    def validate_stack_trace(cls, v):
        """Split a stack trace given as one string into lines"""
        if isinstance(v, str):
            return v.splitlines()
        return v


class AssessmentEngineError(Exception):
    """Base exception class for all engine errors"""

    http_status: int = 500

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.severity = severity
        self.details = details or {}
        self.cause = cause
        self.context = context or {}
        self.timestamp = datetime.now()

    def to_error_info(self, include_stack_trace: bool = False) -> ErrorInfo:
        """Convert the exception to an ErrorInfo object"""
        details = dict(self.details)
        if self.cause is not None:
            details["cause"] = {
                "type": type(self.cause).__name__,
                "message": str(self.cause)
            }

        return ErrorInfo(
            code=self.code,
            message=self.message,
            timestamp=self.timestamp,
            severity=self.severity,
            details=details,
            exception_type=type(self).__name__,
            stack_trace=traceback.format_exc() if include_stack_trace else None,
            context=self.context
        )

    def to_dict(self, include_stack_trace: bool = False) -> Dict[str, Any]:
        """Convert the exception to a dictionary"""
        return self.to_error_info(include_stack_trace).model_dump(mode="json")

    def to_json(self, include_stack_trace: bool = False) -> str:
        """Convert the exception to a JSON string"""
        return json.dumps(self.to_dict(include_stack_trace))

    def __str__(self) -> str:
        base_str = f"{self.code.value}: {self.message}"
        if self.details:
            base_str += f" (details: {self.details})"
        if self.cause:
            base_str += f" caused by {type(self.cause).__name__}: {str(self.cause)}"
        return base_str


class ValidationError(AssessmentEngineError):
    """
    Error raised when input is malformed or incomplete.

    ``errors`` maps a field path (``"passing_marks"``, ``"questions[2].options"``)
    to the reason it was rejected. It is exposed as ``details["errors"]``.
    """

    http_status = 422

    def __init__(
        self,
        message: str,
        errors: Optional[Dict[str, str]] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        details = dict(details or {})
        self.errors = dict(errors or {})
        if self.errors:
            details["errors"] = self.errors

        super().__init__(
            message=message,
            code=ErrorCode.VALIDATION_ERROR,
            severity=ErrorSeverity.WARNING,
            details=details,
            cause=cause,
            context=context
        )


class ForbiddenError(AssessmentEngineError):
    """Error raised on authorization failure, audience exclusion or a closed time window"""

    http_status = 403

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.FORBIDDEN,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code=code,
            severity=ErrorSeverity.WARNING,
            details=details,
            cause=cause,
            context=context
        )


class ConflictError(AssessmentEngineError):
    """Error raised when an operation violates the current state of a test or attempt"""

    http_status = 409

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.CONFLICT,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code=code,
            severity=ErrorSeverity.WARNING,
            details=details,
            cause=cause,
            context=context
        )


class NotFoundError(AssessmentEngineError):
    """Error raised when a resource does not exist or is not visible to the caller"""

    http_status = 404

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.NOT_FOUND_ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code=code,
            severity=ErrorSeverity.WARNING,
            details=details,
            cause=cause,
            context=context
        )


class TestNotFoundError(NotFoundError):
    """Error raised when a test is missing, deleted or not visible"""

    __test__ = False

    def __init__(self, test_id: str, cause: Optional[Exception] = None):
        super().__init__(
            message=f"Test {test_id} not found",
            code=ErrorCode.TEST_NOT_FOUND,
            details={"test_id": test_id},
            cause=cause
        )


class AttemptNotFoundError(NotFoundError):
    """Error raised when an attempt is missing or not visible"""

    def __init__(self, attempt_id: str, cause: Optional[Exception] = None):
        super().__init__(
            message=f"Attempt {attempt_id} not found",
            code=ErrorCode.ATTEMPT_NOT_FOUND,
            details={"attempt_id": attempt_id},
            cause=cause
        )


class DatabaseError(AssessmentEngineError):
    """Error raised when the data store fails"""

    http_status = 503

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.DATABASE_ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code=code,
            severity=ErrorSeverity.ERROR,
            details=details,
            cause=cause,
            context=context
        )


class TransientDatabaseError(DatabaseError):
    """Error raised for data-store failures that may succeed on retry (timeouts, lock contention)"""

    def __init__(
        self,
        operation: str,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=f"Transient database failure during {operation}",
            code=ErrorCode.DATABASE_TRANSIENT_ERROR,
            details={"operation": operation},
            cause=cause,
            context=context
        )


def convert_exception(
    exception: Exception,
    default_message: str = "An unexpected error occurred",
    context: Optional[Dict[str, Any]] = None
) -> AssessmentEngineError:
    """
    Convert any exception to an AssessmentEngineError.

    Args:
        exception: The exception to convert
        default_message: Message used when the exception has none
        context: Optional additional context

    Returns:
        Converted AssessmentEngineError
    """
    if isinstance(exception, AssessmentEngineError):
        if context:
            exception.context.update(context)
        return exception

    return AssessmentEngineError(
        message=str(exception) or default_message,
        cause=exception,
        context=context
    )


def retry(
    max_retries: int = 3,
    retry_delay: float = 1.0,
    backoff_factor: float = 2.0,
    jitter: float = 0.1,
    retry_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    ignore_exceptions: Tuple[Type[Exception], ...] = (),
    on_retry: Optional[Callable[[int, Exception, float], None]] = None
):
    """
    Decorator for retrying functions when exceptions occur.

    Args:
        max_retries: Maximum number of retries
        retry_delay: Initial delay between retries in seconds
        backoff_factor: Factor to increase delay with each retry
        jitter: Random jitter factor to add to delay
        retry_exceptions: Tuple of exception types to retry on
        ignore_exceptions: Tuple of exception types to not retry on
        on_retry: Optional callback called before each retry

    Returns:
        Decorated function
    """
    def decorator(func: F) -> F:
        def _next_delay(retries: int, delay: float, error: Exception) -> float:
            actual_delay = delay * (1 + random.uniform(-jitter, jitter))
            if on_retry:
                on_retry(retries, error, actual_delay)
            logger.warning(
                f"Retry {retries}/{max_retries} for {func.__name__} "
                f"after {actual_delay:.2f}s due to {type(error).__name__}: {error}"
            )
            return actual_delay

        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                retries = 0
                delay = retry_delay
                while True:
                    try:
                        return await func(*args, **kwargs)
                    except ignore_exceptions:
                        raise
                    except retry_exceptions as e:
                        retries += 1
                        if retries > max_retries:
                            raise
                        await asyncio.sleep(_next_delay(retries, delay, e))
                        delay *= backoff_factor

            return cast(F, async_wrapper)

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            retries = 0
            delay = retry_delay
            while True:
                try:
                    return func(*args, **kwargs)
                except ignore_exceptions:
                    raise
                except retry_exceptions as e:
                    retries += 1
                    if retries > max_retries:
                        raise
                    time.sleep(_next_delay(retries, delay, e))
                    delay *= backoff_factor

        return cast(F, sync_wrapper)

    return decorator


def error_response(
    error: Union[AssessmentEngineError, Exception],
    include_details: bool = True
) -> Dict[str, Any]:
    """
    Generate a standardized API error response.

    Args:
        error: The error to generate a response for
        include_details: Whether to include error details

    Returns:
        Standardized error response dictionary
    """
    if not isinstance(error, AssessmentEngineError):
        error = convert_exception(error)

    error_info = error.to_error_info()
    response = {
        "status": "error",
        "code": error_info.code,
        "message": error_info.message
    }
    if include_details and error_info.details:
        response["details"] = error_info.details
    return response


def log_error(
    error: Union[AssessmentEngineError, Exception],
    level: int = logging.ERROR,
    include_stack_trace: bool = False,
    context: Optional[Dict[str, Any]] = None
) -> None:
    """
    Log an error with standardized format.

    Args:
        error: The error to log
        level: Logging level
        include_stack_trace: Whether to include the current stack trace
        context: Additional context to include
    """
    if not isinstance(error, AssessmentEngineError):
        error = convert_exception(error, context=context)
    elif context:
        error.context.update(context)

    message = f"ERROR [{error.code.value}]: {error.message}"
    if error.context:
        context_str = ", ".join(f"{k}={v}" for k, v in error.context.items())
        message += f" (context: {context_str})"
    if error.cause:
        message += f" caused by {type(error.cause).__name__}: {str(error.cause)}"
    if include_stack_trace:
        message += f"\n{traceback.format_exc()}"

    logger.log(level, message)
