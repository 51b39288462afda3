"""
Shared API utilities for the assessment engine.

This module provides:
- The standard response envelope
- Exception handlers turning validation and engine errors into that envelope
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from eduassess.common.error_handling import AssessmentEngineError, ErrorSeverity, error_response
from eduassess.common.logger import app_logger

logger = app_logger.getChild("api")


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Handle request validation errors and return a standardized response.

    Args:
        request: The incoming request
        exc: The validation exception

    Returns:
        A JSON response with error details
    """
    error_details = []
    for error in exc.errors():
        error_details.append({
            "location": list(error.get("loc", [])),
            "message": error.get("msg", "Unknown validation error"),
            "type": error.get("type", "")
        })

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "status": "error",
            "code": "validation_error",
            "message": "Validation error",
            "details": error_details
        }
    )


async def engine_exception_handler(request: Request, exc: AssessmentEngineError) -> JSONResponse:
    """Map an engine error to its HTTP status and the error envelope."""
    if exc.severity in (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL) and exc.http_status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code.value}")
    return JSONResponse(status_code=exc.http_status, content=error_response(exc))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code = "authentication_error" if exc.status_code == status.HTTP_401_UNAUTHORIZED else "http_error"
    return JSONResponse(
        status_code=exc.status_code,
        content=APIResponse.error(str(exc.detail), code=code),
        headers=getattr(exc, "headers", None),
    )


class APIResponse:
    """Standard API response structure"""

    @staticmethod
    def success(data: Any = None, message: str = "Success") -> Dict[str, Any]:
        """
        Create a success response.

        Args:
            data: Response data
            message: Success message

        Returns:
            Response dictionary
        """
        return {
            "status": "success",
            "message": message,
            "data": data
        }

    @staticmethod
    def error(message: str, details: Optional[Any] = None,
              code: Optional[str] = None) -> Dict[str, Any]:
        response = {
            "status": "error",
            "message": message
        }

        if details:
            response["details"] = details

        if code:
            response["code"] = code

        return response
