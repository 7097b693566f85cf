"""
Review service exceptions and the handlers that render them.

Every failure leaves the service as JSON of the form
``{"error": ..., "correlation_id": ..., "details": ...}``; ``details`` is
omitted when there is nothing to add.
"""
from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.lib.logging import get_logger, log_with_context

logger = get_logger(__name__)


class AppException(Exception):
    """Base for errors the API reports with a specific status code."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}


class NotFoundException(AppException):
    """Unknown review, or a product the product service does not know."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, resource_id: Optional[str] = None):
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(message, details={"resource": resource, "resource_id": resource_id})


class UnauthorizedException(AppException):
    """Missing, invalid or expired credentials, or a role outside the allowed set."""

    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class ForbiddenException(AppException):
    """Authenticated caller does not own the review."""

    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class BadRequestException(AppException):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details)


class UpstreamServiceException(BadRequestException):
    """A product or user service call the request cannot do without has failed."""

    def __init__(self, service: str, message: str, upstream_status: Optional[int] = None):
        super().__init__(message, details={"service": service, "upstream_status": upstream_status})
        self.service = service
        self.upstream_status = upstream_status


class ConflictException(AppException):
    """The user has already reviewed this target."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details)


class ValidationException(AppException):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, message: str, errors: Optional[Dict[str, Any]] = None):
        super().__init__(message, details={"errors": errors or {}})


def _error_response(
    request: Request,
    status_code: int,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    content: Dict[str, Any] = {
        "error": message,
        "correlation_id": getattr(request.state, "correlation_id", "unknown"),
    }
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content, headers=headers)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    log_with_context(
        logger,
        "warning" if exc.status_code < 500 else "error",
        f"Request failed: {exc.message}",
        status_code=exc.status_code,
        method=request.method,
        path=request.url.path,
        details=exc.details,
    )
    return _error_response(request, exc.status_code, exc.message, exc.details)


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Report each failing body, path or query field with its location."""
    errors = [
        {"loc": list(error["loc"]), "msg": error["msg"], "type": error["type"]}
        for error in exc.errors()
    ]
    log_with_context(
        logger,
        "warning",
        "Request validation failed",
        method=request.method,
        path=request.url.path,
        errors=errors,
    )
    return _error_response(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation error",
        {"errors": errors},
    )


async def http_exception_handler(
    request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """Unknown routes, wrong methods and framework-raised HTTP errors."""
    log_with_context(
        logger,
        "warning",
        f"HTTP error: {exc.detail}",
        status_code=exc.status_code,
        method=request.method,
        path=request.url.path,
    )
    return _error_response(
        request,
        exc.status_code,
        exc.detail,
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled exception: {exc}",
        extra={"extra_fields": {"method": request.method, "path": request.url.path}},
        exc_info=exc,
    )
    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal server error",
    )
