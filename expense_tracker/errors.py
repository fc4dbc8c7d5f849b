"""Typed application errors and their RFC 7807 HTTP rendering.

Core operations raise the ``AppError`` subclasses below; nothing in the
pipeline builds HTTP responses. ``register_error_handlers`` is the single
place where an error kind becomes a status code and a problem-details body:

    {
        "type": "about:blank",
        "title": "Conflict",
        "status": 409,
        "detail": "Proposal already handled.",
        "instance": "/proposals/7/accept",
        "kind": "conflict"
    }
"""

from enum import Enum

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = structlog.get_logger(__name__)


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    AUTHENTICATION = "authentication"
    INTERNAL = "internal"


class AppError(Exception):
    """Base application error."""

    kind: ErrorKind = ErrorKind.INTERNAL
    status_code: int = 500

    def __init__(self, detail: str, error_type: str = "about:blank"):
        self.detail = detail
        self.error_type = error_type
        super().__init__(detail)


class NotFoundError(AppError):
    """Entity absent, or present but owned by someone else."""

    kind = ErrorKind.NOT_FOUND
    status_code = 404

    def __init__(self, detail: str = "Resource not found."):
        super().__init__(detail=detail)


class ConflictError(AppError):
    """State does not allow the operation; retrying will not help."""

    kind = ErrorKind.CONFLICT
    status_code = 409

    def __init__(self, detail: str = "Conflict."):
        super().__init__(detail=detail)


class ValidationError(AppError):
    """Malformed input. ``fields`` names the offending request fields."""

    kind = ErrorKind.VALIDATION
    status_code = 400

    def __init__(self, detail: str = "Validation failed.", fields: list[str] | None = None):
        super().__init__(detail=detail)
        self.fields = list(fields or [])


class ConfigurationError(AppError):
    """Deployment is missing required reference data. Not user-recoverable."""

    kind = ErrorKind.CONFIGURATION
    status_code = 500


class AuthenticationError(AppError):
    kind = ErrorKind.AUTHENTICATION
    status_code = 401

    def __init__(self, detail: str = "Authentication required."):
        super().__init__(detail=detail)


def _build_problem_detail(
    status: int,
    title: str,
    detail: str,
    error_type: str = "about:blank",
    instance: str = "",
    kind: str = "",
    fields: list[str] | None = None,
) -> dict:
    body = {
        "type": error_type,
        "title": title,
        "status": status,
        "detail": detail,
    }
    if instance:
        body["instance"] = instance
    if kind:
        body["kind"] = kind
    if fields:
        body["fields"] = fields
    return body


_STATUS_TITLES = {
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    409: "Conflict",
    422: "Unprocessable Entity",
    500: "Internal Server Error",
}

_INTERNAL_DETAIL = "An unexpected error occurred."


def _field_name(location: tuple) -> str:
    # ("body", "amount") -> "amount"; ("query", "size") -> "size"
    parts = [str(part) for part in location if part not in ("body", "query", "path", "header")]
    return ".".join(parts) or ".".join(str(part) for part in location)


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI app."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        detail = exc.detail
        if exc.kind is ErrorKind.CONFIGURATION:
            logger.error("configuration_error", detail=exc.detail, path=request.url.path)
            detail = _INTERNAL_DETAIL
        body = _build_problem_detail(
            status=exc.status_code,
            title=_STATUS_TITLES.get(exc.status_code, "Error"),
            detail=detail,
            error_type=exc.error_type,
            instance=str(request.url.path),
            kind=exc.kind.value,
            fields=getattr(exc, "fields", None),
        )
        return JSONResponse(status_code=exc.status_code, content=body)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        fields = sorted({_field_name(tuple(error.get("loc", ()))) for error in exc.errors()})
        body = _build_problem_detail(
            status=400,
            title=_STATUS_TITLES[400],
            detail="Validation failed.",
            instance=str(request.url.path),
            kind=ErrorKind.VALIDATION.value,
            fields=fields,
        )
        return JSONResponse(status_code=400, content=body)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
        body = _build_problem_detail(
            status=exc.status_code,
            title=_STATUS_TITLES.get(exc.status_code, "Error"),
            detail=detail,
            instance=str(request.url.path),
        )
        return JSONResponse(status_code=exc.status_code, content=body)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_error", path=request.url.path, error=type(exc).__name__)
        body = _build_problem_detail(
            status=500,
            title=_STATUS_TITLES[500],
            detail=_INTERNAL_DETAIL,
            instance=str(request.url.path),
            kind=ErrorKind.INTERNAL.value,
        )
        return JSONResponse(status_code=500, content=body)
