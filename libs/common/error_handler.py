"""Global exception handlers producing the two public error shapes.

OAuth endpoints (``/oauth/...``) answer with RFC 6749 ``{error,
error_description}``; everything else answers with
``{error: {message, code, statusCode}}``.
"""

from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException
from starlette.responses import JSONResponse

from libs.common.errors import AppError
from libs.common.logging import get_logger

logger = get_logger(__name__)

OAUTH_PATH_PREFIXES = ("/oauth",)

STATUS_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "UNPROCESSABLE_ENTITY",
    429: "TOO_MANY_REQUESTS",
    500: "INTERNAL_SERVER_ERROR",
    503: "SERVICE_UNAVAILABLE",
}

OAUTH_STATUS_ERRORS = {
    401: "invalid_client",
    403: "access_denied",
    404: "invalid_request",
    422: "invalid_request",
    500: "server_error",
}


def is_oauth_path(path: str) -> bool:
    return any(path.startswith(prefix) for prefix in OAUTH_PATH_PREFIXES)


def _render(
    request: Request,
    status_code: int,
    message: str,
    code: str,
    oauth_error: str,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    content: dict[str, Any]
    if is_oauth_path(request.url.path):
        content = {"error": oauth_error, "error_description": message}
    else:
        content = {
            "error": {"message": message, "code": code, "statusCode": status_code}
        }
    return JSONResponse(status_code=status_code, content=content, headers=headers)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    logger.warning(
        "%s: %s", exc.__class__.__name__, exc.message,
        extra={"extra_fields": {"code": exc.code, "status_code": exc.status_code}},
    )
    headers = None
    if exc.status_code == 401:
        headers = {"WWW-Authenticate": "Bearer"}
    return _render(
        request, exc.status_code, exc.message, exc.code, exc.oauth_error, headers
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _render(
        request,
        exc.status_code,
        message,
        STATUS_CODES.get(exc.status_code, f"HTTP_{exc.status_code}"),
        OAUTH_STATUS_ERRORS.get(exc.status_code, "invalid_request"),
        getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    messages = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        messages.append(f"{location}: {err.get('msg')}" if location else err.get("msg"))
    status_code = 400 if is_oauth_path(request.url.path) else 422
    return _render(
        request,
        status_code,
        ", ".join(messages) or "Invalid request",
        STATUS_CODES[status_code],
        "invalid_request",
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _render(
        request, 500, "Internal server error", STATUS_CODES[500], "server_error"
    )


def add_exception_handlers(app: FastAPI) -> None:
    """Register all handlers on ``app``."""
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
