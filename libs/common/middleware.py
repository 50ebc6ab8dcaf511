"""Request tracing middleware.

Every request gets an ``X-Request-ID`` (propagated from the caller when
present) that is bound to the logging context and echoed on the response.

Usage:
    from libs.common.middleware import add_observability_middleware

    app = FastAPI()
    add_observability_middleware(app)
"""
import time
from typing import Callable

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from libs.common.logging import (
    clear_request_context,
    configure_logging,
    get_logger,
    set_request_context,
)

logger = get_logger(__name__)

QUIET_PATHS = frozenset({"/health"})


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Binds request context for log correlation and logs the request outcome."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = set_request_context(
            request_id=request.headers.get("X-Request-ID"),
            path=request.url.path,
            method=request.method,
        )
        quiet = request.url.path in QUIET_PATHS
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "Request failed with unhandled exception",
                extra={"extra_fields": {"duration_ms": _elapsed_ms(start_time)}},
            )
            clear_request_context()
            raise

        if not quiet:
            log = logger.warning if response.status_code >= 400 else logger.info
            log(
                "%s %s -> %d",
                request.method,
                request.url.path,
                response.status_code,
                extra={
                    "extra_fields": {
                        "status_code": response.status_code,
                        "duration_ms": _elapsed_ms(start_time),
                    }
                },
            )

        response.headers["X-Request-ID"] = request_id
        clear_request_context()
        return response


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


def add_observability_middleware(app: FastAPI) -> None:
    """Configure logging and install the request context middleware."""
    configure_logging()
    app.add_middleware(RequestContextMiddleware)
    logger.info("Observability middleware initialized")
