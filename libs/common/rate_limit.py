"""Rate limiting for credential-bearing endpoints.

Uses slowapi; storage defaults to in-process memory and can point at Redis
via ``RATE_LIMIT_STORAGE_URI`` for multi-node deployments.
"""

from functools import lru_cache

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from libs.common.config import get_settings

LOGIN_LIMIT = "5/minute"
TOKEN_LIMIT = "10/minute"
OTP_LIMIT = "10/minute"


def _get_client_ip(request: Request) -> str:
    """
    Client IP, honouring the first hop of X-Forwarded-For when proxied.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


@lru_cache
def get_limiter() -> Limiter:
    """Create and return the cached Limiter instance."""
    settings = get_settings()
    return Limiter(
        key_func=_get_client_ip,
        storage_uri=settings.RATE_LIMIT_STORAGE_URI,
        strategy="fixed-window",
        enabled=settings.RATE_LIMIT_ENABLED,
    )


limiter = get_limiter()


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Render rate limit rejections; OAuth paths keep the RFC 6749 shape."""
    headers = {"Retry-After": str(getattr(exc, "retry_after", 60))}
    if request.url.path.startswith("/oauth"):
        return JSONResponse(
            status_code=429,
            content={
                "error": "slow_down",
                "error_description": f"Rate limit exceeded: {exc.detail}",
            },
            headers=headers,
        )
    return JSONResponse(
        status_code=429,
        content={
            "error": {
                "message": f"Rate limit exceeded: {exc.detail}",
                "code": "TOO_MANY_REQUESTS",
                "statusCode": 429,
            }
        },
        headers=headers,
    )
