"""Base application error.

Business operations raise subclasses of ``AppError``; the HTTP layer turns
them into responses (see ``libs.common.error_handler``). Each error knows its
HTTP status, a stable UPPER_SNAKE code for the standard envelope, and the
RFC 6749 error string used on OAuth endpoints.
"""

from typing import Any, Optional


class AppError(Exception):
    status_code: int = 400
    code: str = "BAD_REQUEST"
    oauth_error: str = "invalid_request"
    default_message: str = "Bad request"

    def __init__(self, message: Optional[str] = None, **context: Any) -> None:
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def to_envelope(self) -> dict[str, Any]:
        return {
            "error": {
                "message": self.message,
                "code": self.code,
                "statusCode": self.status_code,
            }
        }

    def to_oauth(self) -> dict[str, Any]:
        return {"error": self.oauth_error, "error_description": self.message}


class Unauthorized(AppError):
    status_code = 401
    code = "UNAUTHORIZED"
    oauth_error = "invalid_token"
    default_message = "Could not validate credentials"
