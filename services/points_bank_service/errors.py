"""Error kinds raised by the grant engine and the ledger.

None of these are retried internally; they surface to the caller as-is.
"""

from libs.common.errors import AppError, Unauthorized


class NotFound(AppError):
    status_code = 404
    code = "NOT_FOUND"
    oauth_error = "invalid_request"
    default_message = "Not found"


class ClientNotFound(NotFound):
    oauth_error = "invalid_client"
    default_message = "Client not found"


class MemberNotFound(NotFound):
    default_message = "Member not found"


class RequestNotFound(NotFound):
    default_message = "Redemption request not found"


class InvalidCredentials(AppError):
    status_code = 401
    code = "INVALID_CREDENTIALS"
    oauth_error = "invalid_client"
    default_message = "Invalid client credentials"


class InvalidGrant(AppError):
    code = "INVALID_GRANT"
    oauth_error = "invalid_grant"
    default_message = "Invalid authorization code"


class InvalidToken(Unauthorized):
    code = "INVALID_TOKEN"
    default_message = "Invalid access token"


class Expired(AppError):
    code = "EXPIRED"
    oauth_error = "invalid_grant"
    default_message = "Credential expired"


class CodeExpired(Expired):
    default_message = "Authorization code expired"


class RefreshTokenExpired(Expired):
    default_message = "Refresh token expired"


class TokenExpired(Expired):
    status_code = 401
    oauth_error = "invalid_token"
    default_message = "Access token expired"


class OtpExpired(Expired):
    code = "OTP_EXPIRED"
    default_message = "OTP has expired. Please request a new redemption."


class ConsentSessionExpired(Expired):
    oauth_error = "invalid_request"
    default_message = "Authorization session expired"


class InvalidRedirect(AppError):
    code = "INVALID_REDIRECT"
    oauth_error = "invalid_request"
    default_message = "Invalid redirect URI"


class RedirectMismatch(AppError):
    code = "REDIRECT_MISMATCH"
    oauth_error = "invalid_grant"
    default_message = "Redirect URI mismatch"


class ClientMismatch(AppError):
    code = "CLIENT_MISMATCH"
    oauth_error = "invalid_grant"
    default_message = "Client mismatch"


class InvalidScope(AppError):
    code = "INVALID_SCOPE"
    oauth_error = "invalid_scope"
    default_message = "Requested scope is not allowed for this client"


class ScopeDenied(AppError):
    status_code = 403
    code = "INSUFFICIENT_SCOPE"
    oauth_error = "insufficient_scope"
    default_message = "Access token lacks the required scope"


class UnsupportedGrantType(AppError):
    code = "UNSUPPORTED_GRANT_TYPE"
    oauth_error = "unsupported_grant_type"
    default_message = "Unsupported grant type"


class UnauthorizedClient(AppError):
    code = "UNAUTHORIZED_CLIENT"
    oauth_error = "unauthorized_client"
    default_message = "Client is not allowed to use this grant type"


class UnsupportedResponseType(AppError):
    code = "UNSUPPORTED_RESPONSE_TYPE"
    oauth_error = "unsupported_response_type"
    default_message = "Unsupported response type"


class InsufficientBalance(AppError):
    code = "INSUFFICIENT_BALANCE"
    default_message = "Insufficient points"


class InvalidAmount(AppError):
    code = "INVALID_AMOUNT"
    default_message = "Amount must be positive"


class InvalidOtp(AppError):
    code = "INVALID_OTP"
    default_message = "Invalid OTP"


class Forbidden(AppError):
    status_code = 403
    code = "FORBIDDEN"
    oauth_error = "access_denied"
    default_message = "This redemption request does not belong to you"


class AlreadyProcessed(AppError):
    status_code = 409
    code = "ALREADY_PROCESSED"
    default_message = "Redemption request already processed"


class Conflict(AppError):
    status_code = 409
    code = "CONFLICT"
    default_message = "Resource already exists"


class ConcurrencyConflict(AppError):
    status_code = 409
    code = "CONCURRENT_MODIFICATION"
    default_message = "Balance changed concurrently, please retry"


class InvalidMemberCredentials(InvalidCredentials):
    oauth_error = "access_denied"
    default_message = "Invalid email or password"


class LoginRequired(Unauthorized):
    code = "LOGIN_REQUIRED"
    oauth_error = "login_required"
    default_message = "Member must log in to decide on this authorization"
