"""Opaque credential generation and comparison."""

import hmac
import secrets
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Optional

from services.points_bank_service.errors import InvalidAmount, InvalidScope
from services.points_bank_service.models.member import POINTS_PRECISION, POINTS_SCALE

# 32 random bytes -> 256 bits, hex encoded
TOKEN_BYTES = 32
CONSENT_SESSION_BYTES = 24
POINTS_QUANTUM = Decimal("0.01")
# Largest value a Numeric(POINTS_PRECISION, POINTS_SCALE) column holds
MAX_POINTS = Decimal(10) ** (POINTS_PRECISION - POINTS_SCALE) - POINTS_QUANTUM


def generate_token(nbytes: int = TOKEN_BYTES) -> str:
    """High-entropy opaque token for codes, access and refresh tokens."""
    return secrets.token_hex(nbytes)


def generate_session_id() -> str:
    return secrets.token_urlsafe(CONSENT_SESSION_BYTES)


def generate_otp(digits: int = 6) -> str:
    """Numeric one-time code with exactly ``digits`` digits (no leading zero)."""
    low = 10 ** (digits - 1)
    return str(low + secrets.randbelow(9 * low))


def secrets_match(presented: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time comparison that tolerates missing values."""
    if presented is None or expected is None:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


def parse_scope(raw: Optional[str | Iterable[str]], default: str = "") -> list[str]:
    """Normalise a space/comma separated scope string into an ordered unique list."""
    if raw is None or raw == "":
        raw = default
    if isinstance(raw, str):
        parts = raw.replace(",", " ").split()
    else:
        parts = [str(p).strip() for p in raw]
    seen: list[str] = []
    for part in parts:
        if part and part not in seen:
            seen.append(part)
    return seen


def format_scope(scope: Iterable[str]) -> str:
    return " ".join(scope)


def ensure_scopes_allowed(requested: list[str], allowed: Iterable[str]) -> list[str]:
    if not requested:
        raise InvalidScope("No scope requested")
    disallowed = [s for s in requested if s not in set(allowed)]
    if disallowed:
        raise InvalidScope(f"Scope not allowed for this client: {' '.join(disallowed)}")
    return requested


def normalize_amount(amount) -> Decimal:
    """Coerce to a 2-dp Decimal; raises InvalidAmount unless positive and storable."""
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmount("Amount must be a number")
    if not value.is_finite():
        raise InvalidAmount("Amount must be a finite number")
    if value > MAX_POINTS:
        raise InvalidAmount(f"Amount must not exceed {MAX_POINTS}")
    try:
        value = value.quantize(POINTS_QUANTUM, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise InvalidAmount("Amount has too many digits")
    if value <= 0:
        raise InvalidAmount("Amount must be positive")
    return value
