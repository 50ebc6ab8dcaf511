"""Enums for the Points Bank models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class GrantKind(str, enum.Enum):
    AUTHORIZATION_CODE = "authorization_code"
    REFRESH_TOKEN = "refresh_token"


class Scope(str, enum.Enum):
    PROFILE = "profile"
    POINTS = "points"
    PAY_WITH_POINTS = "pay-with-points"


class LedgerDirection(str, enum.Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class LedgerMethod(str, enum.Enum):
    """How a ledger entry came to be. Credits may also carry a partner-supplied reason."""

    OAUTH_DIRECT = "oauth_direct"
    OTP_APPROVAL = "otp_approval"
    PARTNER_CREDIT = "partner_credit"


class WorkflowStatus(str, enum.Enum):
    """State of an OTP-gated debit. Instant entries carry no status."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"

