"""Points Bank schemas package.

IMPORTANT: Every schema class must be listed here.
When adding a new schema, add its import and __all__ entry.
"""

from services.points_bank_service.schemas.base import CamelModel  # noqa: F401
from services.points_bank_service.schemas.member import (  # noqa: F401
    ActiveSessionResponse,
    LoginRequest,
    MemberResponse,
    RegisterRequest,
    RevokeSessionResponse,
    SessionTokenResponse,
    TransactionResponse,
)
from services.points_bank_service.schemas.oauth import (  # noqa: F401
    ConsentDecisionRequest,
    ConsentViewResponse,
    OAuthLoginRequest,
    OAuthLoginResponse,
    TokenResponse,
    UserInfoResponse,
)
from services.points_bank_service.schemas.points import (  # noqa: F401
    ClientCredentials,
    CreditRequest,
    CreditResponse,
    ExpirePendingResponse,
    PendingRedemptionResponse,
    RedeemRequest,
    RedeemResponse,
    RedemptionDecisionRequest,
    RedemptionDecisionResponse,
    RedemptionRequestCreate,
    RedemptionRequestResponse,
)

__all__ = [
    "CamelModel",
    # Member
    "ActiveSessionResponse",
    "LoginRequest",
    "MemberResponse",
    "RegisterRequest",
    "RevokeSessionResponse",
    "SessionTokenResponse",
    "TransactionResponse",
    # OAuth
    "ConsentDecisionRequest",
    "ConsentViewResponse",
    "OAuthLoginRequest",
    "OAuthLoginResponse",
    "TokenResponse",
    "UserInfoResponse",
    # Points
    "ClientCredentials",
    "CreditRequest",
    "CreditResponse",
    "ExpirePendingResponse",
    "PendingRedemptionResponse",
    "RedeemRequest",
    "RedeemResponse",
    "RedemptionDecisionRequest",
    "RedemptionDecisionResponse",
    "RedemptionRequestCreate",
    "RedemptionRequestResponse",
]
