"""Points Bank models package.

Re-exports all models and enums so that SQLAlchemy's mapper registry sees
every model class on import.

IMPORTANT: When adding a new model, add both its import and its __all__ entry.
"""

from services.points_bank_service.models.client import PartnerClient  # noqa: F401
from services.points_bank_service.models.consent import ConsentSession  # noqa: F401
from services.points_bank_service.models.enums import (  # noqa: F401
    GrantKind,
    LedgerDirection,
    LedgerMethod,
    Scope,
    WorkflowStatus,
)
from services.points_bank_service.models.ledger import LedgerEntry  # noqa: F401
from services.points_bank_service.models.member import Member  # noqa: F401
from services.points_bank_service.models.oauth import (  # noqa: F401
    AccessToken,
    AuthorizationCode,
    RefreshToken,
)

__all__ = [
    # Enums
    "GrantKind",
    "LedgerDirection",
    "LedgerMethod",
    "Scope",
    "WorkflowStatus",
    # Accounts
    "Member",
    "PartnerClient",
    # OAuth
    "AccessToken",
    "AuthorizationCode",
    "ConsentSession",
    "RefreshToken",
    # Ledger
    "LedgerEntry",
]
