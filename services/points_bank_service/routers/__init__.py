"""Points Bank routers."""

from services.points_bank_service.routers.auth import router as auth_router
from services.points_bank_service.routers.members import router as members_router
from services.points_bank_service.routers.oauth import router as oauth_router
from services.points_bank_service.routers.points import router as points_router

__all__ = [
    "auth_router",
    "members_router",
    "oauth_router",
    "points_router",
]
