"""Router dependencies shared by the member-facing endpoints."""

import uuid
from typing import Optional

from fastapi import Depends
from libs.auth.dependencies import get_current_member
from libs.auth.models import AuthMember
from libs.common.config import get_settings
from libs.common.errors import Unauthorized
from libs.db.session import get_async_db
from services.points_bank_service.errors import MemberNotFound
from services.points_bank_service.models import Member
from services.points_bank_service.services.members import get_member
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.responses import Response


def member_uuid(auth: Optional[AuthMember]) -> Optional[uuid.UUID]:
    if auth is None:
        return None
    try:
        return uuid.UUID(auth.member_id)
    except ValueError:
        raise Unauthorized("Invalid member session")


async def get_member_record(
    auth: AuthMember = Depends(get_current_member),
    db: AsyncSession = Depends(get_async_db),
) -> Member:
    """The logged-in member's row; deactivated accounts lose their session."""
    try:
        member = await get_member(db, member_uuid(auth))
    except MemberNotFound:
        raise Unauthorized("Member session is no longer valid")
    if not member.active:
        raise Unauthorized("Member account is deactivated")
    return member


def set_session_cookie(response: Response, name: str, value: str, max_age: int) -> None:
    response.set_cookie(
        name,
        value,
        max_age=max_age,
        httponly=True,
        samesite="lax",
        secure=get_settings().ENVIRONMENT == "production",
    )
