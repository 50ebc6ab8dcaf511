"""Member account operations: registration, credential check, deactivation."""

import uuid
from typing import Optional

from libs.auth.passwords import hash_password, verify_password
from libs.common.logging import get_logger
from services.points_bank_service.errors import (
    Conflict,
    InvalidMemberCredentials,
    MemberNotFound,
)
from services.points_bank_service.models import Member
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


def _normalize_email(email: str) -> str:
    return email.strip().lower()


async def get_member_by_email(db: AsyncSession, email: str) -> Optional[Member]:
    result = await db.execute(
        select(Member).where(func.lower(Member.email) == _normalize_email(email))
    )
    return result.scalar_one_or_none()


async def get_member(db: AsyncSession, member_id: uuid.UUID | str) -> Member:
    if isinstance(member_id, str):
        try:
            member_id = uuid.UUID(member_id)
        except ValueError:
            raise MemberNotFound()
    member = await db.get(Member, member_id)
    if not member:
        raise MemberNotFound()
    return member


async def register_member(
    db: AsyncSession,
    *,
    email: str,
    password: str,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
) -> Member:
    """Create a member with a zero balance. Duplicate emails raise Conflict."""
    email = _normalize_email(email)
    if await get_member_by_email(db, email):
        raise Conflict("Email already registered")

    member = Member(
        email=email,
        password_hash=hash_password(password),
        first_name=first_name,
        last_name=last_name,
    )
    db.add(member)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict("Email already registered")
    await db.refresh(member)

    logger.info("Registered member %s", member.id)
    return member


async def authenticate_member(db: AsyncSession, email: str, password: str) -> Member:
    """Check the member's credentials. Every failure looks the same to the caller."""
    member = await get_member_by_email(db, email)
    if not member or not member.active:
        logger.warning("Login attempt for unknown or inactive member")
        raise InvalidMemberCredentials()
    if not verify_password(password, member.password_hash):
        logger.warning("Invalid password for member %s", member.id)
        raise InvalidMemberCredentials()
    return member


async def deactivate_member(db: AsyncSession, member_id: uuid.UUID) -> Member:
    member = await get_member(db, member_id)
    if member.active:
        member.active = False
        await db.commit()
        await db.refresh(member)
        logger.info("Deactivated member %s", member.id)
    return member
