"""Partner client lookup and credential checks. Never mutates clients."""

import uuid
from typing import Optional

from libs.common.logging import get_logger
from services.points_bank_service.errors import (
    ClientNotFound,
    InvalidCredentials,
    UnauthorizedClient,
)
from services.points_bank_service.models import GrantKind, PartnerClient
from services.points_bank_service.services.tokens import secrets_match
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


async def validate_client(
    db: AsyncSession, client_id: str, client_secret: Optional[str] = None
) -> PartnerClient:
    """Return the active client for ``client_id``.

    Raises ClientNotFound when no active client matches and InvalidCredentials
    when a secret is supplied and does not match.
    """
    result = await db.execute(
        select(PartnerClient).where(
            PartnerClient.client_id == client_id, PartnerClient.active.is_(True)
        )
    )
    client = result.scalar_one_or_none()
    if not client:
        logger.warning("Client not found: %s", client_id)
        raise ClientNotFound()

    if client_secret is not None and not secrets_match(client_secret, client.client_secret):
        logger.warning("Invalid client secret for client: %s", client_id)
        raise InvalidCredentials()

    logger.debug("Client validated: %s (%s)", client.client_name, client_id)
    return client


async def authenticate_client(
    db: AsyncSession, client_id: str, client_secret: Optional[str]
) -> PartnerClient:
    """Client-credential authentication: the secret is mandatory."""
    if not client_secret:
        raise InvalidCredentials("Client secret required")
    return await validate_client(db, client_id, client_secret)


def ensure_grant_allowed(client: PartnerClient, grant: GrantKind) -> None:
    if grant.value not in (client.allowed_grants or []):
        logger.warning("Client %s may not use grant %s", client.client_id, grant.value)
        raise UnauthorizedClient()


async def get_client_by_pk(db: AsyncSession, client_pk: uuid.UUID) -> PartnerClient:
    client = await db.get(PartnerClient, client_pk)
    if not client:
        raise ClientNotFound()
    return client
