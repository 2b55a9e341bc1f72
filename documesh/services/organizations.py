# =============================================================================
# Organization Repository: Tenant Resolution
# =============================================================================
# Resolves the tenant for a request. The agent never calls this directly;
# the API layer resolves an Organization once and hands its id to the
# agent loop, which threads it into every tool call.
# =============================================================================

from __future__ import annotations

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from documesh.db.models import Organization
from documesh.services.auth import generate_api_key, hash_api_key

logger = logging.getLogger(__name__)


async def find_by_id(session: AsyncSession, org_id: str) -> Organization | None:
    try:
        key = uuid.UUID(str(org_id))
    except ValueError:
        return None
    return await session.get(Organization, key)


async def find_by_api_key(session: AsyncSession, raw_key: str) -> Organization | None:
    """Look up the organization owning a raw API key (matched by hash)."""
    stmt = select(Organization).where(
        Organization.api_key_hash == hash_api_key(raw_key)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def create_organization(
    session: AsyncSession,
    name: str,
) -> tuple[Organization, str]:
    """
    Create an organization with a fresh API key.

    Returns:
        (organization, raw_key). The raw key is not stored anywhere and
        cannot be recovered later.
    """
    raw_key, key_hash = generate_api_key()
    organization = Organization(name=name, api_key_hash=key_hash, allowed_ips=[])
    session.add(organization)
    await session.flush()

    logger.info("Created organization: id=%s, name=%s", organization.id, name)
    return organization, raw_key
