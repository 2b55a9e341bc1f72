# =============================================================================
# Auth Dependencies: Resolve the Calling Organization
# =============================================================================
#
# Every agent endpoint needs exactly one thing from auth: the tenant id.
# It is resolved here, once, from the request, and then flows through the
# agent loop into every tool call. The model never gets to choose it.
#
# DESIGN DECISION: FastAPI dependency (not middleware) for auth.
# - Each endpoint opts-in via Depends(get_current_org_id)
# - Testable via dependency_overrides
# - When auth_enabled=False, the configured DEMO_ORG_ID is used
#
# DESIGN DECISION: HTTPBearer(auto_error=False) so the dependency controls
# the 401 message and the disabled-auth path.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from documesh.config import settings
from documesh.db.engine import get_async_session
from documesh.services import organizations

logger = logging.getLogger(__name__)

# Security scheme for OpenAPI docs (shows "Authorize" button in Swagger UI)
_bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_org_id(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(
        _bearer_scheme,
    ),
    session: AsyncSession = Depends(get_async_session),
) -> str:
    """
    FastAPI dependency returning the authenticated organization's id.

    When auth_enabled=False: returns DEMO_ORG_ID.
    When auth_enabled=True:
    - Extracts Bearer token from Authorization header
    - SHA-256 hashes and looks it up in organizations.api_key_hash
    - Stores the org id on request.state for logging

    Raises:
        HTTPException 401: Missing or invalid API key, or auth disabled
            without a DEMO_ORG_ID.
    """
    if not settings.auth_enabled:
        if not settings.demo_org_id:
            raise HTTPException(
                status_code=401,
                detail="Authentication is disabled but DEMO_ORG_ID is not set.",
            )
        request.state.org_id = settings.demo_org_id
        return settings.demo_org_id

    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="Missing API key. Provide "
            "'Authorization: Bearer <key>' header.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    organization = await organizations.find_by_api_key(
        session, credentials.credentials,
    )
    if organization is None:
        logger.warning("Rejected request with unknown API key")
        raise HTTPException(
            status_code=401,
            detail="Invalid API key.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    org_id = str(organization.id)
    request.state.org_id = org_id
    return org_id
