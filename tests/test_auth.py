# =============================================================================
# Unit Tests: Tenant Authentication
# =============================================================================
#
# Tests auth components without a running API or database.
# Uses mocking for DB sessions.
#
# Test groups:
#   1. Key generation & hashing (pure functions)
#   2. Organization repository (find_by_api_key, create_organization)
#   3. Auth dependency (get_current_org_id)
# =============================================================================

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException

from documesh.services.auth import API_KEY_PREFIX, generate_api_key, hash_api_key


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# 1. Key Generation & Hashing
# ---------------------------------------------------------------------------


class TestKeyGeneration:
    """Tests for API key generation and hashing."""

    def test_key_format_has_prefix(self):
        raw_key, _ = generate_api_key()
        assert raw_key.startswith(API_KEY_PREFIX)

    def test_key_length(self):
        """Prefix (8) + 64 hex chars = 72 chars total."""
        raw_key, _ = generate_api_key()
        assert len(raw_key) == 72

    def test_hash_is_64_hex(self):
        """Key hash is a 64-char hex digest (SHA-256)."""
        _, key_hash = generate_api_key()
        assert len(key_hash) == 64
        int(key_hash, 16)

    def test_returned_hash_matches_raw_key(self):
        raw_key, key_hash = generate_api_key()
        assert hash_api_key(raw_key) == key_hash

    def test_keys_are_unique(self):
        raw1, hash1 = generate_api_key()
        raw2, hash2 = generate_api_key()
        assert raw1 != raw2
        assert hash1 != hash2

    def test_hash_is_deterministic(self):
        assert hash_api_key("sk_live_abc123") == hash_api_key("sk_live_abc123")

    def test_different_keys_different_hashes(self):
        assert hash_api_key("sk_live_key1") != hash_api_key("sk_live_key2")


# ---------------------------------------------------------------------------
# Helpers: lightweight fakes for repository and dependency tests
# ---------------------------------------------------------------------------


@dataclass
class FakeOrganization:
    """Lightweight stand-in for the Organization ORM model."""

    id: uuid.UUID = field(default_factory=uuid.uuid4)
    name: str = "Acme Recruiting"
    api_key_hash: str = ""
    allowed_ips: list = field(default_factory=list)


@dataclass
class FakeCredentials:
    """Stand-in for HTTPAuthorizationCredentials."""

    credentials: str = "sk_live_testkey"


class FakeRequestState:
    """Writable request.state."""

    pass


class FakeRequest:
    """Minimal Request stand-in."""

    def __init__(self):
        self.state = FakeRequestState()


def _session_returning(obj):
    mock_session = AsyncMock()
    mock_result = MagicMock()
    mock_result.scalar_one_or_none.return_value = obj
    mock_session.execute.return_value = mock_result
    return mock_session


# ---------------------------------------------------------------------------
# 2. Organization Repository
# ---------------------------------------------------------------------------


class TestOrganizationRepository:
    """Tests for documesh.services.organizations."""

    def test_find_by_api_key_returns_match(self):
        from documesh.services.organizations import find_by_api_key

        org = FakeOrganization()
        session = _session_returning(org)

        assert _run(find_by_api_key(session, "sk_live_abc")) is org
        session.execute.assert_awaited_once()

    def test_find_by_api_key_returns_none_when_missing(self):
        from documesh.services.organizations import find_by_api_key

        session = _session_returning(None)
        assert _run(find_by_api_key(session, "sk_live_nope")) is None

    def test_find_by_id_with_invalid_uuid_skips_db(self):
        from documesh.services.organizations import find_by_id

        session = AsyncMock()
        assert _run(find_by_id(session, "not-a-uuid")) is None
        session.get.assert_not_called()

    def test_create_organization_stores_hash_not_raw_key(self):
        from documesh.services.organizations import create_organization

        session = MagicMock()
        session.flush = AsyncMock()

        org, raw_key = _run(create_organization(session, "Acme"))

        session.add.assert_called_once_with(org)
        assert org.name == "Acme"
        assert org.api_key_hash == hash_api_key(raw_key)
        assert raw_key not in org.api_key_hash


# ---------------------------------------------------------------------------
# 3. Auth Dependency (get_current_org_id)
# ---------------------------------------------------------------------------


class TestGetCurrentOrgId:
    """Tests for the get_current_org_id dependency."""

    def test_auth_disabled_returns_demo_org(self):
        from documesh.api.deps import get_current_org_id

        with patch("documesh.api.deps.settings") as mock_settings:
            mock_settings.auth_enabled = False
            mock_settings.demo_org_id = "11111111-1111-1111-1111-111111111111"
            result = _run(get_current_org_id(
                request=FakeRequest(),
                credentials=None,
                session=AsyncMock(),
            ))
        assert result == "11111111-1111-1111-1111-111111111111"

    def test_auth_disabled_without_demo_org_raises_401(self):
        from documesh.api.deps import get_current_org_id

        with patch("documesh.api.deps.settings") as mock_settings:
            mock_settings.auth_enabled = False
            mock_settings.demo_org_id = None
            with pytest.raises(HTTPException) as exc_info:
                _run(get_current_org_id(
                    request=FakeRequest(),
                    credentials=None,
                    session=AsyncMock(),
                ))
        assert exc_info.value.status_code == 401

    def test_missing_credentials_raises_401(self):
        from documesh.api.deps import get_current_org_id

        with patch("documesh.api.deps.settings") as mock_settings:
            mock_settings.auth_enabled = True
            with pytest.raises(HTTPException) as exc_info:
                _run(get_current_org_id(
                    request=FakeRequest(),
                    credentials=None,
                    session=AsyncMock(),
                ))
        assert exc_info.value.status_code == 401
        assert "Bearer" in exc_info.value.detail

    def test_invalid_key_raises_401(self):
        from documesh.api.deps import get_current_org_id

        with patch("documesh.api.deps.settings") as mock_settings:
            mock_settings.auth_enabled = True
            with pytest.raises(HTTPException) as exc_info:
                _run(get_current_org_id(
                    request=FakeRequest(),
                    credentials=FakeCredentials(),
                    session=_session_returning(None),
                ))
        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Invalid API key."

    def test_valid_key_returns_org_id(self):
        from documesh.api.deps import get_current_org_id

        org = FakeOrganization()
        request = FakeRequest()

        with patch("documesh.api.deps.settings") as mock_settings:
            mock_settings.auth_enabled = True
            result = _run(get_current_org_id(
                request=request,
                credentials=FakeCredentials(),
                session=_session_returning(org),
            ))

        assert result == str(org.id)
        assert request.state.org_id == str(org.id)
