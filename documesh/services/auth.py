# =============================================================================
# Auth Service: Organization API Key Generation & Hashing
# =============================================================================
#
# Pure functions for organization API keys. No FastAPI dependency: used by
# the tenant dependency, the organization repository, and tests.
#
# Keys are 32 random bytes. Only the SHA-256 hex digest is persisted, and
# requests are matched by hashing the presented key.
# =============================================================================

from __future__ import annotations

import hashlib
import secrets

API_KEY_PREFIX = "sk_live_"


def generate_api_key() -> tuple[str, str]:
    """
    Generate a new organization API key.

    Returns:
        (raw_key, key_hash):
        - raw_key: Full key to hand to the organization (only visible once)
        - key_hash: SHA-256 hex digest for storage in the database
    """
    raw_key = f"{API_KEY_PREFIX}{secrets.token_hex(32)}"
    return raw_key, hash_api_key(raw_key)


def hash_api_key(raw_key: str) -> str:
    """Hash an API key using SHA-256. Returns 64-char hex digest."""
    return hashlib.sha256(raw_key.encode()).hexdigest()
