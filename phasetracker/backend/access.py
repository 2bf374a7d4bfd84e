"""Token handling and role checks for encounter access."""

from __future__ import annotations

import hashlib
import secrets
from collections.abc import Mapping


TOKEN_BYTES = 24

ROLE_HOST = "HOST"
ROLE_PLAYER = "PLAYER"


def generate_token() -> str:
    """Generate a URL-safe token for encounter access."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def hash_token(token: str, server_salt: str) -> str:
    """Create deterministic token hash via sha256(token + server_salt)."""
    payload = f"{token}{server_salt}".encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


def role_for_token(raw_token: str, token_hashes: Mapping[str, str], server_salt: str) -> str | None:
    """Return the role whose stored hash matches ``raw_token``."""
    raw_hash = hash_token(raw_token, server_salt)
    for role, token_hash in token_hashes.items():
        if secrets.compare_digest(raw_hash, token_hash):
            return role
    return None


def can_view(role: str | None, gm_only: bool) -> bool:
    if role is None:
        return False
    return not gm_only or role == ROLE_HOST


def can_modify(role: str | None, gm_only: bool) -> bool:
    # Phase assignments are shared unless the table runs in GM-only mode.
    return can_view(role, gm_only)
