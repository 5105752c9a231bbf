"""API key authentication for CLI clients."""

from __future__ import annotations

import hashlib
import logging
import re
import secrets
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import select

from backend.models.user import ApiKey, User
from backend.services.datetime_service import format_iso, now_utc, parse_iso

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "avk_"
_RAW_RANDOM_BYTES = 24  # 24 bytes -> 32 url-safe base64 chars
_API_KEY_RE = re.compile(r"^avk_[A-Za-z0-9_-]{32}$")


@dataclass(frozen=True)
class ApiKeyAuth:
    """Authenticated principal behind a CLI request."""

    user_id: str
    machine_id: str | None
    key_id: str


def hash_api_key(raw: str) -> str:
    """Hash an API key value (SHA-256) for safe storage."""
    return hashlib.sha256(raw.encode()).hexdigest()


def validate_api_key_format(raw: str) -> bool:
    """Cheap syntactic check before touching the database."""
    return _API_KEY_RE.match(raw) is not None


def generate_api_key() -> tuple[str, str, str]:
    """Generate a new key. Returns (raw, hashed, display_prefix)."""
    raw = f"{API_KEY_PREFIX}{secrets.token_urlsafe(_RAW_RANDOM_BYTES)}"
    return raw, hash_api_key(raw), raw[:8]


async def create_api_key(
    session: AsyncSession,
    user: User,
    name: str,
    machine_id: str | None = None,
    expires_at: str | None = None,
) -> tuple[ApiKey, str]:
    """Persist a new API key for ``user`` and return it with its raw value.

    The raw value is only available here; the database keeps the hash.
    """
    raw, hashed, prefix = generate_api_key()
    api_key = ApiKey(
        user_id=user.id,
        machine_id=machine_id,
        name=name,
        hashed_key=hashed,
        prefix=prefix,
        created_at=format_iso(now_utc()),
        expires_at=expires_at,
    )
    session.add(api_key)
    await session.commit()
    return api_key, raw


async def authenticate_api_key(session: AsyncSession, raw: str) -> ApiKeyAuth | None:
    """Resolve a bearer API key to its principal, or None if unusable."""
    if not validate_api_key_format(raw):
        return None

    stmt = select(ApiKey).where(ApiKey.hashed_key == hash_api_key(raw))
    result = await session.execute(stmt)
    api_key = result.scalar_one_or_none()
    if api_key is None or api_key.revoked_at is not None:
        return None

    if api_key.expires_at is not None:
        expires = parse_iso(api_key.expires_at)
        if expires is None or expires <= now_utc():
            return None

    api_key.last_used_at = format_iso(now_utc())
    await session.commit()
    return ApiKeyAuth(user_id=api_key.user_id, machine_id=api_key.machine_id, key_id=api_key.id)


async def bind_api_key_to_machine(session: AsyncSession, key_id: str, machine_id: str) -> None:
    """Bind an unbound key to a machine. Does not commit."""
    api_key = await session.get(ApiKey, key_id)
    if api_key is not None and api_key.machine_id is None:
        api_key.machine_id = machine_id
