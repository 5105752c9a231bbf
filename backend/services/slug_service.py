"""Slug generation for asset URLs."""

from __future__ import annotations

import re
import unicodedata
from typing import TYPE_CHECKING

from sqlalchemy import select

from backend.models.asset import Asset

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

MAX_SLUG_LENGTH = 80


def generate_asset_slug(name: str) -> str:
    """Generate a URL-safe slug from an asset name.

    - Normalize unicode to ASCII (NFKD)
    - Lowercase, strip
    - Replace non-alphanumeric chars with hyphens
    - Strip leading/trailing hyphens
    - Truncate to 80 chars (don't cut mid-word if possible)
    - Return "asset" for empty/whitespace-only input
    """
    text = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    text = text.lower().strip()
    text = re.sub(r"[^a-z0-9]+", "-", text)
    text = text.strip("-")

    if not text:
        return "asset"

    if len(text) > MAX_SLUG_LENGTH:
        truncated = text[:MAX_SLUG_LENGTH]
        last_hyphen = truncated.rfind("-")
        if last_hyphen > 0:
            truncated = truncated[:last_hyphen]
        text = truncated.rstrip("-")

    return text


async def generate_unique_slug(session: AsyncSession, name: str) -> str:
    """Slug for ``name`` that no asset uses yet: ``base``, ``base-1``, ``base-2``..."""
    base = generate_asset_slug(name)
    slug = base
    counter = 0
    while (await session.execute(select(Asset.id).where(Asset.slug == slug))).first() is not None:
        counter += 1
        slug = f"{base}-{counter}"
    return slug
