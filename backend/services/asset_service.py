"""Asset lookup and creation on behalf of an authenticated user."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from backend.exceptions import AssetNotFoundError, InternalServerError
from backend.models.asset import Asset, InstallScope, StorageType
from backend.services.datetime_service import format_iso, now_utc
from backend.services.machine_service import get_owned_machine
from backend.services.slug_service import generate_unique_slug
from backend.services.version_service import INITIAL_VERSION

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


async def get_owned_asset(session: AsyncSession, user_id: str, asset_id: str) -> Asset:
    """Return a live asset authored by ``user_id``.

    Raises ``AssetNotFoundError`` for missing, deleted, and foreign assets alike.
    """
    stmt = select(Asset).where(
        Asset.id == asset_id,
        Asset.author_id == user_id,
        Asset.deleted_at.is_(None),
    )
    asset = (await session.execute(stmt)).scalar_one_or_none()
    if asset is None:
        raise AssetNotFoundError(asset_id)
    return asset


async def list_owned_assets(session: AsyncSession, user_id: str) -> list[Asset]:
    """All live assets authored by ``user_id``, ordered by name."""
    stmt = (
        select(Asset)
        .where(Asset.author_id == user_id, Asset.deleted_at.is_(None))
        .order_by(Asset.name, Asset.id)
    )
    return list((await session.execute(stmt)).scalars().all())


async def create_asset(
    session: AsyncSession,
    *,
    user_id: str,
    machine_id: str,
    name: str,
    content: str,
    asset_type: str,
    primary_platform: str,
    primary_file_name: str,
    install_scope: str = InstallScope.PROJECT,
) -> Asset:
    """Create a private inline asset from a file discovered on a client machine."""
    await get_owned_machine(session, user_id, machine_id)

    now = format_iso(now_utc())
    slug = await generate_unique_slug(session, name)
    asset = Asset(
        slug=slug,
        name=name,
        description=f"Auto-created from CLI ({primary_file_name})",
        author_id=user_id,
        asset_type=asset_type,
        primary_platform=primary_platform,
        primary_file_name=primary_file_name,
        install_scope=install_scope,
        storage_type=StorageType.INLINE,
        content=content,
        current_version=INITIAL_VERSION,
        created_at=now,
        updated_at=now,
    )
    session.add(asset)
    try:
        await session.commit()
    except IntegrityError as exc:
        # Slug was taken between the uniqueness check and the insert
        await session.rollback()
        raise InternalServerError(f"Slug collision creating asset {slug}: {exc}") from exc
    logger.info("Created asset %s (%s) from machine %s", asset.slug, asset.id, machine_id)
    return asset
