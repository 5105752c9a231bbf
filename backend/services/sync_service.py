"""Version authority and per-machine sync ledger.

Every accepted push snapshots the outgoing content into ``AssetVersion``,
bumps the asset's patch version, and upserts the pushing machine's
``MachineSyncState`` in a single transaction. Pulls are reported back
separately through ``record_sync_report``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from backend.exceptions import BundleAssetError, VersionConflictError
from backend.models.asset import Asset, AssetVersion, StorageType
from backend.models.machine import MachineSyncState, UserMachine
from backend.services.asset_service import get_owned_asset, list_owned_assets
from backend.services.datetime_service import format_iso, now_utc
from backend.services.machine_service import get_owned_machine
from backend.services.version_service import bump_patch_version

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class SyncDirection(StrEnum):
    PUSH = "push"
    PULL = "pull"


@dataclass
class ManifestItem:
    """One asset as seen by a specific machine."""

    asset: Asset
    sync_state: MachineSyncState | None


@dataclass
class SyncManifest:
    machine: UserMachine
    items: list[ManifestItem]


async def _get_sync_state(
    session: AsyncSession, machine_id: str, asset_id: str
) -> MachineSyncState | None:
    stmt = select(MachineSyncState).where(
        MachineSyncState.machine_id == machine_id,
        MachineSyncState.asset_id == asset_id,
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def _upsert_sync_state(
    session: AsyncSession,
    *,
    machine_id: str,
    asset_id: str,
    synced_version: str,
    direction: SyncDirection,
    now: str,
    local_hash: str | None = None,
    install_path: str | None = None,
) -> MachineSyncState:
    """Create or update the ledger row. Does not commit.

    Optional fields left as None keep their stored value on update.
    """
    state = await _get_sync_state(session, machine_id, asset_id)
    if state is None:
        state = MachineSyncState(
            machine_id=machine_id,
            asset_id=asset_id,
            synced_version=synced_version,
            local_hash=local_hash,
            install_path=install_path,
            synced_at=now,
        )
        session.add(state)
    else:
        state.synced_version = synced_version
        if local_hash is not None:
            state.local_hash = local_hash
        if install_path is not None:
            state.install_path = install_path
        state.synced_at = now

    if direction is SyncDirection.PUSH:
        state.last_push_at = now
    else:
        state.last_pull_at = now
    return state


async def build_sync_manifest(
    session: AsyncSession, user_id: str, machine_id: str
) -> SyncManifest:
    """All of the user's live assets with this machine's ledger row (or None)."""
    machine = await get_owned_machine(session, user_id, machine_id)
    assets = await list_owned_assets(session, user_id)

    states_stmt = select(MachineSyncState).where(MachineSyncState.machine_id == machine_id)
    states = {s.asset_id: s for s in (await session.execute(states_stmt)).scalars().all()}

    return SyncManifest(
        machine=machine,
        items=[ManifestItem(asset=a, sync_state=states.get(a.id)) for a in assets],
    )


async def get_asset_content(session: AsyncSession, user_id: str, asset_id: str) -> Asset:
    """Read path for pulls. No state is mutated."""
    return await get_owned_asset(session, user_id, asset_id)


async def push_asset_content(
    session: AsyncSession,
    *,
    user_id: str,
    asset_id: str,
    content: str,
    local_hash: str,
    machine_id: str,
) -> str:
    """Accept pushed content and return the new version.

    Validation happens before any mutation; the snapshot, the content
    overwrite, the ledger upsert and the machine activity stamp are committed
    together or not at all.
    """
    asset = await get_owned_asset(session, user_id, asset_id)
    if asset.storage_type == StorageType.BUNDLE:
        raise BundleAssetError("Cannot push content to BUNDLE assets via CLI")

    machine = await get_owned_machine(session, user_id, machine_id)

    slug = asset.slug
    old_version = asset.current_version
    new_version = bump_patch_version(old_version)
    now = format_iso(now_utc())

    try:
        session.add(
            AssetVersion(
                asset_id=asset.id,
                version=old_version,
                content=asset.content,
                bundle_url=asset.bundle_url,
                changelog=f"Auto-synced from CLI (v{old_version} → v{new_version})",
                created_at=now,
            )
        )
        # Compare-and-set on the version read above; a concurrent push loses.
        result = await session.execute(
            update(Asset)
            .where(Asset.id == asset.id, Asset.current_version == old_version)
            .values(content=content, current_version=new_version, updated_at=now)
        )
        if result.rowcount != 1:
            raise VersionConflictError(
                f"Asset {slug} is no longer at v{old_version}; pull and retry"
            )

        await _upsert_sync_state(
            session,
            machine_id=machine.id,
            asset_id=asset.id,
            synced_version=new_version,
            direction=SyncDirection.PUSH,
            now=now,
            local_hash=local_hash,
        )
        machine.last_sync_at = now
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise VersionConflictError(
            f"Asset {slug} is no longer at v{old_version}; pull and retry"
        ) from exc
    except Exception:
        await session.rollback()
        raise

    logger.info(
        "Asset %s pushed from machine %s: v%s -> v%s",
        asset.slug,
        machine.id,
        old_version,
        new_version,
    )
    return new_version


async def record_sync_report(
    session: AsyncSession,
    *,
    user_id: str,
    machine_id: str,
    asset_id: str,
    synced_version: str,
    direction: SyncDirection,
    local_hash: str | None = None,
    install_path: str | None = None,
) -> MachineSyncState:
    """Record that ``machine_id`` reconciled ``asset_id`` at ``synced_version``.

    Idempotent: repeating a report only refreshes timestamps.
    """
    machine = await get_owned_machine(session, user_id, machine_id)
    asset = await get_owned_asset(session, user_id, asset_id)
    now = format_iso(now_utc())

    try:
        state = await _upsert_sync_state(
            session,
            machine_id=machine.id,
            asset_id=asset.id,
            synced_version=synced_version,
            direction=direction,
            now=now,
            local_hash=local_hash,
            install_path=install_path,
        )
        machine.last_sync_at = now
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.debug(
        "Sync report: machine=%s asset=%s version=%s direction=%s",
        machine.id,
        asset.slug,
        synced_version,
        direction,
    )
    return state


async def list_asset_versions(
    session: AsyncSession, user_id: str, asset_id: str
) -> list[AssetVersion]:
    """Snapshot history of an asset, oldest first."""
    asset = await get_owned_asset(session, user_id, asset_id)
    stmt = (
        select(AssetVersion)
        .where(AssetVersion.asset_id == asset.id)
        .order_by(AssetVersion.id)
    )
    return list((await session.execute(stmt)).scalars().all())
