"""CLI API endpoints: sync manifest, content push/pull, sync reports, machines."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.deps import get_session, rate_limited
from backend.exceptions import (
    AssetNotFoundError,
    BundleAssetError,
    DuplicateMachineError,
    MachineNotFoundError,
    VersionConflictError,
)
from backend.models.asset import Asset, StorageType
from backend.models.machine import MachineSyncState, UserMachine
from backend.models.user import User
from backend.schemas.cli import (
    AssetContentPutRequest,
    AssetContentPutResponse,
    AssetContentResponse,
    AssetVersionResponse,
    CreateAssetRequest,
    CreateAssetResponse,
    MachineRegisterRequest,
    MachineSummary,
    ManifestAsset,
    SyncManifestResponse,
    SyncReportRequest,
    SyncReportResponse,
    SyncStateResponse,
    UserSummary,
    WhoAmIResponse,
)
from backend.services.asset_service import create_asset
from backend.services.auth_service import ApiKeyAuth
from backend.services.machine_service import get_machine, register_machine
from backend.services.sync_service import (
    SyncDirection,
    build_sync_manifest,
    get_asset_content,
    list_asset_versions,
    push_asset_content,
    record_sync_report,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cli", tags=["cli"])

_ASSET_NOT_FOUND = "Asset not found"
_MACHINE_NOT_FOUND = "Machine not found or not authorized"


def _not_found(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


def _machine_summary(machine: UserMachine) -> MachineSummary:
    return MachineSummary(
        id=machine.id, name=machine.name, machine_identifier=machine.machine_identifier
    )


def _sync_state(state: MachineSyncState | None) -> SyncStateResponse | None:
    if state is None:
        return None
    return SyncStateResponse(
        synced_version=state.synced_version,
        local_hash=state.local_hash,
        install_path=state.install_path,
        last_push_at=state.last_push_at,
        last_pull_at=state.last_pull_at,
        synced_at=state.synced_at,
    )


def _manifest_asset(asset: Asset, state: MachineSyncState | None) -> ManifestAsset:
    return ManifestAsset(
        id=asset.id,
        slug=asset.slug,
        name=asset.name,
        type=asset.asset_type,
        primary_platform=asset.primary_platform,
        current_version=asset.current_version,
        storage_type=asset.storage_type,
        primary_file_name=asset.primary_file_name,
        install_scope=asset.install_scope,
        updated_at=asset.updated_at,
        sync_state=_sync_state(state),
    )


# ── Identity ─────────────────────────────────────────


@router.get("/whoami", response_model=WhoAmIResponse)
async def whoami(
    session: Annotated[AsyncSession, Depends(get_session)],
    auth: Annotated[ApiKeyAuth, Depends(rate_limited("whoami", "rate_limit_whoami"))],
) -> WhoAmIResponse:
    """Describe the caller and the machine its key is bound to."""
    user = await session.get(User, auth.user_id)
    if user is None:
        raise _not_found("User not found")

    machine = None
    if auth.machine_id is not None:
        bound = await get_machine(session, auth.machine_id)
        if bound is not None:
            machine = _machine_summary(bound)

    return WhoAmIResponse(
        user=UserSummary(
            id=user.id,
            username=user.username,
            email=user.email,
            display_name=user.display_name,
        ),
        machine=machine,
    )


@router.post("/machines/register", response_model=MachineSummary)
async def machines_register(
    body: MachineRegisterRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    auth: Annotated[
        ApiKeyAuth,
        Depends(
            rate_limited(
                "register", "rate_limit_register", "rate_limit_register_window_seconds"
            )
        ),
    ],
) -> MachineSummary:
    """Register the calling machine."""
    try:
        machine = await register_machine(session, auth, body.name, body.machine_identifier)
    except DuplicateMachineError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _machine_summary(machine)


# ── Manifest ─────────────────────────────────────────


@router.get("/sync-manifest", response_model=SyncManifestResponse)
async def sync_manifest(
    session: Annotated[AsyncSession, Depends(get_session)],
    auth: Annotated[ApiKeyAuth, Depends(rate_limited("manifest", "rate_limit_manifest"))],
    machine_id: Annotated[str, Query(alias="machineId", min_length=1)],
) -> SyncManifestResponse:
    """All of the caller's assets together with this machine's sync state."""
    try:
        manifest = await build_sync_manifest(session, auth.user_id, machine_id)
    except MachineNotFoundError as exc:
        raise _not_found(_MACHINE_NOT_FOUND) from exc

    return SyncManifestResponse(
        machine=_machine_summary(manifest.machine),
        assets=[_manifest_asset(item.asset, item.sync_state) for item in manifest.items],
    )


# ── Content ──────────────────────────────────────────


@router.get("/assets/{asset_id}/content", response_model=AssetContentResponse)
async def asset_content_get(
    asset_id: str,
    session: Annotated[AsyncSession, Depends(get_session)],
    auth: Annotated[
        ApiKeyAuth, Depends(rate_limited("content-read", "rate_limit_content_read"))
    ],
) -> AssetContentResponse:
    """Current content and version of an asset (a pointer for bundles)."""
    try:
        asset = await get_asset_content(session, auth.user_id, asset_id)
    except AssetNotFoundError as exc:
        raise _not_found(_ASSET_NOT_FOUND) from exc

    if asset.storage_type == StorageType.BUNDLE:
        return AssetContentResponse(
            type="BUNDLE",
            bundle_url=asset.bundle_url,
            version=asset.current_version,
            primary_file_name=asset.primary_file_name,
            updated_at=asset.updated_at,
        )
    return AssetContentResponse(
        type="INLINE",
        content=asset.content,
        version=asset.current_version,
        primary_file_name=asset.primary_file_name,
        updated_at=asset.updated_at,
    )


@router.put("/assets/{asset_id}/content", response_model=AssetContentPutResponse)
async def asset_content_put(
    asset_id: str,
    body: AssetContentPutRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    auth: Annotated[
        ApiKeyAuth, Depends(rate_limited("content-write", "rate_limit_content_write"))
    ],
) -> AssetContentPutResponse:
    """Accept new content from a machine and bump the patch version."""
    try:
        version = await push_asset_content(
            session,
            user_id=auth.user_id,
            asset_id=asset_id,
            content=body.content,
            local_hash=body.local_hash,
            machine_id=body.machine_id,
        )
    except AssetNotFoundError as exc:
        raise _not_found(_ASSET_NOT_FOUND) from exc
    except MachineNotFoundError as exc:
        raise _not_found(_MACHINE_NOT_FOUND) from exc
    except BundleAssetError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except VersionConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return AssetContentPutResponse(version=version)


@router.get("/assets/{asset_id}/versions", response_model=list[AssetVersionResponse])
async def asset_versions(
    asset_id: str,
    session: Annotated[AsyncSession, Depends(get_session)],
    auth: Annotated[
        ApiKeyAuth, Depends(rate_limited("content-read", "rate_limit_content_read"))
    ],
) -> list[AssetVersionResponse]:
    """Snapshot history of an asset, oldest first."""
    try:
        versions = await list_asset_versions(session, auth.user_id, asset_id)
    except AssetNotFoundError as exc:
        raise _not_found(_ASSET_NOT_FOUND) from exc
    return [
        AssetVersionResponse(
            version=v.version, content=v.content, changelog=v.changelog, created_at=v.created_at
        )
        for v in versions
    ]


@router.post(
    "/assets", response_model=CreateAssetResponse, status_code=status.HTTP_201_CREATED
)
async def assets_create(
    body: CreateAssetRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    auth: Annotated[
        ApiKeyAuth, Depends(rate_limited("create-asset", "rate_limit_create_asset"))
    ],
) -> CreateAssetResponse:
    """Create an asset from a file discovered on a client machine."""
    try:
        asset = await create_asset(
            session,
            user_id=auth.user_id,
            machine_id=body.machine_id,
            name=body.name,
            content=body.content,
            asset_type=body.type,
            primary_platform=body.primary_platform,
            primary_file_name=body.primary_file_name,
            install_scope=body.install_scope,
        )
    except MachineNotFoundError as exc:
        raise _not_found(_MACHINE_NOT_FOUND) from exc

    return CreateAssetResponse(
        id=asset.id,
        slug=asset.slug,
        name=asset.name,
        current_version=asset.current_version,
        primary_file_name=asset.primary_file_name,
        type=asset.asset_type,
        primary_platform=asset.primary_platform,
        install_scope=asset.install_scope,
    )


# ── Sync report ──────────────────────────────────────


@router.post("/sync", response_model=SyncReportResponse)
async def sync_report(
    body: SyncReportRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    auth: Annotated[
        ApiKeyAuth, Depends(rate_limited("sync-report", "rate_limit_sync_report"))
    ],
) -> SyncReportResponse:
    """Record a completed pull (or an out-of-band "mark as synced")."""
    try:
        await record_sync_report(
            session,
            user_id=auth.user_id,
            machine_id=body.machine_id,
            asset_id=body.asset_id,
            synced_version=body.synced_version,
            direction=SyncDirection(body.direction),
            local_hash=body.local_hash,
            install_path=body.install_path,
        )
    except MachineNotFoundError as exc:
        raise _not_found(_MACHINE_NOT_FOUND) from exc
    except AssetNotFoundError as exc:
        raise _not_found(_ASSET_NOT_FOUND) from exc
    return SyncReportResponse(success=True)
