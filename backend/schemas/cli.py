"""Request and response schemas for the CLI sync API.

Field names are camelCase on the wire and snake_case in Python.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from backend.models.asset import AssetType, InstallScope, Platform


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Identity ─────────────────────────────────────────


class UserSummary(CamelModel):
    id: str
    username: str
    email: str
    display_name: str | None = None


class MachineSummary(CamelModel):
    id: str
    name: str
    machine_identifier: str


class WhoAmIResponse(CamelModel):
    user: UserSummary
    machine: MachineSummary | None = None


class MachineRegisterRequest(CamelModel):
    name: str = Field(min_length=1, max_length=100)
    machine_identifier: str = Field(min_length=1, max_length=100, pattern=r"^[a-zA-Z0-9_-]+$")


# ── Manifest ─────────────────────────────────────────


class SyncStateResponse(CamelModel):
    """This machine's ledger row for one asset."""

    synced_version: str
    local_hash: str | None = None
    install_path: str | None = None
    last_push_at: str | None = None
    last_pull_at: str | None = None
    synced_at: str


class ManifestAsset(CamelModel):
    id: str
    slug: str
    name: str
    type: str
    primary_platform: str
    current_version: str
    storage_type: str
    primary_file_name: str
    install_scope: str
    updated_at: str
    sync_state: SyncStateResponse | None = None


class SyncManifestResponse(CamelModel):
    machine: MachineSummary
    assets: list[ManifestAsset]


# ── Content ──────────────────────────────────────────


class AssetContentResponse(CamelModel):
    type: Literal["INLINE", "BUNDLE"]
    content: str | None = None
    bundle_url: str | None = None
    version: str
    primary_file_name: str
    updated_at: str


class AssetContentPutRequest(CamelModel):
    content: str = Field(min_length=1)
    local_hash: str = Field(min_length=1)
    machine_id: str = Field(min_length=1)


class AssetContentPutResponse(CamelModel):
    version: str


class AssetVersionResponse(CamelModel):
    version: str
    content: str | None = None
    changelog: str
    created_at: str


# ── Sync report ──────────────────────────────────────


class SyncReportRequest(CamelModel):
    machine_id: str = Field(min_length=1)
    asset_id: str = Field(min_length=1)
    synced_version: str = Field(min_length=1)
    local_hash: str | None = None
    install_path: str | None = Field(default=None, max_length=1024)
    direction: Literal["push", "pull"]


class SyncReportResponse(CamelModel):
    success: bool = True


# ── Asset creation ───────────────────────────────────


class CreateAssetRequest(CamelModel):
    name: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1)
    type: AssetType
    primary_platform: Platform
    primary_file_name: str = Field(min_length=1, max_length=255)
    install_scope: InstallScope = InstallScope.PROJECT
    machine_id: str = Field(min_length=1)


class CreateAssetResponse(CamelModel):
    id: str
    slug: str
    name: str
    current_version: str
    primary_file_name: str
    type: str
    primary_platform: str
    install_scope: str
