"""HTTP client for the AssetVault CLI API."""

from __future__ import annotations

from typing import Any, Literal
from urllib.parse import quote, urlparse

import httpx
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

DEFAULT_TIMEOUT = 30.0
_LOCALHOST_HOSTS = {"localhost", "127.0.0.1", "::1"}


class ApiError(Exception):
    """Non-2xx response from the server."""

    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"{detail} (HTTP {status_code})")
        self.status_code = status_code
        self.detail = detail

    @classmethod
    def from_response(cls, response: httpx.Response) -> ApiError:
        detail: Any = None
        try:
            detail = response.json().get("detail")
        except (ValueError, AttributeError):
            pass
        if isinstance(detail, list):
            detail = "; ".join(
                f"{item.get('field', '?')}: {item.get('message', item)}"
                if isinstance(item, dict)
                else str(item)
                for item in detail
            )
        return cls(response.status_code, str(detail) if detail else f"HTTP {response.status_code}")


def validate_server_url(server_url: str, allow_insecure_http: bool = False) -> str:
    """Validate server URL and enforce HTTPS for non-localhost hosts by default."""
    normalized = server_url.strip().rstrip("/")
    parsed = urlparse(normalized)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("Server URL must include scheme and host (e.g. https://example.com)")

    hostname = parsed.hostname
    if parsed.scheme == "http" and not allow_insecure_http and hostname not in _LOCALHOST_HOSTS:
        raise ValueError(
            "HTTPS is required for non-localhost servers. "
            "Use --allow-insecure-http only on trusted networks."
        )

    return normalized


# ── Response models ──────────────────────────────────


class _RemoteModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class RemoteUser(_RemoteModel):
    id: str
    username: str
    email: str
    display_name: str | None = None


class RemoteMachine(_RemoteModel):
    id: str
    name: str
    machine_identifier: str


class WhoAmI(_RemoteModel):
    user: RemoteUser
    machine: RemoteMachine | None = None


class RemoteSyncState(_RemoteModel):
    synced_version: str
    local_hash: str | None = None
    install_path: str | None = None
    last_push_at: str | None = None
    last_pull_at: str | None = None
    synced_at: str


class ManifestAsset(_RemoteModel):
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
    sync_state: RemoteSyncState | None = None


class SyncManifest(_RemoteModel):
    machine: RemoteMachine
    assets: list[ManifestAsset]


class AssetContent(_RemoteModel):
    type: Literal["INLINE", "BUNDLE"]
    content: str | None = None
    bundle_url: str | None = None
    version: str
    primary_file_name: str
    updated_at: str


class CreatedAsset(_RemoteModel):
    id: str
    slug: str
    name: str
    current_version: str
    primary_file_name: str
    type: str
    primary_platform: str
    install_scope: str


# ── Client ───────────────────────────────────────────


class ApiClient:
    """Async client bound to one server and API key."""

    def __init__(
        self,
        server_url: str,
        api_key: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.server_url,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> Any:
        response = await self._client.request(method, path, json=json, params=params)
        if response.is_error:
            raise ApiError.from_response(response)
        return response.json()

    async def whoami(self) -> WhoAmI:
        return WhoAmI.model_validate(await self._request("GET", "/api/cli/whoami"))

    async def sync_manifest(self, machine_id: str) -> SyncManifest:
        data = await self._request(
            "GET", "/api/cli/sync-manifest", params={"machineId": machine_id}
        )
        return SyncManifest.model_validate(data)

    async def get_asset_content(self, asset_id: str) -> AssetContent:
        data = await self._request("GET", f"/api/cli/assets/{quote(asset_id, safe='')}/content")
        return AssetContent.model_validate(data)

    async def put_asset_content(
        self, asset_id: str, *, content: str, local_hash: str, machine_id: str
    ) -> str:
        """Push content and return the new server version."""
        data = await self._request(
            "PUT",
            f"/api/cli/assets/{quote(asset_id, safe='')}/content",
            json={"content": content, "localHash": local_hash, "machineId": machine_id},
        )
        return str(data["version"])

    async def report_sync(
        self,
        *,
        machine_id: str,
        asset_id: str,
        synced_version: str,
        direction: Literal["push", "pull"],
        local_hash: str | None = None,
        install_path: str | None = None,
    ) -> None:
        body: dict[str, Any] = {
            "machineId": machine_id,
            "assetId": asset_id,
            "syncedVersion": synced_version,
            "direction": direction,
        }
        if local_hash is not None:
            body["localHash"] = local_hash
        if install_path is not None:
            body["installPath"] = install_path
        await self._request("POST", "/api/cli/sync", json=body)

    async def register_machine(self, name: str, machine_identifier: str) -> RemoteMachine:
        data = await self._request(
            "POST",
            "/api/cli/machines/register",
            json={"name": name, "machineIdentifier": machine_identifier},
        )
        return RemoteMachine.model_validate(data)

    async def create_asset(
        self,
        *,
        name: str,
        content: str,
        asset_type: str,
        primary_platform: str,
        primary_file_name: str,
        machine_id: str,
        install_scope: str = "PROJECT",
    ) -> CreatedAsset:
        data = await self._request(
            "POST",
            "/api/cli/assets",
            json={
                "name": name,
                "content": content,
                "type": asset_type,
                "primaryPlatform": primary_platform,
                "primaryFileName": primary_file_name,
                "installScope": install_scope,
                "machineId": machine_id,
            },
        )
        return CreatedAsset.model_validate(data)
