"""Link registry: global and project-scoped link stores on disk.

The global store lives at ``~/.assetvault/config.json`` (``ASSETVAULT_HOME``
overrides the directory) and also carries credentials and the registered
machine. A project store is a ``.assetvault.json`` file found by walking up
from the working directory; the nearest one wins.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".assetvault"
CONFIG_FILE_NAME = "config.json"
PROJECT_CONFIG_FILE = ".assetvault.json"
DEFAULT_SYNC_INTERVAL = 30


class ConfigError(Exception):
    """The CLI is missing credentials or a registered machine."""


@dataclass
class LinkEntry:
    asset_id: str
    asset_slug: str
    local_path: str
    last_hash: str = ""
    last_synced_version: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "assetId": self.asset_id,
            "assetSlug": self.asset_slug,
            "localPath": self.local_path,
            "lastHash": self.last_hash,
            "lastSyncedVersion": self.last_synced_version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LinkEntry:
        return cls(
            asset_id=str(data["assetId"]),
            asset_slug=str(data["assetSlug"]),
            local_path=str(data["localPath"]),
            last_hash=str(data.get("lastHash") or ""),
            last_synced_version=str(data.get("lastSyncedVersion") or ""),
        )


@dataclass
class GlobalConfig:
    api_key: str
    server_url: str
    machine_id: str | None = None
    machine_name: str | None = None
    sync_interval: int = DEFAULT_SYNC_INTERVAL
    user_links: list[LinkEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiKey": self.api_key,
            "serverUrl": self.server_url,
            "machineId": self.machine_id,
            "machineName": self.machine_name,
            "syncInterval": self.sync_interval,
            "userLinks": [link.to_dict() for link in self.user_links],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GlobalConfig:
        return cls(
            api_key=str(data["apiKey"]),
            server_url=str(data["serverUrl"]),
            machine_id=data.get("machineId"),
            machine_name=data.get("machineName"),
            sync_interval=int(data.get("syncInterval") or DEFAULT_SYNC_INTERVAL),
            user_links=[LinkEntry.from_dict(item) for item in data.get("userLinks", [])],
        )


@dataclass
class ProjectConfig:
    links: list[LinkEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"links": [link.to_dict() for link in self.links]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectConfig:
        return cls(links=[LinkEntry.from_dict(item) for item in data.get("links", [])])


# ── Persistence ──────────────────────────────────────


def get_config_dir() -> Path:
    override = os.environ.get("ASSETVAULT_HOME")
    if override:
        return Path(override)
    return Path.home() / CONFIG_DIR_NAME


def get_config_path() -> Path:
    return get_config_dir() / CONFIG_FILE_NAME


def _atomic_write_json(path: Path, data: dict[str, Any], mode: int | None = None) -> None:
    """Write JSON to ``path`` via a temp file in the same directory and a rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2)
            fh.write("\n")
            fh.flush()
            os.fsync(fh.fileno())
        if mode is not None:
            # Not supported everywhere (e.g. some Windows filesystems)
            with contextlib.suppress(OSError):
                os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise


def _read_json(path: Path) -> dict[str, Any] | None:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("Ignoring malformed config file %s", path)
        return None
    if not isinstance(data, dict):
        logger.warning("Ignoring malformed config file %s", path)
        return None
    return data


def read_config() -> GlobalConfig | None:
    """Read the global config, or None if it is missing or malformed."""
    path = get_config_path()
    data = _read_json(path)
    if data is None:
        return None
    try:
        return GlobalConfig.from_dict(data)
    except (KeyError, TypeError, ValueError, AttributeError):
        logger.warning("Ignoring malformed config file %s", path)
        return None


def write_config(config: GlobalConfig) -> None:
    """Persist the global config atomically. Errors propagate."""
    _atomic_write_json(get_config_path(), config.to_dict(), mode=0o600)


def find_project_config(start_dir: Path | None = None) -> Path | None:
    """Return the nearest ``.assetvault.json`` at or above ``start_dir``."""
    current = (start_dir if start_dir is not None else Path.cwd()).resolve()
    while True:
        candidate = current / PROJECT_CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            return None
        current = parent


def read_project_config(directory: Path) -> ProjectConfig | None:
    path = directory / PROJECT_CONFIG_FILE
    data = _read_json(path)
    if data is None:
        return None
    try:
        return ProjectConfig.from_dict(data)
    except (KeyError, TypeError, ValueError, AttributeError):
        logger.warning("Ignoring malformed config file %s", path)
        return None


def write_project_config(directory: Path, config: ProjectConfig) -> None:
    _atomic_write_json(directory / PROJECT_CONFIG_FILE, config.to_dict())


# ── Scopes ───────────────────────────────────────────


@dataclass(frozen=True)
class GlobalScope:
    """Links kept in the machine-wide config."""


@dataclass(frozen=True)
class ProjectScope:
    """Links kept in ``<directory>/.assetvault.json``."""

    directory: Path


ConfigScope = GlobalScope | ProjectScope


@dataclass
class TrackedLink:
    """A link entry together with the store that owns it."""

    entry: LinkEntry
    scope: ConfigScope


@dataclass
class LinkStore:
    """Both link stores, resolved once per command.

    Entries are mutated in place by the sync engine; ``save()`` writes every
    loaded store back.
    """

    config: GlobalConfig
    projects: dict[Path, ProjectConfig] = field(default_factory=dict)
    project_dir: Path | None = None

    @classmethod
    def load(cls, start_dir: Path | None = None) -> LinkStore:
        config = read_config()
        if config is None:
            raise ConfigError("Not logged in. Run `av login` first.")
        store = cls(config=config)
        found = find_project_config(start_dir)
        if found is not None:
            store.project_dir = found.parent
            store.projects[found.parent] = read_project_config(found.parent) or ProjectConfig()
        return store

    @property
    def machine_id(self) -> str:
        if not self.config.machine_id:
            raise ConfigError("No machine registered. Run `av init` first.")
        return self.config.machine_id

    def _project(self, directory: Path) -> ProjectConfig:
        directory = directory.resolve()
        if directory not in self.projects:
            self.projects[directory] = read_project_config(directory) or ProjectConfig()
        return self.projects[directory]

    def _entries(self, scope: ConfigScope) -> list[LinkEntry]:
        if isinstance(scope, ProjectScope):
            return self._project(scope.directory).links
        return self.config.user_links

    def project_scope(self, fallback_dir: Path | None = None) -> ProjectScope:
        """The discovered project store, or a new one at ``fallback_dir``."""
        if self.project_dir is not None:
            return ProjectScope(self.project_dir)
        directory = (fallback_dir if fallback_dir is not None else Path.cwd()).resolve()
        return ProjectScope(directory)

    def all_links(self) -> list[TrackedLink]:
        tracked = [TrackedLink(entry, GlobalScope()) for entry in self.config.user_links]
        for directory, project in self.projects.items():
            tracked.extend(TrackedLink(entry, ProjectScope(directory)) for entry in project.links)
        return tracked

    def find_by_slug(self, slug: str) -> TrackedLink | None:
        for tracked in self.all_links():
            if tracked.entry.asset_slug == slug:
                return tracked
        return None

    def linked_paths(self) -> set[Path]:
        return {Path(t.entry.local_path).resolve() for t in self.all_links()}

    def link(self, entry: LinkEntry, scope: ConfigScope) -> TrackedLink:
        """Add ``entry`` to ``scope``, replacing any entry for the same asset.

        An asset lives in exactly one store, so it is dropped from the others.
        """
        if isinstance(scope, ProjectScope):
            scope = ProjectScope(scope.directory.resolve())
            self._project(scope.directory)
        self.config.user_links = [
            e for e in self.config.user_links if e.asset_id != entry.asset_id
        ]
        for project in self.projects.values():
            project.links = [e for e in project.links if e.asset_id != entry.asset_id]
        self._entries(scope).append(entry)
        return TrackedLink(entry, scope)

    def unlink(self, slug: str) -> TrackedLink | None:
        """Remove the link for ``slug``; global links are checked first."""
        tracked = self.find_by_slug(slug)
        if tracked is None:
            return None
        entries = self._entries(tracked.scope)
        entries.remove(tracked.entry)
        return tracked

    def save(self) -> None:
        write_config(self.config)
        for directory, project in self.projects.items():
            write_project_config(directory, project)
