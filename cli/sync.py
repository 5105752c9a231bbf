"""Push/pull reconciliation between linked local files and the server."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path

import httpx
import pendulum

from cli.api_client import ApiClient, ApiError, ManifestAsset
from cli.config import ConfigScope, GlobalScope, LinkEntry, LinkStore, ProjectScope, TrackedLink
from cli.conflict import (
    SyncAction,
    decide_sync_action,
    local_hash_changed,
    never_synced,
    server_version_changed,
)
from cli.hashing import hash_content, read_text, write_text
from cli.install_paths import (
    DIR_TO_TYPE,
    find_project_root,
    get_default_local_path,
    infer_project_name,
    infer_type_from_path,
)

logger = logging.getLogger(__name__)

_EPOCH = datetime.fromtimestamp(0, tz=UTC)

WriteGuard = Callable[[LinkEntry], AbstractContextManager[None]]


class SyncError(Exception):
    """A command-level failure (unknown slug, bad directory)."""


class LinkOutcome(StrEnum):
    PUSHED = "pushed"
    PULLED = "pulled"
    SKIPPED = "skipped"
    CONFLICT = "conflict"
    FAILED = "failed"


@dataclass
class SyncReport:
    pushed: int = 0
    pulled: int = 0
    skipped: int = 0
    conflicts: int = 0
    failed: int = 0
    created: int = 0
    linked: list[TrackedLink] = field(default_factory=list)

    def record(self, outcome: LinkOutcome) -> None:
        if outcome is LinkOutcome.PUSHED:
            self.pushed += 1
        elif outcome is LinkOutcome.PULLED:
            self.pulled += 1
        elif outcome is LinkOutcome.CONFLICT:
            self.conflicts += 1
        elif outcome is LinkOutcome.FAILED:
            self.failed += 1
        else:
            self.skipped += 1


@contextlib.contextmanager
def _unguarded(entry: LinkEntry) -> Iterator[None]:
    yield


def _parse_server_time(value: str) -> datetime:
    """Server ``updatedAt``; unparseable values sort before any local edit."""
    try:
        parsed = pendulum.parse(value)
    except ValueError:
        logger.warning("Unparseable server timestamp %r", value)
        return _EPOCH
    if not isinstance(parsed, datetime):
        return _EPOCH
    return parsed


def _asset_name(display_name: str, project_name: str | None) -> str:
    return f"{project_name} - {display_name}" if project_name else display_name


class SyncEngine:
    """Reconcile every link in a ``LinkStore`` against the server.

    Registry changes are made on the store's entries in place and persisted
    with ``store.save()`` at the end of each batch.
    """

    def __init__(
        self,
        client: ApiClient,
        store: LinkStore,
        write_guard: WriteGuard | None = None,
    ) -> None:
        self.client = client
        self.store = store
        self.machine_id = store.machine_id
        self.write_guard: WriteGuard = write_guard or _unguarded

    def _targets(self, slug: str | None) -> list[TrackedLink]:
        links = self.store.all_links()
        if slug is None:
            return links
        return [t for t in links if t.entry.asset_slug == slug]

    # ── Push ─────────────────────────────────────────────

    async def push(self, slug: str | None = None) -> SyncReport:
        """Push changed files; a named ``slug`` is pushed even if unchanged."""
        report = SyncReport()
        targets = self._targets(slug)
        if not targets:
            if slug is not None:
                raise SyncError(f'No link found for "{slug}".')
            logger.info("No assets linked.")
            return report

        for tracked in targets:
            report.record(await self.push_link(tracked, force=slug is not None))

        self.store.save()
        if report.pushed == 0 and slug is None:
            logger.info("No local changes to push.")
        else:
            logger.info("Pushed %d asset(s).", report.pushed)
        return report

    async def push_link(self, tracked: TrackedLink, force: bool = False) -> LinkOutcome:
        entry = tracked.entry
        path = Path(entry.local_path)
        if not path.is_file():
            logger.warning("Skipping %s: file not found (%s)", entry.asset_slug, path)
            return LinkOutcome.SKIPPED

        try:
            content = read_text(path)
        except (OSError, UnicodeDecodeError) as exc:
            logger.error("Failed to read %s: %s", path, exc)
            return LinkOutcome.FAILED

        current_hash = hash_content(content)
        if current_hash == entry.last_hash and not force:
            return LinkOutcome.SKIPPED
        if not content:
            logger.warning("Skipping %s: file is empty", entry.asset_slug)
            return LinkOutcome.SKIPPED

        logger.info("Pushing %s...", entry.asset_slug)
        try:
            version = await self.client.put_asset_content(
                entry.asset_id,
                content=content,
                local_hash=current_hash,
                machine_id=self.machine_id,
            )
        except (ApiError, httpx.HTTPError) as exc:
            logger.error("Failed to push %s: %s", entry.asset_slug, exc)
            return LinkOutcome.FAILED

        entry.last_hash = current_hash
        entry.last_synced_version = version
        logger.info("Pushed %s -> v%s", entry.asset_slug, version)
        return LinkOutcome.PUSHED

    # ── Pull ─────────────────────────────────────────────

    async def pull(self, slug: str | None = None) -> SyncReport:
        """Pull server updates for linked assets.

        Manifest fetch failures propagate; per-asset failures are counted.
        """
        report = SyncReport()
        targets = self._targets(slug)
        if not targets:
            if slug is not None:
                raise SyncError(f'No link found for "{slug}".')
            logger.info("No assets linked.")
            return report

        manifest = await self.client.sync_manifest(self.machine_id)
        assets = {asset.id: asset for asset in manifest.assets}

        for tracked in targets:
            asset = assets.get(tracked.entry.asset_id)
            if asset is None:
                logger.warning("Skipping %s: asset not found on server.", tracked.entry.asset_slug)
                report.record(LinkOutcome.SKIPPED)
                continue
            report.record(await self.pull_link(tracked, asset, force=slug is not None))

        if report.pulled:
            self.store.save()
            logger.info("Pulled %d asset(s).", report.pulled)
        elif slug is None:
            logger.info("All assets up to date.")
        return report

    async def pull_link(
        self, tracked: TrackedLink, asset: ManifestAsset, force: bool = False
    ) -> LinkOutcome:
        entry = tracked.entry
        if asset.storage_type == "BUNDLE":
            if force:
                location = asset.sync_state.install_path if asset.sync_state else None
                logger.warning(
                    "%s is a BUNDLE asset. Download from: %s",
                    entry.asset_slug,
                    location or "web UI",
                )
            return LinkOutcome.SKIPPED

        server_changed = server_version_changed(entry.last_synced_version, asset.current_version)
        if not server_changed and not never_synced(entry.last_synced_version) and not force:
            return LinkOutcome.SKIPPED

        path = Path(entry.local_path)
        local_changed = False
        local_mtime = _EPOCH
        if path.is_file():
            try:
                current_hash = hash_content(read_text(path))
                local_mtime = datetime.fromtimestamp(path.stat().st_mtime, tz=UTC)
            except (OSError, UnicodeDecodeError) as exc:
                logger.error("Failed to read %s: %s", path, exc)
                return LinkOutcome.FAILED
            local_changed = local_hash_changed(entry.last_hash, current_hash)

        if local_changed and server_changed:
            action = decide_sync_action(
                True, True, local_mtime, _parse_server_time(asset.updated_at)
            )
            if action is SyncAction.CONFLICT_PUSH:
                logger.warning(
                    "Conflict: %s local is newer, skipping pull. Run `av push %s` instead.",
                    entry.asset_slug,
                    entry.asset_slug,
                )
                return LinkOutcome.CONFLICT
            logger.warning("Conflict: %s server is newer, overwriting local.", entry.asset_slug)

        logger.info("Pulling %s...", entry.asset_slug)
        try:
            remote = await self.client.get_asset_content(entry.asset_id)
        except (ApiError, httpx.HTTPError) as exc:
            logger.error("Failed to pull %s: %s", entry.asset_slug, exc)
            return LinkOutcome.FAILED

        if remote.type == "BUNDLE":
            logger.warning("%s is a BUNDLE asset. URL: %s", entry.asset_slug, remote.bundle_url)
            return LinkOutcome.SKIPPED

        content = remote.content or ""
        try:
            with self.write_guard(entry):
                path.parent.mkdir(parents=True, exist_ok=True)
                write_text(path, content)
        except OSError as exc:
            logger.error("Failed to write %s: %s", path, exc)
            return LinkOutcome.FAILED

        entry.last_hash = hash_content(content)
        entry.last_synced_version = remote.version

        try:
            await self.client.report_sync(
                machine_id=self.machine_id,
                asset_id=entry.asset_id,
                synced_version=remote.version,
                local_hash=entry.last_hash,
                install_path=str(path),
                direction="pull",
            )
        except (ApiError, httpx.HTTPError) as exc:
            logger.warning("Pulled %s but could not report sync: %s", entry.asset_slug, exc)

        logger.info("Pulled %s -> v%s", entry.asset_slug, remote.version)
        return LinkOutcome.PULLED

    # ── Linking ──────────────────────────────────────────

    async def link_asset(
        self, slug: str, local_path: Path | None = None, cwd: Path | None = None
    ) -> tuple[TrackedLink, ManifestAsset]:
        """Link a server asset to a local file in the store its scope selects."""
        cwd = (cwd if cwd is not None else Path.cwd()).resolve()
        manifest = await self.client.sync_manifest(self.machine_id)
        asset = next((a for a in manifest.assets if a.slug == slug), None)
        if asset is None:
            raise SyncError(f'Asset "{slug}" not found. Check the slug and try again.')

        if local_path is not None:
            resolved = local_path.expanduser().resolve()
        else:
            base = cwd if asset.install_scope == "PROJECT" else Path.home()
            resolved = get_default_local_path(
                asset.primary_platform, asset.type, asset.primary_file_name, base
            )

        entry = LinkEntry(
            asset_id=asset.id,
            asset_slug=asset.slug,
            local_path=str(resolved),
            last_synced_version=asset.sync_state.synced_version if asset.sync_state else "",
        )
        if resolved.is_file():
            entry.last_hash = hash_content(read_text(resolved))

        scope: ConfigScope = (
            self.store.project_scope(cwd) if asset.install_scope == "PROJECT" else GlobalScope()
        )
        tracked = self.store.link(entry, scope)
        self.store.save()
        return tracked, asset

    async def link_directory(self, directory: Path) -> SyncReport:
        """Create or match an asset for every file in a platform directory."""
        resolved = directory.expanduser().resolve()
        if not resolved.is_dir():
            raise SyncError(f"Directory not found: {resolved}")
        inferred = infer_type_from_path(resolved)
        if inferred is None:
            raise SyncError(
                f'Could not infer asset type from path "{resolved}". '
                f"Supported directories: {', '.join(DIR_TO_TYPE)}"
            )
        platform, asset_type = inferred
        project_name = infer_project_name(resolved)
        scope = ProjectScope(find_project_root(resolved) or Path.cwd().resolve())

        report = SyncReport()
        files = sorted(p for p in resolved.iterdir() if p.is_file() and not p.name.startswith("."))
        if not files:
            logger.warning("No files found in %s.", resolved)
            return report

        manifest = await self.client.sync_manifest(self.machine_id)
        existing_by_file = {a.primary_file_name: a for a in manifest.assets}
        linked_paths = self.store.linked_paths()

        for file_path in files:
            if file_path in linked_paths:
                logger.info("Skipping %s (already linked)", file_path.name)
                report.skipped += 1
                continue
            existing = existing_by_file.get(file_path.name)
            if existing is not None:
                entry = LinkEntry(
                    asset_id=existing.id,
                    asset_slug=existing.slug,
                    local_path=str(file_path),
                    last_hash=hash_content(read_text(file_path)),
                    last_synced_version=existing.current_version,
                )
                report.linked.append(self.store.link(entry, scope))
                logger.info('Linked "%s" -> %s', existing.name, file_path)
                continue
            tracked = await self._create_and_link(
                file_path,
                primary_file_name=file_path.name,
                name=_asset_name(file_path.stem, project_name),
                platform=platform,
                asset_type=asset_type,
                scope=scope,
            )
            if tracked is None:
                report.failed += 1
            else:
                report.created += 1
                report.linked.append(tracked)

        self.store.save()
        return report

    async def scan_for_new_files(self) -> SyncReport:
        """Auto-create and link unlinked files next to already linked ones.

        Sibling subdirectories are scanned one level deep for ``.md`` files,
        so linking ``skills/deploy/SKILL.md`` also finds ``skills/review/SKILL.md``.
        """
        report = SyncReport()
        links = self.store.all_links()
        if not links:
            logger.info("No linked assets. Nothing to scan.")
            return report

        directories: set[Path] = set()
        for tracked in links:
            directory = Path(tracked.entry.local_path).resolve().parent
            directories.add(directory)
            if infer_type_from_path(directory.parent):
                directories.add(directory.parent)

        linked_paths = self.store.linked_paths()
        for directory in sorted(directories):
            if not directory.is_dir():
                continue
            inferred = infer_type_from_path(directory)
            if inferred is None:
                continue
            platform, asset_type = inferred
            project_name = infer_project_name(directory)
            scope = self.store.project_scope(find_project_root(directory))

            for file_path in self._unlinked_files(directory, linked_paths):
                relative = file_path.relative_to(directory)
                display = relative.parts[0] if len(relative.parts) > 1 else file_path.stem
                tracked = await self._create_and_link(
                    file_path,
                    primary_file_name=relative.as_posix(),
                    name=_asset_name(display, project_name),
                    platform=platform,
                    asset_type=asset_type,
                    scope=scope,
                )
                if tracked is None:
                    report.failed += 1
                    continue
                linked_paths.add(file_path)
                report.created += 1
                report.linked.append(tracked)

        if report.created:
            self.store.save()
            logger.info("Auto-linked %d new file(s).", report.created)
        else:
            logger.info("No new files found.")
        return report

    @staticmethod
    def _unlinked_files(directory: Path, linked_paths: set[Path]) -> list[Path]:
        found: list[Path] = []
        for child in sorted(directory.iterdir()):
            if child.name.startswith("."):
                continue
            if child.is_file():
                if child not in linked_paths:
                    found.append(child)
            elif child.is_dir():
                found.extend(
                    sub
                    for sub in sorted(child.iterdir())
                    if sub.is_file() and sub.suffix == ".md" and sub not in linked_paths
                )
        return found

    async def _create_and_link(
        self,
        file_path: Path,
        *,
        primary_file_name: str,
        name: str,
        platform: str,
        asset_type: str,
        scope: ConfigScope,
    ) -> TrackedLink | None:
        try:
            content = read_text(file_path)
        except (OSError, UnicodeDecodeError) as exc:
            logger.error("Failed to read %s: %s", file_path, exc)
            return None
        if not content:
            logger.info("Skipping empty file %s", file_path)
            return None

        logger.info('Creating asset: "%s"', name)
        try:
            created = await self.client.create_asset(
                name=name,
                content=content,
                asset_type=asset_type,
                primary_platform=platform,
                primary_file_name=primary_file_name,
                install_scope="PROJECT",
                machine_id=self.machine_id,
            )
        except (ApiError, httpx.HTTPError) as exc:
            logger.error("Failed to create asset for %s: %s", file_path.name, exc)
            return None

        entry = LinkEntry(
            asset_id=created.id,
            asset_slug=created.slug,
            local_path=str(file_path),
            last_hash=hash_content(content),
            last_synced_version=created.current_version,
        )
        tracked = self.store.link(entry, scope)
        logger.info('Linked "%s" -> %s', created.name, file_path)
        return tracked
