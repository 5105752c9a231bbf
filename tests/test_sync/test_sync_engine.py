"""End-to-end tests for push/pull reconciliation against the real API."""

from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING

import httpx
import pytest
from httpx import ASGITransport

from backend.models.asset import StorageType
from cli.api_client import ApiClient
from cli.config import (
    GlobalConfig,
    GlobalScope,
    LinkEntry,
    LinkStore,
    ProjectScope,
    read_config,
)
from cli.hashing import hash_content, read_text
from cli.sync import LinkOutcome, SyncEngine, SyncError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Iterator
    from pathlib import Path

    from fastapi import FastAPI

    from backend.models.asset import Asset
    from tests.conftest import Principal

    AssetFactory = Callable[..., Awaitable[Asset]]

ORIGINAL = "# Deploy\n"


@pytest.fixture
async def api(app: FastAPI, principal: Principal) -> AsyncIterator[ApiClient]:
    async with ApiClient(
        "http://test", principal.raw_key, transport=ASGITransport(app=app)
    ) as client:
        yield client


@pytest.fixture
def store(assetvault_home: Path, principal: Principal) -> LinkStore:
    return LinkStore(
        config=GlobalConfig(
            api_key=principal.raw_key,
            server_url="http://test",
            machine_id=principal.machine.id,
            machine_name="laptop",
        )
    )


@pytest.fixture
def engine(api: ApiClient, store: LinkStore) -> SyncEngine:
    return SyncEngine(api, store)


@pytest.fixture
def project(tmp_path: Path) -> Path:
    skills = tmp_path / "webapp" / ".claude" / "skills"
    skills.mkdir(parents=True)
    return tmp_path / "webapp"


def _link(
    store: LinkStore,
    asset: Asset,
    path: Path,
    *,
    synced: str = "",
    last_hash: str = "",
    scope: GlobalScope | ProjectScope | None = None,
) -> LinkEntry:
    entry = LinkEntry(
        asset_id=asset.id,
        asset_slug=asset.slug,
        local_path=str(path),
        last_hash=last_hash,
        last_synced_version=synced,
    )
    store.link(entry, scope or GlobalScope())
    return entry


def _write(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


class TestPull:
    async def test_never_synced_link_is_pulled_into_new_directories(
        self,
        engine: SyncEngine,
        api: ApiClient,
        store: LinkStore,
        principal: Principal,
        asset_factory: AssetFactory,
        tmp_path: Path,
    ) -> None:
        asset = await asset_factory(principal.user, slug="deploy")
        target = tmp_path / "nested" / ".claude" / "skills" / "deploy.md"
        entry = _link(store, asset, target)

        report = await engine.pull()

        assert report.pulled == 1
        assert read_text(target) == ORIGINAL
        assert entry.last_synced_version == "1.0.0"
        assert entry.last_hash == hash_content(ORIGINAL)

        manifest = await api.sync_manifest(principal.machine.id)
        state = manifest.assets[0].sync_state
        assert state is not None
        assert state.synced_version == "1.0.0"
        assert state.install_path == str(target)
        assert state.last_pull_at is not None

    async def test_up_to_date_link_is_skipped(
        self,
        engine: SyncEngine,
        store: LinkStore,
        principal: Principal,
        asset_factory: AssetFactory,
        tmp_path: Path,
    ) -> None:
        asset = await asset_factory(principal.user)
        target = _write(tmp_path / "deploy.md", "local copy")
        _link(store, asset, target, synced="1.0.0", last_hash=hash_content("local copy"))

        report = await engine.pull()

        assert report.skipped == 1
        assert read_text(target) == "local copy"

    async def test_server_change_overwrites_unchanged_local(
        self,
        engine: SyncEngine,
        store: LinkStore,
        principal: Principal,
        asset_factory: AssetFactory,
        tmp_path: Path,
    ) -> None:
        asset = await asset_factory(principal.user, version="1.0.4", content="server v4")
        target = _write(tmp_path / "deploy.md", "old")
        entry = _link(store, asset, target, synced="1.0.3", last_hash=hash_content("old"))

        report = await engine.pull()

        assert report.pulled == 1
        assert read_text(target) == "server v4"
        assert entry.last_synced_version == "1.0.4"

    async def test_conflict_with_newer_local_edit_keeps_file(
        self,
        engine: SyncEngine,
        store: LinkStore,
        principal: Principal,
        asset_factory: AssetFactory,
        tmp_path: Path,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        asset = await asset_factory(
            principal.user,
            slug="deploy",
            version="1.0.2",
            content="server edit",
            updated_at="2020-01-01T00:00:00+00:00",
        )
        target = _write(tmp_path / "deploy.md", "local edit")
        entry = _link(store, asset, target, synced="1.0.1", last_hash=hash_content("base"))

        report = await engine.pull()

        assert report.conflicts == 1
        assert read_text(target) == "local edit"
        assert entry.last_synced_version == "1.0.1"
        assert "Conflict: deploy local is newer, skipping pull" in caplog.text

    async def test_conflict_with_newer_server_edit_overwrites(
        self,
        engine: SyncEngine,
        store: LinkStore,
        principal: Principal,
        asset_factory: AssetFactory,
        tmp_path: Path,
    ) -> None:
        asset = await asset_factory(
            principal.user,
            version="1.0.2",
            content="server edit",
            updated_at="2100-01-01T00:00:00+00:00",
        )
        target = _write(tmp_path / "deploy.md", "local edit")
        _link(store, asset, target, synced="1.0.1", last_hash=hash_content("base"))

        report = await engine.pull()

        assert report.pulled == 1
        assert read_text(target) == "server edit"

    async def test_bundle_assets_are_skipped(
        self,
        engine: SyncEngine,
        store: LinkStore,
        principal: Principal,
        asset_factory: AssetFactory,
        tmp_path: Path,
    ) -> None:
        asset = await asset_factory(
            principal.user,
            content=None,
            storage_type=StorageType.BUNDLE,
            bundle_url="https://cdn.example.com/b.zip",
        )
        target = tmp_path / "bundle.md"
        _link(store, asset, target)

        report = await engine.pull()

        assert report.skipped == 1
        assert not target.exists()

    async def test_unknown_slug_is_an_error(self, engine: SyncEngine) -> None:
        with pytest.raises(SyncError, match="No link found"):
            await engine.pull("missing")

    async def test_write_guard_wraps_the_write(
        self,
        api: ApiClient,
        store: LinkStore,
        principal: Principal,
        asset_factory: AssetFactory,
        tmp_path: Path,
    ) -> None:
        asset = await asset_factory(principal.user)
        target = tmp_path / "deploy.md"
        _link(store, asset, target)
        events: list[str] = []

        @contextlib.contextmanager
        def guard(entry: LinkEntry) -> Iterator[None]:
            events.append(f"enter:{entry.asset_slug}:{target.exists()}")
            yield
            events.append(f"exit:{target.exists()}")

        await SyncEngine(api, store, write_guard=guard).pull()

        assert events == [f"enter:{asset.slug}:False", "exit:True"]


class TestPush:
    async def test_local_edit_is_pushed(
        self,
        engine: SyncEngine,
        api: ApiClient,
        store: LinkStore,
        principal: Principal,
        asset_factory: AssetFactory,
        tmp_path: Path,
    ) -> None:
        asset = await asset_factory(principal.user)
        target = _write(tmp_path / "deploy.md", "my edit\n")
        entry = _link(store, asset, target, synced="1.0.0", last_hash=hash_content(ORIGINAL))

        report = await engine.push()

        assert report.pushed == 1
        assert entry.last_synced_version == "1.0.1"
        assert entry.last_hash == hash_content("my edit\n")
        remote = await api.get_asset_content(asset.id)
        assert remote.content == "my edit\n"
        assert remote.version == "1.0.1"

    async def test_push_persists_registry(
        self,
        engine: SyncEngine,
        store: LinkStore,
        principal: Principal,
        asset_factory: AssetFactory,
        tmp_path: Path,
    ) -> None:
        asset = await asset_factory(principal.user)
        target = _write(tmp_path / "deploy.md", "edit")
        _link(store, asset, target, synced="1.0.0", last_hash=hash_content(ORIGINAL))

        await engine.push()

        saved = read_config()
        assert saved is not None
        assert saved.user_links[0].last_synced_version == "1.0.1"

    async def test_unchanged_file_makes_no_request(
        self, store: LinkStore, tmp_path: Path
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError(f"unexpected request {request.url}")

        target = _write(tmp_path / "deploy.md", "same")
        store.link(
            LinkEntry("a1", "deploy", str(target), hash_content("same"), "1.0.0"), GlobalScope()
        )

        async with ApiClient(
            "http://test", "avk_" + "k" * 32, transport=httpx.MockTransport(handler)
        ) as client:
            report = await SyncEngine(client, store).push()

        assert report.skipped == 1
        assert report.pushed == 0

    async def test_named_push_forces_unchanged_file(
        self,
        engine: SyncEngine,
        store: LinkStore,
        principal: Principal,
        asset_factory: AssetFactory,
        tmp_path: Path,
    ) -> None:
        asset = await asset_factory(principal.user, slug="deploy")
        target = _write(tmp_path / "deploy.md", ORIGINAL)
        _link(store, asset, target, synced="1.0.0", last_hash=hash_content(ORIGINAL))

        report = await engine.push("deploy")

        assert report.pushed == 1

    async def test_push_link_reports_outcome(
        self,
        engine: SyncEngine,
        store: LinkStore,
        principal: Principal,
        asset_factory: AssetFactory,
        tmp_path: Path,
    ) -> None:
        asset = await asset_factory(principal.user)
        target = _write(tmp_path / "deploy.md", "edit")
        _link(store, asset, target, synced="1.0.0", last_hash=hash_content(ORIGINAL))
        [tracked] = store.all_links()

        assert await engine.push_link(tracked) is LinkOutcome.PUSHED
        assert await engine.push_link(tracked) is LinkOutcome.SKIPPED

    async def test_failure_does_not_abort_batch(
        self,
        engine: SyncEngine,
        store: LinkStore,
        principal: Principal,
        stranger: Principal,
        asset_factory: AssetFactory,
        tmp_path: Path,
    ) -> None:
        foreign = await asset_factory(stranger.user, slug="foreign")
        mine = await asset_factory(principal.user, slug="mine")
        _link(store, foreign, _write(tmp_path / "a.md", "edit a"), synced="1.0.0", last_hash="x")
        _link(store, mine, _write(tmp_path / "b.md", "edit b"), synced="1.0.0", last_hash="x")

        report = await engine.push()

        assert report.failed == 1
        assert report.pushed == 1

    async def test_missing_and_empty_files_are_skipped(
        self,
        engine: SyncEngine,
        store: LinkStore,
        principal: Principal,
        asset_factory: AssetFactory,
        tmp_path: Path,
    ) -> None:
        gone = await asset_factory(principal.user)
        empty = await asset_factory(principal.user)
        _link(store, gone, tmp_path / "gone.md", synced="1.0.0", last_hash="x")
        _link(store, empty, _write(tmp_path / "empty.md", ""), synced="1.0.0", last_hash="x")

        report = await engine.push()

        assert report.skipped == 2
        assert report.pushed == 0


class TestLinking:
    async def test_link_project_asset_uses_default_path(
        self,
        engine: SyncEngine,
        store: LinkStore,
        principal: Principal,
        asset_factory: AssetFactory,
        project: Path,
    ) -> None:
        await asset_factory(principal.user, slug="deploy", primary_file_name="deploy.md")

        tracked, asset = await engine.link_asset("deploy", cwd=project)

        expected = (project / ".claude" / "skills" / "deploy.md").resolve()
        assert tracked.entry.local_path == str(expected)
        assert tracked.scope == ProjectScope(project.resolve())
        assert tracked.entry.last_synced_version == ""
        assert (project / ".assetvault.json").is_file()
        assert asset.slug == "deploy"

    async def test_link_unknown_slug(self, engine: SyncEngine, project: Path) -> None:
        with pytest.raises(SyncError, match="not found"):
            await engine.link_asset("nope", cwd=project)

    async def test_link_directory_creates_and_matches(
        self,
        engine: SyncEngine,
        api: ApiClient,
        store: LinkStore,
        principal: Principal,
        asset_factory: AssetFactory,
        project: Path,
    ) -> None:
        skills = project / ".claude" / "skills"
        await asset_factory(principal.user, slug="deploy", primary_file_name="deploy.md")
        _write(skills / "deploy.md", ORIGINAL)
        _write(skills / "review.md", "# Review\n")
        _write(skills / ".hidden.md", "ignored")

        report = await engine.link_directory(skills)

        assert report.created == 1
        assert len(report.linked) == 2
        slugs = sorted(t.entry.asset_slug for t in store.all_links())
        assert slugs == ["deploy", "webapp-review"]
        manifest = await api.sync_manifest(principal.machine.id)
        assert sorted(a.name for a in manifest.assets) == ["Deploy Skill", "webapp - review"]

    async def test_link_directory_rejects_unknown_layout(
        self, engine: SyncEngine, tmp_path: Path
    ) -> None:
        with pytest.raises(SyncError, match="Could not infer asset type"):
            await engine.link_directory(tmp_path)


class TestScan:
    async def test_scan_creates_assets_for_unlinked_siblings(
        self,
        engine: SyncEngine,
        api: ApiClient,
        store: LinkStore,
        principal: Principal,
        asset_factory: AssetFactory,
        project: Path,
    ) -> None:
        skills = project / ".claude" / "skills"
        asset = await asset_factory(principal.user, slug="deploy")
        linked = _write(skills / "deploy.md", ORIGINAL)
        _link(
            store,
            asset,
            linked.resolve(),
            synced="1.0.0",
            last_hash=hash_content(ORIGINAL),
            scope=ProjectScope(project),
        )
        _write(skills / "review.md", "# Review\n")
        _write(skills / "empty.md", "")

        report = await engine.scan_for_new_files()

        assert report.created == 1
        assert len(store.all_links()) == 2
        manifest = await api.sync_manifest(principal.machine.id)
        created = next(a for a in manifest.assets if a.name == "webapp - review")
        assert created.primary_file_name == "review.md"
        assert created.type == "SKILL"
        assert created.primary_platform == "CLAUDE_CODE"

        again = await engine.scan_for_new_files()
        assert again.created == 0

    async def test_scan_finds_nested_skill_files(
        self,
        engine: SyncEngine,
        api: ApiClient,
        store: LinkStore,
        principal: Principal,
        asset_factory: AssetFactory,
        project: Path,
    ) -> None:
        skills = project / ".claude" / "skills"
        asset = await asset_factory(principal.user, slug="deploy")
        linked = _write(skills / "deploy" / "SKILL.md", ORIGINAL)
        _link(store, asset, linked.resolve(), synced="1.0.0", last_hash=hash_content(ORIGINAL))
        _write(skills / "review" / "SKILL.md", "# Review\n")
        _write(skills / "review" / "notes.txt", "not markdown")

        report = await engine.scan_for_new_files()

        assert report.created == 1
        manifest = await api.sync_manifest(principal.machine.id)
        created = next(a for a in manifest.assets if a.name == "webapp - review")
        assert created.primary_file_name == "review/SKILL.md"

    async def test_scan_without_links_is_noop(self, engine: SyncEngine) -> None:
        report = await engine.scan_for_new_files()
        assert report.created == 0
