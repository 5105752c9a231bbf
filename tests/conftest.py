"""Shared test fixtures for AssetVault."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient

from backend.config import Settings
from backend.main import create_app, init_database
from backend.models.asset import Asset, StorageType
from backend.models.machine import UserMachine
from backend.models.user import User
from backend.services.auth_service import create_api_key
from backend.services.datetime_service import format_iso, now_utc
from backend.services.rate_limit_service import InMemoryRateLimiter

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable
    from pathlib import Path

    from fastapi import FastAPI
    from sqlalchemy.ext.asyncio import AsyncSession


@dataclass
class Principal:
    """A seeded user with a machine-bound API key."""

    user: User
    machine: UserMachine
    raw_key: str

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.raw_key}"}


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings backed by a temporary SQLite database."""
    db_path = tmp_path / "db" / "test.db"
    return Settings(
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
    )


@pytest.fixture
def rate_limiter() -> InMemoryRateLimiter:
    return InMemoryRateLimiter()


@pytest.fixture
async def app(
    test_settings: Settings, rate_limiter: InMemoryRateLimiter
) -> AsyncGenerator[FastAPI]:
    """A fully initialized app.

    Runs the database part of the lifespan by hand because ASGITransport
    does not trigger it.
    """
    application = create_app(test_settings, rate_limiter=rate_limiter)
    test_settings.validate_runtime_security()
    await init_database(application)
    yield application
    await application.state.engine.dispose()


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def db_session(app: FastAPI) -> AsyncGenerator[AsyncSession]:
    """A session on the same database the app uses."""
    async with app.state.session_factory() as session:
        yield session


async def make_user(session: AsyncSession, username: str = "alice") -> User:
    user = User(
        username=username,
        email=f"{username}@example.com",
        display_name=username.title(),
        created_at=format_iso(now_utc()),
    )
    session.add(user)
    await session.commit()
    return user


async def make_machine(
    session: AsyncSession, user: User, identifier: str = "laptop-1a2b"
) -> UserMachine:
    machine = UserMachine(
        user_id=user.id,
        name="laptop",
        machine_identifier=identifier,
        created_at=format_iso(now_utc()),
    )
    session.add(machine)
    await session.commit()
    return machine


@pytest.fixture
async def principal(db_session: AsyncSession) -> Principal:
    user = await make_user(db_session)
    machine = await make_machine(db_session, user)
    _, raw = await create_api_key(db_session, user, "cli", machine_id=machine.id)
    return Principal(user=user, machine=machine, raw_key=raw)


@pytest.fixture
async def stranger(db_session: AsyncSession) -> Principal:
    """A second user who owns nothing the main principal owns."""
    user = await make_user(db_session, "mallory")
    machine = await make_machine(db_session, user, identifier="desktop-9f9f")
    _, raw = await create_api_key(db_session, user, "cli", machine_id=machine.id)
    return Principal(user=user, machine=machine, raw_key=raw)


@pytest.fixture
def asset_factory(db_session: AsyncSession) -> Callable[..., Awaitable[Asset]]:
    """Insert assets directly, bypassing the API."""
    counter = 0

    async def _make(
        author: User,
        *,
        name: str = "Deploy Skill",
        slug: str | None = None,
        content: str | None = "# Deploy\n",
        version: str = "1.0.0",
        storage_type: StorageType = StorageType.INLINE,
        bundle_url: str | None = None,
        primary_file_name: str = "deploy.md",
        install_scope: str = "PROJECT",
        updated_at: str | None = None,
        deleted_at: str | None = None,
    ) -> Asset:
        nonlocal counter
        counter += 1
        now = format_iso(now_utc())
        asset = Asset(
            slug=slug or f"asset-{counter}",
            name=name,
            author_id=author.id,
            primary_file_name=primary_file_name,
            install_scope=install_scope,
            storage_type=storage_type,
            content=content,
            bundle_url=bundle_url,
            current_version=version,
            created_at=now,
            updated_at=updated_at or now,
            deleted_at=deleted_at,
        )
        db_session.add(asset)
        await db_session.commit()
        return asset

    return _make


@pytest.fixture
def assetvault_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the CLI's global config directory at a temp dir."""
    home = tmp_path / "av-home"
    monkeypatch.setenv("ASSETVAULT_HOME", str(home))
    return home
