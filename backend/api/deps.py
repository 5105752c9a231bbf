"""Shared API dependencies: DB session, API key auth, rate limiting."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from backend.config import Settings
from backend.services.auth_service import ApiKeyAuth, authenticate_api_key
from backend.services.rate_limit_service import InMemoryRateLimiter

security = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


def get_rate_limiter(request: Request) -> InMemoryRateLimiter:
    """Get the rate limiter injected into app state."""
    limiter: InMemoryRateLimiter = request.app.state.rate_limiter
    return limiter


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


async def require_api_key(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> ApiKeyAuth:
    """Require a valid CLI API key. Raises 401 otherwise."""
    auth = None
    if credentials is not None:
        auth = await authenticate_api_key(session, credentials.credentials)
    if auth is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return auth


def rate_limited(
    scope: str,
    limit_setting: str,
    window_setting: str = "rate_limit_window_seconds",
) -> Callable[..., Awaitable[ApiKeyAuth]]:
    """Build a dependency that authenticates and then applies a per-key limit.

    ``limit_setting`` and ``window_setting`` name ``Settings`` fields so the
    limits stay configurable per deployment.
    """

    async def dependency(
        auth: Annotated[ApiKeyAuth, Depends(require_api_key)],
        settings: Annotated[Settings, Depends(get_settings)],
        limiter: Annotated[InMemoryRateLimiter, Depends(get_rate_limiter)],
    ) -> ApiKeyAuth:
        limit: int = getattr(settings, limit_setting)
        window: int = getattr(settings, window_setting)
        allowed, retry_after = limiter.check(f"{scope}:{auth.key_id}", limit, window)
        if not allowed:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests",
                headers={"Retry-After": str(retry_after)},
            )
        return auth

    return dependency
