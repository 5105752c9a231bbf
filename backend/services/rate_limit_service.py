"""In-memory sliding-window rate limiter for CLI endpoints. State is lost on restart."""

from __future__ import annotations

from collections import deque
from datetime import UTC, datetime


class InMemoryRateLimiter:
    """Track request timestamps per key in an in-memory sliding window.

    Thread-safety: safe under asyncio's single-threaded cooperative model.
    ``check`` is synchronous with no await points between read and mutation,
    so no interleaving can occur. Do NOT use from multiple OS threads without
    external synchronization.
    """

    def __init__(self) -> None:
        self._hits: dict[str, deque[float]] = {}

    def clear(self, key: str | None = None) -> None:
        """Forget recorded hits for ``key``, or for every key when omitted."""
        if key is None:
            self._hits.clear()
        else:
            self._hits.pop(key, None)

    def _prune(self, key: str, window_seconds: int, now: float) -> deque[float]:
        hits = self._hits.setdefault(key, deque())
        cutoff = now - window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()
        return hits

    def check(self, key: str, limit: int, window_seconds: int) -> tuple[bool, int]:
        """Record one request for ``key`` unless it is over the limit.

        Returns ``(allowed, retry_after_seconds)``. Rejected requests are not
        recorded, so a client that backs off regains capacity as the window
        slides.
        """
        now = datetime.now(UTC).timestamp()
        hits = self._prune(key, window_seconds, now)
        if len(hits) >= limit:
            retry_after = int(hits[0] + window_seconds - now) + 1
            return False, max(retry_after, 1)
        hits.append(now)
        return True, 0
