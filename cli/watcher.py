"""Debounced file change watcher for linked asset files.

watchdog observes directories, so each watched file's parent directory is
scheduled once and events are dispatched to the per-file registrations.
Events arrive on the observer thread and are handed to the asyncio loop,
where all debounce timers live.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver, ObservedWatch

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 2.0

_RELEVANT_EVENTS = {EVENT_TYPE_CREATED, EVENT_TYPE_DELETED, EVENT_TYPE_MODIFIED, EVENT_TYPE_MOVED}

OnChange = Callable[[], Awaitable[None] | None]


@dataclass
class _Registration:
    path: Path
    on_change: OnChange
    debounce: float
    timer: asyncio.TimerHandle | None = None


class _DispatchHandler(FileSystemEventHandler):
    """Forwards raw watchdog events to the watcher's event loop."""

    def __init__(self, watcher: FileWatcher) -> None:
        self._watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in _RELEVANT_EVENTS:
            return
        self._watcher._on_raw_event(os.fsdecode(event.src_path))
        dest_path = getattr(event, "dest_path", "")
        if dest_path:
            self._watcher._on_raw_event(os.fsdecode(dest_path))


class FileWatcher:
    """Watch individual files and call back once per burst of changes."""

    def __init__(
        self,
        observer_factory: Callable[[], BaseObserver] = Observer,
    ) -> None:
        self._observer_factory = observer_factory
        self._observer: BaseObserver | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._handler = _DispatchHandler(self)
        self._registrations: dict[Path, _Registration] = {}
        self._scheduled: dict[Path, ObservedWatch] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._retired: list[BaseObserver] = []

    @property
    def watch_count(self) -> int:
        return len(self._registrations)

    def is_watching(self, path: str | Path) -> bool:
        return Path(path).resolve() in self._registrations

    def watch(
        self,
        path: str | Path,
        on_change: OnChange,
        debounce: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        """Register ``on_change`` for ``path``; a missing file is ignored.

        Must be called from the event loop that will run the callbacks.
        """
        resolved = Path(path).resolve()
        if not resolved.is_file():
            logger.debug("Not watching %s: file does not exist", resolved)
            return

        if self._loop is None:
            self._loop = asyncio.get_running_loop()

        existing = self._registrations.get(resolved)
        if existing is not None:
            if existing.timer is not None:
                existing.timer.cancel()
            self._registrations[resolved] = _Registration(resolved, on_change, debounce)
            return

        directory = resolved.parent
        if directory not in self._scheduled:
            try:
                observer = self._ensure_observer()
                self._scheduled[directory] = observer.schedule(
                    self._handler, str(directory), recursive=False
                )
            except OSError as exc:
                logger.warning("Cannot watch %s: %s", resolved, exc)
                return

        self._registrations[resolved] = _Registration(resolved, on_change, debounce)
        logger.debug("Watching %s", resolved)

    def unwatch(self, path: str | Path) -> None:
        resolved = Path(path).resolve()
        registration = self._registrations.pop(resolved, None)
        if registration is None:
            return
        if registration.timer is not None:
            registration.timer.cancel()

        directory = resolved.parent
        if any(p.parent == directory for p in self._registrations):
            return
        scheduled = self._scheduled.pop(directory, None)
        if scheduled is not None and self._observer is not None:
            # Already gone if the observer dropped the watch on its own
            with contextlib.suppress(KeyError):
                self._observer.unschedule(scheduled)
        logger.debug("Stopped watching %s", resolved)

    def unwatch_all(self) -> None:
        """Cancel every pending timer and stop the observer without waiting on it."""
        for registration in self._registrations.values():
            if registration.timer is not None:
                registration.timer.cancel()
        self._registrations.clear()
        self._scheduled.clear()

        if self._observer is not None:
            observer = self._observer
            self._observer = None
            observer.unschedule_all()
            observer.stop()
            self._retired.append(observer)

    async def join(self, timeout: float = 5.0) -> None:
        """Wait for observers released by ``unwatch_all`` to exit."""
        while self._retired:
            observer = self._retired.pop()
            if observer.is_alive():
                await asyncio.to_thread(observer.join, timeout)

    def _ensure_observer(self) -> BaseObserver:
        if self._observer is None:
            observer = self._observer_factory()
            observer.daemon = True
            observer.start()
            self._observer = observer
        return self._observer

    # ── Event flow ───────────────────────────────────────

    def _on_raw_event(self, raw_path: str) -> None:
        """Observer thread entry point."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        with contextlib.suppress(RuntimeError):  # loop shutting down
            loop.call_soon_threadsafe(self._handle_event, Path(raw_path))

    def _handle_event(self, path: Path) -> None:
        registration = self._registrations.get(path)
        if registration is None or self._loop is None:
            return
        if registration.timer is not None:
            registration.timer.cancel()
        registration.timer = self._loop.call_later(
            registration.debounce, self._fire, registration
        )

    def _fire(self, registration: _Registration) -> None:
        registration.timer = None
        if self._registrations.get(registration.path) is not registration:
            return
        if not registration.path.exists():
            logger.info("Watched file %s disappeared, unwatching", registration.path)
            self.unwatch(registration.path)
            return

        try:
            result = registration.on_change()
        except Exception:
            logger.exception("Change callback failed for %s", registration.path)
            return

        if inspect.isawaitable(result) and self._loop is not None:
            task = self._loop.create_task(self._await_callback(registration.path, result))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _await_callback(self, path: Path, result: Awaitable[None]) -> None:
        try:
            await result
        except Exception:
            logger.exception("Change callback failed for %s", path)
