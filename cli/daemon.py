"""Long-running watch daemon: push on local edits, pull on poll ticks."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from cli.config import DEFAULT_SYNC_INTERVAL, LinkEntry
from cli.poller import ServerPoller
from cli.sync import LinkOutcome, SyncEngine
from cli.watcher import DEFAULT_DEBOUNCE_SECONDS, FileWatcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PushEvent:
    """A linked file changed locally."""

    asset_id: str


@dataclass(frozen=True)
class PollEvent:
    """Time to check the server for updates."""


DaemonEvent = PushEvent | PollEvent


class WatchDaemon:
    """Feed watcher and poller signals through one queue to the sync engine.

    A single consumer handles events one at a time, so a pull and a push for
    the same file never overlap.
    """

    def __init__(
        self,
        engine: SyncEngine,
        *,
        watcher: FileWatcher | None = None,
        poller: ServerPoller | None = None,
        interval: float | None = None,
        debounce: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        self.engine = engine
        self.store = engine.store
        self.watcher = watcher or FileWatcher()
        self.poller = poller or ServerPoller()
        self.interval = interval or self.store.config.sync_interval or DEFAULT_SYNC_INTERVAL
        self.debounce = debounce
        self.queue: asyncio.Queue[DaemonEvent] = asyncio.Queue()
        self._stopped = asyncio.Event()
        self._consumer: asyncio.Task[None] | None = None
        engine.write_guard = self._suspend_watch

    # ── Wiring ───────────────────────────────────────────

    def _watch_link(self, entry: LinkEntry) -> None:
        if self._stopped.is_set():
            return
        asset_id = entry.asset_id
        self.watcher.watch(
            entry.local_path,
            lambda: self.queue.put_nowait(PushEvent(asset_id)),
            self.debounce,
        )

    def watch_links(self) -> None:
        """Watch every linked file that exists and is not watched yet."""
        for tracked in self.store.all_links():
            if not self.watcher.is_watching(tracked.entry.local_path):
                self._watch_link(tracked.entry)

    @contextlib.contextmanager
    def _suspend_watch(self, entry: LinkEntry) -> Iterator[None]:
        """Unwatch a file while a pull writes it, then watch it again."""
        self.watcher.unwatch(Path(entry.local_path))
        try:
            yield
        finally:
            self._watch_link(entry)

    async def _on_poll(self) -> None:
        self.queue.put_nowait(PollEvent())

    # ── Event handling ───────────────────────────────────

    async def handle(self, event: DaemonEvent) -> None:
        if isinstance(event, PushEvent):
            tracked = next(
                (t for t in self.store.all_links() if t.entry.asset_id == event.asset_id), None
            )
            if tracked is None:
                return
            outcome = await self.engine.push_link(tracked)
            if outcome is LinkOutcome.PUSHED:
                self.store.save()
            return

        await self.engine.scan_for_new_files()
        await self.engine.pull()
        self.watch_links()

    async def _consume(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                await self.handle(event)
            except Exception:
                logger.exception("Failed to handle %s", event)
            finally:
                self.queue.task_done()

    # ── Lifecycle ────────────────────────────────────────

    def stop(self) -> None:
        """Stop all sources; no callbacks fire after this returns."""
        self._stopped.set()
        self.watcher.unwatch_all()
        self.poller.stop()

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> list[int]:
        installed: list[int] = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except (NotImplementedError, RuntimeError):
                # Windows event loops have no signal handler support
                continue
            installed.append(sig)
        return installed

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        self.watch_links()
        self.poller.start(self.interval, self._on_poll)
        self._consumer = loop.create_task(self._consume())
        installed = self._install_signal_handlers(loop)
        logger.info(
            "Watching %d file(s), polling every %ss. Press Ctrl+C to stop.",
            self.watcher.watch_count,
            self.interval,
        )

        try:
            await self._stopped.wait()
        finally:
            self.stop()
            await self.watcher.join()
            for sig in installed:
                loop.remove_signal_handler(sig)
            self._consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._consumer
            logger.info("Sync daemon stopped.")
