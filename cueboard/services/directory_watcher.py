from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer


log = logging.getLogger("cueboard.watcher")


class _ChangeForwarder(FileSystemEventHandler):
    """Runs on the watchdog thread; hands every event to the event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop, notify: Callable[[], None]) -> None:
        self._loop = loop
        self._notify = notify

    def on_any_event(self, event: FileSystemEvent) -> None:
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._notify)


class DirectoryWatcher:
    def __init__(
        self,
        *,
        root: Path,
        snapshot: Callable[[], list[str]],
        on_change: Callable[[], Awaitable[None]],
        debounce: float = 0.3,
        poll_interval: float = 5.0,
        watch_events: bool = True,
    ) -> None:
        self._root = root
        self._snapshot = snapshot
        self._on_change = on_change
        self._debounce = float(debounce)
        self._poll_interval = float(poll_interval)
        self._watch_events = watch_events
        self._last: Optional[list[str]] = None
        self._lock = asyncio.Lock()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._pending: set[asyncio.Task] = set()
        self._poll_task: Optional[asyncio.Task] = None
        self._observer: Optional[Observer] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def last_snapshot(self) -> Optional[list[str]]:
        return list(self._last) if self._last is not None else None

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        try:
            self._last = await asyncio.to_thread(self._snapshot)
        except Exception as exc:
            log.warning("Initial sound snapshot failed: %s", exc)
        if self._watch_events:
            self._start_observer(self._loop)
        if self._poll_task is None:
            self._poll_task = asyncio.create_task(self.poll_loop())

    def _start_observer(self, loop: asyncio.AbstractEventLoop) -> None:
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            observer = Observer()
            observer.schedule(_ChangeForwarder(loop, self.notify), str(self._root), recursive=True)
            observer.daemon = True
            observer.start()
        except Exception as exc:
            # Polling still covers this directory.
            log.warning("Sound directory watch failed for %s: %s", self._root, exc)
            return
        self._observer = observer
        log.info("Watching %s for sound changes", self._root)

    async def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._observer is not None:
            observer = self._observer
            self._observer = None
            observer.stop()
            await asyncio.to_thread(observer.join, 2.0)
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()

    def notify(self) -> None:
        """Restart the debounce timer. Must be called on the event loop."""
        loop = self._loop or asyncio.get_running_loop()
        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(self._debounce, self._fire)

    def _fire(self) -> None:
        self._timer = None
        task = asyncio.ensure_future(self._check_logged())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _check_logged(self) -> None:
        try:
            await self.check_once()
        except Exception:
            log.exception("Sound directory check failed")

    async def check_once(self) -> bool:
        """Recompute the snapshot and emit once if it differs. Returns True on change."""
        async with self._lock:
            current = await asyncio.to_thread(self._snapshot)
            if self._last is not None and current == self._last:
                return False
            self._last = current
        log.info("Sound files changed (%d entries)", len(current))
        await self._on_change()
        return True

    async def poll_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self._poll_interval)
                try:
                    await self.check_once()
                except Exception:
                    log.exception("Sound directory poll failed")
        except asyncio.CancelledError:
            pass
