"""Recursive directory watcher with per-path debouncing.

Uses the ``watchdog`` library (inotify on Linux) to detect changes.
The Observer runs in a background thread; raw events are handed to the
asyncio event loop, which owns the debounce timers and schedules the async
``on_event`` callback once a path has been quiet for the debounce window.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path

from watchdog.events import (
    FileClosedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
    FileSystemMovedEvent,
)
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from tailpipe.schemas.events import FileEvent, FileEventType

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 1.0

EventCallback = Callable[[FileEvent], Awaitable[None]]


def matches_suffix(path: str | Path, suffix: str) -> bool:
    """Check a file name against the watched suffix (case-insensitive)."""
    return Path(path).name.lower().endswith(suffix.lower())


def scan_existing(root: Path, suffix: str) -> list[Path]:
    """Return matching files under ``root`` (recursive), sorted by path."""
    return sorted(p.resolve() for p in root.rglob("*") if p.is_file() and matches_suffix(p, suffix))


class _ChangeHandler(FileSystemEventHandler):
    """Translates watchdog callbacks into (type, path) pairs on the loop thread."""

    def __init__(self, detector: "ChangeDetector") -> None:
        super().__init__()
        self._detector = detector

    def _forward(self, event_type: FileEventType, src_path: str | bytes) -> None:
        if isinstance(src_path, bytes):
            src_path = src_path.decode()
        self._detector._threadsafe_raw_event(event_type, src_path)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(FileEventType.ADDED, event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(FileEventType.MODIFIED, event.src_path)

    def on_closed(self, event: FileClosedEvent) -> None:
        """Writer closed the handle (inotify IN_CLOSE_WRITE)."""
        if not event.is_directory:
            self._forward(FileEventType.MODIFIED, event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(FileEventType.REMOVED, event.src_path)

    def on_moved(self, event: FileSystemMovedEvent) -> None:
        """A rename is a removal of the old name and an addition of the new one."""
        if event.is_directory:
            return
        self._forward(FileEventType.REMOVED, event.src_path)
        self._forward(FileEventType.ADDED, event.dest_path)


class ChangeDetector:
    """Watches ``root`` recursively and emits debounced FileEvents.

    Usage::

        detector = ChangeDetector(root, on_event=handle, debounce_seconds=1.0)
        detector.start()   # must be called from within the running loop
        ...
        detector.stop()

    Events for the same path arriving within the debounce window collapse
    into one event carrying the most recent type; each raw event restarts
    the timer. Files whose name does not end in ``suffix`` are ignored.
    """

    def __init__(
        self,
        root: str | Path,
        *,
        on_event: EventCallback,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        suffix: str = ".jsonl",
    ) -> None:
        self._root = Path(root).resolve()
        self._on_event = on_event
        self._debounce_seconds = debounce_seconds
        self._suffix = suffix
        self._loop: asyncio.AbstractEventLoop | None = None
        self._observer: BaseObserver | None = None
        self._timers: dict[Path, asyncio.TimerHandle] = {}
        self._pending_types: dict[Path, FileEventType] = {}
        self._tasks: set[asyncio.Task] = set()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def running(self) -> bool:
        return self._observer is not None

    @property
    def pending(self) -> int:
        """Number of paths with a debounce timer still armed."""
        return len(self._timers)

    @property
    def tasks(self) -> set[asyncio.Task]:
        """Delivery tasks that have not finished yet."""
        return set(self._tasks)

    def scan_existing(self) -> list[Path]:
        return scan_existing(self._root, self._suffix)

    def start(self) -> None:
        """Start the observer thread. Must run inside the event loop."""
        if self._observer is not None:
            logger.warning("ChangeDetector already started")
            return

        self._loop = asyncio.get_running_loop()
        observer = Observer()
        observer.schedule(_ChangeHandler(self), str(self._root), recursive=True)
        observer.start()
        self._observer = observer
        logger.info("Watching %s for *%s changes", self._root, self._suffix)

    def stop(self) -> None:
        """Stop the observer and cancel pending debounce timers.

        Delivery tasks already running are left to finish.
        """
        if self._observer is None:
            return

        observer, self._observer = self._observer, None
        observer.stop()
        observer.join()
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._pending_types.clear()
        logger.info("Watcher stopped.")

    # ------------------------------------------------------------------
    # Debounce (loop thread only)
    # ------------------------------------------------------------------

    def _threadsafe_raw_event(self, event_type: FileEventType, src_path: str) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self.raw_event, event_type, src_path)

    def raw_event(self, event_type: FileEventType, src_path: str | Path) -> None:
        """Record a raw change and (re)arm the debounce timer for its path."""
        if self._observer is None or self._loop is None:
            return
        if not matches_suffix(src_path, self._suffix):
            return

        path = Path(src_path).resolve()
        logger.debug("Raw event: %s %s", event_type, path)

        existing = self._timers.pop(path, None)
        if existing is not None:
            existing.cancel()

        self._pending_types[path] = event_type
        self._timers[path] = self._loop.call_later(self._debounce_seconds, self._fire, path)

    def _fire(self, path: Path) -> None:
        self._timers.pop(path, None)
        event_type = self._pending_types.pop(path, None)
        if event_type is None or self._observer is None:
            return

        event = FileEvent(type=event_type, path=path)
        logger.debug("File event: %s %s", event.type, event.path)
        task = self._loop.create_task(self._deliver(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, event: FileEvent) -> None:
        try:
            await self._on_event(event)
        except Exception:
            logger.exception("Event handler failed for %s %s", event.type, event.path)
