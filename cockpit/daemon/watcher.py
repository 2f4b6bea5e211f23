"""Filesystem change notifier and per-batch event deduplication.

The watchdog observer runs its own thread. Raw events are handed to the
asyncio loop with ``call_soon_threadsafe`` and land in a single queue that
exactly one consumer (the watch loop) drains.

Consumer side:
1. Block on the queue with a timeout
2. Drain whatever else is already queued, without waiting
3. Map each raw event to a WatchEvent kind and apply the ignore filter
"""

import asyncio
import os
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from loguru import logger
from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from .errors import WatcherError
from .filters import IgnoreFilter
from .models import FileEventType, WatchEvent


# Moves and every other watchdog kind are dropped, so RENAMED never leaves
# this module.
_KIND_MAP = {
    EVENT_TYPE_CREATED: FileEventType.CREATED,
    EVENT_TYPE_MODIFIED: FileEventType.MODIFIED,
    EVENT_TYPE_DELETED: FileEventType.DELETED,
}


class _QueueingHandler(FileSystemEventHandler):
    """Forwards every observer callback to the notifier."""

    def __init__(self, notifier: "ChangeNotifier"):
        super().__init__()
        self._notifier = notifier

    def on_any_event(self, event: FileSystemEvent) -> None:
        self._notifier.submit(event)


class ChangeNotifier:
    """
    Recursive watch over a set of root directories.

    Roots that do not exist when ``start()`` runs are skipped with a warning.
    Events are buffered in a bounded queue; when it is full new events are
    dropped and counted.
    """

    def __init__(
        self,
        directories: Sequence[Path],
        ignore_patterns: Iterable[str] = (),
        max_queue_size: int = 10000,
        observer_factory: Callable[[], object] = Observer,
    ):
        self.directories = [Path(d) for d in directories]
        self.ignore_filter = IgnoreFilter(ignore_patterns)
        self.max_queue_size = max_queue_size
        self._observer_factory = observer_factory

        self._observer = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self.watched: List[Path] = []
        self.stats: Dict[str, int] = {
            "received": 0,
            "emitted": 0,
            "ignored": 0,
            "unsupported": 0,
            "malformed": 0,
            "dropped": 0,
        }

    @property
    def running(self) -> bool:
        return self._observer is not None

    async def start(self) -> None:
        """Bind to the running loop and subscribe to every existing root."""
        if self.running:
            logger.warning("Change notifier already running")
            return

        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self.max_queue_size)

        observer = self._observer_factory()
        handler = _QueueingHandler(self)
        self.watched = []

        for directory in self.directories:
            if not directory.exists():
                logger.warning(f"Directory does not exist, skipping: {directory}")
                continue
            try:
                observer.schedule(handler, str(directory), recursive=True)
            except OSError as e:
                raise WatcherError(directory, str(e)) from e
            self.watched.append(directory)
            logger.info(f"Watching directory: {directory}")

        observer.start()
        self._observer = observer

    async def stop(self) -> None:
        """Stop the observer thread. Already-queued events stay drainable."""
        if self._observer is None:
            return
        observer, self._observer = self._observer, None
        observer.stop()
        await asyncio.to_thread(observer.join)
        logger.info("Change notifier stopped")

    def submit(self, event: FileSystemEvent) -> None:
        """Hand a raw event to the consumer queue. Safe from any thread."""
        if self._loop is None or self._loop.is_closed():
            return
        try:
            self._loop.call_soon_threadsafe(self._enqueue, event)
        except RuntimeError:
            # Loop closed between the check and the call
            self.stats["dropped"] += 1
            logger.debug("Event loop closed, dropping event")

    def _enqueue(self, event: FileSystemEvent) -> None:
        try:
            self._queue.put_nowait(event)
            self.stats["received"] += 1
        except asyncio.QueueFull:
            self.stats["dropped"] += 1
            logger.warning("Watch queue full, dropping event")

    async def wait_for_events(self, timeout: float = 5.0) -> List[WatchEvent]:
        """Block for the first event (up to ``timeout``), then drain the rest."""
        if self._queue is None:
            raise RuntimeError("Change notifier has not been started")

        try:
            raw = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return []

        events = self._process(raw)
        events.extend(self.poll_events())
        return events

    def poll_events(self) -> List[WatchEvent]:
        """Drain already-queued events without waiting."""
        events: List[WatchEvent] = []
        if self._queue is None:
            return events

        while True:
            try:
                raw = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            events.extend(self._process(raw))
        return events

    def _process(self, raw: FileSystemEvent) -> List[WatchEvent]:
        """Map one raw event to zero or one WatchEvent."""
        try:
            kind = _KIND_MAP.get(raw.event_type)
            if kind is None:
                self.stats["unsupported"] += 1
                logger.debug(f"Ignoring unsupported event kind: {raw.event_type}")
                return []
            path = Path(os.fsdecode(raw.src_path))
        except Exception as e:
            self.stats["malformed"] += 1
            logger.warning(f"Dropping malformed watch event {raw!r}: {e}")
            return []

        if self.ignore_filter.should_ignore(path):
            self.stats["ignored"] += 1
            return []

        self.stats["emitted"] += 1
        return [WatchEvent(path=path, event_type=kind)]


def deduplicate_events(events: Iterable[WatchEvent]) -> List[WatchEvent]:
    """
    Keep one event per path: the last one seen in the batch.

    Holds no state between calls.
    """
    latest: Dict[Path, WatchEvent] = {}
    for event in events:
        latest[event.path] = event
    return list(latest.values())
