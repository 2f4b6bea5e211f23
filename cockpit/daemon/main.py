"""Watch daemon: the polling loop that feeds the activity store."""

import asyncio
import signal
import sys
from collections import defaultdict
from datetime import timedelta
from pathlib import Path
from typing import Dict, Optional

from loguru import logger

from .capture import SnapshotService, context_from_path
from .config import Config
from .errors import ConfigError, StoreError
from .models import ContextInfo, WatchEvent, utcnow
from .store import ActivityStore
from .watcher import ChangeNotifier, deduplicate_events


LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def setup_logging(verbose: bool = False, log_dir: Optional[Path] = None) -> None:
    """Route loguru to stderr and a rotating daemon log."""
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level="DEBUG" if verbose else "INFO")

    log_dir = log_dir or Path.home() / ".local" / "share" / "cockpit" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_dir / "daemon.log",
        rotation="1 day",
        retention="7 days",
        level="DEBUG",
    )


class WatchDaemon:
    """
    Single-consumer watch loop.

    One cycle: wait for events (with timeout), drain, dedup, capture each
    event, then enforce retention. Store failures are logged and the loop
    carries on; the next cycle is the only retry. ``stop()`` is cooperative:
    the batch in progress always finishes.
    """

    def __init__(
        self,
        config: Config,
        store: ActivityStore,
        notifier: Optional[ChangeNotifier] = None,
    ):
        self.config = config
        self.store = store
        self.snapshots = SnapshotService(store)
        self.notifier = notifier or ChangeNotifier(
            config.watcher.directories,
            config.watcher.ignore_patterns,
        )
        self.start_time = utcnow()
        self._running = False
        self.stats: Dict[str, int] = defaultdict(int)

    @property
    def running(self) -> bool:
        return self._running

    def stop(self) -> None:
        """Ask the loop to exit after the current cycle."""
        if self._running:
            logger.info("Stop requested, finishing current batch")
        self._running = False

    async def run_cycle(self) -> Dict[str, int]:
        """Run one polling cycle and return its counts.

        Contexts are resolved before the store is opened, so git lookups
        never hold the database lock. The store connection is released
        again before the next wait.
        """
        cycle = {"events": 0, "captured": 0, "failed": 0, "deleted": 0}

        events = await self.notifier.wait_for_events(
            timeout=self.config.watcher.poll_timeout_seconds
        )
        batch = deduplicate_events(events)
        cycle["events"] = len(batch)

        resolved = []
        for event in batch:
            try:
                resolved.append((event, context_from_path(event.path)))
            except Exception as e:
                cycle["failed"] += 1
                logger.warning(f"Dropping event for {event.path}: {e}")

        try:
            with self.store.connection():
                try:
                    for event, context in resolved:
                        self._persist(event, context, cycle)
                finally:
                    self._enforce_retention(cycle)
        except StoreError as e:
            cycle["failed"] += len(resolved)
            logger.error(f"Activity store unavailable, batch lost: {e}")

        self.stats["cycles"] += 1
        self.stats["events"] += cycle["events"]
        self.stats["captured"] += cycle["captured"]
        self.stats["capture_errors"] += cycle["failed"]
        self.stats["deleted"] += cycle["deleted"]
        return cycle

    def _persist(self, event: WatchEvent, context: ContextInfo, cycle: Dict[str, int]) -> None:
        try:
            self.snapshots.capture(context)
            self.snapshots.record_event(event)
            cycle["captured"] += 1
            logger.debug(f"Captured: {event.path}")
        except StoreError as e:
            cycle["failed"] += 1
            logger.error(f"Failed to capture snapshot for {event.path}: {e}")
        except Exception as e:
            cycle["failed"] += 1
            logger.warning(f"Dropping event for {event.path}: {e}")

    def _enforce_retention(self, cycle: Dict[str, int]) -> None:
        try:
            cycle["deleted"] = self.snapshots.cleanup(self.config.database.max_snapshots)
        except StoreError as e:
            self.stats["retention_errors"] += 1
            logger.warning(f"Cleanup failed: {e}")

    def prune_events(self) -> int:
        """Drop file events older than the configured retention window."""
        cutoff = utcnow() - timedelta(days=self.config.database.event_retention_days)
        try:
            deleted = self.store.cleanup_old_events(cutoff)
        except StoreError as e:
            logger.warning(f"File event cleanup failed: {e}")
            return 0
        if deleted:
            logger.info(f"Cleaned up {deleted} old file events")
        return deleted

    async def run(self) -> None:
        """Run cycles until ``stop()`` is called."""
        await self.notifier.start()
        self._running = True
        self.prune_events()
        logger.info("Watch daemon started")

        try:
            while self._running:
                try:
                    await self.run_cycle()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.exception(f"Watch cycle error: {e}")
        finally:
            self._running = False
            await self.notifier.stop()
            logger.info("Watch daemon stopped")

    def get_status(self) -> dict:
        uptime = (utcnow() - self.start_time).total_seconds()
        return {
            "status": "running" if self._running else "stopped",
            "uptime": f"{uptime:.0f}s",
            "watched": [str(d) for d in self.notifier.watched],
            "stats": dict(self.stats),
            "notifier": dict(self.notifier.stats),
        }


async def main(
    config_path: Optional[str] = None,
    verbose: bool = False,
    log_dir: Optional[Path] = None,
) -> int:
    """Entry point for the watch daemon. Returns a process exit code."""
    setup_logging(verbose, log_dir)

    try:
        config = Config.load_or_default(Path(config_path) if config_path else None)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    try:
        store = ActivityStore(config.database.path)
    except StoreError as e:
        logger.error(f"Could not open activity store: {e}")
        return 1

    daemon = WatchDaemon(config, store)

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}, shutting down...")
        daemon.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        await daemon.run()
    except Exception as e:
        logger.exception(f"Daemon error: {e}")
        return 1
    finally:
        store.close()

    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
