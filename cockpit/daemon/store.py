"""DuckDB-backed store for snapshots and file events."""

import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol, Sequence, Union

import duckdb
from loguru import logger

from .errors import StoreError
from .models import ActivitySummary, FileEvent, FileEventType, Snapshot


_SNAPSHOT_COLUMNS = "id, timestamp, active_file, active_directory, git_branch, notes"

MEMORY = ":memory:"

# Backoff while another process holds the file lock: 0.1s, 0.2s, 0.4s, ...
LOCK_RETRIES = 5
LOCK_BACKOFF_SECONDS = 0.1


def to_text(ts: datetime) -> str:
    """Serialize an instant as fixed-width UTC ISO-8601 text.

    Fixed width keeps lexical order equal to chronological order. Naive
    datetimes are taken to be UTC.
    """
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    else:
        ts = ts.astimezone(timezone.utc)
    return ts.isoformat(timespec="microseconds")


def from_text(text: str) -> datetime:
    ts = datetime.fromisoformat(text)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _is_lock_conflict(error: Exception) -> bool:
    return "lock" in str(error).lower()


class ActivitySource(Protocol):
    """The read-only queries the gatekeeper runs against a store."""

    def get_recent_snapshots(self, limit: int) -> List[Snapshot]:
        ...

    def get_activity_summary(self, since: datetime, until: datetime) -> ActivitySummary:
        ...


class ActivityStore:
    """
    Owns the ``snapshots`` and ``file_events`` tables.

    A file-backed store only holds a DuckDB connection while work is being
    done: for a single operation, or for the span of a ``connection()``
    block. DuckDB locks the file for as long as a connection is open, so
    releasing it between batches lets the CLI of another process read and
    write while the watch daemon idles. Opening backs off while the lock is
    held elsewhere; operations themselves are never retried.

    An in-memory store keeps its one connection until ``close()``.
    """

    def __init__(
        self,
        path: Union[str, Path] = MEMORY,
        lock_retries: int = LOCK_RETRIES,
    ):
        self.path = str(path)
        self.lock_retries = lock_retries
        self._conn: Optional[duckdb.DuckDBPyConnection] = None
        self._depth = 0

        if self.path != MEMORY:
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        with self.connection() as conn:
            self._create_tables(conn)
        logger.debug(f"Activity store opened at {self.path}")

    @classmethod
    def in_memory(cls) -> "ActivityStore":
        return cls(MEMORY)

    @property
    def persistent_connection(self) -> bool:
        return self.path == MEMORY

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    def _connect(self) -> duckdb.DuckDBPyConnection:
        delay = LOCK_BACKOFF_SECONDS
        for attempt in range(self.lock_retries + 1):
            try:
                return duckdb.connect(self.path)
            except duckdb.Error as e:
                if attempt == self.lock_retries or not _is_lock_conflict(e):
                    raise StoreError("open", f"{self.path}: {e}") from e
                logger.debug(f"Store locked by another process, retrying in {delay:.1f}s")
                time.sleep(delay)
                delay *= 2

    @contextmanager
    def connection(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """
        Hold one connection for a batch of operations.

        Nested blocks share the outer connection. A file-backed store
        releases it when the outermost block exits.
        """
        if self._conn is None:
            self._conn = self._connect()
        self._depth += 1
        try:
            yield self._conn
        finally:
            self._depth -= 1
            if self._depth == 0 and not self.persistent_connection:
                self._release()

    def _release(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None:
            conn.close()

    @staticmethod
    def _create_tables(conn: duckdb.DuckDBPyConnection) -> None:
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS snapshots (
                    id TEXT PRIMARY KEY,
                    timestamp TEXT NOT NULL,
                    active_file TEXT,
                    active_directory TEXT,
                    git_branch TEXT,
                    notes TEXT
                )
            """)

            # event_type: created|modified|deleted|renamed
            conn.execute("""
                CREATE TABLE IF NOT EXISTS file_events (
                    id TEXT PRIMARY KEY,
                    timestamp TEXT NOT NULL,
                    path TEXT NOT NULL,
                    event_type TEXT NOT NULL
                )
            """)
        except duckdb.Error as e:
            raise StoreError("initialize", str(e)) from e

    def _execute(
        self,
        operation: str,
        sql: str,
        params: Optional[Sequence[Any]] = None,
        fetch: Optional[str] = None,
    ):
        """Run one statement; ``fetch`` is ``"one"``, ``"all"`` or None."""
        with self.connection() as conn:
            try:
                cursor = conn.execute(sql) if params is None else conn.execute(sql, params)
                if fetch == "one":
                    return cursor.fetchone()
                if fetch == "all":
                    return cursor.fetchall()
                return None
            except duckdb.Error as e:
                raise StoreError(operation, str(e)) from e

    @staticmethod
    def _row_to_snapshot(row) -> Snapshot:
        return Snapshot(
            id=row[0],
            timestamp=from_text(row[1]),
            active_file=row[2],
            active_directory=row[3],
            git_branch=row[4],
            notes=row[5],
        )

    # Snapshots

    def insert_snapshot(self, snapshot: Snapshot) -> None:
        self._execute(
            "insert snapshot",
            f"INSERT INTO snapshots ({_SNAPSHOT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
            [
                snapshot.id,
                to_text(snapshot.timestamp),
                snapshot.active_file,
                snapshot.active_directory,
                snapshot.git_branch,
                snapshot.notes,
            ],
        )

    def get_snapshot(self, snapshot_id: str) -> Optional[Snapshot]:
        row = self._execute(
            "get snapshot",
            f"SELECT {_SNAPSHOT_COLUMNS} FROM snapshots WHERE id = ?",
            [snapshot_id],
            fetch="one",
        )
        return self._row_to_snapshot(row) if row else None

    def get_recent_snapshots(self, limit: int) -> List[Snapshot]:
        """Newest first, by timestamp."""
        limit = max(0, int(limit))
        rows = self._execute(
            "query snapshots",
            f"""
            SELECT {_SNAPSHOT_COLUMNS} FROM snapshots
            ORDER BY timestamp DESC, id DESC
            LIMIT {limit}
            """,
            fetch="all",
        )
        return [self._row_to_snapshot(row) for row in rows]

    def count_snapshots(self) -> int:
        return self._execute(
            "count snapshots", "SELECT COUNT(*) FROM snapshots", fetch="one"
        )[0]

    def cleanup_old_snapshots(self, max_snapshots: int) -> int:
        """Delete all but the ``max_snapshots`` newest rows. Returns rows deleted."""
        keep = max(0, int(max_snapshots))
        with self.connection():
            before = self.count_snapshots()
            if before <= keep:
                return 0

            self._execute(
                "cleanup snapshots",
                f"""
                DELETE FROM snapshots WHERE id NOT IN (
                    SELECT id FROM snapshots
                    ORDER BY timestamp DESC, id DESC
                    LIMIT {keep}
                )
                """,
            )
            return before - self.count_snapshots()

    # File events

    def insert_file_event(self, event: FileEvent) -> None:
        self._execute(
            "insert file event",
            "INSERT INTO file_events (id, timestamp, path, event_type) VALUES (?, ?, ?, ?)",
            [event.id, to_text(event.timestamp), event.path, event.event_type.value],
        )

    def get_file_events(
        self, since: datetime, until: datetime, limit: Optional[int] = None
    ) -> List[FileEvent]:
        """Events in ``[since, until)``, newest first, at most ``limit`` of them."""
        sql = """
            SELECT id, timestamp, path, event_type FROM file_events
            WHERE timestamp >= ? AND timestamp < ?
            ORDER BY timestamp DESC, id DESC
        """
        if limit is not None:
            sql += f" LIMIT {max(0, int(limit))}"

        rows = self._execute(
            "query file events", sql, [to_text(since), to_text(until)], fetch="all"
        )
        return [
            FileEvent(
                id=row[0],
                timestamp=from_text(row[1]),
                path=row[2],
                event_type=FileEventType.parse(row[3]),
            )
            for row in rows
        ]

    def get_activity_summary(self, since: datetime, until: datetime) -> ActivitySummary:
        """Aggregate event counts over ``[since, until)``."""
        bounds = [to_text(since), to_text(until)]

        with self.connection():
            total, modified, created = self._execute(
                "summarize file events",
                """
                SELECT
                    COUNT(*),
                    COUNT(*) FILTER (WHERE event_type = 'modified'),
                    COUNT(*) FILTER (WHERE event_type = 'created')
                FROM file_events
                WHERE timestamp >= ? AND timestamp < ?
                """,
                bounds,
                fetch="one",
            )

            # First path segment, keeping a leading separator: /src/a.py -> /src
            row = self._execute(
                "find most active directory",
                """
                SELECT regexp_extract(path, '^(/?[^/]*)', 1) AS dir, COUNT(*) AS n
                FROM file_events
                WHERE timestamp >= ? AND timestamp < ?
                GROUP BY dir
                ORDER BY n DESC, dir ASC
                LIMIT 1
                """,
                bounds,
                fetch="one",
            )

        return ActivitySummary(
            total_events=total,
            files_modified=modified,
            files_created=created,
            most_active_directory=row[0] if row and row[0] else None,
        )

    def cleanup_old_events(self, older_than: datetime) -> int:
        """Delete file events stamped before ``older_than``."""
        cutoff = to_text(older_than)
        with self.connection():
            count = self._execute(
                "count old file events",
                "SELECT COUNT(*) FROM file_events WHERE timestamp < ?",
                [cutoff],
                fetch="one",
            )[0]
            if count:
                self._execute(
                    "cleanup file events",
                    "DELETE FROM file_events WHERE timestamp < ?",
                    [cutoff],
                )
        return count

    def delete_all(self) -> Dict[str, int]:
        """Administrative wipe of both tables."""
        with self.connection():
            counts = {
                "snapshots": self.count_snapshots(),
                "file_events": self._execute(
                    "count file events", "SELECT COUNT(*) FROM file_events", fetch="one"
                )[0],
            }
            self._execute("delete snapshots", "DELETE FROM snapshots")
            self._execute("delete file events", "DELETE FROM file_events")
        logger.info(
            f"Deleted {counts['snapshots']} snapshots and "
            f"{counts['file_events']} file events"
        )
        return counts

    def close(self) -> None:
        self._depth = 0
        self._release()

    def __enter__(self) -> "ActivityStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
