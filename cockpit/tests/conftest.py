"""Shared fixtures for cockpit tests."""

from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence

import pytest

from cockpit.daemon.models import Snapshot
from cockpit.daemon.store import ActivityStore


NOW = datetime(2024, 5, 14, 15, 30, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def store():
    """In-memory activity store."""
    s = ActivityStore.in_memory()
    yield s
    s.close()


@pytest.fixture
def add_snapshots(store) -> Callable[..., List[Snapshot]]:
    """Insert snapshots newest-first from (minutes_ago, directory) pairs."""

    def _add(entries: Sequence[tuple], at: Optional[datetime] = None) -> List[Snapshot]:
        base = at or NOW
        created = []
        for minutes_ago, directory in entries:
            snap = Snapshot.new(
                active_directory=directory,
                timestamp=base - timedelta(minutes=minutes_ago),
            )
            store.insert_snapshot(snap)
            created.append(snap)
        return created

    return _add
