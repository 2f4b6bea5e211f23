"""Snapshot capture, retention and context resolution."""

import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from loguru import logger

from .models import ContextInfo, FileEvent, Snapshot, WatchEvent
from .store import ActivityStore


GIT_TIMEOUT_SECONDS = 5


class SnapshotService:
    """
    Turns resolved contexts into persisted snapshots.

    Every operation is a single store call. Store failures propagate to the
    caller untouched; nothing here retries.
    """

    def __init__(self, store: ActivityStore):
        self.store = store

    def capture(self, context: ContextInfo, note: Optional[str] = None) -> Snapshot:
        """Persist a snapshot of ``context`` with a fresh id and timestamp."""
        snapshot = Snapshot.new(
            active_file=_as_text(context.active_file),
            active_directory=_as_text(context.active_directory),
            git_branch=context.git_branch,
            notes=note,
        )
        self.store.insert_snapshot(snapshot)
        logger.debug(f"Captured snapshot: {snapshot.id}")
        return snapshot

    def record_event(self, event: WatchEvent) -> FileEvent:
        """Persist the file-change row behind a watch event."""
        file_event = FileEvent.new(str(event.path), event.event_type)
        self.store.insert_file_event(file_event)
        return file_event

    def get_recent(self, limit: int) -> List[Snapshot]:
        return self.store.get_recent_snapshots(limit)

    def get(self, snapshot_id: str) -> Optional[Snapshot]:
        return self.store.get_snapshot(snapshot_id)

    def cleanup(self, max_snapshots: int) -> int:
        """Trim the store to the ``max_snapshots`` newest snapshots."""
        deleted = self.store.cleanup_old_snapshots(max_snapshots)
        if deleted > 0:
            logger.info(f"Cleaned up {deleted} old snapshots")
        return deleted


def _as_text(path: Optional[Path]) -> Optional[str]:
    return str(path) if path is not None else None


def _git(directory: Path, *args: str) -> Optional[str]:
    """Run a git query in ``directory``; any failure reads as no data."""
    if not directory.is_dir():
        return None
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=directory,
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT_SECONDS,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"git {' '.join(args)} failed in {directory}: {e}")
        return None

    if result.returncode != 0:
        return None
    output = result.stdout.strip()
    return output or None


def detect_git_branch(directory: Path) -> Optional[str]:
    """Current branch of the repository containing ``directory``, if any."""
    return _git(Path(directory), "rev-parse", "--abbrev-ref", "HEAD")


def context_from_path(path: Path) -> ContextInfo:
    """
    Resolve the working context for a changed path.

    A directory is its own active directory. Anything else (a file, or a path
    that no longer exists) contributes its parent; only an existing file
    becomes the active file.
    """
    path = Path(path)
    directory = path if path.is_dir() else path.parent
    active_file = path if path.is_file() else None

    return ContextInfo(
        active_file=active_file,
        active_directory=directory,
        git_branch=detect_git_branch(directory),
    )


@dataclass
class ActivitySnapshot:
    """Distinct-value counts over a run of snapshots."""
    total_snapshots: int
    unique_directories: int
    unique_branches: int
    files_touched: int


def summarize_recent_activity(snapshots: Sequence[Snapshot]) -> ActivitySnapshot:
    directories = {s.active_directory for s in snapshots if s.active_directory}
    branches = {s.git_branch for s in snapshots if s.git_branch}
    files = sum(1 for s in snapshots if s.active_file)

    return ActivitySnapshot(
        total_snapshots=len(snapshots),
        unique_directories=len(directories),
        unique_branches=len(branches),
        files_touched=files,
    )
