"""Tests for snapshot capture and context resolution."""

import subprocess
from pathlib import Path
from unittest.mock import Mock

import pytest

from cockpit.daemon import capture as capture_module
from cockpit.daemon.capture import (
    SnapshotService,
    context_from_path,
    detect_git_branch,
    summarize_recent_activity,
)
from cockpit.daemon.errors import StoreError
from cockpit.daemon.models import ContextInfo, FileEventType, Snapshot, WatchEvent


def completed(returncode=0, stdout=""):
    return subprocess.CompletedProcess(args=["git"], returncode=returncode, stdout=stdout, stderr="")


@pytest.fixture
def no_git(monkeypatch):
    """Make every git query fail as if git were not installed."""
    run = Mock(side_effect=FileNotFoundError("git"))
    monkeypatch.setattr(capture_module.subprocess, "run", run)
    return run


class TestSnapshotService:
    """Test capture, lookup and retention through the service."""

    def test_capture_copies_context(self, store):
        service = SnapshotService(store)
        context = ContextInfo(
            active_file=Path("/src/main.py"),
            active_directory=Path("/src"),
            git_branch="main",
        )

        snap = service.capture(context, "Working on tests")

        assert snap.id
        assert len(snap.id) == 26  # ULID length
        assert snap.active_file == "/src/main.py"
        assert snap.active_directory == "/src"
        assert snap.git_branch == "main"
        assert snap.notes == "Working on tests"
        assert store.get_snapshot(snap.id) == snap

    def test_capture_ids_unique(self, store):
        service = SnapshotService(store)

        ids = {service.capture(ContextInfo()).id for _ in range(25)}

        assert len(ids) == 25
        assert store.count_snapshots() == 25

    def test_get_recent(self, store):
        service = SnapshotService(store)
        for i in range(5):
            service.capture(ContextInfo(active_directory=Path(f"/dir{i}")))

        assert len(service.get_recent(3)) == 3

    def test_store_failure_propagates_unmodified(self):
        error = StoreError("insert snapshot", "database is locked")
        store = Mock()
        store.insert_snapshot.side_effect = error
        service = SnapshotService(store)

        with pytest.raises(StoreError) as exc_info:
            service.capture(ContextInfo(active_directory=Path("/src")))

        assert exc_info.value is error
        assert store.insert_snapshot.call_count == 1

    def test_record_event(self, store, now):
        service = SnapshotService(store)

        event = service.record_event(WatchEvent(Path("/src/a.py"), FileEventType.CREATED))

        assert event.path == "/src/a.py"
        assert store.get_activity_summary(
            event.timestamp, event.timestamp.replace(year=event.timestamp.year + 1)
        ).files_created == 1

    def test_cleanup(self, store, add_snapshots):
        add_snapshots([(m, "/proj") for m in range(6)])
        service = SnapshotService(store)

        assert service.cleanup(2) == 4
        assert service.cleanup(2) == 0


class TestContextFromPath:
    """Test the directory/file context rule."""

    def test_directory_path(self, tmp_path, no_git, store):
        context = context_from_path(tmp_path)
        snap = SnapshotService(store).capture(context)

        assert context.active_file is None
        assert context.active_directory == tmp_path
        assert snap.active_file is None
        assert snap.active_directory == str(tmp_path)

    def test_file_path(self, tmp_path, no_git, store):
        file_path = tmp_path / "main.py"
        file_path.write_text("print('hi')")

        context = context_from_path(file_path)
        snap = SnapshotService(store).capture(context)

        assert context.active_file == file_path
        assert context.active_directory == tmp_path
        assert snap.active_file == str(file_path)
        assert snap.active_directory == str(tmp_path)

    def test_deleted_path_uses_parent(self, tmp_path, no_git):
        context = context_from_path(tmp_path / "gone.py")

        assert context.active_file is None
        assert context.active_directory == tmp_path

    def test_no_repo_means_no_branch(self, tmp_path, no_git):
        context = context_from_path(tmp_path)

        assert context.git_branch is None


class TestGitLookups:
    """Test best-effort version-control queries."""

    def test_branch_detected(self, tmp_path, monkeypatch):
        run = Mock(return_value=completed(stdout="feature/x\n"))
        monkeypatch.setattr(capture_module.subprocess, "run", run)

        assert detect_git_branch(tmp_path) == "feature/x"
        args, kwargs = run.call_args
        assert args[0] == ["git", "rev-parse", "--abbrev-ref", "HEAD"]
        assert kwargs["cwd"] == tmp_path

    def test_non_zero_exit(self, tmp_path, monkeypatch):
        monkeypatch.setattr(
            capture_module.subprocess, "run", Mock(return_value=completed(128, ""))
        )

        assert detect_git_branch(tmp_path) is None

    def test_empty_output(self, tmp_path, monkeypatch):
        monkeypatch.setattr(
            capture_module.subprocess, "run", Mock(return_value=completed(0, "\n"))
        )

        assert detect_git_branch(tmp_path) is None

    def test_timeout(self, tmp_path, monkeypatch):
        monkeypatch.setattr(
            capture_module.subprocess,
            "run",
            Mock(side_effect=subprocess.TimeoutExpired(["git"], 5)),
        )

        assert detect_git_branch(tmp_path) is None

    def test_missing_binary(self, tmp_path, no_git):
        assert detect_git_branch(tmp_path) is None

    def test_not_run_for_missing_directory(self, tmp_path, no_git):
        assert detect_git_branch(tmp_path / "nope") is None
        no_git.assert_not_called()

    def test_one_git_query_per_context(self, tmp_path, monkeypatch):
        run = Mock(return_value=completed(stdout="main\n"))
        monkeypatch.setattr(capture_module.subprocess, "run", run)

        context = context_from_path(tmp_path)

        assert context.git_branch == "main"
        assert run.call_count == 1


def test_summarize_recent_activity(now):
    snapshots = [
        Snapshot.new(active_file="/src/a.py", active_directory="/src", git_branch="main"),
        Snapshot.new(active_file="/test/b.py", active_directory="/test", git_branch="feature"),
        Snapshot.new(active_directory="/src", git_branch="main"),
    ]

    summary = summarize_recent_activity(snapshots)

    assert summary.total_snapshots == 3
    assert summary.unique_directories == 2
    assert summary.unique_branches == 2
    assert summary.files_touched == 2
