"""Tests for the cockpit command line."""

from datetime import timedelta
from unittest.mock import Mock

import pytest
import yaml
from click.testing import CliRunner

from cockpit.cli.cockpit import cli
from cockpit.daemon import capture as capture_module
from cockpit.daemon.config import Config
from cockpit.daemon.models import FileEvent, FileEventType, Snapshot, utcnow
from cockpit.daemon.store import ActivityStore


@pytest.fixture(autouse=True)
def no_git(monkeypatch):
    monkeypatch.setattr(
        capture_module.subprocess, "run", Mock(side_effect=FileNotFoundError("git"))
    )


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "data" / "cockpit.duckdb"


@pytest.fixture
def config_file(tmp_path, db_path):
    path = tmp_path / "cockpit.yaml"
    path.write_text(yaml.safe_dump({
        "watcher": {"directories": [str(tmp_path)]},
        "database": {"path": str(db_path), "max_snapshots": 100},
    }))
    return path


@pytest.fixture
def invoke(runner, config_file):
    def _invoke(*args):
        return runner.invoke(cli, ["-c", str(config_file), *args], obj={})
    return _invoke


class TestSnapshotCommands:
    """Test capturing and listing snapshots."""

    def test_snapshot_then_list(self, invoke, tmp_path, db_path):
        work = tmp_path / "work"
        work.mkdir()
        (work / "main.py").write_text("pass\n")

        result = invoke("snapshot", str(work / "main.py"), "--note", "before lunch")

        assert result.exit_code == 0, result.output
        assert "Snapshot captured:" in result.output
        assert "before lunch" in result.output

        with ActivityStore(db_path) as store:
            (snap,) = store.get_recent_snapshots(5)
        assert snap.active_file == str(work / "main.py")
        assert snap.active_directory == str(work)
        assert snap.notes == "before lunch"

        listed = invoke("list", "--limit", "5")

        assert listed.exit_code == 0, listed.output
        assert "Recent Snapshots" in listed.output
        assert snap.id[:8] in listed.output

    def test_list_empty(self, invoke):
        result = invoke("list")

        assert result.exit_code == 0
        assert "No snapshots found" in result.output


class TestNudgeCommands:
    """Test nudge and summary output."""

    def test_no_nudges(self, invoke):
        result = invoke("nudge")

        assert result.exit_code == 0
        assert "No nudges right now" in result.output

    def test_burst_nudge_shown(self, invoke, db_path):
        now = utcnow()
        with ActivityStore(db_path) as store:
            for i in range(20):
                store.insert_snapshot(
                    Snapshot.new(active_directory="/proj", timestamp=now - timedelta(minutes=i))
                )

        result = invoke("nudge")

        assert result.exit_code == 0, result.output
        assert "[LOW]" in result.output
        assert "High activity" in result.output

    def test_summary_without_activity(self, invoke):
        result = invoke("summary")

        assert result.exit_code == 0
        assert "Daily Summary" in result.output
        assert "No activity recorded today." in result.output

    def test_summary_with_events(self, invoke, db_path):
        with ActivityStore(db_path) as store:
            store.insert_file_event(FileEvent.new("/src/a.py", FileEventType.MODIFIED))
            store.insert_file_event(FileEvent.new("/src/b.py", FileEventType.CREATED))

        result = invoke("summary")

        assert result.exit_code == 0, result.output
        assert "2 file events" in result.output
        assert "Light activity day" in result.output
        assert "Latest changes:" in result.output
        assert "/src/a.py" in result.output
        assert "created" in result.output


class TestMaintenanceCommands:
    """Test status, cleanup and init."""

    def test_status(self, invoke):
        result = invoke("status")

        assert result.exit_code == 0, result.output
        assert "Cockpit Status" in result.output
        assert "Snapshots: 0" in result.output
        assert "OK" in result.output
        assert "Recent activity" in result.output

    def test_status_shows_recent_activity(self, invoke, db_path):
        with ActivityStore(db_path) as store:
            store.insert_snapshot(Snapshot.new(active_file="/p/a.py", active_directory="/p", git_branch="main"))
            store.insert_snapshot(Snapshot.new(active_directory="/q", git_branch="dev"))

        result = invoke("status")

        assert result.exit_code == 0, result.output
        assert "last 2 snapshots" in result.output
        assert "Directories: 2" in result.output
        assert "Branches: 2" in result.output
        assert "Files touched: 1" in result.output

    def test_status_while_daemon_store_is_open(self, invoke, db_path):
        """A long-lived store handle does not lock the CLI out."""
        daemon_store = ActivityStore(db_path)
        daemon_store.insert_snapshot(Snapshot.new(active_directory="/p"))

        result = invoke("status")

        assert result.exit_code == 0, result.output
        assert "Snapshots: 1" in result.output
        daemon_store.close()

    def test_cleanup_with_override(self, invoke, db_path):
        with ActivityStore(db_path) as store:
            for i in range(5):
                store.insert_snapshot(
                    Snapshot.new(timestamp=utcnow() - timedelta(minutes=i))
                )

        result = invoke("cleanup", "--max", "2")

        assert result.exit_code == 0, result.output
        assert "Removed 3 snapshots and 0 file events" in result.output
        with ActivityStore(db_path) as store:
            assert store.count_snapshots() == 2

    def test_invalid_config_exits_nonzero(self, runner, tmp_path):
        bad = tmp_path / "bad.yaml"
        bad.write_text(yaml.safe_dump({
            "watcher": {"directories": [str(tmp_path)], "ignore_patterns": ["[oops"]},
        }))

        result = runner.invoke(cli, ["-c", str(bad), "status"], obj={})

        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_init_writes_loadable_config(self, runner, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        target = tmp_path / "conf" / "cockpit.yaml"

        result = runner.invoke(cli, ["init", "--path", str(target)], obj={})

        assert result.exit_code == 0, result.output
        assert "Wrote config to" in result.output
        assert Config.load(target).watcher.directories == [tmp_path]

        again = runner.invoke(cli, ["init", "--path", str(target)], obj={})

        assert again.exit_code == 0
        assert "Config already exists" in again.output


class TestSearchCommands:
    """Test indexing a tree and searching it."""

    @pytest.fixture
    def docs_dir(self, tmp_path):
        docs = tmp_path / "docs"
        docs.mkdir()
        (docs / "plan.md").write_text("Quarterly roadmap and milestones\n")
        (docs / "diagram.png").write_bytes(b"\x89PNG")
        return docs

    def test_index_then_search(self, invoke, docs_dir):
        result = invoke("index", str(docs_dir))

        assert result.exit_code == 0, result.output
        assert "Files indexed: 1" in result.output
        assert "Files skipped: 1" in result.output

        found = invoke("search", "roadmap")

        assert found.exit_code == 0, found.output
        assert "Search results for 'roadmap'" in found.output
        assert "plan.md" in found.output

    def test_dry_run_writes_nothing(self, invoke, docs_dir, db_path):
        result = invoke("index", str(docs_dir), "--dry-run")

        assert result.exit_code == 0, result.output
        assert "Would index:" in result.output
        assert "--dry-run" in result.output
        assert not (db_path.parent / "search_index").exists()

    def test_search_without_matches(self, invoke):
        result = invoke("search", "nothing")

        assert result.exit_code == 0, result.output
        assert "No results found for: nothing" in result.output

    def test_bad_query(self, invoke):
        result = invoke("search", "nosuchfield:value")

        assert result.exit_code == 1
        assert "Search failed" in result.output
