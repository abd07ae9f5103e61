"""Tests for the command-line interface."""

# pylint: disable=redefined-outer-name

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from parityguard.app import build_services
from parityguard.cli import _truncate, cli
from parityguard.database import Database, OperationStatus, OperationType
from parityguard.queue import EventLog, OperationQueue


@pytest.fixture(autouse=True)
def no_logging_setup():
    with patch("parityguard.cli.setup_logging"):
        yield


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "cli.db"


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "parityguard.toml"
    path.write_text(
        f"""
[queue]
lock_path = "{tmp_path / 'locks' / 'processor.lock'}"

[resource_limits]
io_priority = "none"
max_cpu_usage = 0
max_memory_usage = 0
"""
    )
    return path


def _operations(db_path: Path) -> list:
    with Database(db_path) as db:
        return OperationQueue(db).list_operations()


class TestEnqueueCommands:
    """Tests for commands that add operations to the queue."""

    def test_protect(self, runner: CliRunner, db_path: Path, data_dir: Path):
        result = runner.invoke(cli, [
            "protect", str(data_dir), "-r", "20", "-c", "images", "-t", "pdf",
            "--block-count", "100", "--database", str(db_path),
        ])

        assert result.exit_code == 0, result.output
        assert "Queued protect operation 1" in result.output
        [op] = _operations(db_path)
        assert op.operation_type == OperationType.PROTECT
        assert op.parameters == {
            "path": str(data_dir.resolve()),
            "redundancy": 20,
            "file_types": ["pdf"],
            "file_categories": ["images"],
            "advanced_settings": {
                "block_count": 100,
                "block_size": None,
                "target_size": None,
                "recovery_files": None,
            },
        }

    def test_protect_rejects_bad_redundancy(self, runner: CliRunner, db_path: Path, data_dir: Path):
        result = runner.invoke(cli, ["protect", str(data_dir), "-r", "0", "--database", str(db_path)])
        assert result.exit_code == 2

    def test_verify_by_id_with_flags(self, runner: CliRunner, db_path: Path):
        result = runner.invoke(cli, ["verify", "--id", "3", "--metadata", "--auto-restore", "--database", str(db_path)])

        assert result.exit_code == 0, result.output
        [op] = _operations(db_path)
        assert op.parameters == {
            "id": 3,
            "force": False,
            "verify_metadata": True,
            "auto_restore_metadata": True,
        }

    def test_verify_requires_target(self, runner: CliRunner, db_path: Path):
        result = runner.invoke(cli, ["verify", "--database", str(db_path)])
        assert result.exit_code == 1
        assert "PATH or --id is required" in result.output

    def test_repair_without_metadata_restore(self, runner: CliRunner, db_path: Path, data_dir: Path):
        runner.invoke(cli, ["repair", str(data_dir), "--no-restore-metadata", "--database", str(db_path)])
        [op] = _operations(db_path)
        assert op.parameters["restore_metadata"] is False

    def test_remove(self, runner: CliRunner, db_path: Path, data_dir: Path):
        result = runner.invoke(cli, ["remove", str(data_dir), "--database", str(db_path)])
        assert result.exit_code == 0
        assert _operations(db_path)[0].operation_type == OperationType.REMOVE


class TestProcessCommand:
    """Tests for the process command."""

    def test_process_drains_queue(self, runner: CliRunner, db_path: Path, data_dir: Path, config_file: Path, fake_runner):
        runner.invoke(cli, ["protect", str(data_dir), "--database", str(db_path)])
        runner.invoke(cli, ["verify", str(data_dir), "--database", str(db_path)])

        with patch(
            "parityguard.cli.build_services",
            side_effect=lambda config, db: build_services(config, db, runner=fake_runner),
        ):
            result = runner.invoke(cli, ["--config", str(config_file), "process", "--database", str(db_path)])

        assert result.exit_code == 0, result.output
        assert "Processed 2 operations: 2 completed, 0 failed, 0 skipped" in result.output
        assert all(op.status == OperationStatus.COMPLETED for op in _operations(db_path))

        listing = runner.invoke(cli, ["list", "--database", str(db_path)])
        assert "VERIFIED" in listing.output
        assert "Directory" in listing.output

        status = runner.invoke(cli, ["status", str(data_dir), "--database", str(db_path)])
        assert "Redundancy: 10%" in status.output
        assert "History:" in status.output

    def test_invalid_config_exits(self, runner: CliRunner, tmp_path: Path):
        bad = tmp_path / "bad.toml"
        bad.write_text("unknown_key = 1\n")
        result = runner.invoke(cli, ["--config", str(bad), "queue"])
        assert result.exit_code == 1
        assert "Unknown configuration key" in result.output


class TestQueueCommands:
    """Tests for inspecting and controlling queued operations."""

    def test_queue_listing(self, runner: CliRunner, db_path: Path, data_dir: Path):
        runner.invoke(cli, ["protect", str(data_dir), "--database", str(db_path)])

        result = runner.invoke(cli, ["queue", "--database", str(db_path)])

        assert "protect" in result.output
        assert "pending" in result.output
        assert "just now" in result.output

    def test_queue_listing_empty(self, runner: CliRunner, db_path: Path):
        result = runner.invoke(cli, ["queue", "--status", "failed", "--database", str(db_path)])
        assert "No operations found." in result.output

    def test_operation_details(self, runner: CliRunner, db_path: Path, data_dir: Path):
        runner.invoke(cli, ["protect", str(data_dir), "--database", str(db_path)])

        result = runner.invoke(cli, ["operation", "1", "--database", str(db_path)])

        assert "Operation 1: protect (pending)" in result.output
        assert "Started: -" in result.output

    def test_operation_not_found(self, runner: CliRunner, db_path: Path):
        result = runner.invoke(cli, ["operation", "9", "--database", str(db_path)])
        assert result.exit_code == 1

    def test_cancel_then_cancel_again(self, runner: CliRunner, db_path: Path, data_dir: Path):
        runner.invoke(cli, ["protect", str(data_dir), "--database", str(db_path)])

        first = runner.invoke(cli, ["cancel", "1", "--database", str(db_path)])
        second = runner.invoke(cli, ["cancel", "1", "--database", str(db_path)])

        assert first.exit_code == 0
        assert second.exit_code == 1
        assert "only pending" in second.output

    def test_kill_pending(self, runner: CliRunner, db_path: Path, data_dir: Path):
        runner.invoke(cli, ["protect", str(data_dir), "--database", str(db_path)])
        result = runner.invoke(cli, ["kill", "1", "--database", str(db_path)])
        assert "Operation 1 is now cancelled" in result.output

    def test_cleanup(self, runner: CliRunner, db_path: Path):
        result = runner.invoke(cli, ["cleanup", "--days", "3", "--database", str(db_path)])
        assert result.exit_code == 0
        assert "Removed 0 operations and 0 events" in result.output

    def test_events_are_json_lines(self, runner: CliRunner, db_path: Path):
        with Database(db_path) as db:
            EventLog(db).add_event("operation.completed", {"id": 1})

        result = runner.invoke(cli, ["events", "--database", str(db_path)])

        [line] = result.output.strip().splitlines()
        assert json.loads(line)["type"] == "operation.completed"

    def test_list_empty(self, runner: CliRunner, db_path: Path):
        result = runner.invoke(cli, ["list", "--database", str(db_path)])
        assert "No protected items." in result.output

    def test_status_not_found(self, runner: CliRunner, db_path: Path):
        result = runner.invoke(cli, ["status", "--id", "1", "--database", str(db_path)])
        assert result.exit_code == 1


class TestHelpers:
    def test_truncate_keeps_tail(self):
        assert _truncate("/very/long/path/to/file.jpg", 12) == ".../file.jpg"
        assert _truncate("short", 12) == "short"
