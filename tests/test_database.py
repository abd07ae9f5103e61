"""Tests for database module."""

import sqlite3
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from parityguard.cache import Cache
from parityguard.config import DatabaseConfig
from parityguard.database import Database, ModeKind, ProtectionMode, ProtectionStatus
from parityguard.errors import PersistenceError
from parityguard.metadata import MetadataManager
from parityguard.protection import ProtectionRepository
from parityguard.verification import VerificationRepository


class TestDatabase:
    """Tests for Database class."""

    def test_creates_database_file(self, tmp_path: Path) -> None:
        db_path = tmp_path / "test.db"
        with Database(db_path):
            assert db_path.exists()

    def test_creates_parent_directories(self, tmp_path: Path) -> None:
        db_path = tmp_path / "subdir" / "nested" / "test.db"
        with Database(db_path):
            assert db_path.exists()

    def test_schema_creates_tables(self, tmp_path: Path):
        with Database(tmp_path / "test.db") as db:
            tables = db.conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
            table_names = {row["name"] for row in tables}

            assert {"protected_items", "verification_history", "operation_queue", "file_metadata"} <= table_names
            assert "events" in table_names

    def test_foreign_keys_enabled(self, tmp_path: Path):
        with Database(tmp_path / "test.db") as db:
            result = db.conn.execute("PRAGMA foreign_keys").fetchone()
            assert result[0] == 1

    def test_wal_journal_mode(self, tmp_path: Path):
        with Database(tmp_path / "test.db") as db:
            result = db.conn.execute("PRAGMA journal_mode").fetchone()
            assert result[0] == "wal"

    def test_quick_check_passes_on_fresh_database(self, temp_db: Database):
        assert temp_db.quick_check() is True

    def test_protected_item_uniqueness_on_path_and_selector(self, temp_db: Database):
        insert = """
            INSERT INTO protected_items (path, mode, redundancy, protected_date, par2_path, file_types)
            VALUES (?, 'directory', 10, '2024-01-01', '/p', ?)
        """
        temp_db.conn.execute(insert, ("/data", ""))
        temp_db.conn.execute(insert, ("/data", '["jpg"]'))

        with pytest.raises(sqlite3.IntegrityError):
            temp_db.conn.execute(insert, ("/data", ""))


class TestTransaction:
    """Tests for Database.transaction."""

    def test_commits_on_success(self, temp_db: Database):
        with temp_db.transaction() as conn:
            conn.execute(
                "INSERT INTO events (event_type, data, created_at) VALUES ('x', '{}', 1)"
            )

        count = temp_db.conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]
        assert count == 1

    def test_rolls_back_and_wraps_sqlite_errors(self, temp_db: Database):
        with pytest.raises(PersistenceError):
            with temp_db.transaction() as conn:
                conn.execute(
                    "INSERT INTO events (event_type, data, created_at) VALUES ('x', '{}', 1)"
                )
                conn.execute("INSERT INTO no_such_table VALUES (1)")

        count = temp_db.conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]
        assert count == 0

    def test_rolls_back_on_other_exceptions(self, temp_db: Database):
        with pytest.raises(RuntimeError):
            with temp_db.transaction() as conn:
                conn.execute(
                    "INSERT INTO events (event_type, data, created_at) VALUES ('x', '{}', 1)"
                )
                raise RuntimeError("boom")

        count = temp_db.conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]
        assert count == 0

    def test_cascade_delete_of_history(self, temp_db: Database):
        with temp_db.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO protected_items (path, mode, redundancy, protected_date, par2_path)
                VALUES ('/data', 'directory', 10, '2024-01-01', '/data/.parity/data.par2')
                """
            )
            conn.execute(
                """
                INSERT INTO verification_history (protected_item_id, verification_date, status)
                VALUES (?, '2024-01-02', 'VERIFIED')
                """,
                (cursor.lastrowid,),
            )

        with temp_db.transaction() as conn:
            conn.execute("DELETE FROM protected_items")

        count = temp_db.conn.execute("SELECT COUNT(*) FROM verification_history").fetchone()[0]
        assert count == 0


class TestRetry:
    """Tests for lock-contention retries."""

    @patch("parityguard.database.connection.time.sleep")
    def test_retries_locked_database_with_backoff(self, mock_sleep, tmp_path: Path):
        db = Database(tmp_path / "test.db")
        func = Mock(
            side_effect=[
                sqlite3.OperationalError("database is locked"),
                sqlite3.OperationalError("database is locked"),
                "ok",
            ]
        )

        assert db.with_retry(func) == "ok"
        assert func.call_count == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [0.05, 0.1]

    @patch("parityguard.database.connection.time.sleep")
    def test_backoff_is_capped(self, mock_sleep, tmp_path: Path):
        settings = DatabaseConfig(max_retries=6, initial_retry_delay_ms=400, max_retry_delay_ms=1000)
        db = Database(tmp_path / "test.db", settings)
        func = Mock(side_effect=[sqlite3.OperationalError("database is locked")] * 4 + ["ok"])

        db.with_retry(func)

        assert [c.args[0] for c in mock_sleep.call_args_list] == [0.4, 0.8, 1.0, 1.0]

    @patch("parityguard.database.connection.time.sleep")
    def test_gives_up_after_max_retries(self, mock_sleep, tmp_path: Path):
        db = Database(tmp_path / "test.db")
        func = Mock(side_effect=sqlite3.OperationalError("database is locked"))

        with pytest.raises(PersistenceError):
            db.with_retry(func)

        assert func.call_count == 6
        assert mock_sleep.call_count == 5

    def test_other_operational_errors_are_not_retried(self, tmp_path: Path):
        db = Database(tmp_path / "test.db")
        func = Mock(side_effect=sqlite3.OperationalError("no such table: nope"))

        with pytest.raises(PersistenceError):
            db.with_retry(func)

        assert func.call_count == 1


class TestWritesUnderLockContention:
    """Repository writes wait for a competing writer instead of failing."""

    @pytest.fixture
    def db(self, tmp_path: Path) -> Database:
        db = Database(tmp_path / "test.db", DatabaseConfig(busy_timeout_ms=20, max_retries=2))
        db.connect()
        yield db
        db.close()

    @pytest.fixture
    def blocker(self, tmp_path: Path, db: Database) -> sqlite3.Connection:
        conn = sqlite3.connect(tmp_path / "test.db", isolation_level=None)
        yield conn
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        conn.close()

    @patch("parityguard.database.connection.time.sleep")
    def test_add_protected_item_retries_until_lock_clears(self, mock_sleep, db, blocker):
        repository = ProtectionRepository(db, Cache())
        blocker.execute("BEGIN IMMEDIATE")
        mock_sleep.side_effect = lambda _: blocker.execute("COMMIT")

        item_id = repository.add_protected_item(
            "/data", ProtectionMode.directory(), 10, "/data/.parity/data.par2"
        )

        assert repository.find_by_id(item_id).path == "/data"
        assert mock_sleep.call_count == 1

    @patch("parityguard.database.connection.time.sleep")
    def test_persistent_lock_raises_persistence_error(self, mock_sleep, db, blocker):
        repository = ProtectionRepository(db, Cache())
        blocker.execute("BEGIN IMMEDIATE")

        with pytest.raises(PersistenceError, match="still locked"):
            repository.add_protected_item("/data", ProtectionMode.directory(), 10, "/p.par2")
        assert mock_sleep.call_count == 2

    @patch("parityguard.database.connection.time.sleep")
    def test_status_update_and_history_are_retried(self, mock_sleep, db, blocker):
        protection = ProtectionRepository(db, Cache())
        item_id = protection.add_protected_item("/data", ProtectionMode.directory(), 10, "/p.par2")
        item = protection.find_by_id(item_id)
        blocker.execute("BEGIN IMMEDIATE")
        mock_sleep.side_effect = lambda _: blocker.execute("COMMIT")

        VerificationRepository(db, Cache()).update_status(item, ProtectionStatus.VERIFIED, "ok")

        row = db.conn.execute("SELECT last_status FROM protected_items WHERE id = ?", (item_id,)).fetchone()
        assert row["last_status"] == "VERIFIED"
        count = db.conn.execute("SELECT COUNT(*) FROM verification_history").fetchone()[0]
        assert count == 1

    @patch("parityguard.database.connection.time.sleep")
    def test_metadata_capture_is_retried(self, mock_sleep, db, blocker, tmp_path: Path):
        target = tmp_path / "file.txt"
        target.write_text("hello")
        item_id = ProtectionRepository(db, Cache()).add_protected_item(
            str(target), ProtectionMode.file(), 10, "/p.par2"
        )
        blocker.execute("BEGIN IMMEDIATE")
        mock_sleep.side_effect = lambda _: blocker.execute("COMMIT")

        manager = MetadataManager(db)
        assert manager.capture(target, item_id) == 1
        assert [r.file_path for r in manager.get_records(item_id)] == [str(target)]

    @patch("parityguard.database.connection.time.sleep")
    def test_remove_item_is_retried(self, mock_sleep, db, blocker):
        repository = ProtectionRepository(db, Cache())
        item = repository.find_by_id(
            repository.add_protected_item("/data", ProtectionMode.directory(), 10, "/p.par2")
        )
        blocker.execute("BEGIN IMMEDIATE")
        mock_sleep.side_effect = lambda _: blocker.execute("COMMIT")

        repository.remove_item(item)

        assert repository.find_by_id(item.id) is None

class TestProtectionMode:
    """Tests for the protection mode type."""

    def test_parse_plain_modes(self):
        assert ProtectionMode.parse("file") == ProtectionMode.file()
        assert ProtectionMode.parse("directory").kind is ModeKind.DIRECTORY

    def test_individual_files_round_trip(self):
        mode = ProtectionMode.individual_files("images")
        assert str(mode) == "individual-files:images"
        assert ProtectionMode.parse(str(mode)) == mode
        assert mode.is_individual

    def test_unknown_mode_raises(self):
        with pytest.raises(ValueError):
            ProtectionMode.parse("Individual Files (jpg)")
