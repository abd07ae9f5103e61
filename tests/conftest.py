"""Shared fixtures: a temporary database and a par2 stand-in."""

# pylint: disable=redefined-outer-name

from collections import defaultdict
from pathlib import Path

import pytest

from parityguard.config import Config
from parityguard.database import Database
from parityguard.par2 import Par2Result

SUBCOMMANDS = ("create", "verify", "repair")


class FakePar2Runner:
    """Records argv and answers with queued (returncode, output) pairs.

    Successful create calls write a small parity file at the ``-a`` target so
    that layout and size bookkeeping can be checked on disk.
    """

    par2_path = "/usr/local/bin/par2"

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self._responses: dict[str, list[tuple[int, str]]] = defaultdict(list)

    def respond(self, subcommand: str, returncode: int, output: str = "", times: int = 1) -> None:
        self._responses[subcommand].extend([(returncode, output)] * times)

    def calls_for(self, subcommand: str) -> list[list[str]]:
        return [argv for argv in self.calls if subcommand in argv]

    def run(self, argv: list[str]) -> Par2Result:
        self.calls.append(list(argv))
        subcommand = next(arg for arg in argv if arg in SUBCOMMANDS)
        queued = self._responses[subcommand]
        returncode, output = queued.pop(0) if queued else (0, "")

        if subcommand == "create" and returncode == 0:
            parity = Path(argv[argv.index("-a") + 1])
            parity.parent.mkdir(parents=True, exist_ok=True)
            parity.write_bytes(b"PAR2\x00PKT" * 8)
        return Par2Result(argv=list(argv), returncode=returncode, output=output)


@pytest.fixture
def temp_db(tmp_path: Path) -> Database:
    """Create a temporary database with schema for testing."""
    db = Database(tmp_path / "test.db")
    db.connect()
    yield db
    db.close()


@pytest.fixture
def fake_runner() -> FakePar2Runner:
    return FakePar2Runner()


@pytest.fixture
def config(tmp_path: Path) -> Config:
    config = Config(database_path=tmp_path / "test.db")
    config.queue.lock_path = tmp_path / "locks" / "processor.lock"
    config.resource_limits.io_priority = "none"
    config.resource_limits.max_cpu_usage = None
    config.resource_limits.max_memory_usage = None
    return config


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """A small directory tree to protect."""
    root = tmp_path / "data"
    (root / "photos").mkdir(parents=True)
    (root / "docs").mkdir()
    (root / "photos" / "a.jpg").write_bytes(b"jpeg" * 100)
    (root / "photos" / "b.PNG").write_bytes(b"png" * 100)
    (root / "docs" / "report.pdf").write_bytes(b"pdf" * 100)
    (root / "notes.txt").write_text("hello")
    return root
