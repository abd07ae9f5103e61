"""Host-wide singleton lock for the queue processor."""

import fcntl
import logging
import os
from pathlib import Path
from typing import TextIO

logger = logging.getLogger(__name__)


class ProcessorLock:
    """Non-blocking exclusive flock on a lock file that records the holder's PID."""

    def __init__(self, path: Path):
        self.path = path
        self._handle: TextIO | None = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> bool:
        if self._handle is not None:
            return True

        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = self.path.open("a+")
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            handle.close()
            logger.info("Queue processor lock %s is held by pid %s", self.path, self.holder_pid())
            return False

        handle.seek(0)
        handle.truncate()
        handle.write(str(os.getpid()))
        handle.flush()
        self._handle = handle
        logger.debug("Acquired queue processor lock %s", self.path)
        return True

    def release(self) -> None:
        if self._handle is None:
            return
        # Never unlinked: every holder must lock the same inode.
        self._handle.seek(0)
        self._handle.truncate()
        self._handle.flush()
        fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
        self._handle.close()
        self._handle = None
        logger.debug("Released queue processor lock %s", self.path)

    def holder_pid(self) -> int | None:
        try:
            text = self.path.read_text().strip()
        except FileNotFoundError:
            return None
        return int(text) if text.isdigit() else None
