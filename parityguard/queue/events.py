"""Event log read by external notification consumers."""

import json
import logging
import time
from typing import Any

from parityguard.database import Database

logger = logging.getLogger(__name__)

OPERATION_COMPLETED = "operation.completed"
VERIFICATION_SUMMARY = "verification.summary"


class EventLog:
    def __init__(self, db: Database):
        self.db = db

    def add_event(self, event_type: str, data: dict[str, Any]) -> int:
        cursor = self.db.execute_with_retry(
            "INSERT INTO events (event_type, data, created_at) VALUES (?, ?, ?)",
            (event_type, json.dumps(data), time.time()),
        )
        assert cursor.lastrowid is not None
        logger.debug("Event %s #%d", event_type, cursor.lastrowid)
        return cursor.lastrowid

    def get_events(self, last_id: int = 0, limit: int = 100) -> list[dict[str, Any]]:
        rows = self.db.conn.execute(
            "SELECT * FROM events WHERE id > ? ORDER BY id LIMIT ?",
            (last_id, limit),
        ).fetchall()
        return [
            {
                "id": row["id"],
                "type": row["event_type"],
                "data": json.loads(row["data"]),
                "timestamp": row["created_at"],
            }
            for row in rows
        ]

    def cleanup_old_events(self, days: int = 1) -> int:
        cutoff = time.time() - days * 86400
        cursor = self.db.execute_with_retry("DELETE FROM events WHERE created_at < ?", (cutoff,))
        return cursor.rowcount
