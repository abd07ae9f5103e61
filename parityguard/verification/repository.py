"""Persistence for verification results and history."""

import logging
from datetime import datetime, timedelta

from parityguard.cache import Cache
from parityguard.database import (
    Database,
    ProtectedItem,
    ProtectionStatus,
    VerificationHistoryEntry,
)

logger = logging.getLogger(__name__)

PROBLEM_STATUSES = (
    ProtectionStatus.DAMAGED,
    ProtectionStatus.MISSING,
    ProtectionStatus.ERROR,
    ProtectionStatus.REPAIR_FAILED,
)


class VerificationRepository:
    def __init__(self, db: Database, cache: Cache):
        self.db = db
        self.cache = cache

    def update_status(self, item: ProtectedItem, status: ProtectionStatus, details: str) -> None:
        """Record a verify/repair outcome on the item and in its history, atomically."""
        assert item.id is not None
        now = datetime.now().isoformat(sep=" ", timespec="seconds")

        def record() -> None:
            with self.db.transaction() as conn:
                conn.execute(
                    """
                    UPDATE protected_items
                    SET last_status = ?, last_verified = ?, last_details = ?
                    WHERE id = ?
                    """,
                    (status.value, now, details, item.id),
                )
                conn.execute(
                    """
                    INSERT INTO verification_history
                    (protected_item_id, verification_date, status, details)
                    VALUES (?, ?, ?, ?)
                    """,
                    (item.id, now, status.value, details),
                )

        self.db.with_retry(record)
        self.cache.invalidate_item(item.id, item.path)
        item.last_status = status
        item.last_verified = now
        item.last_details = details
        logger.debug("Item %d status is now %s", item.id, status.value)

    def get_history(self, item_id: int, limit: int = 10) -> list[VerificationHistoryEntry]:
        rows = self.db.conn.execute(
            """
            SELECT * FROM verification_history
            WHERE protected_item_id = ?
            ORDER BY verification_date DESC, id DESC
            LIMIT ?
            """,
            (item_id, limit),
        ).fetchall()
        return [VerificationHistoryEntry.from_row(row) for row in rows]

    def recent_status_counts(self, minutes: int = 10) -> dict[str, int]:
        since = (datetime.now() - timedelta(minutes=minutes)).isoformat(sep=" ", timespec="seconds")
        rows = self.db.conn.execute(
            """
            SELECT status, COUNT(*) AS count FROM verification_history
            WHERE verification_date >= ?
            GROUP BY status
            """,
            (since,),
        ).fetchall()
        return {row["status"]: row["count"] for row in rows}

    def recent_problem_items(self, minutes: int = 10) -> list[dict[str, str]]:
        since = (datetime.now() - timedelta(minutes=minutes)).isoformat(sep=" ", timespec="seconds")
        placeholders = ",".join("?" for _ in PROBLEM_STATUSES)
        rows = self.db.conn.execute(
            f"""
            SELECT path, last_status FROM protected_items
            WHERE last_verified >= ? AND last_status IN ({placeholders})
            ORDER BY path
            """,
            (since, *[s.value for s in PROBLEM_STATUSES]),
        ).fetchall()
        return [{"path": row["path"], "status": row["last_status"]} for row in rows]
