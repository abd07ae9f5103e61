"""Durable operation queue backed by the operation_queue table."""

import json
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

from parityguard.database import Database, Operation, OperationStatus, OperationType
from parityguard.errors import ItemNotFoundError, UserInputError

from .params import OperationParams, parse_parameters, to_payload

logger = logging.getLogger(__name__)

TERMINATED_MESSAGE = "Operation terminated unexpectedly during processing"
STUCK_MESSAGE = "Operation timed out or was interrupted"


class OperationQueue:
    """FIFO job table. Every state change goes through a conditional UPDATE."""

    def __init__(self, db: Database):
        self.db = db

    def enqueue(self, params: OperationParams) -> int:
        now = time.time()
        payload = json.dumps(to_payload(params))

        def insert() -> int:
            with self.db.transaction() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO operation_queue
                    (operation_type, parameters, status, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (params.operation_type.value, payload, OperationStatus.PENDING.value, now, now),
                )
            assert cursor.lastrowid is not None
            return cursor.lastrowid

        operation_id = self.db.with_retry(insert)
        logger.info("Queued %s operation %d", params.operation_type.value, operation_id)
        return operation_id

    def add(self, operation_type: OperationType | str, parameters: Mapping[str, Any]) -> int:
        """Validate a raw payload and enqueue it."""
        return self.enqueue(parse_parameters(operation_type, parameters))

    def get(self, operation_id: int) -> Operation | None:
        row = self.db.conn.execute(
            "SELECT * FROM operation_queue WHERE id = ?", (operation_id,)
        ).fetchone()
        return Operation.from_row(row) if row else None

    def list_operations(
        self, status: OperationStatus | None = None, limit: int = 100
    ) -> list[Operation]:
        if status is None:
            rows = self.db.conn.execute(
                "SELECT * FROM operation_queue ORDER BY created_at DESC, id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        else:
            rows = self.db.conn.execute(
                """
                SELECT * FROM operation_queue WHERE status = ?
                ORDER BY created_at DESC, id DESC LIMIT ?
                """,
                (status.value, limit),
            ).fetchall()
        return [Operation.from_row(row) for row in rows]

    def processing_count(self) -> int:
        row = self.db.conn.execute(
            "SELECT COUNT(*) FROM operation_queue WHERE status = ?",
            (OperationStatus.PROCESSING.value,),
        ).fetchone()
        return row[0]

    def has_pending(self, operation_type: OperationType | None = None) -> bool:
        if operation_type is None:
            row = self.db.conn.execute(
                "SELECT 1 FROM operation_queue WHERE status = ? LIMIT 1",
                (OperationStatus.PENDING.value,),
            ).fetchone()
        else:
            row = self.db.conn.execute(
                "SELECT 1 FROM operation_queue WHERE status = ? AND operation_type = ? LIMIT 1",
                (OperationStatus.PENDING.value, operation_type.value),
            ).fetchone()
        return row is not None

    def claim_next(self, pid: int, max_concurrent: int) -> Operation | None:
        """Move the oldest pending operation to processing, owned by ``pid``.

        Returns None when nothing is pending, when ``max_concurrent`` operations
        are already processing, or when another process won the row.
        """
        return self.db.with_retry(lambda: self._claim(pid, max_concurrent))

    def _claim(self, pid: int, max_concurrent: int) -> Operation | None:
        now = time.time()
        with self.db.transaction() as conn:
            processing = conn.execute(
                "SELECT COUNT(*) FROM operation_queue WHERE status = ?",
                (OperationStatus.PROCESSING.value,),
            ).fetchone()[0]
            if processing >= max_concurrent:
                return None

            row = conn.execute(
                """
                SELECT id FROM operation_queue WHERE status = ?
                ORDER BY created_at ASC, id ASC LIMIT 1
                """,
                (OperationStatus.PENDING.value,),
            ).fetchone()
            if row is None:
                return None

            cursor = conn.execute(
                """
                UPDATE operation_queue
                SET status = ?, started_at = ?, updated_at = ?, pid = ?
                WHERE id = ? AND status = ?
                """,
                (
                    OperationStatus.PROCESSING.value,
                    now,
                    now,
                    pid,
                    row["id"],
                    OperationStatus.PENDING.value,
                ),
            )
            if cursor.rowcount != 1:
                logger.debug("Lost claim race for operation %d", row["id"])
                return None

            claimed = conn.execute(
                "SELECT * FROM operation_queue WHERE id = ?", (row["id"],)
            ).fetchone()
        return Operation.from_row(claimed)

    def complete(self, operation_id: int, status: OperationStatus, result: dict[str, Any]) -> bool:
        """Terminate a processing operation. Returns False if it was not processing."""
        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal status")
        return self._transition(operation_id, (OperationStatus.PROCESSING,), status, result)

    def cancel(self, operation_id: int) -> bool:
        """Cancel an operation that has not been claimed yet."""
        operation = self.get(operation_id)
        if operation is None:
            raise ItemNotFoundError(f"Operation {operation_id} not found")
        if operation.status is not OperationStatus.PENDING:
            raise UserInputError(
                f"Operation {operation_id} is {operation.status.value}, only pending operations can be cancelled"
            )
        return self._transition(
            operation_id,
            (OperationStatus.PENDING,),
            OperationStatus.CANCELLED,
            {"success": False, "error": "Operation cancelled by user"},
        )

    def force_cancel(self, operation_id: int, message: str) -> bool:
        return self._transition(
            operation_id,
            (OperationStatus.PENDING, OperationStatus.PROCESSING),
            OperationStatus.CANCELLED,
            {"success": False, "error": message},
        )

    def _transition(
        self,
        operation_id: int,
        from_statuses: tuple[OperationStatus, ...],
        status: OperationStatus,
        result: dict[str, Any],
    ) -> bool:
        now = time.time()
        placeholders = ",".join("?" for _ in from_statuses)
        cursor = self.db.execute_with_retry(
            f"""
            UPDATE operation_queue
            SET status = ?, result = ?, completed_at = ?, updated_at = ?
            WHERE id = ? AND status IN ({placeholders})
            """,
            (
                status.value,
                json.dumps(result),
                now,
                now,
                operation_id,
                *[s.value for s in from_statuses],
            ),
        )
        return cursor.rowcount == 1

    def fail_orphaned(self, pid: int) -> int:
        """Fail every processing row still owned by ``pid``."""
        count = self._fail_where("pid = ?", (pid,), TERMINATED_MESSAGE)
        if count:
            logger.warning("Marked %d orphaned operations of pid %d as failed", count, pid)
        return count

    def fail_dead_owners(self, is_alive: Callable[[int], bool], own_pid: int) -> int:
        """Fail processing rows whose owning process no longer exists."""
        rows = self.db.conn.execute(
            "SELECT DISTINCT pid FROM operation_queue WHERE status = ? AND pid IS NOT NULL",
            (OperationStatus.PROCESSING.value,),
        ).fetchall()
        count = 0
        for row in rows:
            pid = row["pid"]
            if pid != own_pid and not is_alive(pid):
                count += self.fail_orphaned(pid)
        return count

    def fail_stuck(self, timeout: float) -> int:
        cutoff = time.time() - timeout
        count = self._fail_where("started_at < ?", (cutoff,), STUCK_MESSAGE)
        if count:
            logger.warning("Marked %d stuck operations as failed", count)
        return count

    def _fail_where(self, condition: str, params: tuple[Any, ...], message: str) -> int:
        now = time.time()
        cursor = self.db.execute_with_retry(
            f"""
            UPDATE operation_queue
            SET status = ?, result = ?, completed_at = ?, updated_at = ?
            WHERE status = ? AND {condition}
            """,
            (
                OperationStatus.FAILED.value,
                json.dumps({"success": False, "error": message}),
                now,
                now,
                OperationStatus.PROCESSING.value,
                *params,
            ),
        )
        return cursor.rowcount

    def recent_failures(self, operation_type: OperationType, since: float) -> list[Operation]:
        rows = self.db.conn.execute(
            """
            SELECT * FROM operation_queue
            WHERE operation_type = ? AND status = ? AND completed_at >= ?
            ORDER BY completed_at
            """,
            (operation_type.value, OperationStatus.FAILED.value, since),
        ).fetchall()
        return [Operation.from_row(row) for row in rows]

    def cleanup_old(self, days: int = 7) -> int:
        """Delete terminated operations completed more than ``days`` ago."""
        cutoff = time.time() - days * 86400
        terminal = [s.value for s in OperationStatus if s.is_terminal]
        placeholders = ",".join("?" for _ in terminal)
        cursor = self.db.execute_with_retry(
            f"""
            DELETE FROM operation_queue
            WHERE status IN ({placeholders}) AND completed_at < ?
            """,
            (*terminal, cutoff),
        )
        logger.info("Removed %d operations older than %d days", cursor.rowcount, days)
        return cursor.rowcount
