"""Singleton worker loop that drains the operation queue."""

import atexit
import logging
import os
import signal
import sqlite3
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import psutil

from parityguard.config import QueueConfig
from parityguard.database import Database, Operation, OperationStatus, OperationType, is_lock_error
from parityguard.errors import AlreadyProtectedError, PersistenceError
from parityguard.protection import ProtectionService
from parityguard.verification import VerificationRepository, VerificationService

from .events import OPERATION_COMPLETED, VERIFICATION_SUMMARY, EventLog
from .lock import ProcessorLock
from .params import (
    OperationParams,
    ProtectParams,
    RemoveParams,
    RepairParams,
    VerifyParams,
    parse_parameters,
)
from .store import OperationQueue

logger = logging.getLogger(__name__)

CANCELLED_BY_SIGNAL = "Operation cancelled by user or system"
SUMMARY_WINDOW_MINUTES = 10


@dataclass
class ProcessorStats:
    lock_acquired: bool = True
    processed: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    reconciled: int = 0
    start_time: float = field(default_factory=time.time)

    @property
    def elapsed(self) -> float:
        return time.time() - self.start_time


class QueueProcessor:
    """Claims operations one at a time and dispatches them to the workflows."""

    def __init__(
        self,
        db: Database,
        queue: OperationQueue,
        events: EventLog,
        protection: ProtectionService,
        verification: VerificationService,
        verification_repository: VerificationRepository,
        settings: QueueConfig,
        max_concurrent: int = 2,
        lock: ProcessorLock | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.queue = queue
        self.events = events
        self.protection = protection
        self.verification = verification
        self.verification_repository = verification_repository
        self.settings = settings
        self.max_concurrent = max_concurrent
        self.lock = lock or ProcessorLock(settings.lock_path)
        self.clock = clock
        self.sleep = sleep
        self.pid = os.getpid()
        self._current: Operation | None = None
        self._previous_sigterm: Any = None

    def run(self) -> ProcessorStats:
        stats = ProcessorStats()
        if not self.lock.acquire():
            logger.info("Another queue processor is running, exiting")
            stats.lock_acquired = False
            return stats

        self._install_exit_hooks()
        try:
            stats.reconciled = self.reconcile()
            self._loop(stats)
            self.events.cleanup_old_events(self.settings.event_retention_days)
        finally:
            self.shutdown()

        logger.info(
            "Queue processor finished: %d processed (%d completed, %d failed, %d skipped) in %.1fs",
            stats.processed,
            stats.completed,
            stats.failed,
            stats.skipped,
            stats.elapsed,
        )
        return stats

    def reconcile(self) -> int:
        """Fail processing rows left behind by dead workers or stuck past the timeout."""
        count = self.queue.fail_dead_owners(psutil.pid_exists, self.pid)
        count += self.queue.fail_stuck(self.settings.stuck_timeout)
        return count

    def shutdown(self) -> None:
        """Fail operations this process still owns and release the lock. Idempotent."""
        if not self.lock.held:
            return
        try:
            self.queue.fail_orphaned(self.pid)
        except (PersistenceError, sqlite3.Error) as e:
            logger.error("Could not reconcile operations of pid %d: %s", self.pid, e)
        self.lock.release()
        atexit.unregister(self.shutdown)
        if self._previous_sigterm is not None:
            signal.signal(signal.SIGTERM, self._previous_sigterm)
            self._previous_sigterm = None

    def _install_exit_hooks(self) -> None:
        atexit.register(self.shutdown)
        try:
            self._previous_sigterm = signal.signal(signal.SIGTERM, self._handle_sigterm)
        except ValueError:
            # signal handlers can only be installed from the main thread
            self._previous_sigterm = None

    def _handle_sigterm(self, signum: int, frame: Any) -> None:
        current = self._current
        if current is not None:
            logger.warning("Received signal %d while processing operation %d", signum, current.id)
            self.queue.force_cancel(current.id, CANCELLED_BY_SIGNAL)
        raise SystemExit(128 + signum)

    def _loop(self, stats: ProcessorStats) -> None:
        deadline = self.clock() + self.settings.max_execution_time

        while self.clock() < deadline:
            if not self._probe():
                continue

            if self.queue.processing_count() >= self.max_concurrent:
                logger.debug("Concurrency ceiling of %d reached, waiting", self.max_concurrent)
                self.sleep(self.settings.idle_sleep)
                continue

            operation = self.queue.claim_next(self.pid, self.max_concurrent)
            if operation is None:
                logger.debug("No pending operations")
                break

            self.process(operation, stats)
        else:
            logger.warning(
                "Maximum execution time of %ds reached, leaving remaining operations queued",
                self.settings.max_execution_time,
            )

    def _probe(self) -> bool:
        try:
            healthy = self.db.quick_check()
        except sqlite3.OperationalError as e:
            if not is_lock_error(e):
                raise
            logger.warning("Database is locked, backing off %.1fs", self.settings.busy_backoff)
            self.sleep(self.settings.busy_backoff)
            return False

        if not healthy:
            raise PersistenceError(f"Database integrity check failed for {self.db.db_path}")
        return True

    def process(self, operation: Operation, stats: ProcessorStats) -> OperationStatus:
        """Run one claimed operation to a terminal status."""
        self._current = operation
        started = self.clock()
        logger.info("Processing %s operation %d", operation.operation_type.value, operation.id)

        try:
            params = parse_parameters(operation.operation_type, operation.parameters)
            status, result = self.dispatch(params)
        except AlreadyProtectedError as e:
            status = OperationStatus.SKIPPED
            result = {"success": True, "skipped": True, "message": str(e)}
        except Exception as e:  # every failure becomes a terminal status here
            logger.exception(
                "Operation %d (%s) failed with parameters %s",
                operation.id,
                operation.operation_type.value,
                operation.parameters,
            )
            status = OperationStatus.FAILED
            result = {"success": False, "error": str(e)}

        self._wait_minimum(started)
        self.queue.complete(operation.id, status, result)
        self._current = None

        stats.processed += 1
        if status is OperationStatus.COMPLETED:
            stats.completed += 1
        elif status is OperationStatus.SKIPPED:
            stats.skipped += 1
        else:
            stats.failed += 1

        self.events.add_event(
            OPERATION_COMPLETED,
            {
                "id": operation.id,
                "operation_type": operation.operation_type.value,
                "status": status.value,
                "result": result,
                "path": result.get("path") or operation.path,
                "completed_at": time.time(),
            },
        )
        logger.info(
            "Operation %d %s %s: %s",
            operation.id,
            operation.operation_type.value,
            operation.path or f"item {operation.item_id}",
            status.value,
        )

        if operation.operation_type is OperationType.VERIFY and not self.queue.has_pending(
            OperationType.VERIFY
        ):
            self._emit_verification_summary()
        return status

    def dispatch(self, params: OperationParams) -> tuple[OperationStatus, dict[str, Any]]:
        if isinstance(params, ProtectParams):
            outcome = self.protection.protect(
                params.path,
                redundancy=params.redundancy,
                file_types=params.file_types,
                file_categories=params.file_categories,
                advanced_settings=params.advanced_settings,
            )
            result = outcome.to_dict()
            result["path"] = params.path
            status = OperationStatus.SKIPPED if outcome.skipped else OperationStatus.COMPLETED
            return status, result

        if isinstance(params, VerifyParams):
            verified = self.verification.verify(
                path=params.path,
                item_id=params.id,
                verify_metadata=params.verify_metadata,
                auto_restore_metadata=params.auto_restore_metadata,
                force=params.force,
            )
            return OperationStatus.COMPLETED, verified.to_dict()

        if isinstance(params, RepairParams):
            repaired = self.verification.repair(
                path=params.path,
                item_id=params.id,
                restore_metadata=params.restore_metadata,
            )
            return OperationStatus.COMPLETED, repaired.to_dict()

        if isinstance(params, RemoveParams):
            if params.id is not None:
                item = self.protection.remove_by_id(params.id)
                removed = [params.id]
                path = item.path
            else:
                assert params.path is not None
                removed = self.protection.remove(params.path)
                path = params.path
            return OperationStatus.COMPLETED, {
                "success": True,
                "message": "Protection removed",
                "path": path,
                "removed_ids": removed,
            }

        raise TypeError(f"Unsupported operation parameters: {params!r}")

    def _wait_minimum(self, started: float) -> None:
        remaining = self.settings.min_processing_time - (self.clock() - started)
        if remaining > 0:
            self.sleep(remaining)

    def _emit_verification_summary(self) -> None:
        counts = self.verification_repository.recent_status_counts(SUMMARY_WINDOW_MINUTES)
        problems = self.verification_repository.recent_problem_items(SUMMARY_WINDOW_MINUTES)
        failed = self.queue.recent_failures(
            OperationType.VERIFY, time.time() - SUMMARY_WINDOW_MINUTES * 60
        )
        failed_paths = [op.path or f"item {op.item_id}" for op in failed]

        severity = "warning" if problems or failed_paths else "normal"
        self.events.add_event(
            VERIFICATION_SUMMARY,
            {
                "counts": counts,
                "total": sum(counts.values()),
                "problems": problems,
                "failed": failed_paths,
                "severity": severity,
            },
        )
        if severity == "warning":
            logger.warning(
                "Verification finished with %d problem items and %d failed operations",
                len(problems),
                len(failed_paths),
            )
