"""Operator controls for operations that are already queued or running."""

import logging

import psutil

from parityguard.database import Operation, OperationStatus
from parityguard.errors import ItemNotFoundError, UserInputError

from .store import OperationQueue

logger = logging.getLogger(__name__)

KILLED_MESSAGE = "Operation cancelled by user"


def kill_operation(queue: OperationQueue, operation_id: int, grace_period: float = 1.0) -> Operation:
    """Stop an operation: cancel it if pending, terminate its worker if processing.

    The worker gets SIGTERM first and SIGKILL if it is still alive after
    ``grace_period`` seconds. The row always ends up ``cancelled``.
    """
    operation = queue.get(operation_id)
    if operation is None:
        raise ItemNotFoundError(f"Operation {operation_id} not found")

    if operation.status is OperationStatus.PENDING:
        queue.cancel(operation_id)
    elif operation.status is OperationStatus.PROCESSING:
        if operation.pid:
            _terminate(operation.pid, grace_period)
        queue.force_cancel(operation_id, KILLED_MESSAGE)
    else:
        raise UserInputError(f"Operation {operation_id} already {operation.status.value}")

    logger.info("Cancelled operation %d", operation_id)
    refreshed = queue.get(operation_id)
    assert refreshed is not None
    return refreshed


def _terminate(pid: int, grace_period: float) -> None:
    try:
        process = psutil.Process(pid)
        process.terminate()
        process.wait(timeout=grace_period)
    except psutil.NoSuchProcess:
        logger.info("Process %d is no longer running", pid)
    except psutil.TimeoutExpired:
        logger.warning("Process %d ignored SIGTERM, sending SIGKILL", pid)
        try:
            process.kill()
        except psutil.NoSuchProcess:
            logger.info("Process %d exited before SIGKILL", pid)
    except psutil.AccessDenied as e:
        raise UserInputError(f"Not permitted to stop process {pid}") from e
