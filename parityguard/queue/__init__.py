"""Durable operation queue and its singleton processor."""

from .control import kill_operation
from .events import OPERATION_COMPLETED, VERIFICATION_SUMMARY, EventLog
from .lock import ProcessorLock
from .params import (
    OperationParams,
    ProtectParams,
    RemoveParams,
    RepairParams,
    VerifyParams,
    parse_parameters,
    to_payload,
)
from .processor import ProcessorStats, QueueProcessor
from .store import OperationQueue

__all__ = [
    "kill_operation",
    "OPERATION_COMPLETED",
    "VERIFICATION_SUMMARY",
    "EventLog",
    "ProcessorLock",
    "OperationParams",
    "ProtectParams",
    "RemoveParams",
    "RepairParams",
    "VerifyParams",
    "parse_parameters",
    "to_payload",
    "ProcessorStats",
    "QueueProcessor",
    "OperationQueue",
]
