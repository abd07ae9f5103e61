"""parityguard - PAR2 protection with a durable operation queue."""

__version__ = "0.1.0"

from parityguard.database import Database
from parityguard.protection import ProtectionService
from parityguard.queue import OperationQueue, QueueProcessor
from parityguard.verification import VerificationService

__all__ = [
    "Database",
    "OperationQueue",
    "ProtectionService",
    "QueueProcessor",
    "VerificationService",
]
