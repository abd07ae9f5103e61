"""Verification workflow: par2 verify/repair and status bookkeeping."""

from .operations import (
    CheckOutcome,
    VerificationOperations,
    aggregate_status,
    classify_repair,
    classify_verify,
    main_parity_files,
)
from .repository import VerificationRepository
from .service import VerificationOutcome, VerificationService

__all__ = [
    "CheckOutcome",
    "VerificationOperations",
    "aggregate_status",
    "classify_repair",
    "classify_verify",
    "main_parity_files",
    "VerificationRepository",
    "VerificationOutcome",
    "VerificationService",
]
