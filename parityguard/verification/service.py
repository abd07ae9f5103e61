"""Verify and repair workflows."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from parityguard.database import ModeKind, ProtectedItem, ProtectionStatus
from parityguard.errors import ExternalToolExecutionError, ItemNotFoundError, UserInputError
from parityguard.metadata import MetadataManager
from parityguard.protection import ProtectionRepository, format_protected_item
from parityguard.protection.operations import parity_set_files

from .operations import CheckOutcome, VerificationOperations
from .repository import VerificationRepository

logger = logging.getLogger(__name__)

METADATA_SECTION = "\n\n--- Metadata Verification ---\n"
RESTORE_SECTION = "\n\n--- Metadata Restoration ---\n"


@dataclass
class VerificationOutcome:
    item_id: int
    path: str
    status: ProtectionStatus
    details: str

    @property
    def success(self) -> bool:
        return self.status in (ProtectionStatus.VERIFIED, ProtectionStatus.REPAIRED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "item_id": self.item_id,
            "path": self.path,
            "status": self.status.value,
            "details": self.details,
        }


class VerificationService:
    """Checks and repairs protected items and records the outcome."""

    def __init__(
        self,
        protection_repository: ProtectionRepository,
        repository: VerificationRepository,
        operations: VerificationOperations,
        metadata: MetadataManager,
    ):
        self.protection_repository = protection_repository
        self.repository = repository
        self.operations = operations
        self.metadata = metadata

    def get_item(
        self,
        path: str | None = None,
        item_id: int | None = None,
        prefer_directory: bool = True,
    ) -> ProtectedItem:
        """Look up an item by id, or by path preferring the whole-directory record."""
        if item_id is not None:
            item = self.protection_repository.find_by_id(item_id)
            if item is None:
                raise ItemNotFoundError(f"Protected item {item_id} not found")
            return item

        if not path:
            raise UserInputError("Either a path or an item id is required")

        items = self.protection_repository.find_all_by_path(str(Path(path)))
        if not items:
            raise ItemNotFoundError(f"No protection found for {path}")

        if prefer_directory:
            for wanted in (ModeKind.DIRECTORY, ModeKind.FILE, ModeKind.INDIVIDUAL_FILES):
                for item in items:
                    if item.mode.kind is wanted:
                        return item
        return items[0]

    def verify(
        self,
        path: str | None = None,
        item_id: int | None = None,
        verify_metadata: bool = False,
        auto_restore_metadata: bool = False,
        force: bool = False,
    ) -> VerificationOutcome:
        prefer_directory = force or path is None or Path(path).is_dir()
        item = self.get_item(path, item_id, prefer_directory=prefer_directory)
        assert item.id is not None

        outcome = self._check(item, repair=False)
        status, details = outcome.status, outcome.details

        if verify_metadata:
            meta = self.metadata.verify(item.id, auto_restore=auto_restore_metadata)
            details += METADATA_SECTION + meta.details
            if status is ProtectionStatus.VERIFIED and meta.status is ProtectionStatus.METADATA_ISSUES:
                status = ProtectionStatus.METADATA_ISSUES

        self.repository.update_status(item, status, details)
        logger.info("Verification of %s finished: %s", item.path, status.value)
        return VerificationOutcome(item.id, item.path, status, details)

    def repair(
        self,
        path: str | None = None,
        item_id: int | None = None,
        restore_metadata: bool = True,
    ) -> VerificationOutcome:
        item = self.get_item(path, item_id)
        assert item.id is not None

        outcome = self._check(item, repair=True)
        status, details = outcome.status, outcome.details

        if status is ProtectionStatus.REPAIRED and restore_metadata:
            restore = self.metadata.restore(item.id)
            details += RESTORE_SECTION + restore.details

        self.repository.update_status(item, status, details)
        logger.info("Repair of %s finished: %s", item.path, status.value)
        return VerificationOutcome(item.id, item.path, status, details)

    def _check(self, item: ProtectedItem, repair: bool) -> CheckOutcome:
        par2_path = Path(item.par2_path)
        if not par2_path.exists() and not parity_set_files(par2_path):
            return CheckOutcome(ProtectionStatus.MISSING, f"Parity data not found at {par2_path}")

        target = Path(item.path)
        if item.mode.kind is ModeKind.FILE:
            base_path = target.parent
        else:
            base_path = target
        if not base_path.exists():
            return CheckOutcome(ProtectionStatus.MISSING, f"Protected path no longer exists: {target}")

        try:
            if repair:
                return self.operations.repair(base_path, par2_path)
            return self.operations.verify(base_path, par2_path)
        except ExternalToolExecutionError as e:
            self.repository.update_status(item, ProtectionStatus.ERROR, str(e))
            raise

    def get_status(self, path: str | None = None, item_id: int | None = None) -> dict[str, Any]:
        item = self.get_item(path, item_id)
        assert item.id is not None
        status = format_protected_item(item)
        status["history"] = [
            {
                "date": entry.verification_date,
                "status": entry.status.value,
                "details": entry.details,
            }
            for entry in self.repository.get_history(item.id)
        ]
        return status
