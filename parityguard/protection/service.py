"""Protect and remove workflows."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from parityguard.config import ProtectionConfig
from parityguard.database import ProtectedItem, ProtectionMode
from parityguard.errors import (
    AlreadyProtectedError,
    ItemNotFoundError,
    PersistenceError,
    ProtectionConflictError,
    UserInputError,
)
from parityguard.metadata import MetadataManager, data_size, par2_size

from .categories import category_name, normalize_extensions, target_extensions
from .formatting import format_protected_item
from .operations import AdvancedSettings, ParityOperations
from .repository import ProtectionRepository

logger = logging.getLogger(__name__)


@dataclass
class ProtectOutcome:
    """Result of a protect request. ``skipped`` marks a no-op such as an empty selection."""

    success: bool
    message: str
    item_id: int | None = None
    skipped: bool = False
    protected_files: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.item_id is not None:
            result["item_id"] = self.item_id
        if self.skipped:
            result["skipped"] = True
        if self.protected_files:
            result["protected_files_count"] = self.protected_files
        if self.errors:
            result["errors"] = self.errors
        return result


class ProtectionService:
    """Turns protect/remove requests into parity files plus protected_items records."""

    def __init__(
        self,
        repository: ProtectionRepository,
        operations: ParityOperations,
        metadata: MetadataManager,
        settings: ProtectionConfig | None = None,
    ):
        self.repository = repository
        self.operations = operations
        self.metadata = metadata
        self.settings = settings or ProtectionConfig()

    def protect(
        self,
        path: str,
        redundancy: int | None = None,
        file_types: list[str] | None = None,
        file_categories: list[str] | None = None,
        advanced_settings: AdvancedSettings | None = None,
    ) -> ProtectOutcome:
        """Create parity data for ``path`` and record it.

        Raises AlreadyProtectedError when the same path and selector already
        carry protection, ProtectionConflictError when a whole-directory and an
        individual-files protection would overlap.
        """
        if redundancy is None:
            redundancy = self.settings.default_redundancy
        if not 1 <= redundancy <= 100:
            raise UserInputError(f"Redundancy must be between 1 and 100, got {redundancy}")

        target = Path(path)
        if not target.exists():
            raise UserInputError(f"Path does not exist: {path}")
        path = str(target)

        if target.is_dir() and (file_types or file_categories):
            return self._protect_individual(
                target, redundancy, file_types, file_categories, advanced_settings
            )

        mode = ProtectionMode.directory() if target.is_dir() else ProtectionMode.file()
        if mode == ProtectionMode.directory() and self.repository.has_individual_children(path):
            raise ProtectionConflictError(
                f"Directory {path} already has individually protected files; "
                "remove them before protecting the whole directory"
            )
        if self.repository.find_by_path(path) is not None:
            raise AlreadyProtectedError(f"{path} is already protected")

        created = self.operations.create(target, redundancy, advanced_settings)
        item_id = self._store(
            path=path,
            mode=mode,
            redundancy=redundancy,
            par2_path=created.par2_path,
            file_types=None,
            parent_dir=None,
            protected_files=None,
        )
        self.metadata.capture(target, item_id)
        self._update_sizes(item_id, target, None, created.par2_path)

        logger.info("Protected %s (%s, %d%% redundancy)", path, mode, redundancy)
        noun = "Directory" if mode == ProtectionMode.directory() else "File"
        return ProtectOutcome(
            success=True,
            message=f"{noun} protected successfully",
            item_id=item_id,
            protected_files=len(created.source_files),
        )

    def _protect_individual(
        self,
        target: Path,
        redundancy: int,
        file_types: list[str] | None,
        file_categories: list[str] | None,
        advanced_settings: AdvancedSettings | None,
    ) -> ProtectOutcome:
        path = str(target)
        try:
            extensions = target_extensions(file_types, file_categories)
        except ValueError as e:
            raise UserInputError(str(e)) from e

        if self.repository.has_whole_directory(path):
            raise ProtectionConflictError(
                f"Directory {path} is already protected as a whole; "
                "remove that protection before protecting individual files"
            )
        if self.repository.find_by_path(path, extensions) is not None:
            raise AlreadyProtectedError(
                f"{path} is already protected for file types {', '.join(extensions)}"
            )

        category = category_name(file_categories or normalize_extensions(file_types))
        mode = ProtectionMode.individual_files(category)
        created = self.operations.create_individual(
            target, redundancy, extensions, category, advanced_settings
        )

        if not created.source_files:
            if created.errors:
                raise UserInputError(
                    "No files could be protected:\n" + "\n".join(created.errors)
                )
            logger.info("No files matching %s under %s, nothing to protect", extensions, path)
            return ProtectOutcome(
                success=True,
                skipped=True,
                message=f"No files matching {', '.join(extensions)} found in {path}",
            )

        protected_files = [str(f) for f in created.source_files]
        item_id = self._store(
            path=path,
            mode=mode,
            redundancy=redundancy,
            par2_path=created.par2_path,
            file_types=extensions,
            parent_dir=path,
            protected_files=protected_files,
        )
        self.metadata.capture(target, item_id, files=created.source_files)
        self._update_sizes(item_id, target, protected_files, created.par2_path)

        message = f"Protected {len(protected_files)} individual files"
        if created.errors:
            message += f", {len(created.errors)} failed"
        logger.info("%s under %s (%s)", message, path, mode)
        return ProtectOutcome(
            success=True,
            message=message,
            item_id=item_id,
            protected_files=len(protected_files),
            errors=created.errors,
        )

    def _store(self, par2_path: Path, **fields: Any) -> int:
        try:
            return self.repository.add_protected_item(par2_path=str(par2_path), **fields)
        except PersistenceError:
            logger.error(
                "Parity data for %s was created at %s but could not be recorded",
                fields["path"],
                par2_path,
            )
            raise

    def _update_sizes(
        self,
        item_id: int,
        target: Path,
        protected_files: list[str] | None,
        par2_path: Path,
    ) -> None:
        try:
            size = data_size(target, self.settings.parity_dir, protected_files=protected_files)
            parity = par2_size(par2_path)
            self.repository.update_sizes(item_id, size, parity)
        except (OSError, PersistenceError) as e:
            logger.warning("Failed to update size information for item %d: %s", item_id, e)

    def remove(self, path: str) -> list[int]:
        """Remove every protection recorded for ``path``. Returns the removed ids."""
        items = self.repository.find_all_by_path(str(Path(path)))
        if not items:
            raise ItemNotFoundError(f"No protection found for {path}")
        for item in items:
            self._remove_item(item)
        return [item.id for item in items if item.id is not None]

    def remove_by_id(self, item_id: int) -> ProtectedItem:
        item = self.repository.find_by_id(item_id)
        if item is None:
            raise ItemNotFoundError(f"Protected item {item_id} not found")
        self._remove_item(item)
        return item

    def _remove_item(self, item: ProtectedItem) -> None:
        if not self.operations.remove_parity(Path(item.par2_path)):
            raise UserInputError(f"Refusing to remove parity data at {item.par2_path}")
        self.repository.remove_item(item)
        logger.info("Removed protection for %s (item %s)", item.path, item.id)

    def get_status(self, path: str) -> list[dict[str, Any]]:
        items = self.repository.find_all_by_path(str(Path(path)))
        if not items:
            raise ItemNotFoundError(f"No protection found for {path}")
        return [format_protected_item(item) for item in items]

    def get_status_by_id(self, item_id: int) -> dict[str, Any]:
        item = self.repository.find_by_id(item_id)
        if item is None:
            raise ItemNotFoundError(f"Protected item {item_id} not found")
        return format_protected_item(item)

    def list_items(self) -> list[dict[str, Any]]:
        return [format_protected_item(item) for item in self.repository.find_all()]

    def get_redundancy_levels(self, paths: list[str]) -> dict[str, int | None]:
        return self.repository.redundancy_levels([str(Path(p)) for p in paths])
