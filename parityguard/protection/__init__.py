"""Protection workflow: parity creation, removal and protected-item records."""

from .categories import FILE_CATEGORIES, category_name, target_extensions
from .formatting import format_protected_item, format_size
from .operations import AdvancedSettings, CreateResult, ParityOperations
from .repository import ProtectionRepository
from .service import ProtectOutcome, ProtectionService

__all__ = [
    "FILE_CATEGORIES",
    "category_name",
    "target_extensions",
    "format_protected_item",
    "format_size",
    "AdvancedSettings",
    "CreateResult",
    "ParityOperations",
    "ProtectionRepository",
    "ProtectOutcome",
    "ProtectionService",
]
