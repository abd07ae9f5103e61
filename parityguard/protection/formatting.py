"""Presentation helpers for protected-item listings."""

from typing import Any

from parityguard.database import ModeKind, ProtectedItem


def format_size(size: int | None) -> str:
    if not size:
        return "0 B"
    size_f = float(size)
    for unit in ["B", "KB", "MB", "GB"]:
        if size_f < 1024:
            return f"{round(size_f, 2):g} {unit}"
        size_f /= 1024
    return f"{round(size_f, 2):g} TB"


def mode_label(item: ProtectedItem) -> str:
    if item.mode.kind is ModeKind.INDIVIDUAL_FILES:
        types = ", ".join(item.file_types or [])
        return f"Individual Files ({types or item.mode.category})"
    return item.mode.kind.value.capitalize()


def format_protected_item(item: ProtectedItem) -> dict[str, Any]:
    return {
        "id": item.id,
        "path": item.path,
        "mode": str(item.mode),
        "mode_label": mode_label(item),
        "redundancy": item.redundancy,
        "protected_date": item.protected_date,
        "last_verified": item.last_verified,
        "last_status": item.last_status.value if item.last_status else None,
        "last_details": item.last_details,
        "size": item.size,
        "par2_size": item.par2_size,
        "data_size": item.data_size,
        "size_formatted": f"{format_size(item.par2_size)} / {format_size(item.data_size)}",
        "par2_path": item.par2_path,
        "file_types": item.file_types or [],
        "parent_dir": item.parent_dir,
        "protected_files": item.protected_files or [],
    }
