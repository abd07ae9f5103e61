"""In-process cache for read-mostly views over the database."""

import hashlib
import logging
from typing import Any

logger = logging.getLogger(__name__)

ALL_ITEMS_KEY = "protected_items_all"


def status_key_for_id(item_id: int) -> str:
    return f"verification_status_id_{item_id}"


def status_key_for_path(path: str) -> str:
    digest = hashlib.md5(path.encode("utf-8")).hexdigest()
    return f"verification_status_{digest}"


class Cache:
    """Dictionary-backed cache. Entries live until explicitly invalidated."""

    def __init__(self) -> None:
        self._entries: dict[str, Any] = {}

    def get(self, key: str) -> Any | None:
        return self._entries.get(key)

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = value

    def has(self, key: str) -> bool:
        return key in self._entries

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def delete_prefix(self, prefix: str) -> None:
        for key in [k for k in self._entries if k.startswith(prefix)]:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()

    def invalidate_item(self, item_id: int | None, path: str | None) -> None:
        """Drop every cached view touching one protected item."""
        self.delete(ALL_ITEMS_KEY)
        if item_id is not None:
            self.delete(status_key_for_id(item_id))
        if path is not None:
            self.delete(status_key_for_path(path))
        logger.debug("Invalidated cache for item %s (%s)", item_id, path)
