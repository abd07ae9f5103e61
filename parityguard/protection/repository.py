"""Persistence for protected items."""

import json
import logging
from datetime import datetime

from parityguard.cache import ALL_ITEMS_KEY, Cache
from parityguard.database import Database, ModeKind, ProtectedItem, ProtectionMode, ProtectionStatus

logger = logging.getLogger(__name__)


def selector_key(file_types: list[str] | None) -> str:
    """Column value for the file-type selector. Whole-path records use ''."""
    if not file_types:
        return ""
    return json.dumps(sorted(file_types))


def _now() -> str:
    return datetime.now().isoformat(sep=" ", timespec="seconds")


class ProtectionRepository:
    """CRUD for protected_items with synchronous cache invalidation."""

    def __init__(self, db: Database, cache: Cache):
        self.db = db
        self.cache = cache

    def find_by_id(self, item_id: int) -> ProtectedItem | None:
        row = self.db.conn.execute(
            "SELECT * FROM protected_items WHERE id = ?", (item_id,)
        ).fetchone()
        return ProtectedItem.from_row(row) if row else None

    def find_by_path(self, path: str, file_types: list[str] | None = None) -> ProtectedItem | None:
        row = self.db.conn.execute(
            "SELECT * FROM protected_items WHERE path = ? AND file_types = ?",
            (path, selector_key(file_types)),
        ).fetchone()
        return ProtectedItem.from_row(row) if row else None

    def find_all_by_path(self, path: str) -> list[ProtectedItem]:
        rows = self.db.conn.execute(
            "SELECT * FROM protected_items WHERE path = ? ORDER BY file_types, id", (path,)
        ).fetchall()
        return [ProtectedItem.from_row(row) for row in rows]

    def find_all(self) -> list[ProtectedItem]:
        """All items, minus directory rows shadowed by individual-files children."""
        cached = self.cache.get(ALL_ITEMS_KEY)
        if cached is not None:
            return cached

        rows = self.db.conn.execute(
            """
            SELECT * FROM protected_items AS p
            WHERE NOT (
                p.mode = ?
                AND EXISTS (SELECT 1 FROM protected_items AS c WHERE c.parent_dir = p.path)
            )
            ORDER BY p.path, p.id
            """,
            (ModeKind.DIRECTORY.value,),
        ).fetchall()
        items = [ProtectedItem.from_row(row) for row in rows]
        self.cache.set(ALL_ITEMS_KEY, items)
        return items

    def find_individual_files(self, parent_dir: str) -> list[ProtectedItem]:
        rows = self.db.conn.execute(
            "SELECT * FROM protected_items WHERE parent_dir = ? ORDER BY path, id",
            (parent_dir,),
        ).fetchall()
        return [ProtectedItem.from_row(row) for row in rows]

    def has_individual_children(self, path: str) -> bool:
        row = self.db.conn.execute(
            "SELECT 1 FROM protected_items WHERE parent_dir = ? LIMIT 1", (path,)
        ).fetchone()
        return row is not None

    def has_whole_directory(self, path: str) -> bool:
        row = self.db.conn.execute(
            "SELECT 1 FROM protected_items WHERE path = ? AND mode = ? LIMIT 1",
            (path, ModeKind.DIRECTORY.value),
        ).fetchone()
        return row is not None

    def add_protected_item(
        self,
        path: str,
        mode: ProtectionMode,
        redundancy: int,
        par2_path: str,
        file_types: list[str] | None = None,
        parent_dir: str | None = None,
        protected_files: list[str] | None = None,
    ) -> int:
        """Insert or update the record for (path, file_types); returns its id."""
        protected_files_json = json.dumps(protected_files) if protected_files is not None else None
        selector = selector_key(file_types)

        def upsert() -> int:
            with self.db.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO protected_items
                    (path, mode, redundancy, protected_date, par2_path, file_types,
                     parent_dir, protected_files, last_status)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(path, file_types) DO UPDATE SET
                        mode = excluded.mode,
                        redundancy = excluded.redundancy,
                        protected_date = excluded.protected_date,
                        par2_path = excluded.par2_path,
                        parent_dir = excluded.parent_dir,
                        protected_files = excluded.protected_files,
                        last_status = excluded.last_status,
                        last_verified = NULL,
                        last_details = NULL
                    """,
                    (
                        path,
                        str(mode),
                        redundancy,
                        _now(),
                        par2_path,
                        selector,
                        parent_dir,
                        protected_files_json,
                        ProtectionStatus.PROTECTED.value,
                    ),
                )
                row = conn.execute(
                    "SELECT id FROM protected_items WHERE path = ? AND file_types = ?",
                    (path, selector),
                ).fetchone()
            return row["id"]

        item_id = self.db.with_retry(upsert)
        self.cache.invalidate_item(item_id, path)
        logger.debug("Stored protected item %d for %s", item_id, path)
        return item_id

    def update_sizes(self, item_id: int, data_size: int, par2_size: int) -> None:
        def update() -> None:
            with self.db.transaction() as conn:
                conn.execute(
                    "UPDATE protected_items SET size = ?, par2_size = ?, data_size = ? WHERE id = ?",
                    (data_size + par2_size, par2_size, data_size, item_id),
                )

        self.db.with_retry(update)
        self.cache.delete(ALL_ITEMS_KEY)

    def remove_item(self, item: ProtectedItem) -> None:
        """Delete the item with its history and metadata rows in one transaction."""
        assert item.id is not None

        def delete() -> None:
            with self.db.transaction() as conn:
                conn.execute("DELETE FROM verification_history WHERE protected_item_id = ?", (item.id,))
                conn.execute("DELETE FROM file_metadata WHERE protected_item_id = ?", (item.id,))
                conn.execute("DELETE FROM protected_items WHERE id = ?", (item.id,))

        self.db.with_retry(delete)
        self.cache.invalidate_item(item.id, item.path)
        logger.debug("Removed protected item %d (%s)", item.id, item.path)

    def redundancy_levels(self, paths: list[str]) -> dict[str, int | None]:
        levels: dict[str, int | None] = {path: None for path in paths}
        if not paths:
            return levels
        placeholders = ",".join("?" for _ in paths)
        rows = self.db.conn.execute(
            f"SELECT path, MAX(redundancy) AS redundancy FROM protected_items "
            f"WHERE path IN ({placeholders}) GROUP BY path",
            paths,
        ).fetchall()
        for row in rows:
            levels[row["path"]] = row["redundancy"]
        return levels
