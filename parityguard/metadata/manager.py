"""Capture, verification and restoration of per-file metadata."""

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from parityguard.database import Database, FileMetadataRecord, ProtectionStatus

from .filesystem import apply_file_metadata, iter_files, read_file_metadata

logger = logging.getLogger(__name__)

PARTIAL_RESTORE = "PARTIAL_RESTORE"
RESTORED = "RESTORED"


@dataclass
class MetadataVerifyResult:
    status: ProtectionStatus
    details: str
    total: int = 0
    verified: int = 0
    issues: dict[str, list[str]] = field(default_factory=dict)
    restored: bool = False


@dataclass
class RestoreResult:
    status: str
    restored: int = 0
    failed: int = 0
    skipped: int = 0
    log: list[str] = field(default_factory=list)

    @property
    def details(self) -> str:
        summary = (
            f"Metadata restoration: {self.restored} files restored, "
            f"{self.failed} failed, {self.skipped} skipped.\n"
        )
        if self.log:
            summary += "\n".join(self.log)
        return summary


class MetadataManager:
    """Stores and re-applies owner, group, permissions and xattrs of protected files."""

    def __init__(self, db: Database, parity_dir: str = ".parity"):
        self.db = db
        self.parity_dir = parity_dir

    def capture(
        self,
        path: Path,
        item_id: int,
        files: Iterable[Path] | None = None,
    ) -> int:
        """Record metadata for ``path`` (a file, or every file under a directory).

        ``files`` restricts capture to an explicit file list, as used for
        individual-files protection.
        """
        if files is None:
            files = iter_files(path, parity_dir=self.parity_dir)

        rows = []
        for file_path in files:
            try:
                meta = read_file_metadata(file_path)
            except OSError as e:
                logger.warning("Cannot read metadata for %s: %s", file_path, e)
                continue
            rows.append(
                (
                    item_id,
                    str(file_path),
                    meta.owner,
                    meta.group_name,
                    meta.permissions,
                    meta.mtime,
                    json.dumps(meta.extended_attributes),
                )
            )

        def write() -> None:
            with self.db.transaction() as conn:
                conn.executemany(
                    """
                    INSERT INTO file_metadata
                    (protected_item_id, file_path, owner, group_name, permissions,
                     mtime, extended_attributes)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(protected_item_id, file_path) DO UPDATE SET
                        owner = excluded.owner,
                        group_name = excluded.group_name,
                        permissions = excluded.permissions,
                        mtime = excluded.mtime,
                        extended_attributes = excluded.extended_attributes
                    """,
                    rows,
                )

        self.db.with_retry(write)
        logger.info("Captured metadata for %d files of item %d", len(rows), item_id)
        return len(rows)

    def get_records(self, item_id: int) -> list[FileMetadataRecord]:
        rows = self.db.conn.execute(
            "SELECT * FROM file_metadata WHERE protected_item_id = ? ORDER BY file_path",
            (item_id,),
        ).fetchall()
        return [FileMetadataRecord.from_row(row) for row in rows]

    def verify(self, item_id: int, auto_restore: bool = False) -> MetadataVerifyResult:
        records = self.get_records(item_id)
        if not records:
            return MetadataVerifyResult(
                status=ProtectionStatus.VERIFIED,
                details="Metadata verification: no metadata captured.\n",
            )

        issues: dict[str, list[str]] = {}
        for record in records:
            problems = _compare(record)
            if problems:
                issues[record.file_path] = problems

        total = len(records)
        verified = total - len(issues)
        details = f"Metadata verification: {verified}/{total} files verified.\n"

        if not issues:
            details += "All file metadata verified successfully."
            return MetadataVerifyResult(ProtectionStatus.VERIFIED, details, total, verified)

        details += "Issues found:\n"
        for file_path, problems in issues.items():
            details += f"{file_path}: {'; '.join(problems)}\n"

        result = MetadataVerifyResult(
            ProtectionStatus.METADATA_ISSUES, details, total, verified, issues
        )
        if auto_restore:
            restore = self.restore(item_id, only_paths=set(issues))
            result.restored = True
            result.details += f"\n{restore.details}\n\nMetadata has been automatically restored."
        return result

    def restore(self, item_id: int, only_paths: set[str] | None = None) -> RestoreResult:
        result = RestoreResult(status=RESTORED)

        for record in self.get_records(item_id):
            if only_paths is not None and record.file_path not in only_paths:
                continue

            path = Path(record.file_path)
            if not path.exists():
                result.skipped += 1
                result.log.append(f"Skipped (missing): {record.file_path}")
                continue

            try:
                apply_file_metadata(
                    path,
                    record.owner,
                    record.group_name,
                    record.permissions,
                    record.extended_attributes,
                )
            except (OSError, ValueError) as e:
                logger.warning("Failed to restore metadata for %s: %s", path, e)
                result.failed += 1
                result.log.append(f"Failed: {record.file_path}: {e}")
                continue

            result.restored += 1
            result.log.append(f"Restored: {record.file_path}")

        if result.failed:
            result.status = PARTIAL_RESTORE
        logger.info(
            "Metadata restore for item %d: %d restored, %d failed, %d skipped",
            item_id,
            result.restored,
            result.failed,
            result.skipped,
        )
        return result


def _compare(record: FileMetadataRecord) -> list[str]:
    path = Path(record.file_path)
    try:
        current = read_file_metadata(path)
    except FileNotFoundError:
        return ["file is missing"]
    except OSError as e:
        return [f"cannot read metadata ({e})"]

    problems = []
    if record.owner is not None and current.owner != record.owner:
        problems.append(f"owner {current.owner} (expected {record.owner})")
    if record.group_name is not None and current.group_name != record.group_name:
        problems.append(f"group {current.group_name} (expected {record.group_name})")
    if record.permissions is not None and current.permissions != record.permissions:
        problems.append(f"permissions {current.permissions} (expected {record.permissions})")
    for name, value in record.extended_attributes.items():
        if current.extended_attributes.get(name) != value:
            problems.append(f"extended attribute {name} differs")
    return problems


def data_size(
    path: Path,
    parity_dir: str,
    extensions: set[str] | None = None,
    protected_files: list[str] | None = None,
) -> int:
    """Total size of the protected source data."""
    if protected_files is not None:
        files: Iterable[Path] = (Path(f) for f in protected_files)
    else:
        files = iter_files(path, parity_dir=parity_dir, extensions=extensions)

    total = 0
    for file_path in files:
        try:
            total += file_path.stat().st_size
        except OSError:
            logger.debug("Cannot stat %s for data size", file_path)
    return total


def par2_size(par2_path: Path) -> int:
    """Size of a parity set including its volume files, or of a whole parity directory."""
    if par2_path.is_dir():
        candidates = [p for p in par2_path.rglob("*") if p.is_file()]
    elif par2_path.parent.is_dir():
        stem = par2_path.name.removesuffix(".par2")
        candidates = [
            p for p in par2_path.parent.iterdir()
            if p.is_file()
            and (p.name == par2_path.name or (p.name.startswith(f"{stem}.vol") and p.suffix == ".par2"))
        ]
    else:
        return 0
    return sum(p.stat().st_size for p in candidates)
