"""Filesystem traversal and per-file ownership, permission and xattr access."""

import base64
import grp
import logging
import os
import pwd
import stat
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class FileMetadata:
    owner: str
    group_name: str
    permissions: str
    mtime: float
    extended_attributes: dict[str, str] = field(default_factory=dict)


def iter_files(
    root: Path,
    parity_dir: str | None = None,
    extensions: set[str] | None = None,
) -> Iterator[Path]:
    """Yield regular files under ``root`` depth-first, one directory at a time.

    Directories named ``parity_dir`` or ``<parity_dir>-<suffix>`` are pruned,
    ``extensions`` filters by lower-case extension without the dot.
    """
    if root.is_file():
        if _matches(root.name, extensions):
            yield root
        return

    yield from _walk(root, parity_dir, extensions)


def _walk(directory: Path, parity_dir: str | None, extensions: set[str] | None) -> Iterator[Path]:
    subdirs: list[Path] = []
    try:
        with os.scandir(directory) as entries:
            for entry in sorted(entries, key=lambda e: e.name):
                if entry.is_symlink():
                    continue
                if entry.is_dir(follow_symlinks=False):
                    if not is_parity_dir_name(entry.name, parity_dir):
                        subdirs.append(Path(entry.path))
                elif entry.is_file(follow_symlinks=False) and _matches(entry.name, extensions):
                    yield Path(entry.path)
    except PermissionError:
        logger.warning("Permission denied scanning directory: %s", directory)
    except OSError as e:
        logger.error("Error scanning directory %s: %s", directory, e)

    for subdir in subdirs:
        yield from _walk(subdir, parity_dir, extensions)


def is_parity_dir_name(name: str, parity_dir: str | None) -> bool:
    if not parity_dir:
        return False
    return name == parity_dir or name.startswith(f"{parity_dir}-")


def _matches(name: str, extensions: set[str] | None) -> bool:
    if not extensions:
        return True
    dot_index = name.rfind(".")
    if dot_index <= 0:
        return False
    return name[dot_index + 1 :].lower() in extensions


def permission_string(mode: int) -> str:
    """Render permission bits as ``rwxr-x---`` including setuid/setgid/sticky."""
    chars = []
    for read, write, execute in (
        (stat.S_IRUSR, stat.S_IWUSR, stat.S_IXUSR),
        (stat.S_IRGRP, stat.S_IWGRP, stat.S_IXGRP),
        (stat.S_IROTH, stat.S_IWOTH, stat.S_IXOTH),
    ):
        chars.append("r" if mode & read else "-")
        chars.append("w" if mode & write else "-")
        chars.append("x" if mode & execute else "-")

    if mode & stat.S_ISUID:
        chars[2] = "s" if chars[2] == "x" else "S"
    if mode & stat.S_ISGID:
        chars[5] = "s" if chars[5] == "x" else "S"
    if mode & stat.S_ISVTX:
        chars[8] = "t" if chars[8] == "x" else "T"
    return "".join(chars)


def parse_permission_string(perms: str) -> int:
    """Inverse of permission_string()."""
    if len(perms) != 9:
        raise ValueError(f"Invalid permission string: {perms!r}")

    mode = 0
    bits = [
        stat.S_IRUSR, stat.S_IWUSR, stat.S_IXUSR,
        stat.S_IRGRP, stat.S_IWGRP, stat.S_IXGRP,
        stat.S_IROTH, stat.S_IWOTH, stat.S_IXOTH,
    ]
    specials = {2: stat.S_ISUID, 5: stat.S_ISGID, 8: stat.S_ISVTX}

    for index, char in enumerate(perms):
        if char == "-":
            continue
        if index in specials and char in "sStT":
            mode |= specials[index]
            if char in "st":
                mode |= bits[index]
        elif char in "rwx":
            mode |= bits[index]
        else:
            raise ValueError(f"Invalid permission string: {perms!r}")
    return mode


def _owner_name(uid: int) -> str:
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return str(uid)


def _group_name(gid: int) -> str:
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return str(gid)


def _resolve_uid(owner: str) -> int:
    try:
        return pwd.getpwnam(owner).pw_uid
    except KeyError:
        return int(owner)


def _resolve_gid(group_name: str) -> int:
    try:
        return grp.getgrnam(group_name).gr_gid
    except KeyError:
        return int(group_name)


def read_xattrs(path: Path) -> dict[str, str]:
    """Read extended attributes, values base64-encoded. Unsupported filesystems yield {}."""
    try:
        names = os.listxattr(path, follow_symlinks=False)
    except OSError as e:
        logger.debug("Cannot list xattrs for %s: %s", path, e)
        return {}

    attrs: dict[str, str] = {}
    for name in sorted(names):
        try:
            value = os.getxattr(path, name, follow_symlinks=False)
        except OSError as e:
            logger.debug("Cannot read xattr %s on %s: %s", name, path, e)
            continue
        attrs[name] = base64.b64encode(value).decode("ascii")
    return attrs


def read_file_metadata(path: Path) -> FileMetadata:
    st = path.stat(follow_symlinks=False)
    return FileMetadata(
        owner=_owner_name(st.st_uid),
        group_name=_group_name(st.st_gid),
        permissions=permission_string(st.st_mode),
        mtime=st.st_mtime,
        extended_attributes=read_xattrs(path),
    )


def apply_file_metadata(
    path: Path,
    owner: str | None,
    group_name: str | None,
    permissions: str | None,
    extended_attributes: dict[str, str],
) -> None:
    """Re-apply captured metadata. Raises OSError or ValueError on the first failure."""
    if owner is not None or group_name is not None:
        uid = _resolve_uid(owner) if owner is not None else -1
        gid = _resolve_gid(group_name) if group_name is not None else -1
        current = path.stat()
        if uid != current.st_uid or gid != current.st_gid:
            os.chown(path, uid, gid)

    if permissions is not None:
        os.chmod(path, parse_permission_string(permissions))

    for name, encoded in extended_attributes.items():
        os.setxattr(path, name, base64.b64decode(encoded))
