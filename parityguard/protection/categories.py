"""File categories for selective protection."""

import hashlib

FILE_CATEGORIES: dict[str, list[str]] = {
    "documents": ["pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx", "txt", "rtf", "odt", "ods", "odp"],
    "images": ["jpg", "jpeg", "png", "gif", "bmp", "tiff", "webp", "svg"],
    "videos": ["mp4", "avi", "mkv", "mov", "wmv", "flv", "webm", "mpeg", "mpg"],
    "audio": ["mp3", "wav", "ogg", "flac", "aac", "m4a", "wma"],
    "archives": ["zip", "rar", "7z", "tar", "gz", "bz2", "xz"],
    "code": ["php", "js", "html", "css", "py", "java", "c", "cpp", "h", "sh", "json", "xml", "yml", "yaml"],
}

MAX_NAMED_ENTRIES = 5


def normalize_extensions(file_types: list[str] | None) -> list[str]:
    """Lower-case, strip dots, dedupe and sort an extension list."""
    if not file_types:
        return []
    return sorted({ext.strip().lstrip(".").lower() for ext in file_types if ext.strip()})


def target_extensions(file_types: list[str] | None, categories: list[str] | None) -> list[str]:
    """Resolve explicit extensions plus category names into one sorted extension list."""
    extensions = set(normalize_extensions(file_types))
    for category in categories or []:
        try:
            extensions.update(FILE_CATEGORIES[category.lower()])
        except KeyError as e:
            raise ValueError(f"Unknown file category: {category}") from e
    return sorted(extensions)


def category_name(selection: list[str] | None) -> str:
    if not selection:
        return "all"
    entries = sorted(selection)
    if len(entries) > MAX_NAMED_ENTRIES:
        digest = hashlib.md5(",".join(entries).encode("utf-8")).hexdigest()
        return f"types-{digest[:8]}"
    return "-".join(entries)
