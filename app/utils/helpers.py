"""
Helper utilities for Folder Sorter.

Common path and formatting functions used across the organizing domain.
"""

import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional
from uuid import uuid4

# Suffixes written by browsers and editors while a file is still being produced
PARTIAL_SUFFIXES = (".tmp", ".crdownload", ".part", ".partial", ".download")


def generate_uuid() -> str:
    """Generate a unique identifier."""
    return str(uuid4())


def now_utc() -> datetime:
    """Get current timestamp as an aware datetime."""
    return datetime.now(timezone.utc)


def sanitize_filename(filename: str) -> str:
    """Sanitize filename by removing invalid characters."""
    # Remove invalid filename characters
    sanitized = re.sub(r'[<>:"/\\|?*\x00-\x1f]', '_', filename)
    # Remove leading/trailing spaces and dots
    sanitized = sanitized.strip('. ')
    # Limit length
    if len(sanitized) > 255:
        sanitized = sanitized[:255]
    return sanitized


def get_file_extension(path: Path) -> str:
    """Get file extension without dot."""
    return path.suffix.lstrip('.')


def format_bytes(bytes_count: float) -> str:
    """Format bytes as human-readable string."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024.0:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024.0
    return f"{bytes_count:.1f} PB"


def truncate_text(text: str, budget: int, marker: str = "...(truncated)") -> str:
    """Cut ``text`` to ``budget`` characters, appending ``marker`` when cut."""
    if len(text) <= budget:
        return text
    return text[:budget] + marker


def normalise_path(path: Path) -> Path:
    """Return a resolved version of ``path`` without forcing existence."""

    try:
        return path.expanduser().resolve()
    except (FileNotFoundError, RuntimeError):
        return path.expanduser().absolute()


def is_hidden(path: Path) -> bool:
    """Check if path is hidden (starts with dot)."""
    return path.name.startswith('.')


def is_partial_download(path: Path) -> bool:
    """Check if path looks like an in-progress download or temp file."""
    return path.name.lower().endswith(PARTIAL_SUFFIXES)


def relative_depth(path: Path, root: Path) -> Optional[int]:
    """
    Number of folders between ``root`` and the file at ``path``.

    A file directly inside ``root`` has depth 0.

    Returns:
        Depth, or None when ``path`` is not below ``root``
    """
    try:
        relative = path.relative_to(root)
    except ValueError:
        return None
    return len(relative.parts) - 1


def extension_allowed(path: Path, allowed: Iterable[str]) -> bool:
    """Check a path against an extension allow-list (empty = everything)."""
    allowed = [ext.lower().lstrip('.') for ext in allowed]
    if not allowed:
        return True
    return get_file_extension(path).lower() in allowed


def list_subfolders(root: Path) -> List[str]:
    """Names of the visible immediate subfolders of ``root``, sorted."""
    return sorted(
        child.name
        for child in root.iterdir()
        if child.is_dir() and not is_hidden(child)
    )
