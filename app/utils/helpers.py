"""
Helper utilities for Inbox Clerk.

Common functions used across domains.
"""

import hashlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from loguru import logger

# Streaming buffer for content hashing (1 MiB)
HASH_CHUNK_SIZE = 1024 * 1024


def quarantine_timestamp() -> str:
    """ISO 8601 timestamp usable inside a filename."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%SZ")


def normalise_path(path: Path) -> Path:
    """Return a resolved version of ``path`` without forcing existence."""

    try:
        return path.expanduser().resolve()
    except (FileNotFoundError, RuntimeError):
        return path.expanduser().absolute()


def get_file_extension(path: Path) -> str:
    """Get lower-cased file extension without dot."""
    return path.suffix.lstrip('.').lower()


def is_hidden(path: Path) -> bool:
    """Check if path is hidden (starts with dot)."""
    return path.name.startswith('.')


def is_relative_to(path: Path, root: Path) -> bool:
    """Check whether ``path`` lives under ``root``."""
    try:
        normalise_path(path).relative_to(normalise_path(root))
        return True
    except ValueError:
        return False


def hash_file(path: Path, chunk_size: int = HASH_CHUNK_SIZE) -> Optional[str]:
    """
    Calculate SHA-256 of a file, streaming fixed-size chunks.

    Args:
        path: File to hash
        chunk_size: Bytes read per iteration

    Returns:
        Hex digest or None if the file cannot be read
    """
    if not path.is_file():
        logger.warning(f"File does not exist: {path}")
        return None

    digest = hashlib.sha256()
    try:
        with path.open("rb") as handle:
            for chunk in iter(lambda: handle.read(chunk_size), b""):
                digest.update(chunk)
    except OSError as e:
        logger.error(f"Error reading file for hash {path}: {e}")
        return None

    hex_digest = digest.hexdigest()
    logger.debug(f"Hash calculated for {path.name}: {hex_digest[:16]}...")
    return hex_digest


def is_file_locked(path: Path) -> bool:
    """Check whether a file cannot currently be opened for reading."""
    try:
        with path.open("rb"):
            return False
    except OSError:
        return True


def numbered_name(path: Path, counter: int) -> Path:
    """Return ``name(counter).ext`` next to ``path``."""
    return path.with_name(f"{path.stem}({counter}){path.suffix}")
