"""Tracks which (path, modification time) pairs have already been handled."""

import threading
from pathlib import Path
from typing import Dict, Optional

from loguru import logger


class ProcessedFileRegistry:
    """In-memory map of file path to last handled modification time."""

    def __init__(self):
        self._entries: Dict[str, float] = {}
        self._lock = threading.Lock()

    def is_processed(self, path: Path, mtime: float) -> bool:
        """True when ``path`` was already handled at this exact ``mtime``."""
        with self._lock:
            return self._entries.get(str(path)) == mtime

    def claim(self, path: Path, mtime: float) -> bool:
        """
        Atomically mark ``path`` as handled at ``mtime``.

        Returns:
            False if the same pair was already claimed, True otherwise
        """
        key = str(path)
        with self._lock:
            if self._entries.get(key) == mtime:
                return False
            self._entries[key] = mtime
        return True

    def forget(self, path: Path) -> Optional[float]:
        """Drop the entry for ``path`` so the next scan treats it as new."""
        with self._lock:
            removed = self._entries.pop(str(path), None)
        if removed is not None:
            logger.debug(f"Registry entry cleared: {path}")
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
