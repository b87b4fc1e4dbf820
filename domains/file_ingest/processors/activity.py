"""Append-only activity log with single-step undo."""

import threading
from pathlib import Path
from typing import Callable, List, Optional
from uuid import UUID

from loguru import logger

from app.models.schemas import ActionStatus, ActionType, ActivityLogEntry
from app.utils.storage import ActivityStore
from domains.file_ingest.errors import RelocationError, StorageError
from domains.file_ingest.processors.relocator import move_file, unique_destination

ActivityListener = Callable[[ActivityLogEntry], None]


class ActivityRecorder:
    """Records one immutable entry per file outcome and can undo the latest move."""

    def __init__(self, store: Optional[ActivityStore] = None):
        """
        Initialize the recorder, loading any persisted history.

        Args:
            store: Optional persistence; without it the log lives in memory only
        """
        self.store = store
        self._entries: List[ActivityLogEntry] = []
        self._listeners: List[ActivityListener] = []
        self._lock = threading.Lock()
        self._undo_lock = threading.Lock()

        if store is not None:
            try:
                self._entries = store.load()
            except StorageError as e:
                logger.error(f"Starting with an empty activity log: {e}")

    def add_listener(self, listener: ActivityListener) -> None:
        self._listeners.append(listener)

    def record(
        self,
        file_name: str,
        action: ActionType,
        status: ActionStatus,
        matched_rule_id: Optional[UUID] = None,
        details: Optional[str] = None,
        source_path: Optional[str] = None,
        destination_path: Optional[str] = None,
    ) -> ActivityLogEntry:
        """Append a new entry and persist the log."""
        entry = ActivityLogEntry(
            file_name=file_name,
            action=action,
            status=status,
            matched_rule_id=matched_rule_id,
            details=details,
            source_path=source_path,
            destination_path=destination_path,
        )

        with self._lock:
            self._entries.append(entry)
            self._persist()

        logger.info(f"Activity: {action.value}/{status.value} - {file_name}")
        for listener in self._listeners:
            try:
                listener(entry)
            except Exception as e:
                logger.warning(f"Activity listener failed: {e}")
        return entry

    def entries(self) -> List[ActivityLogEntry]:
        """All entries, oldest first."""
        with self._lock:
            return list(self._entries)

    def recent(self, limit: int = 50) -> List[ActivityLogEntry]:
        """The newest ``limit`` entries, newest first."""
        with self._lock:
            return list(reversed(self._entries[-limit:])) if limit > 0 else []

    def last_undoable(self) -> Optional[ActivityLogEntry]:
        """The most recent entry that can be undone, if any."""
        with self._lock:
            return next((e for e in reversed(self._entries) if e.can_undo), None)

    def undo_last(self) -> Optional[Path]:
        """
        Move the file of the most recent undoable entry back to its source.

        Only that single entry is reversed. The file is restored under a
        numbered name if its original path is taken again.

        Returns:
            Restored path, or None when there was nothing to undo or it failed
        """
        with self._undo_lock:
            entry = self.last_undoable()
            if entry is None:
                logger.warning("No undoable action found")
                return None

            destination = Path(entry.destination_path)
            source = Path(entry.source_path)

            if not destination.exists():
                logger.warning(f"Cannot undo: file no longer exists at {destination}")
                return None

            logger.info(f"Attempting undo: {destination} -> {source}")
            try:
                source.parent.mkdir(parents=True, exist_ok=True)
                restored = unique_destination(source)
                move_file(destination, restored)
            except (OSError, RelocationError) as e:
                logger.error(f"Undo failed: {e}")
                return None

            with self._lock:
                self._entries = [e for e in self._entries if e.id != entry.id]
                self._persist()

            logger.success(f"Undo successful: moved {entry.file_name} back to {restored.parent}")
            return restored

    def _persist(self) -> None:
        if self.store is None:
            return
        try:
            self._entries = self.store.save(self._entries)
        except StorageError as e:
            logger.error(f"Activity log not persisted: {e}")
