"""
Inbox folder watcher.

Monitors a single directory (non-recursively) for file system changes.
Uses watchdog library for cross-platform file system event monitoring.
Bursts of raw events are debounced into a single "changed" signal published
on a bounded channel; consumers rescan the directory when they receive it.
"""

import queue
import threading
from pathlib import Path
from typing import Callable, Iterable, Optional

from loguru import logger
from watchdog.events import DirModifiedEvent, FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from domains.file_ingest.errors import WatcherSetupError

CHANGED = "changed"


class InboxEventHandler(FileSystemEventHandler):
    """Forwards relevant raw events to the debouncer."""

    def __init__(self, on_event: Callable[[], None], ignored_names: Iterable[str] = ()):
        """
        Initialize event handler.

        Args:
            on_event: Called for every event that should trigger a rescan
            ignored_names: Entry names (e.g. holding folders) whose events are ignored
        """
        super().__init__()
        self.on_event = on_event
        self.ignored_names = set(ignored_names)

    def should_process(self, path: str) -> bool:
        """
        Check if an event path should trigger a rescan.

        Args:
            path: File path

        Returns:
            True if should process, False otherwise
        """
        if not path:
            return False
        return Path(path).name not in self.ignored_names

    def on_created(self, event: FileSystemEvent):
        """Handle file/directory creation."""
        if self.should_process(event.src_path):
            logger.debug(f"Created: {event.src_path}")
            self.on_event()

    def on_modified(self, event: FileSystemEvent):
        """Handle file modification."""
        # Directory modifications duplicate the per-file events
        if isinstance(event, DirModifiedEvent) or event.is_directory:
            return
        if self.should_process(event.src_path):
            self.on_event()

    def on_moved(self, event: FileSystemEvent):
        """Handle rename, e.g. a finished download dropping its partial suffix."""
        dest = getattr(event, "dest_path", None)
        if self.should_process(event.src_path) or self.should_process(dest):
            logger.debug(f"Moved: {event.src_path} -> {dest}")
            self.on_event()

    def on_deleted(self, event: FileSystemEvent):
        """Deletions never produce new work."""
        return


class FolderWatcher:
    """Debounced, single-directory file system monitor."""

    def __init__(
        self,
        directory: Path,
        debounce_interval: float = 0.5,
        ignored_names: Iterable[str] = (),
    ):
        """
        Initialize folder watcher.

        Args:
            directory: Folder to monitor
            debounce_interval: Quiet period (seconds) before a change is published
            ignored_names: Child names whose events never trigger a rescan
        """
        self.directory = directory
        self.debounce_interval = debounce_interval
        self.changes: "queue.Queue[str]" = queue.Queue(maxsize=1)

        self.event_handler = InboxEventHandler(self.notify, ignored_names)
        self._observer: Optional[Observer] = None
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    @property
    def is_monitoring(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        """
        Start watching the directory.

        Raises:
            WatcherSetupError: If the directory cannot be monitored
        """
        if self.is_monitoring:
            logger.warning(f"Monitor already running for {self.directory}")
            return

        if not self.directory.is_dir():
            raise WatcherSetupError(f"Cannot monitor {self.directory}: not a directory")

        observer = Observer()
        try:
            observer.schedule(self.event_handler, str(self.directory), recursive=False)
            observer.daemon = True
            observer.start()
        except Exception as e:
            logger.error(f"Failed to watch {self.directory}: {e}")
            raise WatcherSetupError(f"Failed to watch {self.directory}: {e}") from e

        self._observer = observer
        logger.success(f"Started watching: {self.directory}")

    def stop(self) -> None:
        """Stop watching. Safe to call repeatedly."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

        observer, self._observer = self._observer, None
        if observer is None:
            return

        observer.stop()
        observer.join(timeout=5.0)
        logger.info(f"Stopped watching: {self.directory}")

    def notify(self) -> None:
        """Register a raw event; restarts the trailing debounce timer."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce_interval, self._publish)
            self._timer.daemon = True
            self._timer.start()

    def _publish(self) -> None:
        with self._lock:
            self._timer = None
        try:
            self.changes.put_nowait(CHANGED)
            logger.info(f"Folder change detected (debounced): {self.directory}")
        except queue.Full:
            # A rescan is already pending
            pass

    def wait_for_change(self, timeout: Optional[float] = None) -> bool:
        """
        Consume one change signal.

        Returns:
            True if a change was signalled within ``timeout``
        """
        try:
            self.changes.get(timeout=timeout)
            return True
        except queue.Empty:
            return False
