"""
Inbox scanner.

Lists the watched directory (non-recursively) and decides, per entry, whether
it is ready for classification, should be retried later, or is ignored.
"""

import time
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Set, Tuple

from loguru import logger

from app.models.schemas import ActionStatus, ActionType
from app.utils.helpers import get_file_extension, is_file_locked, is_hidden
from domains.file_ingest.collectors.retry import RetryScheduler
from domains.file_ingest.processors.activity import ActivityRecorder
from domains.file_ingest.processors.registry import ProcessedFileRegistry


class Readiness(str, Enum):
    """Verdict for a single directory entry."""
    MISSING = "missing"
    NOT_FILE = "not_file"
    TEMPORARY = "temporary"
    WHITELISTED = "whitelisted"
    TOO_NEW = "too_new"
    ALREADY_PROCESSED = "already_processed"
    LOCKED = "locked"
    READY = "ready"


DEFERRED = frozenset({Readiness.TOO_NEW, Readiness.LOCKED})


class IngestionScanner:
    """Readiness filter in front of the classification pipeline."""

    def __init__(
        self,
        directory: Path,
        registry: ProcessedFileRegistry,
        retry_scheduler: RetryScheduler,
        activity: ActivityRecorder,
        temporary_extensions: Set[str],
        whitelisted_extensions: Set[str],
        min_file_age: float = 2.0,
        clock: Callable[[], float] = time.time,
    ):
        self.directory = directory
        self.registry = registry
        self.retry_scheduler = retry_scheduler
        self.activity = activity
        self.temporary_extensions = temporary_extensions
        self.whitelisted_extensions = whitelisted_extensions
        self.min_file_age = min_file_age
        self.clock = clock

    def scan(self) -> List[Path]:
        """
        Scan the directory and return the files ready for processing.

        Deferred files are handed to the retry scheduler as a side effect.
        """
        logger.info(f"Scanning folder: {self.directory}")

        try:
            entries = sorted(p for p in self.directory.iterdir() if not is_hidden(p))
        except OSError as e:
            logger.error(f"Failed to scan folder {self.directory}: {e}")
            return []

        ready = [path for path in entries if self.evaluate(path) is Readiness.READY]
        logger.info(f"Found {len(ready)} files to process out of {len(entries)} total")
        return ready

    def evaluate(self, path: Path) -> Readiness:
        """Check one entry and apply its scheduling/logging side effects."""
        verdict, mtime = self._inspect(path)

        if verdict is Readiness.TEMPORARY:
            logger.debug(f"Skipping temporary file: {path.name}")

        elif verdict is Readiness.WHITELISTED:
            # One whitelisted entry per (path, mtime); later scans stay quiet
            if self.registry.claim(path, mtime):
                logger.debug(f"Skipping whitelisted file: {path.name}")
                self.activity.record(
                    file_name=path.name,
                    action=ActionType.WHITELISTED,
                    status=ActionStatus.SUCCESS,
                    details="Installer/App file",
                    source_path=str(path),
                )
            else:
                verdict = Readiness.ALREADY_PROCESSED

        elif verdict is Readiness.TOO_NEW:
            logger.debug(f"File too new, queueing for retry: {path.name}")
            self.retry_scheduler.enqueue(path)

        elif verdict is Readiness.ALREADY_PROCESSED:
            logger.debug(f"File already processed, skipping: {path.name}")

        elif verdict is Readiness.LOCKED:
            logger.debug(f"File is locked, queueing for retry: {path.name}")
            self.retry_scheduler.enqueue(path)
            self.activity.record(
                file_name=path.name,
                action=ActionType.SCANNED,
                status=ActionStatus.RETRYING,
                details="File locked, queued for retry",
                source_path=str(path),
            )

        return verdict

    def check(self, path: Path) -> Readiness:
        """Side-effect free readiness check, used when retrying."""
        verdict, _ = self._inspect(path)
        return verdict

    def _inspect(self, path: Path) -> Tuple[Readiness, Optional[float]]:
        try:
            stat = path.stat()
        except FileNotFoundError:
            return Readiness.MISSING, None
        except OSError as e:
            logger.warning(f"Cannot stat {path}: {e}")
            return Readiness.LOCKED, None

        if not path.is_file():
            return Readiness.NOT_FILE, None

        mtime = stat.st_mtime
        ext = get_file_extension(path)
        if ext in self.temporary_extensions:
            return Readiness.TEMPORARY, mtime
        if ext in self.whitelisted_extensions:
            if self.registry.is_processed(path, mtime):
                return Readiness.ALREADY_PROCESSED, mtime
            return Readiness.WHITELISTED, mtime

        age = self.clock() - mtime
        if age < self.min_file_age:
            return Readiness.TOO_NEW, mtime

        if self.registry.is_processed(path, mtime):
            return Readiness.ALREADY_PROCESSED, mtime

        if is_file_locked(path):
            return Readiness.LOCKED, mtime

        return Readiness.READY, mtime
