"""
Retry scheduling for files that are not yet processable.

Locked files and files still being written are parked here and re-attempted
with exponential backoff: 5s, 10s, 20s, 40s, then 60s (capped). A file is
dropped once its attempt count reaches the cap; only a fresh scan restarts
the count.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Dict, List, Optional

from loguru import logger

RetryCallback = Callable[[Path], bool]
AbandonCallback = Callable[[Path, int], None]


@dataclass(frozen=True, slots=True)
class PendingFile:
    """A file waiting for its next retry."""

    path: Path
    attempt_count: int
    last_attempt: float
    next_retry: float


class RetryScheduler:
    """Holds pending files and re-attempts them from a background tick."""

    def __init__(
        self,
        base_delay: float = 5.0,
        max_delay: float = 60.0,
        max_attempts: int = 5,
        tick_interval: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
        on_abandon: Optional[AbandonCallback] = None,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self.tick_interval = tick_interval
        self.clock = clock
        self.on_abandon = on_abandon

        self._pending: Dict[Path, PendingFile] = {}
        self._lock = threading.Lock()
        self._on_retry: Optional[RetryCallback] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # Lifecycle -----------------------------------------------------------------------

    def start(self, on_retry: RetryCallback) -> None:
        """Start the background tick. Pending files carry over from a previous run."""
        self._on_retry = on_retry
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="retry-scheduler", daemon=True)
        self._thread.start()
        logger.info(f"Retry scheduler started ({self.pending_count} pending)")

    def stop(self) -> None:
        """Stop ticking. The pending set is kept."""
        thread = self._thread
        if thread is None:
            return
        self._stop_event.set()
        if thread is not threading.current_thread():
            thread.join(timeout=self.tick_interval + 1.0)
        self._thread = None
        logger.info("Retry scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop_event.wait(self.tick_interval):
            self.tick()

    # Queue API -----------------------------------------------------------------------

    def delay_for(self, attempt: int) -> float:
        """Backoff delay for the given 1-based attempt number."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    def enqueue(self, path: Path) -> Optional[PendingFile]:
        """
        Track ``path`` for retry, or bump its attempt count if already tracked.

        Returns:
            The updated pending state, or None when the cap was reached and
            the file was dropped
        """
        now = self.clock()
        with self._lock:
            existing = self._pending.get(path)
            if existing is None:
                pending = PendingFile(
                    path=path,
                    attempt_count=1,
                    last_attempt=now,
                    next_retry=now + self.delay_for(1),
                )
                self._pending[path] = pending
                logger.debug(f"File queued for retry: {path.name}")
                return pending

            attempt = existing.attempt_count + 1
            if attempt >= self.max_attempts:
                del self._pending[path]
                abandoned = True
            else:
                pending = replace(
                    existing,
                    attempt_count=attempt,
                    last_attempt=now,
                    next_retry=now + self.delay_for(attempt),
                )
                self._pending[path] = pending
                abandoned = False

        if abandoned:
            logger.warning(f"File exceeded max retries, giving up: {path.name}")
            if self.on_abandon is not None:
                self.on_abandon(path, attempt)
            return None

        logger.debug(f"Retry #{pending.attempt_count} scheduled for: {path.name}")
        return pending

    def dequeue(self, path: Path) -> bool:
        """Remove ``path`` (e.g. when it was processed by another trigger)."""
        with self._lock:
            removed = self._pending.pop(path, None)
        if removed is not None:
            logger.debug(f"File removed from retry queue: {path.name}")
        return removed is not None

    def is_pending(self, path: Path) -> bool:
        with self._lock:
            return path in self._pending

    def get(self, path: Path) -> Optional[PendingFile]:
        with self._lock:
            return self._pending.get(path)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def snapshot(self) -> List[PendingFile]:
        """Copy of the pending set, soonest retry first."""
        with self._lock:
            return sorted(self._pending.values(), key=lambda p: p.next_retry)

    # Tick ----------------------------------------------------------------------------

    def tick(self) -> int:
        """
        Re-attempt every file whose retry time has elapsed.

        Returns:
            Number of files attempted
        """
        on_retry = self._on_retry
        if on_retry is None:
            return 0

        now = self.clock()
        with self._lock:
            due = [p.path for p in self._pending.values() if p.next_retry <= now]

        attempted = 0
        for path in due:
            if not path.exists():
                with self._lock:
                    self._pending.pop(path, None)
                logger.debug(f"File no longer exists, removing from queue: {path.name}")
                continue

            logger.debug(f"Retrying file: {path.name}")
            attempted += 1
            try:
                success = on_retry(path)
            except Exception as e:
                logger.error(f"Retry callback failed for {path.name}: {e}")
                success = False

            if success:
                self.dequeue(path)
                logger.info(f"Retry successful for: {path.name}")
            else:
                self.enqueue(path)

        return attempted
