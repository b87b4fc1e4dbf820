"""
Inbox Clerk service.

Owns every pipeline component and the three triggers that feed it:
- debounced watcher signals, consumed by a dedicated loop
- a periodic rescan of the inbox
- the retry scheduler's tick

Per-file work (extract -> classify -> relocate -> record) runs on a small
thread pool; classifier inference itself is single-flight.
"""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, List, Optional

from loguru import logger

from app.models.schemas import ActionStatus, ActionType, ActivityLogEntry, MonitorStatus, Rule
from app.utils.classifier import Classifier, OllamaClassifier
from app.utils.config import Settings
from app.utils.storage import ActivityStore, RuleStore
from domains.file_ingest.collectors.retry import RetryScheduler
from domains.file_ingest.collectors.scanner import DEFERRED, IngestionScanner, Readiness
from domains.file_ingest.collectors.watcher import FolderWatcher
from domains.file_ingest.errors import StorageError
from domains.file_ingest.processors.activity import ActivityRecorder
from domains.file_ingest.processors.extractor import ContentExtractor
from domains.file_ingest.processors.orchestrator import (
    ClassificationOrchestrator,
    FallbackTracker,
    build_inference_text,
)
from domains.file_ingest.processors.registry import ProcessedFileRegistry
from domains.file_ingest.processors.relocator import (
    FileRelocator,
    RelocationOutcome,
    RelocationResult,
    ResourceAccessor,
)


class ClerkService:
    """Explicitly wired pipeline; one instance per watched inbox."""

    def __init__(
        self,
        settings: Settings,
        classifier: Classifier,
        rule_store: RuleStore,
        activity: ActivityRecorder,
        extractor: Optional[ContentExtractor] = None,
        accessor: Optional[ResourceAccessor] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.watch_dir = settings.get_watch_dir()
        self.classifier = classifier
        self.rule_store = rule_store
        self.activity = activity
        self.extractor = extractor

        self.registry = ProcessedFileRegistry()
        self.retry_scheduler = RetryScheduler(
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            max_attempts=settings.retry_max_attempts,
            tick_interval=settings.retry_tick_interval,
            on_abandon=self._on_abandon,
        )
        self.scanner = IngestionScanner(
            directory=self.watch_dir,
            registry=self.registry,
            retry_scheduler=self.retry_scheduler,
            activity=activity,
            temporary_extensions=settings.get_temporary_extensions(),
            whitelisted_extensions=settings.get_whitelisted_extensions(),
            min_file_age=settings.min_file_age,
            clock=clock,
        )
        self.relocator = FileRelocator(
            watch_root=self.watch_dir,
            review_dir=settings.get_review_dir(),
            quarantine_dir=settings.get_quarantine_dir(),
            accessor=accessor,
        )
        self.fallbacks = FallbackTracker()
        self.orchestrator = ClassificationOrchestrator(
            classifier,
            wait_for_model=settings.wait_for_model,
            model_wait_timeout=settings.model_wait_timeout,
            ai_enabled=settings.ai_enabled,
            fallback_retry_enabled=settings.fallback_retry_enabled,
            tracker=self.fallbacks,
        )
        self.watcher = FolderWatcher(
            self.watch_dir,
            debounce_interval=settings.debounce_interval,
            ignored_names={settings.review_folder_name, settings.quarantine_folder_name},
        )

        self.rules: List[Rule] = []
        self.reload_rules()

        self._executor: Optional[ThreadPoolExecutor] = None
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []
        self._lifecycle_lock = threading.Lock()

        classifier.add_ready_listener(self.replay_fallbacks)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClerkService":
        """Build the service with the default Ollama classifier and JSON stores."""
        data_dir = settings.get_data_dir()
        return cls(
            settings=settings,
            classifier=OllamaClassifier(
                settings.ollama_url,
                settings.ollama_model,
                timeout=settings.ollama_timeout,
            ),
            rule_store=RuleStore(data_dir),
            activity=ActivityRecorder(ActivityStore(data_dir, settings.max_log_entries)),
            extractor=ContentExtractor(settings.max_extracted_chars),
        )

    # Monitoring control ---------------------------------------------------------------

    @property
    def is_monitoring(self) -> bool:
        return self.watcher.is_monitoring

    def start_monitoring(self) -> None:
        """
        Attach the watcher, start the loops, then scan what is already there.

        Raises:
            WatcherSetupError: If the inbox cannot be watched
        """
        with self._lifecycle_lock:
            if self.is_monitoring:
                logger.warning("Monitoring already running")
                return

            self.watcher.start()
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.settings.worker_threads,
                    thread_name_prefix="clerk-worker",
                )
            self.retry_scheduler.start(self.retry_file)

            self._stop_event.clear()
            self._threads = [
                threading.Thread(target=self._consume_changes, name="clerk-changes", daemon=True),
                threading.Thread(target=self._periodic_rescan, name="clerk-rescan", daemon=True),
            ]
            for thread in self._threads:
                thread.start()

        logger.success(f"Monitoring started: {self.watch_dir}")
        self.manual_scan()

    def stop_monitoring(self) -> None:
        """Stop triggers. Pending retries and fallbacks are kept for the next start."""
        with self._lifecycle_lock:
            self.watcher.stop()
            self.retry_scheduler.stop()
            self._stop_event.set()
            for thread in self._threads:
                thread.join(timeout=5.0)
            self._threads = []
        logger.info("Monitoring stopped")

    def shutdown(self) -> None:
        """Stop monitoring and wait for in-flight files."""
        self.stop_monitoring()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        close = getattr(self.classifier, "close", None)
        if callable(close):
            close()

    def _consume_changes(self) -> None:
        while not self._stop_event.is_set():
            if self.watcher.wait_for_change(timeout=0.5):
                self.manual_scan()

    def _periodic_rescan(self) -> None:
        while not self._stop_event.wait(self.settings.rescan_interval):
            self.manual_scan()

    # Triggers -------------------------------------------------------------------------

    def manual_scan(self, wait_for_completion: bool = False) -> int:
        """
        Scan the inbox and dispatch every ready file.

        Args:
            wait_for_completion: Block until dispatched files are processed

        Returns:
            Number of files dispatched
        """
        ready = self.scanner.scan()
        futures = [f for f in (self.submit(path) for path in ready) if f is not None]
        if wait_for_completion and futures:
            wait(futures)
        return len(ready)

    def submit(self, path: Path) -> Optional[Future]:
        """Process ``path`` on the worker pool, or inline when not monitoring."""
        executor = self._executor
        if executor is None:
            self._process_safely(path)
            return None
        return executor.submit(self._process_safely, path)

    def retry_file(self, path: Path) -> bool:
        """
        Retry callback: True once the file no longer needs retrying.
        """
        verdict = self.scanner.check(path)
        if verdict in DEFERRED:
            logger.debug(f"File still not ready on retry ({verdict.value}): {path.name}")
            return False
        if verdict is Readiness.READY:
            self.submit(path)
        return True

    def replay_fallbacks(self) -> int:
        """Re-feed every fallback-classified file once the classifier is ready."""
        records = self.fallbacks.drain()
        if not records:
            return 0

        logger.info(f"Classifier ready, re-classifying {len(records)} fallback file(s)")
        replayed = 0
        for record in records:
            if not record.path.exists():
                logger.debug(f"Fallback file gone, skipping replay: {record.path.name}")
                continue
            self.registry.forget(record.path)
            self.submit(record.path)
            replayed += 1
        return replayed

    # Pipeline -------------------------------------------------------------------------

    def _process_safely(self, path: Path) -> Optional[ActivityLogEntry]:
        try:
            return self.process_file(path)
        except Exception as e:
            logger.exception(f"Processing failed for {path.name}: {e}")
            return self.activity.record(
                file_name=path.name,
                action=ActionType.SCANNED,
                status=ActionStatus.FAILED,
                details=f"Processing error: {e}",
                source_path=str(path),
            )

    def process_file(self, path: Path) -> Optional[ActivityLogEntry]:
        """
        Run one file through classification and relocation.

        Returns:
            The terminal activity entry, or None if the file was skipped
        """
        try:
            mtime = path.stat().st_mtime
        except FileNotFoundError:
            logger.warning(f"File no longer exists: {path.name}")
            return None

        if not self.registry.claim(path, mtime):
            logger.debug(f"File already claimed, skipping: {path.name}")
            return None
        self.retry_scheduler.dequeue(path)

        rules = self.rules
        if not rules:
            logger.debug("No rules defined, skipping classification")
            return None

        logger.info(f"Processing: {path.name}")
        extracted = None
        if self.extractor is not None and self.extractor.is_supported(path):
            extracted = self.extractor.extract(path)

        was_ready = self.classifier.is_ready()
        result = self.orchestrator.classify(build_inference_text(path.name, extracted), rules)

        if result.rule is not None:
            folder = Path(result.rule.target_path).expanduser()
            logger.info(f"Rule matched: '{result.rule.natural_prompt}' -> {folder}")
            relocation = self.relocator.relocate(path, folder)
            entry = self._record_rule_outcome(path, result.rule, relocation)
        else:
            logger.info(f"No rule matched for: {path.name}, moving to review folder")
            relocation = self.relocator.to_review(path)
            entry = self._record_review_outcome(path, relocation)

        if self.orchestrator.should_record_fallback(result):
            location = self._location_after(path, relocation)
            if location is not None:
                self.fallbacks.record(location)
                # Readiness may have flipped while this file was moving
                if not was_ready and self.classifier.is_ready():
                    self.replay_fallbacks()

        return entry

    def _record_rule_outcome(self, path: Path, rule: Rule, relocation: RelocationResult) -> ActivityLogEntry:
        outcome = relocation.outcome
        if outcome is RelocationOutcome.DUPLICATE:
            return self.activity.record(
                file_name=path.name,
                action=ActionType.QUARANTINED,
                status=ActionStatus.SUCCESS,
                matched_rule_id=rule.id,
                details=relocation.details,
                source_path=str(path),
                destination_path=str(relocation.quarantine_path),
            )
        if outcome is RelocationOutcome.IN_PLACE:
            return self.activity.record(
                file_name=path.name,
                action=ActionType.SKIPPED,
                status=ActionStatus.SUCCESS,
                matched_rule_id=rule.id,
                details="Already at destination",
            )
        if outcome is RelocationOutcome.FAILED:
            return self.activity.record(
                file_name=path.name,
                action=ActionType.MOVED,
                status=ActionStatus.FAILED,
                matched_rule_id=rule.id,
                details=relocation.details or "Failed to move file",
                source_path=str(path),
            )

        details = f"Moved to {rule.target_path}"
        if outcome is RelocationOutcome.RENAMED:
            details += f" as {relocation.path.name}"
        return self.activity.record(
            file_name=path.name,
            action=ActionType.MOVED,
            status=ActionStatus.SUCCESS,
            matched_rule_id=rule.id,
            details=details,
            source_path=str(path),
            destination_path=str(relocation.path),
        )

    def _record_review_outcome(self, path: Path, relocation: RelocationResult) -> ActivityLogEntry:
        if relocation.outcome is RelocationOutcome.FAILED:
            return self.activity.record(
                file_name=path.name,
                action=ActionType.REVIEWED,
                status=ActionStatus.FAILED,
                details=relocation.details or "Failed to move to review folder",
                source_path=str(path),
            )
        if relocation.outcome is RelocationOutcome.IN_PLACE:
            return self.activity.record(
                file_name=path.name,
                action=ActionType.SKIPPED,
                status=ActionStatus.SUCCESS,
                details="Still unmatched, left in review folder",
            )
        return self.activity.record(
            file_name=path.name,
            action=ActionType.REVIEWED,
            status=ActionStatus.SUCCESS,
            details="No matching rule",
            source_path=str(path),
            destination_path=str(relocation.path),
        )

    @staticmethod
    def _location_after(path: Path, relocation: RelocationResult) -> Optional[Path]:
        """Where the file lives after a fallback outcome; None once quarantined."""
        if relocation.outcome is RelocationOutcome.DUPLICATE:
            return None
        if relocation.outcome is RelocationOutcome.FAILED:
            return path
        return relocation.path

    def _on_abandon(self, path: Path, attempts: int) -> None:
        self.activity.record(
            file_name=path.name,
            action=ActionType.ABANDONED,
            status=ActionStatus.FAILED,
            details=f"Not ready after {attempts} attempts, left in place",
            source_path=str(path),
        )

    # Control surface ------------------------------------------------------------------

    def reload_rules(self) -> List[Rule]:
        """Reload enabled rules (priority order) from the rule store."""
        try:
            self.rules = self.rule_store.enabled_rules()
        except StorageError as e:
            logger.error(f"Failed to load rules, keeping {len(self.rules)} current rules: {e}")
        return self.rules

    def undo_last(self) -> Optional[Path]:
        """Undo the latest move; the restored file is not re-classified."""
        restored = self.activity.undo_last()
        if restored is not None:
            try:
                self.registry.claim(restored, restored.stat().st_mtime)
            except OSError as e:
                logger.warning(f"Could not register restored file {restored}: {e}")
        return restored

    def review_folder(self) -> Path:
        return self.relocator.review_dir

    def review_files(self) -> List[Path]:
        return self.relocator.review_files()

    def status(self) -> MonitorStatus:
        """Snapshot for the control surface."""
        state = getattr(self.classifier, "state", None)
        if state is None:
            state = "ready" if self.classifier.is_ready() else "not_ready"
        return MonitorStatus(
            monitoring=self.is_monitoring,
            watch_dir=str(self.watch_dir),
            classifier_state=getattr(state, "value", str(state)),
            pending_retries=self.retry_scheduler.pending_count,
            pending_fallbacks=len(self.fallbacks),
            processed_files=len(self.registry),
            review_count=self.relocator.review_count(),
            rules=len(self.rules),
        )
