"""
Classification orchestration.

Decides whether to wait for the primary classifier or fall back to keyword
matching, serialises primary inference, and remembers which files were
classified in degraded mode so they can be replayed once the model is ready.
"""

import re
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from loguru import logger

from app.models.schemas import Rule
from app.utils.classifier import Classifier

# Common stop words ignored when extracting keywords from rule prompts
STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "to", "for", "of", "in", "on", "at",
    "is", "are", "that", "this", "with", "files", "file", "move", "put",
    "all", "any", "my", "into", "folder", "should", "go", "be", "como",
    "los", "las", "que", "con", "por", "para", "del", "una", "uno",
})

_NON_WORD = re.compile(r"[\W_]+")


def extract_keywords(prompt: str) -> List[str]:
    """Lower-cased word tokens of ``prompt`` minus stop words and 1-char tokens."""
    return [
        token
        for token in _NON_WORD.split(prompt.lower())
        if len(token) > 1 and token not in STOP_WORDS
    ]


def keyword_classify(text: str, rules: Sequence[Rule]) -> Optional[int]:
    """
    Degraded classification: first rule with any keyword present in ``text`` wins.

    Returns:
        0-based index of the matching rule, or None
    """
    lowered = text.lower()
    for index, rule in enumerate(rules):
        matched = [k for k in extract_keywords(rule.natural_prompt) if k in lowered]
        if matched:
            logger.info(f"Keyword fallback matched rule '{rule.natural_prompt}' with keywords: {matched}")
            return index
    logger.debug("Keyword fallback: no rule matched")
    return None


def build_inference_text(file_name: str, extracted: Optional[str]) -> str:
    """Combine the filename (often the strongest hint) with extracted content."""
    if extracted:
        return f"FILENAME: {file_name}\n\nCONTENT:\n{extracted}"
    return file_name


@dataclass(frozen=True, slots=True)
class FallbackRecord:
    """A file classified by keyword fallback, waiting for re-classification."""

    path: Path
    recorded_at: float


class FallbackTracker:
    """Set of fallback-classified files, each replayed at most once."""

    def __init__(self):
        self._records: Dict[Path, FallbackRecord] = {}
        self._lock = threading.Lock()

    def record(self, path: Path) -> FallbackRecord:
        record = FallbackRecord(path=path, recorded_at=time.time())
        with self._lock:
            self._records[path] = record
        logger.debug(f"Fallback recorded for later re-classification: {path.name}")
        return record

    def drain(self) -> List[FallbackRecord]:
        """Remove and return every pending record, oldest first."""
        with self._lock:
            records = sorted(self._records.values(), key=lambda r: r.recorded_at)
            self._records.clear()
        return records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


@dataclass(frozen=True, slots=True)
class ClassificationResult:
    """Which rule (if any) a text was matched to, and how."""

    rule: Optional[Rule]
    rule_index: Optional[int]
    used_fallback: bool


class ClassificationOrchestrator:
    """Primary classifier with wait/fallback policy and single-flight inference."""

    def __init__(
        self,
        classifier: Classifier,
        wait_for_model: bool = True,
        model_wait_timeout: float = 120.0,
        ai_enabled: bool = True,
        fallback_retry_enabled: bool = True,
        tracker: Optional[FallbackTracker] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            classifier: Primary classifier
            wait_for_model: Block (bounded) for readiness instead of falling back at once
            model_wait_timeout: Upper bound for that wait, in seconds
            ai_enabled: False forces keyword matching for every file
            fallback_retry_enabled: Remember fallback-classified files for replay
            tracker: Shared fallback record set
        """
        self.classifier = classifier
        self.wait_for_model = wait_for_model
        self.model_wait_timeout = model_wait_timeout
        self.ai_enabled = ai_enabled
        self.fallback_retry_enabled = fallback_retry_enabled
        self.tracker = tracker or FallbackTracker()
        self._inference_lock = threading.Lock()

    def classify(self, text: str, rules: Sequence[Rule]) -> ClassificationResult:
        """
        Match ``text`` against ``rules`` (priority order).

        Never raises for classifier problems; those degrade to keyword matching.
        """
        if not rules:
            return ClassificationResult(None, None, used_fallback=False)

        if not self.ai_enabled:
            return self._result(rules, keyword_classify(text, rules), used_fallback=True)

        if not self.classifier.is_ready():
            if self.wait_for_model:
                logger.info(f"Waiting up to {self.model_wait_timeout:.0f}s for classifier")
                ready = self.classifier.await_ready(self.model_wait_timeout)
            else:
                ready = False
            if not ready:
                logger.warning("Classifier not ready, using keyword fallback")
                return self._result(rules, keyword_classify(text, rules), used_fallback=True)

        try:
            with self._inference_lock:
                index = self.classifier.classify(text, rules)
        except Exception as e:
            logger.error(f"Classifier failed, using keyword fallback: {e}")
            return self._result(rules, keyword_classify(text, rules), used_fallback=True)

        return self._result(rules, index, used_fallback=False)

    def should_record_fallback(self, result: ClassificationResult) -> bool:
        """Degraded results get replayed later unless AI is off or replay is disabled."""
        return result.used_fallback and self.ai_enabled and self.fallback_retry_enabled

    @staticmethod
    def _result(rules: Sequence[Rule], index: Optional[int], used_fallback: bool) -> ClassificationResult:
        if index is None or not 0 <= index < len(rules):
            return ClassificationResult(None, None, used_fallback)
        return ClassificationResult(rules[index], index, used_fallback)
