"""JSON persistence for rules and activity logs."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Iterable, List, Sequence
from uuid import UUID

from loguru import logger
from pydantic import ValidationError

from app.models.schemas import ActivityLogEntry, Rule
from domains.file_ingest.errors import StorageError

RULES_FILE_NAME = "rules.json"
LOGS_FILE_NAME = "activity_logs.json"


def write_json_atomic(path: Path, payload: object) -> None:
    """Persist ``payload`` as prettified JSON, replacing ``path`` atomically."""

    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
    tmp_path.replace(path)


def read_json_list(path: Path) -> list:
    """Load a JSON array from ``path``; a missing file is an empty list."""

    if not path.exists():
        logger.info(f"No file at {path}, returning empty list")
        return []

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Failed to load {path}: {e}")
        raise StorageError(f"Failed to load {path}: {e}") from e

    if not isinstance(data, list):
        raise StorageError(f"Expected a JSON array in {path}")
    return data


class RuleStore:
    """Rule list persisted as ``rules.json``."""

    def __init__(self, data_dir: Path):
        self.path = data_dir / RULES_FILE_NAME
        self._lock = threading.Lock()

    def load(self) -> List[Rule]:
        """Load all rules in file order."""
        with self._lock:
            return self._load()

    def _load(self) -> List[Rule]:
        raw = read_json_list(self.path)
        try:
            rules = [Rule.model_validate(item) for item in raw]
        except ValidationError as e:
            raise StorageError(f"Invalid rule in {self.path}: {e}") from e
        logger.info(f"Loaded {len(rules)} rules from storage")
        return rules

    def save(self, rules: Sequence[Rule]) -> None:
        """Save all rules to storage."""
        with self._lock:
            self._save(rules)

    def _save(self, rules: Sequence[Rule]) -> None:
        try:
            write_json_atomic(self.path, [rule.model_dump(mode="json") for rule in rules])
        except OSError as e:
            logger.error(f"Failed to save rules: {e}")
            raise StorageError(f"Failed to save rules: {e}") from e
        logger.info(f"Saved {len(rules)} rules to storage")

    def add(self, rule: Rule) -> List[Rule]:
        """Append a rule and persist."""
        with self._lock:
            rules = self._load()
            rules.append(rule)
            self._save(rules)
            return rules

    def update(self, rule: Rule) -> List[Rule]:
        """Replace the rule with the same id and persist."""
        with self._lock:
            rules = self._load()
            for index, existing in enumerate(rules):
                if existing.id == rule.id:
                    rules[index] = rule
                    break
            else:
                raise StorageError(f"Rule not found with ID: {rule.id}")
            self._save(rules)
            return rules

    def delete(self, rule_id: UUID) -> List[Rule]:
        """Remove a rule by id and persist."""
        with self._lock:
            rules = [r for r in self._load() if r.id != rule_id]
            self._save(rules)
            return rules

    def enabled_rules(self) -> List[Rule]:
        """Enabled rules by ascending priority; equal priorities keep file order."""
        return order_rules(self.load())


def order_rules(rules: Iterable[Rule]) -> List[Rule]:
    """Filter to enabled rules and sort by priority (stable)."""
    return sorted((r for r in rules if r.is_enabled), key=lambda r: r.priority)


class ActivityStore:
    """Activity log persisted as ``activity_logs.json``, trimmed on every save."""

    def __init__(self, data_dir: Path, max_entries: int = 1000):
        self.path = data_dir / LOGS_FILE_NAME
        self.max_entries = max_entries
        self._lock = threading.Lock()

    def load(self) -> List[ActivityLogEntry]:
        """Load all stored activity entries, oldest first."""
        with self._lock:
            raw = read_json_list(self.path)
        try:
            logs = [ActivityLogEntry.model_validate(item) for item in raw]
        except ValidationError as e:
            raise StorageError(f"Invalid activity entry in {self.path}: {e}") from e
        logger.info(f"Loaded {len(logs)} activity logs from storage")
        return logs

    def save(self, logs: Sequence[ActivityLogEntry]) -> List[ActivityLogEntry]:
        """Save the newest ``max_entries`` logs and return what was kept."""
        trimmed = list(logs)[-self.max_entries:] if self.max_entries > 0 else []
        with self._lock:
            try:
                write_json_atomic(self.path, [log.model_dump(mode="json") for log in trimmed])
            except OSError as e:
                logger.error(f"Failed to save logs: {e}")
                raise StorageError(f"Failed to save logs: {e}") from e
        logger.debug(f"Saved {len(trimmed)} activity logs to storage")
        return trimmed

    def clear(self) -> None:
        """Clear all activity logs."""
        self.save([])
        logger.info("Cleared all activity logs")
