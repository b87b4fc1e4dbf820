import os
import time
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

import pytest

from app.models.schemas import Rule
from app.utils.classifier import ClassifierState, ReadinessMixin
from app.utils.config import Settings
from app.utils.storage import ActivityStore, RuleStore
from domains.file_ingest.processors.activity import ActivityRecorder
from domains.file_ingest.service import ClerkService

Answer = Union[Optional[int], Callable[[str, Sequence[Rule]], Optional[int]]]


class FakeClassifier(ReadinessMixin):
    """Scripted classifier with a real readiness state machine."""

    def __init__(self, answer: Answer = None, ready: bool = True, error: Optional[Exception] = None):
        self._init_readiness()
        self.answer = answer
        self.error = error
        self.calls: List[str] = []
        if ready:
            self._set_state(ClassifierState.READY)

    def mark_ready(self):
        self._set_state(ClassifierState.READY)

    def classify(self, text, rules):
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        if callable(self.answer):
            return self.answer(text, rules)
        return self.answer


class FakeExtractor:
    """Returns canned text for every file."""

    def __init__(self, text: Optional[str]):
        self.text = text

    def is_supported(self, path: Path) -> bool:
        return True

    def extract(self, path: Path) -> Optional[str]:
        return self.text


def drop_file(folder: Path, name: str, content: Union[str, bytes] = "data", age: float = 60.0) -> Path:
    """Create a file whose mtime lies ``age`` seconds in the past."""
    folder.mkdir(parents=True, exist_ok=True)
    path = folder / name
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content)
    stamp = time.time() - age
    os.utime(path, (stamp, stamp))
    return path


@pytest.fixture
def inbox(tmp_path) -> Path:
    folder = tmp_path / "inbox"
    folder.mkdir()
    return folder


@pytest.fixture
def make_settings(tmp_path, inbox):
    def factory(**overrides) -> Settings:
        values = dict(
            watch_dir=inbox,
            data_dir=tmp_path / "data",
            min_file_age=2.0,
            debounce_interval=0.05,
            retry_tick_interval=0.1,
            rescan_interval=0.2,
            model_wait_timeout=0.2,
            worker_threads=1,
        )
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return factory


@pytest.fixture
def make_service(make_settings, tmp_path):
    services: List[ClerkService] = []

    def factory(
        rules: Sequence[Rule] = (),
        classifier: Optional[FakeClassifier] = None,
        extractor: Optional[FakeExtractor] = None,
        **overrides,
    ) -> ClerkService:
        settings = make_settings(**overrides)
        rule_store = RuleStore(settings.get_data_dir())
        if rules:
            rule_store.save(list(rules))
        service = ClerkService(
            settings=settings,
            classifier=classifier or FakeClassifier(answer=None),
            rule_store=rule_store,
            activity=ActivityRecorder(ActivityStore(settings.get_data_dir(), settings.max_log_entries)),
            extractor=extractor,
        )
        services.append(service)
        return service

    yield factory

    for service in services:
        service.shutdown()
