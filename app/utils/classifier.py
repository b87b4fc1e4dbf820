"""
Rule classification using a local Ollama model.

Provides:
- Prompt construction from the ordered rule list
- Response parsing (rule number -> rule index)
- Readiness tracking so callers can wait for the model or fall back
"""

import re
import threading
import time
from enum import Enum
from typing import Callable, List, Optional, Protocol, Sequence

import httpx
from loguru import logger

from app.models.schemas import Rule
from domains.file_ingest.errors import ClassifierError

SYSTEM_PROMPT = """You are a file organization assistant. Your task is to analyze file content and determine which organizational rule best matches it.

IMPORTANT RULES:
1. You MUST respond with ONLY a single number (1, 2, 3, etc.) representing the matching rule.
2. If NO rule matches the file content, respond with "0".
3. Do NOT explain your reasoning. Just output the number.
4. Be conservative - only match if you're confident the file belongs to that category."""

PROMPT_CONTENT_LIMIT = 4000

_LEADING_INT = re.compile(r"^[+-]?\d+")


def build_prompt(rules: Sequence[Rule], text: str) -> str:
    """
    Build the user prompt listing rules 1..N and the file text.

    Args:
        rules: Rules in priority order
        text: Filename plus extracted content

    Returns:
        Prompt string, empty when there are no rules
    """
    if not rules:
        return ""

    rules_list = "\n".join(f"{i}. {rule.natural_prompt}" for i, rule in enumerate(rules, 1))
    if len(text) > PROMPT_CONTENT_LIMIT:
        text = text[:PROMPT_CONTENT_LIMIT] + "..."

    return (
        f"RULES (in priority order):\n{rules_list}\n\n"
        f"FILE:\n{text}\n\n"
        f"Which rule number (1-{len(rules)}) best matches this file? "
        f"If none match, respond with 0."
    )


def parse_response(response: str, rules_count: int) -> Optional[int]:
    """
    Extract the 0-based rule index from a model answer.

    The leading integer wins; otherwise the first digit anywhere in the
    answer. ``0`` or an out-of-range number means no match.
    """
    trimmed = response.strip()

    match = _LEADING_INT.match(trimmed)
    if match:
        number = int(match.group())
    else:
        digit = next((c for c in trimmed if c.isdigit()), None)
        if digit is None:
            return None
        number = int(digit)

    if 1 <= number <= rules_count:
        return number - 1
    return None


class ClassifierState(str, Enum):
    """Model readiness."""
    NOT_READY = "not_ready"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class Classifier(Protocol):
    """What the pipeline needs from a classifier."""

    def classify(self, text: str, rules: Sequence[Rule]) -> Optional[int]:
        ...

    def is_ready(self) -> bool:
        ...

    def await_ready(self, timeout: float) -> bool:
        ...

    def add_ready_listener(self, listener: Callable[[], None]) -> None:
        ...


class ReadinessMixin:
    """Readiness state machine shared by classifier implementations."""

    def _init_readiness(self):
        self._state = ClassifierState.NOT_READY
        self._condition = threading.Condition()
        self._ready_listeners: List[Callable[[], None]] = []

    @property
    def state(self) -> ClassifierState:
        with self._condition:
            return self._state

    def is_ready(self) -> bool:
        return self.state is ClassifierState.READY

    def await_ready(self, timeout: float) -> bool:
        """Block until the model is ready, has failed, or ``timeout`` elapses."""
        with self._condition:
            self._condition.wait_for(
                lambda: self._state in (ClassifierState.READY, ClassifierState.FAILED),
                timeout=timeout,
            )
            return self._state is ClassifierState.READY

    def add_ready_listener(self, listener: Callable[[], None]) -> None:
        self._ready_listeners.append(listener)

    def _set_state(self, state: ClassifierState) -> None:
        with self._condition:
            previous = self._state
            self._state = state
            self._condition.notify_all()

        if state is ClassifierState.READY and previous is not ClassifierState.READY:
            for listener in list(self._ready_listeners):
                try:
                    listener()
                except Exception as e:
                    logger.warning(f"Ready listener failed: {e}")


class OllamaClassifier(ReadinessMixin):
    """Classifier backed by the Ollama HTTP API."""

    def __init__(
        self,
        base_url: str,
        model: str,
        timeout: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize classifier client.

        Args:
            base_url: Ollama server URL
            model: Model name to run
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)
        self._init_readiness()

    def close(self):
        """Close the HTTP client."""
        self.client.close()

    def _model_available(self) -> bool:
        response = self.client.get("/api/tags")
        response.raise_for_status()
        names = {m.get("name", "") for m in response.json().get("models", [])}
        return self.model in names or f"{self.model}:latest" in names

    def load(self, attempts: int = 30, poll_interval: float = 2.0) -> bool:
        """
        Poll the server until the configured model is available.

        Returns:
            True once ready, False if the model never became available
        """
        if self.state in (ClassifierState.READY, ClassifierState.LOADING):
            logger.debug("Model already loaded or loading")
            return self.is_ready()

        self._set_state(ClassifierState.LOADING)
        logger.info(f"Waiting for Ollama model: {self.model}")

        for attempt in range(1, attempts + 1):
            try:
                if self._model_available():
                    self._set_state(ClassifierState.READY)
                    logger.success(f"Model ready: {self.model}")
                    return True
                logger.warning(f"Model {self.model} not listed by Ollama (attempt {attempt})")
            except httpx.HTTPError as e:
                logger.debug(f"Ollama not reachable (attempt {attempt}): {e}")
            if attempt < attempts:
                time.sleep(poll_interval)

        self._set_state(ClassifierState.FAILED)
        logger.error(f"Model {self.model} unavailable, keyword fallback only")
        return False

    def load_in_background(self, attempts: int = 30, poll_interval: float = 2.0) -> threading.Thread:
        """Run ``load`` on a daemon thread."""
        thread = threading.Thread(
            target=self.load,
            kwargs={"attempts": attempts, "poll_interval": poll_interval},
            name="classifier-loader",
            daemon=True,
        )
        thread.start()
        return thread

    def classify(self, text: str, rules: Sequence[Rule]) -> Optional[int]:
        """
        Ask the model which rule matches ``text``.

        Returns:
            0-based rule index or None for no match

        Raises:
            ClassifierError: If the model is not ready or the request failed
        """
        if not rules:
            logger.debug("No rules provided for inference")
            return None
        if not self.is_ready():
            raise ClassifierError("Model not loaded")

        prompt = build_prompt(rules, text)
        logger.debug(f"Running inference with {len(rules)} rules, prompt length: {len(prompt)}")

        try:
            response = self.client.post(
                "/api/generate",
                json={
                    "model": self.model,
                    "system": SYSTEM_PROMPT,
                    "prompt": prompt,
                    "stream": False,
                    "options": {"temperature": 0},
                },
            )
            response.raise_for_status()
            answer = response.json().get("response", "")
        except (httpx.HTTPError, ValueError) as e:
            raise ClassifierError(f"Inference failed: {e}") from e

        index = parse_response(answer, len(rules))
        if index is None:
            logger.debug(f"No rule matched (model answered {answer.strip()[:20]!r})")
        else:
            logger.info(f"Matched rule: {rules[index].natural_prompt}")
        return index
