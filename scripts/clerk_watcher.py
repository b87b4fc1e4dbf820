#!/usr/bin/env python3
"""Headless inbox watcher.

Runs the full pipeline without the HTTP control surface: watches the inbox,
rescans periodically, retries locked files and routes everything by the
rules in ``rules.json``. ``--once`` performs a single scan and exits.
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from loguru import logger

from app.utils.classifier import OllamaClassifier
from app.utils.config import Settings
from domains.file_ingest.errors import WatcherSetupError
from domains.file_ingest.service import ClerkService


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments."""

    parser = argparse.ArgumentParser(
        description="Watch an inbox folder and route new files by rule.",
    )
    parser.add_argument(
        "--watch-dir",
        type=Path,
        default=None,
        help="Folder to watch (default: WATCH_DIR or ~/Downloads).",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Folder holding rules.json and activity_logs.json.",
    )
    parser.add_argument(
        "--no-ai",
        action="store_true",
        help="Use keyword matching only; never contact the model.",
    )
    parser.add_argument(
        "--no-wait",
        action="store_true",
        help="Do not wait for the model; fall back at once and re-classify later.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Scan once, process ready files and exit.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level (default: LOG_LEVEL or INFO).",
    )

    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> Settings:
    """Environment settings with CLI overrides applied."""

    overrides = {}
    if args.watch_dir is not None:
        overrides["watch_dir"] = args.watch_dir
    if args.data_dir is not None:
        overrides["data_dir"] = args.data_dir
    if args.no_ai:
        overrides["ai_enabled"] = False
    if args.no_wait:
        overrides["wait_for_model"] = False
    if args.log_level:
        overrides["log_level"] = args.log_level
    return Settings(**overrides)


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for the CLI script."""

    args = parse_args(argv)
    settings = build_settings(args)

    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        level=settings.log_level.upper(),
    )

    service = ClerkService.from_settings(settings)
    if settings.ai_enabled and isinstance(service.classifier, OllamaClassifier):
        service.classifier.load_in_background()

    if args.once:
        dispatched = service.manual_scan(wait_for_completion=True)
        logger.info(f"Processed {dispatched} file(s)")
        service.shutdown()
        return 0

    try:
        service.start_monitoring()
    except WatcherSetupError as e:
        logger.error(str(e))
        return 1

    stop_event = threading.Event()

    def _signal_handler(signum, frame):  # noqa: D401
        logger.info(f"Received signal {signum}, shutting down.")
        stop_event.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        while not stop_event.is_set():
            stop_event.wait(1.0)
    finally:
        service.shutdown()

    logger.info("Inbox watcher stopped.")
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI bridge
    sys.exit(main())
