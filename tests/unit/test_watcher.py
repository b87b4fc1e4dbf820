import time

import pytest

from domains.file_ingest.collectors.watcher import FolderWatcher, InboxEventHandler
from domains.file_ingest.errors import WatcherSetupError


class Event:
    def __init__(self, src, dest=None, is_directory=False):
        self.src_path = str(src)
        self.dest_path = str(dest) if dest else None
        self.is_directory = is_directory


def test_burst_of_events_publishes_one_change(inbox):
    watcher = FolderWatcher(inbox, debounce_interval=0.1)

    for _ in range(20):
        watcher.notify()
        time.sleep(0.005)

    assert watcher.wait_for_change(timeout=2.0)
    assert not watcher.wait_for_change(timeout=0.3)


def test_channel_holds_at_most_one_signal(inbox):
    watcher = FolderWatcher(inbox, debounce_interval=0.01)

    watcher._publish()
    watcher._publish()

    assert watcher.changes.qsize() == 1


def test_start_on_missing_directory_raises(tmp_path):
    watcher = FolderWatcher(tmp_path / "missing")

    with pytest.raises(WatcherSetupError):
        watcher.start()
    assert not watcher.is_monitoring


def test_stop_is_idempotent_and_restartable(inbox):
    watcher = FolderWatcher(inbox, debounce_interval=0.05)
    watcher.stop()

    watcher.start()
    assert watcher.is_monitoring
    watcher.stop()
    watcher.stop()
    assert not watcher.is_monitoring

    watcher.start()
    assert watcher.is_monitoring
    watcher.stop()


def test_stop_cancels_pending_debounce(inbox):
    watcher = FolderWatcher(inbox, debounce_interval=0.2)
    watcher.notify()
    watcher.stop()

    assert not watcher.wait_for_change(timeout=0.4)


def test_new_file_is_detected(inbox):
    watcher = FolderWatcher(inbox, debounce_interval=0.05)
    watcher.start()
    try:
        (inbox / "invoice.pdf").write_text("invoice")
        assert watcher.wait_for_change(timeout=5.0)
    finally:
        watcher.stop()


def test_handler_filters_events(inbox):
    calls = []
    handler = InboxEventHandler(lambda: calls.append(1), ignored_names={"_ClerkReview"})

    handler.on_created(Event(inbox / "a.pdf"))
    handler.on_created(Event(inbox / "_ClerkReview"))
    handler.on_modified(Event(inbox, is_directory=True))
    handler.on_modified(Event(inbox / "a.pdf"))
    handler.on_moved(Event(inbox / "a.pdf.part", inbox / "a.pdf"))
    handler.on_deleted(Event(inbox / "a.pdf"))

    assert len(calls) == 3
