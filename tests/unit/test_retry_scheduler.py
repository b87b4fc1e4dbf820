from pathlib import Path

from domains.file_ingest.collectors.retry import RetryScheduler


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def make_scheduler(clock, abandoned=None):
    return RetryScheduler(
        base_delay=5,
        max_delay=60,
        max_attempts=5,
        tick_interval=0.05,
        clock=clock,
        on_abandon=(lambda path, attempts: abandoned.append((path, attempts))) if abandoned is not None else None,
    )


def test_backoff_doubles_then_caps():
    scheduler = make_scheduler(FakeClock())

    assert [scheduler.delay_for(n) for n in range(1, 7)] == [5, 10, 20, 40, 60, 60]


def test_enqueue_bumps_attempts_and_drops_at_cap(tmp_path):
    clock = FakeClock()
    abandoned = []
    scheduler = make_scheduler(clock, abandoned)
    path = tmp_path / "locked.pdf"

    delays = []
    for _ in range(4):
        pending = scheduler.enqueue(path)
        delays.append(pending.next_retry - clock.now)

    assert delays == [5, 10, 20, 40]
    assert scheduler.get(path).attempt_count == 4

    assert scheduler.enqueue(path) is None
    assert not scheduler.is_pending(path)
    assert abandoned == [(path, 5)]

    # A fresh scan starts counting again
    assert scheduler.enqueue(path).attempt_count == 1


def test_tick_retries_only_due_files(tmp_path):
    clock = FakeClock()
    scheduler = make_scheduler(clock)
    path = tmp_path / "report.pdf"
    path.write_text("x")
    attempted = []

    scheduler._on_retry = lambda p: attempted.append(p) or True
    scheduler.enqueue(path)

    assert scheduler.tick() == 0
    clock.advance(5)
    assert scheduler.tick() == 1
    assert attempted == [path]
    assert scheduler.pending_count == 0


def test_tick_failure_reschedules_with_longer_delay(tmp_path):
    clock = FakeClock()
    scheduler = make_scheduler(clock)
    path = tmp_path / "report.pdf"
    path.write_text("x")

    scheduler._on_retry = lambda p: False
    scheduler.enqueue(path)
    clock.advance(5)
    scheduler.tick()

    pending = scheduler.get(path)
    assert pending.attempt_count == 2
    assert pending.next_retry == clock.now + 10


def test_tick_counts_callback_error_as_failure(tmp_path):
    clock = FakeClock()
    scheduler = make_scheduler(clock)
    path = tmp_path / "report.pdf"
    path.write_text("x")

    def explode(p: Path) -> bool:
        raise RuntimeError("boom")

    scheduler._on_retry = explode
    scheduler.enqueue(path)
    clock.advance(5)

    assert scheduler.tick() == 1
    assert scheduler.get(path).attempt_count == 2


def test_tick_drops_missing_files_silently(tmp_path):
    clock = FakeClock()
    abandoned = []
    scheduler = make_scheduler(clock, abandoned)
    path = tmp_path / "gone.pdf"
    calls = []

    scheduler._on_retry = lambda p: calls.append(p) or True
    scheduler.enqueue(path)
    clock.advance(5)

    assert scheduler.tick() == 0
    assert calls == []
    assert scheduler.pending_count == 0
    assert abandoned == []


def test_stop_keeps_pending_files(tmp_path):
    scheduler = make_scheduler(FakeClock())
    path = tmp_path / "a.pdf"
    scheduler.enqueue(path)

    scheduler.start(lambda p: True)
    assert scheduler.is_running
    scheduler.stop()
    scheduler.stop()

    assert not scheduler.is_running
    assert scheduler.is_pending(path)


def test_snapshot_orders_by_next_retry(tmp_path):
    clock = FakeClock()
    scheduler = make_scheduler(clock)
    first, second = tmp_path / "a", tmp_path / "b"

    scheduler.enqueue(first)
    scheduler.enqueue(first)
    scheduler.enqueue(second)

    assert [p.path for p in scheduler.snapshot()] == [second, first]
