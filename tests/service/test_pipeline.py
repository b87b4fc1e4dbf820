"""
Service-level tests for the inbox pipeline.

Each test drives a real ClerkService over a temporary inbox, with a scripted
classifier and extractor standing in for Ollama and OCR, and checks what
lands on disk and in the activity log.
"""

import os
import threading
import time

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api import admin, health
from app.models.schemas import ActionStatus, ActionType, Rule
from domains.file_ingest.errors import WatcherSetupError

from conftest import FakeClassifier, FakeExtractor, drop_file


def wait_until(predicate, timeout=10.0, interval=0.05):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def invoices(tmp_path):
    return Rule(natural_prompt="invoice", target_path=str(tmp_path / "Documents" / "Invoices"))


@pytest.fixture
def receipts(tmp_path):
    return Rule(natural_prompt="receipt", target_path=str(tmp_path / "Documents" / "Receipts"))


def test_invoice_is_routed_and_logged_once(make_service, inbox, tmp_path):
    invoices = Rule(natural_prompt="invoices", target_path=str(tmp_path / "docs" / "Invoices"))
    service = make_service(
        rules=[invoices],
        classifier=FakeClassifier(answer=0),
        extractor=FakeExtractor("Invoice #123 Total Due"),
    )
    drop_file(inbox, "invoice_march.pdf", b"%PDF-1.4 invoice")

    assert service.manual_scan() == 1
    assert service.manual_scan() == 0

    destination = tmp_path / "docs" / "Invoices" / "invoice_march.pdf"
    assert destination.read_bytes() == b"%PDF-1.4 invoice"
    assert not (inbox / "invoice_march.pdf").exists()

    entries = service.activity.entries()
    assert len(entries) == 1
    assert entries[0].action is ActionType.MOVED
    assert entries[0].status is ActionStatus.SUCCESS
    assert entries[0].matched_rule_id == invoices.id
    assert entries[0].destination_path == str(destination)
    assert "FILENAME: invoice_march.pdf" in service.classifier.calls[0]


def test_unmatched_file_goes_to_review(make_service, inbox, invoices):
    service = make_service(rules=[invoices], classifier=FakeClassifier(answer=None))
    drop_file(inbox, "holiday.jpg")

    service.manual_scan()

    assert [p.name for p in service.review_files()] == ["holiday.jpg"]
    assert service.activity.entries()[-1].action is ActionType.REVIEWED
    # The review folder lives in the inbox but is never scanned as a file
    assert service.manual_scan() == 0


def test_duplicate_is_quarantined(make_service, inbox, invoices, tmp_path):
    service = make_service(rules=[invoices], classifier=FakeClassifier(answer=0))
    drop_file(tmp_path / "Documents" / "Invoices", "invoice.pdf", "same")
    drop_file(inbox, "invoice.pdf", "same")

    service.manual_scan()

    entry = service.activity.entries()[-1]
    assert entry.action is ActionType.QUARANTINED
    assert not (inbox / "invoice.pdf").exists()
    assert len(list((inbox / ".clerk_quarantine").iterdir())) == 1


def test_whitelisted_and_temporary_files_stay_put(make_service, inbox, invoices):
    service = make_service(rules=[invoices], classifier=FakeClassifier(answer=0))
    installer = drop_file(inbox, "Installer.dmg")
    partial = drop_file(inbox, "invoice.pdf.crdownload")

    service.manual_scan()
    service.manual_scan()

    assert installer.exists() and partial.exists()
    assert [e.action for e in service.activity.entries()] == [ActionType.WHITELISTED]


def test_no_rules_leaves_files_alone(make_service, inbox):
    service = make_service(classifier=FakeClassifier(answer=0))
    path = drop_file(inbox, "invoice.pdf")

    service.manual_scan()

    assert path.exists()
    assert service.activity.entries() == []
    assert service.classifier.calls == []


def test_process_file_is_idempotent(make_service, inbox, invoices):
    service = make_service(rules=[invoices], classifier=FakeClassifier(answer=0))
    path = drop_file(inbox, "notes.txt")

    # Simulate two triggers racing on the same version of the file
    service.registry.claim(path, path.stat().st_mtime)

    assert service.process_file(path) is None
    assert path.exists()


def test_retry_picks_up_file_once_ready(make_service, inbox, invoices, tmp_path):
    service = make_service(rules=[invoices], classifier=FakeClassifier(answer=0))
    fresh = drop_file(inbox, "invoice.pdf", age=0)

    service.manual_scan()
    assert service.retry_scheduler.is_pending(fresh)
    assert not service.retry_file(fresh)

    service.scanner.min_file_age = 0
    assert service.retry_file(fresh)
    assert (tmp_path / "Documents" / "Invoices" / "invoice.pdf").exists()
    assert not service.retry_scheduler.is_pending(fresh)


def test_abandoned_file_is_logged(make_service, inbox):
    service = make_service()
    path = drop_file(inbox, "stuck.pdf")

    for _ in range(5):
        service.retry_scheduler.enqueue(path)

    entry = service.activity.entries()[-1]
    assert entry.action is ActionType.ABANDONED
    assert entry.status is ActionStatus.FAILED
    assert path.exists()


def test_fallback_files_are_reclassified_when_model_is_ready(make_service, inbox, invoices, receipts, tmp_path):
    classifier = FakeClassifier(answer=1, ready=False)
    service = make_service(
        rules=[invoices, receipts],
        classifier=classifier,
        extractor=FakeExtractor("Invoice and receipt for March"),
        wait_for_model=False,
    )
    drop_file(inbox, "invoice.txt")

    service.manual_scan()

    fallback_location = tmp_path / "Documents" / "Invoices" / "invoice.txt"
    assert fallback_location.exists()
    assert len(service.fallbacks) == 1

    classifier.mark_ready()

    assert (tmp_path / "Documents" / "Receipts" / "invoice.txt").exists()
    assert not fallback_location.exists()
    assert len(service.fallbacks) == 0
    assert [e.action for e in service.activity.entries()] == [ActionType.MOVED, ActionType.MOVED]

    # Readiness is only announced on the transition
    classifier.mark_ready()
    assert len(service.activity.entries()) == 2


def test_model_ready_during_fallback_move_still_replays(make_service, inbox, invoices, receipts, tmp_path):
    classifier = FakeClassifier(answer=1, ready=False)
    service = make_service(
        rules=[invoices, receipts],
        classifier=classifier,
        extractor=FakeExtractor("Invoice and receipt for March"),
        wait_for_model=False,
    )
    # The model finishes loading after the move is logged but before the
    # fallback is remembered
    service.activity.add_listener(lambda entry: classifier.mark_ready())
    drop_file(inbox, "invoice.txt")

    service.manual_scan()

    assert (tmp_path / "Documents" / "Receipts" / "invoice.txt").exists()
    assert not (tmp_path / "Documents" / "Invoices" / "invoice.txt").exists()
    assert len(service.fallbacks) == 0


def test_classifier_error_while_ready_waits_for_next_transition(make_service, inbox, invoices):
    classifier = FakeClassifier(error=RuntimeError("HTTP 500"))
    service = make_service(rules=[invoices], classifier=classifier)
    drop_file(inbox, "invoice.txt")

    service.manual_scan()

    assert len(classifier.calls) == 1
    assert len(service.fallbacks) == 1
    assert [e.action for e in service.activity.entries()] == [ActionType.MOVED]


def test_concurrent_triggers_process_a_file_once(make_service, inbox, invoices, tmp_path):
    def slow_answer(text, rules):
        time.sleep(0.05)
        return 0

    service = make_service(rules=[invoices], classifier=FakeClassifier(answer=slow_answer))
    path = drop_file(inbox, "invoice.pdf")
    barrier = threading.Barrier(3)

    def trigger():
        barrier.wait()
        service.process_file(path)

    workers = [threading.Thread(target=trigger) for _ in range(3)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join(timeout=5)

    entries = service.activity.entries()
    assert len(entries) == 1
    assert entries[0].action is ActionType.MOVED
    assert len(service.classifier.calls) == 1
    assert [p.name for p in (tmp_path / "Documents" / "Invoices").iterdir()] == ["invoice.pdf"]


def test_retry_racing_scan_processes_file_once(make_service, inbox, invoices):
    service = make_service(rules=[invoices], classifier=FakeClassifier(answer=0))
    path = drop_file(inbox, "invoice.pdf")
    service.retry_scheduler.enqueue(path)
    barrier = threading.Barrier(2)

    def scan():
        barrier.wait()
        service.manual_scan()

    def retry():
        barrier.wait()
        service.retry_file(path)

    workers = [threading.Thread(target=scan), threading.Thread(target=retry)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join(timeout=5)

    assert len(service.activity.entries()) == 1
    assert not service.retry_scheduler.is_pending(path)


def test_undo_restores_and_does_not_resort(make_service, inbox, invoices):
    service = make_service(rules=[invoices], classifier=FakeClassifier(answer=0))
    drop_file(inbox, "invoice.pdf", "march")
    service.manual_scan()

    restored = service.undo_last()

    assert restored == inbox / "invoice.pdf"
    assert restored.read_text() == "march"
    assert service.manual_scan() == 0
    assert service.undo_last() is None


def test_monitoring_routes_new_files(make_service, inbox, invoices, tmp_path):
    service = make_service(rules=[invoices], classifier=FakeClassifier(answer=0), min_file_age=0)
    service.start_monitoring()
    assert service.status().monitoring

    staged = drop_file(tmp_path / "staging", "invoice_april.pdf", age=0)
    os.rename(staged, inbox / staged.name)

    destination = tmp_path / "Documents" / "Invoices" / "invoice_april.pdf"
    assert wait_until(destination.exists)
    assert wait_until(lambda: len(service.activity.entries()) == 1)

    service.stop_monitoring()
    assert not service.status().monitoring


def test_monitoring_missing_inbox_fails(make_service, tmp_path):
    service = make_service(watch_dir=tmp_path / "missing")

    with pytest.raises(WatcherSetupError):
        service.start_monitoring()
    assert not service.is_monitoring


# Control surface


@pytest.fixture
def client(make_service, invoices):
    service = make_service(rules=[invoices], classifier=FakeClassifier(answer=0))
    app = FastAPI()
    app.include_router(health.router, tags=["health"])
    app.include_router(admin.router, prefix="/admin", tags=["admin"])
    app.state.service = service
    return TestClient(app)


def test_api_scan_activity_and_undo(client, inbox, tmp_path):
    drop_file(inbox, "invoice.pdf")

    response = client.post("/admin/scan")
    assert response.status_code == 200
    assert response.json()["details"]["dispatched"] == 1

    activity = client.get("/admin/activity", params={"limit": 5}).json()
    assert [a["action"] for a in activity] == ["moved"]

    assert client.post("/admin/undo").status_code == 200
    assert (inbox / "invoice.pdf").exists()
    assert client.post("/admin/undo").status_code == 404


def test_api_rules_review_and_health(client):
    rules = client.get("/admin/rules").json()
    assert [r["natural_prompt"] for r in rules] == ["invoice"]
    assert client.post("/admin/rules/reload").json()["status"] == "reloaded"
    assert client.get("/admin/review").json()["files"] == []

    body = client.get("/health").json()
    assert body["status"] == "degraded"
    assert body["classifier_ready"] is True
    assert body["pipeline"]["rules"] == 1


def test_api_monitor_start_conflict(make_service, tmp_path):
    service = make_service(watch_dir=tmp_path / "missing")
    app = FastAPI()
    app.include_router(admin.router, prefix="/admin")
    app.state.service = service

    response = TestClient(app).post("/admin/monitor/start")

    assert response.status_code == 409
