"""
StatementWatch - API Tests
==========================
Exercises the FastAPI routes against a fresh in-memory store per test.
"""

import pytest
from datetime import date, datetime

import sys
sys.path.insert(0, './backend')

from fastapi.testclient import TestClient

from reminder_constants import DocumentType, NotificationChannelType
from models import make_missing_id, make_pattern_id
from notifications import build_notification_channels
from calendar_integration import InMemoryTaxCalendar
from main import app, get_calendar, get_channels, get_clock, get_store
from store import InMemoryReminderStore


NOW = datetime(2026, 2, 28, 9, 0)

MONTHLY_UPLOADS = [
    {"document_type": "bank_statement", "source": "Westpac", "upload_date": d}
    for d in ["2025-08-15", "2025-09-15", "2025-10-15", "2025-11-15", "2025-12-15", "2026-01-15"]
]

PATTERN_ID = make_pattern_id(DocumentType.BANK_STATEMENT, "Westpac")
MISSING_ID = make_missing_id(PATTERN_ID, date(2026, 2, 15))


@pytest.fixture
def store():
    return InMemoryReminderStore()


@pytest.fixture
def channels():
    return build_notification_channels([NotificationChannelType.APP])


@pytest.fixture
def calendar():
    return InMemoryTaxCalendar()


@pytest.fixture
def client(store, channels, calendar):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_clock] = lambda: (lambda: NOW)
    app.dependency_overrides[get_channels] = lambda: channels
    app.dependency_overrides[get_calendar] = lambda: calendar
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def analysed(client):
    """Client with one overdue monthly bank statement on record."""
    client.post("/api/uploads", json={"uploads": MONTHLY_UPLOADS})
    response = client.post("/api/upload-patterns", json={"as_of_date": "2026-02-28"})
    assert response.status_code == 200
    return client


class TestHealth:

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "StatementWatch"

    def test_health(self, client):
        body = client.get("/api/health").json()
        assert body["status"] == "healthy"
        assert body["components"]["store"] == "InMemoryReminderStore"
        assert body["last_analysis"] is None


class TestUploadsAndPatterns:

    def test_record_and_list_uploads(self, client):
        response = client.post("/api/uploads", json={"uploads": MONTHLY_UPLOADS})
        assert response.json()["recorded"] == 6

        uploads = client.get("/api/uploads", params={"type": "bank_statement"}).json()
        assert len(uploads) == 6
        assert uploads[0]["upload_date"] == "2025-08-15"

    def test_invalid_upload_rejected(self, client):
        response = client.post("/api/uploads", json={"uploads": [
            {"document_type": "bank_statement", "source": "Westpac", "upload_date": "not-a-date"}
        ]})
        assert response.status_code == 422

    def test_analysis_pass(self, client):
        client.post("/api/uploads", json={"uploads": MONTHLY_UPLOADS})
        body = client.post("/api/upload-patterns", json={"as_of_date": "2026-02-28"}).json()

        assert body["run"]["patterns_detected"] == 1
        assert body["run"]["missing_detected"] == 1
        assert body["patterns"][0]["frequency"] == "monthly"
        assert body["missing_documents"][0]["days_overdue"] == 13

    def test_analysis_of_posted_uploads(self, client):
        body = client.post("/api/upload-patterns", json={
            "uploads": MONTHLY_UPLOADS,
            "as_of_date": "2026-02-10",
        }).json()
        assert body["run"]["patterns_detected"] == 1
        assert body["missing_documents"] == []

    def test_latest_analysis(self, client):
        assert client.get("/api/upload-patterns/analysis").status_code == 404

        client.post("/api/uploads", json={"uploads": MONTHLY_UPLOADS})
        client.post("/api/upload-patterns", json={"as_of_date": "2026-02-28"})
        run = client.get("/api/upload-patterns/analysis").json()
        assert run["status"] == "completed"

    def test_get_and_delete_pattern(self, analysed):
        pattern = analysed.get(f"/api/upload-patterns/{PATTERN_ID}").json()
        assert pattern["frequency_label"] == "Monthly"
        assert pattern["document_type_label"] == "Bank Statement"

        assert analysed.delete(f"/api/upload-patterns/{PATTERN_ID}").status_code == 200
        assert analysed.get(f"/api/upload-patterns/{PATTERN_ID}").status_code == 404
        assert analysed.get("/api/missing-documents").json() == []

    def test_list_patterns_by_type(self, analysed):
        assert analysed.get("/api/upload-patterns", params={"type": "bank_statement"}).json()["count"] == 1
        assert analysed.get("/api/upload-patterns", params={"type": "payg_summary"}).json()["count"] == 0


class TestMissingDocuments:

    def test_list_active(self, analysed):
        documents = analysed.get("/api/missing-documents").json()
        assert [doc["id"] for doc in documents] == [MISSING_ID]
        assert documents[0]["is_missing"] is True

    def test_dismiss_then_reopen_conflicts(self, analysed):
        response = analysed.patch(f"/api/missing-documents/{MISSING_ID}", json={"status": "dismissed"})
        assert response.status_code == 200
        assert response.json()["status"] == "dismissed"

        response = analysed.patch(f"/api/missing-documents/{MISSING_ID}", json={"status": "pending"})
        assert response.status_code == 409

        dismissed = analysed.get("/api/missing-documents", params={"status": "dismissed"}).json()
        assert len(dismissed) == 1

    def test_unknown_document(self, client):
        response = client.patch("/api/missing-documents/nope", json={"status": "dismissed"})
        assert response.status_code == 404

    def test_detect_endpoint(self, analysed):
        documents = analysed.post("/api/missing-documents/detect", json={"as_of_date": "2026-02-18"}).json()
        assert len(documents) == 1
        assert documents[0]["is_missing"] is False

    def test_detect_resolves_arrived_document(self, analysed):
        analysed.post("/api/uploads", json={"uploads": [
            {"document_type": "bank_statement", "source": "Westpac", "upload_date": "2026-03-01"}
        ]})
        analysed.post("/api/missing-documents/detect", json={"as_of_date": "2026-03-02"})

        assert analysed.get("/api/missing-documents").json() == []
        uploaded = analysed.get("/api/missing-documents", params={"status": "uploaded"}).json()
        assert [doc["id"] for doc in uploaded] == [MISSING_ID]
        assert analysed.get("/api/reminders").json()["total_reminders"] == 0


class TestReminderSettings:

    def test_defaults_for_every_type(self, client):
        settings = client.get("/api/reminder-settings").json()
        assert {s["document_type"] for s in settings} == {
            "bank_statement", "dividend_statement", "payg_summary", "other"
        }

    def test_update(self, client):
        response = client.put("/api/reminder-settings/bank_statement", json={"max_reminders": 5})
        assert response.json()["max_reminders"] == 5
        assert client.get("/api/reminder-settings/bank_statement").json()["max_reminders"] == 5

    def test_unknown_type(self, client):
        assert client.get("/api/reminder-settings/tax_return").status_code == 422


class TestReminders:

    def test_list_reminders(self, analysed):
        body = analysed.get("/api/reminders").json()
        assert body["total_reminders"] == 1
        reminder = body["reminders"][0]
        assert reminder["reminder_type"] == "follow_up"
        assert reminder["urgency"] == "critical"

    def test_list_grouped_by_urgency(self, analysed):
        body = analysed.get("/api/reminders", params={"group_by": "urgency"}).json()
        assert len(body["groups"]["critical"]) == 1
        assert body["groups"]["low"] == []

    def test_process(self, analysed):
        body = analysed.post("/api/reminders/process", json={"channels": ["app"]}).json()
        assert body["processed"]["sent"] == 1
        assert body["processed"]["by_channel"]["app"] == 1

        document = analysed.get("/api/missing-documents").json()[0]
        assert document["status"] == "reminded"

    def test_process_without_body(self, analysed):
        assert analysed.post("/api/reminders/process").json()["processed"]["sent"] == 1

    def test_listing_leaves_calendar_and_outbox_untouched(self, analysed, channels, calendar):
        analysed.get("/api/reminders")
        assert calendar.list_deadlines() == []
        assert channels[NotificationChannelType.APP].outbox == []

    def test_process_mirrors_and_delivers(self, analysed, channels, calendar):
        analysed.post("/api/reminders/process", json={"channels": ["app"]})
        assert [d.metadata["missing_document_id"] for d in calendar.list_deadlines()] == [MISSING_ID]
        assert [r.missing_document_id for r in channels[NotificationChannelType.APP].outbox] == [MISSING_ID]

    def test_each_client_gets_fresh_transports(self, client, channels, calendar):
        assert channels[NotificationChannelType.APP].outbox == []
        assert calendar.list_deadlines() == []
        assert client.get("/api/health").json()["components"]["channels"] == ["app"]


class TestExpectedDocuments:

    def test_lookahead(self, client):
        uploads = [
            {"document_type": "bank_statement", "source": "ANZ", "upload_date": d}
            for d in ["2025-09-05", "2025-10-05", "2025-11-05", "2025-12-05", "2026-01-05", "2026-02-05"]
        ]
        client.post("/api/uploads", json={"uploads": uploads})
        client.post("/api/upload-patterns", json={"as_of_date": "2026-02-28"})

        body = client.get("/api/expected-documents", params={"days": 30}).json()
        assert body["count"] == 1
        document = body["documents"][0]
        assert document["estimated_arrival_date"] == date(2026, 3, 8).isoformat()
        assert document["days_until_expected"] == 8
        assert document["expected_label"] == "8 Mar"

    def test_short_window_is_empty(self, client):
        assert client.get("/api/expected-documents", params={"days": 3}).json()["count"] == 0
