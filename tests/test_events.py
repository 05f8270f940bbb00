"""
Tests for the POST /api/events endpoint.

Tests cover:
- call_started (201) and call_ended (200) happy paths
- Duplicate call ids (409 with DUPLICATE_CALL_ID)
- Validation errors (400)
- Unknown calls (404), already ended calls (409)
- Missing or invalid API key (401)
"""

import asyncio
import json
import logging

import pytest
from fastapi import Depends

from calltracker.ingestion import EventIngestionService
from calltracker.logging_utils import CallTrackerJsonFormatter, request_id_ctx
from calltracker.main import app, get_call_store, get_ingestion_service
from calltracker.storage import CallStore


def post_event(client, **fields):
    """Send an event body built from keyword arguments ('from_' maps to 'from')."""
    body = {("from" if key == "from_" else key): value for key, value in fields.items()}
    return client.post(
        "/api/events",
        content=json.dumps(body),
        headers={"Content-Type": "application/json"},
    )


def start_call(client, call_id="c1", started="2025-01-15T10:00:00Z"):
    response = post_event(
        client,
        call_id=call_id,
        from_="+14155550100",
        to="+919876543210",
        started=started,
        type="call_started",
    )
    assert response.status_code == 201
    return response


def end_call(client, call_id="c1", ended="2025-01-15T10:01:30Z"):
    return post_event(
        client,
        call_id=call_id,
        from_="+14155550100",
        to="+919876543210",
        ended=ended,
        type="call_ended",
    )


class TestCallStarted:

    def test_create_call_success(self, client):
        response = start_call(client)
        assert response.json() == {"message": "Call started event logged"}

        call = client.get("/api/calls/c1").json()
        assert call["status"] == "started"
        assert call["from"] == "+14155550100"
        assert call["to"] == "+919876543210"
        assert call["duration"] is None

    def test_start_time_optional(self, client):
        response = post_event(client, call_id="c1", from_="14155550100", to="919876543210", type="call_started")
        assert response.status_code == 201
        assert client.get("/api/calls/c1").json()["started"] is not None

    def test_duplicate_call_id(self, client):
        start_call(client)

        response = post_event(
            client, call_id="c1", from_="+15550000000", to="+15551111111", type="call_started"
        )

        assert response.status_code == 409
        data = response.json()
        assert data["code"] == "DUPLICATE_CALL_ID"
        assert data["error"] == "A call with this ID already exists."
        assert "details" in data

    def test_invalid_phone_number(self, client):
        response = post_event(
            client, call_id="c1", from_="+1 (415) 555-0100", to="+919876543210", type="call_started"
        )
        assert response.status_code == 400
        assert "Invalid phone number format" in response.json()["error"]

    def test_missing_to(self, client):
        response = post_event(client, call_id="c1", from_="+14155550100", type="call_started")
        assert response.status_code == 400
        assert response.json()["error"] == "Missing required fields"

    def test_missing_call_id(self, client):
        response = post_event(client, from_="+14155550100", to="+919876543210", type="call_started")
        assert response.status_code == 400

    def test_phone_number_too_long(self, client):
        response = post_event(
            client, call_id="c1", from_="+1234567890123456", to="+919876543210", type="call_started"
        )
        assert response.status_code == 400
        assert "too long" in response.json()["error"]

    def test_invalid_start_time(self, client):
        response = post_event(
            client, call_id="c1", from_="+14155550100", to="+919876543210",
            started="yesterday", type="call_started",
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid date format"


class TestCallEnded:

    def test_end_call_success(self, client):
        start_call(client)

        response = end_call(client)

        assert response.status_code == 200
        assert response.json() == {"message": "Call ended event logged", "duration": "1m 30s"}

        call = client.get("/api/calls/c1").json()
        assert call["status"] == "ended"
        assert call["duration"] == 90

    def test_end_without_phone_numbers(self, client):
        start_call(client)
        response = post_event(client, call_id="c1", ended="2025-01-15T10:00:05Z", type="call_ended")
        assert response.status_code == 200
        assert response.json()["duration"] == "5s"

    def test_unknown_call(self, client):
        response = end_call(client, call_id="missing")
        assert response.status_code == 404
        assert response.json()["error"] == "Call not found"

    def test_already_ended(self, client):
        start_call(client)
        assert end_call(client).status_code == 200

        response = end_call(client, ended="2025-01-15T10:05:00Z")

        assert response.status_code == 409
        assert response.json()["code"] == "ALREADY_ENDED"
        assert client.get("/api/calls/c1").json()["duration"] == 90

    def test_end_before_start(self, client):
        start_call(client)
        response = end_call(client, ended="2025-01-15T09:00:00Z")
        assert response.status_code == 400
        assert "End time cannot be before start time" in response.json()["error"]

    def test_duration_over_one_hour(self, client):
        start_call(client)

        response = end_call(client, ended="2025-01-15T12:00:00Z")

        assert response.status_code == 400
        assert response.json()["duration"] == "2h 0s"
        assert "Calls cannot exceed 1 hour." in response.json()["error"]
        assert client.get("/api/calls/c1").json()["status"] == "started"

    def test_missing_end_time(self, client):
        start_call(client)
        response = post_event(client, call_id="c1", type="call_ended")
        assert response.status_code == 400


class TestRequestShape:

    def test_invalid_json(self, client):
        response = client.post(
            "/api/events", content="not valid json", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JSON"

    def test_json_array_body(self, client):
        response = client.post("/api/events", content="[]", headers={"Content-Type": "application/json"})
        assert response.status_code == 400

    def test_wrong_field_type(self, client):
        response = post_event(client, call_id=["c1"], from_="+14155550100", to="+919876543210", type="call_started")
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request body"

    @pytest.mark.parametrize("event_type", ["call_paused", None])
    def test_invalid_type(self, client, event_type):
        response = post_event(client, call_id="c1", from_="+14155550100", to="+919876543210", type=event_type)
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid type provided"

    def test_response_includes_request_id_header(self, client):
        response = start_call(client)
        assert "x-request-id" in response.headers

    def test_log_lines_carry_request_id(self):
        formatter = CallTrackerJsonFormatter("%(ts)s %(level)s %(name)s %(message)s")
        record = logging.LogRecord("calltracker", logging.INFO, __file__, 1, "Event received", None, None)

        token = request_id_ctx.set("req-42")
        try:
            line = json.loads(formatter.format(record))
        finally:
            request_id_ctx.reset(token)

        assert line["request_id"] == "req-42"
        assert line["level"] == "INFO"

    def test_event_handled_outside_event_loop(self, client):
        seen = []

        class RecordingService(EventIngestionService):
            def handle_event(self, event):
                try:
                    asyncio.get_running_loop()
                    seen.append("event loop")
                except RuntimeError:
                    seen.append("worker thread")
                return super().handle_event(event)

        def recording_service(store: CallStore = Depends(get_call_store)):
            return RecordingService(store)

        app.dependency_overrides[get_ingestion_service] = recording_service

        start_call(client)
        assert end_call(client).status_code == 200
        assert seen == ["worker thread", "worker thread"]


class TestAuthentication:

    def test_missing_api_key(self, client):
        del client.headers["X-API-Key"]
        response = post_event(client, call_id="c1", from_="+14155550100", to="+919876543210", type="call_started")
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_wrong_api_key(self, client):
        client.headers["X-API-Key"] = "wrong"
        response = post_event(client, call_id="c1", from_="+14155550100", to="+919876543210", type="call_started")
        assert response.status_code == 401
