"""Tests for overdue_reminders.bulk_send -- the batch submission contract.

Covers:
- 405 for non-POST, 400 for missing fields and unsupported providers
- 200 when every message is accepted, 207 on any failure
- Index-aligned results with error text
- 500 for unexpected failures outside a single send
- The Flask app wiring (test client)
"""

import pytest

from overdue_reminders.bulk_send import (
    MISSING_FIELDS_ERROR,
    UNSUPPORTED_PROVIDER_ERROR,
    create_app,
    handle_bulk_send,
)
from overdue_reminders.config import DispatchSettings, RemindersConfig
from overdue_reminders.transports import TransportError, get_transport


class RecordingTransport:
    """Accepts everything except recipients listed in ``reject``."""

    def __init__(self, reject=()):
        self.reject = set(reject)
        self.sent = []

    def send(self, message):
        if message.to in self.reject:
            raise TransportError(f"Graph sendMail failed (400): bad {message.to}", 400, "bad")
        self.sent.append(message)


def make_factory(transport, seen=None):
    def factory(provider, token, settings):
        if seen is not None:
            seen.append((provider, token, settings))
        # unknown providers still go through the real registry check
        if provider not in ("microsoft", "google"):
            return get_transport(provider, token, settings)
        return transport
    return factory


def body(messages=None, provider="microsoft", token="tok"):
    return {
        "user": {"provider": provider, "accessToken": token},
        "messages": messages if messages is not None else [
            {"to": "a@x.test", "subject": "S", "text": "T"},
            {"to": "b@x.test", "subject": "S", "text": "T", "replyTo": "ar@us.test"},
        ],
    }


class TestHandleBulkSend:

    @pytest.mark.parametrize("method", ["GET", "PUT", "DELETE"])
    def test_post_only(self, method):
        assert handle_bulk_send(method, body()) == (405, {"ok": False, "error": "POST only"})

    @pytest.mark.parametrize("payload", [
        None,
        {},
        "not an object",
        {"user": {"provider": "microsoft"}, "messages": [{"to": "a"}]},
        {"user": {"accessToken": "t"}, "messages": [{"to": "a"}]},
        {"user": {"provider": "microsoft", "accessToken": "t"}},
        {"user": {"provider": "microsoft", "accessToken": "t"}, "messages": []},
        {"user": {"provider": "microsoft", "accessToken": "t"}, "messages": {"to": "a"}},
    ])
    def test_missing_fields(self, payload):
        status, data = handle_bulk_send("POST", payload)
        assert status == 400
        assert data == {"ok": False, "error": MISSING_FIELDS_ERROR}

    def test_unsupported_provider(self):
        status, data = handle_bulk_send("POST", body(provider="yahoo"))
        assert status == 400
        assert data["error"] == UNSUPPORTED_PROVIDER_ERROR

    def test_all_ok(self):
        transport = RecordingTransport()
        seen = []
        status, data = handle_bulk_send(
            "POST", body(), transport_factory=make_factory(transport, seen),
        )
        assert status == 200
        assert data == {"ok": True, "results": [{"index": 0, "ok": True}, {"index": 1, "ok": True}]}
        assert seen[0][:2] == ("microsoft", "tok")
        assert {m.to for m in transport.sent} == {"a@x.test", "b@x.test"}
        assert [m.reply_to for m in transport.sent if m.to == "b@x.test"] == ["ar@us.test"]

    def test_partial_failure_is_207(self):
        transport = RecordingTransport(reject={"b@x.test"})
        status, data = handle_bulk_send("post", body(), transport_factory=make_factory(transport))
        assert status == 207
        assert data["ok"] is False
        assert data["results"][0] == {"index": 0, "ok": True}
        assert data["results"][1]["ok"] is False
        assert "bad b@x.test" in data["results"][1]["error"]

    def test_malformed_message_fails_only_its_index(self):
        transport = RecordingTransport()
        messages = [{"to": "a@x.test", "subject": "S", "text": "T"}, "junk"]
        status, data = handle_bulk_send(
            "POST", body(messages), transport_factory=make_factory(transport),
        )
        assert status == 207
        assert [r["ok"] for r in data["results"]] == [True, False]

    def test_concurrency_from_settings(self):
        transport = RecordingTransport()
        settings = DispatchSettings(concurrency_limit=1)
        messages = [{"to": f"c{i}@x.test", "subject": "S", "text": "T"} for i in range(6)]
        status, data = handle_bulk_send(
            "POST", body(messages), settings=settings, transport_factory=make_factory(transport),
        )
        assert status == 200
        # a single worker sends in order
        assert [m.to for m in transport.sent] == [f"c{i}@x.test" for i in range(6)]

    def test_unexpected_error_is_500(self):
        def factory(provider, token, settings):
            raise RuntimeError("token store offline")

        status, data = handle_bulk_send("POST", body(), transport_factory=factory)
        assert status == 500
        assert data == {"ok": False, "error": "token store offline"}


class TestFlaskApp:

    @pytest.fixture
    def transport(self):
        return RecordingTransport(reject={"b@x.test"})

    @pytest.fixture
    def client(self, transport):
        app = create_app(RemindersConfig(), transport_factory=make_factory(transport))
        app.config["TESTING"] = True
        return app.test_client()

    def test_healthz(self, client):
        resp = client.get("/healthz")
        assert resp.status_code == 200
        assert resp.get_json() == {"ok": True}

    def test_get_is_405(self, client):
        resp = client.get("/api/bulk-send")
        assert resp.status_code == 405
        assert resp.get_json() == {"ok": False, "error": "POST only"}

    def test_post(self, client):
        resp = client.post("/api/bulk-send", json=body())
        assert resp.status_code == 207
        data = resp.get_json()
        assert [r["ok"] for r in data["results"]] == [True, False]

    def test_post_without_json(self, client):
        resp = client.post("/api/bulk-send", data="nope", content_type="text/plain")
        assert resp.status_code == 400
