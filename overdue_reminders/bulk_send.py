"""
Overdue Reminders -- Batch Submission Endpoint

HTTP contract for sending a batch of reminders through the signed-in
user's mailbox:

    POST /api/bulk-send
    {"user": {"provider": "microsoft"|"google", "accessToken": "..."},
     "messages": [{"to", "subject", "text", "replyTo"?}, ...]}

    200 {"ok": true,  "results": [{"index", "ok"}, ...]}       all accepted
    207 {"ok": false, "results": [{"index", "ok", "error"?}]}  some failed
    400 {"ok": false, "error": ...}                            bad request
    405 {"ok": false, "error": "POST only"}
    500 {"ok": false, "error": ...}                            unexpected

``handle_bulk_send`` holds the whole contract and is framework-free;
``create_app`` wraps it in a small Flask app.

Usage:
    flask --app overdue_reminders.bulk_send:create_app run
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from flask import Flask, jsonify, request

from .config import DispatchSettings, RemindersConfig, get_config
from .dispatcher import all_ok, dispatch
from .models import OutboundMessage
from .transports import Transport, UnsupportedProviderError, get_transport

logger = logging.getLogger(__name__)

MISSING_FIELDS_ERROR = "Missing user/provider/accessToken or messages"
UNSUPPORTED_PROVIDER_ERROR = "Unsupported provider"

TransportFactory = Callable[[str, str, DispatchSettings], Transport]


def _error(status: int, message: str) -> tuple[int, dict[str, Any]]:
    return status, {"ok": False, "error": message}


def handle_bulk_send(
    method: str,
    body: Any,
    *,
    settings: DispatchSettings | None = None,
    transport_factory: TransportFactory | None = None,
) -> tuple[int, dict[str, Any]]:
    """Validate a batch request, dispatch it and build the response.

    Args:
        method: HTTP method of the request.
        body: Parsed JSON body (anything; validated here).
        settings: Concurrency limit, endpoints and timeout.
        transport_factory: ``(provider, access_token, settings) -> Transport``.
            Defaults to :func:`transports.get_transport`.

    Returns:
        ``(status_code, payload)``.
    """
    if method.upper() != "POST":
        return _error(405, "POST only")

    settings = settings or DispatchSettings()
    factory = transport_factory or get_transport

    try:
        body = body if isinstance(body, dict) else {}
        user = body.get("user")
        messages = body.get("messages")
        if (
            not isinstance(user, dict)
            or not user.get("provider")
            or not user.get("accessToken")
            or not isinstance(messages, list)
            or not messages
        ):
            return _error(400, MISSING_FIELDS_ERROR)

        try:
            transport = factory(user["provider"], user["accessToken"], settings)
        except UnsupportedProviderError:
            logger.warning("Rejected batch for unsupported provider %r", user["provider"])
            return _error(400, UNSUPPORTED_PROVIDER_ERROR)

        def send(raw: Any) -> None:
            # a malformed item fails only its own index
            transport.send(OutboundMessage.from_dict(raw))

        results = dispatch(messages, settings.concurrency_limit, send)
        ok = all_ok(results)
        return (200 if ok else 207), {"ok": ok, "results": [r.to_dict() for r in results]}

    except Exception as exc:
        logger.exception("Bulk send failed")
        return _error(500, str(exc) or type(exc).__name__)


# ---------------------------------------------------------------------------
# Flask app
# ---------------------------------------------------------------------------

def create_app(
    config: RemindersConfig | None = None,
    transport_factory: TransportFactory | None = None,
) -> Flask:
    """Flask app exposing :func:`handle_bulk_send` at ``/api/bulk-send``."""
    cfg = config or get_config()
    app = Flask(__name__)

    @app.route(
        "/api/bulk-send",
        methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    )
    def bulk_send():
        body = request.get_json(silent=True) if request.method == "POST" else None
        status, payload = handle_bulk_send(
            request.method,
            body,
            settings=cfg.dispatch,
            transport_factory=transport_factory,
        )
        return jsonify(payload), status

    @app.route("/healthz")
    def healthz():
        return jsonify({"ok": True})

    return app
