"""
Overdue Reminders -- Mail Transports

One transport per mail provider.  Each transport turns an OutboundMessage
into the provider's REST payload and POSTs it with a bearer token.

A transport's ``send`` either returns normally (accepted) or raises:
  - TransportError for a non-2xx response (reason = response body)
  - requests.RequestException for connectivity problems
  - ValueError when an address contains a line break (Gmail raw message)

The dispatcher records any of these as a per-message failure, so nothing here
retries or swallows errors.

Usage:
    from overdue_reminders.transports import get_transport

    transport = get_transport("microsoft", token, cfg.dispatch)
    transport.send(OutboundMessage(to="ap@acme.test", subject="Hi", text="..."))
"""

from __future__ import annotations

import base64
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Sequence

import requests

from .config import DispatchSettings, SenderInfo
from .eml_export import build_message
from .models import OutboundMessage, Provider

logger = logging.getLogger(__name__)


class TransportError(RuntimeError):
    """Raised when a provider rejects a request with a non-2xx status."""

    def __init__(self, message: str, status: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class UnsupportedProviderError(ValueError):
    """Raised when a batch names a provider with no registered transport."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def to_base64url(data: bytes | str) -> str:
    """URL-safe base64 without ``=`` padding, as the Gmail API expects."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def build_raw_message(message: OutboundMessage) -> bytes:
    """RFC 822 bytes for a plain-text message, CRLF line endings.

    Raises:
        ValueError: If an address contains a line break.
    """
    msg = build_message(message.to, message.subject, message.text, message.reply_to or None)
    return msg.as_bytes()


def _recipients(address: str) -> list[dict[str, dict[str, str]]]:
    return [{"emailAddress": {"address": address}}]


# ---------------------------------------------------------------------------
# Transport base
# ---------------------------------------------------------------------------

class Transport(ABC):
    """Provider-specific sender bound to one access token.

    Without an injected *session* each thread gets its own
    ``requests.Session``, since the dispatcher calls ``send`` from several
    worker threads.  An injected session is shared by all threads.
    """

    provider: Provider

    def __init__(
        self,
        access_token: str,
        settings: DispatchSettings | None = None,
        *,
        session: requests.Session | None = None,
    ) -> None:
        self.settings = settings or DispatchSettings()
        self._access_token = access_token
        self._session = session
        self._local = threading.local()

    @abstractmethod
    def send(self, message: OutboundMessage) -> None:
        """Submit one message.  Raises on rejection."""

    @property
    def http_session(self) -> requests.Session:
        if self._session is not None:
            return self._session
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            self._local.session = session
        return session

    def _post(self, url: str, payload: dict[str, Any], failure: str) -> requests.Response:
        """POST JSON with the bearer token; non-2xx raises TransportError."""
        response = self.http_session.post(
            url,
            json=payload,
            headers={
                "Authorization": f"Bearer {self._access_token}",
                "Content-Type": "application/json",
            },
            timeout=self.settings.timeout_seconds,
        )
        if not 200 <= response.status_code < 300:
            body = response.text or ""
            logger.error(
                "%s status=%s url=%s", failure, response.status_code, url,
            )
            raise TransportError(
                f"{failure} ({response.status_code}): {body}",
                status=response.status_code,
                body=body,
            )
        return response


# ---------------------------------------------------------------------------
# Microsoft Graph
# ---------------------------------------------------------------------------

class GraphMailTransport(Transport):
    """Sends through Microsoft Graph ``/me/sendMail``, saving to Sent Items."""

    provider = Provider.MICROSOFT

    def build_payload(self, message: OutboundMessage) -> dict[str, Any]:
        msg: dict[str, Any] = {
            "subject": message.subject,
            "body": {"contentType": "Text", "content": message.text},
            "toRecipients": _recipients(message.to),
        }
        if message.reply_to:
            msg["replyTo"] = _recipients(message.reply_to)
        return {"message": msg, "saveToSentItems": True}

    def send(self, message: OutboundMessage) -> None:
        url = f"{self.settings.graph_base_url}/me/sendMail"
        self._post(url, self.build_payload(message), "Graph sendMail failed")
        logger.debug("Graph accepted message to %s", message.to)


class GraphDraftTransport(Transport):
    """Creates Outlook drafts instead of sending.

    ``send`` creates one draft; :meth:`create_drafts` creates many through
    Graph JSON batching, ``draft_batch_size`` requests per call.
    """

    provider = Provider.MICROSOFT

    def __init__(
        self,
        access_token: str,
        settings: DispatchSettings | None = None,
        *,
        session: requests.Session | None = None,
        sender: SenderInfo | None = None,
    ) -> None:
        super().__init__(access_token, settings, session=session)
        self.sender = sender or SenderInfo()

    def build_draft(self, message: OutboundMessage) -> dict[str, Any]:
        reply_to = message.reply_to or self.sender.draft_reply_to()
        return {
            "subject": message.subject,
            "toRecipients": _recipients(message.to),
            "replyTo": _recipients(reply_to),
            "body": {"contentType": "Text", "content": message.text},
        }

    def send(self, message: OutboundMessage) -> None:
        url = f"{self.settings.graph_base_url}/me/messages"
        self._post(url, self.build_draft(message), "Graph draft creation failed")

    def create_drafts(self, messages: Sequence[OutboundMessage]) -> list[dict[str, str]]:
        """Create one draft per message.

        Returns:
            ``[{"id", "subject", "to"}]`` for every draft Graph accepted.
            Rejected entries are logged and left out.
        """
        size = max(1, int(self.settings.draft_batch_size))
        url = f"{self.settings.graph_base_url}/$batch"
        created: list[dict[str, str]] = []

        for start in range(0, len(messages), size):
            chunk = messages[start:start + size]
            requests_body = [
                {
                    "id": str(i + 1),
                    "method": "POST",
                    "url": "/me/messages",
                    "headers": {"Content-Type": "application/json"},
                    "body": self.build_draft(m),
                }
                for i, m in enumerate(chunk)
            ]
            response = self._post(url, {"requests": requests_body}, "Graph batch failed")
            data = response.json() or {}

            for entry in data.get("responses", []):
                idx = int(entry.get("id", 0)) - 1
                status = int(entry.get("status", 0))
                if 200 <= status < 300 and 0 <= idx < len(chunk):
                    body = entry.get("body") or {}
                    created.append({
                        "id": body.get("id", ""),
                        "subject": chunk[idx].subject,
                        "to": chunk[idx].to,
                    })
                else:
                    logger.warning(
                        "Draft creation failed for batch item %s: status=%s body=%s",
                        entry.get("id"), status, entry.get("body"),
                    )

        logger.info("Created %d of %d drafts", len(created), len(messages))
        return created


# ---------------------------------------------------------------------------
# Gmail
# ---------------------------------------------------------------------------

class GmailTransport(Transport):
    """Sends through the Gmail API as a base64url-encoded RFC 822 message."""

    provider = Provider.GOOGLE

    def build_payload(self, message: OutboundMessage) -> dict[str, str]:
        return {"raw": to_base64url(build_raw_message(message))}

    def send(self, message: OutboundMessage) -> None:
        url = f"{self.settings.gmail_base_url}/users/me/messages/send"
        self._post(url, self.build_payload(message), "Gmail send failed")
        logger.debug("Gmail accepted message to %s", message.to)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

TRANSPORTS: dict[Provider, type[Transport]] = {
    Provider.MICROSOFT: GraphMailTransport,
    Provider.GOOGLE: GmailTransport,
}


def get_transport(
    provider: str | Provider,
    access_token: str,
    settings: DispatchSettings | None = None,
    session: requests.Session | None = None,
) -> Transport:
    """Transport for a provider tag.

    Raises:
        UnsupportedProviderError: If *provider* is not registered.
    """
    try:
        key = Provider(provider)
    except ValueError:
        raise UnsupportedProviderError(f"Unsupported provider: {provider!r}") from None
    if key not in TRANSPORTS:
        raise UnsupportedProviderError(f"Unsupported provider: {provider!r}")
    return TRANSPORTS[key](access_token, settings, session=session)
