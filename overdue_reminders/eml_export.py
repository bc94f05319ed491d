"""Overdue Reminders -- .eml export.

Writes rendered reminders as standalone RFC 822 files that any desktop
mail client can open, review and send by hand.  The same message builder
produces the raw payload for the Gmail transport.
"""

from __future__ import annotations

import logging
import re
from email import policy
from email.message import EmailMessage
from pathlib import Path
from typing import Iterable

from .models import RenderedMessage

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-z0-9]", re.IGNORECASE)
_LINE_BREAKS = re.compile(r"\s*[\r\n]+\s*")


def fold_header_text(value: str) -> str:
    """Collapse line breaks in free-text header values to single spaces."""
    return _LINE_BREAKS.sub(" ", value or "").strip()


def build_message(to: str, subject: str, body: str, reply_to: str | None = None) -> EmailMessage:
    """Plain-text UTF-8 message.

    Address headers are set as given; one containing a line break raises
    ValueError.  The subject is folded onto one line first.
    """
    msg = EmailMessage(policy=policy.SMTP)
    msg["MIME-Version"] = "1.0"
    if to:
        msg["To"] = to.strip()
    msg["Subject"] = fold_header_text(subject)
    if reply_to:
        msg["Reply-To"] = reply_to.strip()
    msg.set_content(body.replace("\r\n", "\n"), charset="utf-8", cte="8bit")
    return msg


def build_eml(to: str, subject: str, body: str, reply_to: str | None = None) -> bytes:
    """Serialized message with CRLF line endings, ready to write as ``.eml``."""
    return build_message(to, subject, body, reply_to).as_bytes()


def eml_filename(customer: str) -> str:
    """``Acme Pty Ltd`` -> ``Acme_Pty_Ltd.eml``."""
    return _UNSAFE_CHARS.sub("_", customer) + ".eml"


def _unique_name(name: str, taken: set[str]) -> str:
    stem, suffix = name[:-len(".eml")], ".eml"
    candidate, n = name, 1
    while candidate.lower() in taken:
        n += 1
        candidate = f"{stem}_{n}{suffix}"
    taken.add(candidate.lower())
    return candidate


def export_eml(messages: Iterable[RenderedMessage], output_dir: str | Path) -> list[Path]:
    """Write one ``.eml`` per message into *output_dir*.

    Messages without a recipient are still exported (no ``To`` header) so
    they can be completed by hand.  Customers whose names reduce to the
    same file name get ``_2``, ``_3``... suffixes in message order.  A
    message whose addresses contain line breaks is logged and skipped.

    Returns:
        Paths written, in message order.
    """
    out_dir = Path(output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    taken: set[str] = set()
    written: list[Path] = []
    for msg in messages:
        label = msg.customer or msg.recipient or "message"
        try:
            data = build_eml(msg.recipient, msg.subject, msg.body, msg.reply_to or None)
        except ValueError as exc:
            logger.error("Skipping .eml for %r: %s", label, exc)
            continue
        path = out_dir / _unique_name(eml_filename(label), taken)
        path.write_bytes(data)
        written.append(path)
        logger.debug("Wrote %s", path)

    logger.info("Exported %d .eml file(s) to %s", len(written), out_dir)
    return written
