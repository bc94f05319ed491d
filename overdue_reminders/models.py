"""Data models for the Overdue Reminders system.

All models are plain dataclasses with type hints.  No ORM, no Pydantic --
just stdlib so the module has zero dependencies of its own.

The five canonical fields every downstream step relies on are
``customer``, ``email``, ``invoice``, ``amount`` and ``due_date``; they are
resolved from arbitrary spreadsheet headers by ``column_mapper``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Canonical schema
# ---------------------------------------------------------------------------

FIELDS: tuple[str, ...] = ("customer", "email", "invoice", "amount", "due_date")
REQUIRED_FIELDS: tuple[str, ...] = ("customer", "amount")

# Keys a row carries once it has been canonicalized; see data_loader.resolve_field.
CANONICAL_KEYS: dict[str, str] = {
    "customer": "__customer",
    "email": "__email",
    "invoice": "__invoice",
    "amount": "__amount",
    "due_date": "__dueDate",
}


class Provider(str, Enum):
    """Outbound mail providers understood by the batch submission endpoint."""

    MICROSOFT = "microsoft"
    GOOGLE = "google"


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------

@dataclass
class FieldMapping:
    """Logical field -> original header text ("" when unmapped).

    Fields set through :meth:`override` are remembered as manual and are
    never replaced by a later auto-mapping pass.
    """

    customer: str = ""
    email: str = ""
    invoice: str = ""
    amount: str = ""
    due_date: str = ""
    manual: set[str] = field(default_factory=set)

    def get(self, field_name: str) -> str:
        if field_name not in FIELDS:
            raise KeyError(f"Unknown field: {field_name!r}")
        return getattr(self, field_name)

    def override(self, field_name: str, header: str) -> None:
        """Set a field by hand.  Manual choices survive auto-mapping."""
        if field_name not in FIELDS:
            raise KeyError(f"Unknown field: {field_name!r}")
        setattr(self, field_name, header or "")
        self.manual.add(field_name)

    def merge_auto(self, auto: FieldMapping) -> None:
        """Copy auto-mapped headers into every field not set manually."""
        for name in FIELDS:
            if name not in self.manual:
                setattr(self, name, auto.get(name))

    def copy(self) -> FieldMapping:
        clone = FieldMapping(**self.as_dict())
        clone.manual = set(self.manual)
        return clone

    def as_dict(self) -> dict[str, str]:
        return {name: getattr(self, name) for name in FIELDS}

    @property
    def unmapped(self) -> list[str]:
        return [name for name in FIELDS if not getattr(self, name)]


@dataclass(frozen=True)
class CanonicalRow:
    """One invoice (or credit) line in the internal schema.

    Rows with an empty customer or a zero amount are never constructed;
    ``data_loader.ingest`` drops them.
    """

    customer: str
    amount: Decimal
    email: str = ""
    invoice: str = ""
    due_date: date | None = None
    due_raw: str = ""                   # original cell text, for display

    @property
    def is_credit(self) -> bool:
        return self.amount < 0

    def as_canonical_dict(self) -> dict[str, Any]:
        """Row keyed by the canonical keys, re-ingestible under any mapping."""
        return {
            CANONICAL_KEYS["customer"]: self.customer,
            CANONICAL_KEYS["email"]: self.email,
            CANONICAL_KEYS["invoice"]: self.invoice,
            CANONICAL_KEYS["amount"]: self.amount,
            CANONICAL_KEYS["due_date"]: self.due_date if self.due_date else self.due_raw,
        }


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

@dataclass
class CustomerAggregate:
    """Per-customer totals derived from the canonical rows."""

    name: str
    total: Decimal = Decimal("0")       # signed: credits pull it down
    count: int = 0
    oldest_due_date: date | None = None
    oldest_days: int = 0
    has_email: bool = False

    @property
    def overdue(self) -> Decimal:
        """Fleet-facing figure: a net credit contributes zero."""
        return max(Decimal("0"), self.total)

    @property
    def is_emailable(self) -> bool:
        return self.total > 0


@dataclass(frozen=True)
class AgingBucket:
    label: str
    amount: Decimal


@dataclass(frozen=True)
class RankedCustomer:
    name: str
    amount: Decimal


@dataclass
class DashboardSnapshot:
    """Fleet-wide figures for the dashboard."""

    customer_count: int = 0
    with_email_count: int = 0
    total_overdue_all: Decimal = Decimal("0")
    aging_buckets: list[AgingBucket] = field(default_factory=list)
    top_customers: list[RankedCustomer] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "customerCount": self.customer_count,
            "withEmailCount": self.with_email_count,
            "totalOverdueAll": str(self.total_overdue_all),
            "agingBuckets": [
                {"label": b.label, "amount": str(b.amount)} for b in self.aging_buckets
            ],
            "topCustomers": [
                {"name": c.name, "amount": str(c.amount)} for c in self.top_customers
            ],
        }


# ---------------------------------------------------------------------------
# Messages & dispatch
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RenderedMessage:
    """A reminder rendered for one customer.  ``recipient`` may be empty."""

    recipient: str
    subject: str
    body: str
    customer: str = ""
    reply_to: str = ""

    @property
    def has_recipient(self) -> bool:
        return bool(self.recipient.strip())

    def to_outbound(self) -> OutboundMessage:
        return OutboundMessage(
            to=self.recipient,
            subject=self.subject,
            text=self.body,
            reply_to=self.reply_to,
        )


@dataclass(frozen=True)
class OutboundMessage:
    """Transport-facing message, matching the batch submission JSON shape."""

    to: str
    subject: str
    text: str
    reply_to: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> OutboundMessage:
        """Build from ``{to, subject, text, replyTo?}``.

        Raises:
            ValueError: If ``data`` is not a mapping.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Message must be an object, got {type(data).__name__}")
        return cls(
            to=str(data.get("to") or ""),
            subject=str(data.get("subject") or ""),
            text=str(data.get("text") or ""),
            reply_to=str(data.get("replyTo") or ""),
        )

    def to_dict(self) -> dict:
        d = {"to": self.to, "subject": self.subject, "text": self.text}
        if self.reply_to:
            d["replyTo"] = self.reply_to
        return d


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of sending the message at ``index`` of a batch."""

    index: int
    ok: bool
    error: str | None = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {"index": self.index, "ok": self.ok}
        if self.error is not None:
            d["error"] = self.error
        return d
