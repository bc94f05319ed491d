"""Overdue Reminders - invoice export to customer payment reminders.

Loads an open-invoice export, maps its columns onto a canonical schema,
aggregates per-customer balances and aging, renders plain-text reminder
emails and sends them through Microsoft Graph or Gmail with bounded
concurrency.
"""

from .models import (
    CanonicalRow,
    CustomerAggregate,
    DashboardSnapshot,
    DispatchResult,
    FieldMapping,
    OutboundMessage,
    Provider,
    RenderedMessage,
)

from .session import ReminderSession

__all__ = [
    "CanonicalRow",
    "CustomerAggregate",
    "DashboardSnapshot",
    "DispatchResult",
    "FieldMapping",
    "OutboundMessage",
    "Provider",
    "ReminderSession",
    "RenderedMessage",
]
