"""
Overdue Reminders -- Aggregation Engine

Derives per-customer balances and the fleet dashboard from canonical rows.

Business rules:
  - A customer's total is the signed sum of their rows: invoices are
    positive, credits negative.  A net credit is allowed.
  - Fleet figures count ``max(0, total)`` per customer, so a customer in
    credit contributes zero, never a negative amount.
  - Only customers with a strictly positive total are emailable.
  - Aging is per customer, not per invoice: a customer lands in the bucket
    of their single oldest invoice, with their whole balance.
  - Day counts are measured against one fixed evaluation instant passed by
    the caller, so repeated runs over the same data agree.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Sequence

from .config import DEFAULT_BUCKETS, AgingBucketSpec
from .models import (
    AgingBucket,
    CanonicalRow,
    CustomerAggregate,
    DashboardSnapshot,
    RankedCustomer,
)
from .normalizer import days_overdue

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")

TOP_N_DEFAULT = 10


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class AggregationResult:
    """Per-customer aggregates (first-seen order) plus the dashboard."""

    per_customer: dict[str, CustomerAggregate] = field(default_factory=dict)
    dashboard: DashboardSnapshot = field(default_factory=DashboardSnapshot)

    @property
    def emailable(self) -> list[str]:
        return emailable_customers(self.per_customer)


@dataclass
class CustomerLines:
    """One customer's rows split into overdue invoices and credits."""

    customer: str
    overdue: list[CanonicalRow] = field(default_factory=list)
    credits: list[CanonicalRow] = field(default_factory=list)
    recipient: str = ""

    @property
    def total_overdue(self) -> Decimal:
        return sum((r.amount for r in self.overdue), _ZERO)

    @property
    def total_credits(self) -> Decimal:
        """Credits as a positive figure."""
        return sum((abs(r.amount) for r in self.credits), _ZERO)

    @property
    def net_payable(self) -> Decimal:
        return self.total_overdue - self.total_credits


# ---------------------------------------------------------------------------
# Core aggregation
# ---------------------------------------------------------------------------

def aggregate_customers(
    rows: Iterable[CanonicalRow],
    now: date | datetime,
) -> dict[str, CustomerAggregate]:
    """Single pass over *rows* building one aggregate per customer.

    The first row seeds the oldest due date; later rows replace it only
    when their day count is strictly larger, so ties keep the first-seen
    date.
    """
    per: dict[str, CustomerAggregate] = {}

    for row in rows:
        days = days_overdue(row.due_date, now)
        agg = per.get(row.customer)
        if agg is None:
            agg = CustomerAggregate(
                name=row.customer,
                oldest_due_date=row.due_date,
                oldest_days=days,
            )
            per[row.customer] = agg
        elif days > agg.oldest_days:
            agg.oldest_days = days
            agg.oldest_due_date = row.due_date

        agg.total += row.amount
        agg.count += 1
        if row.email:
            agg.has_email = True

    return per


def bucket_totals(
    per_customer: dict[str, CustomerAggregate],
    buckets: Sequence[AgingBucketSpec] = DEFAULT_BUCKETS,
) -> list[AgingBucket]:
    """Sum ``max(0, total)`` per aging bucket, keyed on each customer's oldest days.

    A customer matching no bucket (only possible with custom, gapped bucket
    specs) is left out and logged.
    """
    sums = [_ZERO for _ in buckets]
    for agg in per_customer.values():
        for idx, spec in enumerate(buckets):
            if spec.contains(agg.oldest_days):
                sums[idx] += agg.overdue
                break
        else:
            logger.warning(
                "Customer %s (%d days) falls outside every aging bucket",
                agg.name, agg.oldest_days,
            )
    return [AgingBucket(label=spec.label, amount=total) for spec, total in zip(buckets, sums)]


def top_customers(
    per_customer: dict[str, CustomerAggregate],
    n: int = TOP_N_DEFAULT,
) -> list[RankedCustomer]:
    """Customers with a positive total, largest first, ties in first-seen order."""
    positive = [agg for agg in per_customer.values() if agg.total > 0]
    # sorted() is stable, and per_customer preserves first-seen order
    ranked = sorted(positive, key=lambda agg: agg.total, reverse=True)
    return [RankedCustomer(name=agg.name, amount=agg.total) for agg in ranked[:n]]


def emailable_customers(per_customer: dict[str, CustomerAggregate]) -> list[str]:
    """Names of customers whose net total is strictly positive."""
    return [name for name, agg in per_customer.items() if agg.is_emailable]


def aggregate(
    rows: Iterable[CanonicalRow],
    now: date | datetime,
    *,
    buckets: Sequence[AgingBucketSpec] = DEFAULT_BUCKETS,
    top_n: int = TOP_N_DEFAULT,
) -> AggregationResult:
    """Compute per-customer aggregates and the fleet dashboard.

    Args:
        rows: Canonical rows for the whole file (aggregation needs the
            complete set).
        now: Evaluation instant used for every day count.
        buckets: Aging bucket specs, checked in order.
        top_n: Length cap of the top-customers ranking.

    Returns:
        An :class:`AggregationResult`.
    """
    per = aggregate_customers(rows, now)

    dashboard = DashboardSnapshot(
        customer_count=len(per),
        with_email_count=sum(1 for agg in per.values() if agg.has_email),
        total_overdue_all=sum((agg.overdue for agg in per.values()), _ZERO),
        aging_buckets=bucket_totals(per, buckets),
        top_customers=top_customers(per, top_n),
    )

    logger.info(
        "Aggregated %d customers: total overdue %s, %d emailable",
        dashboard.customer_count,
        dashboard.total_overdue_all,
        len(emailable_customers(per)),
    )
    return AggregationResult(per_customer=per, dashboard=dashboard)


# ---------------------------------------------------------------------------
# Line-level data for rendering
# ---------------------------------------------------------------------------

def customer_lines(rows: Iterable[CanonicalRow], customer: str) -> CustomerLines:
    """Split one customer's rows into overdue and credit lines.

    ``recipient`` is the first non-empty email among the customer's rows.
    """
    lines = CustomerLines(customer=customer)
    for row in rows:
        if row.customer == customer:
            _add_line(lines, row)
    return lines


def group_lines(rows: Iterable[CanonicalRow]) -> dict[str, CustomerLines]:
    """:func:`customer_lines` for every customer in one pass, first-seen order."""
    groups: dict[str, CustomerLines] = {}
    for row in rows:
        lines = groups.get(row.customer)
        if lines is None:
            lines = groups[row.customer] = CustomerLines(customer=row.customer)
        _add_line(lines, row)
    return groups


def _add_line(lines: CustomerLines, row: CanonicalRow) -> None:
    if row.amount > 0:
        lines.overdue.append(row)
    elif row.amount < 0:
        lines.credits.append(row)
    if not lines.recipient and row.email:
        lines.recipient = row.email
