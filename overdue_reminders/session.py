"""
Overdue Reminders -- Session

One working session over one invoice export: the loaded rows, the column
mapping, the chosen template, the customer selection and the evaluation
instant used for every day count.

State lives here and nowhere else.  Aggregation and rendering receive
immutable inputs and hand back new values; the session re-derives them
whenever the data or the mapping changes.

Usage:
    from overdue_reminders.session import ReminderSession

    session = ReminderSession(now=date(2026, 2, 1))
    session.load("exports/open_invoices.csv")
    session.select_all()
    session.use_template("Firm")
    for message in session.render_selected():
        print(message.subject)
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from .aggregator import AggregationResult, aggregate, group_lines
from .config import RemindersConfig, get_config
from .data_loader import LoadResult, load_file, load_rows
from .dispatcher import dispatch
from .models import DispatchResult, OutboundMessage, RenderedMessage
from .template_engine import TemplateEngine
from .transports import Transport

logger = logging.getLogger(__name__)


class ReminderSession:
    """Load -> map -> aggregate -> select -> render -> dispatch."""

    def __init__(
        self,
        config: RemindersConfig | None = None,
        now: date | datetime | None = None,
    ) -> None:
        self.config = config or get_config()
        self.now: date | datetime = now or datetime.now().astimezone()
        self.engine = TemplateEngine(self.config)
        self.load_result: LoadResult = LoadResult()
        self.result: AggregationResult = AggregationResult()
        self.template_name: str = self.config.templates.default_template
        self.custom_template: str | None = None
        self._selected: set[str] = set()

    # -------------------------------------------------------------------
    # Loading & mapping
    # -------------------------------------------------------------------

    def load(self, path: str | Path, overrides: Mapping[str, str] | None = None) -> LoadResult:
        """Read a file, replacing whatever was loaded before."""
        self.load_result = load_file(
            path,
            overrides=overrides,
            aliases=self.config.column_aliases.as_dict(),
        )
        self.aggregate()
        return self.load_result

    def load_rows(
        self,
        rows: Iterable[Mapping[str, Any]],
        headers: Sequence[str] | None = None,
        overrides: Mapping[str, str] | None = None,
    ) -> LoadResult:
        """Load already-parsed rows.  Headers default to the row keys, first-seen."""
        rows = [dict(r) for r in rows]
        if headers is None:
            headers = list(dict.fromkeys(k for r in rows for k in r))
        self.load_result = load_rows(
            headers,
            [rows],
            overrides=overrides,
            aliases=self.config.column_aliases.as_dict(),
        )
        self.aggregate()
        return self.load_result

    def override(self, field_name: str, header: str) -> None:
        """Manually map *field_name* to *header*, then recompute everything."""
        self.load_result.store.remap(field_name, header)
        self.aggregate()

    @property
    def rows(self):
        return self.load_result.rows

    @property
    def mapping(self):
        return self.load_result.store.mapping

    # -------------------------------------------------------------------
    # Aggregation & selection
    # -------------------------------------------------------------------

    def aggregate(self) -> AggregationResult:
        """Recompute aggregates and drop selected customers no longer emailable."""
        self.result = aggregate(
            self.rows,
            self.now,
            buckets=self.config.aging.buckets,
            top_n=self.config.aging.top_n,
        )
        allowed = set(self.result.emailable)
        dropped = self._selected - allowed
        if dropped:
            logger.info("Deselected %d customer(s) no longer emailable", len(dropped))
        self._selected &= allowed
        return self.result

    def emailable(self) -> list[str]:
        return self.result.emailable

    @property
    def selected(self) -> list[str]:
        """Selected customers in first-seen order."""
        return [name for name in self.emailable() if name in self._selected]

    def select(self, names: Iterable[str]) -> list[str]:
        """Add *names* to the selection.  Non-emailable names are ignored."""
        allowed = set(self.emailable())
        for name in names:
            if name in allowed:
                self._selected.add(name)
            else:
                logger.warning("Cannot select %r: not an emailable customer", name)
        return self.selected

    def toggle(self, name: str) -> bool:
        """Flip one customer's selection.  Returns the new state."""
        if name in self._selected:
            self._selected.discard(name)
            return False
        self.select([name])
        return name in self._selected

    def select_all(self) -> list[str]:
        self._selected = set(self.emailable())
        return self.selected

    def clear_selection(self) -> None:
        self._selected.clear()

    # -------------------------------------------------------------------
    # Rendering
    # -------------------------------------------------------------------

    def use_template(self, name: str, custom: str | None = None) -> None:
        """Choose the template for subsequent renders.

        Raises:
            ValueError: Unknown name, or ``Custom`` with no text available.
        """
        self.engine.get_template(name, custom)
        self.template_name = name
        self.custom_template = custom

    def render(self, customer: str) -> RenderedMessage:
        return self.engine.render_customer(
            self.rows, customer, self.template_name, self.custom_template,
        )

    def render_selected(self) -> list[RenderedMessage]:
        """Render every selected customer in one pass over the rows."""
        groups = group_lines(self.rows)
        return [
            self.engine.render_lines(groups[name], self.template_name, self.custom_template)
            for name in self.selected
        ]

    def outbound_messages(self) -> list[OutboundMessage]:
        """Selected messages that have a recipient, ready for a transport."""
        messages = []
        for rendered in self.render_selected():
            if not rendered.has_recipient:
                logger.info("Skipping %s: no email address", rendered.customer)
                continue
            messages.append(rendered.to_outbound())
        return messages

    # -------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------

    def dispatch(self, transport: Transport, limit: int | None = None) -> list[DispatchResult]:
        """Send :meth:`outbound_messages` through *transport*."""
        if limit is None:
            limit = self.config.dispatch.concurrency_limit
        return dispatch(self.outbound_messages(), limit, transport.send)
