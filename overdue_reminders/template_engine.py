"""
Overdue Reminders -- Template Engine

Renders plain-text reminder emails for one customer at a time.

Responsibilities:
  1. Hold the built-in reminder templates (Friendly, Firm, Final Notice)
     and an optional user-supplied custom template
  2. Format invoice and credit lines with Jinja2 fragments
  3. Substitute the four template placeholders in a single literal pass
  4. Build the "unapplied credits" block with its sub-total and net payable
  5. Build subject lines from the configured formula
  6. Format dates (Mon DD, YYYY) and money ($X,XXX.XX) consistently
  7. Return an immutable RenderedMessage

User templates are *not* Jinja2 templates.  They may contain only the
literal tokens ``{{Customer}}``, ``{{InvoiceLines}}``, ``{{TotalOverdue}}``
and ``{{CreditsSection}}``, which are replaced in one scan so substituted
text is never re-scanned.

Usage:
    from overdue_reminders.template_engine import TemplateEngine

    engine = TemplateEngine()
    message = engine.render_customer(rows, "Acme Pty Ltd", template_name="Firm")
    print(message.subject)
    print(message.body)
"""

from __future__ import annotations

import re
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Sequence

from jinja2 import Environment, StrictUndefined

from .aggregator import CustomerLines, customer_lines
from .config import RemindersConfig, get_config
from .eml_export import fold_header_text
from .models import CanonicalRow, RenderedMessage


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_DATE_FORMAT = "%b %d, %Y"
_CENTS = Decimal("0.01")

CUSTOM_TEMPLATE = "Custom"

PLACEHOLDERS: tuple[str, ...] = ("Customer", "InvoiceLines", "TotalOverdue", "CreditsSection")

_PLACEHOLDER_RE = re.compile(r"\{\{(" + "|".join(PLACEHOLDERS) + r")\}\}")

TEMPLATES: dict[str, str] = {
    "Friendly": """Dear {{Customer}},

The following invoices are currently overdue:

{{InvoiceLines}}

Total overdue:  {{TotalOverdue}}
{{CreditsSection}}

If you've already paid, please ignore this. Otherwise, could you let us know the expected date of payment?

Kind regards,
Accounts Receivable""",

    "Firm": """Hello {{Customer}},

Despite previous reminders, the following invoices remain overdue:

{{InvoiceLines}}

Total overdue:  {{TotalOverdue}}
{{CreditsSection}}

Please arrange payment today or reply with your remittance advice and pay date.

Regards,
Accounts Receivable""",

    "Final Notice": """FINAL NOTICE - {{Customer}}

Your account is on hold due to the overdue balance below:

{{InvoiceLines}}

Total overdue:  {{TotalOverdue}}
{{CreditsSection}}

Unless full payment is received within 3 business days, we may suspend further supply.

Accounts Receivable""",
}

# Jinja2 fragments for the generated parts of the body.
_INVOICE_LINE = "- Invoice {{ row.invoice }} - {{ row.amount | format_currency(symbol) }} due {{ row | due_text }}"
_CREDIT_LINE = "- Credit {{ row.invoice }} - {{ row.amount | format_currency(symbol) }} dated {{ row | due_text }}"
_CREDITS_BLOCK = """
Unapplied credits (available to offset):
{{ credit_lines | join("\\n") }}

Total credits: {{ total_credits | format_currency(symbol) }}

Net amount now due: {{ net_payable | format_currency(symbol) }}
"""


# ---------------------------------------------------------------------------
# Helper: Format Utilities
# ---------------------------------------------------------------------------

def format_date(d: date | None) -> str:
    """Format a date as 'Mon DD, YYYY' (e.g. 'Feb 05, 2026').

    Returns empty string for None.
    """
    if d is None:
        return ""
    return d.strftime(_DATE_FORMAT)


def format_currency(amount: Decimal | float | int | None, symbol: str = "$") -> str:
    """Format a money amount as '$1,510.00'.

    Always the absolute value, 2 decimal places and comma thousands
    separators; the sign is carried by the surrounding wording.
    Returns '$0.00' for None.
    """
    if amount is None:
        return f"{symbol}0.00"
    value = abs(Decimal(str(amount))).quantize(_CENTS, rounding=ROUND_HALF_UP)
    return f"{symbol}{value:,.2f}"


def due_text(row: CanonicalRow) -> str:
    """Display text for a row's due date: formatted date, else the raw cell."""
    if row.due_date is not None:
        return format_date(row.due_date)
    return row.due_raw


def build_subject(customer: str, config: RemindersConfig | None = None) -> str:
    """Subject line from ``templates.subject_template``, on one line."""
    cfg = config or get_config()
    return fold_header_text(cfg.templates.subject_template.format(
        company=cfg.sender.company,
        customer=customer,
    ))


def _make_environment() -> Environment:
    env = Environment(
        autoescape=False,       # plain-text email
        keep_trailing_newline=True,
        undefined=StrictUndefined,
    )
    env.filters["format_date"] = format_date
    env.filters["format_currency"] = format_currency
    env.filters["due_text"] = due_text
    return env


_ENV = _make_environment()


# ---------------------------------------------------------------------------
# Body rendering
# ---------------------------------------------------------------------------

def render_credits_section(
    credit_lines: Sequence[str],
    total_overdue: Decimal,
    total_credits: Decimal,
    *,
    currency_symbol: str = "$",
    env: Environment | None = None,
) -> str:
    """The credits block, or ``""`` when there are no credit lines."""
    if not credit_lines:
        return ""
    template = (env or _ENV).from_string(_CREDITS_BLOCK)
    return template.render(
        credit_lines=list(credit_lines),
        total_credits=total_credits,
        net_payable=Decimal(str(total_overdue)) - Decimal(str(total_credits)),
        symbol=currency_symbol,
    )


def substitute(template: str, values: dict[str, str]) -> str:
    """Replace every known ``{{Token}}`` in one scan.

    Substituted text is never re-scanned, so the result does not depend on
    placeholder order and a value that happens to contain a token is left
    as-is.
    """
    return _PLACEHOLDER_RE.sub(lambda m: values[m.group(1)], template)


def render_body(
    template: str,
    customer_name: str,
    overdue_lines: Sequence[str],
    credit_lines: Sequence[str],
    total_overdue: Decimal,
    total_credits: Decimal,
    *,
    currency_symbol: str = "$",
    empty_lines_text: str = "(none)",
    env: Environment | None = None,
) -> str:
    """Expand *template* for one customer.

    Args:
        template: Template text containing the literal placeholder tokens.
        customer_name: Replaces ``{{Customer}}``.
        overdue_lines: Pre-formatted invoice lines, newline-joined into
            ``{{InvoiceLines}}`` (or *empty_lines_text* when empty).
        credit_lines: Pre-formatted credit lines for the credits block.
        total_overdue: Sum of overdue amounts, for ``{{TotalOverdue}}``.
        total_credits: Sum of credits as a positive figure.

    Returns:
        The rendered body text.
    """
    values = {
        "Customer": customer_name,
        "InvoiceLines": "\n".join(overdue_lines) or empty_lines_text,
        "TotalOverdue": format_currency(total_overdue, currency_symbol),
        "CreditsSection": render_credits_section(
            credit_lines, total_overdue, total_credits,
            currency_symbol=currency_symbol, env=env,
        ),
    }
    return substitute(template, values)


# ---------------------------------------------------------------------------
# Template Engine
# ---------------------------------------------------------------------------

class TemplateEngine:
    """Reminder renderer bound to one configuration.

    Attributes:
        env: Jinja2 Environment used for the line and credits fragments.
        config: The active RemindersConfig.
        templates: Built-in templates by name.
    """

    def __init__(self, config: RemindersConfig | None = None) -> None:
        self.config = config or get_config()
        self.env = _make_environment()
        self.templates: dict[str, str] = dict(TEMPLATES)
        self._invoice_line = self.env.from_string(_INVOICE_LINE)
        self._credit_line = self.env.from_string(_CREDIT_LINE)

    # -------------------------------------------------------------------
    # Template selection
    # -------------------------------------------------------------------

    def available_templates(self) -> list[str]:
        """Built-in template names, plus ``Custom`` when one is configured."""
        names = list(self.templates)
        if self.config.templates.load_custom_template():
            names.append(CUSTOM_TEMPLATE)
        return names

    def get_template(self, name: str | None = None, custom: str | None = None) -> str:
        """Template text for *name* (default from config).

        Raises:
            ValueError: Unknown template name, or ``Custom`` without text.
        """
        name = name or self.config.templates.default_template
        if name == CUSTOM_TEMPLATE:
            text = custom or self.config.templates.load_custom_template()
            if not text:
                raise ValueError("Custom template selected but no template text given")
            return text
        if name not in self.templates:
            raise ValueError(
                f"Unknown template '{name}'.  Available: {self.available_templates()}"
            )
        return self.templates[name]

    # -------------------------------------------------------------------
    # Rendering
    # -------------------------------------------------------------------

    def format_lines(self, lines: CustomerLines) -> tuple[list[str], list[str]]:
        """Render ``(overdue_lines, credit_lines)`` text for a customer."""
        symbol = self.config.templates.currency_symbol
        overdue = [self._invoice_line.render(row=r, symbol=symbol) for r in lines.overdue]
        credits = [self._credit_line.render(row=r, symbol=symbol) for r in lines.credits]
        return overdue, credits

    def render_lines(
        self,
        lines: CustomerLines,
        template_name: str | None = None,
        custom: str | None = None,
    ) -> RenderedMessage:
        """Render a complete message from a customer's split lines."""
        template = self.get_template(template_name, custom)
        overdue, credits = self.format_lines(lines)
        body = render_body(
            template,
            lines.customer,
            overdue,
            credits,
            lines.total_overdue,
            lines.total_credits,
            currency_symbol=self.config.templates.currency_symbol,
            empty_lines_text=self.config.templates.empty_lines_text,
            env=self.env,
        )
        return RenderedMessage(
            recipient=lines.recipient,
            subject=build_subject(lines.customer, self.config),
            body=body,
            customer=lines.customer,
            reply_to=self.config.sender.reply_to,
        )

    def render_customer(
        self,
        rows: Iterable[CanonicalRow],
        customer: str,
        template_name: str | None = None,
        custom: str | None = None,
    ) -> RenderedMessage:
        """Render the reminder for *customer* from the full row set."""
        return self.render_lines(customer_lines(rows, customer), template_name, custom)
