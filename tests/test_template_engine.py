"""Tests for overdue_reminders.template_engine -- reminder rendering.

Covers:
- format_currency / format_date helpers
- Single-pass placeholder substitution (inert values, order independence)
- Invoice and credit line formats, "(none)" for empty lists
- Credits block with total credits and net payable
- Built-in and custom template selection
- Subject and reply-to from config
"""

from datetime import date
from decimal import Decimal

import pytest

from overdue_reminders.config import RemindersConfig
from overdue_reminders.models import CanonicalRow
from overdue_reminders.template_engine import (
    CUSTOM_TEMPLATE,
    TEMPLATES,
    TemplateEngine,
    build_subject,
    format_currency,
    format_date,
    render_body,
    substitute,
)


@pytest.fixture
def config() -> RemindersConfig:
    return RemindersConfig()


@pytest.fixture
def engine(config) -> TemplateEngine:
    return TemplateEngine(config)


@pytest.fixture
def acme_rows():
    return [
        CanonicalRow("Acme", Decimal("100"), email="ap@acme.test", invoice="INV-1",
                     due_date=date(2026, 1, 1), due_raw="2026-01-01"),
        CanonicalRow("Acme", Decimal("-20"), invoice="CR-1",
                     due_date=date(2026, 1, 15), due_raw="2026-01-15"),
        CanonicalRow("Bobs", Decimal("55"), email="b@bobs.test", invoice="INV-9"),
    ]


# ============================================================================
# Helpers
# ============================================================================

class TestFormatting:

    @pytest.mark.parametrize("amount,expected", [
        (Decimal("1510"), "$1,510.00"),
        (Decimal("-20"), "$20.00"),
        (Decimal("0.5"), "$0.50"),
        (Decimal("0.125"), "$0.13"),
        (Decimal("0.005"), "$0.01"),
        (Decimal("-2.345"), "$2.35"),
        (1234567.891, "$1,234,567.89"),
        (None, "$0.00"),
    ])
    def test_format_currency(self, amount, expected):
        assert format_currency(amount) == expected

    def test_currency_symbol(self):
        assert format_currency(Decimal("5"), "€") == "€5.00"

    def test_format_date(self):
        assert format_date(date(2026, 2, 5)) == "Feb 05, 2026"
        assert format_date(None) == ""

    def test_subject(self, config):
        assert build_subject("Acme", config) == "Paramount Liquor Overdue Invoices - Acme"

    def test_subject_line_breaks_folded(self, config):
        subject = build_subject("Acme\r\nBcc: x@evil.test", config)
        assert subject == "Paramount Liquor Overdue Invoices - Acme Bcc: x@evil.test"
        assert "\n" not in subject and "\r" not in subject

    def test_subject_formula(self, config):
        config.sender.company = "Widgets Co"
        config.templates.subject_template = "[{company}] Statement for {customer}"
        assert build_subject("Acme", config) == "[Widgets Co] Statement for Acme"


# ============================================================================
# Substitution
# ============================================================================

class TestSubstitution:

    def test_all_tokens(self):
        out = substitute(
            "{{Customer}}|{{InvoiceLines}}|{{TotalOverdue}}|{{CreditsSection}}",
            {"Customer": "A", "InvoiceLines": "B", "TotalOverdue": "C", "CreditsSection": "D"},
        )
        assert out == "A|B|C|D"

    def test_substituted_text_is_not_rescanned(self):
        body = render_body(
            "Dear {{Customer}}:\n{{InvoiceLines}}",
            "{{InvoiceLines}}",
            ["- Invoice 1 - $5.00 due Jan 01, 2026"],
            [],
            Decimal("5"),
            Decimal("0"),
        )
        assert body == "Dear {{InvoiceLines}}:\n- Invoice 1 - $5.00 due Jan 01, 2026"

    def test_unknown_tokens_untouched(self):
        assert substitute("{{Other}} {{Customer}}", {"Customer": "X"}) == "{{Other}} X"

    def test_repeated_tokens(self):
        assert substitute("{{Customer}} / {{Customer}}", {"Customer": "X"}) == "X / X"

    def test_empty_lines(self):
        body = render_body("{{InvoiceLines}}", "A", [], [], Decimal("0"), Decimal("0"))
        assert body == "(none)"

    def test_no_credits_no_block(self):
        body = render_body("[{{CreditsSection}}]", "A", ["x"], [], Decimal("5"), Decimal("0"))
        assert body == "[]"

    def test_credits_block(self):
        body = render_body(
            "{{CreditsSection}}", "A", ["x"], ["- Credit CR-1 - $20.00 dated Jan 15, 2026"],
            Decimal("100"), Decimal("20"),
        )
        assert body == (
            "\nUnapplied credits (available to offset):\n"
            "- Credit CR-1 - $20.00 dated Jan 15, 2026\n"
            "\nTotal credits: $20.00\n"
            "\nNet amount now due: $80.00\n"
        )


# ============================================================================
# Engine
# ============================================================================

class TestTemplateEngine:

    def test_available_templates(self, engine):
        assert engine.available_templates() == ["Friendly", "Firm", "Final Notice"]

    def test_custom_listed_when_configured(self, config):
        config.templates.custom_template = "Hi {{Customer}}"
        assert CUSTOM_TEMPLATE in TemplateEngine(config).available_templates()

    def test_default_template(self, engine):
        assert engine.get_template() == TEMPLATES["Friendly"]

    def test_unknown_template(self, engine):
        with pytest.raises(ValueError, match="Unknown template"):
            engine.get_template("Rude")

    def test_custom_without_text(self, engine):
        with pytest.raises(ValueError):
            engine.get_template(CUSTOM_TEMPLATE)

    def test_custom_template_file(self, config, tmp_path):
        path = tmp_path / "custom.txt"
        path.write_text("Yo {{Customer}}", encoding="utf-8")
        config.templates.custom_template_file = str(path)
        assert TemplateEngine(config).get_template(CUSTOM_TEMPLATE) == "Yo {{Customer}}"

    def test_render_acme(self, engine, acme_rows):
        msg = engine.render_customer(acme_rows, "Acme")
        assert msg.recipient == "ap@acme.test"
        assert msg.customer == "Acme"
        assert msg.subject == "Paramount Liquor Overdue Invoices - Acme"
        assert msg.body.startswith("Dear Acme,")
        assert "- Invoice INV-1 - $100.00 due Jan 01, 2026" in msg.body
        assert "- Credit CR-1 - $20.00 dated Jan 15, 2026" in msg.body
        assert "Total overdue:  $100.00" in msg.body
        assert "Total credits: $20.00" in msg.body
        assert "Net amount now due: $80.00" in msg.body
        assert "INV-9" not in msg.body
        assert "{{" not in msg.body

    @pytest.mark.parametrize("name,opening", [
        ("Firm", "Hello Bobs,"),
        ("Final Notice", "FINAL NOTICE - Bobs"),
    ])
    def test_other_builtins(self, engine, acme_rows, name, opening):
        msg = engine.render_customer(acme_rows, "Bobs", template_name=name)
        assert msg.body.startswith(opening)
        assert "Unapplied credits" not in msg.body

    def test_raw_due_text_when_unparsed(self, engine):
        rows = [CanonicalRow("Acme", Decimal("10"), invoice="1", due_raw="EOM")]
        msg = engine.render_customer(rows, "Acme")
        assert "- Invoice 1 - $10.00 due EOM" in msg.body

    def test_custom_inline(self, engine, acme_rows):
        msg = engine.render_customer(
            acme_rows, "Acme", template_name=CUSTOM_TEMPLATE,
            custom="{{Customer}} owes {{TotalOverdue}}",
        )
        assert msg.body == "Acme owes $100.00"

    def test_customer_without_email(self, engine):
        rows = [CanonicalRow("Acme", Decimal("10"))]
        msg = engine.render_customer(rows, "Acme")
        assert msg.recipient == ""
        assert not msg.has_recipient

    def test_reply_to_from_config(self, config, acme_rows):
        config.sender.reply_to = "ar@us.test"
        msg = TemplateEngine(config).render_customer(acme_rows, "Acme")
        assert msg.reply_to == "ar@us.test"
        assert msg.to_outbound().to_dict()["replyTo"] == "ar@us.test"

    def test_currency_symbol_config(self, config, acme_rows):
        config.templates.currency_symbol = "£"
        msg = TemplateEngine(config).render_customer(acme_rows, "Bobs")
        assert "£55.00" in msg.body
