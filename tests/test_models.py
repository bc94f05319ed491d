"""Tests for overdue_reminders.models -- schema dataclasses.

Covers:
- FieldMapping overrides, manual tracking and auto-merge
- CanonicalRow credit detection and immutability
- CustomerAggregate overdue / emailable rules
- OutboundMessage JSON round trip with optional replyTo
- RenderedMessage recipient handling
"""

from dataclasses import FrozenInstanceError
from decimal import Decimal

import pytest

from overdue_reminders.models import (
    CanonicalRow,
    CustomerAggregate,
    FieldMapping,
    OutboundMessage,
    Provider,
    RenderedMessage,
)


class TestFieldMapping:

    def test_override_marks_manual(self):
        m = FieldMapping()
        m.override("email", "AR Contact")
        assert m.email == "AR Contact"
        assert m.manual == {"email"}

    def test_override_unknown_field(self):
        with pytest.raises(KeyError):
            FieldMapping().override("phone", "Tel")

    def test_merge_auto_respects_manual(self):
        m = FieldMapping()
        m.override("email", "AR Contact")
        m.merge_auto(FieldMapping(customer="Customer", email="Email", amount="Amount"))
        assert m.email == "AR Contact"
        assert m.customer == "Customer"
        assert m.amount == "Amount"

    def test_copy_is_independent(self):
        m = FieldMapping(customer="Customer")
        m.override("email", "Email")
        clone = m.copy()
        clone.override("amount", "Total")
        assert m.amount == ""
        assert "amount" not in m.manual
        assert clone.customer == "Customer"

    def test_unmapped(self):
        assert FieldMapping(customer="C", amount="A").unmapped == ["email", "invoice", "due_date"]


class TestCanonicalRow:

    def test_credit(self):
        assert CanonicalRow("Acme", Decimal("-5")).is_credit
        assert not CanonicalRow("Acme", Decimal("5")).is_credit

    def test_frozen(self):
        row = CanonicalRow("Acme", Decimal("5"))
        with pytest.raises(FrozenInstanceError):
            row.amount = Decimal("6")


class TestCustomerAggregate:

    @pytest.mark.parametrize("total,overdue,emailable", [
        ("100", "100", True),
        ("0.01", "0.01", True),
        ("0", "0", False),
        ("-20", "0", False),
    ])
    def test_rules(self, total, overdue, emailable):
        agg = CustomerAggregate("Acme", total=Decimal(total))
        assert agg.overdue == Decimal(overdue)
        assert agg.is_emailable is emailable


class TestOutboundMessage:

    def test_from_dict(self):
        msg = OutboundMessage.from_dict({"to": "a@x.test", "subject": "S", "text": "T", "replyTo": "r@x.test"})
        assert msg == OutboundMessage("a@x.test", "S", "T", "r@x.test")

    def test_missing_keys_become_empty(self):
        assert OutboundMessage.from_dict({}) == OutboundMessage("", "", "")

    def test_not_a_dict(self):
        with pytest.raises(ValueError):
            OutboundMessage.from_dict(["a@x.test"])

    def test_to_dict_omits_empty_reply_to(self):
        assert OutboundMessage("a", "s", "t").to_dict() == {"to": "a", "subject": "s", "text": "t"}


class TestRenderedMessage:

    def test_has_recipient(self):
        assert RenderedMessage("a@x.test", "S", "B").has_recipient
        assert not RenderedMessage("  ", "S", "B").has_recipient

    def test_to_outbound(self):
        out = RenderedMessage("a@x.test", "S", "B", customer="Acme", reply_to="r@x.test").to_outbound()
        assert out == OutboundMessage("a@x.test", "S", "B", "r@x.test")


def test_provider_values():
    assert [p.value for p in Provider] == ["microsoft", "google"]
    assert Provider("google") is Provider.GOOGLE
