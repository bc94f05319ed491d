"""Tests for overdue_reminders.data_loader -- ingestion and the record store.

Covers:
- Canonicalization: dropped rows, canonical-key precedence
- RecordStore chunked feeding, remapping from the raw buffer
- CSV loading: delimiter sniffing, BOM, blank rows, overflow cells
- XLSX loading via openpyxl
- Stream-level failures (missing file, unsupported type, no header)
- Required-field warnings
"""

from datetime import date
from decimal import Decimal

import openpyxl
import pytest

from overdue_reminders.column_mapper import auto_map
from overdue_reminders.data_loader import (
    IngestError,
    RecordStore,
    canonicalize,
    ingest,
    load_file,
    load_rows,
    resolve_field,
)
from overdue_reminders.models import FieldMapping


HEADERS = ["Customer", "Email", "Invoice", "Amount", "Due Date"]


@pytest.fixture
def mapping() -> FieldMapping:
    return auto_map(HEADERS)


def _row(customer="Acme", email="ap@acme.test", invoice="INV-1", amount="100", due="2026-01-01"):
    return {"Customer": customer, "Email": email, "Invoice": invoice, "Amount": amount, "Due Date": due}


def _write(path, text):
    path.write_text(text, encoding="utf-8")
    return path


# ============================================================================
# Canonicalization
# ============================================================================

class TestCanonicalize:

    def test_full_row(self, mapping):
        row = canonicalize(_row(amount="$1,234.50"), mapping)
        assert row.customer == "Acme"
        assert row.email == "ap@acme.test"
        assert row.invoice == "INV-1"
        assert row.amount == Decimal("1234.50")
        assert row.due_date == date(2026, 1, 1)
        assert row.due_raw == "2026-01-01"

    @pytest.mark.parametrize("kwargs", [
        {"customer": ""},
        {"customer": "   "},
        {"amount": "0"},
        {"amount": "n/a"},
        {"amount": ""},
    ])
    def test_dropped(self, mapping, kwargs):
        assert canonicalize(_row(**kwargs), mapping) is None

    def test_unparseable_due_keeps_raw(self, mapping):
        row = canonicalize(_row(due="end of month"), mapping)
        assert row.due_date is None
        assert row.due_raw == "end of month"

    def test_canonical_key_beats_mapping(self, mapping):
        row = {"Customer": "Header Name", "__customer": "Canonical Name"}
        assert resolve_field(row, mapping, "customer") == "Canonical Name"

    def test_missing_field_is_none(self, mapping):
        assert resolve_field({"Customer": "Acme"}, mapping, "email") is None

    def test_canonical_round_trip(self, mapping):
        row = canonicalize(_row(), mapping)
        # an empty mapping still reads every field through the canonical keys
        again = canonicalize(row.as_canonical_dict(), FieldMapping())
        assert again == row

    def test_ingest_preserves_order_and_drops_defects(self, mapping):
        raw = []
        for i in range(100):
            if i % 10 == 3:
                raw.append(_row(customer=f"C{i}", amount="0"))
            else:
                raw.append(_row(customer=f"C{i}", amount=str(i + 1)))
        rows = ingest(raw, mapping)
        assert len(rows) == 90
        assert [r.customer for r in rows] == [f"C{i}" for i in range(100) if i % 10 != 3]


# ============================================================================
# Record store
# ============================================================================

class TestRecordStore:

    def test_feed_in_chunks(self):
        store = RecordStore(HEADERS)
        assert store.feed([_row(customer="A"), _row(customer="B", amount="0")]) == 1
        assert store.feed([_row(customer="C")]) == 1
        assert [r.customer for r in store.rows] == ["A", "C"]
        assert store.raw_count == 3
        assert store.dropped_count == 1

    def test_rows_are_read_only(self):
        store = RecordStore(HEADERS)
        store.feed([_row()])
        assert isinstance(store.rows, tuple)

    def test_customers_first_seen(self):
        store = RecordStore(HEADERS)
        store.feed([_row(customer="B"), _row(customer="A"), _row(customer="B")])
        assert store.customers() == ["B", "A"]

    def test_remap_recanonicalizes(self):
        headers = ["Customer", "Email", "AR Contact", "Amount"]
        store = RecordStore(headers)
        store.feed([{"Customer": "Acme", "Email": "", "AR Contact": "ar@acme.test", "Amount": "50"}])
        assert store.rows[0].email == ""

        store.remap("email", "AR Contact")
        assert store.rows[0].email == "ar@acme.test"
        assert "email" in store.mapping.manual

    def test_remap_amount_restores_dropped_rows(self):
        headers = ["Customer", "Notes", "Open"]
        store = RecordStore(headers)
        store.feed([{"Customer": "Acme", "Notes": "x", "Open": "75"}])
        assert len(store) == 0

        store.remap("amount", "Open")
        assert len(store) == 1
        assert store.rows[0].amount == Decimal("75")

    def test_remap_unknown_header(self):
        store = RecordStore(HEADERS)
        with pytest.raises(ValueError):
            store.remap("email", "Nope")

    def test_set_headers_keeps_manual_choice(self):
        store = RecordStore()
        store.mapping.override("email", "AR Contact")
        store.set_headers(["Customer", "Email", "AR Contact", "Amount"])
        assert store.mapping.email == "AR Contact"
        assert store.mapping.customer == "Customer"


# ============================================================================
# CSV loading
# ============================================================================

class TestLoadCsv:

    def test_basic(self, tmp_path):
        path = _write(tmp_path / "inv.csv", (
            "Customer,Email,Invoice,Amount,Due Date\n"
            "Acme,ap@acme.test,INV-1,100,2026-01-01\n"
            "Acme,,CR-1,-20,2026-01-15\n"
            "Bobs,,INV-2,\"1,500.00\",2025-11-30\n"
        ))
        result = load_file(path)
        assert result.ok
        assert result.rows_scanned == 3
        assert len(result.rows) == 3
        assert result.rows[1].amount == Decimal("-20")
        assert result.rows[2].amount == Decimal("1500.00")
        assert result.store.mapping.customer == "Customer"

    def test_semicolon_delimiter_and_bom(self, tmp_path):
        path = tmp_path / "inv.csv"
        path.write_text(
            "\ufeffCustomer;Amount;Due Date\nAcme;100;2026-01-01\nBobs;200;2026-01-02\n",
            encoding="utf-8",
        )
        result = load_file(path)
        assert result.ok
        assert result.store.headers[0] == "Customer"
        assert [r.customer for r in result.rows] == ["Acme", "Bobs"]

    def test_blank_and_defective_rows(self, tmp_path):
        path = _write(tmp_path / "inv.csv", (
            "Customer,Amount\n"
            "Acme,100\n"
            ",\n"
            "Subtotal,\n"
            ",50\n"
            "Bobs,abc\n"
            "Cats,10\n"
        ))
        result = load_file(path)
        assert [r.customer for r in result.rows] == ["Acme", "Cats"]
        assert result.rows_dropped == 3

    def test_overflow_cells_ignored(self, tmp_path):
        path = _write(tmp_path / "inv.csv", "Customer,Amount\nAcme,100,extra,cells\n")
        result = load_file(path)
        assert result.ok
        assert result.rows[0].amount == Decimal("100")

    def test_chunking_does_not_change_result(self, tmp_path):
        lines = ["Customer,Amount"] + [f"C{i},{i + 1}" for i in range(25)]
        path = _write(tmp_path / "inv.csv", "\n".join(lines) + "\n")
        result = load_file(path, chunk_size=4)
        assert len(result.rows) == 25
        assert result.rows[-1].customer == "C24"

    def test_overrides(self, tmp_path):
        path = _write(tmp_path / "inv.csv", "Customer,Email,AR Contact,Amount\nAcme,,ar@acme.test,10\n")
        result = load_file(path, overrides={"email": "AR Contact"})
        assert result.rows[0].email == "ar@acme.test"

    def test_override_unknown_header_is_error(self, tmp_path):
        path = _write(tmp_path / "inv.csv", "Customer,Amount\nAcme,10\n")
        result = load_file(path, overrides={"email": "Nope"})
        assert not result.ok
        assert len(result.rows) == 0

    def test_missing_required_warns(self, tmp_path):
        path = _write(tmp_path / "inv.csv", "Customer,Notes\nAcme,hello\n")
        result = load_file(path)
        assert result.ok
        assert len(result.rows) == 0
        assert any("amount" in w for w in result.warnings)


# ============================================================================
# XLSX loading
# ============================================================================

class TestLoadXlsx:

    def test_basic(self, tmp_path):
        wb = openpyxl.Workbook()
        ws = wb.active
        ws.append(["Customer Name", "Email", "Invoice #", "Amount", "Due Date"])
        ws.append(["Acme", "ap@acme.test", "INV-1", 100.5, date(2026, 1, 1)])
        ws.append([None, None, None, None, None])
        ws.append(["Bobs", None, "INV-2", -20, None])
        path = tmp_path / "inv.xlsx"
        wb.save(path)

        result = load_file(path)
        assert result.ok
        assert [r.customer for r in result.rows] == ["Acme", "Bobs"]
        assert result.rows[0].amount == Decimal("100.5")
        assert result.rows[0].due_date == date(2026, 1, 1)
        assert result.rows[1].email == ""


# ============================================================================
# Stream-level failures
# ============================================================================

class TestLoadErrors:

    def test_missing_file(self, tmp_path):
        result = load_file(tmp_path / "nope.csv")
        assert not result.ok
        assert "not found" in result.error
        assert len(result.rows) == 0

    def test_unsupported_extension(self, tmp_path):
        path = _write(tmp_path / "inv.pdf", "hello")
        result = load_file(path)
        assert not result.ok
        assert "Unsupported" in result.error

    def test_empty_file(self, tmp_path):
        path = _write(tmp_path / "inv.csv", "")
        result = load_file(path)
        assert not result.ok

    def test_failure_mid_stream_leaves_no_rows(self):
        def chunks():
            yield [_row(customer="A")]
            raise IngestError("broken stream")

        result = load_rows(HEADERS, chunks())
        assert result.error == "broken stream"
        assert len(result.rows) == 0
        assert result.rows_scanned == 0
