"""Overdue Reminders -- Value Normalizer.

Pure functions turning raw cell values into typed values.  Every parser
here is lenient: malformed input degrades to ``0`` / ``None`` / ``""``
instead of raising, because invoice exports routinely carry subtotal,
note and padding rows alongside real invoices.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

# Cell values that should be treated as null / unknown.
_NULL_SIGNALS: set[str] = {"", "#N/A", "N/A", "#REF!", "nan", "NaN", "None"}

_ZERO = Decimal("0")

# Anything that is not part of a number.
_NON_NUMERIC = re.compile(r"[^0-9.,-]")

# A comma followed by exactly three digits, then end-of-string or a non-digit.
_THOUSANDS_COMMA = re.compile(r",(?=\d{3}(?:\D|$))")

# Plain signed decimal once separators have been normalized.
_DECIMAL_LITERAL = re.compile(r"^-?(?:\d+\.?\d*|\.\d+)$")

# Excel serial dates between 2009-07-06 and 2064-04-09.
_EXCEL_EPOCH = datetime(1899, 12, 30)
_EXCEL_SERIAL_RANGE = (40000, 60000)

# Tried in order after ISO parsing fails.  US month-first wins over
# day-first for ambiguous values like 03/04/2024.
_DATE_FORMATS: tuple[str, ...] = (
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%m/%d/%y",
    "%d/%m/%y",
    "%m-%d-%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%Y/%m/%d",
    "%Y.%m.%d",
    "%d-%b-%Y",
    "%d-%b-%y",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%B %d %Y",
    "%a, %d %b %Y",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %I:%M %p",
)


# ---------------------------------------------------------------------------
# Strings
# ---------------------------------------------------------------------------

def clean_str(val: Any) -> str:
    """Convert a cell value to a stripped string.  Null-ish becomes ``""``."""
    if val is None:
        return ""
    if isinstance(val, float) and math.isnan(val):
        return ""
    s = str(val).strip()
    return "" if s in _NULL_SIGNALS else s


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------

def parse_amount(raw: Any) -> Decimal:
    """Parse a money cell into a ``Decimal``.

    Handles:
    - Numbers straight from the CSV/XLSX reader.
    - Currency-decorated strings like ``"$1,234.56"`` or ``"AUD 99"``.
    - Locale formats: ``"1,234.56"`` and ``"1.234,56"`` are both 1234.56;
      ``"12,5"`` is 12.5; ``"1,234"`` is 1234.

    A comma is a thousands separator when followed by exactly three digits
    and then the end or a non-digit; otherwise it is the decimal mark.
    When both ``.`` and ``,`` are present the right-most one is the decimal
    mark.  Anything that still isn't a single plain number yields ``0``.
    """
    if raw is None or isinstance(raw, bool):
        return _ZERO

    if isinstance(raw, Decimal):
        return raw if raw.is_finite() else _ZERO
    if isinstance(raw, int):
        return Decimal(raw)
    if isinstance(raw, float):
        if not math.isfinite(raw):
            return _ZERO
        return Decimal(repr(raw))

    s = _NON_NUMERIC.sub("", str(raw))
    if not s:
        return _ZERO

    if "." in s and "," in s:
        if s.rfind(",") > s.rfind("."):
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    elif "," in s:
        s = _THOUSANDS_COMMA.sub("", s)
        s = s.replace(",", ".")

    if not _DECIMAL_LITERAL.match(s):
        return _ZERO

    try:
        return Decimal(s)
    except InvalidOperation:
        return _ZERO


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

def parse_date(raw: Any) -> date | None:
    """Parse a due-date cell.

    Spreadsheet readers usually hand back ``datetime`` objects already;
    CSV cells arrive as text in whatever format the exporting system
    used.  Also handles Excel serial date numbers.  Returns ``None`` for
    empty or unrecognised values.
    """
    if raw is None or isinstance(raw, bool):
        return None

    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw

    # Numeric -- might be an Excel serial date
    if isinstance(raw, (int, float, Decimal)):
        try:
            serial = int(raw)
        except (ValueError, OverflowError):
            return None
        lo, hi = _EXCEL_SERIAL_RANGE
        if lo < serial < hi:
            return (_EXCEL_EPOCH + timedelta(days=serial)).date()
        return None

    s = clean_str(raw)
    if not s:
        return None

    iso = s[:-1] + "+00:00" if s.endswith("Z") else s
    try:
        return datetime.fromisoformat(iso).date()
    except ValueError:
        pass

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue

    return None


def days_overdue(due: date | None, now: date | datetime) -> int:
    """Whole days between ``due`` (taken as midnight) and ``now``, floored.

    Negative when the invoice is not yet due; ``0`` when ``due`` is None.
    """
    if due is None:
        return 0

    if isinstance(now, datetime):
        start = datetime.combine(due, datetime.min.time(), tzinfo=now.tzinfo)
        return math.floor((now - start) / timedelta(days=1))

    return (now - due).days
