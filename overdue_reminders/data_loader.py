"""Overdue Reminders - Data Loader and Canonical Record Store.

Reads an open-invoice export and turns it into ``CanonicalRow`` objects
keyed by the canonical schema, whatever the source file called its
columns.

Supported data sources
~~~~~~~~~~~~~~~~~~~~~~
* **Delimited text** -- ``.csv`` / ``.tsv`` / ``.txt``; the delimiter is
  sniffed from the first few KB.
* **Excel workbook** -- ``.xlsx`` / ``.xlsm`` via openpyxl; the first row
  of the chosen sheet is the header row.

Rows are read in chunks so the canonical store can be filled
incrementally.  The raw rows are retained so a changed column mapping can
be re-applied without reading the file again.

Usage::

    from overdue_reminders.data_loader import load_file

    result = load_file("exports/open_invoices.csv")
    if result.error:
        print(result.error)
    print(f"Rows: {len(result.store.rows)}")
    result.print_summary()
"""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Any, Iterable, Iterator, Mapping, Union

import openpyxl

from .column_mapper import missing_required, resolve_mapping
from .models import CANONICAL_KEYS, CanonicalRow, FieldMapping
from .normalizer import clean_str, parse_amount, parse_date

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

RawRow = dict[str, Any]

DEFAULT_CHUNK_SIZE = 5000

_CSV_EXTENSIONS = {".csv", ".tsv", ".txt"}
_XLSX_EXTENSIONS = {".xlsx", ".xlsm"}
_SNIFF_BYTES = 64 * 1024
_SNIFF_DELIMITERS = ",;\t|"


class IngestError(Exception):
    """The source as a whole could not be read (not a per-row defect)."""


# ---------------------------------------------------------------------------
# Field resolution & canonicalization
# ---------------------------------------------------------------------------

def resolve_field(row: Mapping[str, Any], mapping: FieldMapping, field_name: str) -> Any:
    """Read one logical field from *row*.

    Two tiers: a row that already carries the canonical key for the field
    is read through it; otherwise the mapped header is used.  Returns
    ``None`` when neither is present.
    """
    canon_key = CANONICAL_KEYS[field_name]
    if canon_key in row:
        return row[canon_key]
    header = mapping.get(field_name)
    if header and header in row:
        return row[header]
    return None


def canonicalize(row: Mapping[str, Any], mapping: FieldMapping) -> CanonicalRow | None:
    """Build a ``CanonicalRow`` or return ``None`` for a row to be dropped.

    Dropped: empty customer, or an amount that parses to exactly zero.
    """
    customer = clean_str(resolve_field(row, mapping, "customer"))
    if not customer:
        return None

    amount = parse_amount(resolve_field(row, mapping, "amount"))
    if amount == 0:
        return None

    due_value = resolve_field(row, mapping, "due_date")
    return CanonicalRow(
        customer=customer,
        amount=amount,
        email=clean_str(resolve_field(row, mapping, "email")),
        invoice=clean_str(resolve_field(row, mapping, "invoice")),
        due_date=parse_date(due_value),
        due_raw=clean_str(due_value),
    )


def iter_canonical(raw_rows: Iterable[Mapping[str, Any]], mapping: FieldMapping) -> Iterator[CanonicalRow]:
    """Lazily canonicalize *raw_rows*, skipping defective rows."""
    for row in raw_rows:
        if not row:
            continue
        canon = canonicalize(row, mapping)
        if canon is None:
            logger.debug("Dropped row without customer or amount: %r", row)
            continue
        yield canon


def ingest(raw_rows: Iterable[Mapping[str, Any]], mapping: FieldMapping) -> list[CanonicalRow]:
    """Canonicalize *raw_rows* under *mapping*, preserving order."""
    return list(iter_canonical(raw_rows, mapping))


# ---------------------------------------------------------------------------
# Record store
# ---------------------------------------------------------------------------

class RecordStore:
    """Ordered canonical rows for one ingested file.

    Owns the retained raw rows, the header row and the active mapping.
    Consumers get a read-only tuple from :attr:`rows`; changing the mapping
    re-derives every canonical row from the raw buffer.
    """

    def __init__(self, headers: Iterable[str] = (), mapping: FieldMapping | None = None,
                 aliases: Mapping[str, list[str]] | None = None) -> None:
        self.headers: list[str] = list(headers)
        self.aliases = aliases
        self.mapping: FieldMapping = mapping or FieldMapping()
        self._raw: list[RawRow] = []
        self._rows: list[CanonicalRow] = []
        if self.headers and mapping is None:
            self.mapping = resolve_mapping(self.headers, aliases=aliases)

    # -- ingestion ------------------------------------------------------

    def set_headers(self, headers: Iterable[str]) -> None:
        """Record the header row and auto-map fields not set by hand."""
        self.headers = list(headers)
        self.mapping = resolve_mapping(self.headers, aliases=self.aliases, base=self.mapping)
        logger.info("Column mapping: %s", self.mapping.as_dict())

    def feed(self, chunk: Iterable[Mapping[str, Any]]) -> int:
        """Append a chunk of raw rows.  Returns the number of rows kept."""
        kept = 0
        for row in chunk:
            raw = dict(row)
            self._raw.append(raw)
            canon = canonicalize(raw, self.mapping)
            if canon is not None:
                self._rows.append(canon)
                kept += 1
        return kept

    def clear(self) -> None:
        self._raw.clear()
        self._rows.clear()

    # -- mapping changes ----------------------------------------------

    def remap(self, field_name: str, header: str) -> None:
        """Manually point *field_name* at *header* and re-canonicalize.

        Raises:
            ValueError: If *header* is not one of the file's headers.
        """
        if header and self.headers and header not in self.headers:
            raise ValueError(
                f"Column '{header}' not found.  Available: {self.headers}"
            )
        self.mapping.override(field_name, header)
        self._rebuild()

    def set_mapping(self, mapping: FieldMapping) -> None:
        self.mapping = mapping.copy()
        self._rebuild()

    def _rebuild(self) -> None:
        self._rows = ingest(self._raw, self.mapping)
        logger.info(
            "Re-canonicalized %d raw rows -> %d rows under mapping %s",
            len(self._raw), len(self._rows), self.mapping.as_dict(),
        )

    # -- read access --------------------------------------------------

    @property
    def rows(self) -> tuple[CanonicalRow, ...]:
        return tuple(self._rows)

    @property
    def raw_count(self) -> int:
        return len(self._raw)

    @property
    def dropped_count(self) -> int:
        return len(self._raw) - len(self._rows)

    def customers(self) -> list[str]:
        """Unique customer names in first-seen order."""
        return list(dict.fromkeys(r.customer for r in self._rows))

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self) -> Iterator[CanonicalRow]:
        return iter(tuple(self._rows))


# ---------------------------------------------------------------------------
# Result container
# ---------------------------------------------------------------------------

@dataclass
class LoadResult:
    """Aggregated output from :func:`load_file`."""

    store: RecordStore = field(default_factory=RecordStore)

    # Metadata
    source_file: str | None = None
    rows_scanned: int = 0
    error: str | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def rows(self) -> tuple[CanonicalRow, ...]:
        return self.store.rows

    @property
    def rows_dropped(self) -> int:
        return self.store.dropped_count

    def print_summary(self) -> None:
        """Print a human-readable summary of what was loaded."""
        print("=" * 65)
        print("  Overdue Reminders -- Data Load Summary")
        print("=" * 65)
        print(f"  Source file       : {self.source_file or '(buffer)'}")
        if self.error:
            print(f"  ERROR             : {self.error}")
            print("=" * 65)
            return
        print(f"  Rows scanned      : {self.rows_scanned}")
        print(f"  Rows dropped      : {self.rows_dropped}")
        print(f"  Invoice rows kept : {len(self.rows)}")
        print(f"  Customers         : {len(self.store.customers())}")
        print("-" * 65)
        print("  Column mapping:")
        for name, header in self.store.mapping.as_dict().items():
            manual = " (manual)" if name in self.store.mapping.manual else ""
            print(f"    {name:<10s}: {header or '(unmapped)'}{manual}")
        if self.warnings:
            print("-" * 65)
            print(f"  Warnings ({len(self.warnings)}):")
            for w in self.warnings[:20]:
                print(f"    - {w}")
            if len(self.warnings) > 20:
                print(f"    ... and {len(self.warnings) - 20} more")
        print("=" * 65)


# ---------------------------------------------------------------------------
# Readers
# ---------------------------------------------------------------------------

def _chunked(rows: Iterable[RawRow], chunk_size: int) -> Iterator[list[RawRow]]:
    chunk: list[RawRow] = []
    for row in rows:
        chunk.append(row)
        if len(chunk) >= chunk_size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


def _sniff_dialect(sample: str) -> type[csv.Dialect] | csv.Dialect:
    try:
        return csv.Sniffer().sniff(sample, delimiters=_SNIFF_DELIMITERS)
    except csv.Error:
        return csv.excel


def iter_csv_chunks(
    source: Union[str, Path, IO[str]],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> tuple[list[str], Iterator[list[RawRow]]]:
    """Open a delimited text file and return ``(headers, chunk iterator)``.

    Raises:
        IngestError: If the file can't be opened/decoded or has no header row.
    """
    owns_handle = isinstance(source, (str, Path))
    if owns_handle:
        path = Path(source)
        try:
            handle: IO[str] = open(path, "r", encoding="utf-8-sig", newline="")
        except FileNotFoundError as exc:
            raise IngestError(f"File not found: {path}") from exc
        except OSError as exc:
            raise IngestError(f"Cannot read {path}: {exc}") from exc
    else:
        handle = source

    try:
        sample = handle.read(_SNIFF_BYTES)
        handle.seek(0)
        reader = csv.DictReader(handle, dialect=_sniff_dialect(sample))
        headers = [h.strip() if h else "" for h in (reader.fieldnames or [])]
    except (csv.Error, UnicodeDecodeError) as exc:
        if owns_handle:
            handle.close()
        raise IngestError(f"Cannot parse header row: {exc}") from exc
    if not any(headers):
        if owns_handle:
            handle.close()
        raise IngestError("No header row found")
    reader.fieldnames = headers

    def rows() -> Iterator[RawRow]:
        try:
            for record in reader:
                record.pop(None, None)      # overflow cells past the header
                # Rows with only empty cells
                if not any(v not in (None, "") for v in record.values()):
                    continue
                yield record
        except (csv.Error, UnicodeDecodeError) as exc:
            raise IngestError(f"CSV parse error near line {reader.line_num}: {exc}") from exc
        finally:
            if owns_handle:
                handle.close()

    return headers, _chunked(rows(), chunk_size)


def iter_xlsx_chunks(
    source: Union[str, Path, IO[bytes]],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    *,
    sheet: str | None = None,
) -> tuple[list[str], Iterator[list[RawRow]]]:
    """Open a workbook sheet and return ``(headers, chunk iterator)``.

    Uses the active sheet unless *sheet* is given.

    Raises:
        IngestError: If the workbook can't be opened, the sheet is missing,
            or the sheet has no header row.
    """
    if isinstance(source, (str, Path)) and not Path(source).exists():
        raise IngestError(f"File not found: {source}")
    try:
        wb = openpyxl.load_workbook(source, data_only=True, read_only=True)
    except Exception as exc:
        raise IngestError(f"Cannot open workbook: {exc}") from exc

    if sheet:
        if sheet not in wb.sheetnames:
            wb.close()
            raise IngestError(f"Sheet '{sheet}' not found.  Available: {wb.sheetnames}")
        ws = wb[sheet]
    else:
        ws = wb.active

    row_iter = ws.iter_rows(values_only=True)
    header_cells = next(row_iter, None)
    if not header_cells or not any(c is not None for c in header_cells):
        wb.close()
        raise IngestError("No header row found")
    headers = ["" if c is None else str(c).strip() for c in header_cells]

    def rows() -> Iterator[RawRow]:
        try:
            for values in row_iter:
                if not any(v not in (None, "") for v in values):
                    continue
                yield {
                    h: values[idx] if idx < len(values) else None
                    for idx, h in enumerate(headers) if h
                }
        finally:
            wb.close()

    return headers, _chunked(rows(), chunk_size)


def open_source(
    source: Union[str, Path],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> tuple[list[str], Iterator[list[RawRow]]]:
    """Pick a reader by file extension.

    Raises:
        IngestError: For unsupported extensions or unreadable files.
    """
    suffix = Path(source).suffix.lower()
    if suffix in _XLSX_EXTENSIONS:
        return iter_xlsx_chunks(source, chunk_size)
    if suffix in _CSV_EXTENSIONS:
        return iter_csv_chunks(source, chunk_size)
    raise IngestError(
        f"Unsupported file type '{suffix}'.  "
        f"Expected one of {sorted(_CSV_EXTENSIONS | _XLSX_EXTENSIONS)}"
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def load_rows(
    headers: Iterable[str],
    chunks: Iterable[Iterable[Mapping[str, Any]]],
    *,
    overrides: Mapping[str, str] | None = None,
    aliases: Mapping[str, list[str]] | None = None,
    result: LoadResult | None = None,
) -> LoadResult:
    """Fill a fresh :class:`RecordStore` from already-split raw rows.

    Stream-level failures raised by *chunks* while iterating are captured
    in ``result.error`` and leave the store empty.
    """
    result = result or LoadResult()
    headers = list(headers)
    try:
        mapping = resolve_mapping(headers, overrides, aliases)
    except (KeyError, ValueError) as exc:
        result.error = str(exc)
        logger.error("Invalid column mapping: %s", exc)
        return result

    store = RecordStore(headers, mapping=mapping, aliases=aliases)
    result.store = store

    for name in missing_required(mapping):
        msg = f"No column mapped for required field '{name}' -- all customers will show zero"
        result.warnings.append(msg)
        logger.warning(msg)

    try:
        for chunk in chunks:
            chunk = list(chunk)
            result.rows_scanned += len(chunk)
            kept = store.feed(chunk)
            logger.debug("Chunk of %d rows -> %d kept", len(chunk), kept)
    except IngestError as exc:
        store.clear()
        result.rows_scanned = 0
        result.error = str(exc)
        logger.error("Ingestion failed: %s", exc)
        return result

    logger.info(
        "Ingested %d invoice rows from %d rows (%d dropped)",
        len(store), result.rows_scanned, store.dropped_count,
    )
    return result


def load_file(
    source: Union[str, Path],
    *,
    overrides: Mapping[str, str] | None = None,
    aliases: Mapping[str, list[str]] | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> LoadResult:
    """Load an invoice export into a :class:`LoadResult`.

    Never raises for bad input: an unreadable file is reported once in
    ``LoadResult.error`` with zero rows.

    Parameters
    ----------
    source:
        Path to a ``.csv``/``.tsv``/``.txt`` or ``.xlsx``/``.xlsm`` file.
    overrides:
        Manual ``{field: header}`` choices that beat auto-mapping.
    aliases:
        Per-field alias lists (defaults to the built-in presets).
    chunk_size:
        Rows handed to the store per chunk.
    """
    result = LoadResult(source_file=str(source))
    try:
        headers, chunks = open_source(source, chunk_size)
    except IngestError as exc:
        result.error = str(exc)
        logger.error("Cannot load %s: %s", source, exc)
        return result

    logger.info("Loading %s (%d columns)", source, len(headers))
    return load_rows(headers, chunks, overrides=overrides, aliases=aliases, result=result)
