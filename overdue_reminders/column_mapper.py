"""Overdue Reminders -- Column Mapper.

Proposes which spreadsheet header feeds each canonical field.  Exports
from different accounting systems name the same column differently
("Customer Name", "Account Name", "Client"...), so matching is done on
*header text* against ordered alias lists rather than on column position.

Matching strategy, per field:
  1. Exact case-insensitive match of an alias, aliases tried in order.
  2. First header that *contains* an alias, aliases tried in order.
  3. Otherwise unmapped (``""``).

Usage::

    from overdue_reminders.column_mapper import auto_map

    mapping = auto_map(["Customer Name", "Email", "Invoice #", "Amount", "Due Date"])
    mapping.customer   # "Customer Name"
"""

from __future__ import annotations

import logging
from typing import Mapping, Sequence

from .config import ColumnAliases
from .models import FIELDS, REQUIRED_FIELDS, FieldMapping

logger = logging.getLogger(__name__)

DEFAULT_ALIASES: dict[str, list[str]] = ColumnAliases().as_dict()


def _pick_header(headers: Sequence[str], lowered: Sequence[str], aliases: Sequence[str]) -> str:
    """Return the header matching the earliest alias, or ``""``."""
    wanted = [a.strip().lower() for a in aliases if a and a.strip()]

    # Pass 1: exact
    for alias in wanted:
        for idx, header in enumerate(lowered):
            if header == alias:
                return headers[idx]

    # Pass 2: substring
    for alias in wanted:
        for idx, header in enumerate(lowered):
            if alias in header:
                return headers[idx]

    return ""


def auto_map(
    headers: Sequence[str],
    aliases: Mapping[str, Sequence[str]] | None = None,
) -> FieldMapping:
    """Best-guess mapping from canonical fields to *headers*.

    Args:
        headers: Header row of the source file, in file order.
        aliases: Per-field ordered alias lists.  Defaults to
            :data:`DEFAULT_ALIASES`; fields missing here stay unmapped.

    Returns:
        A fresh :class:`FieldMapping` with no manual fields.
    """
    alias_table = DEFAULT_ALIASES if aliases is None else aliases
    clean_headers = ["" if h is None else str(h) for h in headers]
    lowered = [h.strip().lower() for h in clean_headers]

    mapping = FieldMapping()
    for name in FIELDS:
        header = _pick_header(clean_headers, lowered, alias_table.get(name, ()))
        setattr(mapping, name, header)

    logger.debug("Auto-mapped headers: %s", mapping.as_dict())
    return mapping


def resolve_mapping(
    headers: Sequence[str],
    overrides: Mapping[str, str] | None = None,
    aliases: Mapping[str, Sequence[str]] | None = None,
    *,
    base: FieldMapping | None = None,
) -> FieldMapping:
    """Auto-map *headers*, then apply manual overrides on top.

    Args:
        headers: Header row of the source file.
        overrides: ``{field: header}`` chosen by the user.  An empty header
            explicitly unmaps the field.
        aliases: Alias table passed through to :func:`auto_map`.
        base: An existing mapping whose manual fields must be kept.

    Returns:
        The resolved :class:`FieldMapping`.

    Raises:
        KeyError: If an override names an unknown field.
        ValueError: If an override names a header not in *headers*.
    """
    header_set = {str(h) for h in headers if h is not None}
    mapping = base.copy() if base is not None else FieldMapping()
    mapping.merge_auto(auto_map(headers, aliases))

    for field_name, header in (overrides or {}).items():
        if header and header not in header_set:
            raise ValueError(
                f"Column '{header}' for field '{field_name}' not found.  "
                f"Available: {list(headers)}"
            )
        mapping.override(field_name, header)

    return mapping


def missing_required(mapping: FieldMapping) -> list[str]:
    """Required fields (customer, amount) that have no header."""
    return [name for name in REQUIRED_FIELDS if not mapping.get(name)]


def parse_override(spec: str) -> tuple[str, str]:
    """Parse a ``field=Header`` command-line override.

    Accepts ``dueDate`` as an alias for ``due_date``.

    Raises:
        ValueError: If *spec* has no ``=`` or names an unknown field.
    """
    if "=" not in spec:
        raise ValueError(f"Expected FIELD=HEADER, got {spec!r}")
    field_name, header = spec.split("=", 1)
    field_name = field_name.strip()
    if field_name == "dueDate":
        field_name = "due_date"
    if field_name not in FIELDS:
        raise ValueError(f"Unknown field {field_name!r}; expected one of {list(FIELDS)}")
    return field_name, header.strip()
