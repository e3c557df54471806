"""Map spreadsheet headers onto canonical column keys.

Resolution happens in two pure phases:

1. :func:`normalize_headers` matches each header cell against the synonym
   table in :mod:`wellcomm_sales.constants`.
2. :func:`detect_payment_column` samples the data rows right of ``zona``
   because upload files often leave the payment-method column unlabeled.

:func:`resolve_column_map` combines both and is what the ingestion pipeline
uses.
"""

from __future__ import annotations

from typing import Dict, Optional, Sequence

from .constants import (
    HEADER_SYNONYMS,
    KNOWN_PAYMENT_VALUES,
    PAYMENT_COLUMN_SAMPLE_SIZE,
    ColumnKey,
)
from .parsing import normalize_key


ColumnMap = Dict[str, int]


def normalize_headers(headers: Sequence[object]) -> ColumnMap:
    """Build the header-based column map for one file.

    Args:
        headers (Sequence[object]): Cells of the sheet's first row.

    Returns:
        ColumnMap: Canonical key (string value of :class:`ColumnKey`) to
            0-based column index. Only the first ``montoSuscripcion`` column
            is kept; for any other repeated key the rightmost column wins.
    """

    column_map: ColumnMap = {}
    for index, header in enumerate(headers):
        key = HEADER_SYNONYMS.get(normalize_key(header))
        if key is None:
            continue
        if key is ColumnKey.MONTO_SUSCRIPCION and key.value in column_map:
            continue
        column_map[key.value] = index
    return column_map


def detect_payment_column(
    column_map: ColumnMap,
    data_rows: Sequence[Sequence[object]],
    *,
    sample_size: int = PAYMENT_COLUMN_SAMPLE_SIZE,
) -> Optional[int]:
    """Return the index of the unnamed payment column, if the data shows one.

    The column right after ``zona`` is inspected over the first
    ``sample_size`` rows; a single known payment-method value is enough.
    """

    zona_index = column_map.get(ColumnKey.ZONA.value)
    if zona_index is None:
        return None

    candidate = zona_index + 1
    for row in data_rows[:sample_size]:
        value = row[candidate] if candidate < len(row) else None
        if normalize_key(value) in KNOWN_PAYMENT_VALUES:
            return candidate
    return None


def resolve_column_map(
    headers: Sequence[object],
    data_rows: Sequence[Sequence[object]],
) -> ColumnMap:
    """Run both resolution phases and return the final column map."""

    column_map = normalize_headers(headers)
    payment_index = detect_payment_column(column_map, data_rows)
    if payment_index is not None:
        column_map = {**column_map, ColumnKey.MEDIO_PAGO.value: payment_index}
    return column_map


__all__ = [
    "ColumnMap",
    "normalize_headers",
    "detect_payment_column",
    "resolve_column_map",
]
