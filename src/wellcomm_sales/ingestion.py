"""Upload ingestion: spreadsheet grid to normalized sales transactions.

The pipeline never raises for row-level problems. Each data row ends up in
exactly one bucket (accepted, skipped, duplicate) so that
``total_rows == valid_rows + skipped_rows + duplicate_rows`` always holds.
"""

from __future__ import annotations

import zipfile
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from openpyxl.utils.exceptions import InvalidFileException

from . import data_manager, log
from .constants import (
    FREE_INSTALLATION_MARKER,
    PAYMENT_CONFIRMED_MARKER,
    ColumnKey,
    Currency,
    InstallationType,
)
from .header_mapper import ColumnMap, resolve_column_map
from .parsing import cell_text, detect_currency, parse_amount, parse_date


@dataclass(frozen=True)
class NormalizedTransaction:
    """One accepted sale, ready to be stored."""

    transaction_date: date
    customer_name: str
    seller_name: str
    zone: str
    plan: str
    payment_method: str
    reference_code: Optional[str]
    installation_type: InstallationType
    currency: Currency
    subscription_amount: Decimal

    @property
    def dedup_key(self) -> str:
        return dedup_key(
            self.customer_name,
            self.plan,
            self.seller_name,
            self.zone,
            self.transaction_date,
        )


@dataclass(frozen=True)
class DuplicateInfo:
    """A row dropped because its dedup key was already seen in the file."""

    row_number: int
    customer_name: str
    seller_name: str
    plan: str
    zone: str
    date: str


@dataclass(frozen=True)
class ParseResult:
    """Outcome of parsing one upload."""

    transactions: List[NormalizedTransaction] = field(default_factory=list)
    total_rows: int = 0
    valid_rows: int = 0
    skipped_rows: int = 0
    duplicate_rows: int = 0
    duplicates: List[DuplicateInfo] = field(default_factory=list)
    detected_headers: List[str] = field(default_factory=list)
    mapped_columns: ColumnMap = field(default_factory=dict)


def dedup_key(customer_name: str, plan: str, seller_name: str, zone: str, transaction_date: date) -> str:
    """Return the identity used to spot re-submitted sales.

    The same formula is used inside a file and against stored history, so a
    sale is a duplicate whenever customer, plan, seller, zone and day match.
    """

    return "|".join([customer_name, plan, seller_name, zone, transaction_date.isoformat()])


class _RowReader:
    """Column-map aware accessor for the cells of a data row."""

    def __init__(self, column_map: ColumnMap) -> None:
        self._column_map = column_map

    def get(self, row: Sequence[object], key: ColumnKey) -> object:
        index = self._column_map.get(key.value)
        if index is None or index >= len(row):
            return None
        return row[index]

    def text(self, row: Sequence[object], key: ColumnKey) -> str:
        return cell_text(self.get(row, key))


def parse_rows(rows: Sequence[Sequence[object]]) -> ParseResult:
    """Normalize a sheet grid whose first row holds the headers.

    Args:
        rows (Sequence[Sequence[object]]): Every row of the sheet, header
            first. Rows may be ragged; missing cells read as empty.

    Returns:
        ParseResult: Accepted transactions plus per-bucket counts. Every
            non-header row counts; blank rows fail the payment check and are
            skipped. ``DuplicateInfo.row_number`` is the 1-based sheet row.
    """

    if len(rows) < 2:
        return ParseResult()

    headers = [cell_text(cell) for cell in rows[0]]
    data_rows = rows[1:]
    column_map = resolve_column_map(headers, data_rows)
    reader = _RowReader(column_map)

    transactions: List[NormalizedTransaction] = []
    duplicates: List[DuplicateInfo] = []
    seen_keys: Set[str] = set()
    skipped_rows = 0

    for row_number, row in enumerate(data_rows, start=2):
        if reader.text(row, ColumnKey.DINERO_RECIBIDO).upper() != PAYMENT_CONFIRMED_MARKER:
            skipped_rows += 1
            continue

        seller_name = reader.text(row, ColumnKey.VENDEDOR)
        if not seller_name:
            skipped_rows += 1
            continue

        transaction_date = parse_date(reader.get(row, ColumnKey.FECHA))
        if transaction_date is None:
            skipped_rows += 1
            continue

        customer_name = reader.text(row, ColumnKey.NOMBRE)
        zone = reader.text(row, ColumnKey.ZONA)
        plan = reader.text(row, ColumnKey.PLAN)

        key = dedup_key(customer_name, plan, seller_name, zone, transaction_date)
        if key in seen_keys:
            duplicates.append(
                DuplicateInfo(
                    row_number=row_number,
                    customer_name=customer_name,
                    seller_name=seller_name,
                    plan=plan,
                    zone=zone,
                    date=transaction_date.isoformat(),
                )
            )
            continue
        seen_keys.add(key)

        is_free = reader.text(row, ColumnKey.GRATIS).upper() == FREE_INSTALLATION_MARKER
        payment_method = reader.text(row, ColumnKey.MEDIO_PAGO)
        transactions.append(
            NormalizedTransaction(
                transaction_date=transaction_date,
                customer_name=customer_name,
                seller_name=seller_name,
                zone=zone,
                plan=plan,
                payment_method=payment_method,
                reference_code=reader.text(row, ColumnKey.REFERENCIA_REGISTRO) or None,
                installation_type=InstallationType.FREE if is_free else InstallationType.PAID,
                currency=detect_currency(payment_method),
                subscription_amount=parse_amount(reader.get(row, ColumnKey.MONTO_SUSCRIPCION)),
            )
        )

    log.debug(
        "Parsed %d data rows: %d valid, %d skipped, %d duplicates",
        len(data_rows),
        len(transactions),
        skipped_rows,
        len(duplicates),
    )
    return ParseResult(
        transactions=transactions,
        total_rows=len(data_rows),
        valid_rows=len(transactions),
        skipped_rows=skipped_rows,
        duplicate_rows=len(duplicates),
        duplicates=duplicates,
        detected_headers=headers,
        mapped_columns=dict(column_map),
    )


def parse_file(data: bytes) -> ParseResult:
    """Parse the first sheet of an ``.xlsx`` upload.

    Unreadable or empty workbooks produce an empty :class:`ParseResult`
    rather than an exception so callers can show "no data" uniformly.
    """

    try:
        rows = data_manager.read_upload_rows(data)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as exc:
        log.warning("Unable to read uploaded workbook: %s", exc)
        return ParseResult()
    return parse_rows(rows)


def filter_against_history(
    transactions: Iterable[NormalizedTransaction],
    existing_keys: Iterable[str],
) -> Tuple[List[NormalizedTransaction], int]:
    """Drop transactions whose dedup key is already stored.

    Args:
        transactions (Iterable[NormalizedTransaction]): Freshly parsed sales.
        existing_keys (Iterable[str]): Dedup keys of previously stored sales.

    Returns:
        tuple[list[NormalizedTransaction], int]: The transactions to store, in
            input order, and how many were dropped as history duplicates.
    """

    known: Set[str] = set(existing_keys)
    fresh: List[NormalizedTransaction] = []
    dropped = 0
    for transaction in transactions:
        key = transaction.dedup_key
        if key in known:
            dropped += 1
            continue
        known.add(key)
        fresh.append(transaction)
    return fresh, dropped


def count_by(transactions: Iterable[NormalizedTransaction], attribute: str) -> Dict[str, int]:
    """Tally transactions by one of their string attributes."""

    counts: Dict[str, int] = {}
    for transaction in transactions:
        value = getattr(transaction, attribute) or "Unknown"
        counts[value] = counts.get(value, 0) + 1
    return counts


__all__ = [
    "NormalizedTransaction",
    "DuplicateInfo",
    "ParseResult",
    "dedup_key",
    "parse_rows",
    "parse_file",
    "filter_against_history",
    "count_by",
]
