"""Cell-level parsers for uploaded sales spreadsheets.

Every helper here is total: malformed input degrades to ``None`` (dates) or
zero (amounts) instead of raising, because a single bad cell must never abort
an upload. Rejection policy belongs to :mod:`wellcomm_sales.ingestion`.
"""

from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from dateutil import parser as date_parser
from openpyxl.utils.datetime import from_excel

from .constants import BCV_PAYMENT_METHODS, USD_PAYMENT_METHODS, Currency


_DATE_SEPARATORS = re.compile(r"[/\-.]")
_NON_AMOUNT_CHARS = re.compile(r"[^0-9.,]")
_LEADING_FLOAT = re.compile(r"\d*(?:\.\d*)?")
_DATE_COMPONENT = re.compile(r"\d+|[^\W\d_]+")

# Missing components in free-form dates fill from here, never from today.
_DATE_PARSE_DEFAULT = datetime(2001, 1, 1)


def normalize_key(value: object) -> str:
    """Fold a header or payment label into its comparison form.

    The text is Unicode-decomposed with combining marks dropped, lower-cased,
    trimmed, and internal whitespace runs collapse to one space. Applying the
    function twice yields the same string.
    """

    text = unicodedata.normalize("NFD", cell_text(value))
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    return " ".join(text.lower().split())


def cell_text(value: object) -> str:
    """Return the trimmed string form of a cell, ``""`` for empty cells."""

    if value is None:
        return ""
    return str(value).strip()


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def parse_date(value: object) -> Optional[date]:
    """Convert a raw date cell into a calendar date.

    Args:
        value (object): Cell content. openpyxl hands back ``datetime`` objects
            for date-formatted cells and plain numbers for unformatted serials;
            anything else is treated as text.

    Returns:
        date | None: The calendar day with any time of day discarded, or
            ``None`` when the cell is empty or cannot be read as a date.
    """

    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    if _is_number(value):
        try:
            decoded = from_excel(float(value))
        except (OverflowError, ValueError):
            return None
        # Serials below one day decode to a bare time.
        return decoded.date() if isinstance(decoded, datetime) else None

    text = str(value).strip()
    # A lone number or word is not a date; dateutil would read "5" as a day.
    if len(_DATE_COMPONENT.findall(text)) < 2:
        return None

    try:
        return date_parser.parse(text, default=_DATE_PARSE_DEFAULT).date()
    except (ValueError, OverflowError):
        pass

    parts = _DATE_SEPARATORS.split(text)
    if len(parts) != 3:
        return None
    try:
        day, month, year = (int(part) for part in parts)
        return date(year, month, day)
    except ValueError:
        return None


def parse_amount(value: object) -> Decimal:
    """Parse a subscription amount, returning ``Decimal("0")`` on failure.

    Numbers pass through unchanged. Text keeps only digits, ``.`` and ``,``;
    commas become decimal points and the longest leading number is used.
    There is no thousands-separator handling, so ``"1.234,56"`` reads as
    ``1.234``.
    """

    if _is_number(value):
        return Decimal(str(value))

    cleaned = _NON_AMOUNT_CHARS.sub("", cell_text(value)).replace(",", ".")
    match = _LEADING_FLOAT.match(cleaned)
    candidate = match.group(0) if match else ""
    if not any(ch.isdigit() for ch in candidate):
        return Decimal("0")
    try:
        return Decimal(candidate.rstrip("."))
    except InvalidOperation:
        return Decimal("0")


def detect_currency(payment_method: object) -> Currency:
    """Derive the settlement currency from a payment-method label."""

    normalized = normalize_key(payment_method)
    if normalized in USD_PAYMENT_METHODS:
        return Currency.USD
    if normalized in BCV_PAYMENT_METHODS:
        return Currency.BCV
    return Currency.USD


__all__ = [
    "normalize_key",
    "cell_text",
    "parse_date",
    "parse_amount",
    "detect_currency",
]
