"""Data access layer for the Wellcomm sales toolkit.

This module owns every file the toolkit touches. Business rules belong in
:mod:`wellcomm_sales.core_logic`.

The public API covers three responsibilities:

1. Configuration handling: finding ``config.ini`` and turning it into typed
   commission settings, rules, seller assignments and plan prices.
2. Upload reading: extracting the cell grid of an uploaded workbook.
3. Ledger operations: opening, saving, reading and appending to the sales
   ledger workbook that stores accepted sales between runs.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from io import BytesIO
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import openpyxl
from openpyxl.styles import Font
from openpyxl.workbook import Workbook

from . import log
from .commissions import CommissionConfig, CommissionRule, CommissionTerm
from .constants import (
    DEFAULT_PLAN_PRICES,
    EXPECTED_SCHEMA_VERSION,
    CommissionValueType,
    SheetName,
)


CONFIG_FILE_NAME = "config.ini"
UPLOADS_SHEET = SheetName.UPLOADS.value
SALES_SHEET = SheetName.SALES.value
RULE_SECTION_PREFIX = "Rule "

LEDGER_COLUMNS: Mapping[str, Sequence[str]] = {
    UPLOADS_SHEET: ["UploadID", "FileName", "UploadedAt"],
    SALES_SHEET: [
        "UploadID",
        "TransactionDate",
        "CustomerName",
        "SellerName",
        "Zone",
        "Plan",
        "PaymentMethod",
        "ReferenceCode",
        "InstallationType",
        "Currency",
        "SubscriptionAmount",
    ],
}

_COMMISSION_OPTIONS = {
    "seller_free_commission": "SellerFreeCommission",
    "seller_paid_commission": "SellerPaidCommission",
    "installer_free_percentage": "InstallerFreePercentage",
    "installer_paid_percentage": "InstallerPaidPercentage",
}

_RULE_OPTIONS = {
    "seller_free": "SellerFree",
    "seller_paid": "SellerPaid",
    "installer_free": "InstallerFree",
    "installer_paid": "InstallerPaid",
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of ``config.ini``."""

    data_file: Optional[Path]
    schema_version: str = EXPECTED_SCHEMA_VERSION
    commission_config: CommissionConfig = field(default_factory=CommissionConfig)
    rules: Mapping[str, CommissionRule] = field(default_factory=dict)
    seller_rules: Mapping[str, str] = field(default_factory=dict)
    plan_prices: Mapping[str, Decimal] = field(default_factory=lambda: dict(DEFAULT_PLAN_PRICES))

    def rule_for_seller(self, seller_name: str) -> Optional[CommissionRule]:
        """Return the seller's assigned rule, ``None`` when on global config."""

        rule_name = self.seller_rules.get(seller_name.strip().casefold())
        if rule_name is None:
            return None
        return self.rules[rule_name]

    def plan_price(self, plan_name: str) -> Optional[Decimal]:
        """Look up a plan price by its trimmed, case-insensitive name."""

        return self.plan_prices.get(plan_name.strip().upper())


@dataclass(frozen=True)
class UploadRow:
    """In-memory view of a row from the ``Uploads`` sheet."""

    upload_id: int
    file_name: str
    uploaded_at_iso: str


@dataclass(frozen=True)
class SaleRow:
    """In-memory view of a row from the ``Sales`` sheet."""

    upload_id: int
    transaction_date_iso: str
    customer_name: str
    seller_name: str
    zone: str
    plan: str
    payment_method: str
    reference_code: Optional[str]
    installation_type: str
    currency: str
    subscription_amount: Decimal


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate ``config.ini``.

    An explicit path is returned as-is. Otherwise the search walks up from the
    current working directory and the first ``CONFIG_FILE_NAME`` found wins.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` into a ``ConfigParser``.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Parser holding the raw configuration.
            Section validation happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def _to_decimal(raw: str, *, where: str) -> Decimal:
    try:
        return Decimal(raw.strip())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid number for {where}: {raw!r}") from exc


def parse_commission_term(raw: str, *, where: str = "commission term") -> CommissionTerm:
    """Parse ``"<FIXED|PERCENTAGE> <value>"`` into a :class:`CommissionTerm`.

    Raises:
        ValueError: If the kind is unknown or the value is not a number.
    """

    parts = raw.split()
    if len(parts) != 2:
        raise ValueError(f"Expected '<FIXED|PERCENTAGE> <value>' for {where}, got {raw!r}")
    kind_raw, value_raw = parts
    try:
        kind = CommissionValueType(kind_raw.upper())
    except ValueError as exc:
        raise ValueError(f"Unknown commission type for {where}: {kind_raw!r}") from exc
    return CommissionTerm(kind, _to_decimal(value_raw, where=where))


def parse_commission_config(parser: configparser.ConfigParser) -> CommissionConfig:
    """Read ``[Commissions]``; missing options keep their default values."""

    if not parser.has_section("Commissions"):
        return CommissionConfig()

    overrides: Dict[str, Decimal] = {}
    for attribute, option in _COMMISSION_OPTIONS.items():
        if parser.has_option("Commissions", option):
            overrides[attribute] = _to_decimal(
                parser.get("Commissions", option), where=f"Commissions.{option}"
            )
    return CommissionConfig(**overrides)


def parse_rules(parser: configparser.ConfigParser) -> Dict[str, CommissionRule]:
    """Collect every ``[Rule <name>]`` section.

    Raises:
        KeyError: If a rule section lacks one of its four terms.
        ValueError: If a term is malformed.
    """

    rules: Dict[str, CommissionRule] = {}
    for section in parser.sections():
        if not section.startswith(RULE_SECTION_PREFIX):
            continue
        name = section[len(RULE_SECTION_PREFIX):].strip()
        terms: Dict[str, CommissionTerm] = {}
        for attribute, option in _RULE_OPTIONS.items():
            try:
                raw = parser.get(section, option)
            except configparser.NoOptionError as exc:
                raise KeyError(f"Missing required configuration entry: {exc}") from exc
            terms[attribute] = parse_commission_term(raw, where=f"{section}.{option}")
        rules[name] = CommissionRule(name=name, **terms)
    return rules


def parse_seller_rules(parser: configparser.ConfigParser, rules: Mapping[str, CommissionRule]) -> Dict[str, str]:
    """Read ``[Sellers]`` as casefolded seller name -> rule name.

    Raises:
        KeyError: If a seller references a rule that is not defined.
    """

    if not parser.has_section("Sellers"):
        return {}

    assignments: Dict[str, str] = {}
    for seller, rule_name in parser.items("Sellers", raw=True):
        if seller in parser.defaults():
            continue
        rule_name = rule_name.strip()
        if rule_name not in rules:
            raise KeyError(f"Seller '{seller}' references unknown rule '{rule_name}'")
        assignments[seller.strip().casefold()] = rule_name
    return assignments


def parse_plan_prices(parser: configparser.ConfigParser) -> Dict[str, Decimal]:
    """Read ``[Plans]`` keyed by upper-cased plan name, or the default catalog."""

    if not parser.has_section("Plans"):
        return dict(DEFAULT_PLAN_PRICES)

    prices: Dict[str, Decimal] = {}
    for plan, raw in parser.items("Plans", raw=True):
        if plan in parser.defaults():
            continue
        prices[plan.strip().upper()] = _to_decimal(raw, where=f"Plans.{plan}")
    return prices


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into :class:`ConfigSettings`.

    ``[System]`` with ``DataFile`` and ``SchemaVersion`` is mandatory. A
    relative ``DataFile`` is anchored at ``base_path`` (the current working
    directory when omitted). All other sections are optional.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If a numeric value or commission term is malformed.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    rules = parse_rules(parser)
    return ConfigSettings(
        data_file=data_file_path,
        schema_version=schema_version,
        commission_config=parse_commission_config(parser),
        rules=rules,
        seller_rules=parse_seller_rules(parser, rules),
        plan_prices=parse_plan_prices(parser),
    )


def default_settings() -> ConfigSettings:
    """Settings used when no ``config.ini`` exists: defaults, no ledger."""

    return ConfigSettings(data_file=None)


def read_upload_rows(data: bytes) -> List[Tuple[object, ...]]:
    """Return every row of the first worksheet of an ``.xlsx`` payload.

    Cells come back as openpyxl decodes them (``str``, numbers, ``datetime``
    or ``None``). A workbook without worksheets yields an empty list.

    Raises:
        zipfile.BadZipFile, openpyxl.utils.exceptions.InvalidFileException:
            If ``data`` is not a readable workbook.
    """

    workbook = openpyxl.load_workbook(BytesIO(data), read_only=True, data_only=True)
    try:
        if not workbook.worksheets:
            return []
        sheet = workbook.worksheets[0]
        return [tuple(row) for row in sheet.iter_rows(values_only=True)]
    finally:
        workbook.close()


def open_workbook(data_file: Path) -> Workbook:
    """Open the sales ledger workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the ledger to ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def iter_uploads(workbook: Workbook) -> Iterable[UploadRow]:
    """Yield upload records, skipping the header and fully empty rows."""

    sheet = workbook[UPLOADS_SHEET]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield deserialize_upload(raw)


def iter_sales(workbook: Workbook) -> Iterable[SaleRow]:
    """Yield stored sales, skipping the header and fully empty rows."""

    sheet = workbook[SALES_SHEET]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield deserialize_sale(raw)


def delete_upload_rows(workbook: Workbook, upload_id: int) -> Tuple[int, int]:
    """Remove an upload record and its sales from the ledger.

    Returns:
        tuple[int, int]: Number of ``Uploads`` rows and ``Sales`` rows removed.
    """

    removed = []
    for sheet_name in (UPLOADS_SHEET, SALES_SHEET):
        sheet = workbook[sheet_name]
        matches = [
            row[0].row
            for row in sheet.iter_rows(min_row=2, max_col=1)
            if row[0].value is not None and int(row[0].value) == upload_id
        ]
        # Bottom-up so earlier indexes stay valid.
        for index in reversed(matches):
            sheet.delete_rows(index)
        removed.append(len(matches))
    return removed[0], removed[1]


def next_upload_id(workbook: Workbook) -> int:
    """Return one past the highest stored upload id."""

    return max((upload.upload_id for upload in iter_uploads(workbook)), default=0) + 1


def append_upload(workbook: Workbook, record: UploadRow) -> None:
    workbook[UPLOADS_SHEET].append(serialize_upload(record))


def append_sale(workbook: Workbook, record: SaleRow) -> None:
    workbook[SALES_SHEET].append(serialize_sale(record))


def serialize_upload(record: UploadRow) -> list[object]:
    return [record.upload_id, record.file_name, record.uploaded_at_iso]


def serialize_sale(record: SaleRow) -> list[object]:
    """Convert a sale into the ``Sales`` column ordering.

    The amount stays a :class:`~decimal.Decimal` so Excel keeps it numeric.
    """

    return [
        record.upload_id,
        record.transaction_date_iso,
        record.customer_name,
        record.seller_name,
        record.zone,
        record.plan,
        record.payment_method,
        record.reference_code,
        record.installation_type,
        record.currency,
        record.subscription_amount,
    ]


def deserialize_upload(raw_row: Sequence[object]) -> UploadRow:
    upload_id, file_name, uploaded_at = raw_row[:3]
    return UploadRow(
        upload_id=int(upload_id),
        file_name=str(file_name) if file_name is not None else "",
        uploaded_at_iso=str(uploaded_at) if uploaded_at is not None else "",
    )


def deserialize_sale(raw_row: Sequence[object]) -> SaleRow:
    """Convert a raw ``Sales`` row into a :class:`SaleRow`.

    Text columns come back as ``str`` (empty when blank) so names that Excel
    stored as numbers still compare equal to parsed uploads; the amount is
    normalized to :class:`~decimal.Decimal`.
    """

    (
        upload_id,
        transaction_date,
        customer_name,
        seller_name,
        zone,
        plan,
        payment_method,
        reference_code,
        installation_type,
        currency,
        amount_raw,
    ) = raw_row[:11]

    def text(value: object) -> str:
        return str(value) if value is not None else ""

    return SaleRow(
        upload_id=int(upload_id),
        transaction_date_iso=text(transaction_date),
        customer_name=text(customer_name),
        seller_name=text(seller_name),
        zone=text(zone),
        plan=text(plan),
        payment_method=text(payment_method),
        reference_code=(str(reference_code) if reference_code is not None else None),
        installation_type=text(installation_type),
        currency=text(currency),
        subscription_amount=Decimal(str(amount_raw)) if amount_raw is not None else Decimal("0"),
    )


def create_ledger_workbook() -> Workbook:
    """Build an empty in-memory ledger with bold headers on every sheet."""

    workbook = openpyxl.Workbook()
    if workbook.active is not None and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)
    for sheet_name, columns in LEDGER_COLUMNS.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font
    log.debug("Created in-memory ledger with sheets: %s", ", ".join(LEDGER_COLUMNS))
    return workbook
