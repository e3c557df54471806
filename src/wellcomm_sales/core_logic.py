"""Business logic layer for the Wellcomm sales toolkit.

This module orchestrates uploads into the sales ledger and builds commission
reports. It consumes the Data Access Layer (DAL) for all I/O; commissions are
always computed from the current configuration at read time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from openpyxl.workbook import Workbook

from . import data_manager, ingestion, log
from .commissions import CommissionBreakdown, resolve_commissions
from .constants import EXPECTED_SCHEMA_VERSION, Currency, InstallationType
from .ingestion import NormalizedTransaction, ParseResult
from .rate_cache import RateCache


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when an operation needs a ledger or record that does not exist."""


@dataclass(frozen=True)
class RuntimeContext:
    """Configuration, ledger workbook and caches shared by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Optional[Workbook] = None
    rate_cache: RateCache = field(default_factory=RateCache, compare=False)
    _cache: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class ImportSummary:
    """Outcome of importing one upload into the ledger."""

    file_name: str
    parse_result: ParseResult
    stored: List[NormalizedTransaction]
    history_duplicates: int
    upload_id: Optional[int]

    @property
    def valid_rows(self) -> int:
        return len(self.stored)


@dataclass(frozen=True)
class UploadSummary:
    """An upload record together with the number of sales it stored."""

    upload_id: int
    file_name: str
    uploaded_at_iso: str
    sale_count: int


@dataclass(frozen=True)
class SalesFilters:
    """Report filters; ``None`` or empty fields match everything.

    Dates are inclusive. ``zones`` matches any of the listed zones.
    """

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    seller: Optional[str] = None
    zones: Tuple[str, ...] = ()
    currency: Optional[Currency] = None
    installation_type: Optional[InstallationType] = None

    def matches(self, transaction: NormalizedTransaction) -> bool:
        if self.start_date is not None and transaction.transaction_date < self.start_date:
            return False
        if self.end_date is not None and transaction.transaction_date > self.end_date:
            return False
        if self.seller and transaction.seller_name != self.seller:
            return False
        if self.zones and transaction.zone not in self.zones:
            return False
        if self.currency is not None and transaction.currency is not Currency(self.currency):
            return False
        if (
            self.installation_type is not None
            and transaction.installation_type is not InstallationType(self.installation_type)
        ):
            return False
        return True


@dataclass(frozen=True)
class TransactionCommission:
    """A transaction together with the commissions it earns today."""

    transaction: NormalizedTransaction
    plan_price: Decimal
    breakdown: CommissionBreakdown


@dataclass
class CurrencyTotals:
    """Running revenue and commission sums for one currency."""

    revenue: Decimal = Decimal("0")
    seller_commission: Decimal = Decimal("0")
    installer_commission: Decimal = Decimal("0")


@dataclass
class CommissionReport:
    """Aggregated commission figures for a set of transactions."""

    lines: List[TransactionCommission] = field(default_factory=list)
    totals: Dict[Currency, CurrencyTotals] = field(
        default_factory=lambda: {currency: CurrencyTotals() for currency in Currency}
    )
    free_count: int = 0
    paid_count: int = 0
    seller_commissions: Dict[str, Decimal] = field(default_factory=dict)
    sales_by_zone: Dict[str, int] = field(default_factory=dict)
    sales_by_plan: Dict[str, int] = field(default_factory=dict)
    bcv_rate: Optional[Decimal] = None

    @property
    def total_sales(self) -> int:
        return len(self.lines)

    def bcv_in_bolivares(self) -> Optional[Decimal]:
        """BCV revenue converted at the report's exchange rate, if known."""

        if self.bcv_rate is None:
            return None
        return self.totals[Currency.BCV].revenue * self.bcv_rate


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    return candidate if candidate is not None else datetime.now(UTC)


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Drop cached ledger views after the workbook changes."""

    if not names:
        return
    log.debug("Invalidating cache buckets: %s", ", ".join(names))
    for name in names:
        context._cache.pop(name, None)


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load settings and, when configured, the ledger workbook.

    Without an explicit ``config_path`` a missing ``config.ini`` is not an
    error: the context falls back to the default commission settings and has
    no ledger, which is enough for parsing and file-based reports.

    Raises:
        FileNotFoundError: If an explicit config path or the configured
            ledger does not exist.
        KeyError: When mandatory configuration options are missing.
        ValueError: When configuration values are malformed.
    """

    try:
        located_config = data_manager.find_config_file(config_path)
    except FileNotFoundError:
        if config_path is not None:
            raise
        log.info("No config.ini found; using default commission settings")
        return RuntimeContext(settings=data_manager.default_settings())

    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for ledger '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Refuse to work on a ledger declared with another schema version.

    Raises:
        RuntimeError: If ``config.ini`` declares an unexpected version.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Ledger schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Ledger schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )


def require_ledger(context: RuntimeContext) -> Workbook:
    """Return the ledger workbook or fail when none is configured.

    Raises:
        MissingReferenceError: If the context was built without a ledger.
    """
    if context.workbook is None:
        raise MissingReferenceError("No sales ledger configured; create config.ini first")
    return context.workbook


def sale_row_from_transaction(transaction: NormalizedTransaction, *, upload_id: int) -> data_manager.SaleRow:
    return data_manager.SaleRow(
        upload_id=upload_id,
        transaction_date_iso=transaction.transaction_date.isoformat(),
        customer_name=transaction.customer_name,
        seller_name=transaction.seller_name,
        zone=transaction.zone,
        plan=transaction.plan,
        payment_method=transaction.payment_method,
        reference_code=transaction.reference_code,
        installation_type=transaction.installation_type.value,
        currency=transaction.currency.value,
        subscription_amount=transaction.subscription_amount,
    )


def transaction_from_sale_row(row: data_manager.SaleRow) -> NormalizedTransaction:
    """Rebuild a transaction from its ledger row.

    Raises:
        ValueError: If the stored date, installation type or currency is not
            one this toolkit writes.
    """
    return NormalizedTransaction(
        transaction_date=date.fromisoformat(row.transaction_date_iso[:10]),
        customer_name=row.customer_name,
        seller_name=row.seller_name,
        zone=row.zone,
        plan=row.plan,
        payment_method=row.payment_method,
        reference_code=row.reference_code,
        installation_type=InstallationType(row.installation_type),
        currency=Currency(row.currency),
        subscription_amount=row.subscription_amount,
    )


def _stored_sales(context: RuntimeContext) -> List[Tuple[int, NormalizedTransaction]]:
    """Return ``(upload_id, transaction)`` pairs, cached until the ledger changes."""

    workbook = require_ledger(context)
    cached = context._cache.get("sales")
    if cached is None:
        cached = [(row.upload_id, transaction_from_sale_row(row)) for row in data_manager.iter_sales(workbook)]
        context._cache["sales"] = cached
        log.debug("Populated sales cache with %d entries", len(cached))
    return cached


def list_ledger_transactions(context: RuntimeContext, *, upload_id: Optional[int] = None) -> List[NormalizedTransaction]:
    """Return stored sales, optionally only those of one upload."""

    return [
        transaction
        for stored_upload_id, transaction in _stored_sales(context)
        if upload_id is None or stored_upload_id == upload_id
    ]


def list_uploads(context: RuntimeContext) -> List[UploadSummary]:
    """Return every upload with its stored sale count, newest first."""

    workbook = require_ledger(context)
    counts: Dict[int, int] = {}
    for upload_id, _ in _stored_sales(context):
        counts[upload_id] = counts.get(upload_id, 0) + 1
    uploads = [
        UploadSummary(
            upload_id=upload.upload_id,
            file_name=upload.file_name,
            uploaded_at_iso=upload.uploaded_at_iso,
            sale_count=counts.get(upload.upload_id, 0),
        )
        for upload in data_manager.iter_uploads(workbook)
    ]
    uploads.sort(key=lambda upload: (upload.uploaded_at_iso, upload.upload_id), reverse=True)
    return uploads


def delete_upload(context: RuntimeContext, upload_id: int) -> int:
    """Remove an upload and every sale it stored.

    Returns:
        int: Number of sales removed.

    Raises:
        MissingReferenceError: If the ledger has no upload ``upload_id``.
    """
    workbook = require_ledger(context)
    uploads_removed, sales_removed = data_manager.delete_upload_rows(workbook, upload_id)
    if uploads_removed == 0:
        raise MissingReferenceError(f"Upload {upload_id} does not exist")
    _invalidate_cache(context, "sales")
    log.info("Deleted upload %d and %d sales", upload_id, sales_removed)
    return sales_removed


def stored_dedup_keys(context: RuntimeContext) -> Set[str]:
    return {transaction.dedup_key for transaction in list_ledger_transactions(context)}


def import_file(
    context: RuntimeContext,
    data: bytes,
    file_name: str,
    *,
    uploaded_at: Optional[datetime] = None,
) -> ImportSummary:
    """Parse an upload and append its new sales to the ledger.

    Sales whose dedup key already exists in the ledger are counted in
    ``history_duplicates`` and not stored. When nothing new remains no upload
    record is written and ``upload_id`` is ``None``.

    Raises:
        MissingReferenceError: If the context has no ledger.
    """
    workbook = require_ledger(context)
    result = ingestion.parse_file(data)
    fresh, history_duplicates = ingestion.filter_against_history(
        result.transactions, stored_dedup_keys(context)
    )

    upload_id: Optional[int] = None
    if fresh:
        upload_id = data_manager.next_upload_id(workbook)
        timestamp = _resolve_timestamp(uploaded_at)
        data_manager.append_upload(
            workbook,
            data_manager.UploadRow(upload_id=upload_id, file_name=file_name, uploaded_at_iso=timestamp.isoformat()),
        )
        for transaction in fresh:
            data_manager.append_sale(workbook, sale_row_from_transaction(transaction, upload_id=upload_id))
        _invalidate_cache(context, "sales")

    log.info(
        "Imported '%s': %d stored, %d skipped, %d in-file duplicates, %d already in ledger",
        file_name,
        len(fresh),
        result.skipped_rows,
        result.duplicate_rows,
        history_duplicates,
    )
    return ImportSummary(
        file_name=file_name,
        parse_result=result,
        stored=fresh,
        history_duplicates=history_duplicates,
        upload_id=upload_id,
    )


def plan_price_for(context: RuntimeContext, plan_name: str) -> Decimal:
    """Current price of a plan; unknown plans are priced at zero."""

    price = context.settings.plan_price(plan_name)
    if price is not None:
        return price
    warned = context._cache.setdefault("unknown_plans", set())
    if plan_name not in warned:
        warned.add(plan_name)
        log.warning("No price configured for plan '%s'; using 0", plan_name)
    return Decimal("0")


def compute_commission(context: RuntimeContext, transaction: NormalizedTransaction) -> TransactionCommission:
    """Resolve today's commissions for one transaction."""

    plan_price = plan_price_for(context, transaction.plan)
    breakdown = resolve_commissions(
        transaction.installation_type,
        plan_price,
        context.settings.rule_for_seller(transaction.seller_name),
        context.settings.commission_config,
    )
    return TransactionCommission(transaction=transaction, plan_price=plan_price, breakdown=breakdown)


def build_commission_report(
    context: RuntimeContext,
    transactions: Iterable[NormalizedTransaction],
    *,
    now: Optional[datetime] = None,
) -> CommissionReport:
    """Aggregate revenue and commissions per currency, seller, zone and plan.

    The BCV exchange rate is attached when the context's rate cache holds a
    fresh value at ``now``.
    """
    transactions = list(transactions)
    report = CommissionReport()
    for transaction in transactions:
        line = compute_commission(context, transaction)
        report.lines.append(line)

        totals = report.totals[transaction.currency]
        totals.revenue += line.plan_price
        totals.seller_commission += line.breakdown.seller_commission
        totals.installer_commission += line.breakdown.installer_commission

        if transaction.installation_type is InstallationType.FREE:
            report.free_count += 1
        else:
            report.paid_count += 1

        seller = transaction.seller_name
        report.seller_commissions[seller] = (
            report.seller_commissions.get(seller, Decimal("0")) + line.breakdown.seller_commission
        )

    report.sales_by_zone = ingestion.count_by(transactions, "zone")
    report.sales_by_plan = ingestion.count_by(transactions, "plan")

    rate, fresh = context.rate_cache.get(_resolve_timestamp(now))
    if fresh:
        report.bcv_rate = rate
    log.debug("Built commission report over %d transactions", report.total_sales)
    return report


def record_exchange_rate(context: RuntimeContext, rate: Decimal, *, now: Optional[datetime] = None) -> None:
    """Store a BCV rate in the context cache.

    Raises:
        ValueError: If ``rate`` is not positive.
    """
    if rate <= Decimal("0"):
        raise ValueError("Exchange rate must be positive")
    context.rate_cache.set(rate, _resolve_timestamp(now))
    log.debug("Cached BCV exchange rate %s", rate)


def week_range(day: date) -> Tuple[date, date]:
    """Return the Saturday-to-Friday week containing ``day``."""

    # date.weekday(): Monday=0 ... Saturday=5, Sunday=6
    days_since_saturday = (day.weekday() - 5) % 7
    start = day - timedelta(days=days_since_saturday)
    return start, start + timedelta(days=6)


def filter_by_week(transactions: Iterable[NormalizedTransaction], day: date) -> List[NormalizedTransaction]:
    start, end = week_range(day)
    return [t for t in transactions if start <= t.transaction_date <= end]


def filter_transactions(
    transactions: Iterable[NormalizedTransaction], filters: SalesFilters
) -> List[NormalizedTransaction]:
    return [t for t in transactions if filters.matches(t)]


def persist_context(context: RuntimeContext) -> None:
    """Save the ledger workbook to the configured path.

    Contexts without a ledger have nothing to save.
    """
    if context.workbook is None or context.settings.data_file is None:
        return
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted ledger '%s'", context.settings.data_file)
