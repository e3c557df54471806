"""Command-line entry points for the Wellcomm sales toolkit.

This module only wires argparse and renders results; every decision is made
by :mod:`wellcomm_sales.core_logic` and the modules beneath it. Keeping the
CLI thin lets tests reuse the parser configuration directly.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, ingestion, log
from .constants import Currency, InstallationType


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = False


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="wellcomm-cli",
        description="Import Wellcomm sales uploads and report commissions.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.ini (searched upwards from the current directory by default).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare commands that modify the ledger."""
    specs = {
        "import": register_import_command(subparsers),
        "delete-upload": register_delete_upload_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only commands."""
    specs = {
        "parse": register_parse_command(subparsers),
        "report": register_report_command(subparsers),
        "uploads": register_uploads_command(subparsers),
        "config": register_config_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_import_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``import``."""
    name = "import"
    help_text = "Parse an upload and store its new sales in the ledger."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("file", type=Path)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_import, mutates=True)


def register_delete_upload_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-upload``."""
    name = "delete-upload"
    help_text = "Remove an upload and every sale it stored."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("upload_id", type=int)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_upload, mutates=True)


def register_parse_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``parse``."""
    name = "parse"
    help_text = "Parse an upload and show what would be imported."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("file", type=Path)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_parse)


def register_report_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``report``."""
    name = "report"
    help_text = "Display commissions for the ledger or for a single upload."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        source = parser.add_mutually_exclusive_group()
        source.add_argument("--file", type=Path, default=None, help="Report on an upload file instead of the ledger.")
        source.add_argument("--upload", type=int, default=None, help="Only include sales stored by this upload id.")
        parser.add_argument("--from", dest="start_date", type=date.fromisoformat, default=None, help="First day, YYYY-MM-DD.")
        parser.add_argument("--to", dest="end_date", type=date.fromisoformat, default=None, help="Last day, YYYY-MM-DD.")
        parser.add_argument("--seller", default=None, help="Only include this seller.")
        parser.add_argument("--zone", dest="zones", action="append", default=None, help="Only include this zone; repeatable.")
        parser.add_argument("--currency", type=Currency, choices=list(Currency), default=None)
        parser.add_argument("--installation-type", type=InstallationType, choices=list(InstallationType), default=None)
        parser.add_argument(
            "--week-of",
            type=date.fromisoformat,
            default=None,
            help="Only include the Saturday-Friday week containing this YYYY-MM-DD date.",
        )
        parser.add_argument("--bcv-rate", type=_decimal_argument, default=None, help="Bolivares per dollar for BCV totals.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_report)


def _decimal_argument(raw: str) -> Decimal:
    try:
        return Decimal(raw)
    except ArithmeticError as exc:
        raise argparse.ArgumentTypeError(f"not a number: {raw!r}") from exc


def register_uploads_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``uploads``."""
    name = "uploads"
    help_text = "List stored uploads, newest first."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_uploads)


def register_config_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``config``."""
    name = "config"
    help_text = "Display the effective commission settings."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_config)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    context = core_logic.load_runtime_context(config_path)
    if context.workbook is not None:
        core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def read_upload(path: Path) -> bytes:
    """Read an upload from disk.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
    """
    path = Path(path).expanduser()
    if not path.exists():
        raise FileNotFoundError(f"Upload not found: {path}")
    return path.read_bytes()


def format_parse_result(result: ingestion.ParseResult) -> str:
    lines = [
        f"Rows read:        {result.total_rows}",
        f"Valid:            {result.valid_rows}",
        f"Skipped:          {result.skipped_rows}",
        f"Duplicates:       {result.duplicate_rows}",
    ]
    if result.mapped_columns:
        mapped = ", ".join(f"{key}={index}" for key, index in sorted(result.mapped_columns.items(), key=lambda kv: kv[1]))
        lines.append(f"Mapped columns:   {mapped}")
    for duplicate in result.duplicates:
        lines.append(
            f"  duplicate row {duplicate.row_number}: {duplicate.customer_name} / {duplicate.plan}"
            f" / {duplicate.seller_name} / {duplicate.zone} / {duplicate.date}"
        )
    return "\n".join(lines)


def format_report(report: core_logic.CommissionReport) -> str:
    lines: List[str] = [
        f"Sales: {report.total_sales} (free {report.free_count}, paid {report.paid_count})",
    ]
    for currency in Currency:
        totals = report.totals[currency]
        lines.append(
            f"{currency.value}: revenue {totals.revenue:.2f}, seller {totals.seller_commission:.2f},"
            f" installer {totals.installer_commission:.2f}"
        )
    bolivares = report.bcv_in_bolivares()
    if bolivares is not None:
        lines.append(f"BCV revenue in Bs at {report.bcv_rate}: {bolivares:.2f}")
    if report.seller_commissions:
        lines.append("Seller commissions:")
        for seller, amount in sorted(report.seller_commissions.items()):
            lines.append(f"  {seller}: {amount:.2f}")
    if report.sales_by_zone:
        lines.append("Sales by zone: " + ", ".join(f"{k}={v}" for k, v in sorted(report.sales_by_zone.items())))
    if report.sales_by_plan:
        lines.append("Sales by plan: " + ", ".join(f"{k}={v}" for k, v in sorted(report.sales_by_plan.items())))
    return "\n".join(lines)


def format_uploads(uploads: Sequence[core_logic.UploadSummary]) -> str:
    if not uploads:
        return "No uploads stored."
    return "\n".join(
        f"{upload.upload_id:>4}  {upload.uploaded_at_iso}  {upload.file_name}  ({upload.sale_count} sales)"
        for upload in uploads
    )


def sales_filters_from_args(args: argparse.Namespace) -> core_logic.SalesFilters:
    """Collect the report filter options into :class:`core_logic.SalesFilters`."""
    return core_logic.SalesFilters(
        start_date=getattr(args, "start_date", None),
        end_date=getattr(args, "end_date", None),
        seller=getattr(args, "seller", None),
        zones=tuple(getattr(args, "zones", None) or ()),
        currency=getattr(args, "currency", None),
        installation_type=getattr(args, "installation_type", None),
    )


def format_settings(context: core_logic.RuntimeContext) -> str:
    settings = context.settings
    config = settings.commission_config
    lines = [
        f"Ledger: {settings.data_file if settings.data_file is not None else '(none)'}",
        f"Seller FREE commission:   {config.seller_free_commission}",
        f"Seller PAID commission:   {config.seller_paid_commission}",
        f"Installer FREE share:     {config.installer_free_percentage}",
        f"Installer PAID share:     {config.installer_paid_percentage}",
        "Plans: " + ", ".join(f"{name}={price}" for name, price in sorted(settings.plan_prices.items())),
    ]
    for rule in settings.rules.values():
        lines.append(
            f"Rule {rule.name}: seller {rule.seller_free.kind.value} {rule.seller_free.value}"
            f" / {rule.seller_paid.kind.value} {rule.seller_paid.value},"
            f" installer {rule.installer_free.kind.value} {rule.installer_free.value}"
            f" / {rule.installer_paid.kind.value} {rule.installer_paid.value}"
        )
    for seller, rule_name in sorted(settings.seller_rules.items()):
        lines.append(f"Seller {seller} -> {rule_name}")
    return "\n".join(lines)


def run_import(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the import workflow via the BLL."""
    summary = core_logic.import_file(context, read_upload(args.file), Path(args.file).name)
    print(format_parse_result(summary.parse_result))
    print(f"Already in ledger: {summary.history_duplicates}")
    print(f"Stored:            {summary.valid_rows}")
    return 0


def run_parse(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Parse an upload without touching the ledger."""
    result = ingestion.parse_file(read_upload(args.file))
    print(format_parse_result(result))
    return 0


def run_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the commission reporting workflow."""
    if args.file is not None:
        transactions = ingestion.parse_file(read_upload(args.file)).transactions
    else:
        transactions = core_logic.list_ledger_transactions(context, upload_id=args.upload)
    if args.week_of is not None:
        transactions = core_logic.filter_by_week(transactions, args.week_of)
    transactions = core_logic.filter_transactions(transactions, sales_filters_from_args(args))
    if args.bcv_rate is not None:
        core_logic.record_exchange_rate(context, args.bcv_rate)
    print(format_report(core_logic.build_commission_report(context, transactions)))
    return 0


def run_uploads(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """List the uploads stored in the ledger."""
    print(format_uploads(core_logic.list_uploads(context)))
    return 0


def run_delete_upload(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Remove one upload and its sales from the ledger."""
    removed = core_logic.delete_upload(context, args.upload_id)
    print(f"Deleted upload {args.upload_id} ({removed} sales).")
    return 0


def run_config(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Display the effective settings."""
    print(format_settings(context))
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_ledger(context: core_logic.RuntimeContext) -> None:
    """Persist ledger changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and command_table[args.command].mutates:
            persist_ledger(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
