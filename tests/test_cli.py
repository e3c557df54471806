"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Mapping

import openpyxl
import pytest

from wellcomm_sales import cli, core_logic, data_manager, ingestion
from wellcomm_sales.constants import Currency, InstallationType


WRITE_COMMANDS = {"import", "delete-upload"}

READ_COMMANDS = {"parse", "report", "uploads", "config"}

# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    parser = cli.build_parser()

    assert isinstance(parser, argparse.ArgumentParser)
    assert parser.prog == "wellcomm-cli"
    assert "commissions" in (parser.description or "")


def test_build_parser_accepts_config_path():
    parser = cli.build_parser()
    cli.configure_subcommands(parser)

    args = parser.parse_args(["--config", "custom.ini", "config"])

    assert args.config == Path("custom.ini")


def test_configure_subcommands_registers_every_command(cli_parser):
    command_table = cli.configure_subcommands(cli_parser)

    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS
    assert set(_registered_choices(cli_parser)) == WRITE_COMMANDS | READ_COMMANDS


def test_register_write_commands_returns_mutating_specs(subparsers_action):
    specs = cli.register_write_commands(subparsers_action)

    assert set(specs) == WRITE_COMMANDS
    assert all(spec.mutates for spec in specs.values())
    for name in WRITE_COMMANDS:
        assert name in subparsers_action.choices


def test_register_read_commands_returns_read_only_specs(subparsers_action):
    specs = cli.register_read_commands(subparsers_action)

    assert set(specs) == READ_COMMANDS
    assert not any(spec.mutates for spec in specs.values())
    for name in READ_COMMANDS:
        assert name in subparsers_action.choices


def test_register_report_command_configures_arguments():
    parser = argparse.ArgumentParser(prog="cli")
    subparsers = parser.add_subparsers(dest="command")
    spec = cli.register_report_command(subparsers)
    spec.register(subparsers)

    namespace = parser.parse_args(
        ["report", "--file", "marzo.xlsx", "--week-of", "2024-03-12", "--bcv-rate", "36.5"]
    )

    assert namespace.file == Path("marzo.xlsx")
    assert namespace.week_of == date(2024, 3, 12)
    assert namespace.bcv_rate == Decimal("36.5")


def test_register_report_command_rejects_bad_rate():
    parser = argparse.ArgumentParser(prog="cli")
    subparsers = parser.add_subparsers(dest="command")
    spec = cli.register_report_command(subparsers)
    spec.register(subparsers)

    with pytest.raises(SystemExit):
        parser.parse_args(["report", "--bcv-rate", "abc"])


def test_register_import_command_requires_file():
    parser = argparse.ArgumentParser(prog="cli")
    subparsers = parser.add_subparsers(dest="command")
    spec = cli.register_import_command(subparsers)
    spec.register(subparsers)

    assert parser.parse_args(["import", "marzo.xlsx"]).file == Path("marzo.xlsx")
    with pytest.raises(SystemExit):
        parser.parse_args(["import"])


# ---------------------------------------------------------------------------
# Dispatch helpers
# ---------------------------------------------------------------------------


def test_build_command_table_indexes_specs(command_spec_iterable):
    table = cli.build_command_table(command_spec_iterable)

    assert list(table) == ["alpha", "beta", "gamma"]


def test_build_command_table_rejects_duplicates(command_spec_iterable):
    with pytest.raises(ValueError):
        cli.build_command_table([*command_spec_iterable, command_spec_iterable[0]])


def test_dispatch_command_calls_executor(context):
    calls = []

    def execute(ctx, args):
        calls.append(ctx)
        return 4

    spec = cli.CommandSpec("alpha", "alpha help", lambda sub: sub.add_parser("alpha"), execute)

    result = cli.dispatch_command(context, argparse.Namespace(command="alpha"), {"alpha": spec})

    assert result == 4
    assert calls == [context]


@pytest.mark.parametrize("namespace", [argparse.Namespace(), argparse.Namespace(command=None), argparse.Namespace(command="nope")])
def test_dispatch_command_rejects_unknown_commands(context, namespace):
    with pytest.raises(KeyError):
        cli.dispatch_command(context, namespace, {})


@pytest.mark.parametrize(
    "error, code",
    [
        (core_logic.MissingReferenceError("no ledger"), 2),
        (core_logic.BusinessRuleViolation("bad"), 2),
        (FileNotFoundError("gone"), 3),
        (RuntimeError("schema"), 1),
        (KeyError("missing"), 1),
    ],
)
def test_handle_cli_error_maps_exit_codes(error, code):
    assert cli.handle_cli_error(error) == code


def test_read_upload_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        cli.read_upload(tmp_path / "absent.xlsx")


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


def test_format_parse_result_lists_counts_and_duplicates():
    result = ingestion.ParseResult(
        total_rows=3,
        valid_rows=1,
        skipped_rows=1,
        duplicate_rows=1,
        duplicates=[ingestion.DuplicateInfo(4, "Maria", "Ana", "RESIDENTIAL 200", "Centro", "2024-03-15")],
        mapped_columns={"zona": 2, "fecha": 0},
    )

    text = cli.format_parse_result(result)

    assert "Rows read:        3" in text
    assert "fecha=0, zona=2" in text
    assert "duplicate row 4: Maria / RESIDENTIAL 200 / Ana / Centro / 2024-03-15" in text


def test_format_settings_shows_defaults_without_ledger():
    context = core_logic.RuntimeContext(settings=data_manager.default_settings())

    text = cli.format_settings(context)

    assert "Ledger: (none)" in text
    assert "Seller PAID commission:   10" in text
    assert "RESIDENTIAL 200=25" in text


# ---------------------------------------------------------------------------
# main()
# ---------------------------------------------------------------------------


def test_main_parse_prints_counts(upload_factory, make_row, tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    upload = upload_factory([make_row(), make_row(), make_row(dinero="")])

    assert cli.main(["parse", str(upload)]) == 0

    out = capsys.readouterr().out
    assert "Valid:            1" in out
    assert "Skipped:          1" in out
    assert "Duplicates:       1" in out


def test_main_import_persists_ledger(config_factory, upload_factory, make_row, capsys):
    bundle = config_factory()
    upload = upload_factory([make_row(), make_row(nombre="Luis")])

    assert cli.main(["--config", str(bundle.config_path), "import", str(upload)]) == 0
    assert "Stored:            2" in capsys.readouterr().out

    reloaded = openpyxl.load_workbook(bundle.ledger_path)
    assert len(list(data_manager.iter_sales(reloaded))) == 2


def test_main_report_from_file_without_config(upload_factory, make_row, tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    upload = upload_factory([make_row(), make_row(nombre="Luis", gratis="GRATIS", medio="PAGO MOVIL")])

    assert cli.main(["report", "--file", str(upload), "--bcv-rate", "40"]) == 0

    out = capsys.readouterr().out
    assert "Sales: 2 (free 1, paid 1)" in out
    assert "USD: revenue 25.00, seller 10.00, installer 17.50" in out
    assert "BCV: revenue 25.00, seller 8.00, installer 12.50" in out
    assert "BCV revenue in Bs at 40: 1000.00" in out


def test_main_report_on_ledger_filters_by_week(config_factory, upload_factory, make_row, capsys):
    bundle = config_factory()
    upload = upload_factory([make_row(fecha="15/03/2024"), make_row(nombre="Luis", fecha="16/03/2024")])
    assert cli.main(["--config", str(bundle.config_path), "import", str(upload)]) == 0
    capsys.readouterr()

    assert cli.main(["--config", str(bundle.config_path), "report", "--week-of", "2024-03-16"]) == 0

    assert "Sales: 1 (free 0, paid 1)" in capsys.readouterr().out


def test_main_report_without_ledger_or_file_fails(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    assert cli.main(["report"]) == 2


def test_main_missing_upload_returns_file_error(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    assert cli.main(["parse", str(tmp_path / "absent.xlsx")]) == 3


def test_main_schema_mismatch_returns_error(config_factory, upload_factory, make_row):
    bundle = config_factory(schema_version="0.1.0")
    upload = upload_factory([make_row()])

    assert cli.main(["--config", str(bundle.config_path), "import", str(upload)]) == 1


def test_main_config_shows_rules(config_factory, capsys):
    bundle = config_factory(
        extra=(
            "\n[Rule Senior]\n"
            "SellerFree = FIXED 12\nSellerPaid = FIXED 15\n"
            "InstallerFree = PERCENTAGE 0.4\nInstallerPaid = PERCENTAGE 0.6\n"
            "\n[Sellers]\nAna = Senior\n"
        )
    )

    assert cli.main(["--config", str(bundle.config_path), "config"]) == 0

    out = capsys.readouterr().out
    assert "Rule Senior: seller FIXED 12 / FIXED 15, installer PERCENTAGE 0.4 / PERCENTAGE 0.6" in out
    assert "Seller ana -> Senior" in out


def _registered_choices(parser: argparse.ArgumentParser) -> Iterable[str]:
    for action in parser._actions:
        if isinstance(action, argparse._SubParsersAction):
            choices: Mapping[str, argparse.ArgumentParser] = action.choices
            return choices.keys()
    return []


# ---------------------------------------------------------------------------
# Upload management and report filters
# ---------------------------------------------------------------------------


def test_register_report_command_configures_filters():
    parser = argparse.ArgumentParser(prog="cli")
    subparsers = parser.add_subparsers(dest="command")
    cli.register_report_command(subparsers).register(subparsers)

    namespace = parser.parse_args(
        [
            "report", "--upload", "3", "--from", "2024-03-01", "--to", "2024-03-31",
            "--seller", "Ana", "--zone", "Centro", "--zone", "Este",
            "--currency", "BCV", "--installation-type", "FREE",
        ]
    )
    filters = cli.sales_filters_from_args(namespace)

    assert namespace.upload == 3
    assert filters == core_logic.SalesFilters(
        start_date=date(2024, 3, 1),
        end_date=date(2024, 3, 31),
        seller="Ana",
        zones=("Centro", "Este"),
        currency=Currency.BCV,
        installation_type=InstallationType.FREE,
    )


def test_register_report_command_rejects_file_with_upload():
    parser = argparse.ArgumentParser(prog="cli")
    subparsers = parser.add_subparsers(dest="command")
    cli.register_report_command(subparsers).register(subparsers)

    with pytest.raises(SystemExit):
        parser.parse_args(["report", "--file", "a.xlsx", "--upload", "1"])


def test_format_uploads_handles_empty_ledger():
    assert cli.format_uploads([]) == "No uploads stored."


def test_main_uploads_and_delete_upload(config_factory, upload_factory, make_row, capsys):
    bundle = config_factory()
    config = ["--config", str(bundle.config_path)]
    assert cli.main([*config, "import", str(upload_factory([make_row()], filename="marzo.xlsx"))]) == 0
    assert cli.main([*config, "import", str(upload_factory([make_row(nombre="Luis")], filename="abril.xlsx"))]) == 0
    capsys.readouterr()

    assert cli.main([*config, "uploads"]) == 0
    listing = capsys.readouterr().out
    assert "marzo.xlsx  (1 sales)" in listing
    assert "abril.xlsx  (1 sales)" in listing

    assert cli.main([*config, "delete-upload", "1"]) == 0
    assert "Deleted upload 1 (1 sales)." in capsys.readouterr().out

    reloaded = openpyxl.load_workbook(bundle.ledger_path)
    assert [sale.customer_name for sale in data_manager.iter_sales(reloaded)] == ["Luis"]
    assert [upload.file_name for upload in data_manager.iter_uploads(reloaded)] == ["abril.xlsx"]


def test_main_delete_unknown_upload_returns_business_error(config_factory):
    bundle = config_factory()

    assert cli.main(["--config", str(bundle.config_path), "delete-upload", "9"]) == 2


def test_main_report_filters_by_upload_seller_and_zone(config_factory, upload_factory, make_row, capsys):
    bundle = config_factory()
    config = ["--config", str(bundle.config_path)]
    first = upload_factory([make_row(), make_row(nombre="Luis", vendedor="Pedro", zona="Este")])
    second = upload_factory([make_row(nombre="Eva", fecha="20/03/2024")])
    assert cli.main([*config, "import", str(first)]) == 0
    assert cli.main([*config, "import", str(second)]) == 0
    capsys.readouterr()

    assert cli.main([*config, "report", "--upload", "1"]) == 0
    assert "Sales: 2 " in capsys.readouterr().out

    assert cli.main([*config, "report", "--seller", "Pedro"]) == 0
    assert "Sales: 1 " in capsys.readouterr().out

    assert cli.main([*config, "report", "--zone", "Centro", "--from", "2024-03-16"]) == 0
    assert "Sales: 1 " in capsys.readouterr().out
