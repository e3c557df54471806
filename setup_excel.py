"""Utility for initializing the Wellcomm sales ledger and sample uploads.

The module doubles as a script (``python setup_excel.py``) and as a library
used by tests or other tooling, so the workbook bootstrap logic stays the same
regardless of the execution path.
"""

from __future__ import annotations

import argparse
import configparser
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence
import sys

import openpyxl
from openpyxl.styles import Font

from wellcomm_sales import data_manager
from wellcomm_sales.constants import EXPECTED_SCHEMA_VERSION

# Header row of the monthly upload spreadsheet. The column after "Zona" is
# left unnamed on purpose: real uploads keep the payment method there.
UPLOAD_HEADERS: Sequence[str] = [
    "Fecha",
    "Nombre",
    "Zona",
    "",
    "Gratis",
    "Plan",
    "Vendedor",
    "Dinero recibido Wellcomm",
    "Monto Suscripción",
    "Referencia de registro",
]

CONFIG_FILE = "config.ini"

DEFAULT_CONFIG_TEXT = (
    "[System]\n"
    "DataFile = sales_ledger.xlsx\n"
    f"SchemaVersion = {EXPECTED_SCHEMA_VERSION}\n"
    "\n"
    "[Commissions]\n"
    "SellerFreeCommission = 8\n"
    "SellerPaidCommission = 10\n"
    "InstallerFreePercentage = 0.5\n"
    "InstallerPaidPercentage = 0.7\n"
    "\n"
    "[Plans]\n"
    "RESIDENTIAL 100 = 20\n"
    "RESIDENTIAL 200 = 25\n"
    "RESIDENTIAL 400 = 35\n"
    "RESIDENTIAL 600 = 55\n"
    "RESIDENTIAL 800 = 75\n"
)


@dataclass(frozen=True)
class SetupSettings:
    """Configuration values needed to create the ledger."""

    data_file: Path


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``config.ini`` and produce :class:`SetupSettings`.

    Relative ``DataFile`` entries are resolved against the config file's
    directory, the same way the toolkit resolves them at runtime.
    """

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")

    try:
        data_file_raw = parser.get("System", "DataFile")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        data_file_path = (config_path.parent / data_file_path).resolve()

    return SetupSettings(data_file=data_file_path)


def write_default_config(destination: Path, *, overwrite: bool = False) -> Path:
    """Write a starter ``config.ini`` with the default commission scheme."""

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing config: {destination}")
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_text(DEFAULT_CONFIG_TEXT, encoding="utf-8")
    return destination


def create_ledger(destination: Path, *, overwrite: bool = False) -> Path:
    """Create an empty sales ledger workbook at ``destination``.

    Raises:
        FileExistsError: If the target exists and ``overwrite`` is ``False``.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing ledger: {destination}"
        )

    data_manager.save_workbook(data_manager.create_ledger_workbook(), destination)
    return destination


def create_upload_workbook(
    destination: Path,
    rows: Iterable[Sequence[object]],
    *,
    headers: Sequence[object] = UPLOAD_HEADERS,
) -> Path:
    """Write an upload spreadsheet with ``headers`` followed by ``rows``."""

    workbook = openpyxl.Workbook()
    worksheet = workbook.active
    worksheet.title = "Ventas"
    worksheet.append(list(headers))
    for cell in worksheet[1]:
        cell.font = Font(bold=True)
    for row in rows:
        worksheet.append(list(row))

    destination = destination.expanduser().resolve()
    destination.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the ledger named by ``config_path``."""

    settings = load_settings(config_path)
    return create_ledger(settings.data_file, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the Wellcomm sales ledger")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target ledger if it already exists.",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Write a default config.ini first when none exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the CLI script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Wellcomm Sales Setup Script ---")
    print(f"Using configuration: {config_path}")

    try:
        if args.init_config and not config_path.exists():
            write_default_config(config_path)
            print(f"Wrote default configuration to '{config_path}'.")
        output_path = run_from_config(config_path, overwrite=args.force)
    except FileNotFoundError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --init-config to create a default config.ini.")
        return 1
    except KeyError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except OSError as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created sales ledger at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
