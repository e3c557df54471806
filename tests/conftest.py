"""Shared pytest fixtures and utilities for Wellcomm sales tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Callable, Iterator, Sequence
from unittest.mock import Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

for candidate in (SRC_DIR, PROJECT_ROOT):
    candidate_str = str(candidate)
    if candidate_str not in sys.path:
        sys.path.insert(0, candidate_str)

from wellcomm_sales import cli, constants, core_logic, data_manager  # noqa: E402
from setup_excel import UPLOAD_HEADERS, create_ledger, create_upload_workbook  # noqa: E402

_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "SchemaVersion = {schema_version}\n"
    "{extra}"
)


def upload_row(
    *,
    fecha: object = "15/03/2024",
    nombre: object = "Maria Perez",
    zona: object = "Centro",
    medio: object = "ZELLE",
    gratis: object = "",
    plan: object = "RESIDENTIAL 200",
    vendedor: object = "Ana",
    dinero: object = "PAGADO",
    monto: object = "25",
    referencia: object = "",
) -> list[object]:
    """Build one data row in :data:`setup_excel.UPLOAD_HEADERS` order."""

    return [fecha, nombre, zona, medio, gratis, plan, vendedor, dinero, monto, referencia]


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    ledger_path: Path
    schema_version: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def upload_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing upload spreadsheets into a temp folder."""

    def _create_upload(
        rows: Sequence[Sequence[object]],
        *,
        headers: Sequence[object] = UPLOAD_HEADERS,
        filename: str | None = None,
    ) -> Path:
        name = filename or f"upload_{uuid.uuid4().hex}.xlsx"
        return create_upload_workbook(tmp_path / name, rows, headers=headers)

    return _create_upload


@pytest.fixture
def upload_bytes(upload_factory: Callable[..., Path]) -> Callable[..., bytes]:
    """Factory returning the raw bytes of a freshly written upload."""

    def _bytes(rows: Sequence[Sequence[object]], **kwargs: object) -> bytes:
        return upload_factory(rows, **kwargs).read_bytes()

    return _bytes


@pytest.fixture
def config_factory(tmp_path: Path) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/ledger bundles on demand."""

    def _create_config(
        *,
        extra: str = "",
        make_relative: bool = False,
        schema_version: str = constants.EXPECTED_SCHEMA_VERSION,
        with_ledger: bool = True,
    ) -> ConfigBundle:
        bundle_dir = tmp_path / f"bundle_{uuid.uuid4().hex}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        ledger_path = bundle_dir / "sales_ledger.xlsx"
        if with_ledger:
            create_ledger(ledger_path, overwrite=True)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=ledger_path.name if make_relative else str(ledger_path),
                schema_version=schema_version,
                extra=extra,
            ),
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            ledger_path=ledger_path,
            schema_version=schema_version,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="wellcomm-cli", description="Wellcomm CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Default settings pointing at a ledger path in the temp folder."""

    return data_manager.ConfigSettings(data_file=tmp_path / "sales_ledger.xlsx")


@pytest.fixture
def workbook() -> Mock:
    """Return a mock workbook object for business logic tests."""

    return Mock(name="workbook")


@pytest.fixture
def context(settings: data_manager.ConfigSettings, workbook: Mock) -> core_logic.RuntimeContext:
    """Assemble a runtime context from injected settings and workbook mocks."""

    return core_logic.RuntimeContext(settings=settings, workbook=workbook)


@pytest.fixture
def sample_date() -> date:
    return date(2024, 3, 15)


@pytest.fixture
def make_row() -> Callable[..., list[object]]:
    """Expose :func:`upload_row` to tests."""

    return upload_row
