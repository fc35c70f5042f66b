"""Shared pytest fixtures and utilities for the restaurant ERP tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator, Optional
from unittest.mock import Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from resto_erp import cli, constants, core_logic, data_manager  # noqa: E402
from resto_erp.setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_DEPARTMENT = "Hall"
DEFAULT_SEGMENT = "Kitchen"
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "RestaurantName = {restaurant_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "SaleDepartment = {department}\n"
    "ProductionSegment = {segment}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    restaurant_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized master workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        filename: str = "master_workbook.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh master workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        restaurant_name: str = "Test Restaurant",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        create_workbook: bool = True,
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        if create_workbook:
            workbook_path = workbook_factory(subdir=f"bundle_{bundle_id}")
        else:
            workbook_path = bundle_dir / "master_workbook.xlsx"
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                restaurant_name=restaurant_name,
                schema_version=schema_version,
                department=DEFAULT_DEPARTMENT,
                segment=DEFAULT_SEGMENT,
            ),
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            restaurant_name=restaurant_name,
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
# Record builders
# ---------------------------------------------------------------------------


def make_reference(
    code: str = "101",
    name: str = "Kebab",
    department: str = "Hall",
    segment: str = "Grill",
) -> data_manager.ProductReference:
    return data_manager.ProductReference(
        code=code,
        name=name,
        sale_department=department,
        production_segment=segment,
    )


def make_entry(
    product_id: str = "A",
    *,
    quantity: str = "1",
    unit_price: str = "100",
    total_price: Optional[str] = None,
    sale_date: str = "1402/01/01",
    reference: Optional[data_manager.ProductReference] = None,
    entry_id: Optional[str] = None,
) -> data_manager.SaleEntry:
    """Build a sale entry; ``total_price`` defaults to quantity times price."""

    qty = Decimal(quantity)
    price = Decimal(unit_price)
    return data_manager.SaleEntry(
        entry_id=entry_id or f"E-{uuid.uuid4().hex[:8]}",
        product_id=product_id,
        product=reference,
        quantity=qty,
        unit_price=price,
        total_price=Decimal(total_price) if total_price is not None else qty * price,
        sale_date=sale_date,
        created_at=0,
        updated_at=0,
    )


def make_batch(
    batch_id: str,
    entries: tuple[data_manager.SaleEntry, ...] = (),
    *,
    date: str = "1402/01/01",
    end_date: Optional[str] = None,
    total_cost: str = "0",
) -> data_manager.SaleBatch:
    return data_manager.SaleBatch(
        batch_id=batch_id,
        entries=tuple(entries),
        start_date=date,
        end_date=end_date or date,
        total_revenue=sum((entry.total_price for entry in entries), Decimal("0")),
        total_cost=Decimal(total_cost),
        created_at=0,
        updated_at=0,
    )


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="resto-cli", description="Restaurant CLI")


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
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "master_workbook.xlsx",
        restaurant_name="Test Restaurant",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        default_sale_department=DEFAULT_DEPARTMENT,
        default_production_segment=DEFAULT_SEGMENT,
    )


@pytest.fixture
def workbook() -> Mock:
    """Return a mock workbook object for business logic tests."""

    return Mock(name="workbook")


@pytest.fixture
def context(settings: data_manager.ConfigSettings, workbook: Mock) -> core_logic.RuntimeContext:
    """Assemble a runtime context from injected settings and workbook mocks."""

    return core_logic.RuntimeContext(settings=settings, workbook=workbook)


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply
