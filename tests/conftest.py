"""Shared pytest fixtures and utilities for stock ledger tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from stock_ledger import cli, constants, core_logic, data_manager, setup_excel  # noqa: E402
from stock_ledger.ledger_store import StockItem  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
_CONFIG_TEMPLATE = (
    "[System]\n"
    "CatalogFile = {catalog_file}\n"
    "ShopName = {shop_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "WalkInCustomer = {walk_in_customer}\n\n"
    "[Reports]\n"
    "RecentLimit = {recent_limit}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    catalog_path: Path
    schema_version: str
    shop_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def make_item() -> Callable[..., StockItem]:
    """Factory for catalog items whose opening quantity matches their quantity."""

    def _make(
        item_id: str,
        *,
        name: str = "Test Rice",
        variety: str = "Regular",
        quantity: str = "100",
        price: str = "50",
        reorder: str = "20",
        unit: str = "kg",
    ) -> StockItem:
        return StockItem(
            item_id=item_id,
            name=name,
            variety=variety,
            quantity=Decimal(quantity),
            unit=unit,
            price_per_unit=Decimal(price),
            reorder_level=Decimal(reorder),
            opening_quantity=Decimal(quantity),
        )

    return _make


@pytest.fixture
def catalog_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates a catalog workbook in a temp folder."""

    def _create_catalog(
        *,
        subdir: str | None = None,
        items=setup_excel.DEFAULT_CATALOG,
        filename: str = "catalog.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        return setup_excel.create_catalog_workbook(base_dir / filename, items=items, overwrite=True)

    return _create_catalog


@pytest.fixture
def catalog_path(catalog_factory: Callable[..., Path]) -> Path:
    """Return a fresh catalog workbook seeded with the default catalog."""

    return catalog_factory(subdir=f"catalog_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, catalog_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/catalog bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        shop_name: str = "Test Shop",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        walk_in_customer: str = "Walk-in Customer",
        recent_limit: int = 5,
    ) -> ConfigBundle:
        bundle_name = f"bundle_{uuid.uuid4().hex}"
        catalog_path = catalog_factory(subdir=bundle_name)
        bundle_dir = catalog_path.parent
        catalog_entry = catalog_path.name if make_relative else str(catalog_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                catalog_file=catalog_entry,
                shop_name=shop_name,
                schema_version=schema_version,
                walk_in_customer=walk_in_customer,
                recent_limit=recent_limit,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            catalog_path=catalog_path,
            schema_version=schema_version,
            shop_name=shop_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load a session through the public API from a config file on disk."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="stock-ledger", description="Stock Ledger CLI")


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
    """Provide default configuration settings for in-memory sessions."""

    return data_manager.ConfigSettings(
        catalog_file=tmp_path / "catalog.xlsx",
        shop_name="Test Shop",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
    )


@pytest.fixture
def context(settings: data_manager.ConfigSettings) -> core_logic.RuntimeContext:
    """Session seeded with the default rice catalog (items "1" to "6")."""

    return core_logic.build_runtime_context(settings, setup_excel.DEFAULT_CATALOG)


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` so new transactions get a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply
