"""Utility for creating the catalog seed workbook.

The module doubles as a script (``stock-ledger-setup``) and as a library used
by tests and by the CLI when no catalog workbook is configured.
"""

from __future__ import annotations

import argparse
import sys
from decimal import Decimal
from pathlib import Path
from typing import Sequence, Tuple

from . import data_manager
from .constants import DEFAULT_UNIT
from .ledger_store import StockItem

CONFIG_FILE = data_manager.CONFIG_FILE_NAME


def _item(item_id: str, name: str, variety: str, quantity: str, price: str, reorder: str) -> StockItem:
    return StockItem(
        item_id=item_id,
        name=name,
        variety=variety,
        quantity=Decimal(quantity),
        unit=DEFAULT_UNIT,
        price_per_unit=Decimal(price),
        reorder_level=Decimal(reorder),
        opening_quantity=Decimal(quantity),
    )


# Starter catalog for a new shop.
DEFAULT_CATALOG: Tuple[StockItem, ...] = (
    _item("1", "Basmati Rice", "Premium", "500", "120", "100"),
    _item("2", "Basmati Rice", "Super", "300", "95", "100"),
    _item("3", "Sona Masoori", "Regular", "450", "65", "150"),
    _item("4", "Ponni Rice", "Boiled", "80", "55", "100"),
    _item("5", "Kolam Rice", "Regular", "200", "60", "100"),
    _item("6", "Jasmine Rice", "Premium", "150", "110", "50"),
)


def create_catalog_workbook(
    destination: Path,
    *,
    items: Sequence[StockItem] = DEFAULT_CATALOG,
    overwrite: bool = False,
) -> Path:
    """Create a catalog workbook at ``destination`` holding ``items``.

    When ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if the target already exists.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing catalog workbook: {destination}"
        )

    workbook = data_manager.new_workbook([(data_manager.CATALOG_SHEET, data_manager.CATALOG_COLUMNS)])
    for item in items:
        data_manager.append_stock_item(workbook, item)
    return data_manager.save_workbook(workbook, destination)


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``CatalogFile`` in ``config_path``."""

    resolved = Path(config_path).expanduser().resolve()
    parser = data_manager.read_config(resolved)
    settings = data_manager.parse_settings(parser, base_path=resolved.parent)
    return create_catalog_workbook(settings.catalog_file, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Create the stock ledger catalog workbook")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Stock Ledger Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except (FileNotFoundError, KeyError, ValueError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created catalog workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
