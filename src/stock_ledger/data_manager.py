"""Data access layer for the stock ledger.

This module reads and writes the files that surround an in-memory session. No
business rules live here.

The public API covers three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening and saving Excel files with ``openpyxl``.
3. Sheet operations: reading the seed catalog and writing daily report
   workbooks.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Optional, Sequence

import openpyxl
from openpyxl.styles import Font
from openpyxl.workbook import Workbook

from . import log
from .constants import (
    DEFAULT_RECENT_LIMIT,
    DEFAULT_UNIT,
    DEFAULT_WALK_IN_CUSTOMER,
    EXPECTED_SCHEMA_VERSION,
    SheetName,
)
from .ledger_store import PurchaseRow, SaleRow, StockItem

if TYPE_CHECKING:
    from .reporting import DailySummary


CONFIG_FILE_NAME = "config.ini"
CATALOG_SHEET = SheetName.CATALOG.value

CATALOG_COLUMNS: Sequence[str] = (
    "ItemID",
    "Name",
    "Variety",
    "Quantity",
    "Unit",
    "PricePerUnit",
    "ReorderLevel",
)
PURCHASE_COLUMNS: Sequence[str] = (
    "TransactionID",
    "Timestamp",
    "ItemID",
    "ItemName",
    "Supplier",
    "Quantity",
    "PricePerUnit",
    "TotalAmount",
)
SALE_COLUMNS: Sequence[str] = (
    "TransactionID",
    "Timestamp",
    "ItemID",
    "ItemName",
    "Customer",
    "Quantity",
    "PricePerUnit",
    "TotalAmount",
)
STOCK_STATUS_COLUMNS: Sequence[str] = (
    "ItemID",
    "ItemName",
    "Quantity",
    "Unit",
    "ReorderLevel",
    "Status",
)


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    catalog_file: Optional[Path]
    shop_name: str
    schema_version: str
    walk_in_customer: str = DEFAULT_WALK_IN_CUSTOMER
    recent_limit: int = DEFAULT_RECENT_LIMIT


def default_settings() -> ConfigSettings:
    """Settings used when no ``config.ini`` is available."""

    return ConfigSettings(
        catalog_file=None,
        shop_name="Rice Shop",
        schema_version=EXPECTED_SCHEMA_VERSION,
    )


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls the session.

    If the caller provides ``explicit_path`` it is returned immediately
    without verification. Otherwise the function walks up from the current
    working directory looking for ``CONFIG_FILE_NAME``; the first match wins.

    Raises:
        FileNotFoundError: If no parent directory contains ``CONFIG_FILE_NAME``.
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
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Validation of required entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. ``[Defaults]`` and ``[Reports]`` fall
    back to package defaults. A relative ``CatalogFile`` is anchored to
    ``base_path`` (or the current working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used as the anchor for relative
            ``CatalogFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required ``[System]`` options is missing.
        ValueError: If ``RecentLimit`` is not a positive integer.
    """

    try:
        catalog_file_raw = parser.get("System", "CatalogFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    walk_in_customer = parser.get("Defaults", "WalkInCustomer", fallback=DEFAULT_WALK_IN_CUSTOMER)
    recent_limit = parser.getint("Reports", "RecentLimit", fallback=DEFAULT_RECENT_LIMIT)
    if recent_limit <= 0:
        raise ValueError(f"RecentLimit must be a positive integer, got {recent_limit}")

    catalog_file_path = Path(catalog_file_raw)
    if not catalog_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        catalog_file_path = (base_path / catalog_file_path).resolve()

    return ConfigSettings(
        catalog_file=catalog_file_path,
        shop_name=shop_name,
        schema_version=schema_version,
        walk_in_customer=walk_in_customer,
        recent_limit=recent_limit,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open an Excel workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> Path:
    """Persist ``workbook`` at ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)
    return dest


def new_workbook(sheet_columns: Iterable[tuple[str, Sequence[str]]]) -> Workbook:
    """Create an empty workbook with one bold header row per requested sheet."""

    workbook = openpyxl.Workbook()
    # Drop the default sheet openpyxl generates so only ours remain.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)
    for sheet_name, columns in sheet_columns:
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font
    return workbook


def iter_stock_items(workbook: Workbook) -> Iterable[StockItem]:
    """Iterate over the ``Catalog`` worksheet and yield :class:`StockItem` records.

    The header row and fully empty rows are skipped.

    Raises:
        KeyError: If the workbook has no ``Catalog`` sheet.
    """

    if CATALOG_SHEET not in workbook.sheetnames:
        raise KeyError(f"Workbook has no '{CATALOG_SHEET}' sheet")
    sheet = workbook[CATALOG_SHEET]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield deserialize_stock_item(raw)


def append_stock_item(workbook: Workbook, record: StockItem) -> None:
    """Append a catalog row in ``CATALOG_COLUMNS`` order."""

    workbook[CATALOG_SHEET].append(serialize_stock_item(record))


def _to_decimal(raw: object, default: str = "0") -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal(default)


def serialize_stock_item(record: StockItem) -> list[object]:
    """Convert a stock item into the ``Catalog`` column ordering."""

    return [
        record.item_id,
        record.name,
        record.variety,
        record.quantity,
        record.unit,
        record.price_per_unit,
        record.reorder_level,
    ]


def deserialize_stock_item(raw_row: Sequence[object]) -> StockItem:
    """Convert a raw ``Catalog`` row into a :class:`StockItem`.

    Numeric cells become :class:`~decimal.Decimal` and the id is coerced to
    ``str`` because Excel tends to store numeric-looking ids as numbers. The
    seeded quantity doubles as the item's opening quantity.
    """

    item_id, name, variety, quantity_raw, unit, price_raw, reorder_raw = tuple(raw_row[:7])
    quantity = _to_decimal(quantity_raw)
    return StockItem(
        item_id=str(item_id),
        name=str(name) if name is not None else "",
        variety=str(variety) if variety is not None else "",
        quantity=quantity,
        unit=str(unit) if unit else DEFAULT_UNIT,
        price_per_unit=_to_decimal(price_raw),
        reorder_level=_to_decimal(reorder_raw),
        opening_quantity=quantity,
    )


def serialize_purchase(record: PurchaseRow) -> list[object]:
    return [
        record.transaction_id,
        record.timestamp.isoformat(),
        record.item_id,
        record.item_name,
        record.supplier_name,
        record.quantity,
        record.price_per_unit,
        record.total_amount,
    ]


def serialize_sale(record: SaleRow, *, walk_in_label: str = DEFAULT_WALK_IN_CUSTOMER) -> list[object]:
    return [
        record.transaction_id,
        record.timestamp.isoformat(),
        record.item_id,
        record.item_name,
        record.customer_name or walk_in_label,
        record.quantity,
        record.price_per_unit,
        record.total_amount,
    ]


def export_daily_summary(
    summary: "DailySummary",
    destination: Path,
    *,
    walk_in_label: str = DEFAULT_WALK_IN_CUSTOMER,
) -> Path:
    """Write a rendered daily summary to a new workbook at ``destination``.

    The workbook is a one-way report with ``Purchases``, ``Sales``, ``Totals``
    and ``StockStatus`` sheets; it is never read back into a session.

    Returns:
        Path: The resolved path of the written workbook.
    """

    workbook = new_workbook(
        [
            (SheetName.PURCHASES.value, PURCHASE_COLUMNS),
            (SheetName.SALES.value, SALE_COLUMNS),
            (SheetName.TOTALS.value, ("Metric", "Value")),
            (SheetName.STOCK_STATUS.value, STOCK_STATUS_COLUMNS),
        ]
    )

    for purchase in summary.purchases:
        workbook[SheetName.PURCHASES.value].append(serialize_purchase(purchase))
    for sale in summary.sales:
        workbook[SheetName.SALES.value].append(serialize_sale(sale, walk_in_label=walk_in_label))

    totals_sheet = workbook[SheetName.TOTALS.value]
    totals = summary.totals
    for metric, value in (
        ("Date", _format_day(summary.day)),
        ("SchemaVersion", EXPECTED_SCHEMA_VERSION),
        ("PurchaseTotal", totals.purchase_total),
        ("SaleTotal", totals.sale_total),
        ("PurchaseQuantity", totals.purchase_quantity),
        ("SaleQuantity", totals.sale_quantity),
        ("NetProfit", totals.net_profit),
        ("TransactionCount", totals.transaction_count),
    ):
        totals_sheet.append([metric, value])

    low_stock_ids = {item.item_id for item in summary.low_stock}
    status_sheet = workbook[SheetName.STOCK_STATUS.value]
    for item in summary.stock:
        status_sheet.append(
            [
                item.item_id,
                item.display_name,
                item.quantity,
                item.unit,
                item.reorder_level,
                "LOW" if item.item_id in low_stock_ids else "OK",
            ]
        )

    written = save_workbook(workbook, destination)
    log.info("Exported daily summary for %s to '%s'", _format_day(summary.day), written)
    return written


def _format_day(day: date) -> str:
    return day.isoformat()
