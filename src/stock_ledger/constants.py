"""Enumerations and defaults shared across the stock ledger modules.

The ledger store, the reconciler, the reporting functions and the CLI all read
their identifiers from here so that sheet names, transaction kinds and id
prefixes stay in one place.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Version expected in config.ini and stamped on exported report workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

DEFAULT_UNIT = "kg"
DEFAULT_WALK_IN_CUSTOMER = "Walk-in Customer"
DEFAULT_RECENT_LIMIT = 5
ZERO = Decimal("0")


class TransactionType(str, Enum):
    """Enumerate the two transaction kinds held by the ledger."""

    PURCHASE = "PURCHASE"
    SALE = "SALE"

    @property
    def id_prefix(self) -> str:
        return "P" if self is TransactionType.PURCHASE else "S"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names read or written by the data layer."""

    CATALOG = "Catalog"
    PURCHASES = "Purchases"
    SALES = "Sales"
    TOTALS = "Totals"
    STOCK_STATUS = "StockStatus"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_UNIT",
    "DEFAULT_WALK_IN_CUSTOMER",
    "DEFAULT_RECENT_LIMIT",
    "ZERO",
    "TransactionType",
    "SheetName",
]
