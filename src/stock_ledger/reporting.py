"""Read-only reports over a session's ledger and stock snapshot.

Nothing here mutates the context or caches results; each call recomputes from
the current state. Calendar-day filtering uses the local timezone, so a sale
stamped at 23:30 local time belongs to that local day even when its stored UTC
timestamp has already rolled over.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Tuple

from . import log
from .constants import ZERO
from .core_logic import RuntimeContext, list_stock
from .ledger_store import PurchaseRow, SaleRow, StockItem


@dataclass(frozen=True)
class DailyTotals:
    """Aggregate figures for the transactions of one calendar day."""

    purchase_total: Decimal
    sale_total: Decimal
    purchase_quantity: Decimal
    sale_quantity: Decimal
    net_profit: Decimal
    transaction_count: int


@dataclass(frozen=True)
class DailySummary:
    """Everything the daily report shows: the day's transactions and stock status."""

    day: date
    purchases: Tuple[PurchaseRow, ...]
    sales: Tuple[SaleRow, ...]
    totals: DailyTotals
    stock: Tuple[StockItem, ...]
    low_stock: Tuple[StockItem, ...]


def local_day(moment: date) -> date:
    """Return the local calendar day of a date or datetime.

    Aware datetimes are converted to the local timezone first; naive ones are
    taken as already local.
    """
    if isinstance(moment, datetime):
        if moment.tzinfo is not None:
            moment = moment.astimezone()
        return moment.date()
    return moment


def transactions_on_date(context: RuntimeContext, on: date) -> Tuple[Tuple[PurchaseRow, ...], Tuple[SaleRow, ...]]:
    """Return the purchases and sales stamped on the same local day as ``on``."""
    day = local_day(on)
    purchases = tuple(p for p in context.ledger.purchases() if local_day(p.timestamp) == day)
    sales = tuple(s for s in context.ledger.sales() if local_day(s.timestamp) == day)
    return purchases, sales


def daily_totals(context: RuntimeContext, on: date) -> DailyTotals:
    """Sum amounts and quantities for the transactions of ``on``.

    ``net_profit`` is sales revenue minus purchase spend for that day.
    """
    purchases, sales = transactions_on_date(context, on)
    return _totals_for(purchases, sales)


def _totals_for(purchases: Tuple[PurchaseRow, ...], sales: Tuple[SaleRow, ...]) -> DailyTotals:
    purchase_total = sum((p.total_amount for p in purchases), ZERO)
    sale_total = sum((s.total_amount for s in sales), ZERO)
    return DailyTotals(
        purchase_total=purchase_total,
        sale_total=sale_total,
        purchase_quantity=sum((p.quantity for p in purchases), ZERO),
        sale_quantity=sum((s.quantity for s in sales), ZERO),
        net_profit=sale_total - purchase_total,
        transaction_count=len(purchases) + len(sales),
    )


def daily_summary(context: RuntimeContext, on: Optional[date] = None) -> DailySummary:
    """Build the daily report for ``on`` (today when omitted).

    The transaction lists are filtered by day; the stock and low-stock lists
    always reflect the current snapshot.
    """
    day = local_day(on if on is not None else datetime.now().astimezone())
    purchases, sales = transactions_on_date(context, day)
    totals = _totals_for(purchases, sales)
    log.debug(
        "Built daily summary for %s: %d transactions, net profit %s",
        day.isoformat(),
        totals.transaction_count,
        totals.net_profit,
    )
    return DailySummary(
        day=day,
        purchases=purchases,
        sales=sales,
        totals=totals,
        stock=list_stock(context),
        low_stock=low_stock_items(context),
    )


def is_low_stock(item: StockItem) -> bool:
    return item.quantity <= item.reorder_level


def low_stock_items(context: RuntimeContext) -> Tuple[StockItem, ...]:
    """Return every item at or below its reorder level, in catalog order."""
    return tuple(item for item in list_stock(context) if is_low_stock(item))


def stock_valuation(context: RuntimeContext) -> Decimal:
    """Total inventory value at catalog reference prices."""
    return sum((item.quantity * item.price_per_unit for item in list_stock(context)), ZERO)


def recent_purchases(context: RuntimeContext, limit: Optional[int] = None) -> Tuple[PurchaseRow, ...]:
    """Return the last ``limit`` purchases, newest first."""
    return _most_recent(context.ledger.purchases(), _resolve_limit(context, limit))


def recent_sales(context: RuntimeContext, limit: Optional[int] = None) -> Tuple[SaleRow, ...]:
    """Return the last ``limit`` sales, newest first."""
    return _most_recent(context.ledger.sales(), _resolve_limit(context, limit))


def _resolve_limit(context: RuntimeContext, limit: Optional[int]) -> int:
    resolved = context.settings.recent_limit if limit is None else limit
    if resolved < 0:
        raise ValueError("limit must be zero or positive")
    return resolved


def _most_recent(rows: tuple, limit: int) -> tuple:
    if limit == 0:
        return ()
    return tuple(reversed(rows[-limit:]))
