"""Stock reconciliation layer for the shop ledger.

This module is the only place allowed to change a :class:`StockItem` quantity
or to call the :class:`LedgerStore` mutators. Every write pairs the ledger
change with the matching stock adjustment so that, after each call returns,
each item's quantity equals its opening quantity plus all purchases minus all
sales currently in the ledger.

Updates are expressed as "revert the old transaction, then apply the new one"
over the two pure helpers :func:`revert_transaction` and
:func:`apply_transaction`. The same composition covers edits that keep the
item and edits that move the transaction to another item.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal, DecimalException, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar, cast

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, ZERO
from .ledger_store import LedgerStore, PurchaseRow, SaleRow, StockItem, TransactionRow

RowT = TypeVar("RowT", bound=TransactionRow)


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced stock item or transaction is unknown."""


class ItemNotFoundError(MissingReferenceError):
    """Raised when a command references an item absent from the catalog."""


class TransactionNotFoundError(MissingReferenceError):
    """Raised when an update or delete targets an unknown transaction."""


class InvalidInputError(BusinessRuleViolation, ValueError):
    """Raised when command values fail validation."""


@dataclass(frozen=True)
class RuntimeContext:
    """Session state: settings, the stock catalog and the transaction ledger."""

    settings: data_manager.ConfigSettings
    catalog: Dict[str, StockItem] = field(default_factory=dict)
    ledger: LedgerStore = field(default_factory=LedgerStore, repr=False, compare=False)


@dataclass(frozen=True)
class PurchaseCommand:
    """User intent for recording or editing a purchase."""

    item_id: str
    quantity: Decimal
    price_per_unit: Decimal
    supplier_name: str
    item_name: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class SaleCommand:
    """User intent for recording or editing a sale."""

    item_id: str
    quantity: Decimal
    price_per_unit: Decimal
    customer_name: Optional[str] = None
    item_name: Optional[str] = None
    timestamp: Optional[datetime] = None


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` when provided, otherwise the current UTC time."""

    return candidate if candidate is not None else datetime.now(UTC)


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Resolve ``config.ini``, load the catalog workbook and build a session.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer searches upwards from the current
            working directory.

    Returns:
        RuntimeContext: Context whose catalog is seeded from the configured
            workbook and whose ledger is empty.

    Raises:
        FileNotFoundError: If the configuration file or catalog workbook cannot
            be located.
        KeyError: When mandatory configuration options are missing.
        BusinessRuleViolation: If the workbook lists the same item id twice.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.catalog_file)
    context = build_runtime_context(settings, data_manager.iter_stock_items(workbook))
    log.info(
        "Loaded runtime context for '%s' with %d catalog items from '%s'",
        settings.shop_name,
        len(context.catalog),
        settings.catalog_file,
    )
    return context


def build_runtime_context(settings: data_manager.ConfigSettings, items: Iterable[StockItem]) -> RuntimeContext:
    """Assemble a fresh session from settings and an initial catalog."""
    context = RuntimeContext(settings=settings)
    for item in items:
        register_stock_item(context, item)
    return context


def ensure_schema_version(context: RuntimeContext) -> None:
    """Reject configurations written for a different schema version.

    Raises:
        RuntimeError: If the configured schema version does not match
            ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Catalog schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Catalog schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def register_stock_item(context: RuntimeContext, item: StockItem) -> StockItem:
    """Add an item to the session catalog.

    The item's ``opening_quantity`` becomes the base on top of which the
    ledger is reconciled, so it must match ``quantity`` at registration time.

    Raises:
        BusinessRuleViolation: If ``item.item_id`` is already in the catalog.
        InvalidInputError: If the opening quantity, price or reorder level is
            invalid.
    """
    if item.item_id in context.catalog:
        log.error("Duplicate catalog item id '%s'", item.item_id)
        raise BusinessRuleViolation(f"Duplicate stock item id: {item.item_id}")
    require_nonnegative_quantity(item.opening_quantity)
    require_nonnegative_money(item.price_per_unit)
    require_nonnegative_quantity(item.reorder_level)
    if item.quantity != item.opening_quantity:
        raise InvalidInputError(
            f"Item '{item.item_id}' must enter the catalog with quantity equal to its opening quantity"
        )
    context.catalog[item.item_id] = item
    log.debug("Registered stock item '%s' (%s)", item.item_id, item.display_name)
    return item


def list_stock(context: RuntimeContext) -> Tuple[StockItem, ...]:
    """Return the current stock snapshot in catalog order."""
    return tuple(context.catalog.values())


def get_stock_item(context: RuntimeContext, item_id: str) -> StockItem:
    """Resolve a catalog item by id.

    Raises:
        ItemNotFoundError: If ``item_id`` is not in the catalog.
    """
    try:
        return context.catalog[item_id]
    except KeyError as exc:
        log.warning("Stock item lookup failed for id '%s'", item_id)
        raise ItemNotFoundError(f"Unknown stock item id: {item_id}") from exc


def get_transaction(context: RuntimeContext, transaction_id: str) -> TransactionRow:
    """Resolve a purchase or sale by id.

    Raises:
        TransactionNotFoundError: If the ledger holds no such transaction.
    """
    try:
        return context.ledger.find(transaction_id)
    except KeyError as exc:
        log.warning("Transaction lookup failed for id '%s'", transaction_id)
        raise TransactionNotFoundError(f"Unknown transaction id: {transaction_id}") from exc


def get_purchase(context: RuntimeContext, transaction_id: str) -> PurchaseRow:
    """Resolve a purchase by id; sale ids are reported as not found."""
    transaction = get_transaction(context, transaction_id)
    if not isinstance(transaction, PurchaseRow):
        log.warning("Transaction '%s' is not a purchase", transaction_id)
        raise TransactionNotFoundError(f"Unknown purchase id: {transaction_id}")
    return transaction


def get_sale(context: RuntimeContext, transaction_id: str) -> SaleRow:
    """Resolve a sale by id; purchase ids are reported as not found."""
    transaction = get_transaction(context, transaction_id)
    if not isinstance(transaction, SaleRow):
        log.warning("Transaction '%s' is not a sale", transaction_id)
        raise TransactionNotFoundError(f"Unknown sale id: {transaction_id}")
    return transaction


def apply_transaction(item: StockItem, transaction: TransactionRow) -> StockItem:
    """Return ``item`` with the transaction's stock effect applied."""
    return _with_quantity(item, item.quantity + transaction.stock_delta)


def revert_transaction(item: StockItem, transaction: TransactionRow) -> StockItem:
    """Return ``item`` with the transaction's stock effect removed."""
    return _with_quantity(item, item.quantity - transaction.stock_delta)


def _with_quantity(item: StockItem, quantity: Decimal) -> StockItem:
    return replace(item, quantity=quantity)


def record_purchase(context: RuntimeContext, command: PurchaseCommand) -> PurchaseRow:
    """Validate and append a purchase, then add its quantity to the item.

    Args:
        context (RuntimeContext): Active session.
        command (PurchaseCommand): Structured purchase intent.

    Returns:
        PurchaseRow: The stored purchase with its assigned id.

    Raises:
        ItemNotFoundError: If ``command.item_id`` is not in the catalog.
        InvalidInputError: If quantity, price or supplier fail validation.
    """
    item = get_stock_item(context, command.item_id)
    draft = build_purchase_transaction(command, item=item, timestamp=_resolve_timestamp(command.timestamp))
    adjusted = _plan_adjustments(context, apply=draft)

    purchase = context.ledger.append(draft)
    _commit_adjustments(context, adjusted)
    log.info(
        "Recorded PURCHASE '%s' for item '%s' (quantity=%s, total=%s, supplier=%s)",
        purchase.transaction_id,
        purchase.item_id,
        purchase.quantity,
        purchase.total_amount,
        purchase.supplier_name,
    )
    return purchase


def record_sale(context: RuntimeContext, command: SaleCommand) -> SaleRow:
    """Validate and append a sale, then subtract its quantity from the item.

    The item may end up below zero. Refusing sales that exceed the available
    stock is left to the caller, see :func:`available_for_sale`.

    Raises:
        ItemNotFoundError: If ``command.item_id`` is not in the catalog.
        InvalidInputError: If quantity or price fail validation.
    """
    item = get_stock_item(context, command.item_id)
    draft = build_sale_transaction(command, item=item, timestamp=_resolve_timestamp(command.timestamp))
    adjusted = _plan_adjustments(context, apply=draft)

    sale = context.ledger.append(draft)
    _commit_adjustments(context, adjusted)
    remaining = context.catalog[sale.item_id].quantity
    if remaining < ZERO:
        log.warning(
            "Item '%s' is oversold after sale '%s' (quantity=%s)",
            sale.item_id,
            sale.transaction_id,
            remaining,
        )
    log.info(
        "Recorded SALE '%s' for item '%s' (quantity=%s, total=%s)",
        sale.transaction_id,
        sale.item_id,
        sale.quantity,
        sale.total_amount,
    )
    return sale


def update_purchase(context: RuntimeContext, transaction_id: str, command: PurchaseCommand) -> PurchaseRow:
    """Replace a purchase and move its stock effect to the new values.

    The old quantity is taken off the old item and the new quantity is added
    to the new item. The original timestamp is kept.

    Raises:
        TransactionNotFoundError: If ``transaction_id`` is not a purchase.
        ItemNotFoundError: If the new ``item_id`` is not in the catalog.
        InvalidInputError: If the new values fail validation. Nothing is
            changed in that case.
    """
    previous = get_purchase(context, transaction_id)
    item = get_stock_item(context, command.item_id)
    draft = build_purchase_transaction(command, item=item, timestamp=previous.timestamp)
    return _replace_transaction(context, previous, draft)


def update_sale(context: RuntimeContext, transaction_id: str, command: SaleCommand) -> SaleRow:
    """Replace a sale and move its stock effect to the new values.

    Mirror image of :func:`update_purchase`: the old quantity is given back
    to the old item and the new quantity is taken from the new item.
    """
    previous = get_sale(context, transaction_id)
    item = get_stock_item(context, command.item_id)
    draft = build_sale_transaction(command, item=item, timestamp=previous.timestamp)
    return _replace_transaction(context, previous, draft)


def delete_purchase(context: RuntimeContext, transaction_id: str) -> PurchaseRow:
    """Remove a purchase and take its quantity back off the item."""
    purchase = get_purchase(context, transaction_id)
    return _remove_transaction(context, purchase)


def delete_sale(context: RuntimeContext, transaction_id: str) -> SaleRow:
    """Remove a sale and give its quantity back to the item."""
    sale = get_sale(context, transaction_id)
    return _remove_transaction(context, sale)


def _replace_transaction(context: RuntimeContext, previous: RowT, draft: RowT) -> RowT:
    adjusted = _plan_adjustments(context, revert=previous, apply=draft)

    updated = cast(RowT, context.ledger.replace(previous.transaction_id, draft))
    _commit_adjustments(context, adjusted)
    log.info(
        "Updated %s '%s': item '%s' -> '%s', quantity %s -> %s",
        updated.transaction_type.value,
        updated.transaction_id,
        previous.item_id,
        updated.item_id,
        previous.quantity,
        updated.quantity,
    )
    return updated


def _remove_transaction(context: RuntimeContext, transaction: RowT) -> RowT:
    adjusted = _plan_adjustments(context, revert=transaction)

    removed = cast(RowT, context.ledger.remove(transaction.transaction_id))
    _commit_adjustments(context, adjusted)
    log.info(
        "Deleted %s '%s' for item '%s' (quantity=%s)",
        removed.transaction_type.value,
        removed.transaction_id,
        removed.item_id,
        removed.quantity,
    )
    return removed


def _plan_adjustments(
    context: RuntimeContext,
    *,
    revert: Optional[TransactionRow] = None,
    apply: Optional[TransactionRow] = None,
) -> Dict[str, StockItem]:
    """Compute the adjusted items for a write without touching the catalog.

    Adjustments are chained through a pending mapping, so when ``revert`` and
    ``apply`` target the same item the result carries the net change once.
    Items missing from the catalog are skipped and the ledger write proceeds.
    """
    pending: Dict[str, StockItem] = {}
    steps: List[Tuple[Callable[[StockItem, TransactionRow], StockItem], TransactionRow]] = []
    if revert is not None:
        steps.append((revert_transaction, revert))
    if apply is not None:
        steps.append((apply_transaction, apply))

    for adjust, transaction in steps:
        current = pending.get(transaction.item_id) or context.catalog.get(transaction.item_id)
        if current is None:
            log.warning(
                "Skipping stock adjustment for %s '%s': item '%s' is no longer in the catalog",
                transaction.transaction_type.value,
                transaction.transaction_id,
                transaction.item_id,
            )
            continue
        try:
            pending[transaction.item_id] = adjust(current, transaction)
        except DecimalException as exc:
            log.error("Stock adjustment for item '%s' is out of range", transaction.item_id)
            raise InvalidInputError(f"Quantity out of range for item '{transaction.item_id}'") from exc
    return pending


def _commit_adjustments(context: RuntimeContext, adjusted: Dict[str, StockItem]) -> None:
    context.catalog.update(adjusted)


def available_for_sale(context: RuntimeContext, item_id: str, *, editing: Optional[SaleRow] = None) -> Decimal:
    """Return the quantity a sale of ``item_id`` may take right now.

    When a sale is being edited and still targets the same item, its current
    quantity is added back, since applying the edit first returns it to stock.

    Raises:
        ItemNotFoundError: If ``item_id`` is not in the catalog.
    """
    available = get_stock_item(context, item_id).quantity
    if editing is not None and editing.item_id == item_id:
        available += editing.quantity
    return available


def calculate_inventory(context: RuntimeContext) -> Dict[str, Decimal]:
    """Re-derive every item's quantity from its opening quantity and the ledger.

    Transactions whose item has left the catalog are ignored.
    """
    inventory: Dict[str, Decimal] = {item_id: item.opening_quantity for item_id, item in context.catalog.items()}
    for transaction in context.ledger:
        if transaction.item_id not in inventory:
            continue
        inventory[transaction.item_id] += transaction.stock_delta
    log.debug("Calculated inventory balances for %d items", len(inventory))
    return inventory


def find_reconciliation_drift(context: RuntimeContext) -> Dict[str, Tuple[Decimal, Decimal]]:
    """Return ``{item_id: (cached, derived)}`` for items whose quantities disagree."""
    derived = calculate_inventory(context)
    drift = {
        item_id: (item.quantity, derived[item_id])
        for item_id, item in context.catalog.items()
        if item.quantity != derived[item_id]
    }
    if drift:
        log.error("Stock quantities drifted from the ledger for items: %s", ", ".join(sorted(drift)))
    return drift


def build_purchase_transaction(command: PurchaseCommand, *, item: StockItem, timestamp: datetime) -> PurchaseRow:
    """Validate a :class:`PurchaseCommand` and materialize an unsaved row.

    The returned row has an empty ``transaction_id``; the ledger assigns one
    on append.

    Raises:
        InvalidInputError: If quantity is not positive, price is negative or
            the supplier name is blank.
    """
    quantity = require_positive_quantity(command.quantity)
    price = require_nonnegative_money(command.price_per_unit)
    supplier = (command.supplier_name or "").strip()
    if not supplier:
        log.error("Supplier name validation failed for item '%s'", command.item_id)
        raise InvalidInputError("Supplier name is required")
    return PurchaseRow(
        transaction_id="",
        item_id=item.item_id,
        item_name=command.item_name or item.display_name,
        quantity=quantity,
        price_per_unit=price,
        total_amount=line_total(quantity, price),
        timestamp=timestamp,
        supplier_name=supplier,
    )


def build_sale_transaction(command: SaleCommand, *, item: StockItem, timestamp: datetime) -> SaleRow:
    """Validate a :class:`SaleCommand` and materialize an unsaved row.

    A blank customer name is stored as ``None`` (walk-in customer).
    """
    quantity = require_positive_quantity(command.quantity)
    price = require_nonnegative_money(command.price_per_unit)
    customer = (command.customer_name or "").strip() or None
    return SaleRow(
        transaction_id="",
        item_id=item.item_id,
        item_name=command.item_name or item.display_name,
        quantity=quantity,
        price_per_unit=price,
        total_amount=line_total(quantity, price),
        timestamp=timestamp,
        customer_name=customer,
    )


def coerce_decimal(value: Any) -> Decimal:
    """Convert ``value`` to a finite :class:`Decimal`.

    Floats go through ``str`` so that ``0.1`` becomes ``Decimal("0.1")``.

    Raises:
        InvalidInputError: If the value is missing, not numeric, NaN or
            infinite.
    """
    if isinstance(value, bool) or value is None:
        raise InvalidInputError(f"Not a number: {value!r}")
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise InvalidInputError(f"Not a number: {value!r}") from exc
    if not number.is_finite():
        raise InvalidInputError(f"Not a finite number: {value!r}")
    return number


def line_total(quantity: Decimal, price: Decimal) -> Decimal:
    """Return ``quantity * price``.

    Raises:
        InvalidInputError: If the product does not fit the decimal context.
    """
    try:
        return quantity * price
    except DecimalException as exc:
        log.error("Line total out of range: %s x %s", quantity, price)
        raise InvalidInputError("Quantity or price is out of range") from exc


def require_positive_quantity(quantity: Any) -> Decimal:
    """Validate that a quantity is strictly positive and return it as Decimal.

    Raises:
        InvalidInputError: If ``quantity`` is zero, negative or not numeric.
    """
    number = coerce_decimal(quantity)
    if number <= ZERO:
        log.error("Quantity validation failed: %s", quantity)
        raise InvalidInputError("Quantity must be greater than zero")
    return number


def require_nonnegative_quantity(quantity: Any) -> Decimal:
    number = coerce_decimal(quantity)
    if number < ZERO:
        log.error("Quantity validation failed: %s", quantity)
        raise InvalidInputError("Quantity must be zero or positive")
    return number


def require_nonnegative_money(amount: Any) -> Decimal:
    """Validate that a price is nonnegative and return it as Decimal.

    Raises:
        InvalidInputError: If ``amount`` is negative or not numeric.
    """
    number = coerce_decimal(amount)
    if number < ZERO:
        log.error("Monetary value validation failed: %s", amount)
        raise InvalidInputError("Amount must be zero or positive")
    return number
