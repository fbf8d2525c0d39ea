"""In-memory ledger of purchase and sale transactions.

The store owns two ordered sequences, one per transaction kind, plus an index
keyed by ``transaction_id``. Insertion order only matters for "recent" listings;
reconciliation never depends on it. Callers outside :mod:`stock_ledger.core_logic`
should treat the mutators as private: the reconciler pairs each of them with the
matching stock adjustment.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Tuple

from . import log
from .constants import TransactionType


@dataclass(frozen=True)
class StockItem:
    """Catalog entry together with its cached on-hand quantity."""

    item_id: str
    name: str
    variety: str
    quantity: Decimal
    unit: str
    price_per_unit: Decimal
    reorder_level: Decimal
    opening_quantity: Decimal

    @property
    def display_name(self) -> str:
        return f"{self.name} ({self.variety})"


@dataclass(frozen=True)
class TransactionRow(ABC):
    """Fields shared by purchases and sales. Only the subclasses are instantiated."""

    transaction_id: str
    item_id: str
    item_name: str
    quantity: Decimal
    price_per_unit: Decimal
    total_amount: Decimal
    timestamp: datetime

    @property
    @abstractmethod
    def transaction_type(self) -> TransactionType:
        ...

    @property
    @abstractmethod
    def stock_delta(self) -> Decimal:
        """Signed change this transaction contributes to its item's quantity."""


@dataclass(frozen=True)
class PurchaseRow(TransactionRow):
    """Stock bought from a supplier."""

    supplier_name: str = ""

    @property
    def transaction_type(self) -> TransactionType:
        return TransactionType.PURCHASE

    @property
    def stock_delta(self) -> Decimal:
        return self.quantity


@dataclass(frozen=True)
class SaleRow(TransactionRow):
    """Stock sold to a customer; ``customer_name`` is ``None`` for walk-ins."""

    customer_name: Optional[str] = None

    @property
    def transaction_type(self) -> TransactionType:
        return TransactionType.SALE

    @property
    def stock_delta(self) -> Decimal:
        return -self.quantity


class LedgerStore:
    """Ordered purchase and sale sequences with id-based lookup."""

    def __init__(self) -> None:
        self._purchases: List[PurchaseRow] = []
        self._sales: List[SaleRow] = []
        self._by_id: Dict[str, TransactionRow] = {}
        self._issued_ids: set[str] = set()

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, transaction_id: object) -> bool:
        return transaction_id in self._by_id

    def __iter__(self) -> Iterator[TransactionRow]:
        yield from self._purchases
        yield from self._sales

    def purchases(self) -> Tuple[PurchaseRow, ...]:
        return tuple(self._purchases)

    def sales(self) -> Tuple[SaleRow, ...]:
        return tuple(self._sales)

    def next_id(self, record: TransactionRow) -> str:
        """Derive a collision-free identifier from the record timestamp.

        Identifiers look like ``{prefix}{YYYYMMDDHHMMSSffffff}``. Two records
        stamped within the same microsecond get a ``-N`` suffix, and ids that
        were issued once are never handed out again, even after removal.
        """

        base = f"{record.transaction_type.id_prefix}{record.timestamp.strftime('%Y%m%d%H%M%S%f')}"
        candidate = base
        counter = 1
        while candidate in self._issued_ids:
            candidate = f"{base}-{counter}"
            counter += 1
        return candidate

    def append(self, record: TransactionRow) -> TransactionRow:
        """Assign a fresh id to ``record``, store it and return the stored copy."""

        stored = replace(record, transaction_id=self.next_id(record))
        self._issued_ids.add(stored.transaction_id)
        self._sequence_for(stored).append(stored)
        self._by_id[stored.transaction_id] = stored
        log.debug("Appended %s '%s'", stored.transaction_type.value, stored.transaction_id)
        return stored

    def find(self, transaction_id: str) -> TransactionRow:
        try:
            return self._by_id[transaction_id]
        except KeyError:
            raise KeyError(f"Transaction not found: {transaction_id}") from None

    def replace(self, transaction_id: str, record: TransactionRow) -> TransactionRow:
        """Swap the fields of an existing entry, keeping its id, timestamp and position.

        Raises:
            KeyError: If ``transaction_id`` is not in the ledger.
            ValueError: If ``record`` is of a different kind than the stored entry.
        """

        current = self.find(transaction_id)
        if type(record) is not type(current):
            raise ValueError(
                f"Cannot replace {current.transaction_type.value} '{transaction_id}' "
                f"with a {record.transaction_type.value}"
            )

        stored = replace(record, transaction_id=current.transaction_id, timestamp=current.timestamp)
        sequence = self._sequence_for(current)
        sequence[sequence.index(current)] = stored
        self._by_id[transaction_id] = stored
        return stored

    def remove(self, transaction_id: str) -> TransactionRow:
        current = self.find(transaction_id)
        self._sequence_for(current).remove(current)
        del self._by_id[transaction_id]
        return current

    def _sequence_for(self, record: TransactionRow) -> list:
        if isinstance(record, PurchaseRow):
            return self._purchases
        if isinstance(record, SaleRow):
            return self._sales
        raise TypeError(f"Unsupported ledger record: {type(record).__name__}")
