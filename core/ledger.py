"""Local ledger engine.

The ledger is the authority for item state. Item aggregates are always derived
from the complete movement history of the item through
:func:`recompute_aggregates`; :meth:`LedgerEngine._write_aggregates` is the
only place that writes them back.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Tuple

from core.models import Item, MovementType, StockMovement, ValidationError, generate_id, utc_now
from db import ItemRepository, MovementRepository
from settings import DEFAULT_LOW_STOCK_THRESHOLD

logger = logging.getLogger(__name__)

EDITABLE_ITEM_FIELDS = frozenset(
    {"name", "category", "supplier", "price", "cost_price", "low_stock_threshold"}
)


class LedgerError(Exception):
    """Base error for local ledger operations."""


class ItemNotFoundError(LedgerError):
    """Raised when an operation references an unknown item id."""


class DuplicateItemCodeError(LedgerError):
    """Raised when a new item reuses an existing code."""


@dataclass(frozen=True)
class StockAggregates:
    total_stock: int = 0
    sold_quantity: int = 0
    remaining_stock: int = 0


def recompute_aggregates(item_id: str, movements: Iterable[StockMovement]) -> StockAggregates:
    """Fold the movements of ``item_id`` into its aggregate stock fields.

    Movements for other items are ignored, so the full movement list may be
    passed. Restocks and adjustments add ``quantity`` to the total received,
    sales add ``sold_quantity`` to the total sold. ``remaining_stock`` is not
    clamped and goes negative when sales exceed recorded stock.
    """

    total = 0
    sold = 0
    for movement in movements:
        if movement.item_id != item_id:
            continue
        if movement.type is MovementType.SALE:
            sold += movement.sold_quantity
        else:
            total += movement.quantity
    return StockAggregates(total_stock=total, sold_quantity=sold, remaining_stock=total - sold)


def generate_item_code() -> str:
    return f"ITM-{int(time.time() * 1000)}"


class LedgerEngine:
    """Apply item and movement mutations to the local repositories."""

    def __init__(self, items: ItemRepository, movements: MovementRepository) -> None:
        self._items = items
        self._movements = movements

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def list_items(self) -> List[Item]:
        return self._items.list()

    def get_item(self, item_id: str) -> Item:
        item = self._items.get(item_id)
        if item is None:
            raise ItemNotFoundError(f"Item {item_id} not found")
        return item

    def find_item_by_code(self, code: str) -> Optional[Item]:
        return self._items.get_by_code(code)

    def list_movements(self, item_id: Optional[str] = None) -> List[StockMovement]:
        if item_id is None:
            return self._movements.list()
        return self._movements.list_for_item(item_id)

    def aggregates_for(self, item_id: str) -> StockAggregates:
        return recompute_aggregates(item_id, self._movements.list_for_item(item_id))

    # ------------------------------------------------------------------
    # Item mutations
    # ------------------------------------------------------------------
    def create_item(
        self,
        *,
        name: str,
        category: str,
        supplier: str,
        price: float,
        cost_price: float,
        low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
        code: Optional[str] = None,
    ) -> Item:
        code = (code or "").strip() or generate_item_code()
        if self._items.get_by_code(code) is not None:
            raise DuplicateItemCodeError(f"Item code {code} is already in use")
        item = Item(
            id=generate_id(),
            code=code,
            name=name,
            category=category,
            supplier=supplier,
            price=price,
            cost_price=cost_price,
            low_stock_threshold=low_stock_threshold,
            created_at=utc_now(),
        )
        self._items.create(item)
        logger.info("Created item %s (%s)", item.code, item.id)
        return item

    def update_item(self, item_id: str, **changes: Any) -> Item:
        """Edit the descriptive fields of an item.

        ``id``, ``code`` and the aggregate fields are not editable.
        """

        forbidden = set(changes) - EDITABLE_ITEM_FIELDS
        if forbidden:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(forbidden))}")
        current = self.get_item(item_id)
        updated = current.with_changes(**changes)
        self._items.update(updated)
        logger.info("Updated item %s", updated.code)
        return updated

    def delete_item(self, item_id: str) -> Tuple[Item, List[StockMovement]]:
        """Remove an item together with all of its movements."""

        item = self.get_item(item_id)
        removed = self._movements.delete_for_item(item_id)
        self._items.delete(item_id)
        logger.info("Deleted item %s and %d movement(s)", item.code, len(removed))
        return item, removed

    # ------------------------------------------------------------------
    # Movements
    # ------------------------------------------------------------------
    def record_movement(self, movement: StockMovement) -> Tuple[Item, StockMovement]:
        """Store ``movement`` and refresh the owning item's aggregates."""

        item = self.get_item(movement.item_id)
        if movement.type is MovementType.SALE and movement.sold_quantity > item.remaining_stock:
            logger.warning(
                "Sale of %d exceeds remaining stock %d for %s; recording anyway",
                movement.sold_quantity,
                item.remaining_stock,
                item.code,
            )
        self._movements.create(movement)
        updated = self._apply_aggregates(item)
        logger.info(
            "Recorded %s for %s: total=%d sold=%d remaining=%d",
            movement.type.value,
            updated.code,
            updated.total_stock,
            updated.sold_quantity,
            updated.remaining_stock,
        )
        return updated, movement

    def reconcile(self) -> List[Item]:
        """Recompute every item from its movements and return the changed ones."""

        movements = self._movements.list()
        changed: List[Item] = []
        for item in self._items.list():
            aggregates = recompute_aggregates(item.id, movements)
            if aggregates != _aggregates_of(item):
                changed.append(self._write_aggregates(item, aggregates))
        return changed

    def _apply_aggregates(self, item: Item) -> Item:
        return self._write_aggregates(item, self.aggregates_for(item.id))

    def _write_aggregates(self, item: Item, aggregates: StockAggregates) -> Item:
        updated = item.with_changes(
            total_stock=aggregates.total_stock,
            sold_quantity=aggregates.sold_quantity,
            remaining_stock=aggregates.remaining_stock,
        )
        self._items.update(updated)
        return updated


def _aggregates_of(item: Item) -> StockAggregates:
    return StockAggregates(item.total_stock, item.sold_quantity, item.remaining_stock)


__all__ = [
    "DuplicateItemCodeError",
    "EDITABLE_ITEM_FIELDS",
    "ItemNotFoundError",
    "LedgerEngine",
    "LedgerError",
    "StockAggregates",
    "generate_item_code",
    "recompute_aggregates",
]
