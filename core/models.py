"""Domain records for items and stock movements.

Both records serialise to the camelCase JSON shape stored in the local cache
(``inventory_items`` / ``inventory_stocks``) so that existing cache contents
remain readable.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from settings import DEFAULT_AGENT, DEFAULT_LOW_STOCK_THRESHOLD, MAX_NOTES_LENGTH


class ValidationError(ValueError):
    """Raised when an item or movement violates its field rules."""


class MovementType(str, Enum):
    RESTOCK = "restock"
    SALE = "sale"
    ADJUSTMENT = "adjustment"

    @property
    def label(self) -> str:
        return self.value.capitalize()


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def generate_id() -> str:
    return uuid.uuid4().hex


def parse_timestamp(value: Any) -> datetime:
    """Return an aware UTC datetime for ISO strings or datetimes."""

    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value or "").strip()
        if not text:
            raise ValidationError("Timestamp value is empty")
        try:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValidationError(f"Cannot parse timestamp {value!r}") from exc
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return parse_timestamp(value).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _to_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ValidationError(f"{name} must be an integer, got {value!r}")


def _to_float(value: Any, name: str) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a number")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{name} must be a number, got {value!r}") from exc


def _require_text(value: Any, name: str) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValidationError(f"{name} is required")
    return text


@dataclass
class Item:
    """A stocked product.

    The three aggregate fields are owned by :class:`core.ledger.LedgerEngine`
    and are only ever rewritten from the item's movements.
    """

    id: str
    code: str
    name: str
    category: str
    supplier: str
    price: float
    cost_price: float
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD
    total_stock: int = 0
    sold_quantity: int = 0
    remaining_stock: int = 0
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        self.code = _require_text(self.code, "Item code")
        self.name = _require_text(self.name, "Item name")
        self.category = _require_text(self.category, "Category")
        self.supplier = _require_text(self.supplier, "Supplier")
        self.price = _to_float(self.price, "Selling price")
        self.cost_price = _to_float(self.cost_price, "Cost price")
        self.low_stock_threshold = _to_int(self.low_stock_threshold, "Low stock threshold")
        self.created_at = parse_timestamp(self.created_at)
        if self.price <= 0:
            raise ValidationError("Valid selling price is required")
        if self.cost_price <= 0:
            raise ValidationError("Valid cost price is required")
        if self.cost_price >= self.price:
            raise ValidationError("Cost price should be less than selling price")
        if self.low_stock_threshold < 0:
            raise ValidationError("Valid low stock threshold is required")

    @property
    def profit_margin(self) -> float:
        """Percentage margin on the selling price."""

        if not self.price or not self.cost_price:
            return 0.0
        return (self.price - self.cost_price) / self.price * 100

    def with_changes(self, **changes: Any) -> "Item":
        return replace(self, **changes)

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "category": self.category,
            "supplier": self.supplier,
            "price": self.price,
            "costPrice": self.cost_price,
            "lowStockThreshold": self.low_stock_threshold,
            "totalStock": self.total_stock,
            "soldQuantity": self.sold_quantity,
            "remainingStock": self.remaining_stock,
            "createdAt": format_timestamp(self.created_at),
        }

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "Item":
        return cls(
            id=str(data["id"]),
            code=data.get("code", ""),
            name=data.get("name", ""),
            category=data.get("category", ""),
            supplier=data.get("supplier", ""),
            price=data.get("price"),
            cost_price=data.get("costPrice"),
            low_stock_threshold=data.get("lowStockThreshold", DEFAULT_LOW_STOCK_THRESHOLD),
            total_stock=int(data.get("totalStock") or 0),
            sold_quantity=int(data.get("soldQuantity") or 0),
            remaining_stock=int(data.get("remainingStock") or 0),
            created_at=data.get("createdAt") or utc_now(),
        )


@dataclass(frozen=True)
class StockMovement:
    """Immutable event changing an item's quantities.

    ``quantity`` is used by restocks and adjustments, ``sold_quantity`` only by
    sales; each type validates its own fields on construction.
    """

    id: str
    item_id: str
    type: MovementType
    quantity: int = 0
    sold_quantity: int = 0
    date: datetime = field(default_factory=utc_now)
    agent: str = DEFAULT_AGENT
    notes: str = ""

    def __post_init__(self) -> None:
        try:
            movement_type = MovementType(self.type)
        except ValueError as exc:
            raise ValidationError(f"Unknown movement type {self.type!r}") from exc
        quantity = _to_int(self.quantity, "Quantity")
        sold_quantity = _to_int(self.sold_quantity, "Sold quantity")
        agent = str(self.agent or "").strip() or DEFAULT_AGENT
        notes = str(self.notes or "").strip()

        if not self.item_id:
            raise ValidationError("Please select an item")
        if len(notes) > MAX_NOTES_LENGTH:
            raise ValidationError(f"Notes must be at most {MAX_NOTES_LENGTH} characters")
        if movement_type is MovementType.RESTOCK:
            if quantity <= 0:
                raise ValidationError("Valid quantity is required")
            if sold_quantity:
                raise ValidationError("Restocks cannot carry a sold quantity")
        elif movement_type is MovementType.SALE:
            if sold_quantity <= 0:
                raise ValidationError("Valid sold quantity is required for sales")
            if quantity:
                raise ValidationError("Sales cannot carry a received quantity")
        else:
            if quantity == 0:
                raise ValidationError("Adjustment quantity must be non-zero")
            if sold_quantity:
                raise ValidationError("Adjustments cannot carry a sold quantity")

        object.__setattr__(self, "type", movement_type)
        object.__setattr__(self, "quantity", quantity)
        object.__setattr__(self, "sold_quantity", sold_quantity)
        object.__setattr__(self, "date", parse_timestamp(self.date))
        object.__setattr__(self, "agent", agent)
        object.__setattr__(self, "notes", notes)

    @classmethod
    def restock(cls, item_id: str, quantity: int, **extra: Any) -> "StockMovement":
        return cls(id=extra.pop("id", None) or generate_id(), item_id=item_id,
                   type=MovementType.RESTOCK, quantity=quantity, **extra)

    @classmethod
    def sale(cls, item_id: str, sold_quantity: int, **extra: Any) -> "StockMovement":
        return cls(id=extra.pop("id", None) or generate_id(), item_id=item_id,
                   type=MovementType.SALE, sold_quantity=sold_quantity, **extra)

    @classmethod
    def adjustment(cls, item_id: str, quantity: int, **extra: Any) -> "StockMovement":
        return cls(id=extra.pop("id", None) or generate_id(), item_id=item_id,
                   type=MovementType.ADJUSTMENT, quantity=quantity, **extra)

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "itemId": self.item_id,
            "type": self.type.value,
            "quantity": self.quantity,
            "soldQuantity": self.sold_quantity,
            "date": format_timestamp(self.date),
            "agent": self.agent,
            "notes": self.notes,
        }

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "StockMovement":
        return cls(
            id=str(data["id"]),
            item_id=str(data.get("itemId", "")),
            type=data.get("type", MovementType.RESTOCK.value),
            quantity=data.get("quantity") or 0,
            sold_quantity=data.get("soldQuantity") or 0,
            date=data.get("date") or utc_now(),
            agent=data.get("agent") or DEFAULT_AGENT,
            notes=data.get("notes") or "",
        )


def build_movement(
    item_id: str,
    movement_type: str,
    amount: int,
    *,
    date: Optional[datetime] = None,
    agent: str = DEFAULT_AGENT,
    notes: str = "",
) -> StockMovement:
    """Create the movement variant for ``movement_type`` from a single amount.

    ``amount`` is the received quantity for restocks and adjustments and the
    sold quantity for sales.
    """

    extra: Dict[str, Any] = {"agent": agent, "notes": notes}
    if date is not None:
        extra["date"] = date
    try:
        kind = MovementType(movement_type)
    except ValueError as exc:
        raise ValidationError(f"Unknown movement type {movement_type!r}") from exc
    if kind is MovementType.SALE:
        return StockMovement.sale(item_id, amount, **extra)
    if kind is MovementType.ADJUSTMENT:
        return StockMovement.adjustment(item_id, amount, **extra)
    return StockMovement.restock(item_id, amount, **extra)


__all__ = [
    "Item",
    "MovementType",
    "StockMovement",
    "ValidationError",
    "build_movement",
    "format_timestamp",
    "generate_id",
    "parse_timestamp",
    "utc_now",
]
