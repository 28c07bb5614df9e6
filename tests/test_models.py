from __future__ import annotations

from datetime import datetime, timezone

import pytest

from core.models import Item, MovementType, StockMovement, ValidationError, build_movement


def _item(**overrides) -> Item:
    fields = dict(id="1", code="ITM-1", name="Widget", category="Hardware", supplier="Acme", price=100, cost_price=40)
    fields.update(overrides)
    return Item(**fields)


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"name": " "}, "Item name is required"),
        ({"price": 0}, "Valid selling price is required"),
        ({"cost_price": -1}, "Valid cost price is required"),
        ({"cost_price": 100}, "Cost price should be less than selling price"),
        ({"low_stock_threshold": -1}, "Valid low stock threshold is required"),
    ],
)
def test_item_validation(overrides, message) -> None:
    with pytest.raises(ValidationError) as excinfo:
        _item(**overrides)
    assert message in str(excinfo.value)


def test_item_json_shape_and_margin() -> None:
    item = _item(created_at="2024-01-05T10:00:00Z", total_stock=5, remaining_stock=5)

    data = item.to_json()

    assert data["createdAt"] == "2024-01-05T10:00:00Z"
    assert data["totalStock"] == 5
    assert Item.from_json(data) == item
    assert item.profit_margin == pytest.approx(60.0)


def test_movement_variants_validate_their_own_fields() -> None:
    with pytest.raises(ValidationError):
        StockMovement.restock("i", 0)
    with pytest.raises(ValidationError):
        StockMovement.sale("i", 0)
    with pytest.raises(ValidationError):
        StockMovement.adjustment("i", 0)
    with pytest.raises(ValidationError):
        StockMovement(id="m", item_id="i", type="sale", quantity=3, sold_quantity=1)
    with pytest.raises(ValidationError):
        StockMovement(id="m", item_id="i", type="transfer", quantity=3)
    with pytest.raises(ValidationError):
        StockMovement.restock("i", 1, notes="x" * 501)

    adjustment = StockMovement.adjustment("i", -4, agent="  ")
    assert adjustment.agent == "System"
    assert adjustment.type is MovementType.ADJUSTMENT


def test_movements_are_immutable_and_serialise() -> None:
    movement = StockMovement.sale("i", 2, date=datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc), notes="promo")

    with pytest.raises(AttributeError):
        movement.sold_quantity = 3  # type: ignore[misc]
    data = movement.to_json()
    assert data["type"] == "sale"
    assert data["date"] == "2024-05-01T08:00:00Z"
    assert StockMovement.from_json(data) == movement


def test_build_movement_routes_amount_by_type() -> None:
    assert build_movement("i", "restock", 5).quantity == 5
    assert build_movement("i", "sale", 5).sold_quantity == 5
    assert build_movement("i", "adjustment", -5).quantity == -5
    with pytest.raises(ValidationError):
        build_movement("i", "gift", 1)
