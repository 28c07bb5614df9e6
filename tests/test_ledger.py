from __future__ import annotations

import itertools
import logging

import pytest

from core.ledger import (
    DuplicateItemCodeError,
    ItemNotFoundError,
    LedgerEngine,
    StockAggregates,
    recompute_aggregates,
)
from core.models import StockMovement, ValidationError
from db import ItemRepository


def _create_item(ledger: LedgerEngine, code: str = "ITM-001", **overrides):
    fields = {
        "code": code,
        "name": "Widget",
        "category": "Hardware",
        "supplier": "Acme",
        "price": 100,
        "cost_price": 40,
    }
    fields.update(overrides)
    return ledger.create_item(**fields)


def test_restock_sale_and_adjustment_update_aggregates(ledger: LedgerEngine) -> None:
    item = _create_item(ledger)

    item, _ = ledger.record_movement(StockMovement.restock(item.id, 50))
    assert (item.total_stock, item.sold_quantity, item.remaining_stock) == (50, 0, 50)

    item, _ = ledger.record_movement(StockMovement.sale(item.id, 20))
    assert (item.total_stock, item.sold_quantity, item.remaining_stock) == (50, 20, 30)

    item, _ = ledger.record_movement(StockMovement.adjustment(item.id, -5))
    assert (item.total_stock, item.sold_quantity, item.remaining_stock) == (45, 20, 25)

    stored = ledger.get_item(item.id)
    assert stored.remaining_stock == stored.total_stock - stored.sold_quantity == 25


def test_delete_item_cascades_movements(ledger: LedgerEngine) -> None:
    item = _create_item(ledger)
    ledger.record_movement(StockMovement.restock(item.id, 50))
    ledger.record_movement(StockMovement.sale(item.id, 20))
    ledger.record_movement(StockMovement.adjustment(item.id, -5))

    deleted, removed = ledger.delete_item(item.id)

    assert deleted.code == "ITM-001"
    assert len(removed) == 3
    assert ledger.list_movements(item.id) == []
    assert ledger.aggregates_for(item.id) == StockAggregates(0, 0, 0)
    with pytest.raises(ItemNotFoundError):
        ledger.get_item(item.id)


def test_oversold_sale_goes_negative_and_warns(ledger: LedgerEngine, caplog) -> None:
    item = _create_item(ledger)
    ledger.record_movement(StockMovement.restock(item.id, 5))

    with caplog.at_level(logging.WARNING, logger="core.ledger"):
        item, _ = ledger.record_movement(StockMovement.sale(item.id, 8))

    assert item.remaining_stock == -3
    assert item.total_stock - item.sold_quantity == item.remaining_stock
    assert "exceeds remaining stock" in caplog.text


def test_recompute_is_order_independent_and_ignores_other_items() -> None:
    movements = [
        StockMovement.restock("a", 10),
        StockMovement.sale("a", 4),
        StockMovement.adjustment("a", 3),
        StockMovement.adjustment("a", -2),
        StockMovement.restock("b", 99),
    ]

    expected = recompute_aggregates("a", movements)
    assert expected == StockAggregates(total_stock=11, sold_quantity=4, remaining_stock=7)
    for permutation in itertools.permutations(movements):
        assert recompute_aggregates("a", permutation) == expected
    assert recompute_aggregates("a", movements) == expected
    assert recompute_aggregates("unknown", movements) == StockAggregates()


def test_generated_codes_and_duplicates(ledger: LedgerEngine) -> None:
    generated = ledger.create_item(
        name="Gadget", category="Tools", supplier="Acme", price=10, cost_price=5
    )
    assert generated.code.startswith("ITM-")

    _create_item(ledger, code="ITM-002")
    with pytest.raises(DuplicateItemCodeError):
        _create_item(ledger, code="ITM-002")


def test_update_item_rejects_aggregate_and_identity_fields(ledger: LedgerEngine) -> None:
    item = _create_item(ledger)

    for field in ("total_stock", "sold_quantity", "remaining_stock", "id", "code"):
        with pytest.raises(ValidationError):
            ledger.update_item(item.id, **{field: 1})

    updated = ledger.update_item(item.id, name="Widget Pro", price=120)
    assert updated.name == "Widget Pro"
    assert updated.price == 120.0
    assert ledger.get_item(item.id).name == "Widget Pro"


def test_update_item_keeps_price_rules(ledger: LedgerEngine) -> None:
    item = _create_item(ledger)

    with pytest.raises(ValidationError):
        ledger.update_item(item.id, cost_price=150)

    assert ledger.get_item(item.id).cost_price == 40.0


def test_reconcile_repairs_tampered_aggregates(ledger: LedgerEngine, cache) -> None:
    item = _create_item(ledger)
    ledger.record_movement(StockMovement.restock(item.id, 12))

    repository = ItemRepository(cache)
    repository.update(repository.get(item.id).with_changes(total_stock=999, remaining_stock=999))

    changed = ledger.reconcile()

    assert [entry.id for entry in changed] == [item.id]
    assert ledger.get_item(item.id).total_stock == 12
    assert ledger.reconcile() == []


def test_record_movement_for_unknown_item(ledger: LedgerEngine) -> None:
    with pytest.raises(ItemNotFoundError):
        ledger.record_movement(StockMovement.restock("missing", 1))
    assert ledger.list_movements() == []
