"""Mirror local item and movement state into the remote spreadsheet.

Two kinds of sheet are maintained:

``Master_Items``
    One denormalised row per item, keyed by item code in column A. Rows are
    located by a linear scan of column A (the header row is skipped). Inserts
    always append, updates overwrite the 13 columns of the first matching row
    in place and deletes remove that row with a ``deleteDimension`` request.
    Updates and deletes of an unknown code raise :class:`NotFoundError` and do
    not write anything.

``{code}_Stock``
    Append-only movement history for one item. The sheet is provisioned on
    demand before every append and rows are never updated or deleted.

The module level functions raise the typed errors of :mod:`core.errors`.
:class:`SheetsSync` wraps them so that every remote call returns a
:class:`SyncResult` instead of raising.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from core import sheets_schema
from core.errors import NotConfiguredError, NotFoundError, SheetsSyncError
from core.models import Item, StockMovement
from core.sheets_client import (
    SheetProperties,
    SheetsGateway,
    a1_column_range,
    a1_row_range,
    a1_table_range,
)
from core.sheets_schema import ITEM_SHEET_HEADERS, MASTER_HEADERS, MASTER_SHEET_TITLE

logger = logging.getLogger(__name__)

ACTIVE_STATUS = "Active"
MASTER_COLUMNS = len(MASTER_HEADERS)
HISTORY_COLUMNS = len(ITEM_SHEET_HEADERS)


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one remote synchronisation attempt."""

    success: bool
    message: str
    error: Optional[SheetsSyncError] = None
    data: Optional[Any] = None

    @classmethod
    def ok(cls, message: str, data: Optional[Any] = None) -> "SyncResult":
        return cls(True, message, None, data)

    @classmethod
    def failed(cls, error: SheetsSyncError, message: Optional[str] = None) -> "SyncResult":
        return cls(False, message or str(error), error)


# ---------------------------------------------------------------------------
# Row formatting
# ---------------------------------------------------------------------------
def format_profit_margin(price: float, cost_price: float) -> str:
    if not price or not cost_price:
        return "0%"
    return f"{(price - cost_price) / price * 100:.2f}%"


def master_row_values(item: Item) -> List[Any]:
    """Return the 13 master sheet cells for ``item``."""

    return [
        item.code,
        item.name,
        item.category,
        item.supplier,
        item.price,
        item.cost_price,
        item.low_stock_threshold,
        item.total_stock,
        item.sold_quantity,
        item.remaining_stock,
        format_profit_margin(item.price, item.cost_price),
        item.created_at.astimezone().strftime("%Y-%m-%d"),
        ACTIVE_STATUS,
    ]


def history_row_values(movement: StockMovement, item: Item) -> List[Any]:
    """Return the 8 history cells for ``movement``.

    Stock columns carry the item's aggregates after the movement was applied.
    Dates are written in local time, like the reports.
    """

    return [
        movement.date.astimezone().strftime("%Y-%m-%d %H:%M:%S"),
        movement.type.label,
        movement.quantity,
        movement.sold_quantity,
        item.remaining_stock,
        movement.agent,
        movement.notes,
        item.total_stock,
    ]


# ---------------------------------------------------------------------------
# Master sheet
# ---------------------------------------------------------------------------
def _require_master_sheet(gateway: SheetsGateway) -> SheetProperties:
    sheet = gateway.find_sheet(MASTER_SHEET_TITLE)
    if sheet is None:
        raise NotFoundError(f"{MASTER_SHEET_TITLE} sheet not found")
    return sheet


def find_master_row(gateway: SheetsGateway, code: str) -> Optional[int]:
    """Return the 1-indexed sheet row holding ``code`` or ``None``."""

    values = gateway.get_values(a1_column_range(MASTER_SHEET_TITLE, "A"))
    for index in range(1, len(values)):
        row = values[index]
        if row and str(row[0]) == code:
            return index + 1
    return None


def read_master_row(gateway: SheetsGateway, code: str) -> Optional[List[Any]]:
    row_index = find_master_row(gateway, code)
    if row_index is None:
        return None
    values = gateway.get_values(a1_row_range(MASTER_SHEET_TITLE, row_index, columns=MASTER_COLUMNS))
    return list(values[0]) if values else []


def append_master_row(gateway: SheetsGateway, item: Item) -> None:
    """Append ``item`` to the master sheet, provisioning the sheet if needed.

    There is no existence check: appending the same item twice produces two
    rows with the same code.
    """

    sheets_schema.ensure_master_sheet(gateway)
    gateway.append_values(
        a1_table_range(MASTER_SHEET_TITLE, columns=MASTER_COLUMNS),
        [master_row_values(item)],
    )
    logger.info("Appended %s to %s", item.code, MASTER_SHEET_TITLE)


def insert_master_row(gateway: SheetsGateway, item: Item) -> None:
    """Append ``item`` to the master sheet and provision its history sheet."""

    append_master_row(gateway, item)
    sheets_schema.ensure_item_sheet(gateway, item.code)


def update_master_row(gateway: SheetsGateway, item: Item) -> int:
    """Overwrite the master row of ``item`` in place and return its row number."""

    _require_master_sheet(gateway)
    row_index = find_master_row(gateway, item.code)
    if row_index is None:
        raise NotFoundError(f"Item {item.code} not found in master sheet")
    gateway.update_values(
        a1_row_range(MASTER_SHEET_TITLE, row_index, columns=MASTER_COLUMNS),
        [master_row_values(item)],
    )
    logger.info("Updated %s in %s row %d", item.code, MASTER_SHEET_TITLE, row_index)
    return row_index


def upsert_master_row(gateway: SheetsGateway, item: Item, *, create: bool) -> Optional[int]:
    """Insert a new item or update an existing one.

    ``create`` selects the path explicitly; an update never falls back to an
    insert.
    """

    if create:
        insert_master_row(gateway, item)
        return None
    return update_master_row(gateway, item)


def delete_master_row(gateway: SheetsGateway, code: str) -> int:
    """Remove the first master row keyed by ``code`` and return its row number."""

    sheet = _require_master_sheet(gateway)
    row_index = find_master_row(gateway, code)
    if row_index is None:
        raise NotFoundError(f"Item {code} not found in master sheet")
    start = row_index - 1
    gateway.batch_update(
        [
            {
                "deleteDimension": {
                    "range": {
                        "sheetId": sheet.sheet_id,
                        "dimension": "ROWS",
                        "startIndex": start,
                        "endIndex": start + 1,
                    }
                }
            }
        ]
    )
    logger.info("Deleted %s from %s row %d", code, MASTER_SHEET_TITLE, row_index)
    return row_index


# ---------------------------------------------------------------------------
# History sheets
# ---------------------------------------------------------------------------
def append_movement(gateway: SheetsGateway, code: str, movement: StockMovement, item: Item) -> None:
    sheets_schema.ensure_item_sheet(gateway, code)
    title = sheets_schema.item_sheet_title(code)
    gateway.append_values(
        a1_table_range(title, columns=HISTORY_COLUMNS),
        [history_row_values(movement, item)],
    )
    logger.info("Appended %s movement %s to %s", movement.type.value, movement.id, title)


# ---------------------------------------------------------------------------
# Result wrapping facade
# ---------------------------------------------------------------------------
class SheetsSync:
    """Run remote operations and report each one as a :class:`SyncResult`.

    Nothing in the error taxonomy escapes this class. When the credential
    bundle is incomplete every call returns a failed result before any network
    traffic happens.
    """

    def __init__(self, gateway: SheetsGateway) -> None:
        self._gateway = gateway

    @property
    def gateway(self) -> SheetsGateway:
        return self._gateway

    def is_configured(self) -> bool:
        return self._gateway.is_configured()

    def _run(self, description: str, action: Callable[[], SyncResult]) -> SyncResult:
        if not self._gateway.is_configured():
            return SyncResult.failed(NotConfiguredError())
        try:
            return action()
        except SheetsSyncError as exc:
            logger.warning("%s failed: %s", description, exc)
            return SyncResult.failed(exc, f"{description} failed: {exc}")

    def test_connection(self) -> SyncResult:
        def action() -> SyncResult:
            metadata = self._gateway.get_metadata()
            title = (metadata.get("properties") or {}).get("title", "")
            return SyncResult.ok(f"Connected to spreadsheet: {title}", metadata)

        return self._run("Connection test", action)

    def ensure_master_sheet(self) -> SyncResult:
        def action() -> SyncResult:
            created = sheets_schema.ensure_master_sheet(self._gateway)
            verb = "created" if created else "already present"
            return SyncResult.ok(f"{MASTER_SHEET_TITLE} sheet {verb}")

        return self._run("Master sheet setup", action)

    def ensure_item_sheet(self, code: str) -> SyncResult:
        def action() -> SyncResult:
            created = sheets_schema.ensure_item_sheet(self._gateway, code)
            title = sheets_schema.item_sheet_title(code)
            return SyncResult.ok(f"Item sheet {title} {'created' if created else 'already present'}")

        return self._run("Item sheet setup", action)

    def append_master_row(self, item: Item) -> SyncResult:
        def action() -> SyncResult:
            append_master_row(self._gateway, item)
            return SyncResult.ok(f"Item {item.code} appended to master sheet")

        return self._run(f"Adding {item.code} to master sheet", action)

    def insert_master_row(self, item: Item) -> SyncResult:
        def action() -> SyncResult:
            insert_master_row(self._gateway, item)
            return SyncResult.ok(f"Item {item.code} added to master sheet")

        return self._run(f"Adding {item.code} to master sheet", action)

    def update_master_row(self, item: Item) -> SyncResult:
        def action() -> SyncResult:
            row = update_master_row(self._gateway, item)
            return SyncResult.ok(f"Item {item.code} updated in master sheet", row)

        return self._run(f"Updating {item.code} in master sheet", action)

    def upsert_master_row(self, item: Item, *, create: bool) -> SyncResult:
        if create:
            return self.insert_master_row(item)
        return self.update_master_row(item)

    def delete_master_row(self, code: str) -> SyncResult:
        def action() -> SyncResult:
            row = delete_master_row(self._gateway, code)
            return SyncResult.ok(f"Item {code} deleted from master sheet", row)

        return self._run(f"Deleting {code} from master sheet", action)

    def append_movement(self, code: str, movement: StockMovement, item: Item) -> SyncResult:
        def action() -> SyncResult:
            append_movement(self._gateway, code, movement, item)
            title = sheets_schema.item_sheet_title(code)
            return SyncResult.ok(f"Stock entry added to {title}")

        return self._run(f"Adding stock entry for {code}", action)


__all__ = [
    "ACTIVE_STATUS",
    "SheetsSync",
    "SyncResult",
    "append_master_row",
    "append_movement",
    "delete_master_row",
    "find_master_row",
    "format_profit_margin",
    "history_row_values",
    "insert_master_row",
    "master_row_values",
    "read_master_row",
    "update_master_row",
    "upsert_master_row",
]
