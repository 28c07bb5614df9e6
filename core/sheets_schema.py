"""Provision the master and per-item history worksheets.

Each ``ensure_*`` call lists the spreadsheet's tabs, and only when no tab with
exactly the requested title exists does it add the sheet and write the fixed
header row. Calling it for an existing sheet is a no-op.
"""
from __future__ import annotations

import logging
from typing import Sequence, Tuple

from core.sheets_client import SheetsGateway, a1_headers_range

logger = logging.getLogger(__name__)

MASTER_SHEET_TITLE = "Master_Items"
ITEM_SHEET_SUFFIX = "_Stock"

MASTER_HEADERS: Tuple[str, ...] = (
    "Item Code",
    "Name",
    "Category",
    "Supplier",
    "Unit Price",
    "Cost Price",
    "Low Stock Threshold",
    "Total Stock",
    "Sold Quantity",
    "Remaining Stock",
    "Profit Margin",
    "Created Date",
    "Status",
)

ITEM_SHEET_HEADERS: Tuple[str, ...] = (
    "Date",
    "Transaction Type",
    "Quantity",
    "Sold Quantity",
    "Remaining Stock",
    "Agent/Person",
    "Notes",
    "Total Stock",
)


def item_sheet_title(code: str) -> str:
    """Return the history sheet title for the item ``code``."""

    code = (code or "").strip()
    if not code:
        raise ValueError("Item code is required to name its history sheet")
    return f"{code}{ITEM_SHEET_SUFFIX}"


def ensure_sheet(gateway: SheetsGateway, title: str, headers: Sequence[str]) -> bool:
    """Create ``title`` with ``headers`` when missing.

    Returns ``True`` when the sheet was created by this call.
    """

    if gateway.find_sheet(title) is not None:
        logger.debug("Sheet %s already present", title)
        return False

    gateway.batch_update([{"addSheet": {"properties": {"title": title}}}])
    gateway.update_values(a1_headers_range(title, columns=len(headers)), [list(headers)])
    logger.info("Created sheet %s with %d header columns", title, len(headers))
    return True


def ensure_master_sheet(gateway: SheetsGateway) -> bool:
    return ensure_sheet(gateway, MASTER_SHEET_TITLE, MASTER_HEADERS)


def ensure_item_sheet(gateway: SheetsGateway, code: str) -> bool:
    return ensure_sheet(gateway, item_sheet_title(code), ITEM_SHEET_HEADERS)


__all__ = [
    "ITEM_SHEET_HEADERS",
    "ITEM_SHEET_SUFFIX",
    "MASTER_HEADERS",
    "MASTER_SHEET_TITLE",
    "ensure_item_sheet",
    "ensure_master_sheet",
    "ensure_sheet",
    "item_sheet_title",
]
