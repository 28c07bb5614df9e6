"""Inventory, sales, profitability and movement reports plus CSV export."""
from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from core import app_paths
from core.models import Item, MovementType, StockMovement
from settings import DEFAULT_AGENT

logger = logging.getLogger(__name__)

DATE_RANGES = ("all", "today", "yesterday", "week", "month")
REPORT_KINDS = ("inventory", "sales", "profitability", "movements")

STATUS_IN_STOCK = "In Stock"
STATUS_LOW_STOCK = "Low Stock"
STATUS_OUT_OF_STOCK = "Out of Stock"

RECENT_ACTIVITY_LIMIT = 5


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def stock_status(item: Item) -> str:
    if item.remaining_stock <= 0:
        return STATUS_OUT_OF_STOCK
    if item.remaining_stock <= item.low_stock_threshold:
        return STATUS_LOW_STOCK
    return STATUS_IN_STOCK


def _margin(revenue: float, profit: float) -> float:
    return (profit / revenue) * 100 if revenue > 0 else 0.0


def _local_now(now: Optional[datetime]) -> datetime:
    # Naive values are taken as local time.
    return (now or datetime.now()).astimezone()


def date_range_bounds(
    date_range: str, now: Optional[datetime] = None
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Return the ``[start, end)`` window for ``date_range``.

    Windows are anchored at local midnight of ``now``; ``week`` and ``month``
    reach back 7 and 30 days from that midnight. ``all`` is unbounded.
    """

    if date_range not in DATE_RANGES:
        raise ValueError(f"Unknown date range {date_range!r}; expected one of {', '.join(DATE_RANGES)}")
    current = _local_now(now)
    today = current.replace(hour=0, minute=0, second=0, microsecond=0)
    if date_range == "today":
        return today, None
    if date_range == "yesterday":
        return today - timedelta(days=1), today
    if date_range == "week":
        return today - timedelta(days=7), None
    if date_range == "month":
        return today - timedelta(days=30), None
    return None, None


def filter_movements(
    movements: Iterable[StockMovement],
    *,
    date_range: str = "all",
    item_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[StockMovement]:
    start, end = date_range_bounds(date_range, now)
    selected: List[StockMovement] = []
    for movement in movements:
        if start is not None and movement.date < start:
            continue
        if end is not None and movement.date >= end:
            continue
        if item_id and movement.item_id != item_id:
            continue
        selected.append(movement)
    return selected


# ---------------------------------------------------------------------------
# Report records
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class InventoryRow:
    code: str
    name: str
    category: str
    supplier: str
    current_stock: int
    total_stock: int
    sold_quantity: int
    cost_price: float
    unit_price: float
    total_cost_value: float
    total_value: float
    profit_margin: float
    status: str


@dataclass(frozen=True)
class SaleTransaction:
    date: datetime
    quantity: int
    agent: str


@dataclass
class SalesRow:
    code: str
    name: str
    category: str
    cost_price: float
    unit_price: float
    total_sold: int = 0
    total_revenue: float = 0.0
    total_cogs: float = 0.0
    transactions: List[SaleTransaction] = field(default_factory=list)

    @property
    def gross_profit(self) -> float:
        return self.total_revenue - self.total_cogs

    @property
    def profit_margin(self) -> float:
        return _margin(self.total_revenue, self.gross_profit)


@dataclass(frozen=True)
class SalesSummary:
    total_revenue: float
    total_cogs: float
    total_gross_profit: float
    overall_profit_margin: float
    total_quantity: int
    item_count: int


@dataclass(frozen=True)
class ProfitabilityRow:
    code: str
    name: str
    category: str
    units_sold: int
    cost_price: float
    selling_price: float
    revenue: float
    cogs: float
    gross_profit: float
    profit_margin: float
    profit_per_unit: float


@dataclass(frozen=True)
class ProfitabilitySummary:
    total_revenue: float
    total_cogs: float
    total_gross_profit: float
    overall_profit_margin: float
    profitable_items: int
    total_items: int


@dataclass(frozen=True)
class MovementLine:
    date: datetime
    type: MovementType
    quantity: int
    sold_quantity: int
    agent: str
    notes: str


@dataclass
class MovementGroup:
    code: str
    name: str
    category: str
    movements: List[MovementLine] = field(default_factory=list)


@dataclass
class InventoryReport:
    generated_at: datetime
    date_range: str
    rows: List[InventoryRow] = field(default_factory=list)
    title: str = "Inventory Report"


@dataclass
class SalesReport:
    generated_at: datetime
    date_range: str
    rows: List[SalesRow]
    summary: SalesSummary
    title: str = "Sales Report"


@dataclass
class ProfitabilityReport:
    generated_at: datetime
    date_range: str
    rows: List[ProfitabilityRow]
    summary: ProfitabilitySummary
    title: str = "Profitability Report"


@dataclass
class MovementReport:
    generated_at: datetime
    date_range: str
    rows: List[MovementGroup] = field(default_factory=list)
    title: str = "Stock Movement Report"


Report = Union[InventoryReport, SalesReport, ProfitabilityReport, MovementReport]


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------
def build_inventory_report(
    items: Sequence[Item], *, date_range: str = "all", now: Optional[datetime] = None
) -> InventoryReport:
    rows = [
        InventoryRow(
            code=item.code,
            name=item.name,
            category=item.category,
            supplier=item.supplier,
            current_stock=item.remaining_stock,
            total_stock=item.total_stock,
            sold_quantity=item.sold_quantity,
            cost_price=item.cost_price,
            unit_price=item.price,
            total_cost_value=item.remaining_stock * item.cost_price,
            total_value=item.remaining_stock * item.price,
            profit_margin=item.profit_margin,
            status=stock_status(item),
        )
        for item in items
    ]
    return InventoryReport(generated_at=_local_now(now), date_range=date_range, rows=rows)


def build_sales_report(
    items: Sequence[Item],
    movements: Iterable[StockMovement],
    *,
    date_range: str = "all",
    item_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> SalesReport:
    """Group sales in the window by item, pricing them at the item's current prices."""

    by_id = {item.id: item for item in items}
    grouped: Dict[str, SalesRow] = {}
    for movement in filter_movements(movements, date_range=date_range, item_id=item_id, now=now):
        if movement.type is not MovementType.SALE:
            continue
        item = by_id.get(movement.item_id)
        if item is None:
            continue
        row = grouped.get(item.id)
        if row is None:
            row = SalesRow(
                code=item.code,
                name=item.name,
                category=item.category,
                cost_price=item.cost_price,
                unit_price=item.price,
            )
            grouped[item.id] = row
        row.total_sold += movement.sold_quantity
        row.total_revenue += movement.sold_quantity * item.price
        row.total_cogs += movement.sold_quantity * item.cost_price
        row.transactions.append(
            SaleTransaction(date=movement.date, quantity=movement.sold_quantity, agent=movement.agent or DEFAULT_AGENT)
        )

    rows = list(grouped.values())
    revenue = sum(row.total_revenue for row in rows)
    cogs = sum(row.total_cogs for row in rows)
    summary = SalesSummary(
        total_revenue=revenue,
        total_cogs=cogs,
        total_gross_profit=revenue - cogs,
        overall_profit_margin=_margin(revenue, revenue - cogs),
        total_quantity=sum(row.total_sold for row in rows),
        item_count=len(rows),
    )
    return SalesReport(generated_at=_local_now(now), date_range=date_range, rows=rows, summary=summary)


def build_profitability_report(
    items: Sequence[Item], *, date_range: str = "all", now: Optional[datetime] = None
) -> ProfitabilityReport:
    """Rank items with sales by gross profit, based on their lifetime aggregates."""

    rows: List[ProfitabilityRow] = []
    for item in items:
        if item.sold_quantity <= 0:
            continue
        revenue = item.sold_quantity * item.price
        cogs = item.sold_quantity * item.cost_price
        rows.append(
            ProfitabilityRow(
                code=item.code,
                name=item.name,
                category=item.category,
                units_sold=item.sold_quantity,
                cost_price=item.cost_price,
                selling_price=item.price,
                revenue=revenue,
                cogs=cogs,
                gross_profit=revenue - cogs,
                profit_margin=_margin(revenue, revenue - cogs),
                profit_per_unit=item.price - item.cost_price,
            )
        )
    rows.sort(key=lambda row: row.gross_profit, reverse=True)
    revenue = sum(row.revenue for row in rows)
    cogs = sum(row.cogs for row in rows)
    summary = ProfitabilitySummary(
        total_revenue=revenue,
        total_cogs=cogs,
        total_gross_profit=revenue - cogs,
        overall_profit_margin=_margin(revenue, revenue - cogs),
        profitable_items=sum(1 for row in rows if row.gross_profit > 0),
        total_items=len(rows),
    )
    return ProfitabilityReport(generated_at=_local_now(now), date_range=date_range, rows=rows, summary=summary)


def build_movement_report(
    items: Sequence[Item],
    movements: Iterable[StockMovement],
    *,
    date_range: str = "all",
    item_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> MovementReport:
    by_id = {item.id: item for item in items}
    grouped: Dict[str, MovementGroup] = {}
    for movement in filter_movements(movements, date_range=date_range, item_id=item_id, now=now):
        item = by_id.get(movement.item_id)
        if item is None:
            continue
        group = grouped.setdefault(item.id, MovementGroup(code=item.code, name=item.name, category=item.category))
        group.movements.append(
            MovementLine(
                date=movement.date,
                type=movement.type,
                quantity=movement.quantity,
                sold_quantity=movement.sold_quantity,
                agent=movement.agent,
                notes=movement.notes,
            )
        )
    return MovementReport(generated_at=_local_now(now), date_range=date_range, rows=list(grouped.values()))


def build_report(
    kind: str,
    items: Sequence[Item],
    movements: Iterable[StockMovement],
    *,
    date_range: str = "all",
    item_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Report:
    if kind == "inventory":
        return build_inventory_report(items, date_range=date_range, now=now)
    if kind == "sales":
        return build_sales_report(items, movements, date_range=date_range, item_id=item_id, now=now)
    if kind == "profitability":
        return build_profitability_report(items, date_range=date_range, now=now)
    if kind == "movements":
        return build_movement_report(items, movements, date_range=date_range, item_id=item_id, now=now)
    raise ValueError(f"Unknown report type {kind!r}; expected one of {', '.join(REPORT_KINDS)}")


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class RecentActivity:
    movement: StockMovement
    item_name: str


@dataclass(frozen=True)
class DashboardSummary:
    total_items: int
    total_stock_value: float
    total_cost_value: float
    total_sales: float
    total_cogs: float
    gross_profit: float
    profit_margin: float
    low_stock_items: int
    out_of_stock_items: int
    low_stock_list: Tuple[Item, ...] = ()
    recent_activity: Tuple[RecentActivity, ...] = ()


def dashboard_summary(items: Sequence[Item], movements: Iterable[StockMovement]) -> DashboardSummary:
    """Headline figures for the whole inventory.

    Stock and cost values are based on total stock received; items at or
    below their threshold count as low stock, including those that are out.
    """

    total_sales = sum(item.sold_quantity * item.price for item in items)
    total_cogs = sum(item.sold_quantity * item.cost_price for item in items)
    low = tuple(item for item in items if item.remaining_stock <= item.low_stock_threshold)
    names = {item.id: item.name for item in items}
    recent = sorted(movements, key=lambda movement: movement.date, reverse=True)[:RECENT_ACTIVITY_LIMIT]
    return DashboardSummary(
        total_items=len(items),
        total_stock_value=sum(item.total_stock * item.price for item in items),
        total_cost_value=sum(item.total_stock * item.cost_price for item in items),
        total_sales=total_sales,
        total_cogs=total_cogs,
        gross_profit=total_sales - total_cogs,
        profit_margin=_margin(total_sales, total_sales - total_cogs),
        low_stock_items=len(low),
        out_of_stock_items=sum(1 for item in items if item.remaining_stock <= 0),
        low_stock_list=low,
        recent_activity=tuple(
            RecentActivity(movement=movement, item_name=names.get(movement.item_id, "Unknown Item"))
            for movement in recent
        ),
    )


# ---------------------------------------------------------------------------
# CSV export
# ---------------------------------------------------------------------------
def _money(value: float) -> str:
    return f"{value:.2f}"


def _percent(value: float) -> str:
    return f"{value:.1f}%"


def _report_table(report: Report) -> Tuple[List[str], List[List[object]]]:
    if isinstance(report, InventoryReport):
        header = [
            "Code", "Name", "Category", "Supplier", "Current Stock", "Cost Price",
            "Unit Price", "Total Cost Value", "Total Value", "Profit Margin", "Status",
        ]
        return header, [
            [
                row.code, row.name, row.category, row.supplier, row.current_stock,
                _money(row.cost_price), _money(row.unit_price), _money(row.total_cost_value),
                _money(row.total_value), _percent(row.profit_margin), row.status,
            ]
            for row in report.rows
        ]
    if isinstance(report, SalesReport):
        header = [
            "Code", "Name", "Category", "Cost Price", "Unit Price", "Total Sold",
            "Total Revenue", "Total COGS", "Gross Profit", "Profit Margin",
        ]
        return header, [
            [
                row.code, row.name, row.category, _money(row.cost_price), _money(row.unit_price),
                row.total_sold, _money(row.total_revenue), _money(row.total_cogs),
                _money(row.gross_profit), _percent(row.profit_margin),
            ]
            for row in report.rows
        ]
    if isinstance(report, ProfitabilityReport):
        header = [
            "Code", "Name", "Category", "Units Sold", "Cost Price", "Selling Price",
            "Revenue", "COGS", "Gross Profit", "Profit Margin", "Profit Per Unit",
        ]
        return header, [
            [
                row.code, row.name, row.category, row.units_sold, _money(row.cost_price),
                _money(row.selling_price), _money(row.revenue), _money(row.cogs),
                _money(row.gross_profit), _percent(row.profit_margin), _money(row.profit_per_unit),
            ]
            for row in report.rows
        ]
    header = ["Code", "Name", "Category", "Date", "Type", "Quantity", "Sold Quantity", "Agent", "Notes"]
    rows: List[List[object]] = []
    for group in report.rows:
        for line in group.movements:
            rows.append(
                [
                    group.code, group.name, group.category, line.date.astimezone().date().isoformat(),
                    line.type.value, line.quantity, line.sold_quantity, line.agent, line.notes,
                ]
            )
    return header, rows


def export_csv(report: Report) -> str:
    """Render ``report`` as CSV text with a short preamble."""

    header, rows = _report_table(report)
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow([report.title])
    writer.writerow([f"Generated: {report.generated_at.strftime('%Y-%m-%d %H:%M:%S')}"])
    writer.writerow([f"Date Range: {report.date_range}"])
    writer.writerow([])
    writer.writerow(header)
    writer.writerows(rows)
    return buffer.getvalue()


def export_filename(report: Report) -> str:
    return f"{report.title.replace(' ', '_')}_{report.generated_at.strftime('%Y-%m-%d')}.csv"


def write_csv(report: Report, directory: Optional[Union[str, Path]] = None) -> Path:
    target_dir = Path(directory) if directory else app_paths.exports_path()
    target_dir.mkdir(parents=True, exist_ok=True)
    target = target_dir / export_filename(report)
    with open(target, "w", encoding="utf-8", newline="") as handle:
        handle.write(export_csv(report))
    logger.info("Exported %s to %s", report.title, target)
    return target


__all__ = [
    "DATE_RANGES",
    "DashboardSummary",
    "InventoryReport",
    "InventoryRow",
    "MovementGroup",
    "MovementLine",
    "MovementReport",
    "ProfitabilityReport",
    "ProfitabilityRow",
    "ProfitabilitySummary",
    "RECENT_ACTIVITY_LIMIT",
    "REPORT_KINDS",
    "RecentActivity",
    "Report",
    "SaleTransaction",
    "SalesReport",
    "SalesRow",
    "SalesSummary",
    "build_inventory_report",
    "build_movement_report",
    "build_profitability_report",
    "build_report",
    "build_sales_report",
    "dashboard_summary",
    "date_range_bounds",
    "export_csv",
    "export_filename",
    "filter_movements",
    "stock_status",
    "write_csv",
]
