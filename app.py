"""Command line entry point for StockLedger."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from core import reports
from core.google_credentials import CredentialsBundleInvalidError, load_credentials_bundle
from core.ledger import LedgerEngine, LedgerError
from core.logging_config import configure_logging
from core.models import Item, MovementType, ValidationError, build_movement
from core.sheets_client import SheetsGateway
from core.sheets_sync import SheetsSync, SyncResult
from core.sync_service import InventoryService
from core.version import __version__
from db import ItemRepository, LocalCache, MovementRepository, SqliteCache
from settings import (
    DEFAULT_AGENT,
    DEFAULT_LOW_STOCK_THRESHOLD,
    THEMES,
    GoogleSyncSettings,
    load_google_sync_settings,
    load_theme,
    save_theme,
    toggle_theme,
)

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    cache: LocalCache
    service: InventoryService

    @property
    def ledger(self) -> LedgerEngine:
        return self.service.ledger


def build_context(db_path: Optional[str] = None) -> AppContext:
    cache = SqliteCache(db_path)
    ledger = LedgerEngine(ItemRepository(cache), MovementRepository(cache))
    gateway = SheetsGateway(load_google_sync_settings(cache))
    return AppContext(cache=cache, service=InventoryService(ledger, SheetsSync(gateway)))


def _error(message: str) -> int:
    print(f"Error: {message}", file=sys.stderr)
    return 1


def _print_sync(result: Optional[SyncResult]) -> None:
    if result is None:
        return
    if result.success:
        print(f"Sync: {result.message}")
    else:
        print(f"Sync failed: {result.message}", file=sys.stderr)


def _item_for_code(context: AppContext, code: str) -> Item:
    item = context.ledger.find_item_by_code(code)
    if item is None:
        raise LedgerError(f"No item with code {code}")
    return item


def _format_item(item: Item) -> str:
    return (
        f"{item.code:<18} {item.name:<24} {item.category:<14} "
        f"{item.remaining_stock:>6} / {item.total_stock:<6} sold {item.sold_quantity:<6} "
        f"{item.price:>10.2f}  {reports.stock_status(item)}"
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
def command_items(args: argparse.Namespace, context: AppContext) -> int:
    items = context.ledger.list_items()
    if not items:
        print("No items recorded.")
    for item in items:
        print(_format_item(item))

    if args.summary:
        summary = reports.dashboard_summary(items, context.ledger.list_movements())
        print()
        print(f"Total items      : {summary.total_items}")
        print(f"Stock value      : {summary.total_stock_value:.2f}")
        print(f"Cost value       : {summary.total_cost_value:.2f}")
        print(f"Sales            : {summary.total_sales:.2f}")
        print(f"Gross profit     : {summary.gross_profit:.2f} ({summary.profit_margin:.1f}%)")
        print(f"Low stock items  : {summary.low_stock_items}")
        print(f"Out of stock     : {summary.out_of_stock_items}")
        for activity in summary.recent_activity:
            movement = activity.movement
            amount = movement.sold_quantity if movement.type is MovementType.SALE else movement.quantity
            print(f"  {movement.date:%Y-%m-%d %H:%M} {movement.type.label:<10} {amount:>6}  {activity.item_name}")
    return 0


def command_add_item(args: argparse.Namespace, context: AppContext) -> int:
    outcome = context.service.add_item(
        code=args.code,
        name=args.name,
        category=args.category,
        supplier=args.supplier,
        price=args.price,
        cost_price=args.cost_price,
        low_stock_threshold=args.threshold,
    )
    print(f"Added item {outcome.item.code}")
    _print_sync(outcome.sync)
    return 0


def command_edit_item(args: argparse.Namespace, context: AppContext) -> int:
    item = _item_for_code(context, args.code)
    changes: Dict[str, object] = {
        field: value
        for field, value in (
            ("name", args.name),
            ("category", args.category),
            ("supplier", args.supplier),
            ("price", args.price),
            ("cost_price", args.cost_price),
            ("low_stock_threshold", args.threshold),
        )
        if value is not None
    }
    if not changes:
        return _error("Nothing to change")
    outcome = context.service.update_item(item.id, **changes)
    print(f"Updated item {outcome.item.code}")
    _print_sync(outcome.sync)
    return 0


def command_delete_item(args: argparse.Namespace, context: AppContext) -> int:
    item = _item_for_code(context, args.code)
    outcome = context.service.delete_item(item.id)
    print(f"Deleted item {outcome.item.code} and {outcome.removed_movements} movement(s)")
    _print_sync(outcome.sync)
    return 0


def command_record(args: argparse.Namespace, context: AppContext) -> int:
    item = _item_for_code(context, args.code)
    movement = build_movement(item.id, args.type, args.amount, agent=args.agent, notes=args.notes)
    outcome = context.service.record_movement(movement)
    updated = outcome.item
    print(
        f"Recorded {movement.type.value} for {updated.code}: "
        f"total {updated.total_stock}, sold {updated.sold_quantity}, remaining {updated.remaining_stock}"
    )
    _print_sync(outcome.sync)
    return 0


def command_movements(args: argparse.Namespace, context: AppContext) -> int:
    item_id = _item_for_code(context, args.code).id if args.code else None
    codes = {item.id: item.code for item in context.ledger.list_items()}
    movements = reports.filter_movements(
        context.ledger.list_movements(item_id), date_range=args.range
    )
    if not movements:
        print("No movements recorded.")
    for movement in sorted(movements, key=lambda entry: entry.date):
        print(
            f"{movement.date:%Y-%m-%d %H:%M:%S} {codes.get(movement.item_id, '?'):<18} "
            f"{movement.type.label:<10} qty {movement.quantity:>6} sold {movement.sold_quantity:>6} "
            f"{movement.agent:<12} {movement.notes}"
        )
    return 0


def command_report(args: argparse.Namespace, context: AppContext) -> int:
    item_id = _item_for_code(context, args.code).id if args.code else None
    report = reports.build_report(
        args.kind,
        context.ledger.list_items(),
        context.ledger.list_movements(),
        date_range=args.range,
        item_id=item_id,
    )
    if args.output:
        path = reports.write_csv(report, args.output)
        print(f"Report written to: {path}")
    else:
        sys.stdout.write(reports.export_csv(report))
    return 0


def command_configure(args: argparse.Namespace, context: AppContext) -> int:
    if args.bundle:
        try:
            text = Path(args.bundle).read_text(encoding="utf-8")
            settings = load_credentials_bundle(text)
        except OSError as exc:
            return _error(f"Cannot read {args.bundle}: {exc}")
        except CredentialsBundleInvalidError as exc:
            return _error(str(exc))
    else:
        current = load_google_sync_settings(context.cache)
        settings = GoogleSyncSettings(
            api_key=args.api_key or current.api_key,
            client_id=args.client_id or current.client_id,
            client_secret=args.client_secret or current.client_secret,
            refresh_token=args.refresh_token or current.refresh_token,
            spreadsheet_id=args.spreadsheet_id or current.spreadsheet_id,
        )
    missing = settings.missing_fields()
    if missing:
        return _error(f"Missing fields: {', '.join(missing)}")

    result = context.service.reconnect(settings, context.cache)
    print("Configuration saved.")
    _print_sync(result)
    return 0 if result.success else 1


def command_test_connection(args: argparse.Namespace, context: AppContext) -> int:
    result = context.service.test_connection()
    _print_sync(result)
    return 0 if result.success else 1


def command_retry(args: argparse.Namespace, context: AppContext) -> int:
    item = _item_for_code(context, args.code)
    result = context.service.resync_item(item.id, create=args.insert)
    _print_sync(result)
    return 0 if result is None or result.success else 1


def command_theme(args: argparse.Namespace, context: AppContext) -> int:
    if args.toggle:
        theme = toggle_theme(context.cache)
    elif args.set:
        save_theme(args.set, context.cache)
        theme = args.set
    else:
        theme = load_theme(context.cache)
    print(f"Theme: {theme}")
    return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------
def _add_item_fields(parser: argparse.ArgumentParser, *, required: bool) -> None:
    parser.add_argument("--name", required=required, help="Item name")
    parser.add_argument("--category", required=required, help="Item category")
    parser.add_argument("--supplier", required=required, help="Supplier name")
    parser.add_argument("--price", type=float, required=required, help="Selling price")
    parser.add_argument("--cost-price", type=float, required=required, help="Cost price")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="StockLedger inventory and Google Sheets sync")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--db", help="Path to the local cache database")
    parser.add_argument("--verbose", action="store_true", help="Also print debug log messages to stderr")
    subparsers = parser.add_subparsers(dest="command", required=True)

    items_parser = subparsers.add_parser("items", help="List items with their stock levels")
    items_parser.add_argument("--summary", action="store_true", help="Print dashboard totals and recent activity")
    items_parser.set_defaults(func=command_items)

    add_parser = subparsers.add_parser("add-item", help="Create an item")
    add_parser.add_argument("--code", help="Item code (generated when omitted)")
    _add_item_fields(add_parser, required=True)
    add_parser.add_argument(
        "--threshold", type=int, default=DEFAULT_LOW_STOCK_THRESHOLD, help="Low stock threshold"
    )
    add_parser.set_defaults(func=command_add_item)

    edit_parser = subparsers.add_parser("edit-item", help="Change an item's descriptive fields")
    edit_parser.add_argument("code", help="Item code")
    _add_item_fields(edit_parser, required=False)
    edit_parser.add_argument("--threshold", type=int, help="Low stock threshold")
    edit_parser.set_defaults(func=command_edit_item)

    delete_parser = subparsers.add_parser("delete-item", help="Delete an item and its movements")
    delete_parser.add_argument("code", help="Item code")
    delete_parser.set_defaults(func=command_delete_item)

    record_parser = subparsers.add_parser("record", help="Record a stock movement")
    record_parser.add_argument("type", choices=[kind.value for kind in MovementType])
    record_parser.add_argument("code", help="Item code")
    record_parser.add_argument("amount", type=int, help="Quantity received, sold or adjusted")
    record_parser.add_argument("--agent", default=DEFAULT_AGENT, help="Person recording the movement")
    record_parser.add_argument("--notes", default="", help="Free text notes")
    record_parser.set_defaults(func=command_record)

    movements_parser = subparsers.add_parser("movements", help="List stock movements")
    movements_parser.add_argument("--code", help="Only show this item")
    movements_parser.add_argument("--range", choices=reports.DATE_RANGES, default="all")
    movements_parser.set_defaults(func=command_movements)

    report_parser = subparsers.add_parser("report", help="Generate a CSV report")
    report_parser.add_argument("kind", choices=reports.REPORT_KINDS)
    report_parser.add_argument("--range", choices=reports.DATE_RANGES, default="all")
    report_parser.add_argument("--code", help="Restrict movement based reports to this item")
    report_parser.add_argument("--output", help="Directory to write the CSV file into")
    report_parser.set_defaults(func=command_report)

    configure_parser = subparsers.add_parser("configure", help="Store Google Sheets credentials")
    configure_parser.add_argument("--bundle", help="JSON file with apiKey, clientId, clientSecret, refreshToken, spreadsheetId")
    configure_parser.add_argument("--api-key")
    configure_parser.add_argument("--client-id")
    configure_parser.add_argument("--client-secret")
    configure_parser.add_argument("--refresh-token")
    configure_parser.add_argument("--spreadsheet-id", help="Spreadsheet id or URL")
    configure_parser.set_defaults(func=command_configure)

    test_parser = subparsers.add_parser("test-connection", help="Check access to the spreadsheet")
    test_parser.set_defaults(func=command_test_connection)

    retry_parser = subparsers.add_parser("retry", help="Send an item's master row again after a failed sync")
    retry_parser.add_argument("code", help="Item code")
    retry_parser.add_argument("--insert", action="store_true", help="Append a new row instead of updating")
    retry_parser.set_defaults(func=command_retry)

    theme_parser = subparsers.add_parser("theme", help="Show or change the display theme")
    theme_group = theme_parser.add_mutually_exclusive_group()
    theme_group.add_argument("--toggle", action="store_true")
    theme_group.add_argument("--set", choices=THEMES)
    theme_parser.set_defaults(func=command_theme)

    return parser


def main(argv: list[str] | None = None, *, context: Optional[AppContext] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        configure_logging(logging.DEBUG, console=True)
    else:
        configure_logging(logging.INFO)
    context = context or build_context(args.db)
    try:
        return args.func(args, context)
    except (ValidationError, LedgerError) as exc:
        logger.info("%s rejected: %s", args.command, exc)
        return _error(str(exc))


if __name__ == "__main__":
    sys.exit(main())
