"""Command-line entry points for the stock ledger.

All orchestration here is argparse wiring, translating arguments into the
command objects consumed by :mod:`stock_ledger.core_logic`, and printing the
results. The ledger only lives for one process, so write commands are only
available inside ``session``, which reads one command per line and runs them
all against the same in-memory context.

The CLI is also where the over-sell policy lives: a sale (or sale edit) that
asks for more than :func:`core_logic.available_for_sale` is refused before the
reconciler is called, unless ``--allow-oversell`` is given.
"""

from __future__ import annotations

import argparse
import shlex
import sys
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence, TextIO

from . import core_logic, data_manager, log, reporting, setup_excel
from .ledger_store import PurchaseRow, SaleRow, StockItem


class InsufficientStockError(core_logic.BusinessRuleViolation):
    """Raised when a sale asks for more than the item has on hand."""


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="stock-ledger",
        description="Inventory and sales tracker for the Stock Ledger shop catalog.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to the nearest config.ini, then the built-in catalog).",
    )
    return parser


def build_session_parser() -> argparse.ArgumentParser:
    """Construct the parser used for each line typed inside ``session``."""
    return argparse.ArgumentParser(prog="", add_help=True, description="Stock Ledger session commands.")


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire the top-level sub-commands: reports plus ``session``."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    read_specs = register_read_commands(subparsers)
    session_spec = register_session_command(subparsers)
    session_spec.register(subparsers)
    return build_command_table([*read_specs.values(), session_spec])


def configure_session_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire every command available inside an interactive session."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating commands such as purchases and sales."""
    specs = {
        "purchase": register_purchase_command(subparsers),
        "sale": register_sale_command(subparsers),
        "edit-purchase": register_edit_purchase_command(subparsers),
        "edit-sale": register_edit_sale_command(subparsers),
        "delete-purchase": register_delete_purchase_command(subparsers),
        "delete-sale": register_delete_sale_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only commands such as stock listings and reports."""
    specs = {
        "stock": register_stock_command(subparsers),
        "low-stock": register_low_stock_command(subparsers),
        "valuation": register_valuation_command(subparsers),
        "summary": register_summary_command(subparsers),
        "recent": register_recent_command(subparsers),
        "export": register_export_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def parse_day(value: str) -> date:
    """argparse ``type`` for ``YYYY-MM-DD`` dates."""
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid date '{value}', expected YYYY-MM-DD") from exc


def _add_purchase_fields(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--item-id", required=True)
    parser.add_argument("--quantity", required=True)
    parser.add_argument("--price", required=True, help="Price per unit for this purchase.")
    parser.add_argument("--supplier", required=True)


def _add_sale_fields(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--item-id", required=True)
    parser.add_argument("--quantity", required=True)
    parser.add_argument("--price", required=True, help="Price per unit for this sale.")
    parser.add_argument("--customer", default=None, help="Omit for a walk-in customer.")
    parser.add_argument(
        "--allow-oversell",
        action="store_true",
        help="Record the sale even if it exceeds the available stock.",
    )


def register_purchase_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``purchase``."""
    name = "purchase"
    help_text = "Record a purchase from a supplier."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_purchase_fields(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_purchase)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a sale to a customer."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_sale_fields(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_edit_purchase_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``edit-purchase``."""
    name = "edit-purchase"
    help_text = "Edit a recorded purchase."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--transaction-id", required=True)
        _add_purchase_fields(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit_purchase)


def register_edit_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``edit-sale``."""
    name = "edit-sale"
    help_text = "Edit a recorded sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--transaction-id", required=True)
        _add_sale_fields(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit_sale)


def register_delete_purchase_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-purchase``."""
    name = "delete-purchase"
    help_text = "Delete a purchase and take its quantity back off the stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--transaction-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_purchase)


def register_delete_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-sale``."""
    name = "delete-sale"
    help_text = "Delete a sale and return its quantity to the stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--transaction-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_sale)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display current stock levels."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report)


def register_low_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``low-stock``."""
    name = "low-stock"
    help_text = "Display items at or below their reorder level."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_low_stock_report)


def register_valuation_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``valuation``."""
    name = "valuation"
    help_text = "Display the total stock value at catalog prices."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_valuation_report)


def register_summary_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``summary``."""
    name = "summary"
    help_text = "Display the daily summary report."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--date", type=parse_day, default=None, help="Day to report (default: today).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_summary_report)


def register_recent_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``recent``."""
    name = "recent"
    help_text = "Display the most recent purchases and sales."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--limit", type=int, default=None, help="Entries per list (default from config).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_recent_report)


def register_export_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export``."""
    name = "export"
    help_text = "Write the daily summary report to an Excel workbook."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--output", type=Path, required=True)
        parser.add_argument("--date", type=parse_day, default=None, help="Day to report (default: today).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export_report)


def register_session_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``session``."""
    name = "session"
    help_text = "Run commands line by line against one in-memory ledger."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--script",
            type=Path,
            default=None,
            help="Read commands from this file instead of standard input.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_session)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations.

    An explicit ``config_path`` must exist. Without one, the nearest
    ``config.ini`` is used, and failing that the built-in starter catalog.
    """
    if config_path is not None:
        context = core_logic.load_runtime_context(Path(config_path))
    else:
        try:
            located = data_manager.find_config_file()
        except FileNotFoundError:
            log.info("No %s found, starting with the default catalog", data_manager.CONFIG_FILE_NAME)
            context = core_logic.build_runtime_context(
                data_manager.default_settings(),
                setup_excel.DEFAULT_CATALOG,
            )
        else:
            context = core_logic.load_runtime_context(located)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_purchase(args: argparse.Namespace) -> core_logic.PurchaseCommand:
    """Translate CLI args into a purchase command object."""
    return core_logic.PurchaseCommand(
        item_id=args.item_id,
        quantity=core_logic.coerce_decimal(args.quantity),
        price_per_unit=core_logic.coerce_decimal(args.price),
        supplier_name=args.supplier,
    )


def translate_sale(args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    return core_logic.SaleCommand(
        item_id=args.item_id,
        quantity=core_logic.coerce_decimal(args.quantity),
        price_per_unit=core_logic.coerce_decimal(args.price),
        customer_name=args.customer,
    )


def ensure_stock_available(
    context: core_logic.RuntimeContext,
    command: core_logic.SaleCommand,
    *,
    editing: Optional[SaleRow] = None,
) -> None:
    """Refuse a sale whose quantity exceeds what the item can supply."""
    available = core_logic.available_for_sale(context, command.item_id, editing=editing)
    if command.quantity > available:
        unit = core_logic.get_stock_item(context, command.item_id).unit
        log.warning(
            "Refused sale of %s %s for item '%s': only %s available",
            command.quantity,
            unit,
            command.item_id,
            available,
        )
        raise InsufficientStockError(f"Insufficient stock! Available: {available} {unit}")


def run_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Record a purchase via the reconciler."""
    purchase = core_logic.record_purchase(context, translate_purchase(args))
    print(f"Recorded purchase {purchase.transaction_id}: {describe_transaction(purchase, context)}")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Record a sale via the reconciler after the over-sell check."""
    command = translate_sale(args)
    if not args.allow_oversell:
        ensure_stock_available(context, command)
    sale = core_logic.record_sale(context, command)
    print(f"Recorded sale {sale.transaction_id}: {describe_transaction(sale, context)}")
    return 0


def run_edit_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Edit a purchase via the reconciler."""
    purchase = core_logic.update_purchase(context, args.transaction_id, translate_purchase(args))
    print(f"Updated purchase {purchase.transaction_id}: {describe_transaction(purchase, context)}")
    return 0


def run_edit_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Edit a sale via the reconciler after the over-sell check."""
    command = translate_sale(args)
    if not args.allow_oversell:
        ensure_stock_available(context, command, editing=core_logic.get_sale(context, args.transaction_id))
    sale = core_logic.update_sale(context, args.transaction_id, command)
    print(f"Updated sale {sale.transaction_id}: {describe_transaction(sale, context)}")
    return 0


def run_delete_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Delete a purchase via the reconciler."""
    purchase = core_logic.delete_purchase(context, args.transaction_id)
    print(f"Deleted purchase {purchase.transaction_id}")
    return 0


def run_delete_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Delete a sale via the reconciler."""
    sale = core_logic.delete_sale(context, args.transaction_id)
    print(f"Deleted sale {sale.transaction_id}")
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print every catalog item with its current quantity."""
    for line in format_stock_lines(core_logic.list_stock(context)):
        print(line)
    return 0


def run_low_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the items at or below their reorder level."""
    items = reporting.low_stock_items(context)
    print(f"{len(items)} item(s) at or below reorder level")
    for line in format_stock_lines(items):
        print(line)
    return 0


def run_valuation_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the total inventory value."""
    print(f"Total stock value: {reporting.stock_valuation(context)}")
    return 0


def run_summary_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the daily summary report."""
    summary = reporting.daily_summary(context, args.date)
    for line in format_summary_lines(summary, walk_in_label=context.settings.walk_in_customer):
        print(line)
    return 0


def run_recent_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the most recent purchases and sales, newest first."""
    print("Recent purchases:")
    for purchase in reporting.recent_purchases(context, args.limit):
        print(f"  {purchase.transaction_id}  {describe_transaction(purchase, context)}")
    print("Recent sales:")
    for sale in reporting.recent_sales(context, args.limit):
        print(f"  {sale.transaction_id}  {describe_transaction(sale, context)}")
    return 0


def run_export_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Export the daily summary to a workbook."""
    summary = reporting.daily_summary(context, args.date)
    written = data_manager.export_daily_summary(
        summary,
        args.output,
        walk_in_label=context.settings.walk_in_customer,
    )
    print(f"Exported summary for {summary.day.isoformat()} to {written}")
    return 0


def run_session(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Read commands line by line and run them against ``context``.

    Blank lines and ``#`` comments are ignored; ``quit`` or ``exit`` ends the
    session. A failing line is reported and the session continues. The exit
    code is that of the last failing line, or 0.
    """
    parser = build_session_parser()
    command_table = configure_session_subcommands(parser)
    script = getattr(args, "script", None)
    if script is not None:
        with Path(script).expanduser().open(encoding="utf-8") as source:
            return _session_loop(context, source, parser, command_table, interactive=False)
    return _session_loop(context, sys.stdin, parser, command_table, interactive=sys.stdin.isatty())


def _session_loop(
    context: core_logic.RuntimeContext,
    source: TextIO,
    parser: argparse.ArgumentParser,
    command_table: Mapping[str, CommandSpec],
    *,
    interactive: bool,
) -> int:
    exit_code = 0
    while True:
        if interactive:
            print("> ", end="", flush=True)
        raw = source.readline()
        if not raw:
            break
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line in ("quit", "exit"):
            break

        try:
            args = parser.parse_args(shlex.split(line))
        except ValueError as error:
            exit_code = handle_cli_error(error)
            continue
        except SystemExit as stop:
            # argparse already printed usage or help
            if stop.code:
                exit_code = 2
            continue

        try:
            dispatch_command(context, args, command_table)
        except (core_logic.BusinessRuleViolation, KeyError, ValueError, OSError) as error:
            exit_code = handle_cli_error(error)
    return exit_code


def describe_transaction(transaction: PurchaseRow | SaleRow, context: core_logic.RuntimeContext) -> str:
    """One-line description used by write commands and listings."""
    unit = context.catalog[transaction.item_id].unit if transaction.item_id in context.catalog else ""
    if isinstance(transaction, PurchaseRow):
        party = transaction.supplier_name
    else:
        party = transaction.customer_name or context.settings.walk_in_customer
    return (
        f"{transaction.item_name} | {party} | {transaction.quantity} {unit} "
        f"@ {transaction.price_per_unit} = {transaction.total_amount} "
        f"| {_format_timestamp(transaction.timestamp)}"
    )


def _format_timestamp(moment: datetime) -> str:
    return moment.astimezone().strftime("%Y-%m-%d %H:%M")


def format_stock_lines(items: Sequence[StockItem]) -> List[str]:
    """Render stock items as aligned text rows, flagging low stock."""
    lines = []
    for item in items:
        flag = "  LOW" if reporting.is_low_stock(item) else ""
        lines.append(
            f"{item.item_id:>4}  {item.display_name:<26} {item.quantity:>10} {item.unit:<4}"
            f" @ {item.price_per_unit:>8}  reorder at {item.reorder_level}{flag}"
        )
    return lines


def format_summary_lines(summary: reporting.DailySummary, *, walk_in_label: str) -> List[str]:
    """Render a :class:`reporting.DailySummary` as text lines."""
    totals = summary.totals
    lines = [f"Daily summary for {summary.day.isoformat()}", "", "Purchases:"]
    for purchase in summary.purchases:
        lines.append(
            f"  {purchase.transaction_id}  {purchase.item_name} | {purchase.supplier_name}"
            f" | {purchase.quantity} @ {purchase.price_per_unit} = {purchase.total_amount}"
        )
    lines.append("Sales:")
    for sale in summary.sales:
        lines.append(
            f"  {sale.transaction_id}  {sale.item_name} | {sale.customer_name or walk_in_label}"
            f" | {sale.quantity} @ {sale.price_per_unit} = {sale.total_amount}"
        )
    lines.extend(
        [
            "",
            f"Total purchases: {totals.purchase_total} ({totals.purchase_quantity} units)",
            f"Total sales:     {totals.sale_total} ({totals.sale_quantity} units)",
            f"Net profit:      {totals.net_profit}",
            f"Transactions:    {totals.transaction_count}",
            f"Low stock items: {len(summary.low_stock)}",
        ]
    )
    return lines


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
