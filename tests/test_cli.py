"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
import io
import logging
from datetime import date
from decimal import Decimal

import openpyxl
import pytest

from stock_ledger import cli, core_logic, reporting


WRITE_COMMANDS = {
    "purchase",
    "sale",
    "edit-purchase",
    "edit-sale",
    "delete-purchase",
    "delete-sale",
}

READ_COMMANDS = {
    "stock",
    "low-stock",
    "valuation",
    "summary",
    "recent",
    "export",
}


def _registered_choices(parser: argparse.ArgumentParser) -> set[str]:
    for action in parser._actions:
        if isinstance(action, argparse._SubParsersAction):
            return set(action.choices)
    return set()


def _run_lines(context: core_logic.RuntimeContext, *lines: str) -> int:
    parser = cli.build_session_parser()
    table = cli.configure_session_subcommands(parser)
    return cli._session_loop(context, io.StringIO("\n".join(lines) + "\n"), parser, table, interactive=False)


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    parser = cli.build_parser()
    assert isinstance(parser, argparse.ArgumentParser)
    assert parser.prog == "stock-ledger"
    assert "Stock Ledger" in (parser.description or "")


def test_configure_subcommands_registers_reports_and_session(cli_parser):
    """Top-level commands are the reports plus ``session``; writes live inside it."""

    command_table = cli.configure_subcommands(cli_parser)

    assert set(command_table) == READ_COMMANDS | {"session"}
    assert _registered_choices(cli_parser) == READ_COMMANDS | {"session"}


def test_configure_session_subcommands_registers_everything():
    parser = cli.build_session_parser()
    command_table = cli.configure_session_subcommands(parser)

    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS
    assert _registered_choices(parser) == WRITE_COMMANDS | READ_COMMANDS


def test_register_write_commands_returns_command_specs(subparsers_action):
    specs = cli.register_write_commands(subparsers_action)
    assert set(specs) == WRITE_COMMANDS
    for spec in specs.values():
        assert isinstance(spec, cli.CommandSpec)
        assert spec.help_text
        assert spec.name in subparsers_action.choices


def test_register_read_commands_returns_command_specs(subparsers_action):
    specs = cli.register_read_commands(subparsers_action)
    assert set(specs) == READ_COMMANDS
    for spec in specs.values():
        assert isinstance(spec, cli.CommandSpec)
        assert spec.name in subparsers_action.choices


def test_register_sale_command_configures_arguments():
    parser = argparse.ArgumentParser(prog="cli")
    subparsers = parser.add_subparsers(dest="command")
    spec = cli.register_sale_command(subparsers)
    spec.register(subparsers)

    namespace = parser.parse_args(["sale", "--item-id", "1", "--quantity", "2.5", "--price", "130"])

    assert namespace.item_id == "1"
    assert namespace.quantity == "2.5"
    assert namespace.price == "130"
    assert namespace.customer is None
    assert namespace.allow_oversell is False


def test_register_edit_purchase_command_requires_transaction_id():
    parser = argparse.ArgumentParser(prog="cli")
    subparsers = parser.add_subparsers(dest="command")
    cli.register_edit_purchase_command(subparsers).register(subparsers)

    namespace = parser.parse_args(
        ["edit-purchase", "--transaction-id", "P1", "--item-id", "2", "--quantity", "5", "--price", "90",
         "--supplier", "Acme"]
    )
    assert namespace.transaction_id == "P1"
    assert namespace.supplier == "Acme"
    with pytest.raises(SystemExit):
        parser.parse_args(["edit-purchase", "--item-id", "2", "--quantity", "5", "--price", "90", "--supplier", "A"])


def test_register_summary_command_parses_date():
    parser = argparse.ArgumentParser(prog="cli")
    subparsers = parser.add_subparsers(dest="command")
    cli.register_summary_command(subparsers).register(subparsers)

    assert parser.parse_args(["summary", "--date", "2025-03-14"]).date == date(2025, 3, 14)
    assert parser.parse_args(["summary"]).date is None


def test_parse_day_rejects_bad_input():
    with pytest.raises(argparse.ArgumentTypeError):
        cli.parse_day("14/03/2025")


# ---------------------------------------------------------------------------
# Dispatch helpers
# ---------------------------------------------------------------------------


def test_build_command_table_indexes_by_name(command_spec_iterable):
    table = cli.build_command_table(command_spec_iterable)
    assert list(table) == ["alpha", "beta", "gamma"]


def test_build_command_table_rejects_duplicates(command_spec_iterable):
    with pytest.raises(ValueError):
        cli.build_command_table([*command_spec_iterable, command_spec_iterable[0]])


def test_dispatch_command_calls_executor(context, command_spec_iterable):
    table = cli.build_command_table(command_spec_iterable)
    assert cli.dispatch_command(context, argparse.Namespace(command="beta"), table) == 0


def test_dispatch_command_unknown_raises(context, command_spec_iterable):
    table = cli.build_command_table(command_spec_iterable)
    with pytest.raises(KeyError):
        cli.dispatch_command(context, argparse.Namespace(command="delta"), table)


def test_translate_sale_builds_decimal_command():
    args = argparse.Namespace(item_id="1", quantity="2.5", price="130", customer="Bob")
    command = cli.translate_sale(args)

    assert command == core_logic.SaleCommand(
        item_id="1",
        quantity=Decimal("2.5"),
        price_per_unit=Decimal("130"),
        customer_name="Bob",
    )


def test_translate_purchase_rejects_non_numeric_quantity():
    args = argparse.Namespace(item_id="1", quantity="lots", price="1", supplier="Acme")
    with pytest.raises(core_logic.InvalidInputError):
        cli.translate_purchase(args)


@pytest.mark.parametrize(
    "error, expected",
    [
        (core_logic.ItemNotFoundError("x"), 2),
        (cli.InsufficientStockError("x"), 2),
        (core_logic.InvalidInputError("x"), 2),
        (FileNotFoundError("x"), 3),
        (RuntimeError("x"), 1),
        (KeyError("x"), 1),
    ],
)
def test_handle_cli_error_maps_exit_codes(error, expected):
    assert cli.handle_cli_error(error) == expected


# ---------------------------------------------------------------------------
# Over-sell policy
# ---------------------------------------------------------------------------


def test_ensure_stock_available_refuses_oversell(context):
    """Ponni Rice has 80 kg, so a sale of 100 is refused."""

    command = core_logic.SaleCommand(item_id="4", quantity=Decimal("100"), price_per_unit=Decimal("55"))
    with pytest.raises(cli.InsufficientStockError, match="Available: 80 kg"):
        cli.ensure_stock_available(context, command)


def test_ensure_stock_available_counts_edited_sale(context):
    sale = core_logic.record_sale(
        context,
        core_logic.SaleCommand(item_id="4", quantity=Decimal("50"), price_per_unit=Decimal("55")),
    )
    command = core_logic.SaleCommand(item_id="4", quantity=Decimal("80"), price_per_unit=Decimal("55"))

    cli.ensure_stock_available(context, command, editing=sale)
    with pytest.raises(cli.InsufficientStockError):
        cli.ensure_stock_available(context, command)


def test_session_refuses_oversell_without_flag(context, caplog):
    with caplog.at_level(logging.ERROR):
        exit_code = _run_lines(context, "sale --item-id 4 --quantity 100 --price 55")

    assert exit_code == 2
    assert context.catalog["4"].quantity == Decimal("80")
    assert len(context.ledger) == 0
    assert "Insufficient stock! Available: 80 kg" in caplog.text


def test_session_allows_oversell_with_flag(context):
    exit_code = _run_lines(context, "sale --item-id 4 --quantity 100 --price 55 --allow-oversell")

    assert exit_code == 0
    assert context.catalog["4"].quantity == Decimal("-20")


# ---------------------------------------------------------------------------
# Session loop
# ---------------------------------------------------------------------------


def test_session_runs_writes_against_one_context(context, capsys):
    exit_code = _run_lines(
        context,
        "# opening stock check",
        "",
        "purchase --item-id 1 --quantity 100 --price 120 --supplier 'Acme Traders'",
        "sale --item-id 1 --quantity 50 --price 130 --customer Bob",
        "sale --item-id 2 --quantity 10 --price 100",
        "valuation",
    )

    assert exit_code == 0
    assert context.catalog["1"].quantity == Decimal("550")
    assert context.catalog["2"].quantity == Decimal("290")
    out = capsys.readouterr().out
    assert "Recorded purchase P" in out
    assert "Acme Traders" in out
    assert "Walk-in Customer" in out
    assert "Total stock value:" in out


def test_session_edit_and_delete_by_transaction_id(context):
    sale = core_logic.record_sale(
        context,
        core_logic.SaleCommand(item_id="1", quantity=Decimal("50"), price_per_unit=Decimal("130")),
    )
    purchase = core_logic.record_purchase(
        context,
        core_logic.PurchaseCommand(
            item_id="3", quantity=Decimal("10"), price_per_unit=Decimal("60"), supplier_name="Acme"
        ),
    )

    exit_code = _run_lines(
        context,
        f"edit-sale --transaction-id {sale.transaction_id} --item-id 2 --quantity 50 --price 130",
        f"delete-purchase --transaction-id {purchase.transaction_id}",
    )

    assert exit_code == 0
    assert context.catalog["1"].quantity == Decimal("500")
    assert context.catalog["2"].quantity == Decimal("250")
    assert context.catalog["3"].quantity == Decimal("450")
    assert core_logic.find_reconciliation_drift(context) == {}


def test_session_continues_after_failures(context):
    exit_code = _run_lines(
        context,
        "delete-sale --transaction-id S-missing",
        "purchase --item-id 1 --quantity 5",
        "purchase --item-id 1 --quantity 5 --price 10 --supplier Acme",
    )

    assert exit_code == 2
    assert context.catalog["1"].quantity == Decimal("505")


def test_session_reports_unknown_item_and_bad_number(context):
    assert _run_lines(context, "purchase --item-id 99 --quantity 5 --price 1 --supplier A") == 2
    assert _run_lines(context, "purchase --item-id 1 --quantity five --price 1 --supplier A") == 2
    assert len(context.ledger) == 0


def test_session_stops_at_quit(context):
    exit_code = _run_lines(
        context,
        "purchase --item-id 1 --quantity 5 --price 10 --supplier Acme",
        "quit",
        "purchase --item-id 1 --quantity 5 --price 10 --supplier Acme",
    )

    assert exit_code == 0
    assert len(context.ledger) == 1


# ---------------------------------------------------------------------------
# Report formatting
# ---------------------------------------------------------------------------


def test_format_stock_lines_flags_low_items(context):
    lines = cli.format_stock_lines(core_logic.list_stock(context))

    assert len(lines) == 6
    assert lines[3].endswith("LOW")
    assert "Ponni Rice (Boiled)" in lines[3]
    assert not lines[0].endswith("LOW")


def test_format_summary_lines_include_totals(context):
    core_logic.record_sale(
        context,
        core_logic.SaleCommand(item_id="1", quantity=Decimal("50"), price_per_unit=Decimal("130")),
    )
    summary = reporting.daily_summary(context)

    lines = cli.format_summary_lines(summary, walk_in_label="Counter")

    assert lines[0] == f"Daily summary for {summary.day.isoformat()}"
    assert any("Counter" in line for line in lines)
    assert "Total sales:     6500 (50 units)" in lines
    assert "Low stock items: 1" in lines


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def test_main_stock_report_with_config(config_file, capsys):
    assert cli.main(["--config", str(config_file), "stock"]) == 0

    out = capsys.readouterr().out
    assert "Basmati Rice (Premium)" in out
    assert "Jasmine Rice (Premium)" in out


def test_main_falls_back_to_default_catalog(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)

    assert cli.main(["low-stock"]) == 0

    out = capsys.readouterr().out
    assert "1 item(s) at or below reorder level" in out
    assert "Ponni Rice (Boiled)" in out


def test_main_missing_config_returns_file_not_found_code(tmp_path):
    assert cli.main(["--config", str(tmp_path / "absent.ini"), "stock"]) == 3


def test_main_schema_mismatch_fails(config_factory):
    bundle = config_factory(schema_version="0.9")
    assert cli.main(["--config", str(bundle.config_path), "stock"]) == 1


def test_main_session_script_then_export(config_file, tmp_path, capsys):
    report = tmp_path / "out" / "report.xlsx"
    script = tmp_path / "commands.txt"
    script.write_text(
        "purchase --item-id 4 --quantity 40 --price 50 --supplier Acme\n"
        "sale --item-id 4 --quantity 30 --price 60\n"
        "low-stock\n"
        f"export --output '{report}'\n",
        encoding="utf-8",
    )

    exit_code = cli.main(["--config", str(config_file), "session", "--script", str(script)])

    assert exit_code == 0
    out = capsys.readouterr().out
    assert "1 item(s) at or below reorder level" in out
    assert "Exported summary for" in out
    workbook = openpyxl.load_workbook(report)
    totals = {metric: value for metric, value in workbook["Totals"].iter_rows(min_row=2, values_only=True)}
    assert totals["PurchaseTotal"] == 2000
    assert totals["SaleTotal"] == 1800
    assert totals["TransactionCount"] == 2


def test_main_session_script_missing_file(config_file, tmp_path):
    assert cli.main(["--config", str(config_file), "session", "--script", str(tmp_path / "nope.txt")]) == 3


def test_session_survives_out_of_range_quantity(context):
    exit_code = _run_lines(
        context,
        "purchase --item-id 1 --quantity 1e999999 --price 120 --supplier Acme",
        "purchase --item-id 1 --quantity 5 --price 120 --supplier Acme",
    )

    assert exit_code == 2
    assert context.catalog["1"].quantity == Decimal("505")
    assert len(context.ledger) == 1
