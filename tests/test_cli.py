"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Mapping
from unittest.mock import Mock

import pytest

from shop_backoffice import cli, core_logic
from shop_backoffice.exceptions import NegativeStockError, NotFoundError, ValidationError
from shop_backoffice.reporting import CustomerSummary


WRITE_COMMANDS = {
    "restock",
    "set-order-status",
    "add-expense",
}

READ_COMMANDS = {
    "products",
    "low-stock",
    "orders",
    "customers",
    "expenses",
    "summary",
}


def _registered_choices(parser: argparse.ArgumentParser) -> set[str]:
    for action in parser._actions:
        if isinstance(action, argparse._SubParsersAction):
            return set(action.choices)
    return set()


def _parse(register, argv):
    parser = argparse.ArgumentParser(prog="cli")
    subparsers = parser.add_subparsers(dest="command")
    spec = register(subparsers)
    spec.register(subparsers)
    return spec, parser.parse_args(argv)


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    parser = cli.build_parser()
    assert isinstance(parser, argparse.ArgumentParser)
    assert parser.prog == "shop-cli"
    assert "Shop" in (parser.description or "")


def test_configure_subcommands_registers_every_command(cli_parser):
    command_table = cli.configure_subcommands(cli_parser)
    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS
    assert _registered_choices(cli_parser) == WRITE_COMMANDS | READ_COMMANDS


def test_write_commands_are_flagged_for_persistence(subparsers_action):
    specs = cli.register_write_commands(subparsers_action)
    assert set(specs) == WRITE_COMMANDS
    assert all(spec.writes for spec in specs.values())


def test_read_commands_do_not_persist(subparsers_action):
    specs = cli.register_read_commands(subparsers_action)
    assert set(specs) == READ_COMMANDS
    assert not any(spec.writes for spec in specs.values())


# ---------------------------------------------------------------------------
# Command registrations
# ---------------------------------------------------------------------------


def test_register_restock_command_configures_arguments():
    spec, namespace = _parse(
        cli.register_restock_command,
        ["restock", "--product-id", "P-SHIRT", "--variant", "1", "--quantity", "-2"],
    )
    assert spec.name == "restock"
    assert namespace.product_id == "P-SHIRT"
    assert namespace.variant == 1
    assert namespace.quantity == -2


def test_register_set_order_status_command_limits_choices():
    _, namespace = _parse(
        cli.register_set_order_status_command,
        ["set-order-status", "--order-id", "ORD-1", "--payment-status", "paid"],
    )
    assert namespace.payment_status == "paid"
    assert namespace.delivery_status is None

    with pytest.raises(SystemExit):
        _parse(
            cli.register_set_order_status_command,
            ["set-order-status", "--order-id", "ORD-1", "--payment-status", "refunded"],
        )


def test_register_add_expense_command_parses_money_and_date():
    _, namespace = _parse(
        cli.register_add_expense_command,
        ["add-expense", "--title", "Rent", "--amount", "4500.00", "--category", "Rent", "--date", "2025-02-01"],
    )
    assert namespace.amount == Decimal("4500.00")
    assert namespace.when == date(2025, 2, 1)


def test_register_add_expense_command_rejects_bad_amount():
    with pytest.raises(SystemExit):
        _parse(
            cli.register_add_expense_command,
            ["add-expense", "--title", "Rent", "--amount", "lots", "--category", "Rent"],
        )


def test_register_summary_command_accepts_date_range():
    _, namespace = _parse(cli.register_summary_command, ["summary", "--start", "2025-01-01"])
    assert namespace.start == date(2025, 1, 1)
    assert namespace.end is None


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def test_dispatch_command_invokes_executor(context):
    execute = Mock(return_value=0)
    spec = cli.CommandSpec("catalog-test", "help", lambda subparsers: subparsers.add_parser("catalog-test"), execute)
    args = argparse.Namespace(command="catalog-test")

    assert cli.dispatch_command(context, args, {"catalog-test": spec}) == 0
    execute.assert_called_once_with(context, args)


def test_dispatch_command_handles_unknown_commands(context):
    with pytest.raises(KeyError):
        cli.dispatch_command(context, argparse.Namespace(command="unknown"), {})


def test_build_command_table_indexes_specs(command_spec_iterable):
    table = cli.build_command_table(command_spec_iterable)
    assert set(table) == {spec.name for spec in command_spec_iterable}


def test_build_command_table_rejects_duplicates(command_spec_iterable):
    with pytest.raises(ValueError):
        cli.build_command_table([*command_spec_iterable, command_spec_iterable[0]])


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def test_run_summary_report_prints_money(monkeypatch, context, capsys):
    summary = {"total_revenue": Decimal("140.2655"), "order_count": 1}
    calculate = Mock(return_value=summary)
    monkeypatch.setattr(cli.core_logic, "calculate_financial_summary", calculate)

    args = argparse.Namespace(command="summary", owner=None, start=None, end=None)
    assert cli.run_summary_report(context, args) == 0

    output = capsys.readouterr().out
    assert "Total Revenue: R140.27" in output
    assert "Order Count: 1" in output
    calculate.assert_called_once_with(context, None, start=None, end=None)


def test_run_customers_report_prints_each_customer(monkeypatch, context, capsys):
    summary = CustomerSummary(
        name="Thandi Mokoena",
        contact="0821234567",
        total_orders=2,
        total_spent=Decimal("300.00"),
        last_order_at=datetime(2025, 3, 1, 10, 0, tzinfo=UTC),
    )
    list_customers = Mock(return_value=[summary])
    monkeypatch.setattr(cli.core_logic, "list_customers", list_customers)

    _, args = _parse(cli.register_customers_command, ["customers", "--search", "thandi", "--limit", "5"])
    args.owner = None
    assert cli.run_customers_report(context, args) == 0

    output = capsys.readouterr().out
    assert "orders=2" in output
    assert "avg=R150.00" in output
    assert "last=2025-03-01" in output
    list_customers.assert_called_once_with(context, None, search="thandi", limit=5)


def test_run_restock_passes_owner(monkeypatch, context, shirt, capsys):
    adjust = Mock(return_value=shirt)
    monkeypatch.setattr(cli.core_logic, "adjust_variant_stock", adjust)

    args = argparse.Namespace(command="restock", owner="owner-test", product_id="P-SHIRT", variant=0, quantity=3)
    assert cli.run_restock(context, args) == 0

    adjust.assert_called_once_with(context, "P-SHIRT", 0, 3, owner_id="owner-test")
    assert "10 in stock" in capsys.readouterr().out


# ---------------------------------------------------------------------------
# Error handling & persistence
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (ValidationError("bad"), 2),
        (NegativeStockError("short", available=1, requested=2), 2),
        (NotFoundError("missing"), 2),
        (FileNotFoundError("config.ini"), 3),
        (RuntimeError("schema"), 1),
    ],
)
def test_handle_cli_error_returns_exit_code(error: Exception, expected: int, caplog: pytest.LogCaptureFixture):
    caplog.set_level("ERROR")
    assert cli.handle_cli_error(error) == expected
    assert caplog.records


def test_persist_workbook_saves_changes(context, monkeypatch):
    called = {}

    def fake_persist(ctx: core_logic.RuntimeContext) -> None:
        called["context"] = ctx

    monkeypatch.setattr(cli.core_logic, "persist_context", fake_persist)
    cli.persist_workbook(context)
    assert called["context"] is context


def test_persist_workbook_wraps_permission_errors(context, monkeypatch):
    monkeypatch.setattr(cli.core_logic, "persist_context", Mock(side_effect=PermissionError("locked")))
    with pytest.raises(RuntimeError):
        cli.persist_workbook(context)


def _stub_parser(**values) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stub")
    parser.parse_args = Mock(return_value=argparse.Namespace(config=None, owner=None, **values))
    return parser


def _patch_main(monkeypatch, context, command_table: Mapping[str, cli.CommandSpec], parser):
    monkeypatch.setattr(cli, "build_parser", lambda: parser)
    monkeypatch.setattr(cli, "configure_subcommands", lambda _: command_table)
    monkeypatch.setattr(cli, "load_runtime_context", lambda path=None: context)


def test_main_persists_after_successful_write(monkeypatch, context):
    table = {"restock": cli.CommandSpec("restock", "help", lambda _: None, lambda *_: 0, writes=True)}
    _patch_main(monkeypatch, context, table, _stub_parser(command="restock"))
    persist = Mock()
    monkeypatch.setattr(cli, "persist_workbook", persist)

    assert cli.main([]) == 0
    persist.assert_called_once_with(context)


def test_main_skips_persist_for_reads(monkeypatch, context):
    table = {"summary": cli.CommandSpec("summary", "help", lambda _: None, lambda *_: 0)}
    _patch_main(monkeypatch, context, table, _stub_parser(command="summary"))
    persist = Mock()
    monkeypatch.setattr(cli, "persist_workbook", persist)

    assert cli.main([]) == 0
    persist.assert_not_called()


def test_main_handles_domain_errors(monkeypatch, context):
    def explode(*_: object) -> int:
        raise NegativeStockError("short", available=0, requested=1)

    table = {"restock": cli.CommandSpec("restock", "help", lambda _: None, explode, writes=True)}
    _patch_main(monkeypatch, context, table, _stub_parser(command="restock"))
    persist = Mock()
    monkeypatch.setattr(cli, "persist_workbook", persist)

    assert cli.main([]) == 2
    persist.assert_not_called()
