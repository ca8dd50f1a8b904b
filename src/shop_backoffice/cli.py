"""Command-line entry points for the shop back office.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into calls on the business layer, and printing the
results. Keeping the CLI thin ensures the same parser configuration can be
reused by tests, scripts, or any alternative front-end.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log
from .constants import DeliveryStatus, ExpenseCategory, FILTER_ALL, PaymentMethod, PaymentStatus
from .exceptions import CommerceError
from .inventory import classify, price_range, total_stock
from .reporting import (
    delivery_status_breakdown,
    expense_totals_by_category,
    format_money,
    payment_status_breakdown,
)
from .orders import order_matches


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    writes: bool = False


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="shop-cli",
        description="Command-line tools for the Shop back office workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to an upward search from the working directory).",
    )
    parser.add_argument(
        "--owner",
        default=None,
        help="Owner id to scope the command to (defaults to [Defaults] OwnerID).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as restocks and status edits."""
    specs = {
        "restock": register_restock_command(subparsers),
        "set-order-status": register_set_order_status_command(subparsers),
        "add-expense": register_add_expense_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as listings and reports."""
    specs = {
        "products": register_products_command(subparsers),
        "low-stock": register_low_stock_command(subparsers),
        "orders": register_orders_command(subparsers),
        "customers": register_customers_command(subparsers),
        "expenses": register_expenses_command(subparsers),
        "summary": register_summary_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Expected YYYY-MM-DD, got '{value}'") from exc


def _money(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"Expected a monetary amount, got '{value}'") from exc


def _add_date_range(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--start", type=_iso_date, default=None, help="Inclusive start date (YYYY-MM-DD).")
    parser.add_argument("--end", type=_iso_date, default=None, help="Inclusive end date (YYYY-MM-DD).")


# ---------------------------------------------------------------------------
# Write command registrations
# ---------------------------------------------------------------------------


def register_restock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``restock``."""
    name = "restock"
    help_text = "Adjust a variant's stock (negative quantities write stock off)."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--variant", type=int, default=0, help="Variant index (default 0).")
        parser.add_argument("--quantity", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_restock, writes=True)


def register_set_order_status_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``set-order-status``."""
    name = "set-order-status"
    help_text = "Edit an order's payment/delivery status, payment method, or notes."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--order-id", required=True)
        parser.add_argument("--payment-status", choices=[member.value for member in PaymentStatus], default=None)
        parser.add_argument("--delivery-status", choices=[member.value for member in DeliveryStatus], default=None)
        parser.add_argument("--payment-method", choices=[member.value for member in PaymentMethod], default=None)
        parser.add_argument("--notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_set_order_status, writes=True)


def register_add_expense_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-expense``."""
    name = "add-expense"
    help_text = "Record a business expense."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--title", required=True)
        parser.add_argument("--amount", type=_money, required=True)
        parser.add_argument("--category", choices=[member.value for member in ExpenseCategory], required=True)
        parser.add_argument("--date", dest="when", type=_iso_date, default=None)
        parser.add_argument("--notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_expense, writes=True)


# ---------------------------------------------------------------------------
# Read command registrations
# ---------------------------------------------------------------------------


def register_products_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``products``."""
    name = "products"
    help_text = "List products with stock and price range."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default="")
        parser.add_argument("--category", default=FILTER_ALL)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_products_report)


def register_low_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``low-stock``."""
    name = "low-stock"
    help_text = "List products below the low-stock threshold."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_low_stock_report)


def register_orders_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``orders``."""
    name = "orders"
    help_text = "List orders with status breakdowns."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default="")
        parser.add_argument("--payment-status", default=FILTER_ALL)
        _add_date_range(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_orders_report)


def register_customers_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``customers``."""
    name = "customers"
    help_text = "List customers with order counts and spend."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default="")
        parser.add_argument("--limit", type=int, default=None, help="Show only the most recent customers")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_customers_report)


def register_expenses_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``expenses``."""
    name = "expenses"
    help_text = "List expenses and totals by category."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--category", default=FILTER_ALL)
        _add_date_range(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_expenses_report)


def register_summary_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``summary``."""
    name = "summary"
    help_text = "Display revenue, expenses, profit, and stock value."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_date_range(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_summary_report)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve and validate the runtime context for CLI operations."""
    context = core_logic.load_runtime_context(config_path)
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


def _owner(args: argparse.Namespace) -> Optional[str]:
    return getattr(args, "owner", None)


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def run_restock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Apply a stock adjustment via the BLL."""
    product = core_logic.adjust_variant_stock(
        context,
        args.product_id,
        args.variant,
        args.quantity,
        owner_id=_owner(args),
    )
    variant = product.variants[args.variant]
    print(f"{product.name} [{variant.label or args.variant}]: {variant.stock_quantity} in stock")
    return 0


def run_set_order_status(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Apply an admin order edit via the BLL."""
    order = core_logic.update_order(
        context,
        args.order_id,
        owner_id=_owner(args),
        payment_status=args.payment_status,
        delivery_status=args.delivery_status,
        payment_method=args.payment_method,
        notes=args.notes,
    )
    print(
        f"{order.order_id}: payment={order.payment_status.value} "
        f"delivery={order.delivery_status.value} method={order.payment_method.value}"
    )
    return 0


def run_add_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Record an expense via the BLL."""
    expense = core_logic.record_expense(
        context,
        title=args.title,
        amount=args.amount,
        category=args.category,
        when=args.when or date.today(),
        notes=args.notes,
        owner_id=_owner(args),
    )
    print(f"Recorded {expense.expense_id}: {expense.title} {format_money(expense.amount)}")
    return 0


def run_products_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the filtered product listing."""
    threshold = context.settings.low_stock_threshold
    products = core_logic.list_products(
        context, _owner(args), search_term=args.search, category=args.category
    )
    for product in products:
        low, high = price_range(product)
        prices = format_money(low) if low == high else f"{format_money(low)} - {format_money(high)}"
        print(f"{product.product_id}  {product.name}  [{product.category}]  stock={total_stock(product)}  {prices}")
        for index, variant in enumerate(product.variants):
            level = classify(variant, threshold).value
            print(f"    [{index}] {variant.label or '-'}  qty={variant.stock_quantity}  {level}")
    print(f"{len(products)} product(s)")
    return 0


def run_low_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print products below the configured threshold."""
    products = core_logic.list_low_stock_products(context, _owner(args))
    for product in products:
        print(f"{product.product_id}  {product.name}  stock={total_stock(product)}")
    print(f"{len(products)} product(s) below {context.settings.low_stock_threshold} units")
    return 0


def run_orders_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print orders and their status breakdowns."""
    orders = core_logic.list_orders(context, _owner(args), start=args.start, end=args.end)
    shown = [order for order in orders if order_matches(order, args.search, args.payment_status)]
    for order in shown:
        print(
            f"{order.order_id}  {order.created_at:%Y-%m-%d}  {order.customer.name}  "
            f"{format_money(order.total)}  {order.payment_status.value}/{order.delivery_status.value}"
        )
    print(f"{len(shown)} of {len(orders)} order(s)")
    _print_counts("Payment", payment_status_breakdown(orders))
    _print_counts("Delivery", delivery_status_breakdown(orders))
    return 0


def run_customers_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print one line per customer, most recent buyer first."""
    customers = core_logic.list_customers(context, _owner(args), search=args.search, limit=args.limit)
    for customer in customers:
        print(
            f"{customer.name}  {customer.contact}  orders={customer.total_orders}  "
            f"spent={format_money(customer.total_spent)}  avg={format_money(customer.average_order_value)}  "
            f"last={customer.last_order_at:%Y-%m-%d}"
        )
    print(f"{len(customers)} customer(s)")
    return 0


def run_expenses_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print expenses with per-category totals."""
    expenses = core_logic.list_expenses(
        context, _owner(args), category=args.category, start=args.start, end=args.end
    )
    for expense in expenses:
        print(f"{expense.date}  {expense.category.value}  {expense.title}  {format_money(expense.amount)}")
    for category, amount in sorted(expense_totals_by_category(expenses).items()):
        print(f"  {category}: {format_money(amount)}")
    print(f"Total: {format_money(sum((e.amount for e in expenses), Decimal('0')))}")
    return 0


def run_summary_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the financial summary."""
    summary = core_logic.calculate_financial_summary(context, _owner(args), start=args.start, end=args.end)
    for key, value in summary.items():
        rendered = format_money(value) if isinstance(value, Decimal) else value
        print(f"{key.replace('_', ' ').title()}: {rendered}")
    return 0


def _print_counts(title: str, counts: Mapping[str, Any]) -> None:
    print(f"{title}: " + ", ".join(f"{key}={value}" for key, value in counts.items()))


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, CommerceError):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and command_table[args.command].writes:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
