"""Integration tests describing the end-to-end shop back office workflows.

These scenarios run the business logic layer against a real workbook on disk
so the data access layer and the commerce core are exercised together.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from shop_backoffice import cli, core_logic, data_manager
from shop_backoffice.constants import DeliveryStatus, PaymentStatus
from shop_backoffice.exceptions import NegativeStockError
from shop_backoffice.inventory import Category, Product, Variant, total_stock
from shop_backoffice.orders import Customer, add_admin_line


def _persist_and_reload(context: core_logic.RuntimeContext) -> core_logic.RuntimeContext:
    core_logic.persist_context(context)
    return core_logic.refresh_context(context)


def test_storefront_checkout_flow(runtime_context, shirt, mug, customer):
    """Stock the catalog, fill a cart, check out, and report."""

    context = runtime_context
    core_logic.add_product(context, shirt)
    core_logic.add_product(context, mug)
    context = _persist_and_reload(context)

    cart = core_logic.load_session_cart(context, "web-1")
    cart = core_logic.add_to_cart(context, cart, "P-SHIRT", 0)
    cart = core_logic.add_to_cart(context, cart, "P-SHIRT", 0)
    cart = core_logic.add_to_cart(context, cart, "P-MUG")
    core_logic.save_session_cart(context, "web-1", cart)

    # A new request restores the cart from the session cache.
    cart = core_logic.load_session_cart(context, "web-1")
    assert cart.item_count == 3

    order, cart = core_logic.place_storefront_order(
        context,
        cart,
        customer,
        "card",
        timestamp=datetime(2025, 3, 1, 10, 0, tzinfo=UTC),
    )
    assert cart.items == ()
    assert order.subtotal == Decimal("49.99") * 2 + Decimal("21.99")
    assert order.total == order.subtotal + order.tax

    context = _persist_and_reload(context)
    stock = {product.product_id: total_stock(product) for product in core_logic.list_products(context)}
    assert stock == {"P-SHIRT": 10, "P-MUG": 3}

    [stored] = core_logic.list_orders(context)
    assert stored.order_id == order.order_id
    assert stored.payment_status is PaymentStatus.PENDING
    assert stored.items[0].variant_index == 0

    summary = core_logic.calculate_financial_summary(context)
    assert summary["order_count"] == 1
    assert summary["pending_orders"] == 1
    assert summary["total_revenue"] == order.total
    assert summary["low_stock_products"] == 1


def test_oversell_is_rejected_and_nothing_is_written(runtime_context, mug, customer):
    context = runtime_context
    core_logic.add_product(context, mug)

    lines = ()
    for _ in range(5):
        lines = add_admin_line(lines, mug, 0)

    with pytest.raises(NegativeStockError):
        core_logic.place_admin_order(context, lines, customer, "cash")

    assert core_logic.list_orders(context) == []
    assert total_stock(core_logic.get_product(context, "P-MUG")) == 4


def test_admin_order_status_edits_persist(runtime_context, shirt, customer):
    context = runtime_context
    core_logic.add_product(context, shirt)
    order = core_logic.place_admin_order(context, add_admin_line((), shirt, 1), customer, "eft")
    assert order.payment_status is PaymentStatus.PROCESSING

    core_logic.update_order(context, order.order_id, payment_status="paid", delivery_status="in_transit")
    context = _persist_and_reload(context)

    stored = core_logic.get_order(context, order.order_id)
    assert stored.payment_status is PaymentStatus.PAID
    assert stored.delivery_status is DeliveryStatus.IN_TRANSIT
    assert stored.total == order.total


def test_legacy_status_cells_do_not_break_reports(runtime_context, mug, customer):
    context = runtime_context
    core_logic.add_product(context, mug)
    order = core_logic.place_admin_order(context, add_admin_line((), mug, 0), customer, "eft")
    data_manager.update_order(
        context.workbook, order.order_id, field_values={"PaymentStatus": "confirmed", "PaymentMethod": "transfer"}
    )
    context = _persist_and_reload(context)

    stored = core_logic.get_order(context, order.order_id)
    assert stored.payment_status is PaymentStatus.PAID
    summary = core_logic.calculate_financial_summary(context)
    assert summary["order_count"] == 1
    assert summary["pending_orders"] == 0


def test_customer_roll_up_from_stored_orders(runtime_context, shirt, customer):
    context = runtime_context
    core_logic.add_product(context, shirt)
    walk_in = Customer(name="Walk-in", phone="0110000000")
    for buyer, day in ((customer, 1), (walk_in, 2), (customer, 3)):
        core_logic.place_admin_order(
            context,
            add_admin_line((), shirt, 0),
            buyer,
            "cash",
            timestamp=datetime(2025, 5, day, 9, 0, tzinfo=UTC),
        )
    context = _persist_and_reload(context)

    customers = core_logic.list_customers(context)
    assert [entry.name for entry in customers] == ["Thandi Mokoena", "Walk-in"]
    assert customers[0].total_orders == 2
    assert customers[0].total_spent == 2 * customers[1].total_spent
    assert customers[0].average_order_value == customers[1].total_spent

    assert [entry.name for entry in core_logic.list_customers(context, search="0110")] == ["Walk-in"]
    assert len(core_logic.list_customers(context, limit=1)) == 1


def test_restock_and_categories_flow(runtime_context, mug):
    context = runtime_context
    core_logic.add_product(context, mug)
    core_logic.add_category(context, Category(name="Kitchen", owner_id=context.settings.owner_id))
    core_logic.adjust_variant_stock(context, "P-MUG", 0, 6, when=date(2025, 4, 2))
    context = _persist_and_reload(context)

    product = core_logic.get_product(context, "P-MUG")
    assert total_stock(product) == 10
    assert product.last_restocked == date(2025, 4, 2)
    assert core_logic.list_low_stock_products(context) == []
    assert [c.name for c in core_logic.list_categories(context)] == ["General", "Kitchen"]


def test_expenses_feed_profit(runtime_context, mug, customer):
    context = runtime_context
    core_logic.add_product(context, mug)
    core_logic.place_admin_order(
        context,
        add_admin_line((), mug, 0),
        customer,
        "cash",
        timestamp=datetime(2025, 1, 10, 9, 0, tzinfo=UTC),
    )
    core_logic.record_expense(
        context, title="Market stall", amount=Decimal("5.00"), category="Rent", when=date(2025, 1, 11)
    )
    core_logic.record_expense(
        context, title="Posters", amount=Decimal("2.00"), category="Marketing", when=date(2025, 2, 1)
    )
    context = _persist_and_reload(context)

    january = core_logic.calculate_financial_summary(context, start=date(2025, 1, 1), end=date(2025, 1, 31))
    assert january["total_expenses"] == Decimal("5.00")
    assert january["profit"] == january["total_revenue"] - Decimal("5.00")
    assert len(core_logic.list_expenses(context, category="Marketing")) == 1


def test_cli_restock_and_summary_flow(config_factory, capsys):
    """The CLI should persist writes and report from the saved workbook."""

    bundle = config_factory(owner_id="owner-cli")
    context = core_logic.load_runtime_context(bundle.config_path)
    core_logic.add_product(
        context,
        Product(
            product_id="P-CLI",
            owner_id="owner-cli",
            name="Canvas Tote",
            variants=(Variant(selling_price=Decimal("80.00"), stock_price=Decimal("30.00"), stock_quantity=1),),
        ),
    )
    core_logic.persist_context(context)

    base = ["--config", str(bundle.config_path)]
    assert cli.main([*base, "restock", "--product-id", "P-CLI", "--quantity", "9"]) == 0
    assert cli.main([*base, "add-expense", "--title", "Bags", "--amount", "120", "--category", "Inventory"]) == 0
    assert cli.main([*base, "restock", "--product-id", "P-CLI", "--quantity", "-50"]) == 2
    capsys.readouterr()

    assert cli.main([*base, "summary"]) == 0
    output = capsys.readouterr().out
    assert "Stock Value: R800.00" in output
    assert "Total Expenses: R120.00" in output

    assert cli.main([*base, "products"]) == 0
    assert "stock=10" in capsys.readouterr().out


def test_cli_missing_config_returns_exit_code_3(tmp_path):
    assert cli.main(["--config", str(tmp_path / "absent.ini"), "summary"]) == 3
