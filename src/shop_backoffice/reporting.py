"""Financial roll-ups over products, orders, and expenses.

Every aggregation here is a pure reduction over read-only collections. None of
them raise on empty input: sums degrade to zero and averages guard against
division by zero.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type

from .constants import (
    CURRENCY_SYMBOL,
    DEFAULT_LOW_STOCK_THRESHOLD,
    FILTER_ALL,
    DeliveryStatus,
    ExpenseCategory,
    PaymentStatus,
)
from .exceptions import ValidationError
from .inventory import Product, is_low_stock, product_cost_value, product_stock_value
from .orders import Order

CENT = Decimal("0.01")
ZERO = Decimal("0")
UNKNOWN_STATUS = "unknown"


@dataclass(frozen=True)
class Expense:
    """A business expense; unrelated to orders and products."""

    expense_id: str
    owner_id: str
    title: str
    amount: Decimal
    category: ExpenseCategory
    date: date
    notes: Optional[str] = None


def validate_expense(expense: Expense) -> None:
    """Require a title, a positive amount, and a known category."""
    if not expense.title.strip():
        raise ValidationError("Expense title is required")
    if expense.amount <= 0:
        raise ValidationError("Expense amount must be positive")
    if not isinstance(expense.category, ExpenseCategory):
        raise ValidationError(f"Unsupported expense category: {expense.category!r}")


def quantize_money(amount: Decimal) -> Decimal:
    """Round to cents using half-up rounding."""
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(amount: Decimal) -> str:
    return f"{CURRENCY_SYMBOL}{quantize_money(amount):,.2f}"


# ---------------------------------------------------------------------------
# Inventory roll-ups
# ---------------------------------------------------------------------------


def total_stock_value(products: Iterable[Product]) -> Decimal:
    return sum((product_stock_value(product) for product in products), ZERO)


def total_stock_cost_value(products: Iterable[Product]) -> Decimal:
    return sum((product_cost_value(product) for product in products), ZERO)


def low_stock_product_count(products: Iterable[Product], threshold: int = DEFAULT_LOW_STOCK_THRESHOLD) -> int:
    """Count products whose summed variant stock is below ``threshold``.

    The dashboard labels this figure "categories low in stock", but each
    product is counted once regardless of its category.
    """
    return sum(1 for product in products if is_low_stock(product, threshold))


# ---------------------------------------------------------------------------
# Order roll-ups
# ---------------------------------------------------------------------------


def total_revenue(orders: Iterable[Order]) -> Decimal:
    """Sum of order totals, whatever their payment status."""
    return sum((order.total for order in orders), ZERO)


def average_order_value(orders: Iterable[Order]) -> Decimal:
    """Mean order total; ``0`` for an empty collection."""
    totals = [order.total for order in orders]
    if not totals:
        return ZERO
    return sum(totals, ZERO) / len(totals)


def orders_between(orders: Iterable[Order], start: Optional[date] = None, end: Optional[date] = None) -> List[Order]:
    """Keep orders whose creation date falls in the inclusive range."""
    return [order for order in orders if _in_range(order.created_at.date(), start, end)]


def pending_order_count(orders: Iterable[Order]) -> int:
    """Number of orders whose payment is still ``pending``."""
    return sum(1 for order in orders if _status_key(order.payment_status) == PaymentStatus.PENDING.value)


def _status_key(value: Any) -> str:
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, str) and value.strip():
        return value.strip().lower()
    return UNKNOWN_STATUS


def _read_field(record: Any, name: str) -> Any:
    if isinstance(record, dict):
        return record.get(name)
    return getattr(record, name, None)


def _breakdown(records: Iterable[Any], field_name: str, enum_cls: Type[Enum]) -> Dict[str, int]:
    counts: Dict[str, int] = {member.value: 0 for member in enum_cls}
    for record in records:
        key = _status_key(_read_field(record, field_name))
        counts[key] = counts.get(key, 0) + 1
    return counts


def payment_status_breakdown(orders: Iterable[Any]) -> Dict[str, int]:
    """Count orders per payment status.

    Orders may be :class:`Order` values or raw mappings holding a
    ``payment_status`` string. Matching is case-insensitive; blank or
    non-string values are counted under ``"unknown"``. Every known status is
    present in the result, even with a count of zero.
    """
    return _breakdown(orders, "payment_status", PaymentStatus)


def delivery_status_breakdown(orders: Iterable[Any]) -> Dict[str, int]:
    """Delivery-status counterpart of :func:`payment_status_breakdown`."""
    return _breakdown(orders, "delivery_status", DeliveryStatus)


# ---------------------------------------------------------------------------
# Expense roll-ups
# ---------------------------------------------------------------------------


def _in_range(when: date, start: Optional[date], end: Optional[date]) -> bool:
    if start is not None and when < start:
        return False
    if end is not None and when > end:
        return False
    return True


def _category_key(category: Any) -> str:
    if isinstance(category, Enum):
        category = category.value
    return str(category)


def filter_expenses(
    expenses: Iterable[Expense],
    category: Optional[str] = FILTER_ALL,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[Expense]:
    """Select expenses by exact category (or ``"all"``) and inclusive dates.

    Either date bound may be omitted.
    """
    wanted = FILTER_ALL if category is None else _category_key(category)
    return [
        expense
        for expense in expenses
        if (wanted == FILTER_ALL or _category_key(expense.category) == wanted)
        and _in_range(expense.date, start, end)
    ]


def filtered_expense_total(
    expenses: Iterable[Expense],
    category: Optional[str] = FILTER_ALL,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> Decimal:
    """Total of the expenses :func:`filter_expenses` would return."""
    return sum((expense.amount for expense in filter_expenses(expenses, category, start, end)), ZERO)


def expense_totals_by_category(expenses: Iterable[Expense]) -> Dict[str, Decimal]:
    """Sum expenses per category; categories with no expenses are omitted."""
    totals: Dict[str, Decimal] = {}
    for expense in expenses:
        key = _category_key(expense.category)
        totals[key] = totals.get(key, ZERO) + expense.amount
    return totals


def profit_summary(orders: Iterable[Order], expenses: Iterable[Expense]) -> Dict[str, Decimal]:
    """Return ``total_revenue``, ``total_expenses``, and ``profit``."""
    revenue = total_revenue(orders)
    spent = sum((expense.amount for expense in expenses), ZERO)
    return {
        "total_revenue": revenue,
        "total_expenses": spent,
        "profit": revenue - spent,
    }


# ---------------------------------------------------------------------------
# Customer roll-ups
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CustomerSummary:
    """Order history of one customer, keyed by name and contact."""

    name: str
    contact: str
    total_orders: int
    total_spent: Decimal
    last_order_at: datetime

    @property
    def average_order_value(self) -> Decimal:
        if not self.total_orders:
            return ZERO
        return self.total_spent / self.total_orders


def _as_utc(moment: datetime) -> datetime:
    return moment if moment.tzinfo else moment.replace(tzinfo=UTC)


def _customer_key(order: Order) -> Tuple[str, str]:
    return order.customer.name.strip().lower(), order.customer.contact.lower()


def customer_summaries(orders: Iterable[Order]) -> List[CustomerSummary]:
    """Group orders per customer, most recent buyer first.

    Customers are matched on name and contact (phone, falling back to email),
    both compared case-insensitively. The name and contact shown are those of
    the customer's first order in ``orders``.

    Args:
        orders (Iterable[Order]): Orders to roll up.

    Returns:
        list[CustomerSummary]: One entry per customer, ordered by the time of
            their latest order, newest first. Empty input yields an empty list.
    """
    grouped: Dict[Tuple[str, str], CustomerSummary] = {}
    for order in orders:
        key = _customer_key(order)
        current = grouped.get(key)
        if current is None:
            grouped[key] = CustomerSummary(
                name=order.customer.name.strip(),
                contact=order.customer.contact,
                total_orders=1,
                total_spent=order.total,
                last_order_at=order.created_at,
            )
            continue
        latest = current.last_order_at
        if _as_utc(order.created_at) > _as_utc(latest):
            latest = order.created_at
        grouped[key] = CustomerSummary(
            name=current.name,
            contact=current.contact,
            total_orders=current.total_orders + 1,
            total_spent=current.total_spent + order.total,
            last_order_at=latest,
        )
    return sorted(grouped.values(), key=lambda summary: _as_utc(summary.last_order_at), reverse=True)


__all__ = [
    "Expense",
    "validate_expense",
    "quantize_money",
    "format_money",
    "total_stock_value",
    "total_stock_cost_value",
    "low_stock_product_count",
    "total_revenue",
    "average_order_value",
    "orders_between",
    "pending_order_count",
    "payment_status_breakdown",
    "delivery_status_breakdown",
    "filter_expenses",
    "filtered_expense_total",
    "expense_totals_by_category",
    "profit_summary",
    "CustomerSummary",
    "customer_summaries",
]
