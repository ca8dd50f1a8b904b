"""Enumerations and defaults shared across the back office modules.

Centralises domain constants so that the data access layer (DAL), the pure
commerce core, the business logic layer (BLL), and the CLI rely on a single
source of truth for status names, payment methods, and tunable defaults.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Customer-facing checkout rate. Admin order creation reads its own rate from
# config so both call sites stay configurable.
DEFAULT_TAX_RATE = Decimal("0.15")

# Products whose total stock falls below this value are flagged as low stock.
DEFAULT_LOW_STOCK_THRESHOLD = 5

# Wildcard accepted by every category and status filter.
FILTER_ALL = "all"

CURRENCY_SYMBOL = "R"


class StockLevel(str, Enum):
    """Classification of a variant's on-hand quantity."""

    OUT_OF_STOCK = "out_of_stock"
    LOW_STOCK = "low_stock"
    IN_STOCK = "in_stock"


class PaymentMethod(str, Enum):
    """Enumerate the payment mechanisms accepted at checkout or by admins."""

    CASH = "cash"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    EFT = "eft"
    PAYFAST = "payfast"
    PAYSTACK = "paystack"
    YOCO = "yoco"


class PaymentStatus(str, Enum):
    """Payment track of the order lifecycle."""

    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"


class DeliveryStatus(str, Enum):
    """Delivery track of the order lifecycle."""

    PENDING = "pending"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    NOT_DELIVERED = "not_delivered"


class OrderChannel(str, Enum):
    """Creation profile that produced an order."""

    STOREFRONT = "storefront"
    ADMIN = "admin"


class ExpenseCategory(str, Enum):
    """Fixed set of categories an expense may be filed under."""

    INVENTORY = "Inventory"
    MARKETING = "Marketing"
    RENT = "Rent"
    UTILITIES = "Utilities"
    EQUIPMENT = "Equipment"
    OFFICE_SUPPLIES = "Office Supplies"
    TRANSPORTATION = "Transportation"
    PROFESSIONAL_SERVICES = "Professional Services"
    INSURANCE = "Insurance"
    OTHER = "Other"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    PRODUCTS = "Products"
    VARIANTS = "Variants"
    CATEGORIES = "Categories"
    ORDERS = "Orders"
    ORDER_ITEMS = "OrderItems"
    EXPENSES = "Expenses"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_TAX_RATE",
    "DEFAULT_LOW_STOCK_THRESHOLD",
    "FILTER_ALL",
    "CURRENCY_SYMBOL",
    "StockLevel",
    "PaymentMethod",
    "PaymentStatus",
    "DeliveryStatus",
    "OrderChannel",
    "ExpenseCategory",
    "SheetName",
]
