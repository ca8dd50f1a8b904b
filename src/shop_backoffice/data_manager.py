"""Data access layer for the shop back office.

This module provides low-level helpers that read from and write to the store
workbook and the local cart cache. Business logic belongs elsewhere.

The public API is designed around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading products, orders, categories, and expenses as
   domain values and appending or updating individual rows.
4. Cart persistence: one JSON document per session under the cart cache
   directory.
"""


from __future__ import annotations

import configparser
import json
import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .cart import CartItem
from .constants import (
    DEFAULT_LOW_STOCK_THRESHOLD,
    DEFAULT_TAX_RATE,
    DeliveryStatus,
    ExpenseCategory,
    OrderChannel,
    PaymentMethod,
    PaymentStatus,
    SheetName,
)
from .inventory import Category, Product, Variant
from .orders import Customer, Order, OrderItem
from .reporting import Expense


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
VARIANTS_SHEET = SheetName.VARIANTS.value
CATEGORIES_SHEET = SheetName.CATEGORIES.value
ORDERS_SHEET = SheetName.ORDERS.value
ORDER_ITEMS_SHEET = SheetName.ORDER_ITEMS.value
EXPENSES_SHEET = SheetName.EXPENSES.value

# Values written by the original storefront before the split status tracks.
LEGACY_PAYMENT_STATUSES: Mapping[str, PaymentStatus] = {"confirmed": PaymentStatus.PAID}
LEGACY_DELIVERY_STATUSES: Mapping[str, DeliveryStatus] = {"shipped": DeliveryStatus.IN_TRANSIT}
LEGACY_PAYMENT_METHODS: Mapping[str, PaymentMethod] = {"transfer": PaymentMethod.BANK_TRANSFER}

# Column layout of every sheet, in worksheet order.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    PRODUCTS_SHEET: [
        "ProductID",
        "OwnerID",
        "Name",
        "Category",
        "Supplier",
        "BatchNumber",
        "Status",
        "LastRestocked",
        "ProductImage",
    ],
    VARIANTS_SHEET: [
        "ProductID",
        "VariantIndex",
        "Type",
        "Color",
        "Size",
        "SellingPrice",
        "StockPrice",
        "StockQuantity",
        "Description",
        "Images",
    ],
    CATEGORIES_SHEET: [
        "OwnerID",
        "Name",
        "Description",
        "IsActive",
    ],
    ORDERS_SHEET: [
        "OrderID",
        "CreatedBy",
        "Channel",
        "CustomerName",
        "Phone",
        "Email",
        "Address",
        "City",
        "PostalCode",
        "Province",
        "PaymentMethod",
        "PaymentStatus",
        "DeliveryStatus",
        "Subtotal",
        "Tax",
        "Total",
        "TaxRate",
        "CreatedAt",
        "Notes",
    ],
    ORDER_ITEMS_SHEET: [
        "OrderID",
        "LineNumber",
        "ProductID",
        "VariantIndex",
        "Name",
        "VariantLabel",
        "Quantity",
        "UnitPrice",
        "LineTotal",
    ],
    EXPENSES_SHEET: [
        "ExpenseID",
        "OwnerID",
        "Title",
        "Amount",
        "Category",
        "Date",
        "Notes",
    ],
}

# Columns an admin may change on an existing order.
EDITABLE_ORDER_COLUMNS = frozenset({"PaymentStatus", "DeliveryStatus", "PaymentMethod", "Notes"})

_SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    store_name: str
    schema_version: str
    owner_id: str
    tax_rate: Decimal = DEFAULT_TAX_RATE
    admin_tax_rate: Decimal = DEFAULT_TAX_RATE
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD
    cart_cache_dir: Optional[Path] = None
    strict_status_transitions: bool = False


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def _resolve_path(raw: str, base_path: Optional[Path]) -> Path:
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = ((base_path or Path.cwd()) / path).resolve()
    return path


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System] DataFile``, ``StoreName``, ``SchemaVersion`` and
    ``[Defaults] OwnerID`` are required. Tax rates, the low-stock threshold,
    the cart cache directory, and the status transition policy fall back to
    the package defaults. Relative paths are anchored to ``base_path`` (or
    the working directory when omitted).

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to resolve relative paths.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If a numeric or boolean option cannot be parsed.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        store_name = parser.get("System", "StoreName")
        schema_version = parser.get("System", "SchemaVersion")
        owner_id = parser.get("Defaults", "OwnerID")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    try:
        tax_rate = Decimal(parser.get("Defaults", "TaxRate", fallback=str(DEFAULT_TAX_RATE)))
        admin_tax_rate = Decimal(parser.get("Defaults", "AdminTaxRate", fallback=str(tax_rate)))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid tax rate in configuration: {exc}") from exc
    low_stock_threshold = parser.getint(
        "Defaults", "LowStockThreshold", fallback=DEFAULT_LOW_STOCK_THRESHOLD
    )
    strict = parser.getboolean("Defaults", "StrictStatusTransitions", fallback=False)
    cart_cache_raw = parser.get("Defaults", "CartCacheDir", fallback=".cart_cache")

    data_file_path = _resolve_path(data_file_raw, base_path)

    return ConfigSettings(
        data_file=data_file_path,
        store_name=store_name,
        schema_version=schema_version,
        owner_id=owner_id,
        tax_rate=tax_rate,
        admin_tax_rate=admin_tax_rate,
        low_stock_threshold=low_stock_threshold,
        cart_cache_dir=_resolve_path(cart_cache_raw, base_path),
        strict_status_transitions=strict,
    )


# ---------------------------------------------------------------------------
# Workbook lifecycle
# ---------------------------------------------------------------------------


def open_workbook(data_file: Path) -> Workbook:
    """Open the store workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def _iter_rows(workbook: Workbook, sheet_name: str) -> Iterable[Tuple[Any, ...]]:
    sheet = workbook[sheet_name]
    width = len(SHEET_COLUMNS[sheet_name])
    for raw in sheet.iter_rows(min_row=2, max_col=width, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield tuple(raw) + (None,) * (width - len(raw))


def header_map(workbook: Workbook, sheet_name: str) -> Dict[str, int]:
    """Map header titles to 1-based column indices."""

    return {cell.value: idx + 1 for idx, cell in enumerate(workbook[sheet_name][1]) if cell.value}


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find the first row whose ``key_column`` equals ``key_value``.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    headers = header_map(workbook, sheet_name)
    if key_column not in headers:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = headers[key_column]
    sheet = workbook[sheet_name]
    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if len(row) >= key_col_index and _text(row[key_col_index - 1]) == str(key_value):
            return row_idx

    return None


# ---------------------------------------------------------------------------
# Cell coercion
# ---------------------------------------------------------------------------


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _decimal(value: Any, default: str = "0.00") -> Decimal:
    if value is None or value == "":
        return Decimal(default)
    return Decimal(str(value))


def _int(value: Any, default: int = 0) -> int:
    if value is None or value == "":
        return default
    return int(Decimal(str(value)))


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(Decimal(str(value)))


def _bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes"}
    return bool(value)


def _date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _enum(enum_cls: Any, value: Any, legacy: Mapping[str, Any]) -> Any:
    normalized = _text(value).strip().lower()
    if normalized in legacy:
        return legacy[normalized]
    return enum_cls(normalized)


# ---------------------------------------------------------------------------
# Catalog provider
# ---------------------------------------------------------------------------


def serialize_product(record: Product) -> List[object]:
    """Convert a product into the ``Products`` column ordering."""

    return [
        record.product_id,
        record.owner_id,
        record.name,
        record.category,
        record.supplier,
        record.batch_number,
        record.status,
        record.last_restocked.isoformat() if record.last_restocked else None,
        record.product_image,
    ]


def serialize_variant(product_id: str, index: int, variant: Variant) -> List[object]:
    """Convert one variant into the ``Variants`` column ordering."""

    return [
        product_id,
        index,
        variant.type,
        variant.color,
        variant.size,
        variant.selling_price,
        variant.stock_price,
        variant.stock_quantity,
        variant.description,
        "\n".join(variant.images),
    ]


def deserialize_variant(raw_row: Sequence[object]) -> Tuple[str, int, Variant]:
    """Convert a ``Variants`` row into ``(product_id, variant_index, Variant)``."""

    (
        product_id,
        variant_index,
        variant_type,
        color,
        size,
        selling_raw,
        stock_price_raw,
        quantity_raw,
        description,
        images_raw,
    ) = raw_row
    images = tuple(line for line in _text(images_raw).splitlines() if line.strip())
    variant = Variant(
        type=_text(variant_type),
        color=_text(color),
        size=_text(size),
        selling_price=_decimal(selling_raw),
        stock_price=_decimal(stock_price_raw),
        stock_quantity=_int(quantity_raw),
        description=_text(description),
        images=images,
    )
    return _text(product_id), _int(variant_index), variant


def deserialize_product(raw_row: Sequence[object], variants: Sequence[Variant] = ()) -> Product:
    """Convert a ``Products`` row plus its variants into a :class:`Product`.

    Legacy rows without variants are tolerated and yield an empty variant
    tuple.
    """

    (
        product_id,
        owner_id,
        name,
        category,
        supplier,
        batch_number,
        status,
        last_restocked,
        product_image,
    ) = raw_row
    return Product(
        product_id=_text(product_id),
        owner_id=_text(owner_id),
        name=_text(name),
        category=_text(category),
        supplier=_text(supplier),
        batch_number=_text(batch_number),
        status=_text(status) or "available",
        last_restocked=_date(last_restocked),
        product_image=_text(product_image),
        variants=tuple(variants),
    )


def iter_products(workbook: Workbook) -> Iterable[Product]:
    """Yield every product with its variants ordered by variant index."""

    grouped: Dict[str, List[Tuple[int, Variant]]] = defaultdict(list)
    for raw in _iter_rows(workbook, VARIANTS_SHEET):
        product_id, index, variant = deserialize_variant(raw)
        grouped[product_id].append((index, variant))

    for raw in _iter_rows(workbook, PRODUCTS_SHEET):
        product_id = _text(raw[0])
        variants = [variant for _, variant in sorted(grouped.get(product_id, []), key=lambda pair: pair[0])]
        yield deserialize_product(raw, variants)


def append_product(workbook: Workbook, record: Product) -> None:
    """Append a product row and one ``Variants`` row per variant."""

    workbook[PRODUCTS_SHEET].append(serialize_product(record))
    variants_sheet = workbook[VARIANTS_SHEET]
    for index, variant in enumerate(record.variants):
        variants_sheet.append(serialize_variant(record.product_id, index, variant))


def _delete_variant_rows(workbook: Workbook, product_id: str) -> int:
    sheet = workbook[VARIANTS_SHEET]
    doomed = [
        row_idx
        for row_idx, row in enumerate(sheet.iter_rows(min_row=2, max_col=1, values_only=True), start=2)
        if _text(row[0]) == product_id
    ]
    # delete bottom-up so earlier indices stay valid
    for row_idx in reversed(doomed):
        sheet.delete_rows(row_idx)
    return len(doomed)


def replace_product(workbook: Workbook, record: Product) -> None:
    """Overwrite an existing product row and rewrite its variant rows.

    Raises:
        KeyError: If the product is not present in the workbook.
    """

    row_index = locate_row(workbook, PRODUCTS_SHEET, "ProductID", record.product_id)
    if row_index is None:
        raise KeyError(f"Product not found: {record.product_id}")

    sheet = workbook[PRODUCTS_SHEET]
    for column, value in enumerate(serialize_product(record), start=1):
        sheet.cell(row=row_index, column=column, value=value)

    removed = _delete_variant_rows(workbook, record.product_id)
    variants_sheet = workbook[VARIANTS_SHEET]
    for index, variant in enumerate(record.variants):
        variants_sheet.append(serialize_variant(record.product_id, index, variant))
    log.debug(
        "Rewrote product '%s' (%d variant rows replaced by %d)",
        record.product_id,
        removed,
        len(record.variants),
    )


def iter_categories(workbook: Workbook) -> Iterable[Category]:
    """Yield every category row, active or not."""

    for owner_id, name, description, is_active in _iter_rows(workbook, CATEGORIES_SHEET):
        yield Category(
            name=_text(name),
            owner_id=_text(owner_id),
            description=_text(description),
            is_active=_bool(is_active),
        )


def append_category(workbook: Workbook, record: Category) -> None:
    """Append a category row."""

    workbook[CATEGORIES_SHEET].append([record.owner_id, record.name, record.description, record.is_active])


# ---------------------------------------------------------------------------
# Order store
# ---------------------------------------------------------------------------


def serialize_order(record: Order) -> List[object]:
    """Convert an order header into the ``Orders`` column ordering."""

    customer = record.customer
    return [
        record.order_id,
        record.created_by,
        record.channel.value,
        customer.name,
        customer.phone,
        customer.email,
        customer.address,
        customer.city,
        customer.postal_code,
        customer.province,
        record.payment_method.value,
        record.payment_status.value,
        record.delivery_status.value,
        record.subtotal,
        record.tax,
        record.total,
        record.tax_rate,
        record.created_at.isoformat(),
        record.notes,
    ]


def serialize_order_item(order_id: str, line_number: int, item: OrderItem) -> List[object]:
    """Convert an order line into the ``OrderItems`` column ordering.

    The line total is written for spreadsheet readers and ignored on load.
    """

    return [
        order_id,
        line_number,
        item.product_id,
        item.variant_index,
        item.name,
        item.variant_label,
        item.quantity,
        item.unit_price,
        item.line_total,
    ]


def deserialize_order_item(raw_row: Sequence[object]) -> Tuple[str, int, OrderItem]:
    """Convert an ``OrderItems`` row into ``(order_id, line_number, item)``."""

    (
        order_id,
        line_number,
        product_id,
        variant_index,
        name,
        variant_label,
        quantity,
        unit_price,
        _line_total,
    ) = raw_row
    item = OrderItem(
        product_id=_text(product_id),
        name=_text(name),
        quantity=_int(quantity),
        unit_price=_decimal(unit_price),
        variant_index=_optional_int(variant_index),
        variant_label=_text(variant_label),
    )
    return _text(order_id), _int(line_number), item


def deserialize_order(raw_row: Sequence[object], items: Sequence[OrderItem] = ()) -> Order:
    """Convert an ``Orders`` row plus its lines into an :class:`Order`.

    Status and method columns are matched case-insensitively so rows edited by
    hand in Excel still load. Values from the original storefront
    (``confirmed``, ``shipped``, ``transfer``) map onto their current members.

    Raises:
        ValueError: If a status, method, channel, or timestamp cell holds a
            value with no current meaning.
    """

    (
        order_id,
        created_by,
        channel,
        customer_name,
        phone,
        email,
        address,
        city,
        postal_code,
        province,
        payment_method,
        payment_status,
        delivery_status,
        subtotal,
        tax,
        total,
        tax_rate,
        created_at,
        notes,
    ) = raw_row
    return Order(
        order_id=_text(order_id),
        items=tuple(items),
        customer=Customer(
            name=_text(customer_name),
            phone=_text(phone),
            email=_text(email),
            address=_text(address),
            city=_text(city),
            postal_code=_text(postal_code),
            province=_text(province),
        ),
        payment_method=_enum(PaymentMethod, payment_method, LEGACY_PAYMENT_METHODS),
        payment_status=_enum(PaymentStatus, payment_status, LEGACY_PAYMENT_STATUSES),
        delivery_status=_enum(DeliveryStatus, delivery_status, LEGACY_DELIVERY_STATUSES),
        subtotal=_decimal(subtotal),
        tax=_decimal(tax),
        total=_decimal(total),
        tax_rate=_decimal(tax_rate, default=str(DEFAULT_TAX_RATE)),
        created_at=_datetime(created_at),
        created_by=_text(created_by),
        channel=OrderChannel(_text(channel).strip().lower() or OrderChannel.STOREFRONT.value),
        notes=_text(notes),
    )


def iter_orders(workbook: Workbook) -> Iterable[Order]:
    """Yield every order with its lines in line-number order.

    Rows that cannot be read are logged as warnings and skipped so one bad
    cell never hides the rest of the order book.
    """

    grouped: Dict[str, List[Tuple[int, OrderItem]]] = defaultdict(list)
    for raw in _iter_rows(workbook, ORDER_ITEMS_SHEET):
        order_id, line_number, item = deserialize_order_item(raw)
        grouped[order_id].append((line_number, item))

    for raw in _iter_rows(workbook, ORDERS_SHEET):
        order_id = _text(raw[0])
        items = [item for _, item in sorted(grouped.get(order_id, []), key=lambda pair: pair[0])]
        try:
            order = deserialize_order(raw, items)
        except (ValueError, InvalidOperation) as exc:
            log.warning("Skipping unreadable order row '%s': %s", order_id, exc)
            continue
        yield order


def append_order(workbook: Workbook, record: Order) -> str:
    """Append an order header and its lines. Returns the order id."""

    workbook[ORDERS_SHEET].append(serialize_order(record))
    items_sheet = workbook[ORDER_ITEMS_SHEET]
    for line_number, item in enumerate(record.items, start=1):
        items_sheet.append(serialize_order_item(record.order_id, line_number, item))
    return record.order_id


def update_order(workbook: Workbook, order_id: str, *, field_values: Mapping[str, Any]) -> None:
    """Update editable columns on an existing order row.

    Only ``PaymentStatus``, ``DeliveryStatus``, ``PaymentMethod`` and
    ``Notes`` may be written; line items, customer, and totals are frozen.

    Raises:
        KeyError: If the order is missing or a column is not editable.
    """

    row_index = locate_row(workbook, ORDERS_SHEET, "OrderID", order_id)
    if row_index is None:
        raise KeyError(f"Order not found: {order_id}")

    headers = header_map(workbook, ORDERS_SHEET)
    sheet = workbook[ORDERS_SHEET]
    for field, value in field_values.items():
        if field not in EDITABLE_ORDER_COLUMNS or field not in headers:
            raise KeyError(f"Order field is not editable: {field}")
        sheet.cell(row=row_index, column=headers[field], value=value)


# ---------------------------------------------------------------------------
# Expenses
# ---------------------------------------------------------------------------


def serialize_expense(record: Expense) -> List[object]:
    """Convert an expense into the ``Expenses`` column ordering."""

    return [
        record.expense_id,
        record.owner_id,
        record.title,
        record.amount,
        record.category.value,
        record.date.isoformat(),
        record.notes,
    ]


def deserialize_expense(raw_row: Sequence[object]) -> Expense:
    """Convert an ``Expenses`` row into an :class:`Expense`.

    Raises:
        ValueError: If the category cell names no known category.
    """

    expense_id, owner_id, title, amount, category, when, notes = raw_row
    return Expense(
        expense_id=_text(expense_id),
        owner_id=_text(owner_id),
        title=_text(title),
        amount=_decimal(amount),
        category=ExpenseCategory(_text(category)),
        date=_date(when) or date.min,
        notes=(str(notes) if notes is not None else None),
    )


def iter_expenses(workbook: Workbook) -> Iterable[Expense]:
    """Yield every expense in worksheet order."""

    for raw in _iter_rows(workbook, EXPENSES_SHEET):
        yield deserialize_expense(raw)


def append_expense(workbook: Workbook, record: Expense) -> None:
    """Append an expense row."""

    workbook[EXPENSES_SHEET].append(serialize_expense(record))


# ---------------------------------------------------------------------------
# Cart persistence
# ---------------------------------------------------------------------------


def cart_cache_path(cache_dir: Path, session_id: str) -> Path:
    """Return the JSON file backing ``session_id``.

    Raises:
        ValueError: If ``session_id`` contains characters unsafe in a filename.
    """

    if not _SESSION_ID_PATTERN.match(session_id or ""):
        raise ValueError(f"Invalid cart session id: {session_id!r}")
    return Path(cache_dir).expanduser() / f"cart_{session_id}.json"


def serialize_cart_item(item: CartItem) -> Dict[str, object]:
    """Convert a cart line into its JSON payload; prices are stored as strings."""

    return {
        "id": item.item_id,
        "name": item.name,
        "price": str(item.price),
        "quantity": item.quantity,
        "category": item.category,
        "image": item.image,
    }


def deserialize_cart_item(payload: Mapping[str, Any]) -> CartItem:
    """Rebuild a cart line from its JSON payload, defaulting missing fields.

    Raises:
        KeyError: If the payload has no ``id``.
    """

    return CartItem(
        item_id=str(payload["id"]),
        name=str(payload.get("name", "")),
        price=Decimal(str(payload.get("price", "0"))),
        quantity=int(payload.get("quantity", 1)),
        category=str(payload.get("category") or ""),
        image=payload.get("image"),
    )


def load_cart(cache_dir: Path, session_id: str) -> Optional[Tuple[CartItem, ...]]:
    """Read the cached cart for ``session_id``.

    Returns:
        tuple[CartItem, ...] | None: Saved items, or ``None`` when nothing was
            cached or the cache could not be decoded. A corrupt cache is
            logged and treated as empty so a bad file never blocks checkout.
    """

    path = cart_cache_path(cache_dir, session_id)
    if not path.exists():
        return None
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
        return tuple(deserialize_cart_item(entry) for entry in payload)
    except (ValueError, KeyError, TypeError, InvalidOperation) as exc:
        log.error("Error loading cart cache '%s': %s", path, exc)
        return None


def save_cart(cache_dir: Path, session_id: str, items: Iterable[CartItem]) -> Path:
    """Write the session's cart lines as JSON.

    Args:
        cache_dir (Path): Directory holding one file per session.
        session_id (str): Session key; see :func:`cart_cache_path`.
        items (Iterable[CartItem]): Lines to store.

    Returns:
        Path: The file that was written.

    Raises:
        ValueError: If ``session_id`` is not a safe file name.
    """

    path = cart_cache_path(cache_dir, session_id)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps([serialize_cart_item(item) for item in items], indent=2),
        encoding="utf-8",
    )
    return path
