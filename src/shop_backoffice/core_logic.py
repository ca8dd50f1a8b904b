"""Business logic layer for the shop back office.

This module ties the pure commerce core (inventory, cart, orders, reporting)
to the Data Access Layer (DAL). It reads catalog, order, and expense records
through :mod:`data_manager`, runs every mutation through the domain rules, and
hands the resulting values back to the DAL for persistence. The owner id is
always passed explicitly so no call depends on ambient session state.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from openpyxl.workbook import Workbook

from . import data_manager, log
from .cart import AddItem, CartItem, CartState, ClearCart, LoadCart, SetLastOrder, dispatch, make_item_id, new_cart
from .constants import EXPECTED_SCHEMA_VERSION, FILTER_ALL, ExpenseCategory, PaymentMethod
from .exceptions import NegativeStockError, NotFoundError, ValidationError
from .inventory import (
    Category,
    Product,
    adjust_product_stock,
    adjust_stock,
    get_variant,
    is_low_stock,
    matches,
    validate_new_product,
)
from .orders import (
    Customer,
    Order,
    OrderIdGenerator,
    OrderLine,
    apply_order_update,
    create_admin_order,
    create_storefront_order,
    reserve_stock,
)
from .reporting import (
    CustomerSummary,
    Expense,
    average_order_value,
    customer_summaries,
    filter_expenses,
    low_stock_product_count,
    orders_between,
    pending_order_count,
    profit_summary,
    total_stock_cost_value,
    total_stock_value,
    validate_expense,
)


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    return candidate if candidate is not None else datetime.now(UTC)


def _owner(context: RuntimeContext, owner_id: Optional[str]) -> str:
    return owner_id if owner_id is not None else context.settings.owner_id


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name."""

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state."""

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_products_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the product cache bucket (``all`` and ``by_id``) on demand."""

    bucket = _get_cache_bucket(context, "products")
    if "all" not in bucket:
        all_products = list(data_manager.iter_products(context.workbook))
        bucket["all"] = all_products
        bucket["by_id"] = {product.product_id: product for product in all_products}
        log.debug("Populated products cache with %d entries", len(all_products))
    return bucket


def _ensure_orders_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the order cache bucket (``all`` and ``by_id``) on demand."""

    bucket = _get_cache_bucket(context, "orders")
    if "all" not in bucket:
        all_orders = list(data_manager.iter_orders(context.workbook))
        bucket["all"] = all_orders
        bucket["by_id"] = {order.order_id: order for order in all_orders}
        log.debug("Populated orders cache with %d entries", len(all_orders))
    return bucket


def _ensure_expenses_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "expenses")
    if "all" not in bucket:
        bucket["all"] = list(data_manager.iter_expenses(context.workbook))
        log.debug("Populated expenses cache with %d entries", len(bucket["all"]))
    return bucket


# ---------------------------------------------------------------------------
# Runtime/context management
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to the configured data file."""
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    A new :class:`RuntimeContext` is returned, so any cached data from the
    previous context is discarded along with the unsaved edits.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)


_record_id_generators: Dict[str, OrderIdGenerator] = {}


def generate_record_id(prefix: str, *, when: Optional[datetime] = None) -> str:
    """Generate a sortable identifier such as ``EXP-20250101120000123456``.

    Each prefix has its own :class:`OrderIdGenerator`, so two records created
    in the same microsecond still receive distinct ids.

    Args:
        prefix (str): Record family, for example ``"EXP"``.
        when (datetime | None): Timestamp to encode; defaults to now (UTC).

    Returns:
        str: A process-unique identifier.
    """
    generator = _record_id_generators.get(prefix)
    if generator is None:
        generator = _record_id_generators[prefix] = OrderIdGenerator(prefix=prefix)
    return generator(when or _resolve_timestamp(None))


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


def list_products(
    context: RuntimeContext,
    owner_id: Optional[str] = None,
    *,
    search_term: str = "",
    category: str = FILTER_ALL,
) -> List[Product]:
    """Return the owner's products that pass :func:`inventory.matches`.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        owner_id (str | None): Account to scope the listing to. Defaults to the
            configured owner.
        search_term (str): Case-insensitive name fragment.
        category (str): Category name or ``"all"``.

    Returns:
        list[Product]: Matching products in sheet order.
    """
    owner = _owner(context, owner_id)
    cache = _ensure_products_cache(context)
    return [product for product in cache["all"] if matches(product, search_term, category, owner)]


def get_product(context: RuntimeContext, product_id: str, owner_id: Optional[str] = None) -> Product:
    """Resolve a product owned by ``owner_id``.

    Raises:
        NotFoundError: If the id is unknown or belongs to another owner.
    """
    owner = _owner(context, owner_id)
    product = _ensure_products_cache(context)["by_id"].get(product_id)
    if product is None or product.owner_id != owner:
        log.warning("Product lookup failed for id '%s' (owner '%s')", product_id, owner)
        raise NotFoundError(f"Unknown product id: {product_id}")
    return product


def list_low_stock_products(context: RuntimeContext, owner_id: Optional[str] = None) -> List[Product]:
    """Return the owner's products whose total stock is under the configured threshold."""
    threshold = context.settings.low_stock_threshold
    return [product for product in list_products(context, owner_id) if is_low_stock(product, threshold)]


def add_product(context: RuntimeContext, product: Product) -> Product:
    """Validate and append a new product with its variants.

    Raises:
        ValidationError: If the product fails :func:`validate_new_product` or
            its id is already taken.
    """
    try:
        validate_new_product(product)
    except ValidationError as exc:
        log.error("Rejected product '%s': %s", product.product_id, exc)
        raise
    if product.product_id in _ensure_products_cache(context)["by_id"]:
        log.error("Duplicate product id '%s'", product.product_id)
        raise ValidationError(f"Product id already exists: {product.product_id}")

    data_manager.append_product(context.workbook, product)
    _invalidate_cache(context, "products")
    log.info(
        "Added product '%s' (%s) with %d variants",
        product.product_id,
        product.name,
        len(product.variants),
    )
    return product


def adjust_variant_stock(
    context: RuntimeContext,
    product_id: str,
    variant_index: int,
    delta: int,
    *,
    owner_id: Optional[str] = None,
    when: Optional[date] = None,
) -> Product:
    """Restock (positive ``delta``) or write off (negative ``delta``) a variant.

    Restocks also stamp ``last_restocked``.

    Raises:
        NotFoundError: If the product or variant is unknown.
        NegativeStockError: If a write-off exceeds the stock on hand.
    """
    product = get_product(context, product_id, owner_id)
    try:
        updated = adjust_product_stock(product, variant_index, delta)
    except NegativeStockError as exc:
        log.warning("Stock adjustment rejected for '%s'[%d]: %s", product_id, variant_index, exc)
        raise
    if delta > 0:
        updated = replace(updated, last_restocked=when or _resolve_timestamp(None).date())

    data_manager.replace_product(context.workbook, updated)
    _invalidate_cache(context, "products")
    log.info(
        "Adjusted stock of '%s'[%d] by %+d (now %d)",
        product_id,
        variant_index,
        delta,
        updated.variants[variant_index].stock_quantity,
    )
    return updated


def list_categories(context: RuntimeContext, owner_id: Optional[str] = None, *, include_inactive: bool = False) -> List[Category]:
    """List the owner's categories, skipping inactive ones unless ``include_inactive``."""
    owner = _owner(context, owner_id)
    return [
        category
        for category in data_manager.iter_categories(context.workbook)
        if category.owner_id == owner and (include_inactive or category.is_active)
    ]


def add_category(context: RuntimeContext, category: Category) -> Category:
    """Append a category for its owner.

    Raises:
        ValidationError: If the name is blank or already used by the owner,
            compared case-insensitively.
    """
    if not category.name.strip():
        raise ValidationError("Category name is required")
    existing = {c.name.lower() for c in list_categories(context, category.owner_id, include_inactive=True)}
    if category.name.lower() in existing:
        raise ValidationError(f"Category already exists: {category.name}")
    data_manager.append_category(context.workbook, category)
    log.info("Added category '%s' for owner '%s'", category.name, category.owner_id)
    return category


# ---------------------------------------------------------------------------
# Cart sessions
# ---------------------------------------------------------------------------


def _cart_cache_dir(context: RuntimeContext) -> Path:
    if context.settings.cart_cache_dir is not None:
        return context.settings.cart_cache_dir
    return context.settings.data_file.parent / ".cart_cache"


def new_session_cart(context: RuntimeContext) -> CartState:
    """Start an empty cart priced at the configured storefront tax rate."""
    return new_cart(tax_rate=context.settings.tax_rate)


def load_session_cart(context: RuntimeContext, session_id: str) -> CartState:
    """Restore a session's cart, or start an empty one when nothing is cached."""
    cart = new_session_cart(context)
    saved = data_manager.load_cart(_cart_cache_dir(context), session_id)
    if saved is None:
        return cart
    log.debug("Restored %d cart lines for session '%s'", len(saved), session_id)
    return dispatch(cart, LoadCart(saved))


def save_session_cart(context: RuntimeContext, session_id: str, cart: CartState) -> Path:
    """Write the cart lines to the session cache and return the file path."""
    return data_manager.save_cart(_cart_cache_dir(context), session_id, cart.items)


def add_to_cart(
    context: RuntimeContext,
    cart: CartState,
    product_id: str,
    variant_index: int = 0,
    *,
    owner_id: Optional[str] = None,
) -> CartState:
    """Add one unit of a catalog variant to ``cart``.

    The current selling price is read from the catalog for new lines; an
    existing line keeps the price it was added at.

    Raises:
        NotFoundError: If the product or variant does not exist.
        NegativeStockError: If the cart would hold more units than are in
            stock.
    """
    product = get_product(context, product_id, owner_id)
    variant = get_variant(product, variant_index)
    item_id = make_item_id(product_id, variant_index)
    existing = cart.find(item_id)
    wanted = (existing.quantity if existing else 0) + 1
    adjust_stock(variant, -wanted)

    name = f"{product.name} ({variant.label})" if variant.label else product.name
    item = CartItem(
        item_id=item_id,
        name=name,
        price=variant.selling_price,
        category=product.category,
        image=(variant.images[0] if variant.images else product.product_image) or None,
    )
    return dispatch(cart, AddItem(item))


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


def _commit_order(context: RuntimeContext, order: Order, owner: str) -> Order:
    """Reserve stock and append ``order`` with its product updates, atomically."""
    catalog = {
        product.product_id: product
        for product in _ensure_products_cache(context)["all"]
        if product.owner_id == owner
    }
    try:
        updated_products = reserve_stock(catalog, order.items)
    except (NegativeStockError, NotFoundError, ValidationError) as exc:
        log.warning("Order '%s' rejected during stock reservation: %s", order.order_id, exc)
        raise

    data_manager.append_order(context.workbook, order)
    for product in updated_products.values():
        data_manager.replace_product(context.workbook, product)
    _invalidate_cache(context, "orders", "products")
    log.info(
        "Recorded %s order '%s' for '%s' (lines=%d, total=%s)",
        order.channel.value,
        order.order_id,
        order.customer.name,
        len(order.items),
        order.total,
    )
    return order


def place_storefront_order(
    context: RuntimeContext,
    cart: CartState,
    customer: Customer,
    payment_method: Union[str, PaymentMethod],
    *,
    owner_id: Optional[str] = None,
    notes: str = "",
    timestamp: Optional[datetime] = None,
) -> Tuple[Order, CartState]:
    """Check out a storefront cart.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        cart (CartState): Session cart being checked out.
        customer (Customer): Buyer details.
        payment_method (str | PaymentMethod): Chosen payment method.
        owner_id (str | None): Store owner the order is filed under.
        notes (str): Optional order notes.
        timestamp (datetime | None): Creation time override.

    Returns:
        tuple[Order, CartState]: The recorded order and the cart after
            ``SetLastOrder`` and ``ClearCart`` were applied.

    Raises:
        ValidationError: If the customer, cart, or payment method is invalid.
        NegativeStockError: If any line exceeds the stock on hand; nothing is
            written in that case.
        NotFoundError: If a cart line references an unknown product.
    """
    owner = _owner(context, owner_id)
    try:
        order = create_storefront_order(
            cart,
            customer,
            payment_method,
            created_by=owner,
            notes=notes,
            timestamp=timestamp,
        )
    except ValidationError as exc:
        log.error("Storefront checkout rejected: %s", exc)
        raise
    _commit_order(context, order, owner)
    return order, dispatch(cart, SetLastOrder(order), ClearCart())


def place_admin_order(
    context: RuntimeContext,
    lines: Iterable[OrderLine],
    customer: Customer,
    payment_method: Union[str, PaymentMethod],
    *,
    owner_id: Optional[str] = None,
    notes: str = "",
    timestamp: Optional[datetime] = None,
) -> Order:
    """Create and record an order assembled on the admin screen.

    Raises:
        ValidationError: If the customer, lines, or payment method is invalid.
        NegativeStockError: If any line exceeds the stock on hand.
        NotFoundError: If a line references an unknown product.
    """
    owner = _owner(context, owner_id)
    try:
        order = create_admin_order(
            list(lines),
            customer,
            payment_method,
            tax_rate=context.settings.admin_tax_rate,
            created_by=owner,
            notes=notes,
            timestamp=timestamp,
        )
    except ValidationError as exc:
        log.error("Admin order rejected: %s", exc)
        raise
    return _commit_order(context, order, owner)


def list_orders(
    context: RuntimeContext,
    owner_id: Optional[str] = None,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[Order]:
    """List the owner's orders created within the optional inclusive date range.

    Args:
        context (RuntimeContext): Active runtime context.
        owner_id (str | None): Owner to scope by; defaults to the configured
            owner.
        start (date | None): Earliest creation date to keep.
        end (date | None): Latest creation date to keep.

    Returns:
        list[Order]: Matching orders in workbook order.
    """
    owner = _owner(context, owner_id)
    scoped = [order for order in _ensure_orders_cache(context)["all"] if order.created_by == owner]
    return orders_between(scoped, start, end)


def get_order(context: RuntimeContext, order_id: str, owner_id: Optional[str] = None) -> Order:
    """Resolve an order owned by ``owner_id``.

    Raises:
        NotFoundError: If the id is unknown or belongs to another owner.
    """
    owner = _owner(context, owner_id)
    order = _ensure_orders_cache(context)["by_id"].get(order_id)
    if order is None or order.created_by != owner:
        log.warning("Order lookup failed for id '%s' (owner '%s')", order_id, owner)
        raise NotFoundError(f"Unknown order id: {order_id}")
    return order


def update_order(
    context: RuntimeContext,
    order_id: str,
    *,
    owner_id: Optional[str] = None,
    payment_status: Optional[str] = None,
    delivery_status: Optional[str] = None,
    payment_method: Optional[str] = None,
    notes: Optional[str] = None,
) -> Order:
    """Apply an admin edit to an order's status fields, method, or notes.

    The lifecycle policy comes from ``StrictStatusTransitions`` in the
    configuration and applies to every edit made through this function.

    Raises:
        NotFoundError: If the order is unknown.
        ValidationError: If a value is not a known status or method.
        StatusTransitionError: If the strict policy rejects a transition.
    """
    current = get_order(context, order_id, owner_id)
    try:
        updated = apply_order_update(
            current,
            payment_status=payment_status,
            delivery_status=delivery_status,
            payment_method=payment_method,
            notes=notes,
            strict=context.settings.strict_status_transitions,
        )
    except ValidationError as exc:
        log.error("Order '%s' update rejected: %s", order_id, exc)
        raise

    field_values: Dict[str, Any] = {}
    if updated.payment_status != current.payment_status:
        field_values["PaymentStatus"] = updated.payment_status.value
    if updated.delivery_status != current.delivery_status:
        field_values["DeliveryStatus"] = updated.delivery_status.value
    if updated.payment_method != current.payment_method:
        field_values["PaymentMethod"] = updated.payment_method.value
    if updated.notes != current.notes:
        field_values["Notes"] = updated.notes

    if not field_values:
        log.debug("Order '%s' update was a no-op", order_id)
        return current

    data_manager.update_order(context.workbook, order_id, field_values=field_values)
    _invalidate_cache(context, "orders")
    log.info("Updated order '%s': %s", order_id, ", ".join(sorted(field_values)))
    return updated


# ---------------------------------------------------------------------------
# Expenses
# ---------------------------------------------------------------------------


def record_expense(
    context: RuntimeContext,
    *,
    title: str,
    amount: Decimal,
    category: Union[str, ExpenseCategory],
    when: date,
    notes: Optional[str] = None,
    owner_id: Optional[str] = None,
) -> Expense:
    """Validate and append an expense.

    Raises:
        ValidationError: If the title is blank, the amount is not positive, or
            the category is not one of :class:`ExpenseCategory`.
    """
    try:
        resolved_category = category if isinstance(category, ExpenseCategory) else ExpenseCategory(category)
    except ValueError as exc:
        log.error("Unsupported expense category: %s", category)
        raise ValidationError(f"Unsupported expense category: {category!r}") from exc

    expense = Expense(
        expense_id=generate_record_id("EXP"),
        owner_id=_owner(context, owner_id),
        title=title,
        amount=Decimal(amount),
        category=resolved_category,
        date=when,
        notes=notes,
    )
    try:
        validate_expense(expense)
    except ValidationError as exc:
        log.error("Expense rejected: %s", exc)
        raise

    data_manager.append_expense(context.workbook, expense)
    _invalidate_cache(context, "expenses")
    log.info("Recorded expense '%s' (%s, %s)", expense.expense_id, expense.category.value, expense.amount)
    return expense


def list_expenses(
    context: RuntimeContext,
    owner_id: Optional[str] = None,
    *,
    category: str = FILTER_ALL,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[Expense]:
    """List the owner's expenses filtered by category and inclusive dates.

    ``category`` may be ``"all"`` to keep every category.
    """
    owner = _owner(context, owner_id)
    scoped = [expense for expense in _ensure_expenses_cache(context)["all"] if expense.owner_id == owner]
    return filter_expenses(scoped, category, start, end)


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


def list_customers(
    context: RuntimeContext,
    owner_id: Optional[str] = None,
    *,
    search: str = "",
    limit: Optional[int] = None,
) -> List[CustomerSummary]:
    """Summarise each customer's orders for one owner.

    Args:
        context (RuntimeContext): Active runtime context.
        owner_id (str | None): Owner whose orders are rolled up; defaults to
            the configured owner.
        search (str): Case-insensitive substring matched against the
            customer name or contact.
        limit (int | None): Keep only the most recent ``limit`` customers.

    Returns:
        list[CustomerSummary]: Customers ordered by their latest order,
            newest first.
    """
    summaries = customer_summaries(list_orders(context, owner_id))
    term = search.strip().lower()
    if term:
        summaries = [
            summary for summary in summaries if term in summary.name.lower() or term in summary.contact.lower()
        ]
    if limit is not None:
        summaries = summaries[: max(limit, 0)]
    return summaries


def calculate_financial_summary(
    context: RuntimeContext,
    owner_id: Optional[str] = None,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> Dict[str, Any]:
    """Produce the dashboard figures for one owner.

    Order and expense figures honour the optional inclusive date range; stock
    figures always describe the current catalog.

    Returns:
        dict[str, Any]: ``total_revenue``, ``total_expenses``, ``profit``,
            ``average_order_value``, ``order_count``, ``pending_orders``,
            ``stock_value``, ``stock_cost_value`` and ``low_stock_products``.
    """
    products = list_products(context, owner_id)
    orders = list_orders(context, owner_id, start=start, end=end)
    expenses = list_expenses(context, owner_id, start=start, end=end)

    summary: Dict[str, Any] = dict(profit_summary(orders, expenses))
    summary.update(
        average_order_value=average_order_value(orders),
        order_count=len(orders),
        pending_orders=pending_order_count(orders),
        stock_value=total_stock_value(products),
        stock_cost_value=total_stock_cost_value(products),
        low_stock_products=low_stock_product_count(products, context.settings.low_stock_threshold),
    )
    log.debug("Calculated financial summary for owner '%s': %s", _owner(context, owner_id), summary)
    return summary


__all__ = [
    "RuntimeContext",
    "load_runtime_context",
    "ensure_schema_version",
    "persist_context",
    "refresh_context",
    "generate_record_id",
    "list_products",
    "get_product",
    "list_low_stock_products",
    "add_product",
    "adjust_variant_stock",
    "list_categories",
    "add_category",
    "new_session_cart",
    "load_session_cart",
    "save_session_cart",
    "add_to_cart",
    "place_storefront_order",
    "place_admin_order",
    "list_orders",
    "get_order",
    "update_order",
    "record_expense",
    "list_expenses",
    "list_customers",
    "calculate_financial_summary",
]
