"""Order factory and status lifecycle.

Orders are immutable snapshots created from a storefront cart or from a line
list assembled by an admin. Creation validates the customer and the lines,
prices the order, issues a process-unique identifier, and stamps the initial
payment and delivery statuses of the chosen creation profile. Afterwards only
the payment status, delivery status, payment method, and notes may change,
and only through :func:`apply_order_update`.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Type, TypeVar, Union

from .cart import CartItem, CartState, as_rate, split_item_id
from .constants import (
    DEFAULT_TAX_RATE,
    FILTER_ALL,
    DeliveryStatus,
    OrderChannel,
    PaymentMethod,
    PaymentStatus,
)
from .exceptions import NotFoundError, StatusTransitionError, ValidationError
from .inventory import Product, adjust_product_stock, get_variant


@dataclass(frozen=True)
class Customer:
    """Contact and delivery details captured at checkout."""

    name: str
    phone: str = ""
    email: str = ""
    address: str = ""
    city: str = ""
    postal_code: str = ""
    province: str = ""

    @property
    def contact(self) -> str:
        return self.phone.strip() or self.email.strip()


@dataclass(frozen=True)
class OrderItem:
    """Frozen order line: product reference, quantity, and unit price."""

    product_id: str
    name: str
    quantity: int
    unit_price: Decimal
    variant_index: Optional[int] = None
    variant_label: str = ""

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class Order:
    """Immutable order snapshot."""

    order_id: str
    items: Tuple[OrderItem, ...]
    customer: Customer
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    delivery_status: DeliveryStatus
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    tax_rate: Decimal
    created_at: datetime
    created_by: str
    channel: OrderChannel = OrderChannel.STOREFRONT
    notes: str = ""


OrderLine = Union[CartItem, OrderItem]
EnumT = TypeVar("EnumT", bound=Enum)


# ---------------------------------------------------------------------------
# Identifier generation
# ---------------------------------------------------------------------------


@dataclass
class OrderIdGenerator:
    """Issue time-based order ids that are never repeated by this instance.

    Ids take the form ``ORD-YYYYMMDDHHMMSSffffff``. When two orders share the
    same microsecond a numeric suffix keeps them distinct.
    """

    prefix: str = "ORD"
    _issued: Set[str] = field(default_factory=set, repr=False)

    def __call__(self, when: Optional[datetime] = None) -> str:
        when = when or datetime.now(UTC)
        base = f"{self.prefix}-{when.strftime('%Y%m%d%H%M%S%f')}"
        candidate = base
        counter = 1
        while candidate in self._issued:
            candidate = f"{base}-{counter}"
            counter += 1
        self._issued.add(candidate)
        return candidate


_default_id_generator = OrderIdGenerator()


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def coerce_enum(enum_cls: Type[EnumT], value: Union[str, EnumT], field_name: str) -> EnumT:
    """Resolve ``value`` into a member of ``enum_cls`` (case-insensitive).

    Raises:
        ValidationError: If ``value`` names no member of ``enum_cls``.
    """
    if isinstance(value, enum_cls):
        return value
    normalized = str(value).strip().lower()
    for member in enum_cls:
        if member.value.lower() == normalized:
            return member
    raise ValidationError(f"Unsupported {field_name}: {value!r}")


def validate_customer(customer: Customer) -> None:
    """Require a customer name and at least one of phone or email."""
    if not customer.name.strip():
        raise ValidationError("Customer name is required")
    if not customer.contact:
        raise ValidationError("Customer phone or email is required")


def to_order_items(lines: Union[CartState, Iterable[OrderLine]]) -> Tuple[OrderItem, ...]:
    """Copy cart lines or admin lines into frozen :class:`OrderItem` values.

    Cart item ids carry the product id and optional variant index (see
    :func:`shop_backoffice.cart.make_item_id`); they are split back apart so
    the order keeps a precise stock reference.
    """
    source = lines.items if isinstance(lines, CartState) else lines
    result: List[OrderItem] = []
    for line in source:
        if isinstance(line, OrderItem):
            result.append(line)
        elif isinstance(line, CartItem):
            product_id, variant_index = split_item_id(line.item_id)
            result.append(
                OrderItem(
                    product_id=product_id,
                    name=line.name,
                    quantity=line.quantity,
                    unit_price=line.price,
                    variant_index=variant_index,
                )
            )
        else:
            raise ValidationError(f"Unsupported order line: {line!r}")
    return tuple(result)


def validate_order_items(items: Sequence[OrderItem]) -> None:
    """Reject an empty line list, quantities below one, and negative prices.

    Raises:
        ValidationError: On the first offending line.
    """
    if not items:
        raise ValidationError("An order needs at least one line item")
    for item in items:
        if not isinstance(item.quantity, int) or item.quantity < 1:
            raise ValidationError(f"Line '{item.name}' must have a quantity of at least 1")
        if item.unit_price < 0:
            raise ValidationError(f"Line '{item.name}' has a negative price")


def _initial_statuses(profile: OrderChannel, method: PaymentMethod) -> Tuple[PaymentStatus, DeliveryStatus]:
    if method is PaymentMethod.CASH:
        return PaymentStatus.PAID, DeliveryStatus.PENDING
    if profile is OrderChannel.ADMIN:
        return PaymentStatus.PROCESSING, DeliveryStatus.PENDING
    return PaymentStatus.PENDING, DeliveryStatus.PENDING


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_order(
    lines: Union[CartState, Iterable[OrderLine]],
    customer: Customer,
    payment_method: Union[str, PaymentMethod],
    *,
    tax_rate: Union[Decimal, float, str] = DEFAULT_TAX_RATE,
    profile: OrderChannel = OrderChannel.STOREFRONT,
    created_by: str = "",
    notes: str = "",
    timestamp: Optional[datetime] = None,
    id_generator: Optional[OrderIdGenerator] = None,
) -> Order:
    """Validate, price, and snapshot a new order.

    Args:
        lines (CartState | Iterable[CartItem | OrderItem]): Storefront cart or
            admin-assembled lines. They are copied, so later cart mutations
            never reach the order.
        customer (Customer): Buyer details; name and a contact are required.
        payment_method (str | PaymentMethod): Chosen payment mechanism.
        tax_rate (Decimal | float | str): Rate applied to the subtotal at this
            call site. Non-Decimal values are converted through ``str``.
        profile (OrderChannel): Creation profile driving default statuses.
        created_by (str): Owner/account id stamped on the order.
        notes (str): Optional free-text notes.
        timestamp (datetime | None): Creation time; defaults to now (UTC).
        id_generator (OrderIdGenerator | None): Id source; defaults to the
            module-wide generator.

    Returns:
        Order: Frozen order with ``total == subtotal + tax`` exactly.

    Raises:
        ValidationError: On a missing customer name/contact, an empty line
            list, a non-positive quantity, a negative price, an unknown
            payment method, or a tax rate that is not a number.
    """
    validate_customer(customer)
    items = to_order_items(lines)
    validate_order_items(items)
    method = coerce_enum(PaymentMethod, payment_method, "payment method")
    tax_rate = as_rate(tax_rate)
    if tax_rate < 0:
        raise ValidationError("Tax rate cannot be negative")

    subtotal = sum((item.line_total for item in items), Decimal("0"))
    tax = subtotal * tax_rate
    total = subtotal + tax

    created_at = timestamp or datetime.now(UTC)
    generator = id_generator or _default_id_generator
    payment_status, delivery_status = _initial_statuses(profile, method)

    return Order(
        order_id=generator(created_at),
        items=items,
        customer=customer,
        payment_method=method,
        payment_status=payment_status,
        delivery_status=delivery_status,
        subtotal=subtotal,
        tax=tax,
        total=total,
        tax_rate=tax_rate,
        created_at=created_at,
        created_by=created_by,
        channel=profile,
        notes=notes,
    )


def create_storefront_order(
    lines: Union[CartState, Iterable[OrderLine]],
    customer: Customer,
    payment_method: Union[str, PaymentMethod],
    **kwargs,
) -> Order:
    """Create an order with storefront defaults.

    Cash orders start ``paid``; everything else starts ``pending``. Delivery
    always starts ``pending``. When ``lines`` is a :class:`CartState` and no
    ``tax_rate`` is given, the cart's own rate is used.
    """
    if isinstance(lines, CartState):
        kwargs.setdefault("tax_rate", lines.tax_rate)
    return create_order(lines, customer, payment_method, profile=OrderChannel.STOREFRONT, **kwargs)


def create_admin_order(
    lines: Union[CartState, Iterable[OrderLine]],
    customer: Customer,
    payment_method: Union[str, PaymentMethod],
    **kwargs,
) -> Order:
    """Create an order with admin defaults (non-cash payments start ``processing``)."""
    return create_order(lines, customer, payment_method, profile=OrderChannel.ADMIN, **kwargs)


# ---------------------------------------------------------------------------
# Admin line assembly
# ---------------------------------------------------------------------------


def add_admin_line(lines: Sequence[OrderItem], product: Product, variant_index: int) -> Tuple[OrderItem, ...]:
    """Add one unit of a product variant to an admin line list.

    Lines are keyed by ``(product_id, variant_index)``; repeated adds bump the
    quantity of the existing line. New lines freeze the variant's current
    selling price.
    """
    variant = get_variant(product, variant_index)
    for position, line in enumerate(lines):
        if line.product_id == product.product_id and line.variant_index == variant_index:
            return set_admin_line_quantity(lines, position, line.quantity + 1)
    new_line = OrderItem(
        product_id=product.product_id,
        name=product.name,
        quantity=1,
        unit_price=variant.selling_price,
        variant_index=variant_index,
        variant_label=variant.label,
    )
    return tuple(lines) + (new_line,)


def set_admin_line_quantity(lines: Sequence[OrderItem], position: int, quantity: int) -> Tuple[OrderItem, ...]:
    """Set the quantity of the line at ``position``; zero or less removes it."""
    if quantity <= 0:
        return remove_admin_line(lines, position)
    return tuple(
        replace(line, quantity=quantity) if index == position else line
        for index, line in enumerate(lines)
    )


def remove_admin_line(lines: Sequence[OrderItem], position: int) -> Tuple[OrderItem, ...]:
    """Drop the line at ``position``; an out-of-range position changes nothing."""
    return tuple(line for index, line in enumerate(lines) if index != position)


# ---------------------------------------------------------------------------
# Stock reservation
# ---------------------------------------------------------------------------


def _resolve_variant_index(product: Product, item: OrderItem) -> int:
    if item.variant_index is not None:
        return item.variant_index
    if len(product.variants) == 1:
        return 0
    raise ValidationError(
        f"Line '{item.name}' does not name a variant of product '{product.product_id}'"
    )


def reserve_stock(products: Mapping[str, Product], items: Iterable[OrderItem]) -> Dict[str, Product]:
    """Decrement variant stock for every order line, all or nothing.

    Args:
        products (Mapping[str, Product]): Current catalog snapshot keyed by
            product id.
        items (Iterable[OrderItem]): Lines of the order being placed.

    Returns:
        dict[str, Product]: Updated products for every product the order
            touched. Products not referenced by the order are omitted.

    Raises:
        NotFoundError: If a line references an unknown product or variant.
        NegativeStockError: If any line asks for more than is on hand. No
            partial result is returned in that case.
        ValidationError: If a line on a multi-variant product omits the
            variant index.
    """
    updated: Dict[str, Product] = {}
    for item in items:
        current = updated.get(item.product_id) or products.get(item.product_id)
        if current is None:
            raise NotFoundError(f"Unknown product id: {item.product_id}")
        variant_index = _resolve_variant_index(current, item)
        updated[item.product_id] = adjust_product_stock(current, variant_index, -item.quantity)
    return updated


# ---------------------------------------------------------------------------
# Status lifecycle
# ---------------------------------------------------------------------------


PAYMENT_TRANSITIONS: Mapping[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PROCESSING, PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.PROCESSING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.PAID: frozenset(),
    PaymentStatus.FAILED: frozenset(),
}

DELIVERY_TRANSITIONS: Mapping[DeliveryStatus, FrozenSet[DeliveryStatus]] = {
    DeliveryStatus.PENDING: frozenset({DeliveryStatus.IN_TRANSIT, DeliveryStatus.NOT_DELIVERED}),
    DeliveryStatus.IN_TRANSIT: frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.NOT_DELIVERED}),
    DeliveryStatus.DELIVERED: frozenset(),
    DeliveryStatus.NOT_DELIVERED: frozenset(),
}


def can_transition(graph: Mapping[EnumT, FrozenSet[EnumT]], current: EnumT, target: EnumT) -> bool:
    """Staying put is always allowed; otherwise ``target`` must follow ``current``."""
    return current == target or target in graph.get(current, frozenset())


def apply_order_update(
    order: Order,
    *,
    payment_status: Union[str, PaymentStatus, None] = None,
    delivery_status: Union[str, DeliveryStatus, None] = None,
    payment_method: Union[str, PaymentMethod, None] = None,
    notes: Optional[str] = None,
    strict: bool = False,
) -> Order:
    """Return ``order`` with the editable fields replaced.

    Only the payment status, delivery status, payment method, and notes can
    change; items, customer, and totals stay frozen. With ``strict=False``
    any valid status may be assigned, matching the admin edit screen. With
    ``strict=True`` status changes must follow :data:`PAYMENT_TRANSITIONS`
    and :data:`DELIVERY_TRANSITIONS`.

    Raises:
        ValidationError: If a value names no member of its enum.
        StatusTransitionError: If ``strict`` and a transition is not allowed.
    """
    changes: Dict[str, object] = {}

    if payment_status is not None:
        target_payment = coerce_enum(PaymentStatus, payment_status, "payment status")
        if strict and not can_transition(PAYMENT_TRANSITIONS, order.payment_status, target_payment):
            raise StatusTransitionError(
                f"Order '{order.order_id}': payment status cannot move from "
                f"{order.payment_status.value} to {target_payment.value}"
            )
        changes["payment_status"] = target_payment

    if delivery_status is not None:
        target_delivery = coerce_enum(DeliveryStatus, delivery_status, "delivery status")
        if strict and not can_transition(DELIVERY_TRANSITIONS, order.delivery_status, target_delivery):
            raise StatusTransitionError(
                f"Order '{order.order_id}': delivery status cannot move from "
                f"{order.delivery_status.value} to {target_delivery.value}"
            )
        changes["delivery_status"] = target_delivery

    if payment_method is not None:
        changes["payment_method"] = coerce_enum(PaymentMethod, payment_method, "payment method")

    if notes is not None:
        changes["notes"] = notes

    return replace(order, **changes) if changes else order


def order_matches(order: Order, search_term: str = "", payment_status_filter: str = FILTER_ALL) -> bool:
    """Order-list predicate: customer name or id substring AND payment status."""
    term = (search_term or "").strip().lower()
    text_ok = term in order.customer.name.lower() or term in order.order_id.lower()
    wanted = (payment_status_filter or FILTER_ALL).strip().lower()
    status_ok = wanted == FILTER_ALL or order.payment_status.value == wanted
    return text_ok and status_ok


__all__ = [
    "Customer",
    "OrderItem",
    "Order",
    "OrderLine",
    "OrderIdGenerator",
    "coerce_enum",
    "validate_customer",
    "to_order_items",
    "validate_order_items",
    "create_order",
    "create_storefront_order",
    "create_admin_order",
    "add_admin_line",
    "set_admin_line_quantity",
    "remove_admin_line",
    "reserve_stock",
    "PAYMENT_TRANSITIONS",
    "DELIVERY_TRANSITIONS",
    "can_transition",
    "apply_order_update",
    "order_matches",
]
