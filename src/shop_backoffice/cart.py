"""Reducer-style cart engine.

The cart is an immutable :class:`CartState` value. Every change is expressed
as an action object and applied with :func:`reduce_cart`, which always
returns a new state. Monetary totals are properties computed from the line
items on every access, so they can never drift from the items they describe.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Iterable, Optional, Tuple, Union

from .constants import DEFAULT_TAX_RATE
from .exceptions import ValidationError

if TYPE_CHECKING:  # pragma: no cover
    from .orders import Order


VARIANT_SEPARATOR = "#"


def make_item_id(product_id: str, variant_index: Optional[int] = None) -> str:
    """Build the cart key for a product, optionally narrowed to one variant."""
    if variant_index is None:
        return str(product_id)
    return f"{product_id}{VARIANT_SEPARATOR}{variant_index}"


def split_item_id(item_id: str) -> Tuple[str, Optional[int]]:
    """Inverse of :func:`make_item_id`."""
    product_id, sep, suffix = str(item_id).rpartition(VARIANT_SEPARATOR)
    if not sep or not suffix.isdigit():
        return str(item_id), None
    return product_id, int(suffix)


def as_rate(value: Union[Decimal, float, int, str]) -> Decimal:
    """Convert a tax rate to ``Decimal``.

    Floats go through ``str`` so ``0.15`` becomes ``Decimal("0.15")`` rather
    than its binary expansion.

    Raises:
        ValidationError: If ``value`` is not a number.
    """
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValidationError(f"Invalid tax rate: {value!r}") from exc


@dataclass(frozen=True)
class CartItem:
    """A cart line. ``price`` is frozen at the moment the item was added."""

    item_id: str
    name: str
    price: Decimal
    quantity: int = 1
    category: str = ""
    image: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


@dataclass(frozen=True)
class CartState:
    """Snapshot of one session's cart."""

    items: Tuple[CartItem, ...] = ()
    last_order: Optional["Order"] = None
    tax_rate: Decimal = DEFAULT_TAX_RATE

    def __post_init__(self) -> None:
        object.__setattr__(self, "tax_rate", as_rate(self.tax_rate))

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def subtotal(self) -> Decimal:
        return sum((item.line_total for item in self.items), Decimal("0"))

    @property
    def tax(self) -> Decimal:
        return self.subtotal * self.tax_rate

    @property
    def total(self) -> Decimal:
        return self.subtotal + self.tax

    def find(self, item_id: str) -> Optional[CartItem]:
        for item in self.items:
            if item.item_id == item_id:
                return item
        return None


@dataclass(frozen=True)
class AddItem:
    item: CartItem


@dataclass(frozen=True)
class RemoveItem:
    item_id: str


@dataclass(frozen=True)
class UpdateQuantity:
    item_id: str
    quantity: int


@dataclass(frozen=True)
class ClearCart:
    pass


@dataclass(frozen=True)
class SetLastOrder:
    order: "Order"


@dataclass(frozen=True)
class LoadCart:
    items: Tuple[CartItem, ...]


CartAction = Union[AddItem, RemoveItem, UpdateQuantity, ClearCart, SetLastOrder, LoadCart]


def _without(state: CartState, item_id: str) -> CartState:
    return replace(state, items=tuple(item for item in state.items if item.item_id != item_id))


def reduce_cart(state: CartState, action: CartAction) -> CartState:
    """Apply one action to ``state`` and return the resulting state.

    Transitions:

    * ``AddItem``: an existing line with the same id gains one unit and keeps
      its original price; otherwise the item is appended with quantity 1.
    * ``RemoveItem``: drops the matching line; unknown ids are a no-op.
    * ``UpdateQuantity``: quantities of zero or less remove the line,
      anything else replaces the quantity.
    * ``ClearCart``: empties the items but keeps ``last_order``.
    * ``SetLastOrder``: records the most recent order; items are untouched.
    * ``LoadCart``: replaces the items wholesale (session restore).

    Args:
        state (CartState): Current cart snapshot.
        action (CartAction): One of the action dataclasses above.

    Returns:
        CartState: New snapshot. ``state`` itself is never modified.

    Raises:
        TypeError: If ``action`` is not a recognised cart action.
    """
    if isinstance(action, AddItem):
        incoming = action.item
        if state.find(incoming.item_id) is not None:
            items = tuple(
                replace(item, quantity=item.quantity + 1) if item.item_id == incoming.item_id else item
                for item in state.items
            )
            return replace(state, items=items)
        return replace(state, items=state.items + (replace(incoming, quantity=1),))

    if isinstance(action, RemoveItem):
        return _without(state, action.item_id)

    if isinstance(action, UpdateQuantity):
        if action.quantity <= 0:
            return _without(state, action.item_id)
        items = tuple(
            replace(item, quantity=action.quantity) if item.item_id == action.item_id else item
            for item in state.items
        )
        return replace(state, items=items)

    if isinstance(action, ClearCart):
        return replace(state, items=())

    if isinstance(action, SetLastOrder):
        return replace(state, last_order=action.order)

    if isinstance(action, LoadCart):
        return replace(state, items=tuple(action.items))

    raise TypeError(f"Unsupported cart action: {action!r}")


def dispatch(state: CartState, *actions: CartAction) -> CartState:
    """Fold ``actions`` over ``state`` strictly in call order."""
    for action in actions:
        state = reduce_cart(state, action)
    return state


def new_cart(
    items: Iterable[CartItem] = (), *, tax_rate: Union[Decimal, float, str] = DEFAULT_TAX_RATE
) -> CartState:
    """Build a cart from ``items``; ``tax_rate`` may be a float or string."""
    return CartState(items=tuple(items), tax_rate=tax_rate)


__all__ = [
    "VARIANT_SEPARATOR",
    "make_item_id",
    "split_item_id",
    "as_rate",
    "CartItem",
    "CartState",
    "AddItem",
    "RemoveItem",
    "UpdateQuantity",
    "ClearCart",
    "SetLastOrder",
    "LoadCart",
    "CartAction",
    "reduce_cart",
    "dispatch",
    "new_cart",
]
