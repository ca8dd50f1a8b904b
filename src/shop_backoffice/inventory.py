"""Variant and product rules for the commerce core.

Variants are the sellable unit: each carries its own price, cost basis, and
stock count. Products group one or more variants and expose aggregate views
(total stock, price range, stock value) derived on demand from the variant
list. Every function here is pure: values go in, new values come out, and the
caller decides what to persist.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Iterator, Optional, Tuple

from .constants import DEFAULT_LOW_STOCK_THRESHOLD, FILTER_ALL, StockLevel
from .exceptions import NegativeStockError, NotFoundError, ValidationError


@dataclass(frozen=True)
class Variant:
    """One purchasable configuration (type, color, size) of a product."""

    type: str = ""
    color: str = ""
    size: str = ""
    selling_price: Decimal = Decimal("0.00")
    stock_price: Decimal = Decimal("0.00")
    stock_quantity: int = 0
    description: str = ""
    images: Tuple[str, ...] = ()

    @property
    def label(self) -> str:
        """Human readable discriminator such as ``"Shirt / Red / M"``."""
        parts = [part for part in (self.type, self.color, self.size) if part]
        return " / ".join(parts)


@dataclass(frozen=True)
class Product:
    """A named catalog item owned by a single business account."""

    product_id: str
    owner_id: str
    name: str
    category: str = ""
    supplier: str = ""
    batch_number: str = ""
    status: str = "available"
    last_restocked: Optional[date] = None
    product_image: str = ""
    variants: Tuple[Variant, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Category:
    """Classification label applied to products."""

    name: str
    owner_id: str
    description: str = ""
    is_active: bool = True


# ---------------------------------------------------------------------------
# Variant & stock model
# ---------------------------------------------------------------------------


def classify(variant: Variant, threshold: int = DEFAULT_LOW_STOCK_THRESHOLD) -> StockLevel:
    """Classify a variant's stock against the low-stock threshold.

    Args:
        variant (Variant): Variant whose ``stock_quantity`` is inspected.
        threshold (int): Quantities strictly below this value (but above zero)
            count as low stock.

    Returns:
        StockLevel: ``OUT_OF_STOCK`` at zero, ``LOW_STOCK`` for
            ``0 < quantity < threshold``, otherwise ``IN_STOCK``.
    """
    if variant.stock_quantity <= 0:
        return StockLevel.OUT_OF_STOCK
    if variant.stock_quantity < threshold:
        return StockLevel.LOW_STOCK
    return StockLevel.IN_STOCK


def variant_value(variant: Variant) -> Decimal:
    """Return the retail value of the variant's on-hand stock."""
    return variant.selling_price * variant.stock_quantity


def variant_cost_value(variant: Variant) -> Decimal:
    """Return the cost-basis value of the variant's on-hand stock."""
    return variant.stock_price * variant.stock_quantity


def adjust_stock(variant: Variant, delta: int) -> Variant:
    """Return a copy of ``variant`` with ``delta`` applied to its stock.

    Args:
        variant (Variant): Variant to adjust. It is never mutated.
        delta (int): Signed quantity change; negative values deplete stock.

    Returns:
        Variant: New variant carrying the updated quantity.

    Raises:
        NegativeStockError: If the adjustment would leave the quantity below
            zero. The quantity is never clamped, so oversell surfaces to the
            caller instead of silently disappearing.
    """
    new_quantity = variant.stock_quantity + delta
    if new_quantity < 0:
        raise NegativeStockError(
            f"Insufficient stock for variant '{variant.label or 'default'}': "
            f"{variant.stock_quantity} available, {-delta} requested",
            available=variant.stock_quantity,
            requested=-delta,
        )
    return replace(variant, stock_quantity=new_quantity)


# ---------------------------------------------------------------------------
# Product aggregate
# ---------------------------------------------------------------------------


def total_stock(product: Product) -> int:
    """Sum the stock of every variant; products without variants report 0."""
    return sum(variant.stock_quantity for variant in product.variants)


def is_low_stock(product: Product, threshold: int = DEFAULT_LOW_STOCK_THRESHOLD) -> bool:
    """True when the summed stock of all variants is below ``threshold``."""
    return total_stock(product) < threshold


def out_of_stock_variants(product: Product) -> Tuple[Variant, ...]:
    """Variants with nothing on hand."""
    return tuple(variant for variant in product.variants if variant.stock_quantity == 0)


def low_stock_variants(product: Product, threshold: int = DEFAULT_LOW_STOCK_THRESHOLD) -> Iterator[Variant]:
    """Yield the variants classified as low stock or out of stock.

    The generator reads ``product.variants`` each time it is created, so a
    fresh call always reflects the product value it was given.
    """
    for variant in product.variants:
        if classify(variant, threshold) is not StockLevel.IN_STOCK:
            yield variant


def price_range(product: Product) -> Tuple[Decimal, Decimal]:
    """Return ``(min, max)`` selling price across variants.

    Products without variants report ``(0, 0)`` so list screens can render
    legacy records.
    """
    prices = [variant.selling_price for variant in product.variants]
    if not prices:
        return Decimal("0.00"), Decimal("0.00")
    return min(prices), max(prices)


def product_stock_value(product: Product) -> Decimal:
    """Selling-price value of everything on hand; ``0`` without variants."""
    return sum((variant_value(variant) for variant in product.variants), Decimal("0"))


def product_cost_value(product: Product) -> Decimal:
    """Cost-price counterpart of :func:`product_stock_value`."""
    return sum((variant_cost_value(variant) for variant in product.variants), Decimal("0"))


def matches(
    product: Product,
    search_term: str = "",
    category_filter: str = FILTER_ALL,
    owner_id: Optional[str] = None,
) -> bool:
    """Decide whether a product belongs in a filtered product listing.

    Three independent predicates are combined with a logical AND:

    * the product name contains ``search_term`` (case-insensitive; an empty
      term matches everything),
    * the category equals ``category_filter`` case-insensitively, or the
      filter is the ``"all"`` wildcard,
    * the product is owned by ``owner_id``.

    Args:
        product (Product): Candidate product.
        search_term (str): Free-text fragment typed by the user.
        category_filter (str): Category name or ``"all"``.
        owner_id (str | None): Account the listing is scoped to. ``None``
            never matches, so unscoped queries return nothing.

    Returns:
        bool: ``True`` when all three predicates hold.
    """
    term = (search_term or "").strip().lower()
    name_ok = term in product.name.lower()

    wanted = (category_filter or FILTER_ALL).strip().lower()
    category_ok = wanted == FILTER_ALL or (product.category or "").strip().lower() == wanted

    owner_ok = owner_id is not None and product.owner_id == owner_id
    return name_ok and category_ok and owner_ok


def validate_new_product(product: Product) -> None:
    """Reject products that must not be written as new catalog entries.

    Raises:
        ValidationError: If the product has no name, no owner, no variants,
            or a variant with a negative price or quantity.
    """
    if not product.name.strip():
        raise ValidationError("Product name is required")
    if not product.owner_id:
        raise ValidationError("Product owner is required")
    if not product.variants:
        raise ValidationError(f"Product '{product.name}' must have at least one variant")
    for index, variant in enumerate(product.variants):
        if variant.selling_price < 0 or variant.stock_price < 0:
            raise ValidationError(f"Variant {index} of '{product.name}' has a negative price")
        if variant.stock_quantity < 0:
            raise ValidationError(f"Variant {index} of '{product.name}' has negative stock")


def get_variant(product: Product, variant_index: int) -> Variant:
    """Return the variant at ``variant_index``.

    Raises:
        NotFoundError: If the index is negative or past the last variant.
    """
    try:
        if variant_index < 0:
            raise IndexError(variant_index)
        return product.variants[variant_index]
    except IndexError as exc:
        raise NotFoundError(
            f"Product '{product.product_id}' has no variant at index {variant_index}"
        ) from exc


def adjust_product_stock(product: Product, variant_index: int, delta: int) -> Product:
    """Apply :func:`adjust_stock` to one variant and return the new product."""
    updated = adjust_stock(get_variant(product, variant_index), delta)
    variants = list(product.variants)
    variants[variant_index] = updated
    return replace(product, variants=tuple(variants))


__all__ = [
    "Variant",
    "Product",
    "Category",
    "classify",
    "variant_value",
    "variant_cost_value",
    "adjust_stock",
    "total_stock",
    "is_low_stock",
    "out_of_stock_variants",
    "low_stock_variants",
    "price_range",
    "product_stock_value",
    "product_cost_value",
    "matches",
    "validate_new_product",
    "get_variant",
    "adjust_product_stock",
]
