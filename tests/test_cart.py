"""Unit tests for the reducer-style cart engine."""

from __future__ import annotations

from decimal import Decimal

import pytest

from shop_backoffice.cart import (
    AddItem,
    CartItem,
    ClearCart,
    LoadCart,
    RemoveItem,
    SetLastOrder,
    UpdateQuantity,
    dispatch,
    make_item_id,
    new_cart,
    reduce_cart,
    split_item_id,
)


def _item(item_id: str, price: str = "10.00") -> CartItem:
    return CartItem(item_id=item_id, name=f"Item {item_id}", price=Decimal(price))


def test_add_item_appends_with_quantity_one():
    state = reduce_cart(new_cart(), AddItem(_item("A")))
    assert [(item.item_id, item.quantity) for item in state.items] == [("A", 1)]


def test_add_existing_item_increments_and_keeps_original_price():
    """A second add should not reprice the line."""

    state = dispatch(new_cart(), AddItem(_item("A", "10.00")), AddItem(_item("A", "12.00")))
    assert len(state.items) == 1
    assert state.items[0].quantity == 2
    assert state.items[0].price == Decimal("10.00")


def test_reduce_cart_never_mutates_input():
    original = new_cart([_item("A")])
    reduce_cart(original, AddItem(_item("B")))
    assert [item.item_id for item in original.items] == ["A"]


def test_remove_unknown_item_is_noop():
    state = new_cart([_item("A")])
    assert reduce_cart(state, RemoveItem("missing")) == state


@pytest.mark.parametrize("quantity", [0, -3])
def test_update_quantity_non_positive_removes_line(quantity):
    state = reduce_cart(new_cart([_item("A"), _item("B")]), UpdateQuantity("A", quantity))
    assert [item.item_id for item in state.items] == ["B"]


def test_update_quantity_sets_value():
    state = reduce_cart(new_cart([_item("A")]), UpdateQuantity("A", 7))
    assert state.items[0].quantity == 7
    assert state.item_count == 7


def test_clear_cart_keeps_last_order():
    marker = object()
    state = dispatch(new_cart([_item("A")]), SetLastOrder(marker), ClearCart())
    assert state.items == ()
    assert state.last_order is marker


def test_load_cart_replaces_items():
    state = reduce_cart(new_cart([_item("A")]), LoadCart((_item("B"), _item("C"))))
    assert [item.item_id for item in state.items] == ["B", "C"]


def test_unknown_action_raises_type_error():
    with pytest.raises(TypeError):
        reduce_cart(new_cart(), "not-an-action")


def test_totals_are_derived_from_items(sample_items):
    """121.97 at 15% yields 18.2955 tax and 140.2655 total, exactly."""

    cart = new_cart(sample_items, tax_rate=Decimal("0.15"))
    assert cart.item_count == 3
    assert cart.subtotal == Decimal("121.97")
    assert cart.tax == Decimal("18.2955")
    assert cart.total == Decimal("140.2655")


@pytest.mark.parametrize("rate", [0.15, "0.15", Decimal("0.15")])
def test_tax_rate_is_normalised_to_decimal(sample_items, rate):
    cart = new_cart(sample_items, tax_rate=rate)
    assert cart.tax_rate == Decimal("0.15")
    assert cart.total == Decimal("140.2655")


def test_empty_cart_totals_are_zero():
    cart = new_cart()
    assert cart.item_count == 0
    assert cart.subtotal == 0
    assert cart.total == 0


def test_item_id_round_trip():
    assert make_item_id("P-1") == "P-1"
    assert split_item_id(make_item_id("P-1", 2)) == ("P-1", 2)
    assert split_item_id("P-1") == ("P-1", None)


def test_repeated_adds_collapse_into_one_line():
    state = dispatch(new_cart(), *(AddItem(_item("7")) for _ in range(3)))
    assert [(item.item_id, item.quantity) for item in state.items] == [("7", 3)]
