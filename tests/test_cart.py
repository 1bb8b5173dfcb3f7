"""Tests for the cart and checkout hand-off."""

import pytest

from conftest import HOME_ADDRESS, stock_of
from marketplace.errors import InsufficientStock, NotFoundError, ValidationError


@pytest.fixture
def cart(components):
    return components["cart"]


class TestCart:
    def test_add_merges_lines(self, cart, products):
        cart.add_item(session_id="s1", user_id=None, product_id=products["a"], quantity=2)
        cart.add_item(session_id="s1", user_id=None, product_id=products["a"], quantity=1)
        data = cart.get_cart(session_id="s1", user_id=None)
        assert [(it["product_id"], it["quantity"]) for it in data["items"]] == [(products["a"], 3)]
        assert data["subtotal"] == "30.00"
        assert data["currency"] == "TND"

    def test_discounted_price_in_cart(self, cart, products):
        cart.add_item(session_id="s1", user_id=None, product_id=products["c"])
        assert cart.get_cart(session_id="s1", user_id=None)["items"][0]["unit_price"] == "30.00"

    def test_stock_cap(self, cart, products):
        with pytest.raises(InsufficientStock):
            cart.add_item(session_id="s1", user_id=None, product_id=products["b"], quantity=6)

    def test_carts_are_isolated(self, cart, products, users):
        item = cart.add_item(session_id="s1", user_id=None, product_id=products["a"])
        assert cart.get_cart(session_id="s2", user_id=None)["items"] == []
        assert cart.get_cart(session_id=None, user_id=users["customer"])["items"] == []
        with pytest.raises(NotFoundError):
            cart.remove_item(session_id="s2", user_id=None, item_id=item["item_id"])

    def test_update_and_remove(self, cart, products):
        item_id = cart.add_item(session_id="s1", user_id=None, product_id=products["a"])["item_id"]
        assert cart.update_item(session_id="s1", user_id=None, item_id=item_id, quantity=4)["status"] == "updated"
        with pytest.raises(InsufficientStock):
            cart.update_item(session_id="s1", user_id=None, item_id=item_id, quantity=11)
        assert cart.update_item(session_id="s1", user_id=None, item_id=item_id, quantity=0)["status"] == "removed"
        assert cart.get_cart(session_id="s1", user_id=None)["items"] == []

    def test_identity_required(self, cart, products):
        with pytest.raises(ValidationError):
            cart.add_item(session_id=None, user_id=None, product_id=products["a"])

    def test_unknown_product(self, cart):
        with pytest.raises(NotFoundError):
            cart.add_item(session_id="s1", user_id=None, product_id="missing")


class TestCheckout:
    def test_checkout_places_order_and_empties_cart(self, cart, products, users, session_factory):
        cart.add_item(session_id=None, user_id=users["customer"], product_id=products["a"], quantity=3)
        result = cart.checkout(
            session_id=None,
            user_id=users["customer"],
            delivery_option="home_delivery",
            shipping_address=dict(HOME_ADDRESS),
            payment_method="cash_on_delivery",
        )
        assert result["order"]["total_price"] == "35.00"
        assert cart.get_cart(session_id=None, user_id=users["customer"])["items"] == []
        assert stock_of(session_factory, products["a"]) == 7

    def test_failed_checkout_keeps_cart(self, cart, products, users):
        cart.add_item(session_id=None, user_id=users["customer"], product_id=products["a"])
        with pytest.raises(ValidationError):
            cart.checkout(session_id=None, user_id=users["customer"], delivery_option="home_delivery", payment_method="cash_on_delivery")
        assert len(cart.get_cart(session_id=None, user_id=users["customer"])["items"]) == 1

    def test_empty_cart(self, cart, users):
        with pytest.raises(ValidationError):
            cart.checkout(session_id=None, user_id=users["customer"], delivery_option="home_delivery", payment_method="cash_on_delivery")
