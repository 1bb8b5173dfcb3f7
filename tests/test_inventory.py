"""Tests for the inventory ledger."""

import pytest

from conftest import stock_of
from marketplace.errors import InsufficientStock, InvalidRelease, NotFoundError
from marketplace.models import Product


@pytest.fixture
def ledger(components):
    return components["inventory"]


class TestCheckAvailability:
    def test_reports_shortfall_with_context(self, ledger, products):
        with pytest.raises(InsufficientStock) as exc:
            ledger.check_availability([{"product_id": products["b"], "quantity": 6}])
        assert exc.value.context == {"product_id": products["b"], "available": 5, "requested": 6}

    def test_merges_duplicate_lines(self, ledger, products):
        with pytest.raises(InsufficientStock):
            ledger.check_availability(
                [{"product_id": products["b"], "quantity": 3}, {"product_id": products["b"], "quantity": 3}]
            )

    def test_inactive_product_is_not_found(self, ledger, products, session_factory):
        with session_factory() as session:
            session.get(Product, products["a"]).is_active = False
        with pytest.raises(NotFoundError):
            ledger.check_availability([{"product_id": products["a"], "quantity": 1}])

    def test_is_read_only(self, ledger, products, session_factory):
        ledger.check_availability([{"product_id": products["a"], "quantity": 10}])
        assert stock_of(session_factory, products["a"]) == 10


class TestReserve:
    def test_decrements_every_line(self, ledger, products, session_factory):
        remaining = ledger.reserve(
            [{"product_id": products["a"], "quantity": 3}, {"product_id": products["b"], "quantity": 1}],
            order_id="o-1",
            operation_key="reserve:o-1",
        )
        assert remaining == {products["a"]: 7, products["b"]: 4}
        assert stock_of(session_factory, products["a"]) == 7
        assert stock_of(session_factory, products["b"]) == 4

    def test_all_or_nothing(self, ledger, products, session_factory):
        with pytest.raises(InsufficientStock):
            ledger.reserve(
                [{"product_id": products["a"], "quantity": 2}, {"product_id": products["b"], "quantity": 99}],
                order_id="o-1",
                operation_key="reserve:o-1",
            )
        assert stock_of(session_factory, products["a"]) == 10
        assert stock_of(session_factory, products["b"]) == 5

    def test_replayed_key_is_noop(self, ledger, products, session_factory):
        lines = [{"product_id": products["a"], "quantity": 2}]
        ledger.reserve(lines, order_id="o-1", operation_key="reserve:o-1")
        assert ledger.reserve(lines, order_id="o-1", operation_key="reserve:o-1") == {}
        assert stock_of(session_factory, products["a"]) == 8


class TestRelease:
    def test_round_trip_restores_stock(self, ledger, products, session_factory):
        lines = [{"product_id": products["a"], "quantity": 4}, {"product_id": products["b"], "quantity": 2}]
        ledger.reserve(lines, order_id="o-1", operation_key="reserve:o-1")
        assert ledger.release(lines, order_id="o-1", operation_key="cancel:o-1") is True
        assert stock_of(session_factory, products["a"]) == 10
        assert stock_of(session_factory, products["b"]) == 5

    def test_release_without_reservation_is_rejected(self, ledger, products, session_factory):
        with pytest.raises(InvalidRelease) as exc:
            ledger.release([{"product_id": products["a"], "quantity": 1}], order_id="o-x", operation_key="cancel:o-x")
        assert exc.value.context["outstanding"] == 0
        assert stock_of(session_factory, products["a"]) == 10

    def test_cannot_release_more_than_outstanding(self, ledger, products, session_factory):
        ledger.reserve([{"product_id": products["a"], "quantity": 2}], order_id="o-1", operation_key="reserve:o-1")
        ledger.release([{"product_id": products["a"], "quantity": 1}], order_id="o-1", operation_key="return:1")
        with pytest.raises(InvalidRelease):
            ledger.release([{"product_id": products["a"], "quantity": 2}], order_id="o-1", operation_key="return:2")
        assert stock_of(session_factory, products["a"]) == 9

    def test_replayed_release_does_not_double_credit(self, ledger, products, session_factory):
        lines = [{"product_id": products["a"], "quantity": 3}]
        ledger.reserve(lines, order_id="o-1", operation_key="reserve:o-1")
        ledger.release(lines, order_id="o-1", operation_key="cancel:o-1")
        assert ledger.release(lines, order_id="o-1", operation_key="cancel:o-1") is False
        assert stock_of(session_factory, products["a"]) == 10

    def test_release_outstanding(self, ledger, products, session_factory):
        ledger.reserve(
            [{"product_id": products["a"], "quantity": 3}, {"product_id": products["b"], "quantity": 2}],
            order_id="o-1",
            operation_key="reserve:o-1",
        )
        ledger.release([{"product_id": products["a"], "quantity": 1}], order_id="o-1", operation_key="return:1")
        assert ledger.release_outstanding(order_id="o-1", operation_key="cancel:o-1") is True
        assert stock_of(session_factory, products["a"]) == 10
        assert stock_of(session_factory, products["b"]) == 5
        assert ledger.release_outstanding(order_id="o-1", operation_key="cancel:o-1") is False


def test_low_stock_lists_lowest_first(ledger, products, users):
    result = ledger.low_stock(5)
    assert [p["id"] for p in result] == [products["c"], products["b"]]
    assert ledger.low_stock(1) == []
    assert len(ledger.low_stock(100, seller_id=users["seller"])) == 3
