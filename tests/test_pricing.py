"""Tests for order money arithmetic."""

from datetime import datetime
from decimal import Decimal

import pytest

from marketplace.errors import ValidationError
from marketplace.services.pricing_service import PricingEngine


@pytest.fixture
def pricing():
    return PricingEngine()


def test_items_total_uses_snapshot_prices(pricing):
    items = [{"unit_price": "10.00", "quantity": 3}, {"unit_price": "0.335", "quantity": 1}]
    assert pricing.compute_items_total(items) == Decimal("30.34")


def test_standard_shipping_without_distance_is_the_minimum(pricing):
    assert pricing.compute_shipping("standard") == Decimal("5.00")


def test_shipping_adds_distance_and_weight(pricing):
    # 10 + 0.5 * 12 + 1 * 2.5
    assert pricing.compute_shipping("express", distance_km=12, weight_kg=Decimal("2.5")) == Decimal("18.50")


def test_pickup_point_is_flat(pricing):
    assert pricing.compute_shipping("pickup_point", distance_km=300, weight_kg=20) == Decimal("2.00")


def test_unknown_method_is_rejected(pricing):
    with pytest.raises(ValidationError):
        pricing.compute_shipping("drone")


def test_negative_inputs_are_rejected(pricing):
    with pytest.raises(ValidationError):
        pricing.compute_shipping("standard", distance_km=-1)


def test_estimate_delivery_date(pricing):
    start = datetime(2024, 6, 1, 12, 0)
    assert pricing.estimate_delivery_date("express", start) == datetime(2024, 6, 2, 12, 0)
    assert pricing.estimate_delivery_date("standard", start) == datetime(2024, 6, 4, 12, 0)


def test_total_is_items_plus_shipping_minus_discount(pricing):
    assert pricing.compute_total(Decimal("100.00"), Decimal("5.00"), Decimal("20.00")) == Decimal("85.00")


def test_distance_between_needs_an_origin(pricing):
    assert pricing.distance_between(None, 36.8, 10.1) is None
    km = pricing.distance_between({"lat": 36.8065, "lon": 10.1815}, 35.8256, 10.6084)
    assert 110 < km < 120
