from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, Optional

from ..config import DELIVERY_LEAD_DAYS, SHIPPING_RATES
from ..errors import ValidationError
from ..utils.geo import haversine_km
from ..utils.money import ZERO, quantize, to_decimal


class PricingEngine:
    """Order money arithmetic. Pure functions over snapshots; no database access."""

    def __init__(self, rates: Optional[Dict[str, Dict[str, Decimal]]] = None, lead_days: Optional[Dict[str, int]] = None):
        self._rates = rates or SHIPPING_RATES
        self._lead_days = lead_days or DELIVERY_LEAD_DAYS

    @staticmethod
    def compute_items_total(items: Iterable[Dict]) -> Decimal:
        total = ZERO
        for it in items:
            total += to_decimal(it["unit_price"]) * int(it["quantity"])
        return quantize(total)

    def methods(self):
        return tuple(self._rates.keys())

    def compute_shipping(self, method: str, distance_km: Optional[float] = None, weight_kg=None) -> Decimal:
        rate = self._rates.get(method)
        if rate is None:
            raise ValidationError(f"Unknown delivery method: {method}", field="delivery_method", value=method)
        distance = to_decimal(distance_km or 0)
        weight = to_decimal(weight_kg or 0)
        if distance < 0 or weight < 0:
            raise ValidationError("Distance and weight must be >= 0", distance_km=str(distance), weight_kg=str(weight))
        cost = rate["base"] + rate["per_km"] * distance + rate["per_kg"] * weight
        return quantize(max(cost, rate["minimum"]))

    def estimate_delivery_date(self, method: str, start: Optional[datetime] = None) -> datetime:
        days = self._lead_days.get(method)
        if days is None:
            raise ValidationError(f"Unknown delivery method: {method}", field="delivery_method", value=method)
        return (start or datetime.utcnow()) + timedelta(days=days)

    @staticmethod
    def distance_between(origin: Optional[Dict], lat, lon) -> Optional[float]:
        if origin is None or lat is None or lon is None:
            return None
        return haversine_km(origin["lat"], origin["lon"], float(lat), float(lon))

    @staticmethod
    def compute_total(items_price, shipping_price, discount) -> Decimal:
        total = to_decimal(items_price) + to_decimal(shipping_price) - to_decimal(discount)
        return quantize(max(total, ZERO))
