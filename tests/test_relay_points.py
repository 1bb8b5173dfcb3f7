"""Tests for relay point discovery, hours and capacity."""

from datetime import datetime

import pytest

from marketplace.errors import NotFoundError, RelayPointFull, ValidationError
from marketplace.models import RelayPoint
from marketplace.services.relay_point_service import is_open_at


@pytest.fixture
def relay_points(components):
    return components["relay_points"]


def _point(relay_points, name, lat, lon, city="Tunis", **overrides):
    data = {
        "name": name,
        "address": {"street": f"{name} street", "city": city},
        "contact_phone": "+21671000000",
        "latitude": lat,
        "longitude": lon,
        "max_capacity": 2,
    }
    data.update(overrides)
    return relay_points.create_relay_point(data)


class TestDiscovery:
    def test_city_filter(self, relay_points):
        _point(relay_points, "Marsa", 36.88, 10.32)
        _point(relay_points, "Sousse Centre", 35.83, 10.64, city="Sousse")
        assert [p["name"] for p in relay_points.list_relay_points(city="sousse")] == ["Sousse Centre"]

    def test_nearest_first_within_radius(self, relay_points):
        _point(relay_points, "Far", 35.83, 10.64)
        _point(relay_points, "Near", 36.81, 10.18)
        found = relay_points.list_relay_points(near={"lat": 36.80, "lon": 10.18})
        assert [p["name"] for p in found] == ["Near", "Far"]
        assert found[0]["distance_km"] < found[1]["distance_km"]
        assert [p["name"] for p in relay_points.list_relay_points(near={"lat": 36.80, "lon": 10.18}, radius_km=20)] == ["Near"]

    def test_only_available_hides_full_points(self, relay_points):
        point = _point(relay_points, "Tiny", 36.8, 10.1, max_capacity=1)
        relay_points.reserve_capacity(point["id"])
        assert relay_points.list_relay_points(only_available=True) == []
        assert relay_points.list_relay_points()[0]["is_full"] is True

    def test_inactive_points_hidden(self, relay_points):
        point = _point(relay_points, "Closed", 36.8, 10.1)
        relay_points.update_relay_point(point["id"], {"status": "temporarily_closed"})
        assert relay_points.list_relay_points() == []
        assert len(relay_points.list_relay_points(status=None)) == 1


class TestOpeningHours:
    def _with_hours(self, hours, status="active"):
        return RelayPoint(name="x", address={}, contact_phone="0", latitude=0, longitude=0, status=status, opening_hours=hours)

    def test_sunday_is_day_zero(self):
        point = self._with_hours([{"day_of_week": 0, "open_time": "09:00", "close_time": "13:00"}])
        sunday = datetime(2026, 10, 18, 10, 30)
        assert is_open_at(point, sunday)
        assert not is_open_at(point, sunday.replace(hour=13))
        assert not is_open_at(point, datetime(2026, 10, 19, 10, 30))

    def test_closed_day_and_inactive(self):
        hours = [{"day_of_week": 1, "open_time": "08:00", "close_time": "18:00", "is_closed": True}]
        assert not is_open_at(self._with_hours(hours), datetime(2026, 10, 19, 10, 0))
        open_hours = [{"day_of_week": 1, "open_time": "08:00", "close_time": "18:00"}]
        assert not is_open_at(self._with_hours(open_hours, status="inactive"), datetime(2026, 10, 19, 10, 0))

    def test_invalid_day_rejected(self, relay_points):
        with pytest.raises(ValidationError):
            _point(relay_points, "Bad", 36.8, 10.1, opening_hours=[{"day_of_week": 7, "open_time": "08:00", "close_time": "12:00"}])


class TestCapacity:
    def test_reserve_until_full(self, relay_points):
        point = _point(relay_points, "Kiosk", 36.8, 10.1)
        relay_points.reserve_capacity(point["id"])
        relay_points.reserve_capacity(point["id"])
        with pytest.raises(RelayPointFull):
            relay_points.reserve_capacity(point["id"])
        relay_points.release_capacity(point["id"])
        relay_points.reserve_capacity(point["id"])

    def test_closed_point_accepts_nothing(self, relay_points):
        point = _point(relay_points, "Shut", 36.8, 10.1)
        relay_points.update_relay_point(point["id"], {"status": "temporarily_closed"})
        with pytest.raises(ValidationError) as exc:
            relay_points.reserve_capacity(point["id"])
        assert exc.value.context["status"] == "temporarily_closed"
        assert relay_points.get_relay_point(point["id"]).current_occupancy == 0

    def test_capacity_cannot_drop_below_occupancy(self, relay_points):
        point = _point(relay_points, "Busy", 36.8, 10.1)
        relay_points.reserve_capacity(point["id"])
        relay_points.reserve_capacity(point["id"])
        with pytest.raises(ValidationError):
            relay_points.update_relay_point(point["id"], {"max_capacity": 1})

    def test_delete_retires_empty_point(self, relay_points):
        point = _point(relay_points, "Old", 36.8, 10.1)
        relay_points.delete_relay_point(point["id"])
        assert relay_points.get_relay_point(point["id"]).status == "inactive"

    def test_delete_refused_while_holding_parcels(self, relay_points):
        point = _point(relay_points, "Full", 36.8, 10.1)
        relay_points.reserve_capacity(point["id"])
        with pytest.raises(ValidationError):
            relay_points.delete_relay_point(point["id"])

    def test_unknown_point(self, relay_points):
        with pytest.raises(NotFoundError):
            relay_points.get_relay_point("missing")

    def test_duplicate_name(self, relay_points):
        _point(relay_points, "Twin", 36.8, 10.1)
        with pytest.raises(ValidationError):
            _point(relay_points, "Twin", 36.9, 10.2)
