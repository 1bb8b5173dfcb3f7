from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..db.session import get_session, session_scope
from ..errors import NotFoundError, RelayPointFull, ValidationError
from ..models.relay_point import RELAY_POINT_STATUSES, RelayPoint
from ..utils.dto import to_relay_point_dto
from ..utils.geo import haversine_km
from ..utils.validators import ensure_positive_int, require_fields, validate_hhmm
from .logging import log_event


def is_open_at(point: RelayPoint, when: datetime) -> bool:
    """Opening hours use day_of_week 0 = Sunday."""
    if point.status != "active":
        return False
    day = (when.weekday() + 1) % 7
    hhmm = when.strftime("%H:%M")
    for slot in point.opening_hours or []:
        if int(slot.get("day_of_week", -1)) != day or slot.get("is_closed"):
            continue
        if slot.get("open_time", "00:00") <= hhmm < slot.get("close_time", "00:00"):
            return True
    return False


class RelayPointService:
    def __init__(self, session_factory=get_session):
        self._session_factory = session_factory

    def list_relay_points(
        self,
        *,
        city: Optional[str] = None,
        status: Optional[str] = "active",
        near: Optional[Dict[str, float]] = None,
        radius_km: Optional[float] = None,
        only_available: bool = False,
    ) -> List[Dict]:
        with self._session_factory() as session:
            q = session.query(RelayPoint)
            if status:
                q = q.filter(RelayPoint.status == status)
            rows = q.order_by(RelayPoint.name.asc()).all()
            result = []
            for rp in rows:
                if city and (rp.address or {}).get("city", "").lower() != city.lower():
                    continue
                if only_available and not rp.is_available:
                    continue
                distance = None
                if near is not None:
                    distance = haversine_km(near["lat"], near["lon"], rp.latitude, rp.longitude)
                    if radius_km is not None and distance > radius_km:
                        continue
                result.append(to_relay_point_dto(rp, distance))
            if near is not None:
                result.sort(key=lambda d: d["distance_km"])
            return result

    def get_relay_point(self, relay_point_id: str, session=None) -> RelayPoint:
        with session_scope(self._session_factory, session) as s:
            rp = s.get(RelayPoint, relay_point_id)
            if rp is None:
                raise NotFoundError("RelayPoint", relay_point_id)
            return rp

    def _apply_fields(self, rp: RelayPoint, data: Dict) -> None:
        for key in ("name", "address", "contact_phone", "contact_email", "managed_by"):
            if key in data:
                setattr(rp, key, data[key])
        if "latitude" in data:
            rp.latitude = float(data["latitude"])
        if "longitude" in data:
            rp.longitude = float(data["longitude"])
        if "max_capacity" in data:
            capacity = ensure_positive_int(data["max_capacity"], "max_capacity")
            if capacity < int(rp.current_occupancy or 0):
                raise ValidationError(
                    "max_capacity cannot drop below current occupancy",
                    field="max_capacity",
                    current_occupancy=rp.current_occupancy,
                )
            rp.max_capacity = capacity
        if "status" in data:
            if data["status"] not in RELAY_POINT_STATUSES:
                raise ValidationError(f"Unknown relay point status: {data['status']}", field="status")
            rp.status = data["status"]
        if "opening_hours" in data:
            hours = []
            for slot in data["opening_hours"] or []:
                day = int(slot.get("day_of_week", -1))
                if not 0 <= day <= 6:
                    raise ValidationError("day_of_week must be 0-6", field="opening_hours")
                hours.append(
                    {
                        "day_of_week": day,
                        "open_time": validate_hhmm(slot.get("open_time", "00:00"), "open_time"),
                        "close_time": validate_hhmm(slot.get("close_time", "00:00"), "close_time"),
                        "is_closed": bool(slot.get("is_closed", False)),
                    }
                )
            rp.opening_hours = hours

    def create_relay_point(self, data: Dict) -> Dict:
        require_fields(data, "name", "address", "contact_phone", "latitude", "longitude")
        try:
            with self._session_factory() as session:
                rp = RelayPoint(current_occupancy=0, max_capacity=100, status="active")
                self._apply_fields(rp, data)
                session.add(rp)
                session.flush()
                log_event("info", "relay_point.created", relay_point_id=rp.id)
                return to_relay_point_dto(rp)
        except IntegrityError:
            raise ValidationError("Relay point name already exists", field="name")

    def update_relay_point(self, relay_point_id: str, data: Dict) -> Dict:
        with self._session_factory() as session:
            rp = self.get_relay_point(relay_point_id, session=session)
            self._apply_fields(rp, data)
            session.flush()
            log_event("info", "relay_point.updated", relay_point_id=rp.id)
            return to_relay_point_dto(rp)

    def delete_relay_point(self, relay_point_id: str) -> None:
        """Relay points holding parcels are retired, not removed."""
        with self._session_factory() as session:
            rp = self.get_relay_point(relay_point_id, session=session)
            if rp.current_occupancy:
                raise ValidationError(
                    "Relay point still holds parcels",
                    relay_point_id=relay_point_id,
                    current_occupancy=rp.current_occupancy,
                )
            rp.status = "inactive"
            log_event("info", "relay_point.deactivated", relay_point_id=relay_point_id)

    def reserve_capacity(self, relay_point_id: str, session=None) -> None:
        with session_scope(self._session_factory, session) as s:
            result = s.execute(
                update(RelayPoint)
                .where(
                    RelayPoint.id == relay_point_id,
                    RelayPoint.status == "active",
                    RelayPoint.current_occupancy < RelayPoint.max_capacity,
                )
                .values(current_occupancy=RelayPoint.current_occupancy + 1)
                .execution_options(synchronize_session=False)
            )
            rp = self.get_relay_point(relay_point_id, session=s)
            s.expire(rp, ["current_occupancy"])
            if result.rowcount != 1:
                if rp.status != "active":
                    raise ValidationError(
                        "Relay point is not accepting parcels",
                        relay_point_id=relay_point_id,
                        status=rp.status,
                    )
                raise RelayPointFull(relay_point_id, rp.max_capacity)
            log_event("info", "relay_point.reserved", relay_point_id=relay_point_id)

    def release_capacity(self, relay_point_id: str, session=None) -> None:
        with session_scope(self._session_factory, session) as s:
            s.execute(
                update(RelayPoint)
                .where(RelayPoint.id == relay_point_id, RelayPoint.current_occupancy > 0)
                .values(current_occupancy=RelayPoint.current_occupancy - 1)
                .execution_options(synchronize_session=False)
            )
            rp = s.get(RelayPoint, relay_point_id)
            if rp is not None:
                s.expire(rp, ["current_occupancy"])
            log_event("info", "relay_point.released", relay_point_id=relay_point_id)
