from datetime import date
from typing import Dict, List, Optional

from sqlalchemy import update

from ..db.session import get_session, session_scope
from ..errors import NotFoundError, SlotFull, ValidationError
from ..models.delivery_slot import DeliverySlot
from ..utils.dto import to_slot_dto
from ..utils.money import quantize
from ..utils.validators import ensure_positive_int, parse_date, require_fields, validate_hhmm
from .logging import log_event


class DeliverySlotService:
    """Bounded-capacity delivery windows.

    ``current_bookings`` only moves through conditional updates; availability is
    read from the counters, never stored.
    """

    def __init__(self, session_factory=get_session):
        self._session_factory = session_factory

    def get_slot(self, slot_id: str, session=None) -> DeliverySlot:
        with session_scope(self._session_factory, session) as s:
            slot = s.get(DeliverySlot, slot_id)
            if slot is None:
                raise NotFoundError("DeliverySlot", slot_id)
            return slot

    def _apply_fields(self, slot: DeliverySlot, data: Dict) -> None:
        if "date" in data:
            slot.date = parse_date(data["date"], "date")
        if "start_time" in data:
            slot.start_time = validate_hhmm(data["start_time"], "start_time")
        if "end_time" in data:
            slot.end_time = validate_hhmm(data["end_time"], "end_time")
        if slot.start_time and slot.end_time and slot.end_time <= slot.start_time:
            raise ValidationError("end_time must be after start_time", field="end_time")
        for key in ("delivery_method", "area_code", "covered_areas"):
            if key in data:
                setattr(slot, key, data[key])
        if "price_modifier" in data:
            slot.price_modifier = quantize(data["price_modifier"] or 0)
        if "max_capacity" in data:
            capacity = ensure_positive_int(data["max_capacity"], "max_capacity")
            if capacity < int(slot.current_bookings or 0):
                raise ValidationError(
                    "max_capacity cannot drop below current bookings",
                    field="max_capacity",
                    current_bookings=slot.current_bookings,
                )
            slot.max_capacity = capacity

    def create_slot(self, data: Dict) -> Dict:
        require_fields(data, "date", "start_time", "end_time", "delivery_method")
        with self._session_factory() as session:
            slot = DeliverySlot(current_bookings=0, max_capacity=10, price_modifier=0)
            self._apply_fields(slot, data)
            session.add(slot)
            session.flush()
            log_event("info", "slot.created", slot_id=slot.id, date=slot.date.isoformat())
            return to_slot_dto(slot)

    def update_slot(self, slot_id: str, data: Dict) -> Dict:
        with self._session_factory() as session:
            slot = self.get_slot(slot_id, session=session)
            self._apply_fields(slot, data)
            session.flush()
            log_event("info", "slot.updated", slot_id=slot_id)
            return to_slot_dto(slot)

    def delete_slot(self, slot_id: str) -> None:
        with self._session_factory() as session:
            slot = self.get_slot(slot_id, session=session)
            if slot.current_bookings:
                raise ValidationError("Slot has bookings", slot_id=slot_id, current_bookings=slot.current_bookings)
            session.delete(slot)
            log_event("info", "slot.deleted", slot_id=slot_id)

    def list_available_slots(
        self,
        *,
        on_date=None,
        area_code: Optional[str] = None,
        delivery_method: Optional[str] = None,
    ) -> List[Dict]:
        with self._session_factory() as session:
            q = session.query(DeliverySlot).filter(DeliverySlot.current_bookings < DeliverySlot.max_capacity)
            if on_date is not None:
                q = q.filter(DeliverySlot.date == parse_date(on_date, "date"))
            else:
                q = q.filter(DeliverySlot.date >= date.today())
            if area_code:
                q = q.filter(DeliverySlot.area_code == area_code)
            if delivery_method:
                q = q.filter(DeliverySlot.delivery_method == delivery_method)
            rows = q.order_by(DeliverySlot.date.asc(), DeliverySlot.start_time.asc()).all()
            return [to_slot_dto(r) for r in rows]

    def book_slot(self, slot_id: str, session=None) -> None:
        """Single check-and-increment; a full slot raises SlotFull."""
        with session_scope(self._session_factory, session) as s:
            result = s.execute(
                update(DeliverySlot)
                .where(DeliverySlot.id == slot_id, DeliverySlot.current_bookings < DeliverySlot.max_capacity)
                .values(current_bookings=DeliverySlot.current_bookings + 1)
                .execution_options(synchronize_session=False)
            )
            slot = self.get_slot(slot_id, session=s)
            s.expire(slot, ["current_bookings"])
            if result.rowcount != 1:
                raise SlotFull(slot_id, slot.max_capacity)
            log_event("info", "slot.booked", slot_id=slot_id)

    def release_slot(self, slot_id: str, session=None) -> None:
        with session_scope(self._session_factory, session) as s:
            s.execute(
                update(DeliverySlot)
                .where(DeliverySlot.id == slot_id, DeliverySlot.current_bookings > 0)
                .values(current_bookings=DeliverySlot.current_bookings - 1)
                .execution_options(synchronize_session=False)
            )
            slot = s.get(DeliverySlot, slot_id)
            if slot is not None:
                s.expire(slot, ["current_bookings"])
            log_event("info", "slot.released", slot_id=slot_id)
