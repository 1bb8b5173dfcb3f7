import secrets
import time
from datetime import datetime
from typing import Dict, List, Optional

from ..db.session import get_session, session_scope
from ..errors import Forbidden, InvalidAssignee, InvalidStatusTransition, NotFoundError
from ..models.delivery import Delivery, TrackingEvent
from ..models.order import Order
from ..models.user import STAFF_ROLES, User
from ..utils.dto import to_delivery_dto, to_tracking_event_dto
from .logging import log_event
from .order_status import DELIVERY_TRANSITIONS, TERMINAL_DELIVERY_STATUSES, ensure_delivery_transition
from .pricing_service import PricingEngine
from .relay_point_service import RelayPointService


def generate_tracking_number() -> str:
    return f"DEL-{int(time.time() * 1000)}-{secrets.randbelow(10**6):06d}"


class DeliveryService:
    """Delivery records, courier assignment and the tracking history.

    Tracking events move the delivery only; the order is advanced by the
    orchestrator, which calls ``mirror_order_status``.
    """

    def __init__(self, session_factory=get_session, relay_points: Optional[RelayPointService] = None, pricing: Optional[PricingEngine] = None):
        self._session_factory = session_factory
        self._relay_points = relay_points or RelayPointService(session_factory)
        self._pricing = pricing or PricingEngine()

    def create_delivery(self, order: Order, session) -> Delivery:
        tracking = generate_tracking_number()
        while session.query(Delivery.id).filter(Delivery.tracking_number == tracking).first() is not None:
            tracking = generate_tracking_number()
        delivery = Delivery(
            order_id=order.id,
            delivery_option=order.delivery_option,
            delivery_method=order.delivery_method,
            shipping_address=order.shipping_address,
            relay_point_id=order.relay_point_id,
            delivery_slot_id=order.delivery_slot_id,
            tracking_number=tracking,
            status="pending_pickup",
            scheduled_delivery_date=self._pricing.estimate_delivery_date(order.delivery_method, order.created_at),
        )
        session.add(delivery)
        session.flush()
        session.add(TrackingEvent(delivery_id=delivery.id, status="pending_pickup", note="Delivery created"))
        log_event("info", "delivery.created", delivery_id=delivery.id, order_id=order.id, tracking_number=tracking)
        return delivery

    def _get(self, session, delivery_id: str) -> Delivery:
        delivery = session.get(Delivery, delivery_id)
        if delivery is None:
            raise NotFoundError("Delivery", delivery_id)
        return delivery

    def _apply_status(self, session, delivery: Delivery, new_status: str, actor_id: Optional[str], location=None, note=None) -> None:
        """Move a delivery and keep relay point occupancy in step."""
        previous = delivery.status
        ensure_delivery_transition(previous, new_status)
        if new_status == "ready_for_pickup" and delivery.relay_point_id:
            self._relay_points.reserve_capacity(delivery.relay_point_id, session=session)
        if previous == "ready_for_pickup" and delivery.relay_point_id:
            self._relay_points.release_capacity(delivery.relay_point_id, session=session)
        now = datetime.utcnow()
        delivery.status = new_status
        if location is not None:
            delivery.current_location = location
        if new_status == "delivered":
            delivery.actual_delivery_date = now
        elif new_status == "failed_attempt":
            delivery.last_attempted_at = now
        session.add(TrackingEvent(delivery_id=delivery.id, status=new_status, location=location, note=note, actor_id=actor_id))
        log_event("info", "delivery.status_changed", delivery_id=delivery.id, order_id=delivery.order_id, from_status=previous, to_status=new_status, actor_id=actor_id)

    def assign_to_personnel(self, delivery_id: str, person_id: str, assigner_id: Optional[str] = None) -> Dict:
        with self._session_factory() as session:
            delivery = self._get(session, delivery_id)
            person = session.get(User, person_id)
            if person is None or person.role != "delivery" or not person.is_active:
                raise InvalidAssignee(person_id)
            if delivery.status in TERMINAL_DELIVERY_STATUSES:
                raise InvalidStatusTransition(delivery.status, "assigned", entity="delivery")
            delivery.assigned_to = person_id
            delivery.assigned_at = datetime.utcnow()
            session.add(
                TrackingEvent(
                    delivery_id=delivery.id,
                    status="assigned",
                    note=f"Assigned to {person_id}",
                    actor_id=assigner_id,
                )
            )
            session.flush()
            log_event("info", "delivery.assigned", delivery_id=delivery_id, person_id=person_id, assigner_id=assigner_id)
            return to_delivery_dto(delivery)

    def record_tracking_event(
        self,
        delivery_id: str,
        status: str,
        location: Optional[Dict] = None,
        note: Optional[str] = None,
        actor_id: Optional[str] = None,
        actor_role: Optional[str] = None,
    ) -> Dict:
        """Append to the history; repeating the current status is a location update."""
        with self._session_factory() as session:
            delivery = self._get(session, delivery_id)
            if actor_role not in STAFF_ROLES and delivery.assigned_to != actor_id:
                raise Forbidden("Only the assigned courier or staff may update this delivery", delivery_id=delivery_id)
            if status == delivery.status:
                if delivery.status in TERMINAL_DELIVERY_STATUSES:
                    raise InvalidStatusTransition(delivery.status, status, entity="delivery")
                if location is not None:
                    delivery.current_location = location
                session.add(TrackingEvent(delivery_id=delivery.id, status=status, location=location, note=note, actor_id=actor_id))
                log_event("info", "delivery.location_updated", delivery_id=delivery_id, actor_id=actor_id)
            else:
                self._apply_status(session, delivery, status, actor_id, location=location, note=note)
            session.flush()
            return to_delivery_dto(delivery)

    def mirror_order_status(self, order: Order, delivery_status: str, session, actor_id: Optional[str] = None) -> Optional[Delivery]:
        """Follow an order transition; already-matching or incompatible deliveries are left alone."""
        delivery = session.query(Delivery).filter(Delivery.order_id == order.id).first()
        if delivery is None or delivery.status == delivery_status:
            return delivery
        if delivery_status not in DELIVERY_TRANSITIONS.get(delivery.status, frozenset()):
            log_event(
                "warning",
                "delivery.mirror_skipped",
                delivery_id=delivery.id,
                order_id=order.id,
                delivery_status=delivery.status,
                requested=delivery_status,
            )
            return delivery
        self._apply_status(session, delivery, delivery_status, actor_id, note=f"Order {order.status}")
        return delivery

    def get_for_order(self, order_id: str, session=None) -> Optional[Delivery]:
        with session_scope(self._session_factory, session) as s:
            return s.query(Delivery).filter(Delivery.order_id == order_id).first()

    def get_by_tracking_number(self, tracking_number: str) -> Dict:
        with self._session_factory() as session:
            delivery = session.query(Delivery).filter(Delivery.tracking_number == tracking_number).first()
            if delivery is None:
                raise NotFoundError("Delivery", tracking_number)
            data = to_delivery_dto(delivery)
            data["events"] = self._events(session, delivery.id)
            return data

    @staticmethod
    def _events(session, delivery_id: str) -> List[Dict]:
        rows = (
            session.query(TrackingEvent)
            .filter(TrackingEvent.delivery_id == delivery_id)
            .order_by(TrackingEvent.created_at.asc())
            .all()
        )
        return [to_tracking_event_dto(r) for r in rows]

    def list_events(self, delivery_id: str) -> List[Dict]:
        with self._session_factory() as session:
            self._get(session, delivery_id)
            return self._events(session, delivery_id)

    def list_user_deliveries(self, user_id: str) -> List[Dict]:
        with self._session_factory() as session:
            rows = (
                session.query(Delivery)
                .join(Order, Order.id == Delivery.order_id)
                .filter(Order.user_id == user_id)
                .order_by(Delivery.created_at.desc())
                .all()
            )
            return [to_delivery_dto(r) for r in rows]

    def list_assigned(self, person_id: str, include_closed: bool = False) -> List[Dict]:
        with self._session_factory() as session:
            q = session.query(Delivery).filter(Delivery.assigned_to == person_id)
            if not include_closed:
                q = q.filter(Delivery.status.notin_(TERMINAL_DELIVERY_STATUSES))
            return [to_delivery_dto(r) for r in q.order_by(Delivery.scheduled_delivery_date.asc()).all()]
