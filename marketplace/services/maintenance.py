from datetime import datetime, timedelta
from typing import Dict, Optional

from ..db.session import get_session
from ..errors import InvalidStatusTransition
from ..models.order import Order
from .logging import log_event
from .order_service import OrderService


class MaintenanceService:
    """Scheduled sweeps. Each touches only orders whose state makes ownership unambiguous."""

    def __init__(self, orders: OrderService, session_factory=get_session, pending_ttl_hours: int = 24, completion_days: int = 7):
        self._orders = orders
        self._session_factory = session_factory
        self._pending_ttl = timedelta(hours=pending_ttl_hours)
        self._completion_delay = timedelta(days=completion_days)

    def _candidates(self, status: str, column, cutoff: datetime):
        with self._session_factory() as session:
            q = session.query(Order.id).filter(Order.status == status, column < cutoff)
            return [oid for (oid,) in q.order_by(column.asc()).all()]

    def _sweep(self, ids, new_status: str, reason: Optional[str] = None) -> Dict[str, int]:
        moved = skipped = 0
        for order_id in ids:
            try:
                self._orders.update_order_status(order_id, new_status, actor_id="system", reason=reason)
                moved += 1
            except InvalidStatusTransition:
                # moved by live traffic since the candidate query
                skipped += 1
        return {"moved": moved, "skipped": skipped}

    def expire_pending_orders(self, now: Optional[datetime] = None) -> Dict[str, int]:
        cutoff = (now or datetime.utcnow()) - self._pending_ttl
        ids = self._candidates("pending", Order.created_at, cutoff)
        stats = self._sweep(ids, "failed", reason="Payment not confirmed in time")
        log_event("info", "maintenance.pending_expired", cutoff=cutoff.isoformat(), **stats)
        return stats

    def complete_delivered_orders(self, now: Optional[datetime] = None) -> Dict[str, int]:
        cutoff = (now or datetime.utcnow()) - self._completion_delay
        ids = self._candidates("delivered", Order.delivered_at, cutoff)
        stats = self._sweep(ids, "completed")
        log_event("info", "maintenance.delivered_completed", cutoff=cutoff.isoformat(), **stats)
        return stats
