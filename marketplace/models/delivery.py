from sqlalchemy import Column, DateTime, ForeignKey, JSON, String, Text
from .base import Base, new_id, utcnow


class Delivery(Base):
    __tablename__ = "delivery"

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), ForeignKey("order.id"), nullable=False, unique=True)
    delivery_option = Column(String(32), nullable=False)
    delivery_method = Column(String(32), nullable=False)
    shipping_address = Column(JSON(none_as_null=True), nullable=True)
    relay_point_id = Column(String(36), ForeignKey("relay_point.id"), nullable=True)
    delivery_slot_id = Column(String(36), ForeignKey("delivery_slot.id"), nullable=True)
    carrier = Column(String(50), nullable=True)
    tracking_number = Column(String(64), nullable=False, unique=True)
    status = Column(String(32), nullable=False, default="pending_pickup")
    assigned_to = Column(String(36), ForeignKey("user.id"), nullable=True)
    assigned_at = Column(DateTime, nullable=True)
    current_location = Column(JSON(none_as_null=True), nullable=True)
    scheduled_delivery_date = Column(DateTime, nullable=True)
    actual_delivery_date = Column(DateTime, nullable=True)
    last_attempted_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class TrackingEvent(Base):
    """Append-only delivery history."""

    __tablename__ = "tracking_event"

    id = Column(String(36), primary_key=True, default=new_id)
    delivery_id = Column(String(36), ForeignKey("delivery.id"), nullable=False, index=True)
    status = Column(String(32), nullable=False)
    location = Column(JSON(none_as_null=True), nullable=True)
    note = Column(String(500), nullable=True)
    actor_id = Column(String(36), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
