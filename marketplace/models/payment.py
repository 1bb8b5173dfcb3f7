from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, Text
from .base import Base, new_id, utcnow


class Payment(Base):
    """One payment attempt for an order (gateway intent or cash collection)."""

    __tablename__ = "payment"

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), ForeignKey("order.id"), nullable=False, index=True)
    method = Column(String(32), nullable=False)
    provider = Column(String(32), nullable=False)
    provider_reference = Column(String(128), nullable=True, unique=True)
    client_secret = Column(String(255), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(String(32), nullable=False, default="requires_confirmation")
    confirmed_by = Column(String(36), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class WebhookEvent(Base):
    __tablename__ = "webhook_event"

    event_id = Column(String(128), primary_key=True)
    type = Column(String(64), nullable=False)
    order_id = Column(String(36), nullable=True)
    received_at = Column(DateTime, nullable=False, default=utcnow)


class Refund(Base):
    __tablename__ = "refund"

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), ForeignKey("order.id"), nullable=False, index=True)
    operation_key = Column(String(128), nullable=False, unique=True)
    amount = Column(Numeric(12, 2), nullable=False)
    reason = Column(String(500), nullable=True)
    method = Column(String(32), nullable=False)
    status = Column(String(32), nullable=False)  # succeeded | owed | paid
    provider_reference = Column(String(128), nullable=True)
    settled_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    settled_at = Column(DateTime, nullable=True)
