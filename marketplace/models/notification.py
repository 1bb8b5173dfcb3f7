from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from .base import Base, new_id, utcnow


NOTIFICATION_TYPES = (
    "order_update",
    "order_cancelled",
    "order_completed",
    "refund_initiated",
    "payment_received",
    "delivery_update",
    "promotion",
    "low_stock_alert",
    "general",
)


class Notification(Base):
    __tablename__ = "notification"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("user.id"), nullable=False, index=True)
    message = Column(String(500), nullable=False)
    type = Column(String(32), nullable=False)
    related_id = Column(String(36), nullable=True)
    related_model = Column(String(32), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
