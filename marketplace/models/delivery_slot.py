from sqlalchemy import CheckConstraint, Column, Date, DateTime, Integer, JSON, Numeric, String
from .base import Base, new_id, utcnow


class DeliverySlot(Base):
    __tablename__ = "delivery_slot"
    __table_args__ = (
        CheckConstraint("current_bookings >= 0", name="ck_slot_bookings_non_negative"),
        CheckConstraint("current_bookings <= max_capacity", name="ck_slot_within_capacity"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    date = Column(Date, nullable=False)
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)
    delivery_method = Column(String(32), nullable=False)
    area_code = Column(String(16), nullable=True)
    covered_areas = Column(JSON, nullable=True)
    max_capacity = Column(Integer, nullable=False, default=10)
    current_bookings = Column(Integer, nullable=False, default=0)
    price_modifier = Column(Numeric(12, 2), nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    @property
    def is_available(self) -> bool:
        return (self.current_bookings or 0) < (self.max_capacity or 0)
