from sqlalchemy import CheckConstraint, Column, DateTime, Float, Integer, JSON, String
from .base import Base, new_id, utcnow


RELAY_POINT_STATUSES = ("active", "temporarily_closed", "inactive")


class RelayPoint(Base):
    __tablename__ = "relay_point"
    __table_args__ = (
        CheckConstraint("current_occupancy >= 0", name="ck_relay_occupancy_non_negative"),
        CheckConstraint("current_occupancy <= max_capacity", name="ck_relay_within_capacity"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False, unique=True)
    address = Column(JSON, nullable=False)
    contact_phone = Column(String(32), nullable=False)
    contact_email = Column(String(255), nullable=True)
    # [{"day_of_week": 0-6 (0 = Sunday), "open_time": "HH:MM", "close_time": "HH:MM", "is_closed": bool}]
    opening_hours = Column(JSON, nullable=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    max_capacity = Column(Integer, nullable=False, default=100)
    current_occupancy = Column(Integer, nullable=False, default=0)
    status = Column(String(32), nullable=False, default="active")
    managed_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def is_full(self) -> bool:
        return (self.current_occupancy or 0) >= (self.max_capacity or 0)

    @property
    def is_available(self) -> bool:
        return self.status == "active" and not self.is_full
