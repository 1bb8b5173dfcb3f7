from sqlalchemy import Boolean, Column, DateTime, String
from .base import Base, new_id, utcnow


ROLES = ("customer", "seller", "delivery", "admin", "moderator")
STAFF_ROLES = ("admin", "moderator")


class User(Base):
    __tablename__ = "user"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(255), nullable=True)
    phone = Column(String(32), nullable=True)
    role = Column(String(32), nullable=False, default="customer")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
