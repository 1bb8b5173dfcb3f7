from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, JSON, Numeric, String
from .base import Base, new_id, utcnow


PROMOTION_TYPES = ("percentage", "fixed_amount", "free_shipping")
PROMOTION_SCOPES = ("all_products", "specific_products", "specific_categories", "specific_brands", "specific_sellers")


class Promotion(Base):
    __tablename__ = "promotion"
    __table_args__ = (
        CheckConstraint("usage_limit = -1 OR times_used <= usage_limit", name="ck_promotion_usage_within_limit"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    code = Column(String(20), nullable=True, unique=True)
    name = Column(String(100), nullable=False)
    description = Column(String(500), nullable=True)
    type = Column(String(32), nullable=False)
    value = Column(Numeric(12, 2), nullable=False, default=0)
    minimum_order_amount = Column(Numeric(12, 2), nullable=False, default=0)
    usage_limit = Column(Integer, nullable=False, default=-1)  # -1 = unlimited
    times_used = Column(Integer, nullable=False, default=0)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    applies_to = Column(String(32), nullable=False, default="all_products")
    applied_products = Column(JSON, nullable=True)
    applied_categories = Column(JSON, nullable=True)
    applied_brands = Column(JSON, nullable=True)
    applied_sellers = Column(JSON, nullable=True)
    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def is_exhausted(self) -> bool:
        return self.usage_limit != -1 and self.times_used >= self.usage_limit
