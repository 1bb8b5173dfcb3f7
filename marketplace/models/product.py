from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, JSON, Numeric, String, Text
from .base import Base, new_id, utcnow


class Product(Base):
    __tablename__ = "product"
    __table_args__ = (CheckConstraint("stock >= 0", name="ck_product_stock_non_negative"),)

    id = Column(String(36), primary_key=True, default=new_id)
    sku = Column(String(128), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(12, 2), nullable=False)
    discount_percentage = Column(Numeric(5, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False)
    images = Column(JSON, nullable=True)
    category_id = Column(String(36), ForeignKey("category.id"), nullable=True)
    brand = Column(String(128), nullable=True)
    seller_id = Column(String(36), ForeignKey("user.id"), nullable=False)
    weight_kg = Column(Numeric(8, 3), nullable=False, default=0)
    stock = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def promo_price(self) -> Decimal:
        price = Decimal(str(self.price or 0))
        discount = Decimal(str(self.discount_percentage or 0))
        if discount <= 0:
            return price.quantize(Decimal("0.01"))
        return (price * (Decimal("100") - discount) / Decimal("100")).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
