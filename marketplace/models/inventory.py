from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from .base import Base, new_id, utcnow


class StockMovement(Base):
    """Ledger of applied reservations and releases."""

    __tablename__ = "stock_movement"
    __table_args__ = (UniqueConstraint("operation_key", "product_id", name="uq_movement_operation_product"),)

    id = Column(String(36), primary_key=True, default=new_id)
    operation_key = Column(String(128), nullable=False)
    order_id = Column(String(36), nullable=True, index=True)
    product_id = Column(String(36), ForeignKey("product.id"), nullable=False)
    kind = Column(String(16), nullable=False)  # reserve | release
    quantity = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
