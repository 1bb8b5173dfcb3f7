from sqlalchemy import Boolean, Column, DateTime, ForeignKey, JSON, Numeric, String, Text, event
from .base import Base, utcnow
from ..errors import ValidationError


DELIVERY_OPTIONS = ("home_delivery", "relay_point")
PAYMENT_METHODS = ("cash_on_delivery", "online_payment")


class Order(Base):
    __tablename__ = "order"

    id = Column(String(36), primary_key=True)
    request_id = Column(String(128), nullable=True, unique=True)
    user_id = Column(String(36), ForeignKey("user.id"), nullable=True)
    guest_info = Column(JSON, nullable=True)
    # immutable line snapshots: product_id, seller_id, name, unit_price, quantity, returned_quantity
    items = Column(JSON, nullable=False)
    delivery_option = Column(String(32), nullable=False)
    shipping_address = Column(JSON(none_as_null=True), nullable=True)
    relay_point_id = Column(String(36), ForeignKey("relay_point.id"), nullable=True)
    delivery_method = Column(String(32), nullable=False)
    delivery_slot_id = Column(String(36), ForeignKey("delivery_slot.id"), nullable=True)
    items_price = Column(Numeric(12, 2), nullable=False)
    shipping_price = Column(Numeric(12, 2), nullable=False)
    discount = Column(Numeric(12, 2), nullable=False, default=0)
    total_price = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    promotion_id = Column(String(36), ForeignKey("promotion.id"), nullable=True)
    promotion_code = Column(String(32), nullable=True)
    payment_method = Column(String(32), nullable=False)
    payment_result = Column(JSON, nullable=True)
    is_paid = Column(Boolean, nullable=False, default=False)
    paid_at = Column(DateTime, nullable=True)
    refunded_amount = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(String(32), nullable=False, default="pending")
    failure_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    delivered_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    @property
    def owner_email(self):
        return (self.guest_info or {}).get("email")

    def validate_delivery_target(self) -> None:
        """Exactly one of shipping_address / relay_point_id, matching delivery_option."""
        if self.delivery_option not in DELIVERY_OPTIONS:
            raise ValidationError(f"Unknown delivery option: {self.delivery_option}", field="delivery_option")
        if self.delivery_option == "home_delivery":
            if not self.shipping_address or self.relay_point_id:
                raise ValidationError(
                    "Home delivery requires a shipping address and no relay point",
                    field="shipping_address",
                )
        elif not self.relay_point_id or self.shipping_address:
            raise ValidationError(
                "Relay point delivery requires a relay point and no shipping address",
                field="relay_point_id",
            )
        if self.user_id is None and not (self.guest_info or {}).get("email"):
            raise ValidationError("Guest orders require contact details", field="guest_info")


@event.listens_for(Order, "before_insert")
@event.listens_for(Order, "before_update")
def _check_delivery_target(mapper, connection, target: Order) -> None:
    target.validate_delivery_target()
