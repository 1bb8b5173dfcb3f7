"""Typed failures raised by marketplace services.

Each error carries a machine readable ``code``, the HTTP ``status_code`` the
web layer maps it to, and a ``context`` dict with the ids, limits and actual
values needed to render a precise message.
"""

from typing import Any, Dict, Optional


class MarketplaceError(Exception):
    """Base exception for all marketplace domain errors."""

    status_code = 500
    code = "marketplace_error"

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context: Dict[str, Any] = context
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "context": self.context}


class NotFoundError(MarketplaceError):
    """Raised when an entity does not exist."""

    status_code = 404
    code = "not_found"

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} not found: {entity_id}", entity=entity, entity_id=entity_id)


class OrderNotFound(NotFoundError):
    code = "order_not_found"

    def __init__(self, order_id: str):
        super().__init__("Order", order_id)


class ValidationError(MarketplaceError):
    """Raised for malformed input or a violated domain invariant."""

    status_code = 400
    code = "validation_error"


class InvalidAssignee(ValidationError):
    code = "invalid_assignee"

    def __init__(self, person_id: str, reason: str = "not an active delivery user"):
        super().__init__(f"Cannot assign delivery to {person_id}: {reason}", person_id=person_id)


class InvalidRelease(ValidationError):
    """Raised when stock is credited back without a matching reservation."""

    code = "invalid_release"

    def __init__(self, product_id: str, outstanding: int, requested: int, order_id: Optional[str] = None):
        super().__init__(
            f"Cannot release {requested} of product {product_id}: only {outstanding} reserved",
            product_id=product_id,
            order_id=order_id,
            outstanding=outstanding,
            requested=requested,
        )


class InsufficientStock(MarketplaceError):
    status_code = 409
    code = "insufficient_stock"

    def __init__(self, product_id: str, available: int, requested: int):
        self.product_id = product_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for product {product_id}: {available} available, {requested} requested",
            product_id=product_id,
            available=available,
            requested=requested,
        )


class InvalidStatusTransition(MarketplaceError):
    status_code = 409
    code = "invalid_status_transition"

    def __init__(self, from_status: str, to_status: str, entity: str = "order"):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Cannot move {entity} from '{from_status}' to '{to_status}'",
            entity=entity,
            from_status=from_status,
            to_status=to_status,
        )


class PromotionError(MarketplaceError):
    status_code = 400
    code = "promotion_error"


class InvalidPromotion(PromotionError):
    code = "invalid_promotion"


class PromotionExpired(PromotionError):
    code = "promotion_expired"


class PromotionExhausted(PromotionError):
    code = "promotion_exhausted"


class MinimumNotMet(PromotionError):
    code = "minimum_not_met"


class SlotFull(MarketplaceError):
    status_code = 409
    code = "slot_full"

    def __init__(self, slot_id: str, max_capacity: int):
        super().__init__(f"Delivery slot {slot_id} is full", slot_id=slot_id, max_capacity=max_capacity)


class RelayPointFull(MarketplaceError):
    status_code = 409
    code = "relay_point_full"

    def __init__(self, relay_point_id: str, max_capacity: int):
        super().__init__(
            f"Relay point {relay_point_id} has no free capacity",
            relay_point_id=relay_point_id,
            max_capacity=max_capacity,
        )


class Unauthorized(MarketplaceError):
    status_code = 401
    code = "unauthorized"


class Forbidden(MarketplaceError):
    status_code = 403
    code = "forbidden"


class PaymentFailure(MarketplaceError):
    status_code = 402
    code = "payment_failure"


class InvalidSignature(PaymentFailure):
    status_code = 400
    code = "invalid_signature"

    def __init__(self):
        super().__init__("Webhook signature verification failed")


class DeliveryNotCompleted(MarketplaceError):
    status_code = 409
    code = "delivery_not_completed"

    def __init__(self, order_id: str, delivery_status: Optional[str]):
        super().__init__(
            f"Order {order_id} must be delivered before cash can be collected",
            order_id=order_id,
            delivery_status=delivery_status,
        )
