"""
Export every mapped model so metadata sees all tables.
"""
from .base import Base
from .user import User
from .category import Category
from .product import Product
from .cart_item import CartItem
from .relay_point import RelayPoint
from .delivery_slot import DeliverySlot
from .promotion import Promotion
from .order import Order
from .delivery import Delivery, TrackingEvent
from .payment import Payment, Refund, WebhookEvent
from .inventory import StockMovement
from .notification import Notification

__all__ = [
    "Base",
    "User",
    "Category",
    "Product",
    "CartItem",
    "RelayPoint",
    "DeliverySlot",
    "Promotion",
    "Order",
    "Delivery",
    "TrackingEvent",
    "Payment",
    "Refund",
    "WebhookEvent",
    "StockMovement",
    "Notification",
]
