from .cart_service import CartService
from .catalog_service import CatalogService
from .delivery_service import DeliveryService
from .inventory_service import InventoryLedger
from .maintenance import MaintenanceService
from .notification_service import EmailSender, LogEmailSender, NotificationService
from .order_service import OrderService
from .payment_gateway import PaymentGateway
from .payment_service import PaymentService
from .pricing_service import PricingEngine
from .promotion_service import PromotionResult, PromotionService
from .relay_point_service import RelayPointService
from .slot_service import DeliverySlotService

__all__ = [
    "CartService",
    "CatalogService",
    "DeliveryService",
    "DeliverySlotService",
    "EmailSender",
    "InventoryLedger",
    "LogEmailSender",
    "MaintenanceService",
    "NotificationService",
    "OrderService",
    "PaymentGateway",
    "PaymentService",
    "PricingEngine",
    "PromotionResult",
    "PromotionService",
    "RelayPointService",
]
