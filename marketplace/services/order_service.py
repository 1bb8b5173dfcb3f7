from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import uuid4

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..config import DEFAULT_HOME_METHOD, RELAY_POINT_METHOD
from ..db.session import get_session
from ..errors import (
    Forbidden,
    InvalidStatusTransition,
    MarketplaceError,
    NotFoundError,
    OrderNotFound,
    PaymentFailure,
    ValidationError,
)
from ..models.delivery import Delivery
from ..models.delivery_slot import DeliverySlot
from ..models.inventory import StockMovement
from ..models.order import DELIVERY_OPTIONS, PAYMENT_METHODS, Order
from ..models.payment import Refund
from ..models.product import Product
from ..models.relay_point import RelayPoint
from ..models.user import STAFF_ROLES, User
from ..utils.dto import to_delivery_dto, to_order_dto, to_refund_dto
from ..utils.money import ZERO, as_str, quantize, to_decimal
from ..utils.pagination import normalize_paging, paginate
from ..utils.validators import normalize_items, validate_address
from .delivery_service import DeliveryService
from .inventory_service import InventoryLedger
from .logging import log_event
from .notification_service import NotificationService
from .order_status import (
    CANCELLABLE_ORDER_STATUSES,
    ORDER_TO_DELIVERY_STATUS,
    REFUNDABLE_ORDER_STATUSES,
    RETURNABLE_ORDER_STATUSES,
    ensure_order_transition,
)
from .payment_service import PaymentService
from .pricing_service import PricingEngine
from .promotion_service import PromotionService
from .slot_service import DeliverySlotService


# reached only through handle_return / refund_order
_LEDGER_STATUSES = frozenset({"returned", "partially_returned", "refunded", "partially_refunded"})

_NOTIFICATION_TYPES = {
    "cancelled": "order_cancelled",
    "failed": "order_cancelled",
    "completed": "order_completed",
}


class OrderService:
    """Order lifecycle orchestrator.

    Creation runs in two units of work: the order row is persisted as
    ``pending`` first, then stock, promotion usage, slot booking and the
    delivery record are committed together. If the second step fails the
    order is kept as ``failed`` with the reason, never deleted.
    """

    def __init__(
        self,
        session_factory=get_session,
        *,
        inventory: Optional[InventoryLedger] = None,
        pricing: Optional[PricingEngine] = None,
        promotions: Optional[PromotionService] = None,
        deliveries: Optional[DeliveryService] = None,
        slots: Optional[DeliverySlotService] = None,
        payments: Optional[PaymentService] = None,
        notifier: Optional[NotificationService] = None,
        warehouse_origin: Optional[Dict[str, float]] = None,
        low_stock_threshold: int = 10,
    ):
        self._session_factory = session_factory
        self._inventory = inventory or InventoryLedger(session_factory)
        self._pricing = pricing or PricingEngine()
        self._promotions = promotions or PromotionService(session_factory)
        self._deliveries = deliveries or DeliveryService(session_factory, pricing=self._pricing)
        self._slots = slots or DeliverySlotService(session_factory)
        self._notifier = notifier or NotificationService(session_factory)
        self._payments = payments or PaymentService(session_factory, notifier=self._notifier)
        self._warehouse_origin = warehouse_origin
        self._low_stock_threshold = low_stock_threshold

    # -- helpers -----------------------------------------------------------

    @staticmethod
    def _get(session, order_id: str) -> Order:
        order = session.get(Order, order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    @staticmethod
    def _ensure_can_view(order: Order, actor_id: Optional[str], actor_role: Optional[str]) -> None:
        if actor_role in STAFF_ROLES:
            return
        if actor_id and order.user_id == actor_id:
            return
        if actor_role == "seller" and any(it.get("seller_id") == actor_id for it in order.items or []):
            return
        raise Forbidden("Not allowed to access this order", order_id=order.id)

    @staticmethod
    def _ensure_owner_or_staff(order: Order, actor_id: Optional[str], actor_role: Optional[str]) -> None:
        if actor_role in STAFF_ROLES or (actor_id and order.user_id == actor_id):
            return
        raise Forbidden("Only the order owner or staff may do this", order_id=order.id)

    def _compare_and_set_status(self, session, order: Order, new_status: str, **values) -> None:
        """Move ``order`` from its loaded status; a concurrent change wins and we fail."""
        now = datetime.utcnow()
        if new_status == "delivered":
            values.setdefault("delivered_at", now)
        if new_status == "cancelled":
            values.setdefault("cancelled_at", now)
        result = session.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == order.status)
            .values(status=new_status, updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            session.refresh(order)
            raise InvalidStatusTransition(order.status, new_status)
        session.refresh(order)

    def _notify_owner(self, order: Dict, message: str, type: str) -> None:
        guest_email = (order.get("guest_info") or {}).get("email")
        self._notifier.notify(
            order.get("user_id"),
            message,
            type=type,
            related_id=order["id"],
            send_email=True,
            email=guest_email,
        )

    def _resolve_delivery(self, session, delivery_option, shipping_address, relay_point_id, delivery_method, delivery_slot_id):
        if delivery_option not in DELIVERY_OPTIONS:
            raise ValidationError(f"Unknown delivery option: {delivery_option}", field="delivery_option")
        relay_point = None
        if delivery_option == "home_delivery":
            if relay_point_id:
                raise ValidationError("Home delivery cannot target a relay point", field="relay_point_id")
            shipping_address = validate_address(shipping_address)
            method = delivery_method or DEFAULT_HOME_METHOD
            if method == RELAY_POINT_METHOD:
                raise ValidationError("Pickup point method requires relay point delivery", field="delivery_method")
        else:
            if shipping_address:
                raise ValidationError("Relay point delivery cannot carry a shipping address", field="shipping_address")
            if not relay_point_id:
                raise ValidationError("relay_point_id is required for relay point delivery", field="relay_point_id")
            relay_point = session.get(RelayPoint, relay_point_id)
            if relay_point is None:
                raise NotFoundError("RelayPoint", relay_point_id)
            if relay_point.status != "active":
                raise ValidationError("Relay point is not accepting parcels", relay_point_id=relay_point_id, status=relay_point.status)
            method = delivery_method or RELAY_POINT_METHOD
            if method != RELAY_POINT_METHOD:
                raise ValidationError("Relay point delivery uses the pickup point method", field="delivery_method")
        if method not in self._pricing.methods():
            raise ValidationError(f"Unknown delivery method: {method}", field="delivery_method")
        slot = None
        if delivery_slot_id:
            slot = session.get(DeliverySlot, delivery_slot_id)
            if slot is None:
                raise NotFoundError("DeliverySlot", delivery_slot_id)
            if slot.delivery_method != method:
                raise ValidationError("Slot does not serve this delivery method", slot_id=delivery_slot_id, delivery_method=method)
        return shipping_address, relay_point, method, slot

    def _distance_for(self, shipping_address, relay_point, distance_km) -> Optional[float]:
        if distance_km is not None:
            return float(distance_km)
        if relay_point is not None:
            return self._pricing.distance_between(self._warehouse_origin, relay_point.latitude, relay_point.longitude)
        address = shipping_address or {}
        return self._pricing.distance_between(self._warehouse_origin, address.get("lat"), address.get("lon"))

    # -- creation ----------------------------------------------------------

    def create_order(
        self,
        *,
        user_id: Optional[str] = None,
        guest_info: Optional[Dict] = None,
        items: List[Dict],
        delivery_option: str,
        shipping_address: Optional[Dict] = None,
        relay_point_id: Optional[str] = None,
        payment_method: str,
        promotion_code: Optional[str] = None,
        delivery_method: Optional[str] = None,
        delivery_slot_id: Optional[str] = None,
        distance_km: Optional[float] = None,
        request_id: Optional[str] = None,
    ) -> Dict:
        """Place an order; a repeated ``request_id`` returns the order already created."""
        if request_id:
            with self._session_factory() as session:
                existing = session.query(Order).filter(Order.request_id == request_id).first()
                if existing is not None:
                    log_event("info", "order.replayed", order_id=existing.id, request_id=request_id)
                    return {"order": to_order_dto(existing), "payment": None, "replayed": True}
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"Unknown payment method: {payment_method}", field="payment_method")
        lines = normalize_items(items)
        if not user_id and not (guest_info or {}).get("email"):
            raise ValidationError("Guest checkout requires an e-mail address", field="guest_info")

        try:
            order_id = self._persist_pending(
                user_id=user_id,
                guest_info=guest_info,
                lines=lines,
                delivery_option=delivery_option,
                shipping_address=shipping_address,
                relay_point_id=relay_point_id,
                payment_method=payment_method,
                promotion_code=promotion_code,
                delivery_method=delivery_method,
                delivery_slot_id=delivery_slot_id,
                distance_km=distance_km,
                request_id=request_id,
            )
        except IntegrityError:
            if not request_id:
                raise
            with self._session_factory() as session:
                existing = session.query(Order).filter(Order.request_id == request_id).first()
                if existing is None:
                    raise
                return {"order": to_order_dto(existing), "payment": None, "replayed": True}

        try:
            order_dto, remaining = self._commit_reservation(order_id, lines)
        except Exception as exc:
            self._mark_failed(order_id, exc)
            raise

        self._alert_low_stock(remaining)
        payment, payment_error = None, None
        if payment_method == "cash_on_delivery":
            self._notify_owner(order_dto, f"Your order {order_id} is confirmed", "order_update")
        else:
            try:
                payment = self._payments.initiate(order_id)
            except PaymentFailure as exc:
                # order stays pending; the client can retry the payment
                log_event("warning", "order.payment_initiation_failed", order_id=order_id, error=exc.message)
                payment_error = exc.to_dict()
        result = {"order": order_dto, "payment": payment}
        if payment_error:
            result["payment_error"] = payment_error
        return result

    def _persist_pending(self, *, user_id, guest_info, lines, delivery_option, shipping_address, relay_point_id,
                         payment_method, promotion_code, delivery_method, delivery_slot_id, distance_km, request_id) -> str:
        with self._session_factory() as session:
            if user_id:
                user = session.get(User, user_id)
                if user is None or not user.is_active:
                    raise NotFoundError("User", user_id)
            address, relay_point, method, slot = self._resolve_delivery(
                session, delivery_option, shipping_address, relay_point_id, delivery_method, delivery_slot_id
            )
            products = self._inventory.check_availability(lines, session=session)
            snapshot, scope_lines = [], []
            weight = Decimal("0")
            currencies = set()
            for ln in lines:
                prod = products[ln["product_id"]]
                currencies.add(prod.currency)
                weight += to_decimal(prod.weight_kg or 0) * ln["quantity"]
                snapshot.append(
                    {
                        "product_id": prod.id,
                        "seller_id": prod.seller_id,
                        "name": prod.name,
                        "unit_price": as_str(prod.promo_price),
                        "quantity": ln["quantity"],
                        "returned_quantity": 0,
                    }
                )
                scope_lines.append(
                    {"product_id": prod.id, "category_id": prod.category_id, "brand": prod.brand, "seller_id": prod.seller_id}
                )
            if len(currencies) > 1:
                raise ValidationError("Items must share one currency", currencies=sorted(currencies))
            items_price = self._pricing.compute_items_total(snapshot)
            shipping_price = self._pricing.compute_shipping(method, self._distance_for(address, relay_point, distance_km), weight)
            if slot is not None:
                shipping_price = quantize(shipping_price + to_decimal(slot.price_modifier or 0))
            discount, promotion_id, code = ZERO, None, None
            if promotion_code:
                promo = self._promotions.apply_promotion(items_price, promotion_code, lines=scope_lines, session=session)
                discount, promotion_id, code = promo.discount, promo.promotion_id, promo.code
                if promo.free_shipping:
                    shipping_price = ZERO
            order = Order(
                id=str(uuid4()),
                request_id=request_id,
                user_id=user_id,
                guest_info=None if user_id else dict(guest_info),
                items=snapshot,
                delivery_option=delivery_option,
                shipping_address=address,
                relay_point_id=relay_point.id if relay_point is not None else None,
                delivery_method=method,
                delivery_slot_id=slot.id if slot is not None else None,
                items_price=items_price,
                shipping_price=shipping_price,
                discount=discount,
                total_price=self._pricing.compute_total(items_price, shipping_price, discount),
                currency=currencies.pop(),
                promotion_id=promotion_id,
                promotion_code=code,
                payment_method=payment_method,
                is_paid=False,
                refunded_amount=ZERO,
                status="pending",
            )
            session.add(order)
            session.flush()
            log_event(
                "info",
                "order.created",
                order_id=order.id,
                user_id=user_id,
                items=len(snapshot),
                total_price=as_str(order.total_price),
                payment_method=payment_method,
            )
            return order.id

    def _commit_reservation(self, order_id: str, lines: List[Dict]):
        with self._session_factory() as session:
            order = self._get(session, order_id)
            remaining = self._inventory.reserve(lines, order_id=order_id, operation_key=f"reserve:{order_id}", session=session)
            if order.promotion_code:
                self._promotions.apply_promotion(order.items_price, order.promotion_code, commit=True, session=session)
            if order.delivery_slot_id:
                self._slots.book_slot(order.delivery_slot_id, session=session)
            self._deliveries.create_delivery(order, session)
            if order.payment_method == "cash_on_delivery":
                ensure_order_transition(order.status, "confirmed")
                self._compare_and_set_status(session, order, "confirmed")
                log_event("info", "order.status_changed", order_id=order_id, from_status="pending", to_status="confirmed")
            return to_order_dto(order), remaining

    def _mark_failed(self, order_id: str, exc: Exception) -> None:
        reason = exc.message if isinstance(exc, MarketplaceError) else f"{type(exc).__name__}: {exc}"
        with self._session_factory() as session:
            session.execute(
                update(Order)
                .where(Order.id == order_id, Order.status == "pending")
                .values(status="failed", failure_reason=reason[:1000], updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
        log_event("warning", "order.failed", order_id=order_id, reason=reason)

    def _alert_low_stock(self, remaining: Dict[str, int]) -> None:
        low = {pid: left for pid, left in (remaining or {}).items() if left <= self._low_stock_threshold}
        if not low:
            return
        with self._session_factory() as session:
            sellers = {p.id: (p.seller_id, p.name) for p in session.query(Product).filter(Product.id.in_(list(low))).all()}
        for pid, left in low.items():
            seller_id, name = sellers.get(pid, (None, pid))
            log_event("warning", "inventory.low_stock", product_id=pid, stock=left)
            self._notifier.notify(
                seller_id,
                f"Low stock for {name}: {left} left",
                type="low_stock_alert",
                related_id=pid,
                related_model="Product",
            )

    # -- transitions -------------------------------------------------------

    def update_order_status(
        self,
        order_id: str,
        new_status: str,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Dict:
        if new_status in _LEDGER_STATUSES:
            raise ValidationError(
                f"'{new_status}' is set by the return and refund operations",
                order_id=order_id,
                status=new_status,
            )
        with self._session_factory() as session:
            order = self._get(session, order_id)
            previous = order.status
            ensure_order_transition(previous, new_status)
            extra = {}
            if new_status in ("cancelled", "failed") and reason:
                extra["failure_reason"] = reason
            self._compare_and_set_status(session, order, new_status, **extra)

            if new_status in ("cancelled", "failed"):
                self._release_holdings(session, order, actor_id)
            delivery_status = ORDER_TO_DELIVERY_STATUS.get(new_status)
            if delivery_status:
                self._deliveries.mirror_order_status(order, delivery_status, session, actor_id=actor_id)
            if new_status == "cancelled" and order.is_paid:
                self._payments.refund(order_id, quantize(order.total_price) - quantize(order.refunded_amount or 0),
                                      reason or "Order cancelled", f"cancel-refund:{order_id}", session=session)
                session.refresh(order)
            session.flush()
            dto = to_order_dto(order)
            log_event("info", "order.status_changed", order_id=order_id, from_status=previous, to_status=new_status, actor_id=actor_id)
        self._notify_owner(
            dto,
            f"Your order {order_id} is now {new_status.replace('_', ' ')}",
            _NOTIFICATION_TYPES.get(new_status, "order_update"),
        )
        return dto

    def _release_holdings(self, session, order: Order, actor_id: Optional[str]) -> None:
        """Give back stock and slot capacity; safe to reach twice for one order."""
        self._inventory.release_outstanding(order_id=order.id, operation_key=f"cancel:{order.id}", session=session)
        delivery = session.query(Delivery).filter(Delivery.order_id == order.id).first()
        if delivery is not None and order.delivery_slot_id:
            self._slots.release_slot(order.delivery_slot_id, session=session)

    def cancel_order(self, order_id: str, actor_id: str, actor_role: Optional[str] = None, reason: Optional[str] = None) -> Dict:
        with self._session_factory() as session:
            order = self._get(session, order_id)
            self._ensure_owner_or_staff(order, actor_id, actor_role)
            if order.status not in CANCELLABLE_ORDER_STATUSES:
                raise InvalidStatusTransition(order.status, "cancelled")
        return self.update_order_status(order_id, "cancelled", actor_id=actor_id, reason=reason)

    def handle_return(
        self,
        order_id: str,
        items: List[Dict],
        actor_id: str,
        actor_role: Optional[str] = None,
        reason: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> Dict:
        """Return order lines; refund accrues at the order-time unit price."""
        operation_key = f"return:{request_id or uuid4()}"
        lines = normalize_items(items)
        with self._session_factory() as session:
            order = self._get(session, order_id)
            self._ensure_owner_or_staff(order, actor_id, actor_role)
            applied = session.query(StockMovement.id).filter(StockMovement.operation_key == operation_key).first()
            if applied is not None:
                refund = session.query(Refund).filter(Refund.operation_key == operation_key).first()
                log_event("info", "order.return_replayed", order_id=order_id, operation_key=operation_key)
                return {
                    "order": to_order_dto(order),
                    "refund_amount": as_str(refund.amount if refund is not None else 0),
                    "refund": to_refund_dto(refund) if refund is not None else None,
                }
            if order.status not in RETURNABLE_ORDER_STATUSES:
                raise InvalidStatusTransition(order.status, "returned")

            by_product = {it["product_id"]: dict(it) for it in order.items or []}
            refund_amount = ZERO
            for ln in lines:
                line = by_product.get(ln["product_id"])
                if line is None:
                    raise ValidationError("Product is not part of this order", order_id=order_id, product_id=ln["product_id"])
                ordered = int(line["quantity"])
                already = int(line.get("returned_quantity") or 0)
                if already + ln["quantity"] > ordered:
                    raise ValidationError(
                        "Return exceeds the ordered quantity",
                        order_id=order_id,
                        product_id=ln["product_id"],
                        ordered=ordered,
                        already_returned=already,
                        requested=ln["quantity"],
                    )
                line["returned_quantity"] = already + ln["quantity"]
                refund_amount += to_decimal(line["unit_price"]) * ln["quantity"]
            refund_amount = quantize(refund_amount)
            if order.is_paid:
                # discounts and slot fees leave the charged total below the line prices
                refundable = quantize(order.total_price) - quantize(order.refunded_amount or 0)
                refund_amount = min(refund_amount, max(refundable, ZERO))

            new_items = [by_product[it["product_id"]] for it in order.items]
            fully = all(int(it["returned_quantity"]) >= int(it["quantity"]) for it in new_items)
            new_status = "returned" if fully else "partially_returned"
            ensure_order_transition(order.status, new_status)

            self._inventory.release(lines, order_id=order_id, operation_key=operation_key, session=session)
            previous = order.status
            self._compare_and_set_status(session, order, new_status, items=new_items)
            refund = None
            if order.is_paid and refund_amount > ZERO:
                refund = self._payments.refund(order_id, refund_amount, reason or "Returned items", operation_key, session=session)
                session.refresh(order)
            dto = to_order_dto(order)
            log_event(
                "info",
                "order.returned",
                order_id=order_id,
                from_status=previous,
                to_status=new_status,
                refund_amount=as_str(refund_amount),
                actor_id=actor_id,
            )
        self._notify_owner(dto, f"Return registered for order {order_id}: {as_str(refund_amount)} {dto['currency']}", "refund_initiated")
        return {"order": dto, "refund_amount": as_str(refund_amount), "refund": refund}

    def refund_order(
        self,
        order_id: str,
        amount=None,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> Dict:
        """Staff refund; the order ends ``refunded`` once the whole total is paid back."""
        operation_key = f"refund:{request_id or uuid4()}"
        with self._session_factory() as session:
            order = self._get(session, order_id)
            existing = session.query(Refund).filter(Refund.operation_key == operation_key).first()
            if existing is not None:
                return {"order": to_order_dto(order), "refund": to_refund_dto(existing)}
            if order.status not in REFUNDABLE_ORDER_STATUSES:
                raise InvalidStatusTransition(order.status, "refunded")
            remaining = quantize(order.total_price) - quantize(order.refunded_amount or 0)
            amount = quantize(amount) if amount is not None else remaining
            refund = self._payments.refund(order_id, amount, reason, operation_key, session=session)
            session.refresh(order)
            new_status = "refunded" if quantize(order.refunded_amount) >= quantize(order.total_price) else "partially_refunded"
            ensure_order_transition(order.status, new_status)
            previous = order.status
            self._compare_and_set_status(session, order, new_status)
            dto = to_order_dto(order)
            log_event("info", "order.refunded", order_id=order_id, from_status=previous, to_status=new_status, amount=as_str(amount), actor_id=actor_id)
        self._notify_owner(dto, f"A refund of {as_str(amount)} {dto['currency']} was issued for order {order_id}", "refund_initiated")
        return {"order": dto, "refund": refund}

    # -- reads -------------------------------------------------------------

    def get_order(self, order_id: str, actor_id: Optional[str] = None, actor_role: Optional[str] = None) -> Dict:
        with self._session_factory() as session:
            order = self._get(session, order_id)
            if actor_id is not None or actor_role is not None:
                self._ensure_can_view(order, actor_id, actor_role)
            data = to_order_dto(order)
            delivery = session.query(Delivery).filter(Delivery.order_id == order_id).first()
            data["delivery"] = to_delivery_dto(delivery) if delivery is not None else None
            return data

    def list_orders_for_user(self, user_id: str, page: int = 1, page_size: int = 20) -> Dict:
        with self._session_factory() as session:
            q = session.query(Order).filter(Order.user_id == user_id).order_by(Order.created_at.desc())
            rows, total, p, ps = paginate(q, page, page_size)
            return {"items": [to_order_dto(o) for o in rows], "page": p, "page_size": ps, "total": total}

    def list_orders(self, status: Optional[str] = None, page: int = 1, page_size: int = 20) -> Dict:
        with self._session_factory() as session:
            q = session.query(Order)
            if status:
                q = q.filter(Order.status == status)
            rows, total, p, ps = paginate(q.order_by(Order.created_at.desc()), page, page_size)
            return {"items": [to_order_dto(o) for o in rows], "page": p, "page_size": ps, "total": total}

    def list_orders_for_seller(self, seller_id: str, status: Optional[str] = None, page: int = 1, page_size: int = 20) -> Dict:
        """Orders holding at least one of the seller's lines, trimmed to those lines."""
        p, ps = normalize_paging(page, page_size)
        with self._session_factory() as session:
            q = session.query(Order)
            if status:
                q = q.filter(Order.status == status)
            matched = []
            for order in q.order_by(Order.created_at.desc()).all():
                mine = [it for it in order.items or [] if it.get("seller_id") == seller_id]
                if mine:
                    data = to_order_dto(order)
                    data["items"] = mine
                    matched.append(data)
            start = (p - 1) * ps
            return {"items": matched[start:start + ps], "page": p, "page_size": ps, "total": len(matched)}
