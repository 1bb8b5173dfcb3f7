import json
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..db.session import get_session, session_scope
from ..errors import DeliveryNotCompleted, InvalidSignature, OrderNotFound, PaymentFailure, ValidationError, NotFoundError
from ..models.delivery import Delivery
from ..models.order import Order
from ..models.payment import Payment, Refund, WebhookEvent
from ..utils.dto import to_order_dto, to_payment_dto, to_refund_dto
from ..utils.money import ZERO, as_str, quantize, to_decimal
from .logging import log_event
from .notification_service import NotificationService
from .order_status import can_transition_order
from .payment_gateway import PaymentGateway, verify_signature


class PaymentService:
    """Correlates orders with payment attempts and settles them.

    Webhook events are recorded by id before being applied, so a replayed
    delivery is a no-op. Refunds are keyed by an operation key for the same
    reason.
    """

    def __init__(
        self,
        session_factory=get_session,
        gateway: Optional[PaymentGateway] = None,
        webhook_secret: str = "",
        notifier: Optional[NotificationService] = None,
    ):
        self._session_factory = session_factory
        self._gateway = gateway
        self._webhook_secret = webhook_secret
        self._notifier = notifier or NotificationService(session_factory)

    @staticmethod
    def _get_order(session, order_id: str) -> Order:
        order = session.get(Order, order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    def initiate(self, order_id: str, method: Optional[str] = None, currency: Optional[str] = None) -> Dict:
        """Open a payment attempt; never marks the order paid."""
        with self._session_factory() as session:
            order = self._get_order(session, order_id)
            method = method or order.payment_method
            if method != order.payment_method:
                raise ValidationError("Payment method does not match the order", order_id=order_id, method=method)
            if order.is_paid:
                raise ValidationError("Order is already paid", order_id=order_id)
            if order.status != "pending" and method == "online_payment":
                raise ValidationError("Only pending orders can be paid online", order_id=order_id, status=order.status)
            existing = (
                session.query(Payment)
                .filter(Payment.order_id == order_id, Payment.status.in_(("requires_confirmation", "awaiting_delivery")))
                .first()
            )
            if existing is not None:
                return to_payment_dto(existing)
            amount = quantize(order.total_price)
            currency = (currency or order.currency).upper()
            if method == "cash_on_delivery":
                payment = Payment(order_id=order_id, method=method, provider="cash", amount=amount, currency=currency, status="awaiting_delivery")
                session.add(payment)
                session.flush()
                log_event("info", "payment.initiated", order_id=order_id, method=method)
                return to_payment_dto(payment)

        if self._gateway is None:
            raise PaymentFailure("Online payments are not configured", order_id=order_id)
        # gateway call happens outside any open transaction
        intent = self._gateway.create_intent(order_id, amount, currency)
        with self._session_factory() as session:
            payment = Payment(
                order_id=order_id,
                method=method,
                provider=self._gateway.provider,
                provider_reference=intent["id"],
                client_secret=intent.get("client_secret"),
                amount=amount,
                currency=currency,
                status="requires_confirmation",
            )
            session.add(payment)
            session.flush()
            log_event("info", "payment.initiated", order_id=order_id, method=method, provider_reference=intent["id"])
            return to_payment_dto(payment)

    def confirm_online(self, body: bytes, signature: Optional[str]) -> Dict:
        if not verify_signature(self._webhook_secret, body, signature):
            log_event("warning", "payment.webhook_rejected")
            raise InvalidSignature()
        try:
            event = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            raise ValidationError("Webhook body is not valid JSON")
        event_id, event_type = event.get("id"), event.get("type")
        data = event.get("data") or {}
        if not event_id or not event_type:
            raise ValidationError("Webhook event needs id and type")
        try:
            result = self._apply_webhook(event_id, event_type, data)
        except IntegrityError:
            # a concurrent delivery of the same event won the insert
            log_event("info", "payment.webhook_duplicate", event_id=event_id)
            return {"status": "duplicate", "event_id": event_id}
        if result.get("newly_paid"):
            order = result["order"]
            self._notifier.notify(
                order["user_id"],
                f"Payment received for order {order['id']}",
                type="payment_received",
                related_id=order["id"],
                send_email=True,
                email=(order.get("guest_info") or {}).get("email"),
            )
        return {"status": result["status"], "event_id": event_id}

    def _apply_webhook(self, event_id: str, event_type: str, data: Dict) -> Dict:
        with self._session_factory() as session:
            if session.get(WebhookEvent, event_id) is not None:
                log_event("info", "payment.webhook_duplicate", event_id=event_id)
                return {"status": "duplicate"}
            reference = data.get("payment_intent") or data.get("id")
            payment = None
            if reference:
                payment = session.query(Payment).filter(Payment.provider_reference == reference).first()
            order_id = payment.order_id if payment is not None else (data.get("metadata") or {}).get("order_id") or data.get("order_id")
            session.add(WebhookEvent(event_id=event_id, type=event_type, order_id=order_id))
            session.flush()
            if event_type == "payment.succeeded":
                return self._mark_paid_online(session, order_id, payment, data)
            if event_type == "payment.failed":
                if payment is not None:
                    payment.status = "failed"
                    payment.error_message = str(data.get("failure_message") or data.get("error") or "declined")
                log_event("warning", "payment.failed", order_id=order_id, event_id=event_id)
                return {"status": "failed"}
            log_event("info", "payment.webhook_ignored", event_id=event_id, type=event_type)
            return {"status": "ignored"}

    def _mark_paid_online(self, session, order_id: Optional[str], payment: Optional[Payment], data: Dict) -> Dict:
        if not order_id:
            raise ValidationError("Webhook event is not linked to an order")
        order = self._get_order(session, order_id)
        now = datetime.utcnow()
        result = session.execute(
            update(Order)
            .where(Order.id == order_id, Order.is_paid.is_(False))
            .values(
                is_paid=True,
                paid_at=now,
                payment_result={"id": data.get("payment_intent") or data.get("id"), "status": "succeeded", "amount": data.get("amount")},
            )
            .execution_options(synchronize_session=False)
        )
        if payment is not None:
            payment.status = "succeeded"
        if result.rowcount != 1:
            log_event("info", "payment.already_paid", order_id=order_id)
            return {"status": "already_paid"}
        if can_transition_order(order.status, "confirmed"):
            session.execute(
                update(Order)
                .where(Order.id == order_id, Order.status == order.status)
                .values(status="confirmed", updated_at=now)
                .execution_options(synchronize_session=False)
            )
        else:
            log_event("warning", "payment.received_for_closed_order", order_id=order_id, status=order.status)
        session.expire(order)
        session.refresh(order)
        log_event("info", "payment.succeeded", order_id=order_id, status=order.status)
        return {"status": "paid", "newly_paid": True, "order": to_order_dto(order)}

    def confirm_cash_on_delivery(self, order_id: str, actor_id: str, amount_paid=None) -> Dict:
        with self._session_factory() as session:
            order = self._get_order(session, order_id)
            if order.payment_method != "cash_on_delivery":
                raise ValidationError("Order is not cash on delivery", order_id=order_id)
            if order.is_paid:
                raise ValidationError("Order is already paid", order_id=order_id)
            delivery = session.query(Delivery).filter(Delivery.order_id == order_id).first()
            if delivery is None or delivery.status != "delivered":
                raise DeliveryNotCompleted(order_id, delivery.status if delivery is not None else None)
            total = quantize(order.total_price)
            if amount_paid is not None and quantize(amount_paid) < total:
                raise ValidationError(
                    "Collected amount is below the order total",
                    order_id=order_id,
                    amount_paid=as_str(amount_paid),
                    total_price=as_str(total),
                )
            now = datetime.utcnow()
            result = session.execute(
                update(Order)
                .where(Order.id == order_id, Order.is_paid.is_(False))
                .values(
                    is_paid=True,
                    paid_at=now,
                    payment_result={"method": "cash_on_delivery", "collected_by": actor_id, "amount": as_str(amount_paid if amount_paid is not None else total)},
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ValidationError("Order is already paid", order_id=order_id)
            payment = (
                session.query(Payment)
                .filter(Payment.order_id == order_id, Payment.method == "cash_on_delivery")
                .first()
            )
            if payment is None:
                payment = Payment(order_id=order_id, method="cash_on_delivery", provider="cash", amount=total, currency=order.currency)
                session.add(payment)
            payment.status = "collected"
            payment.confirmed_by = actor_id
            session.flush()
            session.refresh(order)
            dto = to_order_dto(order)
            log_event("info", "payment.cash_collected", order_id=order_id, actor_id=actor_id)
        self._notifier.notify(order.user_id, f"Payment received for order {order_id}", type="payment_received", related_id=order_id)
        return dto

    def refund(self, order_id: str, amount, reason: Optional[str], operation_key: str, session=None) -> Dict:
        """Record a refund once per ``operation_key``; online refunds go through the gateway."""
        amount = quantize(amount)
        if amount <= ZERO:
            raise ValidationError("Refund amount must be > 0", order_id=order_id)
        with session_scope(self._session_factory, session) as s:
            existing = s.query(Refund).filter(Refund.operation_key == operation_key).first()
            if existing is not None:
                log_event("info", "payment.refund_replayed", order_id=order_id, operation_key=operation_key)
                return to_refund_dto(existing)
            order = self._get_order(s, order_id)
            refundable = quantize(order.total_price) - quantize(order.refunded_amount or 0) if order.is_paid else ZERO
            if amount > refundable:
                raise ValidationError(
                    "Refund exceeds the refundable amount",
                    order_id=order_id,
                    amount=as_str(amount),
                    refundable=as_str(refundable),
                )
            refund = Refund(order_id=order_id, operation_key=operation_key, amount=amount, reason=reason, method=order.payment_method)
            if order.payment_method == "online_payment":
                payment = (
                    s.query(Payment)
                    .filter(Payment.order_id == order_id, Payment.status == "succeeded")
                    .order_by(Payment.created_at.desc())
                    .first()
                )
                if payment is None or self._gateway is None:
                    raise PaymentFailure("No settled online payment to refund", order_id=order_id)
                outcome = self._gateway.refund(payment.provider_reference, amount, operation_key)
                refund.provider_reference = outcome.get("id")
                refund.status = "succeeded"
                refund.settled_at = datetime.utcnow()
            else:
                refund.status = "owed"
            order.refunded_amount = quantize(to_decimal(order.refunded_amount or 0) + amount)
            s.add(refund)
            s.flush()
            log_event("info", "payment.refunded", order_id=order_id, amount=as_str(amount), method=refund.method, status=refund.status)
            return to_refund_dto(refund)

    def mark_refund_paid(self, refund_id: str, actor_id: str) -> Dict:
        with self._session_factory() as session:
            refund = session.get(Refund, refund_id)
            if refund is None:
                raise NotFoundError("Refund", refund_id)
            if refund.status != "owed":
                raise ValidationError("Only owed refunds can be marked paid", refund_id=refund_id, status=refund.status)
            refund.status = "paid"
            refund.settled_by = actor_id
            refund.settled_at = datetime.utcnow()
            log_event("info", "payment.refund_settled", refund_id=refund_id, actor_id=actor_id)
            return to_refund_dto(refund)

    def get_payment_status(self, order_id: str) -> Dict:
        with self._session_factory() as session:
            order = self._get_order(session, order_id)
            payments = session.query(Payment).filter(Payment.order_id == order_id).order_by(Payment.created_at.asc()).all()
            refunds = session.query(Refund).filter(Refund.order_id == order_id).order_by(Refund.created_at.asc()).all()
            return {
                "order_id": order_id,
                "user_id": order.user_id,
                "payment_method": order.payment_method,
                "is_paid": bool(order.is_paid),
                "paid_at": order.paid_at.isoformat() if order.paid_at else None,
                "total_price": as_str(order.total_price),
                "refunded_amount": as_str(order.refunded_amount or 0),
                "payments": [to_payment_dto(p) for p in payments],
                "refunds": [to_refund_dto(r) for r in refunds],
            }

    def pending_cash_on_delivery_orders(self) -> List[Dict]:
        with self._session_factory() as session:
            rows = (
                session.query(Order, Delivery.status)
                .outerjoin(Delivery, Delivery.order_id == Order.id)
                .filter(
                    Order.payment_method == "cash_on_delivery",
                    Order.is_paid.is_(False),
                    Order.status.notin_(("cancelled", "failed")),
                )
                .order_by(Order.created_at.asc())
                .all()
            )
            result = []
            for order, delivery_status in rows:
                data = to_order_dto(order)
                data["delivery_status"] = delivery_status
                result.append(data)
            return result
