from typing import Dict, Optional, Tuple
from uuid import uuid4
from decimal import Decimal
from ..db.session import get_session
from ..errors import InsufficientStock, NotFoundError, ValidationError
from ..models.product import Product
from ..models.cart_item import CartItem
from ..utils.money import as_str, quantize
from ..utils.validators import ensure_non_negative_int, ensure_positive_int
from .logging import log_event
from .order_service import OrderService


class CartService:
    """Cart operations backed by DB; checkout hands the lines to the order service."""

    def __init__(self, session_factory=get_session, orders: Optional[OrderService] = None):
        self._session_factory = session_factory
        self._orders = orders or OrderService(session_factory)

    @staticmethod
    def _identity(session_id: Optional[str], user_id: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
        sid, uid = session_id or None, user_id or None
        if not sid and not uid:
            raise ValidationError("A cart needs a user or a guest session id")
        return sid, uid

    @staticmethod
    def _scoped(q, sid, uid):
        if uid:
            return q.filter(CartItem.user_id == uid)
        return q.filter(CartItem.session_id == sid)

    def get_cart(self, *, session_id: Optional[str], user_id: Optional[str]) -> Dict:
        sid, uid = self._identity(session_id, user_id)
        with self._session_factory() as session:
            rows = self._scoped(session.query(CartItem), sid, uid).order_by(CartItem.added_at.asc()).all()
            items = [
                {
                    "id": it.id,
                    "product_id": it.product_id,
                    "quantity": it.quantity,
                    "unit_price": as_str(it.unit_price or 0),
                    "currency": it.currency,
                }
                for it in rows
            ]
            subtotal = quantize(sum((Decimal(it["unit_price"]) * it["quantity"] for it in items), Decimal("0")))
            currency = items[0]["currency"] if items else None
            return {"items": items, "subtotal": as_str(subtotal), "currency": currency}

    def add_item(self, *, session_id: Optional[str], user_id: Optional[str], product_id: str, quantity: int = 1) -> Dict:
        if not product_id:
            raise ValidationError("product_id required", field="product_id")
        qnty = ensure_positive_int(quantity if quantity is not None else 1, "quantity")
        sid, uid = self._identity(session_id, user_id)
        with self._session_factory() as session:
            prod = (
                session.query(Product)
                .filter(Product.id == product_id, Product.is_active.is_(True))
                .first()
            )
            if not prod:
                raise NotFoundError("Product", product_id)
            existing = self._scoped(session.query(CartItem).filter(CartItem.product_id == product_id), sid, uid).first()
            new_q = qnty + (existing.quantity if existing else 0)
            if new_q > int(prod.stock or 0):
                raise InsufficientStock(product_id, int(prod.stock or 0), new_q)
            if existing:
                existing.quantity = new_q
                existing.unit_price = prod.promo_price
                item_id = existing.id
            else:
                item = CartItem(
                    id=str(uuid4()),
                    session_id=sid,
                    user_id=uid,
                    product_id=product_id,
                    quantity=qnty,
                    unit_price=prod.promo_price,
                    currency=prod.currency,
                )
                session.add(item)
                item_id = item.id
            session.flush()
            return {"status": "added", "item_id": item_id}

    def _owned_item(self, session, item_id: str, sid, uid) -> CartItem:
        it = self._scoped(session.query(CartItem).filter(CartItem.id == item_id), sid, uid).first()
        if not it:
            raise NotFoundError("CartItem", item_id)
        return it

    def update_item(self, *, session_id: Optional[str], user_id: Optional[str], item_id: str, quantity: int) -> Dict:
        sid, uid = self._identity(session_id, user_id)
        qnty = ensure_non_negative_int(quantity, "quantity")
        with self._session_factory() as session:
            it = self._owned_item(session, item_id, sid, uid)
            if qnty == 0:
                session.delete(it)
                return {"status": "removed", "item_id": item_id}
            prod = session.get(Product, it.product_id)
            available = int(prod.stock or 0) if prod else 0
            if qnty > available:
                raise InsufficientStock(it.product_id, available, qnty)
            it.quantity = qnty
            session.flush()
            return {"status": "updated", "item_id": item_id}

    def remove_item(self, *, session_id: Optional[str], user_id: Optional[str], item_id: str) -> None:
        sid, uid = self._identity(session_id, user_id)
        with self._session_factory() as session:
            session.delete(self._owned_item(session, item_id, sid, uid))

    def clear(self, *, session_id: Optional[str], user_id: Optional[str]) -> int:
        sid, uid = self._identity(session_id, user_id)
        with self._session_factory() as session:
            return self._scoped(session.query(CartItem), sid, uid).delete(synchronize_session=False)

    def checkout(self, *, session_id: Optional[str], user_id: Optional[str], **order_fields) -> Dict:
        """Place an order from the cart; the cart is emptied only once the order went through."""
        cart = self.get_cart(session_id=session_id, user_id=user_id)
        if not cart["items"]:
            raise ValidationError("Cart is empty")
        items = [{"product_id": it["product_id"], "quantity": it["quantity"]} for it in cart["items"]]
        result = self._orders.create_order(user_id=user_id, items=items, **order_fields)
        removed = self.clear(session_id=session_id, user_id=user_id)
        log_event("info", "cart.checked_out", order_id=result["order"]["id"], lines=removed)
        return result
