from typing import Dict, List, Optional

from sqlalchemy import func, update

from ..db.session import get_session, session_scope
from ..errors import InsufficientStock, InvalidRelease, NotFoundError
from ..models.inventory import StockMovement
from ..models.product import Product
from ..utils.dto import to_product_dto
from ..utils.validators import normalize_items
from .logging import log_event


class InventoryLedger:
    """Per-product stock with all-or-nothing reservations and guarded releases.

    Every applied reservation or release is written to ``stock_movement`` under
    its operation key, so replays are no-ops and a release can never credit more
    than is still outstanding for the order.
    """

    def __init__(self, session_factory=get_session):
        self._session_factory = session_factory

    def check_availability(self, items: List[Dict], session=None) -> Dict[str, Product]:
        lines = normalize_items(items)
        with session_scope(self._session_factory, session) as s:
            ids = [ln["product_id"] for ln in lines]
            products = {p.id: p for p in s.query(Product).filter(Product.id.in_(ids)).all()}
            for ln in lines:
                prod = products.get(ln["product_id"])
                if prod is None or not prod.is_active:
                    raise NotFoundError("Product", ln["product_id"])
                if int(prod.stock or 0) < ln["quantity"]:
                    raise InsufficientStock(prod.id, int(prod.stock or 0), ln["quantity"])
            return products

    @staticmethod
    def _already_applied(session, operation_key: str) -> bool:
        return (
            session.query(StockMovement.id)
            .filter(StockMovement.operation_key == operation_key)
            .first()
            is not None
        )

    def reserve(self, items: List[Dict], *, order_id: Optional[str], operation_key: str, session=None) -> Dict[str, int]:
        """Decrement stock for every line or for none; returns remaining stock per product."""
        lines = normalize_items(items)
        with session_scope(self._session_factory, session) as s:
            if self._already_applied(s, operation_key):
                log_event("info", "inventory.reserve_replayed", order_id=order_id, operation_key=operation_key)
                return {}
            self.check_availability(lines, session=s)
            remaining: Dict[str, int] = {}
            for ln in lines:
                pid, qty = ln["product_id"], ln["quantity"]
                result = s.execute(
                    update(Product)
                    .where(Product.id == pid, Product.stock >= qty)
                    .values(stock=Product.stock - qty)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    available = s.query(Product.stock).filter(Product.id == pid).scalar() or 0
                    raise InsufficientStock(pid, int(available), qty)
                s.add(StockMovement(operation_key=operation_key, order_id=order_id, product_id=pid, kind="reserve", quantity=qty))
                remaining[pid] = int(s.query(Product.stock).filter(Product.id == pid).scalar() or 0)
            s.flush()
            self._expire_products(s, remaining)
            log_event("info", "inventory.reserved", order_id=order_id, operation_key=operation_key, lines=len(lines))
            return remaining

    def outstanding(self, order_id: str, product_id: str, session=None) -> int:
        with session_scope(self._session_factory, session) as s:
            rows = (
                s.query(StockMovement.kind, func.coalesce(func.sum(StockMovement.quantity), 0))
                .filter(StockMovement.order_id == order_id, StockMovement.product_id == product_id)
                .group_by(StockMovement.kind)
                .all()
            )
            totals = {kind: int(total) for kind, total in rows}
            return totals.get("reserve", 0) - totals.get("release", 0)

    def release(self, items: List[Dict], *, order_id: str, operation_key: str, session=None) -> bool:
        """Credit stock back; returns False when ``operation_key`` was already applied."""
        lines = normalize_items(items)
        with session_scope(self._session_factory, session) as s:
            if self._already_applied(s, operation_key):
                log_event("info", "inventory.release_replayed", order_id=order_id, operation_key=operation_key)
                return False
            for ln in lines:
                outstanding = self.outstanding(order_id, ln["product_id"], session=s)
                if ln["quantity"] > outstanding:
                    raise InvalidRelease(ln["product_id"], outstanding, ln["quantity"], order_id=order_id)
            for ln in lines:
                s.execute(
                    update(Product)
                    .where(Product.id == ln["product_id"])
                    .values(stock=Product.stock + ln["quantity"])
                    .execution_options(synchronize_session=False)
                )
                s.add(
                    StockMovement(
                        operation_key=operation_key,
                        order_id=order_id,
                        product_id=ln["product_id"],
                        kind="release",
                        quantity=ln["quantity"],
                    )
                )
            s.flush()
            self._expire_products(s, {ln["product_id"]: 0 for ln in lines})
            log_event("info", "inventory.released", order_id=order_id, operation_key=operation_key, lines=len(lines))
            return True

    def release_outstanding(self, *, order_id: str, operation_key: str, session=None) -> bool:
        """Release whatever the order still holds (cancel / expiry paths)."""
        with session_scope(self._session_factory, session) as s:
            product_ids = [
                pid for (pid,) in s.query(StockMovement.product_id).filter(StockMovement.order_id == order_id).distinct()
            ]
            lines = []
            for pid in product_ids:
                qty = self.outstanding(order_id, pid, session=s)
                if qty > 0:
                    lines.append({"product_id": pid, "quantity": qty})
            if not lines:
                return False
            return self.release(lines, order_id=order_id, operation_key=operation_key, session=s)

    def low_stock(self, threshold: int, seller_id: Optional[str] = None) -> List[Dict]:
        with self._session_factory() as session:
            q = session.query(Product).filter(Product.is_active.is_(True), Product.stock <= int(threshold))
            if seller_id:
                q = q.filter(Product.seller_id == seller_id)
            return [to_product_dto(p) for p in q.order_by(Product.stock.asc(), Product.name.asc()).all()]

    @staticmethod
    def _expire_products(session, product_ids) -> None:
        # conditional updates bypass the identity map
        ids = set(product_ids)
        for obj in list(session.identity_map.values()):
            if isinstance(obj, Product) and obj.id in ids:
                session.expire(obj, ["stock"])
