from typing import Dict, Optional, Tuple
import time
from sqlalchemy import or_
from ..db.session import get_session
from ..errors import NotFoundError
from ..models.product import Product
from ..models.category import Category
from ..utils.pagination import normalize_paging
from ..utils.dto import to_product_dto


class CatalogService:
    """Catalog reads: product search with pagination and a short-lived result cache."""

    _cache_ttl_seconds: int = 60

    def __init__(self, session_factory=get_session):
        self._session_factory = session_factory
        # naive in-process cache: key -> (ts, result)
        self._cache: Dict[Tuple, Tuple[float, Dict]] = {}

    def list_products(
        self,
        *,
        query: Optional[str] = None,
        category: Optional[str] = None,
        seller_id: Optional[str] = None,
        brand: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Dict:
        """Return dict: { items: [ProductDTO], page, page_size, total }"""
        p, ps = normalize_paging(page, page_size)
        cache_key = (query or "", category or "", seller_id or "", brand or "", p, ps)
        now = time.time()
        cached = self._cache.get(cache_key)
        if cached and now - cached[0] <= self._cache_ttl_seconds:
            return cached[1]

        with self._session_factory() as session:
            q = session.query(Product).filter(Product.is_active.is_(True))
            if query:
                like = f"%{query}%"
                q = q.filter(
                    or_(
                        Product.name.ilike(like),
                        Product.description.ilike(like),
                        Product.sku.ilike(like),
                    )
                )
            if category:
                q = (
                    q.join(Category, Category.id == Product.category_id, isouter=True)
                    .filter(or_(Category.slug == category, Product.category_id == category))
                )
            if seller_id:
                q = q.filter(Product.seller_id == seller_id)
            if brand:
                q = q.filter(Product.brand == brand)
            total = q.count()
            rows = (
                q.order_by(Product.sort_order.desc(), Product.created_at.desc())
                .offset((p - 1) * ps)
                .limit(ps)
                .all()
            )
            items = [to_product_dto(r) for r in rows]
            result = {"items": items, "page": p, "page_size": ps, "total": total}
            self._cache[cache_key] = (now, result)
            return result

    def get_product(self, product_id: str) -> Dict:
        with self._session_factory() as session:
            r = (
                session.query(Product)
                .filter(Product.id == product_id, Product.is_active.is_(True))
                .first()
            )
            if r is None:
                raise NotFoundError("Product", product_id)
            return to_product_dto(r)

    def invalidate_cache(self) -> None:
        self._cache.clear()
