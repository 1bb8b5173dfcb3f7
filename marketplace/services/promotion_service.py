from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError

from ..db.session import get_session, session_scope
from ..errors import (
    InvalidPromotion,
    MinimumNotMet,
    NotFoundError,
    PromotionExhausted,
    PromotionExpired,
    ValidationError,
)
from ..models.promotion import PROMOTION_SCOPES, PROMOTION_TYPES, Promotion
from ..utils.dto import to_promotion_dto
from ..utils.money import ZERO, quantize, to_decimal
from ..utils.validators import parse_datetime, require_fields
from .logging import log_event


@dataclass
class PromotionResult:
    total: Decimal
    discount: Decimal
    free_shipping: bool
    promotion_id: Optional[str] = None
    code: Optional[str] = None


# line attribute each scope matches against
_SCOPE_FIELDS = {
    "specific_products": ("applied_products", "product_id"),
    "specific_categories": ("applied_categories", "category_id"),
    "specific_brands": ("applied_brands", "brand"),
    "specific_sellers": ("applied_sellers", "seller_id"),
}


class PromotionService:
    def __init__(self, session_factory=get_session):
        self._session_factory = session_factory

    @staticmethod
    def _normalize_code(code: Optional[str]) -> str:
        return (code or "").strip().upper()

    def _validate(self, promo: Optional[Promotion], code: str, total: Decimal, lines, now: datetime) -> Promotion:
        if promo is None:
            raise InvalidPromotion(f"Unknown promotion code: {code}", code=code)
        if not promo.is_active:
            raise InvalidPromotion(f"Promotion {code} is not active", code=code)
        if not (promo.start_date <= now <= promo.end_date):
            raise PromotionExpired(
                f"Promotion {code} is not valid at this time",
                code=code,
                start_date=promo.start_date.isoformat(),
                end_date=promo.end_date.isoformat(),
            )
        if promo.is_exhausted:
            raise PromotionExhausted(
                f"Promotion {code} has reached its usage limit",
                code=code,
                usage_limit=promo.usage_limit,
                times_used=promo.times_used,
            )
        minimum = to_decimal(promo.minimum_order_amount or 0)
        if total < minimum:
            raise MinimumNotMet(
                f"Order total must be at least {quantize(minimum)} to use {code}",
                code=code,
                minimum=str(quantize(minimum)),
                total=str(quantize(total)),
            )
        if lines is not None and not self._in_scope(promo, lines):
            raise InvalidPromotion(f"Promotion {code} does not apply to these items", code=code, applies_to=promo.applies_to)
        return promo

    @staticmethod
    def _in_scope(promo: Promotion, lines: Iterable[Dict]) -> bool:
        scope = _SCOPE_FIELDS.get(promo.applies_to)
        if scope is None:
            return True
        targets = set(getattr(promo, scope[0]) or [])
        return any(line.get(scope[1]) in targets for line in lines)

    @staticmethod
    def _discount_for(promo: Promotion, total: Decimal) -> Decimal:
        value = to_decimal(promo.value)
        if promo.type == "percentage":
            return min(quantize(total * value / Decimal("100")), total)
        if promo.type == "fixed_amount":
            return min(quantize(value), total)
        return ZERO

    def apply_promotion(
        self,
        total,
        code: Optional[str],
        lines: Optional[List[Dict]] = None,
        commit: bool = False,
        session=None,
        now: Optional[datetime] = None,
    ) -> PromotionResult:
        """Validate ``code`` against an items total.

        Preview calls (``commit=False``) never touch the usage counter. With
        ``commit=True`` the counter is incremented by a conditional update, so
        two racing checkouts cannot both take the last redemption.
        """
        total = quantize(total)
        norm = self._normalize_code(code)
        now = now or datetime.utcnow()
        with session_scope(self._session_factory, session) as s:
            promo = s.query(Promotion).filter(Promotion.code == norm).first() if norm else None
            self._validate(promo, norm, total, lines, now)
            discount = self._discount_for(promo, total)
            if commit:
                result = s.execute(
                    update(Promotion)
                    .where(
                        Promotion.id == promo.id,
                        or_(Promotion.usage_limit == -1, Promotion.times_used < Promotion.usage_limit),
                    )
                    .values(times_used=Promotion.times_used + 1)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise PromotionExhausted(f"Promotion {norm} has reached its usage limit", code=norm)
                s.expire(promo, ["times_used"])
                log_event("info", "promotion.redeemed", promotion_id=promo.id, code=norm)
            return PromotionResult(
                total=quantize(total - discount),
                discount=discount,
                free_shipping=promo.type == "free_shipping",
                promotion_id=promo.id,
                code=norm,
            )

    def _apply_fields(self, promo: Promotion, data: Dict) -> None:
        if "code" in data:
            promo.code = self._normalize_code(data.get("code")) or None
        for key in ("name", "description", "applied_products", "applied_categories", "applied_brands", "applied_sellers"):
            if key in data:
                setattr(promo, key, data[key])
        if "type" in data:
            if data["type"] not in PROMOTION_TYPES:
                raise ValidationError(f"Unknown promotion type: {data['type']}", field="type")
            promo.type = data["type"]
        if "applies_to" in data:
            if data["applies_to"] not in PROMOTION_SCOPES:
                raise ValidationError(f"Unknown promotion scope: {data['applies_to']}", field="applies_to")
            promo.applies_to = data["applies_to"]
        if "value" in data:
            promo.value = quantize(data["value"])
        if "minimum_order_amount" in data:
            promo.minimum_order_amount = quantize(data["minimum_order_amount"] or 0)
        if "usage_limit" in data:
            limit = int(data["usage_limit"])
            if limit < -1 or (limit != -1 and limit < int(promo.times_used or 0)):
                raise ValidationError("usage_limit must be -1 or >= times_used", field="usage_limit")
            promo.usage_limit = limit
        if "is_active" in data:
            promo.is_active = bool(data["is_active"])
        if "start_date" in data:
            promo.start_date = parse_datetime(data["start_date"], "start_date")
        if "end_date" in data:
            promo.end_date = parse_datetime(data["end_date"], "end_date")
        if promo.start_date and promo.end_date and promo.end_date <= promo.start_date:
            raise ValidationError("end_date must be after start_date", field="end_date")
        if promo.type == "percentage" and not (ZERO < to_decimal(promo.value) <= Decimal("100")):
            raise ValidationError("Percentage value must be in (0, 100]", field="value")
        if promo.type == "fixed_amount" and to_decimal(promo.value) <= 0:
            raise ValidationError("Fixed amount must be > 0", field="value")

    def create_promotion(self, data: Dict, actor_id: Optional[str] = None) -> Dict:
        require_fields(data, "name", "type", "start_date", "end_date")
        try:
            with self._session_factory() as session:
                promo = Promotion(created_by=actor_id, times_used=0, usage_limit=-1, value=ZERO)
                self._apply_fields(promo, data)
                session.add(promo)
                session.flush()
                log_event("info", "promotion.created", promotion_id=promo.id, code=promo.code, actor_id=actor_id)
                return to_promotion_dto(promo)
        except IntegrityError:
            raise ValidationError("Promotion code already exists", field="code", code=data.get("code"))

    def update_promotion(self, promotion_id: str, data: Dict) -> Dict:
        try:
            with self._session_factory() as session:
                promo = session.get(Promotion, promotion_id)
                if promo is None:
                    raise NotFoundError("Promotion", promotion_id)
                self._apply_fields(promo, data)
                session.flush()
                log_event("info", "promotion.updated", promotion_id=promo.id)
                return to_promotion_dto(promo)
        except IntegrityError:
            raise ValidationError("Promotion code already exists", field="code", code=data.get("code"))

    def delete_promotion(self, promotion_id: str) -> Dict:
        """Hard delete unused promotions; redeemed ones are only deactivated."""
        with self._session_factory() as session:
            promo = session.get(Promotion, promotion_id)
            if promo is None:
                raise NotFoundError("Promotion", promotion_id)
            if promo.times_used:
                promo.is_active = False
                log_event("info", "promotion.deactivated", promotion_id=promotion_id)
                return {"status": "deactivated", "promotion_id": promotion_id}
            session.delete(promo)
            log_event("info", "promotion.deleted", promotion_id=promotion_id)
            return {"status": "deleted", "promotion_id": promotion_id}

    def get_active_promotions(self, now: Optional[datetime] = None) -> List[Dict]:
        now = now or datetime.utcnow()
        with self._session_factory() as session:
            rows = (
                session.query(Promotion)
                .filter(
                    Promotion.is_active.is_(True),
                    Promotion.start_date <= now,
                    Promotion.end_date >= now,
                    or_(Promotion.usage_limit == -1, Promotion.times_used < Promotion.usage_limit),
                )
                .order_by(Promotion.end_date.asc())
                .all()
            )
            return [to_promotion_dto(p) for p in rows]
