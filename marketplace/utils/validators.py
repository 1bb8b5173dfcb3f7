from datetime import date, datetime
from typing import Any, Dict, List, Optional

from ..errors import ValidationError


def ensure_positive_int(value: Any, field: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer", field=field, value=value)
    if number <= 0:
        raise ValidationError(f"{field} must be > 0", field=field, value=value)
    return number


def ensure_non_negative_int(value: Any, field: str) -> int:
    if value is None:
        raise ValidationError(f"{field} must be >= 0", field=field)
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer", field=field, value=value)
    if number < 0:
        raise ValidationError(f"{field} must be >= 0", field=field, value=value)
    return number


def require_fields(payload: Dict, *fields: str) -> None:
    missing = [f for f in fields if payload.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", fields=missing)


def normalize_items(items: Any) -> List[Dict]:
    """Merge ``[{product_id, quantity}]`` lines by product, preserving first-seen order."""
    if not isinstance(items, list) or not items:
        raise ValidationError("Order must contain at least one item", field="items")
    merged: Dict[str, int] = {}
    for raw in items:
        if not isinstance(raw, dict) or not raw.get("product_id"):
            raise ValidationError("Each item needs a product_id", field="items")
        pid = str(raw["product_id"])
        merged[pid] = merged.get(pid, 0) + ensure_positive_int(raw.get("quantity", 1), "quantity")
    return [{"product_id": pid, "quantity": qty} for pid, qty in merged.items()]


def validate_address(address: Any) -> Dict:
    if not isinstance(address, dict):
        raise ValidationError("Shipping address must be an object", field="shipping_address")
    require_fields(address, "street", "city")
    return dict(address)


def validate_hhmm(value: Any, field: str) -> str:
    text = str(value or "")
    try:
        datetime.strptime(text, "%H:%M")
    except ValueError:
        raise ValidationError(f"{field} must be HH:MM", field=field, value=value)
    return text


def parse_date(value: Any, field: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date", field=field, value=value)


def parse_datetime(value: Any, field: str) -> datetime:
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO datetime", field=field, value=value)
    if parsed.tzinfo is not None:
        parsed = (parsed - parsed.utcoffset()).replace(tzinfo=None)
    return parsed


def optional_float(value: Any, field: str) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", field=field, value=value)
