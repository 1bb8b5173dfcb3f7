import os
from dataclasses import dataclass, replace
from decimal import Decimal
from pathlib import Path
import json
from typing import Dict, List, Optional


@dataclass
class AppConfig:
    database_url: str
    secret_key: str
    jwt_secret: str
    log_level: str
    environment: str
    currency: str
    payment_gateway_url: str
    payment_gateway_key: str
    payment_webhook_secret: str
    payment_timeout_seconds: float
    pending_order_ttl_hours: int
    delivered_completion_days: int
    low_stock_threshold: int
    warehouse_lat: Optional[float] = None
    warehouse_lon: Optional[float] = None

    @property
    def is_production(self) -> bool:
        return self.environment in ("production", "prod")

    @property
    def warehouse_origin(self) -> Optional[Dict[str, float]]:
        if self.warehouse_lat is None or self.warehouse_lon is None:
            return None
        return {"lat": self.warehouse_lat, "lon": self.warehouse_lon}


# Per-method shipping tariff: base + per_km * km + per_kg * kg, never below minimum.
SHIPPING_RATES: Dict[str, Dict[str, Decimal]] = {
    "express": {"base": Decimal("10.00"), "per_km": Decimal("0.50"), "per_kg": Decimal("1.00"), "minimum": Decimal("10.00")},
    "standard": {"base": Decimal("5.00"), "per_km": Decimal("0.20"), "per_kg": Decimal("0.50"), "minimum": Decimal("5.00")},
    "door_to_door": {"base": Decimal("7.00"), "per_km": Decimal("0.30"), "per_kg": Decimal("0.70"), "minimum": Decimal("7.00")},
    "pickup_point": {"base": Decimal("2.00"), "per_km": Decimal("0"), "per_kg": Decimal("0"), "minimum": Decimal("2.00")},
}

# Lead time in days used for the scheduled delivery date.
DELIVERY_LEAD_DAYS: Dict[str, int] = {
    "express": 1,
    "pickup_point": 2,
    "door_to_door": 2,
    "standard": 3,
}

DEFAULT_HOME_METHOD = "standard"
RELAY_POINT_METHOD = "pickup_point"

ALLOWED_HOT_KEYS = {"CURRENCY", "LOW_STOCK_THRESHOLD"}
SENSITIVE_KEYS = {"SECRET_KEY", "JWT_SECRET", "PAYMENT_GATEWAY_KEY", "PAYMENT_WEBHOOK_SECRET", "DATABASE_URL"}


def validate_currency(value: Optional[str]) -> str:
    v = (value or "TND").strip().upper()
    if len(v) != 3:
        raise ValueError("Invalid currency code: expected ISO4217 length 3")
    return v


def _optional_float(value) -> Optional[float]:
    if value in (None, ""):
        return None
    return float(value)


def _load_settings_file(path: Optional[Path] = None) -> dict:
    path = path or Path(__file__).resolve().parents[1] / "data" / "settings.json"
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid settings file {path}: {exc}") from exc
    return data if isinstance(data, dict) else {}


def load_env(settings_path: Optional[Path] = None) -> AppConfig:
    # data/settings.json wins over the environment
    s = _load_settings_file(settings_path)

    def pick(key: str, default=None):
        value = s.get(key)
        if value in (None, ""):
            value = os.getenv(key, default)
        return value

    return AppConfig(
        database_url=pick("DATABASE_URL", "sqlite:///data/app.db"),
        secret_key=pick("SECRET_KEY", "dev_secret"),
        jwt_secret=pick("JWT_SECRET", "dev_jwt_secret"),
        log_level=str(pick("LOG_LEVEL", "INFO")).upper(),
        environment=pick("ENVIRONMENT", "development"),
        currency=validate_currency(pick("CURRENCY")),
        payment_gateway_url=str(pick("PAYMENT_GATEWAY_URL", "https://api.payments.example/v1")).rstrip("/"),
        payment_gateway_key=pick("PAYMENT_GATEWAY_KEY", ""),
        payment_webhook_secret=pick("PAYMENT_WEBHOOK_SECRET", "dev_webhook_secret"),
        payment_timeout_seconds=float(pick("PAYMENT_TIMEOUT_SECONDS", 10)),
        pending_order_ttl_hours=int(pick("PENDING_ORDER_TTL_HOURS", 24)),
        delivered_completion_days=int(pick("DELIVERED_COMPLETION_DAYS", 7)),
        low_stock_threshold=int(pick("LOW_STOCK_THRESHOLD", 10)),
        warehouse_lat=_optional_float(pick("WAREHOUSE_LAT")),
        warehouse_lon=_optional_float(pick("WAREHOUSE_LON")),
    )


def refresh_non_sensitive(overrides: Dict[str, str], current: AppConfig) -> AppConfig:
    updates = {k: v for k, v in (overrides or {}).items() if k in ALLOWED_HOT_KEYS}
    currency = validate_currency(updates.get("CURRENCY", current.currency))
    threshold = int(updates.get("LOW_STOCK_THRESHOLD", current.low_stock_threshold))
    return replace(current, currency=currency, low_stock_threshold=threshold)


def requires_restart(changed_keys: List[str]) -> bool:
    if not changed_keys:
        return False
    return any(k in SENSITIVE_KEYS for k in changed_keys)
