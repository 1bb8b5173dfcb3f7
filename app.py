"""Marketplace order & fulfillment Flask application."""

from __future__ import annotations

from typing import Any, Dict, Optional

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from config import MarketplaceConfig
from marketplace.config import AppConfig
from marketplace.db.session import configure_engine, get_session, init_db
from marketplace.errors import MarketplaceError
from marketplace.services import (
    CartService,
    CatalogService,
    DeliveryService,
    DeliverySlotService,
    InventoryLedger,
    MaintenanceService,
    NotificationService,
    OrderService,
    PaymentGateway,
    PaymentService,
    PricingEngine,
    PromotionService,
    RelayPointService,
)
from marketplace.services.logging import configure_logging, log_event
from routes import admin, api, user


def build_components(cfg: AppConfig, session_factory=get_session, gateway=None, email_sender=None) -> Dict[str, Any]:
    notifications = NotificationService(session_factory, email_sender=email_sender)
    pricing = PricingEngine()
    relay_points = RelayPointService(session_factory)
    slots = DeliverySlotService(session_factory)
    inventory = InventoryLedger(session_factory)
    promotions = PromotionService(session_factory)
    deliveries = DeliveryService(session_factory, relay_points=relay_points, pricing=pricing)
    if gateway is None and cfg.payment_gateway_key:
        gateway = PaymentGateway(cfg.payment_gateway_url, cfg.payment_gateway_key, timeout=cfg.payment_timeout_seconds)
    payments = PaymentService(session_factory, gateway=gateway, webhook_secret=cfg.payment_webhook_secret, notifier=notifications)
    orders = OrderService(
        session_factory,
        inventory=inventory,
        pricing=pricing,
        promotions=promotions,
        deliveries=deliveries,
        slots=slots,
        payments=payments,
        notifier=notifications,
        warehouse_origin=cfg.warehouse_origin,
        low_stock_threshold=cfg.low_stock_threshold,
    )
    return {
        "catalog": CatalogService(session_factory),
        "cart": CartService(session_factory, orders=orders),
        "orders": orders,
        "inventory": inventory,
        "pricing": pricing,
        "promotions": promotions,
        "deliveries": deliveries,
        "slots": slots,
        "relay_points": relay_points,
        "payments": payments,
        "notifications": notifications,
        "maintenance": MaintenanceService(
            orders,
            session_factory,
            pending_ttl_hours=cfg.pending_order_ttl_hours,
            completion_days=cfg.delivered_completion_days,
        ),
    }


def _register_error_handlers(app: Flask, cfg: AppConfig) -> None:
    @app.errorhandler(MarketplaceError)
    def handle_domain_error(exc: MarketplaceError):
        log_event("info" if exc.status_code < 500 else "error", "http.domain_error", code=exc.code, status=exc.status_code)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return jsonify({"error": exc.name.lower().replace(" ", "_"), "message": exc.description}), exc.code
        log_event("error", "http.unhandled_error", exc_info=exc, error=type(exc).__name__)
        message = "Internal server error" if cfg.is_production else f"{type(exc).__name__}: {exc}"
        return jsonify({"error": "internal_error", "message": message}), 500


def _register_commands(app: Flask) -> None:
    @app.cli.command("init-db")
    def init_db_command():
        """Create database tables."""
        init_db()
        log_event("info", "db.initialized")

    @app.cli.command("sweep-pending-orders")
    def sweep_pending_orders():
        """Fail online orders left unpaid past the TTL."""
        stats = app.extensions["marketplace_components"]["maintenance"].expire_pending_orders()
        print(stats)

    @app.cli.command("complete-delivered-orders")
    def complete_delivered_orders():
        """Complete orders delivered longer ago than the grace period."""
        stats = app.extensions["marketplace_components"]["maintenance"].complete_delivered_orders()
        print(stats)


def create_app(
    config: Optional[MarketplaceConfig] = None,
    session_factory=None,
    gateway=None,
    email_sender=None,
) -> Flask:
    config = config or MarketplaceConfig.load()
    cfg = config.app
    configure_logging(cfg.log_level)
    app = Flask(__name__)
    app.config["SECRET_KEY"] = config.secret_key
    app.config["MARKETPLACE_CONFIG"] = cfg

    if session_factory is None:
        configure_engine(cfg.database_url)
        init_db()
        session_factory = get_session
    app.extensions["marketplace_components"] = build_components(
        cfg, session_factory=session_factory, gateway=gateway, email_sender=email_sender
    )

    _register_error_handlers(app, cfg)
    _register_commands(app)

    app.register_blueprint(api.api_bp)
    app.register_blueprint(user.user_bp)
    app.register_blueprint(admin.admin_bp)

    return app


def main() -> None:
    app = create_app()
    app.run(host="0.0.0.0", port=5000, debug=False)


if __name__ == "__main__":
    main()
