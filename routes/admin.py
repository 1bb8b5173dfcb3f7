"""Staff routes (admin / moderator)."""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from marketplace.errors import ValidationError
from marketplace.utils.auth import decode_actor, require_role


admin_bp = Blueprint("marketplace_admin", __name__, url_prefix="/api/admin")


def _components() -> dict:
    return current_app.extensions["marketplace_components"]


def _config():
    return current_app.config["MARKETPLACE_CONFIG"]


def _payload() -> dict:
    return request.get_json(silent=True) or {}


@admin_bp.before_request
def guard_staff_routes():
    g.actor = require_role(decode_actor(request.headers.get("Authorization"), _config().jwt_secret), "admin", "moderator")
    return None


# -- orders ----------------------------------------------------------------


@admin_bp.get("/orders")
def list_orders():
    result = _components()["orders"].list_orders(
        status=request.args.get("status"),
        page=request.args.get("page", 1, type=int),
        page_size=request.args.get("page_size", 20, type=int),
    )
    return jsonify(result)


@admin_bp.get("/orders/<order_id>")
def get_order(order_id: str):
    return jsonify(_components()["orders"].get_order(order_id, actor_id=g.actor.user_id, actor_role=g.actor.role))


@admin_bp.patch("/orders/<order_id>/status")
def update_order_status(order_id: str):
    payload = _payload()
    if not payload.get("status"):
        raise ValidationError("status required", field="status")
    result = _components()["orders"].update_order_status(
        order_id, payload["status"], actor_id=g.actor.user_id, reason=payload.get("reason")
    )
    return jsonify(result)


@admin_bp.post("/orders/<order_id>/refund")
def refund_order(order_id: str):
    payload = _payload()
    result = _components()["orders"].refund_order(
        order_id,
        amount=payload.get("amount"),
        reason=payload.get("reason"),
        actor_id=g.actor.user_id,
        request_id=payload.get("request_id") or request.headers.get("Idempotency-Key"),
    )
    return jsonify(result)


@admin_bp.get("/orders/<order_id>/payment")
def payment_status(order_id: str):
    return jsonify(_components()["payments"].get_payment_status(order_id))


@admin_bp.get("/payments/pending-cod")
def pending_cash_on_delivery():
    return jsonify({"items": _components()["payments"].pending_cash_on_delivery_orders()})


@admin_bp.post("/refunds/<refund_id>/paid")
def mark_refund_paid(refund_id: str):
    return jsonify(_components()["payments"].mark_refund_paid(refund_id, g.actor.user_id))


# -- deliveries ------------------------------------------------------------


@admin_bp.post("/deliveries/<delivery_id>/assign")
def assign_delivery(delivery_id: str):
    payload = _payload()
    if not payload.get("person_id"):
        raise ValidationError("person_id required", field="person_id")
    result = _components()["deliveries"].assign_to_personnel(delivery_id, payload["person_id"], g.actor.user_id)
    return jsonify(result)


@admin_bp.get("/deliveries/<delivery_id>/events")
def delivery_events(delivery_id: str):
    return jsonify({"items": _components()["deliveries"].list_events(delivery_id)})


@admin_bp.post("/slots")
def create_slot():
    return jsonify(_components()["slots"].create_slot(_payload())), 201


@admin_bp.patch("/slots/<slot_id>")
def update_slot(slot_id: str):
    return jsonify(_components()["slots"].update_slot(slot_id, _payload()))


@admin_bp.delete("/slots/<slot_id>")
def delete_slot(slot_id: str):
    _components()["slots"].delete_slot(slot_id)
    return jsonify({"status": "deleted", "slot_id": slot_id})


@admin_bp.post("/relay-points")
def create_relay_point():
    return jsonify(_components()["relay_points"].create_relay_point(_payload())), 201


@admin_bp.patch("/relay-points/<relay_point_id>")
def update_relay_point(relay_point_id: str):
    return jsonify(_components()["relay_points"].update_relay_point(relay_point_id, _payload()))


@admin_bp.delete("/relay-points/<relay_point_id>")
def delete_relay_point(relay_point_id: str):
    _components()["relay_points"].delete_relay_point(relay_point_id)
    return jsonify({"status": "deactivated", "relay_point_id": relay_point_id})


# -- promotions & inventory ------------------------------------------------


@admin_bp.get("/promotions")
def list_promotions():
    return jsonify({"items": _components()["promotions"].get_active_promotions()})


@admin_bp.post("/promotions")
def create_promotion():
    return jsonify(_components()["promotions"].create_promotion(_payload(), actor_id=g.actor.user_id)), 201


@admin_bp.patch("/promotions/<promotion_id>")
def update_promotion(promotion_id: str):
    return jsonify(_components()["promotions"].update_promotion(promotion_id, _payload()))


@admin_bp.delete("/promotions/<promotion_id>")
def delete_promotion(promotion_id: str):
    return jsonify(_components()["promotions"].delete_promotion(promotion_id))


@admin_bp.get("/inventory/low-stock")
def low_stock():
    threshold = request.args.get("threshold", _config().low_stock_threshold, type=int)
    return jsonify({"items": _components()["inventory"].low_stock(threshold, seller_id=request.args.get("seller_id"))})
