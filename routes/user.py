"""Authenticated account routes: my orders, returns, notifications, seller views."""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from marketplace.errors import ValidationError
from marketplace.utils.auth import decode_actor, require_role


user_bp = Blueprint("marketplace_user", __name__, url_prefix="/api/me")


def _components() -> dict:
    return current_app.extensions["marketplace_components"]


@user_bp.before_request
def resolve_actor():
    cfg = current_app.config["MARKETPLACE_CONFIG"]
    g.actor = require_role(decode_actor(request.headers.get("Authorization"), cfg.jwt_secret))
    return None


@user_bp.get("/orders")
def my_orders():
    result = _components()["orders"].list_orders_for_user(
        g.actor.user_id,
        page=request.args.get("page", 1, type=int),
        page_size=request.args.get("page_size", 20, type=int),
    )
    return jsonify(result)


@user_bp.get("/orders/<order_id>")
def my_order(order_id: str):
    return jsonify(_components()["orders"].get_order(order_id, actor_id=g.actor.user_id, actor_role=g.actor.role))


@user_bp.post("/orders/<order_id>/cancel")
def cancel_order(order_id: str):
    payload = request.get_json(silent=True) or {}
    result = _components()["orders"].cancel_order(
        order_id, g.actor.user_id, actor_role=g.actor.role, reason=payload.get("reason")
    )
    return jsonify(result)


@user_bp.post("/orders/<order_id>/return")
def return_items(order_id: str):
    payload = request.get_json(silent=True) or {}
    if not payload.get("items"):
        raise ValidationError("items required", field="items")
    result = _components()["orders"].handle_return(
        order_id,
        payload["items"],
        g.actor.user_id,
        actor_role=g.actor.role,
        reason=payload.get("reason"),
        request_id=payload.get("request_id") or request.headers.get("Idempotency-Key"),
    )
    return jsonify(result)


@user_bp.get("/orders/<order_id>/payment")
def my_payment_status(order_id: str):
    _components()["orders"].get_order(order_id, actor_id=g.actor.user_id, actor_role=g.actor.role)
    return jsonify(_components()["payments"].get_payment_status(order_id))


@user_bp.get("/deliveries")
def my_deliveries():
    return jsonify({"items": _components()["deliveries"].list_user_deliveries(g.actor.user_id)})


@user_bp.get("/notifications")
def my_notifications():
    unread = request.args.get("unread") in ("1", "true")
    return jsonify({"items": _components()["notifications"].list_for_user(g.actor.user_id, unread_only=unread)})


@user_bp.post("/notifications/<notification_id>/read")
def read_notification(notification_id: str):
    return jsonify(_components()["notifications"].mark_as_read(notification_id, g.actor.user_id))


@user_bp.post("/notifications/read-all")
def read_all_notifications():
    count = _components()["notifications"].mark_all_as_read(g.actor.user_id)
    return jsonify({"updated": count})


@user_bp.get("/seller/orders")
def seller_orders():
    actor = require_role(g.actor, "seller")
    result = _components()["orders"].list_orders_for_seller(
        actor.user_id,
        status=request.args.get("status"),
        page=request.args.get("page", 1, type=int),
        page_size=request.args.get("page_size", 20, type=int),
    )
    return jsonify(result)


@user_bp.get("/seller/low-stock")
def seller_low_stock():
    actor = require_role(g.actor, "seller")
    threshold = request.args.get("threshold", current_app.config["MARKETPLACE_CONFIG"].low_stock_threshold, type=int)
    return jsonify({"items": _components()["inventory"].low_stock(threshold, seller_id=actor.user_id)})
