"""Public and customer-facing API routes."""

from __future__ import annotations

from typing import Any, Dict, Optional

from flask import Blueprint, current_app, jsonify, request

from marketplace.errors import ValidationError
from marketplace.utils.auth import Actor, decode_actor, require_role
from marketplace.utils.dto import to_relay_point_dto
from marketplace.utils.validators import optional_float


api_bp = Blueprint("marketplace_api", __name__, url_prefix="/api")


def _components() -> Dict[str, Any]:
    return current_app.extensions["marketplace_components"]


def _config():
    return current_app.config["MARKETPLACE_CONFIG"]


def _actor() -> Optional[Actor]:
    return decode_actor(request.headers.get("Authorization"), _config().jwt_secret)


def _json() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def _cart_identity() -> Dict[str, Optional[str]]:
    actor = _actor()
    return {
        "user_id": actor.user_id if actor else None,
        "session_id": request.headers.get("X-Session-Id") or None,
    }


def _order_fields(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "delivery_option": payload.get("delivery_option"),
        "shipping_address": payload.get("shipping_address"),
        "relay_point_id": payload.get("relay_point_id"),
        "payment_method": payload.get("payment_method"),
        "promotion_code": payload.get("promotion_code"),
        "delivery_method": payload.get("delivery_method"),
        "delivery_slot_id": payload.get("delivery_slot_id"),
        "request_id": payload.get("request_id") or request.headers.get("Idempotency-Key"),
    }


# -- catalog ---------------------------------------------------------------


@api_bp.get("/products")
def list_products():
    args = request.args
    result = _components()["catalog"].list_products(
        query=args.get("q"),
        category=args.get("category"),
        seller_id=args.get("seller_id"),
        brand=args.get("brand"),
        page=args.get("page", 1, type=int),
        page_size=args.get("page_size", 20, type=int),
    )
    return jsonify(result)


@api_bp.get("/products/<product_id>")
def get_product(product_id: str):
    return jsonify(_components()["catalog"].get_product(product_id))


# -- cart & checkout -------------------------------------------------------


@api_bp.get("/cart")
def get_cart():
    return jsonify(_components()["cart"].get_cart(**_cart_identity()))


@api_bp.post("/cart/items")
def add_cart_item():
    payload = _json()
    result = _components()["cart"].add_item(
        product_id=payload.get("product_id"),
        quantity=payload.get("quantity", 1),
        **_cart_identity(),
    )
    return jsonify(result), 201


@api_bp.patch("/cart/items/<item_id>")
def update_cart_item(item_id: str):
    payload = _json()
    result = _components()["cart"].update_item(item_id=item_id, quantity=payload.get("quantity"), **_cart_identity())
    return jsonify(result)


@api_bp.delete("/cart/items/<item_id>")
def remove_cart_item(item_id: str):
    _components()["cart"].remove_item(item_id=item_id, **_cart_identity())
    return jsonify({"status": "removed", "item_id": item_id})


@api_bp.post("/checkout")
def checkout():
    payload = _json()
    identity = _cart_identity()
    fields = _order_fields(payload)
    if not identity["user_id"]:
        fields["guest_info"] = payload.get("guest_info")
    result = _components()["cart"].checkout(**identity, **fields)
    return jsonify(result), 201


@api_bp.post("/orders")
def create_order():
    payload = _json()
    actor = _actor()
    result = _components()["orders"].create_order(
        user_id=actor.user_id if actor else None,
        guest_info=None if actor else payload.get("guest_info"),
        items=payload.get("items"),
        distance_km=optional_float(payload.get("distance_km"), "distance_km"),
        **_order_fields(payload),
    )
    status = 200 if result.get("replayed") else 201
    return jsonify(result), status


@api_bp.get("/orders/<order_id>")
def get_order(order_id: str):
    actor = require_role(_actor())
    return jsonify(_components()["orders"].get_order(order_id, actor_id=actor.user_id, actor_role=actor.role))


# -- payments --------------------------------------------------------------


@api_bp.post("/payments/initiate")
def initiate_payment():
    payload = _json()
    order_id = payload.get("order_id")
    if not order_id:
        raise ValidationError("order_id required", field="order_id")
    actor = _actor()
    order = _components()["orders"].get_order(order_id)
    # guest orders are paid without an account
    if order["user_id"] is not None:
        actor = require_role(actor)
        _components()["orders"].get_order(order_id, actor_id=actor.user_id, actor_role=actor.role)
    payment = _components()["payments"].initiate(order_id, method=payload.get("method"), currency=payload.get("currency"))
    return jsonify(payment), 201


@api_bp.post("/payments/webhook")
def payment_webhook():
    signature = request.headers.get("X-Signature") or request.headers.get("Stripe-Signature")
    result = _components()["payments"].confirm_online(request.get_data(), signature)
    return jsonify(result)


@api_bp.post("/payments/cod/<order_id>/confirm")
def confirm_cash_on_delivery(order_id: str):
    actor = require_role(_actor(), "delivery", "admin", "moderator")
    payload = _json()
    result = _components()["payments"].confirm_cash_on_delivery(order_id, actor.user_id, payload.get("amount_paid"))
    return jsonify(result)


# -- delivery & tracking ---------------------------------------------------


@api_bp.get("/tracking/<tracking_number>")
def track(tracking_number: str):
    return jsonify(_components()["deliveries"].get_by_tracking_number(tracking_number))


@api_bp.get("/deliveries/assigned")
def assigned_deliveries():
    actor = require_role(_actor(), "delivery")
    return jsonify({"items": _components()["deliveries"].list_assigned(actor.user_id)})


@api_bp.post("/deliveries/<delivery_id>/events")
def record_tracking_event(delivery_id: str):
    actor = require_role(_actor(), "delivery", "admin", "moderator")
    payload = _json()
    if not payload.get("status"):
        raise ValidationError("status required", field="status")
    result = _components()["deliveries"].record_tracking_event(
        delivery_id,
        payload["status"],
        location=payload.get("location"),
        note=payload.get("note"),
        actor_id=actor.user_id,
        actor_role=actor.role,
    )
    return jsonify(result), 201


@api_bp.get("/slots")
def list_slots():
    args = request.args
    slots = _components()["slots"].list_available_slots(
        on_date=args.get("date"),
        area_code=args.get("area_code"),
        delivery_method=args.get("method"),
    )
    return jsonify({"items": slots})


@api_bp.get("/relay-points")
def list_relay_points():
    args = request.args
    lat = optional_float(args.get("lat"), "lat")
    lon = optional_float(args.get("lon"), "lon")
    near = {"lat": lat, "lon": lon} if lat is not None and lon is not None else None
    points = _components()["relay_points"].list_relay_points(
        city=args.get("city"),
        near=near,
        radius_km=optional_float(args.get("radius_km"), "radius_km"),
        only_available=args.get("available") in ("1", "true"),
    )
    return jsonify({"items": points})


@api_bp.get("/relay-points/<relay_point_id>")
def get_relay_point(relay_point_id: str):
    return jsonify(to_relay_point_dto(_components()["relay_points"].get_relay_point(relay_point_id)))


# -- promotions ------------------------------------------------------------


@api_bp.post("/promotions/preview")
def preview_promotion():
    payload = _json()
    if payload.get("total") in (None, ""):
        raise ValidationError("total required", field="total")
    result = _components()["promotions"].apply_promotion(payload["total"], payload.get("code"))
    return jsonify(
        {
            "code": result.code,
            "total": str(result.total),
            "discount": str(result.discount),
            "free_shipping": result.free_shipping,
        }
    )


@api_bp.get("/promotions/active")
def active_promotions():
    return jsonify({"items": _components()["promotions"].get_active_promotions()})
