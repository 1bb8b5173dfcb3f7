from typing import Any, Dict, Optional

from .money import as_str


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def to_product_dto(row: Any) -> Dict:
    return {
        "id": getattr(row, "id", None),
        "sku": getattr(row, "sku", None),
        "name": getattr(row, "name", None),
        "description": getattr(row, "description", None),
        "price": as_str(getattr(row, "price", 0) or 0),
        "promo_price": as_str(row.promo_price),
        "discount_percentage": str(getattr(row, "discount_percentage", 0) or 0),
        "currency": getattr(row, "currency", None),
        "images": getattr(row, "images", None) or [],
        "category_id": getattr(row, "category_id", None),
        "brand": getattr(row, "brand", None),
        "seller_id": getattr(row, "seller_id", None),
        "stock": getattr(row, "stock", 0) or 0,
        "is_active": bool(getattr(row, "is_active", True)),
    }


def to_order_dto(row: Any) -> Dict:
    return {
        "id": row.id,
        "user_id": row.user_id,
        "guest_info": row.guest_info,
        "items": [dict(it) for it in (row.items or [])],
        "delivery_option": row.delivery_option,
        "delivery_method": row.delivery_method,
        "shipping_address": row.shipping_address,
        "relay_point_id": row.relay_point_id,
        "delivery_slot_id": row.delivery_slot_id,
        "items_price": as_str(row.items_price),
        "shipping_price": as_str(row.shipping_price),
        "discount": as_str(row.discount),
        "total_price": as_str(row.total_price),
        "currency": row.currency,
        "promotion_code": row.promotion_code,
        "payment_method": row.payment_method,
        "is_paid": bool(row.is_paid),
        "paid_at": _iso(row.paid_at),
        "refunded_amount": as_str(row.refunded_amount or 0),
        "status": row.status,
        "failure_reason": row.failure_reason,
        "created_at": _iso(row.created_at),
        "delivered_at": _iso(row.delivered_at),
        "cancelled_at": _iso(row.cancelled_at),
    }


def to_delivery_dto(row: Any) -> Dict:
    return {
        "id": row.id,
        "order_id": row.order_id,
        "tracking_number": row.tracking_number,
        "status": row.status,
        "delivery_option": row.delivery_option,
        "delivery_method": row.delivery_method,
        "relay_point_id": row.relay_point_id,
        "delivery_slot_id": row.delivery_slot_id,
        "assigned_to": row.assigned_to,
        "current_location": row.current_location,
        "scheduled_delivery_date": _iso(row.scheduled_delivery_date),
        "actual_delivery_date": _iso(row.actual_delivery_date),
        "notes": row.notes,
    }


def to_tracking_event_dto(row: Any) -> Dict:
    return {
        "status": row.status,
        "location": row.location,
        "note": row.note,
        "actor_id": row.actor_id,
        "created_at": _iso(row.created_at),
    }


def to_slot_dto(row: Any) -> Dict:
    return {
        "id": row.id,
        "date": _iso(row.date),
        "start_time": row.start_time,
        "end_time": row.end_time,
        "delivery_method": row.delivery_method,
        "area_code": row.area_code,
        "max_capacity": row.max_capacity,
        "current_bookings": row.current_bookings,
        "price_modifier": as_str(row.price_modifier or 0),
        "is_available": row.is_available,
    }


def to_relay_point_dto(row: Any, distance_km: Optional[float] = None) -> Dict:
    data = {
        "id": row.id,
        "name": row.name,
        "address": row.address,
        "contact_phone": row.contact_phone,
        "contact_email": row.contact_email,
        "opening_hours": row.opening_hours or [],
        "latitude": row.latitude,
        "longitude": row.longitude,
        "max_capacity": row.max_capacity,
        "current_occupancy": row.current_occupancy,
        "status": row.status,
        "is_full": row.is_full,
        "is_available": row.is_available,
    }
    if distance_km is not None:
        data["distance_km"] = round(distance_km, 2)
    return data


def to_promotion_dto(row: Any) -> Dict:
    return {
        "id": row.id,
        "code": row.code,
        "name": row.name,
        "type": row.type,
        "value": as_str(row.value),
        "minimum_order_amount": as_str(row.minimum_order_amount or 0),
        "usage_limit": row.usage_limit,
        "times_used": row.times_used,
        "start_date": _iso(row.start_date),
        "end_date": _iso(row.end_date),
        "is_active": bool(row.is_active),
        "applies_to": row.applies_to,
    }


def to_payment_dto(row: Any) -> Dict:
    return {
        "id": row.id,
        "order_id": row.order_id,
        "method": row.method,
        "provider": row.provider,
        "provider_reference": row.provider_reference,
        "client_secret": row.client_secret,
        "amount": as_str(row.amount),
        "currency": row.currency,
        "status": row.status,
    }


def to_refund_dto(row: Any) -> Dict:
    return {
        "id": row.id,
        "order_id": row.order_id,
        "amount": as_str(row.amount),
        "reason": row.reason,
        "method": row.method,
        "status": row.status,
        "provider_reference": row.provider_reference,
        "created_at": _iso(row.created_at),
        "settled_at": _iso(row.settled_at),
    }


def to_notification_dto(row: Any) -> Dict:
    return {
        "id": row.id,
        "message": row.message,
        "type": row.type,
        "related_id": row.related_id,
        "related_model": row.related_model,
        "is_read": bool(row.is_read),
        "created_at": _iso(row.created_at),
    }
