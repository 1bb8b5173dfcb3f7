"""Order and delivery status machines.

Every status-changing entry point goes through ``ensure_order_transition`` or
``ensure_delivery_transition``; nothing else decides legality.
"""

from typing import Dict, FrozenSet

from ..errors import InvalidStatusTransition


ORDER_STATUSES = (
    "pending",
    "confirmed",
    "processing",
    "shipped",
    "out_for_delivery",
    "ready_for_pickup",
    "delivered",
    "completed",
    "cancelled",
    "failed",
    "returned",
    "partially_returned",
    "refunded",
    "partially_refunded",
)

_RETURN_FLOW = frozenset({"returned", "partially_returned", "refunded", "partially_refunded"})

ORDER_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"confirmed", "cancelled", "failed"}),
    "confirmed": frozenset({"processing", "cancelled"}),
    "processing": frozenset({"shipped", "cancelled"}),
    "shipped": frozenset({"out_for_delivery", "ready_for_pickup"}),
    "out_for_delivery": frozenset({"delivered"}),
    "ready_for_pickup": frozenset({"delivered"}),
    "delivered": frozenset({"completed"}) | _RETURN_FLOW,
    "completed": _RETURN_FLOW,
    "partially_returned": _RETURN_FLOW,
    "returned": frozenset({"refunded", "partially_refunded"}),
    "partially_refunded": frozenset({"refunded", "partially_refunded"}),
    "cancelled": frozenset(),
    "refunded": frozenset(),
    "failed": frozenset(),
}

CANCELLABLE_ORDER_STATUSES = frozenset(s for s, nxt in ORDER_TRANSITIONS.items() if "cancelled" in nxt)
RETURNABLE_ORDER_STATUSES = frozenset({"delivered", "completed", "partially_returned"})
REFUNDABLE_ORDER_STATUSES = frozenset(
    {"delivered", "completed", "returned", "partially_returned", "partially_refunded"}
)
# self-transitions allowed because each return/refund adds to the running totals
REPEATABLE_ORDER_STATUSES = frozenset({"partially_returned", "partially_refunded"})

DELIVERY_STATUSES = (
    "pending_pickup",
    "in_transit",
    "out_for_delivery",
    "ready_for_pickup",
    "delivered",
    "failed_attempt",
    "returned",
    "cancelled",
)

DELIVERY_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending_pickup": frozenset({"in_transit", "out_for_delivery", "ready_for_pickup", "cancelled"}),
    "in_transit": frozenset({"out_for_delivery", "ready_for_pickup", "failed_attempt", "returned", "cancelled"}),
    "out_for_delivery": frozenset({"delivered", "failed_attempt"}),
    "ready_for_pickup": frozenset({"delivered", "returned"}),
    "failed_attempt": frozenset({"out_for_delivery", "returned", "cancelled"}),
    "delivered": frozenset(),
    "returned": frozenset(),
    "cancelled": frozenset(),
}

TERMINAL_DELIVERY_STATUSES = frozenset(s for s, nxt in DELIVERY_TRANSITIONS.items() if not nxt)

# order status -> delivery status mirrored by the orchestrator
ORDER_TO_DELIVERY_STATUS = {
    "shipped": "in_transit",
    "out_for_delivery": "out_for_delivery",
    "ready_for_pickup": "ready_for_pickup",
    "delivered": "delivered",
    "cancelled": "cancelled",
    "failed": "cancelled",
}


def can_transition_order(from_status: str, to_status: str) -> bool:
    return to_status in ORDER_TRANSITIONS.get(from_status, frozenset())


def ensure_order_transition(from_status: str, to_status: str) -> None:
    if to_status not in ORDER_STATUSES or not can_transition_order(from_status, to_status):
        raise InvalidStatusTransition(from_status, to_status)


def ensure_delivery_transition(from_status: str, to_status: str) -> None:
    if to_status not in DELIVERY_STATUSES:
        raise InvalidStatusTransition(from_status, to_status, entity="delivery")
    if to_status not in DELIVERY_TRANSITIONS.get(from_status, frozenset()):
        raise InvalidStatusTransition(from_status, to_status, entity="delivery")
