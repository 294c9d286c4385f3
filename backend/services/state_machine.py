# backend/services/state_machine.py
"""Static status tables for orders and custom cakes.

``*_TRANSITIONS`` lists every legal move. ``*_NEXT`` is the single forward
step staff may trigger from the dashboard; cancellation is separate and only
requires a non-terminal status. Moves that only the payment reconciler makes
(``pending_payment -> processing``, ``-> Downpayment Paid``) are in the
transition table but not in the staff tables.
"""
from typing import Dict, FrozenSet, Optional

from models.order import OrderStatus
from models.custom_cake import CakeStatus
from services.errors import InvalidStatusTransition

ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PENDING_PAYMENT: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

ORDER_NEXT: Dict[OrderStatus, OrderStatus] = {
    OrderStatus.PENDING: OrderStatus.PROCESSING,  # cash received
    OrderStatus.PROCESSING: OrderStatus.SHIPPED,
    OrderStatus.SHIPPED: OrderStatus.DELIVERED,
}

CAKE_TRANSITIONS: Dict[CakeStatus, FrozenSet[CakeStatus]] = {
    CakeStatus.PENDING_REVIEW: frozenset({CakeStatus.FEASIBLE, CakeStatus.NOT_FEASIBLE, CakeStatus.CANCELLED}),
    CakeStatus.FEASIBLE: frozenset({
        CakeStatus.READY_FOR_DOWNPAYMENT, CakeStatus.DOWNPAYMENT_PAID, CakeStatus.CANCELLED,
    }),
    CakeStatus.READY_FOR_DOWNPAYMENT: frozenset({CakeStatus.DOWNPAYMENT_PAID, CakeStatus.CANCELLED}),
    CakeStatus.DOWNPAYMENT_PAID: frozenset({CakeStatus.IN_PROGRESS, CakeStatus.CANCELLED}),
    CakeStatus.IN_PROGRESS: frozenset({CakeStatus.READY_FOR_PICKUP_DELIVERY, CakeStatus.CANCELLED}),
    CakeStatus.READY_FOR_PICKUP_DELIVERY: frozenset({CakeStatus.COMPLETED, CakeStatus.CANCELLED}),
    CakeStatus.COMPLETED: frozenset(),
    CakeStatus.NOT_FEASIBLE: frozenset(),
    CakeStatus.CANCELLED: frozenset(),
}

CAKE_NEXT: Dict[CakeStatus, CakeStatus] = {
    CakeStatus.DOWNPAYMENT_PAID: CakeStatus.IN_PROGRESS,
    CakeStatus.IN_PROGRESS: CakeStatus.READY_FOR_PICKUP_DELIVERY,
    CakeStatus.READY_FOR_PICKUP_DELIVERY: CakeStatus.COMPLETED,
}

# Triage outcomes and pricing have their own endpoints
CAKE_REVIEW_OUTCOMES = frozenset({CakeStatus.FEASIBLE, CakeStatus.NOT_FEASIBLE})


def is_terminal(status) -> bool:
    table = ORDER_TRANSITIONS if isinstance(status, OrderStatus) else CAKE_TRANSITIONS
    return not table[status]


def check_transition(current, target):
    """Raise InvalidStatusTransition unless ``current -> target`` is in the table."""
    table = ORDER_TRANSITIONS if isinstance(current, OrderStatus) else CAKE_TRANSITIONS
    allowed = table[current]
    if target not in allowed:
        raise InvalidStatusTransition(current, target, allowed)


def next_status(current) -> Optional[object]:
    if isinstance(current, OrderStatus):
        return ORDER_NEXT.get(current)
    return CAKE_NEXT.get(current)


def check_staff_advance(current, target):
    """Staff may only move to the table's next status."""
    expected = next_status(current)
    if expected is None or target != expected:
        allowed = {expected} if expected is not None else set()
        raise InvalidStatusTransition(current, target, allowed)


def check_cancel(current):
    cancelled = OrderStatus.CANCELLED if isinstance(current, OrderStatus) else CakeStatus.CANCELLED
    if is_terminal(current):
        raise InvalidStatusTransition(current, cancelled, set())
