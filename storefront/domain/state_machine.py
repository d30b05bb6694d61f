"""Order lifecycle rules.

Forward progress follows ``pending -> confirmed -> processing -> shipped ->
delivered``. Moves may skip intermediate states, but never go back.
``delivered``, ``cancelled`` and ``refunded`` are terminal. A delivery
exception is an annotation on the order, not a status.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAYMENT_FAILED = "payment_failed"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class Decision(str, Enum):
    APPLY = "apply"
    DUPLICATE = "duplicate"
    STALE = "stale"
    TERMINAL = "terminal"
    INVALID = "invalid"


TERMINAL_STATES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED})

# Position on the forward path; used to detect stale events.
PROGRESS: dict[OrderStatus, int] = {
    OrderStatus.PENDING: 0,
    OrderStatus.PAYMENT_FAILED: 0,
    OrderStatus.CONFIRMED: 1,
    OrderStatus.PROCESSING: 2,
    OrderStatus.SHIPPED: 3,
    OrderStatus.DELIVERED: 4,
}

TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({
        OrderStatus.CONFIRMED,
        OrderStatus.PAYMENT_FAILED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    }),
    OrderStatus.PAYMENT_FAILED: frozenset({
        OrderStatus.CONFIRMED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    }),
    OrderStatus.CONFIRMED: frozenset({
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    }),
    OrderStatus.PROCESSING: frozenset({
        OrderStatus.SHIPPED,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    }),
    OrderStatus.SHIPPED: frozenset({
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    }),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

EXCEPTION_STATES = frozenset({OrderStatus.PROCESSING, OrderStatus.SHIPPED})


@dataclass(frozen=True, slots=True)
class TransitionPlan:
    current: OrderStatus
    target: OrderStatus
    decision: Decision

    @property
    def should_apply(self) -> bool:
        return self.decision is Decision.APPLY

    @property
    def is_rejection(self) -> bool:
        return self.decision in (Decision.TERMINAL, Decision.INVALID)


def is_terminal(status: OrderStatus | str) -> bool:
    return OrderStatus(status) in TERMINAL_STATES


def can_transition(current: OrderStatus | str, target: OrderStatus | str) -> bool:
    return OrderStatus(target) in TRANSITIONS[OrderStatus(current)]


def plan_transition(current: OrderStatus | str, target: OrderStatus | str) -> TransitionPlan:
    current = OrderStatus(current)
    target = OrderStatus(target)

    if current is target:
        decision = Decision.DUPLICATE
    elif target in TRANSITIONS[current]:
        decision = Decision.APPLY
    elif current in TERMINAL_STATES:
        decision = Decision.TERMINAL
    elif target in PROGRESS and PROGRESS[target] < PROGRESS.get(current, 0):
        decision = Decision.STALE
    else:
        decision = Decision.INVALID
    return TransitionPlan(current=current, target=target, decision=decision)


def can_flag_exception(status: OrderStatus | str) -> bool:
    return OrderStatus(status) in EXCEPTION_STATES
