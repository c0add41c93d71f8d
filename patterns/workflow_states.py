"""Enum-based workflow state machine pattern.

Defines workflow states as Python enums with explicit transition validation.
The state definitions are independent of the execution engine.

Two machines live here:
- payment status of an order (pending -> paid | failed, exactly once)
- delivery job lifecycle (pending -> retry* -> delivered | dead_lettered)
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# State definitions
# ---------------------------------------------------------------------------

class PaymentState(str, Enum):
    """Order payment states."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class DeliveryState(str, Enum):
    """Delivery job states. Delivered and dead-lettered are terminal."""

    PENDING = "pending"
    RETRY = "retry"
    DELIVERED = "delivered"
    DEAD_LETTERED = "dead_lettered"


# ---------------------------------------------------------------------------
# Transition rules
# ---------------------------------------------------------------------------

# Allowed transitions: {current_state: [allowed_next_states]}
PAYMENT_TRANSITIONS: dict[PaymentState, list[PaymentState]] = {
    PaymentState.PENDING: [PaymentState.PAID, PaymentState.FAILED],
    PaymentState.PAID: [],    # terminal
    PaymentState.FAILED: [],  # terminal
}

DELIVERY_TRANSITIONS: dict[DeliveryState, list[DeliveryState]] = {
    DeliveryState.PENDING: [
        DeliveryState.RETRY,
        DeliveryState.DELIVERED,
        DeliveryState.DEAD_LETTERED,
    ],
    DeliveryState.RETRY: [
        DeliveryState.RETRY,
        DeliveryState.DELIVERED,
        DeliveryState.DEAD_LETTERED,
    ],
    DeliveryState.DELIVERED: [],      # terminal
    DeliveryState.DEAD_LETTERED: [],  # terminal
}


class TransitionError(ValueError):
    """Raised when a transition is not allowed from the current state."""


def can_transition(transitions: dict, current: Enum, target: Enum) -> bool:
    return target in transitions.get(current, [])


def ensure_transition(transitions: dict, current: Enum, target: Enum) -> None:
    """Raise TransitionError if ``current -> target`` is not allowed."""
    if not can_transition(transitions, current, target):
        allowed = [s.value for s in transitions.get(current, [])]
        raise TransitionError(
            f"Cannot transition from {current.value} to {target.value}. "
            f"Allowed: {allowed}"
        )


# ---------------------------------------------------------------------------
# Transition history
# ---------------------------------------------------------------------------

@dataclass
class WorkflowTransition:
    """Record of a single state transition."""

    from_state: str
    to_state: str
    timestamp: datetime
    actor: str = "system"
    metadata: dict[str, Any] = field(default_factory=dict)


def record_transition(
    transitions: dict,
    current: Enum,
    target: Enum,
    actor: str = "system",
    metadata: dict[str, Any] | None = None,
) -> WorkflowTransition:
    """Validate and describe a transition.

    Raises TransitionError if the transition is not allowed.
    """
    ensure_transition(transitions, current, target)
    return WorkflowTransition(
        from_state=current.value,
        to_state=target.value,
        timestamp=datetime.now(timezone.utc),
        actor=actor,
        metadata=metadata or {},
    )


def is_terminal(transitions: dict, state: Enum) -> bool:
    """A state with no outgoing transitions is terminal."""
    return len(transitions.get(state, [])) == 0
