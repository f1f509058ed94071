"""
Order lifecycle state machine. Orders only move forward; DELIVERED is terminal.
"""
from enum import Enum


class OrderState(str, Enum):
    AVAILABLE = "AVAILABLE"
    ASSIGNED = "ASSIGNED"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"


# Current state -> allowed next states
VALID_TRANSITIONS: dict[OrderState, tuple[OrderState, ...]] = {
    OrderState.AVAILABLE: (OrderState.ASSIGNED,),
    OrderState.ASSIGNED: (OrderState.IN_TRANSIT,),
    OrderState.IN_TRANSIT: (OrderState.DELIVERED,),
    OrderState.DELIVERED: (),  # terminal
}


def is_valid_transition(current_state: OrderState, new_state: OrderState) -> bool:
    """True if new_state is allowed after current_state."""
    return new_state in VALID_TRANSITIONS.get(current_state, ())
