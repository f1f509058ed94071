"""
Errors raised by the order lifecycle core and its collaborators.
All are recoverable; the HTTP layer translates them into responses.
"""
from mensajero.order_state import OrderState


class OrderError(Exception):
    """Base for lifecycle errors on a single order."""

    def __init__(self, order_id: str, message: str):
        self.order_id = order_id
        super().__init__(message)


class DuplicateIdError(OrderError):
    """Raised when an order with the same id already exists. The existing order is left untouched."""

    def __init__(self, order_id: str):
        super().__init__(order_id, f"order {order_id} already exists")


class OrderNotFoundError(OrderError):
    def __init__(self, order_id: str):
        super().__init__(order_id, f"order {order_id} not found")


class InvalidTransitionError(OrderError):
    """Raised when the order's current state does not allow the requested transition."""

    def __init__(self, order_id: str, current_state: OrderState, target_state: OrderState):
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(
            order_id,
            f"order {order_id} cannot move from {current_state.value} to {target_state.value}",
        )


class RoutingError(Exception):
    """Routing lookup failed (not configured, upstream error or network failure)."""

    def __init__(self, message: str, status_code: int = 502):
        self.status_code = status_code
        super().__init__(message)
