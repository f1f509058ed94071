"""
Order record store. The lifecycle manager only talks to OrderStore; the
composition root (main.py) picks the backend: InMemoryOrderStore here or
PostgresOrderStore in db.py.
"""
import threading
import zlib
from abc import ABC, abstractmethod

from mensajero.models import Order
from mensajero.order_state import OrderState


class OrderStore(ABC):
    @abstractmethod
    async def get(self, order_id: str) -> Order | None:
        ...

    @abstractmethod
    async def insert(self, order: Order) -> bool:
        """Store a new order. Returns False (and changes nothing) if the id already exists."""

    @abstractmethod
    async def compare_and_swap(self, order_id: str, expected_state: OrderState, order: Order) -> bool:
        """
        Replace the stored order only if its current state is expected_state.
        Runs under a lock scoped to order_id. Returns False if the order is
        missing or has already moved on.
        """

    @abstractmethod
    async def list_by_state(self, state: OrderState) -> list[Order]:
        """Orders currently in state, in insertion order."""

    @abstractmethod
    async def count(self) -> int:
        ...


class InMemoryOrderStore(OrderStore):
    """
    Dict-backed store with striped locks keyed by order id. Critical sections
    never await, so threading locks serialize both threads and coroutines.
    Orders are deep-copied in and out so callers never share the stored items.
    """

    def __init__(self, stripes: int = 64):
        self._orders: dict[str, Order] = {}  # dicts keep insertion order
        self._locks = [threading.Lock() for _ in range(max(1, stripes))]
        self._insert_lock = threading.Lock()

    def _lock_for(self, order_id: str) -> threading.Lock:
        return self._locks[zlib.crc32(order_id.encode()) % len(self._locks)]

    async def get(self, order_id: str) -> Order | None:
        order = self._orders.get(order_id)
        return order.model_copy(deep=True) if order else None

    async def insert(self, order: Order) -> bool:
        with self._insert_lock:
            if order.id in self._orders:
                return False
            self._orders[order.id] = order.model_copy(deep=True)
            return True

    async def compare_and_swap(self, order_id: str, expected_state: OrderState, order: Order) -> bool:
        with self._lock_for(order_id):
            current = self._orders.get(order_id)
            if current is None or current.state != expected_state:
                return False
            self._orders[order_id] = order.model_copy(deep=True)
            return True

    async def list_by_state(self, state: OrderState) -> list[Order]:
        with self._insert_lock:
            snapshot = list(self._orders.values())
        return [o.model_copy(deep=True) for o in snapshot if o.state == state]

    async def count(self) -> int:
        return len(self._orders)
