from fastapi import Request

from mensajero.lifecycle import OrderLifecycleManager
from mensajero.routing import RoutingClient


def get_manager(request: Request) -> OrderLifecycleManager:
    return request.app.state.manager


def get_routing(request: Request) -> RoutingClient | None:
    return getattr(request.app.state, "routing", None)
