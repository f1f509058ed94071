import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from mensajero.config import settings
from mensajero.db import PostgresOrderStore, close_pool, get_pool, init_schema
from mensajero.errors import (
    DuplicateIdError,
    InvalidTransitionError,
    OrderNotFoundError,
    RoutingError,
)
from mensajero.lifecycle import OrderLifecycleManager
from mensajero.metrics import (
    get_metrics_bytes,
    get_metrics_content_type,
    sqs_queue_messages_in_flight,
    sqs_queue_messages_waiting,
)
from mensajero.queue import close_redis, publish_archived_order
from mensajero.routes import admin, directions, orders
from mensajero.routing import RoutingClient
from mensajero.sqs_client import get_queue_depth
from mensajero.store import InMemoryOrderStore

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # composition root: the store lives here, not in a module global
    if settings.store_backend == "postgres":
        pool = await get_pool()
        await init_schema(pool)
        store = PostgresOrderStore(pool)
    else:
        store = InMemoryOrderStore(stripes=settings.lock_stripes)
    app.state.manager = OrderLifecycleManager(
        store,
        archiver=publish_archived_order if settings.archive_enabled else None,
        arrival_threshold_meters=settings.arrival_threshold_meters,
    )
    app.state.routing = RoutingClient()
    logger.info(
        "Store=%s, routing %s, archive %s",
        settings.store_backend,
        "configured" if app.state.routing.configured else "NOT configured",
        "enabled" if settings.archive_enabled else "disabled",
    )
    yield
    await close_redis()
    await close_pool()


app = FastAPI(title="Mensajero", lifespan=lifespan)
app.include_router(orders.router)
app.include_router(directions.router)
app.include_router(admin.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.info("%s %s", request.method, request.url.path)
    return await call_next(request)


@app.exception_handler(OrderNotFoundError)
async def order_not_found(request: Request, exc: OrderNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": str(exc), "order_id": exc.order_id})


@app.exception_handler(DuplicateIdError)
async def duplicate_id(request: Request, exc: DuplicateIdError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"error": str(exc), "order_id": exc.order_id})


@app.exception_handler(InvalidTransitionError)
async def invalid_transition(request: Request, exc: InvalidTransitionError) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={
            "error": str(exc),
            "order_id": exc.order_id,
            "current_state": exc.current_state.value,
            "attempted_state": exc.target_state.value,
        },
    )


@app.exception_handler(RoutingError)
async def routing_error(request: Request, exc: RoutingError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})


@app.get("/health")
async def health(request: Request) -> dict:
    routing = getattr(request.app.state, "routing", None)
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "routing": "configured" if routing is not None and routing.configured else "not configured",
        "total_orders": await request.app.state.manager.store.count(),
    }


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus scrape endpoint: lifecycle counters, SQS archive queue depth (when using SQS)."""
    if settings.sqs_queue_url:
        try:
            waiting, in_flight = await get_queue_depth()
            sqs_queue_messages_waiting.set(waiting)
            sqs_queue_messages_in_flight.set(in_flight)
        except Exception:
            logger.warning("Could not read SQS archive queue depth", exc_info=True)
    return Response(
        content=get_metrics_bytes(),
        media_type=get_metrics_content_type(),
    )
