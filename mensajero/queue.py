"""
Archive queue for delivered orders. Backend: Redis (LPUSH) or AWS SQS when SQS_QUEUE_URL is set.
"""
import json
import logging

import redis.asyncio as redis

from mensajero.config import settings
from mensajero.models import Order
from mensajero.sqs_client import replay_dlq_to_main, send_message

logger = logging.getLogger(__name__)

ARCHIVE_QUEUE_KEY = "queue:order_archive"
ARCHIVE_DLQ_KEY = "queue:order_archive:dlq"

_redis: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    """Shared connection for the archive lists, opened on first publish."""
    global _redis
    if _redis is None:
        _redis = redis.from_url(settings.redis_url, decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def make_body(order: dict, attempts: int = 0) -> dict:
    return {"order": order, "attempts": attempts}


async def push_to_queue(order: dict, attempts: int = 0) -> None:
    body = make_body(order, attempts)
    if settings.sqs_queue_url:
        await send_message(body)
    else:
        r = await get_redis()
        await r.lpush(ARCHIVE_QUEUE_KEY, json.dumps(body))


async def publish_archived_order(order: Order) -> None:
    """Archiver hook for OrderLifecycleManager: queue a delivered order for order_history."""
    await push_to_queue(order.model_dump(mode="json"))
    logger.info("Queued delivered order_id=%s for archival", order.id)


async def replay_dlq(limit: int = 100) -> int:
    """
    Move dead-lettered archive messages back to the main queue. Returns how many were handled.
    A message leaves the DLQ only after it has been re-queued (or found unusable).
    """
    if settings.sqs_queue_url:
        return await replay_dlq_to_main(limit=limit)
    r = await get_redis()
    replayed = 0
    while replayed < limit:
        raw = await r.lindex(ARCHIVE_DLQ_KEY, -1)
        if raw is None:
            break
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            data = {}
        if isinstance(data, dict) and data.get("order"):
            await r.lpush(ARCHIVE_QUEUE_KEY, json.dumps(make_body(data["order"])))
        else:
            logger.warning("Dropping unusable DLQ message")
        await r.lrem(ARCHIVE_DLQ_KEY, -1, raw)
        replayed += 1
    return replayed
