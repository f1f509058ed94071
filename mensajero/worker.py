"""
Archive worker: drain delivered orders from Redis or AWS SQS into Postgres order_history.
- Redis: exponential backoff + manual DLQ. SQS: don't delete on failure; SQS redrive to DLQ after max receives.
- Prometheus /metrics on port 9090 (worker metrics).
- Graceful shutdown on SIGTERM.
Run: python -m mensajero.worker
"""
import asyncio
import json
import logging
import signal
import sys
import threading
import time

import redis.asyncio as redis

from mensajero.config import settings
from mensajero.db import close_pool, get_pool, init_schema, insert_history
from mensajero.metrics import (
    archive_messages_dlq_total,
    archive_messages_failed_total,
    archive_messages_processed_total,
)
from mensajero.queue import ARCHIVE_DLQ_KEY, ARCHIVE_QUEUE_KEY, make_body
from mensajero.sqs_client import change_message_visibility, delete_message, receive_messages

logger = logging.getLogger(__name__)

BRPOP_TIMEOUT = 5
GRACEFUL_SHUTDOWN_WAIT_SEC = 30
WORKER_METRICS_PORT = 9090
SQS_MAX_BACKOFF_SEC = 900


def parse_message(raw: str) -> tuple[dict | None, int]:
    """Return (order dict, attempts) from a queue message; order is None when the message is unusable."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("Invalid JSON from archive queue: %s", e)
        return None, 0
    order = data.get("order") if isinstance(data, dict) else None
    if not isinstance(order, dict) or not order.get("id"):
        logger.warning("Archive message missing order id, skipping")
        return None, 0
    return order, int(data.get("attempts", 0))


async def archive_order(pool, order: dict) -> None:
    if await insert_history(pool, order):
        logger.info("Archived order_id=%s", order["id"])
    else:
        logger.info("Duplicate order_id=%s (already archived), skipped", order["id"])
    archive_messages_processed_total.inc()


async def process_one_redis(r: redis.Redis, pool, raw: str, sem: asyncio.Semaphore) -> None:
    order, attempts = parse_message(raw)
    if order is None:
        return

    async with sem:
        try:
            await archive_order(pool, order)
        except Exception as e:
            archive_messages_failed_total.inc()
            logger.exception("Failed to archive order_id=%s (attempt %d): %s", order["id"], attempts + 1, e)
            next_attempts = attempts + 1
            if next_attempts >= settings.worker_max_retries:
                dlq_message = make_body(order, next_attempts)
                dlq_message.update(last_error=str(e), failed_at=time.time())
                await r.lpush(ARCHIVE_DLQ_KEY, json.dumps(dlq_message))
                archive_messages_dlq_total.inc()
                logger.warning("Moved order_id=%s to DLQ after %d attempts", order["id"], next_attempts)
            else:
                backoff_sec = 2 ** attempts
                logger.info(
                    "Re-queuing order_id=%s in %ds (attempt %d/%d)",
                    order["id"], backoff_sec, next_attempts, settings.worker_max_retries,
                )
                await asyncio.sleep(backoff_sec)
                await r.lpush(ARCHIVE_QUEUE_KEY, json.dumps(make_body(order, next_attempts)))


async def process_one_sqs(pool, body: str, receipt_handle: str, receive_count: int, sem: asyncio.Semaphore) -> None:
    order, _ = parse_message(body)
    if order is None:
        await asyncio.to_thread(delete_message, receipt_handle)
        return

    async with sem:
        try:
            await archive_order(pool, order)
            await asyncio.to_thread(delete_message, receipt_handle)
        except Exception as e:
            archive_messages_failed_total.inc()
            logger.exception("Failed to archive order_id=%s (receive #%d): %s", order["id"], receive_count, e)
            # not deleted: reappears after the visibility timeout; SQS redrives to DLQ after max receives
            backoff = min(2 ** receive_count, SQS_MAX_BACKOFF_SEC)
            await asyncio.to_thread(change_message_visibility, receipt_handle, backoff)


async def _drain(tasks: set[asyncio.Task]) -> None:
    if not tasks:
        return
    logger.info("Graceful shutdown: waiting for %d in-flight task(s) (max %ds) ...", len(tasks), GRACEFUL_SHUTDOWN_WAIT_SEC)
    _, pending = await asyncio.wait(tasks, timeout=GRACEFUL_SHUTDOWN_WAIT_SEC)
    for t in pending:
        t.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)


def _track(tasks: set[asyncio.Task], coro) -> None:
    t = asyncio.create_task(coro)
    tasks.add(t)
    t.add_done_callback(tasks.discard)


async def run_worker_redis(pool, shutdown_event: asyncio.Event) -> None:
    sem = asyncio.Semaphore(settings.worker_concurrency)
    logger.info(
        "Backend=Redis. Listening on %s (concurrency=%d, max_retries=%d) ...",
        ARCHIVE_QUEUE_KEY,
        settings.worker_concurrency,
        settings.worker_max_retries,
    )
    r = redis.from_url(settings.redis_url, decode_responses=True)
    tasks: set[asyncio.Task] = set()
    try:
        while not shutdown_event.is_set():
            result = await r.brpop(ARCHIVE_QUEUE_KEY, timeout=BRPOP_TIMEOUT)
            if result is None:
                continue
            _key, raw = result
            _track(tasks, process_one_redis(r, pool, raw, sem))
    finally:
        await _drain(tasks)
        await r.aclose()


async def run_worker_sqs(pool, shutdown_event: asyncio.Event) -> None:
    sem = asyncio.Semaphore(settings.worker_concurrency)
    logger.info("Backend=SQS. Queue=%s (concurrency=%d) ...", settings.sqs_queue_url, settings.worker_concurrency)
    tasks: set[asyncio.Task] = set()
    try:
        while not shutdown_event.is_set():
            messages = await asyncio.to_thread(receive_messages, 10, 5)
            for msg in messages:
                attrs = msg.get("Attributes") or {}
                _track(tasks, process_one_sqs(
                    pool,
                    msg.get("Body") or "{}",
                    msg.get("ReceiptHandle") or "",
                    int(attrs.get("ApproximateReceiveCount", 1)),
                    sem,
                ))
    finally:
        await _drain(tasks)


async def run_worker(shutdown_event: asyncio.Event) -> None:
    pool = await get_pool()
    await init_schema(pool)
    try:
        if settings.sqs_queue_url:
            await run_worker_sqs(pool, shutdown_event)
        else:
            await run_worker_redis(pool, shutdown_event)
    finally:
        await close_pool()
        logger.info("Worker stopped.")


def _start_metrics_server() -> None:
    from prometheus_client import start_http_server
    start_http_server(WORKER_METRICS_PORT)


def main() -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        stream=sys.stdout,
    )
    threading.Thread(target=_start_metrics_server, daemon=True).start()
    logger.info("Metrics server listening on port %s", WORKER_METRICS_PORT)

    shutdown_event = asyncio.Event()
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, shutdown_event.set)
    except NotImplementedError:
        signal.signal(signal.SIGTERM, lambda *a: shutdown_event.set())
        signal.signal(signal.SIGINT, lambda *a: shutdown_event.set())

    try:
        loop.run_until_complete(run_worker(shutdown_event))
    finally:
        loop.close()


if __name__ == "__main__":
    main()
