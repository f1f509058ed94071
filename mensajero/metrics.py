"""
Prometheus metrics: order lifecycle (API), archive processing (worker), archive queue depth (SQS).
"""
from prometheus_client import Counter, Gauge, generate_latest

# API: lifecycle
orders_created_total = Counter(
    "orders_created_total",
    "Total orders placed",
)
order_transitions_total = Counter(
    "order_transitions_total",
    "Total order state transitions applied",
    ["from_state", "to_state", "trigger"],
)
order_transitions_rejected_total = Counter(
    "order_transitions_rejected_total",
    "Total transitions rejected because the order was not in the required state",
    ["current_state", "attempted_state"],
)
location_reports_total = Counter(
    "location_reports_total",
    "Total courier location pings received",
)
archive_failures_total = Counter(
    "archive_failures_total",
    "Total delivered orders that could not be published to the archive queue",
)

# Worker: archive processing outcomes
archive_messages_processed_total = Counter(
    "archive_messages_processed_total",
    "Total archive messages written to order_history",
)
archive_messages_failed_total = Counter(
    "archive_messages_failed_total",
    "Total archive messages that failed processing (retried or sent to DLQ)",
)
archive_messages_dlq_total = Counter(
    "archive_messages_dlq_total",
    "Total archive messages moved to DLQ after max retries",
)

# SQS archive queue depth (when using SQS)
sqs_queue_messages_waiting = Gauge(
    "sqs_queue_messages_waiting",
    "Approximate number of archive messages waiting in SQS (main queue)",
)
sqs_queue_messages_in_flight = Gauge(
    "sqs_queue_messages_in_flight",
    "Approximate number of archive messages in flight (received but not yet deleted)",
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
