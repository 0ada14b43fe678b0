from __future__ import annotations

from prometheus_client import Counter, Gauge


messages_received_total = Counter(
    "search_sync_messages_received_total",
    "Messages delivered per subject",
    ["subject"],
)

decode_failures_total = Counter(
    "search_sync_decode_failures_total",
    "Payloads dropped because they could not be decoded",
    ["subject"],
)

applies_total = Counter(
    "search_sync_applies_total",
    "Index operations applied successfully",
    ["subject", "operation"],
)

apply_failures_total = Counter(
    "search_sync_apply_failures_total",
    "Index operations that failed and were dropped",
    ["subject", "operation"],
)

apply_retries_total = Counter(
    "search_sync_apply_retries_total",
    "Index operations retried after a transient backend error",
    ["operation"],
)

handler_errors_total = Counter(
    "search_sync_handler_errors_total",
    "Unexpected exceptions raised by message handlers",
    ["subject"],
)

inflight_handlers = Gauge(
    "search_sync_inflight_handlers",
    "Message handlers currently running",
)

nats_connected = Gauge(
    "nats_connected",
    "NATS connection status (1=connected, 0=disconnected)",
)
