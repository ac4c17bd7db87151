"""Prometheus metrics for mqplay."""

from prometheus_client import Counter


deliveries_total = Counter(
    "mqplay_deliveries_total",
    "Deliveries settled by the dispatcher",
    ["exchange", "type", "status"]
)
reconnects_total = Counter(
    "mqplay_reconnects_total",
    "Supervised links lost and scheduled for reconnect",
    ["link"]
)
supervision_errors_total = Counter(
    "mqplay_supervision_errors_total",
    "Errors reported to the error sink"
)
published_total = Counter(
    "mqplay_published_total",
    "Messages handed to the broker",
    ["exchange"]
)
