"""Prometheus metrics for message sync, channels and backend calls."""

from prometheus_client import Counter, Histogram

messages_sent_total = Counter(
    "papercups_widget_messages_sent_total",
    "Messages pushed to the conversation channel",
)

messages_received_total = Counter(
    "papercups_widget_messages_received_total",
    "Inbound messages by reconciliation outcome",
    ["outcome"],
)

messages_marked_seen_total = Counter(
    "papercups_widget_messages_marked_seen_total",
    "Timeline entries stamped as seen",
)

channel_joins_total = Counter(
    "papercups_widget_channel_joins_total",
    "Channel join attempts by channel role and result",
    ["role", "result"],
)

backend_requests_total = Counter(
    "papercups_widget_backend_requests_total",
    "Backend HTTP requests by operation and result",
    ["operation", "result"],
)

backend_request_duration_seconds = Histogram(
    "papercups_widget_backend_request_duration_seconds",
    "Duration of backend HTTP requests",
    ["operation"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
)
