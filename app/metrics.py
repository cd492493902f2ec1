"""
Prometheus metrics: order transitions (accepted/rejected), bus traffic, live connections, notifications.
"""
from prometheus_client import Counter, Gauge, generate_latest

# Engine: applied and rejected status changes
order_transitions_total = Counter(
    "order_transitions_total",
    "Total order status transitions applied",
    ["target"],
)
order_transitions_rejected_total = Counter(
    "order_transitions_rejected_total",
    "Total order status transitions rejected",
    ["reason"],
)
orders_placed_total = Counter(
    "orders_placed_total",
    "Total orders placed",
)
order_fanout_errors_total = Counter(
    "order_fanout_errors_total",
    "Total post-commit publish or notification failures after an order change",
)

# Event bus
bus_events_published_total = Counter(
    "bus_events_published_total",
    "Total events published on the in-process bus",
    ["topic_kind"],
)
bus_subscriber_errors_total = Counter(
    "bus_subscriber_errors_total",
    "Total subscriber callbacks that raised during publish",
)

# Live dashboards
live_connections = Gauge(
    "live_connections",
    "Currently open live channel connections",
    ["channel"],
)

notifications_created_total = Counter(
    "notifications_created_total",
    "Total notifications persisted",
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
