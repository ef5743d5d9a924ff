"""
Prometheus metrics: accepted and rejected status transitions, notification outcomes.
"""
from prometheus_client import Counter, generate_latest

order_status_transitions_total = Counter(
    "order_status_transitions_total",
    "Total order status transitions committed",
    ["from_status", "to_status"],
)
order_status_transitions_rejected_total = Counter(
    "order_status_transitions_rejected_total",
    "Total order status transitions rejected before commit",
    ["reason"],  # illegal_transition | business_rule | invalid_current_status
)
orders_created_total = Counter(
    "orders_created_total",
    "Total orders created in draft status",
)

# Post-commit notifications: sent | failed | skipped (no customer email)
order_notifications_total = Counter(
    "order_notifications_total",
    "Order status notifications by outcome",
    ["outcome"],
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
