"""
Prometheus metrics: workflow changes applied, requests rejected by error kind, order creation.
"""
from prometheus_client import Counter, generate_latest

transitions_applied_total = Counter(
    "order_transitions_applied_total",
    "Total order status changes persisted",
    ["from_status", "to_status"],
)
actions_applied_total = Counter(
    "order_actions_applied_total",
    "Total workflow operations persisted (status change or not)",
    ["operation"],
)
workflow_rejections_total = Counter(
    "order_workflow_rejections_total",
    "Total requests refused by the workflow engine",
    ["kind"],
)
orders_created_total = Counter(
    "orders_created_total",
    "Total orders created (numbered and stored)",
)
allocation_conflicts_total = Counter(
    "order_number_allocation_conflicts_total",
    "Total order-number collisions that forced a re-allocation",
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
