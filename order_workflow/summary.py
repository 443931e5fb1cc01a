"""
Dashboard summary for an order: quick metrics, priority, and the next thing
someone has to do about it.
"""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from order_workflow.cancellation import can_cancel
from order_workflow.domain import DeliveryType, Order, OrderStatus, PaymentStatus
from order_workflow.order_state import status_description
from order_workflow.permissions import has_unanswered_photos
from order_workflow.production import next_pending_stage, order_progress, stage_title

S = OrderStatus

LARGE_ORDER_TOTAL = 100.0
LARGE_ORDER_QUANTITY = 10
SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class OrderMetrics:
    days_in_system: int
    is_overdue: bool
    days_until_delivery: int | None
    production_progress: int
    needs_action: bool
    can_be_cancelled: bool
    payment_pending: bool
    is_large_order: bool


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def order_metrics(order: Order, now: datetime) -> OrderMetrics:
    now = _aware(now)
    days_in_system = 0
    if order.created_at is not None:
        days_in_system = int((now - _aware(order.created_at)).total_seconds() // SECONDS_PER_DAY)

    is_overdue = False
    days_until_delivery = None
    if order.estimated_ready_date is not None:
        remaining = (_aware(order.estimated_ready_date) - now).total_seconds()
        days_until_delivery = math.ceil(remaining / SECONDS_PER_DAY)
        is_overdue = remaining < 0 and order.status not in (S.DELIVERED, S.COMPLETED, S.CANCELLED)

    quantity = sum(item.quantity for item in order.items)
    return OrderMetrics(
        days_in_system=days_in_system,
        is_overdue=is_overdue,
        days_until_delivery=days_until_delivery,
        production_progress=order_progress(order),
        needs_action=(
            order.status in (S.PENDING_APPROVAL, S.QUOTED) or has_unanswered_photos(order)
        ),
        can_be_cancelled=can_cancel(order),
        payment_pending=order.payment.status is PaymentStatus.PENDING,
        is_large_order=order.total > LARGE_ORDER_TOTAL or quantity > LARGE_ORDER_QUANTITY,
    )


def next_action_description(order: Order) -> str:
    if order.status is S.PENDING_APPROVAL:
        return "Shop must review and quote the order"
    if order.status is S.QUOTED:
        return "Customer must accept or reject the quote"
    if order.status is S.APPROVED:
        return "Start production"
    if order.status is S.IN_PRODUCTION:
        stages = order.items[0].production_stages if order.items else None
        stage = next_pending_stage(stages)
        return f"Complete stage: {stage_title(stage)}" if stage else "Finish production"
    if order.status is S.READY_FOR_DELIVERY:
        if order.delivery_type is DeliveryType.DELIVERY:
            return "Arrange delivery"
        return "Arrange meetup point"
    if order.status is S.DELIVERED:
        return "Confirm customer satisfaction"
    if has_unanswered_photos(order):
        return "Customer must approve production photos"
    if order.payment.status is PaymentStatus.PENDING:
        return "Payment pending"
    return "No pending actions"


def order_summary(order: Order, now: datetime) -> dict:
    metrics = order_metrics(order, now)
    if metrics.is_overdue:
        priority = "high"
    elif metrics.needs_action:
        priority = "medium"
    else:
        priority = "normal"
    return {
        "order_number": order.order_number,
        "status": order.status.value,
        "status_description": status_description(order.status),
        "total": order.total,
        "created_at": order.created_at,
        "estimated_ready_date": order.estimated_ready_date,
        "metrics": asdict(metrics),
        "priority": priority,
        "next_action": next_action_description(order),
    }
