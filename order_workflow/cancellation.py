from order_workflow.domain import Order, OrderStatus
from order_workflow.errors import NonCancellableError

# Work that has started production, or been paid for, is not revocable here.
CANCELLABLE_STATUSES: frozenset[OrderStatus] = frozenset({
    OrderStatus.PENDING_APPROVAL,
    OrderStatus.QUOTED,
    OrderStatus.APPROVED,
})


def can_cancel(order: Order) -> bool:
    """True if the order is still before production and not paid."""
    return order.status in CANCELLABLE_STATUSES and not order.is_paid


def ensure_cancellable(order: Order) -> None:
    if not can_cancel(order):
        raise NonCancellableError(order.status.value, order.payment.status.value)
