"""
Order lifecycle state machine. Valid transitions enforce business rules per role.
"""
from order_workflow.domain import OrderStatus, Role, STAFF_ROLES
from order_workflow.errors import InvalidTransitionError

S = OrderStatus

# Current status -> allowed next statuses, for the owning customer
CUSTOMER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    S.QUOTED: frozenset({S.REJECTED}),
    S.DELIVERED: frozenset({S.COMPLETED}),
}

# Current status -> allowed next statuses, for admins and managers
STAFF_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    S.PENDING_APPROVAL: frozenset({S.QUOTED, S.REJECTED, S.CANCELLED}),
    S.QUOTED: frozenset({S.APPROVED, S.REJECTED, S.CANCELLED}),
    S.REJECTED: frozenset({S.PENDING_APPROVAL}),
    S.APPROVED: frozenset({S.IN_PRODUCTION, S.CANCELLED}),
    S.IN_PRODUCTION: frozenset({S.READY_FOR_DELIVERY, S.CANCELLED}),
    S.READY_FOR_DELIVERY: frozenset({S.DELIVERED, S.CANCELLED}),
    S.DELIVERED: frozenset({S.COMPLETED}),
    S.CANCELLED: frozenset({S.PENDING_APPROVAL}),  # reactivation
    S.COMPLETED: frozenset(),  # terminal
}

TERMINAL_STATUSES: frozenset[OrderStatus] = frozenset({S.COMPLETED, S.CANCELLED})

STATUS_DESCRIPTIONS: dict[OrderStatus, str] = {
    S.PENDING_APPROVAL: "Awaiting review by the shop",
    S.QUOTED: "Quoted - waiting for the customer's answer",
    S.APPROVED: "Approved - ready for production",
    S.REJECTED: "Rejected",
    S.IN_PRODUCTION: "In production",
    S.READY_FOR_DELIVERY: "Ready for delivery",
    S.DELIVERED: "Delivered to the customer",
    S.COMPLETED: "Completed",
    S.CANCELLED: "Cancelled",
}

STATUS_COLORS: dict[OrderStatus, str] = {
    S.PENDING_APPROVAL: "#FFA500",
    S.QUOTED: "#4169E1",
    S.APPROVED: "#32CD32",
    S.REJECTED: "#DC143C",
    S.IN_PRODUCTION: "#FF69B4",
    S.READY_FOR_DELIVERY: "#00CED1",
    S.DELIVERED: "#228B22",
    S.COMPLETED: "#006400",
    S.CANCELLED: "#696969",
}
DEFAULT_STATUS_COLOR = "#808080"


def _table_for(role: Role) -> dict[OrderStatus, frozenset[OrderStatus]]:
    if role in STAFF_ROLES:
        return STAFF_TRANSITIONS
    if role is Role.CUSTOMER:
        return CUSTOMER_TRANSITIONS
    return {}


def legal_next_states(current_status: OrderStatus, role: Role) -> frozenset[OrderStatus]:
    """Statuses `role` may move an order to from `current_status`. Empty when none."""
    return _table_for(Role.parse(role)).get(OrderStatus(current_status), frozenset())


def is_valid_transition(current_status: OrderStatus, new_status: OrderStatus, role: Role) -> bool:
    """True if new_status is allowed after current_status for role."""
    return OrderStatus(new_status) in legal_next_states(current_status, role)


def validate_transition(current_status: OrderStatus, new_status: OrderStatus, role: Role) -> None:
    """Raise InvalidTransitionError unless the table allows the transition for role."""
    allowed = legal_next_states(current_status, role)
    if OrderStatus(new_status) not in allowed:
        raise InvalidTransitionError(
            current_status=OrderStatus(current_status).value,
            requested=OrderStatus(new_status).value,
            allowed=[s.value for s in allowed],
        )


def is_staff_only_transition(current_status: OrderStatus, new_status: OrderStatus) -> bool:
    """True if only staff may make this move; customers asking for it lack the role, not the state."""
    current, new = OrderStatus(current_status), OrderStatus(new_status)
    return (
        new in STAFF_TRANSITIONS.get(current, frozenset())
        and new not in CUSTOMER_TRANSITIONS.get(current, frozenset())
    )


def is_terminal(status: OrderStatus) -> bool:
    return OrderStatus(status) in TERMINAL_STATUSES


def status_description(status: OrderStatus | str) -> str:
    try:
        return STATUS_DESCRIPTIONS[OrderStatus(status)]
    except ValueError:
        return str(status)


def status_color(status: OrderStatus | str) -> str:
    try:
        return STATUS_COLORS[OrderStatus(status)]
    except ValueError:
        return DEFAULT_STATUS_COLOR
