"""
Which actions an actor may take on an order.

Ownership and staff role are independent: an actor gets the owner actions
if the order is theirs and the staff actions if their role is admin or
manager, evaluated separately and unioned.
"""
from __future__ import annotations

from dataclasses import dataclass

from order_workflow.cancellation import can_cancel
from order_workflow.domain import (
    Action,
    Actor,
    Order,
    OrderStatus,
    OWNER_ACTIONS,
    READ_ROLES,
    Role,
    STAFF_ACTIONS,
    STAFF_ROLES,
)
from order_workflow.errors import InvalidTransitionError, NonCancellableError, UnauthorizedError

S = OrderStatus


def has_unanswered_photos(order: Order) -> bool:
    return any(photo.client_response is None for photo in order.production_photos)


def _owner_actions(order: Order) -> set[Action]:
    actions: set[Action] = set()
    if order.status is S.QUOTED:
        actions |= {Action.ACCEPT_QUOTE, Action.REJECT_QUOTE}
    if has_unanswered_photos(order):
        actions.add(Action.APPROVE_PHOTOS)
    if can_cancel(order):
        actions.add(Action.CANCEL_ORDER)
    if order.status is S.DELIVERED:
        actions.add(Action.MARK_COMPLETED)
    if order.status is S.COMPLETED and not order.reviewed:
        actions.add(Action.LEAVE_REVIEW)
    return actions


def _staff_actions(order: Order) -> set[Action]:
    actions = {Action.UPDATE_STATUS, Action.ADD_NOTES}
    if order.status is S.PENDING_APPROVAL:
        actions |= {Action.SUBMIT_QUOTE, Action.REJECT_ORDER}
    if order.status in (S.APPROVED, S.IN_PRODUCTION):
        actions |= {Action.UPDATE_PRODUCTION, Action.UPLOAD_PHOTO}
    if order.status is S.READY_FOR_DELIVERY:
        actions.add(Action.MARK_DELIVERED)
    if not order.is_paid:
        actions |= {Action.REGISTER_PAYMENT, Action.CONFIRM_PAYMENT}
    if can_cancel(order) or order.status is S.APPROVED:
        actions.add(Action.CANCEL_ORDER)
    return actions


def available_actions(order: Order, role: Role | str, actor_id: str | None) -> frozenset[Action]:
    """Actions the actor may take right now. Empty for actors who neither own the order nor are staff."""
    role = Role.parse(role)
    actions: set[Action] = set()
    if order.is_owned_by(actor_id):
        actions |= _owner_actions(order)
    if role in STAFF_ROLES:
        actions |= _staff_actions(order)
    return frozenset(actions)


def can_perform(order: Order, action: Action | str, role: Role | str, actor_id: str | None) -> bool:
    return Action(action) in available_actions(order, role, actor_id)


def require_action(order: Order, action: Action | str, actor: Actor) -> None:
    """
    Gate an action for actor.

    Unauthorized when the action lies outside every capacity the actor holds
    on this order; NonCancellable / InvalidTransition when the capacity is
    there but the order's current state does not allow it.
    """
    action = Action(action)
    is_owner = order.is_owned_by(actor.id)
    is_staff = actor.role in STAFF_ROLES
    if not is_owner and not is_staff:
        raise UnauthorizedError("actor neither owns the order nor holds a staff role")

    capacity: set[Action] = set()
    if is_owner:
        capacity |= OWNER_ACTIONS
    if is_staff:
        capacity |= STAFF_ACTIONS
    if action not in capacity:
        raise UnauthorizedError(f"role {actor.role.value} may not {action.value} on this order")

    available = available_actions(order, actor.role, actor.id)
    if action in available:
        return
    if action is Action.CANCEL_ORDER:
        raise NonCancellableError(order.status.value, order.payment.status.value)
    raise InvalidTransitionError(
        current_status=order.status.value,
        requested=action.value,
        allowed=[a.value for a in available],
        message=f"{action.value} is not available while the order is {order.status.value}",
    )


@dataclass(frozen=True)
class OrderAccess:
    is_owner: bool
    is_staff: bool
    can_edit: bool
    can_cancel: bool
    can_view_full_details: bool


def check_order_access(order: Order, actor: Actor) -> OrderAccess:
    """Read gate: the owner and any shop role (employees included) may view an order."""
    is_owner = order.is_owned_by(actor.id)
    if not is_owner and actor.role not in READ_ROLES:
        raise UnauthorizedError("you do not have access to this order")
    is_staff = actor.role in STAFF_ROLES
    return OrderAccess(
        is_owner=is_owner,
        is_staff=is_staff,
        can_edit=is_staff or (is_owner and order.status in (S.PENDING_APPROVAL, S.QUOTED)),
        can_cancel=(is_staff or is_owner) and can_cancel(order),
        can_view_full_details=is_owner or is_staff,
    )
