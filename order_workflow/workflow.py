"""
Workflow operations: authorize, validate, and return the next order snapshot.

Every operation takes the current snapshot plus the acting user and returns a
new Order; the input is never mutated and nothing here touches storage. The
caller persists the result with a version check (db.save_order).
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Mapping

from order_workflow.cancellation import ensure_cancellable
from order_workflow.cash import CashData, ensure_reconciled
from order_workflow.domain import (
    Action,
    Actor,
    CashDetails,
    ClientResponse,
    DeliveryType,
    Order,
    OrderItem,
    OrderStatus,
    Payment,
    PaymentMethod,
    PaymentStatus,
    ProductionPhoto,
    ProductionStage,
    Role,
    StageProgress,
    StatusHistoryEntry,
    fresh_stages,
    STAFF_ROLES,
)
from order_workflow.errors import InvalidTransitionError, UnauthorizedError
from order_workflow.order_state import is_staff_only_transition, validate_transition
from order_workflow.permissions import require_action
from order_workflow.production import item_is_finished, stage_entries

S = OrderStatus


def _with_status(order: Order, status: OrderStatus, actor: Actor, notes: str, at: datetime, **changes: Any) -> Order:
    entry = StatusHistoryEntry(
        status=status,
        timestamp=at,
        changed_by=actor.id,
        changed_by_role=actor.role,
        notes=notes,
    )
    return order.model_copy(update={
        "status": status,
        "status_history": order.status_history + (entry,),
        **changes,
    })


def _with_all_stages(item: OrderItem | Mapping[str, Any]) -> OrderItem:
    # an explicit map may list only some stages; the rest start not completed
    if not isinstance(item, OrderItem):
        item = OrderItem.model_validate(item)
    stages = {**fresh_stages(), **stage_entries(item.production_stages)}
    return item.model_copy(update={"production_stages": stages})


def new_order(
    user_id: str,
    items: Iterable[OrderItem | Mapping[str, Any]],
    at: datetime,
    delivery_type: DeliveryType = DeliveryType.MEETUP,
    payment: Payment | None = None,
    delivery_address: dict | None = None,
    meetup_details: dict | None = None,
    client_notes: str = "",
) -> Order:
    """Draft order for a submitted design, waiting to be quoted. No order number yet."""
    return Order(
        user=user_id,
        status=S.PENDING_APPROVAL,
        status_history=(StatusHistoryEntry(
            status=S.PENDING_APPROVAL,
            timestamp=at,
            changed_by=user_id,
            changed_by_role=Role.CUSTOMER,
            notes="Design submitted for quoting",
        ),),
        items=tuple(_with_all_stages(item) for item in items),
        payment=payment or Payment(),
        delivery_type=delivery_type,
        delivery_address=delivery_address,
        meetup_details=meetup_details,
        client_notes=client_notes.strip()[:1000],
        created_at=at,
    )


def submit_quote(
    order: Order,
    actor: Actor,
    subtotal: float,
    at: datetime,
    delivery_fee: float = 0.0,
    tax: float = 0.0,
    discounts: float = 0.0,
    notes: str = "",
    estimated_ready_date: datetime | None = None,
) -> Order:
    require_action(order, Action.SUBMIT_QUOTE, actor)
    validate_transition(order.status, S.QUOTED, actor.role)
    amounts = {"subtotal": subtotal, "delivery_fee": delivery_fee, "tax": tax, "discounts": discounts}
    for name, value in amounts.items():
        if value < 0:
            raise ValueError(f"{name} cannot be negative")
    total = round(subtotal + delivery_fee + tax - discounts, 2)
    if total < 0:
        raise ValueError("discounts exceed the quoted amount")
    return _with_status(
        order, S.QUOTED, actor, notes or f"Quoted at ${total:.2f}", at,
        total=total,
        estimated_ready_date=estimated_ready_date or order.estimated_ready_date,
        **amounts,
    )


def respond_to_quote(order: Order, actor: Actor, accept: bool, at: datetime, notes: str = "") -> Order:
    """Owner accepts (quoted -> approved) or rejects (quoted -> rejected) the quote."""
    if accept:
        require_action(order, Action.ACCEPT_QUOTE, actor)
        return _with_status(
            order, S.APPROVED, actor,
            "Quote accepted by the customer" + (f": {notes}" if notes else ""), at,
            client_notes=notes or order.client_notes,
        )
    require_action(order, Action.REJECT_QUOTE, actor)
    validate_transition(order.status, S.REJECTED, Role.CUSTOMER)
    reason = notes or "Quote rejected by the customer"
    return _with_status(order, S.REJECTED, actor, reason, at, rejection_reason=reason)


def cancel_order(order: Order, actor: Actor, at: datetime, reason: str = "") -> Order:
    require_action(order, Action.CANCEL_ORDER, actor)
    ensure_cancellable(order)
    if actor.role in STAFF_ROLES:
        validate_transition(order.status, S.CANCELLED, actor.role)
    reason = reason or "Order cancelled"
    return _with_status(order, S.CANCELLED, actor, reason, at, cancellation_reason=reason)


def change_status(order: Order, actor: Actor, new_status: OrderStatus | str, at: datetime, notes: str = "") -> Order:
    """
    Generic status change.

    Authorization is decided before the table: a move only staff can make,
    asked for by a non-staff owner, is Unauthorized; a move nobody can make
    from the current status is InvalidTransition. Cancellation always goes
    through the cancellation policy.
    """
    new_status = OrderStatus(new_status)
    is_owner = order.is_owned_by(actor.id)
    is_staff = actor.role in STAFF_ROLES
    if not is_owner and not is_staff:
        raise UnauthorizedError("actor neither owns the order nor holds a staff role")

    if new_status is S.CANCELLED:
        return cancel_order(order, actor, at, notes)

    if is_staff:
        require_action(order, Action.UPDATE_STATUS, actor)
        validate_transition(order.status, new_status, actor.role)
    else:
        if is_staff_only_transition(order.status, new_status):
            raise UnauthorizedError(
                f"only staff may move an order from {order.status.value} to {new_status.value}"
            )
        validate_transition(order.status, new_status, Role.CUSTOMER)

    changes: dict[str, Any] = {}
    if new_status is S.REJECTED:
        changes["rejection_reason"] = notes or "Rejected"
    return _with_status(order, new_status, actor, notes, at, **changes)


def complete_production_stage(
    order: Order,
    actor: Actor,
    stage: ProductionStage | str,
    at: datetime,
    notes: str = "",
    photo_url: str | None = None,
) -> Order:
    """
    Mark `stage` done on every item. The first update moves an approved order
    into production; once every item has finished all stages the order is
    ready for delivery.
    """
    require_action(order, Action.UPDATE_PRODUCTION, actor)
    stage = ProductionStage(stage)
    if not order.items:
        raise ValueError("order has no items to produce")

    current = order
    if current.status is S.APPROVED:
        validate_transition(current.status, S.IN_PRODUCTION, actor.role)
        current = _with_status(current, S.IN_PRODUCTION, actor, "Production started", at)

    progress = StageProgress(
        completed=True,
        completed_at=at,
        completed_by=actor.id,
        notes=notes,
        photo_url=photo_url,
    )
    items = []
    for item in current.items:
        stages = {**fresh_stages(), **stage_entries(item.production_stages)}
        stages[stage.value] = progress
        items.append(item.model_copy(update={"production_stages": stages}))
    current = current.model_copy(update={"items": tuple(items)})

    if all(item_is_finished(item) for item in current.items):
        validate_transition(current.status, S.READY_FOR_DELIVERY, actor.role)
        current = _with_status(current, S.READY_FOR_DELIVERY, actor, "All items are ready", at)
    return current


def add_production_photo(
    order: Order,
    actor: Actor,
    url: str,
    at: datetime,
    notes: str = "",
    stage: ProductionStage | str | None = None,
) -> Order:
    require_action(order, Action.UPLOAD_PHOTO, actor)
    if not url:
        raise ValueError("photo url is required")
    photo = ProductionPhoto(
        url=url,
        uploaded_at=at,
        notes=notes,
        stage=ProductionStage(stage) if stage is not None else None,
    )
    return order.model_copy(update={"production_photos": order.production_photos + (photo,)})


def respond_to_photo(
    order: Order,
    actor: Actor,
    photo_index: int,
    approved: bool,
    at: datetime,
    feedback: str = "",
) -> Order:
    """Owner approves a production photo or asks for changes. Raises IndexError for an unknown photo."""
    require_action(order, Action.APPROVE_PHOTOS, actor)
    if not 0 <= photo_index < len(order.production_photos):
        raise IndexError(f"no production photo #{photo_index}")
    photo = order.production_photos[photo_index]
    if photo.client_response is not None:
        raise InvalidTransitionError(
            current_status=order.status.value,
            requested=Action.APPROVE_PHOTOS.value,
            message=f"photo #{photo_index} was already answered",
        )
    answered = photo.model_copy(update={
        "client_response": ClientResponse(approved=approved, feedback=feedback, responded_at=at),
    })
    photos = list(order.production_photos)
    photos[photo_index] = answered
    return order.model_copy(update={"production_photos": tuple(photos)})


def register_cash_payment(
    order: Order,
    actor: Actor,
    cash_data: CashData | Mapping[str, Any],
    at: datetime,
    receipt_number: str | None = None,
) -> Order:
    """Record cash collected on delivery. PaymentMismatch when the amounts do not reconcile."""
    require_action(order, Action.REGISTER_PAYMENT, actor)
    result = ensure_reconciled(cash_data, order.total)
    details = CashDetails(
        total_amount=result.expected_amount,
        cash_received=result.cash_received,
        change_given=result.calculated_change,
        receipt_number=receipt_number,
        collected_by=actor.id,
        collected_at=at,
    )
    payment = order.payment.model_copy(update={
        "method": PaymentMethod.CASH,
        "status": PaymentStatus.PAID,
        "cash_details": details,
    })
    return order.model_copy(update={"payment": payment})


def confirm_payment(order: Order, actor: Actor) -> Order:
    """Staff confirm a card/transfer/wompi payment settled outside the shop."""
    require_action(order, Action.CONFIRM_PAYMENT, actor)
    payment = order.payment.model_copy(update={"status": PaymentStatus.PAID})
    return order.model_copy(update={"payment": payment})


def add_notes(order: Order, actor: Actor, note: str) -> Order:
    require_action(order, Action.ADD_NOTES, actor)
    note = note.strip()
    if not note:
        return order
    notes = f"{order.admin_notes}\n{note}" if order.admin_notes else note
    return order.model_copy(update={"admin_notes": notes})


def mark_reviewed(order: Order, actor: Actor) -> Order:
    require_action(order, Action.LEAVE_REVIEW, actor)
    return order.model_copy(update={"reviewed": True})
