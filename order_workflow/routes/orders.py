import logging
import secrets
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, model_validator

from order_workflow import db, notifications, workflow
from order_workflow.cash import CashData, cash_receipt_number, change_denominations
from order_workflow.config import settings
from order_workflow.domain import (
    Actor,
    DeliveryType,
    Order,
    OrderItem,
    OrderStatus,
    Payment,
    PaymentMethod,
    PaymentTiming,
    ProductionStage,
    Role,
    check_delivery_details,
)
from order_workflow.metrics import actions_applied_total, orders_created_total, transitions_applied_total
from order_workflow.order_number import is_valid_order_number
from order_workflow.order_state import is_terminal, legal_next_states, status_description
from order_workflow.permissions import available_actions, check_order_access
from order_workflow.production import next_pending_stage, order_progress
from order_workflow.summary import order_summary
from order_workflow.timeline import build_timeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


class ItemBody(BaseModel):
    product_id: str = Field(..., description="Catalog product being customized")
    design_id: str | None = Field(default=None, description="Customer design to sublimate")
    quantity: int = Field(default=1, ge=1, le=100)


class CreateOrderBody(BaseModel):
    items: list[ItemBody] = Field(..., min_length=1)
    delivery_type: DeliveryType = DeliveryType.MEETUP
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_timing: PaymentTiming = PaymentTiming.ON_DELIVERY
    delivery_address: dict | None = None
    meetup_details: dict | None = None
    client_notes: str = Field(default="", max_length=1000)

    @model_validator(mode="after")
    def _delivery_details_match_type(self) -> "CreateOrderBody":
        check_delivery_details(self.delivery_type, self.delivery_address, self.meetup_details)
        return self


class QuoteBody(BaseModel):
    subtotal: float = Field(..., ge=0)
    delivery_fee: float = Field(default=0.0, ge=0)
    tax: float = Field(default=0.0, ge=0)
    discounts: float = Field(default=0.0, ge=0)
    notes: str = Field(default="", max_length=1000)
    estimated_ready_date: datetime | None = None


class QuoteResponseBody(BaseModel):
    accept: bool
    notes: str = Field(default="", max_length=1000)


class StatusBody(BaseModel):
    status: OrderStatus
    notes: str = Field(default="", max_length=1000)


class CancelBody(BaseModel):
    reason: str = Field(default="", max_length=500)


class ProductionBody(BaseModel):
    stage: ProductionStage
    notes: str = Field(default="", max_length=500)
    photo_url: str | None = None


class PhotoBody(BaseModel):
    url: str = Field(..., min_length=1)
    notes: str = Field(default="", max_length=500)
    stage: ProductionStage | None = None


class PhotoResponseBody(BaseModel):
    approved: bool
    feedback: str = Field(default="", max_length=500)


class NotesBody(BaseModel):
    note: str = Field(..., min_length=1, max_length=1000)


async def get_actor(
    x_actor_id: str = Header(..., description="Authenticated user id"),
    x_actor_role: str = Header(..., description="Authenticated user role"),
) -> Actor:
    """Identity comes from the session layer in front of us; parse the role once here."""
    return Actor(id=x_actor_id, role=Role.parse(x_actor_role))


async def get_db_pool():
    return await db.get_pool()


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def _load(pool, order_number: str) -> db.StoredOrder:
    if not is_valid_order_number(order_number, settings.order_number_prefix):
        raise HTTPException(status_code=404, detail=f"order {order_number} not found")
    stored = await db.fetch_order(pool, order_number)
    if stored is None:
        raise HTTPException(status_code=404, detail=f"order {order_number} not found")
    return stored


def _order_view(order: Order, actor: Actor) -> dict[str, Any]:
    view = order.model_dump(mode="json", by_alias=True)
    view["statusDescription"] = status_description(order.status)
    view["isTerminal"] = is_terminal(order.status)
    view["availableActions"] = sorted(a.value for a in available_actions(order, actor.role, actor.id))
    view["nextStatuses"] = sorted(s.value for s in legal_next_states(order.status, actor.role))
    view["productionProgress"] = order_progress(order)
    next_stage = next_pending_stage(order.items[0].production_stages) if order.items else None
    view["nextProductionStage"] = next_stage.value if next_stage else None
    return view


async def _persist(
    pool,
    stored: db.StoredOrder,
    updated: Order,
    operation: str,
    background: BackgroundTasks,
    event: str | None = None,
) -> Order:
    await db.save_order(pool, updated, stored.version)
    actions_applied_total.labels(operation=operation).inc()
    previous = stored.order.status
    if updated.status is not previous:
        transitions_applied_total.labels(from_status=previous.value, to_status=updated.status.value).inc()
        logger.info("Order %s: %s -> %s (%s)", updated.order_number, previous.value, updated.status.value, operation)
        event = event or "status_changed"
    if event:
        background.add_task(notifications.publish_order_event, event, updated)
    return updated


@router.post("")
async def create_order(
    body: CreateOrderBody,
    background: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    pool=Depends(get_db_pool),
) -> JSONResponse:
    """Submit a design for quoting. The order starts in pending_approval."""
    draft = workflow.new_order(
        user_id=actor.id,
        items=[OrderItem(**item.model_dump()) for item in body.items],
        at=_now(),
        delivery_type=body.delivery_type,
        payment=Payment(method=body.payment_method, timing=body.payment_timing),
        delivery_address=body.delivery_address,
        meetup_details=body.meetup_details,
        client_notes=body.client_notes,
    )
    order = await db.create_order(pool, draft)
    orders_created_total.inc()
    background.add_task(notifications.publish_order_event, "order_created", order)
    return JSONResponse(status_code=201, content=_order_view(order, actor))


@router.get("/{order_number}")
async def get_order(order_number: str, actor: Actor = Depends(get_actor), pool=Depends(get_db_pool)) -> dict:
    stored = await _load(pool, order_number)
    access = check_order_access(stored.order, actor)
    view = _order_view(stored.order, actor)
    if not access.can_view_full_details:
        for private in ("clientNotes", "adminNotes", "deliveryAddress"):
            view.pop(private, None)
    view["access"] = {
        "isOwner": access.is_owner,
        "isStaff": access.is_staff,
        "canEdit": access.can_edit,
        "canCancel": access.can_cancel,
    }
    return view


@router.get("/{order_number}/timeline")
async def get_timeline(order_number: str, actor: Actor = Depends(get_actor), pool=Depends(get_db_pool)) -> dict:
    stored = await _load(pool, order_number)
    check_order_access(stored.order, actor)
    entries = build_timeline(stored.order)
    return {
        "order_number": order_number,
        "timeline": [e.model_dump(mode="json", by_alias=True) for e in entries],
    }


@router.get("/{order_number}/summary")
async def get_summary(order_number: str, actor: Actor = Depends(get_actor), pool=Depends(get_db_pool)) -> dict:
    stored = await _load(pool, order_number)
    check_order_access(stored.order, actor)
    return order_summary(stored.order, _now())


@router.post("/{order_number}/quote")
async def submit_quote(
    order_number: str,
    body: QuoteBody,
    background: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    pool=Depends(get_db_pool),
) -> dict:
    stored = await _load(pool, order_number)
    updated = workflow.submit_quote(
        stored.order, actor, body.subtotal, _now(),
        delivery_fee=body.delivery_fee,
        tax=body.tax,
        discounts=body.discounts,
        notes=body.notes,
        estimated_ready_date=body.estimated_ready_date,
    )
    await _persist(pool, stored, updated, "submit_quote", background, event="quote_submitted")
    return _order_view(updated, actor)


@router.post("/{order_number}/quote-response")
async def respond_to_quote(
    order_number: str,
    body: QuoteResponseBody,
    background: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    pool=Depends(get_db_pool),
) -> dict:
    stored = await _load(pool, order_number)
    updated = workflow.respond_to_quote(stored.order, actor, body.accept, _now(), notes=body.notes)
    event = "quote_accepted" if body.accept else "quote_rejected"
    await _persist(pool, stored, updated, "respond_to_quote", background, event=event)
    return _order_view(updated, actor)


@router.post("/{order_number}/status")
async def change_status(
    order_number: str,
    body: StatusBody,
    background: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    pool=Depends(get_db_pool),
) -> dict:
    stored = await _load(pool, order_number)
    updated = workflow.change_status(stored.order, actor, body.status, _now(), notes=body.notes)
    await _persist(pool, stored, updated, "change_status", background)
    return _order_view(updated, actor)


@router.post("/{order_number}/cancel")
async def cancel_order(
    order_number: str,
    body: CancelBody,
    background: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    pool=Depends(get_db_pool),
) -> dict:
    stored = await _load(pool, order_number)
    updated = workflow.cancel_order(stored.order, actor, _now(), reason=body.reason)
    await _persist(pool, stored, updated, "cancel_order", background, event="order_cancelled")
    return _order_view(updated, actor)


@router.post("/{order_number}/production")
async def update_production(
    order_number: str,
    body: ProductionBody,
    background: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    pool=Depends(get_db_pool),
) -> dict:
    stored = await _load(pool, order_number)
    updated = workflow.complete_production_stage(
        stored.order, actor, body.stage, _now(), notes=body.notes, photo_url=body.photo_url,
    )
    await _persist(pool, stored, updated, "update_production", background, event="production_updated")
    return _order_view(updated, actor)


@router.post("/{order_number}/photos")
async def upload_photo(
    order_number: str,
    body: PhotoBody,
    background: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    pool=Depends(get_db_pool),
) -> dict:
    stored = await _load(pool, order_number)
    updated = workflow.add_production_photo(
        stored.order, actor, body.url, _now(), notes=body.notes, stage=body.stage,
    )
    await _persist(pool, stored, updated, "upload_photo", background, event="photo_uploaded")
    return _order_view(updated, actor)


@router.post("/{order_number}/photos/{photo_index}/response")
async def respond_to_photo(
    order_number: str,
    photo_index: int,
    body: PhotoResponseBody,
    background: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    pool=Depends(get_db_pool),
) -> dict:
    stored = await _load(pool, order_number)
    try:
        updated = workflow.respond_to_photo(
            stored.order, actor, photo_index, body.approved, _now(), feedback=body.feedback,
        )
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    event = "photo_approved" if body.approved else "photo_changes_requested"
    await _persist(pool, stored, updated, "approve_photos", background, event=event)
    return _order_view(updated, actor)


@router.post("/{order_number}/cash-payment")
async def register_cash_payment(
    order_number: str,
    body: CashData,
    background: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    pool=Depends(get_db_pool),
) -> dict:
    stored = await _load(pool, order_number)
    at = _now()
    receipt = cash_receipt_number(order_number, at, secrets.token_hex(2))
    updated = workflow.register_cash_payment(stored.order, actor, body, at, receipt_number=receipt)
    await _persist(pool, stored, updated, "register_payment", background, event="payment_registered")
    view = _order_view(updated, actor)
    view["changeDenominations"] = [
        {"name": d.name, "value": d.value, "count": d.count, "kind": d.kind}
        for d in change_denominations(updated.payment.cash_details.change_given)
    ]
    return view


@router.post("/{order_number}/payment-confirmation")
async def confirm_payment(
    order_number: str,
    background: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    pool=Depends(get_db_pool),
) -> dict:
    stored = await _load(pool, order_number)
    updated = workflow.confirm_payment(stored.order, actor)
    await _persist(pool, stored, updated, "confirm_payment", background, event="payment_confirmed")
    return _order_view(updated, actor)


@router.post("/{order_number}/notes")
async def add_notes(
    order_number: str,
    body: NotesBody,
    background: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    pool=Depends(get_db_pool),
) -> dict:
    stored = await _load(pool, order_number)
    updated = workflow.add_notes(stored.order, actor, body.note)
    await _persist(pool, stored, updated, "add_notes", background)
    return _order_view(updated, actor)


@router.post("/{order_number}/review")
async def mark_reviewed(
    order_number: str,
    background: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    pool=Depends(get_db_pool),
) -> dict:
    stored = await _load(pool, order_number)
    updated = workflow.mark_reviewed(stored.order, actor)
    await _persist(pool, stored, updated, "leave_review", background)
    return _order_view(updated, actor)
