"""
Order aggregate and the closed enums the workflow runs on.

Models are frozen snapshots: workflow operations return updated copies via
model_copy, they never mutate the instance they were given. Field names are
snake_case; camelCase aliases let stored documents validate unchanged.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from order_workflow.errors import UnauthorizedError


class OrderStatus(str, Enum):
    PENDING_APPROVAL = "pending_approval"
    QUOTED = "quoted"
    APPROVED = "approved"
    REJECTED = "rejected"
    IN_PRODUCTION = "in_production"
    READY_FOR_DELIVERY = "ready_for_delivery"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Role(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"
    MANAGER = "manager"
    EMPLOYEE = "employee"

    @classmethod
    def parse(cls, value: "str | Role | None") -> "Role":
        """Case-insensitive parse of a role string coming from the session layer."""
        if isinstance(value, Role):
            return value
        key = str(value or "").strip().lower()
        key = _ROLE_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise UnauthorizedError(f"unknown role: {value!r}") from None

    @property
    def is_staff(self) -> bool:
        return self in STAFF_ROLES


_ROLE_ALIASES = {"user": "customer", "client": "customer"}

# Roles allowed to act on orders. Employees may read orders but not act on them.
STAFF_ROLES: frozenset[Role] = frozenset({Role.ADMIN, Role.MANAGER})
READ_ROLES: frozenset[Role] = STAFF_ROLES | {Role.EMPLOYEE}


class Action(str, Enum):
    # owner
    ACCEPT_QUOTE = "accept_quote"
    REJECT_QUOTE = "reject_quote"
    APPROVE_PHOTOS = "approve_photos"
    CANCEL_ORDER = "cancel_order"
    MARK_COMPLETED = "mark_completed"
    LEAVE_REVIEW = "leave_review"
    # staff
    SUBMIT_QUOTE = "submit_quote"
    REJECT_ORDER = "reject_order"
    UPDATE_PRODUCTION = "update_production"
    UPLOAD_PHOTO = "upload_photo"
    MARK_DELIVERED = "mark_delivered"
    REGISTER_PAYMENT = "register_payment"
    CONFIRM_PAYMENT = "confirm_payment"
    UPDATE_STATUS = "update_status"
    ADD_NOTES = "add_notes"


OWNER_ACTIONS: frozenset[Action] = frozenset({
    Action.ACCEPT_QUOTE,
    Action.REJECT_QUOTE,
    Action.APPROVE_PHOTOS,
    Action.CANCEL_ORDER,
    Action.MARK_COMPLETED,
    Action.LEAVE_REVIEW,
})

STAFF_ACTIONS: frozenset[Action] = frozenset({
    Action.SUBMIT_QUOTE,
    Action.REJECT_ORDER,
    Action.UPDATE_PRODUCTION,
    Action.UPLOAD_PHOTO,
    Action.MARK_DELIVERED,
    Action.REGISTER_PAYMENT,
    Action.CONFIRM_PAYMENT,
    Action.CANCEL_ORDER,
    Action.UPDATE_STATUS,
    Action.ADD_NOTES,
})


class ProductionStage(str, Enum):
    SOURCING_PRODUCT = "sourcing_product"
    PREPARING_MATERIALS = "preparing_materials"
    PRINTING = "printing"
    SUBLIMATING = "sublimating"
    QUALITY_CHECK = "quality_check"
    PACKAGING = "packaging"


# Canonical order; enum definition order is the production order.
STAGE_ORDER: tuple[ProductionStage, ...] = tuple(ProductionStage)


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    TRANSFER = "transfer"
    WOMPI = "wompi"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class PaymentTiming(str, Enum):
    ON_DELIVERY = "on_delivery"
    ADVANCE = "advance"


class DeliveryType(str, Enum):
    DELIVERY = "delivery"
    MEETUP = "meetup"


class Document(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class Actor(Document):
    id: str
    role: Role

    @field_validator("role", mode="before")
    @classmethod
    def _parse_role(cls, value):
        return Role.parse(value)


class StatusHistoryEntry(Document):
    status: OrderStatus
    timestamp: datetime | None = None
    changed_by: str | None = None
    changed_by_role: Role | None = None
    notes: str = ""


class StageProgress(Document):
    completed: bool = False
    completed_at: datetime | None = None
    completed_by: str | None = None
    notes: str = ""
    photo_url: str | None = None


def fresh_stages() -> dict[str, StageProgress]:
    """One not-yet-completed entry per canonical stage."""
    return {stage.value: StageProgress() for stage in STAGE_ORDER}


class OrderItem(Document):
    product_id: str | None = None
    design_id: str | None = None
    quantity: int = Field(default=1, ge=1)
    production_stages: dict[str, StageProgress] = Field(default_factory=fresh_stages)


class CashDetails(Document):
    total_amount: float = Field(ge=0)
    cash_received: float = Field(ge=0)
    change_given: float = Field(ge=0)
    receipt_number: str | None = None
    collected_by: str | None = None
    collected_at: datetime | None = None


class Payment(Document):
    method: PaymentMethod = PaymentMethod.CASH
    status: PaymentStatus = PaymentStatus.PENDING
    timing: PaymentTiming = PaymentTiming.ON_DELIVERY
    cash_details: CashDetails | None = None


class ClientResponse(Document):
    approved: bool
    feedback: str = ""
    responded_at: datetime | None = None


class ProductionPhoto(Document):
    url: str
    uploaded_at: datetime | None = None
    notes: str = ""
    stage: ProductionStage | None = None
    client_response: ClientResponse | None = None


def check_delivery_details(
    delivery_type: DeliveryType,
    delivery_address: dict | None,
    meetup_details: dict | None,
) -> None:
    """Raise ValueError unless the delivery details fit the delivery type."""
    if delivery_address is not None and meetup_details is not None:
        raise ValueError("deliveryAddress and meetupDetails are mutually exclusive")
    if delivery_type is DeliveryType.DELIVERY and meetup_details is not None:
        raise ValueError("meetupDetails given for a delivery order")
    if delivery_type is DeliveryType.MEETUP and delivery_address is not None:
        raise ValueError("deliveryAddress given for a meetup order")


class Order(Document):
    order_number: str | None = None
    user: str
    status: OrderStatus = OrderStatus.PENDING_APPROVAL
    status_history: tuple[StatusHistoryEntry, ...] = ()
    items: tuple[OrderItem, ...] = ()
    payment: Payment = Field(default_factory=Payment)
    production_photos: tuple[ProductionPhoto, ...] = ()

    delivery_type: DeliveryType = DeliveryType.MEETUP
    delivery_address: dict | None = None
    meetup_details: dict | None = None

    subtotal: float = Field(default=0.0, ge=0)
    delivery_fee: float = Field(default=0.0, ge=0)
    tax: float = Field(default=0.0, ge=0)
    discounts: float = Field(default=0.0, ge=0)
    total: float = Field(default=0.0, ge=0)

    reviewed: bool = False
    client_notes: str = ""
    admin_notes: str = ""
    rejection_reason: str | None = None
    cancellation_reason: str | None = None
    created_at: datetime | None = None
    estimated_ready_date: datetime | None = None

    @model_validator(mode="after")
    def _delivery_details_match_type(self) -> "Order":
        check_delivery_details(self.delivery_type, self.delivery_address, self.meetup_details)
        return self

    @property
    def is_paid(self) -> bool:
        return self.payment.status is PaymentStatus.PAID

    def is_owned_by(self, actor_id: str | None) -> bool:
        return actor_id is not None and str(self.user) == str(actor_id)
