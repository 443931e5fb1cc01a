"""
Shared builders for workflow tests: order snapshots and actors.
"""
from datetime import datetime, timedelta, timezone

from order_workflow.domain import (
    Actor,
    ClientResponse,
    Order,
    OrderItem,
    OrderStatus,
    Payment,
    PaymentStatus,
    ProductionPhoto,
    Role,
    StageProgress,
    STAGE_ORDER,
)

OWNER_ID = "user-1"
OTHER_ID = "user-2"
ADMIN_ID = "admin-1"

T0 = datetime(2024, 12, 1, 15, 0, tzinfo=timezone.utc)

owner = Actor(id=OWNER_ID, role=Role.CUSTOMER)
stranger = Actor(id=OTHER_ID, role=Role.CUSTOMER)
admin = Actor(id=ADMIN_ID, role=Role.ADMIN)
manager = Actor(id="manager-1", role=Role.MANAGER)
employee = Actor(id="employee-1", role=Role.EMPLOYEE)


def at(minutes: int) -> datetime:
    return T0 + timedelta(minutes=minutes)


def stages(*done: str, when: datetime | None = None) -> dict[str, StageProgress]:
    """Full canonical stage map with `done` stages completed."""
    return {
        stage.value: StageProgress(completed=stage.value in done, completed_at=when if stage.value in done else None)
        for stage in STAGE_ORDER
    }


def make_order(
    status: OrderStatus = OrderStatus.PENDING_APPROVAL,
    paid: bool = False,
    user: str = OWNER_ID,
    items: int = 1,
    photos: tuple[ProductionPhoto, ...] = (),
    **fields,
) -> Order:
    data = dict(
        order_number="DS241201001",
        user=user,
        status=status,
        items=tuple(OrderItem(product_id=f"prod-{i}", production_stages=stages()) for i in range(items)),
        payment=Payment(status=PaymentStatus.PAID if paid else PaymentStatus.PENDING),
        production_photos=photos,
        subtotal=14.0,
        tax=1.5,
        total=15.5,
        created_at=T0,
    )
    data.update(fields)
    return Order(**data)


def photo(answered: bool = False, approved: bool = True) -> ProductionPhoto:
    response = ClientResponse(approved=approved, responded_at=T0) if answered else None
    return ProductionPhoto(url="https://img.example/p.jpg", uploaded_at=T0, client_response=response)
