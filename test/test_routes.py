"""
HTTP surface against an in-memory order store. The app lifespan (Postgres,
Redis) is not started: TestClient is used without a context manager.
"""
import os
import sys

import pytest
from fastapi.testclient import TestClient

_test_dir = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, _test_dir)

from _helper import ADMIN_ID, OTHER_ID, OWNER_ID, make_order, photo

from order_workflow import db
from order_workflow.domain import Order, OrderStatus
from order_workflow.main import app
from order_workflow.routes import orders

S = OrderStatus

OWNER = {"X-Actor-Id": OWNER_ID, "X-Actor-Role": "customer"}
STRANGER = {"X-Actor-Id": OTHER_ID, "X-Actor-Role": "customer"}
ADMIN = {"X-Actor-Id": ADMIN_ID, "X-Actor-Role": "Admin"}
EMPLOYEE = {"X-Actor-Id": "employee-1", "X-Actor-Role": "employee"}


class Store:
    def __init__(self):
        self.rows = {}
        self.events = []

    def put(self, order, version=1):
        self.rows[order.order_number] = db.StoredOrder(order, version)


@pytest.fixture
def store(monkeypatch):
    store = Store()

    async def fetch_order(pool, order_number):
        return store.rows.get(order_number)

    async def save_order(pool, order, expected_version):
        current = store.rows[order.order_number]
        if current.version != expected_version:
            raise db.ConcurrentUpdateError(order.order_number, expected_version)
        store.put(order, expected_version + 1)
        return expected_version + 1

    async def create_order(pool, draft):
        order = draft.model_copy(update={"order_number": "DS241201001"})
        store.put(order)
        return order

    async def publish(event, order):
        store.events.append((event, order.order_number))

    monkeypatch.setattr(orders.db, "fetch_order", fetch_order)
    monkeypatch.setattr(orders.db, "save_order", save_order)
    monkeypatch.setattr(orders.db, "create_order", create_order)
    monkeypatch.setattr(orders.notifications, "publish_order_event", publish)
    app.dependency_overrides[orders.get_db_pool] = lambda: None
    yield store
    app.dependency_overrides.clear()


@pytest.fixture
def client(store):
    return TestClient(app)


def test_create_order(client, store):
    r = client.post("/orders", json={"items": [{"product_id": "mug", "quantity": 2}]}, headers=OWNER)
    assert r.status_code == 201
    body = r.json()
    assert body["orderNumber"] == "DS241201001"
    assert body["status"] == "pending_approval"
    assert body["nextProductionStage"] == "sourcing_product"
    assert store.events == [("order_created", "DS241201001")]


def test_create_order_requires_items(client):
    r = client.post("/orders", json={"items": []}, headers=OWNER)
    assert r.status_code == 422


def test_create_order_rejects_address_for_meetup(client, store):
    r = client.post(
        "/orders",
        json={"items": [{"product_id": "mug"}], "delivery_type": "meetup", "delivery_address": {"city": "Santa Tecla"}},
        headers=OWNER,
    )
    assert r.status_code == 422
    assert store.rows == {}


def test_corrupt_stored_document_is_a_server_error(client, store, monkeypatch):
    async def fetch_order(pool, order_number):
        return db.StoredOrder(Order.model_validate_json('{"status": "shipped"}'), 1)

    monkeypatch.setattr(orders.db, "fetch_order", fetch_order)
    r = client.get("/orders/DS241201001", headers=OWNER)
    assert r.status_code == 500
    assert r.json()["error"] == "invalid_document"


def test_missing_identity_headers(client):
    assert client.get("/orders/DS241201001").status_code == 422


def test_unknown_role_is_forbidden(client, store):
    store.put(make_order())
    r = client.get("/orders/DS241201001", headers={"X-Actor-Id": "x", "X-Actor-Role": "superuser"})
    assert r.status_code == 403
    assert r.json()["error"] == "unauthorized"


def test_get_order_views(client, store):
    store.put(make_order(S.QUOTED, client_notes="rush please"))
    owner_view = client.get("/orders/DS241201001", headers=OWNER).json()
    assert owner_view["availableActions"] == ["accept_quote", "cancel_order", "reject_quote"]
    assert owner_view["clientNotes"] == "rush please"
    assert owner_view["access"]["isOwner"]

    employee_view = client.get("/orders/DS241201001", headers=EMPLOYEE).json()
    assert employee_view["availableActions"] == []
    assert "clientNotes" not in employee_view

    assert client.get("/orders/DS241201001", headers=STRANGER).status_code == 403
    assert client.get("/orders/DS000000000", headers=OWNER).status_code == 404


def test_malformed_order_number_is_not_found(client, store, monkeypatch):
    async def fetch_order(pool, order_number):
        raise AssertionError("store should not be queried")

    monkeypatch.setattr(orders.db, "fetch_order", fetch_order)
    r = client.get("/orders/not-a-number", headers=OWNER)
    assert r.status_code == 404


def test_view_flags_terminal_orders(client, store):
    store.put(make_order(S.COMPLETED))
    assert client.get("/orders/DS241201001", headers=OWNER).json()["isTerminal"] is True


def test_quote_accept_flow(client, store):
    store.put(make_order())
    r = client.post("/orders/DS241201001/quote", json={"subtotal": 12, "tax": 1.56}, headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["total"] == 13.56

    r = client.post("/orders/DS241201001/quote-response", json={"accept": True}, headers=OWNER)
    assert r.status_code == 200
    assert r.json()["status"] == "approved"
    assert store.rows["DS241201001"].version == 3
    assert [e for e, _ in store.events] == ["quote_submitted", "quote_accepted"]


def test_customer_staff_move_is_forbidden(client, store):
    store.put(make_order())
    r = client.post("/orders/DS241201001/status", json={"status": "quoted"}, headers=OWNER)
    assert r.status_code == 403
    assert store.rows["DS241201001"].version == 1


def test_illegal_transition_conflict(client, store):
    store.put(make_order())
    r = client.post("/orders/DS241201001/status", json={"status": "delivered"}, headers=ADMIN)
    assert r.status_code == 409
    body = r.json()
    assert body["error"] == "invalid_transition"
    assert body["allowed"] == ["cancelled", "quoted", "rejected"]


def test_unknown_status_value(client, store):
    store.put(make_order())
    r = client.post("/orders/DS241201001/status", json={"status": "shipped"}, headers=ADMIN)
    assert r.status_code == 422


def test_cancel_paid_order(client, store):
    store.put(make_order(S.APPROVED, paid=True))
    r = client.post("/orders/DS241201001/cancel", json={"reason": "duplicate"}, headers=ADMIN)
    assert r.status_code == 409
    assert r.json()["error"] == "non_cancellable"


def test_status_change_emits_event(client, store):
    store.put(make_order(S.READY_FOR_DELIVERY))
    r = client.post("/orders/DS241201001/status", json={"status": "delivered"}, headers=ADMIN)
    assert r.status_code == 200
    assert store.events == [("status_changed", "DS241201001")]


def test_production_update(client, store):
    store.put(make_order(S.APPROVED))
    r = client.post("/orders/DS241201001/production", json={"stage": "sourcing_product"}, headers=ADMIN)
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "in_production"
    assert body["productionProgress"] == 17
    assert body["nextProductionStage"] == "preparing_materials"


def test_photo_response(client, store):
    store.put(make_order(S.IN_PRODUCTION, photos=(photo(),)))
    r = client.post("/orders/DS241201001/photos/5/response", json={"approved": True}, headers=OWNER)
    assert r.status_code == 404
    r = client.post("/orders/DS241201001/photos/0/response", json={"approved": True}, headers=OWNER)
    assert r.status_code == 200
    assert r.json()["productionPhotos"][0]["clientResponse"]["approved"] is True


def test_cash_payment(client, store):
    store.put(make_order(S.DELIVERED))
    r = client.post(
        "/orders/DS241201001/cash-payment",
        json={"cashReceived": 20, "totalAmount": 15.5, "changeGiven": 4.5},
        headers=ADMIN,
    )
    assert r.status_code == 200
    body = r.json()
    assert body["payment"]["status"] == "paid"
    assert body["payment"]["cashDetails"]["receiptNumber"].startswith("CASH-DS241201001-")
    assert [d["name"] for d in body["changeDenominations"]] == ["$1", "25c"]


def test_cash_payment_mismatch(client, store):
    store.put(make_order(S.DELIVERED))
    r = client.post("/orders/DS241201001/cash-payment", json={"cashReceived": 10, "changeGiven": 0}, headers=ADMIN)
    assert r.status_code == 422
    assert r.json()["error"] == "payment_mismatch"


def test_concurrent_update(client, store, monkeypatch):
    store.put(make_order(S.READY_FOR_DELIVERY))

    async def stale_save(pool, order, expected_version):
        raise db.ConcurrentUpdateError(order.order_number, expected_version)

    monkeypatch.setattr(orders.db, "save_order", stale_save)
    r = client.post("/orders/DS241201001/status", json={"status": "delivered"}, headers=ADMIN)
    assert r.status_code == 409
    assert r.json()["error"] == "concurrent_update"
    assert store.events == []


def test_timeline_and_summary(client, store):
    store.put(make_order(S.QUOTED))
    r = client.get("/orders/DS241201001/timeline", headers=OWNER)
    assert r.status_code == 200
    assert r.json()["timeline"] == []
    summary = client.get("/orders/DS241201001/summary", headers=ADMIN).json()
    assert summary["priority"] == "medium"
    assert summary["next_action"] == "Customer must accept or reject the quote"


def test_health_and_metrics(client):
    assert client.get("/health").json() == {"status": "ok"}
    r = client.get("/metrics")
    assert r.status_code == 200
    assert b"order_transitions_applied_total" in r.content
