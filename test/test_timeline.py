import os
import sys

_test_dir = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, _test_dir)

from _helper import at, make_order

from order_workflow.domain import OrderItem, OrderStatus, Role, StageProgress, StatusHistoryEntry
from order_workflow.timeline import build_timeline

S = OrderStatus


def _history(*entries):
    return tuple(
        StatusHistoryEntry(status=status, timestamp=when, changed_by_role=Role.ADMIN, notes=notes)
        for status, when, notes in entries
    )


def test_merges_history_and_production_chronologically():
    item = OrderItem(production_stages={
        "printing": StageProgress(completed=True, completed_at=at(30), notes="front side"),
        "sourcing_product": StageProgress(completed=True, completed_at=at(20)),
        "packaging": StageProgress(completed=False),
    })
    order = make_order(
        S.IN_PRODUCTION,
        status_history=_history(
            (S.PENDING_APPROVAL, at(0), ""),
            (S.QUOTED, at(5), "Quoted at $15.50"),
            (S.IN_PRODUCTION, at(25), ""),
        ),
    ).model_copy(update={"items": (item,)})

    timeline = build_timeline(order)

    assert [(e.kind, e.status or e.stage) for e in timeline] == [
        ("status_change", "pending_approval"),
        ("status_change", "quoted"),
        ("production", "sourcing_product"),
        ("status_change", "in_production"),
        ("production", "printing"),
    ]
    assert timeline[1].description == "Quoted at $15.50"
    assert timeline[4].title == "Printing"
    assert timeline[4].description == "front side"
    assert timeline[4].item_index == 0


def test_ties_keep_insertion_order_and_undated_go_last():
    item = OrderItem(production_stages={
        "sourcing_product": StageProgress(completed=True, completed_at=at(10)),
        "printing": StageProgress(completed=True, completed_at=None),
    })
    order = make_order(
        status_history=_history((S.PENDING_APPROVAL, at(10), ""), (S.QUOTED, at(10), "")),
    ).model_copy(update={"items": (item,)})

    kinds = [(e.kind, e.status or e.stage) for e in build_timeline(order)]
    assert kinds == [
        ("status_change", "pending_approval"),
        ("status_change", "quoted"),
        ("production", "sourcing_product"),
        ("production", "printing"),
    ]


def test_one_production_entry_per_item():
    done = StageProgress(completed=True, completed_at=at(1))
    items = (OrderItem(production_stages={"printing": done}), OrderItem(production_stages={"printing": done}))
    order = make_order().model_copy(update={"items": items, "status_history": ()})
    timeline = build_timeline(order)
    assert [e.item_index for e in timeline] == [0, 1]


def test_does_not_mutate_order():
    order = make_order(status_history=_history((S.PENDING_APPROVAL, at(0), "")))
    before = order.model_dump()
    build_timeline(order)
    assert order.model_dump() == before


def test_empty_order():
    order = make_order().model_copy(update={"items": (), "status_history": ()})
    assert build_timeline(order) == []
