"""
Read-side projection: status history and completed production stages merged
into one chronological list for the order tracking page.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from order_workflow.domain import Document, Order, Role
from order_workflow.order_state import status_description
from order_workflow.production import completed_stages, stage_entries, stage_title

TimelineKind = Literal["status_change", "production"]


class TimelineEntry(Document):
    kind: TimelineKind
    timestamp: datetime | None
    title: str
    description: str = ""
    status: str | None = None
    stage: str | None = None
    item_index: int | None = None
    changed_by_role: Role | None = None
    photo_url: str | None = None


def _sort_key(entry: TimelineEntry) -> tuple[bool, float]:
    # undated entries go last; naive timestamps are taken as UTC
    ts = entry.timestamp
    if ts is None:
        return True, 0.0
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return False, ts.timestamp()


def build_timeline(order: Order) -> list[TimelineEntry]:
    entries: list[TimelineEntry] = []

    for record in order.status_history:
        entries.append(TimelineEntry(
            kind="status_change",
            timestamp=record.timestamp,
            title=status_description(record.status),
            description=record.notes,
            status=record.status.value,
            changed_by_role=record.changed_by_role,
        ))

    for index, item in enumerate(order.items):
        stages = stage_entries(item.production_stages)
        for stage in completed_stages(stages):
            data = stages[stage]
            entries.append(TimelineEntry(
                kind="production",
                timestamp=data.completed_at,
                title=stage_title(stage),
                description=data.notes,
                stage=stage,
                item_index=index,
                photo_url=data.photo_url,
            ))

    # list.sort is stable: equal timestamps keep the order built above
    entries.sort(key=_sort_key)
    return entries
