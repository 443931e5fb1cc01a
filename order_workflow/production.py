"""
Production progress per order item.

A stage map is `{stage_key: StageProgress}`; plain mappings with a
`completed` key are accepted too. Stages may be completed in any order,
queries always walk the canonical STAGE_ORDER.
"""
from __future__ import annotations

from typing import Any, Mapping

from order_workflow.domain import Order, OrderItem, ProductionStage, STAGE_ORDER

STAGE_TITLES: dict[ProductionStage, str] = {
    ProductionStage.SOURCING_PRODUCT: "Product sourcing",
    ProductionStage.PREPARING_MATERIALS: "Preparing materials",
    ProductionStage.PRINTING: "Printing",
    ProductionStage.SUBLIMATING: "Sublimation",
    ProductionStage.QUALITY_CHECK: "Quality check",
    ProductionStage.PACKAGING: "Packaging",
}


def _is_completed(entry: Any) -> bool:
    if entry is None:
        return False
    if isinstance(entry, Mapping):
        return entry.get("completed") is True
    return getattr(entry, "completed", False) is True


def stage_entries(stage_map: Mapping[Any, Any]) -> dict[str, Any]:
    # keys may be ProductionStage members or their string values
    return {getattr(key, "value", key): entry for key, entry in stage_map.items()}


def progress(stage_map: Mapping[str, Any] | None) -> int:
    """Percentage of entries in the map that are complete, rounded half up."""
    if not stage_map:
        return 0
    total = len(stage_map)
    done = sum(1 for entry in stage_map.values() if _is_completed(entry))
    return (200 * done + total) // (2 * total)


def next_pending_stage(stage_map: Mapping[str, Any] | None) -> ProductionStage | None:
    """First canonical stage not yet complete; None once production is finished."""
    if not stage_map:
        return STAGE_ORDER[0]
    entries = stage_entries(stage_map)
    for stage in STAGE_ORDER:
        if not _is_completed(entries.get(stage.value)):
            return stage
    return None


def completed_stages(stage_map: Mapping[str, Any] | None) -> tuple[str, ...]:
    """Completed stage keys in canonical order, unknown keys after them in map order."""
    if not stage_map:
        return ()
    entries = stage_entries(stage_map)
    canonical = tuple(
        stage.value for stage in STAGE_ORDER if _is_completed(entries.get(stage.value))
    )
    known = {stage.value for stage in STAGE_ORDER}
    extra = tuple(
        str(key) for key, entry in entries.items()
        if key not in known and _is_completed(entry)
    )
    return canonical + extra


def item_is_finished(item: OrderItem) -> bool:
    return next_pending_stage(item.production_stages) is None


def order_progress(order: Order) -> int:
    if not order.items:
        return 0
    total = sum(progress(item.production_stages) for item in order.items)
    count = len(order.items)
    return (2 * total + count) // (2 * count)


def stage_title(stage: ProductionStage | str) -> str:
    try:
        return STAGE_TITLES[ProductionStage(stage)]
    except ValueError:
        return str(stage)
