"""
Cash-on-delivery reconciliation: the amount collected must cover the order and
the change handed back must match what the math says, to the cent.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from order_workflow.domain import Document
from order_workflow.errors import PaymentMismatchError

CHANGE_TOLERANCE_CENTS = 1

# USD, bills then coins, largest first
DENOMINATIONS_CENTS: tuple[tuple[str, int, str], ...] = (
    ("$20", 2000, "bill"),
    ("$10", 1000, "bill"),
    ("$5", 500, "bill"),
    ("$1", 100, "bill"),
    ("25c", 25, "coin"),
    ("10c", 10, "coin"),
    ("5c", 5, "coin"),
    ("1c", 1, "coin"),
)


class CashData(Document):
    cash_received: float | None = None
    total_amount: float | None = None
    change_given: float | None = None


@dataclass(frozen=True)
class CashReconciliation:
    valid: bool
    errors: tuple[str, ...] = field(default_factory=tuple)
    calculated_change: float = 0.0
    expected_amount: float = 0.0
    cash_received: float = 0.0


@dataclass(frozen=True)
class Denomination:
    name: str
    value: float
    count: int
    kind: str

    @property
    def total(self) -> float:
        return round(self.value * self.count, 2)


def _amount(value: Any) -> float | None:
    """Parse a loosely typed amount; None when missing or not a finite number."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return parsed if math.isfinite(parsed) else None


def _field(cash_data: Mapping[str, Any], snake: str, camel: str) -> Any:
    return cash_data[snake] if snake in cash_data else cash_data.get(camel)


def _cents(amount: float) -> int:
    return int(round(amount * 100))


def reconcile(cash_data: CashData | Mapping[str, Any] | None, order_total: float) -> CashReconciliation:
    """Validate a cash collection against the order total and derive the change due."""
    if cash_data is None:
        return CashReconciliation(valid=False, errors=("cash payment data is required",))
    if isinstance(cash_data, CashData):
        cash_data = cash_data.model_dump()

    received = _amount(_field(cash_data, "cash_received", "cashReceived"))
    # a missing or zero total on the collection falls back to the order's own total
    expected = _amount(_field(cash_data, "total_amount", "totalAmount")) or float(order_total)
    change = _amount(_field(cash_data, "change_given", "changeGiven")) or 0.0

    errors: list[str] = []
    if expected <= 0:
        errors.append("invalid total amount")
    if received is None or received <= 0:
        errors.append("cash received must be greater than zero")
    elif received < expected:
        errors.append(
            f"cash received ${received:.2f} is less than the amount due ${expected:.2f}"
        )
    if change < 0:
        errors.append("change given cannot be negative")

    calculated = round(max(0.0, (received or 0.0) - expected), 2)
    if abs(_cents(change) - _cents(calculated)) > CHANGE_TOLERANCE_CENTS:
        errors.append(
            f"change given ${change:.2f} does not match the expected change ${calculated:.2f}"
        )

    return CashReconciliation(
        valid=not errors,
        errors=tuple(errors),
        calculated_change=calculated,
        expected_amount=expected,
        cash_received=received or 0.0,
    )


def ensure_reconciled(cash_data: CashData | Mapping[str, Any] | None, order_total: float) -> CashReconciliation:
    result = reconcile(cash_data, order_total)
    if not result.valid:
        raise PaymentMismatchError(result.errors, result.calculated_change)
    return result


def change_denominations(amount: float) -> tuple[Denomination, ...]:
    """Greedy bills/coins breakdown of the change to hand back."""
    remaining = _cents(amount)
    if remaining <= 0:
        return ()
    result = []
    for name, value, kind in DENOMINATIONS_CENTS:
        count, remaining = divmod(remaining, value)
        if count:
            result.append(Denomination(name=name, value=value / 100, count=count, kind=kind))
    return tuple(result)


def cash_receipt_number(order_number: str, at: datetime, token: str) -> str:
    return f"CASH-{order_number}-{at:%Y%m%d%H%M%S}-{token.upper()}"
