"""
Workflow error kinds. The engine raises these and never logs or swallows them;
the request layer maps `kind` to a response (see main.py).
"""
from __future__ import annotations

from typing import Iterable


class WorkflowError(Exception):
    kind = "workflow_error"

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": str(self)}


class InvalidTransitionError(WorkflowError):
    """Requested status change (or state-bound action) is not legal from the current status."""
    kind = "invalid_transition"

    def __init__(
        self,
        current_status: str,
        requested: str,
        allowed: Iterable[str] = (),
        message: str | None = None,
    ):
        self.current_status = current_status
        self.requested = requested
        self.allowed = tuple(sorted(allowed))
        super().__init__(message or f"cannot go from {current_status} to {requested}")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(
            current_status=self.current_status,
            requested=self.requested,
            allowed=list(self.allowed),
        )
        return data


class UnauthorizedError(WorkflowError):
    """Actor's role or ownership does not grant the requested action at all."""
    kind = "unauthorized"


class NonCancellableError(WorkflowError):
    """Cancellation denied: status past approval or payment already settled."""
    kind = "non_cancellable"

    def __init__(self, status: str, payment_status: str):
        self.status = status
        self.payment_status = payment_status
        super().__init__(f"order in status {status} with payment {payment_status} cannot be cancelled")


class PaymentMismatchError(WorkflowError):
    """Cash reconciliation failed."""
    kind = "payment_mismatch"

    def __init__(self, errors: Iterable[str], calculated_change: float = 0.0):
        self.errors = list(errors)
        self.calculated_change = calculated_change
        super().__init__("; ".join(self.errors))

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(errors=self.errors, calculated_change=self.calculated_change)
        return data


class AllocationConflictError(WorkflowError):
    """Order number already taken at write time. Caller re-allocates and retries."""
    kind = "allocation_conflict"

    def __init__(self, order_number: str):
        self.order_number = order_number
        super().__init__(f"order number {order_number} already exists")


class SequenceExhaustedError(WorkflowError):
    """All 999 order numbers of the day are used."""
    kind = "sequence_exhausted"
