"""Appointment status lifecycle.

pending -> confirmed -> completed, with cancelled reachable from pending or
confirmed. completed and cancelled are terminal: a cancelled appointment is
frozen, a completed one only accepts a new amount.
"""
from typing import Any

from clinicbook.core.errors import (
    ImmutableStateError,
    InvalidTransitionError,
    MissingCancellationReasonError,
    ValidationError,
)
from clinicbook.models.appointment import AppointmentStatus, AppointmentUpdate, StatusChange

PENDING = AppointmentStatus.PENDING
CONFIRMED = AppointmentStatus.CONFIRMED
COMPLETED = AppointmentStatus.COMPLETED
CANCELLED = AppointmentStatus.CANCELLED

SCHEDULING_FIELDS = frozenset({"doctor_id", "appointment_date", "duration"})
_STATUS_FIELDS = frozenset({"status", "amount", "cancellation_reason", "suggested_new_date"})

_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    PENDING: frozenset({CONFIRMED, COMPLETED, CANCELLED}),
    CONFIRMED: frozenset({COMPLETED, CANCELLED}),
    COMPLETED: frozenset(),
    CANCELLED: frozenset(),
}


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in _TRANSITIONS[current]


def plan_status_change(current: AppointmentStatus, change: StatusChange) -> dict[str, Any]:
    """Column values to write for `change`. Empty dict means nothing to do."""
    target = change.status
    if current is CANCELLED:
        raise ImmutableStateError("Cancelled appointments cannot be changed")
    if change.amount is not None and target is not COMPLETED:
        raise ValidationError("amount can only be set when status is completed")
    if target is not CANCELLED and (change.cancellation_reason or change.suggested_new_date):
        raise ValidationError("cancellation_reason and suggested_new_date are only accepted when cancelling")

    if current is COMPLETED:
        if target is COMPLETED:
            return {"amount": change.amount} if change.amount is not None else {}
        raise InvalidTransitionError(f"Cannot change status from {current.value} to {target.value}")
    if target is current:
        return {}
    if not can_transition(current, target):
        raise InvalidTransitionError(f"Cannot change status from {current.value} to {target.value}")

    updates: dict[str, Any] = {"status": target.value}
    if target is CANCELLED:
        reason = (change.cancellation_reason or "").strip()
        if not reason:
            raise MissingCancellationReasonError("Cancellation reason is required when status is cancelled")
        updates["cancellation_reason"] = reason
        updates["suggested_new_date"] = change.suggested_new_date
    elif target is COMPLETED and change.amount is not None:
        updates["amount"] = change.amount
    return updates


def check_editable(current: AppointmentStatus, fields: set[str]) -> None:
    """Reject field edits the current status does not allow."""
    if not fields:
        return
    if current is CANCELLED:
        raise ImmutableStateError("Cancelled appointments cannot be edited")
    if current is COMPLETED:
        blocked = sorted(fields - {"amount"})
        if blocked:
            raise ImmutableStateError(f"Completed appointments only accept amount changes (got: {', '.join(blocked)})")
    elif "amount" in fields:
        raise ValidationError("amount can only be set on completed appointments")


def split_update(current: AppointmentStatus, update: AppointmentUpdate) -> tuple[dict[str, Any], dict[str, Any]]:
    """Split a combined edit into (status column values, field edits).

    The status change is planned first. Moving to completed keeps only amount
    from the other fields; moving to cancelled accepts no other edits. A
    repeated completed on a completed appointment still rejects other edits.
    """
    data = update.model_dump(exclude_unset=True)
    # An explicit null on a scheduling field means "keep the current value"
    edits = {
        k: v
        for k, v in data.items()
        if k not in _STATUS_FIELDS and not (k in SCHEDULING_FIELDS and v is None)
    }
    target = data.get("status")
    if target is None:
        if "cancellation_reason" in data or "suggested_new_date" in data:
            raise ValidationError("cancellation_reason and suggested_new_date require status cancelled")
        if "amount" in data:
            edits["amount"] = data["amount"]
        check_editable(current, set(edits))
        return {}, edits

    target = AppointmentStatus(target)
    status_updates = plan_status_change(
        current,
        StatusChange(
            status=target,
            amount=data.get("amount"),
            cancellation_reason=data.get("cancellation_reason"),
            suggested_new_date=data.get("suggested_new_date"),
        ),
    )
    if target is COMPLETED:
        if current is COMPLETED:
            # completed -> completed only edits the amount; other fields stay frozen
            check_editable(COMPLETED, set(edits))
        return status_updates, {}
    if target is CANCELLED:
        if edits:
            raise ImmutableStateError("Other fields cannot be edited while cancelling")
        return status_updates, {}
    check_editable(target, set(edits))
    return status_updates, edits
