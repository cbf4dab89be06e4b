"""Event moderation and cancellation rules.

An event carries two independent axes: the moderation outcome
(``pending``/``approved``/``rejected``) and the cancellation sub-state
(requested, then approved by an admin). The public four-valued status is
derived from both; ``cancelled`` wins once an admin has signed off.

Transition graph::

    pending  -> approved | rejected
    approved -> cancelled   (request, then admin approval)
    rejected, cancelled     terminal

Nothing here touches the database; ``crud`` applies the writes.
"""

from __future__ import annotations

from typing import Any

from .errors import (
    CancellationAlreadyRequested,
    InvalidTransition,
    ValidationError,
)

PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"
CANCELLED = "cancelled"

MODERATION_STATUSES = (PENDING, APPROVED, REJECTED)
EVENT_STATUSES = (PENDING, APPROVED, REJECTED, CANCELLED)

TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({APPROVED, REJECTED}),
    APPROVED: frozenset({CANCELLED}),
    REJECTED: frozenset(),
    CANCELLED: frozenset(),
}

MAX_REASON_LENGTH = 500


def derive_status(moderation_status: str, cancellation_approved: bool) -> str:
    if cancellation_approved:
        return CANCELLED
    if moderation_status not in MODERATION_STATUSES:
        raise ValueError(f"Unknown moderation status {moderation_status!r}")
    return moderation_status


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def require_transition(event: Any, target: str) -> None:
    """Raise ``InvalidTransition`` unless ``event`` may move to ``target``."""
    current = event.status
    if not can_transition(current, target):
        raise InvalidTransition(
            f"Cannot move an event from {current} to {target}"
        )


def is_editable(event: Any) -> bool:
    return event.status != CANCELLED


def require_editable(event: Any) -> None:
    if not is_editable(event):
        raise InvalidTransition("Cannot edit a cancelled event")


def has_pending_cancellation(event: Any) -> bool:
    return bool(event.cancellation_requested) and not event.cancellation_approved_by_admin


def require_cancellation_requestable(event: Any) -> None:
    """A venue may ask to cancel an approved event once."""
    if has_pending_cancellation(event):
        raise CancellationAlreadyRequested(
            "A cancellation request is already awaiting admin review"
        )
    require_transition(event, CANCELLED)


def require_pending_cancellation(event: Any) -> None:
    if not has_pending_cancellation(event):
        raise InvalidTransition("This event has no pending cancellation request")


def clean_reason(reason: str | None, *, label: str) -> str:
    """Return a trimmed, non-empty reason no longer than the UI allows."""
    cleaned = (reason or "").strip()
    if not cleaned:
        raise ValidationError(f"Please provide a {label} reason")
    if len(cleaned) > MAX_REASON_LENGTH:
        raise ValidationError(
            f"The {label} reason must be {MAX_REASON_LENGTH} characters or less"
        )
    return cleaned
