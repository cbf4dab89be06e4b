from __future__ import annotations

import types

import pytest

from eventboard import lifecycle
from eventboard.errors import (
    CancellationAlreadyRequested,
    InvalidTransition,
    ValidationError,
)


def _event(moderation_status="approved", requested=False, approved=False):
    event = types.SimpleNamespace(
        moderation_status=moderation_status,
        cancellation_requested=requested,
        cancellation_approved_by_admin=approved,
    )
    event.status = lifecycle.derive_status(moderation_status, approved)
    return event


@pytest.mark.parametrize(
    ("moderation_status", "cancelled", "expected"),
    [
        ("pending", False, "pending"),
        ("approved", False, "approved"),
        ("rejected", False, "rejected"),
        ("approved", True, "cancelled"),
    ],
)
def test_derive_status(moderation_status, cancelled, expected):
    assert lifecycle.derive_status(moderation_status, cancelled) == expected


def test_derive_status_rejects_unknown_values():
    with pytest.raises(ValueError):
        lifecycle.derive_status("archived", False)


def test_transition_graph_only_moves_forward():
    assert lifecycle.can_transition("pending", "approved")
    assert lifecycle.can_transition("pending", "rejected")
    assert lifecycle.can_transition("approved", "cancelled")
    assert not lifecycle.can_transition("approved", "pending")
    assert not lifecycle.can_transition("rejected", "approved")
    assert not lifecycle.can_transition("rejected", "pending")
    assert not lifecycle.can_transition("cancelled", "approved")
    assert not lifecycle.can_transition("pending", "cancelled")


def test_require_transition_raises_for_illegal_move():
    with pytest.raises(InvalidTransition):
        lifecycle.require_transition(_event("rejected"), "approved")


def test_cancelled_events_are_not_editable():
    assert lifecycle.is_editable(_event("rejected"))
    assert lifecycle.is_editable(_event("pending"))
    with pytest.raises(InvalidTransition, match="Cannot edit a cancelled event"):
        lifecycle.require_editable(_event(requested=True, approved=True))


def test_second_cancellation_request_is_refused():
    with pytest.raises(CancellationAlreadyRequested):
        lifecycle.require_cancellation_requestable(_event(requested=True))


def test_cancellation_only_from_approved():
    with pytest.raises(InvalidTransition):
        lifecycle.require_cancellation_requestable(_event("pending"))
    lifecycle.require_cancellation_requestable(_event("approved"))


def test_pending_cancellation_required_for_review():
    with pytest.raises(InvalidTransition):
        lifecycle.require_pending_cancellation(_event())
    lifecycle.require_pending_cancellation(_event(requested=True))


def test_clean_reason():
    assert lifecycle.clean_reason("  incomplete info ", label="rejection") == (
        "incomplete info"
    )
    with pytest.raises(ValidationError, match="Please provide a rejection reason"):
        lifecycle.clean_reason("   ", label="rejection")
    with pytest.raises(ValidationError):
        lifecycle.clean_reason("x" * 501, label="cancellation")
