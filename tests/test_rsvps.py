from __future__ import annotations

import random

import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from conftest import make_event, make_user, make_venue
from eventboard import crud, rsvps
from eventboard.errors import (
    AuthenticationRequired,
    BusinessRuleError,
    CapacityExceeded,
    StaleState,
    ValidationError,
)
from eventboard.models import RSVP, Event
from eventboard.rsvps import (
    ACTIVE,
    CHANGED,
    CREATED,
    GOING,
    INTERESTED,
    REMOVED,
    going_count,
    outcome_message,
    rsvp_counts,
    set_rsvp,
)


def _pair(session, event):
    counts = rsvp_counts(session, event)
    return counts["interested_count"], counts["going_count"]


def test_capacity_rejects_third_going(session):
    venue = make_venue(session)
    event = make_event(session, venue, capacity=2)
    users = [make_user(session, email=f"u{i}@example.com") for i in range(3)]

    set_rsvp(session, user=users[0], event=event, rsvp_type=GOING)
    set_rsvp(session, user=users[1], event=event, rsvp_type=GOING)
    with pytest.raises(CapacityExceeded) as excinfo:
        set_rsvp(session, user=users[2], event=event, rsvp_type=GOING)

    assert excinfo.value.to_dict()["error"] == "EventFull"
    assert going_count(session, event.id) == 2
    counts = rsvp_counts(session, event)
    assert counts["is_at_capacity"] is True
    assert counts["spots_left"] == 0
    assert counts["capacity_utilization"] == 1.0


def test_interested_going_going_sequence(session):
    venue = make_venue(session)
    event = make_event(session, venue, capacity=5)
    user = make_user(session)

    first = set_rsvp(session, user=user, event=event, rsvp_type=INTERESTED)
    assert first.result == CREATED
    assert _pair(session, event) == (1, 0)

    second = set_rsvp(session, user=user, event=event, rsvp_type=GOING)
    assert second.result == CHANGED
    assert second.rsvp.id == first.rsvp.id
    assert _pair(session, event) == (0, 1)

    third = set_rsvp(session, user=user, event=event, rsvp_type=GOING)
    assert third.result == REMOVED
    assert third.rsvp_type is None
    assert _pair(session, event) == (0, 0)


def test_toggle_twice_restores_prior_state(session):
    venue = make_venue(session)
    event = make_event(session, venue)
    user = make_user(session)
    other = make_user(session, email="other@example.com")
    set_rsvp(session, user=other, event=event, rsvp_type=INTERESTED)
    before = _pair(session, event)

    set_rsvp(session, user=user, event=event, rsvp_type=INTERESTED)
    set_rsvp(session, user=user, event=event, rsvp_type=INTERESTED)

    assert _pair(session, event) == before
    assert rsvps.get_active_rsvp(session, user_id=user.id, event_id=event.id) is None


def test_going_user_at_capacity_can_still_toggle_off(session):
    venue = make_venue(session)
    event = make_event(session, venue, capacity=1)
    user = make_user(session)

    set_rsvp(session, user=user, event=event, rsvp_type=GOING)
    outcome = set_rsvp(session, user=user, event=event, rsvp_type=GOING)

    assert outcome.result == REMOVED
    assert going_count(session, event.id) == 0


def test_switch_to_going_when_full_keeps_interested(session):
    venue = make_venue(session)
    event = make_event(session, venue, capacity=1)
    attendee = make_user(session)
    waiting = make_user(session, email="waiting@example.com")
    set_rsvp(session, user=attendee, event=event, rsvp_type=GOING)
    set_rsvp(session, user=waiting, event=event, rsvp_type=INTERESTED)

    with pytest.raises(CapacityExceeded):
        set_rsvp(session, user=waiting, event=event, rsvp_type=GOING)

    current = rsvps.get_active_rsvp(session, user_id=waiting.id, event_id=event.id)
    assert current.rsvp_type == INTERESTED


def test_conditional_insert_refuses_when_count_reached(session):
    venue = make_venue(session)
    event = make_event(session, venue, capacity=1)
    first = make_user(session)
    late = make_user(session, email="late@example.com")
    set_rsvp(session, user=first, event=event, rsvp_type=GOING)

    # Skip the pre-check to exercise the guarded write on its own.
    with pytest.raises(CapacityExceeded):
        rsvps._insert_rsvp(session, event=event, user=late, rsvp_type=GOING)
    assert going_count(session, event.id) == 1


def test_interested_is_never_capacity_limited(session):
    venue = make_venue(session)
    event = make_event(session, venue, capacity=1)
    users = [make_user(session, email=f"fan{i}@example.com") for i in range(3)]
    for user in users:
        set_rsvp(session, user=user, event=event, rsvp_type=INTERESTED)
    assert _pair(session, event) == (3, 0)


def test_going_never_exceeds_capacity_under_random_operations(session):
    rng = random.Random(1234)
    venue = make_venue(session)
    event = make_event(session, venue, capacity=3)
    users = [make_user(session, email=f"r{i}@example.com") for i in range(6)]

    for _ in range(60):
        user = rng.choice(users)
        try:
            set_rsvp(
                session, user=user, event=event, rsvp_type=rng.choice(rsvps.RSVP_TYPES)
            )
        except CapacityExceeded:
            pass
        assert going_count(session, event.id) <= 3


def test_anonymous_rsvp_requires_login(session):
    venue = make_venue(session)
    event = make_event(session, venue)
    with pytest.raises(AuthenticationRequired) as excinfo:
        set_rsvp(session, user=None, event=event, rsvp_type=GOING)
    assert excinfo.value.login_url == f"/login?redirect=/events/{event.id}"


def test_rsvp_rejected_for_pending_and_cancelled_events(session):
    venue = make_venue(session)
    user = make_user(session)
    pending = make_event(session, venue, approve=False)
    with pytest.raises(BusinessRuleError):
        set_rsvp(session, user=user, event=pending, rsvp_type=GOING)

    cancelled = make_event(session, venue, title="Called Off")
    crud.request_cancellation(session, cancelled, requester=venue, reason="Flooding")
    crud.approve_cancellation(session, cancelled)
    with pytest.raises(BusinessRuleError, match="cancelled"):
        set_rsvp(session, user=user, event=cancelled, rsvp_type=INTERESTED)


def test_invalid_rsvp_type(session):
    venue = make_venue(session)
    event = make_event(session, venue)
    user = make_user(session)
    with pytest.raises(ValidationError):
        set_rsvp(session, user=user, event=event, rsvp_type="maybe")


def test_outcome_messages(session):
    venue = make_venue(session)
    event = make_event(session, venue)
    user = make_user(session)

    created = set_rsvp(session, user=user, event=event, rsvp_type=INTERESTED)
    assert outcome_message(created) == 'Marked as "Interested"!'
    changed = set_rsvp(session, user=user, event=event, rsvp_type=GOING)
    assert outcome_message(changed) == 'Changed to "Going"'
    removed = set_rsvp(session, user=user, event=event, rsvp_type=GOING)
    assert outcome_message(removed) == "RSVP cancelled"


def test_counts_without_capacity(session):
    venue = make_venue(session)
    event = make_event(session, venue)
    counts = rsvp_counts(session, event)
    assert counts["capacity"] is None
    assert counts["spots_left"] is None
    assert counts["is_at_capacity"] is False
    assert counts["total_rsvps"] == 0


def _active_rows(session, user, event) -> int:
    return len(
        session.scalars(
            RSVP.__table__.select().where(
                RSVP.user_id == user.id,
                RSVP.event_id == event.id,
                RSVP.status == ACTIVE,
            )
        ).all()
    )


def test_second_active_rsvp_for_same_user_is_refused_by_the_schema(session):
    venue = make_venue(session)
    event = make_event(session, venue)
    user = make_user(session)
    set_rsvp(session, user=user, event=event, rsvp_type=INTERESTED)
    session.commit()

    session.add(RSVP(event_id=event.id, user_id=user.id, rsvp_type=GOING))
    with pytest.raises(IntegrityError):
        session.flush()
    session.rollback()
    assert _active_rows(session, user, event) == 1


def test_interleaved_first_rsvp_reconciles_with_the_winner(session, monkeypatch):
    venue = make_venue(session)
    event = make_event(session, venue)
    user = make_user(session)
    # Another request for this user has already inserted its row.
    set_rsvp(session, user=user, event=event, rsvp_type=INTERESTED)

    real_lookup = rsvps.get_active_rsvp
    lookups = []

    def missed_first_lookup(session, *, user_id, event_id):
        lookups.append(event_id)
        if len(lookups) == 1:
            return None
        return real_lookup(session, user_id=user_id, event_id=event_id)

    monkeypatch.setattr(rsvps, "get_active_rsvp", missed_first_lookup)
    outcome = set_rsvp(session, user=user, event=event, rsvp_type=GOING)

    assert outcome.result == CHANGED
    assert outcome.rsvp_type == GOING
    assert _active_rows(session, user, event) == 1
    assert _pair(session, event) == (0, 1)


def test_going_write_uses_stored_capacity(session):
    venue = make_venue(session)
    event = make_event(session, venue, capacity=3)
    set_rsvp(session, user=make_user(session), event=event, rsvp_type=GOING)
    late = make_user(session, email="late@example.com")

    # The venue lowers capacity after this request loaded the event.
    session.execute(
        update(Event.__table__).where(Event.id == event.id).values(capacity=1)
    )
    assert event.capacity == 3

    with pytest.raises(CapacityExceeded):
        set_rsvp(session, user=late, event=event, rsvp_type=GOING)
    assert going_count(session, event.id) == 1


def test_switch_to_going_uses_stored_capacity(session):
    venue = make_venue(session)
    event = make_event(session, venue, capacity=2)
    set_rsvp(session, user=make_user(session), event=event, rsvp_type=GOING)
    fan = make_user(session, email="fan@example.com")
    set_rsvp(session, user=fan, event=event, rsvp_type=INTERESTED)

    session.execute(
        update(Event.__table__).where(Event.id == event.id).values(capacity=1)
    )

    with pytest.raises(CapacityExceeded):
        set_rsvp(session, user=fan, event=event, rsvp_type=GOING)
    assert _pair(session, event) == (1, 1)


def test_change_on_withdrawn_rsvp_reports_stale_state(session):
    venue = make_venue(session)
    event = make_event(session, venue)
    user = make_user(session)
    outcome = set_rsvp(session, user=user, event=event, rsvp_type=GOING)
    stale = outcome.rsvp
    # Withdrawn in another window.
    set_rsvp(session, user=user, event=event, rsvp_type=GOING)

    with pytest.raises(StaleState) as excinfo:
        rsvps._change_type(
            session, event=event, user=user, rsvp=stale, rsvp_type=INTERESTED
        )
    assert excinfo.value.to_dict()["error"] == "StaleState"
