"""RSVP reconciliation: one attendee's relationship to one event."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import func, literal, or_, select, text, true, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from .errors import (
    AuthenticationRequired,
    BusinessRuleError,
    CapacityExceeded,
    StaleState,
    ValidationError,
)
from .lifecycle import APPROVED, CANCELLED
from .models import ACTIVE_ONLY, RSVP, Event, Profile
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")

INTERESTED = "interested"
GOING = "going"
RSVP_TYPES = (INTERESTED, GOING)

ACTIVE = "active"
RSVP_CANCELLED = "cancelled"

CREATED = "created"
CHANGED = "changed"
REMOVED = "removed"

STALE_RSVP_MESSAGE = "Your RSVP changed in another window. Refresh and try again."


@dataclass
class RSVPOutcome:
    result: str
    rsvp: RSVP

    @property
    def rsvp_type(self) -> str | None:
        return self.rsvp.rsvp_type if self.result != REMOVED else None


def _active_count_subquery(event_id: str, rsvp_type: str):
    counted = RSVP.__table__.alias("counted_rsvps")
    return (
        select(func.count())
        .select_from(counted)
        .where(
            counted.c.event_id == event_id,
            counted.c.status == ACTIVE,
            counted.c.rsvp_type == rsvp_type,
        )
        .scalar_subquery()
    )


def going_subquery(event_id: str):
    """Correlated count of active going RSVPs for use inside a write."""
    return _active_count_subquery(event_id, GOING)


def _has_room(event_id: str):
    # Read the stored capacity so a concurrent capacity edit is honoured.
    events = Event.__table__
    stored_capacity = (
        select(events.c.capacity).where(events.c.id == event_id).scalar_subquery()
    )
    return or_(
        stored_capacity.is_(None),
        going_subquery(event_id) < stored_capacity,
    )


def going_count(session: Session, event_id: str) -> int:
    stmt = select(func.count(RSVP.id)).where(
        RSVP.event_id == event_id,
        RSVP.status == ACTIVE,
        RSVP.rsvp_type == GOING,
    )
    return session.scalar(stmt) or 0


def counts_for_events(
    session: Session, event_ids: Iterable[str]
) -> dict[str, dict[str, int]]:
    """Return active interested/going counts keyed by event id."""
    ids = list(event_ids)
    counts = {event_id: {INTERESTED: 0, GOING: 0} for event_id in ids}
    if not ids:
        return counts
    stmt = (
        select(RSVP.event_id, RSVP.rsvp_type, func.count(RSVP.id))
        .where(RSVP.event_id.in_(ids), RSVP.status == ACTIVE)
        .group_by(RSVP.event_id, RSVP.rsvp_type)
    )
    for event_id, rsvp_type, count in session.execute(stmt):
        counts[event_id][rsvp_type] = count
    return counts


def summarize_counts(event: Event, interested: int, going: int) -> dict:
    capacity = event.capacity
    payload = {
        "interested_count": interested,
        "going_count": going,
        "total_rsvps": interested + going,
        "capacity": capacity,
        "capacity_utilization": None,
        "spots_left": None,
        "is_at_capacity": False,
    }
    if capacity:
        payload["capacity_utilization"] = round(going / capacity, 4)
        payload["spots_left"] = max(capacity - going, 0)
        payload["is_at_capacity"] = going >= capacity
    return payload


def rsvp_counts(session: Session, event: Event) -> dict:
    counts = counts_for_events(session, [event.id])[event.id]
    return summarize_counts(event, counts[INTERESTED], counts[GOING])


def get_active_rsvp(session: Session, *, user_id: str, event_id: str) -> RSVP | None:
    stmt = (
        select(RSVP)
        .where(
            RSVP.user_id == user_id,
            RSVP.event_id == event_id,
            RSVP.status == ACTIVE,
        )
        .order_by(RSVP.created_at.desc())
    )
    return session.scalars(stmt).first()


def active_types_for_user(
    session: Session, *, user_id: str, event_ids: Iterable[str]
) -> dict[str, str]:
    ids = list(event_ids)
    if not ids:
        return {}
    stmt = select(RSVP.event_id, RSVP.rsvp_type).where(
        RSVP.user_id == user_id,
        RSVP.event_id.in_(ids),
        RSVP.status == ACTIVE,
    )
    return {event_id: rsvp_type for event_id, rsvp_type in session.execute(stmt)}


def _normalize_type(rsvp_type: str | None) -> str:
    normalized = (rsvp_type or "").strip().lower()
    if normalized not in RSVP_TYPES:
        raise ValidationError(
            f"RSVP type must be one of: {', '.join(RSVP_TYPES)}"
        )
    return normalized


def _require_open_for_rsvps(event: Event) -> None:
    if event.status == CANCELLED:
        raise BusinessRuleError("This event has been cancelled")
    if event.status != APPROVED:
        raise BusinessRuleError("RSVPs open once the event is approved")


def _reject_full(event: Event, user: Profile) -> None:
    logger.info(
        "Rejected going RSVP from %s for event %s: capacity %s reached",
        user.id,
        event.id,
        event.capacity,
    )
    raise CapacityExceeded()


def _insert_rsvp(
    session: Session, *, event: Event, user: Profile, rsvp_type: str
) -> RSVP | None:
    """Insert an active RSVP in one guarded statement.

    Returns ``None`` when the user already holds an active RSVP for the event
    (the partial unique index absorbs the duplicate). Raises
    ``CapacityExceeded`` when a going RSVP finds no room.
    """
    new_id = str(uuid.uuid4())
    now = utcnow()
    rsvps = RSVP.__table__
    room = _has_room(event.id) if rsvp_type == GOING else true()
    source = select(
        literal(new_id),
        literal(event.id),
        literal(user.id),
        literal(rsvp_type),
        literal(ACTIVE),
        literal(now),
        literal(now),
    ).where(room)
    stmt = (
        sqlite_insert(rsvps)
        .from_select(
            [
                rsvps.c.id,
                rsvps.c.event_id,
                rsvps.c.user_id,
                rsvps.c.rsvp_type,
                rsvps.c.status,
                rsvps.c.created_at,
                rsvps.c.updated_at,
            ],
            source,
        )
        .on_conflict_do_nothing(
            index_elements=[rsvps.c.user_id, rsvps.c.event_id],
            index_where=text(ACTIVE_ONLY),
        )
    )
    result = session.execute(stmt)
    if result.rowcount == 0:
        if get_active_rsvp(session, user_id=user.id, event_id=event.id) is None:
            _reject_full(event, user)
        return None
    return session.get(RSVP, new_id)


def _change_type(
    session: Session,
    *,
    event: Event,
    user: Profile,
    rsvp: RSVP,
    rsvp_type: str,
) -> RSVP:
    rsvps = RSVP.__table__
    stmt = (
        update(rsvps)
        .where(rsvps.c.id == rsvp.id, rsvps.c.status == ACTIVE)
        .values(rsvp_type=rsvp_type, updated_at=utcnow())
    )
    if rsvp_type == GOING:
        stmt = stmt.where(_has_room(event.id))
    result = session.execute(stmt)
    if result.rowcount == 0:
        status = session.scalar(select(rsvps.c.status).where(rsvps.c.id == rsvp.id))
        if status != ACTIVE:
            raise StaleState(STALE_RSVP_MESSAGE)
        _reject_full(event, user)
    session.refresh(rsvp)
    return rsvp


def set_rsvp(
    session: Session,
    *,
    user: Profile | None,
    event: Event,
    rsvp_type: str,
) -> RSVPOutcome:
    """Create, change, or toggle off the caller's RSVP for ``event``.

    The capacity check runs before the toggle decision but skips users whose
    active RSVP is already ``going``, so a second ``going`` click always
    reaches the toggle-off branch. The writes re-check capacity themselves.
    """
    if user is None:
        raise AuthenticationRequired(
            "Please log in to RSVP", login_url=f"/login?redirect=/events/{event.id}"
        )
    requested = _normalize_type(rsvp_type)
    _require_open_for_rsvps(event)

    current = get_active_rsvp(session, user_id=user.id, event_id=event.id)
    current_type = current.rsvp_type if current else None

    if (
        requested == GOING
        and event.capacity is not None
        and current_type != GOING
        and going_count(session, event.id) >= event.capacity
    ):
        _reject_full(event, user)

    if current is None:
        created = _insert_rsvp(session, event=event, user=user, rsvp_type=requested)
        if created is not None:
            return RSVPOutcome(CREATED, created)
        # Another request for the same user inserted first; reconcile with it.
        current = get_active_rsvp(session, user_id=user.id, event_id=event.id)
        if current is None:
            raise StaleState(STALE_RSVP_MESSAGE)

    if current.rsvp_type == requested:
        current.status = RSVP_CANCELLED
        session.add(current)
        session.flush()
        return RSVPOutcome(REMOVED, current)

    changed = _change_type(
        session, event=event, user=user, rsvp=current, rsvp_type=requested
    )
    return RSVPOutcome(CHANGED, changed)


def outcome_message(outcome: RSVPOutcome) -> str:
    label = "Interested" if outcome.rsvp.rsvp_type == INTERESTED else "Going"
    if outcome.result == REMOVED:
        return "RSVP cancelled"
    if outcome.result == CHANGED:
        return f'Changed to "{label}"'
    return f'Marked as "{label}"!'
