"""CRUD helpers for profiles, events, and their moderation lifecycle."""

from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Any, Sequence

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from . import lifecycle
from .config import settings
from .errors import (
    AuthenticationRequired,
    CapacityBelowGoingCount,
    NotFound,
    PermissionDenied,
    StaleState,
    ValidationError,
)
from .models import RSVP, Event, Profile
from .rsvps import (
    ACTIVE,
    GOING,
    INTERESTED,
    counts_for_events,
    going_count,
    going_subquery,
)
from .security import hash_password, new_session_token, verify_password
from .utils import clean_text, normalize_email, utcnow

logger = logging.getLogger("uvicorn.error")

CATEGORIES = (
    "Music",
    "Art",
    "Comedy",
    "Tech",
    "Food",
    "Sports",
    "Education",
    "Networking",
    "Other",
)
USER_TYPES = {"user", "venue"}
PRICE_FILTERS = {"all", "free", "paid"}
SORT_OPTIONS = {"date-asc", "date-desc", "popular", "price-asc", "price-desc"}

MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 1000
MAX_DISPLAY_NAME_LENGTH = 50
MAX_BIO_LENGTH = 200
MIN_PASSWORD_LENGTH = 6

EVENT_CONTENT_FIELDS = (
    "title",
    "description",
    "category",
    "date",
    "time",
    "location",
    "price",
    "capacity",
    "image_url",
    "contact_whatsapp",
    "contact_email",
    "booking_link",
)
REQUIRED_EVENT_FIELDS = ("title", "description", "category", "date", "time", "location")


def _now() -> datetime:
    return utcnow()


# -------- Profiles and sessions --------


def get_profile_by_email(session: Session, email: str) -> Profile | None:
    normalized = normalize_email(email)
    if not normalized:
        return None
    stmt = select(Profile).where(Profile.email == normalized)
    return session.scalars(stmt).first()


def create_profile(
    session: Session,
    *,
    email: str,
    password: str,
    user_type: str = "user",
    display_name: str | None = None,
    venue_name: str | None = None,
    venue_description: str | None = None,
    venue_location: str | None = None,
    venue_phone: str | None = None,
    venue_website: str | None = None,
    is_admin: bool = False,
) -> Profile:
    """Register an attendee or venue account."""
    normalized_email = normalize_email(email)
    if "@" not in normalized_email:
        raise ValidationError("Please enter a valid email address")
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
        )
    if user_type not in USER_TYPES:
        raise ValidationError("Invalid account type")
    if user_type == "venue":
        if not clean_text(venue_name):
            raise ValidationError("Venue name is required")
        if not clean_text(venue_location):
            raise ValidationError("Venue location is required")
    if get_profile_by_email(session, normalized_email):
        raise ValidationError("An account with this email already exists")

    profile = Profile(
        email=normalized_email,
        password_hash=hash_password(password),
        user_type=user_type,
        is_admin=is_admin,
        display_name=_check_length(
            clean_text(display_name), MAX_DISPLAY_NAME_LENGTH, "Display name"
        ),
        venue_name=clean_text(venue_name),
        venue_description=clean_text(venue_description),
        venue_location=clean_text(venue_location),
        venue_phone=clean_text(venue_phone),
        venue_website=clean_text(venue_website),
    )
    session.add(profile)
    session.flush()
    return profile


def authenticate(session: Session, *, email: str, password: str) -> Profile:
    profile = get_profile_by_email(session, email)
    if not profile or not verify_password(password or "", profile.password_hash):
        raise AuthenticationRequired(
            "Invalid email or password. Please check and try again."
        )
    return profile


def start_session(session: Session, profile: Profile) -> str:
    """Issue a fresh bearer token for ``profile``."""
    profile.session_token = new_session_token()
    profile.session_expires_at = _now() + settings.session_ttl
    session.add(profile)
    session.flush()
    return profile.session_token


def end_session(session: Session, profile: Profile) -> None:
    profile.session_token = None
    profile.session_expires_at = None
    session.add(profile)
    session.flush()


def get_profile_by_session_token(session: Session, token: str | None) -> Profile | None:
    if not token:
        return None
    stmt = select(Profile).where(Profile.session_token == token)
    profile = session.scalars(stmt).first()
    if not profile:
        return None
    if profile.session_expires_at and profile.session_expires_at <= _now():
        return None
    return profile


def update_profile(
    session: Session,
    profile: Profile,
    *,
    display_name: str | None,
    bio: str | None,
    location: str | None,
    phone: str | None,
    avatar_url: str | None,
) -> Profile:
    profile.display_name = _check_length(
        clean_text(display_name), MAX_DISPLAY_NAME_LENGTH, "Display name"
    )
    profile.bio = _check_length(clean_text(bio), MAX_BIO_LENGTH, "Bio")
    profile.location = clean_text(location)
    profile.phone = clean_text(phone)
    profile.avatar_url = avatar_url or None
    session.add(profile)
    session.flush()
    return profile


def set_admin(session: Session, *, email: str, is_admin: bool = True) -> Profile:
    profile = get_profile_by_email(session, email)
    if not profile:
        raise NotFound(f"No account found for {normalize_email(email)}")
    profile.is_admin = is_admin
    session.add(profile)
    session.flush()
    return profile


def _check_length(value: str | None, limit: int, label: str) -> str | None:
    if value and len(value) > limit:
        raise ValidationError(f"{label} must be {limit} characters or less")
    return value


# -------- Event submission and editing --------


def _clean_event_fields(data: dict[str, Any], *, required: bool) -> dict[str, Any]:
    """Validate the supplied content fields and return normalized values."""
    cleaned: dict[str, Any] = {}
    for key in ("title", "description", "location"):
        if key in data:
            cleaned[key] = clean_text(data[key])
    for key in ("contact_whatsapp", "contact_email", "booking_link", "image_url"):
        if key in data:
            cleaned[key] = clean_text(data[key])
    for key in ("category", "date", "time", "price", "capacity"):
        if key in data:
            cleaned[key] = data[key]

    checked = REQUIRED_EVENT_FIELDS if required else [
        key for key in REQUIRED_EVENT_FIELDS if key in cleaned
    ]
    if any(cleaned.get(key) in (None, "") for key in checked):
        raise ValidationError("Please fill in all required fields")

    _check_length(cleaned.get("title"), MAX_TITLE_LENGTH, "Title")
    _check_length(cleaned.get("description"), MAX_DESCRIPTION_LENGTH, "Description")

    if "category" in cleaned and cleaned["category"] not in CATEGORIES:
        raise ValidationError(
            f"Category must be one of: {', '.join(CATEGORIES)}"
        )
    if "date" in cleaned and not isinstance(cleaned["date"], date):
        raise ValidationError("Invalid event date")
    if "time" in cleaned and not isinstance(cleaned["time"], time):
        raise ValidationError("Invalid event time")

    if required or "price" in cleaned:
        price = cleaned.get("price")
        if price is None:
            raise ValidationError("Please enter ticket price (0 for free)")
        try:
            price = float(price)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Please enter a valid ticket price") from exc
        if price < 0:
            raise ValidationError("Ticket price cannot be negative")
        cleaned["price"] = price

    if cleaned.get("capacity") is not None:
        capacity = cleaned["capacity"]
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
            raise ValidationError("Please enter a valid capacity")
    return cleaned


def require_venue(profile: Profile) -> None:
    if not profile.is_venue:
        raise PermissionDenied("Only venue accounts can manage events")


def require_owner(event: Event, profile: Profile) -> None:
    if event.venue_user_id != profile.id:
        raise PermissionDenied("You do not have permission to manage this event")


def create_event(
    session: Session,
    *,
    venue: Profile,
    title: str,
    description: str,
    category: str,
    date: date,
    time: time,
    location: str,
    price: float,
    capacity: int | None = None,
    image_url: str | None = None,
    contact_whatsapp: str | None = None,
    contact_email: str | None = None,
    booking_link: str | None = None,
) -> Event:
    """Submit a new event for moderation."""
    require_venue(venue)
    fields = _clean_event_fields(
        {
            "title": title,
            "description": description,
            "category": category,
            "date": date,
            "time": time,
            "location": location,
            "price": price,
            "capacity": capacity,
            "image_url": image_url,
            "contact_whatsapp": contact_whatsapp,
            "contact_email": contact_email or venue.email,
            "booking_link": booking_link,
        },
        required=True,
    )
    event = Event(
        venue_user_id=venue.id,
        venue_name=venue.venue_name or venue.display_name or "Your Venue",
        moderation_status=lifecycle.PENDING,
        cancellation_requested=False,
        cancellation_approved_by_admin=False,
        **fields,
    )
    session.add(event)
    session.flush()
    logger.info("Event %s submitted by venue %s", event.id, venue.id)
    return event


def update_event(
    session: Session, event: Event, *, editor: Profile, **changes: Any
) -> Event:
    """Overwrite any subset of an event's content fields.

    Status is never touched: editing a rejected event leaves it rejected.
    """
    require_owner(event, editor)
    lifecycle.require_editable(event)
    unknown = set(changes) - set(EVENT_CONTENT_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown event fields: {', '.join(sorted(unknown))}")
    fields = _clean_event_fields(changes, required=False)

    if fields.get("capacity") is not None:
        _set_capacity(session, event, fields["capacity"])

    for key, value in fields.items():
        setattr(event, key, value)
    session.add(event)
    session.flush()
    return event


def _set_capacity(session: Session, event: Event, capacity: int) -> None:
    """Write a new capacity only while it still covers the going count."""
    session.flush()
    stmt = (
        update(Event)
        .where(Event.id == event.id, going_subquery(event.id) <= capacity)
        .values(capacity=capacity)
        .execution_options(synchronize_session=False)
    )
    if session.execute(stmt).rowcount == 0:
        current_going = going_count(session, event.id)
        raise CapacityBelowGoingCount(
            f'Cannot set capacity below current "Going" count ({current_going})'
        )


# -------- Lifecycle transitions --------


def _conditional_update(
    session: Session, event: Event, *, guards: Sequence, values: dict[str, Any]
) -> Event:
    """Apply ``values`` only while the row still matches ``guards``."""
    session.flush()
    stmt = (
        update(Event)
        .where(Event.id == event.id, *guards)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    if result.rowcount == 0:
        session.refresh(event)
        raise StaleState(
            "This event changed while you were working on it. Refresh and try again."
        )
    session.refresh(event)
    return event


def _pending_guards() -> list:
    return [
        Event.moderation_status == lifecycle.PENDING,
        Event.cancellation_approved_by_admin.is_(False),
    ]


def approve_event(session: Session, event: Event) -> Event:
    lifecycle.require_transition(event, lifecycle.APPROVED)
    _conditional_update(
        session,
        event,
        guards=_pending_guards(),
        values={"moderation_status": lifecycle.APPROVED, "rejection_reason": None},
    )
    logger.info("Event %s approved", event.id)
    return event


def reject_event(session: Session, event: Event, *, reason: str | None) -> Event:
    cleaned = lifecycle.clean_reason(reason, label="rejection")
    lifecycle.require_transition(event, lifecycle.REJECTED)
    _conditional_update(
        session,
        event,
        guards=_pending_guards(),
        values={"moderation_status": lifecycle.REJECTED, "rejection_reason": cleaned},
    )
    logger.info("Event %s rejected: %s", event.id, cleaned)
    return event


def request_cancellation(
    session: Session, event: Event, *, requester: Profile, reason: str | None
) -> Event:
    require_owner(event, requester)
    cleaned = lifecycle.clean_reason(reason, label="cancellation")
    lifecycle.require_cancellation_requestable(event)
    _conditional_update(
        session,
        event,
        guards=[
            Event.moderation_status == lifecycle.APPROVED,
            Event.cancellation_requested.is_(False),
            Event.cancellation_approved_by_admin.is_(False),
        ],
        values={
            "cancellation_requested": True,
            "cancellation_reason": cleaned,
            "cancellation_requested_at": _now(),
        },
    )
    logger.info("Cancellation requested for event %s: %s", event.id, cleaned)
    return event


def _pending_cancellation_guards() -> list:
    return [
        Event.moderation_status == lifecycle.APPROVED,
        Event.cancellation_requested.is_(True),
        Event.cancellation_approved_by_admin.is_(False),
    ]


def approve_cancellation(session: Session, event: Event) -> Event:
    lifecycle.require_pending_cancellation(event)
    _conditional_update(
        session,
        event,
        guards=_pending_cancellation_guards(),
        values={"cancellation_approved_by_admin": True, "cancelled_at": _now()},
    )
    logger.info("Cancellation approved for event %s", event.id)
    return event


def reject_cancellation(session: Session, event: Event) -> Event:
    lifecycle.require_pending_cancellation(event)
    _conditional_update(
        session,
        event,
        guards=_pending_cancellation_guards(),
        values={
            "cancellation_requested": False,
            "cancellation_reason": None,
            "cancellation_requested_at": None,
        },
    )
    logger.info("Cancellation request rejected for event %s", event.id)
    return event


# -------- Queries --------


def build_pagination(*, page: int, per_page: int, total: int) -> dict:
    total_pages = max(1, (total + per_page - 1) // per_page) if total else 1
    page = max(1, min(page, total_pages)) if total else 1
    return {
        "page": page,
        "per_page": per_page,
        "total_pages": total_pages,
        "total_events": total,
        "has_prev": page > 1,
        "has_next": page < total_pages and total > 0,
        "prev_page": page - 1 if page > 1 else None,
        "next_page": page + 1 if page < total_pages and total > 0 else None,
    }


def _search_clause(query: str | None):
    cleaned = (query or "").strip()
    if not cleaned:
        return None
    pattern = f"%{cleaned}%"
    return or_(
        Event.title.ilike(pattern),
        Event.description.ilike(pattern),
        Event.venue_name.ilike(pattern),
    )


def list_public_events(
    session: Session,
    *,
    query: str | None = None,
    category: str | None = None,
    price: str = "all",
    sort: str = "date-asc",
    page: int = 1,
    per_page: int | None = None,
    today: date | None = None,
) -> tuple[Sequence[Event], dict]:
    """Return upcoming approved (and cancelled) events with pagination."""
    if price not in PRICE_FILTERS:
        raise ValidationError(f"price must be one of: {', '.join(sorted(PRICE_FILTERS))}")
    if sort not in SORT_OPTIONS:
        raise ValidationError(f"sort must be one of: {', '.join(sorted(SORT_OPTIONS))}")
    if category and category not in CATEGORIES:
        raise ValidationError(f"Category must be one of: {', '.join(CATEGORIES)}")
    per_page = per_page or settings.events_per_page
    today = today or utcnow().date()

    # Cancelled events keep moderation_status "approved", so they stay listed.
    filters = [Event.moderation_status == lifecycle.APPROVED, Event.date >= today]
    search = _search_clause(query)
    if search is not None:
        filters.append(search)
    if category:
        filters.append(Event.category == category)
    if price == "free":
        filters.append(Event.price == 0)
    elif price == "paid":
        filters.append(Event.price > 0)

    total = session.scalar(select(func.count()).select_from(Event).where(*filters)) or 0
    pagination = build_pagination(page=page, per_page=per_page, total=total)
    offset = (pagination["page"] - 1) * per_page

    stmt = select(Event).where(*filters)
    if sort == "popular":
        popularity = (
            select(RSVP.event_id, func.count(RSVP.id).label("total_rsvps"))
            .where(RSVP.status == ACTIVE)
            .group_by(RSVP.event_id)
            .subquery()
        )
        stmt = stmt.outerjoin(popularity, popularity.c.event_id == Event.id).order_by(
            func.coalesce(popularity.c.total_rsvps, 0).desc(), Event.date.asc()
        )
    elif sort == "date-desc":
        stmt = stmt.order_by(Event.date.desc(), Event.time.desc())
    elif sort == "price-asc":
        stmt = stmt.order_by(Event.price.asc(), Event.date.asc())
    elif sort == "price-desc":
        stmt = stmt.order_by(Event.price.desc(), Event.date.asc())
    else:
        stmt = stmt.order_by(Event.date.asc(), Event.time.asc())
    events = session.scalars(stmt.offset(offset).limit(per_page)).all()
    return events, pagination


def get_event(session: Session, event_id: str) -> Event:
    event = session.get(Event, event_id)
    if not event:
        raise NotFound("Event not found")
    return event


def can_view_event(event: Event, viewer: Profile | None, *, is_admin: bool) -> bool:
    if event.status in (lifecycle.APPROVED, lifecycle.CANCELLED):
        return True
    if is_admin:
        return True
    return viewer is not None and viewer.id == event.venue_user_id


def admin_event_buckets(session: Session) -> dict[str, list[Event]]:
    """Group every event for the moderation queue, newest first."""
    events = session.scalars(select(Event).order_by(Event.created_at.desc())).all()
    buckets: dict[str, list[Event]] = {
        "pending": [],
        "approved": [],
        "rejected": [],
        "cancelled": [],
        "cancellation_requests": [],
    }
    for event in events:
        buckets[event.status].append(event)
        if lifecycle.has_pending_cancellation(event):
            buckets["cancellation_requests"].append(event)
    return buckets


def venue_events(session: Session, venue: Profile) -> Sequence[Event]:
    stmt = (
        select(Event)
        .where(Event.venue_user_id == venue.id)
        .order_by(Event.date.desc(), Event.time.desc())
    )
    return session.scalars(stmt).all()


def performance_level(total_events: int) -> str:
    if total_events == 0:
        return "Getting Started"
    if total_events < 5:
        return "Active"
    if total_events < 10:
        return "Growing"
    if total_events < 20:
        return "Thriving"
    return "Top Performer"


def venue_dashboard(
    session: Session, venue: Profile, *, today: date | None = None
) -> dict:
    today = today or utcnow().date()
    events = list(venue_events(session, venue))
    total = len(events)
    by_status = {status: 0 for status in lifecycle.EVENT_STATUSES}
    for event in events:
        by_status[event.status] += 1
    approval_rate = round(by_status["approved"] / total * 100) if total else 0
    upcoming = sorted(
        (e for e in events if e.date >= today), key=lambda e: (e.date, e.time)
    )
    return {
        "total_events": total,
        "upcoming_events": len(upcoming),
        "past_events": sum(1 for e in events if e.date < today),
        "pending_events": by_status["pending"],
        "approved_events": by_status["approved"],
        "rejected_events": by_status["rejected"],
        "cancelled_events": by_status["cancelled"],
        "approval_rate": approval_rate,
        "performance_level": performance_level(total),
        "next_events": upcoming[:5],
    }


def user_rsvps(
    session: Session,
    user: Profile,
    *,
    when: str = "all",
    today: date | None = None,
) -> Sequence[RSVP]:
    """Return the user's active RSVPs joined to their events."""
    if when not in {"all", "upcoming", "past"}:
        raise ValidationError("when must be one of: all, past, upcoming")
    today = today or utcnow().date()
    stmt = (
        select(RSVP)
        .join(Event, Event.id == RSVP.event_id)
        .where(RSVP.user_id == user.id, RSVP.status == ACTIVE)
    )
    if when == "upcoming":
        stmt = stmt.where(Event.date >= today).order_by(Event.date.asc())
    elif when == "past":
        stmt = stmt.where(Event.date < today).order_by(Event.date.desc())
    else:
        stmt = stmt.order_by(Event.date.asc())
    return session.scalars(stmt).all()


def profile_stats(session: Session, user: Profile, *, today: date | None = None) -> dict:
    today = today or utcnow().date()
    rsvps = user_rsvps(session, user, today=today)
    return {
        "total_rsvps": len(rsvps),
        "upcoming_events": sum(1 for r in rsvps if r.event.date >= today),
        "past_events": sum(1 for r in rsvps if r.event.date < today),
        "interested_count": sum(1 for r in rsvps if r.rsvp_type == INTERESTED),
        "going_count": sum(1 for r in rsvps if r.rsvp_type == GOING),
    }


def event_counts(session: Session, events: Sequence[Event]) -> dict[str, dict[str, int]]:
    return counts_for_events(session, [event.id for event in events])
