"""Development helpers for populating fake venues, events and RSVPs."""

from __future__ import annotations

import random
from datetime import time, timedelta

from faker import Faker
from sqlalchemy.orm import Session

from . import crud
from .database import get_session
from .errors import BusinessRuleError
from .models import Event, Profile
from .rsvps import RSVP_TYPES, set_rsvp
from .storage import init_db
from .utils import utcnow

SEED_PASSWORD = "eventboard"

_venue_suffixes = [
    "Hall",
    "Lounge",
    "Rooftop",
    "Theatre",
    "Warehouse",
    "Taproom",
    "Gallery",
]
_event_formats = [
    "Night",
    "Showcase",
    "Workshop",
    "Meetup",
    "Festival",
    "Open Mic",
    "Social",
]
# Weighted so most seeded events end up publicly visible.
_outcomes = ["approved"] * 5 + ["pending", "pending", "rejected", "cancelled"]
CANCELLATION_REQUEST_CHANCE = 0.15


def seed_fake_data(
    *,
    venue_count: int = 3,
    user_count: int = 10,
    max_events_per_venue: int = 4,
) -> dict[str, int]:
    """Populate the SQLite database with synthetic venues, attendees and events."""
    if venue_count < 0:
        raise ValueError("venue_count must be >= 0")
    if user_count < 0:
        raise ValueError("user_count must be >= 0")
    if max_events_per_venue < 1:
        raise ValueError("max_events_per_venue must be >= 1")

    init_db()
    fake = Faker()
    stats = {"venues": 0, "users": 0, "events": 0, "rsvps": 0}

    with get_session() as session:
        attendees = [_create_attendee(session, fake) for _ in range(user_count)]
        stats["users"] = len(attendees)
        for _ in range(venue_count):
            venue = _create_venue(session, fake)
            stats["venues"] += 1
            for _ in range(random.randint(1, max_events_per_venue)):
                event = _create_event(session, fake, venue)
                stats["events"] += 1
                stats["rsvps"] += _moderate(session, fake, event, venue, attendees)

    return stats


def _unique_email(session: Session, fake: Faker) -> str:
    for _ in range(20):
        email = fake.unique.email()
        if not crud.get_profile_by_email(session, email):
            return email
    raise RuntimeError("Failed to generate a unique email address")


def _create_attendee(session: Session, fake: Faker) -> Profile:
    return crud.create_profile(
        session,
        email=_unique_email(session, fake),
        password=SEED_PASSWORD,
        display_name=fake.name()[:50],
    )


def _create_venue(session: Session, fake: Faker) -> Profile:
    name = f"{fake.last_name()} {random.choice(_venue_suffixes)}"
    return crud.create_profile(
        session,
        email=_unique_email(session, fake),
        password=SEED_PASSWORD,
        user_type="venue",
        venue_name=name,
        venue_description=fake.sentence(nb_words=12),
        venue_location=fake.address().replace("\n", ", "),
        venue_phone=fake.phone_number(),
        venue_website=fake.url(),
    )


def _create_event(session: Session, fake: Faker, venue: Profile) -> Event:
    category = random.choice(crud.CATEGORIES)
    title = f"{fake.city()} {category} {random.choice(_event_formats)}"
    event_date = utcnow().date() + timedelta(days=random.randint(-7, 45))
    price = 0.0 if random.random() < 0.4 else float(random.randint(5, 60))
    capacity = random.choice([None, None, 10, 25, 50])
    return crud.create_event(
        session,
        venue=venue,
        title=title[:100],
        description="\n\n".join(fake.paragraphs(nb=2))[:1000],
        category=category,
        date=event_date,
        time=time(hour=random.randint(10, 22), minute=random.choice([0, 15, 30, 45])),
        location=venue.venue_location,
        price=price,
        capacity=capacity,
    )


def _create_rsvps(session: Session, event: Event, attendees: list[Profile]) -> int:
    created = 0
    for attendee in random.sample(attendees, k=random.randint(0, len(attendees))):
        try:
            set_rsvp(
                session,
                user=attendee,
                event=event,
                rsvp_type=random.choice(RSVP_TYPES),
            )
        except BusinessRuleError:
            continue
        created += 1
    return created


def _moderate(
    session: Session,
    fake: Faker,
    event: Event,
    venue: Profile,
    attendees: list[Profile],
) -> int:
    """Move ``event`` to a random outcome and return the RSVPs created."""
    outcome = random.choice(_outcomes)
    if outcome == "pending":
        return 0
    if outcome == "rejected":
        crud.reject_event(session, event, reason=fake.sentence())
        return 0

    crud.approve_event(session, event)
    created = _create_rsvps(session, event, attendees)
    if outcome == "cancelled" or random.random() < CANCELLATION_REQUEST_CHANCE:
        crud.request_cancellation(
            session, event, requester=venue, reason=fake.sentence()
        )
    if outcome == "cancelled":
        crud.approve_cancellation(session, event)
    return created
