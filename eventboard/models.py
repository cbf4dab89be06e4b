"""SQLAlchemy models for eventboard."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    text,
)
from sqlalchemy.orm import declarative_base, relationship

from .lifecycle import derive_status
from .utils import utcnow

Base = declarative_base()

# At most one active RSVP per (user, event); cancelled rows are kept as history.
ACTIVE_ONLY = "status = 'active'"


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return utcnow()


class Meta(Base):
    __tablename__ = "meta"

    key = Column(String(128), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), nullable=False, unique=True)
    password_hash = Column(String(128), nullable=False)
    user_type = Column(String(16), nullable=False, default="user")
    is_admin = Column(Boolean, default=False, nullable=False)
    display_name = Column(String(50), nullable=True)
    bio = Column(String(200), nullable=True)
    location = Column(String(255), nullable=True)
    phone = Column(String(64), nullable=True)
    avatar_url = Column(String(512), nullable=True)
    venue_name = Column(String(255), nullable=True)
    venue_description = Column(Text, nullable=True)
    venue_location = Column(String(255), nullable=True)
    venue_phone = Column(String(64), nullable=True)
    venue_website = Column(String(512), nullable=True)
    session_token = Column(String(128), nullable=True, unique=True)
    session_expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    events = relationship("Event", back_populates="venue")
    rsvps = relationship("RSVP", back_populates="user")

    @property
    def is_venue(self) -> bool:
        return self.user_type == "venue"


class Event(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=_uuid)
    venue_user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False)
    venue_name = Column(String(255), nullable=False)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(32), nullable=False)
    date = Column(Date, nullable=False)
    time = Column(Time, nullable=False)
    location = Column(String(255), nullable=False)
    price = Column(Float, nullable=False, default=0.0)
    capacity = Column(Integer, nullable=True)
    image_url = Column(String(512), nullable=True)
    contact_whatsapp = Column(String(64), nullable=True)
    contact_email = Column(String(255), nullable=True)
    booking_link = Column(String(512), nullable=True)
    moderation_status = Column(String(16), nullable=False, default="pending")
    rejection_reason = Column(Text, nullable=True)
    cancellation_requested = Column(Boolean, default=False, nullable=False)
    cancellation_reason = Column(Text, nullable=True)
    cancellation_requested_at = Column(DateTime, nullable=True)
    cancellation_approved_by_admin = Column(Boolean, default=False, nullable=False)
    cancelled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    venue = relationship("Profile", back_populates="events")
    rsvps = relationship("RSVP", back_populates="event", cascade="all, delete-orphan")

    @property
    def status(self) -> str:
        """Return the four-valued status derived from moderation and cancellation."""
        return derive_status(
            self.moderation_status, bool(self.cancellation_approved_by_admin)
        )


class RSVP(Base):
    __tablename__ = "rsvps"
    __table_args__ = (
        Index("ix_rsvps_event_status_type", "event_id", "status", "rsvp_type"),
        Index("ix_rsvps_user_event", "user_id", "event_id"),
        Index(
            "uq_rsvps_active_user_event",
            "user_id",
            "event_id",
            unique=True,
            sqlite_where=text(ACTIVE_ONLY),
        ),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False)
    rsvp_type = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False, default="active")
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    event = relationship("Event", back_populates="rsvps")
    user = relationship("Profile", back_populates="rsvps")
