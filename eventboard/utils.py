"""Utility helpers for eventboard."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

RECENT_UPDATE_WINDOW = timedelta(days=7)
EDIT_DETECTION_BUFFER = timedelta(seconds=1)


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def normalize_email(value: str | None) -> str:
    return (value or "").strip().lower()


def clean_text(value: str | None) -> str | None:
    """Strip whitespace and collapse empty strings to ``None``."""
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def humanize_ago(value: datetime | None, *, now: datetime | None = None) -> str:
    """Return a friendly string such as '3 hours ago' or 'just now'."""
    if not value:
        return ""
    now = now or utcnow()
    seconds = int((now - value).total_seconds())
    if seconds < 60:
        return "just now"

    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24
    if minutes < 60:
        amount, label = minutes, "minute"
    elif hours < 24:
        amount, label = hours, "hour"
    elif days < 7:
        amount, label = days, "day"
    elif days < 30:
        amount, label = days // 7, "week"
    elif days < 365:
        amount, label = days // 30, "month"
    else:
        amount, label = days // 365, "year"

    if amount != 1:
        label = f"{label}s"
    return f"{amount} {label} ago"


def was_recently_updated(
    updated_at: datetime | None,
    created_at: datetime | None,
    *,
    now: datetime | None = None,
) -> bool:
    """Return True when a record was edited after creation within the last week."""
    if not updated_at or not created_at:
        return False
    if updated_at <= created_at + EDIT_DETECTION_BUFFER:
        return False
    now = now or utcnow()
    return now - updated_at < RECENT_UPDATE_WINDOW
