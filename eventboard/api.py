"""FastAPI application for eventboard."""

from __future__ import annotations

import datetime as dt
import logging
import tomllib
from collections.abc import Sequence
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version
from pathlib import Path

from fastapi import Depends, FastAPI, File, Query, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import crud, lifecycle
from .config import settings
from .database import SessionLocal
from .errors import AuthenticationRequired, EventboardError, NotFound, PermissionDenied
from .models import RSVP, Event, Profile
from .rsvps import (
    GOING,
    INTERESTED,
    active_types_for_user,
    get_active_rsvp,
    outcome_message,
    rsvp_counts,
    set_rsvp,
    summarize_counts,
)
from .storage import init_db, read_root_token
from .uploads import save_avatar, save_event_image
from .utils import humanize_ago, was_recently_updated

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")


def _load_app_version() -> str:
    """Return the installed package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("eventboard")
    except PackageNotFoundError:
        pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            data = tomllib.loads(pyproject_path.read_text())
            project = data.get("project") or {}
            return str(project.get("version") or "dev")
    return "dev"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    yield


app = FastAPI(title="eventboard", version=APP_VERSION, lifespan=lifespan)
app.mount(
    settings.media_url_prefix.rstrip("/") or "/media",
    StaticFiles(directory=str(settings.uploads_dir), check_dir=False),
    name="media",
)


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# -------- Error handling --------


@app.exception_handler(EventboardError)
async def eventboard_error_handler(request: Request, exc: EventboardError):
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    if "database is locked" in raw.lower():
        logger.error(
            "SQLite database is locked while handling %s %s",
            request.method,
            request.url.path,
        )
        detail = "The database is busy at the moment. Please wait a few seconds and try again."
        status = 503
    else:
        logger.error(
            "Operational database error on %s %s: %s",
            request.method,
            request.url.path,
            raw,
        )
        detail = "We hit a database issue. Please try again."
        status = 500
    return JSONResponse({"detail": detail}, status_code=status)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse({"detail": jsonable_encoder(exc.errors())}, status_code=422)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    return JSONResponse({"detail": "Internal server error"}, status_code=500)


# -------- Authentication helpers --------


def _get_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("authorization") or ""
    if not auth_header.lower().startswith("bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def _is_root_token(db: Session, token: str | None) -> bool:
    if not token:
        return False
    root_token = read_root_token(db)
    return bool(root_token and token == root_token)


def _current_user(request: Request, db: Session) -> Profile | None:
    return crud.get_profile_by_session_token(db, _get_bearer_token(request))


def _require_user(request: Request, db: Session) -> Profile:
    profile = _current_user(request, db)
    if profile is None:
        raise AuthenticationRequired()
    return profile


def _require_venue(request: Request, db: Session) -> Profile:
    profile = _require_user(request, db)
    crud.require_venue(profile)
    return profile


def _require_admin(request: Request, db: Session) -> Profile | None:
    """Accept an admin profile's session or the root admin token."""
    token = _get_bearer_token(request)
    if not token:
        raise AuthenticationRequired("Missing bearer token")
    if _is_root_token(db, token):
        return None
    profile = crud.get_profile_by_session_token(db, token)
    if profile is None:
        raise AuthenticationRequired()
    if not profile.is_admin:
        raise PermissionDenied("Admin access required")
    return profile


def _viewer_is_admin(request: Request, db: Session, viewer: Profile | None) -> bool:
    if viewer is not None and viewer.is_admin:
        return True
    return _is_root_token(db, _get_bearer_token(request))


# -------- Serializers --------


def _serialize_profile(profile: Profile, *, include_private: bool = False) -> dict:
    payload = {
        "id": profile.id,
        "user_type": profile.user_type,
        "display_name": profile.display_name,
        "bio": profile.bio,
        "location": profile.location,
        "avatar_url": profile.avatar_url,
        "created_at": profile.created_at.isoformat(),
    }
    if profile.is_venue:
        payload["venue"] = {
            "name": profile.venue_name,
            "description": profile.venue_description,
            "location": profile.venue_location,
            "phone": profile.venue_phone,
            "website": profile.venue_website,
        }
    if include_private:
        payload["email"] = profile.email
        payload["phone"] = profile.phone
        payload["is_admin"] = profile.is_admin
    return payload


def _serialize_event(
    event: Event,
    *,
    counts: dict[str, int] | None = None,
    my_rsvp: str | None = None,
    include_moderation: bool = False,
) -> dict:
    counts = counts or {INTERESTED: 0, GOING: 0}
    payload = {
        "id": event.id,
        "venue_user_id": event.venue_user_id,
        "venue_name": event.venue_name,
        "title": event.title,
        "description": event.description,
        "category": event.category,
        "date": event.date.isoformat(),
        "time": event.time.strftime("%H:%M"),
        "location": event.location,
        "price": event.price,
        "is_free": not event.price,
        "capacity": event.capacity,
        "image_url": event.image_url,
        "contact_whatsapp": event.contact_whatsapp,
        "contact_email": event.contact_email,
        "booking_link": event.booking_link,
        "status": event.status,
        "cancelled_at": event.cancelled_at.isoformat() if event.cancelled_at else None,
        "created_at": event.created_at.isoformat(),
        "updated_at": event.updated_at.isoformat(),
        "recently_updated": was_recently_updated(event.updated_at, event.created_at),
        "updated_ago": humanize_ago(event.updated_at),
        "rsvp_counts": summarize_counts(event, counts[INTERESTED], counts[GOING]),
        "my_rsvp": my_rsvp,
    }
    if include_moderation:
        payload["moderation"] = {
            "moderation_status": event.moderation_status,
            "rejection_reason": event.rejection_reason,
            "cancellation_requested": event.cancellation_requested,
            "cancellation_reason": event.cancellation_reason,
            "cancellation_requested_at": event.cancellation_requested_at.isoformat()
            if event.cancellation_requested_at
            else None,
            "cancellation_approved_by_admin": event.cancellation_approved_by_admin,
            "editable": lifecycle.is_editable(event),
        }
    return payload


def _serialize_rsvp(rsvp: RSVP) -> dict:
    return {
        "id": rsvp.id,
        "event_id": rsvp.event_id,
        "user_id": rsvp.user_id,
        "rsvp_type": rsvp.rsvp_type,
        "status": rsvp.status,
        "created_at": rsvp.created_at.isoformat(),
        "updated_at": rsvp.updated_at.isoformat(),
    }


def _serialize_events(
    db: Session,
    events: Sequence[Event],
    *,
    viewer: Profile | None = None,
    include_moderation: bool = False,
) -> list[dict]:
    counts = crud.event_counts(db, events)
    mine = (
        active_types_for_user(db, user_id=viewer.id, event_ids=counts.keys())
        if viewer is not None
        else {}
    )
    return [
        _serialize_event(
            event,
            counts=counts[event.id],
            my_rsvp=mine.get(event.id),
            include_moderation=include_moderation,
        )
        for event in events
    ]


def _event_payload(
    db: Session, event: Event, *, viewer: Profile | None, include_moderation: bool
) -> dict:
    return _serialize_events(
        db, [event], viewer=viewer, include_moderation=include_moderation
    )[0]


# -------- Payloads --------


class SignupPayload(BaseModel):
    email: str
    password: str
    display_name: str | None = None


class VenueSignupPayload(BaseModel):
    email: str
    password: str
    venue_name: str
    venue_location: str
    venue_description: str | None = None
    venue_phone: str | None = None
    venue_website: str | None = None
    display_name: str | None = None


class LoginPayload(BaseModel):
    email: str
    password: str


class EventCreatePayload(BaseModel):
    title: str
    description: str
    category: str
    date: dt.date
    time: dt.time
    location: str
    price: float | None = Field(None, description="Ticket price; 0 for free events")
    capacity: int | None = Field(None, description="Maximum number of going RSVPs")
    image_url: str | None = None
    contact_whatsapp: str | None = None
    contact_email: str | None = None
    booking_link: str | None = None


class EventUpdatePayload(BaseModel):
    title: str | None = None
    description: str | None = None
    category: str | None = None
    date: dt.date | None = None
    time: dt.time | None = None
    location: str | None = None
    price: float | None = None
    capacity: int | None = None
    image_url: str | None = None
    contact_whatsapp: str | None = None
    contact_email: str | None = None
    booking_link: str | None = None


class ReasonPayload(BaseModel):
    reason: str | None = None


class RSVPPayload(BaseModel):
    rsvp_type: str


class ProfileUpdatePayload(BaseModel):
    display_name: str | None = None
    bio: str | None = None
    location: str | None = None
    phone: str | None = None
    avatar_url: str | None = None


# -------- Health --------


@app.get("/health")
@app.get("/api/v1/health")
def health():
    return {"status": "ok", "version": APP_VERSION}


# -------- Auth --------


def _session_response(profile: Profile, token: str, message: str) -> dict:
    return {
        "token": token,
        "expires_at": profile.session_expires_at.isoformat(),
        "profile": _serialize_profile(profile, include_private=True),
        "message": message,
    }


@app.post("/api/v1/auth/signup", status_code=201)
def api_signup(payload: SignupPayload, db: Session = Depends(get_db)):
    profile = crud.create_profile(
        db,
        email=payload.email,
        password=payload.password,
        display_name=payload.display_name,
    )
    token = crud.start_session(db, profile)
    return _session_response(profile, token, "Account created successfully!")


@app.post("/api/v1/auth/signup/venue", status_code=201)
def api_signup_venue(payload: VenueSignupPayload, db: Session = Depends(get_db)):
    profile = crud.create_profile(
        db,
        email=payload.email,
        password=payload.password,
        user_type="venue",
        display_name=payload.display_name,
        venue_name=payload.venue_name,
        venue_description=payload.venue_description,
        venue_location=payload.venue_location,
        venue_phone=payload.venue_phone,
        venue_website=payload.venue_website,
    )
    token = crud.start_session(db, profile)
    return _session_response(profile, token, "Venue account created successfully!")


@app.post("/api/v1/auth/login")
def api_login(payload: LoginPayload, db: Session = Depends(get_db)):
    profile = crud.authenticate(db, email=payload.email, password=payload.password)
    token = crud.start_session(db, profile)
    return _session_response(profile, token, "Welcome back!")


@app.post("/api/v1/auth/logout")
def api_logout(request: Request, db: Session = Depends(get_db)):
    profile = _require_user(request, db)
    crud.end_session(db, profile)
    return {"message": "Logged out"}


# -------- Events --------


@app.get("/api/v1/events")
def api_list_public_events(
    request: Request,
    q: str | None = Query(None),
    category: str | None = Query(None),
    price: str = Query("all"),
    sort: str = Query("date-asc"),
    page: int = Query(1, ge=1),
    per_page: int = Query(settings.events_per_page, ge=1, le=50),
    db: Session = Depends(get_db),
):
    viewer = _current_user(request, db)
    events, pagination = crud.list_public_events(
        db,
        query=q,
        category=category or None,
        price=price,
        sort=sort,
        page=page,
        per_page=per_page,
    )
    return {
        "events": _serialize_events(db, events, viewer=viewer),
        "pagination": pagination,
        "filters": {"q": q or "", "category": category, "price": price, "sort": sort},
    }


@app.post("/api/v1/events", status_code=201)
def api_create_event(
    payload: EventCreatePayload, request: Request, db: Session = Depends(get_db)
):
    venue = _require_venue(request, db)
    event = crud.create_event(db, venue=venue, **payload.model_dump())
    return {
        "event": _event_payload(db, event, viewer=venue, include_moderation=True),
        "message": "Event submitted for approval!",
    }


def _visible_event(
    request: Request, db: Session, event_id: str, viewer: Profile | None
) -> tuple[Event, bool]:
    """Load an event, hiding unpublished ones from everyone but owner and admins."""
    event = crud.get_event(db, event_id)
    is_admin = _viewer_is_admin(request, db, viewer)
    if not crud.can_view_event(event, viewer, is_admin=is_admin):
        raise NotFound("Event not found")
    return event, is_admin


@app.get("/api/v1/events/{event_id}")
def api_get_event(event_id: str, request: Request, db: Session = Depends(get_db)):
    viewer = _current_user(request, db)
    event, is_admin = _visible_event(request, db, event_id, viewer)
    is_owner = viewer is not None and viewer.id == event.venue_user_id
    return {
        "event": _event_payload(
            db, event, viewer=viewer, include_moderation=is_owner or is_admin
        )
    }


@app.patch("/api/v1/events/{event_id}")
def api_update_event(
    event_id: str,
    payload: EventUpdatePayload,
    request: Request,
    db: Session = Depends(get_db),
):
    editor = _require_user(request, db)
    event = crud.get_event(db, event_id)
    event = crud.update_event(
        db, event, editor=editor, **payload.model_dump(exclude_unset=True)
    )
    return {
        "event": _event_payload(db, event, viewer=editor, include_moderation=True),
        "message": "Event updated successfully!",
    }


@app.post("/api/v1/events/{event_id}/image")
def api_upload_event_image(
    event_id: str,
    request: Request,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
):
    editor = _require_user(request, db)
    event = crud.get_event(db, event_id)
    crud.require_owner(event, editor)
    lifecycle.require_editable(event)
    url = save_event_image(
        data=file.file.read(), content_type=file.content_type, filename=file.filename
    )
    event = crud.update_event(db, event, editor=editor, image_url=url)
    return {"image_url": url, "message": "Event image uploaded"}


@app.post("/api/v1/events/{event_id}/cancellation")
def api_request_cancellation(
    event_id: str,
    payload: ReasonPayload,
    request: Request,
    db: Session = Depends(get_db),
):
    requester = _require_user(request, db)
    event = crud.get_event(db, event_id)
    crud.request_cancellation(db, event, requester=requester, reason=payload.reason)
    return {
        "event": _event_payload(db, event, viewer=requester, include_moderation=True),
        "message": "Cancellation request submitted. An admin will review it shortly.",
    }


# -------- RSVPs --------


@app.post("/api/v1/events/{event_id}/rsvp")
def api_set_rsvp(
    event_id: str,
    payload: RSVPPayload,
    request: Request,
    db: Session = Depends(get_db),
):
    user = _current_user(request, db)
    event, _ = _visible_event(request, db, event_id, user)
    outcome = set_rsvp(db, user=user, event=event, rsvp_type=payload.rsvp_type)
    return {
        "result": outcome.result,
        "rsvp_type": outcome.rsvp_type,
        "rsvp_counts": rsvp_counts(db, event),
        "message": outcome_message(outcome),
    }


@app.get("/api/v1/events/{event_id}/rsvp")
def api_get_own_rsvp(event_id: str, request: Request, db: Session = Depends(get_db)):
    user = _require_user(request, db)
    event, _ = _visible_event(request, db, event_id, user)
    rsvp = get_active_rsvp(db, user_id=user.id, event_id=event.id)
    return {
        "rsvp": _serialize_rsvp(rsvp) if rsvp else None,
        "rsvp_type": rsvp.rsvp_type if rsvp else None,
        "rsvp_counts": rsvp_counts(db, event),
    }


# -------- Admin moderation --------


@app.get("/api/v1/admin/events")
def api_admin_events(request: Request, db: Session = Depends(get_db)):
    _require_admin(request, db)
    buckets = crud.admin_event_buckets(db)
    limit = settings.admin_events_per_page
    return {
        "counts": {name: len(events) for name, events in buckets.items()},
        "events": {
            name: _serialize_events(db, events[:limit], include_moderation=True)
            for name, events in buckets.items()
        },
    }


@app.post("/api/v1/admin/events/{event_id}/approve")
def api_admin_approve(event_id: str, request: Request, db: Session = Depends(get_db)):
    _require_admin(request, db)
    event = crud.approve_event(db, crud.get_event(db, event_id))
    return {
        "event": _event_payload(db, event, viewer=None, include_moderation=True),
        "message": "Event approved",
    }


@app.post("/api/v1/admin/events/{event_id}/reject")
def api_admin_reject(
    event_id: str,
    payload: ReasonPayload,
    request: Request,
    db: Session = Depends(get_db),
):
    _require_admin(request, db)
    event = crud.reject_event(db, crud.get_event(db, event_id), reason=payload.reason)
    return {
        "event": _event_payload(db, event, viewer=None, include_moderation=True),
        "message": "Event rejected",
    }


@app.post("/api/v1/admin/events/{event_id}/cancellation/approve")
def api_admin_approve_cancellation(
    event_id: str, request: Request, db: Session = Depends(get_db)
):
    _require_admin(request, db)
    event = crud.approve_cancellation(db, crud.get_event(db, event_id))
    return {
        "event": _event_payload(db, event, viewer=None, include_moderation=True),
        "message": "Cancellation approved. The event is now marked as cancelled.",
    }


@app.post("/api/v1/admin/events/{event_id}/cancellation/reject")
def api_admin_reject_cancellation(
    event_id: str, request: Request, db: Session = Depends(get_db)
):
    _require_admin(request, db)
    event = crud.reject_cancellation(db, crud.get_event(db, event_id))
    return {
        "event": _event_payload(db, event, viewer=None, include_moderation=True),
        "message": "Cancellation request rejected. The event remains active.",
    }


# -------- Venue dashboard --------


@app.get("/api/v1/dashboard")
def api_dashboard(request: Request, db: Session = Depends(get_db)):
    venue = _require_venue(request, db)
    stats = crud.venue_dashboard(db, venue)
    next_events = stats.pop("next_events")
    return {
        "venue": _serialize_profile(venue, include_private=True),
        "stats": stats,
        "next_events": _serialize_events(
            db, next_events, viewer=venue, include_moderation=True
        ),
    }


@app.get("/api/v1/dashboard/events")
def api_dashboard_events(request: Request, db: Session = Depends(get_db)):
    venue = _require_venue(request, db)
    events = crud.venue_events(db, venue)
    return {
        "events": _serialize_events(db, events, viewer=venue, include_moderation=True)
    }


# -------- Profile --------


@app.get("/api/v1/profile")
def api_get_profile(request: Request, db: Session = Depends(get_db)):
    profile = _require_user(request, db)
    return {
        "profile": _serialize_profile(profile, include_private=True),
        "stats": crud.profile_stats(db, profile),
    }


@app.patch("/api/v1/profile")
def api_update_profile(
    payload: ProfileUpdatePayload, request: Request, db: Session = Depends(get_db)
):
    profile = _require_user(request, db)
    data = payload.model_dump(exclude_unset=True)
    crud.update_profile(
        db,
        profile,
        display_name=data.get("display_name", profile.display_name),
        bio=data.get("bio", profile.bio),
        location=data.get("location", profile.location),
        phone=data.get("phone", profile.phone),
        avatar_url=data.get("avatar_url", profile.avatar_url),
    )
    return {
        "profile": _serialize_profile(profile, include_private=True),
        "message": "Profile updated successfully!",
    }


@app.get("/api/v1/profile/rsvps")
def api_profile_rsvps(
    request: Request,
    when: str = Query("all"),
    db: Session = Depends(get_db),
):
    profile = _require_user(request, db)
    rsvps = crud.user_rsvps(db, profile, when=when)
    events = _serialize_events(db, [r.event for r in rsvps], viewer=profile)
    return {
        "rsvps": [
            {**_serialize_rsvp(rsvp), "event": event}
            for rsvp, event in zip(rsvps, events)
        ],
        "when": when,
    }


@app.post("/api/v1/profile/avatar")
def api_upload_avatar(
    request: Request,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
):
    profile = _require_user(request, db)
    url = save_avatar(
        user_id=profile.id,
        data=file.file.read(),
        content_type=file.content_type,
        filename=file.filename,
    )
    profile.avatar_url = url
    db.add(profile)
    return {"avatar_url": url, "message": "Profile picture uploaded"}
