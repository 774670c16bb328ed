"""FastAPI application for Invitide."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path
from typing import Any
from urllib.parse import quote
import tomllib

from fastapi import Body, Depends, FastAPI, Form, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from . import attendance, events, profiles
from .attendance import AttendanceState, Attendee, CheckInResult
from .auth import Identity, require_identity, sign_in_with_password, sign_out, sign_up
from .codes import identity_payload, render_identity_code
from .config import settings
from .database import get_db
from .errors import AuthenticationRequired, InvalidInput, InvitideError
from .passes import PASS_CONTENT_TYPE, PASS_FILENAME, PassDetails, generate_pass
from .records import EventRecord, ProfileRecord
from .scheduler import start_scheduler, stop_scheduler
from .storage import init_db
from .web import (
    SESSION_TOKEN_KEY,
    current_identity,
    redirect_with_message,
    register_web_routes,
    render,
    request_token,
    templates,
)

# Use uvicorn's error logger so messages get the level prefix in the default log
# format (needed for downstream filtering like Loki).
logger = logging.getLogger("uvicorn.error")


def _no_cache(response: Response) -> Response:
    """Prevent clients from caching dynamic pages so fresh data is shown."""
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
    response.headers["Pragma"] = "no-cache"
    response.headers["Expires"] = "0"
    return response


def _load_app_version() -> str:
    """Return the current package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("invitide")
    except PackageNotFoundError:
        pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            data = tomllib.loads(pyproject_path.read_text())
            project = data.get("project") or {}
            return str(project.get("version") or "dev")
    return "dev"


APP_VERSION = _load_app_version()
templates.env.globals["app_version"] = APP_VERSION


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    start_scheduler()
    try:
        yield
    finally:
        stop_scheduler()


app = FastAPI(title="Invitide", version=APP_VERSION, lifespan=lifespan)
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.session_secret,
    session_cookie="invitide_session",
    max_age=settings.session_ttl_hours * 3600,
    same_site="lax",
)
static_dir = Path(__file__).parent / "static"
app.mount("/static", StaticFiles(directory=str(static_dir)), name="static")

register_web_routes(app)


def _wants_json(request: Request) -> bool:
    accept = (request.headers.get("accept") or "").lower()
    return request.url.path.startswith("/api/") or (
        "application/json" in accept and "text/html" not in accept
    )


def _render_error(request: Request, status_code: int, message: str | None):
    return render(
        request,
        "error.html",
        {
            "status_code": status_code,
            "message": None,
            "error_message": message or "Something went wrong.",
        },
        status_code=status_code,
    )


@app.exception_handler(InvitideError)
async def invitide_error_handler(request: Request, exc: InvitideError):
    """Map service errors to a login redirect, JSON, or an error page."""
    if _wants_json(request):
        return JSONResponse({"detail": exc.message}, status_code=exc.status_code)
    if isinstance(exc, AuthenticationRequired):
        target = request.url.path
        if request.method != "GET":
            target = request.headers.get("referer") or "/"
            if "://" in target:
                target = "/"
        return RedirectResponse(url=f"/login?next={quote(target)}", status_code=303)
    return _render_error(request, exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render HTTP errors as friendly pages unless JSON was requested."""
    if _wants_json(request):
        return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)
    detail = exc.detail if isinstance(exc.detail, str) else "Something went wrong."
    return _render_error(request, exc.status_code, detail)


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    lower = raw.lower()
    if "database is locked" in lower:
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
    if _wants_json(request):
        return JSONResponse({"detail": detail}, status_code=status)
    return _render_error(request, status, detail)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    if _wants_json(request):
        return JSONResponse({"detail": exc.errors()}, status_code=422)
    return _render_error(
        request,
        422,
        "Some of the fields were invalid. Please double-check and try again.",
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    if _wants_json(request):
        return JSONResponse({"detail": "Internal server error"}, status_code=500)
    return _render_error(
        request,
        500,
        "We hit a snag while processing that request. Please try again.",
    )


def _serialize_profile(profile: ProfileRecord):
    return {
        "id": profile.id,
        "display_name": profile.display_name,
        "email": profile.email,
        "created_at": profile.created_at.isoformat(),
    }


def _serialize_event(event: EventRecord, *, attendance_state: AttendanceState | None = None):
    payload = {
        "id": event.id,
        "name": event.name,
        "description": event.description,
        "date": event.starts_at.isoformat(),
        "location": event.location,
        "image_url": event.image_url,
        "owner_id": event.owner_id,
        "owner_display_name": event.owner_display_name,
        "created_at": event.created_at.isoformat(),
        "links": {"public": f"/event/{event.id}"},
    }
    if attendance_state is not None:
        payload["attendance"] = attendance_state.value
    return payload


def _serialize_attendee(attendee: Attendee):
    return {
        "user_id": attendee.user_id,
        "display_name": attendee.display_name,
        "joined_at": attendee.joined_at.isoformat(),
        "checked_in": attendee.checked_in,
        "checked_in_at": attendee.checked_in_at.isoformat()
        if attendee.checked_in_at
        else None,
    }


def _serialize_check_in(result: CheckInResult):
    return {
        "event_id": result.event_id,
        "attendee": _serialize_attendee(result.attendee),
        "created": result.created,
        "already_checked_in": result.already_checked_in,
        "message": result.message,
    }


def _pass_response(content: bytes) -> Response:
    return Response(
        content=content,
        media_type=PASS_CONTENT_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{PASS_FILENAME}"'},
    )


# -------- pages --------


@app.get("/")
def homepage(request: Request, identity: Identity | None = Depends(current_identity)):
    return render(request, "home.html")


@app.get("/join")
def join_event(
    request: Request,
    code: str = Query(""),
    identity: Identity | None = Depends(current_identity),
    db: Session = Depends(get_db),
):
    """Resolve an invite code (an event id) to its event page."""
    cleaned = code.strip()
    if not cleaned:
        return redirect_with_message("/", "Enter an invite code.", "alert-danger")
    try:
        event = events.get_event(db, cleaned)
    except InvitideError:
        return render(
            request,
            "home.html",
            {
                "invite_code": cleaned,
                "message": "No event matches that invite code.",
                "message_class": "alert-danger",
            },
            status_code=404,
        )
    return RedirectResponse(url=f"/event/{event.id}", status_code=303)


@app.get("/create-event")
def event_create_page(
    request: Request, identity: Identity | None = Depends(current_identity)
):
    require_identity(identity)
    return render(request, "event_create.html", {"form": {}})


@app.post("/create-event")
def submit_event(
    request: Request,
    name: str = Form(""),
    date: str = Form(""),
    time: str | None = Form(None),
    location: str = Form(""),
    description: str | None = Form(None),
    image_url: str | None = Form(None),
    identity: Identity | None = Depends(current_identity),
    db: Session = Depends(get_db),
):
    require_identity(identity)
    form = {
        "name": name,
        "date": date,
        "time": time or "",
        "location": location,
        "description": description or "",
        "image_url": image_url or "",
    }
    try:
        event = events.create_event(
            db,
            identity,
            name=name,
            date=date,
            time=time,
            location=location,
            description=description,
            image_url=image_url,
        )
    except InvalidInput as exc:
        return render(
            request,
            "event_create.html",
            {"form": form, "message": exc.message, "message_class": "alert-danger"},
            status_code=400,
        )
    return redirect_with_message(
        f"/event/{event.id}", "Event created! Share the invite code.", "alert-success"
    )


@app.get("/event/{event_id}")
def event_page(
    event_id: str,
    request: Request,
    identity: Identity | None = Depends(current_identity),
    db: Session = Depends(get_db),
):
    event = events.get_event(db, event_id)
    is_host = event.is_owned_by(identity.id if identity else None)
    state = attendance.attendance_state(db, event, identity)
    roster = attendance.list_attendees(db, event, identity) if is_host else []
    response = render(
        request,
        "event.html",
        {
            "event": event,
            "is_host": is_host,
            "is_attending": state is AttendanceState.ATTENDING,
            "attendees": roster,
        },
    )
    return _no_cache(response)


@app.post("/event/{event_id}/rsvp")
def toggle_rsvp(
    event_id: str,
    identity: Identity | None = Depends(current_identity),
    db: Session = Depends(get_db),
):
    state = attendance.toggle_attendance(db, event_id, identity)
    message = (
        "You're on the guest list!"
        if state is AttendanceState.ATTENDING
        else "Your RSVP has been cancelled."
    )
    return redirect_with_message(f"/event/{event_id}", message, "alert-success")


@app.post("/event/{event_id}/delete")
def delete_event_page(
    event_id: str,
    request: Request,
    identity: Identity | None = Depends(current_identity),
    db: Session = Depends(get_db),
):
    events.delete_event(db, event_id, identity)
    return render(request, "event_deleted.html", {"event_id": event_id})


@app.get("/event/{event_id}/checkin")
def checkin_page(
    event_id: str,
    request: Request,
    guest_id: str | None = Query(None, alias="guestId"),
    identity: Identity | None = Depends(current_identity),
    db: Session = Depends(get_db),
):
    """Host check-in screen; ``?guestId=`` checks that guest in directly."""
    require_identity(identity)
    event = events.get_event(db, event_id)
    if guest_id and guest_id.strip():
        result = attendance.check_in(
            db, event, {"user_id": guest_id.strip()}, identity
        )
        return redirect_with_message(
            f"/event/{event.id}/checkin", result.message, "alert-success"
        )
    roster = attendance.list_attendees(db, event, identity)
    return _no_cache(
        render(request, "checkin.html", {"event": event, "attendees": roster})
    )


@app.post("/event/{event_id}/checkin")
def checkin_submit(
    event_id: str,
    request: Request,
    payload: str = Form(""),
    guest_id: str = Form(""),
    identity: Identity | None = Depends(current_identity),
    db: Session = Depends(get_db),
):
    """Check a guest in from the scanned payload, or a typed guest id."""
    require_identity(identity)
    event = events.get_event(db, event_id)
    scanned: str | dict[str, Any] = payload
    if not payload.strip() and guest_id.strip():
        scanned = {"user_id": guest_id.strip()}
    try:
        result = attendance.check_in(db, event, scanned, identity)
    except InvalidInput as exc:
        roster = attendance.list_attendees(db, event, identity)
        return render(
            request,
            "checkin.html",
            {
                "event": event,
                "attendees": roster,
                "message": exc.message,
                "message_class": "alert-danger",
            },
            status_code=exc.status_code,
        )
    return redirect_with_message(
        f"/event/{event.id}/checkin", result.message, "alert-success"
    )


@app.get("/event/{event_id}/pass")
def event_pass(
    event_id: str,
    identity: Identity | None = Depends(current_identity),
    db: Session = Depends(get_db),
):
    event = events.get_event(db, event_id)
    details = PassDetails(
        event_name=event.name,
        event_date=event.starts_at.date().isoformat(),
        event_location=event.location,
    )
    content = generate_pass(
        details,
        barcode_message=identity_payload(identity) if identity else None,
    )
    return _pass_response(content)


@app.get("/find-events")
def find_events_page(
    request: Request,
    q: str | None = Query(None),
    identity: Identity | None = Depends(current_identity),
    db: Session = Depends(get_db),
):
    results = events.list_events(db, query=q)
    return render(request, "find_events.html", {"events": results, "query": q or ""})


@app.get("/my-events")
def my_events_page(
    request: Request,
    q: str | None = Query(None),
    identity: Identity | None = Depends(current_identity),
    db: Session = Depends(get_db),
):
    identity = require_identity(identity)
    hosting = events.list_events(db, query=q, owner=identity)
    attending = events.list_attending(db, identity, query=q)
    return render(
        request,
        "my_events.html",
        {"hosting": hosting, "attending": attending, "query": q or ""},
    )


@app.get("/profile")
def profile_page(
    request: Request,
    identity: Identity | None = Depends(current_identity),
    db: Session = Depends(get_db),
):
    profile = profiles.get_profile(db, identity)
    return render(request, "profile.html", {"profile": profile})


@app.post("/profile")
def profile_submit(
    request: Request,
    display_name: str = Form(""),
    identity: Identity | None = Depends(current_identity),
    db: Session = Depends(get_db),
):
    try:
        profiles.update_display_name(db, identity, display_name)
    except InvalidInput as exc:
        profile = profiles.get_profile(db, identity)
        return render(
            request,
            "profile.html",
            {
                "profile": profile,
                "message": exc.message,
                "message_class": "alert-danger",
            },
            status_code=exc.status_code,
        )
    return redirect_with_message("/profile", "Profile updated.", "alert-success")


@app.get("/profile/code.png")
def profile_code(identity: Identity | None = Depends(current_identity)):
    identity = require_identity(identity)
    response = Response(content=render_identity_code(identity), media_type="image/png")
    return _no_cache(response)


# -------- JSON API (v1) --------


class SignUpPayload(BaseModel):
    email: str
    password: str
    display_name: str


class SignInPayload(BaseModel):
    email: str
    password: str


class ProfileUpdatePayload(BaseModel):
    display_name: str


class EventCreatePayload(BaseModel):
    name: str | None = None
    date: str | None = None
    time: str | None = None
    location: str | None = None
    description: str | None = None
    image_url: str | None = None


@app.post("/api/v1/auth/signup", status_code=201)
def api_sign_up(payload: SignUpPayload, db: Session = Depends(get_db)):
    profile = sign_up(
        db,
        email=payload.email,
        password=payload.password,
        display_name=payload.display_name,
    )
    return {"profile": _serialize_profile(profile)}


@app.post("/api/v1/auth/signin")
def api_sign_in(payload: SignInPayload, db: Session = Depends(get_db)):
    signed_in = sign_in_with_password(db, email=payload.email, password=payload.password)
    return {
        "token": signed_in.token,
        "token_type": "bearer",
        "user": {"id": signed_in.identity.id, "email": signed_in.identity.email},
        "profile": _serialize_profile(signed_in.profile),
    }


@app.post("/api/v1/auth/signout", status_code=204)
def api_sign_out(request: Request, db: Session = Depends(get_db)):
    sign_out(db, request_token(request))
    request.session.pop(SESSION_TOKEN_KEY, None)
    return Response(status_code=204)


@app.get("/api/v1/me")
def api_me(
    identity: Identity | None = Depends(current_identity),
    db: Session = Depends(get_db),
):
    profile = profiles.get_profile(db, identity)
    return {
        "user": {"id": identity.id, "email": identity.email},
        "profile": _serialize_profile(profile),
    }


@app.patch("/api/v1/me")
def api_update_me(
    payload: ProfileUpdatePayload,
    identity: Identity | None = Depends(current_identity),
    db: Session = Depends(get_db),
):
    profile = profiles.update_display_name(db, identity, payload.display_name)
    return {"profile": _serialize_profile(profile)}


@app.get("/api/v1/me/events")
def api_my_events(
    q: str | None = Query(None),
    identity: Identity | None = Depends(current_identity),
    db: Session = Depends(get_db),
):
    identity = require_identity(identity)
    return {
        "hosting": [
            _serialize_event(e) for e in events.list_events(db, query=q, owner=identity)
        ],
        "attending": [
            _serialize_event(e) for e in events.list_attending(db, identity, query=q)
        ],
    }


@app.get("/api/v1/me/code")
def api_my_code(identity: Identity | None = Depends(current_identity)):
    identity = require_identity(identity)
    return {"payload": identity_payload(identity)}


@app.get("/api/v1/events")
def api_list_events(
    q: str | None = Query(None),
    mine: bool = Query(False),
    identity: Identity | None = Depends(current_identity),
    db: Session = Depends(get_db),
):
    owner = require_identity(identity) if mine else None
    results = events.list_events(db, query=q, owner=owner)
    return {"events": [_serialize_event(e) for e in results], "query": q or ""}


@app.post("/api/v1/events", status_code=201)
def api_create_event(
    payload: EventCreatePayload,
    identity: Identity | None = Depends(current_identity),
    db: Session = Depends(get_db),
):
    event = events.create_event(
        db,
        identity,
        name=payload.name,
        date=payload.date,
        time=payload.time,
        location=payload.location,
        description=payload.description,
        image_url=payload.image_url,
    )
    return {"event": _serialize_event(event)}


@app.get("/api/v1/events/{event_id}")
def api_get_event(
    event_id: str,
    identity: Identity | None = Depends(current_identity),
    db: Session = Depends(get_db),
):
    event = events.get_event(db, event_id)
    state = attendance.attendance_state(db, event, identity) if identity else None
    return {"event": _serialize_event(event, attendance_state=state)}


@app.delete("/api/v1/events/{event_id}", status_code=204)
def api_delete_event(
    event_id: str,
    identity: Identity | None = Depends(current_identity),
    db: Session = Depends(get_db),
):
    events.delete_event(db, event_id, identity)
    return Response(status_code=204)


@app.get("/api/v1/events/{event_id}/rsvp")
def api_rsvp_state(
    event_id: str,
    identity: Identity | None = Depends(current_identity),
    db: Session = Depends(get_db),
):
    identity = require_identity(identity)
    event = events.get_event(db, event_id)
    state = attendance.attendance_state(db, event, identity)
    return {"event_id": event.id, "attendance": state.value}


@app.post("/api/v1/events/{event_id}/rsvp")
def api_toggle_rsvp(
    event_id: str,
    identity: Identity | None = Depends(current_identity),
    db: Session = Depends(get_db),
):
    state = attendance.toggle_attendance(db, event_id, identity)
    return {"event_id": event_id, "attendance": state.value}


@app.get("/api/v1/events/{event_id}/attendees")
def api_list_attendees(
    event_id: str,
    identity: Identity | None = Depends(current_identity),
    db: Session = Depends(get_db),
):
    roster = attendance.list_attendees(db, event_id, identity)
    return {
        "event_id": event_id,
        "attendees": [_serialize_attendee(a) for a in roster],
    }


@app.post("/api/v1/events/{event_id}/checkin")
def api_check_in(
    event_id: str,
    payload: Any = Body(None),
    identity: Identity | None = Depends(current_identity),
    db: Session = Depends(get_db),
):
    """Accept ``{"payload": "<scanned text>"}`` or the decoded object itself."""
    scanned = payload
    if isinstance(payload, dict) and "payload" in payload:
        scanned = payload["payload"]
    result = attendance.check_in(db, event_id, scanned, identity)
    return _serialize_check_in(result)


@app.post("/api/v1/passes")
def api_generate_pass(payload: Any = Body(None)):
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Missing event data")
    details = PassDetails.from_payload(payload)
    return _pass_response(generate_pass(details))
