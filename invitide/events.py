"""Event record manager: create, list, fetch and delete events."""

from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Iterable

from sqlalchemy.orm import Session

from . import gateway
from .auth import Identity, require_identity
from .errors import InvalidInput, NotAuthorized, NotFound
from .records import EventRecord
from .utils import clean_text, combine_date_time

logger = logging.getLogger("uvicorn.error")


def _parse_date(raw: date | str | None) -> date:
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    cleaned = clean_text(raw)
    if not cleaned:
        raise InvalidInput("Event date is required")
    try:
        return date.fromisoformat(cleaned)
    except ValueError as exc:
        raise InvalidInput("Event date must look like YYYY-MM-DD") from exc


def _parse_time(raw: time | str | None) -> time | None:
    if raw is None or isinstance(raw, time):
        return raw
    cleaned = clean_text(raw)
    if not cleaned:
        return None
    try:
        return time.fromisoformat(cleaned)
    except ValueError as exc:
        raise InvalidInput("Event time must look like HH:MM") from exc


def create_event(
    session: Session,
    identity: Identity | None,
    *,
    name: str | None,
    date: date | str | None,
    location: str | None,
    time: time | str | None = None,
    description: str | None = None,
    image_url: str | None = None,
) -> EventRecord:
    """Create an event owned by ``identity``; time defaults to midnight."""
    identity = require_identity(identity)
    cleaned_name = clean_text(name)
    cleaned_location = clean_text(location)
    if not cleaned_name:
        raise InvalidInput("Event name is required")
    if not cleaned_location:
        raise InvalidInput("Event location is required")
    starts_at = combine_date_time(_parse_date(date), _parse_time(time))
    event = gateway.insert_event(
        session,
        name=cleaned_name,
        description=clean_text(description),
        starts_at=starts_at,
        location=cleaned_location,
        image_url=clean_text(image_url),
        owner_id=identity.id,
    )
    logger.info("Event %s (%s) created by %s", event.id, event.name, identity.id)
    return event


def matches_query(event: EventRecord, query: str | None) -> bool:
    """Case-insensitive substring match over name, description and location."""
    needle = (query or "").strip().lower()
    if not needle:
        return True
    haystacks = (event.name, event.description or "", event.location)
    return any(needle in value.lower() for value in haystacks)


def filter_events(events: Iterable[EventRecord], query: str | None) -> list[EventRecord]:
    return [event for event in events if matches_query(event, query)]


def list_events(
    session: Session,
    *,
    query: str | None = None,
    owner: Identity | None = None,
) -> list[EventRecord]:
    """Fetch every event (optionally one owner's) and filter locally."""
    events = gateway.fetch_events(
        session, owner_id=owner.id if owner is not None else None
    )
    return filter_events(events, query)


def list_attending(
    session: Session, identity: Identity | None, *, query: str | None = None
) -> list[EventRecord]:
    identity = require_identity(identity)
    event_ids = gateway.fetch_attending_event_ids(session, identity.id)
    return filter_events(gateway.fetch_events(session, ids=event_ids), query)


def get_event(session: Session, event_id: str) -> EventRecord:
    event = gateway.fetch_event(session, (event_id or "").strip())
    if event is None:
        raise NotFound("Event not found")
    return event


def delete_event(session: Session, event_id: str, identity: Identity | None) -> None:
    """Delete an event and its attendance relations in one transaction.

    The caller's session transaction covers both statements; relations are
    removed first so a failure never leaves attendees pointing at nothing.
    """
    identity = require_identity(identity)
    event = get_event(session, event_id)
    if not event.is_owned_by(identity.id):
        logger.warning(
            "User %s tried to delete event %s owned by %s",
            identity.id,
            event.id,
            event.owner_id,
        )
        raise NotAuthorized("Only the host can delete this event")
    removed = gateway.delete_attendance_for_event(session, event.id)
    gateway.delete_event(session, event.id)
    logger.info(
        "Event %s deleted by host %s (%d attendance rows removed)",
        event.id,
        identity.id,
        removed,
    )
