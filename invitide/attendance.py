"""RSVP and attendance reconciliation.

Each (event, identity) pair is either ``NOT_ATTENDING`` or ``ATTENDING``; a
row in ``event_attendees`` is what makes it the latter. The database's
unique constraint on the pair keeps that at most one row, so toggles flip
and host check-ins are idempotent.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from . import gateway
from .auth import Identity, require_identity
from .codes import parse_scanned_payload
from .errors import InvalidInput, NotAuthorized, NotFound
from .events import get_event
from .records import EventRecord
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")


class AttendanceState(str, enum.Enum):
    NOT_ATTENDING = "not_attending"
    ATTENDING = "attending"


@dataclass(frozen=True)
class Attendee:
    user_id: str
    display_name: str
    joined_at: datetime
    checked_in_at: datetime | None = None

    @property
    def checked_in(self) -> bool:
        return self.checked_in_at is not None


@dataclass(frozen=True)
class CheckInResult:
    event_id: str
    attendee: Attendee
    created: bool
    already_checked_in: bool

    @property
    def message(self) -> str:
        if self.already_checked_in:
            return f"{self.attendee.display_name} was already checked in."
        return f"{self.attendee.display_name} has been checked in!"


def _event(session: Session, event: EventRecord | str) -> EventRecord:
    if isinstance(event, EventRecord):
        return event
    return get_event(session, event)


def _require_host(event: EventRecord, caller: Identity | None, action: str) -> Identity:
    caller = require_identity(caller)
    if not event.is_owned_by(caller.id):
        logger.warning(
            "User %s denied %s on event %s (host %s)",
            caller.id,
            action,
            event.id,
            event.owner_id,
        )
        raise NotAuthorized(f"Only the host can {action}")
    return caller


def attendance_state(
    session: Session, event: EventRecord | str, identity: Identity | None
) -> AttendanceState:
    if identity is None:
        return AttendanceState.NOT_ATTENDING
    event_id = event.id if isinstance(event, EventRecord) else event
    record = gateway.fetch_attendance(session, event_id, identity.id)
    return AttendanceState.ATTENDING if record else AttendanceState.NOT_ATTENDING


def toggle_attendance(
    session: Session, event: EventRecord | str, identity: Identity | None
) -> AttendanceState:
    """Flip the caller's RSVP and return the new state."""
    identity = require_identity(identity)
    event = _event(session, event)
    if event.is_owned_by(identity.id):
        raise InvalidInput("Hosts don't RSVP to their own events")
    current = attendance_state(session, event, identity)
    if current is AttendanceState.ATTENDING:
        gateway.delete_attendance(session, event.id, identity.id)
        logger.info("User %s cancelled RSVP for event %s", identity.id, event.id)
        return AttendanceState.NOT_ATTENDING
    gateway.insert_attendance(session, event_id=event.id, user_id=identity.id)
    logger.info("User %s RSVP'd to event %s", identity.id, event.id)
    return AttendanceState.ATTENDING


def list_attendees(
    session: Session, event: EventRecord | str, caller: Identity | None
) -> list[Attendee]:
    """Return the host-only roster, resolving display names in a second pass."""
    event = _event(session, event)
    _require_host(event, caller, "view the guest list")
    relations = gateway.fetch_attendance_for_event(session, event.id)
    profiles = {
        profile.id: profile
        for profile in gateway.fetch_profiles(session, (r.user_id for r in relations))
    }
    attendees: list[Attendee] = []
    for relation in relations:
        profile = profiles.get(relation.user_id)
        if profile is None:
            logger.debug(
                "Omitting attendee %s of event %s: no profile",
                relation.user_id,
                event.id,
            )
            continue
        attendees.append(
            Attendee(
                user_id=relation.user_id,
                display_name=profile.display_name,
                joined_at=relation.created_at,
                checked_in_at=relation.checked_in_at,
            )
        )
    return attendees


def check_in(
    session: Session,
    event: EventRecord | str,
    scanned_payload: str | bytes | dict[str, Any] | None,
    caller: Identity | None,
) -> CheckInResult:
    """Record a host-scanned guest as attending and checked in."""
    event = _event(session, event)
    _require_host(event, caller, "check guests in")
    guest_id = parse_scanned_payload(scanned_payload)
    if event.is_owned_by(guest_id):
        raise InvalidInput("Hosts don't check in to their own events")
    profile = gateway.fetch_profile(session, guest_id)
    if profile is None:
        raise NotFound("No guest matches that code")

    now = utcnow()
    record, created = gateway.insert_attendance(
        session, event_id=event.id, user_id=guest_id, checked_in_at=now
    )
    already_checked_in = not created and record.checked_in_at is not None
    if not created and record.checked_in_at is None:
        record = gateway.mark_checked_in(session, record.id, when=now)
    logger.info(
        "Guest %s checked in to event %s (new RSVP: %s, repeat scan: %s)",
        guest_id,
        event.id,
        created,
        already_checked_in,
    )
    return CheckInResult(
        event_id=event.id,
        attendee=Attendee(
            user_id=guest_id,
            display_name=profile.display_name,
            joined_at=record.created_at,
            checked_in_at=record.checked_in_at,
        ),
        created=created,
        already_checked_in=already_checked_in,
    )
