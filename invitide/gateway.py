"""Data gateway: the only module that talks to the database.

Every read returns validated records from :mod:`invitide.records`; rows that
fail validation raise :class:`~invitide.errors.MalformedRecord` instead of
leaking loosely-shaped data to the managers.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, Sequence, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import MalformedRecord
from .models import AuthSession, Event, EventAttendee, Profile, User
from .records import (
    AttendanceRecord,
    EventRecord,
    ProfileRecord,
    SessionRecord,
    UserRecord,
)
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")

RecordT = TypeVar("RecordT", bound=BaseModel)


def _validate(model: type[RecordT], row: Any, **extra: Any) -> RecordT:
    try:
        if extra:
            data = {
                name: getattr(row, name)
                for name in model.model_fields
                if name not in extra and hasattr(row, name)
            }
            return model.model_validate({**data, **extra})
        return model.model_validate(row)
    except ValidationError as exc:
        logger.warning(
            "Rejected malformed %s row %s: %s",
            model.__name__,
            getattr(row, "id", getattr(row, "token", "?")),
            exc.errors(include_url=False),
        )
        raise MalformedRecord() from exc


# -------- users & sessions --------


def fetch_user_by_email(session: Session, email: str) -> UserRecord | None:
    row = session.scalars(select(User).where(User.email == email)).first()
    return _validate(UserRecord, row) if row else None


def fetch_user_by_provider(
    session: Session, provider: str, subject: str
) -> UserRecord | None:
    stmt = select(User).where(
        User.provider == provider, User.provider_subject == subject
    )
    row = session.scalars(stmt).first()
    return _validate(UserRecord, row) if row else None


def insert_user(
    session: Session,
    *,
    email: str,
    password_hash: str | None,
    provider: str = "email",
    provider_subject: str | None = None,
    display_name: str | None = None,
) -> UserRecord:
    user = User(
        email=email,
        password_hash=password_hash,
        provider=provider,
        provider_subject=provider_subject,
        display_name=display_name,
    )
    session.add(user)
    session.flush()
    return _validate(UserRecord, user)


def insert_session(
    session: Session, *, token: str, user_id: str, expires_at: datetime
) -> None:
    session.add(
        AuthSession(
            token=token, user_id=user_id, created_at=utcnow(), expires_at=expires_at
        )
    )
    session.flush()


def fetch_session(session: Session, token: str) -> SessionRecord | None:
    stmt = (
        select(AuthSession, User.email)
        .join(User, AuthSession.user_id == User.id)
        .where(AuthSession.token == token)
    )
    row = session.execute(stmt).first()
    if row is None:
        return None
    auth_session, email = row
    return _validate(SessionRecord, auth_session, email=email)


def delete_session(session: Session, token: str) -> bool:
    result = session.execute(delete(AuthSession).where(AuthSession.token == token))
    return bool(result.rowcount)


def delete_expired_sessions(session: Session, *, now: datetime) -> int:
    result = session.execute(delete(AuthSession).where(AuthSession.expires_at <= now))
    return result.rowcount or 0


# -------- profiles --------


def fetch_profile(session: Session, user_id: str) -> ProfileRecord | None:
    row = session.get(Profile, user_id)
    return _validate(ProfileRecord, row) if row else None


def fetch_profiles(session: Session, user_ids: Iterable[str]) -> list[ProfileRecord]:
    """Return profiles for ``user_ids`` in the given order, skipping unknown ids."""
    wanted = list(dict.fromkeys(user_ids))
    if not wanted:
        return []
    rows = session.scalars(select(Profile).where(Profile.id.in_(wanted))).all()
    by_id = {row.id: row for row in rows}
    return [_validate(ProfileRecord, by_id[uid]) for uid in wanted if uid in by_id]


def insert_profile(
    session: Session, *, user_id: str, display_name: str, email: str | None
) -> ProfileRecord:
    profile = Profile(id=user_id, display_name=display_name, email=email)
    session.add(profile)
    session.flush()
    return _validate(ProfileRecord, profile)


def update_profile_display_name(
    session: Session, user_id: str, display_name: str
) -> ProfileRecord | None:
    profile = session.get(Profile, user_id)
    if profile is None:
        return None
    profile.display_name = display_name
    profile.updated_at = utcnow()
    session.add(profile)
    session.flush()
    return _validate(ProfileRecord, profile)


# -------- events --------


def _event_select():
    return select(Event, Profile.display_name).outerjoin(
        Profile, Event.owner_id == Profile.id
    )


def _event_record(row) -> EventRecord:
    event, owner_display_name = row
    return _validate(EventRecord, event, owner_display_name=owner_display_name)


def insert_event(
    session: Session,
    *,
    name: str,
    description: str | None,
    starts_at: datetime,
    location: str,
    image_url: str | None,
    owner_id: str,
) -> EventRecord:
    event = Event(
        name=name,
        description=description,
        starts_at=starts_at,
        location=location,
        image_url=image_url,
        owner_id=owner_id,
        created_at=utcnow(),
    )
    session.add(event)
    session.flush()
    record = fetch_event(session, event.id)
    if record is None:
        raise MalformedRecord("Event vanished after insert")
    return record


def fetch_event(session: Session, event_id: str) -> EventRecord | None:
    row = session.execute(_event_select().where(Event.id == event_id)).first()
    return _event_record(row) if row else None


def fetch_events(
    session: Session,
    *,
    owner_id: str | None = None,
    ids: Sequence[str] | None = None,
) -> list[EventRecord]:
    stmt = _event_select().order_by(Event.starts_at.asc(), Event.created_at.asc())
    if owner_id is not None:
        stmt = stmt.where(Event.owner_id == owner_id)
    if ids is not None:
        if not ids:
            return []
        stmt = stmt.where(Event.id.in_(list(ids)))
    return [_event_record(row) for row in session.execute(stmt).all()]


def delete_event(session: Session, event_id: str) -> bool:
    result = session.execute(delete(Event).where(Event.id == event_id))
    return bool(result.rowcount)


# -------- attendance --------


def fetch_attendance(
    session: Session, event_id: str, user_id: str
) -> AttendanceRecord | None:
    stmt = select(EventAttendee).where(
        EventAttendee.event_id == event_id, EventAttendee.user_id == user_id
    )
    row = session.scalars(stmt).first()
    return _validate(AttendanceRecord, row) if row else None


def insert_attendance(
    session: Session,
    *,
    event_id: str,
    user_id: str,
    checked_in_at: datetime | None = None,
) -> tuple[AttendanceRecord, bool]:
    """Insert the relation if absent. Returns ``(record, created)``.

    The insert runs in a savepoint: a concurrent insert that trips the unique
    constraint rolls back only this row and returns the one that won.
    """
    existing = fetch_attendance(session, event_id, user_id)
    if existing is not None:
        return existing, False
    row = EventAttendee(
        event_id=event_id,
        user_id=user_id,
        created_at=utcnow(),
        checked_in_at=checked_in_at,
    )
    try:
        with session.begin_nested():
            session.add(row)
            session.flush()
    except IntegrityError:
        existing = fetch_attendance(session, event_id, user_id)
        if existing is None:
            raise
        logger.info(
            "Attendance for user %s on event %s already recorded", user_id, event_id
        )
        return existing, False
    return _validate(AttendanceRecord, row), True


def mark_checked_in(
    session: Session, attendance_id: str, *, when: datetime
) -> AttendanceRecord:
    row = session.get(EventAttendee, attendance_id)
    row.checked_in_at = when
    session.add(row)
    session.flush()
    return _validate(AttendanceRecord, row)


def delete_attendance(session: Session, event_id: str, user_id: str) -> bool:
    result = session.execute(
        delete(EventAttendee).where(
            EventAttendee.event_id == event_id, EventAttendee.user_id == user_id
        )
    )
    return bool(result.rowcount)


def delete_attendance_for_event(session: Session, event_id: str) -> int:
    result = session.execute(
        delete(EventAttendee).where(EventAttendee.event_id == event_id)
    )
    return result.rowcount or 0


def fetch_attendance_for_event(
    session: Session, event_id: str
) -> list[AttendanceRecord]:
    stmt = (
        select(EventAttendee)
        .where(EventAttendee.event_id == event_id)
        .order_by(EventAttendee.created_at.asc())
    )
    return [_validate(AttendanceRecord, row) for row in session.scalars(stmt).all()]


def fetch_attending_event_ids(session: Session, user_id: str) -> list[str]:
    stmt = select(EventAttendee.event_id).where(EventAttendee.user_id == user_id)
    return list(session.scalars(stmt).all())


def delete_orphaned_attendance(session: Session) -> int:
    """Remove relations whose event no longer exists."""
    stmt = delete(EventAttendee).where(
        ~EventAttendee.event_id.in_(select(Event.id))
    )
    result = session.execute(stmt, execution_options={"synchronize_session": False})
    return result.rowcount or 0
