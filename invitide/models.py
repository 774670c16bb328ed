"""SQLAlchemy models for Invitide."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from .utils import utcnow

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return utcnow()


class User(Base):
    """Auth identity. Owns credentials; never rendered directly."""

    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("provider", "provider_subject"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=True)
    provider = Column(String(32), nullable=False, default="email")
    provider_subject = Column(String(255), nullable=True)
    display_name = Column(String(120), nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    sessions = relationship(
        "AuthSession", back_populates="user", cascade="all, delete-orphan"
    )


class AuthSession(Base):
    __tablename__ = "auth_sessions"

    token = Column(String(128), primary_key=True)
    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    created_at = Column(DateTime, default=_now, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    user = relationship("User", back_populates="sessions")


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String(36), ForeignKey("users.id"), primary_key=True)
    display_name = Column(String(120), nullable=False)
    email = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    events = relationship("Event", back_populates="owner")


class Event(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    starts_at = Column(DateTime, nullable=False)
    location = Column(String(255), nullable=False)
    image_url = Column(String(1024), nullable=True)
    owner_id = Column(String(36), ForeignKey("profiles.id"), nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)

    owner = relationship("Profile", back_populates="events")


class EventAttendee(Base):
    """Attendance relation; a row existing means the user is attending."""

    __tablename__ = "event_attendees"
    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_attendees_pair"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    checked_in_at = Column(DateTime, nullable=True)
