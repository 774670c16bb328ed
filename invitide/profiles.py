"""Profile lookups and edits for the signed-in visitor."""

from __future__ import annotations

from sqlalchemy.orm import Session

from . import gateway
from .auth import Identity, require_identity
from .errors import InvalidInput, NotFound
from .records import ProfileRecord
from .utils import clean_text

MAX_DISPLAY_NAME_LENGTH = 120


def get_profile(session: Session, identity: Identity | None) -> ProfileRecord:
    identity = require_identity(identity)
    profile = gateway.fetch_profile(session, identity.id)
    if profile is None:
        raise NotFound("Profile not found")
    return profile


def update_display_name(
    session: Session, identity: Identity | None, display_name: str | None
) -> ProfileRecord:
    identity = require_identity(identity)
    name = clean_text(display_name)
    if not name:
        raise InvalidInput("Display name is required")
    if len(name) > MAX_DISPLAY_NAME_LENGTH:
        raise InvalidInput(
            f"Display name must be at most {MAX_DISPLAY_NAME_LENGTH} characters"
        )
    profile = gateway.update_profile_display_name(session, identity.id, name)
    if profile is None:
        raise NotFound("Profile not found")
    return profile
