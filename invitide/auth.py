"""Authentication and session/identity resolution."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta

from passlib.context import CryptContext
from sqlalchemy.orm import Session

from . import gateway
from .config import settings
from .errors import (
    AuthenticationFailed,
    AuthenticationRequired,
    DuplicateAccount,
    InvalidInput,
)
from .records import ProfileRecord, UserRecord
from .utils import clean_text, normalize_email, utcnow

logger = logging.getLogger("uvicorn.error")

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

DEFAULT_DISPLAY_NAME = "Anonymous"
MIN_PASSWORD_LENGTH = 6


@dataclass(frozen=True)
class Identity:
    """An authenticated visitor, passed explicitly into every service call."""

    id: str
    email: str


@dataclass(frozen=True)
class SignedIn:
    identity: Identity
    token: str
    profile: ProfileRecord


def require_identity(identity: Identity | None) -> Identity:
    if identity is None:
        raise AuthenticationRequired()
    return identity


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str | None) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


def ensure_profile(session: Session, user: UserRecord) -> ProfileRecord:
    """Return the user's profile, creating it on first sign-in."""
    profile = gateway.fetch_profile(session, user.id)
    if profile is not None:
        return profile
    display_name = clean_text(user.display_name) or DEFAULT_DISPLAY_NAME
    logger.info("Creating profile for user %s", user.id)
    return gateway.insert_profile(
        session, user_id=user.id, display_name=display_name, email=user.email
    )


def _issue_session(session: Session, user: UserRecord) -> SignedIn:
    token = secrets.token_urlsafe(32)
    gateway.insert_session(
        session,
        token=token,
        user_id=user.id,
        expires_at=utcnow() + timedelta(hours=settings.session_ttl_hours),
    )
    profile = ensure_profile(session, user)
    return SignedIn(
        identity=Identity(id=user.id, email=user.email), token=token, profile=profile
    )


def sign_up(
    session: Session, *, email: str, password: str, display_name: str
) -> ProfileRecord:
    """Register a credential pair; the display name seeds the profile."""
    normalized = normalize_email(email)
    name = clean_text(display_name)
    if not normalized or not password or not name:
        raise InvalidInput("All fields are required")
    if "@" not in normalized:
        raise InvalidInput("Enter a valid email address")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise InvalidInput(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
        )
    if gateway.fetch_user_by_email(session, normalized) is not None:
        raise DuplicateAccount()
    user = gateway.insert_user(
        session,
        email=normalized,
        password_hash=hash_password(password),
        display_name=name,
    )
    logger.info("New account %s registered", user.id)
    return ensure_profile(session, user)


def sign_in_with_password(session: Session, *, email: str, password: str) -> SignedIn:
    user = gateway.fetch_user_by_email(session, normalize_email(email))
    if user is None or not verify_password(password or "", user.password_hash):
        logger.warning("Failed sign-in attempt for %s", normalize_email(email))
        raise AuthenticationFailed()
    return _issue_session(session, user)


def sign_in_with_oauth(
    session: Session,
    *,
    provider: str,
    subject: str,
    email: str | None,
    display_name: str | None,
) -> SignedIn:
    """Find or create the user behind a third-party identity and sign them in."""
    if not subject:
        raise AuthenticationFailed(f"{provider} did not return an account id")
    user = gateway.fetch_user_by_provider(session, provider, subject)
    if user is None:
        normalized = normalize_email(email) or f"{provider}-{subject}@users.invalid"
        if gateway.fetch_user_by_email(session, normalized) is not None:
            raise DuplicateAccount(
                "An account with that email already exists. Log in with your password."
            )
        user = gateway.insert_user(
            session,
            email=normalized,
            password_hash=None,
            provider=provider,
            provider_subject=subject,
            display_name=clean_text(display_name),
        )
        logger.info("New %s account %s registered", provider, user.id)
    return _issue_session(session, user)


def resolve_identity(session: Session, token: str | None) -> Identity | None:
    """Resolve a session token; anything unknown or expired means no identity."""
    if not token:
        return None
    record = gateway.fetch_session(session, token)
    if record is None:
        return None
    if record.expires_at <= utcnow():
        gateway.delete_session(session, token)
        return None
    return Identity(id=record.user_id, email=record.email)


def sign_out(session: Session, token: str | None) -> None:
    if token:
        gateway.delete_session(session, token)
