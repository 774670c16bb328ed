"""Development helpers for populating fake users, events and RSVPs."""

from __future__ import annotations

import random
from datetime import timedelta

from faker import Faker

from . import auth, gateway
from .attendance import toggle_attendance
from .auth import Identity
from .database import get_session
from .events import create_event
from .storage import init_db
from .utils import utcnow

SEED_PASSWORD = "invitide-demo"

_event_types = [
    "Bonfire",
    "Potluck",
    "Game Night",
    "Hack Night",
    "Picnic",
    "Book Club",
    "Karaoke",
    "Study Session",
]


def seed_fake_data(
    *,
    user_count: int = 8,
    event_count: int = 6,
    max_rsvps_per_event: int = 5,
) -> dict[str, int]:
    """Populate the database with synthetic accounts, events and RSVPs.

    Every seeded account signs in with ``SEED_PASSWORD``.
    """
    if user_count < 1:
        raise ValueError("user_count must be >= 1")
    if event_count < 0:
        raise ValueError("event_count must be >= 0")
    if max_rsvps_per_event < 0:
        raise ValueError("max_rsvps_per_event must be >= 0")

    init_db()
    fake = Faker()
    stats = {"users": 0, "events": 0, "rsvps": 0}

    with get_session() as session:
        identities: list[Identity] = []
        for _ in range(user_count):
            email = fake.unique.email()
            if gateway.fetch_user_by_email(session, email) is not None:
                continue
            profile = auth.sign_up(
                session,
                email=email,
                password=SEED_PASSWORD,
                display_name=fake.user_name(),
            )
            identities.append(Identity(id=profile.id, email=email))
            stats["users"] += 1

        if not identities:
            return stats

        for _ in range(event_count):
            host = random.choice(identities)
            starts_at = utcnow() + timedelta(
                days=random.randint(-10, 60), hours=random.randint(0, 23)
            )
            event = create_event(
                session,
                host,
                name=f"{fake.city()} {random.choice(_event_types)}",
                date=starts_at.date(),
                time=starts_at.time().replace(minute=0, second=0, microsecond=0),
                location=fake.street_address(),
                description=fake.paragraph(nb_sentences=3),
            )
            stats["events"] += 1

            guests = [identity for identity in identities if identity.id != host.id]
            for guest in random.sample(
                guests, k=min(len(guests), random.randint(0, max_rsvps_per_event))
            ):
                toggle_attendance(session, event, guest)
                stats["rsvps"] += 1

    return stats
