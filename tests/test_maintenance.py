from __future__ import annotations

from datetime import timedelta

from invitide import events, gateway, maintenance, scheduler
from invitide.models import AuthSession, EventAttendee
from invitide.utils import utcnow


def test_run_maintenance_cycle_sweeps_orphans_and_sessions(session, make_identity):
    host = make_identity("Host")
    guest = make_identity("Guest")
    event = events.create_event(
        session, host, name="Meetup", date="2030-01-01", location="Cafe"
    )
    gateway.insert_attendance(session, event_id=event.id, user_id=guest.id)
    session.add(EventAttendee(event_id="deleted-event", user_id=guest.id))
    gateway.insert_session(
        session, token="old", user_id=guest.id, expires_at=utcnow() - timedelta(days=1)
    )
    gateway.insert_session(
        session, token="fresh", user_id=guest.id, expires_at=utcnow() + timedelta(days=1)
    )
    session.commit()

    stats = maintenance.run_maintenance_cycle()

    assert stats == {"orphaned_attendance_removed": 1, "expired_sessions_removed": 1}
    assert [row.event_id for row in session.query(EventAttendee).all()] == [event.id]
    assert [row.token for row in session.query(AuthSession).all()] == ["fresh"]


def test_run_maintenance_cycle_is_noop_on_clean_database():
    assert maintenance.run_maintenance_cycle() == {
        "orphaned_attendance_removed": 0,
        "expired_sessions_removed": 0,
    }


def test_start_scheduler_respects_disabled_flag(monkeypatch):
    fake_settings = type("S", (), {"enable_scheduler": False})()
    monkeypatch.setattr(scheduler, "settings", fake_settings)
    assert scheduler.start_scheduler() is None
