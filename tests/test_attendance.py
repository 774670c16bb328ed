from __future__ import annotations

import json

import pytest

from invitide import attendance, events, gateway
from invitide.attendance import AttendanceState
from invitide.codes import identity_payload
from invitide.errors import (
    AuthenticationRequired,
    InvalidInput,
    InvalidScanPayload,
    NotAuthorized,
    NotFound,
)
from invitide.models import Event, EventAttendee, Profile


@pytest.fixture()
def party(session, make_identity):
    host = make_identity("Host")
    guest = make_identity("Guest")
    event = events.create_event(
        session, host, name="Party", date="2030-07-04", location="Roof"
    )
    session.commit()
    return host, guest, event


def test_toggle_flips_between_states(session, party):
    _, guest, event = party

    assert attendance.attendance_state(session, event, guest) is AttendanceState.NOT_ATTENDING
    assert attendance.toggle_attendance(session, event, guest) is AttendanceState.ATTENDING
    session.commit()
    assert attendance.attendance_state(session, event, guest) is AttendanceState.ATTENDING
    assert attendance.toggle_attendance(session, event.id, guest) is AttendanceState.NOT_ATTENDING
    session.commit()
    assert attendance.attendance_state(session, event, guest) is AttendanceState.NOT_ATTENDING


def test_double_toggle_leaves_no_duplicate_rows(session, party):
    _, guest, event = party
    for _ in range(3):
        attendance.toggle_attendance(session, event, guest)
        session.commit()

    assert session.query(EventAttendee).count() == 1


def test_anonymous_visitor_is_not_attending_and_cannot_toggle(session, party):
    _, _, event = party
    assert attendance.attendance_state(session, event, None) is AttendanceState.NOT_ATTENDING
    with pytest.raises(AuthenticationRequired):
        attendance.toggle_attendance(session, event, None)


def test_host_cannot_rsvp_to_own_event(session, party):
    host, _, event = party
    with pytest.raises(InvalidInput):
        attendance.toggle_attendance(session, event, host)


def test_toggle_unknown_event(session, party):
    _, guest, _ = party
    with pytest.raises(NotFound):
        attendance.toggle_attendance(session, "nope", guest)


def test_list_attendees_is_host_only(session, party, make_identity):
    host, guest, event = party
    other = make_identity("Other")
    attendance.toggle_attendance(session, event, guest)
    attendance.toggle_attendance(session, event, other)
    session.commit()

    roster = attendance.list_attendees(session, event, host)
    assert [a.display_name for a in roster] == ["Guest", "Other"]
    assert not any(a.checked_in for a in roster)

    with pytest.raises(NotAuthorized):
        attendance.list_attendees(session, event, guest)
    with pytest.raises(AuthenticationRequired):
        attendance.list_attendees(session, event, None)


def test_list_attendees_omits_guests_without_profile(session, party):
    host, guest, event = party
    session.add(EventAttendee(event_id=event.id, user_id="ghost"))
    attendance.toggle_attendance(session, event, guest)
    session.commit()

    roster = attendance.list_attendees(session, event, host)
    assert [a.user_id for a in roster] == [guest.id]


def test_check_in_creates_attendance_for_walk_in(session, party):
    host, guest, event = party

    result = attendance.check_in(session, event, identity_payload(guest), host)
    session.commit()

    assert result.created is True
    assert result.already_checked_in is False
    assert result.attendee.display_name == "Guest"
    assert result.attendee.checked_in
    assert result.message == "Guest has been checked in!"
    assert attendance.attendance_state(session, event, guest) is AttendanceState.ATTENDING


def test_check_in_marks_existing_rsvp(session, party):
    host, guest, event = party
    attendance.toggle_attendance(session, event, guest)
    session.commit()

    result = attendance.check_in(session, event.id, {"user_id": guest.id}, host)
    session.commit()

    assert result.created is False
    assert result.already_checked_in is False
    row = session.query(EventAttendee).one()
    assert row.checked_in_at is not None


def test_repeat_scan_is_idempotent(session, party):
    host, guest, event = party
    payload = json.dumps({"user_id": guest.id})
    attendance.check_in(session, event, payload, host)
    session.commit()

    again = attendance.check_in(session, event, payload, host)
    session.commit()

    assert again.created is False
    assert again.already_checked_in is True
    assert again.message == "Guest was already checked in."
    assert session.query(EventAttendee).count() == 1


def test_check_in_requires_host(session, party):
    _, guest, event = party
    with pytest.raises(NotAuthorized):
        attendance.check_in(session, event, identity_payload(guest), guest)
    assert session.query(EventAttendee).count() == 0


@pytest.mark.parametrize("payload", ["not json", "[1, 2]", '{"id": "x"}', None, b"\xff"])
def test_check_in_rejects_bad_payloads(session, party, payload):
    host, _, event = party
    with pytest.raises(InvalidScanPayload):
        attendance.check_in(session, event, payload, host)


def test_check_in_unknown_guest(session, party):
    host, _, event = party
    with pytest.raises(NotFound) as excinfo:
        attendance.check_in(session, event, {"user_id": "stranger"}, host)
    assert excinfo.value.message == "No guest matches that code"


def test_check_in_survives_concurrent_insert(session, party, monkeypatch):
    host, guest, event = party
    original_fetch = gateway.fetch_attendance
    calls = {"n": 0}

    def racing_fetch(db, event_id, user_id):
        # First lookup misses; another request inserts the row meanwhile.
        calls["n"] += 1
        if calls["n"] == 1:
            db.add(EventAttendee(event_id=event_id, user_id=user_id))
            db.commit()
            return None
        return original_fetch(db, event_id, user_id)

    monkeypatch.setattr(gateway, "fetch_attendance", racing_fetch)

    result = attendance.check_in(session, event, {"user_id": guest.id}, host)
    session.commit()

    assert result.created is False
    assert result.attendee.checked_in
    assert session.query(EventAttendee).count() == 1
    assert session.get(Profile, guest.id) is not None


def test_check_in_conflict_keeps_earlier_writes(session, party, monkeypatch):
    host, guest, event = party
    session.add(EventAttendee(event_id=event.id, user_id=guest.id))
    session.commit()
    pending = events.create_event(
        session, host, name="Afterparty", date="2030-07-05", location="Basement"
    )
    original_fetch = gateway.fetch_attendance
    calls = {"n": 0}

    def stale_fetch(db, event_id, user_id):
        # First lookup misses so the insert hits the unique constraint.
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return original_fetch(db, event_id, user_id)

    monkeypatch.setattr(gateway, "fetch_attendance", stale_fetch)

    result = attendance.check_in(session, event, {"user_id": guest.id}, host)

    assert result.created is False
    assert result.attendee.checked_in
    assert gateway.fetch_event(session, pending.id) is not None
    session.commit()
    assert session.query(Event).count() == 2
    assert session.query(EventAttendee).count() == 1


def test_host_cannot_check_in_to_own_event(session, party):
    host, guest, event = party
    attendance.toggle_attendance(session, event, guest)
    session.commit()

    with pytest.raises(InvalidInput):
        attendance.check_in(session, event, identity_payload(host), host)
    session.commit()

    assert [a.display_name for a in attendance.list_attendees(session, event, host)] == [
        "Guest"
    ]
    assert attendance.attendance_state(session, event, host) is AttendanceState.NOT_ATTENDING


def test_roster_tracks_single_guest_toggles(session, party):
    host, guest, event = party

    attendance.toggle_attendance(session, event, guest)
    session.commit()
    assert [a.display_name for a in attendance.list_attendees(session, event, host)] == [
        "Guest"
    ]

    attendance.toggle_attendance(session, event, guest)
    session.commit()
    assert attendance.list_attendees(session, event, host) == []


def test_malformed_scan_does_not_mutate(session, party):
    host, guest, event = party
    attendance.toggle_attendance(session, event, guest)
    session.commit()

    with pytest.raises(InvalidScanPayload):
        attendance.check_in(session, event, "{broken", host)
    session.commit()

    row = session.query(EventAttendee).one()
    assert row.checked_in_at is None
