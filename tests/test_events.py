from __future__ import annotations

from datetime import date, datetime, time

import pytest

from invitide import attendance, events
from invitide.errors import (
    AuthenticationRequired,
    InvalidInput,
    NotAuthorized,
    NotFound,
)
from invitide.models import Event, EventAttendee


def _create(session, identity, **overrides):
    fields = {
        "name": "Board Game Night",
        "date": "2030-03-14",
        "time": "19:30",
        "location": "Library",
        "description": "Bring snacks",
    }
    fields.update(overrides)
    event = events.create_event(session, identity, **fields)
    session.commit()
    return event


def test_create_event_combines_date_and_time(session, make_identity):
    host = make_identity("Host")
    event = _create(session, host)

    assert event.starts_at == datetime(2030, 3, 14, 19, 30)
    assert event.owner_id == host.id
    assert event.owner_display_name == "Host"
    assert event.description == "Bring snacks"


def test_create_event_without_time_defaults_to_midnight(session, make_identity):
    host = make_identity()
    event = _create(session, host, time=None)
    assert event.starts_at == datetime(2030, 3, 14, 0, 0)


def test_create_event_accepts_date_objects(session, make_identity):
    host = make_identity()
    event = _create(session, host, date=date(2031, 1, 2), time=time(8, 15))
    assert event.starts_at == datetime(2031, 1, 2, 8, 15)


@pytest.mark.parametrize(
    "overrides,message",
    [
        ({"name": "  "}, "Event name is required"),
        ({"location": ""}, "Event location is required"),
        ({"date": ""}, "Event date is required"),
        ({"date": "14/03/2030"}, "Event date must look like YYYY-MM-DD"),
        ({"time": "half past seven"}, "Event time must look like HH:MM"),
    ],
)
def test_create_event_validates_fields(session, make_identity, overrides, message):
    host = make_identity()
    with pytest.raises(InvalidInput) as excinfo:
        _create(session, host, **overrides)
    assert excinfo.value.message == message
    assert session.query(Event).count() == 0


def test_create_event_requires_identity(session):
    with pytest.raises(AuthenticationRequired):
        _create(session, None)


def test_get_event_unknown_id(session):
    with pytest.raises(NotFound) as excinfo:
        events.get_event(session, "does-not-exist")
    assert excinfo.value.message == "Event not found"


def test_list_events_filters_case_insensitively(session, make_identity):
    host = make_identity()
    picnic = _create(session, host, name="Summer Picnic", location="Riverside")
    _create(session, host, name="Chess Club", description="Weekly games")

    assert [e.id for e in events.list_events(session, query="PICNIC")] == [picnic.id]
    assert [e.id for e in events.list_events(session, query="riverside")] == [picnic.id]
    assert len(events.list_events(session, query="weekly")) == 1
    assert len(events.list_events(session, query="   ")) == 2
    assert events.list_events(session, query="karaoke") == []


def test_list_events_for_owner(session, make_identity):
    host = make_identity("Host")
    other = make_identity("Other")
    mine = _create(session, host)
    _create(session, other)

    assert [e.id for e in events.list_events(session, owner=host)] == [mine.id]


def test_list_attending_returns_rsvped_events(session, make_identity):
    host = make_identity("Host")
    guest = make_identity("Guest")
    first = _create(session, host, name="First")
    _create(session, host, name="Second")
    attendance.toggle_attendance(session, first, guest)
    session.commit()

    assert [e.id for e in events.list_attending(session, guest)] == [first.id]
    assert events.list_attending(session, guest, query="second") == []
    assert events.list_attending(session, host) == []


def test_delete_event_removes_attendance_first(session, make_identity):
    host = make_identity("Host")
    guest = make_identity("Guest")
    event = _create(session, host)
    attendance.toggle_attendance(session, event, guest)
    session.commit()

    events.delete_event(session, event.id, host)
    session.commit()

    assert session.query(Event).count() == 0
    assert session.query(EventAttendee).count() == 0


def test_delete_event_is_host_only(session, make_identity):
    host = make_identity("Host")
    stranger = make_identity("Stranger")
    event = _create(session, host)

    with pytest.raises(NotAuthorized) as excinfo:
        events.delete_event(session, event.id, stranger)
    assert excinfo.value.message == "Only the host can delete this event"
    assert session.query(Event).count() == 1

    with pytest.raises(AuthenticationRequired):
        events.delete_event(session, event.id, None)


def test_created_event_round_trips(session, make_identity):
    host = make_identity("Host")
    created = events.create_event(
        session, host, name="Beach Bonfire", date="2025-07-04", location="Pier 7"
    )
    session.commit()

    fetched = events.get_event(session, created.id)
    assert fetched.id
    assert fetched.name == "Beach Bonfire"
    assert fetched.starts_at.date() == date(2025, 7, 4)
    assert fetched.location == "Pier 7"
    assert fetched.owner_id == host.id


def test_non_owner_delete_leaves_relations_intact(session, make_identity):
    host = make_identity("Host")
    guest = make_identity("Guest")
    event = _create(session, host)
    attendance.toggle_attendance(session, event, guest)
    session.commit()

    with pytest.raises(NotAuthorized):
        events.delete_event(session, event.id, guest)
    session.commit()

    assert events.get_event(session, event.id).id == event.id
    assert session.query(EventAttendee).count() == 1
