from __future__ import annotations

import json

import pytest

from invitide.auth import Identity
from invitide.codes import identity_payload, parse_scanned_payload, render_identity_code
from invitide.errors import InvalidScanPayload


def test_identity_payload_is_compact_json():
    identity = Identity(id="abc-123", email="guest@example.com")
    payload = identity_payload(identity)
    assert payload == '{"user_id":"abc-123"}'
    assert json.loads(payload) == {"user_id": "abc-123"}


def test_render_identity_code_returns_png():
    png = render_identity_code(Identity(id="abc-123", email="guest@example.com"))
    assert png.startswith(b"\x89PNG\r\n\x1a\n")


@pytest.mark.parametrize(
    "raw",
    [
        '{"user_id": "abc"}',
        b'{"user_id": "abc"}',
        {"user_id": "abc"},
        {"user_id": "  abc  "},
    ],
)
def test_parse_scanned_payload_accepts_text_bytes_and_objects(raw):
    assert parse_scanned_payload(raw) == "abc"


def test_parse_scanned_payload_reports_missing_id():
    with pytest.raises(InvalidScanPayload) as excinfo:
        parse_scanned_payload({"user_id": ""})
    assert excinfo.value.message == "That code does not carry a guest id."
    assert excinfo.value.status_code == 400


@pytest.mark.parametrize("raw", ["", "plain text", "42", '"abc"', {"user_id": 5}])
def test_parse_scanned_payload_rejects_garbage(raw):
    with pytest.raises(InvalidScanPayload):
        parse_scanned_payload(raw)
