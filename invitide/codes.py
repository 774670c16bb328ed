"""Identity-bound QR codes shown on profiles and scanned by hosts."""

from __future__ import annotations

import json
from io import BytesIO
from typing import Any

import qrcode

from .auth import Identity
from .errors import InvalidScanPayload

PAYLOAD_KEY = "user_id"


def identity_payload(identity: Identity) -> str:
    return json.dumps({PAYLOAD_KEY: identity.id}, separators=(",", ":"))


def render_identity_code(identity: Identity) -> bytes:
    """Return a PNG QR code encoding the identity payload."""
    img = qrcode.make(identity_payload(identity))
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def parse_scanned_payload(raw: str | bytes | dict[str, Any] | None) -> str:
    """Return the user id carried by a scanned code.

    Accepts the decoded JSON text or an already-parsed object.
    """
    payload: Any = raw
    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidScanPayload() from exc
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except ValueError as exc:
            raise InvalidScanPayload() from exc
    if not isinstance(payload, dict):
        raise InvalidScanPayload()
    user_id = payload.get(PAYLOAD_KEY)
    if not isinstance(user_id, str) or not user_id.strip():
        raise InvalidScanPayload("That code does not carry a guest id.")
    return user_id.strip()
