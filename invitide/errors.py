"""Exceptions raised by the Invitide service layer.

Each carries a single human-readable ``message`` and the HTTP status the web
layer answers with.
"""

from __future__ import annotations


class InvitideError(Exception):
    status_code = 500
    default_message = "Something went wrong."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthenticationRequired(InvitideError):
    status_code = 401
    default_message = "Please log in to continue."


class AuthenticationFailed(InvitideError):
    status_code = 401
    default_message = "Invalid email or password."


class NotAuthorized(InvitideError):
    status_code = 403
    default_message = "Only the host can do that."


class NotFound(InvitideError):
    status_code = 404
    default_message = "Not found."


class InvalidInput(InvitideError):
    status_code = 400
    default_message = "Some of the fields were invalid."


class InvalidScanPayload(InvalidInput):
    default_message = "That code is not a valid guest code."


class DuplicateAccount(InvalidInput):
    status_code = 409
    default_message = "An account with that email already exists."


class MalformedRecord(InvitideError):
    """Raised when a stored row fails validation at the gateway boundary."""

    status_code = 502
    default_message = "The backend returned a malformed record."


class PassGenerationError(InvitideError):
    default_message = "Error generating pass."


class MissingPassAsset(InvitideError):
    status_code = 400
    default_message = "Missing required icon file."
