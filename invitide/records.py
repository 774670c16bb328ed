"""Typed entity structs returned by the data gateway."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Record(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)


class ProfileRecord(_Record):
    id: str = Field(min_length=1)
    display_name: str
    email: str | None = None
    created_at: datetime


class EventRecord(_Record):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str | None = None
    starts_at: datetime
    location: str
    image_url: str | None = None
    owner_id: str = Field(min_length=1)
    owner_display_name: str | None = None
    created_at: datetime

    @field_validator("image_url")
    @classmethod
    def _blank_image_is_none(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            return None
        return value

    def is_owned_by(self, user_id: str | None) -> bool:
        return user_id is not None and self.owner_id == user_id


class AttendanceRecord(_Record):
    id: str = Field(min_length=1)
    event_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    created_at: datetime
    checked_in_at: datetime | None = None


class SessionRecord(_Record):
    token: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    email: str
    created_at: datetime
    expires_at: datetime


class UserRecord(_Record):
    id: str = Field(min_length=1)
    email: str = Field(min_length=1)
    password_hash: str | None = None
    provider: str
    provider_subject: str | None = None
    display_name: str | None = None
