"""Utility helpers for Invitide."""

from __future__ import annotations

from datetime import UTC, date, datetime, time
import re

from markupsafe import Markup, escape

_strong_pattern = re.compile(r"\*\*(.+?)\*\*")
_em_pattern = re.compile(r"(?<!\*)\*(?!\*)(.+?)\*")
_url_pattern = re.compile(r"\[([^\]]+)\]\((https?://[^\s)]+)\)")


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Drop timezone info after converting aware datetimes to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def combine_date_time(day: date, at: time | None = None) -> datetime:
    """Merge a calendar date and an optional time of day; midnight if omitted."""
    return datetime.combine(day, at or time.min)


def normalize_email(value: str | None) -> str:
    return (value or "").strip().lower()


def clean_text(value: str | None) -> str | None:
    """Strip whitespace, mapping blank strings to ``None``."""
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def humanize_time(value: datetime | None, *, now: datetime | None = None) -> str:
    """Return a friendly string such as 'in 2 weeks' or '3 hours ago'."""
    if not value:
        return ""
    now = now or utcnow()
    delta_seconds = (value - now).total_seconds()
    past = delta_seconds < 0
    seconds = abs(delta_seconds)

    units = [
        ("year", 365 * 24 * 3600),
        ("month", 30 * 24 * 3600),
        ("week", 7 * 24 * 3600),
        ("day", 24 * 3600),
        ("hour", 3600),
        ("minute", 60),
    ]

    for name, step in units:
        amount = int(seconds // step)
        if amount >= 1:
            label = name if amount == 1 else f"{name}s"
            return f"{amount} {label} ago" if past else f"in {amount} {label}"
    return "moments ago" if past else "in moments"


def format_when(value: datetime | None) -> str:
    """Render an event instant as e.g. 'Fri 4 Jul 2025, 18:30 UTC'."""
    if not value:
        return ""
    return f"{value:%a} {value.day} {value:%b %Y, %H:%M} UTC"


def _inline(text: str) -> str:
    text = _url_pattern.sub(
        r'<a href="\2" rel="nofollow noopener noreferrer">\1</a>', text
    )
    text = _strong_pattern.sub(r"<strong>\1</strong>", text)
    return _em_pattern.sub(r"<em>\1</em>", text)


def render_description(value: str | None) -> Markup:
    """Render an event description as escaped HTML paragraphs.

    Supports ``**bold**``, ``*italic*``, ``[label](https://...)`` links and
    ``- `` bullet lists; everything else is shown as typed.
    """
    if not value or not value.strip():
        return Markup("")
    blocks: list[str] = []
    for chunk in re.split(r"\n\s*\n", str(escape(value.strip()))):
        lines = [line.strip() for line in chunk.splitlines() if line.strip()]
        if lines and all(line.startswith(("- ", "* ")) for line in lines):
            items = "".join(f"<li>{_inline(line[2:].strip())}</li>" for line in lines)
            blocks.append(f"<ul>{items}</ul>")
        elif lines:
            blocks.append(f"<p>{'<br>'.join(_inline(line) for line in lines)}</p>")
    return Markup("\n".join(blocks))
