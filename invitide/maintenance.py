"""Periodic maintenance: orphan sweep, session purge, SQLite vacuum."""

from __future__ import annotations

import logging

from . import gateway
from .database import engine, get_session
from .utils import utcnow

# Use uvicorn's error logger so maintenance messages show up with level prefixes.
logger = logging.getLogger("uvicorn.error")


def sweep_orphaned_attendance() -> int:
    """Delete attendance rows whose event is gone."""
    with get_session() as session:
        removed = gateway.delete_orphaned_attendance(session)
    if removed:
        logger.info("Removed %d orphaned attendance rows", removed)
    return removed


def purge_expired_sessions() -> int:
    with get_session() as session:
        removed = gateway.delete_expired_sessions(session, now=utcnow())
    if removed:
        logger.info("Purged %d expired sessions", removed)
    return removed


def run_maintenance_cycle() -> dict[str, int]:
    stats = {
        "orphaned_attendance_removed": sweep_orphaned_attendance(),
        "expired_sessions_removed": purge_expired_sessions(),
    }
    logger.info("Maintenance cycle complete: %s", stats)
    return stats


def vacuum_database() -> None:
    if engine.dialect.name != "sqlite":
        return
    with engine.connect() as conn:
        conn.exec_driver_sql("VACUUM")
    logger.info("SQLite VACUUM complete")
