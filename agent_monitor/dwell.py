"""Fresh vs. stale waiting: how long a session has been sitting idle."""

from dataclasses import replace
from datetime import datetime, timedelta
from typing import Optional

from .models import SessionRecord, SessionSnapshot, SessionStatus

# A session that finished within this window still counts as "just finished"
FRESH_WAITING_WINDOW = timedelta(seconds=60)

# How often the monitor re-evaluates dwell without a file change
DWELL_TICK_SECONDS = 5.0


def resolve_waiting_since(
    previous: Optional[SessionRecord],
    folded_status: SessionStatus,
    now: datetime,
) -> Optional[datetime]:
    """
    Decide when the current waiting period started.

    Args:
        previous: Record for the same id in the prior snapshot, if any
        folded_status: Status the state machine derived from the log
        now: Current time

    Returns:
        The waiting start, or None if the session isn't waiting
    """
    if not folded_status.is_waiting:
        return None
    if previous is not None and previous.status.is_waiting and previous.waiting_since is not None:
        return previous.waiting_since
    return now


def dwell_status(
    waiting_since: datetime,
    now: datetime,
    window: timedelta = FRESH_WAITING_WINDOW,
) -> SessionStatus:
    """Visible status of a waiting session, purely from elapsed dwell."""
    if now - waiting_since <= window:
        return SessionStatus.FRESH_WAITING
    return SessionStatus.WAITING


def promote_record(
    record: SessionRecord,
    now: datetime,
    window: timedelta = FRESH_WAITING_WINDOW,
) -> SessionRecord:
    if not record.status.is_waiting or record.waiting_since is None:
        return record
    status = dwell_status(record.waiting_since, now, window)
    if status == record.status:
        return record
    return replace(record, status=status)


def promote(
    snapshot: SessionSnapshot,
    now: datetime,
    window: timedelta = FRESH_WAITING_WINDOW,
) -> SessionSnapshot:
    """Recompute dwell status for every waiting session, without touching the logs."""
    records = {
        session_id: promote_record(record, now, window)
        for session_id, record in snapshot.records.items()
    }
    return SessionSnapshot(records=records, taken_at=now)
