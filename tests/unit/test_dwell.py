"""Unit tests for fresh/stale waiting promotion."""

from datetime import datetime, timedelta

from agent_monitor.dwell import (
    FRESH_WAITING_WINDOW,
    dwell_status,
    promote,
    promote_record,
    resolve_waiting_since,
)
from agent_monitor.models import SessionRecord, SessionSnapshot, SessionStatus

T0 = datetime(2026, 1, 14, 10, 0, 0)


def _record(session_id: str = "s1", status=SessionStatus.FRESH_WAITING, waiting_since=T0) -> SessionRecord:
    return SessionRecord(
        session_id=session_id,
        display_name=session_id,
        last_prompt="go",
        status=status,
        last_update=T0,
        waiting_since=waiting_since,
    )


def test_dwell_boundary():
    assert dwell_status(T0, T0) == SessionStatus.FRESH_WAITING
    assert dwell_status(T0, T0 + timedelta(seconds=59)) == SessionStatus.FRESH_WAITING
    assert dwell_status(T0, T0 + FRESH_WAITING_WINDOW) == SessionStatus.FRESH_WAITING
    assert dwell_status(T0, T0 + timedelta(seconds=61)) == SessionStatus.WAITING


def test_custom_window():
    window = timedelta(seconds=10)
    assert dwell_status(T0, T0 + timedelta(seconds=11), window) == SessionStatus.WAITING


def test_resolve_waiting_since_starts_new_period():
    now = T0 + timedelta(minutes=5)
    assert resolve_waiting_since(None, SessionStatus.FRESH_WAITING, now) == now
    working = _record(status=SessionStatus.WORKING, waiting_since=None)
    assert resolve_waiting_since(working, SessionStatus.FRESH_WAITING, now) == now


def test_resolve_waiting_since_carries_existing_period():
    now = T0 + timedelta(minutes=5)
    assert resolve_waiting_since(_record(), SessionStatus.FRESH_WAITING, now) == T0
    stale = _record(status=SessionStatus.WAITING)
    assert resolve_waiting_since(stale, SessionStatus.FRESH_WAITING, now) == T0


def test_resolve_waiting_since_clears_when_working():
    assert resolve_waiting_since(_record(), SessionStatus.WORKING, T0) is None


def test_promote_record_leaves_working_alone():
    record = _record(status=SessionStatus.WORKING, waiting_since=None)
    assert promote_record(record, T0 + timedelta(hours=1)) is record


def test_promote_record_returns_same_object_when_unchanged():
    record = _record()
    assert promote_record(record, T0 + timedelta(seconds=30)) is record


def test_promote_record_ages_to_waiting():
    promoted = promote_record(_record(), T0 + timedelta(seconds=61))
    assert promoted.status == SessionStatus.WAITING
    assert promoted.waiting_since == T0


def test_promote_snapshot():
    snapshot = SessionSnapshot(records={
        "fresh": _record("fresh", waiting_since=T0 + timedelta(seconds=30)),
        "old": _record("old"),
        "busy": _record("busy", status=SessionStatus.WORKING, waiting_since=None),
    }, taken_at=T0)
    now = T0 + timedelta(seconds=75)

    promoted = promote(snapshot, now)

    assert promoted.taken_at == now
    assert promoted.get("fresh").status == SessionStatus.FRESH_WAITING
    assert promoted.get("old").status == SessionStatus.WAITING
    assert promoted.get("busy").status == SessionStatus.WORKING
    # Input snapshot untouched
    assert snapshot.get("old").status == SessionStatus.FRESH_WAITING


def test_promotion_is_monotonic_over_time():
    record = _record()
    statuses = [
        promote_record(record, T0 + timedelta(seconds=s)).status
        for s in range(0, 120, 5)
    ]
    first_stale = statuses.index(SessionStatus.WAITING)
    assert all(s == SessionStatus.WAITING for s in statuses[first_stale:])
