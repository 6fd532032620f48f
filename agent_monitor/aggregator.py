"""Concurrency and productivity analytics over the global event stream.

The hook appends one ``jq -n`` object per event to ``all-events.jsonl``.
Objects may be compact or pretty-printed over several lines, and the tail
may be truncated while the hook is writing, so records are pulled out with
tolerant patterns rather than a JSON decoder. Top-level keys always come in
the order ``timestamp``, ``event``, ``session_id``.
"""

import codecs
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Union

from .models import ConcurrencyPeriod, ProductivityReport, SessionTimeline

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024

WORKING = "working"
WAITING = "waiting"
ENDED = "ended"

# Minimal status model, independent of the session-log state machine
EVENT_STATUS = {
    "SessionStart": WAITING,
    "UserPromptSubmit": WORKING,
    "Stop": WAITING,
    "SessionEnd": ENDED,
}

_TIMESTAMP_RE = re.compile(r'"timestamp"\s*:\s*"(\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2})"')
_EVENT_RE = re.compile(r'"event"\s*:\s*"([^"\\]*)"')
_SESSION_RE = re.compile(r'"session_id"\s*:\s*"([^"\\]*)"')
_FIELD_RE = re.compile(f"{_TIMESTAMP_RE.pattern}|{_EVENT_RE.pattern}|{_SESSION_RE.pattern}")


@dataclass(frozen=True)
class EventRecord:
    timestamp: datetime
    event: str
    session_id: str


def iter_lines(path: Union[str, Path], chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[str]:
    """
    Stream lines from a file that may be appended to while we read.

    The incomplete trailing line of each chunk is carried into the next
    read; whatever remains at EOF is yielded as-is.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    with open(path, "rb") as f:
        while True:
            chunk = f.read(chunk_size)
            if not chunk:
                break
            buffer += decoder.decode(chunk)
            *lines, buffer = buffer.split("\n")
            yield from lines
    buffer += decoder.decode(b"", final=True)
    if buffer:
        yield buffer


def iter_records(lines: Iterable[str]) -> Iterator[EventRecord]:
    """Extract (timestamp, event, session_id) records, skipping anything else."""
    timestamp: Optional[datetime] = None
    event: Optional[str] = None
    session_id: Optional[str] = None

    for line in lines:
        for match in _FIELD_RE.finditer(line):
            ts_value, event_value, session_value = match.groups()
            if ts_value is not None:
                try:
                    timestamp = datetime.strptime(ts_value, "%Y-%m-%d %H:%M:%S")
                except ValueError:
                    timestamp = None
                event = session_id = None
            elif timestamp is None:
                # Nested keys inside "data", or a record whose head was lost
                continue
            elif event_value is not None and event is None:
                event = event_value
            elif session_value is not None and session_id is None:
                session_id = session_value

            if timestamp is not None and event is not None and session_id is not None:
                yield EventRecord(timestamp=timestamp, event=event, session_id=session_id)
                timestamp = event = session_id = None


def day_bounds(now: datetime) -> tuple[datetime, datetime]:
    """Local calendar day containing ``now``."""
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def build_timelines(records: Iterable[EventRecord], now: datetime) -> List[SessionTimeline]:
    """Per-session timelines of today's status-relevant events, in stream order."""
    day_start, day_end = day_bounds(now)
    timelines: Dict[str, SessionTimeline] = {}
    for record in records:
        if not (day_start <= record.timestamp < day_end):
            continue
        if record.event not in EVENT_STATUS:
            continue
        timeline = timelines.setdefault(record.session_id, SessionTimeline(record.session_id))
        timeline.events.append((record.timestamp, record.event))
    return list(timelines.values())


def status_transitions(timeline: SessionTimeline) -> List[tuple[datetime, str]]:
    return [(ts, EVENT_STATUS[event]) for ts, event in timeline.events]


def working_seconds(timeline: SessionTimeline, now: datetime) -> float:
    """Time spent working: each working stretch runs until the next status change."""
    total = 0.0
    working_since: Optional[datetime] = None
    for ts, status in status_transitions(timeline):
        if status == WORKING:
            if working_since is None:
                working_since = ts
        elif working_since is not None:
            total += max((ts - working_since).total_seconds(), 0.0)
            working_since = None
    if working_since is not None:
        total += max((now - working_since).total_seconds(), 0.0)
    return total


def concurrency_periods(timelines: Iterable[SessionTimeline], now: datetime) -> List[ConcurrencyPeriod]:
    """
    Number of working sessions over time, as coalesced periods.

    All transitions are merged into one chronological stream; transitions
    sharing a timestamp form a single boundary. The last period runs to ``now``.
    """
    stream = []
    for timeline in timelines:
        for ts, status in status_transitions(timeline):
            stream.append((ts, timeline.session_id, status))
    # Stable: equal timestamps keep stream order
    stream.sort(key=lambda item: item[0])

    live: Dict[str, str] = {}
    periods: List[ConcurrencyPeriod] = []
    current_start: Optional[datetime] = None
    current_count = 0

    i = 0
    while i < len(stream):
        boundary = stream[i][0]
        while i < len(stream) and stream[i][0] == boundary:
            _, session_id, status = stream[i]
            if status == ENDED:
                live.pop(session_id, None)
            else:
                live[session_id] = status
            i += 1

        count = sum(1 for status in live.values() if status == WORKING)
        if current_start is None:
            current_start, current_count = boundary, count
        elif count != current_count:
            periods.append(ConcurrencyPeriod(current_start, boundary, current_count))
            current_start, current_count = boundary, count

    if current_start is not None:
        periods.append(ConcurrencyPeriod(current_start, max(now, current_start), current_count))
    return periods


class ConcurrencyAggregator:
    """Read-only pass over the global event stream."""

    def __init__(self, events_file: str, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.events_file = Path(events_file).expanduser()
        self.chunk_size = max(1, chunk_size)

    def report(self, now: Optional[datetime] = None) -> ProductivityReport:
        """Compute today's productivity report."""
        now = now or datetime.now()
        day_start, _ = day_bounds(now)

        try:
            records = list(iter_records(iter_lines(self.events_file, self.chunk_size)))
        except FileNotFoundError:
            logger.info(f"No event stream at {self.events_file}")
            records = []
        except OSError as e:
            logger.warning(f"Could not read {self.events_file}: {e}")
            records = []

        timelines = build_timelines(records, now)
        return ProductivityReport(
            day_start=day_start,
            generated_at=now,
            timelines=timelines,
            working_seconds={t.session_id: working_seconds(t, now) for t in timelines},
            periods=concurrency_periods(timelines, now),
        )
