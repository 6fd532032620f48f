"""Data models for Agent Monitor."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, List, Tuple


class SessionStatus(Enum):
    """Session lifecycle status."""
    WORKING = "working"              # Agent is processing
    FRESH_WAITING = "fresh_waiting"  # Just finished, needs attention
    WAITING = "waiting"              # Idle for a while
    ENDED = "ended"                  # Session ended (never exposed)

    @property
    def is_waiting(self) -> bool:
        return self in (SessionStatus.FRESH_WAITING, SessionStatus.WAITING)


@dataclass(frozen=True)
class EventBlock:
    """One delimited block of a session log, i.e. one lifecycle event."""
    event_type: str
    timestamp: Optional[datetime] = None
    fields: Mapping[str, str] = field(default_factory=dict)

    def get(self, name: str) -> Optional[str]:
        return self.fields.get(name)

    def keyword(self, name: str) -> str:
        """First token of a field value.

        The hook annotates some values, e.g. ``Source: compact (startup/resume/clear)``.
        """
        value = self.fields.get(name) or ""
        parts = value.split()
        return parts[0] if parts else ""


@dataclass(frozen=True)
class SessionRecord:
    """Visible state of one agent session."""
    session_id: str
    display_name: str
    project_path: str = ""
    last_prompt: str = ""
    status: SessionStatus = SessionStatus.FRESH_WAITING
    last_update: datetime = field(default_factory=datetime.now)
    agent_pid: Optional[int] = None
    tab_title: Optional[str] = None  # Resolved externally, never invented
    waiting_since: Optional[datetime] = None

    def to_dict(self) -> dict:
        """Convert record to dictionary for JSON serialization."""
        return {
            "session_id": self.session_id,
            "display_name": self.display_name,
            "project_path": self.project_path,
            "last_prompt": self.last_prompt,
            "status": self.status.value,
            "last_update": self.last_update.isoformat(),
            "agent_pid": self.agent_pid,
            "tab_title": self.tab_title,
            "waiting_since": self.waiting_since.isoformat() if self.waiting_since else None,
        }


@dataclass(frozen=True)
class SessionSnapshot:
    """Immutable view of all visible sessions at one point in time."""
    records: Mapping[str, SessionRecord] = field(default_factory=dict)
    taken_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        # Freeze the mapping so consumers can't mutate registry state
        if not isinstance(self.records, MappingProxyType):
            object.__setattr__(self, "records", MappingProxyType(dict(self.records)))

    def get(self, session_id: str) -> Optional[SessionRecord]:
        return self.records.get(session_id)

    def visible_ids(self) -> frozenset:
        return frozenset(self.records)

    def sorted_records(self) -> List[SessionRecord]:
        """Waiting sessions first, then most recently updated."""
        return sorted(
            self.records.values(),
            key=lambda r: (not r.status.is_waiting, -r.last_update.timestamp(), r.session_id),
        )

    def __len__(self) -> int:
        return len(self.records)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self.records


@dataclass
class ReloadResult:
    """Outcome of a reload or dwell tick."""
    snapshot: SessionSnapshot
    changed: bool = False
    attention: List[SessionRecord] = field(default_factory=list)


@dataclass
class NotificationEvent:
    """A "this session needs you" signal."""
    session_id: str
    display_name: str
    project_path: str = ""
    title: str = "Claude Ready"
    message: str = ""


@dataclass(frozen=True)
class ActivationTarget:
    """Data a terminal-activation collaborator needs for the selected session."""
    session_id: str
    agent_pid: Optional[int]
    project_path: str

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "agent_pid": self.agent_pid,
            "project_path": self.project_path,
        }


@dataclass(frozen=True)
class ConcurrencyPeriod:
    """Maximal interval during which the number of working sessions was constant."""
    start: datetime
    end: datetime
    concurrency: int

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "concurrency": self.concurrency,
        }


@dataclass
class SessionTimeline:
    """Today's lifecycle events for one session, in stream order."""
    session_id: str
    events: List[Tuple[datetime, str]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "events": [[ts.isoformat(), event] for ts, event in self.events],
        }


@dataclass
class ProductivityReport:
    """Per-session working time and concurrency over the current day."""
    day_start: datetime
    generated_at: datetime
    timelines: List[SessionTimeline] = field(default_factory=list)
    working_seconds: dict[str, float] = field(default_factory=dict)
    periods: List[ConcurrencyPeriod] = field(default_factory=list)

    @property
    def total_working_seconds(self) -> float:
        return sum(self.working_seconds.values())

    @property
    def peak_concurrency(self) -> int:
        return max((p.concurrency for p in self.periods), default=0)

    @property
    def average_concurrency(self) -> float:
        """Time-weighted mean over all periods."""
        total = sum(p.duration.total_seconds() for p in self.periods)
        if total <= 0:
            return 0.0
        weighted = sum(p.concurrency * p.duration.total_seconds() for p in self.periods)
        return weighted / total

    def to_dict(self) -> dict:
        return {
            "day_start": self.day_start.isoformat(),
            "generated_at": self.generated_at.isoformat(),
            "working_seconds": self.working_seconds,
            "total_working_seconds": self.total_working_seconds,
            "peak_concurrency": self.peak_concurrency,
            "average_concurrency": self.average_concurrency,
            "periods": [p.to_dict() for p in self.periods],
            "timelines": [t.to_dict() for t in self.timelines],
        }
