"""Session registry: rebuilds the visible snapshot from the lifecycle logs."""

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from .dwell import FRESH_WAITING_WINDOW, dwell_status, promote, resolve_waiting_since
from .log_parser import log_filename, parse_log, read_log_file, session_id_from_filename
from .models import (
    ActivationTarget,
    ReloadResult,
    SessionRecord,
    SessionSnapshot,
    SessionStatus,
)
from .state_machine import FoldState, display_name, fold_blocks

logger = logging.getLogger(__name__)


def reconcile(
    previous: SessionSnapshot,
    folds: Mapping[str, FoldState],
    now: datetime,
    window: timedelta = FRESH_WAITING_WINDOW,
    tab_titles: Optional[Mapping[str, str]] = None,
) -> SessionSnapshot:
    """
    Build the next snapshot from freshly folded logs and the previous snapshot.

    Only ``waiting_since`` and ``tab_title`` are carried forward from the
    previous snapshot; everything else comes from the logs.

    Args:
        previous: Snapshot before this reload
        folds: Fold result per session id
        now: Reload time
        window: Fresh-waiting window
        tab_titles: Freshly resolved tab titles, if any

    Returns:
        Snapshot holding only visible sessions
    """
    tab_titles = tab_titles or {}
    records: Dict[str, SessionRecord] = {}

    for session_id, fold in folds.items():
        if fold.status == SessionStatus.ENDED:
            continue
        # Sessions reset before any real interaction are noise
        if not fold.last_prompt:
            continue

        prior = previous.get(session_id)
        waiting_since = resolve_waiting_since(prior, fold.status, now)
        status = fold.status
        if waiting_since is not None:
            status = dwell_status(waiting_since, now, window)

        tab_title = tab_titles.get(session_id) or (prior.tab_title if prior else None)

        records[session_id] = SessionRecord(
            session_id=session_id,
            display_name=display_name(fold.project_path, session_id),
            project_path=fold.project_path,
            last_prompt=fold.last_prompt,
            status=status,
            last_update=fold.last_timestamp or now,
            agent_pid=fold.agent_pid,
            tab_title=tab_title,
            waiting_since=waiting_since,
        )

    return SessionSnapshot(records=records, taken_at=now)


def has_changed(old: SessionSnapshot, new: SessionSnapshot) -> bool:
    """True if the visible id set or any visible status differs."""
    if old.visible_ids() != new.visible_ids():
        return True
    return any(old.records[sid].status != record.status for sid, record in new.records.items())


def attention_transitions(old: SessionSnapshot, new: SessionSnapshot) -> List[SessionRecord]:
    """Sessions that became waiting in this reload and weren't waiting before."""
    transitions = []
    for session_id, record in new.records.items():
        if not record.status.is_waiting:
            continue
        prior = old.get(session_id)
        if prior is None or not prior.status.is_waiting:
            transitions.append(record)
    return transitions


class SessionRegistry:
    """Owns the current session snapshot.

    Not thread-safe: SessionMonitor funnels every call through one worker.
    """

    def __init__(
        self,
        log_dir: str,
        fresh_window: timedelta = FRESH_WAITING_WINDOW,
        events_file: Optional[str] = None,
    ):
        self.log_dir = Path(log_dir).expanduser()
        self.fresh_window = fresh_window
        self.events_file = Path(events_file).expanduser() if events_file else None
        self._snapshot = SessionSnapshot()
        self._selected_session_id: Optional[str] = None

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    @property
    def selected_session_id(self) -> Optional[str]:
        return self._selected_session_id

    def get(self, session_id: str) -> Optional[SessionRecord]:
        return self._snapshot.get(session_id)

    def list_sessions(self) -> List[SessionRecord]:
        return self._snapshot.sorted_records()

    def _ensure_log_dir(self) -> bool:
        if self.log_dir.is_dir():
            return True
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created missing log directory {self.log_dir}")
        except OSError as e:
            logger.warning(f"Could not create log directory {self.log_dir}: {e}")
        return False

    def _session_logs(self) -> Dict[str, Path]:
        logs = {}
        try:
            entries = list(self.log_dir.iterdir())
        except OSError as e:
            logger.warning(f"Could not list {self.log_dir}: {e}")
            return logs
        for path in entries:
            session_id = session_id_from_filename(path.name)
            if session_id:
                logs[session_id] = path
        return logs

    def scan(self, now: Optional[datetime] = None) -> Dict[str, FoldState]:
        """Read and fold every session log. Safe to call off the worker."""
        now = now or datetime.now()
        if not self._ensure_log_dir():
            return {}

        folds = {}
        for session_id, path in self._session_logs().items():
            try:
                text = read_log_file(path)
            except OSError as e:
                # Deleted or unreadable between listing and reading
                logger.warning(f"Skipping {path.name}: {e}")
                continue
            folds[session_id] = fold_blocks(parse_log(text), now)
        return folds

    def apply_scan(
        self,
        folds: Mapping[str, FoldState],
        now: Optional[datetime] = None,
        tab_titles: Optional[Mapping[str, str]] = None,
    ) -> ReloadResult:
        """Swap in a snapshot built from ``folds``."""
        now = now or datetime.now()
        old = self._snapshot
        new = reconcile(old, folds, now, self.fresh_window, tab_titles)
        return self._swap(old, new, attention_transitions(old, new))

    def reload(
        self,
        now: Optional[datetime] = None,
        tab_titles: Optional[Mapping[str, str]] = None,
    ) -> ReloadResult:
        """Scan the logs and rebuild the snapshot."""
        now = now or datetime.now()
        return self.apply_scan(self.scan(now), now, tab_titles)

    def tick(self, now: Optional[datetime] = None) -> ReloadResult:
        """Periodic dwell promotion. Never produces attention records."""
        now = now or datetime.now()
        old = self._snapshot
        return self._swap(old, promote(old, now, self.fresh_window), [])

    def _swap(
        self,
        old: SessionSnapshot,
        new: SessionSnapshot,
        attention: List[SessionRecord],
    ) -> ReloadResult:
        self._snapshot = new
        if self._selected_session_id and self._selected_session_id not in new:
            self._selected_session_id = None
        changed = has_changed(old, new)
        if changed:
            logger.debug(f"Snapshot changed: {len(old)} -> {len(new)} sessions")
        return ReloadResult(snapshot=new, changed=changed, attention=attention)

    def apply_tab_titles(self, titles: Mapping[str, str]) -> bool:
        """Merge asynchronously resolved tab titles; unknown ids are ignored."""
        records = dict(self._snapshot.records)
        updated = False
        for session_id, title in titles.items():
            record = records.get(session_id)
            if record is None or not title or record.tab_title == title:
                continue
            records[session_id] = replace(record, tab_title=title)
            updated = True
        if updated:
            self._snapshot = SessionSnapshot(records=records, taken_at=self._snapshot.taken_at)
        return updated

    # Selection

    def select(self, session_id: Optional[str]) -> Optional[str]:
        """Toggle selection of a visible session. Returns the new selection."""
        if session_id is None or session_id == self._selected_session_id:
            self._selected_session_id = None
        elif session_id in self._snapshot:
            self._selected_session_id = session_id
        return self._selected_session_id

    def activation_target(self) -> Optional[ActivationTarget]:
        """Pid and path of the selected session, for terminal activation."""
        if not self._selected_session_id:
            return None
        record = self._snapshot.get(self._selected_session_id)
        if record is None:
            return None
        return ActivationTarget(
            session_id=record.session_id,
            agent_pid=record.agent_pid,
            project_path=record.project_path,
        )

    # Log maintenance

    def delete_session_log(self, session_id: str) -> bool:
        """Delete one session's log; the session disappears on the next reload."""
        path = self.log_dir / log_filename(session_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error(f"Failed to delete {path}: {e}")
            return False
        if self._selected_session_id == session_id:
            self._selected_session_id = None
        logger.info(f"Deleted log for session {session_id}")
        return True

    def clean_ended_sessions(self) -> List[str]:
        """Delete the logs of every session that has ended."""
        removed = []
        for session_id, path in self._session_logs().items():
            try:
                blocks = parse_log(read_log_file(path))
            except OSError as e:
                logger.warning(f"Skipping {path.name}: {e}")
                continue
            if any(block.event_type == "SessionEnd" for block in blocks):
                if self.delete_session_log(session_id):
                    removed.append(session_id)
        logger.info(f"Cleaned {len(removed)} ended session logs")
        return removed

    def delete_all_logs(self) -> int:
        """Delete every session log and the global event stream."""
        paths = list(self._session_logs().values())
        if self.events_file and self.events_file.exists():
            paths.append(self.events_file)

        deleted = 0
        for path in paths:
            try:
                path.unlink()
                deleted += 1
            except OSError as e:
                logger.error(f"Failed to delete {path}: {e}")
        self._selected_session_id = None
        logger.info(f"Deleted {deleted} log files")
        return deleted
