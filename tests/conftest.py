"""Shared pytest fixtures for Agent Monitor tests."""

from datetime import datetime
from pathlib import Path
from typing import Callable
from unittest.mock import MagicMock

import pytest

from agent_monitor.log_parser import log_filename
from agent_monitor.models import SessionRecord, SessionStatus
from agent_monitor.notifier import Notifier
from agent_monitor.registry import SessionRegistry


def _make_block(event: str, ts: str = "2026-01-14 10:00:00", **fields: str) -> str:
    """Render one log block the way lifecycle-monitor.sh writes it."""
    lines = [f"[{ts}] EVENT: {event}"]
    for key, value in fields.items():
        lines.append(f"  {key}: {value}")
    return "\n".join(lines) + "\n---\n"


@pytest.fixture
def make_block() -> Callable[..., str]:
    """
    Factory for log blocks.

    Returns:
        Function (event, ts=..., **fields) -> block text
    """
    return _make_block


@pytest.fixture
def log_dir(tmp_path: Path) -> Path:
    """Empty lifecycle log directory."""
    path = tmp_path / "lifecycle"
    path.mkdir()
    return path


@pytest.fixture
def write_log(log_dir: Path) -> Callable[..., Path]:
    """
    Factory that writes (or appends to) a session log.

    Returns:
        Function (session_id, *blocks, append=False) -> log path
    """
    def _write(session_id: str, *blocks: str, append: bool = False) -> Path:
        path = log_dir / log_filename(session_id)
        mode = "a" if append else "w"
        with open(path, mode, encoding="utf-8") as f:
            f.write("".join(blocks))
        return path

    return _write


@pytest.fixture
def registry(log_dir: Path) -> SessionRegistry:
    """SessionRegistry over the temporary log directory."""
    return SessionRegistry(log_dir=str(log_dir), events_file=str(log_dir / "all-events.jsonl"))


@pytest.fixture
def mock_notifier() -> MagicMock:
    """Notifier whose dispatch is recorded instead of delivered."""
    mock = MagicMock(spec=Notifier)
    mock.dispatch.return_value = []
    return mock


@pytest.fixture
def sample_record() -> SessionRecord:
    """A visible, freshly waiting session."""
    return SessionRecord(
        session_id="abc123",
        display_name="api",
        project_path="/Users/dev/work/api",
        last_prompt="fix the flaky test...",
        status=SessionStatus.FRESH_WAITING,
        last_update=datetime(2026, 1, 14, 10, 5, 0),
        agent_pid=4242,
        waiting_since=datetime(2026, 1, 14, 10, 5, 0),
    )
