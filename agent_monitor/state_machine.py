"""Forward fold of a session's event blocks into its current status."""

from dataclasses import dataclass, replace
from datetime import datetime
from functools import reduce
from typing import Iterable, Optional

from .models import EventBlock, SessionStatus

# Prompts injected by the agent itself (background task results), not by a human
SYSTEM_PROMPT_MARKER = "<task-notification>"

AUTO_TRIGGER = "auto"
MANUAL_TRIGGER = "manual"


@dataclass(frozen=True)
class FoldState:
    """Running value of the fold."""
    status: SessionStatus = SessionStatus.FRESH_WAITING
    pending_compact_trigger: Optional[str] = None
    project_path: str = ""
    agent_pid: Optional[int] = None
    last_prompt: str = ""
    last_timestamp: Optional[datetime] = None


def initial_state(now: Optional[datetime] = None) -> FoldState:
    """State before any block is seen: a freshly started session."""
    return FoldState(last_timestamp=now or datetime.now())


def is_user_prompt(prompt: Optional[str]) -> bool:
    return prompt is not None and not prompt.startswith(SYSTEM_PROMPT_MARKER)


def _parse_pid(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return int(value.split()[0])
    except (ValueError, IndexError):
        return None


def apply_block(state: FoldState, block: EventBlock) -> FoldState:
    """Apply one block. Later blocks override earlier ones."""
    changes: dict = {}

    if block.timestamp is not None:
        changes["last_timestamp"] = block.timestamp

    project = block.get("Project")
    if project is not None:
        changes["project_path"] = project

    event = block.event_type
    if event == "SessionEnd":
        changes["status"] = SessionStatus.ENDED

    elif event == "PreCompact":
        trigger = AUTO_TRIGGER if block.keyword("Trigger") == AUTO_TRIGGER else MANUAL_TRIGGER
        changes["status"] = SessionStatus.WORKING
        changes["pending_compact_trigger"] = trigger

    elif event == "SessionStart":
        if block.keyword("Source") == "compact" and state.pending_compact_trigger == AUTO_TRIGGER:
            # Auto-compaction: the agent carries on by itself
            changes["status"] = SessionStatus.WORKING
        else:
            changes["status"] = SessionStatus.FRESH_WAITING
        changes["pending_compact_trigger"] = None
        pid = _parse_pid(block.get("PID"))
        if pid is not None:
            changes["agent_pid"] = pid

    elif event == "Stop":
        changes["status"] = SessionStatus.FRESH_WAITING

    elif event == "UserPromptSubmit":
        prompt = block.get("Prompt")
        if prompt is None:
            changes["status"] = SessionStatus.WORKING
        elif is_user_prompt(prompt):
            changes["status"] = SessionStatus.WORKING
            changes["last_prompt"] = prompt

    if not changes:
        return state
    return replace(state, **changes)


def fold_blocks(blocks: Iterable[EventBlock], now: Optional[datetime] = None) -> FoldState:
    """Fold blocks in file order."""
    return reduce(apply_block, blocks, initial_state(now))


def display_name(project_path: str, session_id: str) -> str:
    """Last path segment of the project, or the session id."""
    for segment in reversed(project_path.split("/")):
        if segment:
            return segment
    return session_id
