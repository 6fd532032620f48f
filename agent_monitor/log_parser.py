"""Parser for the per-session lifecycle logs written by lifecycle-monitor.sh.

A session log is a sequence of blocks separated by a ``---`` line::

    [2026-01-14 10:17:06] EVENT: SessionStart
      Session ID: 5f1c...
      Project: /Users/me/work/api
      Source: startup (startup/resume/clear)
      PID: 48213
    ---

Block order is append order, which is chronological; callers rely on that
rather than re-sorting by timestamp.
"""

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from .models import EventBlock

logger = logging.getLogger(__name__)

LOG_PREFIX = "session-"
LOG_SUFFIX = ".log"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

_DELIMITER_RE = re.compile(r'^[ \t]*---[ \t]*\r?$', re.MULTILINE)
_TIMESTAMP_RE = re.compile(r'\[([^\[\]\n]*)\]')
_HEADER_RE = re.compile(r'^[ \t]*(?:\[[^\[\]\n]*\][ \t]*)?EVENT:[ \t]*(\S+)', re.MULTILINE)
_FIELD_RE = re.compile(r'^[ \t]*([A-Za-z][A-Za-z0-9 _-]*?)[ \t]*:[ \t]?(.*)$')


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse a ``YYYY-MM-DD HH:MM:SS`` stamp, or None."""
    try:
        return datetime.strptime(value.strip(), TIMESTAMP_FORMAT)
    except ValueError:
        return None


def parse_block(segment: str) -> EventBlock:
    """Parse one block. Never raises; missing pieces are left empty."""
    timestamp = None
    ts_match = _TIMESTAMP_RE.search(segment)
    if ts_match:
        # First bracket wins even if a malformed block holds several
        timestamp = parse_timestamp(ts_match.group(1))

    # Only a line that starts with the marker is a header; prompts may quote it
    headers = [m.group(1) for m in _HEADER_RE.finditer(segment)]
    event_type = headers[0] if headers else ""
    if event_type == "Stop" and "SubagentStop" in headers:
        # Malformed block holding both markers: never a plain Stop
        event_type = "SubagentStop"

    fields: dict[str, str] = {}
    for line in segment.splitlines():
        if _HEADER_RE.match(line):
            continue
        match = _FIELD_RE.match(line)
        if not match:
            continue
        key = match.group(1)
        # First occurrence wins: prompt continuation lines can look like fields
        if key not in fields:
            fields[key] = match.group(2).strip()

    return EventBlock(event_type=event_type, timestamp=timestamp, fields=fields)


def parse_log(text: str) -> List[EventBlock]:
    """Split log text into its ordered event blocks."""
    blocks = []
    for segment in _DELIMITER_RE.split(text):
        if not segment.strip():
            continue
        blocks.append(parse_block(segment))
    return blocks


def read_log_file(path: Union[str, Path]) -> str:
    """Read a log file, substituting U+FFFD for invalid UTF-8 bytes."""
    data = Path(path).read_bytes()
    return data.decode("utf-8", errors="replace")


def session_id_from_filename(name: str) -> Optional[str]:
    """Extract the session id from ``session-<id>.log``."""
    if not (name.startswith(LOG_PREFIX) and name.endswith(LOG_SUFFIX)):
        return None
    session_id = name[len(LOG_PREFIX):-len(LOG_SUFFIX)]
    return session_id or None


def log_filename(session_id: str) -> str:
    return f"{LOG_PREFIX}{session_id}{LOG_SUFFIX}"
