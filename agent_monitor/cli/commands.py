"""Command implementations for the agent-monitor CLI."""

import json
import sys
from datetime import datetime
from typing import Optional

from .client import AgentMonitorClient

STATUS_LABELS = {
    "working": "working",
    "fresh_waiting": "READY",
    "waiting": "waiting",
}


def _format_age(iso_timestamp: Optional[str], now: Optional[datetime] = None) -> str:
    """Format elapsed time since a timestamp: '45s', '3m', '2h05m'."""
    if not iso_timestamp:
        return "-"
    try:
        then = datetime.fromisoformat(iso_timestamp)
    except ValueError:
        return "-"
    seconds = max(int(((now or datetime.now()) - then).total_seconds()), 0)
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    return f"{seconds // 3600}h{(seconds % 3600) // 60:02d}m"


def _format_duration(seconds: float) -> str:
    seconds = int(seconds)
    return f"{seconds // 3600}h{(seconds % 3600) // 60:02d}m"


def format_session_line(session: dict, now: Optional[datetime] = None) -> str:
    """Format one session as a single line."""
    marker = "*" if session.get("selected") else " "
    status = STATUS_LABELS.get(session["status"], session["status"])
    name = session.get("tab_title") or session["display_name"]
    age = _format_age(session.get("waiting_since") or session.get("last_update"), now)
    prompt = session.get("last_prompt", "")
    if len(prompt) > 60:
        prompt = prompt[:57] + "..."
    return f"{marker} {session['session_id'][:8]} | {status:<8} | {age:>6} | {name} | {prompt}"


def cmd_list(client: AgentMonitorClient, json_output: bool = False) -> int:
    """
    List visible sessions.

    Exit codes:
        0: Success
        2: Agent monitor unavailable
    """
    data = client.list_sessions()
    if data is None:
        print("Error: Agent monitor unavailable", file=sys.stderr)
        return 2

    if json_output:
        print(json.dumps(data, indent=2))
        return 0

    sessions = data.get("sessions", [])
    if not sessions:
        print("No active sessions")
        return 0
    for session in sessions:
        print(format_session_line(session))
    return 0


def cmd_show(client: AgentMonitorClient, session_id: str) -> int:
    """Show one session in full."""
    session = client.get_session(session_id)
    if session is None:
        print(f"Error: Session {session_id} not found (or monitor unavailable)", file=sys.stderr)
        return 1
    for key, value in session.items():
        print(f"{key}: {value if value is not None else '-'}")
    return 0


def cmd_select(client: AgentMonitorClient, session_id: str) -> int:
    """Toggle selection of a session."""
    data, success, unavailable = client.select_session(session_id)
    if unavailable:
        print("Error: Agent monitor unavailable", file=sys.stderr)
        return 2
    if not success:
        print(f"Error: Session {session_id} not found", file=sys.stderr)
        return 1
    selected = data.get("selected_session_id")
    print(f"Selected: {selected}" if selected else "Selection cleared")
    return 0


def cmd_activate(client: AgentMonitorClient, json_output: bool = False) -> int:
    """
    Print the activation target (pid, project path) of the selected session.

    Exit codes:
        0: Success
        1: Nothing selected (or monitor unavailable)
    """
    target = client.get_activation()
    if target is None:
        print("Error: No session selected", file=sys.stderr)
        return 1
    if json_output:
        print(json.dumps(target))
    else:
        print(f"pid={target.get('agent_pid') or '-'} path={target.get('project_path') or '-'}")
    return 0


def cmd_delete(client: AgentMonitorClient, session_id: str) -> int:
    """Delete a session's log."""
    success, unavailable = client.delete_session(session_id)
    if unavailable:
        print("Error: Agent monitor unavailable", file=sys.stderr)
        return 2
    if not success:
        print(f"Error: No log for session {session_id}", file=sys.stderr)
        return 1
    print(f"Deleted session {session_id}")
    return 0


def cmd_clean(client: AgentMonitorClient) -> int:
    """Delete the logs of ended sessions."""
    removed = client.clean_ended()
    if removed is None:
        print("Error: Agent monitor unavailable", file=sys.stderr)
        return 2
    print(f"Removed {len(removed)} ended session logs")
    return 0


def cmd_purge(client: AgentMonitorClient, confirmed: bool = False) -> int:
    """Delete all logs. Requires --yes."""
    if not confirmed:
        print("Refusing to delete all logs without --yes", file=sys.stderr)
        return 1
    deleted = client.delete_all_logs()
    if deleted is None:
        print("Error: Agent monitor unavailable", file=sys.stderr)
        return 2
    print(f"Deleted {deleted} log files")
    return 0


def cmd_reload(client: AgentMonitorClient) -> int:
    data = client.reload()
    if data is None:
        print("Error: Agent monitor unavailable", file=sys.stderr)
        return 2
    print(f"{data['session_count']} sessions ({'changed' if data['changed'] else 'unchanged'})")
    return 0


def cmd_stats(client: AgentMonitorClient, json_output: bool = False) -> int:
    """Show today's working time per session and concurrency."""
    report = client.get_productivity()
    if report is None:
        print("Error: Agent monitor unavailable", file=sys.stderr)
        return 2

    if json_output:
        print(json.dumps(report, indent=2))
        return 0

    print(f"Total working time: {_format_duration(report['total_working_seconds'])}")
    print(f"Peak concurrency:   {report['peak_concurrency']}")
    print(f"Avg concurrency:    {report['average_concurrency']:.2f}")
    working = sorted(report["working_seconds"].items(), key=lambda item: -item[1])
    if working:
        print()
        for session_id, seconds in working:
            print(f"  {session_id[:8]}  {_format_duration(seconds)}")
    return 0
