"""Main entry point for the agent-monitor CLI."""

import argparse
import sys

from .client import AgentMonitorClient
from . import commands


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agent-monitor",
        description="Agent Monitor - live status of running Claude Code sessions",
    )
    parser.add_argument("--api-url", help="API base URL (default: $AGENT_MONITOR_API_URL or http://127.0.0.1:8421)")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # agent-monitor serve
    serve_parser = subparsers.add_parser("serve", help="Run the monitor service")
    serve_parser.add_argument("--config", default="config.yaml", help="Config file (default: config.yaml)")

    # agent-monitor list
    list_parser = subparsers.add_parser("list", help="List sessions")
    list_parser.add_argument("--json", action="store_true", help="Output JSON")

    # agent-monitor show <session-id>
    show_parser = subparsers.add_parser("show", help="Show one session")
    show_parser.add_argument("session_id", help="Session ID")

    # agent-monitor select <session-id>
    select_parser = subparsers.add_parser("select", help="Toggle selection of a session")
    select_parser.add_argument("session_id", help="Session ID")

    # agent-monitor activate
    activate_parser = subparsers.add_parser("activate", help="Print pid/path of the selected session")
    activate_parser.add_argument("--json", action="store_true", help="Output JSON")

    # agent-monitor delete <session-id>
    delete_parser = subparsers.add_parser("delete", help="Delete a session's log")
    delete_parser.add_argument("session_id", help="Session ID")

    # agent-monitor clean
    subparsers.add_parser("clean", help="Delete logs of ended sessions")

    # agent-monitor purge --yes
    purge_parser = subparsers.add_parser("purge", help="Delete all logs")
    purge_parser.add_argument("--yes", action="store_true", help="Confirm deletion")

    # agent-monitor reload
    subparsers.add_parser("reload", help="Force a reload of the session logs")

    # agent-monitor stats
    stats_parser = subparsers.add_parser("stats", help="Today's working time and concurrency")
    stats_parser.add_argument("--json", action="store_true", help="Output JSON")

    return parser


def main(argv=None):
    """Main entry point for agent-monitor CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "serve":
        from ..main import run
        run(args.config)
        sys.exit(0)

    client = AgentMonitorClient(args.api_url)

    if args.command == "list":
        sys.exit(commands.cmd_list(client, args.json))
    elif args.command == "show":
        sys.exit(commands.cmd_show(client, args.session_id))
    elif args.command == "select":
        sys.exit(commands.cmd_select(client, args.session_id))
    elif args.command == "activate":
        sys.exit(commands.cmd_activate(client, args.json))
    elif args.command == "delete":
        sys.exit(commands.cmd_delete(client, args.session_id))
    elif args.command == "clean":
        sys.exit(commands.cmd_clean(client))
    elif args.command == "purge":
        sys.exit(commands.cmd_purge(client, args.yes))
    elif args.command == "reload":
        sys.exit(commands.cmd_reload(client))
    elif args.command == "stats":
        sys.exit(commands.cmd_stats(client, args.json))
    else:
        parser.print_help()
        sys.exit(0)


if __name__ == "__main__":
    main()
