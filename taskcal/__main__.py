"""Command-line entry for taskcal."""

from __future__ import annotations

import argparse
import json
import sys
from typing import NoReturn, Optional

from . import run_expand, run_server


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for the taskcal CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="taskcal",
        description="taskcal - calendar and task engine with recurring events",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m taskcal serve                       # CRUD service on 127.0.0.1:8080
  python -m taskcal serve --port 3000           # CRUD service on port 3000
  python -m taskcal expand --store events.json  # Print materialized events
        """,
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the CRUD HTTP service")
    serve.add_argument("--host", metavar="HOST", help="Bind address (default: TASKCAL_SERVER_BIND or 127.0.0.1)")
    serve.add_argument("--port", type=int, metavar="PORT", help="Port (default: TASKCAL_SERVER_PORT or 8080)")

    expand = subparsers.add_parser("expand", help="Print materialized events as JSON")
    expand.add_argument("--store", metavar="PATH", help="JSON event store (default: TASKCAL_STORE_PATH)")
    expand.add_argument("--now", metavar="ISO", help="Reference time for the expansion window")

    return parser


def main(argv: Optional[list[str]] = None) -> NoReturn:
    """Run the taskcal CLI."""
    parser = _create_parser()
    args = parser.parse_args(argv)

    if args.command == "expand":
        records = run_expand(args)
        json.dump(records, sys.stdout, indent=2)
        sys.stdout.write("\n")
        sys.exit(0)

    try:
        run_server(args)
    except KeyboardInterrupt:
        sys.exit(130)
    sys.exit(0)


if __name__ == "__main__":
    main()
