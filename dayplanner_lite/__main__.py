"""Command-line entry for dayplanner_lite."""

from __future__ import annotations

import argparse
import sys
from typing import NoReturn

from . import run_server


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for the dayplanner_lite CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="dayplanner_lite",
        description="DayPlanner Lite - task/calendar API with recurring event expansion",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m dayplanner_lite                          # Start server on default port (8080)
  python -m dayplanner_lite --port 3000              # Start server on port 3000
  python -m dayplanner_lite --store ./events.json    # Use a custom event store file
        """,
    )

    parser.add_argument(
        "--port",
        type=int,
        metavar="PORT",
        help="Port number for the web server (default: 8080, or DAYPLANNER_SERVER_PORT)",
    )
    parser.add_argument(
        "--store",
        metavar="PATH",
        help="Path to the JSON event store (default: DAYPLANNER_STORE_PATH or ./events.json)",
    )

    return parser


def main() -> NoReturn:
    """Run the dayplanner_lite CLI."""
    parser = _create_parser()
    args = parser.parse_args()

    try:
        run_server(args)
    except KeyboardInterrupt:
        sys.exit(130)
    sys.exit(0)


if __name__ == "__main__":
    main()
