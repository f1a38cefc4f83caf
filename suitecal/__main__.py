"""Command-line entry for suitecal."""

from __future__ import annotations

import argparse
import sys
from typing import NoReturn, Optional, Sequence

from . import run_server


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for the suitecal CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="suitecal",
        description="suitecal - calendar recurrence, availability and reminder server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m suitecal                          # Start server on default port (8080)
  python -m suitecal --port 3000              # Start server on port 3000
  python -m suitecal --config suitecal.yaml   # Load settings from a YAML file
  python -m suitecal --dispatch-once          # Run one reminder dispatch tick and exit
        """,
    )

    parser.add_argument(
        "--port",
        type=int,
        metavar="PORT",
        help="Port number for the web server (default: 8080, or SUITECAL_SERVER_PORT)",
    )
    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Path to a YAML (or .json) config file (default: ./suitecal.yaml)",
    )
    parser.add_argument(
        "--dispatch-once",
        action="store_true",
        help="Run a single reminder dispatch tick against the configured store and exit",
    )

    return parser


def main(argv: Optional[Sequence[str]] = None) -> NoReturn:
    """Run the suitecal CLI."""
    parser = _create_parser()
    args = parser.parse_args(argv)

    try:
        run_server(args)
    except KeyboardInterrupt:
        sys.exit(130)
    except Exception as exc:
        print(f"suitecal failed: {exc}", file=sys.stderr)
        sys.exit(1)
    sys.exit(0)


if __name__ == "__main__":
    main()
