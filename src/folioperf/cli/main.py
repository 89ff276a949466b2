#!/usr/bin/env python3
"""Main entry point for the folioperf CLI."""

import argparse
import sys

BANNER = """
  ┌─┐┌─┐┬  ┬┌─┐┌─┐┌─┐┬─┐┌─┐
  ├┤ │ ││  ││ │├─┘├┤ ├┬┘├┤
  └  └─┘┴─┘┴└─┘┴  └─┘┴└─└
  folioperf: holdings performance reports
"""

INVESTING_WARNING = (
    " \033[33m⚠  Historical values use today's prices applied to past positions.\n"
    "    Nothing here should be construed as investment advice.\033[0m"
)


def main():
    """Parse CLI arguments and dispatch to the appropriate subcommand.

    Returns:
        int: Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        prog="folioperf",
        description="folioperf - FIFO cost basis and performance reports for investment holdings",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  folioperf report holdings.xlsx                       Display the performance report
  folioperf report holdings.json --start 2025-01-01    Limit the daily series window
  folioperf report holdings.xlsx --oversell reject     Fail on sells exceeding holdings
  folioperf demo                                       Report on built-in demo portfolios
  folioperf serve --port 5080                          Start the JSON API
        """,
    )

    subparsers = parser.add_subparsers(
        title="commands",
        dest="command",
        help="Available commands",
    )

    # Import subcommand modules and register them
    from .report import register_subcommand as register_report
    from .demo import register_subcommand as register_demo
    from .serve import register_subcommand as register_serve
    from .version import register_subcommand as register_version

    register_report(subparsers)
    register_demo(subparsers)
    register_serve(subparsers)
    register_version(subparsers)

    args = parser.parse_args()

    # If no command specified, show help
    if args.command is None:
        print(BANNER)
        print(INVESTING_WARNING)
        print()
        parser.print_help()
        return 0

    if not getattr(args, "json", False):
        print(BANNER)
        print(INVESTING_WARNING)
        print()

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
