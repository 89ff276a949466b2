"""Version subcommand: print the installed folioperf distribution and runtime."""

import platform
from importlib.metadata import PackageNotFoundError, version


def register_subcommand(subparsers):
    """Register the version subcommand.

    Args:
        subparsers: The argparse subparsers action to add the command to.
    """
    parser = subparsers.add_parser(
        "version",
        help="Show the installed folioperf release",
        description="Print the folioperf package version and the Python runtime it runs on.",
    )
    parser.set_defaults(func=run_version)


def get_version() -> str:
    """Return the installed folioperf version, or "unknown" when running from a source tree."""
    try:
        return version("folioperf")
    except PackageNotFoundError:
        return "unknown"


def run_version(args):
    print(f" folioperf {get_version()} (Python {platform.python_version()})")
    return 0
