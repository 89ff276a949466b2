#!/usr/bin/env python3
"""Demo command - report on the built-in demo portfolios."""

from rich.console import Console

from ..config import create_pricing_manager
from ..history import ReportCancelledError
from ..ledger import OversellError
from ..performance import get_portfolio_performance
from ..repository import InMemoryPortfolioRepository, seed_demo_data
from .report import add_engine_arguments, render_report, settings_from_args


def register_subcommand(subparsers):
    """Register the demo subcommand.

    Args:
        subparsers: The argparse subparsers action to add the command to.
    """
    parser = subparsers.add_parser(
        "demo",
        help="Report on built-in demo portfolios",
        description="Seed an in-memory repository with two demo portfolios and print their reports.",
    )
    add_engine_arguments(parser)
    parser.set_defaults(func=run_demo)


def run_demo(args):
    """Seed demo data and render a report for each portfolio.

    Args:
        args: Parsed argparse namespace.

    Returns:
        int: Exit code (0 for success, 1 for errors).
    """
    console = Console()

    try:
        settings = settings_from_args(args)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    repository = InMemoryPortfolioRepository()
    portfolios = seed_demo_data(repository)
    pricing_manager = create_pricing_manager(settings)

    for portfolio in portfolios:
        try:
            report = get_portfolio_performance(
                repository,
                pricing_manager,
                portfolio.portfolio_id,
                oversell=settings.oversell,
                price_mode=settings.price_mode,
                max_workers=settings.max_workers,
                timeout=settings.timeout_seconds,
            )
        except (OversellError, ReportCancelledError) as e:
            console.print(f"[red]Error: {e}[/red]")
            return 1

        assert report is not None
        render_report(console, report)
        console.print()

    return 0
