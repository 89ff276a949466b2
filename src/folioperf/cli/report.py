#!/usr/bin/env python3
"""Report subcommand - Display a holdings performance report."""

import json
import warnings
from datetime import date

from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from ..config import PRICE_SOURCES, Settings, create_pricing_manager, load_settings
from ..history import ReportCancelledError
from ..ledger import OversellError, OversellPolicy
from ..performance import PerformanceReport, PriceMode, build_performance_report, report_to_dict
from ..portfolio import load_holdings


def add_engine_arguments(parser):
    """Add the pricing and ledger options shared by report-producing commands.

    Options left unset fall back to the ``FOLIOPERF_*`` environment settings.

    Args:
        parser: The argparse parser to extend.
    """
    parser.add_argument(
        "--prices",
        choices=PRICE_SOURCES,
        default=None,
        help="Pricing source: mock (jittered table), fixed, or yfinance live quotes",
    )
    parser.add_argument(
        "--oversell",
        choices=[p.value for p in OversellPolicy],
        default=None,
        help="Ignore (clamp) or reject sells that exceed the quantity held",
    )
    parser.add_argument(
        "--price-mode",
        choices=[m.value for m in PriceMode],
        default=None,
        help="snapshot: one price per symbol per report; per-call: query on every lookup",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Worker threads used to evaluate holdings",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Cancel the report after this many seconds",
    )


def settings_from_args(args) -> Settings:
    """Load environment settings and apply CLI overrides.

    Raises:
        ValueError: If an environment variable or flag holds an invalid value.
    """
    settings = load_settings()
    if args.prices is not None:
        settings.price_source = args.prices
    if args.oversell is not None:
        settings.oversell = OversellPolicy(args.oversell)
    if args.price_mode is not None:
        settings.price_mode = PriceMode(args.price_mode)
    if args.workers is not None:
        if args.workers < 1:
            raise ValueError("--workers must be at least 1")
        settings.max_workers = args.workers
    if args.timeout is not None:
        settings.timeout_seconds = args.timeout
    return settings


def register_subcommand(subparsers):
    """Register the report subcommand with the argument parser.

    Args:
        subparsers: The argparse subparsers action to add the command to.
    """
    parser = subparsers.add_parser(
        "report",
        help="Display holdings performance report",
        description="Display realized/unrealized gains, allocation and daily values from an Excel or JSON transaction file.",
    )
    parser.add_argument("filename", help="Path to the Excel or JSON transaction file")
    parser.add_argument(
        "--start",
        type=date.fromisoformat,
        default=None,
        help="First day of the daily series (YYYY-MM-DD, default: first transaction day)",
    )
    parser.add_argument(
        "--end",
        type=date.fromisoformat,
        default=None,
        help="Last day of the daily series (YYYY-MM-DD, default: today)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the report as JSON instead of tables",
    )
    parser.add_argument(
        "--ignore-warnings",
        action="store_true",
        help="Suppress data warnings (missing timezones, oversells, fallback prices)",
    )
    add_engine_arguments(parser)
    parser.set_defaults(func=run)


def _format_money(value) -> str:
    if value < 0:
        return f"[red]-${abs(value):,.2f}[/red]"
    return f"${value:,.2f}"


def _format_gain(value) -> str:
    if value > 0:
        return f"[green]+${value:,.2f}[/green]"
    if value < 0:
        return f"[red]-${abs(value):,.2f}[/red]"
    return "$0.00"


def render_report(console: Console, report: PerformanceReport) -> None:
    """Print a performance report as rich tables.

    Args:
        console: Rich Console to print to.
        report: The report to render.
    """
    holdings_table = Table(title=f"{report.name}: Holdings")
    holdings_table.add_column("Symbol", style="cyan", justify="left")
    holdings_table.add_column("Quantity", style="magenta", justify="right")
    holdings_table.add_column("Unit Price\n(Avg Cost → Market)", justify="right")
    holdings_table.add_column("Market Value", style="green", justify="right")
    holdings_table.add_column("Realized", justify="right")
    holdings_table.add_column("Unrealized", justify="right")
    holdings_table.add_column("Allocation", justify="right")

    for performance in report.holdings:
        allocation = report.allocation.get(performance.symbol)
        holdings_table.add_row(
            performance.symbol,
            f"{performance.remaining_quantity:,f}",
            f"[yellow]${performance.average_cost_basis:,.2f}[/yellow] → [green]${performance.current_price:,.2f}[/green]",
            _format_money(performance.current_value),
            _format_gain(performance.realized_gain_loss),
            _format_gain(performance.unrealized_gain_loss),
            f"{allocation:.2f}%" if allocation is not None else "N/A",
        )

    console.print(holdings_table)

    series_table = Table(title=f"Daily Value ({report.start_date} to {report.end_date})")
    series_table.add_column("Date", style="cyan", justify="left")
    series_table.add_column("Value", style="green", justify="right")

    for day, value in report.series.items():
        series_table.add_row(day.isoformat(), _format_money(value))

    if report.series:
        console.print(series_table)
    else:
        console.print("[dim]No days in the requested window.[/dim]")

    console.print(
        Panel(
            f"[bold green]Total Current Value: ${report.total_current_value:,.2f}[/bold green]\n"
            f"Realized Gain/Loss: {_format_gain(report.total_realized_gain_loss)}\n"
            f"Unrealized Gain/Loss: {_format_gain(report.total_unrealized_gain_loss)}",
            title="Summary",
        )
    )


def run(args):
    """Load a transaction file and display its performance report.

    Args:
        args: Parsed argparse namespace.

    Returns:
        int: Exit code (0 for success, 1 for errors).
    """
    if args.ignore_warnings:
        warnings.filterwarnings("ignore", category=UserWarning)

    try:
        settings = settings_from_args(args)
        portfolio, holdings = load_holdings(args.filename)
    except (ValueError, FileNotFoundError) as e:
        print(f"Error: {e}")
        return 1

    try:
        report = build_performance_report(
            portfolio,
            holdings,
            create_pricing_manager(settings),
            start_date=args.start,
            end_date=args.end,
            oversell=settings.oversell,
            price_mode=settings.price_mode,
            max_workers=settings.max_workers,
            timeout=settings.timeout_seconds,
        )
    except (OversellError, ReportCancelledError) as e:
        print(f"Error: {e}")
        return 1

    if args.json:
        print(json.dumps(report_to_dict(report), indent=2))
        return 0

    render_report(Console(), report)
    return 0
