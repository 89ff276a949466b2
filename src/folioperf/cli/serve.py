#!/usr/bin/env python3
"""Serve command for launching the folioperf JSON API."""

from rich.console import Console

from .report import add_engine_arguments, settings_from_args


def register_subcommand(subparsers):
    """Register the serve subcommand.

    Args:
        subparsers: The argparse subparsers action to add the command to.
    """
    parser = subparsers.add_parser(
        "serve",
        help="Launch the folioperf JSON API",
        description="Start a local Flask server exposing portfolios, holdings, transactions and performance reports.",
    )
    parser.add_argument(
        "--port",
        "-p",
        type=int,
        default=None,
        help="Port to run the server on (default: FOLIOPERF_PORT or 5080)",
    )
    parser.add_argument(
        "--no-seed",
        action="store_true",
        help="Start with an empty repository instead of the demo portfolios",
    )
    add_engine_arguments(parser)
    parser.set_defaults(func=run_serve)


def run_serve(args):
    """Launch the Flask development server.

    Args:
        args: Parsed argparse namespace.

    Returns:
        int: Exit code (0 for success, 1 for errors).
    """
    from ..frontend import create_app
    from ..repository import InMemoryPortfolioRepository, seed_demo_data

    console = Console()

    try:
        settings = settings_from_args(args)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    port = args.port if args.port is not None else settings.port

    repository = InMemoryPortfolioRepository()
    if not args.no_seed:
        seeded = seed_demo_data(repository)
        console.print(f"Seeded [cyan]{len(seeded)}[/cyan] demo portfolio(s).")

    app = create_app(repository=repository, settings=settings)

    console.print(
        f"[bold]Starting folioperf API on [cyan]http://127.0.0.1:{port}[/cyan][/bold]"
    )
    console.print("[dim]Press Ctrl+C to stop the server.[/dim]\n")

    app.run(host="127.0.0.1", port=port)
    return 0
