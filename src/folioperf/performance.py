"""Per-holding and portfolio-level performance reporting.

``build_performance_report`` runs the FIFO ledger for each holding, values
the remaining positions at current prices, sums portfolio totals and
allocation, and reconstructs the daily valuation series.
"""

import concurrent.futures
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable

from .history import (
    CancellationCheck,
    calculate_holdings_value_by_day,
    resolve_window,
)
from .ledger import LedgerResult, OversellPolicy, run_ledger
from .portfolio import Holding, Portfolio
from .pricingdata import PricingDataManager, SnapshotPricingDataManager
from .repository import PortfolioRepository


class PriceMode(Enum):
    """How often the pricing manager is queried during one report run."""

    SNAPSHOT = "snapshot"  # once per symbol, reused for totals and every day
    PER_CALL = "per-call"  # once per holding for totals and per (holding, day)


@dataclass
class HoldingPerformance:
    """Performance of a single holding at current prices."""
    holding_id: str
    symbol: str
    remaining_quantity: Decimal
    average_cost_basis: Decimal
    current_price: Decimal
    current_value: Decimal
    realized_gain_loss: Decimal
    unrealized_gain_loss: Decimal


@dataclass
class PerformanceReport:
    """Portfolio performance totals, allocation and daily valuation series."""
    portfolio_id: str
    name: str
    total_current_value: Decimal
    total_realized_gain_loss: Decimal
    total_unrealized_gain_loss: Decimal
    allocation: dict[str, Decimal]  # symbol -> percent of total current value
    series: dict[date, Decimal]
    start_date: date
    end_date: date
    holdings: list[HoldingPerformance] = field(default_factory=list)


def calculate_holding_performance(
    holding: Holding,
    ledger_result: LedgerResult,
    current_price: Decimal
) -> HoldingPerformance:
    """
    Combine a holding's ledger result with its current price.

    Args:
        holding: The holding the ledger was run for.
        ledger_result: Result of ``run_ledger`` over the holding's full history.
        current_price: Current unit price of the holding's symbol.

    Returns:
        HoldingPerformance where unrealized gain/loss is
        ``(current_price - average_cost_basis) * remaining_quantity`` and
        current value is ``remaining_quantity * current_price``.
    """
    average_cost_basis = ledger_result.average_cost_basis
    remaining_quantity = ledger_result.remaining_quantity

    return HoldingPerformance(
        holding_id=holding.holding_id,
        symbol=holding.symbol,
        remaining_quantity=remaining_quantity,
        average_cost_basis=average_cost_basis,
        current_price=current_price,
        current_value=remaining_quantity * current_price,
        realized_gain_loss=ledger_result.realized_gain_loss,
        unrealized_gain_loss=(current_price - average_cost_basis) * remaining_quantity,
    )


def calculate_allocation(
    holding_performances: list[HoldingPerformance],
    total_current_value: Decimal
) -> dict[str, Decimal]:
    """
    Calculate each symbol's share of the portfolio's current value.

    Holdings sharing a symbol are merged into one entry. Percentages are not
    rounded.

    Args:
        holding_performances: Per-holding results.
        total_current_value: Sum of all holdings' current values.

    Returns:
        Mapping of symbol to percentage (0-100). Empty if the total is not positive.
    """
    if total_current_value <= 0:
        return {}

    value_by_symbol: dict[str, Decimal] = defaultdict(Decimal)
    for performance in holding_performances:
        value_by_symbol[performance.symbol] += performance.current_value

    return {
        symbol: value / total_current_value * 100
        for symbol, value in value_by_symbol.items()
    }


def _evaluate_holding(
    holding: Holding,
    pricing_manager: PricingDataManager,
    oversell: OversellPolicy
) -> HoldingPerformance:
    ledger_result = run_ledger(holding.transactions, oversell)
    current_price = pricing_manager.get_current_price(holding.symbol)
    return calculate_holding_performance(holding, ledger_result, current_price)


def _evaluate_holdings(
    holdings: list[Holding],
    pricing_manager: PricingDataManager,
    oversell: OversellPolicy,
    max_workers: int,
    checkpoint: Callable[[], None],
) -> list[HoldingPerformance]:
    """Evaluate every holding, in parallel when ``max_workers > 1``.

    Results are returned in the order of ``holdings`` whatever order the
    workers finish in.
    """
    if max_workers <= 1 or len(holdings) <= 1:
        performances: list[HoldingPerformance] = []
        for holding in holdings:
            checkpoint()
            performances.append(_evaluate_holding(holding, pricing_manager, oversell))
        return performances

    results: dict[str, HoldingPerformance] = {}
    with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {
            pool.submit(_evaluate_holding, holding, pricing_manager, oversell): holding.holding_id
            for holding in holdings
        }
        try:
            for future in concurrent.futures.as_completed(futures):
                checkpoint()
                results[futures[future]] = future.result()
        except BaseException:
            for future in futures:
                future.cancel()
            raise

    return [results[holding.holding_id] for holding in holdings]


def build_performance_report(
    portfolio: Portfolio,
    holdings: list[Holding],
    pricing_manager: PricingDataManager,
    start_date: date | datetime | None = None,
    end_date: date | datetime | None = None,
    oversell: OversellPolicy = OversellPolicy.CLAMP,
    price_mode: PriceMode = PriceMode.SNAPSHOT,
    max_workers: int = 1,
    cancel_event: threading.Event | None = None,
    timeout: float | None = None,
    today: date | None = None,
) -> PerformanceReport:
    """
    Build the performance report for a portfolio and its loaded holdings.

    Args:
        portfolio: The portfolio being reported.
        holdings: The portfolio's holdings, each with all its transactions.
        pricing_manager: Source of current prices.
        start_date: First day of the series. Defaults to the portfolio's creation day.
        end_date: Last day of the series. Defaults to today (UTC).
        oversell: Policy applied by the ledger when a sell exceeds open lots.
        price_mode: SNAPSHOT fetches each symbol's price once for the whole
            report; PER_CALL queries the pricing manager on every lookup.
        max_workers: Worker threads for the per-holding stage. 1 runs inline.
        cancel_event: Event that cancels the run when set.
        timeout: Seconds after which the run is cancelled.
        today: Override for the current UTC day.

    Returns:
        A PerformanceReport. The series is empty when the start is after the end.

    Raises:
        OversellError: If ``oversell`` is REJECT and a holding oversells.
        ReportCancelledError: If the run is cancelled or times out.
    """
    checkpoint = CancellationCheck(cancel_event, timeout)

    prices: PricingDataManager
    if price_mode == PriceMode.SNAPSHOT:
        prices = SnapshotPricingDataManager(pricing_manager)
    else:
        prices = pricing_manager

    performances = _evaluate_holdings(holdings, prices, oversell, max_workers, checkpoint)

    total_current_value = sum((p.current_value for p in performances), Decimal("0"))
    total_realized_gain_loss = sum((p.realized_gain_loss for p in performances), Decimal("0"))
    total_unrealized_gain_loss = sum((p.unrealized_gain_loss for p in performances), Decimal("0"))

    allocation = calculate_allocation(performances, total_current_value)

    effective_start, effective_end = resolve_window(
        portfolio.created_datetime, start_date, end_date, today=today
    )
    series = calculate_holdings_value_by_day(
        holdings, prices, effective_start, effective_end, checkpoint=checkpoint
    )

    return PerformanceReport(
        portfolio_id=portfolio.portfolio_id,
        name=portfolio.name,
        total_current_value=total_current_value,
        total_realized_gain_loss=total_realized_gain_loss,
        total_unrealized_gain_loss=total_unrealized_gain_loss,
        allocation=allocation,
        series=series,
        start_date=effective_start,
        end_date=effective_end,
        holdings=performances,
    )


def load_portfolio_holdings(repository: PortfolioRepository, portfolio_id: str) -> list[Holding]:
    """Return the portfolio's holdings, each with its transactions attached."""
    holdings: list[Holding] = []
    for holding in repository.list_holdings(portfolio_id):
        holdings.append(Holding(
            portfolio_id=holding.portfolio_id,
            symbol=holding.symbol,
            name=holding.name,
            kind=holding.kind,
            transactions=repository.list_transactions(holding.holding_id),
            holding_id=holding.holding_id,
        ))
    return holdings


def get_portfolio_performance(
    repository: PortfolioRepository,
    pricing_manager: PricingDataManager,
    portfolio_id: str,
    start_date: date | datetime | None = None,
    end_date: date | datetime | None = None,
    **options: Any,
) -> PerformanceReport | None:
    """
    Load a portfolio from the repository and build its performance report.

    Args:
        repository: Source of portfolios, holdings and transactions.
        pricing_manager: Source of current prices.
        portfolio_id: Identifier of the portfolio to report.
        start_date: First day of the series.
        end_date: Last day of the series.
        **options: Passed through to ``build_performance_report``.

    Returns:
        The report, or None if the portfolio does not exist.
    """
    portfolio = repository.get_portfolio(portfolio_id)
    if portfolio is None:
        return None

    holdings = load_portfolio_holdings(repository, portfolio_id)
    return build_performance_report(
        portfolio, holdings, pricing_manager, start_date, end_date, **options
    )


def report_to_dict(report: PerformanceReport) -> dict[str, Any]:
    """
    Convert a report into JSON-serializable primitives.

    Decimals are written as strings and dates in ISO format. The series is a
    list of ``{"date", "value"}`` objects in ascending date order.
    """
    return {
        "portfolio_id": report.portfolio_id,
        "name": report.name,
        "total_current_value": str(report.total_current_value),
        "total_realized_gain_loss": str(report.total_realized_gain_loss),
        "total_unrealized_gain_loss": str(report.total_unrealized_gain_loss),
        "allocation": {symbol: str(pct) for symbol, pct in report.allocation.items()},
        "start_date": report.start_date.isoformat(),
        "end_date": report.end_date.isoformat(),
        "series": [
            {"date": day.isoformat(), "value": str(value)}
            for day, value in report.series.items()
        ],
        "holdings": [
            {
                "holding_id": p.holding_id,
                "symbol": p.symbol,
                "remaining_quantity": str(p.remaining_quantity),
                "average_cost_basis": str(p.average_cost_basis),
                "current_price": str(p.current_price),
                "current_value": str(p.current_value),
                "realized_gain_loss": str(p.realized_gain_loss),
                "unrealized_gain_loss": str(p.unrealized_gain_loss),
            }
            for p in report.holdings
        ],
    }
