from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Iterable
import threading
import time

from .portfolio import Holding, Transaction
from .pricingdata import PricingDataManager


class ReportCancelledError(RuntimeError):
    """Raised when a report run is cancelled or exceeds its timeout."""


class CancellationCheck:
    """Coarse-grained cancellation point for long report runs.

    Calling the instance raises ``ReportCancelledError`` once the event is
    set or the deadline has passed. The composer calls it between holdings
    and the reconstructor between days.
    """

    def __init__(self, cancel_event: threading.Event | None = None, timeout: float | None = None):
        """Initialize the check.

        Args:
            cancel_event: Event that cancels the run when set.
            timeout: Seconds from now after which the run is cancelled.
        """
        self.cancel_event = cancel_event
        self.deadline = time.monotonic() + timeout if timeout is not None else None

    def __call__(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ReportCancelledError("Performance report was cancelled.")
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise ReportCancelledError("Performance report timed out.")


def to_utc_date(value: date | datetime) -> date:
    """Truncate a date or datetime to its UTC calendar day.

    Naive datetimes are assumed to be UTC already.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def resolve_window(
    created_datetime: datetime,
    start_date: date | datetime | None = None,
    end_date: date | datetime | None = None,
    today: date | None = None,
) -> tuple[date, date]:
    """
    Resolve the effective reporting window.

    Args:
        created_datetime: Portfolio creation instant, used when no start is given.
        start_date: Requested first day (inclusive).
        end_date: Requested last day (inclusive).
        today: Override for the current UTC day, used when no end is given.

    Returns:
        A (start, end) tuple of UTC days. ``start`` may be after ``end``;
        callers treat that as an empty window.
    """
    if today is None:
        today = datetime.now(timezone.utc).date()

    effective_start = to_utc_date(start_date if start_date is not None else created_datetime)
    effective_end = to_utc_date(end_date) if end_date is not None else today

    return effective_start, effective_end


def quantity_on_date(transactions: Iterable[Transaction], day: date) -> Decimal:
    """
    Replay every transaction dated on or before ``day`` as a running position.

    Buys add their quantity and sells subtract it. The result is floored at
    zero. No cost basis is tracked.
    """
    quantity = Decimal("0")
    for txn in sorted(transactions, key=lambda t: t.transaction_datetime):
        if txn.transaction_date <= day:
            quantity += txn.signed_quantity
    if quantity < 0:
        quantity = Decimal("0")
    return quantity


class _HoldingCursor:
    """Walks one holding's sorted transactions forward one day at a time."""

    def __init__(self, holding: Holding):
        self.symbol = holding.symbol
        self.transactions = holding.sorted_transactions()
        self.index = 0
        # Unfloored sum of every transaction consumed so far
        self.raw_quantity = Decimal("0")

    def advance_to(self, day: date) -> Decimal:
        """Consume transactions dated on or before ``day`` and return the floored position."""
        while self.index < len(self.transactions):
            txn = self.transactions[self.index]
            if txn.transaction_date > day:
                break
            self.raw_quantity += txn.signed_quantity
            self.index += 1

        # Floor the day's view only; raw_quantity stays unfloored
        if self.raw_quantity < 0:
            return Decimal("0")
        return self.raw_quantity


def calculate_holdings_value_by_day(
    holdings: list[Holding],
    pricing_manager: PricingDataManager,
    start_date: date,
    end_date: date,
    checkpoint: Callable[[], None] | None = None,
) -> dict[date, Decimal]:
    """
    Calculate the value of the given holdings for each day within a date range.

    For each day, each holding's position is the running sum of all its
    transactions dated on or before that day, floored at zero, valued at the
    pricing manager's current price. Historical prices are not used: the
    series shows what past positions would be worth today.

    Args:
        holdings: Holdings with their transactions loaded.
        pricing_manager: Source of current prices. It is queried once per
            (holding, day) with a non-zero position; wrap it in a
            ``SnapshotPricingDataManager`` to fix one price per symbol.
        start_date: First day (inclusive).
        end_date: Last day (inclusive).
        checkpoint: Optional callable invoked before each day; it may raise
            to cancel the run.

    Returns:
        A dictionary mapping each day to the summed value, in ascending
        date order. Empty when ``start_date`` is after ``end_date``.
    """
    cursors = [_HoldingCursor(holding) for holding in holdings]
    result: dict[date, Decimal] = {}

    current_date = start_date
    while current_date <= end_date:
        if checkpoint is not None:
            checkpoint()

        daily_value = Decimal("0")
        for cursor in cursors:
            quantity = cursor.advance_to(current_date)
            if quantity != 0:
                daily_value += quantity * pricing_manager.get_current_price(cursor.symbol)

        result[current_date] = daily_value

        current_date = current_date + timedelta(days=1)

    return result
