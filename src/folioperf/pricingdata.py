from abc import ABC, abstractmethod
from concurrent.futures import Future
from decimal import Decimal
from datetime import datetime, timezone
import random
import sys
import threading
import warnings

import yfinance as yf  # type: ignore[import-untyped]
import pandas as pd

# When True, print status messages during price fetching (e.g. "Fetching AAPL …").
# Defaults to False so CLI output isn't polluted.
verbose: bool = False

DEFAULT_PRICE = Decimal("100.00")

# Reference prices for the mock oracle.
MOCK_PRICES: dict[str, Decimal] = {
    "AAPL": Decimal("170.50"),
    "MSFT": Decimal("320.75"),
    "GOOGL": Decimal("135.20"),
    "TSLA": Decimal("250.00"),
    "AMZN": Decimal("140.00"),
}


class PricePoint:
    """A single current-price observation for an instrument."""

    def __init__(self, symbol: str, price_datetime: datetime, price: Decimal, is_fallback: bool = False):
        """Initialize a PricePoint.

        Args:
            symbol: Ticker symbol (e.g., "AAPL").
            price_datetime: When the price was observed.
            price: The observed unit price.
            is_fallback: True when the price is a default rather than a quote.
        """
        self.symbol: str = symbol
        self.price_datetime: datetime = price_datetime
        self.price: Decimal = price
        self.is_fallback: bool = is_fallback

    def __repr__(self):
        return f"PricePoint(symbol={self.symbol}, price={self.price}, fallback={self.is_fallback})"


class PricingDataManager(ABC):
    """Abstract base class for current-price providers.

    Implementations are total: they always return a price, falling back to
    a default for unknown symbols. Repeated calls for the same symbol may
    return different prices.
    """

    @abstractmethod
    def get_current_price_point(self, symbol: str) -> PricePoint:
        raise NotImplementedError("This method should be overridden by subclasses.")

    def get_current_price(self, symbol: str) -> Decimal:
        """Return only the price of ``get_current_price_point``."""
        return self.get_current_price_point(symbol).price


class FixedPricingDataManager(PricingDataManager):
    """Pricing manager that returns a fixed price for any symbol."""

    def __init__(self, price_for_everything: Decimal = Decimal("1.0")):
        """Initialize with a fixed price.

        Args:
            price_for_everything: The constant price returned for every query.
        """
        self.price = price_for_everything

    def get_current_price_point(self, symbol: str) -> PricePoint:
        return PricePoint(
            symbol=symbol,
            price_datetime=datetime.now(timezone.utc),
            price=self.price,
        )


class MockPricingDataManager(PricingDataManager):
    """Table-driven pricing manager that perturbs each quote by a random jitter.

    Known symbols return their reference price plus a uniform jitter in
    ``[-jitter, +jitter]``; unknown symbols return ``default_price`` with
    no jitter. Symbols are matched case-insensitively.
    """

    def __init__(
        self,
        prices: dict[str, Decimal] | None = None,
        jitter: Decimal = Decimal("5"),
        default_price: Decimal = DEFAULT_PRICE,
        seed: int | None = None,
    ):
        """Initialize the mock pricing manager.

        Args:
            prices: Reference prices keyed by symbol. Defaults to ``MOCK_PRICES``.
            jitter: Maximum absolute perturbation applied per call. Zero
                makes the manager deterministic.
            default_price: Price returned for unknown symbols.
            seed: Optional seed for reproducible jitter.
        """
        source = MOCK_PRICES if prices is None else prices
        self.prices = {symbol.upper(): price for symbol, price in source.items()}
        self.jitter = jitter
        self.default_price = default_price
        self._random = random.Random(seed)
        self._lock = threading.Lock()

    def get_current_price_point(self, symbol: str) -> PricePoint:
        reference = self.prices.get(symbol.upper())
        now = datetime.now(timezone.utc)

        if reference is None:
            return PricePoint(symbol=symbol, price_datetime=now, price=self.default_price, is_fallback=True)

        if self.jitter == 0:
            return PricePoint(symbol=symbol, price_datetime=now, price=reference)

        with self._lock:
            draw = self._random.uniform(-float(self.jitter), float(self.jitter))
        price = (reference + Decimal(str(draw))).quantize(Decimal("0.01"))
        return PricePoint(symbol=symbol, price_datetime=now, price=price)


class YFinancePricingDataManager(PricingDataManager):
    """Live quotes from Yahoo Finance with a default-price fallback."""

    def __init__(self, default_price: Decimal = DEFAULT_PRICE):
        """Initialize the YFinance pricing manager.

        Args:
            default_price: Price returned (with a warning) when no quote is available.
        """
        self.default_price = default_price

    def _fetch_last_close(self, ticker) -> Decimal | None:
        """Return the most recent daily close from a short history window."""
        df: pd.DataFrame = ticker.history(period="5d", auto_adjust=False)  # type: ignore[call-arg]
        if df.empty or "Close" not in df.columns:
            return None
        return Decimal(str(df["Close"].iloc[-1])).quantize(Decimal("0.01"))

    def get_current_price_point(self, symbol: str) -> PricePoint:
        """Get the current price for a symbol.

        Uses ``fast_info['lastPrice']`` which includes pre-market and
        after-hours trading, then the last daily close. Falls back to the
        default price when Yahoo Finance returns nothing.
        """
        if verbose:
            print(f"  Fetching {symbol} …", file=sys.stderr, flush=True)

        price: Decimal | None = None
        try:
            ticker = yf.Ticker(symbol)
            last_price = ticker.fast_info.get('lastPrice')
            if last_price is not None:
                price = Decimal(str(last_price)).quantize(Decimal("0.01"))
            else:
                price = self._fetch_last_close(ticker)
        except Exception as e:
            # yfinance can fail on rate limiting, unknown symbols or network issues
            print(f"Warning: yfinance request failed for {symbol}: {e}", file=sys.stderr)

        if price is None:
            warnings.warn(
                f"No price available for {symbol}; using default price {self.default_price}.",
                UserWarning
            )
            return PricePoint(
                symbol=symbol,
                price_datetime=datetime.now(timezone.utc),
                price=self.default_price,
                is_fallback=True,
            )

        return PricePoint(symbol=symbol, price_datetime=datetime.now(timezone.utc), price=price)


class SnapshotPricingDataManager(PricingDataManager):
    """Wraps another manager and fixes each symbol's price at its first lookup.

    One instance is created per report run, so every figure in a report
    uses the same price for a symbol while the underlying oracle is queried
    at most once per symbol.

    Lookups of different symbols run concurrently. Concurrent lookups of the
    same symbol wait on the first one instead of querying again.
    """

    def __init__(self, pricing_manager: PricingDataManager):
        self.pricing_manager = pricing_manager
        self._snapshot: dict[str, Future] = {}
        self._lock = threading.Lock()

    def get_current_price_point(self, symbol: str) -> PricePoint:
        with self._lock:
            future = self._snapshot.get(symbol)
            is_owner = future is None
            if future is None:
                future = Future()
                self._snapshot[symbol] = future

        if is_owner:
            try:
                future.set_result(self.pricing_manager.get_current_price_point(symbol))
            except BaseException as e:
                # Drop the failed entry so a later lookup can retry
                with self._lock:
                    self._snapshot.pop(symbol, None)
                future.set_exception(e)
                raise

        return future.result()

    @property
    def snapshot(self) -> dict[str, PricePoint]:
        """Prices fetched so far, keyed by symbol."""
        with self._lock:
            futures = dict(self._snapshot)
        return {
            symbol: future.result()
            for symbol, future in futures.items()
            if future.done() and future.exception() is None
        }
