"""Tests for current-price managers."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from folioperf.pricingdata import (
    DEFAULT_PRICE,
    MOCK_PRICES,
    FixedPricingDataManager,
    MockPricingDataManager,
    PricePoint,
    PricingDataManager,
    SnapshotPricingDataManager,
)


class CountingPricingDataManager(PricingDataManager):
    def __init__(self):
        self.calls = 0

    def get_current_price_point(self, symbol: str) -> PricePoint:
        self.calls += 1
        return PricePoint(symbol, datetime.now(timezone.utc), Decimal(self.calls))


def test_fixed_pricing_data_manager():
    pm = FixedPricingDataManager(Decimal("42.5"))

    assert pm.get_current_price("AAPL") == Decimal("42.5")
    assert pm.get_current_price("ANYTHING") == Decimal("42.5")
    assert pm.get_current_price_point("AAPL").is_fallback is False


class TestMockPricingDataManager:
    """Jittered table prices."""

    def test_unknown_symbol_returns_default(self):
        pm = MockPricingDataManager()
        point = pm.get_current_price_point("ZZZZ")

        assert point.price == DEFAULT_PRICE
        assert point.is_fallback is True

    def test_custom_default_price(self):
        pm = MockPricingDataManager(default_price=Decimal("7"))

        assert pm.get_current_price("ZZZZ") == Decimal("7")

    def test_known_symbol_within_jitter(self):
        pm = MockPricingDataManager(seed=1)

        for _ in range(50):
            price = pm.get_current_price("AAPL")
            assert MOCK_PRICES["AAPL"] - 5 <= price <= MOCK_PRICES["AAPL"] + 5
            assert price == price.quantize(Decimal("0.01"))

    def test_symbols_are_case_insensitive(self):
        pm = MockPricingDataManager(jitter=Decimal("0"))

        assert pm.get_current_price("msft") == MOCK_PRICES["MSFT"]

    def test_zero_jitter_is_deterministic(self):
        pm = MockPricingDataManager(jitter=Decimal("0"))

        assert {pm.get_current_price("TSLA") for _ in range(5)} == {Decimal("250.00")}

    def test_same_seed_same_sequence(self):
        first = MockPricingDataManager(seed=7)
        second = MockPricingDataManager(seed=7)

        assert [first.get_current_price("AMZN") for _ in range(5)] == [
            second.get_current_price("AMZN") for _ in range(5)
        ]

    def test_custom_price_table(self):
        pm = MockPricingDataManager(prices={"btc": Decimal("60000")}, jitter=Decimal("0"))

        assert pm.get_current_price("BTC") == Decimal("60000")
        assert pm.get_current_price("AAPL") == DEFAULT_PRICE


class TestSnapshotPricingDataManager:
    """Per-run memoization of current prices."""

    def test_first_price_is_reused(self):
        underlying = CountingPricingDataManager()
        snapshot = SnapshotPricingDataManager(underlying)

        assert snapshot.get_current_price("AAPL") == Decimal("1")
        assert snapshot.get_current_price("AAPL") == Decimal("1")
        assert underlying.calls == 1

    def test_each_symbol_is_fetched_separately(self):
        underlying = CountingPricingDataManager()
        snapshot = SnapshotPricingDataManager(underlying)

        snapshot.get_current_price("AAPL")
        snapshot.get_current_price("MSFT")

        assert underlying.calls == 2
        assert set(snapshot.snapshot) == {"AAPL", "MSFT"}

    def test_new_snapshot_fetches_again(self):
        underlying = CountingPricingDataManager()

        SnapshotPricingDataManager(underlying).get_current_price("AAPL")
        second = SnapshotPricingDataManager(underlying).get_current_price("AAPL")

        assert second == Decimal("2")


class SlowPricingDataManager(PricingDataManager):
    """Sleeps on every lookup and records how many lookups overlap."""

    def __init__(self, delay: float = 0.2):
        self.delay = delay
        self.calls: list[str] = []
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def get_current_price_point(self, symbol: str) -> PricePoint:
        with self._lock:
            self.calls.append(symbol)
            self.active += 1
            self.peak = max(self.peak, self.active)
        time.sleep(self.delay)
        with self._lock:
            self.active -= 1
        return PricePoint(symbol, datetime.now(timezone.utc), Decimal("10"))


class TestSnapshotConcurrency:
    """Snapshot lookups from several threads."""

    def test_different_symbols_fetch_in_parallel(self):
        underlying = SlowPricingDataManager()
        snapshot = SnapshotPricingDataManager(underlying)

        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(snapshot.get_current_price, ["AAPL", "MSFT", "GOOGL", "TSLA"]))

        assert underlying.peak > 1
        assert sorted(underlying.calls) == ["AAPL", "GOOGL", "MSFT", "TSLA"]

    def test_same_symbol_fetched_once(self):
        underlying = SlowPricingDataManager(delay=0.1)
        snapshot = SnapshotPricingDataManager(underlying)

        with ThreadPoolExecutor(max_workers=4) as pool:
            prices = list(pool.map(snapshot.get_current_price, ["AAPL"] * 8))

        assert underlying.calls == ["AAPL"]
        assert set(prices) == {Decimal("10")}

    def test_failed_lookup_is_retried(self):
        class FlakyPricingDataManager(PricingDataManager):
            def __init__(self):
                self.calls = 0

            def get_current_price_point(self, symbol: str) -> PricePoint:
                self.calls += 1
                if self.calls == 1:
                    raise ConnectionError("quote service unavailable")
                return PricePoint(symbol, datetime.now(timezone.utc), Decimal("5"))

        underlying = FlakyPricingDataManager()
        snapshot = SnapshotPricingDataManager(underlying)

        with pytest.raises(ConnectionError):
            snapshot.get_current_price("AAPL")

        assert snapshot.snapshot == {}
        assert snapshot.get_current_price("AAPL") == Decimal("5")
