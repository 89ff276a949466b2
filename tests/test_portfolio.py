"""Tests for domain types and transaction file loading."""

import json
from datetime import date, datetime, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest
from openpyxl import Workbook

from folioperf.portfolio import (
    Holding,
    HoldingKind,
    Portfolio,
    Transaction,
    TransactionType,
    load_holdings,
    load_holdings_from_excel,
    load_holdings_from_json,
    save_holdings_to_excel,
    save_holdings_to_json,
)


class TestTransaction:
    """Transaction validation and normalization."""

    def test_converts_to_utc(self):
        txn = Transaction(
            holding_id="h1",
            transaction_datetime=datetime(2025, 1, 15, 21, 0, tzinfo=ZoneInfo("America/New_York")),
            transaction_type=TransactionType.BUY,
            quantity="2",
            price="100.00",
        )

        assert txn.transaction_datetime.tzinfo == timezone.utc
        assert txn.transaction_date == date(2025, 1, 16)

    def test_naive_datetime_assumed_utc(self):
        txn = Transaction("h1", datetime(2025, 1, 15, 23, 0), TransactionType.BUY, 1, 1)

        assert txn.transaction_datetime == datetime(2025, 1, 15, 23, 0, tzinfo=timezone.utc)

    def test_values_are_decimals(self):
        txn = Transaction("h1", datetime(2025, 1, 15), TransactionType.SELL, 1.5, "10.10")

        assert txn.quantity == Decimal("1.5")
        assert txn.price == Decimal("10.10")
        assert txn.signed_quantity == Decimal("-1.5")

    @pytest.mark.parametrize("quantity,price", [("0", "1"), ("-1", "1"), ("1", "0"), ("1", "-5")])
    def test_non_positive_values_rejected(self, quantity, price):
        with pytest.raises(ValueError, match="must be greater than 0"):
            Transaction("h1", datetime(2025, 1, 15), TransactionType.BUY, quantity, price)

    @pytest.mark.parametrize("quantity,price", [("NaN", "1"), ("1", "NaN"), ("Infinity", "1"), ("1", "-Infinity"), ("1", Decimal("sNaN"))])
    def test_non_finite_values_rejected(self, quantity, price):
        with pytest.raises(ValueError, match="Invalid"):
            Transaction("h1", datetime(2025, 1, 15), TransactionType.BUY, quantity, price)

    def test_float_nan_rejected(self):
        with pytest.raises(ValueError, match="Invalid quantity"):
            Transaction("h1", datetime(2025, 1, 15), TransactionType.BUY, float("nan"), "1")

    def test_ids_are_unique(self):
        a = Transaction("h1", datetime(2025, 1, 15), TransactionType.BUY, 1, 1)
        b = Transaction("h1", datetime(2025, 1, 15), TransactionType.BUY, 1, 1)

        assert a.transaction_id != b.transaction_id


def test_sorted_transactions_is_stable():
    holding = Holding(portfolio_id="p1", symbol="AAPL")
    same_time = datetime(2025, 1, 2, 12, 0, tzinfo=timezone.utc)
    first = Transaction(holding.holding_id, same_time, TransactionType.BUY, 1, 1)
    second = Transaction(holding.holding_id, same_time, TransactionType.SELL, 1, 1)
    earliest = Transaction(holding.holding_id, datetime(2025, 1, 1, tzinfo=timezone.utc), TransactionType.BUY, 1, 1)
    holding.transactions.extend([first, second, earliest])

    assert holding.sorted_transactions() == [earliest, first, second]


def test_portfolio_created_datetime_is_utc():
    portfolio = Portfolio("P", created_datetime=datetime(2025, 1, 1, 12, 0))

    assert portfolio.created_datetime.tzinfo == timezone.utc


@pytest.fixture
def holdings():
    portfolio = Portfolio("Sample")
    aapl = Holding(portfolio.portfolio_id, "AAPL", name="Apple Inc.")
    aapl.transactions = [
        Transaction(aapl.holding_id, datetime(2025, 1, 2, 15, 30, tzinfo=timezone.utc), TransactionType.BUY, "10", "150.25"),
        Transaction(aapl.holding_id, datetime(2025, 1, 9, 15, 30, tzinfo=timezone.utc), TransactionType.SELL, "4", "160.00"),
    ]
    etf = Holding(portfolio.portfolio_id, "VTI", kind=HoldingKind.ETF)
    etf.transactions = [
        Transaction(etf.holding_id, datetime(2025, 1, 3, 14, 0, tzinfo=timezone.utc), TransactionType.BUY, "2.5", "250"),
    ]
    return [aapl, etf]


class TestJsonFiles:
    """Loading and saving JSON transaction files."""

    def test_save_and_load(self, tmp_path, holdings):
        path = tmp_path / "portfolio.json"
        save_holdings_to_json(holdings, str(path))

        portfolio, loaded = load_holdings_from_json(str(path))

        assert portfolio.name == "portfolio"
        assert portfolio.created_datetime == datetime(2025, 1, 2, 15, 30, tzinfo=timezone.utc)
        assert [h.symbol for h in loaded] == ["AAPL", "VTI"]
        assert loaded[0].name == "Apple Inc."
        assert loaded[1].kind == HoldingKind.ETF
        assert [t.quantity for t in loaded[0].transactions] == [Decimal("10"), Decimal("4")]
        assert loaded[0].transactions[0].price == Decimal("150.25")
        assert all(t.holding_id == loaded[0].holding_id for t in loaded[0].transactions)

    def test_decimals_written_as_strings(self, tmp_path, holdings):
        path = tmp_path / "portfolio.json"
        save_holdings_to_json(holdings, str(path))

        data = json.loads(path.read_text())

        assert data[0]["price"] == "150.25"
        assert data[2]["quantity"] == "2.5"

    def test_missing_timezone_warns_once(self, tmp_path):
        path = tmp_path / "naive.json"
        path.write_text(json.dumps([
            {"symbol": "AAPL", "datetime": "2025-01-02T10:00:00", "transaction_type": "BUY", "price": "1", "quantity": "1"},
            {"symbol": "AAPL", "datetime": "2025-01-03T10:00:00", "transaction_type": "BUY", "price": "1", "quantity": "1"},
        ]))

        with pytest.warns(UserWarning, match="missing timezone") as record:
            load_holdings_from_json(str(path))

        assert len(record) == 1

    def test_missing_field_rejected(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps([
            {"symbol": "AAPL", "datetime": "2025-01-02T10:00:00+00:00", "transaction_type": "BUY", "quantity": "1"},
        ]))

        with pytest.raises(ValueError, match="price"):
            load_holdings_from_json(str(path))

    def test_nan_value_rejected(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps([
            {"symbol": "AAPL", "datetime": "2025-01-02T10:00:00+00:00", "transaction_type": "BUY", "price": "NaN", "quantity": "1"},
        ]))

        with pytest.raises(ValueError, match="Invalid price"):
            load_holdings_from_json(str(path))

    def test_non_list_rejected(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"symbol": "AAPL"}))

        with pytest.raises(ValueError, match="list of transactions"):
            load_holdings_from_json(str(path))

    def test_invalid_row_rejected(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps([
            {"symbol": "AAPL", "datetime": "2025-01-02T10:00:00+00:00", "transaction_type": "BUY", "price": "0", "quantity": "1"},
        ]))

        with pytest.raises(ValueError):
            load_holdings_from_json(str(path))


class TestExcelFiles:
    """Loading and saving Excel transaction files."""

    def test_save_and_load(self, tmp_path, holdings):
        path = tmp_path / "portfolio.xlsx"
        save_holdings_to_excel(holdings, str(path))

        portfolio, loaded = load_holdings(str(path), name="From Excel")

        assert portfolio.name == "From Excel"
        assert [h.symbol for h in loaded] == ["AAPL", "VTI"]
        assert loaded[0].transactions[1].transaction_type == TransactionType.SELL
        assert loaded[0].transactions[0].price == Decimal("150.25")
        assert loaded[1].transactions[0].quantity == Decimal("2.5")
        assert loaded[1].kind == HoldingKind.ETF

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_holdings_from_excel(str(tmp_path / "missing.xlsx"))

    def test_create_if_missing(self, tmp_path):
        path = tmp_path / "new.xlsx"
        portfolio, loaded = load_holdings_from_excel(str(path), create_if_missing=True)

        assert path.exists()
        assert portfolio.name == "new"
        assert loaded == []

    def test_blank_price_cell_rejected(self, tmp_path):
        path = tmp_path / "blank.xlsx"
        wb = Workbook()
        ws = wb.active
        ws.append(["SYMBOL", "DATE AND TIME", "TRANSACTION TYPE", "PRICE", "QUANTITY"])
        ws.append(["AAPL", "2025-01-02T10:00:00+00:00", "BUY", 150, 10])
        ws.append(["AAPL", "2025-01-03T10:00:00+00:00", "BUY", None, 5])
        wb.save(str(path))

        with pytest.raises(ValueError, match="Invalid price"):
            load_holdings_from_excel(str(path))
