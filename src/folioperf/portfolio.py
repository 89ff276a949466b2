from datetime import datetime, timezone, date

from typing import Any, Union

from decimal import Decimal, InvalidOperation

from enum import Enum

import os
import uuid
import warnings

import json

import pandas as pd
from openpyxl import Workbook


def _normalize_transaction_datetime(dt: datetime) -> tuple[datetime, bool, bool]:
    """
    Normalize a transaction datetime to a timezone-aware UTC instant.

    If timezone is missing, assumes UTC. Midnight with no microseconds is
    treated as a date-only value; it is kept as-is but flagged so callers
    can warn once.

    Args:
        dt: The datetime to normalize.

    Returns:
        A tuple of (normalized_datetime, time_was_missing, timezone_was_missing).
    """
    time_was_missing = False
    timezone_was_missing = False

    if dt.hour == 0 and dt.minute == 0 and dt.second == 0 and dt.microsecond == 0:
        time_was_missing = True

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
        timezone_was_missing = True
    else:
        dt = dt.astimezone(timezone.utc)

    return dt, time_was_missing, timezone_was_missing


def _to_decimal(value: Union[float, int, str, Decimal], field: str) -> Decimal:
    """Convert a numeric value to a finite Decimal via its string form."""
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"Invalid {field}: {value!r}")
    if not result.is_finite():
        raise ValueError(f"Invalid {field}: {value!r}")
    return result


def new_id() -> str:
    """Return a fresh identifier for portfolios, holdings and transactions."""
    return str(uuid.uuid4())


class TransactionType(Enum):
    """Enumeration of supported holding transaction types."""

    BUY = "BUY"
    SELL = "SELL"


class HoldingKind(Enum):
    """Kind of instrument a holding tracks."""

    STOCK = "STOCK"
    BOND = "BOND"
    ETF = "ETF"
    MUTUAL_FUND = "MUTUAL_FUND"
    CRYPTO = "CRYPTO"
    CASH = "CASH"
    OTHER = "OTHER"


class Transaction():
    """A single buy or sell of a holding. Never modified once recorded."""

    def __init__(
        self,
        holding_id: str,
        transaction_datetime: datetime,
        transaction_type: TransactionType,
        quantity: Union[float, int, str, Decimal],
        price: Union[float, int, str, Decimal],
        transaction_id: str | None = None,
    ):
        """Initialize a Transaction.

        Args:
            holding_id: Identifier of the holding this transaction belongs to.
            transaction_datetime: When the transaction occurred. Naive values
                are assumed to be UTC; aware values are converted to UTC.
            transaction_type: BUY or SELL.
            quantity: Number of units transacted. Must be positive.
            price: Price per unit. Must be positive.
            transaction_id: Optional identifier. Generated when omitted.

        Raises:
            ValueError: If quantity or price is not strictly positive.
        """
        quantity = _to_decimal(quantity, "quantity")
        price = _to_decimal(price, "price")

        if quantity <= 0:
            raise ValueError(f"Transaction quantity must be greater than 0, got {quantity}")
        if price <= 0:
            raise ValueError(f"Transaction price must be greater than 0, got {price}")

        transaction_datetime, _, _ = _normalize_transaction_datetime(transaction_datetime)

        self.transaction_id: str = transaction_id or new_id()
        self.holding_id: str = holding_id
        self.transaction_datetime: datetime = transaction_datetime
        self.transaction_type: TransactionType = TransactionType(transaction_type)
        self.quantity: Decimal = quantity
        self.price: Decimal = price

    @property
    def transaction_date(self) -> date:
        """The UTC calendar day of the transaction."""
        return self.transaction_datetime.date()

    @property
    def signed_quantity(self) -> Decimal:
        """Quantity with a positive sign for buys and negative for sells."""
        if self.transaction_type == TransactionType.BUY:
            return self.quantity
        return -self.quantity

    def __repr__(self):
        return f"Transaction(holding={self.holding_id}, date={self.transaction_datetime}, type={self.transaction_type}, quantity={self.quantity}, price={self.price})"


class Holding():
    """An instrument held in a portfolio together with its transaction history."""

    def __init__(
        self,
        portfolio_id: str,
        symbol: str,
        name: str = "",
        kind: HoldingKind = HoldingKind.STOCK,
        transactions: list[Transaction] | None = None,
        holding_id: str | None = None,
    ):
        """Initialize a Holding.

        Args:
            portfolio_id: Identifier of the owning portfolio.
            symbol: Ticker symbol used for price lookups.
            name: Human readable name. Defaults to the symbol.
            kind: Instrument kind.
            transactions: Transactions recorded for this holding, in recording order.
            holding_id: Optional identifier. Generated when omitted.
        """
        self.holding_id: str = holding_id or new_id()
        self.portfolio_id: str = portfolio_id
        self.symbol: str = symbol
        self.name: str = name or symbol
        self.kind: HoldingKind = HoldingKind(kind)
        self.transactions: list[Transaction] = list(transactions) if transactions else []

    def sorted_transactions(self) -> list[Transaction]:
        """Return transactions ascending by datetime.

        ``sorted`` is stable, so transactions sharing a datetime keep the
        order in which they were recorded.
        """
        return sorted(self.transactions, key=lambda t: t.transaction_datetime)

    def __repr__(self):
        return f"Holding(symbol={self.symbol}, kind={self.kind}, transactions={len(self.transactions)})"


class Portfolio():
    """A named collection of holdings."""

    def __init__(self, name: str, created_datetime: datetime | None = None, portfolio_id: str | None = None):
        """Initialize a Portfolio.

        Args:
            name: Display name of the portfolio.
            created_datetime: Creation instant. Defaults to now (UTC).
            portfolio_id: Optional identifier. Generated when omitted.
        """
        if created_datetime is None:
            created_datetime = datetime.now(timezone.utc)
        elif created_datetime.tzinfo is None:
            created_datetime = created_datetime.replace(tzinfo=timezone.utc)

        self.portfolio_id: str = portfolio_id or new_id()
        self.name: str = name
        self.created_datetime: datetime = created_datetime.astimezone(timezone.utc)

    def __repr__(self):
        return f"Portfolio(name={self.name}, created={self.created_datetime})"


HEADERS = ["SYMBOL", "NAME", "KIND", "DATE AND TIME", "TRANSACTION TYPE", "PRICE", "QUANTITY"]
REQUIRED_COLUMNS = {"SYMBOL", "DATE AND TIME", "TRANSACTION TYPE", "PRICE", "QUANTITY"}
REQUIRED_JSON_FIELDS = ["symbol", "datetime", "transaction_type", "price", "quantity"]


def _warn_missing_time(file_path: str, any_missing_time: bool, any_missing_timezone: bool) -> None:
    """Emit a single warning describing assumed time and timezone information."""
    if any_missing_time and any_missing_timezone:
        warnings.warn(
            f"Some transactions in '{file_path}' were missing time and timezone information. "
            f"Assuming midnight UTC for these transactions.",
            UserWarning
        )
    elif any_missing_timezone:
        warnings.warn(
            f"Some transactions in '{file_path}' were missing timezone information. "
            f"Assuming UTC for these transactions.",
            UserWarning
        )


def _group_rows_into_holdings(portfolio: Portfolio, rows: list[dict[str, Any]]) -> list[Holding]:
    """Build one Holding per symbol from flat transaction rows, preserving row order."""
    holdings: dict[str, Holding] = {}

    for row in rows:
        symbol = row["symbol"]
        holding = holdings.get(symbol)
        if holding is None:
            holding = Holding(
                portfolio_id=portfolio.portfolio_id,
                symbol=symbol,
                name=row.get("name") or symbol,
                kind=row.get("kind") or HoldingKind.STOCK,
            )
            holdings[symbol] = holding

        holding.transactions.append(Transaction(
            holding_id=holding.holding_id,
            transaction_datetime=row["datetime"],
            transaction_type=row["transaction_type"],
            quantity=row["quantity"],
            price=row["price"],
        ))

    return list(holdings.values())


def _portfolio_for_rows(name: str, rows: list[dict[str, Any]]) -> Portfolio:
    """Create a portfolio whose creation date is the earliest transaction."""
    if rows:
        created = min(row["datetime"] for row in rows)
        return Portfolio(name=name, created_datetime=created)
    return Portfolio(name=name)


def _create_empty_holdings_excel(file_path: str) -> None:
    """Create an empty Excel file with just the required headers.

    Args:
        file_path: Path where the Excel file will be created.
    """
    wb = Workbook()
    ws = wb.active
    assert ws is not None
    for col, header in enumerate(HEADERS, start=1):
        ws.cell(row=1, column=col, value=header)
    wb.save(file_path)


def load_holdings_from_excel(
    file_path: str,
    name: str | None = None,
    create_if_missing: bool = False,
) -> tuple[Portfolio, list[Holding]]:
    """
    Load a portfolio and its holdings from an Excel transaction table.

    Args:
        file_path: Path to the Excel file containing transactions.
        name: Portfolio name. Defaults to the file name without extension.
        create_if_missing: If True and file doesn't exist, create an empty file
                          with headers and return an empty portfolio.

    Returns:
        A (Portfolio, holdings) tuple. Rows sharing a symbol are grouped into
        one Holding, keeping the row order as recording order.

    Expected Excel columns (order independent):
        - SYMBOL: Ticker symbol
        - NAME: Display name (optional)
        - KIND: STOCK, ETF, ... (optional, defaults to STOCK)
        - DATE AND TIME: Transaction datetime (ISO format)
        - TRANSACTION TYPE: BUY or SELL
        - PRICE: Price per unit
        - QUANTITY: Number of units
    """
    if name is None:
        name = os.path.splitext(os.path.basename(file_path))[0]

    if not os.path.exists(file_path):
        if create_if_missing:
            _create_empty_holdings_excel(file_path)
            return Portfolio(name=name), []
        else:
            raise FileNotFoundError(f"Portfolio file not found: {file_path}")

    df = pd.read_excel(file_path)

    if df.empty:
        return Portfolio(name=name), []

    missing_columns = REQUIRED_COLUMNS - set(df.columns)
    if missing_columns:
        raise ValueError(f"Missing required columns: {missing_columns}")

    rows: list[dict[str, Any]] = []
    any_missing_time = False
    any_missing_timezone = False

    for _, row in df.iterrows():
        raw_datetime = pd.to_datetime(row["DATE AND TIME"]).to_pydatetime() # type: ignore[assignment]
        transaction_datetime, time_missing, tz_missing = _normalize_transaction_datetime(raw_datetime)
        any_missing_time = any_missing_time or time_missing
        any_missing_timezone = any_missing_timezone or tz_missing

        holding_name = row["NAME"] if "NAME" in df.columns and pd.notna(row["NAME"]) else None
        kind = HoldingKind(row["KIND"]) if "KIND" in df.columns and pd.notna(row["KIND"]) else None

        rows.append({
            "symbol": str(row["SYMBOL"]),
            "name": holding_name,
            "kind": kind,
            "datetime": transaction_datetime,
            "transaction_type": TransactionType(row["TRANSACTION TYPE"]),
            "price": _to_decimal(row["PRICE"], "price"),
            "quantity": _to_decimal(row["QUANTITY"], "quantity"),
        })

    _warn_missing_time(file_path, any_missing_time, any_missing_timezone)

    portfolio = _portfolio_for_rows(name, rows)
    return portfolio, _group_rows_into_holdings(portfolio, rows)


def save_holdings_to_excel(
    holdings: list[Holding],
    file_path: str
) -> None:
    """
    Save holdings and their transactions to an Excel file.

    Args:
        holdings: Holdings whose transactions are written, one row per transaction.
        file_path: Path to the Excel file to write.

    The columns match those read by ``load_holdings_from_excel``.
    """
    wb = Workbook()
    ws = wb.active
    assert ws is not None

    for col, header in enumerate(HEADERS, start=1):
        ws.cell(row=1, column=col, value=header)

    row = 2
    for holding in holdings:
        for txn in holding.transactions:
            ws.cell(row=row, column=1, value=holding.symbol)
            ws.cell(row=row, column=2, value=holding.name)
            ws.cell(row=row, column=3, value=holding.kind.value)
            ws.cell(row=row, column=4, value=txn.transaction_datetime.isoformat())
            ws.cell(row=row, column=5, value=txn.transaction_type.value)
            ws.cell(row=row, column=6, value=str(txn.price))
            ws.cell(row=row, column=7, value=str(txn.quantity))
            row += 1

    wb.save(file_path)


def load_holdings_from_json(
    file_path: str,
    name: str | None = None,
) -> tuple[Portfolio, list[Holding]]:
    """
    Load a portfolio and its holdings from a JSON file.

    Args:
        file_path: Path to the JSON file containing transactions.
        name: Portfolio name. Defaults to the file name without extension.

    Returns:
        A (Portfolio, holdings) tuple, one Holding per symbol.

    Expected JSON structure:
        [
            {
                "symbol": "AAPL",
                "name": "Apple Inc.",
                "kind": "STOCK",
                "datetime": "2024-01-15T10:30:00+00:00",
                "transaction_type": "BUY",
                "price": "150.50",
                "quantity": "10"
            },
            ...
        ]
    """
    if name is None:
        name = os.path.splitext(os.path.basename(file_path))[0]

    with open(file_path, "r") as f:
        data = json.load(f)

    if not isinstance(data, list):
        raise ValueError("JSON file must contain a list of transactions")

    rows: list[dict[str, Any]] = []
    any_missing_time = False
    any_missing_timezone = False

    item: Any
    for item in data:  # type: ignore[union-attr]
        missing_fields = [f for f in REQUIRED_JSON_FIELDS if not isinstance(item, dict) or f not in item]
        if missing_fields:
            raise ValueError(f"Missing field(s) {missing_fields} in transaction: {item!r}")

        raw_datetime = datetime.fromisoformat(item["datetime"])
        transaction_datetime, time_missing, tz_missing = _normalize_transaction_datetime(raw_datetime)
        any_missing_time = any_missing_time or time_missing
        any_missing_timezone = any_missing_timezone or tz_missing

        rows.append({
            "symbol": str(item["symbol"]),
            "name": item.get("name"),
            "kind": HoldingKind(item["kind"]) if item.get("kind") else None,
            "datetime": transaction_datetime,
            "transaction_type": TransactionType(item["transaction_type"]),
            "price": _to_decimal(item["price"], "price"),
            "quantity": _to_decimal(item["quantity"], "quantity"),
        })

    _warn_missing_time(file_path, any_missing_time, any_missing_timezone)

    portfolio = _portfolio_for_rows(name, rows)
    return portfolio, _group_rows_into_holdings(portfolio, rows)


def save_holdings_to_json(
    holdings: list[Holding],
    file_path: str
) -> None:
    """
    Save holdings and their transactions to a JSON file.

    Args:
        holdings: Holdings whose transactions are written.
        file_path: Path to the JSON file to write.

    Prices and quantities are written as strings so they load back as the
    same Decimal values.
    """
    data = []
    for holding in holdings:
        for txn in holding.transactions:
            data.append({
                "symbol": holding.symbol,
                "name": holding.name,
                "kind": holding.kind.value,
                "datetime": txn.transaction_datetime.isoformat(),
                "transaction_type": txn.transaction_type.value,
                "price": str(txn.price),
                "quantity": str(txn.quantity),
            })

    with open(file_path, "w") as f:
        json.dump(data, f, indent=2)


def load_holdings(file_path: str, name: str | None = None) -> tuple[Portfolio, list[Holding]]:
    """Load holdings from a ``.json`` or Excel file based on its extension."""
    if file_path.lower().endswith(".json"):
        return load_holdings_from_json(file_path, name=name)
    return load_holdings_from_excel(file_path, name=name)
