from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Union
import threading

from .portfolio import Holding, HoldingKind, Portfolio, Transaction, TransactionType


class PortfolioRepository(ABC):
    """Read interface the performance engine needs from storage."""

    @abstractmethod
    def get_portfolio(self, portfolio_id: str) -> Portfolio | None:
        raise NotImplementedError("This method should be overridden by subclasses.")

    @abstractmethod
    def list_portfolios(self) -> list[Portfolio]:
        raise NotImplementedError("This method should be overridden by subclasses.")

    @abstractmethod
    def list_holdings(self, portfolio_id: str) -> list[Holding]:
        raise NotImplementedError("This method should be overridden by subclasses.")

    @abstractmethod
    def list_transactions(self, holding_id: str) -> list[Transaction]:
        raise NotImplementedError("This method should be overridden by subclasses.")


class InMemoryPortfolioRepository(PortfolioRepository):
    """Dictionary-backed repository, safe to share between request threads.

    Holdings are stored without their transactions; ``list_transactions``
    returns a holding's transactions in recording order. Deleting a
    portfolio or holding deletes everything beneath it.
    """

    def __init__(self):
        self._portfolios: dict[str, Portfolio] = {}
        self._holdings: dict[str, Holding] = {}
        self._transactions: dict[str, Transaction] = {}
        self._lock = threading.Lock()

    # Portfolios

    def add_portfolio(self, name: str, created_datetime: datetime | None = None) -> Portfolio:
        portfolio = Portfolio(name=name, created_datetime=created_datetime)
        with self._lock:
            self._portfolios[portfolio.portfolio_id] = portfolio
        return portfolio

    def get_portfolio(self, portfolio_id: str) -> Portfolio | None:
        with self._lock:
            return self._portfolios.get(portfolio_id)

    def list_portfolios(self) -> list[Portfolio]:
        with self._lock:
            return list(self._portfolios.values())

    def rename_portfolio(self, portfolio_id: str, name: str) -> Portfolio | None:
        with self._lock:
            portfolio = self._portfolios.get(portfolio_id)
            if portfolio is None:
                return None
            portfolio.name = name
            return portfolio

    def delete_portfolio(self, portfolio_id: str) -> bool:
        with self._lock:
            if self._portfolios.pop(portfolio_id, None) is None:
                return False
            holding_ids = [h.holding_id for h in self._holdings.values() if h.portfolio_id == portfolio_id]
            for holding_id in holding_ids:
                self._delete_holding_locked(holding_id)
            return True

    # Holdings

    def add_holding(
        self,
        portfolio_id: str,
        symbol: str,
        name: str = "",
        kind: HoldingKind = HoldingKind.STOCK
    ) -> Holding | None:
        with self._lock:
            if portfolio_id not in self._portfolios:
                return None
            holding = Holding(portfolio_id=portfolio_id, symbol=symbol, name=name, kind=kind)
            self._holdings[holding.holding_id] = holding
            return holding

    def get_holding(self, portfolio_id: str, holding_id: str) -> Holding | None:
        """Return the holding only if it belongs to ``portfolio_id``."""
        with self._lock:
            holding = self._holdings.get(holding_id)
            if holding is None or holding.portfolio_id != portfolio_id:
                return None
            return holding

    def list_holdings(self, portfolio_id: str) -> list[Holding]:
        with self._lock:
            return [h for h in self._holdings.values() if h.portfolio_id == portfolio_id]

    def update_holding(
        self,
        portfolio_id: str,
        holding_id: str,
        symbol: str | None = None,
        name: str | None = None,
        kind: HoldingKind | None = None
    ) -> Holding | None:
        holding = self.get_holding(portfolio_id, holding_id)
        if holding is None:
            return None
        with self._lock:
            if symbol is not None:
                holding.symbol = symbol
            if name is not None:
                holding.name = name
            if kind is not None:
                holding.kind = HoldingKind(kind)
        return holding

    def delete_holding(self, portfolio_id: str, holding_id: str) -> bool:
        if self.get_holding(portfolio_id, holding_id) is None:
            return False
        with self._lock:
            self._delete_holding_locked(holding_id)
        return True

    def _delete_holding_locked(self, holding_id: str) -> None:
        self._holdings.pop(holding_id, None)
        transaction_ids = [t.transaction_id for t in self._transactions.values() if t.holding_id == holding_id]
        for transaction_id in transaction_ids:
            del self._transactions[transaction_id]

    # Transactions

    def add_transaction(
        self,
        portfolio_id: str,
        holding_id: str,
        transaction_datetime: datetime,
        transaction_type: TransactionType,
        quantity: Union[int, str, Decimal],
        price: Union[int, str, Decimal]
    ) -> Transaction | None:
        """Record a transaction for a holding of the given portfolio.

        Returns:
            The new Transaction, or None if the holding is not in the portfolio.

        Raises:
            ValueError: If quantity or price is not strictly positive.
        """
        if self.get_holding(portfolio_id, holding_id) is None:
            return None
        transaction = Transaction(
            holding_id=holding_id,
            transaction_datetime=transaction_datetime,
            transaction_type=transaction_type,
            quantity=quantity,
            price=price,
        )
        with self._lock:
            self._transactions[transaction.transaction_id] = transaction
        return transaction

    def list_transactions(self, holding_id: str) -> list[Transaction]:
        with self._lock:
            return [t for t in self._transactions.values() if t.holding_id == holding_id]

    def list_holding_transactions(self, portfolio_id: str, holding_id: str) -> list[Transaction]:
        """Return a portfolio holding's transactions ordered by date, or [] if not found."""
        if self.get_holding(portfolio_id, holding_id) is None:
            return []
        return sorted(self.list_transactions(holding_id), key=lambda t: t.transaction_datetime)

    def delete_transaction(self, holding_id: str, transaction_id: str) -> bool:
        with self._lock:
            transaction = self._transactions.get(transaction_id)
            if transaction is None or transaction.holding_id != holding_id:
                return False
            del self._transactions[transaction_id]
            return True


def seed_demo_data(repository: InMemoryPortfolioRepository, now: datetime | None = None) -> list[Portfolio]:
    """
    Populate a repository with two demo portfolios.

    "My Growth Portfolio" (created 30 days ago) holds AAPL with two buys, a
    sell and a further buy, and MSFT with two buys. "Retirement Savings"
    (created 60 days ago) holds a single GOOGL buy.

    Args:
        repository: The repository to populate.
        now: Reference instant for the relative dates. Defaults to now (UTC).

    Returns:
        The created portfolios.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    def days_ago(days: int) -> datetime:
        return now - timedelta(days=days)

    growth = repository.add_portfolio("My Growth Portfolio", created_datetime=days_ago(30))
    retirement = repository.add_portfolio("Retirement Savings", created_datetime=days_ago(60))

    aapl = repository.add_holding(growth.portfolio_id, "AAPL", "Apple Inc.", HoldingKind.STOCK)
    msft = repository.add_holding(growth.portfolio_id, "MSFT", "Microsoft Corp.", HoldingKind.STOCK)
    googl = repository.add_holding(retirement.portfolio_id, "GOOGL", "Alphabet Inc. (Class A)", HoldingKind.STOCK)
    assert aapl is not None and msft is not None and googl is not None

    seed = [
        (growth, aapl, 25, TransactionType.BUY, "10", "150.00"),
        (growth, aapl, 20, TransactionType.BUY, "5", "155.00"),
        (growth, aapl, 10, TransactionType.SELL, "3", "160.00"),
        (growth, aapl, 5, TransactionType.BUY, "7", "165.00"),
        (growth, msft, 28, TransactionType.BUY, "20", "300.00"),
        (growth, msft, 15, TransactionType.BUY, "10", "310.00"),
        (retirement, googl, 50, TransactionType.BUY, "5", "120.00"),
    ]
    for portfolio, holding, days, transaction_type, quantity, price in seed:
        repository.add_transaction(
            portfolio.portfolio_id,
            holding.holding_id,
            days_ago(days),
            transaction_type,
            Decimal(quantity),
            Decimal(price),
        )

    return [growth, retirement]
