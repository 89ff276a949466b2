"""FIFO cost-basis ledger for a single holding.

The ledger is a left fold of ``apply_transaction`` over a holding's
transactions sorted by datetime. State is immutable: every step returns a
new ``LedgerState`` and consumed lots are replaced, never edited, so a run
owns its lots exclusively and nothing leaks between runs.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from functools import reduce
from typing import Iterable
import warnings

from .portfolio import Transaction, TransactionType


ZERO = Decimal("0")


class OversellPolicy(Enum):
    """What to do when a sell exceeds the quantity held in open lots."""

    CLAMP = "clamp"    # drop the excess, floor quantity at zero
    REJECT = "reject"  # raise OversellError


class OversellError(ValueError):
    """Raised under ``OversellPolicy.REJECT`` when a sell exceeds open lots."""

    def __init__(self, transaction: Transaction, excess: Decimal):
        self.transaction = transaction
        self.excess = excess
        super().__init__(
            f"Sell exceeds open quantity by {excess} "
            f"after transaction: {transaction}"
        )


@dataclass(frozen=True)
class Lot:
    """An unconsumed quantity bought at a single unit price."""
    quantity: Decimal
    price: Decimal

    @property
    def cost(self) -> Decimal:
        return self.quantity * self.price


@dataclass(frozen=True)
class LedgerState:
    """Immutable snapshot of the ledger between transactions."""
    lots: tuple[Lot, ...] = ()
    remaining_quantity: Decimal = ZERO
    cost_basis_sum: Decimal = ZERO
    realized_gain_loss: Decimal = ZERO
    oversold_quantity: Decimal = ZERO


@dataclass(frozen=True)
class LedgerResult:
    """Outcome of a full ledger run over one holding's history."""
    remaining_quantity: Decimal
    remaining_cost_basis: Decimal
    realized_gain_loss: Decimal
    oversold_quantity: Decimal = ZERO
    open_lots: tuple[Lot, ...] = field(default=(), compare=False)

    @property
    def average_cost_basis(self) -> Decimal:
        """Cost per unit of the remaining position, or 0 when nothing is held."""
        if self.remaining_quantity > 0:
            return self.remaining_cost_basis / self.remaining_quantity
        return ZERO


def _buy(state: LedgerState, transaction: Transaction) -> LedgerState:
    lot = Lot(quantity=transaction.quantity, price=transaction.price)
    return LedgerState(
        lots=state.lots + (lot,),
        remaining_quantity=state.remaining_quantity + lot.quantity,
        cost_basis_sum=state.cost_basis_sum + lot.cost,
        realized_gain_loss=state.realized_gain_loss,
        oversold_quantity=state.oversold_quantity,
    )


def _sell(state: LedgerState, transaction: Transaction, oversell: OversellPolicy) -> LedgerState:
    sell_price = transaction.price
    remaining_to_sell = transaction.quantity

    lots = list(state.lots)
    remaining_quantity = state.remaining_quantity
    cost_basis_sum = state.cost_basis_sum
    realized_gain_loss = state.realized_gain_loss

    while remaining_to_sell > 0 and lots:
        lot = lots[0]

        if lot.quantity <= remaining_to_sell:
            # Consume the whole lot
            realized_gain_loss += (sell_price - lot.price) * lot.quantity
            remaining_to_sell -= lot.quantity
            remaining_quantity -= lot.quantity
            cost_basis_sum -= lot.cost
            lots.pop(0)
        else:
            # Shrink the head lot; the sell is fully satisfied
            realized_gain_loss += (sell_price - lot.price) * remaining_to_sell
            lots[0] = Lot(quantity=lot.quantity - remaining_to_sell, price=lot.price)
            remaining_quantity -= remaining_to_sell
            cost_basis_sum -= remaining_to_sell * lot.price
            remaining_to_sell = ZERO

    if remaining_to_sell > 0 and oversell == OversellPolicy.REJECT:
        raise OversellError(transaction, remaining_to_sell)

    if remaining_quantity < 0:
        remaining_quantity = ZERO

    return LedgerState(
        lots=tuple(lots),
        remaining_quantity=remaining_quantity,
        cost_basis_sum=cost_basis_sum,
        realized_gain_loss=realized_gain_loss,
        oversold_quantity=state.oversold_quantity + remaining_to_sell,
    )


def apply_transaction(
    state: LedgerState,
    transaction: Transaction,
    oversell: OversellPolicy = OversellPolicy.CLAMP,
) -> LedgerState:
    """
    Apply one transaction to a ledger state and return the new state.

    Buys append a lot at the tail. Sells consume lots from the head (oldest
    first), realizing ``(sell_price - lot.price) * consumed_quantity`` for
    each lot touched.

    Args:
        state: The state before the transaction. It is not modified.
        transaction: A BUY or SELL transaction.
        oversell: Policy applied when the sell exceeds the open lots.

    Returns:
        The state after the transaction.

    Raises:
        OversellError: If ``oversell`` is REJECT and the sell exceeds open lots.
    """
    if transaction.transaction_type == TransactionType.BUY:
        return _buy(state, transaction)
    return _sell(state, transaction, oversell)


def run_ledger(
    transactions: Iterable[Transaction],
    oversell: OversellPolicy = OversellPolicy.CLAMP,
) -> LedgerResult:
    """
    Run the FIFO ledger over a holding's full transaction history.

    Transactions are sorted ascending by datetime with a stable sort, so
    transactions sharing a datetime are applied in the order given.

    Args:
        transactions: The holding's transactions, in recording order.
        oversell: Policy applied when a sell exceeds the open lots. Under
            CLAMP the excess is dropped without touching realized gain/loss
            and a UserWarning is emitted.

    Returns:
        LedgerResult with remaining quantity, remaining cost basis and
        realized gain/loss.

    Raises:
        OversellError: If ``oversell`` is REJECT and any sell exceeds open lots.
    """
    sorted_transactions = sorted(transactions, key=lambda t: t.transaction_datetime)

    final_state = reduce(
        lambda state, txn: apply_transaction(state, txn, oversell),
        sorted_transactions,
        LedgerState(),
    )

    if final_state.oversold_quantity > 0:
        warnings.warn(
            f"Sell transactions exceeded open quantity by {final_state.oversold_quantity}; "
            f"the excess was ignored.",
            UserWarning
        )

    return LedgerResult(
        remaining_quantity=final_state.remaining_quantity,
        remaining_cost_basis=final_state.cost_basis_sum,
        realized_gain_loss=final_state.realized_gain_loss,
        oversold_quantity=final_state.oversold_quantity,
        open_lots=final_state.lots,
    )
