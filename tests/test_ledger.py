"""Tests for the FIFO cost-basis ledger."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from folioperf.ledger import (
    LedgerState,
    Lot,
    OversellError,
    OversellPolicy,
    apply_transaction,
    run_ledger,
)
from folioperf.portfolio import Transaction, TransactionType


def _txn(day: int, transaction_type: TransactionType, quantity: str, price: str, hour: int = 12) -> Transaction:
    return Transaction(
        holding_id="h1",
        transaction_datetime=datetime(2025, 3, day, hour, 0, tzinfo=timezone.utc),
        transaction_type=transaction_type,
        quantity=Decimal(quantity),
        price=Decimal(price),
    )


BUY = TransactionType.BUY
SELL = TransactionType.SELL


def test_fifo_sell_consumes_oldest_lot_first():
    """Buy 10@100, buy 5@110, sell 8@120 realizes 160 from the first lot only."""
    result = run_ledger([
        _txn(1, BUY, "10", "100"),
        _txn(2, BUY, "5", "110"),
        _txn(3, SELL, "8", "120"),
    ])

    assert result.realized_gain_loss == Decimal("160")
    assert result.remaining_quantity == Decimal("7")
    assert result.remaining_cost_basis == Decimal("750")
    assert result.average_cost_basis == Decimal("750") / Decimal("7")
    assert result.open_lots == (Lot(Decimal("2"), Decimal("100")), Lot(Decimal("5"), Decimal("110")))


def test_fifo_sell_spanning_two_lots():
    """A second sell of 4@130 consumes 2@100 then 2@110."""
    result = run_ledger([
        _txn(1, BUY, "10", "100"),
        _txn(2, BUY, "5", "110"),
        _txn(3, SELL, "8", "120"),
        _txn(4, SELL, "4", "130"),
    ])

    assert result.realized_gain_loss == Decimal("260")
    assert result.remaining_quantity == Decimal("3")
    assert result.remaining_cost_basis == Decimal("330")
    assert result.average_cost_basis == Decimal("110")


def test_selling_everything_leaves_zero_average_cost():
    result = run_ledger([
        _txn(1, BUY, "10", "100"),
        _txn(2, SELL, "10", "90"),
    ])

    assert result.remaining_quantity == Decimal("0")
    assert result.average_cost_basis == Decimal("0")
    assert result.realized_gain_loss == Decimal("-100")
    assert result.open_lots == ()


def test_empty_history():
    result = run_ledger([])

    assert result.remaining_quantity == Decimal("0")
    assert result.remaining_cost_basis == Decimal("0")
    assert result.realized_gain_loss == Decimal("0")
    assert result.average_cost_basis == Decimal("0")


def test_transactions_are_sorted_before_folding():
    """Recording order does not matter when datetimes differ."""
    ordered = [
        _txn(1, BUY, "10", "100"),
        _txn(2, BUY, "5", "110"),
        _txn(3, SELL, "8", "120"),
    ]
    shuffled = [ordered[2], ordered[0], ordered[1]]

    assert run_ledger(shuffled) == run_ledger(ordered)


def test_same_datetime_keeps_recording_order():
    """Ties are applied in recording order, so the sell here sees no lots yet."""
    buy = _txn(5, BUY, "10", "100")
    sell = _txn(5, SELL, "4", "120")

    with pytest.warns(UserWarning, match="exceeded open quantity"):
        sell_first = run_ledger([sell, buy])
    buy_first = run_ledger([buy, sell])

    assert sell_first.remaining_quantity == Decimal("10")
    assert sell_first.realized_gain_loss == Decimal("0")
    assert buy_first.remaining_quantity == Decimal("6")
    assert buy_first.realized_gain_loss == Decimal("80")


def test_running_twice_gives_same_result():
    transactions = [
        _txn(1, BUY, "10", "100"),
        _txn(2, BUY, "5", "110"),
        _txn(3, SELL, "8", "120"),
    ]

    assert run_ledger(transactions) == run_ledger(transactions)


class TestOversell:
    """Sells exceeding the open lots."""

    def test_clamp_drops_excess_and_warns(self):
        transactions = [
            _txn(1, BUY, "5", "100"),
            _txn(2, SELL, "8", "120"),
        ]

        with pytest.warns(UserWarning, match="exceeded open quantity by 3"):
            result = run_ledger(transactions, OversellPolicy.CLAMP)

        assert result.remaining_quantity == Decimal("0")
        assert result.realized_gain_loss == Decimal("100")
        assert result.oversold_quantity == Decimal("3")

    def test_clamp_with_no_lots(self):
        with pytest.warns(UserWarning):
            result = run_ledger([_txn(1, SELL, "2", "50")])

        assert result.remaining_quantity == Decimal("0")
        assert result.realized_gain_loss == Decimal("0")
        assert result.oversold_quantity == Decimal("2")

    def test_later_buys_after_clamp_start_fresh(self):
        with pytest.warns(UserWarning):
            result = run_ledger([
                _txn(1, BUY, "5", "100"),
                _txn(2, SELL, "8", "120"),
                _txn(3, BUY, "4", "90"),
            ])

        assert result.remaining_quantity == Decimal("4")
        assert result.average_cost_basis == Decimal("90")

    def test_reject_raises(self):
        transactions = [
            _txn(1, BUY, "5", "100"),
            _txn(2, SELL, "8", "120"),
        ]

        with pytest.raises(OversellError) as excinfo:
            run_ledger(transactions, OversellPolicy.REJECT)

        assert excinfo.value.excess == Decimal("3")
        assert excinfo.value.transaction is transactions[1]

    def test_reject_is_a_value_error(self):
        with pytest.raises(ValueError):
            run_ledger([_txn(1, SELL, "1", "10")], OversellPolicy.REJECT)

    def test_exact_sell_is_not_an_oversell(self):
        result = run_ledger([
            _txn(1, BUY, "5", "100"),
            _txn(2, SELL, "5", "100"),
        ], OversellPolicy.REJECT)

        assert result.oversold_quantity == Decimal("0")


class TestApplyTransaction:
    """Single fold steps."""

    def test_does_not_modify_input_state(self):
        state = apply_transaction(LedgerState(), _txn(1, BUY, "10", "100"))
        before = (state.lots, state.remaining_quantity, state.cost_basis_sum)

        after = apply_transaction(state, _txn(2, SELL, "4", "120"))

        assert (state.lots, state.remaining_quantity, state.cost_basis_sum) == before
        assert after.lots == (Lot(Decimal("6"), Decimal("100")),)
        assert after.remaining_quantity == Decimal("6")
        assert after.cost_basis_sum == Decimal("600")
        assert after.realized_gain_loss == Decimal("80")

    def test_buy_appends_lot_at_tail(self):
        state = apply_transaction(LedgerState(), _txn(1, BUY, "1", "10"))
        state = apply_transaction(state, _txn(2, BUY, "2", "20"))

        assert [lot.price for lot in state.lots] == [Decimal("10"), Decimal("20")]
        assert state.cost_basis_sum == Decimal("50")

    def test_fractional_quantities(self):
        state = apply_transaction(LedgerState(), _txn(1, BUY, "0.5", "30000"))
        state = apply_transaction(state, _txn(2, SELL, "0.25", "32000"))

        assert state.remaining_quantity == Decimal("0.25")
        assert state.realized_gain_loss == Decimal("500")
