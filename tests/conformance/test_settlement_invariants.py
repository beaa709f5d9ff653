"""
Settlement Conformance Tests

INVARIANTS, for any trading history before a maturity:
    - once every wallet holding a maturity is settled, no account and no
      market wallet holds its future cash any more
    - accounts' cash balances then sum to zero
    - settling twice changes nothing
    - cash settlement never moves more than requested and keeps cash zero-sum
"""

from hypothesis import given, settings, HealthCheck
from hypothesis import strategies as st

from futurecash import LedgerError, DECIMALS, future_cash_symbol

from tests.helpers import (
    MATURITY, OPERATION_KINDS, ACCOUNTS,
    seeded_engine, run_operation, snapshot, cash_sum, assert_integrity,
)


trades = st.lists(
    st.tuples(
        st.sampled_from(OPERATION_KINDS),
        st.sampled_from(["lp", "borrower", "lender"]),
        st.integers(min_value=1, max_value=5_000).map(lambda n: n * DECIMALS // 10),
        st.just(MATURITY),
    ),
    max_size=20,
)


def trade_and_mature(ops):
    engine = seeded_engine()
    for op in ops:
        try:
            run_operation(engine, *op)
        except LedgerError:
            pass
    engine.advance_time(MATURITY)
    return engine


class TestSettlementInvariants:

    @given(trades)
    @settings(max_examples=50, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_full_settlement_clears_maturity(self, ops):
        engine = trade_and_mature(ops)
        results = engine.settle_account_batch(list(ACCOUNTS))
        assert all(r.ok for r in results)

        positions = engine.ledger.get_positions(future_cash_symbol(1, MATURITY))
        assert positions == {}
        assert cash_sum(engine, "DAI") == 0
        assert engine.get_cash_balance("market.1", "DAI") == 0
        assert_integrity(engine)

    @given(trades)
    @settings(max_examples=30, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_settlement_is_idempotent(self, ops):
        engine = trade_and_mature(ops)
        engine.settle_account_batch(list(ACCOUNTS))
        before = snapshot(engine)
        again = engine.settle_account_batch(list(ACCOUNTS))
        assert all(r.cash_changes == {} and r.tokens_redeemed == 0 for r in again)
        assert snapshot(engine) == before

    @given(trades, st.integers(min_value=1, max_value=100))
    @settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_cash_settlement_bounded(self, ops, percent):
        engine = trade_and_mature(ops)
        engine.settle_account_batch(list(ACCOUNTS))

        payers = [a for a in ACCOUNTS if engine.get_cash_balance(a, "DAI") < 0]
        receivers = [a for a in ACCOUNTS if engine.get_cash_balance(a, "DAI") > 0]
        if not payers or not receivers:
            return
        payer, receiver = payers[0], receivers[0]
        amount = min(-engine.get_cash_balance(payer, "DAI"),
                     engine.get_cash_balance(receiver, "DAI")) * percent // 100
        if amount == 0:
            return

        debt_before = engine.get_cash_balance(payer, "DAI")
        result = engine.settle_cash_balance("DAI", "ETH", payer, receiver, amount)

        assert 0 <= result.settled <= amount
        assert engine.get_cash_balance(payer, "DAI") == debt_before + result.settled
        assert cash_sum(engine, "DAI") == 0
        assert_integrity(engine)
