"""
test_core_types.py - Unit tests for core value objects and error codes

Tests:
- Move validation
- signed_move direction and zero handling
- Unit factories and symbols
- LedgerError codes and defaults
- build_transaction filtering and origin defaults
"""

import pytest

from futurecash import (
    Move, signed_move, build_transaction, empty_pending_transaction,
    TransactionOrigin, OriginType, UnitStateChange,
    ErrorCode, LedgerError, NumericError, MarketError, CollateralError,
    InsufficientFunds, BalanceConstraintViolation, SettlementError,
    UnitNotRegistered, WalletNotRegistered,
    currency, cash_balance_unit, future_cash_unit, liquidity_token_unit,
    cash_balance_symbol, future_cash_symbol, liquidity_token_symbol, market_wallet,
    UNIT_TYPE_CURRENCY, UNIT_TYPE_CASH_BALANCE, UNIT_TYPE_FUTURE_CASH, UNIT_TYPE_LIQUIDITY_TOKEN,
    DECIMALS,
)
from futurecash.core import UINT128_MAX, INT256_MIN
from tests.fake_view import FakeView


class TestMove:

    def test_valid_move(self):
        move = Move(5, "DAI", "alice", "bob", "pay")
        assert move.quantity == 5
        assert repr(move) == "Move(5 DAI: alice→bob)"

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_non_positive_quantity_rejected(self, quantity):
        with pytest.raises(ValueError):
            Move(quantity, "DAI", "alice", "bob", "pay")

    @pytest.mark.parametrize("quantity", [1.5, True, "1"])
    def test_non_int_quantity_rejected(self, quantity):
        with pytest.raises(ValueError):
            Move(quantity, "DAI", "alice", "bob", "pay")

    def test_self_transfer_rejected(self):
        with pytest.raises(ValueError):
            Move(1, "DAI", "alice", "alice", "pay")

    @pytest.mark.parametrize("field", ["unit_symbol", "source", "dest", "contract_id"])
    def test_empty_fields_rejected(self, field):
        kwargs = dict(quantity=1, unit_symbol="DAI", source="alice", dest="bob", contract_id="pay")
        kwargs[field] = " "
        with pytest.raises(ValueError):
            Move(**kwargs)


class TestSignedMove:

    def test_positive_credits_wallet(self):
        move = signed_move(5, "DAI.CASH", "alice", "market.1", "settle")
        assert (move.source, move.dest, move.quantity) == ("market.1", "alice", 5)

    def test_negative_debits_wallet(self):
        move = signed_move(-5, "DAI.CASH", "alice", "market.1", "settle")
        assert (move.source, move.dest, move.quantity) == ("alice", "market.1", 5)

    def test_zero_is_none(self):
        assert signed_move(0, "DAI.CASH", "alice", "market.1", "settle") is None


class TestUnitFactories:

    def test_currency_is_unsigned(self):
        unit = currency("DAI", "Dai")
        assert unit.unit_type == UNIT_TYPE_CURRENCY
        assert unit.min_balance == 0
        assert unit.max_balance == UINT128_MAX

    def test_cash_balance_is_signed(self):
        unit = cash_balance_unit("DAI")
        assert unit.symbol == "DAI.CASH" == cash_balance_symbol("DAI")
        assert unit.unit_type == UNIT_TYPE_CASH_BALANCE
        assert unit.min_balance == INT256_MIN
        assert unit.state == {'currency': 'DAI'}

    def test_future_cash_unit(self):
        unit = future_cash_unit(1, 1000, "DAI")
        assert unit.symbol == future_cash_symbol(1, 1000) == "FCASH.1.1000"
        assert unit.unit_type == UNIT_TYPE_FUTURE_CASH
        assert unit.min_balance < 0
        assert unit.state == {'group_id': 1, 'maturity': 1000, 'currency': 'DAI'}

    def test_liquidity_token_carries_pool_state(self):
        state = {'group_id': 2, 'maturity': 1000, 'currency': 'DAI', 'total_liquidity': 7}
        unit = liquidity_token_unit(2, 1000, state)
        assert unit.symbol == liquidity_token_symbol(2, 1000) == "LIQ.2.1000"
        assert unit.unit_type == UNIT_TYPE_LIQUIDITY_TOKEN
        assert unit.min_balance == 0
        assert unit.state == state

    def test_state_is_a_copy(self):
        unit = cash_balance_unit("DAI")
        unit.state['currency'] = 'ETH'
        assert unit.state['currency'] == 'DAI'

    def test_market_wallet(self):
        assert market_wallet(3) == "market.3"


class TestErrors:

    @pytest.mark.parametrize("cls, code", [
        (LedgerError, ErrorCode.INVALID_TRADE),
        (NumericError, ErrorCode.UINT256_ADDITION_OVERFLOW),
        (MarketError, ErrorCode.MARKET_INACTIVE),
        (CollateralError, ErrorCode.INSUFFICIENT_FREE_COLLATERAL),
        (InsufficientFunds, ErrorCode.INSUFFICIENT_BALANCE),
        (BalanceConstraintViolation, ErrorCode.OVER_MAX_COLLATERAL),
        (SettlementError, ErrorCode.INCORRECT_CASH_BALANCE),
        (UnitNotRegistered, ErrorCode.UNIT_NOT_REGISTERED),
        (WalletNotRegistered, ErrorCode.WALLET_NOT_REGISTERED),
    ])
    def test_default_codes(self, cls, code):
        assert cls().code == code

    def test_code_override(self):
        err = MarketError("too big", ErrorCode.TRADE_FAILED_TOO_LARGE)
        assert err.code == ErrorCode.TRADE_FAILED_TOO_LARGE
        assert str(err) == "too big"
        assert "TRADE_FAILED_TOO_LARGE=16" in repr(err)

    def test_message_defaults_to_code_name(self):
        assert str(CollateralError()) == "INSUFFICIENT_FREE_COLLATERAL"

    def test_hierarchy(self):
        assert issubclass(InsufficientFunds, CollateralError)
        assert issubclass(BalanceConstraintViolation, CollateralError)
        for cls in (NumericError, MarketError, CollateralError, SettlementError):
            assert issubclass(cls, LedgerError)

    def test_stable_numbering(self):
        assert ErrorCode.EXCHANGE_RATE_UNDERFLOW == 1
        assert ErrorCode.INSUFFICIENT_FREE_COLLATERAL == 5
        assert ErrorCode.TRADE_FAILED_MAX_TIME == 18
        assert ErrorCode.NEGATIVE_LOG == 116


class TestBuildTransaction:

    def test_drops_none_moves(self):
        view = FakeView(balances={}, time=42)
        pending = build_transaction(view, [
            Move(1, "DAI", "a", "b", "x"),
            None,
            signed_move(0, "DAI", "a", "b", "x"),
        ])
        assert len(pending.moves) == 1
        assert pending.timestamp == 42
        assert pending.origin.origin_type == OriginType.USER_ACTION

    def test_state_changes_are_copied(self):
        view = FakeView(balances={})
        new_state = {'total_liquidity': 1}
        pending = build_transaction(view, [], [UnitStateChange("LIQ.1.1", {}, new_state)])
        new_state['total_liquidity'] = 99
        assert pending.state_changes[0].new_state == {'total_liquidity': 1}

    def test_empty(self):
        assert empty_pending_transaction(FakeView(balances={})).is_empty()

    def test_origin_repr(self):
        origin = TransactionOrigin(OriginType.SETTLEMENT, "alice", "DAI", "SETTLE_CASH")
        assert repr(origin) == "Origin(settlement:alice, unit=DAI, event=SETTLE_CASH)"

    def test_changed_fields(self):
        sc = UnitStateChange("LIQ.1.1", {'a': 1, 'b': 2}, {'a': 1, 'b': 3, 'c': DECIMALS})
        assert sc.changed_fields() == {'b': (2, 3), 'c': (None, DECIMALS)}
