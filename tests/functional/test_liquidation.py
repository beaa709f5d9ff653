"""
test_liquidation.py - End-to-end liquidation tests

Tests:
- Collateral price drop followed by a collateral purchase that restores
  free collateral to just above zero
- Purchase capped by the account's collateral balance
- Liquidity token withdrawal before any purchase
- Guard rails: solvent accounts, self-liquidation, same currency, atomicity
"""

import pytest
from decimal import Decimal

from futurecash import (
    ErrorCode, LedgerError, CollateralError, InsufficientFunds,
    ExchangeRateConfig, DECIMALS, NumericError, calculate_collateral_purchase,
)
from futurecash.liquidation import calculate_tokens_to_withdraw
from tests.helpers import MATURITY, d, assert_integrity


@pytest.fixture
def exposed_engine(market_engine):
    """
    Borrower posts 2 ETH, borrows 100 DAI of future cash and withdraws the
    proceeds, leaving a net DAI position of exactly -100.
    """
    market_engine.deposit("borrower", "ETH", d(2))
    changes = market_engine.take_collateral("borrower", 1, MATURITY, d(100))
    market_engine.withdraw("borrower", "DAI", changes["DAI"])
    return market_engine


class TestCollateralPurchase:

    def test_restores_free_collateral(self, exposed_engine):
        exposed_engine.oracle.update_rate("ETH", "DAI", Decimal("60"))
        assert exposed_engine.free_collateral_view("borrower").aggregate == -d(4)

        result = exposed_engine.liquidate("liquidator", "borrower", "DAI", "ETH")

        assert result.tokens_withdrawn == 0
        assert result.local_paid == 25_333_333_333_333_333_340
        assert result.collateral_sold == 444_444_444_444_444_444
        assert result.free_collateral == 28
        assert exposed_engine.free_collateral_view("borrower").aggregate == 28

        assert exposed_engine.get_free_balance("borrower", "DAI") == result.local_paid
        assert exposed_engine.get_free_balance("liquidator", "ETH") == result.collateral_sold
        assert exposed_engine.get_free_balance("liquidator", "DAI") == d(1_000) - result.local_paid
        assert_integrity(exposed_engine)

    def test_capped_by_collateral_balance(self, exposed_engine):
        exposed_engine.oracle.update_rate("ETH", "DAI", Decimal("40"))
        result = exposed_engine.liquidate("liquidator", "borrower", "DAI", "ETH")

        assert result.collateral_sold == d(2)
        assert result.local_paid == d(76)
        assert result.free_collateral == -d(24)
        assert exposed_engine.get_free_balance("borrower", "ETH") == 0

    def test_second_liquidation_rejected(self, exposed_engine):
        exposed_engine.oracle.update_rate("ETH", "DAI", Decimal("60"))
        exposed_engine.liquidate("liquidator", "borrower", "DAI", "ETH")
        with pytest.raises(CollateralError) as exc:
            exposed_engine.liquidate("liquidator", "borrower", "DAI", "ETH")
        assert exc.value.code == ErrorCode.CANNOT_LIQUIDATE_SUFFICIENT_COLLATERAL

    def test_verbose_report(self, exposed_engine, capsys):
        exposed_engine.oracle.update_rate("ETH", "DAI", Decimal("60"))
        exposed_engine.verbose = True
        exposed_engine.liquidate("liquidator", "borrower", "DAI", "ETH")
        assert "[LIQUIDATE] liquidator -> borrower" in capsys.readouterr().out


class TestLiquidityTokens:

    def test_tokens_withdrawn_first(self, market_engine):
        market_engine.deposit("borrower", "ETH", d(2))
        market_engine.take_collateral("borrower", 1, MATURITY, d(100))
        market_engine.add_liquidity("borrower", 1, MATURITY, d(95), d(95))
        market_engine.oracle.update_rate("ETH", "DAI", Decimal("10"))
        assert not market_engine.free_collateral_view("borrower").is_collateralized

        result = market_engine.liquidate("liquidator", "borrower", "DAI", "ETH")

        assert result.tokens_withdrawn > 0
        assert result.free_collateral >= 0
        assert market_engine.get_free_balance("borrower", "ETH") > d("1.9")
        assert_integrity(market_engine)


class TestGuards:

    def test_solvent_account(self, market_engine):
        market_engine.deposit("borrower", "ETH", d(2))
        with pytest.raises(CollateralError) as exc:
            market_engine.liquidate("liquidator", "borrower", "DAI", "ETH")
        assert exc.value.code == ErrorCode.CANNOT_LIQUIDATE_SUFFICIENT_COLLATERAL

    def test_self_liquidation(self, exposed_engine):
        with pytest.raises(LedgerError) as exc:
            exposed_engine.liquidate("borrower", "borrower", "DAI", "ETH")
        assert exc.value.code == ErrorCode.COUNTERPARTY_CANNOT_BE_SELF

    def test_same_currency(self, exposed_engine):
        with pytest.raises(LedgerError) as exc:
            exposed_engine.liquidate("liquidator", "borrower", "DAI", "DAI")
        assert exc.value.code == ErrorCode.INVALID_TRADE

    def test_liquidator_cannot_pay(self, exposed_engine):
        exposed_engine.oracle.update_rate("ETH", "DAI", Decimal("60"))
        log_before = len(exposed_engine.ledger.transaction_log)
        with pytest.raises(InsufficientFunds):
            exposed_engine.liquidate("reserve", "borrower", "DAI", "ETH")
        assert len(exposed_engine.ledger.transaction_log) == log_before
        assert exposed_engine.get_free_balance("borrower", "ETH") == d(2)


class TestSizing:

    ETH = ExchangeRateConfig(
        rate=Decimal("60"), haircut=Decimal("0.8"), liquidation_discount=Decimal("0.95"))
    DAI = ExchangeRateConfig(rate=DECIMALS)

    def test_capped_at_local_shortfall(self):
        paid, sold = calculate_collateral_purchase(d(50), d(10), d(100), self.DAI, self.ETH)
        assert paid == d(10)
        assert sold == d(10) * DECIMALS // (d(60) * 95 // 100)

    @pytest.mark.parametrize("deficit, shortfall, balance", [(0, 1, 1), (1, 0, 1), (1, 1, 0)])
    def test_nothing_to_do(self, deficit, shortfall, balance):
        assert calculate_collateral_purchase(deficit, shortfall, balance, self.DAI, self.ETH) == (0, 0)

    def test_out_of_range_deficit_raises(self):
        with pytest.raises(NumericError) as exc:
            calculate_collateral_purchase(2**200, 2**200, 2**200, self.DAI, self.ETH)
        assert exc.value.code == ErrorCode.UINT256_MULTIPLICATION_OVERFLOW

    def test_tokens_to_withdraw(self):
        # each token releases 20% of one unit of collateral
        assert calculate_tokens_to_withdraw(d(2), d(100), d(100), d(100), 8 * 10**17) == d(10)
        assert calculate_tokens_to_withdraw(d(2), d(5), d(100), d(100), 8 * 10**17) == d(5)
        assert calculate_tokens_to_withdraw(d(2), d(5), d(100), d(100), DECIMALS) == 0
