"""
test_free_collateral.py - Unit tests for portfolio records and free collateral

Tests:
- get_assets() classification and ordering
- Haircuts on deposits and liquidity tokens
- Future cash valuation: debts at face, claims at the pool's quote, face once matured
- Netting within a maturity
- Free collateral gates withdrawals and borrowing
"""

import pytest
from decimal import Decimal

from futurecash import AssetType, ErrorCode, CollateralError, NumericError, calculate_free_collateral
from futurecash.portfolio import convert_to_base, value_future_cash
from tests.helpers import PERIOD, MATURITY, d


SECOND = MATURITY + PERIOD


class TestConvertToBase:

    def test_positive_is_haircut(self, oracle):
        assert convert_to_base(oracle, "ETH", "DAI", d(1)) == d(80)

    def test_negative_at_full_rate(self, oracle):
        assert convert_to_base(oracle, "ETH", "DAI", -d(1)) == -d(100)

    def test_base_currency_at_par(self, oracle):
        assert convert_to_base(oracle, "DAI", "DAI", d(7)) == d(7)
        assert convert_to_base(oracle, "DAI", "DAI", 0) == 0

    @pytest.mark.parametrize("amount", [2**200, -2**200])
    def test_out_of_range_raises(self, oracle, amount):
        with pytest.raises(NumericError) as exc:
            convert_to_base(oracle, "ETH", "DAI", amount)
        assert exc.value.code == ErrorCode.UINT256_MULTIPLICATION_OVERFLOW


class TestGetAssets:

    def test_empty(self, engine):
        assert engine.get_assets("borrower") == []

    def test_ordering(self, market_engine):
        market_engine.add_liquidity("lp", 1, SECOND, d(1_000), d(1_000))
        market_engine.deposit("lp", "ETH", d(10))
        market_engine.take_collateral("lp", 1, MATURITY, d(50))

        assets = market_engine.get_assets("lp")
        assert [(a.maturity, a.asset_type) for a in assets] == [
            (MATURITY, AssetType.LIQUIDITY_TOKEN),
            (MATURITY, AssetType.CASH_PAYER),
            (SECOND, AssetType.LIQUIDITY_TOKEN),
            (SECOND, AssetType.CASH_PAYER),
        ]
        assert all(a.notional > 0 for a in assets)


class TestFreeCollateral:

    def test_empty_account(self, engine):
        result = engine.free_collateral_view("borrower")
        assert result.aggregate == 0
        assert result.is_collateralized
        assert result.net_balances == {}

    def test_collateral_deposit_haircut(self, engine):
        engine.deposit("borrower", "ETH", d(2))
        result = engine.free_collateral_view("borrower")
        assert result.aggregate == d(160)
        assert result.net_balances == {"ETH": d(2)}

    def test_liquidity_provider(self, market_engine):
        """Token future cash offsets the provider's own payer obligation."""
        result = market_engine.free_collateral_view("lp")
        assert result.aggregate == d(5_000) + d(8_000)

    def test_borrower_debt_at_face(self, market_engine):
        market_engine.deposit("borrower", "ETH", d(2))
        changes = market_engine.take_collateral("borrower", 1, MATURITY, d(100))
        result = market_engine.free_collateral_view("borrower")
        assert result.net_balances["DAI"] == changes["DAI"] - d(100)
        assert result.aggregate == d(160) + changes["DAI"] - d(100)

    def test_lender_claim_at_sale_price(self, market_engine):
        changes = market_engine.take_future_cash("lender", 1, MATURITY, d(100))
        sale = market_engine.get_future_cash_to_collateral(1, MATURITY, d(100))
        result = market_engine.free_collateral_view("lender")
        assert result.aggregate == d(1_000) + changes["DAI"] + sale
        assert sale < d(100)

    def test_matured_claim_at_face(self, market_engine):
        changes = market_engine.take_future_cash("lender", 1, MATURITY, d(100))
        market_engine.advance_time(MATURITY)
        result = market_engine.free_collateral_view("lender")
        assert result.aggregate == d(1_000) + changes["DAI"] + d(100)

    def test_unsellable_claim_is_worthless(self, market_engine):
        group = market_engine.get_instrument_group(1)
        assert value_future_cash(market_engine.ledger, group, MATURITY, d(1_000_000)) == 0
        assert value_future_cash(market_engine.ledger, group, MATURITY, -d(5)) == -d(5)

    def test_falls_with_collateral_price(self, market_engine):
        market_engine.deposit("borrower", "ETH", d(2))
        market_engine.take_collateral("borrower", 1, MATURITY, d(100))
        before = market_engine.free_collateral_view("borrower").aggregate
        market_engine.oracle.update_rate("ETH", "DAI", Decimal("50"))
        after = market_engine.free_collateral_view("borrower").aggregate
        assert before - after == d(80)

    def test_pure_calculation_matches_engine(self, market_engine):
        result = calculate_free_collateral(
            market_engine.ledger, "lp", market_engine.groups,
            market_engine.oracle, market_engine.base_currency,
        )
        assert result == market_engine.free_collateral_view("lp")


class TestCollateralChecks:

    def test_withdraw_blocked_when_debt_outstanding(self, market_engine):
        market_engine.deposit("borrower", "ETH", d(2))
        market_engine.take_collateral("borrower", 1, MATURITY, d(100))
        with pytest.raises(CollateralError) as exc:
            market_engine.withdraw("borrower", "ETH", d(2))
        assert exc.value.code == ErrorCode.INSUFFICIENT_FREE_COLLATERAL
        assert market_engine.get_free_balance("borrower", "ETH") == d(2)

    def test_partial_withdraw_allowed(self, market_engine):
        market_engine.deposit("borrower", "ETH", d(2))
        market_engine.take_collateral("borrower", 1, MATURITY, d(100))
        market_engine.withdraw("borrower", "ETH", d("1.9"))
        assert market_engine.free_collateral_view("borrower").is_collateralized

    def test_thin_collateral_cannot_borrow(self, market_engine):
        market_engine.deposit("borrower", "ETH", d("0.05"))
        with pytest.raises(CollateralError):
            market_engine.take_collateral("borrower", 1, MATURITY, d(100))
        market_engine.take_collateral("borrower", 1, MATURITY, d(50))
