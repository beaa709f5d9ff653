"""
conftest.py - Shared pytest fixtures for futurecash tests

Provides common fixtures used across unit, functional and conformance tests:
- Oracle with a DAI base currency and an ETH collateral currency
- Engines at various stages (empty, funded, with a live DAI market)
"""

import pytest

from futurecash import StaticExchangeRateOracle

from tests.helpers import MATURITY, d, eth_config, make_engine


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def oracle():
    return StaticExchangeRateOracle({("ETH", "DAI"): eth_config()})


@pytest.fixture
def engine():
    """Engine with currencies, one DAI group and accounts, nothing deposited."""
    return make_engine()


@pytest.fixture
def funded_engine(engine):
    """LP holds 15000 DAI, lender 1000 DAI, liquidator 1000 DAI."""
    engine.deposit("lp", "DAI", d(15_000))
    engine.deposit("lender", "DAI", d(1_000))
    engine.deposit("liquidator", "DAI", d(1_000))
    return engine


@pytest.fixture
def market_engine(funded_engine):
    """Funded engine with a 10000 / 10000 DAI pool at MATURITY (proportion 0.5)."""
    funded_engine.add_liquidity("lp", 1, MATURITY, d(10_000), d(10_000))
    return funded_engine
