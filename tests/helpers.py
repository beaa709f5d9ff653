"""
helpers.py - Shared constants and integrity checks for futurecash tests

- Calendar: PERIOD, T0 (aligned to a period boundary) and the first MATURITY
- d(): whole tokens to base units
- make_engine(): DAI base, ETH collateral, one DAI instrument group
- Integrity helpers for double-entry, custody and pool accounting
- Named random operations and state snapshots for property tests
"""

from decimal import Decimal
from typing import Dict

from futurecash import (
    Ledger, FutureCashEngine,
    ExchangeRateConfig, StaticExchangeRateOracle,
    DECIMALS, SYSTEM_WALLET,
    UNIT_TYPE_LIQUIDITY_TOKEN, UNIT_TYPE_CASH_BALANCE,
    future_cash_symbol,
)


# =============================================================================
# CONSTANTS
# =============================================================================

PERIOD = 90 * 86400
T0 = 100 * PERIOD
MATURITY = T0 + PERIOD

ACCOUNTS = ("lp", "borrower", "lender", "liquidator", "reserve")


def d(value) -> int:
    """Whole tokens to base units, e.g. d("95.5")."""
    return int(Decimal(str(value)) * DECIMALS)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def eth_config(rate="100") -> ExchangeRateConfig:
    return ExchangeRateConfig(
        rate=Decimal(rate),
        haircut=Decimal("0.8"),
        liquidation_discount=Decimal("0.95"),
        settlement_discount=Decimal("0.98"),
    )


def make_engine(test_mode: bool = True) -> FutureCashEngine:
    """Engine at T0 with DAI (base) and ETH registered, one DAI group, and the standard accounts."""
    ledger = Ledger("test", initial_time=T0, verbose=False, test_mode=test_mode)
    oracle = StaticExchangeRateOracle({("ETH", "DAI"): eth_config()})
    engine = FutureCashEngine(ledger, oracle, base_currency="DAI")
    engine.register_currency("DAI", "Dai Stablecoin")
    engine.register_currency("ETH", "Ether")
    engine.create_instrument_group("DAI", period_size=PERIOD)
    for account in ACCOUNTS:
        engine.register_account(account)
    return engine


def cash_sum(engine: FutureCashEngine, currency: str, include_market: bool = False) -> int:
    """Sum of a currency's cash balances over accounts (market wallets excluded by default)."""
    symbol = f"{currency}.CASH"
    markets = {g.market_wallet for g in engine.groups.values()}
    return sum(
        qty for wallet, qty in engine.ledger.get_positions(symbol).items()
        if wallet != SYSTEM_WALLET and (include_market or wallet not in markets)
    )


def verify_pool_accounting(engine: FutureCashEngine) -> Dict[str, bool]:
    """
    Check every unsettled pool against the ledger.

    - total_liquidity equals the tokens outstanding
    - the market wallet holds exactly total_future_cash and total_collateral
    - obligations of all other wallets net to -total_future_cash
    """
    ledger = engine.ledger
    results = {}
    for symbol in ledger.list_units():
        unit = ledger.get_unit(symbol)
        if unit.unit_type != UNIT_TYPE_LIQUIDITY_TOKEN:
            continue
        state = unit.state
        if state['settled']:
            continue
        group = engine.groups[state['group_id']]
        fcash = future_cash_symbol(state['group_id'], state['maturity'])
        tokens = sum(q for w, q in ledger.get_positions(symbol).items() if w != SYSTEM_WALLET)
        fc_positions = ledger.get_positions(fcash)
        others = sum(q for w, q in fc_positions.items() if w != group.market_wallet)
        results[symbol] = (
            tokens == state['total_liquidity']
            and fc_positions.get(group.market_wallet, 0) == state['total_future_cash']
            and others == -state['total_future_cash']
        )
    return results


def assert_integrity(engine: FutureCashEngine) -> None:
    """Double entry holds, custody matches free balances and every pool reconciles."""
    ledger = engine.ledger
    check = ledger.verify_double_entry()
    assert check['valid'], f"Conservation violated: {check['discrepancies']}"

    for currency in ("DAI", "ETH"):
        held = sum(q for w, q in ledger.get_positions(currency).items() if w != SYSTEM_WALLET)
        assert engine.total_custodied(currency) == held

    for symbol in ledger.list_units():
        if ledger.get_unit(symbol).unit_type == UNIT_TYPE_CASH_BALANCE:
            assert ledger.total_supply(symbol) == 0

    bad = [s for s, ok in verify_pool_accounting(engine).items() if not ok]
    assert not bad, f"Pool accounting broken for {bad}"




# =============================================================================
# RANDOM OPERATIONS
# =============================================================================

OPERATION_KINDS = ("deposit", "collateralise", "withdraw", "borrow", "lend", "add", "remove")


def seeded_engine() -> FutureCashEngine:
    """Engine with pools at the first two maturities and funded traders."""
    engine = make_engine()
    engine.deposit("lp", "DAI", d(20_000))
    engine.deposit("lender", "DAI", d(5_000))
    engine.deposit("borrower", "ETH", d(5))
    for maturity in (MATURITY, MATURITY + PERIOD):
        engine.add_liquidity("lp", 1, maturity, d(5_000), d(5_000))
    return engine


def run_operation(engine: FutureCashEngine, kind: str, account: str, amount: int, maturity: int):
    """Apply one market or escrow call by name."""
    if kind == "deposit":
        return engine.deposit(account, "DAI", amount)
    if kind == "collateralise":
        return engine.deposit(account, "ETH", amount // 50)
    if kind == "withdraw":
        return engine.withdraw(account, "DAI", amount)
    if kind == "borrow":
        return engine.take_collateral(account, 1, maturity, amount)
    if kind == "lend":
        return engine.take_future_cash(account, 1, maturity, amount)
    if kind == "add":
        return engine.add_liquidity(account, 1, maturity, amount, amount)
    if kind == "remove":
        return engine.remove_liquidity(account, 1, maturity, amount)
    raise ValueError(f"Unknown operation {kind}")


def snapshot(engine: FutureCashEngine):
    """Every balance, every unit state and the log length."""
    ledger = engine.ledger
    balances = {w: ledger.get_wallet_balances(w) for w in sorted(ledger.list_wallets())}
    states = {u: ledger.get_unit_state(u) for u in ledger.list_units()}
    return balances, states, len(ledger.transaction_log)
