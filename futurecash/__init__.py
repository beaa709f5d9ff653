"""
futurecash - Fixed-Rate Lending Market

Bonding-curve markets for future cash, multi-currency free collateral, and
liquidation and settlement, on top of a double-entry ledger.

Usage:
    from decimal import Decimal
    from futurecash import (
        Ledger, FutureCashEngine, StaticExchangeRateOracle, ExchangeRateConfig,
        DECIMALS,
    )

    oracle = StaticExchangeRateOracle({
        ("ETH", "DAI"): ExchangeRateConfig(rate=Decimal("100"), haircut=Decimal("0.8"),
                                           liquidation_discount=Decimal("0.95"),
                                           settlement_discount=Decimal("0.98")),
    })
    engine = FutureCashEngine(Ledger("main", initial_time=T0), oracle, base_currency="DAI")
    engine.register_currency("DAI", "Dai Stablecoin")
    engine.register_currency("ETH", "Ether")
    group = engine.create_instrument_group("DAI", period_size=90 * 86400)

    for account in ("lp", "borrower"):
        engine.register_account(account)
    engine.deposit("lp", "DAI", 15_000 * DECIMALS)
    engine.deposit("borrower", "ETH", 2 * DECIMALS)

    maturity = engine.get_active_maturities(group.group_id)[0]
    engine.add_liquidity("lp", group.group_id, maturity, 10_000 * DECIMALS, 10_000 * DECIMALS)
    engine.take_collateral("borrower", group.group_id, maturity, 100 * DECIMALS)
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    empty_pending_transaction,
    signed_move,
    Unit,
    UnitStateChange,
    ErrorCode,
    LedgerError,
    NumericError,
    MarketError,
    CollateralError,
    InsufficientFunds,
    BalanceConstraintViolation,
    SettlementError,
    UnitNotRegistered,
    WalletNotRegistered,
    currency,
    cash_balance_unit,
    future_cash_unit,
    liquidity_token_unit,
    cash_balance_symbol,
    future_cash_symbol,
    liquidity_token_symbol,
    market_wallet,
    SYSTEM_WALLET,
    DECIMALS,
    RATE_PRECISION,
    BASIS_POINTS,
    UNIT_TYPE_CURRENCY,
    UNIT_TYPE_CASH_BALANCE,
    UNIT_TYPE_FUTURE_CASH,
    UNIT_TYPE_LIQUIDITY_TOKEN,
)

# Ledger
from .ledger import Ledger

# Exchange rates
from .oracle import (
    ExchangeRateConfig,
    ExchangeRateOracle,
    StaticExchangeRateOracle,
)

# Markets
from .market import (
    InstrumentGroup,
    MaturityPool,
    TradeResult,
    LiquidityResult,
    load_pool,
    get_active_maturities,
    is_active_maturity,
    calculate_exchange_rate,
    calculate_implied_rate,
    calculate_take_collateral,
    calculate_take_future_cash,
    calculate_add_liquidity,
    calculate_remove_liquidity,
    calculate_max_future_cash_at_implied_rate,
    quote_future_cash_to_collateral,
    quote_collateral_to_future_cash,
    compute_add_liquidity,
    compute_remove_liquidity,
    compute_take_collateral,
    compute_take_future_cash,
)

# Portfolio and free collateral
from .portfolio import (
    AssetType,
    Asset,
    FreeCollateralResult,
    get_assets,
    calculate_free_collateral,
)

# Escrow
from .escrow import (
    compute_deposit,
    compute_withdraw,
    compute_cash_transfer,
    get_free_balance,
    get_cash_balance,
    total_custodied,
)

# Settlement and liquidation
from .settlement import (
    AccountSettlement,
    CashSettlementResult,
    compute_settle_matured,
)
from .liquidation import (
    LiquidationResult,
    calculate_collateral_purchase,
)

# Engine
from .engine import FutureCashEngine


__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction', 'TransactionOrigin', 'OriginType',
    'build_transaction', 'empty_pending_transaction', 'signed_move',
    'Unit', 'UnitStateChange',
    'ErrorCode', 'LedgerError', 'NumericError', 'MarketError', 'CollateralError',
    'InsufficientFunds', 'BalanceConstraintViolation', 'SettlementError',
    'UnitNotRegistered', 'WalletNotRegistered',
    'currency', 'cash_balance_unit', 'future_cash_unit', 'liquidity_token_unit',
    'cash_balance_symbol', 'future_cash_symbol', 'liquidity_token_symbol', 'market_wallet',
    'SYSTEM_WALLET', 'DECIMALS', 'RATE_PRECISION', 'BASIS_POINTS',
    'UNIT_TYPE_CURRENCY', 'UNIT_TYPE_CASH_BALANCE', 'UNIT_TYPE_FUTURE_CASH', 'UNIT_TYPE_LIQUIDITY_TOKEN',
    # Ledger
    'Ledger',
    # Exchange rates
    'ExchangeRateConfig', 'ExchangeRateOracle', 'StaticExchangeRateOracle',
    # Markets
    'InstrumentGroup', 'MaturityPool', 'TradeResult', 'LiquidityResult',
    'load_pool', 'get_active_maturities', 'is_active_maturity',
    'calculate_exchange_rate', 'calculate_implied_rate',
    'calculate_take_collateral', 'calculate_take_future_cash',
    'calculate_add_liquidity', 'calculate_remove_liquidity',
    'calculate_max_future_cash_at_implied_rate',
    'quote_future_cash_to_collateral', 'quote_collateral_to_future_cash',
    'compute_add_liquidity', 'compute_remove_liquidity',
    'compute_take_collateral', 'compute_take_future_cash',
    # Portfolio
    'AssetType', 'Asset', 'FreeCollateralResult', 'get_assets', 'calculate_free_collateral',
    # Escrow
    'compute_deposit', 'compute_withdraw', 'compute_cash_transfer',
    'get_free_balance', 'get_cash_balance', 'total_custodied',
    # Settlement and liquidation
    'AccountSettlement', 'CashSettlementResult', 'compute_settle_matured',
    'LiquidationResult', 'calculate_collateral_purchase',
    # Engine
    'FutureCashEngine',
]
