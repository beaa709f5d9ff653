"""
market.py - Bonding-Curve Markets for Future Cash

One pool per (instrument group, maturity) trades future cash, a claim on
currency delivered at maturity, against collateral in the same currency.
The price is set by a logit curve over the pool's proportion of future cash.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES (explicit inputs):
   - InstrumentGroup: configuration shared by every maturity of a currency
   - MaturityPool: immutable snapshot of one pool
   - TradeResult, LiquidityResult: outcome of a pure calculation

2. PURE CALCULATION FUNCTIONS (calculate_*):
   - Take pools and amounts explicitly, no LedgerView
   - Trade calculations report failures as an ErrorCode in the result
     instead of raising, so quotes can return 0 without exception handling

3. ADAPTER FUNCTIONS (load_pool):
   - The only place that reads pool state from a LedgerView

4. CONVENIENCE FUNCTIONS (compute_*):
   - Load, calculate, validate and return a PendingTransaction
   - Raise MarketError on any failure before a move is built

Key Formulas:
    proportion    = (F + dF) / (F + C)          F, C: pre-trade pool totals
    exchange_rate = anchor + ln(p / (1 - p)) / scalar
    collateral    = future_cash / exchange_rate
    implied_rate  = (exchange_rate - 1) * period_size / (maturity - now)

Conventions:
    - Future cash moving INTO the pool (a borrower selling) raises the
      proportion and the rate; future cash moving OUT (a lender buying)
      lowers both.
    - The liquidity fee is added to the borrower's rate and subtracted
      from the lender's rate. The transaction fee is a cut of the
      collateral leg paid to the reserve account.
    - Balances of the future-cash unit are signed: payers negative,
      receivers positive, the pool's market wallet holds total_future_cash.
"""

from __future__ import annotations
from dataclasses import dataclass, asdict, replace
from decimal import Decimal
from typing import List, Optional, Tuple, Union

from .core import (
    LedgerView, Move, PendingTransaction, UnitStateChange,
    TransactionOrigin, OriginType,
    DECIMALS, RATE_PRECISION, BASIS_POINTS, SYSTEM_WALLET,
    UINT32_MAX, UINT128_MAX,
    ErrorCode, MarketError, CollateralError,
    build_transaction,
    future_cash_symbol, liquidity_token_symbol, market_wallet,
    future_cash_unit, liquidity_token_unit,
)
from .numeric import (
    add128, sub128, mul_div, mul_div_up,
    add_int256, sub_int256, mul_int256, div_int256,
    ln_fixed, exp_fixed, to_fixed,
    EXP_MAX_INPUT,
)


Number = Union[int, Decimal, str]

DEFAULT_RATE_ANCHOR = 1_050_000_000
DEFAULT_RATE_SCALAR = 100
DEFAULT_NUM_PERIODS = 4
DEFAULT_LIQUIDITY_HAIRCUT = 8 * 10**17

# Borrows may not push the pool proportion above this (RATE_PRECISION).
MAX_MARKET_PROPORTION = 900_000_000

# ln() output is DECIMALS fixed point, rates are RATE_PRECISION.
_LOG_TO_RATE = DECIMALS // RATE_PRECISION


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

def validate_rate_factors(rate_anchor: int, rate_scalar: int) -> None:
    """
    Raise MarketError(INVALID_RATE_FACTORS) unless the curve is well formed.

    The anchor is the exchange rate at p = 0.5 and must be at least par; the
    scalar divides the log term and must be positive.
    """
    if rate_scalar <= 0 or rate_anchor < RATE_PRECISION or rate_anchor > UINT32_MAX:
        raise MarketError(
            f"Invalid rate factors: anchor={rate_anchor}, scalar={rate_scalar}",
            ErrorCode.INVALID_RATE_FACTORS,
        )


@dataclass(frozen=True, slots=True)
class InstrumentGroup:
    """
    Configuration shared by every maturity of one currency's market.

    Attributes:
        group_id: Identifier, also used in unit symbols
        currency: Currency traded as both collateral and future cash
        period_size: Seconds between maturities
        num_periods: Number of maturities open at once (0 deactivates the group)
        rate_anchor: Exchange rate at p = 0.5 (RATE_PRECISION); snapshotted
            by a pool when it is initialised
        rate_scalar: Divisor of the log term; larger is flatter
        liquidity_fee: Basis points added to the borrower's exchange rate
            and subtracted from the lender's
        transaction_fee: Basis points of the collateral leg paid to the reserve
        max_trade_size: Largest future-cash notional in one trade
        liquidity_haircut: Fraction of a liquidity token's collateral share
            counted towards free collateral (DECIMALS)
    """
    group_id: int
    currency: str
    period_size: int
    num_periods: int = DEFAULT_NUM_PERIODS
    rate_anchor: Number = DEFAULT_RATE_ANCHOR
    rate_scalar: int = DEFAULT_RATE_SCALAR
    liquidity_fee: int = 0
    transaction_fee: int = 0
    max_trade_size: int = UINT128_MAX
    liquidity_haircut: Number = DEFAULT_LIQUIDITY_HAIRCUT

    def __post_init__(self):
        object.__setattr__(self, 'rate_anchor', to_fixed(self.rate_anchor, RATE_PRECISION))
        object.__setattr__(self, 'liquidity_haircut', to_fixed(self.liquidity_haircut))

        if self.period_size <= 0:
            raise ValueError(f"period_size must be positive, got {self.period_size}")
        if self.num_periods < 0:
            raise ValueError(f"num_periods cannot be negative, got {self.num_periods}")
        if not 0 <= self.liquidity_fee <= BASIS_POINTS:
            raise ValueError(f"liquidity_fee out of range: {self.liquidity_fee}")
        if not 0 <= self.transaction_fee <= BASIS_POINTS:
            raise ValueError(f"transaction_fee out of range: {self.transaction_fee}")
        if self.max_trade_size < 0:
            raise ValueError(f"max_trade_size cannot be negative, got {self.max_trade_size}")
        if not 0 <= self.liquidity_haircut <= DECIMALS:
            raise ValueError(f"liquidity_haircut must be in [0, 1], got {self.liquidity_haircut}")
        validate_rate_factors(self.rate_anchor, self.rate_scalar)

    @property
    def market_wallet(self) -> str:
        return market_wallet(self.group_id)


@dataclass(frozen=True, slots=True)
class MaturityPool:
    """
    Immutable snapshot of one pool.

    A pool with total_liquidity == 0 is uninitialised: the next
    add-liquidity call sets its proportion and snapshots the group's rate
    factors and liquidity fee.
    """
    group_id: int
    maturity: int
    currency: str
    total_future_cash: int = 0
    total_collateral: int = 0
    total_liquidity: int = 0
    rate_anchor: int = 0
    rate_scalar: int = 0
    last_implied_rate: int = 0
    fee_rate_bps: int = 0
    settled: bool = False

    @property
    def symbol(self) -> str:
        return liquidity_token_symbol(self.group_id, self.maturity)

    @property
    def future_cash_symbol(self) -> str:
        return future_cash_symbol(self.group_id, self.maturity)

    @property
    def is_empty(self) -> bool:
        return self.total_liquidity == 0


@dataclass(frozen=True, slots=True)
class TradeResult:
    """
    Outcome of a pure trade calculation.

    `collateral` is the pool's leg; `fee` is the transaction fee on top of
    it (deducted from a borrower's proceeds, added to a lender's payment).
    When `error` is set the other fields are zero and new_pool is None.
    """
    future_cash: int
    collateral: int
    fee: int
    exchange_rate: int
    implied_rate: int
    new_pool: Optional[MaturityPool]
    error: Optional[ErrorCode] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class LiquidityResult:
    """Amounts moved by adding or removing liquidity, and the resulting pool."""
    tokens: int
    collateral: int
    future_cash: int
    new_pool: MaturityPool


def _failed_trade(future_cash: int, code: ErrorCode) -> TradeResult:
    return TradeResult(future_cash, 0, 0, 0, 0, None, code)


# ============================================================================
# ADAPTER FUNCTIONS
# ============================================================================

def load_pool(view: LedgerView, group: InstrumentGroup, maturity: int) -> MaturityPool:
    """
    Read a pool from the ledger.

    A maturity that never had liquidity returns an uninitialised pool.
    """
    symbol = liquidity_token_symbol(group.group_id, maturity)
    if symbol not in view.list_units():
        return MaturityPool(group_id=group.group_id, maturity=maturity, currency=group.currency)
    return MaturityPool(**view.get_unit_state(symbol))


def pool_exists(view: LedgerView, group: InstrumentGroup, maturity: int) -> bool:
    return liquidity_token_symbol(group.group_id, maturity) in view.list_units()


def to_state_dict(pool: MaturityPool) -> dict:
    return asdict(pool)


# ============================================================================
# MATURITY WINDOW
# ============================================================================

def get_active_maturities(group: InstrumentGroup, now: int) -> List[int]:
    """
    Maturities currently open for trading.

    The window is the next num_periods multiples of period_size strictly
    after `now`; it rolls forward as time passes.
    """
    base = now - now % group.period_size
    return [base + i * group.period_size for i in range(1, group.num_periods + 1)]


def is_active_maturity(group: InstrumentGroup, maturity: int, now: int) -> bool:
    if maturity <= now or maturity % group.period_size != 0:
        return False
    return maturity <= now - now % group.period_size + group.num_periods * group.period_size


# ============================================================================
# PURE CALCULATION FUNCTIONS - Pricing
# ============================================================================

def calculate_rate_at_proportion(
    rate_anchor: int,
    rate_scalar: int,
    proportion: int,
) -> Tuple[int, Optional[ErrorCode]]:
    """
    Exchange rate on the curve at a proportion (both RATE_PRECISION).

    Returns:
        (rate, None) on success, (0, code) if the proportion is outside
        (0, 1) or the rate falls below par or above the 32-bit ceiling.
    """
    if proportion <= 0:
        return 0, ErrorCode.EXCHANGE_RATE_UNDERFLOW
    if proportion >= RATE_PRECISION:
        return 0, ErrorCode.EXCHANGE_RATE_OVERFLOW

    odds = mul_div(proportion, DECIMALS, RATE_PRECISION - proportion)
    log_odds = ln_fixed(odds)
    rate = add_int256(rate_anchor, div_int256(log_odds, rate_scalar * _LOG_TO_RATE))

    if rate < RATE_PRECISION:
        return 0, ErrorCode.EXCHANGE_RATE_UNDERFLOW
    if rate > UINT32_MAX:
        return 0, ErrorCode.EXCHANGE_RATE_OVERFLOW
    return rate, None


def calculate_proportion_for_rate(rate_anchor: int, rate_scalar: int, rate: int) -> int:
    """
    Inverse of the curve: the proportion at which the pool quotes `rate`.

    p / (1 - p) = exp((rate - anchor) * scalar), so p = x / (1 + x).
    """
    log_odds = mul_int256(sub_int256(rate, rate_anchor), rate_scalar * _LOG_TO_RATE)
    if log_odds > EXP_MAX_INPUT:
        return RATE_PRECISION
    odds = exp_fixed(log_odds)
    return mul_div(odds, RATE_PRECISION, DECIMALS + odds)


def calculate_exchange_rate(
    pool: MaturityPool,
    future_cash_delta: int = 0,
) -> Tuple[int, Optional[ErrorCode]]:
    """
    Exchange rate after `future_cash_delta` enters (+) or leaves (-) the pool.

    The numerator is post-trade and the denominator pre-trade, so the
    rate is known before the collateral leg is. A borrow that would lift
    the proportion above MAX_MARKET_PROPORTION finds no liquidity.
    """
    if pool.is_empty or pool.total_collateral == 0:
        return 0, ErrorCode.EXCHANGE_RATE_UNDERFLOW

    numerator = pool.total_future_cash + future_cash_delta
    if numerator <= 0:
        return 0, ErrorCode.TRADE_FAILED_LACK_OF_LIQUIDITY

    proportion = mul_div(numerator, RATE_PRECISION, add128(pool.total_future_cash, pool.total_collateral))
    if future_cash_delta > 0 and proportion > MAX_MARKET_PROPORTION:
        return 0, ErrorCode.TRADE_FAILED_LACK_OF_LIQUIDITY
    return calculate_rate_at_proportion(pool.rate_anchor, pool.rate_scalar, proportion)


def calculate_implied_rate(exchange_rate: int, time_to_maturity: int, period_size: int) -> int:
    """Exchange rate premium over par, annualised to one period (RATE_PRECISION)."""
    if time_to_maturity <= 0:
        return 0
    return div_int256(mul_int256(sub_int256(exchange_rate, RATE_PRECISION), period_size), time_to_maturity)


def calculate_spot_implied_rate(pool: MaturityPool, now: int, period_size: int) -> int:
    """Implied rate of a zero-size trade, or 0 if the pool cannot quote."""
    rate, error = calculate_exchange_rate(pool, 0)
    if error is not None:
        return 0
    return calculate_implied_rate(rate, pool.maturity - now, period_size)


def _liquidity_fee_rate(pool: MaturityPool) -> int:
    return mul_div(pool.fee_rate_bps, RATE_PRECISION, BASIS_POINTS)


def calculate_take_collateral(
    pool: MaturityPool,
    future_cash: int,
    now: int,
    period_size: int,
    transaction_fee: int = 0,
) -> TradeResult:
    """
    Price a borrower selling `future_cash` to the pool for collateral.

    Args:
        pool: Pre-trade pool snapshot
        future_cash: Notional the borrower will owe at maturity
        now: Current time (for the implied rate)
        period_size: Group period size (for the implied rate)
        transaction_fee: Basis points of the collateral leg owed to the reserve

    Returns:
        TradeResult whose collateral is what leaves the pool; the borrower
        receives collateral - fee.
    """
    if future_cash <= 0:
        return _failed_trade(future_cash, ErrorCode.INVALID_TRADE)

    rate, error = calculate_exchange_rate(pool, future_cash)
    if error is not None:
        return _failed_trade(future_cash, error)

    rate += _liquidity_fee_rate(pool)
    if rate > UINT32_MAX:
        return _failed_trade(future_cash, ErrorCode.EXCHANGE_RATE_OVERFLOW)

    collateral = mul_div(future_cash, RATE_PRECISION, rate)
    if collateral == 0:
        return _failed_trade(future_cash, ErrorCode.INVALID_TRADE)
    if collateral >= pool.total_collateral:
        return _failed_trade(future_cash, ErrorCode.TRADE_FAILED_LACK_OF_LIQUIDITY)

    fee = mul_div(collateral, transaction_fee, BASIS_POINTS)
    new_pool = replace(
        pool,
        total_future_cash=add128(pool.total_future_cash, future_cash),
        total_collateral=sub128(pool.total_collateral, collateral),
    )
    new_pool = replace(new_pool, last_implied_rate=calculate_spot_implied_rate(new_pool, now, period_size))

    return TradeResult(
        future_cash=future_cash,
        collateral=collateral,
        fee=fee,
        exchange_rate=rate,
        implied_rate=calculate_implied_rate(rate, pool.maturity - now, period_size),
        new_pool=new_pool,
    )


def calculate_take_future_cash(
    pool: MaturityPool,
    future_cash: int,
    now: int,
    period_size: int,
    transaction_fee: int = 0,
) -> TradeResult:
    """
    Price a lender buying `future_cash` from the pool with collateral.

    Returns:
        TradeResult whose collateral is what enters the pool; the lender
        pays collateral + fee.
    """
    if future_cash <= 0:
        return _failed_trade(future_cash, ErrorCode.INVALID_TRADE)
    if pool.is_empty:
        return _failed_trade(future_cash, ErrorCode.EXCHANGE_RATE_UNDERFLOW)
    if future_cash >= pool.total_future_cash:
        return _failed_trade(future_cash, ErrorCode.TRADE_FAILED_LACK_OF_LIQUIDITY)

    rate, error = calculate_exchange_rate(pool, -future_cash)
    if error is not None:
        return _failed_trade(future_cash, error)

    rate -= _liquidity_fee_rate(pool)
    if rate < RATE_PRECISION:
        return _failed_trade(future_cash, ErrorCode.EXCHANGE_RATE_UNDERFLOW)

    collateral = mul_div_up(future_cash, RATE_PRECISION, rate)
    fee = mul_div(collateral, transaction_fee, BASIS_POINTS)
    new_pool = replace(
        pool,
        total_future_cash=sub128(pool.total_future_cash, future_cash),
        total_collateral=add128(pool.total_collateral, collateral),
    )
    new_pool = replace(new_pool, last_implied_rate=calculate_spot_implied_rate(new_pool, now, period_size))

    return TradeResult(
        future_cash=future_cash,
        collateral=collateral,
        fee=fee,
        exchange_rate=rate,
        implied_rate=calculate_implied_rate(rate, pool.maturity - now, period_size),
        new_pool=new_pool,
    )


def calculate_max_future_cash_at_implied_rate(
    pool: MaturityPool,
    max_implied_rate: int,
    now: int,
    period_size: int,
) -> int:
    """
    Largest borrow whose fee-inclusive implied rate stays at or below a limit.

    Solves the curve in closed form through calculate_proportion_for_rate
    rather than searching. Returns 0 if the pool already quotes above the
    limit or cannot quote at all.
    """
    time_to_maturity = pool.maturity - now
    if pool.is_empty or time_to_maturity <= 0:
        return 0

    max_rate = (
        RATE_PRECISION
        + mul_div(max_implied_rate, time_to_maturity, period_size)
        - _liquidity_fee_rate(pool)
    )
    target = min(
        calculate_proportion_for_rate(pool.rate_anchor, pool.rate_scalar, max_rate),
        MAX_MARKET_PROPORTION,
    )
    limit = mul_div(target, pool.total_future_cash + pool.total_collateral, RATE_PRECISION)
    return max(0, limit - pool.total_future_cash)


# ============================================================================
# PURE CALCULATION FUNCTIONS - Liquidity
# ============================================================================

def calculate_proportion(pool: MaturityPool) -> int:
    total = pool.total_future_cash + pool.total_collateral
    if total == 0:
        return 0
    return mul_div(pool.total_future_cash, RATE_PRECISION, total)


def calculate_add_liquidity(
    pool: MaturityPool,
    group: InstrumentGroup,
    collateral: int,
    future_cash: int,
    now: int,
) -> LiquidityResult:
    """
    Mint liquidity tokens for a deposit of collateral and future cash.

    An uninitialised pool takes both amounts as given, mints one token per
    unit of collateral and snapshots the group's rate factors. An existing
    pool mints at the smaller of the two deposit ratios and takes only the
    pro-rata amounts, rounded up in the pool's favour.

    Raises:
        MarketError: INVALID_TRADE for non-positive or dust amounts,
            EXCHANGE_RATE_UNDERFLOW/OVERFLOW if an initial proportion does
            not price at or above par
    """
    if collateral <= 0 or future_cash <= 0:
        raise MarketError("Liquidity amounts must be positive", ErrorCode.INVALID_TRADE)

    if pool.is_empty:
        new_pool = replace(
            pool,
            total_future_cash=add128(0, future_cash),
            total_collateral=add128(0, collateral),
            total_liquidity=add128(0, collateral),
            rate_anchor=group.rate_anchor,
            rate_scalar=group.rate_scalar,
            fee_rate_bps=group.liquidity_fee,
            settled=False,
        )
        _, error = calculate_exchange_rate(new_pool, 0)
        if error is not None:
            raise MarketError(
                f"Initial proportion {calculate_proportion(new_pool)} does not price at par or above",
                error,
            )
        tokens = collateral
        used_collateral, used_future_cash = collateral, future_cash
    else:
        tokens = min(
            mul_div(pool.total_liquidity, collateral, pool.total_collateral),
            mul_div(pool.total_liquidity, future_cash, pool.total_future_cash),
        )
        if tokens == 0:
            raise MarketError("Deposit too small to mint a token", ErrorCode.INVALID_TRADE)
        used_collateral = mul_div_up(pool.total_collateral, tokens, pool.total_liquidity)
        used_future_cash = mul_div_up(pool.total_future_cash, tokens, pool.total_liquidity)
        new_pool = replace(
            pool,
            total_future_cash=add128(pool.total_future_cash, used_future_cash),
            total_collateral=add128(pool.total_collateral, used_collateral),
            total_liquidity=add128(pool.total_liquidity, tokens),
        )

    if pool.maturity > now:
        new_pool = replace(
            new_pool,
            last_implied_rate=calculate_spot_implied_rate(new_pool, now, group.period_size),
        )
    return LiquidityResult(tokens, used_collateral, used_future_cash, new_pool)


def calculate_remove_liquidity(pool: MaturityPool, tokens: int) -> LiquidityResult:
    """
    Burn tokens for their pro-rata share of collateral and future cash.

    Shares are floored; the last holder of all tokens receives exactly the
    pool's totals, leaving an uninitialised pool.
    """
    if tokens <= 0:
        raise MarketError("Token amount must be positive", ErrorCode.INVALID_TRADE)
    if tokens > pool.total_liquidity:
        raise CollateralError(
            f"Cannot remove {tokens} tokens from a pool of {pool.total_liquidity}",
            ErrorCode.INSUFFICIENT_BALANCE,
        )

    collateral = mul_div(pool.total_collateral, tokens, pool.total_liquidity)
    future_cash = mul_div(pool.total_future_cash, tokens, pool.total_liquidity)
    new_pool = replace(
        pool,
        total_future_cash=sub128(pool.total_future_cash, future_cash),
        total_collateral=sub128(pool.total_collateral, collateral),
        total_liquidity=sub128(pool.total_liquidity, tokens),
    )
    return LiquidityResult(tokens, collateral, future_cash, new_pool)


# ============================================================================
# QUOTES
# ============================================================================

def get_rate(pool: MaturityPool, now: int) -> Tuple[int, bool]:
    """
    Spot exchange rate and whether the maturity has passed.

    A matured pool quotes par. An uninitialised pool quotes 0.
    """
    if pool.maturity <= now:
        return RATE_PRECISION, True
    rate, error = calculate_exchange_rate(pool, 0)
    return (rate if error is None else 0), False


def quote_future_cash_to_collateral(
    pool: MaturityPool,
    future_cash: int,
    timestamp: int,
    period_size: int,
    transaction_fee: int = 0,
) -> int:
    """
    Collateral a borrower would receive, net of fees, for selling future cash.

    Returns 0 when the trade is infeasible.

    Raises:
        MarketError(CANNOT_GET_PRICE_FOR_MATURITY): If timestamp is at or past maturity
    """
    if timestamp >= pool.maturity:
        raise MarketError(
            f"Cannot price maturity {pool.maturity} at {timestamp}",
            ErrorCode.CANNOT_GET_PRICE_FOR_MATURITY,
        )
    result = calculate_take_collateral(pool, future_cash, timestamp, period_size, transaction_fee)
    if not result.ok:
        return 0
    return result.collateral - result.fee


def quote_collateral_to_future_cash(
    pool: MaturityPool,
    future_cash: int,
    timestamp: int,
    period_size: int,
    transaction_fee: int = 0,
) -> int:
    """
    Collateral a lender would pay, including fees, to buy future cash.

    Returns 0 when the trade is infeasible.

    Raises:
        MarketError(CANNOT_GET_PRICE_FOR_MATURITY): If timestamp is at or past maturity
    """
    if timestamp >= pool.maturity:
        raise MarketError(
            f"Cannot price maturity {pool.maturity} at {timestamp}",
            ErrorCode.CANNOT_GET_PRICE_FOR_MATURITY,
        )
    result = calculate_take_future_cash(pool, future_cash, timestamp, period_size, transaction_fee)
    if not result.ok:
        return 0
    return result.collateral + result.fee


# ============================================================================
# CONVENIENCE FUNCTIONS - Transactions
# ============================================================================

def _check_active(group: InstrumentGroup, maturity: int, now: int) -> None:
    if not is_active_maturity(group, maturity, now):
        raise MarketError(f"Maturity {maturity} is not active", ErrorCode.MARKET_INACTIVE)


def _check_deadline(max_time: Optional[int], now: int) -> None:
    if max_time is not None and now > max_time:
        raise MarketError(
            f"Deadline {max_time} passed at {now}",
            ErrorCode.TRADE_FAILED_MAX_TIME,
        )


def _pool_state_change(old: MaturityPool, new: MaturityPool) -> UnitStateChange:
    return UnitStateChange(unit=old.symbol, old_state=to_state_dict(old), new_state=to_state_dict(new))


def _origin(account: str, pool: MaturityPool, event: str) -> TransactionOrigin:
    return TransactionOrigin(OriginType.USER_ACTION, account, pool.symbol, event)


def compute_add_liquidity(
    view: LedgerView,
    group: InstrumentGroup,
    account: str,
    maturity: int,
    collateral: int,
    future_cash: int,
    max_time: Optional[int] = None,
    min_proportion: int = 0,
    max_proportion: int = RATE_PRECISION,
) -> PendingTransaction:
    """
    Deposit collateral and future cash into a pool for liquidity tokens.

    The provider becomes the payer of the future cash it deposits and
    receives tokens entitling it to a share of both pool legs.

    Raises:
        MarketError: MARKET_INACTIVE, TRADE_FAILED_MAX_TIME,
            OUT_OF_PROPORTION_BOUNDS, or a pricing error on an initial deposit
    """
    now = view.current_time
    _check_active(group, maturity, now)
    _check_deadline(max_time, now)

    pool = load_pool(view, group, maturity)
    result = calculate_add_liquidity(pool, group, collateral, future_cash, now)

    proportion = calculate_proportion(result.new_pool)
    if not min_proportion <= proportion <= max_proportion:
        raise MarketError(
            f"Pool proportion {proportion} outside [{min_proportion}, {max_proportion}]",
            ErrorCode.OUT_OF_PROPORTION_BOUNDS,
        )

    fcash = pool.future_cash_symbol
    moves = [
        Move(result.collateral, group.currency, account, group.market_wallet, "add_liquidity"),
        Move(result.future_cash, fcash, account, group.market_wallet, "add_liquidity"),
        Move(result.tokens, pool.symbol, SYSTEM_WALLET, account, "add_liquidity"),
    ]

    if pool_exists(view, group, maturity):
        return build_transaction(
            view, moves, [_pool_state_change(pool, result.new_pool)],
            origin=_origin(account, pool, "ADD_LIQUIDITY"),
        )

    units = [liquidity_token_unit(group.group_id, maturity, to_state_dict(result.new_pool))]
    if fcash not in view.list_units():
        units.append(future_cash_unit(group.group_id, maturity, group.currency))
    return build_transaction(
        view, moves,
        origin=_origin(account, pool, "ADD_LIQUIDITY"),
        units_to_create=tuple(units),
    )


def compute_remove_liquidity(
    view: LedgerView,
    group: InstrumentGroup,
    account: str,
    maturity: int,
    tokens: int,
    max_time: Optional[int] = None,
) -> PendingTransaction:
    """
    Burn liquidity tokens for their share of collateral and future cash.

    Allowed after maturity, so providers can exit a frozen pool.

    Raises:
        MarketError: MARKET_INACTIVE if the pool never existed, TRADE_FAILED_MAX_TIME
        CollateralError(INSUFFICIENT_BALANCE): If the account holds fewer tokens
    """
    now = view.current_time
    if not pool_exists(view, group, maturity):
        raise MarketError(f"No pool at maturity {maturity}", ErrorCode.MARKET_INACTIVE)
    _check_deadline(max_time, now)

    pool = load_pool(view, group, maturity)
    held = view.get_balance(account, pool.symbol)
    if tokens > held:
        raise CollateralError(
            f"{account} holds {held} tokens, cannot remove {tokens}",
            ErrorCode.INSUFFICIENT_BALANCE,
        )
    result = calculate_remove_liquidity(pool, tokens)

    new_pool = result.new_pool
    if pool.maturity > now:
        new_pool = replace(
            new_pool,
            last_implied_rate=calculate_spot_implied_rate(new_pool, now, group.period_size),
        )

    moves = [
        Move(result.tokens, pool.symbol, account, SYSTEM_WALLET, "remove_liquidity"),
        Move(result.collateral, group.currency, group.market_wallet, account, "remove_liquidity")
        if result.collateral else None,
        Move(result.future_cash, pool.future_cash_symbol, group.market_wallet, account, "remove_liquidity")
        if result.future_cash else None,
    ]
    return build_transaction(
        view, moves, [_pool_state_change(pool, new_pool)],
        origin=_origin(account, pool, "REMOVE_LIQUIDITY"),
    )


def compute_take_collateral(
    view: LedgerView,
    group: InstrumentGroup,
    account: str,
    maturity: int,
    future_cash: int,
    max_time: Optional[int] = None,
    max_implied_rate: Optional[int] = None,
    reserve: Optional[str] = None,
) -> PendingTransaction:
    """
    Borrow: sell future cash to the pool and receive collateral now.

    The account's future-cash balance falls by `future_cash` (a new or
    larger payer obligation, or a smaller receiver holding). The transaction
    fee is charged only when a reserve account is given.

    Raises:
        MarketError: INVALID_TRADE, MARKET_INACTIVE, TRADE_FAILED_MAX_TIME,
            TRADE_FAILED_TOO_LARGE, TRADE_FAILED_SLIPPAGE, or the pricing error
    """
    now = view.current_time
    if future_cash <= 0:
        raise MarketError("Future cash amount must be positive", ErrorCode.INVALID_TRADE)
    _check_active(group, maturity, now)
    _check_deadline(max_time, now)
    if future_cash > group.max_trade_size:
        raise MarketError(
            f"Trade of {future_cash} exceeds max {group.max_trade_size}",
            ErrorCode.TRADE_FAILED_TOO_LARGE,
        )

    pool = load_pool(view, group, maturity)
    fee_bps = group.transaction_fee if reserve else 0
    result = calculate_take_collateral(pool, future_cash, now, group.period_size, fee_bps)
    if not result.ok:
        raise MarketError(f"Cannot take collateral for {future_cash}", result.error)
    if max_implied_rate is not None and result.implied_rate > max_implied_rate:
        raise MarketError(
            f"Implied rate {result.implied_rate} above limit {max_implied_rate}",
            ErrorCode.TRADE_FAILED_SLIPPAGE,
        )

    moves = [
        Move(future_cash, pool.future_cash_symbol, account, group.market_wallet, "take_collateral"),
        Move(result.collateral - result.fee, group.currency, group.market_wallet, account, "take_collateral")
        if result.collateral > result.fee else None,
        Move(result.fee, group.currency, group.market_wallet, reserve, "transaction_fee")
        if result.fee else None,
    ]
    return build_transaction(
        view, moves, [_pool_state_change(pool, result.new_pool)],
        origin=_origin(account, pool, "TAKE_COLLATERAL"),
    )


def compute_take_future_cash(
    view: LedgerView,
    group: InstrumentGroup,
    account: str,
    maturity: int,
    future_cash: int,
    max_time: Optional[int] = None,
    min_implied_rate: Optional[int] = None,
    reserve: Optional[str] = None,
) -> PendingTransaction:
    """
    Lend: pay collateral now to receive `future_cash` at maturity.

    A reserve account lending to the pool owes the fee to itself, so no
    fee leg is built.

    Raises:
        MarketError: INVALID_TRADE, MARKET_INACTIVE, TRADE_FAILED_MAX_TIME,
            TRADE_FAILED_TOO_LARGE, TRADE_FAILED_SLIPPAGE, or the pricing error
    """
    now = view.current_time
    if future_cash <= 0:
        raise MarketError("Future cash amount must be positive", ErrorCode.INVALID_TRADE)
    _check_active(group, maturity, now)
    _check_deadline(max_time, now)
    if future_cash > group.max_trade_size:
        raise MarketError(
            f"Trade of {future_cash} exceeds max {group.max_trade_size}",
            ErrorCode.TRADE_FAILED_TOO_LARGE,
        )

    pool = load_pool(view, group, maturity)
    fee_bps = group.transaction_fee if reserve else 0
    result = calculate_take_future_cash(pool, future_cash, now, group.period_size, fee_bps)
    if not result.ok:
        raise MarketError(f"Cannot take future cash {future_cash}", result.error)
    if min_implied_rate is not None and result.implied_rate < min_implied_rate:
        raise MarketError(
            f"Implied rate {result.implied_rate} below limit {min_implied_rate}",
            ErrorCode.TRADE_FAILED_SLIPPAGE,
        )

    moves = [
        Move(future_cash, pool.future_cash_symbol, group.market_wallet, account, "take_future_cash"),
        Move(result.collateral, group.currency, account, group.market_wallet, "take_future_cash"),
        Move(result.fee, group.currency, account, reserve, "transaction_fee")
        if result.fee and account != reserve else None,
    ]
    return build_transaction(
        view, moves, [_pool_state_change(pool, result.new_pool)],
        origin=_origin(account, pool, "TAKE_FUTURE_CASH"),
    )
