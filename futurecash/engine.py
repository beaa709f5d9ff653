"""
engine.py - Future Cash Engine

Stateful facade over a Ledger, an exchange rate oracle and the instrument
group configuration. Every public surface of the market is a method here:

    Configuration: register_currency, register_account, create_instrument_group,
                   update_instrument_group, set_rate_factors, set_fee,
                   set_max_trade_size, set_reserve_account
    Market:        add_liquidity, remove_liquidity, take_collateral,
                   take_future_cash, get_market, get_active_maturities,
                   get_rate, get_market_rates, quotes
    Escrow:        deposit, withdraw, settle_cash_balance, liquidate,
                   balance queries
    Portfolio:     free_collateral_view, settle_account,
                   settle_account_batch, get_assets

Each mutating call runs inside Ledger.atomic(): it either completes, or
raises with every transaction it applied rolled back. Calls that can lower
an account's free collateral check it afterwards and raise
CollateralError(INSUFFICIENT_FREE_COLLATERAL) if it went negative.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from .core import (
    PendingTransaction, BalanceMap,
    RATE_PRECISION, ErrorCode, MarketError, CollateralError, WalletNotRegistered,
    currency as currency_unit, cash_balance_unit,
)
from .escrow import (
    compute_deposit, compute_withdraw,
    get_free_balance, get_cash_balance, total_custodied,
)
from .ledger import Ledger
from .liquidation import LiquidationResult, liquidate
from .market import (
    InstrumentGroup, MaturityPool,
    validate_rate_factors, load_pool, get_active_maturities,
    calculate_exchange_rate, calculate_max_future_cash_at_implied_rate,
    get_rate, quote_future_cash_to_collateral, quote_collateral_to_future_cash,
    compute_add_liquidity, compute_remove_liquidity,
    compute_take_collateral, compute_take_future_cash,
)
from .oracle import ExchangeRateOracle
from .portfolio import Asset, FreeCollateralResult, calculate_free_collateral, get_assets
from .settlement import (
    AccountSettlement, CashSettlementResult,
    settle_account, settle_account_batch, settle_cash_balance,
)


class FutureCashEngine:
    """
    Fixed-rate lending market over a double-entry ledger.

    Example:
        ledger = Ledger("main", initial_time=T0, verbose=False)
        engine = FutureCashEngine(ledger, oracle, base_currency="DAI")
        engine.register_currency("DAI", "Dai Stablecoin")
        group = engine.create_instrument_group("DAI", period_size=90 * 86400)
        engine.register_account("alice")
        engine.deposit("alice", "DAI", 1000 * DECIMALS)
    """

    def __init__(self, ledger: Ledger, oracle: ExchangeRateOracle, base_currency: str):
        """
        Args:
            ledger: Ledger holding every balance and pool
            oracle: Exchange rates of every currency into base_currency
            base_currency: Currency free collateral is expressed in
        """
        self.ledger = ledger
        self.oracle = oracle
        self.base_currency = base_currency
        self.groups: Dict[int, InstrumentGroup] = {}
        self.reserve_account: Optional[str] = None
        self.verbose = ledger.verbose
        self._next_group_id = 1

    # ========================================================================
    # CONFIGURATION
    # ========================================================================

    def register_currency(self, symbol: str, name: Optional[str] = None) -> None:
        """Register a currency and its cash balance unit."""
        self.ledger.register_unit(currency_unit(symbol, name or symbol))
        self.ledger.register_unit(cash_balance_unit(symbol))

    def register_account(self, account: str) -> str:
        return self.ledger.register_wallet(account)

    def create_instrument_group(self, currency: str, period_size: int, **config) -> InstrumentGroup:
        """
        Open a market for a registered currency.

        Keyword arguments are InstrumentGroup fields. The group's market
        wallet is registered with it.
        """
        if currency not in self.ledger.units:
            raise MarketError(f"Currency {currency} not registered", ErrorCode.UNIT_NOT_REGISTERED)
        group = InstrumentGroup(
            group_id=self._next_group_id,
            currency=currency,
            period_size=period_size,
            **config,
        )
        self.ledger.register_wallet(group.market_wallet)
        self.groups[group.group_id] = group
        self._next_group_id += 1
        return group

    def get_instrument_group(self, group_id: int) -> InstrumentGroup:
        try:
            return self.groups[group_id]
        except KeyError:
            raise MarketError(f"No instrument group {group_id}", ErrorCode.MARKET_INACTIVE) from None

    def update_instrument_group(
        self,
        group_id: int,
        num_periods: Optional[int] = None,
        period_size: Optional[int] = None,
    ) -> InstrumentGroup:
        """Change a group's maturity window. num_periods=0 closes every maturity."""
        group = self.get_instrument_group(group_id)
        changes = {}
        if num_periods is not None:
            changes['num_periods'] = num_periods
        if period_size is not None:
            changes['period_size'] = period_size
        return self._replace_group(group, **changes)

    def set_rate_factors(self, group_id: int, rate_anchor: int, rate_scalar: int) -> InstrumentGroup:
        """New curve factors for pools initialised from now on."""
        validate_rate_factors(rate_anchor, rate_scalar)
        group = self.get_instrument_group(group_id)
        return self._replace_group(group, rate_anchor=rate_anchor, rate_scalar=rate_scalar)

    def set_fee(self, group_id: int, liquidity_fee: int, transaction_fee: int) -> InstrumentGroup:
        """Set both fees in basis points."""
        group = self.get_instrument_group(group_id)
        return self._replace_group(group, liquidity_fee=liquidity_fee, transaction_fee=transaction_fee)

    def set_max_trade_size(self, group_id: int, amount: int) -> InstrumentGroup:
        group = self.get_instrument_group(group_id)
        return self._replace_group(group, max_trade_size=amount)

    def set_reserve_account(self, account: str) -> None:
        """Designate the account that collects transaction fees and backstops settlement."""
        if not self.ledger.is_registered(account):
            raise WalletNotRegistered(f"Wallet {account} not registered")
        self.reserve_account = account

    def _replace_group(self, group: InstrumentGroup, **changes) -> InstrumentGroup:
        updated = replace(group, **changes)
        self.groups[group.group_id] = updated
        return updated

    def advance_time(self, new_time: int) -> None:
        self.ledger.advance_time(new_time)

    # ========================================================================
    # EXECUTION
    # ========================================================================

    def free_collateral_view(self, account: str) -> FreeCollateralResult:
        return calculate_free_collateral(
            self.ledger, account, self.groups, self.oracle, self.base_currency)

    def _require_free_collateral(self, account: str) -> None:
        result = self.free_collateral_view(account)
        if not result.is_collateralized:
            raise CollateralError(
                f"{account} would have free collateral {result.aggregate}",
                ErrorCode.INSUFFICIENT_FREE_COLLATERAL,
            )

    def _apply(self, account: str, pending: PendingTransaction, check_collateral: bool = True) -> BalanceMap:
        """
        Execute a transaction for an account and return its balance changes.

        Runs atomically with the free collateral check, so a trade that
        leaves the account undercollateralised is rolled back.
        """
        before = self.ledger.get_wallet_balances(account)
        with self.ledger.atomic():
            self.ledger.execute(pending)
            if check_collateral:
                self._require_free_collateral(account)
        after = self.ledger.get_wallet_balances(account)
        changes = {}
        for symbol in sorted(set(before) | set(after)):
            delta = after.get(symbol, 0) - before.get(symbol, 0)
            if delta:
                changes[symbol] = delta
        return changes

    # ========================================================================
    # MARKET OPERATIONS
    # ========================================================================

    def add_liquidity(
        self,
        account: str,
        group_id: int,
        maturity: int,
        collateral: int,
        future_cash: int,
        max_time: Optional[int] = None,
        min_proportion: int = 0,
        max_proportion: int = RATE_PRECISION,
    ) -> BalanceMap:
        group = self.get_instrument_group(group_id)
        return self._apply(account, compute_add_liquidity(
            self.ledger, group, account, maturity, collateral, future_cash,
            max_time, min_proportion, max_proportion,
        ))

    def remove_liquidity(
        self,
        account: str,
        group_id: int,
        maturity: int,
        tokens: int,
        max_time: Optional[int] = None,
    ) -> BalanceMap:
        group = self.get_instrument_group(group_id)
        return self._apply(account, compute_remove_liquidity(
            self.ledger, group, account, maturity, tokens, max_time))

    def take_collateral(
        self,
        account: str,
        group_id: int,
        maturity: int,
        future_cash: int,
        max_time: Optional[int] = None,
        max_implied_rate: Optional[int] = None,
    ) -> BalanceMap:
        """Borrow: owe `future_cash` at maturity in exchange for collateral now."""
        group = self.get_instrument_group(group_id)
        return self._apply(account, compute_take_collateral(
            self.ledger, group, account, maturity, future_cash,
            max_time, max_implied_rate, self.reserve_account,
        ))

    def take_future_cash(
        self,
        account: str,
        group_id: int,
        maturity: int,
        future_cash: int,
        max_time: Optional[int] = None,
        min_implied_rate: Optional[int] = None,
    ) -> BalanceMap:
        """Lend: pay collateral now to receive `future_cash` at maturity."""
        group = self.get_instrument_group(group_id)
        return self._apply(account, compute_take_future_cash(
            self.ledger, group, account, maturity, future_cash,
            max_time, min_implied_rate, self.reserve_account,
        ))

    # ========================================================================
    # MARKET QUERIES
    # ========================================================================

    def get_market(self, group_id: int, maturity: int) -> MaturityPool:
        return load_pool(self.ledger, self.get_instrument_group(group_id), maturity)

    def get_active_maturities(self, group_id: int) -> List[int]:
        return get_active_maturities(self.get_instrument_group(group_id), self.ledger.current_time)

    def get_rate(self, group_id: int, maturity: int) -> Tuple[int, bool]:
        """(spot exchange rate, matured) for one maturity."""
        return get_rate(self.get_market(group_id, maturity), self.ledger.current_time)

    def get_market_rates(self, group_id: int) -> List[int]:
        """Spot exchange rate of every active maturity, 0 where a pool is empty."""
        rates = []
        for maturity in self.get_active_maturities(group_id):
            rate, error = calculate_exchange_rate(self.get_market(group_id, maturity), 0)
            rates.append(0 if error is not None else rate)
        return rates

    def _fee_bps(self, group: InstrumentGroup) -> int:
        return group.transaction_fee if self.reserve_account else 0

    def get_future_cash_to_collateral(self, group_id: int, maturity: int, future_cash: int) -> int:
        return self.get_future_cash_to_collateral_at_time(
            group_id, maturity, future_cash, self.ledger.current_time)

    def get_future_cash_to_collateral_at_time(
        self, group_id: int, maturity: int, future_cash: int, timestamp: int
    ) -> int:
        """Collateral received for selling future cash at `timestamp`, or 0 if infeasible."""
        group = self.get_instrument_group(group_id)
        return quote_future_cash_to_collateral(
            self.get_market(group_id, maturity), future_cash, timestamp,
            group.period_size, self._fee_bps(group))

    def get_collateral_to_future_cash(self, group_id: int, maturity: int, future_cash: int) -> int:
        return self.get_collateral_to_future_cash_at_time(
            group_id, maturity, future_cash, self.ledger.current_time)

    def get_collateral_to_future_cash_at_time(
        self, group_id: int, maturity: int, future_cash: int, timestamp: int
    ) -> int:
        """Collateral paid for buying future cash at `timestamp`, or 0 if infeasible."""
        group = self.get_instrument_group(group_id)
        return quote_collateral_to_future_cash(
            self.get_market(group_id, maturity), future_cash, timestamp,
            group.period_size, self._fee_bps(group))

    def get_max_future_cash_at_implied_rate(self, group_id: int, maturity: int, max_implied_rate: int) -> int:
        group = self.get_instrument_group(group_id)
        return calculate_max_future_cash_at_implied_rate(
            self.get_market(group_id, maturity), max_implied_rate,
            self.ledger.current_time, group.period_size)

    # ========================================================================
    # ESCROW
    # ========================================================================

    def deposit(self, account: str, currency: str, amount: int) -> BalanceMap:
        return self._apply(
            account, compute_deposit(self.ledger, account, currency, amount), check_collateral=False)

    def withdraw(self, account: str, currency: str, amount: int) -> BalanceMap:
        return self._apply(account, compute_withdraw(self.ledger, account, currency, amount))

    def get_free_balance(self, account: str, currency: str) -> int:
        return get_free_balance(self.ledger, account, currency)

    def get_cash_balance(self, account: str, currency: str) -> int:
        return get_cash_balance(self.ledger, account, currency)

    def total_custodied(self, currency: str) -> int:
        return total_custodied(self.ledger, currency)

    def settle_cash_balance(
        self,
        currency: str,
        deposit_currency: str,
        payer: str,
        receiver: str,
        amount: int,
    ) -> CashSettlementResult:
        return settle_cash_balance(self, currency, deposit_currency, payer, receiver, amount)

    def liquidate(
        self,
        liquidator: str,
        account: str,
        local_currency: str,
        collateral_currency: str,
    ) -> LiquidationResult:
        return liquidate(self, liquidator, account, local_currency, collateral_currency)

    # ========================================================================
    # PORTFOLIO
    # ========================================================================

    def get_assets(self, account: str) -> List[Asset]:
        return get_assets(self.ledger, account)

    def settle_account(self, account: str) -> AccountSettlement:
        return settle_account(self, account)

    def settle_account_batch(self, accounts: List[str]) -> List[AccountSettlement]:
        return settle_account_batch(self, accounts)
