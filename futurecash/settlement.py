"""
settlement.py - Maturity Settlement and Cash Settlement

Two stages turn matured obligations into delivered value:

1. Account settlement (settle_account): every matured liquidity token is
   redeemed, then every matured future-cash balance is crystallised into a
   cash balance of the same sign in the group's currency. Nothing is paid
   yet; a debtor simply ends up with a negative cash balance.

2. Cash settlement (settle_cash_balance): a receiver with positive cash
   collects from a payer with negative cash. The payer funds it from, in
   order:
       1. free balance in the settlement currency
       2. cash raised from its unmatured portfolio in that currency
       3. another deposit currency at the oracle rate with the settlement
          discount (only while the payer is collateralised)
       4. the reserve account (only once the payer has no free balance left)
   Whatever is left stays as the payer's negative cash balance. That is a
   partial settlement, not a failure.

Crystallising mints cash against the market wallet, which takes the matured
future cash in exchange, so both units keep summing to zero across wallets.
Once every holder of a maturity is settled the market wallet is flat again.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Dict, List, Mapping, Optional, Tuple

from .core import (
    LedgerView, PendingTransaction, TransactionOrigin, OriginType,
    DECIMALS, UNIT_TYPE_CURRENCY,
    ErrorCode, LedgerError, MarketError, SettlementError,
    build_transaction, signed_move, cash_balance_symbol, cash_balance_unit,
    future_cash_symbol,
)
from .escrow import compute_cash_transfer, get_cash_balance, get_free_balance
from .market import (
    InstrumentGroup, load_pool, pool_exists, is_active_maturity,
    compute_remove_liquidity, compute_take_collateral,
    quote_future_cash_to_collateral, _pool_state_change,
)
from .numeric import mul256, mul_div, mul_div_up
from .portfolio import AssetType, get_assets

if TYPE_CHECKING:
    from .engine import FutureCashEngine


# ============================================================================
# RESULTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class AccountSettlement:
    """
    Outcome of settling one account's matured assets.

    Attributes:
        account: Settled wallet
        tokens_redeemed: Liquidity tokens burned across all matured pools
        cash_changes: Cash balance change per currency
        error: Set when the account failed inside a batch; nothing was applied
    """
    account: str
    tokens_redeemed: int = 0
    cash_changes: Mapping[str, int] = field(default_factory=dict)
    error: Optional[ErrorCode] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class CashSettlementResult:
    """
    Amounts of a cash settlement by funding source, all in the settlement
    currency except deposit_currency_paid.
    """
    currency: str
    payer: str
    receiver: str
    requested: int
    from_free_balance: int = 0
    from_portfolio: int = 0
    from_deposit_currency: int = 0
    deposit_currency_paid: int = 0
    from_reserve: int = 0
    portfolio_errors: Tuple[ErrorCode, ...] = ()

    @property
    def settled(self) -> int:
        return (self.from_free_balance + self.from_portfolio
                + self.from_deposit_currency + self.from_reserve)

    @property
    def shortfall(self) -> int:
        return self.requested - self.settled

    @property
    def is_partial(self) -> bool:
        return self.shortfall > 0


# ============================================================================
# ACCOUNT SETTLEMENT
# ============================================================================

def compute_settle_matured(
    view: LedgerView,
    group: InstrumentGroup,
    account: str,
    maturity: int,
) -> PendingTransaction:
    """
    Convert an account's matured future cash into a cash balance at par.

    The first settlement to touch a pool also marks it settled.
    """
    if maturity > view.current_time:
        raise MarketError(f"Maturity {maturity} has not passed", ErrorCode.MARKET_INACTIVE)

    symbol = future_cash_symbol(group.group_id, maturity)
    balance = view.get_balance(account, symbol)
    cash = cash_balance_symbol(group.currency)
    moves = [
        signed_move(-balance, symbol, account, group.market_wallet, "settle"),
        signed_move(balance, cash, account, group.market_wallet, "settle"),
    ]

    state_changes = []
    if pool_exists(view, group, maturity):
        pool = load_pool(view, group, maturity)
        if not pool.settled:
            state_changes.append(_pool_state_change(pool, replace(pool, settled=True)))

    units = () if cash in view.list_units() else (cash_balance_unit(group.currency),)
    return build_transaction(
        view, moves, state_changes,
        origin=TransactionOrigin(OriginType.SETTLEMENT, account, symbol, "SETTLE_MATURED"),
        units_to_create=units,
    )


def settle_account(engine: FutureCashEngine, account: str) -> AccountSettlement:
    """
    Settle every matured asset of an account.

    Liquidity tokens are redeemed first so their future-cash share is
    crystallised with the rest of the maturity.
    """
    ledger = engine.ledger
    now = ledger.current_time
    tokens_redeemed = 0
    cash_changes: Dict[str, int] = {}

    with ledger.atomic():
        assets = get_assets(ledger, account)
        matured = sorted({(a.group_id, a.maturity) for a in assets if a.maturity <= now},
                         key=lambda k: (k[1], k[0]))

        for asset in assets:
            if asset.maturity <= now and asset.asset_type is AssetType.LIQUIDITY_TOKEN:
                group = engine.get_instrument_group(asset.group_id)
                ledger.execute(compute_remove_liquidity(
                    ledger, group, account, asset.maturity, asset.notional))
                tokens_redeemed += asset.notional

        for group_id, maturity in matured:
            group = engine.get_instrument_group(group_id)
            before = _cash_or_zero(ledger, account, group.currency)
            ledger.execute(compute_settle_matured(ledger, group, account, maturity))
            delta = _cash_or_zero(ledger, account, group.currency) - before
            if delta:
                cash_changes[group.currency] = cash_changes.get(group.currency, 0) + delta

    return AccountSettlement(account, tokens_redeemed, cash_changes)


def settle_account_batch(engine: FutureCashEngine, accounts: List[str]) -> List[AccountSettlement]:
    """
    Settle accounts one after another.

    A failing account is rolled back on its own and reported with its error
    code; the rest of the batch still settles.
    """
    results = []
    for account in accounts:
        try:
            results.append(settle_account(engine, account))
        except LedgerError as e:
            if engine.verbose:
                print(f"[SETTLE] {account} failed: {e!r}")
            results.append(AccountSettlement(account, error=e.code))
    return results


def _cash_or_zero(view: LedgerView, account: str, currency: str) -> int:
    if cash_balance_symbol(currency) not in view.list_units():
        return 0
    return get_cash_balance(view, account, currency)


# ============================================================================
# RAISING CASH FROM A PORTFOLIO
# ============================================================================

def raise_cash_from_portfolio(
    engine: FutureCashEngine,
    account: str,
    currency: str,
    amount: int,
) -> Tuple[int, List[ErrorCode]]:
    """
    Free up to `amount` of `currency` from an account's unmatured positions.

    Liquidity tokens in active markets are withdrawn first, sized by their
    collateral share. Receiver holdings are then sold into their pools. A
    sale the market rejects is skipped and reported, not raised.

    Returns:
        (increase in the account's free balance, error codes of failed sales)
    """
    ledger = engine.ledger
    now = ledger.current_time
    start = get_free_balance(ledger, account, currency)
    errors: List[ErrorCode] = []

    def remaining() -> int:
        return amount - (get_free_balance(ledger, account, currency) - start)

    assets = [
        a for a in get_assets(ledger, account)
        if a.currency == currency
        and is_active_maturity(engine.get_instrument_group(a.group_id), a.maturity, now)
    ]

    for asset in assets:
        if asset.asset_type is not AssetType.LIQUIDITY_TOKEN or remaining() <= 0:
            continue
        group = engine.get_instrument_group(asset.group_id)
        pool = load_pool(ledger, group, asset.maturity)
        tokens = min(asset.notional, mul_div_up(remaining(), pool.total_liquidity, pool.total_collateral))
        ledger.execute(compute_remove_liquidity(ledger, group, account, asset.maturity, tokens))

    # Withdrawing tokens changes future-cash balances, so read them again
    for asset in get_assets(ledger, account):
        if asset.asset_type is not AssetType.CASH_RECEIVER or asset.currency != currency:
            continue
        need = remaining()
        if need <= 0:
            break
        group = engine.get_instrument_group(asset.group_id)
        if not is_active_maturity(group, asset.maturity, now):
            continue
        fee_bps = group.transaction_fee if engine.reserve_account else 0
        pool = load_pool(ledger, group, asset.maturity)
        quote = quote_future_cash_to_collateral(pool, asset.notional, now, group.period_size, fee_bps)
        sell = asset.notional if quote <= need else min(
            asset.notional, mul_div_up(need, asset.notional, quote))
        try:
            pending = compute_take_collateral(
                ledger, group, account, asset.maturity, sell, reserve=engine.reserve_account)
        except MarketError as e:
            if engine.verbose:
                print(f"[SETTLE] Could not sell {sell} {pool.future_cash_symbol}: {e!r}")
            errors.append(ErrorCode.RAISE_CASH_FROM_PORTFOLIO_ERROR)
            continue
        ledger.execute(pending)

    return get_free_balance(ledger, account, currency) - start, errors


# ============================================================================
# CASH SETTLEMENT
# ============================================================================

def _has_no_free_balance(view: LedgerView, account: str) -> bool:
    return all(
        view.get_balance(account, symbol) == 0
        for symbol in view.list_units()
        if view.get_unit(symbol).unit_type == UNIT_TYPE_CURRENCY
    )


def settle_cash_balance(
    engine: FutureCashEngine,
    currency: str,
    deposit_currency: str,
    payer: str,
    receiver: str,
    amount: int,
) -> CashSettlementResult:
    """
    Settle `amount` of the payer's negative cash balance to the receiver.

    Both accounts' matured assets are settled first so their cash balances
    are current. Each funding step moves cash balance from the receiver to
    the payer together with the value delivered, so the cash unit remains
    zero-sum after every step.

    Raises:
        SettlementError: COUNTERPARTY_CANNOT_BE_SELF, or INCORRECT_CASH_BALANCE
            if amount is negative or exceeds the payer's debt or the
            receiver's credit
    """
    if payer == receiver:
        raise SettlementError(
            f"{payer} cannot settle with itself", ErrorCode.COUNTERPARTY_CANNOT_BE_SELF)
    if amount < 0:
        raise SettlementError(f"Settlement amount cannot be negative: {amount}")
    if amount == 0:
        return CashSettlementResult(currency, payer, receiver, 0)

    ledger = engine.ledger
    with ledger.atomic():
        settle_account(engine, payer)
        settle_account(engine, receiver)

        debt = -_cash_or_zero(ledger, payer, currency)
        credit = _cash_or_zero(ledger, receiver, currency)
        if amount > debt or amount > credit:
            raise SettlementError(
                f"Cannot settle {amount} {currency}: payer owes {debt}, receiver is owed {credit}")

        remaining = amount

        def transfer(cash_amount, funding_wallet, funding_currency=None, funding_amount=None):
            ledger.execute(compute_cash_transfer(
                ledger, currency, payer, receiver, cash_amount,
                funding_wallet, funding_currency, funding_amount))

        from_free = min(remaining, get_free_balance(ledger, payer, currency))
        if from_free > 0:
            transfer(from_free, payer)
            remaining -= from_free

        from_portfolio = 0
        errors: List[ErrorCode] = []
        if remaining > 0:
            _, errors = raise_cash_from_portfolio(engine, payer, currency, remaining)
            from_portfolio = min(remaining, get_free_balance(ledger, payer, currency))
            if from_portfolio > 0:
                transfer(from_portfolio, payer)
                remaining -= from_portfolio

        from_deposit = deposit_paid = 0
        if (remaining > 0 and deposit_currency != currency
                and engine.free_collateral_view(payer).aggregate >= 0):
            local = engine.oracle.get_exchange_rate(currency, engine.base_currency)
            deposit = engine.oracle.get_exchange_rate(deposit_currency, engine.base_currency)
            price = mul256(deposit.rate, deposit.settlement_discount)
            deposit_paid = mul_div_up(mul256(remaining, local.rate), DECIMALS, price)
            available = get_free_balance(ledger, payer, deposit_currency)
            if deposit_paid > available:
                deposit_paid = available
                from_deposit = mul_div(deposit_paid, price, mul256(local.rate, DECIMALS))
            else:
                from_deposit = remaining
            if from_deposit > 0:
                transfer(from_deposit, payer, deposit_currency, deposit_paid)
                remaining -= from_deposit
            else:
                deposit_paid = 0

        from_reserve = 0
        reserve = engine.reserve_account
        if remaining > 0 and reserve and _has_no_free_balance(ledger, payer):
            if reserve == receiver:
                # the reserve writes off its own credit
                from_reserve = remaining
            else:
                from_reserve = min(remaining, get_free_balance(ledger, reserve, currency))
            if from_reserve > 0:
                transfer(from_reserve, reserve)
                remaining -= from_reserve

    result = CashSettlementResult(
        currency=currency,
        payer=payer,
        receiver=receiver,
        requested=amount,
        from_free_balance=from_free,
        from_portfolio=from_portfolio,
        from_deposit_currency=from_deposit,
        deposit_currency_paid=deposit_paid,
        from_reserve=from_reserve,
        portfolio_errors=tuple(errors),
    )
    if result.is_partial and engine.verbose:
        print(f"[SETTLE] Partial settlement {payer}->{receiver}: "
              f"{result.settled}/{amount} {currency}, shortfall {result.shortfall}")
    return result
