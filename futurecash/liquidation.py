"""
liquidation.py - Recollateralising Undercollateralised Accounts

An account whose free collateral is negative can be liquidated by any other
account. Liquidation runs in two stages:

1. Liquidity tokens in the local currency's markets are withdrawn, earliest
   maturity first. Withdrawing a token turns its haircut collateral share
   into a full free balance, so it alone can close a small deficit.

2. If a deficit remains, the liquidator buys the account's collateral
   currency with local currency at the oracle rate less the liquidation
   discount. The purchase is sized so the account's free collateral returns
   to zero:

       X    = ceil(deficit * d / (r_local * (d - h)))    local paid
       sold = X * r_local / (r_collateral * d)            collateral received

   where d is the liquidation discount and h the haircut of the collateral
   currency. X never exceeds the account's local-currency shortfall, and
   sold never exceeds its collateral balance.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import TYPE_CHECKING, Tuple

from .core import (
    LedgerView, Move, PendingTransaction, TransactionOrigin, OriginType,
    DECIMALS, ErrorCode, LedgerError, CollateralError,
    build_transaction,
)
from .escrow import get_free_balance
from .market import load_pool, compute_remove_liquidity
from .numeric import mul256, mul_div, mul_div_up
from .oracle import ExchangeRateConfig
from .portfolio import AssetType, get_assets

if TYPE_CHECKING:
    from .engine import FutureCashEngine


@dataclass(frozen=True, slots=True)
class LiquidationResult:
    account: str
    liquidator: str
    local_currency: str
    collateral_currency: str
    tokens_withdrawn: int
    local_paid: int
    collateral_sold: int
    free_collateral: int


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_collateral_purchase(
    deficit: int,
    local_shortfall: int,
    collateral_balance: int,
    local: ExchangeRateConfig,
    collateral: ExchangeRateConfig,
) -> Tuple[int, int]:
    """
    Size a liquidation purchase.

    Args:
        deficit: Negative free collateral as a positive base-currency amount
        local_shortfall: Negative local-currency net as a positive amount
        collateral_balance: Account's free balance of the collateral currency
        local: Exchange rate terms of the local currency
        collateral: Exchange rate terms of the collateral currency

    Returns:
        (local currency paid by the liquidator, collateral currency received)
    """
    if deficit <= 0 or local_shortfall <= 0 or collateral_balance <= 0:
        return 0, 0

    discount = collateral.liquidation_discount
    spread = discount - collateral.haircut
    if spread > 0:
        # +1 so the account ends at or above zero after rounding
        local_paid = mul_div_up(mul256(deficit + 1, DECIMALS), discount, mul256(local.rate, spread))
        local_paid = min(local_paid, local_shortfall)
    else:
        local_paid = local_shortfall

    sold = mul_div(mul256(local_paid, local.rate), DECIMALS, mul256(collateral.rate, discount))
    if sold > collateral_balance:
        sold = collateral_balance
        local_paid = mul_div(mul256(sold, collateral.rate), discount, mul256(local.rate, DECIMALS))
    return local_paid, sold


def calculate_tokens_to_withdraw(
    deficit_local: int,
    held: int,
    total_liquidity: int,
    total_collateral: int,
    liquidity_haircut: int,
) -> int:
    """Tokens whose released haircut covers a local-currency deficit, capped at `held`."""
    released = mul256(total_collateral, DECIMALS - liquidity_haircut)
    if deficit_local <= 0 or released <= 0:
        return 0
    return min(held, mul_div_up(mul256(deficit_local, total_liquidity), DECIMALS, released))


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

def compute_collateral_purchase(
    view: LedgerView,
    liquidator: str,
    account: str,
    local_currency: str,
    collateral_currency: str,
    local_paid: int,
    collateral_sold: int,
) -> PendingTransaction:
    return build_transaction(
        view,
        [
            Move(local_paid, local_currency, liquidator, account, "liquidate"),
            Move(collateral_sold, collateral_currency, account, liquidator, "liquidate"),
        ],
        origin=TransactionOrigin(OriginType.LIQUIDATION, liquidator, collateral_currency, "LIQUIDATE"),
    )


def liquidate(
    engine: FutureCashEngine,
    liquidator: str,
    account: str,
    local_currency: str,
    collateral_currency: str,
) -> LiquidationResult:
    """
    Restore an undercollateralised account to non-negative free collateral.

    Raises:
        CollateralError(CANNOT_LIQUIDATE_SUFFICIENT_COLLATERAL): If the
            account's free collateral is already non-negative
        LedgerError: COUNTERPARTY_CANNOT_BE_SELF, or INVALID_TRADE when the
            local and collateral currencies are the same
        InsufficientFunds: If the liquidator cannot pay the local leg
    """
    if liquidator == account:
        raise LedgerError(f"{account} cannot liquidate itself", ErrorCode.COUNTERPARTY_CANNOT_BE_SELF)
    if local_currency == collateral_currency:
        raise LedgerError(
            f"Local and collateral currency are both {local_currency}", ErrorCode.INVALID_TRADE)

    fc = engine.free_collateral_view(account)
    if fc.is_collateralized:
        raise CollateralError(
            f"{account} has free collateral {fc.aggregate}",
            ErrorCode.CANNOT_LIQUIDATE_SUFFICIENT_COLLATERAL,
        )

    ledger = engine.ledger
    local = engine.oracle.get_exchange_rate(local_currency, engine.base_currency)
    collateral = engine.oracle.get_exchange_rate(collateral_currency, engine.base_currency)
    tokens_withdrawn = local_paid = sold = 0

    with ledger.atomic():
        tokens = [
            a for a in get_assets(ledger, account)
            if a.asset_type is AssetType.LIQUIDITY_TOKEN and a.currency == local_currency
        ]
        for asset in tokens:
            if fc.is_collateralized:
                break
            group = engine.get_instrument_group(asset.group_id)
            pool = load_pool(ledger, group, asset.maturity)
            deficit_local = mul_div_up(
                mul256(1 - fc.aggregate, DECIMALS), DECIMALS, mul256(local.rate, local.haircut))
            amount = calculate_tokens_to_withdraw(
                deficit_local, asset.notional,
                pool.total_liquidity, pool.total_collateral, group.liquidity_haircut,
            )
            if amount == 0:
                continue
            ledger.execute(compute_remove_liquidity(ledger, group, account, asset.maturity, amount))
            tokens_withdrawn += amount
            fc = engine.free_collateral_view(account)

        if not fc.is_collateralized:
            local_paid, sold = calculate_collateral_purchase(
                deficit=-fc.aggregate,
                local_shortfall=max(0, -fc.net_balances.get(local_currency, 0)),
                collateral_balance=get_free_balance(ledger, account, collateral_currency),
                local=local,
                collateral=collateral,
            )
            if local_paid > 0 and sold > 0:
                ledger.execute(compute_collateral_purchase(
                    ledger, liquidator, account, local_currency, collateral_currency,
                    local_paid, sold,
                ))
            else:
                local_paid = sold = 0
            fc = engine.free_collateral_view(account)

    if engine.verbose:
        print(f"[LIQUIDATE] {liquidator} -> {account}: {tokens_withdrawn} tokens withdrawn, "
              f"paid {local_paid} {local_currency} for {sold} {collateral_currency}, "
              f"free collateral now {fc.aggregate}")

    return LiquidationResult(
        account=account,
        liquidator=liquidator,
        local_currency=local_currency,
        collateral_currency=collateral_currency,
        tokens_withdrawn=tokens_withdrawn,
        local_paid=local_paid,
        collateral_sold=sold,
        free_collateral=fc.aggregate,
    )
