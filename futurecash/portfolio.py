"""
portfolio.py - Portfolio View and Free Collateral

An account's portfolio is derived from its ledger balances: liquidity
tokens, and one signed future-cash balance per (group, maturity) reported as
a CASH_PAYER (negative) or CASH_RECEIVER (positive) obligation.

Free collateral values the whole portfolio in the base currency:

    per currency:
        net = free_balance + cash_balance
            + liquidity_haircut * collateral share of each liquidity token
            + value of each (group, maturity) future-cash ladder
    ladder value:
        net future cash < 0   -> full face (debts are never discounted)
        matured               -> face
        otherwise             -> what the pool would pay for it now
    aggregate = sum over currencies of
        net * rate * haircut   if net >= 0
        net * rate             if net <  0

An account may borrow, withdraw or change liquidity only while the
aggregate stays non-negative.
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Tuple

from .core import (
    LedgerView, DECIMALS,
    UNIT_TYPE_CURRENCY, UNIT_TYPE_CASH_BALANCE,
    UNIT_TYPE_FUTURE_CASH, UNIT_TYPE_LIQUIDITY_TOKEN,
)
from .numeric import mul256, mul_div, mul_fixed, mul_div_up, neg_int256
from .market import InstrumentGroup, load_pool, quote_future_cash_to_collateral
from .oracle import ExchangeRateOracle


class AssetType(Enum):
    LIQUIDITY_TOKEN = "liquidity_token"
    CASH_PAYER = "cash_payer"
    CASH_RECEIVER = "cash_receiver"


@dataclass(frozen=True, slots=True)
class Asset:
    """One portfolio record. `notional` is always positive."""
    group_id: int
    maturity: int
    asset_type: AssetType
    notional: int
    currency: str


@dataclass(frozen=True, slots=True)
class FreeCollateralResult:
    """
    Result of a free collateral calculation.

    Attributes:
        aggregate: Free collateral in the base currency (negative = undercollateralised)
        net_balances: Net value per currency before conversion, zero entries omitted
    """
    aggregate: int
    net_balances: Mapping[str, int]

    @property
    def is_collateralized(self) -> bool:
        return self.aggregate >= 0


_ASSET_ORDER = {
    AssetType.LIQUIDITY_TOKEN: 0,
    AssetType.CASH_PAYER: 1,
    AssetType.CASH_RECEIVER: 2,
}


def get_assets(view: LedgerView, account: str) -> List[Asset]:
    """
    Portfolio records of an account, ordered by maturity then group.

    Settled obligations disappear from the list because their future-cash
    balance has been converted to a cash balance.
    """
    assets = []
    for symbol in view.list_units():
        unit = view.get_unit(symbol)
        if unit.unit_type not in (UNIT_TYPE_FUTURE_CASH, UNIT_TYPE_LIQUIDITY_TOKEN):
            continue
        balance = view.get_balance(account, symbol)
        if balance == 0:
            continue
        state = unit.state
        if unit.unit_type == UNIT_TYPE_LIQUIDITY_TOKEN:
            asset_type = AssetType.LIQUIDITY_TOKEN
        elif balance < 0:
            asset_type = AssetType.CASH_PAYER
        else:
            asset_type = AssetType.CASH_RECEIVER
        assets.append(Asset(
            group_id=state['group_id'],
            maturity=state['maturity'],
            asset_type=asset_type,
            notional=abs(balance),
            currency=state['currency'],
        ))
    assets.sort(key=lambda a: (a.maturity, a.group_id, _ASSET_ORDER[a.asset_type]))
    return assets


def value_future_cash(
    view: LedgerView,
    group: InstrumentGroup,
    maturity: int,
    net_future_cash: int,
) -> int:
    """
    Present value of a net future-cash position in the group's currency.

    Debts count at face. Claims count at face once matured, otherwise at
    the pool's quote for selling them, which is 0 if the pool cannot absorb
    the sale.
    """
    now = view.current_time
    if net_future_cash <= 0 or maturity <= now:
        return net_future_cash
    pool = load_pool(view, group, maturity)
    return quote_future_cash_to_collateral(pool, net_future_cash, now, group.period_size)


def convert_to_base(
    oracle: ExchangeRateOracle,
    currency: str,
    base_currency: str,
    amount: int,
) -> int:
    """Convert a net currency value to the base currency, haircutting only positive values."""
    if amount == 0:
        return 0
    config = oracle.get_exchange_rate(currency, base_currency)
    if amount > 0:
        return mul_div(mul256(amount, config.rate), config.haircut, DECIMALS * DECIMALS)
    # debts round away from zero
    return neg_int256(mul_div_up(neg_int256(amount), config.rate, DECIMALS))


def calculate_free_collateral(
    view: LedgerView,
    account: str,
    groups: Mapping[int, InstrumentGroup],
    oracle: ExchangeRateOracle,
    base_currency: str,
) -> FreeCollateralResult:
    """
    Compute an account's free collateral.

    Args:
        view: Read-only ledger access
        account: Wallet to value
        groups: Instrument groups by id, for liquidity haircuts and pricing
        oracle: Exchange rates into the base currency
        base_currency: Currency the aggregate is expressed in

    Returns:
        FreeCollateralResult with the aggregate and the per-currency nets
    """
    net: Dict[str, int] = defaultdict(int)
    ladders: Dict[Tuple[int, int], int] = defaultdict(int)

    for symbol in view.list_units():
        unit = view.get_unit(symbol)
        if unit.unit_type == UNIT_TYPE_CURRENCY:
            net[symbol] += view.get_balance(account, symbol)
        elif unit.unit_type == UNIT_TYPE_CASH_BALANCE:
            net[unit.state['currency']] += view.get_balance(account, symbol)

    for asset in get_assets(view, account):
        group = groups[asset.group_id]
        key = (asset.group_id, asset.maturity)
        if asset.asset_type is AssetType.LIQUIDITY_TOKEN:
            pool = load_pool(view, group, asset.maturity)
            collateral_share = mul_div(pool.total_collateral, asset.notional, pool.total_liquidity)
            ladders[key] += mul_div(pool.total_future_cash, asset.notional, pool.total_liquidity)
            net[group.currency] += mul_fixed(collateral_share, group.liquidity_haircut)
        elif asset.asset_type is AssetType.CASH_RECEIVER:
            ladders[key] += asset.notional
        else:
            ladders[key] -= asset.notional

    for (group_id, maturity), amount in sorted(ladders.items()):
        group = groups[group_id]
        net[group.currency] += value_future_cash(view, group, maturity, amount)

    net_balances = {c: v for c, v in sorted(net.items()) if v != 0}
    aggregate = sum(
        convert_to_base(oracle, c, base_currency, v) for c, v in net_balances.items()
    )
    return FreeCollateralResult(aggregate=aggregate, net_balances=net_balances)
