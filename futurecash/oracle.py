"""
oracle.py - Exchange rate infrastructure for cross-currency collateral

Free collateral is aggregated in a single base currency. Every other
currency is converted through an ExchangeRateConfig supplied by an oracle.

Classes:
- ExchangeRateConfig: rate, haircut and discounts for one currency pair
- ExchangeRateOracle: Protocol defining the oracle interface
- StaticExchangeRateOracle: in-memory rates for tests and simulation

All rates, haircuts and discounts are DECIMALS fixed point. A rate is the
amount of quote currency bought by one unit of the base currency of the pair.
"""

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Dict, Tuple, Protocol, Union, runtime_checkable

from .core import DECIMALS
from .numeric import to_fixed


Number = Union[int, Decimal, str]


@dataclass(frozen=True, slots=True)
class ExchangeRateConfig:
    """
    Conversion terms for one currency into the base currency.

    Attributes:
        rate: Base currency per unit of the currency (DECIMALS)
        haircut: Fraction of a positive balance counted as collateral, below 1
        liquidation_discount: Price multiplier paid by a liquidator buying
            this currency, in (haircut, 1]
        settlement_discount: Price multiplier paid by a cash settler buying
            this currency, in (haircut, 1]

    Decimal or str inputs are human units and are converted to fixed point.
    Ints are taken as fixed point already.

    Example:
        ExchangeRateConfig(rate=Decimal("100"), haircut=Decimal("0.8"),
                           liquidation_discount=Decimal("0.95"),
                           settlement_discount=Decimal("0.98"))
    """
    rate: Number
    haircut: Number = DECIMALS
    liquidation_discount: Number = DECIMALS
    settlement_discount: Number = DECIMALS

    def __post_init__(self):
        for name in ('rate', 'haircut', 'liquidation_discount', 'settlement_discount'):
            object.__setattr__(self, name, to_fixed(getattr(self, name)))

        if self.rate <= 0:
            raise ValueError(f"rate must be positive, got {self.rate}")
        if not 0 < self.haircut <= DECIMALS:
            raise ValueError(f"haircut must be in (0, 1], got {self.haircut}")
        for name in ('liquidation_discount', 'settlement_discount'):
            discount = getattr(self, name)
            if discount > DECIMALS:
                raise ValueError(f"{name} must not exceed 1, got {discount}")
            if self.haircut < DECIMALS and discount <= self.haircut:
                raise ValueError(
                    f"{name} {discount} must be greater than haircut {self.haircut}"
                )


@runtime_checkable
class ExchangeRateOracle(Protocol):
    """
    Protocol for exchange rate sources.

    Implementations return the conversion terms for `currency` expressed in
    `base_currency`, and raise KeyError when no rate is configured.
    """

    def get_exchange_rate(self, currency: str, base_currency: str) -> ExchangeRateConfig:
        ...


class StaticExchangeRateOracle:
    """
    Oracle with static rates (time-independent).

    Rates stay fixed until updated. The base currency against itself always
    converts at 1 with no haircut.
    """

    def __init__(self, rates: Dict[Tuple[str, str], ExchangeRateConfig] = None):
        """
        Args:
            rates: Mapping of (currency, base_currency) to its ExchangeRateConfig
        """
        self.rates: Dict[Tuple[str, str], ExchangeRateConfig] = dict(rates or {})

    def get_exchange_rate(self, currency: str, base_currency: str) -> ExchangeRateConfig:
        if currency == base_currency:
            return ExchangeRateConfig(rate=DECIMALS)
        try:
            return self.rates[(currency, base_currency)]
        except KeyError:
            raise KeyError(f"No exchange rate for {currency}/{base_currency}") from None

    def set_exchange_rate(self, currency: str, base_currency: str, config: ExchangeRateConfig):
        """Set the full conversion terms for a pair."""
        self.rates[(currency, base_currency)] = config

    def update_rate(self, currency: str, base_currency: str, rate: Number):
        """Move the oracle price of a pair, keeping its haircut and discounts."""
        current = self.get_exchange_rate(currency, base_currency)
        self.rates[(currency, base_currency)] = replace(current, rate=to_fixed(rate))

    def __repr__(self):
        return f"StaticExchangeRateOracle({len(self.rates)} pairs)"
