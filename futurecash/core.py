"""
Core types and pure functions for the future cash market.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only ledger access
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Error codes and exceptions: ErrorCode and the LedgerError hierarchy
4. Type aliases: Positions, BalanceMap, UnitState
5. Unit factories: currencies, cash balances, future cash and liquidity tokens

All quantities are integers in fixed point. Token amounts carry 18 decimals
(DECIMALS), rates and proportions carry 9 (RATE_PRECISION). Nothing here
mutates ledger state.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import (
    Dict, List, Set, Optional, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for custody. Deposits come from it and withdrawals return
# to it, so its negative balance is the total held in custody.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

# Token amounts: base units per whole token.
DECIMALS = 10**18

# Exchange rates, proportions and implied rates.
RATE_PRECISION = 10**9

# Fees are quoted in basis points.
BASIS_POINTS = 10_000

UINT32_MAX = 2**32 - 1
UINT128_MAX = 2**128 - 1
UINT256_MAX = 2**256 - 1
INT256_MAX = 2**255 - 1
INT256_MIN = -(2**255)

# Unit type constants (strings, not enum).
UNIT_TYPE_CURRENCY = "CURRENCY"
UNIT_TYPE_CASH_BALANCE = "CASH_BALANCE"
UNIT_TYPE_FUTURE_CASH = "FUTURE_CASH"
UNIT_TYPE_LIQUIDITY_TOKEN = "LIQUIDITY_TOKEN"


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, int]

# Mapping from unit symbol to quantity held in a single wallet.
BalanceMap = Dict[str, int]

# Internal state for a unit (pool totals, maturity, currency, etc.).
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Pricing, free collateral and the compute_* functions take a LedgerView
    and declare by that signature that they never mutate state. The Ledger
    class implements this protocol but also provides mutation methods; for
    testing, FakeView provides a truly immutable implementation.
    """

    @property
    def current_time(self) -> int:
        """Return the current logical time of the ledger in seconds."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> int:
        """
        Return the balance of a specific unit in a wallet.

        Returns 0 if the wallet holds nothing of the unit.
        """
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's internal state."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit across all wallets."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...

    def list_units(self) -> List[str]:
        """Return all registered unit symbols."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...


# ============================================================================
# ERROR CODES
# ============================================================================

class ErrorCode(IntEnum):
    """
    Stable numeric codes carried by every LedgerError.

    Callers branch on the code, never on the message. Numbering is fixed:
    1-23 are market, collateral and settlement conditions, 100 and above are
    arithmetic conditions raised by the numeric library.
    """
    EXCHANGE_RATE_UNDERFLOW = 1
    EXCHANGE_RATE_OVERFLOW = 2
    MARKET_INACTIVE = 3
    OVER_MAX_COLLATERAL = 4
    INSUFFICIENT_FREE_COLLATERAL = 5
    INVALID_TRADE = 7
    INSUFFICIENT_BALANCE = 8
    COUNTERPARTY_CANNOT_BE_SELF = 11
    CANNOT_LIQUIDATE_SUFFICIENT_COLLATERAL = 12
    RAISE_CASH_FROM_PORTFOLIO_ERROR = 13
    INVALID_RATE_FACTORS = 14
    TRADE_FAILED_LACK_OF_LIQUIDITY = 15
    TRADE_FAILED_TOO_LARGE = 16
    TRADE_FAILED_SLIPPAGE = 17
    TRADE_FAILED_MAX_TIME = 18
    OUT_OF_PROPORTION_BOUNDS = 19
    INCORRECT_CASH_BALANCE = 20
    CANNOT_GET_PRICE_FOR_MATURITY = 21
    UNIT_NOT_REGISTERED = 22
    WALLET_NOT_REGISTERED = 23

    INT256_ADDITION_OVERFLOW = 100
    INT256_MULTIPLICATION_OVERFLOW = 101
    INT256_DIVIDE_BY_ZERO = 102
    INT256_NEGATE_MIN_INT = 103
    UINT128_ADDITION_OVERFLOW = 104
    UINT128_SUBTRACTION_UNDERFLOW = 105
    UINT128_MULTIPLICATION_OVERFLOW = 106
    UINT128_DIVIDE_BY_ZERO = 107
    UINT256_ADDITION_OVERFLOW = 108
    UINT256_SUBTRACTION_UNDERFLOW = 109
    UINT256_MULTIPLICATION_OVERFLOW = 110
    UINT256_DIVIDE_BY_ZERO = 111
    UINT256_MODULO_BY_ZERO = 112
    FIXED_POINT_INT_OVERFLOW = 113
    FIXED_POINT_UINT_OVERFLOW = 114
    FIXED_POINT_MULTIPLICATION_OVERFLOW = 115
    NEGATIVE_LOG = 116


# ============================================================================
# ENUMS
# ============================================================================

class OriginType(Enum):
    """
    Classification of where a transaction originated.

    Used for audit trails and reconciliation.
    """
    USER_ACTION = "user_action"           # Deposit, withdraw, trade, liquidity
    MARKET = "market"                     # Pool bookkeeping
    SETTLEMENT = "settlement"             # Maturity settlement and cash settlement
    LIQUIDATION = "liquidation"           # Forced recollateralisation
    SYSTEM = "system"                     # Setup and administration


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """
    Base exception for all market, escrow and settlement errors.

    Every instance carries an ErrorCode in `code`. Subclasses set a default
    code that a raise site can override.
    """
    default_code: ErrorCode = ErrorCode.INVALID_TRADE

    def __init__(self, message: Optional[str] = None, code: Optional[ErrorCode] = None):
        self.code = code if code is not None else self.default_code
        super().__init__(message or self.code.name)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.code.name}={int(self.code)}: {self})"


class NumericError(LedgerError):
    """Raised by checked arithmetic on overflow, underflow or division by zero."""
    default_code = ErrorCode.UINT256_ADDITION_OVERFLOW


class MarketError(LedgerError):
    """Raised when a pool cannot price or execute a trade or liquidity change."""
    default_code = ErrorCode.MARKET_INACTIVE


class CollateralError(LedgerError):
    """Raised when an account lacks the collateral an operation needs."""
    default_code = ErrorCode.INSUFFICIENT_FREE_COLLATERAL


class InsufficientFunds(CollateralError):
    """Raised when a move would cause a wallet balance to fall below the unit's minimum."""
    default_code = ErrorCode.INSUFFICIENT_BALANCE


class BalanceConstraintViolation(CollateralError):
    """Raised when a move would cause a wallet balance to exceed the unit's maximum."""
    default_code = ErrorCode.OVER_MAX_COLLATERAL


class SettlementError(LedgerError):
    """Raised when a cash settlement request is malformed."""
    default_code = ErrorCode.INCORRECT_CASH_BALANCE


class UnitNotRegistered(LedgerError):
    """Raised when attempting to operate on a unit that has not been registered with the ledger."""
    default_code = ErrorCode.UNIT_NOT_REGISTERED


class WalletNotRegistered(LedgerError):
    """Raised when attempting to operate on a wallet that has not been registered with the ledger."""
    default_code = ErrorCode.WALLET_NOT_REGISTERED


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Identifier of the specific source (account, engine, etc.)
        unit_symbol: Symbol of the unit that triggered this (if applicable)
        event_type: Specific event within the source (e.g., "TAKE_COLLATERAL")
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Record of a unit state change for transaction logging and rollback.

    Stores complete before/after state snapshots, so a transaction can be
    unwound by restoring old_state.

    Attributes:
        unit: Symbol of the unit whose state changed
        old_state: Complete state before the change (dict or None)
        new_state: Complete state after the change (dict)
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Return {field: (old_value, new_value)} for the fields that differ."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            old_val = old.get(key)
            new_val = new.get(key)
            if old_val != new_val:
                changes[key] = (old_val, new_val)
        return changes


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Attributes:
        quantity: The amount to transfer in base units (a positive int).
        unit_symbol: The symbol of the unit being transferred (e.g., "DAI").
        source: The wallet ID from which value is debited.
        dest: The wallet ID to which value is credited.
        contract_id: Identifier of the operation generating this move.
    """
    quantity: int
    unit_symbol: str
    source: str
    dest: str
    contract_id: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"Move quantity must be int, got {type(self.quantity)}")
        if self.quantity <= 0:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


def signed_move(
    quantity: int, unit_symbol: str, wallet: str, counterparty: str, contract_id: str
) -> Optional[Move]:
    """
    Move `quantity` of a signed unit into `wallet` from `counterparty`.

    A negative quantity moves the other way. Returns None for zero so callers
    can filter with a comprehension.
    """
    if quantity > 0:
        return Move(quantity, unit_symbol, counterparty, wallet, contract_id)
    if quantity < 0:
        return Move(-quantity, unit_symbol, wallet, counterparty, contract_id)
    return None


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction description before execution - represents INTENT.

    Created by the compute_* functions and submitted to the ledger for
    execution. Repeating an identical trade is legitimate in a market, so
    there is no content-based deduplication.

    Attributes:
        moves: Tuple of value transfers between wallets
        state_changes: Tuple of unit state changes (with old_state and new_state)
        origin: Who/what created this transaction and why
        timestamp: When this pending transaction was created
        units_to_create: Tuple of Unit objects to register before executing moves
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: int
    units_to_create: Tuple['Unit', ...] = ()

    def is_empty(self) -> bool:
        """Return True if this pending transaction has no moves, no state deltas, and no units to create."""
        return not self.moves and not self.state_changes and not self.units_to_create

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Optional[Move]],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves and state deltas.

    This is the standard way to create transactions. None entries in `moves`
    (zero-quantity signed moves) are dropped.

    Args:
        view: Read-only ledger view (provides current_time)
        moves: List of moves to include in the transaction
        state_changes: Optional list of UnitStateChange objects
        origin: Transaction origin (defaults to a USER_ACTION origin)
        units_to_create: Optional tuple of Unit objects to register before executing moves

    Returns:
        A PendingTransaction ready for execution
    """
    import copy

    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.USER_ACTION,
            source_id="user",
        )

    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )

    return PendingTransaction(
        moves=tuple(m for m in moves if m is not None),
        state_changes=copied_changes,
        origin=origin,
        timestamp=view.current_time,
        units_to_create=units_to_create or (),
    )


def empty_pending_transaction(view: LedgerView) -> PendingTransaction:
    """Create an empty PendingTransaction (no moves, no state changes)."""
    return PendingTransaction(
        moves=(),
        state_changes=(),
        origin=TransactionOrigin(OriginType.SYSTEM, "noop"),
        timestamp=view.current_time,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Created by the ledger when executing a PendingTransaction.

    Attributes:
        moves: Tuple of value transfers between wallets
        state_changes: Tuple of unit state changes (with old_state and new_state)
        origin: Who/what created this transaction and why
        timestamp: When the PendingTransaction was created
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: When this was executed and logged
        sequence_number: Monotonic sequence within the ledger (for ordering)
        contract_ids: Set of contract IDs from moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: int
    exec_id: str
    ledger_name: str
    execution_time: int
    sequence_number: int
    units_to_create: Tuple['Unit', ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves and not self.state_changes and not self.units_to_create:
            raise ValueError("Transaction must have moves, state_changes, or units_to_create")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        w = 100  # Inner content width
        bar = "─" * w

        def pad(text: str) -> str:
            """Pad or truncate text to exactly w characters."""
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   timestamp      : ' + str(self.timestamp))}│",
            f"│{pad('   ledger_name    : ' + self.ledger_name)}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"│{pad('   origin         : ' + str(self.origin))}│",
        ]
        if self.units_to_create:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Units Created (' + str(len(self.units_to_create)) + '):')}│")
            for unit in self.units_to_create:
                lines.append(f"│{pad('   ' + unit.symbol + ' (' + unit.name + ')')}│")
        lines.append(f"├{bar}┤")
        lines.append(f"│{pad(' Moves (' + str(len(self.moves)) + '):')}│")
        for i, move in enumerate(self.moves):
            move_str = f"   [{i}] {move.quantity} {move.unit_symbol}: {move.source} → {move.dest}"
            lines.append(f"│{pad(move_str)}│")
        if self.state_changes:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' State Changes (' + str(len(self.state_changes)) + '):')}│")
            for sc in self.state_changes:
                lines.append(f"│{pad('   [' + sc.unit + ']')}│")
                for field_name, (old_val, new_val) in sc.changed_fields().items():
                    lines.append(f"│{pad(f'      {field_name}: {old_val!r} → {new_val!r}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a state dict to a tuple of (key, value) pairs sorted by key."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a unit (asset type) in the ledger.

    Attributes:
        symbol: Short identifier for the unit (e.g., "DAI", "FCASH.1.7862400").
        name: Human-readable name for the unit.
        unit_type: One of the UNIT_TYPE_* constants.
        min_balance: Minimum allowed balance in any wallet (negative values allow debts).
        max_balance: Maximum allowed balance in any wallet.
        _frozen_state: Internal frozen state representation (tuple of key-value pairs).
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: int = 0
    max_balance: int = UINT128_MAX
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """Return the unit's state as a new dict."""
        return _thaw_state(self._frozen_state)


# ============================================================================
# SYMBOLS
# ============================================================================

def cash_balance_symbol(currency: str) -> str:
    """Symbol of the signed cash-balance unit for a currency."""
    return f"{currency}.CASH"


def future_cash_symbol(group_id: int, maturity: int) -> str:
    """Symbol of the signed future-cash unit for one maturity of an instrument group."""
    return f"FCASH.{group_id}.{maturity}"


def liquidity_token_symbol(group_id: int, maturity: int) -> str:
    """Symbol of the liquidity token (and pool state) for one maturity."""
    return f"LIQ.{group_id}.{maturity}"


def market_wallet(group_id: int) -> str:
    """Wallet that holds the collateral and future cash of a group's pools."""
    return f"market.{group_id}"


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def currency(symbol: str, name: str) -> Unit:
    """
    Create a currency unit for free balances.

    Free balances are unsigned: no wallet other than SYSTEM_WALLET may go
    below zero.
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_CURRENCY,
        min_balance=0,
        max_balance=UINT128_MAX,
        _frozen_state=_freeze_state({'currency': symbol}),
    )


def cash_balance_unit(currency_symbol: str) -> Unit:
    """Create the signed cash-balance unit for a currency."""
    return Unit(
        symbol=cash_balance_symbol(currency_symbol),
        name=f"{currency_symbol} cash balance",
        unit_type=UNIT_TYPE_CASH_BALANCE,
        min_balance=INT256_MIN,
        max_balance=INT256_MAX,
        _frozen_state=_freeze_state({'currency': currency_symbol}),
    )


def future_cash_unit(group_id: int, maturity: int, currency_symbol: str) -> Unit:
    """
    Create the signed future-cash unit for one maturity.

    Receivers hold positive balances, payers hold negative balances and the
    pool's market wallet holds the pool's total future cash, so the unit
    always sums to zero across wallets.
    """
    return Unit(
        symbol=future_cash_symbol(group_id, maturity),
        name=f"{currency_symbol} future cash @ {maturity}",
        unit_type=UNIT_TYPE_FUTURE_CASH,
        min_balance=-UINT128_MAX,
        max_balance=UINT128_MAX,
        _frozen_state=_freeze_state({
            'group_id': group_id,
            'maturity': maturity,
            'currency': currency_symbol,
        }),
    )


def liquidity_token_unit(group_id: int, maturity: int, pool_state: UnitState) -> Unit:
    """Create the liquidity token unit, which also carries its pool's state."""
    return Unit(
        symbol=liquidity_token_symbol(group_id, maturity),
        name=f"{pool_state['currency']} liquidity token @ {maturity}",
        unit_type=UNIT_TYPE_LIQUIDITY_TOKEN,
        min_balance=0,
        max_balance=UINT128_MAX,
        _frozen_state=_freeze_state(pool_state),
    )
