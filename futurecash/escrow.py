"""
escrow.py - Escrow Balances and Cash Transfers

Each (account, currency) has two balances in the ledger:
    - free balance: the currency unit itself, unsigned, withdrawable
      subject to free collateral
    - cash balance: the signed "<currency>.CASH" unit, created when
      obligations mature and moved between accounts by cash settlement

Deposits are moves out of SYSTEM_WALLET and withdrawals are moves back
into it, so the system wallet's negative balance is the amount in custody.
Cash balances are only ever moved between two accounts or minted against
matured future cash, so they sum to zero across all accounts.
"""

from typing import Optional

from .core import (
    LedgerView, Move, PendingTransaction, TransactionOrigin, OriginType,
    SYSTEM_WALLET, ErrorCode, LedgerError, CollateralError,
    build_transaction, cash_balance_symbol,
)


def get_free_balance(view: LedgerView, account: str, currency: str) -> int:
    return view.get_balance(account, currency)


def get_cash_balance(view: LedgerView, account: str, currency: str) -> int:
    return view.get_balance(account, cash_balance_symbol(currency))


def total_custodied(view: LedgerView, currency: str) -> int:
    """Total of a currency held in custody on behalf of all wallets."""
    return -view.get_balance(SYSTEM_WALLET, currency)


def _require_positive(amount: int) -> None:
    if amount <= 0:
        raise LedgerError(f"Amount must be positive, got {amount}", ErrorCode.INVALID_TRADE)


def compute_deposit(view: LedgerView, account: str, currency: str, amount: int) -> PendingTransaction:
    """Credit `amount` of `currency` to an account's free balance."""
    _require_positive(amount)
    return build_transaction(
        view,
        [Move(amount, currency, SYSTEM_WALLET, account, "deposit")],
        origin=TransactionOrigin(OriginType.USER_ACTION, account, currency, "DEPOSIT"),
    )


def compute_withdraw(view: LedgerView, account: str, currency: str, amount: int) -> PendingTransaction:
    """
    Debit `amount` of `currency` from an account's free balance.

    The caller must check free collateral after executing.

    Raises:
        CollateralError(INSUFFICIENT_BALANCE): If the free balance is smaller than amount
    """
    _require_positive(amount)
    balance = get_free_balance(view, account, currency)
    if amount > balance:
        raise CollateralError(
            f"{account} has {balance} {currency}, cannot withdraw {amount}",
            ErrorCode.INSUFFICIENT_BALANCE,
        )
    return build_transaction(
        view,
        [Move(amount, currency, account, SYSTEM_WALLET, "withdraw")],
        origin=TransactionOrigin(OriginType.USER_ACTION, account, currency, "WITHDRAW"),
    )


def compute_cash_transfer(
    view: LedgerView,
    currency: str,
    payer: str,
    receiver: str,
    cash_amount: int,
    funding_wallet: str,
    funding_currency: Optional[str] = None,
    funding_amount: Optional[int] = None,
    event: str = "SETTLE_CASH",
) -> PendingTransaction:
    """
    Settle `cash_amount` of the payer's debt against the receiver's credit.

    Two legs move together:
        - cash balance: payer +cash_amount, receiver -cash_amount
        - value: funding_amount of funding_currency from funding_wallet to
          the receiver's free balance

    The funding wallet is the payer itself, or the reserve account when it
    absorbs a shortfall. Funding defaults to cash_amount of `currency`.
    A receiver funding its own credit only gives up the cash balance.
    """
    _require_positive(cash_amount)
    funding_currency = funding_currency or currency
    funding_amount = cash_amount if funding_amount is None else funding_amount
    moves = [
        Move(cash_amount, cash_balance_symbol(currency), receiver, payer, "settle_cash"),
        Move(funding_amount, funding_currency, funding_wallet, receiver, "settle_cash")
        if funding_amount > 0 and funding_wallet != receiver else None,
    ]
    return build_transaction(
        view, moves,
        origin=TransactionOrigin(OriginType.SETTLEMENT, funding_wallet, currency, event),
    )
