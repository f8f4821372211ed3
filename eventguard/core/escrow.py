"""
Escrow Ledger

Per-event custodial balance. Funds enter only through ticket purchases
and leave only through refunds. The functions here are pure: they take
an EscrowAccount and return the next one. Persisting the result is the
caller's job, inside the same transaction that changed the ticket.
"""

from ..schemas import EscrowAccount
from .errors import InsufficientFunds, InvalidConfig


def deposit(account: EscrowAccount, amount: int) -> EscrowAccount:
    """Credit `amount` minor units to the escrow."""
    if amount < 0:
        raise InvalidConfig(f"Deposit amount must be non-negative, got {amount}")
    return account.model_copy(update={
        "balance": account.balance + amount,
        "total_deposited": account.total_deposited + amount,
    })


def withdraw(account: EscrowAccount, amount: int) -> EscrowAccount:
    """
    Debit `amount` minor units from the escrow.

    Raises:
        InsufficientFunds: If amount exceeds the current balance
        InvalidConfig: If amount is negative
    """
    if amount < 0:
        raise InvalidConfig(f"Withdrawal amount must be non-negative, got {amount}")
    if amount > account.balance:
        raise InsufficientFunds(
            f"Escrow for event {account.event_id} holds {account.balance}, "
            f"cannot pay {amount}",
            balance=account.balance,
            requested=amount,
        )
    return account.model_copy(update={
        "balance": account.balance - amount,
        "total_refunded": account.total_refunded + amount,
    })
