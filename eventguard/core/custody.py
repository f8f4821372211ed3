"""
Token Custody Boundary

The escrow ledger only does accounting. Moving real value between a
holder's wallet and an event vault is the job of a TokenCustody
implementation, injected into the TicketingService.

Implementations must either move the full amount or raise:
- InsufficientFunds when the holder cannot cover the debit (rule violation)
- CustodyUnavailableError when the subsystem cannot be reached (retry later)
"""

from abc import ABC, abstractmethod
from threading import Lock
from uuid import UUID

from .errors import CustodyUnavailableError, InsufficientFunds, InvalidConfig


class TokenCustody(ABC):
    """Abstract token mover between holder wallets and event vaults."""

    @abstractmethod
    def transfer_in(self, holder: str, account: UUID, amount: int) -> None:
        """Debit `holder`, credit the vault for escrow `account`."""
        pass

    @abstractmethod
    def transfer_out(self, account: UUID, holder: str, amount: int) -> None:
        """Debit the vault for escrow `account`, credit `holder`."""
        pass


class InMemoryTokenCustody(TokenCustody):
    """
    Wallet balances kept in a dict.

    Used by tests, the demo and single-process deployments. Set
    `available = False` to simulate an outage.
    """

    def __init__(self):
        self._wallets: dict[str, int] = {}
        self._vaults: dict[UUID, int] = {}
        self._lock = Lock()
        self.available = True

    def fund(self, holder: str, amount: int) -> None:
        if amount < 0:
            raise InvalidConfig(f"Funding amount must be non-negative, got {amount}")
        with self._lock:
            self._wallets[holder] = self._wallets.get(holder, 0) + amount

    def balance_of(self, holder: str) -> int:
        with self._lock:
            return self._wallets.get(holder, 0)

    def vault_balance(self, account: UUID) -> int:
        with self._lock:
            return self._vaults.get(account, 0)

    def _check_available(self) -> None:
        if not self.available:
            raise CustodyUnavailableError("Token custody is unavailable")

    def transfer_in(self, holder: str, account: UUID, amount: int) -> None:
        self._check_available()
        with self._lock:
            held = self._wallets.get(holder, 0)
            if held < amount:
                raise InsufficientFunds(
                    f"Wallet {holder} holds {held}, needs {amount}",
                    balance=held,
                    requested=amount,
                )
            self._wallets[holder] = held - amount
            self._vaults[account] = self._vaults.get(account, 0) + amount

    def transfer_out(self, account: UUID, holder: str, amount: int) -> None:
        self._check_available()
        with self._lock:
            vault = self._vaults.get(account, 0)
            if vault < amount:
                raise InsufficientFunds(
                    f"Vault for {account} holds {vault}, needs {amount}",
                    balance=vault,
                    requested=amount,
                )
            self._vaults[account] = vault - amount
            self._wallets[holder] = self._wallets.get(holder, 0) + amount
