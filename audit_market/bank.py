from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from typing import Protocol

ESCROW_PREFIX = "escrow:"
REGISTRY_PREFIX = "registry:"
# Accounts held by the market itself; no caller, agent or payee may be one of them.
MARKET_ACCOUNT_PREFIXES = (ESCROW_PREFIX, REGISTRY_PREFIX)


def escrow_account(task_id: str) -> str:
    """Bank account that holds the bounty of a single task."""
    return f"{ESCROW_PREFIX}{task_id}"


def is_market_account(account: str) -> bool:
    return account.startswith(MARKET_ACCOUNT_PREFIXES)


class Bank(Protocol):
    def balance_of(self, account: str) -> int: ...

    def transfer(self, sender: str, recipient: str, amount: int) -> bool: ...

    def atomic(self) -> AbstractContextManager[None]: ...


class InMemoryBank:
    """Integer balances keyed by account id.

    `transfer` never raises for business failures: it returns False when the
    sender cannot cover the amount or the recipient refuses deposits, and the
    caller decides whether that aborts the enclosing operation. `atomic()`
    restores every balance touched inside the block if the block raises.
    """

    def __init__(self, balances: dict[str, int] | None = None) -> None:
        self._balances: dict[str, int] = {}
        self._refusing: set[str] = set()
        self._lock = threading.RLock()
        for account, amount in (balances or {}).items():
            self.deposit(account, amount)

    def balance_of(self, account: str) -> int:
        return self._balances.get(account, 0)

    def balances(self) -> dict[str, int]:
        return {k: v for k, v in self._balances.items() if v}

    def total_supply(self) -> int:
        return sum(self._balances.values())

    def deposit(self, account: str, amount: int) -> None:
        """Credit new funds from outside the market (funding a caller's wallet)."""
        if amount < 0:
            raise ValueError("deposit amount must be >= 0")
        with self._lock:
            self._balances[account] = self._balances.get(account, 0) + int(amount)

    def refuse_deposits(self, account: str, refuse: bool = True) -> None:
        """Make `account` reject incoming transfers, like a recipient that cannot accept funds."""
        with self._lock:
            if refuse:
                self._refusing.add(account)
            else:
                self._refusing.discard(account)

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        if amount < 0:
            raise ValueError("transfer amount must be >= 0")
        with self._lock:
            if recipient in self._refusing:
                return False
            if self._balances.get(sender, 0) < amount:
                return False
            if amount == 0:
                return True
            self._balances[sender] = self._balances.get(sender, 0) - amount
            self._balances[recipient] = self._balances.get(recipient, 0) + amount
            return True

    @contextmanager
    def atomic(self) -> Iterator[None]:
        with self._lock:
            snapshot = dict(self._balances)
            try:
                yield
            except BaseException:
                self._balances = snapshot
                raise
