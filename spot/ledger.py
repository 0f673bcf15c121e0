"""
Token Ledger

In-memory multi-token balance book used as the asset transfer primitive.
Balances are keyed by token id then account id; total supply is tracked per
token. The ledger lock is the single-writer critical section shared by every
component operating on the same ledger.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import copy
import threading
from typing import Dict, List, Tuple

from spot.hardening import SpotError, Validators


class InsufficientBalance(SpotError):
    """Transfer or burn exceeds the available balance."""

    def __init__(self, token: str, account: str, available: int, required: int):
        self.token = token
        self.account = account
        self.available = available
        self.required = required
        super().__init__(
            f"Insufficient {token} balance for {account}: have {available}, need {required}"
        )


class TokenLedger:
    """Balances and supplies of every token in the system."""

    def __init__(self):
        self.lock = threading.RLock()
        self._balances: Dict[str, Dict[str, int]] = {}
        self._supply: Dict[str, int] = {}

    def balance_of(self, token: str, account: str) -> int:
        with self.lock:
            return self._balances.get(token, {}).get(account, 0)

    def total_supply(self, token: str) -> int:
        with self.lock:
            return self._supply.get(token, 0)

    def holders(self, token: str) -> List[Tuple[str, int]]:
        """Accounts with a positive balance of ``token``."""
        with self.lock:
            return [(a, b) for a, b in self._balances.get(token, {}).items() if b > 0]

    def tokens(self) -> List[str]:
        with self.lock:
            return list(self._supply)

    def _credit(self, token: str, account: str, amount: int) -> None:
        book = self._balances.setdefault(token, {})
        book[account] = book.get(account, 0) + amount

    def _debit(self, token: str, account: str, amount: int) -> None:
        available = self.balance_of(token, account)
        if available < amount:
            raise InsufficientBalance(token, account, available, amount)
        self._balances[token][account] = available - amount

    def mint(self, token: str, account: str, amount: int) -> None:
        Validators.validate_id(token, "token")
        Validators.validate_id(account, "account")
        Validators.validate_amount(amount)
        with self.lock:
            self._credit(token, account, amount)
            self._supply[token] = self._supply.get(token, 0) + amount

    def burn(self, token: str, account: str, amount: int) -> None:
        Validators.validate_amount(amount)
        with self.lock:
            self._debit(token, account, amount)
            self._supply[token] = self._supply.get(token, 0) - amount

    def transfer(self, token: str, sender: str, recipient: str, amount: int) -> None:
        """Move ``amount`` of ``token``; raises InsufficientBalance, changes nothing on failure."""
        Validators.validate_id(recipient, "recipient")
        Validators.validate_amount(amount)
        with self.lock:
            self._debit(token, sender, amount)
            self._credit(token, recipient, amount)

    def snapshot(self) -> Tuple[Dict[str, Dict[str, int]], Dict[str, int]]:
        with self.lock:
            return copy.deepcopy(self._balances), dict(self._supply)

    def restore(self, state: Tuple[Dict[str, Dict[str, int]], Dict[str, int]]) -> None:
        with self.lock:
            balances, supply = state
            self._balances = copy.deepcopy(balances)
            self._supply = dict(supply)
