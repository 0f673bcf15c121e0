"""
Reserve Ledger

Insertion-ordered set of the assets backing outstanding claims or shares.
An asset is tracked iff its balance at the last sync exceeded the dust
floor; ``sync_asset`` is the only membership mutator and every
balance-changing operation must call it for each asset it touched.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterator, List

from spot.hardening import InvariantChecker
from spot.observability import SpotLayer, get_logger

logger = get_logger("reserve", SpotLayer.RESERVE)

BalanceReader = Callable[[str], int]
ValuationFn = Callable[[str, int], int]


class ReserveLedger:
    """Tracked reserve assets with dust suppression."""

    def __init__(self, balance_of: BalanceReader, dust_threshold: int = 0, name: str = "reserve"):
        InvariantChecker.check_non_negative("dust_threshold", dust_threshold)
        self._balance_of = balance_of
        self.dust_threshold = dust_threshold
        self.name = name
        # dict keys keep insertion order
        self._assets: Dict[str, None] = {}

    def balance(self, asset: str) -> int:
        return self._balance_of(asset)

    def sync_asset(self, asset: str, balance: int) -> bool:
        """Add or remove ``asset`` for ``balance``; returns whether it is tracked."""
        InvariantChecker.check_non_negative(f"{self.name} balance of {asset}", balance)
        present = asset in self._assets
        if balance > self.dust_threshold:
            if not present:
                self._assets[asset] = None
                logger.debug("Asset added", reserve=self.name, asset=asset, balance=balance)
            return True
        if present:
            del self._assets[asset]
            logger.debug("Asset removed", reserve=self.name, asset=asset, balance=balance)
        return False

    def sync(self, asset: str) -> bool:
        """Sync ``asset`` against its live balance."""
        return self.sync_asset(asset, self._balance_of(asset))

    def aggregate_value(self, valuation_fn: ValuationFn) -> int:
        """Sum of ``valuation_fn(asset, balance)`` over tracked assets above dust."""
        total = 0
        for asset in self._assets:
            balance = self._balance_of(asset)
            if balance <= self.dust_threshold:
                continue
            total += valuation_fn(asset, balance)
        return total

    def contains(self, asset: str) -> bool:
        return asset in self._assets

    def assets(self) -> List[str]:
        return list(self._assets)

    def at(self, index: int) -> str:
        return self.assets()[index]

    def __len__(self) -> int:
        return len(self._assets)

    def __iter__(self) -> Iterator[str]:
        return iter(self.assets())

    def verify(self) -> List[str]:
        """Membership violations against live balances; empty when consistent."""
        violations = []
        for asset in self._assets:
            balance = self._balance_of(asset)
            if balance <= self.dust_threshold:
                violations.append(f"{asset}: tracked with balance {balance} <= dust {self.dust_threshold}")
        return violations

    def snapshot(self) -> List[str]:
        return list(self._assets)

    def restore(self, state: List[str]) -> None:
        self._assets = dict.fromkeys(state)

