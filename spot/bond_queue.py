"""
Bond Queue Manager

FIFO of bonds ordered by strictly increasing maturity. The tail is the
minting end, fed from the trusted issuer; the head is the burning end,
evicted once it leaves the tolerable maturity window.

    admissible(bond, now) := now + min <= bond.maturity < now + max

Eviction is monotonic: an evicted bond is never admitted again.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Iterator, List, Optional, Set, Tuple

from spot.bonds import BondBatch
from spot.hardening import InvariantChecker, UnacceptableBond, UnacceptableParams
from spot.interfaces import Issuer
from spot.observability import SpotLayer, get_logger

logger = get_logger("bond_queue", SpotLayer.QUEUE)


class BondQueue:
    """Maturity-ordered bond queue with a tolerable maturity window."""

    def __init__(self, min_maturity_sec: int, max_maturity_sec: int):
        self._check_window(min_maturity_sec, max_maturity_sec)
        self.min_maturity_sec = min_maturity_sec
        self.max_maturity_sec = max_maturity_sec
        self._bonds: List[BondBatch] = []
        self._evicted: Set[str] = set()

    @staticmethod
    def _check_window(min_sec: int, max_sec: int) -> None:
        if min_sec < 0 or min_sec >= max_sec:
            raise UnacceptableParams(f"Invalid maturity window: [{min_sec}, {max_sec})")

    def update_maturity_window(self, min_sec: int, max_sec: int) -> None:
        """Change the tolerable window; applies from the next call."""
        self._check_window(min_sec, max_sec)
        self.min_maturity_sec = min_sec
        self.max_maturity_sec = max_sec
        logger.info("Maturity window updated", min_sec=min_sec, max_sec=max_sec)

    def is_admissible(self, bond: BondBatch, now: int) -> bool:
        return now + self.min_maturity_sec <= bond.maturity < now + self.max_maturity_sec

    # -- views ----------------------------------------------------------------

    @property
    def head(self) -> Optional[BondBatch]:
        return self._bonds[0] if self._bonds else None

    @property
    def tail(self) -> Optional[BondBatch]:
        return self._bonds[-1] if self._bonds else None

    def contains(self, bond_id: str) -> bool:
        return any(b.bond_id == bond_id for b in self._bonds)

    def was_evicted(self, bond_id: str) -> bool:
        return bond_id in self._evicted

    def bonds(self) -> List[BondBatch]:
        return list(self._bonds)

    def __len__(self) -> int:
        return len(self._bonds)

    def __iter__(self) -> Iterator[BondBatch]:
        return iter(list(self._bonds))

    # -- mutation -------------------------------------------------------------

    def get_minting_bond(self, now: int, issuer: Issuer) -> BondBatch:
        """
        Return the tail, first enqueuing the issuer's newest bond if needed.

        Raises UnacceptableBond when the candidate is unknown to the issuer,
        outside the maturity window, previously evicted or not later than
        the current tail.
        """
        candidate = issuer.get_last_bond()
        if candidate is None:
            raise UnacceptableBond("Issuer has no bond")
        if self.contains(candidate.bond_id):
            return candidate

        if candidate.bond_id in self._evicted:
            raise UnacceptableBond(f"Bond {candidate.bond_id} was evicted")
        if not issuer.is_instance(candidate):
            raise UnacceptableBond(f"Bond {candidate.bond_id} not issued by the trusted issuer")
        if not self.is_admissible(candidate, now):
            raise UnacceptableBond(
                f"Bond {candidate.bond_id} maturity {candidate.maturity} outside "
                f"[{now + self.min_maturity_sec}, {now + self.max_maturity_sec})"
            )
        tail = self.tail
        if tail is not None and candidate.maturity <= tail.maturity:
            raise UnacceptableBond(
                f"Bond {candidate.bond_id} does not mature after tail {tail.bond_id}"
            )

        self._bonds.append(candidate)
        InvariantChecker.check_strictly_increasing("queue maturity", (b.maturity for b in self._bonds))
        logger.info("Bond enqueued", bond_id=candidate.bond_id, maturity=candidate.maturity, size=len(self._bonds))
        return candidate

    def get_burning_bond(self, now: int) -> Optional[BondBatch]:
        """Evict inadmissible bonds from the head, then return the head."""
        while self._bonds and not self.is_admissible(self._bonds[0], now):
            self.dequeue()
        return self.head

    def dequeue(self) -> BondBatch:
        if not self._bonds:
            raise UnacceptableBond("Queue is empty")
        bond = self._bonds.pop(0)
        self._evicted.add(bond.bond_id)
        logger.info("Bond dequeued", bond_id=bond.bond_id, size=len(self._bonds))
        return bond

    # -- atomic participation -------------------------------------------------

    def snapshot(self) -> Tuple[List[BondBatch], Set[str], int, int]:
        return list(self._bonds), set(self._evicted), self.min_maturity_sec, self.max_maturity_sec

    def restore(self, state: Tuple[List[BondBatch], Set[str], int, int]) -> None:
        bonds, evicted, self.min_maturity_sec, self.max_maturity_sec = state
        self._bonds = list(bonds)
        self._evicted = set(evicted)
