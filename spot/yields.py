"""
Tranche class yield table.

Maps a bond class key to per-seniority yield factors. A yield of
``10**decimals`` counts a tranche unit as one claim unit; zero marks the
seniority as not accepted by the perp.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Dict, List, Set, Tuple

from spot.bonds import BondBatch
from spot.fixed_point import YIELD_DECIMALS
from spot.hardening import UnacceptableParams
from spot.observability import SpotLayer, get_logger

logger = get_logger("yields", SpotLayer.PERP)


class TrancheClassYieldTable:
    """Administratively populated yields per bond class."""

    def __init__(self, decimals: int = YIELD_DECIMALS, freeze_used: bool = False):
        self._decimals = decimals
        self.freeze_used = freeze_used
        self._yields: Dict[str, List[int]] = {}
        self._used: Set[str] = set()

    def decimals(self) -> int:
        return self._decimals

    def update_defined_yield(self, class_key: str, yields: List[int]) -> None:
        """Set the yields of a class; an empty list removes the entry."""
        if any(y < 0 for y in yields):
            raise UnacceptableParams(f"Yields must be non-negative: {yields}")
        if class_key in self._used:
            if self.freeze_used:
                raise UnacceptableParams(f"Yields of class {class_key[:12]} are frozen after use")
            logger.warning(
                "Overwriting yields of a class with outstanding claims",
                class_key=class_key,
                yields=list(yields),
            )
        if yields:
            self._yields[class_key] = list(yields)
        else:
            self._yields.pop(class_key, None)

    def yields_for(self, class_key: str) -> List[int]:
        return list(self._yields.get(class_key, []))

    def compute_yield(self, bond: BondBatch, seniority: int) -> int:
        """Yield of one seniority of ``bond``; zero when undefined."""
        yields = self._yields.get(bond.class_key, [])
        return yields[seniority] if seniority < len(yields) else 0

    def mark_used(self, class_key: str) -> None:
        self._used.add(class_key)

    def is_used(self, class_key: str) -> bool:
        return class_key in self._used

    def snapshot(self) -> Tuple[Dict[str, List[int]], Set[str]]:
        return {k: list(v) for k, v in self._yields.items()}, set(self._used)

    def restore(self, state: Tuple[Dict[str, List[int]], Set[str]]) -> None:
        yields, used = state
        self._yields = {k: list(v) for k, v in yields.items()}
        self._used = set(used)
