"""
Fee policy.

Supplies the signed fee percentages consumed by the perp and the vault, on a
fixed-point scale of ``decimals`` (8 by default, so 10**8 is 100%).

By default every percentage is flat. With ``gate_by_subscription`` enabled
the policy follows the deviation ratio (vault subscription relative to its
target): mint fees apply only while the perp is under-subscribed, burn fees
only while over-subscribed, and underlying-to-perp swaps are disabled
(100% fee) while under-subscribed.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Optional, Tuple

from spot.config import TRANCHE_RATIO_GRANULARITY, FeeConfig
from spot.fixed_point import FEE_DECIMALS, one
from spot.hardening import InvalidPerc
from spot.observability import SpotLayer, get_logger

logger = get_logger("fee_policy", SpotLayer.FEES)

MAX_DEVIATION_RATIO = 2 ** 255


class FeePolicy:
    """Configurable perp and vault fee schedule."""

    def __init__(
        self,
        decimals: int = FEE_DECIMALS,
        perp_mint_fee_perc: int = 0,
        perp_burn_fee_perc: int = 0,
        perp_rollover_fee_perc: int = 0,
        vault_mint_fee_perc: int = 0,
        vault_burn_fee_perc: int = 0,
        underlying_to_perp_swap_fee_perc: int = 0,
        perp_to_underlying_swap_fee_perc: int = 0,
        target_subscription_ratio: Optional[int] = None,
        gate_by_subscription: bool = False,
    ):
        self._decimals = decimals
        self.one = one(decimals)
        self.gate_by_subscription = gate_by_subscription
        self.target_subscription_ratio = (
            target_subscription_ratio
            if target_subscription_ratio is not None
            else self.one * 133 // 100
        )
        self.perp_mint_fee_perc = self._check_perc("perp_mint_fee_perc", perp_mint_fee_perc)
        self.perp_burn_fee_perc = self._check_perc("perp_burn_fee_perc", perp_burn_fee_perc)
        self.perp_rollover_fee_perc = self._check_perc(
            "perp_rollover_fee_perc", perp_rollover_fee_perc, signed=True,
        )
        self.vault_mint_fee_perc = self._check_perc("vault_mint_fee_perc", vault_mint_fee_perc)
        self.vault_burn_fee_perc = self._check_perc("vault_burn_fee_perc", vault_burn_fee_perc)
        self.underlying_to_perp_swap_fee_perc = self._check_perc(
            "underlying_to_perp_swap_fee_perc", underlying_to_perp_swap_fee_perc,
        )
        self.perp_to_underlying_swap_fee_perc = self._check_perc(
            "perp_to_underlying_swap_fee_perc", perp_to_underlying_swap_fee_perc,
        )

    @classmethod
    def from_config(cls, config: FeeConfig) -> "FeePolicy":
        return cls(
            decimals=config.decimals.get(),
            perp_mint_fee_perc=config.perp_mint_fee_perc.get(),
            perp_burn_fee_perc=config.perp_burn_fee_perc.get(),
            perp_rollover_fee_perc=config.perp_rollover_fee_perc.get(),
            vault_mint_fee_perc=config.vault_mint_fee_perc.get(),
            vault_burn_fee_perc=config.vault_burn_fee_perc.get(),
            underlying_to_perp_swap_fee_perc=config.underlying_to_perp_swap_fee_perc.get(),
            perp_to_underlying_swap_fee_perc=config.perp_to_underlying_swap_fee_perc.get(),
            target_subscription_ratio=config.target_subscription_ratio.get(),
            gate_by_subscription=config.gate_by_subscription.get(),
        )

    def decimals(self) -> int:
        return self._decimals

    def _check_perc(self, name: str, perc: int, signed: bool = False) -> int:
        lower = -self.one if signed else 0
        if not lower <= perc <= self.one:
            raise InvalidPerc(f"{name} out of range [{lower}, {self.one}]: {perc}")
        return perc

    # -- administration -------------------------------------------------------

    def update_fee(self, name: str, perc: int) -> None:
        """Update one percentage by attribute name, e.g. ``perp_mint_fee_perc``."""
        if not name.endswith("_fee_perc") or not hasattr(self, name):
            raise InvalidPerc(f"Unknown fee: {name}")
        setattr(self, name, self._check_perc(name, perc, signed=name == "perp_rollover_fee_perc"))
        logger.info("Fee updated", fee=name, perc=perc)

    def update_target_subscription_ratio(self, ratio: int) -> None:
        if not self.one <= ratio <= 2 * self.one:
            raise InvalidPerc(f"Target subscription ratio out of bounds: {ratio}")
        self.target_subscription_ratio = ratio

    # -- perp fees ------------------------------------------------------------

    def compute_perp_mint_fee_perc(self, dr: int) -> int:
        if self.gate_by_subscription and dr > self.one:
            return 0
        return self.perp_mint_fee_perc

    def compute_perp_burn_fee_perc(self, dr: int) -> int:
        if self.gate_by_subscription and dr <= self.one:
            return 0
        return self.perp_burn_fee_perc

    def compute_perp_rollover_fee_perc(self, dr: int) -> int:
        return self.perp_rollover_fee_perc

    # -- vault fees -----------------------------------------------------------

    def compute_vault_mint_fee_perc(self) -> int:
        return self.vault_mint_fee_perc

    def compute_vault_burn_fee_perc(self) -> int:
        return self.vault_burn_fee_perc

    def compute_underlying_to_perp_swap_fee_percs(self, dr: int) -> Tuple[int, int]:
        """(perp fee, vault fee) for swapping underlying into perps."""
        if self.gate_by_subscription:
            if dr <= self.one:
                return 0, self.one
            return 0, self.underlying_to_perp_swap_fee_perc
        return self.perp_mint_fee_perc, self.underlying_to_perp_swap_fee_perc

    def compute_perp_to_underlying_swap_fee_percs(self, dr: int) -> Tuple[int, int]:
        """(perp fee, vault fee) for swapping perps into underlying."""
        return self.compute_perp_burn_fee_perc(dr), self.perp_to_underlying_swap_fee_perc

    # -- subscription ---------------------------------------------------------

    def compute_deviation_ratio(self, perp_tvl: int, vault_tvl: int, senior_tr: int) -> int:
        """
        Vault subscription relative to target.

        ``(vault_tvl * senior_tr / (perp_tvl * (1000 - senior_tr))) / target``
        """
        if perp_tvl == 0:
            return MAX_DEVIATION_RATIO
        subscription = (
            vault_tvl * senior_tr * self.one
            // (perp_tvl * (TRANCHE_RATIO_GRANULARITY - senior_tr))
        )
        return subscription * self.one // self.target_subscription_ratio
