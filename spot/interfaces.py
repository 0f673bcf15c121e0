"""
Collaborator Interfaces

Narrow protocols through which the accounting core consumes its external
collaborators. Any object satisfying a protocol can be injected; swapping a
collaborator takes effect on the next call.

    Issuer         trusted source of minting bonds
    FeePolicyLike  signed fee percentages and the deviation ratio
    PricingSource  fixed-point tranche prices
    YieldSource    per-class, per-seniority yield factors
    AssetBook      balances, supplies and the transfer primitive

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Optional, Protocol, Tuple

from spot.bonds import BondBatch


# =============================================================================
# BOND ISSUANCE
# =============================================================================

class Issuer(Protocol):
    """Protocol for the trusted bond issuer."""

    def get_last_bond(self) -> Optional[BondBatch]:
        """Most recently issued bond, if any."""
        ...

    def is_instance(self, bond: BondBatch) -> bool:
        """Whether ``bond`` was issued by this issuer."""
        ...


# =============================================================================
# POLICIES
# =============================================================================

class FeePolicyLike(Protocol):
    """
    Protocol for fee policies.

    Percentages are signed fixed-point values on ``decimals()``; a negative
    percentage is a reward paid to the caller.
    """

    def decimals(self) -> int:
        ...

    def compute_perp_mint_fee_perc(self, dr: int) -> int:
        ...

    def compute_perp_burn_fee_perc(self, dr: int) -> int:
        ...

    def compute_perp_rollover_fee_perc(self, dr: int) -> int:
        ...

    def compute_vault_mint_fee_perc(self) -> int:
        ...

    def compute_vault_burn_fee_perc(self) -> int:
        ...

    def compute_underlying_to_perp_swap_fee_percs(self, dr: int) -> Tuple[int, int]:
        ...

    def compute_perp_to_underlying_swap_fee_percs(self, dr: int) -> Tuple[int, int]:
        ...

    def compute_deviation_ratio(self, perp_tvl: int, vault_tvl: int, senior_tr: int) -> int:
        ...


class PricingSource(Protocol):
    """Protocol for tranche pricing."""

    def decimals(self) -> int:
        ...

    def compute_tranche_price(self, token_id: str) -> int:
        ...


class YieldSource(Protocol):
    """Protocol for the per-class yield table."""

    def decimals(self) -> int:
        ...

    def compute_yield(self, bond: BondBatch, seniority: int) -> int:
        ...

    def mark_used(self, class_key: str) -> None:
        ...


# =============================================================================
# ASSET TRANSFER
# =============================================================================

class AssetBook(Protocol):
    """
    Protocol for balances and the asset transfer primitive.

    ``transfer`` both pulls (caller to reserve) and pushes (reserve to
    caller). Failures raise and are never retried.
    """

    def balance_of(self, token: str, account: str) -> int:
        ...

    def total_supply(self, token: str) -> int:
        ...

    def transfer(self, token: str, sender: str, recipient: str, amount: int) -> None:
        ...

    def mint(self, token: str, account: str, amount: int) -> None:
        ...

    def burn(self, token: str, account: str, amount: int) -> None:
        ...
