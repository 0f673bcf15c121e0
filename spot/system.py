"""
System wiring.

Builds a complete in-memory system (ledger, bonds, issuer, policies, perp
and vault) from a ``SpotConfig`` around a manual clock, the way the CLI,
scenarios and tests drive it.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from spot.bonds import BondBatch, BondFactory, BondIssuer, class_key_for
from spot.config import SpotConfig, get_config
from spot.fees import FeePolicy
from spot.fixed_point import one
from spot.ledger import TokenLedger
from spot.perp import PerpetualTranche
from spot.pricing import CDRPricingStrategy, UnitPricingStrategy
from spot.vault import RolloverVault
from spot.yields import TrancheClassYieldTable

PRICING_STRATEGIES = ("unit", "cdr")


class ManualClock:
    """Clock advanced explicitly by the caller."""

    def __init__(self, now: int = 0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError(f"Cannot move the clock backwards by {seconds}s")
        self.now += seconds
        return self.now


@dataclass
class SpotSystem:
    """A perp and its rollover vault sharing one ledger and clock."""
    ledger: TokenLedger
    factory: BondFactory
    issuer: BondIssuer
    yields: TrancheClassYieldTable
    fee_policy: FeePolicy
    perp: PerpetualTranche
    vault: RolloverVault
    clock: ManualClock

    @classmethod
    def from_config(
        cls,
        config: Optional[SpotConfig] = None,
        start_time: int = 0,
        pricing: str = "unit",
        yields: Optional[List[int]] = None,
    ) -> "SpotSystem":
        """
        Wire a system from ``config`` (the global config by default).

        ``yields`` sets the issuer class yields; by default the most senior
        tranche counts at 100% and every other seniority is not accepted.
        """
        config = config or get_config()
        if pricing not in PRICING_STRATEGIES:
            raise ValueError(f"Unknown pricing strategy: {pricing}")

        clock = ManualClock(start_time)
        ledger = TokenLedger()
        factory = BondFactory(ledger)
        issuer_cfg = config.issuer
        issuer = BondIssuer(
            factory=factory,
            collateral_token=issuer_cfg.collateral_token.get(),
            tranche_ratios=list(issuer_cfg.tranche_ratios.get()),
            max_maturity_duration=issuer_cfg.max_maturity_duration.get(),
            min_issue_time_interval=issuer_cfg.min_issue_time_interval.get(),
            issue_window_offset=issuer_cfg.issue_window_offset.get(),
        )
        yield_decimals = config.perp.yield_decimals.get()
        table = TrancheClassYieldTable(
            decimals=yield_decimals,
            freeze_used=config.perp.freeze_used_yields.get(),
        )
        price_decimals = config.perp.price_decimals.get()
        strategy = (
            CDRPricingStrategy(factory, price_decimals)
            if pricing == "cdr"
            else UnitPricingStrategy(price_decimals)
        )
        fee_policy = FeePolicy.from_config(config.fees)

        perp = PerpetualTranche(
            ledger, factory, issuer, issuer.collateral_token,
            fee_policy, strategy, table, config=config.perp, clock=clock,
        )
        vault = RolloverVault(ledger, factory, perp, fee_policy, config=config.vault, clock=clock)
        perp.update_vault(vault)

        system = cls(ledger, factory, issuer, table, fee_policy, perp, vault, clock)
        ratios = issuer.tranche_ratios
        if yields is None:
            yields = [one(yield_decimals)] + [0] * (len(ratios) - 1)
        table.update_defined_yield(system.issuer_class_key(), yields)
        return system

    # -- helpers --------------------------------------------------------------

    def issuer_class_key(self) -> str:
        return class_key_for(self.issuer.collateral_token, self.issuer.tranche_ratios)

    @property
    def collateral_token(self) -> str:
        return self.issuer.collateral_token

    def issue(self) -> Optional[BondBatch]:
        """Issue a bond for the current window, if none was issued yet."""
        return self.issuer.issue(self.clock.now)

    def advance(self, seconds: int) -> int:
        return self.clock.advance(seconds)

    def fund(self, account: str, amount: int) -> None:
        """Mint collateral to ``account``."""
        self.ledger.mint(self.collateral_token, account, amount)

    def tranche(self, account: str, amount: int) -> List[Tuple[str, int]]:
        """Tranche ``amount`` of the account's collateral into the perp's minting bond."""
        bond = self.perp.get_minting_bond()
        return self.factory.deposit(bond.bond_id, account, amount)

    def mature(self) -> List[str]:
        return self.issuer.mature_active(self.clock.now)

    def balances(self, account: str) -> Dict[str, int]:
        return {
            token: self.ledger.balance_of(token, account)
            for token in self.ledger.tokens()
            if self.ledger.balance_of(token, account) > 0
        }

    def describe(self) -> Dict[str, Any]:
        return {
            "now": self.clock.now,
            "perp": self.perp.describe(),
            "vault": self.vault.describe(),
            "bonds": [
                self.issuer.issued_bond_at(i).to_dict() for i in range(self.issuer.issued_count)
            ],
        }
