"""
Bonds, Tranches and the Bond Issuer

In-memory implementation of the bond collaborators consumed by the perp and
the vault:

    BondFactory   creates bonds, tranches collateral, matures and redeems
    BondIssuer    issues one bond per time window; the trusted source of
                  minting bonds

A bond holds collateral in its own ledger account (the bond id). Depositing
collateral mints every tranche at once according to the seniority ratios.
At maturity the collateral is distributed senior-first (waterfall) into one
account per tranche, from which holders redeem pro-rata. Before maturity
only a full proportional set of tranches can be redeemed.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from functools import reduce
from math import gcd
from typing import Dict, List, Optional, Tuple

from spot.config import TRANCHE_RATIO_GRANULARITY
from spot.hardening import SpotError, UnacceptableParams, UnexpectedAsset, Validators
from spot.ledger import TokenLedger
from spot.observability import SpotLayer, get_logger

logger = get_logger("bonds", SpotLayer.BONDS)


class BondNotMature(SpotError):
    """Operation requires a matured bond."""
    pass


class BondAlreadyMature(SpotError):
    """Operation requires an immature bond."""
    pass


# =============================================================================
# DATA MODEL
# =============================================================================

@dataclass(frozen=True)
class Tranche:
    """A seniority slice of a bond. ``ratio`` is out of 1000."""
    token_id: str
    bond_id: str
    seniority: int
    ratio: int


def class_key_for(collateral_token: str, ratios: List[int]) -> str:
    """Identity of a bond class: collateral token plus tranche ratios."""
    canonical = json.dumps(
        {"collateral_token": collateral_token, "ratios": list(ratios)},
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode()).hexdigest()


@dataclass
class BondBatch:
    """A fixed-maturity bond with its tranches, most senior first."""
    bond_id: str
    collateral_token: str
    maturity: int
    tranches: Tuple[Tranche, ...]
    is_mature: bool = False

    @property
    def ratios(self) -> List[int]:
        return [t.ratio for t in self.tranches]

    @property
    def class_key(self) -> str:
        return class_key_for(self.collateral_token, self.ratios)

    @property
    def senior_ratio(self) -> int:
        return self.tranches[0].ratio

    def tranche_ids(self) -> List[str]:
        return [t.token_id for t in self.tranches]

    def has_tranche(self, token_id: str) -> bool:
        return any(t.token_id == token_id for t in self.tranches)

    def to_dict(self) -> Dict[str, object]:
        return {
            "bond_id": self.bond_id,
            "collateral_token": self.collateral_token,
            "maturity": self.maturity,
            "ratios": self.ratios,
            "tranches": self.tranche_ids(),
            "is_mature": self.is_mature,
        }


def reduced_ratios(ratios: List[int]) -> List[int]:
    """Smallest integer vector proportional to ``ratios``."""
    g = reduce(gcd, ratios)
    return [r // g for r in ratios]


# =============================================================================
# BOND FACTORY
# =============================================================================

class BondFactory:
    """Creates bonds and implements their collateral mechanics on a ledger."""

    def __init__(self, ledger: TokenLedger):
        self.ledger = ledger
        self._bonds: Dict[str, BondBatch] = {}
        self._tranches: Dict[str, Tranche] = {}
        self._counter = 0

    # -- registry -------------------------------------------------------------

    def create_bond(self, collateral_token: str, ratios: List[int], maturity: int) -> BondBatch:
        """Create a new bond with one tranche per ratio."""
        Validators.validate_id(collateral_token, "collateral_token")
        if len(ratios) < 2 or any(r <= 0 for r in ratios) or sum(ratios) != TRANCHE_RATIO_GRANULARITY:
            raise UnacceptableParams(f"Invalid tranche ratios: {ratios}")

        with self.ledger.lock:
            self._counter += 1
            bond_id = f"BOND-{self._counter}"
            tranches = tuple(
                Tranche(token_id=f"{bond_id}-T{i}", bond_id=bond_id, seniority=i, ratio=r)
                for i, r in enumerate(ratios)
            )
            bond = BondBatch(
                bond_id=bond_id,
                collateral_token=collateral_token,
                maturity=maturity,
                tranches=tranches,
            )
            self._bonds[bond_id] = bond
            for tranche in tranches:
                self._tranches[tranche.token_id] = tranche

        logger.debug("Bond created", bond_id=bond_id, maturity=maturity, ratios=list(ratios))
        return bond

    def get_bond(self, bond_id: str) -> BondBatch:
        try:
            return self._bonds[bond_id]
        except KeyError:
            raise UnexpectedAsset(f"Unknown bond: {bond_id}") from None

    def find_tranche(self, token_id: str) -> Optional[Tranche]:
        return self._tranches.get(token_id)

    def bond_of(self, token_id: str) -> BondBatch:
        """Bond that issued tranche ``token_id``."""
        tranche = self.find_tranche(token_id)
        if tranche is None:
            raise UnexpectedAsset(f"Not a tranche: {token_id}")
        return self._bonds[tranche.bond_id]

    # -- accounting views -----------------------------------------------------

    def collateral_balance(self, bond: BondBatch) -> int:
        return self.ledger.balance_of(bond.collateral_token, bond.bond_id)

    def total_debt(self, bond: BondBatch) -> int:
        return sum(self.ledger.total_supply(t.token_id) for t in bond.tranches)

    def _waterfall(self, bond: BondBatch, collateral: int) -> List[int]:
        """Senior-first allocation of ``collateral`` across tranche supplies."""
        allocations = []
        remaining = collateral
        for tranche in bond.tranches[:-1]:
            alloc = min(self.ledger.total_supply(tranche.token_id), remaining)
            allocations.append(alloc)
            remaining -= alloc
        allocations.append(remaining)
        return allocations

    def tranche_value(self, token_id: str, amount: int) -> int:
        """Collateral backing ``amount`` units of a tranche."""
        tranche = self.find_tranche(token_id)
        if tranche is None:
            raise UnexpectedAsset(f"Not a tranche: {token_id}")
        supply = self.ledger.total_supply(token_id)
        if supply == 0 or amount == 0:
            return 0

        bond = self._bonds[tranche.bond_id]
        if bond.is_mature:
            backing = self.ledger.balance_of(bond.collateral_token, token_id)
        else:
            backing = self._waterfall(bond, self.collateral_balance(bond))[tranche.seniority]
        return amount * backing // supply

    def is_due(self, bond: BondBatch, now: int) -> bool:
        return bond.is_mature or now >= bond.maturity

    # -- mechanics ------------------------------------------------------------

    def deposit(self, bond_id: str, depositor: str, amount: int) -> List[Tuple[str, int]]:
        """
        Tranche ``amount`` of collateral.

        Mints each tranche in proportion to its ratio, scaled by the bond's
        debt-to-collateral ratio once the bond has supply. Returns the minted
        (tranche, amount) pairs.
        """
        Validators.validate_amount(amount)
        bond = self.get_bond(bond_id)
        if bond.is_mature:
            raise BondAlreadyMature(f"Bond {bond_id} has matured")
        if amount == 0:
            return [(t.token_id, 0) for t in bond.tranches]

        with self.ledger.lock:
            collateral_before = self.collateral_balance(bond)
            debt_before = self.total_debt(bond)

            minted = []
            for tranche in bond.tranches:
                tranche_amt = amount * tranche.ratio // TRANCHE_RATIO_GRANULARITY
                if debt_before > 0 and collateral_before > 0:
                    tranche_amt = tranche_amt * debt_before // collateral_before
                minted.append((tranche.token_id, tranche_amt))

            self.ledger.transfer(bond.collateral_token, depositor, bond_id, amount)
            for token_id, tranche_amt in minted:
                self.ledger.mint(token_id, depositor, tranche_amt)

        return minted

    def mature(self, bond_id: str, now: int) -> None:
        """Distribute the bond's collateral into its tranches, senior first."""
        bond = self.get_bond(bond_id)
        if bond.is_mature:
            return
        if now < bond.maturity:
            raise BondNotMature(f"Bond {bond_id} matures at {bond.maturity}, now {now}")

        with self.ledger.lock:
            allocations = self._waterfall(bond, self.collateral_balance(bond))
            for tranche, alloc in zip(bond.tranches, allocations):
                self.ledger.transfer(bond.collateral_token, bond_id, tranche.token_id, alloc)
            bond.is_mature = True

        logger.info("Bond matured", bond_id=bond_id, allocations=allocations)

    def redeem_mature(self, token_id: str, holder: str, amount: int) -> int:
        """Burn matured tranche units for their share of the tranche collateral."""
        Validators.validate_amount(amount)
        bond = self.bond_of(token_id)
        if not bond.is_mature:
            raise BondNotMature(f"Bond {bond.bond_id} has not matured")

        with self.ledger.lock:
            supply = self.ledger.total_supply(token_id)
            backing = self.ledger.balance_of(bond.collateral_token, token_id)
            payout = amount * backing // supply if supply else 0
            self.ledger.burn(token_id, holder, amount)
            self.ledger.transfer(bond.collateral_token, token_id, holder, payout)
        return payout

    def redeemable_set(self, bond: BondBatch, balances: List[int]) -> List[int]:
        """Largest proportional tranche set coverable by ``balances``."""
        unit = reduced_ratios(bond.ratios)
        multiple = min(b // u for b, u in zip(balances, unit))
        return [multiple * u for u in unit]

    def redeem(self, bond_id: str, holder: str, amounts: List[int]) -> int:
        """Redeem a proportional set of immature tranches for collateral."""
        bond = self.get_bond(bond_id)
        if bond.is_mature:
            raise BondAlreadyMature(f"Bond {bond_id} has matured")
        if len(amounts) != len(bond.tranches):
            raise UnacceptableParams(f"Expected {len(bond.tranches)} amounts, got {len(amounts)}")
        for amount in amounts:
            Validators.validate_amount(amount)
        ratios = bond.ratios
        if any(a * ratios[0] != amounts[0] * r for a, r in zip(amounts, ratios)):
            raise UnacceptableParams(f"Amounts {amounts} are not proportional to {ratios}")

        total = sum(amounts)
        if total == 0:
            return 0

        with self.ledger.lock:
            payout = total * self.collateral_balance(bond) // self.total_debt(bond)
            for tranche, amount in zip(bond.tranches, amounts):
                self.ledger.burn(tranche.token_id, holder, amount)
            self.ledger.transfer(bond.collateral_token, bond_id, holder, payout)
        return payout

    # -- atomic participation -------------------------------------------------

    def snapshot(self) -> Tuple[Dict[str, bool], int]:
        return {bid: b.is_mature for bid, b in self._bonds.items()}, self._counter

    def restore(self, state: Tuple[Dict[str, bool], int]) -> None:
        flags, counter = state
        for bond_id in [bid for bid in self._bonds if bid not in flags]:
            for tranche in self._bonds.pop(bond_id).tranches:
                self._tranches.pop(tranche.token_id, None)
        for bond_id, is_mature in flags.items():
            self._bonds[bond_id].is_mature = is_mature
        self._counter = counter


# =============================================================================
# BOND ISSUER
# =============================================================================

@dataclass
class BondIssuer:
    """
    Issues one bond per issue window.

    Bond maturity is the start of the issue window plus
    ``max_maturity_duration``.
    """
    factory: BondFactory
    collateral_token: str
    tranche_ratios: List[int]
    max_maturity_duration: int
    min_issue_time_interval: int
    issue_window_offset: int = 0
    _issued: List[BondBatch] = field(default_factory=list, repr=False)
    _last_issue_window: Optional[int] = field(default=None, repr=False)

    def issue_window(self, now: int) -> int:
        """Start of the issue window containing ``now``."""
        window = now - ((now - self.issue_window_offset) % self.min_issue_time_interval)
        return window

    def issue(self, now: int) -> Optional[BondBatch]:
        """Issue a new bond if the current window has none yet."""
        window = self.issue_window(now)
        if self._last_issue_window is not None and window <= self._last_issue_window:
            return None

        bond = self.factory.create_bond(
            self.collateral_token,
            list(self.tranche_ratios),
            window + self.max_maturity_duration,
        )
        self._issued.append(bond)
        self._last_issue_window = window
        logger.info("Bond issued", bond_id=bond.bond_id, maturity=bond.maturity, window=window)
        return bond

    def get_last_bond(self) -> Optional[BondBatch]:
        return self._issued[-1] if self._issued else None

    def is_instance(self, bond: BondBatch) -> bool:
        return any(b.bond_id == bond.bond_id for b in self._issued)

    @property
    def issued_count(self) -> int:
        return len(self._issued)

    def issued_bond_at(self, index: int) -> BondBatch:
        return self._issued[index]

    def mature_active(self, now: int) -> List[str]:
        """Mature every issued bond past its maturity; returns the ids matured."""
        matured = []
        for bond in self._issued:
            if not bond.is_mature and now >= bond.maturity:
                self.factory.mature(bond.bond_id, now)
                matured.append(bond.bond_id)
        return matured

    def snapshot(self) -> Tuple[int, Optional[int]]:
        return len(self._issued), self._last_issue_window

    def restore(self, state: Tuple[int, Optional[int]]) -> None:
        count, window = state
        del self._issued[count:]
        self._last_issue_window = window
