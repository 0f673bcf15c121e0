"""
Tranche pricing strategies.

    UnitPricingStrategy   every unit is worth exactly 1.0
    CDRPricingStrategy    matured tranches are priced at the collateral each
                          unit redeems for; immature tranches at 1.0

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from spot.bonds import BondFactory
from spot.fixed_point import PRICE_DECIMALS, one


class UnitPricingStrategy:
    """Prices every tranche at one unit of account."""

    def __init__(self, decimals: int = PRICE_DECIMALS):
        self._decimals = decimals

    def decimals(self) -> int:
        return self._decimals

    def compute_tranche_price(self, token_id: str) -> int:
        return one(self._decimals)


class CDRPricingStrategy:
    """Collateral-to-debt pricing of matured tranches."""

    def __init__(self, factory: BondFactory, decimals: int = PRICE_DECIMALS):
        self.factory = factory
        self._decimals = decimals

    def decimals(self) -> int:
        return self._decimals

    def compute_tranche_price(self, token_id: str) -> int:
        unit_price = one(self._decimals)
        tranche = self.factory.find_tranche(token_id)
        if tranche is None:
            return unit_price

        bond = self.factory.get_bond(tranche.bond_id)
        if not bond.is_mature:
            return unit_price

        ledger = self.factory.ledger
        supply = ledger.total_supply(token_id)
        if supply == 0:
            return unit_price
        backing = ledger.balance_of(bond.collateral_token, token_id)
        return backing * unit_price // supply
