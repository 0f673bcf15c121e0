"""
Bond factory, issuer, yield table and pricing tests.

Copyright (c) 2026 Momentum. All rights reserved.
"""

import pytest

from conftest import T0
from spot.bonds import (
    BondAlreadyMature,
    BondFactory,
    BondIssuer,
    BondNotMature,
    class_key_for,
    reduced_ratios,
)
from spot.fixed_point import one
from spot.hardening import UnacceptableParams, UnexpectedAsset
from spot.ledger import InsufficientBalance, TokenLedger
from spot.pricing import CDRPricingStrategy, UnitPricingStrategy
from spot.yields import TrancheClassYieldTable


@pytest.fixture
def ledger():
    return TokenLedger()


@pytest.fixture
def factory(ledger):
    return BondFactory(ledger)


@pytest.fixture
def bond(factory):
    return factory.create_bond("AMPL", [200, 800], T0 + 4000)


class TestBondFactory:
    """Tests for bond creation, deposits and maturity."""

    def test_create_assigns_ids(self, factory, bond):
        assert bond.bond_id == "BOND-1"
        assert bond.tranche_ids() == ["BOND-1-T0", "BOND-1-T1"]
        assert bond.senior_ratio == 200
        assert factory.bond_of("BOND-1-T1") is bond

    @pytest.mark.parametrize("ratios", [[1000], [0, 1000], [300, 600]])
    def test_invalid_ratios(self, factory, ratios):
        with pytest.raises(UnacceptableParams):
            factory.create_bond("AMPL", ratios, T0)

    def test_unknown_lookups(self, factory):
        with pytest.raises(UnexpectedAsset):
            factory.get_bond("BOND-9")
        with pytest.raises(UnexpectedAsset):
            factory.bond_of("AMPL")

    def test_deposit_mints_by_ratio(self, factory, ledger, bond):
        ledger.mint("AMPL", "alice", 1000)
        minted = factory.deposit(bond.bond_id, "alice", 1000)

        assert minted == [("BOND-1-T0", 200), ("BOND-1-T1", 800)]
        assert ledger.balance_of("AMPL", bond.bond_id) == 1000
        assert ledger.balance_of("BOND-1-T0", "alice") == 200

    def test_deposit_scales_after_rebase(self, factory, ledger, bond):
        """Test a later deposit mints in proportion to the rebased collateral."""
        ledger.mint("AMPL", "alice", 2000)
        factory.deposit(bond.bond_id, "alice", 1000)
        # positive rebase doubles the bond's collateral
        ledger.mint("AMPL", bond.bond_id, 1000)

        minted = factory.deposit(bond.bond_id, "alice", 1000)
        assert minted == [("BOND-1-T0", 100), ("BOND-1-T1", 400)]

    def test_deposit_without_balance(self, factory, bond):
        with pytest.raises(InsufficientBalance):
            factory.deposit(bond.bond_id, "alice", 1)

    def test_maturity_waterfall(self, factory, ledger, bond):
        ledger.mint("AMPL", "alice", 1000)
        factory.deposit(bond.bond_id, "alice", 1000)
        # negative rebase halves the collateral
        ledger.burn("AMPL", bond.bond_id, 500)

        with pytest.raises(BondNotMature):
            factory.mature(bond.bond_id, T0)
        factory.mature(bond.bond_id, T0 + 4000)

        assert ledger.balance_of("AMPL", "BOND-1-T0") == 200
        assert ledger.balance_of("AMPL", "BOND-1-T1") == 300
        assert factory.tranche_value("BOND-1-T1", 400) == 150

        assert factory.redeem_mature("BOND-1-T1", "alice", 800) == 300
        assert ledger.balance_of("AMPL", "alice") == 300

        with pytest.raises(BondAlreadyMature):
            factory.deposit(bond.bond_id, "alice", 0)

    def test_immature_value_follows_waterfall(self, factory, ledger, bond):
        ledger.mint("AMPL", "alice", 1000)
        factory.deposit(bond.bond_id, "alice", 1000)
        ledger.burn("AMPL", bond.bond_id, 900)

        assert factory.tranche_value("BOND-1-T0", 200) == 100
        assert factory.tranche_value("BOND-1-T1", 800) == 0

    def test_redeem_requires_maturity(self, factory, ledger, bond):
        ledger.mint("AMPL", "alice", 1000)
        factory.deposit(bond.bond_id, "alice", 1000)
        with pytest.raises(BondNotMature):
            factory.redeem_mature("BOND-1-T0", "alice", 1)


class TestProportionalRedemption:

    def test_redeemable_set(self, factory, bond):
        assert reduced_ratios([200, 800]) == [1, 4]
        assert factory.redeemable_set(bond, [150, 400]) == [100, 400]
        assert factory.redeemable_set(bond, [0, 400]) == [0, 0]

    def test_redeem_proportional_set(self, factory, ledger, bond):
        ledger.mint("AMPL", "alice", 1000)
        factory.deposit(bond.bond_id, "alice", 1000)

        assert factory.redeem(bond.bond_id, "alice", [100, 400]) == 500
        assert ledger.balance_of("AMPL", "alice") == 500
        assert ledger.total_supply("BOND-1-T0") == 100

    def test_redeem_rejects_skewed_amounts(self, factory, ledger, bond):
        ledger.mint("AMPL", "alice", 1000)
        factory.deposit(bond.bond_id, "alice", 1000)
        with pytest.raises(UnacceptableParams):
            factory.redeem(bond.bond_id, "alice", [100, 300])
        with pytest.raises(UnacceptableParams):
            factory.redeem(bond.bond_id, "alice", [100])


class TestBondIssuer:
    """Tests for windowed bond issuance."""

    def test_one_bond_per_window(self, factory):
        issuer = BondIssuer(factory, "AMPL", [200, 800], 4800, 1200)
        first = issuer.issue(T0)
        assert first.maturity == T0 + 4000
        assert issuer.issue(T0 + 399) is None
        second = issuer.issue(T0 + 400)
        assert second.maturity == T0 + 5200
        assert issuer.get_last_bond() is second
        assert issuer.is_instance(first)
        assert issuer.issued_count == 2

    def test_mature_active(self, factory, ledger):
        issuer = BondIssuer(factory, "AMPL", [200, 800], 4800, 1200)
        bond = issuer.issue(T0)
        assert issuer.mature_active(T0 + 3999) == []
        assert issuer.mature_active(T0 + 4000) == [bond.bond_id]
        assert bond.is_mature


class TestYieldTable:

    def test_compute_yield(self, bond):
        table = TrancheClassYieldTable()
        assert table.compute_yield(bond, 0) == 0

        table.update_defined_yield(bond.class_key, [one(6), 0])
        assert table.compute_yield(bond, 0) == one(6)
        assert table.compute_yield(bond, 1) == 0
        assert bond.class_key == class_key_for("AMPL", [200, 800])

    def test_negative_yield_rejected(self, bond):
        with pytest.raises(UnacceptableParams):
            TrancheClassYieldTable().update_defined_yield(bond.class_key, [-1, 0])

    def test_used_class_warns_or_freezes(self, bond, caplog):
        table = TrancheClassYieldTable()
        table.update_defined_yield(bond.class_key, [one(6), 0])
        table.mark_used(bond.class_key)

        with caplog.at_level("WARNING"):
            table.update_defined_yield(bond.class_key, [one(6) // 2, 0])
        assert any("Overwriting yields" in r.getMessage() for r in caplog.records)

        frozen = TrancheClassYieldTable(freeze_used=True)
        frozen.mark_used(bond.class_key)
        with pytest.raises(UnacceptableParams):
            frozen.update_defined_yield(bond.class_key, [one(6), 0])

    def test_empty_list_removes_entry(self, bond):
        table = TrancheClassYieldTable()
        table.update_defined_yield(bond.class_key, [one(6), 0])
        table.update_defined_yield(bond.class_key, [])
        assert table.yields_for(bond.class_key) == []


class TestPricing:

    def test_unit_pricing(self):
        assert UnitPricingStrategy().compute_tranche_price("anything") == one(18)

    def test_cdr_pricing_after_maturity(self, factory, ledger, bond):
        strategy = CDRPricingStrategy(factory)
        ledger.mint("AMPL", "alice", 1000)
        factory.deposit(bond.bond_id, "alice", 1000)
        assert strategy.compute_tranche_price("BOND-1-T1") == one(18)

        ledger.burn("AMPL", bond.bond_id, 600)
        factory.mature(bond.bond_id, T0 + 4000)
        # junior receives 200 collateral for 800 units
        assert strategy.compute_tranche_price("BOND-1-T1") == one(18) // 4
        assert strategy.compute_tranche_price("BOND-1-T0") == one(18)
