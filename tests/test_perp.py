"""
Perpetual Tranche Test Suite

Tests for the claim issuance engine:
- Deposits against the minting bond and mint fees
- Queue-ordered redemption, burn fees and icebox redemption
- Rollover of aged-out reserve assets and rollover rewards
- Matured tranche recovery and atomic rollback

Run with: pytest tests/test_perp.py -v

Copyright (c) 2026 Momentum. All rights reserved.
"""

import pytest

from conftest import T0, mint_perps, step
from spot.hardening import (
    ReentrancyViolation,
    UnacceptableBond,
    UnacceptableDeposit,
    UnacceptableRedemption,
    UnacceptableRollover,
    UnexpectedAsset,
)
from spot.ledger import InsufficientBalance


def fund_tranches(system, account, collateral):
    """Tranche ``collateral`` into the current minting bond for ``account``."""
    system.fund(account, collateral)
    return dict(system.tranche(account, collateral))


# =============================================================================
# DEPOSIT
# =============================================================================

class TestDeposit:
    """Tests for minting claims against the minting bond."""

    def test_unit_deposit_mints_one_to_one(self, system):
        """Test 200 senior units at yield 1.0 and price 1.0 mint 200 claims."""
        senior = mint_perps(system, "alice", 200)

        assert senior == "BOND-1-T0"
        assert system.ledger.balance_of("SPOT", "alice") == 200
        assert system.perp.total_supply() == 200
        assert system.perp.reserve_assets() == ["BOND-1-T0"]
        assert system.perp.reserve_balance("BOND-1-T0") == 200
        assert system.perp.get_tvl() == 200

    def test_compute_mint_amt_preview(self, system):
        assert system.perp.compute_mint_amt("BOND-1-T0", 200) == 200
        assert system.perp.compute_mint_amt("BOND-1-T1", 800) == 0
        assert system.perp.compute_mint_amt("BOND-1-T0", 0) == 0

    def test_mint_fee_retained_by_perp(self, make_system):
        """Test a 1% mint fee moves claims from the depositor to the perp account."""
        system = make_system({"fees": {"perp_mint_fee_perc": 10 ** 6}})
        mint_perps(system, "alice", 200)

        assert system.ledger.balance_of("SPOT", "alice") == 198
        assert system.ledger.balance_of("SPOT", "SPOT") == 2
        assert system.perp.total_supply() == 200

    def test_zero_yield_tranche_rejected(self, system):
        fund_tranches(system, "alice", 1000)
        with pytest.raises(UnacceptableDeposit):
            system.perp.deposit("alice", "BOND-1-T1", 800)

    def test_tranche_of_older_bond_rejected(self, system):
        """Test only tranches of the current minting bond are accepted."""
        fund_tranches(system, "alice", 1000)
        step(system)

        with pytest.raises(UnacceptableDeposit):
            system.perp.deposit("alice", "BOND-1-T0", 100)
        assert system.perp.total_supply() == 0
        assert system.ledger.balance_of("BOND-1-T0", "alice") == 200

    def test_zero_amount_is_noop(self, system):
        assert system.perp.deposit("alice", "BOND-1-T0", 0) == (0, 0)
        assert system.perp.reserve_count() == 0

    def test_failed_transfer_rolls_back(self, system):
        """Test a deposit without tranche balance leaves no trace."""
        with pytest.raises(InsufficientBalance):
            system.perp.deposit("alice", "BOND-1-T0", 10)
        assert system.perp.total_supply() == 0
        assert system.perp.reserve_count() == 0
        assert not system.yields.is_used(system.issuer_class_key())

    def test_deposit_marks_class_used(self, system):
        mint_perps(system, "alice", 10)
        assert system.yields.is_used(system.issuer_class_key())

    def test_tranche_amount_for_claim_rounds_up(self, system):
        assert system.perp.compute_tranche_amt_for_claim("BOND-1-T0", 100) == 100
        system.yields.update_defined_yield(system.issuer_class_key(), [300_000, 0])
        assert system.perp.compute_tranche_amt_for_claim("BOND-1-T0", 100) == 334


# =============================================================================
# REDEMPTION
# =============================================================================

class TestRedeem:
    """Tests for queue-ordered redemption."""

    def test_redeem_walks_queue_head_first(self, system):
        """Test a redemption larger than the head exhausts and dequeues it."""
        mint_perps(system, "alice", 100)
        step(system)
        mint_perps(system, "alice", 100)

        burned, fee, payouts, remainder = system.perp.redeem("alice", 150)

        assert (burned, fee, remainder) == (150, 0, 0)
        assert payouts == [("BOND-1-T0", 100), ("BOND-2-T0", 50)]
        assert system.perp.queue.head.bond_id == "BOND-2"
        assert system.perp.queue.was_evicted("BOND-1")
        assert system.perp.reserve_assets() == ["BOND-2-T0"]
        assert system.ledger.balance_of("SPOT", "alice") == 50

    def test_exhausted_minting_bond_stops_accepting_deposits(self, system):
        """Test over-redeeming the only bond evicts it for minting too."""
        mint_perps(system, "alice", 100)
        system.fund("bob", 500)
        system.factory.deposit("BOND-1", "bob", 500)

        burned, _, payouts, remainder = system.perp.redeem("alice", 150)

        assert (burned, remainder) == (100, 50)
        assert payouts == [("BOND-1-T0", 100)]
        assert len(system.perp.queue) == 0
        with pytest.raises(UnacceptableBond):
            system.perp.get_minting_bond()
        with pytest.raises(UnacceptableBond):
            system.perp.deposit("bob", "BOND-1-T0", 100)
        assert system.ledger.balance_of("SPOT", "bob") == 0
        assert system.perp.reserve_assets() == []

        step(system)
        assert system.perp.get_minting_bond().bond_id == "BOND-2"

    def test_preview_matches_redeem(self, system):
        mint_perps(system, "alice", 100)
        step(system)
        mint_perps(system, "alice", 100)

        preview = system.perp.compute_redemption_amts(150)
        _, _, payouts, remainder = system.perp.redeem("alice", 150)
        assert preview == (payouts, remainder)

    def test_redemption_conserves_claims(self, system):
        """Test claims paid out plus the remainder equal the request."""
        for _ in range(3):
            mint_perps(system, "alice", 70)
            step(system)

        for amount in (1, 33, 100, 76):
            _, _, payouts, remainder = system.perp.redeem("alice", amount)
            paid = sum(system.perp.compute_mint_amt(asset, amt) for asset, amt in payouts)
            assert paid + remainder == amount

    def test_partial_yield_leaves_remainder(self, system):
        """Test overwriting yields after use halves what the reserve can cover."""
        mint_perps(system, "alice", 100)
        system.yields.update_defined_yield(system.issuer_class_key(), [500_000, 0])

        burned, _, payouts, remainder = system.perp.redeem("alice", 100)

        assert (burned, remainder) == (50, 50)
        assert payouts == [("BOND-1-T0", 100)]
        assert len(system.perp.queue) == 0
        assert system.ledger.balance_of("SPOT", "alice") == 50

    def test_burn_fee(self, make_system):
        system = make_system({"fees": {"perp_burn_fee_perc": 10 ** 7}})
        mint_perps(system, "alice", 100)

        burned, fee, payouts, _ = system.perp.redeem("alice", 50)

        assert (burned, fee) == (50, 5)
        assert payouts == [("BOND-1-T0", 50)]
        assert system.ledger.balance_of("SPOT", "alice") == 45
        assert system.ledger.balance_of("SPOT", "SPOT") == 5

    def test_empty_queue_returns_full_remainder(self, system):
        mint_perps(system, "alice", 100)
        system.advance(2900)

        assert system.perp.redeem("alice", 40) == (0, 0, [], 40)
        assert system.ledger.balance_of("SPOT", "alice") == 100

    def test_zero_amount(self, system):
        assert system.perp.redeem("alice", 0) == (0, 0, [], 0)
        assert system.perp.compute_redemption_amts(0) == ([], 0)

    def test_redeem_more_than_held(self, system):
        mint_perps(system, "alice", 100)
        with pytest.raises(InsufficientBalance):
            system.perp.redeem("bob", 10)
        assert system.perp.reserve_balance("BOND-1-T0") == 100
        assert system.perp.queue.contains("BOND-1")


class TestIcebox:
    """Tests for single-asset redemption once the queue is empty."""

    def test_requires_empty_queue(self, system):
        mint_perps(system, "alice", 100)
        with pytest.raises(UnacceptableRedemption):
            system.perp.redeem_icebox("alice", "BOND-1-T0", 10)

    def test_redeem_evicted_tranche(self, system):
        """Test claims redeem against an evicted tranche after the queue drains."""
        mint_perps(system, "alice", 100)
        system.advance(2900)

        burned, fee, payouts, remainder = system.perp.redeem_icebox("alice", "BOND-1-T0", 40)

        assert (burned, fee, remainder) == (40, 0, 0)
        assert payouts == [("BOND-1-T0", 40)]
        assert system.perp.reserve_balance("BOND-1-T0") == 60

    def test_over_redemption_capped_by_balance(self, system):
        mint_perps(system, "alice", 100)
        system.ledger.transfer("SPOT", "alice", "bob", 50)
        system.perp.redeem_icebox("alice", "BOND-1-T0", 20, now=T0 + 2900)
        system.ledger.burn("BOND-1-T0", "SPOT", 70)

        burned, _, payouts, remainder = system.perp.redeem_icebox("bob", "BOND-1-T0", 50, now=T0 + 2900)
        assert payouts == [("BOND-1-T0", 10)]
        assert (burned, remainder) == (10, 40)

    def test_unknown_asset(self, system):
        mint_perps(system, "alice", 100)
        system.advance(2900)
        with pytest.raises(UnexpectedAsset):
            system.perp.redeem_icebox("alice", "BOND-9-T0", 10)

    def test_zero_amount_short_circuits(self, system):
        assert system.perp.redeem_icebox("alice", "BOND-1-T0", 0) == (0, 0, [], 0)


# =============================================================================
# ROLLOVER
# =============================================================================

@pytest.fixture
def aged_system(make_system):
    """Alice minted 200 perps at T0; the clock is at T0 + 3600 with BOND-4 issued."""
    def _make(overrides=None):
        system = make_system(overrides)
        mint_perps(system, "alice", 200)
        for _ in range(3):
            step(system)
        return system
    return _make


class TestRollover:
    """Tests for swapping fresh tranches for aged-out reserve assets."""

    def test_rollover_evicted_tranche(self, aged_system):
        """Test fresh seniors swap one-to-one for the evicted head tranche."""
        system = aged_system()
        minted = fund_tranches(system, "bob", 300)
        assert minted["BOND-4-T0"] == 60

        assert system.perp.get_reserve_tokens_up_for_rollover() == ["BOND-1-T0"]
        out, fee = system.perp.rollover("bob", "BOND-4-T0", "BOND-1-T0", 60)

        assert (out, fee) == (60, 0)
        assert system.ledger.balance_of("BOND-1-T0", "bob") == 60
        assert system.perp.reserve_balance("BOND-1-T0") == 140
        assert system.perp.reserve_balance("BOND-4-T0") == 60
        assert system.perp.total_supply() == 200

    def test_compute_rollover_amt_caps_output(self, aged_system):
        system = aged_system()
        fund_tranches(system, "bob", 1500)
        system.perp.get_burning_bond()
        assert system.perp.compute_rollover_amt("BOND-4-T0", "BOND-1-T0", 300, 10 ** 9) == (200, 200)
        assert system.perp.compute_rollover_amt("BOND-4-T0", "BOND-1-T0", 50, 10 ** 9) == (50, 50)
        assert system.perp.compute_rollover_amt("BOND-4-T1", "BOND-1-T0", 50, 10 ** 9) == (0, 0)

    def test_rollover_reward_paid_from_perp_account(self, aged_system):
        system = aged_system({"fees": {"perp_rollover_fee_perc": -(10 ** 7)}})
        fund_tranches(system, "bob", 300)
        system.ledger.transfer("SPOT", "alice", "SPOT", 10)

        out, fee = system.perp.rollover("bob", "BOND-4-T0", "BOND-1-T0", 60)

        assert (out, fee) == (60, -6)
        assert system.ledger.balance_of("SPOT", "bob") == 6
        assert system.ledger.balance_of("SPOT", "SPOT") == 4

    def test_unfunded_reward_rolls_back(self, aged_system):
        """Test a reward the perp cannot pay reverts the whole rollover."""
        system = aged_system({"fees": {"perp_rollover_fee_perc": -(10 ** 7)}})
        fund_tranches(system, "bob", 300)

        with pytest.raises(InsufficientBalance):
            system.perp.rollover("bob", "BOND-4-T0", "BOND-1-T0", 60)

        assert system.ledger.balance_of("BOND-4-T0", "bob") == 60
        assert system.perp.reserve_assets() == ["BOND-1-T0"]
        assert system.perp.reserve_balance("BOND-1-T0") == 200

    def test_queued_asset_not_up_for_rollover(self, system):
        mint_perps(system, "alice", 200)
        step(system)
        fund_tranches(system, "bob", 300)

        assert system.perp.get_reserve_tokens_up_for_rollover() == []
        with pytest.raises(UnacceptableRollover):
            system.perp.rollover("bob", "BOND-2-T0", "BOND-1-T0", 60)

    def test_rollover_input_must_be_minting_bond(self, aged_system):
        system = aged_system()
        with pytest.raises(UnacceptableRollover):
            system.perp.rollover("alice", "BOND-1-T1", "BOND-1-T0", 10)

    def test_rollover_into_itself(self, aged_system):
        system = aged_system()
        fund_tranches(system, "bob", 300)
        with pytest.raises(UnacceptableRollover):
            system.perp.rollover("bob", "BOND-4-T0", "BOND-4-T0", 10)

    def test_zero_yield_input(self, aged_system):
        system = aged_system()
        fund_tranches(system, "bob", 300)
        with pytest.raises(UnacceptableRollover):
            system.perp.rollover("bob", "BOND-4-T1", "BOND-1-T0", 10)

    def test_rollover_exceeding_reserve(self, aged_system):
        system = aged_system()
        fund_tranches(system, "bob", 1500)
        with pytest.raises(UnacceptableRollover):
            system.perp.rollover("bob", "BOND-4-T0", "BOND-1-T0", 300)


# =============================================================================
# MAINTENANCE AND VIEWS
# =============================================================================

class TestMaintenance:
    """Tests for matured recovery, burning and views."""

    def test_recover_matured_into_collateral(self, system):
        mint_perps(system, "alice", 100)
        system.advance(4000)

        recovered = system.perp.recover_matured()

        assert recovered == [("BOND-1-T0", 100)]
        assert system.perp.reserve_assets() == ["AMPL"]
        assert system.perp.get_tvl() == 100
        assert system.perp.get_reserve_tokens_up_for_rollover() == ["AMPL"]

    def test_icebox_against_collateral(self, system):
        mint_perps(system, "alice", 100)
        system.advance(4000)
        system.perp.recover_matured()

        burned, _, payouts, _ = system.perp.redeem_icebox("alice", "AMPL", 30)
        assert burned == 30
        assert payouts == [("AMPL", 30)]
        assert system.ledger.balance_of("AMPL", "alice") == 30

    def test_recover_skips_queued_bonds(self, system):
        mint_perps(system, "alice", 100)
        assert system.perp.recover_matured() == []

    def test_burn(self, system):
        mint_perps(system, "alice", 100)
        system.perp.burn("alice", 40)
        assert system.perp.total_supply() == 60

    def test_price(self, system):
        assert system.perp.get_price() == 10 ** 18
        mint_perps(system, "alice", 100)
        system.perp.burn("alice", 50)
        assert system.perp.get_price() == 2 * 10 ** 18

    def test_deviation_ratio_without_vault(self, system):
        system.perp.update_vault(None)
        assert system.perp.deviation_ratio() == 10 ** 8

    def test_describe(self, system):
        mint_perps(system, "alice", 100)
        state = system.perp.describe()
        assert state["queue"] == ["BOND-1"]
        assert state["minting_bond"] == "BOND-1"
        assert state["reserve"] == [{"asset": "BOND-1-T0", "balance": 100}]

    def test_update_window(self, system):
        system.perp.update_tolerable_tranche_maturity(0, 10_000)
        assert system.perp.queue.max_maturity_sec == 10_000


class ReentrantPricing:
    """Pricing strategy that calls back into the perp."""

    def __init__(self, perp):
        self.perp = perp

    def decimals(self):
        return 18

    def compute_tranche_price(self, token_id):
        self.perp.redeem("alice", 1)
        return 10 ** 18


class TestAtomicity:
    """Tests for reentrancy rejection and rollback."""

    def test_reentrant_collaborator_rejected(self, system):
        mint_perps(system, "alice", 50)
        system.perp.update_pricing(ReentrantPricing(system.perp))
        fund_tranches(system, "alice", 500)

        with pytest.raises(ReentrancyViolation):
            system.perp.deposit("alice", "BOND-1-T0", 100)

        assert system.perp.total_supply() == 50
        assert system.ledger.balance_of("BOND-1-T0", "alice") == 100
        assert not system.perp.busy
