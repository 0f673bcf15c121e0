"""
Rollover Vault Test Suite

Tests for vault share accounting, deployment into the perp and recovery of
deployed tranches.

Run with: pytest tests/test_vault.py -v

Copyright (c) 2026 Momentum. All rights reserved.
"""

import pytest

from conftest import mint_perps, step
from spot.hardening import (
    DeployedCountOverLimit,
    InsufficientDeployment,
    UnexpectedAsset,
)
from spot.vault import VaultState


def seed_vault(system, account, amount):
    system.fund(account, amount)
    return system.vault.deposit(account, amount)


# =============================================================================
# NAV
# =============================================================================

class TestShares:
    """Tests for vault deposits and redemptions."""

    def test_first_deposit_uses_initial_rate(self, system):
        assert seed_vault(system, "carol", 1000) == 10 ** 9
        assert system.vault.get_tvl() == 1000
        assert system.vault.total_supply() == 10 ** 9

    def test_later_deposits_are_pro_rata(self, system):
        seed_vault(system, "carol", 1000)
        assert seed_vault(system, "dave", 500) == 5 * 10 ** 8

    def test_mint_fee(self, make_system):
        system = make_system({"fees": {"vault_mint_fee_perc": 5 * 10 ** 6}})
        assert system.vault.compute_mint_amt(100) == 95 * 10 ** 6
        assert seed_vault(system, "carol", 100) == 95 * 10 ** 6

    def test_zero_amounts(self, system):
        assert system.vault.deposit("carol", 0) == 0
        assert system.vault.redeem("carol", 0) == []
        assert system.vault.compute_redemption_amts(10) == []

    def test_redeem_underlying_only(self, system):
        seed_vault(system, "carol", 1000)
        amounts = system.vault.redeem("carol", 10 ** 8)
        assert amounts == [("AMPL", 100)]
        assert system.ledger.balance_of("AMPL", "carol") == 100

    def test_redeem_burn_fee(self, make_system):
        system = make_system({"fees": {"vault_burn_fee_perc": 10 ** 7}})
        seed_vault(system, "carol", 1000)
        assert system.vault.redeem("carol", 10 ** 8) == [("AMPL", 90)]

    def test_redeem_includes_deployed_tranches(self, system):
        """Test redemption hands out a slice of every held asset, underlying first."""
        seed_vault(system, "carol", 1000)
        system.vault.deploy()

        amounts = system.vault.redeem("carol", 5 * 10 ** 8)

        assert amounts == [("AMPL", 0), ("BOND-1-T0", 100), ("BOND-1-T1", 400)]
        assert system.ledger.balance_of("BOND-1-T1", "carol") == 400
        assert system.vault.get_tvl() == 500

    def test_nav_per_share_never_drops_on_deposit(self, system):
        seed_vault(system, "carol", 1000)
        system.vault.deploy()
        for account, amount in (("dave", 7), ("erin", 333), ("frank", 1)):
            tvl, supply = system.vault.get_tvl(), system.vault.total_supply()
            seed_vault(system, account, amount)
            new_tvl, new_supply = system.vault.get_tvl(), system.vault.total_supply()
            assert new_tvl * supply >= tvl * new_supply


# =============================================================================
# DEPLOYMENT
# =============================================================================

class TestDeploy:
    """Tests for tranching idle underlying and rolling it into the perp."""

    def test_deploy_into_empty_perp(self, system):
        seed_vault(system, "carol", 1000)

        rolled = system.vault.deploy()

        assert rolled == [("BOND-1-T0", 0)]
        assert system.vault.deployed.assets() == ["BOND-1-T0", "BOND-1-T1"]
        assert system.vault.underlying_balance() == 0
        assert system.vault.get_tvl() == 1000
        assert system.vault.state is VaultState.IDLE

    def test_deploy_rolls_senior_into_perp(self, system):
        """Test ten units deployed after eviction roll the senior into the perp."""
        mint_perps(system, "alice", 200)
        for _ in range(3):
            step(system)
        seed_vault(system, "carol", 10)

        rolled = system.vault.deploy()

        assert rolled == [("BOND-4-T0", 2)]
        assert system.perp.reserve_balance("BOND-4-T0") == 2
        assert system.perp.reserve_balance("BOND-1-T0") == 198
        assert system.vault.deployed.assets() == ["BOND-1-T0", "BOND-4-T1"]
        assert system.ledger.balance_of("BOND-4-T1", "VSHARE") == 8
        assert system.vault.get_tvl() == 10
        assert system.perp.total_supply() == 200

    def test_nothing_to_deploy(self, system):
        with pytest.raises(InsufficientDeployment):
            system.vault.deploy()
        assert system.vault.state is VaultState.IDLE

    def test_min_deployment_floor(self, make_system):
        system = make_system({"vault": {"min_deployment_amt": 100}})
        seed_vault(system, "carol", 50)
        with pytest.raises(InsufficientDeployment):
            system.vault.deploy()

    def test_reserved_liquidity_not_deployed(self, make_system):
        system = make_system({"vault": {"min_underlying_bal": 300}})
        seed_vault(system, "carol", 1000)
        system.vault.deploy()
        assert system.vault.underlying_balance() == 300
        assert system.ledger.total_supply("BOND-1-T1") == 560

    def test_count_limit_rolls_back(self, make_system):
        """Test exceeding the deployed asset ceiling reverts the whole deploy."""
        system = make_system({"vault": {"max_deployed_count": 1}})
        seed_vault(system, "carol", 1000)

        with pytest.raises(DeployedCountOverLimit):
            system.vault.deploy()

        assert system.vault.underlying_balance() == 1000
        assert system.vault.deployed.assets() == []
        assert system.ledger.total_supply("BOND-1-T0") == 0
        assert len(system.perp.queue) == 0
        assert system.vault.state is VaultState.IDLE

    def test_dust_tranches_written_off(self, make_system):
        system = make_system({"vault": {"tranche_dust_amt": 10}})
        seed_vault(system, "carol", 40)
        system.vault.deploy()

        assert system.vault.deployed.assets() == ["BOND-1-T1"]
        assert system.vault.get_tvl() == 32


# =============================================================================
# RECOVERY
# =============================================================================

class TestRecover:
    """Tests for melding and redeeming deployed tranches."""

    def test_recover_melds_immature_set(self, system):
        seed_vault(system, "carol", 1000)
        system.vault.deploy()

        assert system.vault.recover() == 1000
        assert system.vault.deployed.assets() == []
        assert system.vault.underlying_balance() == 1000

    def test_recover_matured_tranche(self, system):
        mint_perps(system, "alice", 200)
        for _ in range(3):
            step(system)
        seed_vault(system, "carol", 10)
        system.vault.deploy()
        system.advance(400)

        assert system.vault.recover() == 2
        assert system.vault.deployed.assets() == ["BOND-4-T1"]
        assert system.vault.underlying_balance() == 2

    def test_recover_asset(self, system):
        seed_vault(system, "carol", 1000)
        system.vault.deploy()
        assert system.vault.recover_asset("BOND-1-T1") == 1000

    def test_recover_unknown_asset(self, system):
        with pytest.raises(UnexpectedAsset):
            system.vault.recover_asset("BOND-1-T0")

    def test_recover_and_redeploy(self, system):
        seed_vault(system, "carol", 1000)
        system.vault.deploy()
        step(system)

        rolled = system.vault.recover_and_redeploy()

        assert rolled == [("BOND-2-T0", 0)]
        assert system.vault.deployed.assets() == ["BOND-2-T0", "BOND-2-T1"]
        assert system.vault.get_tvl() == 1000

    def test_describe(self, system):
        seed_vault(system, "carol", 1000)
        state = system.vault.describe()
        assert state["state"] == "idle"
        assert state["underlying"] == 1000
        assert state["deployed"] == []
