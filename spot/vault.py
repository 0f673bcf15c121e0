"""
Rollover Vault

Holds raw collateral ("underlying") and issues vault shares against it.
Periodically the vault tranches its idle underlying into the perp's minting
bond, rolls the perp-eligible tranches into the perp in exchange for
aged-out reserve assets, and later recovers matured (or meldable) tranches
back into underlying.

State Machine:
    IDLE -> DEPLOYING -> IDLE
    IDLE -> RECOVERING -> IDLE

NAV:
    tvl          = underlying balance + collateral value of deployed tranches
    mint(amt)    = amt * supply / tvl          (initial_rate when supply is 0)
    redeem(sh)   = sh / supply of every held asset, underlying first

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from spot.bonds import BondBatch, BondFactory
from spot.config import TRANCHE_RATIO_GRANULARITY, VaultConfig, get_config
from spot.fixed_point import mul_div, mul_div_up, mul_perc, one
from spot.hardening import (
    AtomicComponent,
    DeployedCountOverLimit,
    InsufficientDeployment,
    InvariantChecker,
    LiquidityOutOfBounds,
    UnacceptableSwap,
    UnexpectedAsset,
    Validators,
    atomic_operation,
)
from spot.interfaces import AssetBook, FeePolicyLike
from spot.observability import SpotLayer, get_logger, timed_operation
from spot.perp import PerpetualTranche
from spot.reserve import ReserveLedger

logger = get_logger("vault", SpotLayer.VAULT)


class VaultState(Enum):
    IDLE = "idle"
    DEPLOYING = "deploying"
    RECOVERING = "recovering"


VALID_TRANSITIONS: Dict[Enum, Set[Enum]] = {
    VaultState.IDLE: {VaultState.DEPLOYING, VaultState.RECOVERING},
    VaultState.DEPLOYING: {VaultState.IDLE},
    VaultState.RECOVERING: {VaultState.IDLE},
}

Amounts = List[Tuple[str, int]]


class RolloverVault(AtomicComponent):
    """
    Share-issuing vault that keeps the perp's reserve rolling.

    The vault's ledger account and its share token share the same id
    (``share_token``). Underlying is read straight from the ledger; the
    ``deployed`` reserve tracks tranches only.
    """

    def __init__(
        self,
        ledger: AssetBook,
        factory: BondFactory,
        perp: PerpetualTranche,
        fee_policy: FeePolicyLike,
        config: Optional[VaultConfig] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        config = config or get_config().vault
        self.ledger = ledger
        self.factory = factory
        self.perp = perp
        self.fee_policy = fee_policy
        self.underlying = perp.collateral_token

        self.share_token = Validators.validate_id(config.share_token.get(), "share_token")
        self.address = self.share_token
        self.initial_rate = config.initial_rate.get()
        self.min_deployment_amt = config.min_deployment_amt.get()
        self.min_underlying_bal = config.min_underlying_bal.get()
        self.min_underlying_perc = config.min_underlying_perc.get()
        self.max_deployed_count = config.max_deployed_count.get()

        self.deployed = ReserveLedger(
            lambda asset: self.ledger.balance_of(asset, self.address),
            dust_threshold=config.tranche_dust_amt.get(),
            name=f"{self.share_token}-deployed",
        )
        self._state = VaultState.IDLE
        self._clock = clock or (lambda: int(time.time()))
        self._lock = ledger.lock  # type: ignore[attr-defined]

    # =========================================================================
    # ATOMIC PARTICIPATION
    # =========================================================================

    def atomic_participants(self) -> List[Any]:
        participants: List[Any] = [self]
        for p in self.perp.atomic_participants():
            if not any(p is q for q in participants):
                participants.append(p)
        return participants

    def snapshot(self) -> Tuple[List[str], VaultState]:
        return self.deployed.snapshot(), self._state

    def restore(self, state: Tuple[List[str], VaultState]) -> None:
        deployed, self._state = state
        self.deployed.restore(deployed)

    @property
    def state(self) -> VaultState:
        return self._state

    def _transition(self, target: VaultState) -> None:
        InvariantChecker.check_state_transition(self._state, target, VALID_TRANSITIONS)
        self._state = target

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _now(self, now: Optional[int]) -> int:
        return self._clock() if now is None else now

    def _balance(self, asset: str) -> int:
        return self.ledger.balance_of(asset, self.address)

    def underlying_balance(self) -> int:
        return self._balance(self.underlying)

    def _sync(self, asset: str) -> None:
        if asset != self.underlying:
            self.deployed.sync(asset)

    def _perc_one(self) -> int:
        return one(self.fee_policy.decimals())

    def _reserved_underlying(self) -> int:
        perc_floor = mul_div(self.get_tvl(), self.min_underlying_perc, self._perc_one())
        return max(self.min_underlying_bal, perc_floor)

    def _check_liquidity(self) -> None:
        balance = self.underlying_balance()
        if balance < self.min_underlying_bal:
            raise LiquidityOutOfBounds(
                f"Underlying balance {balance} below minimum {self.min_underlying_bal}"
            )
        if balance * self._perc_one() < self.get_tvl() * self.min_underlying_perc:
            raise LiquidityOutOfBounds(
                f"Underlying balance {balance} below {self.min_underlying_perc} of TVL"
            )

    def _perp_yield(self, bond: BondBatch, seniority: int) -> int:
        return self.perp.yields.compute_yield(bond, seniority)

    # =========================================================================
    # DEPLOYMENT
    # =========================================================================

    def _rollover(self, tranche_id: str, amount: int, now: int) -> int:
        """Roll up to ``amount`` of ``tranche_id`` into the perp; returns the amount rolled."""
        remaining = amount
        for target in self.perp.get_reserve_tokens_up_for_rollover(now):
            if remaining == 0:
                break
            if target == tranche_id:
                continue
            in_amt, out_amt = self.perp.compute_rollover_amt(
                tranche_id, target, remaining, self.perp.reserve_balance(target),
            )
            if in_amt == 0 or out_amt == 0:
                continue
            self.perp.rollover(self.address, tranche_id, target, in_amt, now)
            self._sync(target)
            remaining -= in_amt
        self._sync(tranche_id)
        return amount - remaining

    def _deploy(self, now: int) -> List[Tuple[str, int]]:
        self._transition(VaultState.DEPLOYING)
        deployable = self.underlying_balance() - self._reserved_underlying()
        if deployable <= 0 or deployable < self.min_deployment_amt:
            raise InsufficientDeployment(
                f"Deployable underlying {deployable} below floor {self.min_deployment_amt}"
            )

        bond = self.perp.get_minting_bond(now)
        minted = dict(self.factory.deposit(bond.bond_id, self.address, deployable))
        self.perp.get_burning_bond(now)

        rolled = []
        for tranche in bond.tranches:
            amount = minted[tranche.token_id]
            if amount > 0 and self._perp_yield(bond, tranche.seniority) > 0:
                rolled.append((tranche.token_id, self._rollover(tranche.token_id, amount, now)))
            self._sync(tranche.token_id)

        if len(self.deployed) > self.max_deployed_count:
            raise DeployedCountOverLimit(
                f"{len(self.deployed)} deployed assets exceed limit {self.max_deployed_count}"
            )
        self._transition(VaultState.IDLE)
        logger.info("Deployed", bond_id=bond.bond_id, amount=deployable, rolled=rolled)
        return rolled

    @timed_operation(logger, "vault.deploy")
    @atomic_operation
    def deploy(self, now: Optional[int] = None) -> List[Tuple[str, int]]:
        """Tranche idle underlying and roll eligible tranches into the perp."""
        return self._deploy(self._now(now))

    # =========================================================================
    # RECOVERY
    # =========================================================================

    def _meld(self, bond: BondBatch) -> int:
        """Redeem the largest proportional set of immature tranches held."""
        balances = [self._balance(t) for t in bond.tranche_ids()]
        amounts = self.factory.redeemable_set(bond, balances)
        if sum(amounts) == 0:
            return 0
        payout = self.factory.redeem(bond.bond_id, self.address, amounts)
        for token_id in bond.tranche_ids():
            self._sync(token_id)
        return payout

    def _recover_tranche(self, asset: str, now: int) -> int:
        bond = self.factory.bond_of(asset)
        if not self.factory.is_due(bond, now):
            return self._meld(bond)
        self.factory.mature(bond.bond_id, now)
        payout = 0
        balance = self._balance(asset)
        if balance > 0:
            payout = self.factory.redeem_mature(asset, self.address, balance)
        self._sync(asset)
        return payout

    def _recover(self, now: int) -> int:
        self._transition(VaultState.RECOVERING)
        recovered = 0
        for asset in self.deployed.assets():
            if self.deployed.contains(asset):
                recovered += self._recover_tranche(asset, now)
        self._transition(VaultState.IDLE)
        logger.info("Recovered", underlying=recovered, deployed=len(self.deployed))
        return recovered

    @timed_operation(logger, "vault.recover")
    @atomic_operation
    def recover(self, now: Optional[int] = None) -> int:
        """Turn matured and meldable deployed tranches back into underlying."""
        return self._recover(self._now(now))

    @timed_operation(logger, "vault.recover_asset")
    @atomic_operation
    def recover_asset(self, asset: str, now: Optional[int] = None) -> int:
        """Recover a single deployed tranche."""
        if not self.deployed.contains(asset) or self.factory.find_tranche(asset) is None:
            raise UnexpectedAsset(f"{asset} is not a deployed tranche")
        self._transition(VaultState.RECOVERING)
        recovered = self._recover_tranche(asset, self._now(now))
        self._transition(VaultState.IDLE)
        return recovered

    @timed_operation(logger, "vault.recover_and_redeploy")
    @atomic_operation
    def recover_and_redeploy(self, now: Optional[int] = None) -> List[Tuple[str, int]]:
        now = self._now(now)
        self._recover(now)
        return self._deploy(now)

    # =========================================================================
    # NAV
    # =========================================================================

    def get_tvl(self) -> int:
        deployed_value = self.deployed.aggregate_value(self.factory.tranche_value)
        return self.underlying_balance() + deployed_value

    def total_supply(self) -> int:
        return self.ledger.total_supply(self.share_token)

    def compute_mint_amt(self, underlying_amt: int) -> int:
        """Shares minted for ``underlying_amt``, net of the vault mint fee."""
        Validators.validate_amount(underlying_amt)
        supply = self.total_supply()
        if supply == 0:
            gross = underlying_amt * self.initial_rate
        else:
            gross = mul_div(underlying_amt, supply, self.get_tvl())
        fee = mul_perc(gross, self.fee_policy.compute_vault_mint_fee_perc(), self.fee_policy.decimals())
        return gross - fee

    def compute_redemption_amts(self, shares: int) -> Amounts:
        """Pro-rata slice of every held asset, underlying first, net of the burn fee."""
        Validators.validate_amount(shares)
        supply = self.total_supply()
        if shares == 0 or supply == 0:
            return []
        fee = mul_perc(shares, self.fee_policy.compute_vault_burn_fee_perc(), self.fee_policy.decimals())
        net = shares - fee
        assets = [self.underlying] + self.deployed.assets()
        return [(asset, mul_div(self._balance(asset), net, supply)) for asset in assets]

    @timed_operation(logger, "vault.deposit")
    @atomic_operation
    def deposit(self, caller: str, amount: int) -> int:
        """Deposit underlying for vault shares."""
        Validators.validate_id(caller, "caller")
        Validators.validate_amount(amount)
        if amount == 0:
            return 0
        shares = self.compute_mint_amt(amount)
        if shares == 0:
            return 0
        self.ledger.transfer(self.underlying, caller, self.address, amount)
        self.ledger.mint(self.share_token, caller, shares)
        logger.info("Vault deposit", caller=caller, amount=amount, shares=shares)
        return shares

    @timed_operation(logger, "vault.redeem")
    @atomic_operation
    def redeem(self, caller: str, shares: int) -> Amounts:
        """Burn shares for a pro-rata slice of the vault's assets."""
        Validators.validate_id(caller, "caller")
        Validators.validate_amount(shares)
        if shares == 0:
            return []
        amounts = self.compute_redemption_amts(shares)
        self.ledger.burn(self.share_token, caller, shares)
        for asset, amount in amounts:
            if amount > 0:
                self.ledger.transfer(asset, self.address, caller, amount)
            self._sync(asset)
        logger.info("Vault redeem", caller=caller, shares=shares, assets=len(amounts))
        return amounts

    # =========================================================================
    # SWAPS
    # =========================================================================

    def _check_swap_fees(self, perp_fee_perc: int, vault_fee_perc: int) -> None:
        if perp_fee_perc + vault_fee_perc >= self._perc_one():
            raise UnacceptableSwap(
                f"Swap fees {perp_fee_perc} + {vault_fee_perc} reach 100%"
            )

    def compute_underlying_to_perp_swap_amt(self, underlying_amt: int) -> Tuple[int, int, int]:
        """``(perp_out, perp_fee, vault_fee)`` for swapping ``underlying_amt``."""
        Validators.validate_amount(underlying_amt)
        perp_fee_perc, vault_fee_perc = self.fee_policy.compute_underlying_to_perp_swap_fee_percs(
            self.perp.deviation_ratio(),
        )
        self._check_swap_fees(perp_fee_perc, vault_fee_perc)

        perp_supply = self.perp.total_supply()
        if perp_supply == 0:
            gross = underlying_amt
        else:
            gross = mul_div(underlying_amt, perp_supply, self.perp.get_tvl())
        decimals = self.fee_policy.decimals()
        perp_fee = mul_perc(gross, perp_fee_perc, decimals)
        vault_fee = mul_perc(gross, vault_fee_perc, decimals)
        return gross - perp_fee - vault_fee, perp_fee, vault_fee

    def compute_perp_to_underlying_swap_amt(self, perp_amt: int) -> Tuple[int, int, int]:
        """``(underlying_out, perp_fee, vault_fee)``; the perp fee is in perps."""
        Validators.validate_amount(perp_amt)
        perp_fee_perc, vault_fee_perc = self.fee_policy.compute_perp_to_underlying_swap_fee_percs(
            self.perp.deviation_ratio(),
        )
        self._check_swap_fees(perp_fee_perc, vault_fee_perc)

        perp_supply = self.perp.total_supply()
        if perp_supply == 0:
            return 0, 0, 0
        decimals = self.fee_policy.decimals()
        gross = mul_div(perp_amt, self.perp.get_tvl(), perp_supply)
        perp_fee = mul_perc(perp_amt, perp_fee_perc, decimals)
        vault_fee = mul_perc(gross, vault_fee_perc, decimals)
        underlying_out = gross - mul_perc(gross, perp_fee_perc, decimals) - vault_fee
        return underlying_out, perp_fee, vault_fee

    def _underlying_for_tranche(self, bond: BondBatch, ratio: int, tranche_amt: int) -> int:
        """Underlying to deposit so that at least ``tranche_amt`` of a tranche is minted."""
        needed = mul_div_up(tranche_amt, TRANCHE_RATIO_GRANULARITY, ratio)
        debt = self.factory.total_debt(bond)
        collateral = self.factory.collateral_balance(bond)
        if debt > 0 and collateral > 0:
            needed = mul_div_up(needed, collateral, debt)
        return needed

    @timed_operation(logger, "vault.swap_underlying_for_perps")
    @atomic_operation
    def swap_underlying_for_perps(
        self,
        caller: str,
        underlying_amt: int,
        now: Optional[int] = None,
    ) -> int:
        """
        Sell perps to ``caller`` for underlying.

        The vault tranches underlying into the minting bond, deposits the
        perp-eligible tranche, burns the perp fee and hands the rest to the
        caller; the vault fee stays behind as underlying.
        """
        Validators.validate_id(caller, "caller")
        Validators.validate_amount(underlying_amt)
        if underlying_amt == 0:
            raise UnacceptableSwap("Swap amount is zero")
        now = self._now(now)
        perp_out, perp_fee, vault_fee = self.compute_underlying_to_perp_swap_amt(underlying_amt)
        if perp_out <= 0:
            raise UnacceptableSwap(f"Swap of {underlying_amt} yields no perps")

        self.ledger.transfer(self.underlying, caller, self.address, underlying_amt)

        bond = self.perp.get_minting_bond(now)
        eligible = [t for t in bond.tranches if self._perp_yield(bond, t.seniority) > 0]
        if not eligible:
            raise UnacceptableSwap(f"Minting bond {bond.bond_id} has no perp-eligible tranche")
        tranche = eligible[0]

        tranche_needed = self.perp.compute_tranche_amt_for_claim(tranche.token_id, perp_out + perp_fee)
        minted = dict(self.factory.deposit(
            bond.bond_id,
            self.address,
            self._underlying_for_tranche(bond, tranche.ratio, tranche_needed),
        ))
        claim_minted, _ = self.perp.deposit(self.address, tranche.token_id, minted[tranche.token_id], now)

        burned = min(perp_fee, claim_minted)
        if burned > 0:
            self.perp.burn(self.address, burned)
        perp_out = claim_minted - burned
        self.ledger.transfer(self.perp.claim_token, self.address, caller, perp_out)
        for token_id in bond.tranche_ids():
            self._sync(token_id)
        self._check_liquidity()

        logger.info(
            "Swapped underlying for perps",
            caller=caller, underlying=underlying_amt, perps=perp_out,
            perp_fee=burned, vault_fee=vault_fee,
        )
        return perp_out

    @timed_operation(logger, "vault.swap_perps_for_underlying")
    @atomic_operation
    def swap_perps_for_underlying(
        self,
        caller: str,
        perp_amt: int,
        now: Optional[int] = None,
    ) -> int:
        """
        Buy perps from ``caller`` for underlying.

        The vault burns the perp fee, redeems the rest from the perp and
        melds what it received with the tranches it already holds.
        """
        Validators.validate_id(caller, "caller")
        Validators.validate_amount(perp_amt)
        if perp_amt == 0:
            raise UnacceptableSwap("Swap amount is zero")
        now = self._now(now)
        underlying_out, perp_fee, vault_fee = self.compute_perp_to_underlying_swap_amt(perp_amt)
        if underlying_out <= 0:
            raise UnacceptableSwap(f"Swap of {perp_amt} perps yields no underlying")

        self.ledger.transfer(self.perp.claim_token, caller, self.address, perp_amt)
        if perp_fee > 0:
            self.perp.burn(self.address, perp_fee)
        _, _, payouts, remainder = self.perp.redeem(self.address, perp_amt - perp_fee, now)
        if remainder > 0:
            raise UnacceptableSwap(f"Perp reserve could not redeem {remainder} perps")

        melded: Set[str] = set()
        for asset, _ in payouts:
            self._sync(asset)
            bond = self.factory.bond_of(asset)
            if bond.bond_id not in melded and not bond.is_mature:
                melded.add(bond.bond_id)
                self._meld(bond)

        available = self.underlying_balance()
        if available < underlying_out:
            raise LiquidityOutOfBounds(
                f"Vault holds {available} underlying, swap needs {underlying_out}"
            )
        self.ledger.transfer(self.underlying, self.address, caller, underlying_out)
        self._check_liquidity()

        logger.info(
            "Swapped perps for underlying",
            caller=caller, perps=perp_amt, underlying=underlying_out,
            perp_fee=perp_fee, vault_fee=vault_fee,
        )
        return underlying_out

    def describe(self) -> dict:
        return {
            "share_token": self.share_token,
            "state": self._state.value,
            "total_supply": self.total_supply(),
            "tvl": self.get_tvl(),
            "underlying": self.underlying_balance(),
            "deployed": [
                {"asset": a, "balance": self._balance(a)} for a in self.deployed
            ],
        }
