"""
Perpetual Tranche (Claim Issuance Engine)

Mints claim tokens against deposited tranches of the current minting bond,
burns them against a queue-ordered basket of reserve tranches and lets
callers swap fresh tranches for reserve assets that have aged out of the
queue (rollover).

Fee settlement:
    Fees are signed percentages from the fee policy, applied to the claim
    amount and settled in claim tokens between the caller and the perp's
    own account. A positive fee moves claim tokens from the caller to the
    perp; a negative fee (a reward) moves them from the perp to the caller.
    The registered vault is fee exempt.

Redemption (queue order, head first):
    for each queued bond, for each perp-eligible tranche held:
        computed  = claim_to_tranches(remainder)
        used      = min(computed, reserve balance)
        remainder = remainder * (computed - used) / computed
    A bond left with a positive remainder is exhausted and dequeued.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import time
from typing import Any, Callable, List, Optional, Tuple

from spot.bond_queue import BondQueue
from spot.bonds import BondBatch, BondFactory, Tranche
from spot.config import PerpConfig, get_config
from spot.fixed_point import (
    claim_to_tranches,
    mul_div,
    mul_div_up,
    mul_perc,
    one,
    tranches_to_claim,
)
from spot.hardening import (
    AtomicComponent,
    UnacceptableDeposit,
    UnacceptableRedemption,
    UnacceptableRollover,
    UnexpectedAsset,
    Validators,
    atomic_operation,
)
from spot.interfaces import AssetBook, FeePolicyLike, Issuer, PricingSource, YieldSource
from spot.observability import SpotLayer, get_logger, timed_operation
from spot.reserve import ReserveLedger

logger = get_logger("perp", SpotLayer.PERP)

Payouts = List[Tuple[str, int]]
RedemptionResult = Tuple[int, int, Payouts, int]


class PerpetualTranche(AtomicComponent):
    """
    Claim token backed by a FIFO queue of bonds.

    The perp's ledger account and its claim token share the same id
    (``claim_token``). Reserve assets are held in that account and tracked
    by ``self.reserve``.
    """

    def __init__(
        self,
        ledger: AssetBook,
        factory: BondFactory,
        issuer: Issuer,
        collateral_token: str,
        fee_policy: FeePolicyLike,
        pricing: PricingSource,
        yields: YieldSource,
        config: Optional[PerpConfig] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        config = config or get_config().perp
        self.ledger = ledger
        self.factory = factory
        self.issuer = issuer
        self.collateral_token = Validators.validate_id(collateral_token, "collateral_token")
        self.fee_policy = fee_policy
        self.pricing = pricing
        self.yields = yields

        self.claim_token = Validators.validate_id(config.claim_token.get(), "claim_token")
        self.address = self.claim_token
        self.yield_decimals = config.yield_decimals.get()
        self.price_decimals = config.price_decimals.get()

        self.queue = BondQueue(
            config.min_tranche_maturity_sec.get(),
            config.max_tranche_maturity_sec.get(),
        )
        self.reserve = ReserveLedger(
            lambda asset: self.ledger.balance_of(asset, self.address),
            dust_threshold=config.reserve_dust_amt.get(),
            name=f"{self.claim_token}-reserve",
        )
        self.vault: Optional[Any] = None
        self._minting_bond: Optional[BondBatch] = None
        self._clock = clock or (lambda: int(time.time()))
        self._lock = ledger.lock  # type: ignore[attr-defined]

    # =========================================================================
    # ATOMIC PARTICIPATION
    # =========================================================================

    def atomic_participants(self) -> List[Any]:
        participants: List[Any] = [self, self.ledger, self.factory]
        for collaborator in (self.issuer, self.yields):
            if hasattr(collaborator, "snapshot"):
                participants.append(collaborator)
        return participants

    def snapshot(self) -> Tuple[Any, Any, Optional[BondBatch]]:
        return self.queue.snapshot(), self.reserve.snapshot(), self._minting_bond

    def restore(self, state: Tuple[Any, Any, Optional[BondBatch]]) -> None:
        queue_state, reserve_state, self._minting_bond = state
        self.queue.restore(queue_state)
        self.reserve.restore(reserve_state)

    # =========================================================================
    # CONVERSION HELPERS
    # =========================================================================

    def _now(self, now: Optional[int]) -> int:
        return self._clock() if now is None else now

    def _tranche(self, token_id: str) -> Optional[Tranche]:
        return self.factory.find_tranche(token_id)

    def _factors(self, asset: str) -> Tuple[int, int]:
        """(yield, price) of a reserve asset; collateral counts at par."""
        if asset == self.collateral_token:
            return one(self.yield_decimals), one(self.price_decimals)
        tranche = self._tranche(asset)
        if tranche is None:
            raise UnexpectedAsset(f"{asset} is neither a tranche nor the collateral token")
        bond = self.factory.get_bond(tranche.bond_id)
        return (
            self.yields.compute_yield(bond, tranche.seniority),
            self.pricing.compute_tranche_price(asset),
        )

    def _to_claim(self, amount: int, yield_: int, price: int) -> int:
        return tranches_to_claim(amount, yield_, price, self.yield_decimals, self.price_decimals)

    def _to_tranches(self, claim_amt: int, yield_: int, price: int) -> int:
        return claim_to_tranches(claim_amt, yield_, price, self.yield_decimals, self.price_decimals)

    def compute_tranche_amt_for_claim(self, tranche_id: str, claim_amt: int) -> int:
        """Smallest tranche amount whose claim value is at least ``claim_amt``."""
        yield_, price = self._factors(tranche_id)
        if yield_ == 0:
            raise UnacceptableDeposit(f"{tranche_id} has zero yield")
        scaled = mul_div_up(claim_amt, one(self.price_decimals), price)
        return mul_div_up(scaled, one(self.yield_decimals), yield_)

    # =========================================================================
    # FEES
    # =========================================================================

    def _is_fee_exempt(self, caller: str) -> bool:
        return self.vault is not None and caller == self.vault.address

    def _compute_fee(self, caller: str, perc_fn: Callable[[int], int], claim_amt: int) -> int:
        if self._is_fee_exempt(caller) or claim_amt == 0:
            return 0
        perc = perc_fn(self.deviation_ratio())
        return mul_perc(claim_amt, perc, self.fee_policy.decimals())

    def _settle_fee(self, caller: str, fee: int) -> None:
        if fee > 0:
            self.ledger.transfer(self.claim_token, caller, self.address, fee)
        elif fee < 0:
            self.ledger.transfer(self.claim_token, self.address, caller, -fee)

    def deviation_ratio(self) -> int:
        """Vault subscription relative to target; ONE when no vault is set."""
        unit = one(self.fee_policy.decimals())
        if self.vault is None:
            return unit
        bond = self._minting_bond or self.queue.tail
        if bond is None:
            return unit
        return self.fee_policy.compute_deviation_ratio(
            self.get_tvl(), self.vault.get_tvl(), bond.senior_ratio,
        )

    # =========================================================================
    # QUEUE ACCESS
    # =========================================================================

    def _get_minting_bond(self, now: int) -> BondBatch:
        candidate = self.issuer.get_last_bond()
        current = self._minting_bond
        if (
            candidate is not None
            and current is not None
            and candidate.bond_id == current.bond_id
            and self.queue.contains(candidate.bond_id)
            and self.queue.is_admissible(candidate, now)
        ):
            return candidate
        bond = self.queue.get_minting_bond(now, self.issuer)
        self._minting_bond = bond
        return bond

    @timed_operation(logger, "perp.get_minting_bond")
    @atomic_operation
    def get_minting_bond(self, now: Optional[int] = None) -> BondBatch:
        """Current minting bond, enqueuing the issuer's newest bond when admissible."""
        return self._get_minting_bond(self._now(now))

    @timed_operation(logger, "perp.get_burning_bond")
    @atomic_operation
    def get_burning_bond(self, now: Optional[int] = None) -> Optional[BondBatch]:
        """Queue head after evicting bonds that left the maturity window."""
        return self.queue.get_burning_bond(self._now(now))

    # =========================================================================
    # DEPOSIT
    # =========================================================================

    def compute_mint_amt(self, tranche_in: str, amount: int) -> int:
        """Claim tokens ``amount`` of ``tranche_in`` is worth, before fees."""
        Validators.validate_amount(amount)
        yield_, price = self._factors(tranche_in)
        if yield_ == 0 or amount == 0:
            return 0
        return self._to_claim(amount, yield_, price)

    @timed_operation(logger, "perp.deposit")
    @atomic_operation
    def deposit(
        self,
        caller: str,
        tranche_in: str,
        amount: int,
        now: Optional[int] = None,
    ) -> Tuple[int, int]:
        """
        Deposit tranches of the minting bond and mint claim tokens.

        Returns ``(claim_minted, fee)``. The fee is settled after minting,
        so the caller ends with ``claim_minted - fee``.
        """
        Validators.validate_id(caller, "caller")
        Validators.validate_amount(amount)
        bond = self._get_minting_bond(self._now(now))

        tranche = self._tranche(tranche_in)
        if tranche is None or tranche.bond_id != bond.bond_id:
            raise UnacceptableDeposit(f"{tranche_in} is not a tranche of minting bond {bond.bond_id}")
        if amount == 0:
            return 0, 0

        yield_ = self.yields.compute_yield(bond, tranche.seniority)
        if yield_ == 0:
            raise UnacceptableDeposit(f"{tranche_in} has zero yield")
        claim_amt = self._to_claim(amount, yield_, self.pricing.compute_tranche_price(tranche_in))
        if claim_amt == 0:
            return 0, 0

        fee = self._compute_fee(caller, self.fee_policy.compute_perp_mint_fee_perc, claim_amt)
        self.ledger.transfer(tranche_in, caller, self.address, amount)
        self.reserve.sync(tranche_in)
        self.ledger.mint(self.claim_token, caller, claim_amt)
        self._settle_fee(caller, fee)
        self.yields.mark_used(bond.class_key)

        logger.info(
            "Tranche deposited",
            caller=caller, tranche=tranche_in, amount=amount, minted=claim_amt, fee=fee,
        )
        return claim_amt, fee

    # =========================================================================
    # REDEMPTION
    # =========================================================================

    def _plan_redemption(self, amount: int, bonds: List[BondBatch]) -> Tuple[Payouts, int, int]:
        """
        Walk ``bonds`` head first without mutating anything.

        Returns the payouts, the unredeemed remainder and how many leading
        bonds were exhausted.
        """
        remainder = amount
        payouts: Payouts = []
        exhausted = 0
        for bond in bonds:
            for tranche in bond.tranches:
                if remainder == 0:
                    break
                yield_ = self.yields.compute_yield(bond, tranche.seniority)
                balance = self.reserve_balance(tranche.token_id)
                if yield_ == 0 or balance == 0:
                    continue
                computed = self._to_tranches(
                    remainder, yield_, self.pricing.compute_tranche_price(tranche.token_id),
                )
                if computed == 0:
                    return payouts, remainder, exhausted
                used = min(computed, balance)
                remainder = remainder * (computed - used) // computed
                payouts.append((tranche.token_id, used))
            if remainder == 0:
                break
            exhausted += 1
        return payouts, remainder, exhausted

    def compute_redemption_amts(self, amount: int, now: Optional[int] = None) -> Tuple[Payouts, int]:
        """Preview of ``redeem``: ``(payouts, remainder)``."""
        Validators.validate_amount(amount)
        if amount == 0:
            return [], 0
        now = self._now(now)
        bonds = self.queue.bonds()
        while bonds and not self.queue.is_admissible(bonds[0], now):
            bonds.pop(0)
        payouts, remainder, _ = self._plan_redemption(amount, bonds)
        return payouts, remainder

    def _pay_out(self, caller: str, payouts: Payouts) -> None:
        for asset, amount in payouts:
            self.ledger.transfer(asset, self.address, caller, amount)
            self.reserve.sync(asset)

    def _burn_with_fee(self, caller: str, burned: int) -> int:
        fee = self._compute_fee(caller, self.fee_policy.compute_perp_burn_fee_perc, burned)
        self.ledger.burn(self.claim_token, caller, burned)
        self._settle_fee(caller, fee)
        return fee

    @timed_operation(logger, "perp.redeem")
    @atomic_operation
    def redeem(self, caller: str, amount: int, now: Optional[int] = None) -> RedemptionResult:
        """
        Burn claim tokens for reserve tranches in queue order.

        Returns ``(burned, fee, payouts, remainder)`` where
        ``burned = amount - remainder``.
        """
        Validators.validate_id(caller, "caller")
        Validators.validate_amount(amount)
        if amount == 0:
            return 0, 0, [], 0

        self.queue.get_burning_bond(self._now(now))
        payouts, remainder, exhausted = self._plan_redemption(amount, self.queue.bonds())
        for _ in range(exhausted):
            self.queue.dequeue()

        burned = amount - remainder
        if burned == 0:
            return 0, 0, [], remainder

        fee = self._burn_with_fee(caller, burned)
        self._pay_out(caller, payouts)

        logger.info(
            "Claims redeemed",
            caller=caller, requested=amount, burned=burned, fee=fee,
            payouts=len(payouts), remainder=remainder,
        )
        return burned, fee, payouts, remainder

    @timed_operation(logger, "perp.redeem_icebox")
    @atomic_operation
    def redeem_icebox(
        self,
        caller: str,
        asset: str,
        amount: int,
        now: Optional[int] = None,
    ) -> RedemptionResult:
        """Redeem against a single reserve asset once the queue has drained."""
        Validators.validate_id(caller, "caller")
        Validators.validate_amount(amount)
        if amount == 0:
            return 0, 0, [], 0

        if self.queue.get_burning_bond(self._now(now)) is not None:
            raise UnacceptableRedemption("Icebox redemption requires an empty queue")
        if not self.reserve.contains(asset):
            raise UnexpectedAsset(f"{asset} is not a reserve asset")

        yield_, price = self._factors(asset)
        if yield_ == 0:
            raise UnacceptableRedemption(f"{asset} has zero yield")
        computed = self._to_tranches(amount, yield_, price)
        if computed == 0:
            return 0, 0, [], amount

        used = min(computed, self.reserve_balance(asset))
        remainder = amount * (computed - used) // computed
        burned = amount - remainder
        if burned == 0:
            return 0, 0, [], remainder

        fee = self._burn_with_fee(caller, burned)
        payouts = [(asset, used)]
        self._pay_out(caller, payouts)

        logger.info(
            "Icebox redeemed",
            caller=caller, asset=asset, burned=burned, fee=fee, paid=used, remainder=remainder,
        )
        return burned, fee, payouts, remainder

    # =========================================================================
    # ROLLOVER
    # =========================================================================

    def _is_rollover_target(self, asset: str) -> bool:
        if not self.reserve.contains(asset):
            return False
        if asset == self.collateral_token:
            return True
        tranche = self._tranche(asset)
        return tranche is not None and not self.queue.contains(tranche.bond_id)

    def get_reserve_tokens_up_for_rollover(self, now: Optional[int] = None) -> List[str]:
        """Reserve assets accepted as rollover outputs, collateral first then by maturity."""
        now = self._now(now)
        queued = {
            b.bond_id for b in self.queue.bonds() if self.queue.is_admissible(b, now)
        }

        def eligible(asset: str) -> bool:
            if asset == self.collateral_token:
                return True
            tranche = self._tranche(asset)
            return tranche is not None and tranche.bond_id not in queued

        def sort_key(asset: str) -> int:
            if asset == self.collateral_token:
                return -1
            return self.factory.bond_of(asset).maturity

        return sorted((a for a in self.reserve if eligible(a)), key=sort_key)

    def compute_rollover_amt(
        self,
        tranche_in: str,
        token_out: str,
        tranche_in_available: int,
        token_out_requested: int,
    ) -> Tuple[int, int]:
        """
        Size a rollover: ``(tranche_in_amt, token_out_amt)``.

        Neither side exceeds its bound; the output side is further capped by
        the reserve balance of ``token_out``.
        """
        yield_in, price_in = self._factors(tranche_in)
        yield_out, price_out = self._factors(token_out)
        if yield_in == 0 or yield_out == 0:
            return 0, 0

        out_cap = min(token_out_requested, self.reserve_balance(token_out))
        claim_in = self._to_claim(tranche_in_available, yield_in, price_in)
        token_out_amt = self._to_tranches(claim_in, yield_out, price_out)
        if token_out_amt <= out_cap:
            return tranche_in_available, token_out_amt

        claim_out = self._to_claim(out_cap, yield_out, price_out)
        tranche_in_amt = self._to_tranches(claim_out, yield_in, price_in)
        token_out_amt = self._to_tranches(
            self._to_claim(tranche_in_amt, yield_in, price_in), yield_out, price_out,
        )
        return tranche_in_amt, min(token_out_amt, out_cap)

    @timed_operation(logger, "perp.rollover")
    @atomic_operation
    def rollover(
        self,
        caller: str,
        tranche_in: str,
        token_out: str,
        tranche_in_amt: int,
        now: Optional[int] = None,
    ) -> Tuple[int, int]:
        """
        Swap minting-bond tranches for an aged-out reserve asset.

        Claim supply is unchanged apart from the rollover fee, which is
        settled in claim tokens (negative values are rewards). Returns
        ``(token_out_amt, fee)``.
        """
        Validators.validate_id(caller, "caller")
        Validators.validate_amount(tranche_in_amt, "tranche_in_amt")
        now = self._now(now)
        bond = self._get_minting_bond(now)
        self.queue.get_burning_bond(now)

        tranche = self._tranche(tranche_in)
        if tranche is None or tranche.bond_id != bond.bond_id:
            raise UnacceptableRollover(f"{tranche_in} is not a tranche of minting bond {bond.bond_id}")
        if token_out == tranche_in or not self._is_rollover_target(token_out):
            raise UnacceptableRollover(f"{token_out} is not up for rollover")
        if tranche_in_amt == 0:
            return 0, 0

        yield_in = self.yields.compute_yield(bond, tranche.seniority)
        yield_out, price_out = self._factors(token_out)
        if yield_in == 0 or yield_out == 0:
            raise UnacceptableRollover(f"Zero yield rolling {tranche_in} into {token_out}")

        claim_amt = self._to_claim(
            tranche_in_amt, yield_in, self.pricing.compute_tranche_price(tranche_in),
        )
        token_out_amt = self._to_tranches(claim_amt, yield_out, price_out)
        available = self.reserve_balance(token_out)
        if token_out_amt > available:
            raise UnacceptableRollover(
                f"Reserve holds {available} {token_out}, rollover needs {token_out_amt}"
            )

        self.ledger.transfer(tranche_in, caller, self.address, tranche_in_amt)
        self.ledger.transfer(token_out, self.address, caller, token_out_amt)
        self.reserve.sync(tranche_in)
        self.reserve.sync(token_out)

        fee = self._compute_fee(caller, self.fee_policy.compute_perp_rollover_fee_perc, claim_amt)
        self._settle_fee(caller, fee)
        self.yields.mark_used(bond.class_key)

        logger.info(
            "Rolled over",
            caller=caller, tranche_in=tranche_in, amount_in=tranche_in_amt,
            token_out=token_out, amount_out=token_out_amt, fee=fee,
        )
        return token_out_amt, fee

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    @timed_operation(logger, "perp.recover_matured")
    @atomic_operation
    def recover_matured(self, now: Optional[int] = None) -> Payouts:
        """Redeem matured reserve tranches for collateral."""
        now = self._now(now)
        self.queue.get_burning_bond(now)
        recovered: Payouts = []
        for asset in self.reserve.assets():
            tranche = self._tranche(asset)
            if tranche is None:
                continue
            bond = self.factory.get_bond(tranche.bond_id)
            if self.queue.contains(bond.bond_id) or not self.factory.is_due(bond, now):
                continue
            self.factory.mature(bond.bond_id, now)
            payout = self.factory.redeem_mature(asset, self.address, self.reserve_balance(asset))
            self.reserve.sync(asset)
            recovered.append((asset, payout))
        if recovered:
            self.reserve.sync(self.collateral_token)
            logger.info("Matured tranches recovered", count=len(recovered))
        return recovered

    @timed_operation(logger, "perp.burn")
    @atomic_operation
    def burn(self, caller: str, amount: int) -> None:
        """Destroy ``amount`` of the caller's claim tokens."""
        Validators.validate_amount(amount)
        self.ledger.burn(self.claim_token, caller, amount)

    # =========================================================================
    # VIEWS
    # =========================================================================

    def _asset_value(self, asset: str, balance: int) -> int:
        if asset == self.collateral_token:
            return balance
        return self.factory.tranche_value(asset, balance)

    def get_tvl(self) -> int:
        """Collateral value of the reserve."""
        return self.reserve.aggregate_value(self._asset_value)

    def total_supply(self) -> int:
        return self.ledger.total_supply(self.claim_token)

    def get_price(self) -> int:
        """Collateral per claim token on ``price_decimals``."""
        supply = self.total_supply()
        if supply == 0:
            return one(self.price_decimals)
        return mul_div(self.get_tvl(), one(self.price_decimals), supply)

    def reserve_balance(self, asset: str) -> int:
        return self.ledger.balance_of(asset, self.address)

    def reserve_count(self) -> int:
        return len(self.reserve)

    def reserve_assets(self) -> List[str]:
        return self.reserve.assets()

    def describe(self) -> dict:
        return {
            "claim_token": self.claim_token,
            "total_supply": self.total_supply(),
            "tvl": self.get_tvl(),
            "minting_bond": self._minting_bond.bond_id if self._minting_bond else None,
            "queue": [b.bond_id for b in self.queue],
            "reserve": [
                {"asset": a, "balance": self.reserve_balance(a)} for a in self.reserve
            ],
        }

    # =========================================================================
    # ADMINISTRATION
    # =========================================================================

    def update_tolerable_tranche_maturity(self, min_sec: int, max_sec: int) -> None:
        with self._lock:
            self.queue.update_maturity_window(min_sec, max_sec)

    def update_fee_policy(self, fee_policy: FeePolicyLike) -> None:
        with self._lock:
            self.fee_policy = fee_policy
        logger.info("Fee policy updated", policy=type(fee_policy).__name__)

    def update_pricing(self, pricing: PricingSource) -> None:
        with self._lock:
            self.pricing = pricing
        logger.info("Pricing strategy updated", strategy=type(pricing).__name__)

    def update_issuer(self, issuer: Issuer) -> None:
        with self._lock:
            self.issuer = issuer
        logger.info("Issuer updated", issuer=type(issuer).__name__)

    def update_vault(self, vault: Any) -> None:
        """Register the fee-exempt rollover vault; ``None`` clears it."""
        with self._lock:
            self.vault = vault
        logger.info("Vault updated", vault=getattr(vault, "address", None))
