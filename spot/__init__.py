"""
SPOT: Perpetual Tranche Accounting Core

A perpetual claim token backed by a rotating basket of fixed-maturity,
seniority-tranched bonds, plus a rollover vault that keeps the basket
rolling and issues shares against its own reserve.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                          ACCOUNTING CORE                                 │
    │                                                                          │
    │  ENGINES                                                                 │
    │    perp.py          Claim issuance: deposit, redeem, rollover            │
    │    vault.py         Rollover automaton, NAV shares, swaps                │
    │                                                                          │
    │  STATE                                                                   │
    │    bond_queue.py    FIFO of bonds ordered by maturity                    │
    │    reserve.py       Insertion-ordered reserve set with dust floor        │
    │    fixed_point.py   Tranche/claim conversions, percentages               │
    │                                                                          │
    │  COLLABORATORS                                                           │
    │    ledger.py        Token balances and transfers                         │
    │    bonds.py         Bond factory and issuer                              │
    │    fees.py          Fee policy and deviation ratio                       │
    │    pricing.py       Tranche pricing strategies                           │
    │    yields.py        Per-class yield table                                │
    │                                                                          │
    │  AMBIENT                                                                 │
    │    hardening.py     Errors, validation, atomic operations                │
    │    config.py        YAML and environment configuration                   │
    │    observability.py Structured logging                                   │
    │    system.py        Wiring; scenario.py and cli.py drive it              │
    └─────────────────────────────────────────────────────────────────────────┘

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

__version__ = "0.3.0"

# Lazy imports to avoid circular dependencies


def __getattr__(name):
    """Lazy import SPOT modules on first access."""

    if name in ("PerpetualTranche",):
        from spot import perp
        return getattr(perp, name)

    if name in ("RolloverVault", "VaultState"):
        from spot import vault
        return getattr(vault, name)

    if name in ("BondQueue",):
        from spot import bond_queue
        return getattr(bond_queue, name)

    if name in ("ReserveLedger",):
        from spot import reserve
        return getattr(reserve, name)

    if name in ("BondBatch", "Tranche", "BondFactory", "BondIssuer"):
        from spot import bonds
        return getattr(bonds, name)

    if name in ("TokenLedger", "InsufficientBalance"):
        from spot import ledger
        return getattr(ledger, name)

    if name in ("FeePolicy",):
        from spot import fees
        return getattr(fees, name)

    if name in ("TrancheClassYieldTable",):
        from spot import yields
        return getattr(yields, name)

    if name in ("UnitPricingStrategy", "CDRPricingStrategy"):
        from spot import pricing
        return getattr(pricing, name)

    if name in ("SpotSystem", "ManualClock"):
        from spot import system
        return getattr(system, name)

    if name in ("ScenarioRunner", "ScenarioError"):
        from spot import scenario
        return getattr(scenario, name)

    if name in ("SpotError", "UnacceptableBond", "UnacceptableDeposit",
                "UnacceptableRedemption", "UnacceptableRollover", "UnacceptableParams",
                "UnexpectedAsset", "InsufficientDeployment", "DeployedCountOverLimit",
                "LiquidityOutOfBounds", "UnacceptableSwap", "InvalidPerc",
                "InvariantViolation", "ReentrancyViolation"):
        from spot import hardening
        return getattr(hardening, name)

    raise AttributeError(f"module 'spot' has no attribute '{name}'")


__all__ = [
    "__version__",
    # Engines
    "PerpetualTranche",
    "RolloverVault",
    "VaultState",
    # State
    "BondQueue",
    "ReserveLedger",
    # Collaborators
    "BondBatch",
    "Tranche",
    "BondFactory",
    "BondIssuer",
    "TokenLedger",
    "InsufficientBalance",
    "FeePolicy",
    "TrancheClassYieldTable",
    "UnitPricingStrategy",
    "CDRPricingStrategy",
    # Wiring
    "SpotSystem",
    "ManualClock",
    "ScenarioRunner",
    "ScenarioError",
    # Errors
    "SpotError",
    "UnacceptableBond",
    "UnacceptableDeposit",
    "UnacceptableRedemption",
    "UnacceptableRollover",
    "UnacceptableParams",
    "UnexpectedAsset",
    "InsufficientDeployment",
    "DeployedCountOverLimit",
    "LiquidityOutOfBounds",
    "UnacceptableSwap",
    "InvalidPerc",
    "InvariantViolation",
    "ReentrancyViolation",
]
