"""
Tranche Conversion Engine

Exact integer conversions between tranche units and claim-token units.

    claim    = (tranche * yield / 10^Y) * price / 10^P
    tranches = (claim * 10^P / price) * 10^Y / yield

Every division floors. Claims are under-issued and tranches over-consumed,
so a conversion round trip never returns more than it started with.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from spot.hardening import UnacceptableParams, Validators

YIELD_DECIMALS = 6
PRICE_DECIMALS = 18
FEE_DECIMALS = 8


def one(decimals: int) -> int:
    """Fixed-point representation of 1.0."""
    return 10 ** decimals


def _check_factors(yield_: int, price: int) -> None:
    if yield_ <= 0:
        raise UnacceptableParams(f"yield must be positive, got {yield_}")
    if price <= 0:
        raise UnacceptableParams(f"price must be positive, got {price}")


def tranches_to_claim(
    tranche_amt: int,
    yield_: int,
    price: int,
    yield_decimals: int = YIELD_DECIMALS,
    price_decimals: int = PRICE_DECIMALS,
) -> int:
    """Convert a tranche amount into claim-token units."""
    Validators.validate_amount(tranche_amt, "tranche_amt")
    _check_factors(yield_, price)
    return (tranche_amt * yield_ // one(yield_decimals)) * price // one(price_decimals)


def claim_to_tranches(
    claim_amt: int,
    yield_: int,
    price: int,
    yield_decimals: int = YIELD_DECIMALS,
    price_decimals: int = PRICE_DECIMALS,
) -> int:
    """Convert a claim-token amount into tranche units."""
    Validators.validate_amount(claim_amt, "claim_amt")
    _check_factors(yield_, price)
    return (claim_amt * one(price_decimals) // price) * one(yield_decimals) // yield_


def mul_perc(amount: int, perc: int, decimals: int = FEE_DECIMALS) -> int:
    """
    Apply a signed fixed-point percentage to an amount.

    Truncates toward zero so that rewards (negative results) are never
    rounded up in the payee's favour.
    """
    product = amount * perc
    magnitude = abs(product) // one(decimals)
    return magnitude if product >= 0 else -magnitude


def mul_div(x: int, y: int, denominator: int) -> int:
    """floor(x * y / denominator) for non-negative operands."""
    if denominator <= 0:
        raise UnacceptableParams(f"denominator must be positive, got {denominator}")
    return x * y // denominator


def mul_div_up(x: int, y: int, denominator: int) -> int:
    """ceil(x * y / denominator) for non-negative operands."""
    if denominator <= 0:
        raise UnacceptableParams(f"denominator must be positive, got {denominator}")
    return -(-(x * y) // denominator)
