"""Uniswap V3 spot price derivation from ``slot0().sqrtPriceX96``."""

from __future__ import annotations

import math
from fractions import Fraction
from typing import Optional

Q96 = 2**96
Q192 = 2**192

MIN_SANE_PRICE = 1e-10
MAX_SANE_PRICE = 1e10


def pool_price_token1_per_token0(sqrt_price_x96: int, decimals0: int, decimals1: int) -> Fraction:
    """Human-unit price of token0 expressed in token1.

    price = sqrtPriceX96**2 / 2**192 * 10**(decimals0 - decimals1), computed
    exactly so large sqrt prices do not lose precision before scaling.
    """

    if sqrt_price_x96 <= 0:
        raise ValueError("sqrtPriceX96 must be positive")
    return Fraction(sqrt_price_x96 * sqrt_price_x96, Q192) * Fraction(10) ** (decimals0 - decimals1)


def orient(price_token1_per_token0: Fraction, priced_is_token0: bool) -> Fraction:
    """Quote units per one priced token.

    When the priced token is token1 the pool price is inverted.
    """

    if priced_is_token0:
        return price_token1_per_token0
    if price_token1_per_token0 == 0:
        raise ZeroDivisionError("cannot invert a zero pool price")
    return 1 / price_token1_per_token0


def is_sane(price: Optional[float]) -> bool:
    if price is None or not math.isfinite(price):
        return False
    return MIN_SANE_PRICE <= price <= MAX_SANE_PRICE


def price_from_pool(
    sqrt_price_x96: int,
    token0: str,
    token1: str,
    priced_token: str,
    decimals0: int,
    decimals1: int,
) -> Optional[float]:
    """Price of ``priced_token`` in the other pool token, or None when unusable."""

    priced = priced_token.lower()
    if priced not in (token0.lower(), token1.lower()):
        return None
    try:
        raw = pool_price_token1_per_token0(sqrt_price_x96, decimals0, decimals1)
        value = float(orient(raw, priced == token0.lower()))
    except (ValueError, ZeroDivisionError, OverflowError):
        return None
    return value if is_sane(value) else None


def compose(first_hop: float, second_hop: float) -> Optional[float]:
    """Two-hop price (token→intermediate × intermediate→quote)."""

    value = first_hop * second_hop
    return value if is_sane(value) else None


__all__ = [
    "MAX_SANE_PRICE",
    "MIN_SANE_PRICE",
    "Q192",
    "Q96",
    "compose",
    "is_sane",
    "orient",
    "pool_price_token1_per_token0",
    "price_from_pool",
]
