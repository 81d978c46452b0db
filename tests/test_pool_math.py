import sys
from fractions import Fraction
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fake_node import sqrt_price_x96

from pricing.pool_math import (
    Q96,
    compose,
    is_sane,
    orient,
    pool_price_token1_per_token0,
    price_from_pool,
)

USDC = "0x00000000000000000000000000000000000000a1"
WETH = "0x00000000000000000000000000000000000000b2"


def test_unit_sqrt_price_with_equal_decimals_is_one():
    assert pool_price_token1_per_token0(Q96, 18, 18) == 1


def test_decimal_scaling():
    # 1 raw token0 per raw token1; token0 has 6 decimals, token1 has 18.
    assert pool_price_token1_per_token0(Q96, 6, 18) == Fraction(1, 10**12)


def test_weth_priced_as_token1_is_inverted():
    sqrt_price = sqrt_price_x96(Fraction(1, 3000), 6, 18)
    price = price_from_pool(sqrt_price, USDC, WETH, WETH, 6, 18)
    assert price == pytest.approx(3000.0, rel=1e-9)


def test_token0_price_is_not_inverted():
    sqrt_price = sqrt_price_x96(Fraction(1, 3000), 6, 18)
    price = price_from_pool(sqrt_price, USDC, WETH, USDC, 6, 18)
    assert price == pytest.approx(1 / 3000, rel=1e-9)


def test_token_outside_the_pool_yields_none():
    assert price_from_pool(Q96, USDC, WETH, "0x" + "cc" * 20, 6, 18) is None


def test_insane_prices_are_rejected():
    assert price_from_pool(1, USDC, WETH, WETH, 18, 18) is None
    assert price_from_pool(0, USDC, WETH, WETH, 18, 18) is None
    assert not is_sane(float("inf"))
    assert not is_sane(None)
    assert not is_sane(1e11)
    assert is_sane(1.0)


def test_orient_and_compose():
    assert orient(Fraction(2), True) == 2
    assert orient(Fraction(2), False) == Fraction(1, 2)
    assert compose(0.0005, 3000.0) == pytest.approx(1.5)
    assert compose(1e-8, 1e-8) is None
