from __future__ import annotations

from enum import Enum

from loopvault.core.constants.base import (
    MARKET_VIRTUAL_ASSETS,
    MARKET_VIRTUAL_SHARES,
    WAD,
)


class Rounding(Enum):
    FLOOR = "floor"
    CEIL = "ceil"


def mul_div(x: int, y: int, denominator: int, rounding: Rounding = Rounding.FLOOR) -> int:
    """Compute ``x * y / denominator`` on non-negative integers with explicit rounding."""
    if denominator <= 0:
        raise ZeroDivisionError("mul_div denominator must be positive")
    if x < 0 or y < 0:
        raise ValueError(f"mul_div operands must be non-negative, got {x}, {y}")
    quotient, remainder = divmod(x * y, denominator)
    if rounding is Rounding.CEIL and remainder:
        quotient += 1
    return quotient


def mul_div_down(x: int, y: int, denominator: int) -> int:
    return mul_div(x, y, denominator, Rounding.FLOOR)


def mul_div_up(x: int, y: int, denominator: int) -> int:
    return mul_div(x, y, denominator, Rounding.CEIL)


def w_mul_down(x: int, y: int) -> int:
    return mul_div_down(x, y, WAD)


def w_div_down(x: int, y: int) -> int:
    return mul_div_down(x, WAD, y)


def w_div_up(x: int, y: int) -> int:
    return mul_div_up(x, WAD, y)


def zero_floor_sub(x: int, y: int) -> int:
    return x - y if x > y else 0


def utilization(total_borrow: int, total_supply: int) -> int:
    """Borrowed/supplied as a WAD fraction; an empty market has zero utilization."""
    if total_supply == 0:
        return 0
    return w_div_down(total_borrow, total_supply)


# Lending-market shares math. Virtual shares/assets keep the first depositor
# from setting an arbitrary share price.


def to_shares_down(assets: int, total_assets: int, total_shares: int) -> int:
    return mul_div_down(
        assets,
        total_shares + MARKET_VIRTUAL_SHARES,
        total_assets + MARKET_VIRTUAL_ASSETS,
    )


def to_shares_up(assets: int, total_assets: int, total_shares: int) -> int:
    return mul_div_up(
        assets,
        total_shares + MARKET_VIRTUAL_SHARES,
        total_assets + MARKET_VIRTUAL_ASSETS,
    )


def to_assets_down(shares: int, total_assets: int, total_shares: int) -> int:
    return mul_div_down(
        shares,
        total_assets + MARKET_VIRTUAL_ASSETS,
        total_shares + MARKET_VIRTUAL_SHARES,
    )


def to_assets_up(shares: int, total_assets: int, total_shares: int) -> int:
    return mul_div_up(
        shares,
        total_assets + MARKET_VIRTUAL_ASSETS,
        total_shares + MARKET_VIRTUAL_SHARES,
    )
