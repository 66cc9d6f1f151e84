# storefront/services/utils/money.py
from __future__ import annotations

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

_TWO = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(val: Any, *, nonneg: bool = True) -> Decimal:
    """
    金额规范化：接受 str/int/float/Decimal，转为 Decimal(2dp, 四舍五入)。
    """
    if val is None:
        d = Decimal("0")
    elif isinstance(val, Decimal):
        d = val
    else:
        try:
            d = Decimal(str(val))
        except (InvalidOperation, ValueError):
            raise ValueError(f"invalid decimal: {val!r}")
    if nonneg and d < 0:
        raise ValueError(f"negative money not allowed: {d}")
    return d.quantize(_TWO, rounding=ROUND_HALF_UP)


def floor_int(val: Decimal) -> int:
    """向下取整到整数（积分/整额用）。"""
    return int(val.to_integral_value(rounding=ROUND_FLOOR))


def percent_of(amount: Decimal, pct: Decimal) -> Decimal:
    return to_money(amount * pct / Decimal(100))
