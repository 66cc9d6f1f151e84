# storefront/services/pricing_types.py
"""
定价链路的值对象（纯数据，无 IO）：

  RawLine         客户端提交的原始购物车行 {product_id, quantity}
  PricedLine      服务端按当前商品价格算出的行快照
  AppliedDiscount 优惠解析结果（voucher / coupon 二选一）
  Preview         完整的订单预览（未落库）
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class RawLine:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class PricedLine:
    product_id: int
    product_code: str
    product_name: str
    product_image: Optional[str]
    product_price: Decimal
    discount_pct: Decimal
    actual_price: Decimal
    quantity: int
    line_total: Decimal
    category_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_code": self.product_code,
            "product_name": self.product_name,
            "product_image": self.product_image,
            "product_price": self.product_price,
            "discount_pct": self.discount_pct,
            "actual_price": self.actual_price,
            "quantity": self.quantity,
            "line_total": self.line_total,
        }


@dataclass(frozen=True)
class AppliedDiscount:
    kind: str  # voucher | coupon
    code: str
    amount: Decimal
    voucher_id: Optional[int] = None
    grant_id: Optional[int] = None
    coupon_id: Optional[int] = None


@dataclass(frozen=True)
class Preview:
    lines: Tuple[PricedLine, ...]
    subtotal: Decimal
    shipping_fee: Decimal
    discount: Decimal
    points_applied: int
    total_amount: Decimal
    max_applicable_points: int = 0
    shipping_method: Optional[str] = None
    voucher_code: Optional[str] = None
    coupon_code: Optional[str] = None
    applied_discount: Optional[AppliedDiscount] = field(default=None, compare=False)

    @property
    def raw_lines(self) -> List[RawLine]:
        return [RawLine(product_id=ln.product_id, quantity=ln.quantity) for ln in self.lines]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lines": [ln.to_dict() for ln in self.lines],
            "subtotal": self.subtotal,
            "shipping_fee": self.shipping_fee,
            "discount": self.discount,
            "points_applied": self.points_applied,
            "max_applicable_points": self.max_applicable_points,
            "total_amount": self.total_amount,
            "shipping_method": self.shipping_method,
            "voucher_code": self.voucher_code,
            "coupon_code": self.coupon_code,
        }
