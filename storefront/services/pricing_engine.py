# storefront/services/pricing_engine.py
"""
订单预览（权威定价）：

  1) 逐行解析商品：不存在 / 已下架 / 库存不足 全部收集到 unavailable，不中途失败；
     有任何缺货行 → 一次性抛 LinesUnavailableError
  2) 行金额：actual_price = price * (1 - discount_pct/100)；line_total = actual_price * qty
  3) 运费：有配送方式时查 DeliveryCatalog，否则为 0
  4) 优惠：voucher / coupon 二选一，交给 DiscountResolver；不可用则整单预览失败
  5) 积分：max = floor(0.5 * (subtotal + 运费 - 优惠) / 100) * 100；
     applied = min(请求, 余额, max)，不强制、不报错
  6) total = subtotal + 运费 - 优惠 - 积分，最低为 0

纯读：不写任何数据。
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Mapping, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.clock import Clock, utcnow
from storefront.core.errors import BusinessRuleError, LinesUnavailableError, ValidationError
from storefront.obs.metrics import lines_unavailable_total
from storefront.services.catalog import DeliveryCatalog, ProductCatalog
from storefront.services.discount_resolver import DiscountResolver, normalize_code
from storefront.services.loyalty_ledger import LoyaltyLedger
from storefront.services.pricing_types import AppliedDiscount, PricedLine, Preview, RawLine
from storefront.services.utils.money import ZERO, floor_int, to_money

_HUNDRED = Decimal(100)


def normalize_raw_lines(raw_lines: Sequence[RawLine | Mapping[str, Any]]) -> List[RawLine]:
    if not raw_lines:
        raise ValidationError("订单至少需要一行商品")

    out: List[RawLine] = []
    seen: set[int] = set()
    for i, line in enumerate(raw_lines):
        if isinstance(line, RawLine):
            pid, qty = line.product_id, line.quantity
        else:
            pid, qty = line.get("product_id"), line.get("quantity")
        try:
            pid, qty = int(pid), int(qty)
        except (TypeError, ValueError):
            raise ValidationError(f"第 {i} 行 product_id/quantity 不合法", context={"line": i})
        if qty < 1:
            raise ValidationError(f"第 {i} 行数量必须 >= 1", context={"line": i, "quantity": qty})
        if pid in seen:
            raise ValidationError(f"商品 {pid} 重复出现，请合并为一行", context={"product_id": pid})
        seen.add(pid)
        out.append(RawLine(product_id=pid, quantity=qty))
    return out


def line_amounts(price: Decimal, discount_pct: Decimal, quantity: int) -> tuple[Decimal, Decimal]:
    """返回 (actual_price, line_total)。"""
    price = to_money(price)
    pct = Decimal(discount_pct or 0)
    actual = to_money(price * (_HUNDRED - pct) / _HUNDRED)
    return actual, to_money(actual * quantity)


def max_applicable_points(subtotal: Decimal, shipping_fee: Decimal, discount: Decimal) -> int:
    base = subtotal + shipping_fee - discount
    if base <= 0:
        return 0
    return floor_int(base * Decimal("0.5") / _HUNDRED) * 100


class PricingEngine:
    def __init__(self, *, clock: Clock = utcnow):
        self.clock = clock

    async def preview(
        self,
        session: AsyncSession,
        user_id: int,
        raw_lines: Sequence[RawLine | Mapping[str, Any]],
        shipping_method: str | None = None,
        voucher_code: str | None = None,
        points_to_apply: int = 0,
        coupon_code: str | None = None,
    ) -> Preview:
        lines_in = normalize_raw_lines(raw_lines)
        points_requested = int(points_to_apply or 0)
        if points_requested < 0:
            raise ValidationError("积分不能为负数", context={"points_to_apply": points_requested})

        voucher_code = normalize_code(voucher_code)
        coupon_code = normalize_code(coupon_code)
        if voucher_code and coupon_code:
            raise BusinessRuleError(
                "券和优惠码不能同时使用",
                context={"voucher_code": voucher_code, "coupon_code": coupon_code},
            )

        products = await ProductCatalog.get_many(session, [ln.product_id for ln in lines_in])

        unavailable: List[Dict[str, Any]] = []
        priced: List[PricedLine] = []
        for ln in lines_in:
            p = products.get(ln.product_id)
            if p is None:
                unavailable.append(
                    {"product_id": ln.product_id, "quantity": ln.quantity, "reason": "商品不存在"}
                )
                continue
            if not p.is_active:
                unavailable.append(
                    {"product_id": ln.product_id, "quantity": ln.quantity, "reason": "商品已下架"}
                )
                continue
            if p.stock < ln.quantity:
                unavailable.append(
                    {
                        "product_id": ln.product_id,
                        "quantity": ln.quantity,
                        "available": int(p.stock),
                        "reason": f"库存不足（仅剩 {p.stock}）",
                    }
                )
                continue

            actual, total = line_amounts(p.price, p.discount_pct, ln.quantity)
            priced.append(
                PricedLine(
                    product_id=p.id,
                    product_code=p.code,
                    product_name=p.name,
                    product_image=p.image,
                    product_price=to_money(p.price),
                    discount_pct=to_money(p.discount_pct),
                    actual_price=actual,
                    quantity=ln.quantity,
                    line_total=total,
                    category_id=p.category_id,
                )
            )

        if unavailable:
            lines_unavailable_total.labels("preview").inc(len(unavailable))
            raise LinesUnavailableError(unavailable)

        subtotal = to_money(sum((ln.line_total for ln in priced), ZERO))
        shipping_fee = await DeliveryCatalog.fee_for(session, shipping_method)

        now = self.clock()
        applied: AppliedDiscount | None = None
        if voucher_code:
            applied = await DiscountResolver.resolve_voucher(
                session, user_id=user_id, code=voucher_code, lines=priced, subtotal=subtotal, now=now
            )
        elif coupon_code:
            applied = await DiscountResolver.resolve_coupon(
                session, user_id=user_id, code=coupon_code, lines=priced, subtotal=subtotal, now=now
            )
        discount = applied.amount if applied else ZERO

        max_points = max_applicable_points(subtotal, shipping_fee, discount)
        points_applied = 0
        if points_requested > 0:
            balance = await LoyaltyLedger.balance_of(session, user_id, now=now)
            points_applied = max(min(points_requested, balance, max_points), 0)

        total = subtotal + shipping_fee - discount - Decimal(points_applied)
        if total < 0:
            total = ZERO

        return Preview(
            lines=tuple(priced),
            subtotal=subtotal,
            shipping_fee=shipping_fee,
            discount=to_money(discount),
            points_applied=points_applied,
            total_amount=to_money(total),
            max_applicable_points=max_points,
            shipping_method=shipping_method or None,
            voucher_code=applied.code if applied and applied.kind == "voucher" else None,
            coupon_code=applied.code if applied and applied.kind == "coupon" else None,
            applied_discount=applied,
        )
