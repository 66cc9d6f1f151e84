# storefront/services/discount_resolver.py
"""
优惠解析（只读，不消费）：

Coupon（共享优惠码）：
  - 校验：存在 / is_active / 时间窗口 / 受众（公开或白名单）/ 每人次数 / 全局次数
  - 计价基数：有 include 集合时只算命中的行，否则全部行；两种情况都扣掉被 exclude 的行
  - 小计不足 minimum_order_value → 折扣 0（视为不满足条件，不报错）
  - percentage: 基数 * 比例，封顶 maximum_discount_amount；fixed: min(面额, 基数)

Voucher（发放给用户的券实例）：
  - 校验：券有效且在窗口内 / 用户持有且未使用 / 小计 >= min_purchase_amount /
    限定商品列表命中任一行
  - fixed: min(面额, 小计)；percentage: floor(小计 * 比例)，封顶 max_discount_amount

真正的消费（is_used / used_count）在 order_commit_pipeline 中以条件写完成。
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.clock import ensure_utc
from storefront.core.errors import BusinessRuleError
from storefront.models.coupon import Coupon, CouponUsage
from storefront.models.enums import DiscountType
from storefront.models.voucher import Voucher, VoucherGrant
from storefront.services.pricing_types import AppliedDiscount, PricedLine
from storefront.services.utils.money import ZERO, floor_int, percent_of, to_money


def normalize_code(code: str | None) -> str | None:
    if code is None:
        return None
    code = code.strip().upper()
    return code or None


def _in_window(starts_at: datetime, ends_at: datetime, now: datetime) -> bool:
    return ensure_utc(starts_at) <= ensure_utc(now) <= ensure_utc(ends_at)


def coupon_applicable_amount(coupon: Coupon, lines: Sequence[PricedLine]) -> Decimal:
    inc_products = set(coupon.applicable_product_ids or [])
    inc_categories = set(coupon.applicable_category_ids or [])
    exc_products = set(coupon.excluded_product_ids or [])
    exc_categories = set(coupon.excluded_category_ids or [])
    restricted = bool(inc_products or inc_categories)

    total = ZERO
    for ln in lines:
        if ln.product_id in exc_products or (
            ln.category_id is not None and ln.category_id in exc_categories
        ):
            continue
        if restricted and not (
            ln.product_id in inc_products
            or (ln.category_id is not None and ln.category_id in inc_categories)
        ):
            continue
        total += ln.line_total
    return to_money(total)


def coupon_amount(coupon: Coupon, lines: Sequence[PricedLine], subtotal: Decimal) -> Decimal:
    """纯计算：不满足最低消费返回 0。"""
    if subtotal < to_money(coupon.minimum_order_value):
        return ZERO
    base = coupon_applicable_amount(coupon, lines)
    if base <= 0:
        return ZERO
    value = to_money(coupon.discount_value)
    if coupon.discount_type == DiscountType.PERCENTAGE.value:
        amount = percent_of(base, value)
        if coupon.maximum_discount_amount is not None:
            amount = min(amount, to_money(coupon.maximum_discount_amount))
    else:
        amount = min(value, base)
    return to_money(amount)


def voucher_amount(voucher: Voucher, subtotal: Decimal) -> Decimal:
    value = to_money(voucher.discount_value)
    if voucher.discount_type == DiscountType.PERCENTAGE.value:
        amount = Decimal(floor_int(subtotal * value / Decimal(100)))
        if voucher.max_discount_amount is not None:
            amount = min(amount, to_money(voucher.max_discount_amount))
    else:
        amount = value
    return to_money(min(amount, subtotal))


class DiscountResolver:
    @staticmethod
    async def resolve_coupon(
        session: AsyncSession,
        *,
        user_id: int,
        code: str,
        lines: Sequence[PricedLine],
        subtotal: Decimal,
        now: datetime,
    ) -> AppliedDiscount:
        code = normalize_code(code)
        stmt = select(Coupon).where(Coupon.code == code).execution_options(populate_existing=True)
        coupon = (await session.execute(stmt)).scalar_one_or_none()
        ctx = {"coupon_code": code}

        if coupon is None or not coupon.is_active:
            raise BusinessRuleError("优惠码无效", context=ctx)
        if not _in_window(coupon.starts_at, coupon.ends_at, now):
            raise BusinessRuleError("优惠码不在有效期内", context=ctx)
        if not coupon.is_public and int(user_id) not in set(coupon.allowed_user_ids or []):
            raise BusinessRuleError("当前用户无权使用该优惠码", context=ctx)
        if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
            raise BusinessRuleError("优惠码已被领完", context=ctx)

        used_by_user = await count_active_coupon_usages(session, coupon.id, user_id)
        if used_by_user >= coupon.user_usage_limit:
            raise BusinessRuleError(
                f"该优惠码每人限用 {coupon.user_usage_limit} 次",
                context={**ctx, "used": used_by_user},
            )

        return AppliedDiscount(
            kind="coupon",
            code=coupon.code,
            amount=coupon_amount(coupon, lines, subtotal),
            coupon_id=coupon.id,
        )

    @staticmethod
    async def resolve_voucher(
        session: AsyncSession,
        *,
        user_id: int,
        code: str,
        lines: Sequence[PricedLine],
        subtotal: Decimal,
        now: datetime,
    ) -> AppliedDiscount:
        code = normalize_code(code)
        ctx = {"voucher_code": code}
        stmt = select(Voucher).where(Voucher.code == code).execution_options(populate_existing=True)
        voucher = (await session.execute(stmt)).scalar_one_or_none()
        if voucher is None or not voucher.is_active or not _in_window(
            voucher.starts_at, voucher.ends_at, now
        ):
            raise BusinessRuleError("券无效或已过期", context=ctx)

        grant = (
            await session.execute(
                select(VoucherGrant)
                .where(
                    VoucherGrant.user_id == int(user_id),
                    VoucherGrant.voucher_id == voucher.id,
                )
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if grant is None or grant.is_used:
            raise BusinessRuleError("您没有该券或券已使用", context=ctx)

        min_purchase = to_money(voucher.min_purchase_amount)
        if subtotal < min_purchase:
            raise BusinessRuleError(
                f"订单满 {min_purchase} 才可使用该券",
                context={**ctx, "min_purchase_amount": str(min_purchase)},
            )

        restricted = set(voucher.applicable_product_ids or [])
        if restricted and not any(ln.product_id in restricted for ln in lines):
            raise BusinessRuleError("该券仅适用于指定商品，购物车中没有适用商品", context=ctx)

        return AppliedDiscount(
            kind="voucher",
            code=voucher.code,
            amount=voucher_amount(voucher, subtotal),
            voucher_id=voucher.id,
            grant_id=grant.id,
        )


async def count_active_coupon_usages(session: AsyncSession, coupon_id: int, user_id: int) -> int:
    n = (
        await session.execute(
            select(func.count(CouponUsage.id)).where(
                CouponUsage.coupon_id == coupon_id,
                CouponUsage.user_id == int(user_id),
                CouponUsage.revoked_at.is_(None),
            )
        )
    ).scalar_one()
    return int(n or 0)
