# storefront/services/order_commit_pipeline.py
"""
下单 / 逆向补偿的显式步骤表。

下单（PLACEMENT_STEPS，同一事务内按顺序执行，任何一步失败整单回滚）：
  create_order          写订单 + 行快照 + 初始时间线
  reserve_stock         条件扣库存：WHERE stock >= :qty，逐行尝试，失败行批量报错
  consume_voucher       条件核销券：WHERE is_used = false
  consume_coupon        条件占用优惠码全局次数 + 每人次数复核 + 写使用记录
  debit_points          事务内复核余额后写 redeemed 流水
  enqueue_notification  写 outbox（order.placed）

状态迁移后的补偿（COMPENSATIONS，与状态变更同一事务）：
  CANCELLED  回补库存 / 释放券 / 撤销优惠码使用 / 退回积分
  REFUNDED   退回积分
  COMPLETED  按小计返积分（下下月初前过期）
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.clock import end_of_next_month
from storefront.core.errors import BusinessRuleError, LinesUnavailableError
from storefront.db.session import advisory_xact_lock
from storefront.models.coupon import Coupon, CouponUsage
from storefront.models.enums import LoyaltyKind, OrderStatus, PerformedBy
from storefront.models.loyalty_entry import LoyaltyEntry
from storefront.models.order import Order
from storefront.models.order_line import OrderLine
from storefront.models.order_timeline import OrderTimelineEntry
from storefront.models.product import Product
from storefront.models.voucher import VoucherGrant
from storefront.obs.metrics import lines_unavailable_total
from storefront.services.discount_resolver import count_active_coupon_usages
from storefront.services.loyalty_ledger import LoyaltyLedger
from storefront.services.order_state_machine import build_timeline_entry
from storefront.services.outbox import OrderEventBus
from storefront.services.pricing_types import Preview
from storefront.services.utils.money import floor_int

logger = logging.getLogger("storefront.orders")


@dataclass
class PlacementContext:
    session: AsyncSession
    user_id: int
    preview: Preview
    now: datetime
    order: Optional[Order] = None


@dataclass
class CompensationContext:
    session: AsyncSession
    order: Order
    now: datetime
    earn_rate: Decimal = Decimal("0.01")
    done: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Step:
    name: str
    run: Callable[[Any], Awaitable[None]]


async def run_steps(steps: Sequence[Step], ctx: Any) -> None:
    for step in steps:
        logger.debug("pipeline step %s", step.name)
        await step.run(ctx)


def new_order_code(now: datetime) -> str:
    return f"ORD{now:%Y%m%d%H%M%S}{secrets.token_hex(3).upper()}"


def add_timeline_entry(
    order: Order,
    status: OrderStatus,
    performed_by: str,
    metadata: Optional[Dict[str, Any]],
    now: datetime,
) -> OrderTimelineEntry:
    draft = build_timeline_entry(status, performed_by, metadata)
    entry = OrderTimelineEntry(
        status=draft.status.value,
        description=draft.description,
        performed_by=draft.performed_by,
        meta=draft.meta,
        created_at=now,
    )
    order.timeline.append(entry)
    return entry


# ============================ 下单步骤 ============================


async def _create_order(ctx: PlacementContext) -> None:
    p = ctx.preview
    applied = p.applied_discount
    order = Order(
        order_code=new_order_code(ctx.now),
        user_id=int(ctx.user_id),
        status=OrderStatus.NEW.value,
        can_cancel=True,
        subtotal=p.subtotal,
        shipping_fee=p.shipping_fee,
        discount=p.discount,
        points_applied=int(p.points_applied),
        total_amount=p.total_amount,
        shipping_method=p.shipping_method,
        voucher_code=p.voucher_code,
        coupon_code=p.coupon_code,
        voucher_grant_id=applied.grant_id if applied else None,
        coupon_id=applied.coupon_id if applied else None,
        created_at=ctx.now,
        updated_at=ctx.now,
        lines=[
            OrderLine(
                product_id=ln.product_id,
                product_code=ln.product_code,
                product_name=ln.product_name,
                product_image=ln.product_image,
                product_price=ln.product_price,
                discount_pct=ln.discount_pct,
                actual_price=ln.actual_price,
                quantity=ln.quantity,
                line_total=ln.line_total,
            )
            for ln in p.lines
        ],
        timeline=[],
    )
    add_timeline_entry(order, OrderStatus.NEW, PerformedBy.USER.value, {}, ctx.now)
    ctx.session.add(order)
    await ctx.session.flush()
    ctx.order = order


async def _reserve_stock(ctx: PlacementContext) -> None:
    failed: List[Dict[str, Any]] = []
    for ln in ctx.preview.lines:
        res = await ctx.session.execute(
            update(Product)
            .where(Product.id == ln.product_id, Product.stock >= ln.quantity)
            .values(
                stock=Product.stock - ln.quantity,
                sold_count=Product.sold_count + ln.quantity,
            )
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            failed.append(
                {"product_id": ln.product_id, "quantity": ln.quantity, "reason": "库存不足"}
            )
    if failed:
        lines_unavailable_total.labels("commit").inc(len(failed))
        raise LinesUnavailableError(failed)


async def _consume_voucher(ctx: PlacementContext) -> None:
    applied = ctx.preview.applied_discount
    if applied is None or applied.kind != "voucher":
        return
    res = await ctx.session.execute(
        update(VoucherGrant)
        .where(VoucherGrant.id == applied.grant_id, VoucherGrant.is_used.is_(False))
        .values(is_used=True, order_id=ctx.order.id, used_at=ctx.now)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise BusinessRuleError("券已被使用", context={"voucher_code": applied.code})


async def _consume_coupon(ctx: PlacementContext) -> None:
    applied = ctx.preview.applied_discount
    if applied is None or applied.kind != "coupon":
        return
    session = ctx.session
    await advisory_xact_lock(session, f"coupon:{applied.coupon_id}:user:{ctx.user_id}")

    coupon = await session.get(Coupon, applied.coupon_id)
    used = await count_active_coupon_usages(session, applied.coupon_id, ctx.user_id)
    if coupon is None or used >= coupon.user_usage_limit:
        raise BusinessRuleError("优惠码使用次数已达上限", context={"coupon_code": applied.code})

    res = await session.execute(
        update(Coupon)
        .where(
            Coupon.id == applied.coupon_id,
            (Coupon.usage_limit.is_(None)) | (Coupon.used_count < Coupon.usage_limit),
        )
        .values(used_count=Coupon.used_count + 1)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise BusinessRuleError("优惠码已被领完", context={"coupon_code": applied.code})

    session.add(
        CouponUsage(
            coupon_id=applied.coupon_id,
            user_id=int(ctx.user_id),
            order_id=ctx.order.id,
            discount_amount=applied.amount,
            used_at=ctx.now,
        )
    )
    await session.flush()


async def _debit_points(ctx: PlacementContext) -> None:
    points = int(ctx.preview.points_applied)
    if points <= 0:
        return
    await LoyaltyLedger.debit(
        ctx.session,
        user_id=ctx.user_id,
        points=points,
        order_id=ctx.order.id,
        description=f"订单 {ctx.order.order_code} 使用 {points} 积分",
        now=ctx.now,
    )


async def _enqueue_notification(ctx: PlacementContext) -> None:
    await OrderEventBus.order_placed(ctx.session, ctx.order)


PLACEMENT_STEPS: Tuple[Step, ...] = (
    Step("create_order", _create_order),
    Step("reserve_stock", _reserve_stock),
    Step("consume_voucher", _consume_voucher),
    Step("consume_coupon", _consume_coupon),
    Step("debit_points", _debit_points),
    Step("enqueue_notification", _enqueue_notification),
)


# ============================ 补偿步骤 ============================


async def _has_entry(session: AsyncSession, order_id: int, kind: LoyaltyKind) -> bool:
    n = (
        await session.execute(
            select(func.count(LoyaltyEntry.id)).where(
                LoyaltyEntry.order_id == order_id, LoyaltyEntry.kind == kind.value
            )
        )
    ).scalar_one()
    return int(n or 0) > 0


async def _restore_stock(ctx: CompensationContext) -> None:
    for ln in ctx.order.lines:
        await ctx.session.execute(
            update(Product)
            .where(Product.id == ln.product_id)
            .values(
                stock=Product.stock + ln.quantity,
                sold_count=case(
                    (Product.sold_count >= ln.quantity, Product.sold_count - ln.quantity),
                    else_=0,
                ),
            )
            .execution_options(synchronize_session=False)
        )
    ctx.done.append("restore_stock")


async def _release_voucher(ctx: CompensationContext) -> None:
    if ctx.order.voucher_grant_id is None:
        return
    res = await ctx.session.execute(
        update(VoucherGrant)
        .where(
            VoucherGrant.id == ctx.order.voucher_grant_id,
            VoucherGrant.order_id == ctx.order.id,
        )
        .values(is_used=False, order_id=None, used_at=None)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount:
        ctx.done.append("release_voucher")


async def _revoke_coupon(ctx: CompensationContext) -> None:
    if ctx.order.coupon_id is None:
        return
    res = await ctx.session.execute(
        update(CouponUsage)
        .where(CouponUsage.order_id == ctx.order.id, CouponUsage.revoked_at.is_(None))
        .values(revoked_at=ctx.now)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount:
        await ctx.session.execute(
            update(Coupon)
            .where(Coupon.id == ctx.order.coupon_id, Coupon.used_count > 0)
            .values(used_count=Coupon.used_count - 1)
            .execution_options(synchronize_session=False)
        )
        ctx.done.append("revoke_coupon")


async def _refund_points(ctx: CompensationContext) -> None:
    points = int(ctx.order.points_applied or 0)
    if points <= 0 or await _has_entry(ctx.session, ctx.order.id, LoyaltyKind.REFUND):
        return
    await LoyaltyLedger.credit(
        ctx.session,
        user_id=ctx.order.user_id,
        points=points,
        kind=LoyaltyKind.REFUND,
        order_id=ctx.order.id,
        description=f"订单 {ctx.order.order_code} 退回 {points} 积分",
        now=ctx.now,
    )
    ctx.done.append("refund_points")


async def _earn_points(ctx: CompensationContext) -> None:
    points = floor_int(Decimal(ctx.order.subtotal) * ctx.earn_rate)
    if points <= 0 or await _has_entry(ctx.session, ctx.order.id, LoyaltyKind.EARNED):
        return
    await LoyaltyLedger.credit(
        ctx.session,
        user_id=ctx.order.user_id,
        points=points,
        kind=LoyaltyKind.EARNED,
        order_id=ctx.order.id,
        expires_at=end_of_next_month(ctx.now),
        description=f"订单 {ctx.order.order_code} 完成，获得 {points} 积分",
        now=ctx.now,
    )
    ctx.done.append("earn_points")


COMPENSATIONS: Dict[OrderStatus, Tuple[Step, ...]] = {
    OrderStatus.CANCELLED: (
        Step("restore_stock", _restore_stock),
        Step("release_voucher", _release_voucher),
        Step("revoke_coupon", _revoke_coupon),
        Step("refund_points", _refund_points),
    ),
    OrderStatus.REFUNDED: (Step("refund_points", _refund_points),),
    OrderStatus.COMPLETED: (Step("earn_points", _earn_points),),
}
