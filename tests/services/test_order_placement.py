# tests/services/test_order_placement.py
from __future__ import annotations

import asyncio
from dataclasses import replace
from decimal import Decimal

import pytest
from sqlalchemy import select

from storefront.core.errors import BusinessRuleError, ConflictError, LinesUnavailableError
from storefront.models.coupon import Coupon, CouponUsage
from storefront.models.enums import LoyaltyKind, OrderStatus, OutboxStatus
from storefront.models.loyalty_entry import LoyaltyEntry
from storefront.models.order import Order
from storefront.models.outbox_event import OutboxEvent
from storefront.models.product import Product
from storefront.models.voucher import VoucherGrant
from storefront.services.loyalty_ledger import LoyaltyLedger
from storefront.services.order_lifecycle import OrderLifecycle
from storefront.services.outbox import TOPIC_ORDER_PLACED
from tests.factories import (
    give_points,
    grant_voucher,
    make_coupon,
    make_delivery,
    make_product,
    make_voucher,
)
from tests.services._helpers import count, reload

pytestmark = pytest.mark.asyncio

D = Decimal
USER = 42


async def test_place_order_applies_every_side_effect(session):
    p = await make_product(session, price="100000", discount_pct="10", stock=5)
    await make_delivery(session, code="STANDARD", fee="20000")
    v = await make_voucher(session, code="SAVE20K", value="20000", min_purchase="50000")
    grant = await grant_voucher(session, user_id=USER, voucher=v)
    await give_points(session, user_id=USER, points=1_000)
    await session.commit()

    lifecycle = OrderLifecycle()
    client_preview = await lifecycle.pricing.preview(
        session,
        USER,
        [{"product_id": p.id, "quantity": 2}],
        shipping_method="STANDARD",
        voucher_code="SAVE20K",
        points_to_apply=600,
    )
    await session.commit()

    order = await lifecycle.place_order(session, USER, client_preview)
    await session.commit()

    assert order.status == OrderStatus.NEW.value
    assert order.can_cancel is True
    assert order.order_code.startswith("ORD")
    assert order.subtotal == D("180000.00")
    assert order.discount == D("20000.00")
    assert order.points_applied == 600
    assert order.total_amount == D("179400.00")
    assert [ln.quantity for ln in order.lines] == [2]
    assert order.lines[0].line_total == D("180000.00")
    assert [(t.status, t.description) for t in order.timeline] == [("NEW", "订单已创建")]

    prod = await reload(session, Product, p.id)
    assert (prod.stock, prod.sold_count) == (3, 2)

    g = await reload(session, VoucherGrant, grant.id)
    assert g.is_used is True
    assert g.order_id == order.id

    assert await LoyaltyLedger.balance_of(session, USER) == 400
    redeemed = (
        await session.execute(
            select(LoyaltyEntry).where(LoyaltyEntry.kind == LoyaltyKind.REDEEMED.value)
        )
    ).scalar_one()
    assert redeemed.points == -600
    assert redeemed.order_id == order.id

    ev = (await session.execute(select(OutboxEvent))).scalar_one()
    assert ev.topic == TOPIC_ORDER_PLACED
    assert ev.status == OutboxStatus.PENDING.value
    assert ev.payload["order_code"] == order.order_code
    assert ev.payload["total_amount"] == "179400.00"


async def test_stale_client_price_is_a_conflict_and_creates_nothing(session):
    p = await make_product(session, price="100000", stock=5)
    await session.commit()
    pid = p.id

    lifecycle = OrderLifecycle()
    client_preview = await lifecycle.pricing.preview(
        session, USER, [{"product_id": p.id, "quantity": 1}]
    )
    await session.commit()

    p.price = D("120000")
    await session.commit()

    with pytest.raises(ConflictError) as ei:
        await lifecycle.place_order(session, USER, client_preview)
    await session.rollback()

    paths = {d["path"] for d in ei.value.details}
    assert "lines[0].product_price" in paths
    assert "total_amount" in paths
    assert ei.value.status == 409

    assert await count(session, Order.id) == 0
    assert (await reload(session, Product, pid)).stock == 5


async def test_tampered_total_is_rejected(session):
    p = await make_product(session, price="100", stock=5)
    await session.commit()

    lifecycle = OrderLifecycle()
    real = await lifecycle.pricing.preview(session, USER, [{"product_id": p.id, "quantity": 1}])
    await session.commit()

    with pytest.raises(ConflictError) as ei:
        await lifecycle.place_order(session, USER, replace(real, total_amount=D("1.00")))
    await session.rollback()
    assert [d["path"] for d in ei.value.details] == ["total_amount"]
    assert await count(session, Order.id) == 0


async def test_voucher_cannot_be_consumed_twice(session):
    p = await make_product(session, price="100000", stock=10)
    v = await make_voucher(session, code="ONCE", value="1000", min_purchase="0")
    await grant_voucher(session, user_id=USER, voucher=v)
    await session.commit()
    pid = p.id

    lifecycle = OrderLifecycle()
    lines = [{"product_id": p.id, "quantity": 1}]
    first = await lifecycle.pricing.preview(session, USER, lines, voucher_code="ONCE")
    second = await lifecycle.pricing.preview(session, USER, lines, voucher_code="ONCE")
    await session.commit()

    await lifecycle.place(session, USER, first)
    await session.commit()

    with pytest.raises(BusinessRuleError):
        await lifecycle.place(session, USER, second)
    await session.rollback()

    # 第二单整单回滚：库存只扣一次
    assert await count(session, Order.id) == 1
    assert (await reload(session, Product, pid)).stock == 9


async def test_commit_time_stock_shortage_rolls_back_everything(session):
    a = await make_product(session, price="100", stock=5)
    b = await make_product(session, price="100", stock=5)
    await session.commit()
    aid, bid = a.id, b.id

    lifecycle = OrderLifecycle()
    preview = await lifecycle.pricing.preview(
        session,
        USER,
        [{"product_id": a.id, "quantity": 2}, {"product_id": b.id, "quantity": 4}],
    )
    await session.commit()

    b.stock = 1
    await session.commit()

    with pytest.raises(LinesUnavailableError) as ei:
        await lifecycle.place(session, USER, preview)
    await session.rollback()

    assert [ln["product_id"] for ln in ei.value.lines] == [bid]
    assert (await reload(session, Product, aid)).stock == 5
    assert await count(session, Order.id) == 0
    assert await count(session, OutboxEvent.id) == 0


async def test_commit_time_points_recheck(session):
    p = await make_product(session, price="10000", stock=5)
    await give_points(session, user_id=USER, points=1_000)
    await session.commit()
    pid = p.id

    lifecycle = OrderLifecycle()
    preview = await lifecycle.pricing.preview(
        session, USER, [{"product_id": p.id, "quantity": 1}], points_to_apply=800
    )
    await LoyaltyLedger.debit(session, user_id=USER, points=500, description="其他渠道消费")
    await session.commit()

    with pytest.raises(BusinessRuleError):
        await lifecycle.place(session, USER, preview)
    await session.rollback()

    assert await LoyaltyLedger.balance_of(session, USER) == 500
    assert (await reload(session, Product, pid)).stock == 5


async def test_coupon_consumption_records_usage(session):
    p = await make_product(session, price="1000", stock=5)
    c = await make_coupon(session, code="TEN", value="10", usage_limit=10)
    await session.commit()

    lifecycle = OrderLifecycle()
    preview = await lifecycle.pricing.preview(
        session, USER, [{"product_id": p.id, "quantity": 1}], coupon_code="ten"
    )
    order = await lifecycle.place(session, USER, preview)
    await session.commit()

    assert order.coupon_code == "TEN"
    assert order.coupon_id == c.id
    assert order.discount == D("100.00")
    assert (await reload(session, Coupon, c.id)).used_count == 1

    usage = (await session.execute(select(CouponUsage))).scalar_one()
    assert (usage.user_id, usage.order_id, usage.discount_amount) == (USER, order.id, D("100.00"))
    assert usage.revoked_at is None

    # 每人限用 1 次：再次预览即被拒
    with pytest.raises(BusinessRuleError):
        await lifecycle.pricing.preview(
            session, USER, [{"product_id": p.id, "quantity": 1}], coupon_code="TEN"
        )


async def test_coupon_global_limit(session):
    p = await make_product(session, price="1000", stock=5)
    c = await make_coupon(session, code="ONLYONE", value="10", usage_limit=1)
    await session.commit()
    cid = c.id

    lifecycle = OrderLifecycle()
    lines = [{"product_id": p.id, "quantity": 1}]
    first = await lifecycle.pricing.preview(session, 1, lines, coupon_code="ONLYONE")
    second = await lifecycle.pricing.preview(session, 2, lines, coupon_code="ONLYONE")
    await session.commit()

    await lifecycle.place(session, 1, first)
    await session.commit()

    with pytest.raises(BusinessRuleError):
        await lifecycle.place(session, 2, second)
    await session.rollback()
    assert (await reload(session, Coupon, cid)).used_count == 1
    assert await count(session, CouponUsage.id) == 1


async def test_concurrent_placements_never_oversell(session, async_session_maker):
    """stock=5，两个会话同时各下 5 件：恰好一单成功、一单缺货。"""
    p = await make_product(session, price="100", stock=5)
    await session.commit()

    lifecycle = OrderLifecycle()
    lines = [{"product_id": p.id, "quantity": 5}]
    p1 = await lifecycle.pricing.preview(session, 1, lines)
    p2 = await lifecycle.pricing.preview(session, 2, lines)
    await session.commit()

    async def _place(user_id, preview):
        async with async_session_maker() as s:
            order = await lifecycle.place(s, user_id, preview)
            return order.id

    results = await asyncio.gather(_place(1, p1), _place(2, p2), return_exceptions=True)

    ok = [r for r in results if isinstance(r, int)]
    failed = [r for r in results if isinstance(r, LinesUnavailableError)]
    assert len(ok) == 1, results
    assert len(failed) == 1, results

    prod = await reload(session, Product, p.id)
    assert (prod.stock, prod.sold_count) == (0, 5)
    assert await count(session, Order.id) == 1


async def test_concurrent_placements_never_overspend_points(session, async_session_maker):
    """积分 1000，两个会话同时各用 1000 分下单：恰好一单成功、一单余额不足。"""
    p = await make_product(session, price="10000", stock=10)
    await give_points(session, user_id=USER, points=1_000)
    await session.commit()

    lifecycle = OrderLifecycle()
    lines = [{"product_id": p.id, "quantity": 1}]
    p1 = await lifecycle.pricing.preview(session, USER, lines, points_to_apply=1_000)
    p2 = await lifecycle.pricing.preview(session, USER, lines, points_to_apply=1_000)
    await session.commit()
    assert p1.points_applied == p2.points_applied == 1_000

    async def _place(preview):
        async with async_session_maker() as s:
            order = await lifecycle.place(s, USER, preview)
            await s.commit()
            return order.id

    results = await asyncio.gather(_place(p1), _place(p2), return_exceptions=True)

    ok = [r for r in results if isinstance(r, int)]
    failed = [r for r in results if isinstance(r, BusinessRuleError)]
    assert len(ok) == 1, results
    assert len(failed) == 1, results

    assert await LoyaltyLedger.balance_of(session, USER) == 0
    assert await count(session, Order.id) == 1
    assert (await reload(session, Product, p.id)).stock == 9
