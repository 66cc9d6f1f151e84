# storefront/services/order_lifecycle.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, TypeVar

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from storefront.core.clock import Clock, utcnow
from storefront.core.errors import BusinessRuleError, ConflictError, NotFoundError
from storefront.models.enums import OrderStatus, PerformedBy
from storefront.models.order import Order
from storefront.obs.metrics import order_transitions_total, orders_placed_total
from storefront.services.order_commit_pipeline import (
    COMPENSATIONS,
    PLACEMENT_STEPS,
    CompensationContext,
    PlacementContext,
    add_timeline_entry,
    run_steps,
)
from storefront.services.order_state_machine import (
    TIMESTAMP_FIELDS,
    as_status,
    assert_transition,
    next_statuses,
)
from storefront.services.outbox import OrderEventBus
from storefront.services.pricing_engine import PricingEngine
from storefront.services.pricing_types import Preview
from storefront.services.reconciliation_guard import ReconciliationGuard

logger = logging.getLogger("storefront.orders")

T = TypeVar("T")


async def _run_in_tx(session: AsyncSession, fn: Callable[[], Awaitable[T]]) -> T:
    """
    session 已在事务中：用保存点包裹，失败只回滚本段写入，由调用方 commit；
    session 不在事务中：begin/commit 包裹。
    """
    if session.in_transaction():
        async with session.begin_nested():
            return await fn()
    async with session.begin():
        return await fn()


class OrderLifecycle:
    """
    订单生命周期：

      - place        : 受信预览 → 单事务执行 PLACEMENT_STEPS
      - place_order  : ReconciliationGuard.verify + place（HTTP 下单入口）
      - transition   : 状态机校验 → CAS 更新状态 → 时间戳/时间线 → 补偿步骤 → outbox
    """

    def __init__(
        self,
        *,
        clock: Clock = utcnow,
        pricing: PricingEngine | None = None,
        earn_rate: float | Decimal = Decimal("0.01"),
    ):
        self.clock = clock
        self.pricing = pricing or PricingEngine(clock=clock)
        self.guard = ReconciliationGuard(self.pricing)
        self.earn_rate = Decimal(str(earn_rate))

    # ------------------------------------------------------------------
    # 下单
    # ------------------------------------------------------------------
    async def place(self, session: AsyncSession, user_id: int, trusted_preview: Preview) -> Order:
        async def _inner() -> Order:
            ctx = PlacementContext(
                session=session, user_id=int(user_id), preview=trusted_preview, now=self.clock()
            )
            await run_steps(PLACEMENT_STEPS, ctx)
            return ctx.order

        order = await _run_in_tx(session, _inner)
        orders_placed_total.inc()
        logger.info(
            "order placed id=%s code=%s user=%s total=%s",
            order.id,
            order.order_code,
            order.user_id,
            order.total_amount,
        )
        return order

    async def place_order(self, session: AsyncSession, user_id: int, client_preview: Preview) -> Order:
        async def _inner() -> Order:
            trusted = await self.guard.verify(session, user_id, client_preview)
            return await self.place(session, user_id, trusted)

        return await _run_in_tx(session, _inner)

    # ------------------------------------------------------------------
    # 状态迁移
    # ------------------------------------------------------------------
    async def get_order(self, session: AsyncSession, order_id: int) -> Order:
        stmt = (
            select(Order).where(Order.id == int(order_id)).execution_options(populate_existing=True)
        )
        order = (await session.execute(stmt)).scalar_one_or_none()
        if order is None:
            raise NotFoundError(f"订单不存在: {order_id}", context={"order_id": order_id})
        return order

    async def transition(
        self,
        session: AsyncSession,
        order_id: int,
        new_status: OrderStatus | str,
        metadata: Optional[Mapping[str, Any]] = None,
        performed_by: PerformedBy | str = PerformedBy.SYSTEM,
        *,
        require_can_cancel: bool = False,
    ) -> Order:
        target = as_status(new_status)
        actor = str(getattr(performed_by, "value", performed_by))
        meta: Dict[str, Any] = dict(metadata or {})

        async def _inner() -> Order:
            order = await self.get_order(session, order_id)
            current = order.status
            assert_transition(current, target)
            if require_can_cancel and not order.can_cancel:
                raise BusinessRuleError(
                    "订单已开始备货，无法直接取消，请申请退货",
                    context={"order_id": order.id, "status": current},
                )

            now = self.clock()
            values: Dict[str, Any] = {"status": target.value, "updated_at": now}
            ts_field = TIMESTAMP_FIELDS.get(target)
            if ts_field:
                values[ts_field] = now
            if target == OrderStatus.PREPARING:
                # 进入备货后不能直接取消，只能走退货流程
                values["can_cancel"] = False
            if target == OrderStatus.CANCELLED:
                values["can_cancel"] = False
                values["cancelled_by"] = actor
                values["cancelled_reason"] = meta.get("reason") or meta.get("cancelled_reason")

            # CAS：状态在读取后被别人改过则冲突
            res = await session.execute(
                update(Order)
                .where(Order.id == order.id, Order.status == current)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                raise ConflictError(
                    "订单状态已被其他操作更新，请刷新后重试",
                    context={"order_id": order.id, "expected_status": current},
                )
            # 已由上面的 UPDATE 落库，这里只同步内存态，不再标脏
            for k, v in values.items():
                set_committed_value(order, k, v)

            add_timeline_entry(order, target, actor, meta, now)

            comp = COMPENSATIONS.get(target)
            if comp:
                cctx = CompensationContext(
                    session=session, order=order, now=now, earn_rate=self.earn_rate
                )
                await run_steps(comp, cctx)
                if cctx.done:
                    logger.info("order %s compensation done: %s", order.id, cctx.done)

            await OrderEventBus.order_status_changed(
                session,
                order,
                from_status=current,
                to_status=target.value,
                performed_by=actor,
                meta=meta,
            )
            await session.flush()
            return order

        order = await _run_in_tx(session, _inner)
        order_transitions_total.labels(target.value, actor).inc()
        return order

    def allowed_transitions(self, order: Order) -> List[OrderStatus]:
        return next_statuses(order.status)

    # ------------------------------------------------------------------
    # 用户侧操作
    # ------------------------------------------------------------------
    async def get_owned_order(self, session: AsyncSession, order_id: int, user_id: int) -> Order:
        order = await self.get_order(session, order_id)
        if order.user_id != int(user_id):
            # 不暴露他人订单是否存在
            raise NotFoundError(f"订单不存在: {order_id}", context={"order_id": order_id})
        return order

    async def cancel_by_user(
        self, session: AsyncSession, order_id: int, user_id: int, reason: str | None = None
    ) -> Order:
        order = await self.get_owned_order(session, order_id, user_id)
        return await self.transition(
            session,
            order.id,
            OrderStatus.CANCELLED,
            {"reason": reason or "用户取消"},
            PerformedBy.USER,
            require_can_cancel=True,
        )

    async def confirm_received(self, session: AsyncSession, order_id: int, user_id: int) -> Order:
        order = await self.get_owned_order(session, order_id, user_id)
        return await self.transition(session, order.id, OrderStatus.COMPLETED, {}, PerformedBy.USER)
