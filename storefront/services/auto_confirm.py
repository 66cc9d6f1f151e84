# storefront/services/auto_confirm.py
from __future__ import annotations

import logging
from datetime import timedelta
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.core.clock import Clock, utcnow
from storefront.models.enums import OrderStatus, PerformedBy
from storefront.models.order import Order
from storefront.obs.metrics import auto_confirm_failures_total, auto_confirm_promoted_total
from storefront.services.order_lifecycle import OrderLifecycle

logger = logging.getLogger("storefront.scheduler")

DEFAULT_THRESHOLD = timedelta(minutes=30)


class AutoConfirmScheduler:
    """
    自动确认：NEW 状态超过阈值（默认 30 分钟）无人处理的订单，由 system 推进到 CONFIRMED。

    - 每张订单独立 session / 事务：单张失败只记日志，不影响其余订单
    - 幂等：已推进的订单离开 NEW，不会被再次扫到
    - 时钟可注入，测试里直接给固定时间
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        clock: Clock = utcnow,
        threshold: timedelta = DEFAULT_THRESHOLD,
        lifecycle: OrderLifecycle | None = None,
        batch_size: int = 500,
    ):
        self.session_maker = session_maker
        self.clock = clock
        self.threshold = threshold
        self.lifecycle = lifecycle or OrderLifecycle(clock=clock)
        self.batch_size = batch_size

    async def _stale_order_ids(self) -> List[int]:
        cutoff = self.clock() - self.threshold
        async with self.session_maker() as session:
            rows = await session.execute(
                select(Order.id)
                .where(Order.status == OrderStatus.NEW.value, Order.created_at < cutoff)
                .order_by(Order.id)
                .limit(self.batch_size)
            )
            return [int(x) for x in rows.scalars().all()]

    async def sweep(self) -> int:
        order_ids = await self._stale_order_ids()
        promoted = 0
        for order_id in order_ids:
            try:
                async with self.session_maker() as session:
                    await self.lifecycle.transition(
                        session,
                        order_id,
                        OrderStatus.CONFIRMED,
                        {"auto": True},
                        PerformedBy.SYSTEM,
                    )
                promoted += 1
            except Exception:
                auto_confirm_failures_total.inc()
                logger.exception("auto-confirm failed for order %s", order_id)

        if promoted:
            auto_confirm_promoted_total.inc(promoted)
        logger.info("auto-confirm sweep: %d/%d orders promoted", promoted, len(order_ids))
        return promoted
