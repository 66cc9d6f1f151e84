# storefront/services/outbox.py
"""
Outbox：

- OutboxWriter / OrderEventBus 在业务事务内写 outbox_events（不提交），
  订单与事件同生共死；
- OutboxRelay 在事务外扫描 PENDING 事件投递给 NotificationGateway，
  投递失败只记录 attempts / last_error，超过上限标记 FAILED，永不回滚订单。
"""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.clock import Clock, utcnow
from storefront.models.enums import OutboxStatus
from storefront.models.order import Order
from storefront.models.outbox_event import OutboxEvent
from storefront.obs.metrics import outbox_dispatched_total
from storefront.services.notification_gateway import NotificationEvent, NotificationGateway

logger = logging.getLogger("storefront.outbox")

TOPIC_ORDER_PLACED = "order.placed"
TOPIC_ORDER_STATUS_CHANGED = "order.status_changed"


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class OutboxWriter:
    @staticmethod
    async def enqueue(
        session: AsyncSession,
        *,
        topic: str,
        aggregate_id: str | int | None,
        payload: Dict[str, Any],
    ) -> OutboxEvent:
        ev = OutboxEvent(
            topic=topic,
            aggregate_id=None if aggregate_id is None else str(aggregate_id),
            payload=_jsonable(dict(payload)),
            status=OutboxStatus.PENDING.value,
            attempts=0,
        )
        session.add(ev)
        await session.flush()
        return ev


class OrderEventBus:
    """订单事件统一出口（topic 命名 order.*）"""

    @staticmethod
    async def order_placed(session: AsyncSession, order: Order) -> OutboxEvent:
        return await OutboxWriter.enqueue(
            session,
            topic=TOPIC_ORDER_PLACED,
            aggregate_id=order.id,
            payload={
                "order_id": order.id,
                "order_code": order.order_code,
                "user_id": order.user_id,
                "total_amount": order.total_amount,
                "lines": len(order.lines),
            },
        )

    @staticmethod
    async def order_status_changed(
        session: AsyncSession,
        order: Order,
        *,
        from_status: str,
        to_status: str,
        performed_by: str,
        meta: Optional[Dict[str, Any]] = None,
    ) -> OutboxEvent:
        return await OutboxWriter.enqueue(
            session,
            topic=TOPIC_ORDER_STATUS_CHANGED,
            aggregate_id=order.id,
            payload={
                "order_id": order.id,
                "order_code": order.order_code,
                "user_id": order.user_id,
                "from_status": from_status,
                "to_status": to_status,
                "performed_by": performed_by,
                "meta": dict(meta or {}),
            },
        )


class OutboxRelay:
    def __init__(
        self,
        gateway: NotificationGateway,
        *,
        max_attempts: int = 5,
        clock: Clock = utcnow,
    ):
        self.gateway = gateway
        self.max_attempts = max_attempts
        self.clock = clock

    async def dispatch_pending(self, session: AsyncSession, *, batch_size: int = 100) -> int:
        """
        投递一批 PENDING 事件，返回成功条数；调用方负责 commit。
        """
        rows: List[OutboxEvent] = list(
            (
                await session.execute(
                    select(OutboxEvent)
                    .where(OutboxEvent.status == OutboxStatus.PENDING.value)
                    .order_by(OutboxEvent.id)
                    .limit(int(batch_size))
                )
            )
            .scalars()
            .all()
        )

        sent = 0
        for ev in rows:
            event = NotificationEvent(
                id=ev.id, topic=ev.topic, aggregate_id=ev.aggregate_id, payload=dict(ev.payload)
            )
            try:
                await self.gateway.emit(event)
            except Exception as e:
                ev.attempts = int(ev.attempts or 0) + 1
                ev.last_error = f"{type(e).__name__}: {e}"[:1000]
                if ev.attempts >= self.max_attempts:
                    ev.status = OutboxStatus.FAILED.value
                    logger.error(
                        "outbox event %s (%s) failed permanently after %d attempts: %s",
                        ev.id,
                        ev.topic,
                        ev.attempts,
                        e,
                    )
                else:
                    logger.warning("outbox event %s (%s) emit failed: %s", ev.id, ev.topic, e)
                outbox_dispatched_total.labels("error").inc()
                continue

            ev.status = OutboxStatus.SENT.value
            ev.dispatched_at = self.clock()
            sent += 1
            outbox_dispatched_total.labels("sent").inc()

        await session.flush()
        return sent
