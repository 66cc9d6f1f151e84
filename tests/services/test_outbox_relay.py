# tests/services/test_outbox_relay.py
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import List

import pytest

from storefront.models.enums import OutboxStatus
from storefront.models.outbox_event import OutboxEvent
from storefront.services.notification_gateway import NotificationEvent
from storefront.services.outbox import OutboxRelay, OutboxWriter
from tests.factories import FrozenClock
from tests.services._helpers import reload

pytestmark = pytest.mark.asyncio

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


class RecordingGateway:
    def __init__(self):
        self.events: List[NotificationEvent] = []

    async def emit(self, event: NotificationEvent) -> None:
        self.events.append(event)


class FailingGateway:
    async def emit(self, event: NotificationEvent) -> None:
        raise ConnectionError("push service down")


async def _enqueue(session, n: int = 1) -> List[OutboxEvent]:
    out = []
    for i in range(n):
        out.append(
            await OutboxWriter.enqueue(
                session,
                topic="order.placed",
                aggregate_id=i + 1,
                payload={"order_id": i + 1, "total_amount": Decimal("10.50")},
            )
        )
    await session.commit()
    return out


async def test_writer_serializes_payload(session):
    (ev,) = await _enqueue(session)
    ev = await reload(session, OutboxEvent, ev.id)
    assert ev.status == OutboxStatus.PENDING.value
    assert ev.aggregate_id == "1"
    assert ev.payload == {"order_id": 1, "total_amount": "10.50"}
    assert ev.attempts == 0


async def test_relay_delivers_pending_events_in_order(session):
    events = await _enqueue(session, 3)
    gateway = RecordingGateway()
    relay = OutboxRelay(gateway, clock=FrozenClock(T0))

    assert await relay.dispatch_pending(session) == 3
    await session.commit()

    assert [e.id for e in gateway.events] == [ev.id for ev in events]
    for ev in events:
        ev = await reload(session, OutboxEvent, ev.id)
        assert ev.status == OutboxStatus.SENT.value
        assert ev.dispatched_at is not None

    # 已投递的不再重复投递
    assert await relay.dispatch_pending(session) == 0
    assert len(gateway.events) == 3


async def test_relay_batch_size(session):
    await _enqueue(session, 3)
    gateway = RecordingGateway()
    assert await OutboxRelay(gateway).dispatch_pending(session, batch_size=2) == 2
    assert len(gateway.events) == 2


async def test_failures_are_counted_then_marked_failed(session):
    (ev,) = await _enqueue(session)
    relay = OutboxRelay(FailingGateway(), max_attempts=2)

    assert await relay.dispatch_pending(session) == 0
    await session.commit()
    ev = await reload(session, OutboxEvent, ev.id)
    assert ev.status == OutboxStatus.PENDING.value
    assert ev.attempts == 1
    assert ev.last_error == "ConnectionError: push service down"

    assert await relay.dispatch_pending(session) == 0
    await session.commit()
    ev = await reload(session, OutboxEvent, ev.id)
    assert ev.status == OutboxStatus.FAILED.value
    assert ev.attempts == 2

    # FAILED 不再被扫描
    recorder = RecordingGateway()
    assert await OutboxRelay(recorder).dispatch_pending(session) == 0
    assert recorder.events == []
