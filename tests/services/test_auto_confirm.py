# tests/services/test_auto_confirm.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from storefront.models.enums import OrderStatus
from storefront.services.auto_confirm import AutoConfirmScheduler
from storefront.services.order_lifecycle import OrderLifecycle
from tests.factories import FrozenClock, make_product
from tests.services._helpers import place

pytestmark = pytest.mark.asyncio

T0 = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


async def _seed(session, lifecycle, clock, *, old: int, fresh: int):
    p = await make_product(session, price="100", stock=100)
    await session.commit()
    line = [{"product_id": p.id, "quantity": 1}]

    old_ids = [(await place(session, lifecycle, 1, line)).id for _ in range(old)]
    clock.advance(minutes=31)
    fresh_ids = [(await place(session, lifecycle, 1, line)).id for _ in range(fresh)]
    return old_ids, fresh_ids


async def test_sweep_promotes_only_stale_new_orders(session, async_session_maker):
    clock = FrozenClock(T0)
    lifecycle = OrderLifecycle(clock=clock)
    old_ids, fresh_ids = await _seed(session, lifecycle, clock, old=3, fresh=1)

    sweeper = AutoConfirmScheduler(async_session_maker, clock=clock, lifecycle=lifecycle)
    assert await sweeper.sweep() == 3

    for oid in old_ids:
        order = await lifecycle.get_order(session, oid)
        assert order.status == OrderStatus.CONFIRMED.value
        assert order.confirmed_at is not None
        last = order.timeline[-1]
        assert (last.status, last.performed_by) == ("CONFIRMED", "system")
        assert last.meta == {"auto": True}

    assert (await lifecycle.get_order(session, fresh_ids[0])).status == "NEW"
    await session.commit()

    # 幂等：已确认的不会再被扫到
    assert await sweeper.sweep() == 0


async def test_threshold_is_configurable(session, async_session_maker):
    clock = FrozenClock(T0)
    lifecycle = OrderLifecycle(clock=clock)
    _, fresh_ids = await _seed(session, lifecycle, clock, old=0, fresh=2)

    clock.advance(minutes=5)
    strict = AutoConfirmScheduler(
        async_session_maker, clock=clock, lifecycle=lifecycle, threshold=timedelta(minutes=1)
    )
    assert await strict.sweep() == 2


class FlakyLifecycle(OrderLifecycle):
    def __init__(self, bad_id: int, **kw):
        super().__init__(**kw)
        self.bad_id = bad_id

    async def transition(self, session, order_id, *args, **kw):
        if order_id == self.bad_id:
            raise RuntimeError("boom")
        return await super().transition(session, order_id, *args, **kw)


async def test_one_failure_does_not_stop_the_sweep(session, async_session_maker):
    clock = FrozenClock(T0)
    lifecycle = OrderLifecycle(clock=clock)
    old_ids, _ = await _seed(session, lifecycle, clock, old=3, fresh=0)

    flaky = FlakyLifecycle(old_ids[1], clock=clock)
    sweeper = AutoConfirmScheduler(async_session_maker, clock=clock, lifecycle=flaky)
    assert await sweeper.sweep() == 2

    statuses = [(await lifecycle.get_order(session, oid)).status for oid in old_ids]
    assert statuses == ["CONFIRMED", "NEW", "CONFIRMED"]
