from __future__ import annotations

from typing import Any, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models.order import Order
from storefront.services.order_lifecycle import OrderLifecycle

M = TypeVar("M")


async def reload(session: AsyncSession, model: Type[M], pk: Any) -> M:
    """按主键重新读库（覆盖 identity map 里的旧值）。"""
    obj = await session.get(model, pk, populate_existing=True)
    assert obj is not None, f"{model.__name__}#{pk} not found"
    return obj


async def count(session: AsyncSession, column, *where) -> int:
    stmt = select(func.count(column))
    if where:
        stmt = stmt.where(*where)
    return int((await session.execute(stmt)).scalar_one() or 0)


async def place(
    session: AsyncSession,
    lifecycle: OrderLifecycle,
    user_id: int,
    lines: list[dict],
    **kw,
) -> Order:
    """预览 + 受信下单 + 提交，返回订单。"""
    preview = await lifecycle.pricing.preview(session, user_id, lines, **kw)
    order = await lifecycle.place(session, user_id, preview)
    await session.commit()
    return order
