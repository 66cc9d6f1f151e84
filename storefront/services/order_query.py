# storefront/services/order_query.py
# 订单只读查询：列表（按状态过滤 + 分页）与按状态统计
from __future__ import annotations

from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models.enums import OrderStatus
from storefront.models.order import Order
from storefront.services.order_state_machine import as_status
from storefront.services.utils.money import ZERO, to_money


async def list_orders(
    session: AsyncSession,
    *,
    user_id: Optional[int] = None,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[List[Order], int]:
    """新的在前；返回当前页订单与符合条件的总数。user_id 为空表示全部用户。"""
    base = select(Order)
    if user_id is not None:
        base = base.where(Order.user_id == int(user_id))
    if status:
        base = base.where(Order.status == as_status(status).value)

    total = int((await session.execute(select(func.count()).select_from(base.subquery()))).scalar_one())

    limit = min(max(int(limit), 1), 100)
    stmt = (
        base.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((max(int(page), 1) - 1) * limit)
        .limit(limit)
    )
    res = await session.execute(stmt)
    return list(res.scalars().all()), total


async def order_stats(
    session: AsyncSession, *, user_id: Optional[int] = None
) -> Dict[str, Dict[str, object]]:
    """
    每个状态的订单数与金额合计；没有订单的状态也列出（0）。
    """
    stmt = select(
        Order.status, func.count(Order.id), func.coalesce(func.sum(Order.total_amount), 0)
    ).group_by(Order.status)
    if user_id is not None:
        stmt = stmt.where(Order.user_id == int(user_id))

    out: Dict[str, Dict[str, object]] = {
        s.value: {"count": 0, "total_amount": ZERO} for s in OrderStatus
    }
    for status, cnt, amount in (await session.execute(stmt)).all():
        out[status] = {"count": int(cnt), "total_amount": to_money(Decimal(str(amount)))}
    return out
