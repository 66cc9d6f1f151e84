# storefront/api/routers/admin_orders.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.deps import get_lifecycle, get_session, require_admin
from storefront.core.errors import BusinessRuleError
from storefront.models.enums import PerformedBy
from storefront.schemas.order import AdminStatusIn, OrderListOut, OrderOut, OrderStatsOut
from storefront.services import order_query
from storefront.services.order_lifecycle import OrderLifecycle
from storefront.services.order_state_machine import ADMIN_MANUAL_STATUSES, as_status

router = APIRouter(prefix="/admin/orders", tags=["admin-orders"])


@router.post("/{order_id}/status", response_model=OrderOut)
async def update_order_status(
    body: AdminStatusIn,
    order_id: int = Path(..., ge=1),
    actor: PerformedBy = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
) -> OrderOut:
    """
    后台推进订单状态（X-Actor: admin）。
    CONFIRMED / COMPLETED 由系统或用户触发，不在后台手动范围内。
    """
    target = as_status(body.status)
    if target not in ADMIN_MANUAL_STATUSES:
        raise BusinessRuleError(
            f"状态 {target.value} 不能由后台手动设置",
            context={"order_id": order_id, "target_status": target.value},
        )
    order = await lifecycle.transition(session, order_id, target, body.to_metadata(), actor)
    await session.commit()
    fresh = await lifecycle.get_order(session, order.id)
    return OrderOut.model_validate(fresh)


@router.get("", response_model=OrderListOut)
async def list_orders(
    status_filter: Optional[str] = Query(None, alias="status"),
    user_id: Optional[int] = Query(None, ge=1),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    actor: PerformedBy = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> OrderListOut:
    """后台订单列表：全部用户，可按用户 / 状态过滤。"""
    rows, total = await order_query.list_orders(
        session, user_id=user_id, status=status_filter, page=page, limit=limit
    )
    return OrderListOut(
        items=[OrderOut.model_validate(o) for o in rows],
        page=page,
        limit=limit,
        total=total,
        total_pages=(total + limit - 1) // limit,
    )


@router.get("/stats", response_model=OrderStatsOut)
async def order_stats(
    user_id: Optional[int] = Query(None, ge=1),
    actor: PerformedBy = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> OrderStatsOut:
    stats = await order_query.order_stats(session, user_id=user_id)
    return OrderStatsOut(user_id=user_id, stats=stats)
