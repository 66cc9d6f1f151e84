# storefront/api/routers/orders.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.deps import get_actor, get_current_user_id, get_lifecycle, get_session
from storefront.models.enums import OrderStatus, PerformedBy
from storefront.models.order import Order
from storefront.schemas.order import (
    CancelIn,
    OrderListOut,
    OrderOut,
    OrderStatsOut,
    PlaceOrderIn,
    PreviewIn,
    PreviewOut,
    StatusOption,
    TransitionsOut,
)
from storefront.services import order_query
from storefront.services.order_lifecycle import OrderLifecycle
from storefront.services.order_state_machine import STATUS_LABELS

router = APIRouter(prefix="/orders", tags=["orders"])


def _option(s: OrderStatus | str) -> StatusOption:
    st = OrderStatus(s)
    return StatusOption(status=st.value, label=STATUS_LABELS.get(st, st.value))


async def _order_out(session: AsyncSession, lifecycle: OrderLifecycle, order: Order) -> OrderOut:
    # 提交后重新加载（selectin 带出 lines / timeline）
    fresh = await lifecycle.get_order(session, order.id)
    return OrderOut.model_validate(fresh)


@router.post("/preview", response_model=PreviewOut)
async def preview_order(
    body: PreviewIn,
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
) -> PreviewOut:
    """
    购物车预览：只读，不扣库存、不占券。
    返回值需原样提交到 POST /orders。
    """
    preview = await lifecycle.pricing.preview(
        session,
        user_id,
        body.raw_lines(),
        shipping_method=body.shipping_method,
        voucher_code=body.voucher_code,
        points_to_apply=body.points_to_apply,
        coupon_code=body.coupon_code,
    )
    return PreviewOut.from_preview(preview)


@router.post("", response_model=OrderOut, status_code=status.HTTP_201_CREATED)
async def place_order(
    body: PlaceOrderIn,
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
) -> OrderOut:
    """
    下单：服务端重算预览并逐字段比对，不一致 409（preview_conflict）；
    一致则单事务完成建单、扣库存、核销券/优惠码、扣积分。
    """
    order = await lifecycle.place_order(session, user_id, body.to_preview())
    await session.commit()
    return await _order_out(session, lifecycle, order)


@router.get("", response_model=OrderListOut)
async def list_my_orders(
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> OrderListOut:
    """本人订单列表（新的在前），可按状态过滤。"""
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
async def my_order_stats(
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> OrderStatsOut:
    stats = await order_query.order_stats(session, user_id=user_id)
    return OrderStatsOut(user_id=user_id, stats=stats)


@router.get("/{order_id}", response_model=OrderOut)
async def get_order(
    order_id: int = Path(..., ge=1),
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
) -> OrderOut:
    order = await lifecycle.get_owned_order(session, order_id, user_id)
    return OrderOut.model_validate(order)


@router.get("/{order_id}/transitions", response_model=TransitionsOut)
async def get_order_transitions(
    order_id: int = Path(..., ge=1),
    user_id: int = Depends(get_current_user_id),
    actor: PerformedBy = Depends(get_actor),
    session: AsyncSession = Depends(get_session),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
) -> TransitionsOut:
    """当前状态 + 合法的下一状态（后台状态下拉框使用）。"""
    if actor == PerformedBy.ADMIN:
        order = await lifecycle.get_order(session, order_id)
    else:
        order = await lifecycle.get_owned_order(session, order_id, user_id)
    return TransitionsOut(
        order_id=order.id,
        current=_option(order.status),
        next=[_option(s) for s in lifecycle.allowed_transitions(order)],
    )


@router.post("/{order_id}/cancel", response_model=OrderOut)
async def cancel_order(
    body: CancelIn | None = None,
    order_id: int = Path(..., ge=1),
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
) -> OrderOut:
    """用户取消：仅本人订单、仅在备货前。"""
    reason = body.reason if body else None
    order = await lifecycle.cancel_by_user(session, order_id, user_id, reason)
    await session.commit()
    return await _order_out(session, lifecycle, order)


@router.post("/{order_id}/confirm-received", response_model=OrderOut)
async def confirm_received(
    order_id: int = Path(..., ge=1),
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
) -> OrderOut:
    """确认收货：DELIVERED → COMPLETED，并发放积分。"""
    order = await lifecycle.confirm_received(session, order_id, user_id)
    await session.commit()
    return await _order_out(session, lifecycle, order)
