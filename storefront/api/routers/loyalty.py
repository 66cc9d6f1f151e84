# storefront/api/routers/loyalty.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.deps import get_current_user_id, get_session
from storefront.core.clock import end_of_month, utcnow
from storefront.models.enums import LoyaltyKind
from storefront.schemas.loyalty import BalanceOut, HistoryOut, LoyaltyEntryOut
from storefront.services.loyalty_ledger import LoyaltyLedger

router = APIRouter(prefix="/loyalty", tags=["loyalty"])


@router.get("/balance", response_model=BalanceOut)
async def get_balance(
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> BalanceOut:
    now = utcnow()
    balance = await LoyaltyLedger.balance_of(session, user_id, now=now)
    expiring = await LoyaltyLedger.expiring_this_month(session, user_id, now=now)
    return BalanceOut(
        user_id=user_id,
        balance=balance,
        expiring_this_month=expiring,
        expiring_at=end_of_month(now),
    )


@router.get("/history", response_model=HistoryOut)
async def get_history(
    kind: Optional[LoyaltyKind] = Query(None, description="按流水类型过滤，缺省为全部"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> HistoryOut:
    """积分流水（新的在前），分页。"""
    rows, total = await LoyaltyLedger.history(session, user_id, kind=kind, page=page, limit=limit)
    return HistoryOut(
        user_id=user_id,
        kind=kind.value if kind else None,
        page=page,
        limit=limit,
        total=total,
        total_pages=(total + limit - 1) // limit,
        entries=[LoyaltyEntryOut.model_validate(r) for r in rows],
    )
