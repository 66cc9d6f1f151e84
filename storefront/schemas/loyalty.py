# storefront/schemas/loyalty.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class _Base(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")


class BalanceOut(_Base):
    user_id: int
    balance: int
    # 本月底前将到期（不超过 balance）
    expiring_this_month: int = 0
    expiring_at: datetime


class LoyaltyEntryOut(_Base):
    id: int
    points: int
    kind: str
    description: Optional[str] = None
    order_id: Optional[int] = None
    expires_at: Optional[datetime] = None
    is_expired: bool = False
    created_at: datetime


class HistoryOut(_Base):
    user_id: int
    kind: Optional[str] = None
    page: int
    limit: int
    total: int
    total_pages: int
    entries: List[LoyaltyEntryOut]
