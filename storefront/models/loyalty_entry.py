# storefront/models/loyalty_entry.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from storefront.db.base import Base


class LoyaltyEntry(Base):
    """
    积分流水（只追加）。余额 = SUM(points)，不另存缓存字段。
    points 带符号：earned/bonus/refund 为正，redeemed/expired 为负。
    """

    __tablename__ = "loyalty_entries"
    __table_args__ = (Index("ix_loyalty_entries_user_created", "user_id", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    order_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)

    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # 已被 expired 流水冲销过（只对 earned/bonus 有意义）
    is_expired: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<LoyaltyEntry user={self.user_id} {self.kind} {self.points:+d}>"
