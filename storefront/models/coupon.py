# storefront/models/coupon.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from storefront.db.base import Base


class Coupon(Base):
    """
    共享优惠码（规则型）：
    - 全局次数 usage_limit（NULL = 不限）/ 已用 used_count
    - 每人次数 user_usage_limit，按 coupon_usages 中未撤销的记录计
    - 适用/排除的商品与分类集合存为 id 列表
    """

    __tablename__ = "coupons"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    discount_type: Mapped[str] = mapped_column(String(16), nullable=False)
    discount_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    minimum_order_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    maximum_discount_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    usage_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    used_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    user_usage_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    allowed_user_ids: Mapped[List[int]] = mapped_column(JSON, nullable=False, default=list)
    applicable_product_ids: Mapped[List[int]] = mapped_column(JSON, nullable=False, default=list)
    applicable_category_ids: Mapped[List[int]] = mapped_column(JSON, nullable=False, default=list)
    excluded_product_ids: Mapped[List[int]] = mapped_column(JSON, nullable=False, default=list)
    excluded_category_ids: Mapped[List[int]] = mapped_column(JSON, nullable=False, default=list)

    def __repr__(self) -> str:
        return f"<Coupon code={self.code!r} used={self.used_count}/{self.usage_limit}>"


class CouponUsage(Base):
    """优惠码使用记录（只追加；取消订单时写 revoked_at，不删除）"""

    __tablename__ = "coupon_usages"
    __table_args__ = (Index("ix_coupon_usages_coupon_user", "coupon_id", "user_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    coupon_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("coupons.id", ondelete="RESTRICT"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    order_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("orders.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    used_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<CouponUsage coupon={self.coupon_id} user={self.user_id} order={self.order_id}>"
