# storefront/api/deps.py
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from fastapi import Header

from storefront.api.problem import raise_problem
from storefront.core.config import get_settings
from storefront.db.session import get_session  # noqa: F401  FastAPI 依赖统一从这里取
from storefront.models.enums import PerformedBy
from storefront.services.order_lifecycle import OrderLifecycle

# ---------------------------
# 身份：由上游鉴权层注入 header
# ---------------------------


async def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> int:
    """
    当前用户：

    - 必须带 X-User-Id（正整数）
    - 缺失或非法 → 401
    """
    raw = (x_user_id or "").strip()
    try:
        user_id = int(raw)
    except ValueError:
        user_id = 0
    if user_id <= 0:
        raise_problem(
            status_code=401,
            error_code="unauthenticated",
            message="缺少或非法的用户身份",
        )
    return user_id


async def get_actor(x_actor: Optional[str] = Header(default=None)) -> PerformedBy:
    """X-Actor: admin | user（缺省 user）。"""
    raw = (x_actor or PerformedBy.USER.value).strip().lower()
    if raw not in (PerformedBy.ADMIN.value, PerformedBy.USER.value):
        raise_problem(status_code=403, error_code="forbidden", message=f"不支持的操作者类型: {raw}")
    return PerformedBy(raw)


async def require_admin(x_actor: Optional[str] = Header(default=None)) -> PerformedBy:
    actor = await get_actor(x_actor)
    if actor != PerformedBy.ADMIN:
        raise_problem(status_code=403, error_code="forbidden", message="需要管理员权限")
    return actor


# ---------------------------
# 服务依赖
# ---------------------------


def get_lifecycle() -> OrderLifecycle:
    settings = get_settings()
    return OrderLifecycle(earn_rate=Decimal(str(settings.LOYALTY_EARN_RATE)))
