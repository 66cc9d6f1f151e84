# storefront/core/clock.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable

UTC = timezone.utc

# 可注入时钟：测试里用固定时间替换
Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """
    SQLite 读回来的 DateTime 不带时区；统一视为 UTC。
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def _end_of_month(now: datetime, months_ahead: int) -> datetime:
    now = ensure_utc(now)
    # 目标月的下个月 1 号 - 1 秒
    year, month = now.year, now.month + months_ahead + 1
    while month > 12:
        year, month = year + 1, month - 12
    first = datetime(year, month, 1, tzinfo=UTC)
    return first - timedelta(seconds=1)


def end_of_month(now: datetime) -> datetime:
    """返回当月最后一天 23:59:59（UTC）。"""
    return _end_of_month(now, 0)


def end_of_next_month(now: datetime) -> datetime:
    """返回下个自然月最后一天 23:59:59（UTC）。"""
    return _end_of_month(now, 1)
