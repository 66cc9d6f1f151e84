# storefront/jobs/auto_confirm.py
"""
自动确认 Job（独立入口）

  - 只处理 status='NEW' 且 created_at 早于阈值的订单
  - 每张订单独立事务推进到 CONFIRMED，幂等由 OrderLifecycle 的 CAS 保证

用法：
        python -m storefront.jobs.auto_confirm
  也可以由 scheduler 定期调用（见 storefront.core.scheduler）。
"""

from __future__ import annotations

import os
from datetime import timedelta

from sqlalchemy.pool import NullPool

from storefront.core.config import get_settings
from storefront.core.logging import setup_logging
from storefront.db.session import make_async_engine, make_session_maker
from storefront.services.auto_confirm import AutoConfirmScheduler


def _get_batch_size() -> int:
    raw = os.getenv("AUTO_CONFIRM_BATCH_SIZE") or "500"
    try:
        value = int(raw)
        return value if value > 0 else 500
    except ValueError:
        return 500


async def main() -> None:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL, settings.JSON_LOG)

    engine = make_async_engine(settings.DATABASE_URL, poolclass=NullPool)
    maker = make_session_maker(engine)
    sweeper = AutoConfirmScheduler(
        maker,
        threshold=timedelta(minutes=settings.AUTO_CONFIRM_AFTER_MINUTES),
        batch_size=_get_batch_size(),
    )
    try:
        promoted = await sweeper.sweep()
        print(f"[AutoConfirm] promoted {promoted} orders to CONFIRMED")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    import asyncio

    asyncio.run(main())
