# storefront/jobs/outbox_relay.py
"""
Outbox 投递 Job（独立入口）：把 PENDING 事件交给通知网关，失败累计 attempts。

用法：
        python -m storefront.jobs.outbox_relay
"""

from __future__ import annotations

from sqlalchemy.pool import NullPool

from storefront.core.config import get_settings
from storefront.core.logging import setup_logging
from storefront.db.session import make_async_engine, make_session_maker
from storefront.services.notification_gateway import LoggingNotificationGateway
from storefront.services.outbox import OutboxRelay


async def main() -> None:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL, settings.JSON_LOG)

    engine = make_async_engine(settings.DATABASE_URL, poolclass=NullPool)
    maker = make_session_maker(engine)
    relay = OutboxRelay(LoggingNotificationGateway(), max_attempts=settings.OUTBOX_MAX_ATTEMPTS)
    try:
        async with maker() as session:
            sent = await relay.dispatch_pending(session)
            await session.commit()
            print(f"[Outbox] dispatched {sent} events")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    import asyncio

    asyncio.run(main())
