from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from storefront.core.config import get_settings
from storefront.db.session import async_session_maker
from storefront.services.auto_confirm import AutoConfirmScheduler
from storefront.services.loyalty_ledger import LoyaltyLedger
from storefront.services.notification_gateway import LoggingNotificationGateway
from storefront.services.order_lifecycle import OrderLifecycle
from storefront.services.outbox import OutboxRelay

logger = logging.getLogger("storefront.scheduler")

_scheduler: AsyncIOScheduler | None = None


def build_auto_confirm() -> AutoConfirmScheduler:
    settings = get_settings()
    return AutoConfirmScheduler(
        async_session_maker,
        threshold=timedelta(minutes=settings.AUTO_CONFIRM_AFTER_MINUTES),
        lifecycle=OrderLifecycle(earn_rate=Decimal(str(settings.LOYALTY_EARN_RATE))),
    )


async def _job_auto_confirm() -> None:
    await build_auto_confirm().sweep()


async def _job_outbox_relay() -> None:
    relay = OutboxRelay(
        LoggingNotificationGateway(), max_attempts=get_settings().OUTBOX_MAX_ATTEMPTS
    )
    async with async_session_maker() as session:
        await relay.dispatch_pending(session)
        await session.commit()


async def _job_expire_points() -> None:
    async with async_session_maker() as session:
        await LoyaltyLedger.expire_due(session)
        await session.commit()


def init_scheduler() -> AsyncIOScheduler | None:
    global _scheduler
    settings = get_settings()
    if not settings.ENABLE_SCHEDULER or _scheduler is not None:
        return _scheduler

    _scheduler = AsyncIOScheduler(timezone=settings.SCHEDULER_TIMEZONE)
    # max_instances=1：上一轮没跑完不叠加
    _scheduler.add_job(
        _job_auto_confirm,
        "interval",
        seconds=settings.AUTO_CONFIRM_INTERVAL_SECONDS,
        id="auto_confirm",
        max_instances=1,
        coalesce=True,
    )
    _scheduler.add_job(
        _job_outbox_relay,
        "interval",
        seconds=settings.OUTBOX_RELAY_INTERVAL_SECONDS,
        id="outbox_relay",
        max_instances=1,
        coalesce=True,
    )
    _scheduler.add_job(_job_expire_points, "cron", hour=0, minute=5, id="loyalty_expire")
    _scheduler.start()
    logger.info("scheduler started: %s", [j.id for j in _scheduler.get_jobs()])
    return _scheduler


def shutdown_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
