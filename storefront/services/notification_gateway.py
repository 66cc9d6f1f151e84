# storefront/services/notification_gateway.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Protocol

logger = logging.getLogger("storefront.notify")


@dataclass(frozen=True)
class NotificationEvent:
    id: int
    topic: str
    aggregate_id: str | None
    payload: Dict[str, Any]


class NotificationGateway(Protocol):
    """
    下游通知通道（站内信 / 推送 / webhook 等）。
    emit 失败时直接抛异常，由 OutboxRelay 记录并重试。
    """

    async def emit(self, event: NotificationEvent) -> None: ...


class LoggingNotificationGateway:
    """默认实现：只打日志（本地/测试环境）。"""

    async def emit(self, event: NotificationEvent) -> None:
        logger.info(
            "notify topic=%s aggregate=%s payload=%s",
            event.topic,
            event.aggregate_id,
            event.payload,
        )
