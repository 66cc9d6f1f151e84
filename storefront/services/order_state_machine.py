# storefront/services/order_state_machine.py
"""
订单状态机（纯函数，无 IO）：

    NEW                  -> CONFIRMED | CANCELLED
    CONFIRMED            -> PREPARING | CANCELLED
    PREPARING            -> SHIPPING_IN_PROGRESS | CANCELLED
    SHIPPING_IN_PROGRESS -> DELIVERED | DELIVERY_FAILED
    DELIVERED            -> COMPLETED
    DELIVERY_FAILED      -> RETURN_REQUESTED
    RETURN_REQUESTED     -> REFUNDED
    COMPLETED / CANCELLED / REFUNDED 为终态
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Mapping

from storefront.core.errors import InvalidTransitionError, ValidationError
from storefront.models.enums import OrderStatus as S

TRANSITIONS: Dict[S, FrozenSet[S]] = {
    S.NEW: frozenset({S.CONFIRMED, S.CANCELLED}),
    S.CONFIRMED: frozenset({S.PREPARING, S.CANCELLED}),
    S.PREPARING: frozenset({S.SHIPPING_IN_PROGRESS, S.CANCELLED}),
    S.SHIPPING_IN_PROGRESS: frozenset({S.DELIVERED, S.DELIVERY_FAILED}),
    S.DELIVERED: frozenset({S.COMPLETED}),
    S.DELIVERY_FAILED: frozenset({S.RETURN_REQUESTED}),
    S.RETURN_REQUESTED: frozenset({S.REFUNDED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
    S.REFUNDED: frozenset(),
}

TERMINAL: FrozenSet[S] = frozenset(s for s, nxt in TRANSITIONS.items() if not nxt)

# 后台可手动推进的状态（其余由用户或系统触发）
ADMIN_MANUAL_STATUSES: FrozenSet[S] = frozenset(
    {
        S.PREPARING,
        S.SHIPPING_IN_PROGRESS,
        S.DELIVERED,
        S.CANCELLED,
        S.DELIVERY_FAILED,
        S.RETURN_REQUESTED,
        S.REFUNDED,
    }
)

TIMESTAMP_FIELDS: Dict[S, str] = {
    S.CONFIRMED: "confirmed_at",
    S.PREPARING: "preparing_at",
    S.SHIPPING_IN_PROGRESS: "shipping_at",
    S.DELIVERED: "delivered_at",
    S.COMPLETED: "completed_at",
    S.CANCELLED: "cancelled_at",
    S.REFUNDED: "refunded_at",
}

STATUS_DESCRIPTIONS: Dict[S, str] = {
    S.NEW: "订单已创建",
    S.CONFIRMED: "订单已确认",
    S.PREPARING: "商家正在备货",
    S.SHIPPING_IN_PROGRESS: "订单正在配送中",
    S.DELIVERED: "订单已送达",
    S.COMPLETED: "订单已完成",
    S.CANCELLED: "订单已取消",
    S.DELIVERY_FAILED: "配送失败",
    S.RETURN_REQUESTED: "退货/退款申请已提交，等待处理",
    S.REFUNDED: "退货/退款已通过，订单已退款",
}

STATUS_LABELS: Dict[S, str] = {
    S.NEW: "新订单",
    S.CONFIRMED: "已确认",
    S.PREPARING: "备货中",
    S.SHIPPING_IN_PROGRESS: "配送中",
    S.DELIVERED: "已送达",
    S.COMPLETED: "已完成",
    S.CANCELLED: "已取消",
    S.DELIVERY_FAILED: "配送失败",
    S.RETURN_REQUESTED: "申请退货",
    S.REFUNDED: "已退款",
}


def as_status(value: S | str) -> S:
    try:
        return value if isinstance(value, S) else S(str(value).upper())
    except ValueError:
        raise ValidationError(f"未知的订单状态: {value}", context={"status": str(value)}) from None


def next_statuses(current: S | str) -> List[S]:
    nxt = TRANSITIONS.get(as_status(current), frozenset())
    return sorted(nxt, key=lambda s: list(S).index(s))


def can_transition(current: S | str, target: S | str) -> bool:
    return as_status(target) in TRANSITIONS.get(as_status(current), frozenset())


def assert_transition(current: S | str, target: S | str) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(
            str(getattr(current, "value", current)),
            str(getattr(target, "value", target)),
        )


@dataclass(frozen=True)
class TimelineDraft:
    status: S
    description: str
    performed_by: str
    meta: Dict[str, Any] = field(default_factory=dict)


def build_timeline_entry(
    status: S | str, performed_by: str, metadata: Mapping[str, Any] | None = None
) -> TimelineDraft:
    """
    按状态生成时间线描述：
      - CANCELLED：追加 " - 原因: xxx"
      - SHIPPING_IN_PROGRESS：追加运单号 / 承运商；预计送达只进 meta
    """
    status = as_status(status)
    meta: Dict[str, Any] = dict(metadata or {})
    description = STATUS_DESCRIPTIONS.get(status, "订单状态已更新")

    if status == S.CANCELLED:
        reason = meta.get("reason") or meta.get("cancelled_reason")
        if reason:
            description += f" - 原因: {reason}"
            meta["reason"] = reason

    if status == S.SHIPPING_IN_PROGRESS:
        tracking = meta.get("tracking_number")
        carrier = meta.get("carrier")
        if tracking:
            description += f" - 运单号: {tracking}"
        if carrier:
            description += f" - 承运商: {carrier}"

    return TimelineDraft(
        status=status,
        description=description,
        performed_by=str(getattr(performed_by, "value", performed_by)),
        meta=meta,
    )
