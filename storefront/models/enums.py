# storefront/models/enums.py
"""集中枚举：订单状态 / 操作人 / 优惠类型 / 积分流水类型 / outbox 状态"""
from __future__ import annotations

from enum import Enum


class OrderStatus(str, Enum):
    NEW = "NEW"
    CONFIRMED = "CONFIRMED"
    PREPARING = "PREPARING"
    SHIPPING_IN_PROGRESS = "SHIPPING_IN_PROGRESS"
    DELIVERED = "DELIVERED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    DELIVERY_FAILED = "DELIVERY_FAILED"
    RETURN_REQUESTED = "RETURN_REQUESTED"
    REFUNDED = "REFUNDED"


class PerformedBy(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SYSTEM = "system"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class LoyaltyKind(str, Enum):
    EARNED = "earned"
    REDEEMED = "redeemed"
    BONUS = "bonus"
    REFUND = "refund"
    EXPIRED = "expired"


class OutboxStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"
