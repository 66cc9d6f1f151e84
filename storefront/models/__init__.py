# storefront/models/__init__.py
"""
统一导出 ORM 模型。
"""

from storefront.models.category import Category
from storefront.models.coupon import Coupon, CouponUsage
from storefront.models.delivery_method import DeliveryMethod
from storefront.models.loyalty_entry import LoyaltyEntry
from storefront.models.order import Order
from storefront.models.order_line import OrderLine
from storefront.models.order_timeline import OrderTimelineEntry
from storefront.models.outbox_event import OutboxEvent
from storefront.models.product import Product
from storefront.models.voucher import Voucher, VoucherGrant

__all__ = [
    "Category",
    "Coupon",
    "CouponUsage",
    "DeliveryMethod",
    "LoyaltyEntry",
    "Order",
    "OrderLine",
    "OrderTimelineEntry",
    "OutboxEvent",
    "Product",
    "Voucher",
    "VoucherGrant",
]
