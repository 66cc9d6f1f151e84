# storefront/schemas/order.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storefront.services.pricing_types import PricedLine, Preview, RawLine


# ===== 通用基类：允许 ORM、忽略多余字段 =====
class _Base(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")


def _trim_code(v: str | None) -> str | None:
    if v is None:
        return v
    s = v.strip()
    return s or None


# ===== 预览 入参 =====
class CartLineIn(_Base):
    product_id: Annotated[int, Field(ge=1)]
    quantity: Annotated[int, Field(ge=1, description="数量，必须>=1")]


class PreviewIn(_Base):
    """
    购物车预览：
    - lines：至少 1 条，product_id 不可重复
    - voucher_code / coupon_code 二选一
    """

    lines: Annotated[List[CartLineIn], Field(min_length=1)]
    shipping_method: Optional[str] = None
    voucher_code: Optional[str] = None
    coupon_code: Optional[str] = None
    points_to_apply: Annotated[int, Field(ge=0)] = 0

    @field_validator("shipping_method", "voucher_code", "coupon_code")
    @classmethod
    def _trim(cls, v: str | None):
        return _trim_code(v)

    def raw_lines(self) -> List[RawLine]:
        return [RawLine(product_id=ln.product_id, quantity=ln.quantity) for ln in self.lines]


# ===== 预览 出参 / 下单 入参（客户端原样回传） =====
class PricedLineOut(_Base):
    product_id: int
    product_code: str
    product_name: str
    product_image: Optional[str] = None
    product_price: Decimal
    discount_pct: Decimal
    actual_price: Decimal
    quantity: Annotated[int, Field(ge=1)]
    line_total: Decimal


class PreviewOut(_Base):
    lines: List[PricedLineOut]
    subtotal: Decimal
    shipping_fee: Decimal
    discount: Decimal
    points_applied: int
    max_applicable_points: int = 0
    total_amount: Decimal
    shipping_method: Optional[str] = None
    voucher_code: Optional[str] = None
    coupon_code: Optional[str] = None

    @classmethod
    def from_preview(cls, preview: Preview) -> "PreviewOut":
        return cls.model_validate(preview.to_dict())


class PlaceOrderIn(PreviewOut):
    """
    下单：客户端把 /orders/preview 的结果原样提交，服务端重算后逐字段比对。
    """

    lines: Annotated[List[PricedLineOut], Field(min_length=1)]
    points_applied: Annotated[int, Field(ge=0)] = 0

    @field_validator("shipping_method", "voucher_code", "coupon_code")
    @classmethod
    def _trim(cls, v: str | None):
        return _trim_code(v)

    def to_preview(self) -> Preview:
        return Preview(
            lines=tuple(PricedLine(**ln.model_dump()) for ln in self.lines),
            subtotal=self.subtotal,
            shipping_fee=self.shipping_fee,
            discount=self.discount,
            points_applied=self.points_applied,
            total_amount=self.total_amount,
            max_applicable_points=self.max_applicable_points,
            shipping_method=self.shipping_method,
            voucher_code=self.voucher_code,
            coupon_code=self.coupon_code,
        )


# ===== 订单 出参 =====
class OrderLineOut(PricedLineOut):
    id: int


class TimelineEntryOut(_Base):
    id: int
    status: str
    description: str
    performed_by: str
    meta: Optional[Dict[str, Any]] = None
    created_at: datetime


class OrderOut(_Base):
    id: int
    order_code: str
    user_id: int
    status: str
    can_cancel: bool
    subtotal: Decimal
    shipping_fee: Decimal
    discount: Decimal
    points_applied: int
    total_amount: Decimal
    shipping_method: Optional[str] = None
    voucher_code: Optional[str] = None
    coupon_code: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    preparing_at: Optional[datetime] = None
    shipping_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    cancelled_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    created_at: datetime
    lines: List[OrderLineOut] = Field(default_factory=list)
    timeline: List[TimelineEntryOut] = Field(default_factory=list)


# ===== 列表 / 统计 =====
class OrderListOut(_Base):
    items: List[OrderOut]
    page: int
    limit: int
    total: int
    total_pages: int


class StatusStatOut(_Base):
    count: int
    total_amount: Decimal


class OrderStatsOut(_Base):
    user_id: Optional[int] = None
    stats: Dict[str, StatusStatOut]


# ===== 状态迁移 =====
class StatusOption(_Base):
    status: str
    label: str


class TransitionsOut(_Base):
    order_id: int
    current: StatusOption
    next: List[StatusOption]


class CancelIn(_Base):
    reason: Annotated[Optional[str], Field(max_length=500)] = None


class AdminStatusIn(_Base):
    """
    后台手动推进状态：
    - SHIPPING_IN_PROGRESS 可带 tracking_number / carrier / estimated_delivery
    - CANCELLED 可带 reason
    """

    status: str
    reason: Annotated[Optional[str], Field(max_length=500)] = None
    tracking_number: Annotated[Optional[str], Field(max_length=64)] = None
    carrier: Annotated[Optional[str], Field(max_length=64)] = None
    estimated_delivery: Annotated[Optional[str], Field(max_length=64)] = None
    note: Annotated[Optional[str], Field(max_length=500)] = None

    @field_validator("status")
    @classmethod
    def _upper(cls, v: str):
        return v.strip().upper()

    def to_metadata(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"status"}, exclude_none=True)
