# tests/factories.py
from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.clock import utcnow
from storefront.models.category import Category
from storefront.models.coupon import Coupon
from storefront.models.delivery_method import DeliveryMethod
from storefront.models.enums import DiscountType, LoyaltyKind
from storefront.models.loyalty_entry import LoyaltyEntry
from storefront.models.product import Product
from storefront.models.voucher import Voucher, VoucherGrant


class FrozenClock:
    """可推进的固定时钟：clock() 返回当前值，advance() 往后拨。"""

    def __init__(self, now: datetime | None = None):
        self.now = now or utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kw) -> datetime:
        self.now = self.now + timedelta(**kw)
        return self.now


async def make_category(db: AsyncSession, name: str = "猫粮") -> Category:
    obj = Category(name=name)
    db.add(obj)
    await db.flush()
    return obj


async def make_product(
    db: AsyncSession,
    *,
    price: str | Decimal = "100000",
    stock: int = 10,
    discount_pct: str | Decimal = "0",
    category_id: int | None = None,
    is_active: bool = True,
    name: str = "Cat Food A",
) -> Product:
    obj = Product(
        code=f"P-{uuid.uuid4().hex[:8].upper()}",
        name=name,
        image=None,
        price=Decimal(str(price)),
        discount_pct=Decimal(str(discount_pct)),
        stock=stock,
        sold_count=0,
        category_id=category_id,
        is_active=is_active,
    )
    db.add(obj)
    await db.flush()
    return obj


async def make_delivery(
    db: AsyncSession, *, code: str = "STANDARD", fee: str | Decimal = "20000", is_active: bool = True
) -> DeliveryMethod:
    obj = DeliveryMethod(code=code, name=code.title(), fee=Decimal(str(fee)), is_active=is_active)
    db.add(obj)
    await db.flush()
    return obj


def _window(days_back: int = 1, days_ahead: int = 30) -> tuple[datetime, datetime]:
    now = utcnow()
    return now - timedelta(days=days_back), now + timedelta(days=days_ahead)


async def make_voucher(
    db: AsyncSession,
    *,
    code: str = "SAVE20K",
    discount_type: DiscountType = DiscountType.FIXED,
    value: str | Decimal = "20000",
    min_purchase: str | Decimal = "50000",
    max_discount: str | Decimal | None = None,
    product_ids: Iterable[int] = (),
    is_active: bool = True,
) -> Voucher:
    starts_at, ends_at = _window()
    obj = Voucher(
        code=code.upper(),
        discount_type=discount_type.value,
        discount_value=Decimal(str(value)),
        min_purchase_amount=Decimal(str(min_purchase)),
        max_discount_amount=None if max_discount is None else Decimal(str(max_discount)),
        starts_at=starts_at,
        ends_at=ends_at,
        is_active=is_active,
        applicable_product_ids=list(product_ids),
    )
    db.add(obj)
    await db.flush()
    return obj


async def grant_voucher(db: AsyncSession, *, user_id: int, voucher: Voucher) -> VoucherGrant:
    obj = VoucherGrant(user_id=user_id, voucher_id=voucher.id, is_used=False, granted_at=utcnow())
    db.add(obj)
    await db.flush()
    return obj


async def make_coupon(
    db: AsyncSession,
    *,
    code: str = "WELCOME10",
    discount_type: DiscountType = DiscountType.PERCENTAGE,
    value: str | Decimal = "10",
    minimum: str | Decimal = "0",
    maximum: str | Decimal | None = None,
    usage_limit: int | None = None,
    user_usage_limit: int = 1,
    is_public: bool = True,
    allowed_user_ids: Iterable[int] = (),
    applicable_product_ids: Iterable[int] = (),
    applicable_category_ids: Iterable[int] = (),
    excluded_product_ids: Iterable[int] = (),
    excluded_category_ids: Iterable[int] = (),
) -> Coupon:
    starts_at, ends_at = _window()
    obj = Coupon(
        code=code.upper(),
        discount_type=discount_type.value,
        discount_value=Decimal(str(value)),
        minimum_order_value=Decimal(str(minimum)),
        maximum_discount_amount=None if maximum is None else Decimal(str(maximum)),
        usage_limit=usage_limit,
        used_count=0,
        user_usage_limit=user_usage_limit,
        starts_at=starts_at,
        ends_at=ends_at,
        is_active=True,
        is_public=is_public,
        allowed_user_ids=list(allowed_user_ids),
        applicable_product_ids=list(applicable_product_ids),
        applicable_category_ids=list(applicable_category_ids),
        excluded_product_ids=list(excluded_product_ids),
        excluded_category_ids=list(excluded_category_ids),
    )
    db.add(obj)
    await db.flush()
    return obj


async def give_points(
    db: AsyncSession,
    *,
    user_id: int,
    points: int,
    expires_at: datetime | None = None,
    created_at: datetime | None = None,
) -> LoyaltyEntry:
    obj = LoyaltyEntry(
        user_id=user_id,
        points=points,
        kind=LoyaltyKind.BONUS.value,
        description="运营赠送",
        expires_at=expires_at,
        is_expired=False,
        created_at=created_at or utcnow(),
    )
    db.add(obj)
    await db.flush()
    return obj
