# storefront/services/catalog.py
from __future__ import annotations

from decimal import Decimal
from typing import Dict, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.errors import NotFoundError
from storefront.models.delivery_method import DeliveryMethod
from storefront.models.product import Product
from storefront.services.utils.money import ZERO, to_money


class ProductCatalog:
    """商品目录只读查询（价格/折扣/库存）。"""

    @staticmethod
    async def get_many(session: AsyncSession, product_ids: Iterable[int]) -> Dict[int, Product]:
        ids = sorted({int(x) for x in product_ids})
        if not ids:
            return {}
        # populate_existing：同一 session 内多次预览也要读到最新库存
        stmt = select(Product).where(Product.id.in_(ids)).execution_options(populate_existing=True)
        rows = (await session.execute(stmt)).scalars().all()
        return {p.id: p for p in rows}


class DeliveryCatalog:
    @staticmethod
    async def fee_for(session: AsyncSession, method: str | None) -> Decimal:
        """
        按配送方式 code 查运费；未选择配送方式（例如还没填地址）时运费为 0。
        """
        if not method:
            return ZERO
        row = (
            await session.execute(
                select(DeliveryMethod).where(
                    DeliveryMethod.code == method,
                    DeliveryMethod.is_active.is_(True),
                )
            )
        ).scalar_one_or_none()
        if row is None:
            raise NotFoundError(f"配送方式不存在或已停用: {method}", context={"shipping_method": method})
        return to_money(row.fee)
