# storefront/services/reconciliation_guard.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.errors import ConflictError
from storefront.obs.metrics import preview_conflicts_total
from storefront.services.pricing_engine import PricingEngine
from storefront.services.pricing_types import Preview
from storefront.services.utils.money import to_money

logger = logging.getLogger("storefront.orders")

TOP_LEVEL_FIELDS = ("subtotal", "shipping_fee", "discount", "points_applied", "total_amount")
LINE_FIELDS = (
    "product_name",
    "product_price",
    "quantity",
    "line_total",
    "product_code",
    "product_image",
    "discount_pct",
    "actual_price",
)


def _norm(v: Any) -> Any:
    if isinstance(v, (Decimal, float)):
        return to_money(v, nonneg=False)
    return v


def _jsonable(v: Any) -> Any:
    return str(v) if isinstance(v, Decimal) else v


def diff_previews(client: Preview, server: Preview) -> List[Dict[str, Any]]:
    """
    逐字段对比客户端预览与服务端重算结果，返回全部差异（空列表 = 一致）。
    行按 product_id 匹配。
    """
    changes: List[Dict[str, Any]] = []

    for name in TOP_LEVEL_FIELDS:
        old, new = getattr(client, name), getattr(server, name)
        if _norm(old) != _norm(new):
            changes.append(
                {"type": "diff", "path": name, "old": _jsonable(old), "new": _jsonable(new)}
            )

    if len(client.lines) != len(server.lines):
        changes.append(
            {
                "type": "diff",
                "path": "lines",
                "old": len(client.lines),
                "new": len(server.lines),
                "reason": "购物车商品数量已变化",
            }
        )
        return changes

    by_pid = {ln.product_id: ln for ln in server.lines}
    for i, c_line in enumerate(client.lines):
        s_line = by_pid.get(c_line.product_id)
        if s_line is None:
            changes.append(
                {
                    "type": "diff",
                    "path": f"lines[{i}]",
                    "product_id": c_line.product_id,
                    "reason": "商品已不在订单中",
                }
            )
            continue
        for name in LINE_FIELDS:
            old, new = getattr(c_line, name), getattr(s_line, name)
            if _norm(old) != _norm(new):
                changes.append(
                    {
                        "type": "diff",
                        "path": f"lines[{i}].{name}",
                        "product_id": c_line.product_id,
                        "old": _jsonable(old),
                        "new": _jsonable(new),
                    }
                )
    return changes


class ReconciliationGuard:
    """
    下单前的防篡改校验：用客户端预览里的原始输入重算一次，任何字段不一致整单拒绝（409）。
    通过时返回服务端预览，客户端数字不再使用。
    """

    def __init__(self, pricing: PricingEngine | None = None):
        self.pricing = pricing or PricingEngine()

    async def verify(self, session: AsyncSession, user_id: int, client_preview: Preview) -> Preview:
        server_preview = await self.pricing.preview(
            session,
            user_id,
            client_preview.raw_lines,
            shipping_method=client_preview.shipping_method,
            voucher_code=client_preview.voucher_code,
            points_to_apply=client_preview.points_applied,
            coupon_code=client_preview.coupon_code,
        )

        changes = diff_previews(client_preview, server_preview)
        if changes:
            preview_conflicts_total.inc()
            logger.info(
                "preview conflict user=%s fields=%s",
                user_id,
                [c["path"] for c in changes],
            )
            raise ConflictError(
                "订单内容已发生变化，请刷新后重新下单",
                details=changes,
            )
        return server_preview
