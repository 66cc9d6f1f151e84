# storefront/services/loyalty_ledger.py
"""
积分账本：只追加流水，余额一律从流水汇总得出。

- balance_of : 可用余额 = 流水合计 - 已到期但尚未冲销的 earned/bonus（上限为流水合计）
- debit  : 下单抵扣（redeemed，负数）；按用户加咨询锁后复核余额
- credit : 完成订单返积分（earned）/ 取消退回（refund）/ 运营赠送（bonus）
- expire_due : 扫描到期的 earned/bonus 流水，写 expired 冲销
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import and_, case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.clock import end_of_month, utcnow
from storefront.core.errors import BusinessRuleError, ValidationError
from storefront.db.session import advisory_xact_lock
from storefront.models.enums import LoyaltyKind
from storefront.models.loyalty_entry import LoyaltyEntry

logger = logging.getLogger("storefront.loyalty")

_CREDIT_KINDS = {LoyaltyKind.EARNED, LoyaltyKind.BONUS, LoyaltyKind.REFUND}
_EXPIRING_KINDS = [LoyaltyKind.EARNED.value, LoyaltyKind.BONUS.value]


def _unexpired_source():
    # 会过期、且尚未被 expired 流水冲销的入账
    return and_(
        LoyaltyEntry.kind.in_(_EXPIRING_KINDS),
        LoyaltyEntry.is_expired.is_(False),
        LoyaltyEntry.expires_at.is_not(None),
    )


class LoyaltyLedger:
    @staticmethod
    async def _ledger_sum(session: AsyncSession, user_id: int) -> int:
        total = (
            await session.execute(
                select(func.coalesce(func.sum(LoyaltyEntry.points), 0)).where(
                    LoyaltyEntry.user_id == int(user_id)
                )
            )
        ).scalar_one()
        return int(total or 0)

    @staticmethod
    async def balance_of(
        session: AsyncSession, user_id: int, *, now: datetime | None = None
    ) -> int:
        """
        可用余额。到期的 earned/bonus 在定时冲销前就不再可用：
        扣掉的数额与 expire_due 之后写入的 expired 合计一致（不超过流水合计）。
        不做下限截断，账本出现负数时如实返回。
        """
        now = now or utcnow()
        due_points = case(
            (and_(_unexpired_source(), LoyaltyEntry.expires_at <= now), LoyaltyEntry.points),
            else_=0,
        )
        total, due = (
            await session.execute(
                select(
                    func.coalesce(func.sum(LoyaltyEntry.points), 0),
                    func.coalesce(func.sum(due_points), 0),
                ).where(LoyaltyEntry.user_id == int(user_id))
            )
        ).one()
        total, due = int(total or 0), int(due or 0)
        return total - min(due, max(total, 0))

    @staticmethod
    async def expiring_this_month(
        session: AsyncSession, user_id: int, *, now: datetime | None = None
    ) -> int:
        """本月内（now 之后、月底之前）将到期的积分，不超过当前可用余额。"""
        now = now or utcnow()
        pending = (
            await session.execute(
                select(func.coalesce(func.sum(LoyaltyEntry.points), 0)).where(
                    LoyaltyEntry.user_id == int(user_id),
                    _unexpired_source(),
                    LoyaltyEntry.expires_at > now,
                    LoyaltyEntry.expires_at <= end_of_month(now),
                )
            )
        ).scalar_one()
        balance = await LoyaltyLedger.balance_of(session, user_id, now=now)
        return max(min(int(pending or 0), balance), 0)

    @staticmethod
    async def debit(
        session: AsyncSession,
        *,
        user_id: int,
        points: int,
        order_id: int | None = None,
        description: str | None = None,
        now: datetime | None = None,
    ) -> LoyaltyEntry:
        points = int(points)
        if points <= 0:
            raise ValidationError("扣减积分必须为正数", context={"points": points})
        now = now or utcnow()
        # 同一用户的扣减串行：复核余额与写流水之间不允许其它扣减插入
        await advisory_xact_lock(session, f"loyalty:user:{int(user_id)}")
        balance = await LoyaltyLedger.balance_of(session, user_id, now=now)
        if balance < points:
            raise BusinessRuleError(
                "积分余额不足",
                context={"user_id": user_id, "balance": balance, "requested": points},
            )
        entry = LoyaltyEntry(
            user_id=int(user_id),
            points=-points,
            kind=LoyaltyKind.REDEEMED.value,
            description=description,
            order_id=order_id,
            created_at=now,
        )
        session.add(entry)
        await session.flush()
        return entry

    @staticmethod
    async def credit(
        session: AsyncSession,
        *,
        user_id: int,
        points: int,
        kind: LoyaltyKind,
        order_id: int | None = None,
        expires_at: datetime | None = None,
        description: str | None = None,
        now: datetime | None = None,
    ) -> LoyaltyEntry:
        points = int(points)
        if points <= 0:
            raise ValidationError("增加积分必须为正数", context={"points": points})
        if kind not in _CREDIT_KINDS:
            raise ValidationError(f"不支持的积分入账类型: {kind}")
        entry = LoyaltyEntry(
            user_id=int(user_id),
            points=points,
            kind=kind.value,
            description=description,
            order_id=order_id,
            expires_at=expires_at,
            created_at=now or utcnow(),
        )
        session.add(entry)
        await session.flush()
        return entry

    @staticmethod
    async def history(
        session: AsyncSession,
        user_id: int,
        *,
        kind: Optional[LoyaltyKind] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[LoyaltyEntry], int]:
        """按页返回流水（新的在前）及符合条件的总条数。"""
        base = select(LoyaltyEntry).where(LoyaltyEntry.user_id == int(user_id))
        if kind is not None:
            base = base.where(LoyaltyEntry.kind == kind.value)

        total = int(
            (await session.execute(select(func.count()).select_from(base.subquery()))).scalar_one()
        )
        offset = (max(int(page), 1) - 1) * int(limit)
        rows = await session.execute(
            base.order_by(LoyaltyEntry.id.desc()).limit(int(limit)).offset(offset)
        )
        return list(rows.scalars().all()), total

    @staticmethod
    async def expire_due(session: AsyncSession, *, now: datetime | None = None) -> int:
        """
        到期冲销：每条到期的 earned/bonus 写一条 expired（不超过当前流水合计），并标记 is_expired。
        返回处理的流水条数；不提交事务。
        """
        now = now or utcnow()
        due = (
            await session.execute(
                select(LoyaltyEntry)
                .where(_unexpired_source(), LoyaltyEntry.expires_at <= now)
                .order_by(LoyaltyEntry.id)
            )
        ).scalars().all()

        for src in due:
            await advisory_xact_lock(session, f"loyalty:user:{src.user_id}")
            remaining = await LoyaltyLedger._ledger_sum(session, src.user_id)
            amount = min(int(src.points), remaining)
            if amount > 0:
                session.add(
                    LoyaltyEntry(
                        user_id=src.user_id,
                        points=-amount,
                        kind=LoyaltyKind.EXPIRED.value,
                        description=f"积分过期（来源流水 #{src.id}）",
                        order_id=src.order_id,
                        created_at=now,
                    )
                )
            src.is_expired = True
            await session.flush()

        if due:
            logger.info("loyalty expire: %d entries processed", len(due))
        return len(due)
