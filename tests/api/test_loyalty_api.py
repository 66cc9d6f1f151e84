# tests/api/test_loyalty_api.py
from __future__ import annotations

from datetime import timedelta

import pytest

from storefront.core.clock import end_of_month, utcnow
from storefront.services.loyalty_ledger import LoyaltyLedger
from tests.factories import give_points

pytestmark = pytest.mark.asyncio

USER = {"X-User-Id": "9"}


async def test_balance_and_history(client, session):
    # 60 天后到期：一定不在本月
    await give_points(session, user_id=9, points=500, expires_at=utcnow() + timedelta(days=60))
    await LoyaltyLedger.debit(session, user_id=9, points=120, description="抵扣")
    await give_points(session, user_id=10, points=1)
    await session.commit()

    r = await client.get("/loyalty/balance", headers=USER)
    assert r.status_code == 200
    body = r.json()
    assert (body["user_id"], body["balance"], body["expiring_this_month"]) == (9, 380, 0)

    r = await client.get("/loyalty/history", headers=USER)
    assert r.status_code == 200
    body = r.json()
    assert body["user_id"] == 9
    assert (body["page"], body["limit"], body["total"], body["total_pages"]) == (1, 50, 2, 1)
    assert [(e["kind"], e["points"]) for e in body["entries"]] == [("redeemed", -120), ("bonus", 500)]
    assert body["entries"][1]["expires_at"] is not None
    assert body["entries"][1]["is_expired"] is False

    r = await client.get("/loyalty/history?limit=1", headers=USER)
    assert len(r.json()["entries"]) == 1
    assert r.json()["total_pages"] == 2

    r = await client.get("/loyalty/history?limit=1&page=2", headers=USER)
    assert [e["kind"] for e in r.json()["entries"]] == ["bonus"]


async def test_balance_excludes_points_past_expiry(client, session):
    await give_points(session, user_id=9, points=5_000, expires_at=utcnow() - timedelta(hours=3))
    await session.commit()

    r = await client.get("/loyalty/balance", headers=USER)
    assert r.json()["balance"] == 0
    assert r.json()["expiring_this_month"] == 0


async def test_balance_reports_points_expiring_this_month(client, session):
    month_end = end_of_month(utcnow())
    await give_points(session, user_id=9, points=300, expires_at=month_end)
    await session.commit()

    r = await client.get("/loyalty/balance", headers=USER)
    body = r.json()
    assert body["balance"] == 300
    assert body["expiring_this_month"] == 300


async def test_history_kind_filter(client, session):
    await give_points(session, user_id=9, points=500)
    await LoyaltyLedger.debit(session, user_id=9, points=100)
    await session.commit()

    r = await client.get("/loyalty/history?kind=redeemed", headers=USER)
    assert r.status_code == 200
    body = r.json()
    assert body["kind"] == "redeemed"
    assert body["total"] == 1
    assert [e["points"] for e in body["entries"]] == [-100]

    r = await client.get("/loyalty/history?kind=gift", headers=USER)
    assert r.status_code == 422
    assert r.json()["error_code"] == "request_validation_error"


async def test_empty_balance_and_limit_bounds(client):
    r = await client.get("/loyalty/balance", headers=USER)
    body = r.json()
    assert (body["user_id"], body["balance"], body["expiring_this_month"]) == (9, 0, 0)
    assert body["expiring_at"].startswith(end_of_month(utcnow()).strftime("%Y-%m-%dT23:59:59"))

    r = await client.get("/loyalty/history?limit=0", headers=USER)
    assert r.status_code == 422

    r = await client.get("/loyalty/history?page=0", headers=USER)
    assert r.status_code == 422

    r = await client.get("/loyalty/balance")
    assert r.status_code == 401
