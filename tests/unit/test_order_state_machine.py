import pytest

from storefront.core.errors import InvalidTransitionError, ValidationError
from storefront.models.enums import OrderStatus as S
from storefront.services.order_state_machine import (
    ADMIN_MANUAL_STATUSES,
    TERMINAL,
    assert_transition,
    as_status,
    build_timeline_entry,
    can_transition,
    next_statuses,
)

HAPPY_PATH = [S.NEW, S.CONFIRMED, S.PREPARING, S.SHIPPING_IN_PROGRESS, S.DELIVERED, S.COMPLETED]


def test_happy_path_is_legal():
    for cur, nxt in zip(HAPPY_PATH, HAPPY_PATH[1:]):
        assert can_transition(cur, nxt), (cur, nxt)


def test_cancel_only_before_shipping():
    cancellable = {s for s in S if can_transition(s, S.CANCELLED)}
    assert cancellable == {S.NEW, S.CONFIRMED, S.PREPARING}


def test_return_path():
    assert can_transition(S.SHIPPING_IN_PROGRESS, S.DELIVERY_FAILED)
    assert can_transition(S.DELIVERY_FAILED, S.RETURN_REQUESTED)
    assert can_transition(S.RETURN_REQUESTED, S.REFUNDED)


def test_terminal_states_have_no_exit():
    assert TERMINAL == {S.COMPLETED, S.CANCELLED, S.REFUNDED}
    for t in TERMINAL:
        assert next_statuses(t) == []


@pytest.mark.parametrize(
    "cur,target",
    [
        (S.NEW, S.SHIPPING_IN_PROGRESS),
        (S.NEW, S.COMPLETED),
        (S.SHIPPING_IN_PROGRESS, S.CANCELLED),
        (S.DELIVERED, S.REFUNDED),
        (S.COMPLETED, S.CANCELLED),
        (S.CANCELLED, S.NEW),
    ],
)
def test_illegal_edges_raise(cur, target):
    with pytest.raises(InvalidTransitionError) as ei:
        assert_transition(cur, target)
    assert ei.value.context == {"current_status": cur.value, "target_status": target.value}
    assert ei.value.status == 400


def test_next_statuses_keeps_declaration_order():
    assert next_statuses("NEW") == [S.CONFIRMED, S.CANCELLED]
    assert next_statuses(S.SHIPPING_IN_PROGRESS) == [S.DELIVERED, S.DELIVERY_FAILED]


def test_as_status_accepts_lowercase_and_rejects_unknown():
    assert as_status("confirmed") is S.CONFIRMED
    with pytest.raises(ValidationError) as ei:
        as_status("SHIPPED")
    assert ei.value.context == {"status": "SHIPPED"}
    assert "SHIPPED" in ei.value.message


def test_admin_cannot_confirm_or_complete_manually():
    assert S.CONFIRMED not in ADMIN_MANUAL_STATUSES
    assert S.COMPLETED not in ADMIN_MANUAL_STATUSES
    assert S.SHIPPING_IN_PROGRESS in ADMIN_MANUAL_STATUSES


def test_timeline_cancel_appends_reason():
    d = build_timeline_entry(S.CANCELLED, "user", {"reason": "买错了"})
    assert d.description == "订单已取消 - 原因: 买错了"
    assert d.meta["reason"] == "买错了"
    assert d.performed_by == "user"


def test_timeline_shipping_appends_tracking_and_carrier():
    d = build_timeline_entry(
        "SHIPPING_IN_PROGRESS",
        "admin",
        {"tracking_number": "SF123", "carrier": "顺丰", "estimated_delivery": "2026-10-21"},
    )
    assert d.description == "订单正在配送中 - 运单号: SF123 - 承运商: 顺丰"
    # 预计送达只进 meta
    assert "2026-10-21" not in d.description
    assert d.meta["estimated_delivery"] == "2026-10-21"


def test_timeline_created_entry():
    d = build_timeline_entry(S.NEW, "user")
    assert d.description == "订单已创建"
    assert d.meta == {}
