from dataclasses import replace
from decimal import Decimal

import pytest

from storefront.core.errors import ValidationError
from storefront.services.pricing_engine import normalize_raw_lines
from storefront.services.pricing_types import PricedLine, Preview, RawLine
from storefront.services.reconciliation_guard import diff_previews

D = Decimal


def _preview(price: str = "90000", qty: int = 2) -> Preview:
    total = D(price) * qty
    line = PricedLine(
        product_id=1,
        product_code="P1",
        product_name="猫粮",
        product_image=None,
        product_price=D("100000"),
        discount_pct=D("10"),
        actual_price=D(price),
        quantity=qty,
        line_total=total,
    )
    return Preview(
        lines=(line,),
        subtotal=total,
        shipping_fee=D("20000"),
        discount=D("0"),
        points_applied=0,
        total_amount=total + D("20000"),
    )


def test_identical_previews_have_no_diff():
    assert diff_previews(_preview(), _preview()) == []


def test_decimal_scale_is_not_a_diff():
    a = _preview()
    b = replace(a, shipping_fee=D("20000.00"))
    assert diff_previews(a, b) == []


def test_price_change_lists_every_field():
    changes = diff_previews(_preview(price="90000"), _preview(price="85000"))
    paths = {c["path"] for c in changes}
    assert {"subtotal", "total_amount", "lines[0].actual_price", "lines[0].line_total"} <= paths
    sub = next(c for c in changes if c["path"] == "subtotal")
    assert sub == {"type": "diff", "path": "subtotal", "old": "180000", "new": "170000"}


def test_line_count_change():
    a = _preview()
    b = replace(a, lines=a.lines + a.lines)
    changes = diff_previews(a, b)
    assert any(c["path"] == "lines" for c in changes)


def test_raw_lines_from_preview():
    assert _preview(qty=3).raw_lines == [RawLine(product_id=1, quantity=3)]


@pytest.mark.parametrize(
    "raw",
    [
        [],
        [{"product_id": 1, "quantity": 0}],
        [{"product_id": 1, "quantity": 1}, {"product_id": 1, "quantity": 2}],
        [{"product_id": "x", "quantity": 1}],
    ],
)
def test_normalize_raw_lines_rejects_bad_input(raw):
    with pytest.raises(ValidationError):
        normalize_raw_lines(raw)
