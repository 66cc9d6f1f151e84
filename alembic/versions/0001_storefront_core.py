"""storefront core: catalog, discounts, loyalty, orders, outbox

Revision ID: 0001_storefront_core
Revises:
Create Date: 2026-10-19 10:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_storefront_core"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _money(name: str, *, nullable: bool = False, default: str | None = None) -> sa.Column:
    return sa.Column(
        name,
        sa.Numeric(12, 2),
        nullable=nullable,
        server_default=sa.text(default) if default is not None else None,
    )


def _ts(name: str, *, nullable: bool = True, now: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=sa.text("CURRENT_TIMESTAMP") if now else None,
    )


def upgrade() -> None:
    """Upgrade schema: create storefront core tables."""
    # ---- 目录 ----
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=128), nullable=False),
    )

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("image", sa.String(length=512), nullable=True),
        _money("price"),
        sa.Column("discount_pct", sa.Numeric(5, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("stock", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("sold_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.CheckConstraint("stock >= 0", name="ck_products_stock_nonneg"),
    )
    op.create_index("ix_products_code", "products", ["code"], unique=True)
    op.create_index("ix_products_category_id", "products", ["category_id"])

    op.create_table(
        "delivery_methods",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        _money("fee", default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_delivery_methods_code", "delivery_methods", ["code"], unique=True)

    # ---- 订单 ----
    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("order_code", sa.String(length=40), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("can_cancel", sa.Boolean(), nullable=False, server_default=sa.true()),
        _money("subtotal", default="0"),
        _money("shipping_fee", default="0"),
        _money("discount", default="0"),
        sa.Column("points_applied", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _money("total_amount", default="0"),
        sa.Column("shipping_method", sa.String(length=64), nullable=True),
        sa.Column("voucher_code", sa.String(length=64), nullable=True),
        sa.Column("coupon_code", sa.String(length=64), nullable=True),
        sa.Column("voucher_grant_id", sa.Integer(), nullable=True),
        sa.Column("coupon_id", sa.Integer(), nullable=True),
        _ts("confirmed_at"),
        _ts("preparing_at"),
        _ts("shipping_at"),
        _ts("delivered_at"),
        _ts("completed_at"),
        _ts("cancelled_at"),
        _ts("refunded_at"),
        sa.Column("cancelled_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_by", sa.String(length=16), nullable=True),
        _ts("created_at", nullable=False, now=True),
        _ts("updated_at", nullable=False, now=True),
        sa.CheckConstraint("total_amount >= 0", name="ck_orders_total_nonneg"),
    )
    op.create_index("ix_orders_order_code", "orders", ["order_code"], unique=True)
    op.create_index("ix_orders_user_id", "orders", ["user_id"])
    op.create_index("ix_orders_status", "orders", ["status"])
    op.create_index("ix_orders_status_created", "orders", ["status", "created_at"])

    op.create_table(
        "order_lines",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "order_id",
            sa.Integer(),
            sa.ForeignKey("orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("product_code", sa.String(length=64), nullable=False),
        sa.Column("product_name", sa.String(length=255), nullable=False),
        sa.Column("product_image", sa.String(length=512), nullable=True),
        _money("product_price"),
        sa.Column("discount_pct", sa.Numeric(5, 2), nullable=False, server_default=sa.text("0")),
        _money("actual_price"),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("line_total", sa.Numeric(14, 2), nullable=False),
    )
    op.create_index("ix_order_lines_order_id", "order_lines", ["order_id"])
    op.create_index("ix_order_lines_product_id", "order_lines", ["product_id"])

    op.create_table(
        "order_timeline",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "order_id",
            sa.Integer(),
            sa.ForeignKey("orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("performed_by", sa.String(length=16), nullable=False),
        sa.Column("meta", sa.JSON(), nullable=False),
        _ts("created_at", nullable=False, now=True),
    )
    op.create_index("ix_order_timeline_order_id", "order_timeline", ["order_id"])

    # ---- 优惠 ----
    op.create_table(
        "coupons",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("discount_type", sa.String(length=16), nullable=False),
        _money("discount_value"),
        _money("minimum_order_value", default="0"),
        _money("maximum_discount_amount", nullable=True),
        sa.Column("usage_limit", sa.Integer(), nullable=True),
        sa.Column("used_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("user_usage_limit", sa.Integer(), nullable=False, server_default=sa.text("1")),
        _ts("starts_at", nullable=False),
        _ts("ends_at", nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("allowed_user_ids", sa.JSON(), nullable=False),
        sa.Column("applicable_product_ids", sa.JSON(), nullable=False),
        sa.Column("applicable_category_ids", sa.JSON(), nullable=False),
        sa.Column("excluded_product_ids", sa.JSON(), nullable=False),
        sa.Column("excluded_category_ids", sa.JSON(), nullable=False),
    )
    op.create_index("ix_coupons_code", "coupons", ["code"], unique=True)

    op.create_table(
        "coupon_usages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "coupon_id",
            sa.Integer(),
            sa.ForeignKey("coupons.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "order_id",
            sa.Integer(),
            sa.ForeignKey("orders.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        _money("discount_amount"),
        _ts("used_at", nullable=False, now=True),
        _ts("revoked_at"),
    )
    op.create_index("ix_coupon_usages_coupon_user", "coupon_usages", ["coupon_id", "user_id"])
    op.create_index("ix_coupon_usages_order_id", "coupon_usages", ["order_id"])

    op.create_table(
        "vouchers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("discount_type", sa.String(length=16), nullable=False),
        _money("discount_value"),
        _money("min_purchase_amount", default="0"),
        _money("max_discount_amount", nullable=True),
        _ts("starts_at", nullable=False),
        _ts("ends_at", nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("applicable_product_ids", sa.JSON(), nullable=False),
    )
    op.create_index("ix_vouchers_code", "vouchers", ["code"], unique=True)

    op.create_table(
        "voucher_grants",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "voucher_id",
            sa.Integer(),
            sa.ForeignKey("vouchers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("is_used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "order_id",
            sa.Integer(),
            sa.ForeignKey("orders.id", ondelete="SET NULL"),
            nullable=True,
        ),
        _ts("used_at"),
        _ts("granted_at", nullable=False, now=True),
        sa.UniqueConstraint("user_id", "voucher_id", name="uq_voucher_grants_user_voucher"),
    )
    op.create_index("ix_voucher_grants_user_id", "voucher_grants", ["user_id"])

    # ---- 积分 ----
    op.create_table(
        "loyalty_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(length=16), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("order_id", sa.Integer(), nullable=True),
        _ts("expires_at"),
        sa.Column("is_expired", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("created_at", nullable=False, now=True),
    )
    op.create_index(
        "ix_loyalty_entries_user_created", "loyalty_entries", ["user_id", "created_at"]
    )
    op.create_index("ix_loyalty_entries_order_id", "loyalty_entries", ["order_id"])

    # ---- outbox ----
    op.create_table(
        "outbox_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("topic", sa.String(length=64), nullable=False),
        sa.Column("aggregate_id", sa.String(length=64), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_error", sa.Text(), nullable=True),
        _ts("created_at", nullable=False, now=True),
        _ts("dispatched_at"),
    )
    op.create_index("ix_outbox_events_topic", "outbox_events", ["topic"])
    op.create_index("ix_outbox_events_status_id", "outbox_events", ["status", "id"])


def downgrade() -> None:
    """Downgrade schema: drop storefront core tables."""
    op.drop_index("ix_outbox_events_status_id", table_name="outbox_events")
    op.drop_index("ix_outbox_events_topic", table_name="outbox_events")
    op.drop_table("outbox_events")

    op.drop_index("ix_loyalty_entries_order_id", table_name="loyalty_entries")
    op.drop_index("ix_loyalty_entries_user_created", table_name="loyalty_entries")
    op.drop_table("loyalty_entries")

    op.drop_index("ix_voucher_grants_user_id", table_name="voucher_grants")
    op.drop_table("voucher_grants")
    op.drop_index("ix_vouchers_code", table_name="vouchers")
    op.drop_table("vouchers")

    op.drop_index("ix_coupon_usages_order_id", table_name="coupon_usages")
    op.drop_index("ix_coupon_usages_coupon_user", table_name="coupon_usages")
    op.drop_table("coupon_usages")
    op.drop_index("ix_coupons_code", table_name="coupons")
    op.drop_table("coupons")

    op.drop_index("ix_order_timeline_order_id", table_name="order_timeline")
    op.drop_table("order_timeline")
    op.drop_index("ix_order_lines_product_id", table_name="order_lines")
    op.drop_index("ix_order_lines_order_id", table_name="order_lines")
    op.drop_table("order_lines")
    op.drop_index("ix_orders_status_created", table_name="orders")
    op.drop_index("ix_orders_status", table_name="orders")
    op.drop_index("ix_orders_user_id", table_name="orders")
    op.drop_index("ix_orders_order_code", table_name="orders")
    op.drop_table("orders")

    op.drop_index("ix_delivery_methods_code", table_name="delivery_methods")
    op.drop_table("delivery_methods")
    op.drop_index("ix_products_category_id", table_name="products")
    op.drop_index("ix_products_code", table_name="products")
    op.drop_table("products")
    op.drop_table("categories")
