"""Initial schema for the flower shop back office.

Revision ID: 20260301_00
Revises:
Create Date: 2026-03-01 10:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql as pg


revision = "20260301_00"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("timezone('utc', now())"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("timezone('utc', now())"),
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        *_timestamps(),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("slug", sa.String(length=128), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_categories_slug", "categories", ["slug"], unique=True)

    op.create_table(
        "subcategories",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        *_timestamps(),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("slug", sa.String(length=128), nullable=False),
    )
    op.create_index("ix_subcategories_category_id", "subcategories", ["category_id"], unique=False)
    op.create_index("ix_subcategories_slug", "subcategories", ["slug"], unique=False)

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        *_timestamps(),
        sa.Column("title", sa.String(length=256), nullable=False),
        sa.Column("price", sa.Integer(), nullable=False),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("in_stock", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_visible", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )

    op.create_table(
        "promo_codes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        *_timestamps(),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("discount", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("max_uses", sa.Integer(), nullable=True),
        sa.Column("used_count", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_promo_codes_code", "promo_codes", ["code"], unique=True)

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        *_timestamps(),
        sa.Column("phone", sa.String(length=16), nullable=False),
        sa.Column("contact_name", sa.String(length=128), nullable=False),
        sa.Column("recipient", sa.String(length=128), nullable=False),
        sa.Column("recipient_phone", sa.String(length=16), nullable=False),
        sa.Column("address", sa.String(length=512), nullable=False),
        sa.Column("delivery_method", sa.String(length=32), nullable=True),
        sa.Column("delivery_date", sa.Date(), nullable=True),
        sa.Column("delivery_time", sa.String(length=32), nullable=True),
        sa.Column("payment_method", sa.String(length=32), nullable=True),
        sa.Column("delivery_instructions", sa.Text(), nullable=True),
        sa.Column("postcard_text", sa.Text(), nullable=True),
        sa.Column("anonymous", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("whatsapp", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("upsell_details", sa.JSON(), nullable=True),
        sa.Column("total", sa.Integer(), nullable=False),
        sa.Column("bonuses_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("bonus", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("promo_code_id", sa.Integer(), sa.ForeignKey("promo_codes.id"), nullable=True),
        sa.Column("promo_discount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
    )
    op.create_index("ix_orders_phone", "orders", ["phone"], unique=False)
    op.create_index("ix_orders_status", "orders", ["status"], unique=False)

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "order_id",
            sa.Integer(),
            sa.ForeignKey("orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("title", sa.String(length=256), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("price", sa.Integer(), nullable=False),
    )
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"], unique=False)

    op.create_table(
        "bonuses",
        sa.Column("id", pg.UUID(as_uuid=True), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("phone", sa.String(length=16), nullable=False),
        sa.Column("bonus_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("level", sa.String(length=16), nullable=False, server_default="bronze"),
        sa.Column("total_spent", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint("bonus_balance >= 0", name="ck_bonuses_balance_non_negative"),
    )
    op.create_index("ix_bonuses_phone", "bonuses", ["phone"], unique=True)

    op.create_table(
        "bonus_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("account_id", pg.UUID(as_uuid=True), sa.ForeignKey("bonuses.id"), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=False),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("timezone('utc', now())"),
        ),
        sa.UniqueConstraint("order_id", "kind", name="uq_bonus_history_order_kind"),
    )
    op.create_index("ix_bonus_history_account_id", "bonus_history", ["account_id"], unique=False)
    op.create_index("ix_bonus_history_created_at", "bonus_history", ["created_at"], unique=False)

    op.create_table(
        "auth_logs",
        sa.Column("id", pg.UUID(as_uuid=True), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("check_id", sa.String(length=64), nullable=False),
        sa.Column("phone", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="PENDING"),
        sa.Column("call_phone", sa.String(length=32), nullable=True),
        sa.Column("call_phone_pretty", sa.String(length=32), nullable=True),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_auth_logs_check_id", "auth_logs", ["check_id"], unique=True)
    op.create_index("ix_auth_logs_phone", "auth_logs", ["phone"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_auth_logs_phone", table_name="auth_logs")
    op.drop_index("ix_auth_logs_check_id", table_name="auth_logs")
    op.drop_table("auth_logs")
    op.drop_index("ix_bonus_history_created_at", table_name="bonus_history")
    op.drop_index("ix_bonus_history_account_id", table_name="bonus_history")
    op.drop_table("bonus_history")
    op.drop_index("ix_bonuses_phone", table_name="bonuses")
    op.drop_table("bonuses")
    op.drop_index("ix_order_items_order_id", table_name="order_items")
    op.drop_table("order_items")
    op.drop_index("ix_orders_status", table_name="orders")
    op.drop_index("ix_orders_phone", table_name="orders")
    op.drop_table("orders")
    op.drop_index("ix_promo_codes_code", table_name="promo_codes")
    op.drop_table("promo_codes")
    op.drop_table("products")
    op.drop_index("ix_subcategories_slug", table_name="subcategories")
    op.drop_index("ix_subcategories_category_id", table_name="subcategories")
    op.drop_table("subcategories")
    op.drop_index("ix_categories_slug", table_name="categories")
    op.drop_table("categories")
