"""Create affiliate, referral, order snapshot, commission, payout and outbox tables.

Revision ID: 5e7d1c0a9b21
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa

revision = "5e7d1c0a9b21"
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(12, 2)


def upgrade() -> None:
    op.create_table(
        "affiliates",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("company_id", sa.String(36), nullable=True),
        sa.Column("affiliate_code", sa.String(16), nullable=False),
        sa.Column("commission_type", sa.String(20), nullable=False, server_default="PERCENTAGE"),
        sa.Column("commission_rate", sa.Float, nullable=False, server_default="5.0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("total_clicks", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_sales", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_earnings", MONEY, nullable=False, server_default="0"),
        sa.Column("paid_earnings", MONEY, nullable=False, server_default="0"),
        sa.Column("pending_earnings", MONEY, nullable=False, server_default="0"),
        sa.Column("conversion_rate", sa.Float, nullable=False, server_default="0"),
        sa.Column("min_payout", MONEY, nullable=False, server_default="100"),
        sa.Column("payment_method", sa.String(50), nullable=True),
        sa.Column("payment_details", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_affiliates_user_id", "affiliates", ["user_id"], unique=True)
    op.create_index("ix_affiliates_affiliate_code", "affiliates", ["affiliate_code"], unique=True)
    op.create_index("ix_affiliates_company_id", "affiliates", ["company_id"])
    op.create_index("ix_affiliates_status", "affiliates", ["status"])

    op.create_table(
        "products",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("company_id", sa.String(36), nullable=False, index=True),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("price", MONEY, nullable=False),
        sa.Column("base_price", MONEY, nullable=True),
        sa.Column("allow_affiliate_markup", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )

    op.create_table(
        "orders",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("company_id", sa.String(36), nullable=False, index=True),
        sa.Column("affiliate_id", sa.String(36), sa.ForeignKey("affiliates.id", ondelete="SET NULL"), nullable=True, index=True),
        sa.Column("customer_id", sa.String(36), nullable=True),
        sa.Column("order_number", sa.String(50), nullable=True),
        sa.Column("subtotal", MONEY, nullable=False, server_default="0"),
        sa.Column("shipping", MONEY, nullable=False, server_default="0"),
        sa.Column("total", MONEY, nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )

    op.create_table(
        "order_items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("order_id", sa.String(36), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("product_id", sa.String(36), nullable=False),
        sa.Column("position", sa.Integer, nullable=False, server_default="0"),
        sa.Column("quantity", sa.Integer, nullable=False, server_default="1"),
        sa.Column("sell_price", MONEY, nullable=False),
        sa.Column("base_price", MONEY, nullable=True),
        sa.Column("merchant_price", MONEY, nullable=True),
        sa.Column("merchant_id", sa.String(36), nullable=True, index=True),
    )
    op.create_index("ix_order_items_order_product", "order_items", ["order_id", "product_id"])

    op.create_table(
        "affiliate_referrals",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("affiliate_id", sa.String(36), sa.ForeignKey("affiliates.id", ondelete="CASCADE"), nullable=False),
        sa.Column("customer_id", sa.String(36), nullable=True),
        sa.Column("referral_code", sa.String(16), nullable=False),
        sa.Column("referral_url", sa.String(2000), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.Column("source", sa.String(100), nullable=True),
        sa.Column("converted", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("converted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("order_id", sa.String(36), nullable=True),
        sa.Column("dedup_key", sa.String(64), nullable=True, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_referrals_affiliate_customer", "affiliate_referrals", ["affiliate_id", "customer_id", "created_at"])
    op.create_index("ix_referrals_affiliate_ip", "affiliate_referrals", ["affiliate_id", "ip_address", "created_at"])
    op.create_index("ix_referrals_affiliate_converted", "affiliate_referrals", ["affiliate_id", "converted"])

    op.create_table(
        "affiliate_products",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("affiliate_id", sa.String(36), sa.ForeignKey("affiliates.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.String(36), sa.ForeignKey("products.id", ondelete="CASCADE"), nullable=False),
        sa.Column("base_price", MONEY, nullable=False),
        sa.Column("markup", MONEY, nullable=False, server_default="0"),
        sa.Column("final_price", MONEY, nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("affiliate_id", "product_id", name="uq_affiliate_product"),
    )

    op.create_table(
        "affiliate_payouts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("affiliate_id", sa.String(36), sa.ForeignKey("affiliates.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("allocated_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("payment_method", sa.String(50), nullable=True),
        sa.Column("payment_details", sa.JSON, nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("transaction_id", sa.String(255), nullable=True),
        sa.Column("external_reference", sa.String(255), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "commissions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("order_id", sa.String(36), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("company_id", sa.String(36), nullable=False, index=True),
        sa.Column("affiliate_id", sa.String(36), sa.ForeignKey("affiliates.id", ondelete="SET NULL"), nullable=True),
        sa.Column("merchant_id", sa.String(36), nullable=True),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("order_total", MONEY, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("payout_id", sa.String(36), sa.ForeignKey("affiliate_payouts.id", ondelete="RESTRICT"), nullable=True, index=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_commissions_allocation", "commissions", ["affiliate_id", "status", "payout_id", "created_at"])
    op.create_index("ix_commissions_company_created", "commissions", ["company_id", "created_at"])

    op.create_table(
        "commission_tasks",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("order_id", sa.String(36), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_commission_tasks_due", "commission_tasks", ["status", "next_attempt_at"])


def downgrade() -> None:
    op.drop_table("commission_tasks")
    op.drop_table("commissions")
    op.drop_table("affiliate_payouts")
    op.drop_table("affiliate_products")
    op.drop_table("affiliate_referrals")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("products")
    op.drop_table("affiliates")
