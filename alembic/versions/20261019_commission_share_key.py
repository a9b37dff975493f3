"""One commission row per share per order; order source channel.

Revision ID: 8c2f4a6d1e37
Revises: 5e7d1c0a9b21
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = "8c2f4a6d1e37"
down_revision = "5e7d1c0a9b21"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("orders", sa.Column("source", sa.String(50), nullable=True))

    with op.batch_alter_table("commissions") as batch:
        batch.add_column(sa.Column("share_key", sa.String(60), nullable=True))

    op.execute(
        "UPDATE commissions SET share_key = CASE "
        "WHEN merchant_id IS NULL THEN type "
        "ELSE type || ':' || merchant_id END"
    )

    with op.batch_alter_table("commissions") as batch:
        batch.alter_column("share_key", existing_type=sa.String(60), nullable=False)
        batch.create_unique_constraint("uq_commissions_order_share", ["order_id", "share_key"])


def downgrade() -> None:
    with op.batch_alter_table("commissions") as batch:
        batch.drop_constraint("uq_commissions_order_share", type_="unique")
        batch.drop_column("share_key")
    op.drop_column("orders", "source")
