"""create orders and payment callback events

Revision ID: 3c9a1f0d2b7e
Revises:
Create Date: 2025-06-02 10:41:12.208431

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c9a1f0d2b7e'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    op.create_table(
        "orders",
        sa.Column("order_id", sa.String(128), primary_key=True),
        sa.Column("status", sa.String(), nullable=False,
                  server_default="pending"),
        sa.Column("amount", sa.Numeric(18, 2)),
        sa.Column("currency", sa.String(3)),
        sa.Column("transaction_id", sa.String(128)),
        sa.Column("paid_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status in ('pending','paid')", name="ck_orders_status"),
    )
    op.create_index("idx_orders_status", "orders", ["status"])

    op.create_table(
        "payment_callback_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("provider", sa.String(), nullable=False,
                  server_default="payzone"),
        sa.Column("order_id", sa.String(128)),
        sa.Column("status", sa.String(32)),
        sa.Column("outcome", sa.String(32), nullable=False),
        sa.Column("signature_ok", sa.Boolean(), nullable=False),
        sa.Column("raw", sa.Text(), nullable=False),
        sa.Column("received_at", sa.DateTime(
            timezone=True), nullable=False),
    )
    op.create_index("idx_callback_events_order",
                    "payment_callback_events", ["order_id"])


def downgrade():
    op.drop_index("idx_callback_events_order",
                  table_name="payment_callback_events")
    op.drop_table("payment_callback_events")
    op.drop_index("idx_orders_status", table_name="orders")
    op.drop_table("orders")
