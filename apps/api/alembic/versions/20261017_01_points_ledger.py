"""Points ledger tables.

Revision ID: 20261017_01
Revises: 
Create Date: 2026-10-17
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20261017_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


transaction_type = sa.Enum("credit", "debit", name="point_transaction_type")
transaction_status = sa.Enum("pending", "completed", "failed", "cancelled", name="point_transaction_status")
redemption_status = sa.Enum("pending", "approved", "rejected", "cancelled", name="point_redemption_status")


def upgrade() -> None:
    op.create_table(
        "point_balances",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("current_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("current_points >= 0", name="ck_point_balances_non_negative"),
    )

    op.create_table(
        "point_transactions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("point_balances.user_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("transaction_type", transaction_type, nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("balance_before", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("activity_type", sa.String(length=50), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("reference_id", sa.String(length=64), nullable=True),
        sa.Column("reference_type", sa.String(length=50), nullable=True),
        sa.Column("status", transaction_status, nullable=False, server_default="completed"),
        sa.Column("processed_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("reserved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_point_transactions_amount_positive"),
    )
    op.create_index("ix_point_transactions_user_id", "point_transactions", ["user_id"])
    op.create_index("ix_point_transactions_user_created", "point_transactions", ["user_id", "created_at"])
    op.create_index(
        "ix_point_transactions_user_activity",
        "point_transactions",
        ["user_id", "activity_type", "occurred_at"],
    )
    op.create_index("ix_point_transactions_status_expires", "point_transactions", ["status", "expires_at"])

    op.create_table(
        "point_activities",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("points_reward", sa.Integer(), nullable=False),
        sa.Column("daily_limit", sa.Integer(), nullable=True),
        sa.Column("total_limit", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("points_reward > 0", name="ck_point_activities_reward_positive"),
        sa.CheckConstraint("daily_limit IS NULL OR daily_limit >= 1", name="ck_point_activities_daily_limit"),
        sa.CheckConstraint("total_limit IS NULL OR total_limit >= 1", name="ck_point_activities_total_limit"),
    )
    op.create_index("ix_point_activities_code", "point_activities", ["code"], unique=True)

    op.create_table(
        "point_redemptions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("points_redeemed", sa.Integer(), nullable=False),
        sa.Column("redemption_type", sa.String(length=50), nullable=False),
        sa.Column("redemption_value", sa.Numeric(12, 2), nullable=False),
        sa.Column("redemption_details", sa.JSON(), nullable=True),
        sa.Column("status", redemption_status, nullable=False, server_default="pending"),
        sa.Column("requested_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column(
            "transaction_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("point_transactions.id", ondelete="SET NULL"),
            nullable=True,
            unique=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("points_redeemed > 0", name="ck_point_redemptions_points_positive"),
    )
    op.create_index("ix_point_redemptions_user_id", "point_redemptions", ["user_id"])
    op.create_index("ix_point_redemptions_status", "point_redemptions", ["status"])
    op.create_index("ix_point_redemptions_user_requested", "point_redemptions", ["user_id", "requested_at"])


def downgrade() -> None:
    op.drop_index("ix_point_redemptions_user_requested", table_name="point_redemptions")
    op.drop_index("ix_point_redemptions_status", table_name="point_redemptions")
    op.drop_index("ix_point_redemptions_user_id", table_name="point_redemptions")
    op.drop_table("point_redemptions")
    op.drop_index("ix_point_activities_code", table_name="point_activities")
    op.drop_table("point_activities")
    op.drop_index("ix_point_transactions_status_expires", table_name="point_transactions")
    op.drop_index("ix_point_transactions_user_activity", table_name="point_transactions")
    op.drop_index("ix_point_transactions_user_created", table_name="point_transactions")
    op.drop_index("ix_point_transactions_user_id", table_name="point_transactions")
    op.drop_table("point_transactions")
    op.drop_table("point_balances")

    bind = op.get_bind()
    for enum_type in (redemption_status, transaction_status, transaction_type):
        enum_type.drop(bind, checkfirst=True)
