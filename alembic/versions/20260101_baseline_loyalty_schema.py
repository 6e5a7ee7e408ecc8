"""baseline: users, promotions, transactions, events

Revision ID: 20260101_baseline
Revises:
Create Date: 2026-01-01 00:00:00.000000
"""
from __future__ import annotations
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "20260101_baseline"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

user_role = sa.Enum("REGULAR", "CASHIER", "MANAGER", "SUPERUSER", name="user_role")
promotion_type = sa.Enum("AUTOMATIC", "ONE_TIME", name="promotion_type")
transaction_type = sa.Enum("PURCHASE", "ADJUSTMENT", "REDEMPTION", "TRANSFER", "EVENT", name="transaction_type")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("utorid", sa.String(8), nullable=False),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("password_hash", sa.String(), nullable=True),
        sa.Column("role", user_role, nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("verified", sa.Boolean(), nullable=False),
        sa.Column("suspicious", sa.Boolean(), nullable=False),
        sa.Column("birthday", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("last_login", sa.DateTime(), nullable=True),
        sa.Column("reset_token", sa.String(36), nullable=True),
        sa.Column("reset_expires_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("points >= 0", name="ck_users_points_non_negative"),
        sa.UniqueConstraint("email"),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_utorid", "users", ["utorid"], unique=True)
    op.create_index("ix_users_reset_token", "users", ["reset_token"], unique=True)

    op.create_table(
        "promotions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=False),
        sa.Column("type", promotion_type, nullable=False),
        sa.Column("start_time", sa.DateTime(), nullable=False),
        sa.Column("end_time", sa.DateTime(), nullable=False),
        sa.Column("min_spending", sa.Numeric(10, 2), nullable=True),
        sa.Column("rate", sa.Float(), nullable=True),
        sa.Column("points", sa.Integer(), nullable=False),
    )
    op.create_index("ix_promotions_id", "promotions", ["id"])
    op.create_index("ix_promotions_name", "promotions", ["name"])

    op.create_table(
        "user_promotions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("promotion_id", sa.Integer(), sa.ForeignKey("promotions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False),
        sa.UniqueConstraint("user_id", "promotion_id", name="uq_user_promotions_user_promotion"),
    )
    op.create_index("ix_user_promotions_id", "user_promotions", ["id"])
    op.create_index("ix_user_promotions_user_id", "user_promotions", ["user_id"])
    op.create_index("ix_user_promotions_promotion_id", "user_promotions", ["promotion_id"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("type", transaction_type, nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("spent", sa.Numeric(10, 2), nullable=True),
        sa.Column("remark", sa.String(), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("processed_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("sender_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("recipient_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("related_id", sa.Integer(), nullable=True),
        sa.Column("suspicious", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_transactions_id", "transactions", ["id"])
    op.create_index("ix_tx_user_created", "transactions", ["user_id", "created_at"])
    op.create_index("ix_tx_type_related", "transactions", ["type", "related_id"])

    op.create_table(
        "transaction_promotions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("transaction_id", sa.Integer(), sa.ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("promotion_id", sa.Integer(), sa.ForeignKey("promotions.id"), nullable=False),
        sa.UniqueConstraint("transaction_id", "promotion_id", name="uq_tx_promotions_tx_promotion"),
    )
    op.create_index("ix_transaction_promotions_id", "transaction_promotions", ["id"])
    op.create_index("ix_transaction_promotions_transaction_id", "transaction_promotions", ["transaction_id"])
    op.create_index("ix_transaction_promotions_promotion_id", "transaction_promotions", ["promotion_id"])

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=False),
        sa.Column("location", sa.String(), nullable=False),
        sa.Column("start_time", sa.DateTime(), nullable=False),
        sa.Column("end_time", sa.DateTime(), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=True),
        sa.Column("total_points", sa.Integer(), nullable=False),
        sa.Column("points_awarded", sa.Integer(), nullable=False),
        sa.Column("published", sa.Boolean(), nullable=False),
        sa.CheckConstraint("points_awarded <= total_points", name="ck_events_budget"),
    )
    op.create_index("ix_events_id", "events", ["id"])
    op.create_index("ix_events_name", "events", ["name"])

    for table, uq in (
        ("event_organizers", "uq_event_organizers_event_user"),
        ("event_guests", "uq_event_guests_event_user"),
    ):
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.UniqueConstraint("event_id", "user_id", name=uq),
        )
        op.create_index(f"ix_{table}_id", table, ["id"])
        op.create_index(f"ix_{table}_event_id", table, ["event_id"])
        op.create_index(f"ix_{table}_user_id", table, ["user_id"])


def downgrade() -> None:
    for table in (
        "event_guests",
        "event_organizers",
        "events",
        "transaction_promotions",
        "transactions",
        "user_promotions",
        "promotions",
        "users",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    transaction_type.drop(bind, checkfirst=True)
    promotion_type.drop(bind, checkfirst=True)
    user_role.drop(bind, checkfirst=True)
