"""users: avatar_url

Revision ID: 20261019_users_avatar_url
Revises: 20260101_baseline
Create Date: 2026-10-19 00:00:00.000000
"""
from __future__ import annotations
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "20261019_users_avatar_url"
down_revision: Union[str, None] = "20260101_baseline"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    with op.batch_alter_table("users") as batch:
        batch.add_column(sa.Column("avatar_url", sa.String(), nullable=True, comment="Public path of the uploaded avatar"))


def downgrade() -> None:
    with op.batch_alter_table("users") as batch:
        batch.drop_column("avatar_url")
