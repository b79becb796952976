"""Create users, sos_alerts and sos_helpers tables.

Revision ID: 001
Revises:
Create Date: 2025-11-02

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("username", sa.String(80), nullable=False),
        sa.Column("phone", sa.String(32), nullable=False, server_default=""),
        sa.Column("push_token", sa.String(255), nullable=True),
        sa.Column("last_alert_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("username", name="uq_users_username"),
    )

    # No TTL/auto-delete: expired alerts are resolved by the sweeper, never dropped
    op.create_table(
        "sos_alerts",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("owner_id", sa.String(36), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="ACTIVE"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expire_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], name="fk_sos_alerts_owner_id_users", ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id", name="pk_sos_alerts"),
    )
    op.create_index("ix_sos_alerts_owner_id", "sos_alerts", ["owner_id"], unique=False)
    op.create_index("ix_sos_alerts_status_created_at", "sos_alerts", ["status", "created_at"], unique=False)
    op.create_index("ix_sos_alerts_status_expire_at", "sos_alerts", ["status", "expire_at"], unique=False)

    op.create_table(
        "sos_helpers",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("alert_id", sa.String(36), nullable=False),
        sa.Column("helper_id", sa.String(36), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["alert_id"], ["sos_alerts.id"], name="fk_sos_helpers_alert_id_sos_alerts", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["helper_id"], ["users.id"], name="fk_sos_helpers_helper_id_users", ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id", name="pk_sos_helpers"),
        sa.UniqueConstraint("alert_id", "helper_id", name="uq_sos_helpers_alert_helper"),
    )
    op.create_index("ix_sos_helpers_alert_id", "sos_helpers", ["alert_id"], unique=False)
    op.create_index("ix_sos_helpers_helper_id", "sos_helpers", ["helper_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_sos_helpers_helper_id", table_name="sos_helpers")
    op.drop_index("ix_sos_helpers_alert_id", table_name="sos_helpers")
    op.drop_table("sos_helpers")
    op.drop_index("ix_sos_alerts_status_expire_at", table_name="sos_alerts")
    op.drop_index("ix_sos_alerts_status_created_at", table_name="sos_alerts")
    op.drop_index("ix_sos_alerts_owner_id", table_name="sos_alerts")
    op.drop_table("sos_alerts")
    op.drop_table("users")
