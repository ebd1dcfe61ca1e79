"""Create users, transactions, insight runs, insights and audit logs (idempotent).

Revision ID: 7c1e4a9d2b10
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "7c1e4a9d2b10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(bind, name: str) -> bool:
    return sa.inspect(bind).has_table(name)


def upgrade() -> None:
    bind = op.get_bind()

    if not _table_exists(bind, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("email", sa.String(length=320), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=True),
            sa.Column("is_freelancer", sa.Boolean(), nullable=True),
            sa.Column("works_from_home", sa.Boolean(), nullable=True),
            sa.Column("has_health_insurance", sa.Boolean(), nullable=True),
            sa.Column("default_tax_rate", sa.Numeric(6, 4), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id", name="pk_users"),
            sa.UniqueConstraint("email", name="uq_users_email"),
        )

    if not _table_exists(bind, "transactions"):
        op.create_table(
            "transactions",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("date", sa.DateTime(timezone=True), nullable=False),
            sa.Column("type", sa.String(length=40), nullable=False),
            sa.Column("merchant", sa.String(length=200), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("tax_amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id", name="pk_transactions"),
            sa.ForeignKeyConstraint(
                ["user_id"],
                ["users.id"],
                name="fk_transactions_user_id_users",
                ondelete="CASCADE",
            ),
        )
        op.create_index("ix_transactions_user_id_date", "transactions", ["user_id", "date"])

    if not _table_exists(bind, "insight_runs"):
        op.create_table(
            "insight_runs",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("range", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id", name="pk_insight_runs"),
            sa.ForeignKeyConstraint(
                ["user_id"],
                ["users.id"],
                name="fk_insight_runs_user_id_users",
                ondelete="CASCADE",
            ),
        )
        op.create_index(
            "ix_insight_runs_user_id_range_created_at",
            "insight_runs",
            ["user_id", "range", "created_at"],
        )

    if not _table_exists(bind, "insights"):
        op.create_table(
            "insights",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("run_id", sa.String(length=36), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False),
            sa.Column("type", sa.String(length=32), nullable=False),
            sa.Column("fingerprint", sa.String(length=64), nullable=False),
            sa.Column("grouping_key", sa.String(length=300), nullable=True),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("summary", sa.Text(), nullable=False),
            sa.Column("severity_score", sa.Integer(), nullable=False),
            sa.Column("supporting_transaction_ids", sa.JSON(), nullable=False),
            sa.Column("explanation", sa.JSON(), nullable=True),
            sa.Column("dismissed", sa.Boolean(), nullable=False),
            sa.Column("pinned", sa.Boolean(), nullable=False),
            sa.PrimaryKeyConstraint("id", name="pk_insights"),
            sa.ForeignKeyConstraint(
                ["run_id"],
                ["insight_runs.id"],
                name="fk_insights_run_id_insight_runs",
                ondelete="CASCADE",
            ),
            sa.UniqueConstraint("run_id", "type", "fingerprint", name="uq_insights_run_type_fingerprint"),
        )
        op.create_index("ix_insights_run_id", "insights", ["run_id"])
        op.create_index("ix_insights_type", "insights", ["type"])

    if not _table_exists(bind, "audit_logs"):
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("event_type", sa.String(length=80), nullable=False),
            sa.Column("actor", sa.String(length=320), nullable=False),
            sa.Column("reason", sa.String(length=200), nullable=True),
            sa.Column("insight_id", sa.String(length=36), nullable=True),
            sa.Column("before_state", sa.JSON(), nullable=True),
            sa.Column("after_state", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id", name="pk_audit_logs"),
            sa.ForeignKeyConstraint(
                ["user_id"],
                ["users.id"],
                name="fk_audit_logs_user_id_users",
                ondelete="CASCADE",
            ),
        )
        op.create_index("ix_audit_logs_user_id", "audit_logs", ["user_id"])
        op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])
        op.create_index("ix_audit_logs_insight_id", "audit_logs", ["insight_id"])


def downgrade() -> None:
    bind = op.get_bind()

    for table in ("audit_logs", "insights", "insight_runs", "transactions", "users"):
        if _table_exists(bind, table):
            op.drop_table(table)
