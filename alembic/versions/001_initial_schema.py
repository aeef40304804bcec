"""Initial schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

AUTOMATION_TYPES = (
    "EMAIL_REMINDER",
    "TASK_CREATION",
    "STATUS_UPDATE",
    "REPORT_GENERATION",
    "CLIENT_FOLLOW_UP",
    "INVOICE_REMINDER",
    "BACKUP_DATA",
    "NOTIFICATION_SEND",
    "PROJECT_ARCHIVE",
    "CLIENT_CHECK_IN",
    "DEADLINE_ALERT",
    "WEEKLY_SUMMARY",
)
SCHEDULE_TYPES = ("ONCE", "DAILY", "WEEKLY", "MONTHLY", "YEARLY", "INTERVAL", "CUSTOM_CRON")
EXECUTION_STATUSES = ("PENDING", "RUNNING", "SUCCESS", "FAILED", "CANCELLED")
RECIPIENT_TYPES = ("CUSTOM", "CLIENT", "TEAM", "PROJECT_MEMBERS")


def _enum(values: tuple[str, ...], name: str) -> sa.Enum:
    # Stored as VARCHAR with a CHECK constraint so new values need no type migration
    return sa.Enum(*values, name=name, native_enum=False, length=32, create_constraint=True)


def upgrade() -> None:
    # Users table
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("timezone", sa.String(50), nullable=False, server_default="UTC"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # Sessions table
    op.create_table(
        "sessions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # Automations table
    op.create_table(
        "automations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", _enum(AUTOMATION_TYPES, "automationtype"), nullable=False),
        sa.Column("config", sa.JSON(), nullable=False),
        sa.Column("conditions", sa.JSON(), nullable=True),
        sa.Column("schedule_type", _enum(SCHEDULE_TYPES, "scheduletype"), nullable=False),
        sa.Column("schedule_time", sa.String(5), nullable=True),
        sa.Column("schedule_day_of_month", sa.Integer(), nullable=True),
        sa.Column("schedule_day_of_week", sa.Integer(), nullable=True),
        sa.Column("schedule_interval", sa.Integer(), nullable=True),
        sa.Column("custom_cron_expression", sa.String(255), nullable=True),
        sa.Column("timezone", sa.String(50), nullable=False, server_default="UTC"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true(), index=True),
        sa.Column("last_executed_at", sa.DateTime(), nullable=True),
        sa.Column("next_execution_at", sa.DateTime(), nullable=True, index=True),
        sa.Column("total_executions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("successful_executions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # Automation recipients table
    op.create_table(
        "automation_recipients",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "automation_id",
            sa.Uuid(),
            sa.ForeignKey("automations.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column(
            "recipient_type",
            _enum(RECIPIENT_TYPES, "recipienttype"),
            nullable=False,
            server_default="CUSTOM",
        ),
    )

    # Automation executions table
    op.create_table(
        "automation_executions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "automation_id",
            sa.Uuid(),
            sa.ForeignKey("automations.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("status", _enum(EXECUTION_STATUSES, "executionstatus"), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=False, index=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("automation_executions")
    op.drop_table("automation_recipients")
    op.drop_table("automations")
    op.drop_table("sessions")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
