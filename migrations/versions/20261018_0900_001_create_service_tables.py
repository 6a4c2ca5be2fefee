"""Create service approval and webhook tables

Revision ID: 001
Revises: None
Create Date: 2026-10-18 09:00:00.000000

Creates the following tables:
- service_identities: Registered callers and their permissions
- service_approvals: Multi-level approvals owned by a service
- service_approval_decisions: One decision slot per approval level
- service_webhooks: Callback registrations
- webhook_events: Immutable workflow facts
- webhook_deliveries: One row per delivery attempt
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ========================================
    # 1. service_identities table
    # ========================================
    op.create_table(
        "service_identities",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("service_key", sa.String(128), nullable=False),
        sa.Column("permissions", JSONB, nullable=False, server_default="[]"),
        sa.Column("rate_limit", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        # Timestamps
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_service_identities_service_key", "service_identities", ["service_key"], unique=True)
    op.create_index("ix_service_identities_created_at", "service_identities", ["created_at"])

    # ========================================
    # 2. service_approvals table
    # ========================================
    op.create_table(
        "service_approvals",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("service_id", sa.String(36), nullable=False),
        # Classification
        sa.Column("service_type", sa.String(30), nullable=False, server_default="api"),
        sa.Column("approval_type", sa.String(20), nullable=False),
        sa.Column("external_id", sa.String(100), nullable=True),
        # Content
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("priority", sa.String(10), nullable=False, server_default="NORMAL"),
        sa.Column("urgency", sa.String(10), nullable=False, server_default="NORMAL"),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", JSONB, nullable=True),
        # Workflow
        sa.Column("current_level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("total_levels", sa.Integer(), nullable=False),
        sa.Column("approvers", JSONB, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        # Timestamps
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        # Constraints
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["service_id"], ["service_identities.id"], name="fk_service_approvals_service"),
        sa.CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED', 'CANCELLED')",
            name="ck_service_approval_status",
        ),
        sa.CheckConstraint(
            "approval_type IN ('TASK', 'DOCUMENT', 'PROJECT', 'CUSTOM')",
            name="ck_service_approval_type",
        ),
        sa.CheckConstraint("current_level >= 1", name="ck_service_approval_level"),
        sa.CheckConstraint("total_levels >= 1", name="ck_service_approval_total_levels"),
    )
    op.create_index("ix_service_approvals_service_id", "service_approvals", ["service_id"])
    op.create_index("ix_service_approvals_approval_type", "service_approvals", ["approval_type"])
    op.create_index("ix_service_approvals_external_id", "service_approvals", ["external_id"])
    op.create_index("ix_service_approvals_status", "service_approvals", ["status"])
    op.create_index("ix_service_approvals_created_at", "service_approvals", ["created_at"])
    op.create_index("idx_service_approval_service_status", "service_approvals", ["service_id", "status"])

    # ========================================
    # 3. service_approval_decisions table
    # ========================================
    op.create_table(
        "service_approval_decisions",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("approval_id", sa.String(36), nullable=False),
        sa.Column("approver_id", sa.String(100), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column("decision", sa.String(10), nullable=False, server_default="PENDING"),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("decision_date", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["approval_id"], ["service_approvals.id"], name="fk_decisions_approval"),
        sa.UniqueConstraint("approval_id", "level", name="uq_decision_approval_level"),
        sa.CheckConstraint("decision IN ('PENDING', 'APPROVED', 'REJECTED')", name="ck_decision_value"),
    )
    op.create_index("ix_service_approval_decisions_approval_id", "service_approval_decisions", ["approval_id"])
    op.create_index("ix_service_approval_decisions_approver_id", "service_approval_decisions", ["approver_id"])

    # ========================================
    # 4. service_webhooks table
    # ========================================
    op.create_table(
        "service_webhooks",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("service_id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("events", JSONB, nullable=False),
        sa.Column("secret", sa.String(128), nullable=False),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("timeout", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        # Timestamps
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["service_id"], ["service_identities.id"], name="fk_service_webhooks_service"),
        sa.CheckConstraint("retry_count BETWEEN 0 AND 10", name="ck_webhook_retry_count"),
        sa.CheckConstraint("timeout BETWEEN 5 AND 300", name="ck_webhook_timeout"),
    )
    op.create_index("ix_service_webhooks_service_id", "service_webhooks", ["service_id"])
    op.create_index("ix_service_webhooks_created_at", "service_webhooks", ["created_at"])

    # ========================================
    # 5. webhook_events table
    # ========================================
    op.create_table(
        "webhook_events",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("service_id", sa.String(36), nullable=False),
        sa.Column("event_type", sa.String(40), nullable=False),
        sa.Column("approval_id", sa.String(36), nullable=True),
        sa.Column("payload", JSONB, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["service_id"], ["service_identities.id"], name="fk_webhook_events_service"),
        sa.ForeignKeyConstraint(
            ["approval_id"], ["service_approvals.id"], name="fk_webhook_events_approval", ondelete="SET NULL"
        ),
    )
    op.create_index("ix_webhook_events_service_id", "webhook_events", ["service_id"])
    op.create_index("ix_webhook_events_event_type", "webhook_events", ["event_type"])
    op.create_index("ix_webhook_events_approval_id", "webhook_events", ["approval_id"])
    op.create_index("ix_webhook_events_created_at", "webhook_events", ["created_at"])

    # ========================================
    # 6. webhook_deliveries table
    # ========================================
    op.create_table(
        "webhook_deliveries",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("webhook_id", sa.String(36), nullable=False),
        sa.Column("event_id", sa.String(36), nullable=False),
        sa.Column("status", sa.String(10), nullable=False, server_default="PENDING"),
        sa.Column("response_code", sa.Integer(), nullable=True),
        sa.Column("response_body", sa.Text(), nullable=True),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["webhook_id"], ["service_webhooks.id"], name="fk_deliveries_webhook"),
        sa.ForeignKeyConstraint(["event_id"], ["webhook_events.id"], name="fk_deliveries_event"),
        sa.CheckConstraint("status IN ('PENDING', 'SUCCESS', 'FAILED')", name="ck_delivery_status"),
    )
    op.create_index("ix_webhook_deliveries_webhook_id", "webhook_deliveries", ["webhook_id"])
    op.create_index("ix_webhook_deliveries_event_id", "webhook_deliveries", ["event_id"])
    op.create_index("ix_webhook_deliveries_created_at", "webhook_deliveries", ["created_at"])
    op.create_index("idx_delivery_retry", "webhook_deliveries", ["status", "next_retry_at"])


def downgrade() -> None:
    op.drop_table("webhook_deliveries")
    op.drop_table("webhook_events")
    op.drop_table("service_webhooks")
    op.drop_table("service_approval_decisions")
    op.drop_table("service_approvals")
    op.drop_table("service_identities")
