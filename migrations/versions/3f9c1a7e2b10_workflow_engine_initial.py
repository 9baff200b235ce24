"""workflow_engine_initial

Creates the lifecycle engine tables:
  - workflow_entities      — requests (RFI) and tenders with denormalized state
  - workflow_transitions   — append-only transition history
  - project_reviewers      — reviewer pool for auto-assignment
  - tender_bids            — bids against a tender
  - award_reconciliations  — pending bid-family convergence work
  - side_effect_tasks      — outbound side-effect queue
  - scheduled_reminders    — review reminder handles
  - scheduled_jobs         — job registry / run history
  - notifications          — in-app notifications
  - audit_logs             — operational audit rows

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via
db.create_all() in a development environment.

Revision ID: 3f9c1a7e2b10
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "3f9c1a7e2b10"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Workflow entities ─────────────────────────────────────────────────
    if "workflow_entities" not in existing:
        op.create_table(
            "workflow_entities",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("entity_kind", sa.String(length=10), nullable=False,
                      comment="request | tender"),
            sa.Column("current_state", sa.String(length=30), nullable=False,
                      comment="Denormalized: to_state of the latest transition"),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("raised_by", sa.String(length=150), nullable=True),
            sa.Column("assigned_to", sa.String(length=150), nullable=True),
            sa.Column("issued_by", sa.String(length=150), nullable=True),
            sa.Column("awarded_to", sa.String(length=150), nullable=True),
            sa.Column("response_text", sa.Text(), nullable=True),
            sa.Column("priority", sa.String(length=10), nullable=True),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.Column("budget", sa.Numeric(14, 2), nullable=True),
            sa.Column("deadline", sa.DateTime(timezone=True), nullable=True),
            sa.Column("evaluation_criteria", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_workflow_entities_project_id", "workflow_entities", ["project_id"])
        op.create_index("ix_workflow_entities_raised_by", "workflow_entities", ["raised_by"])
        op.create_index("ix_workflow_entities_issued_by", "workflow_entities", ["issued_by"])
        op.create_index("idx_wfe_project_kind_state", "workflow_entities",
                        ["project_id", "entity_kind", "current_state"])
        op.create_index("idx_wfe_assigned_state", "workflow_entities",
                        ["assigned_to", "current_state"])

    # ── Transition history ────────────────────────────────────────────────
    if "workflow_transitions" not in existing:
        op.create_table(
            "workflow_transitions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("sequence", sa.Integer(), nullable=False),
            sa.Column("from_state", sa.String(length=30), nullable=False),
            sa.Column("to_state", sa.String(length=30), nullable=False),
            sa.Column("action", sa.String(length=40), nullable=False),
            sa.Column("actor_id", sa.String(length=150), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["entity_id"], ["workflow_entities.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("entity_id", "sequence", name="uq_wft_entity_sequence"),
        )
        op.create_index("idx_wft_entity_created", "workflow_transitions",
                        ["entity_id", "created_at"])

    # ── Reviewer pool ─────────────────────────────────────────────────────
    if "project_reviewers" not in existing:
        op.create_table(
            "project_reviewers",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.String(length=150), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("project_id", "user_id", name="uq_project_reviewer"),
        )
        op.create_index("ix_project_reviewers_project_id", "project_reviewers", ["project_id"])

    # ── Bids ──────────────────────────────────────────────────────────────
    if "tender_bids" not in existing:
        op.create_table(
            "tender_bids",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("tender_id", sa.String(length=36), nullable=False),
            sa.Column("bidder_id", sa.String(length=150), nullable=False),
            sa.Column("amount", sa.Numeric(14, 2), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False,
                      comment="submitted | under_review | accepted | rejected"),
            sa.Column("estimated_duration_days", sa.Integer(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("price_score", sa.Float(), nullable=True),
            sa.Column("experience_score", sa.Float(), nullable=True),
            sa.Column("timeline_score", sa.Float(), nullable=True),
            sa.Column("technical_score", sa.Float(), nullable=True),
            sa.Column("communication_score", sa.Float(), nullable=True),
            sa.Column("overall_score", sa.Float(), nullable=True),
            sa.Column("evaluator_id", sa.String(length=150), nullable=True),
            sa.Column("evaluator_notes", sa.Text(), nullable=True),
            sa.Column("evaluated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["tender_id"], ["workflow_entities.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("tender_id", "bidder_id", name="uq_tender_bid_bidder"),
        )
        op.create_index("ix_tender_bids_tender_id", "tender_bids", ["tender_id"])
        op.create_index("idx_tender_bid_status", "tender_bids", ["tender_id", "status"])

    if "award_reconciliations" not in existing:
        op.create_table(
            "award_reconciliations",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tender_id", sa.String(length=36), nullable=False),
            sa.Column("winning_bid_id", sa.String(length=36), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("attempts", sa.Integer(), nullable=False),
            sa.Column("last_error", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["tender_id"], ["workflow_entities.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["winning_bid_id"], ["tender_bids.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("tender_id"),
        )

    # ── Background work ───────────────────────────────────────────────────
    if "side_effect_tasks" not in existing:
        op.create_table(
            "side_effect_tasks",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("state", sa.String(length=30), nullable=False),
            sa.Column("kind", sa.String(length=40), nullable=False),
            sa.Column("trigger_version", sa.Integer(), nullable=False),
            sa.Column("payload", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("attempts", sa.Integer(), nullable=False),
            sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("last_error", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("entity_id", "kind", "trigger_version",
                                name="uq_side_effect_trigger"),
        )
        op.create_index("ix_side_effect_tasks_entity_id", "side_effect_tasks", ["entity_id"])
        op.create_index("idx_side_effect_due", "side_effect_tasks", ["status", "next_attempt_at"])

    if "scheduled_reminders" not in existing:
        op.create_table(
            "scheduled_reminders",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("kind", sa.String(length=20), nullable=False),
            sa.Column("offset_days", sa.Integer(), nullable=False),
            sa.Column("trigger_version", sa.Integer(), nullable=False),
            sa.Column("due_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("entity_id", "kind", "trigger_version",
                                name="uq_reminder_trigger"),
        )
        op.create_index("ix_scheduled_reminders_entity_id", "scheduled_reminders", ["entity_id"])
        op.create_index("idx_reminder_due", "scheduled_reminders", ["status", "due_at"])

    if "scheduled_jobs" not in existing:
        op.create_table(
            "scheduled_jobs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("job_name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("schedule_type", sa.String(length=30), nullable=True),
            sa.Column("schedule_config", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("is_enabled", sa.Boolean(), nullable=True),
            sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_run_status", sa.String(length=20), nullable=True),
            sa.Column("last_run_duration_ms", sa.Integer(), nullable=True),
            sa.Column("last_run_result", sa.JSON(), nullable=True),
            sa.Column("run_count", sa.Integer(), nullable=True),
            sa.Column("error_count", sa.Integer(), nullable=True),
            sa.Column("last_error", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("job_name"),
        )

    # ── Notifications & audit ─────────────────────────────────────────────
    if "notifications" not in existing:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("recipient", sa.String(length=150), nullable=False),
            sa.Column("kind", sa.String(length=40), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("severity", sa.String(length=20), nullable=True),
            sa.Column("payload", sa.JSON(), nullable=True),
            sa.Column("entity_id", sa.String(length=36), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=True),
            sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_recipient", "notifications", ["recipient"])
        op.create_index("ix_notifications_entity_id", "notifications", ["entity_id"])

    if "audit_logs" not in existing:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor", sa.String(length=150), nullable=False),
            sa.Column("diff", sa.JSON(), nullable=False),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])


def downgrade():
    for table in (
        "audit_logs",
        "notifications",
        "scheduled_jobs",
        "scheduled_reminders",
        "side_effect_tasks",
        "award_reconciliations",
        "tender_bids",
        "project_reviewers",
        "workflow_transitions",
        "workflow_entities",
    ):
        op.drop_table(table)
