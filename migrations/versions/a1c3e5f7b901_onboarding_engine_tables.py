"""Onboarding engine - users, endorsements, notifications, templates, progress, event log

Revision ID: a1c3e5f7b901
Revises:
Create Date: 2026-09-28 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "a1c3e5f7b901"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ── Identity ──
    op.create_table(
        "lab_users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(200), nullable=False),
        sa.Column("name", sa.String(200), nullable=False, server_default=""),
        sa.Column("role", sa.String(30), nullable=False, server_default="instructor"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_lab_users_email", "lab_users", ["email"], unique=True)

    op.create_table(
        "user_endorsements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(),
                  sa.ForeignKey("lab_users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("endorsement_type", sa.String(30), nullable=False),
        sa.Column("title", sa.String(200), nullable=True),
        sa.Column("granted_by", sa.String(200), nullable=True),
        sa.Column("granted_at", sa.DateTime(timezone=True)),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index(
        "ix_user_endorsements_type_active", "user_endorsements",
        ["user_id", "endorsement_type", "is_active"],
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("recipient_email", sa.String(200), nullable=False, index=True),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("message", sa.Text(), server_default=""),
        sa.Column("category", sa.String(30), server_default="system"),
        sa.Column("link_url", sa.String(500), nullable=True),
        sa.Column("reference_type", sa.String(50), server_default=""),
        sa.Column("reference_id", sa.Integer(), nullable=True),
        sa.Column("is_read", sa.Boolean(), server_default=sa.false()),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )

    # ── Template catalog ──
    op.create_table(
        "onboarding_templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), server_default=""),
        sa.Column("instructor_type", sa.String(20), nullable=False, server_default="all"),
        sa.Column("created_by", sa.String(200), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
    )

    op.create_table(
        "onboarding_phases",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("template_id", sa.Integer(),
                  sa.ForeignKey("onboarding_templates.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), server_default=""),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("target_days_start", sa.Integer(), server_default="0"),
        sa.Column("target_days_end", sa.Integer(), server_default="7"),
    )

    op.create_table(
        "onboarding_tasks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("phase_id", sa.Integer(),
                  sa.ForeignKey("onboarding_phases.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("description", sa.Text(), server_default=""),
        sa.Column("task_type", sa.String(20), nullable=False, server_default="checklist"),
        sa.Column("resource_url", sa.String(500), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("estimated_minutes", sa.Integer(), nullable=True),
        sa.Column("lane", sa.String(20), nullable=False, server_default="operational"),
        sa.Column("requires_evidence", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("requires_sign_off", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sign_off_role", sa.String(30), nullable=True),
        sa.Column("requires_director", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("applicable_types", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.CheckConstraint(
            "(requires_sign_off AND sign_off_role IS NOT NULL) "
            "OR (NOT requires_sign_off AND sign_off_role IS NULL)",
            name="ck_onboarding_task_sign_off_role",
        ),
    )

    op.create_table(
        "onboarding_task_dependencies",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("task_id", sa.Integer(),
                  sa.ForeignKey("onboarding_tasks.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("depends_on_task_id", sa.Integer(),
                  sa.ForeignKey("onboarding_tasks.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("gate_type", sa.String(10), nullable=False, server_default="hard"),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("task_id", "depends_on_task_id", name="uq_onboarding_task_dep"),
        sa.CheckConstraint("task_id != depends_on_task_id", name="ck_onboarding_dep_no_self_loop"),
        sa.CheckConstraint("gate_type IN ('hard', 'soft')", name="ck_onboarding_dep_gate_type"),
    )

    # ── Assignments & progress ──
    op.create_table(
        "onboarding_assignments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("template_id", sa.Integer(),
                  sa.ForeignKey("onboarding_templates.id"), nullable=False, index=True),
        sa.Column("instructor_email", sa.String(200), nullable=False, index=True),
        sa.Column("instructor_type", sa.String(20), nullable=False, server_default="full_time"),
        sa.Column("mentor_email", sa.String(200), nullable=True, index=True),
        sa.Column("assigned_by", sa.String(200), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("target_completion_date", sa.Date(), nullable=True),
        sa.Column("actual_completion_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
        sa.CheckConstraint(
            "status IN ('active', 'paused', 'completed', 'cancelled')",
            name="ck_onboarding_assignment_status",
        ),
    )
    op.create_index(
        "uq_onboarding_open_assignment", "onboarding_assignments", ["instructor_email"],
        unique=True,
        sqlite_where=sa.text("status IN ('active', 'paused')"),
        postgresql_where=sa.text("status IN ('active', 'paused')"),
    )

    op.create_table(
        "onboarding_task_progress",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("assignment_id", sa.Integer(),
                  sa.ForeignKey("onboarding_assignments.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("task_id", sa.Integer(),
                  sa.ForeignKey("onboarding_tasks.id"), nullable=False, index=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("signed_off_by", sa.String(200), nullable=True),
        sa.Column("signed_off_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("time_spent_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("assignment_id", "task_id", name="uq_onboarding_progress_task"),
        sa.CheckConstraint(
            "status IN ('pending', 'in_progress', 'completed', 'waived')",
            name="ck_onboarding_progress_status",
        ),
        sa.CheckConstraint(
            "(status = 'completed' AND completed_at IS NOT NULL) "
            "OR (status != 'completed' AND completed_at IS NULL)",
            name="ck_onboarding_progress_completed_at",
        ),
        sa.CheckConstraint(
            "status = 'completed' OR (signed_off_by IS NULL AND signed_off_at IS NULL)",
            name="ck_onboarding_progress_sign_off",
        ),
    )

    op.create_table(
        "onboarding_evidence",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("task_progress_id", sa.Integer(),
                  sa.ForeignKey("onboarding_task_progress.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("file_name", sa.String(300), nullable=False),
        sa.Column("file_type", sa.String(100), nullable=True),
        sa.Column("file_size_bytes", sa.Integer(), nullable=True),
        sa.Column("storage_path", sa.String(500), nullable=False),
        sa.Column("uploaded_by", sa.String(200), nullable=False),
        sa.Column("uploaded_at", sa.DateTime(timezone=True)),
        sa.Column("notes", sa.Text(), nullable=True),
    )

    op.create_table(
        "onboarding_event_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("assignment_id", sa.Integer(),
                  sa.ForeignKey("onboarding_assignments.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("task_progress_id", sa.Integer(),
                  sa.ForeignKey("onboarding_task_progress.id", ondelete="SET NULL"), nullable=True, index=True),
        sa.Column("event_type", sa.String(40), nullable=False),
        sa.Column("old_status", sa.String(20), nullable=True),
        sa.Column("new_status", sa.String(20), nullable=True),
        sa.Column("triggered_by", sa.String(200), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), index=True),
    )


def downgrade():
    op.drop_table("onboarding_event_log")
    op.drop_table("onboarding_evidence")
    op.drop_table("onboarding_task_progress")
    op.drop_index("uq_onboarding_open_assignment", table_name="onboarding_assignments")
    op.drop_table("onboarding_assignments")
    op.drop_table("onboarding_task_dependencies")
    op.drop_table("onboarding_tasks")
    op.drop_table("onboarding_phases")
    op.drop_table("onboarding_templates")
    op.drop_table("notifications")
    op.drop_index("ix_user_endorsements_type_active", table_name="user_endorsements")
    op.drop_table("user_endorsements")
    op.drop_index("ix_lab_users_email", table_name="lab_users")
    op.drop_table("lab_users")
