"""Initial LoopTask schema (SQLite-safe, idempotent)."""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "202601150001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(updated: bool = True) -> list[sa.Column]:
    columns = [sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now())]
    if updated:
        columns.append(
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now())
        )
    return columns


def _create_table(inspector, name: str, *columns, indexes=()) -> None:
    if name in inspector.get_table_names():
        print(f"[INFO] Skipping {name} table creation (already exists).")
        return
    op.create_table(name, *columns)
    for index_name, index_columns, unique in indexes:
        op.create_index(index_name, name, index_columns, unique=unique)
    print(f"[INFO] Created {name} table.")


def upgrade():
    conn = op.get_bind()
    inspector = sa.inspect(conn)

    _create_table(
        inspector,
        "organizations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("domain", sa.String(length=120), nullable=False),
        sa.Column("settings", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("domain", name="uq_organizations_domain"),
    )

    _create_table(
        inspector,
        "teams",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default="Asia/Kolkata"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("organization_id", "name", name="uq_team_org_name"),
        indexes=[("ix_teams_organization_id", ["organization_id"], False)],
    )

    _create_table(
        inspector,
        "user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(length=120), nullable=False),
        sa.Column("password_hash", sa.Text(), nullable=True),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="USER"),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("team_id", sa.Integer(), sa.ForeignKey("teams.id"), nullable=True),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default="Asia/Kolkata"),
        sa.Column("avatar", sa.String(length=500), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("permissions", sa.JSON(), nullable=True),
        sa.Column("notify_email", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notify_push", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("digest_frequency", sa.String(length=20), nullable=False, server_default="immediate"),
        sa.Column("last_digest_at", sa.DateTime(), nullable=True),
        sa.Column("notification_types", sa.JSON(), nullable=True),
        sa.UniqueConstraint("username", name="uq_user_username"),
        sa.UniqueConstraint("organization_id", "email", name="uq_user_org_email"),
        indexes=[
            ("ix_user_email", ["email"], False),
            ("ix_user_organization_id", ["organization_id"], False),
            ("ix_user_team_id", ["team_id"], False),
        ],
    )

    _create_table(
        inspector,
        "push_subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("endpoint", sa.Text(), nullable=False),
        sa.Column("p256dh", sa.String(length=255), nullable=False),
        sa.Column("auth", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "endpoint", name="uq_push_subscription_endpoint"),
        indexes=[("ix_push_subscriptions_user_id", ["user_id"], False)],
    )

    _create_table(
        inspector,
        "project_types",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("normalized", sa.String(length=120), nullable=False),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        sa.Column("updated_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("organization_id", "normalized", name="uq_project_type_org_name"),
        indexes=[("ix_project_types_organization_id", ["organization_id"], False)],
    )

    _create_table(
        inspector,
        "projects",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type_id", sa.Integer(), sa.ForeignKey("project_types.id"), nullable=True),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        sa.Column("updated_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        *_timestamps(),
        indexes=[("ix_projects_organization_id", ["organization_id"], False)],
    )

    _create_table(
        inspector,
        "task",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id"), nullable=True),
        sa.Column("team_id", sa.Integer(), sa.ForeignKey("teams.id"), nullable=True),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="OPEN"),
        sa.Column("priority", sa.String(length=10), nullable=False, server_default="MEDIUM"),
        sa.Column("visibility", sa.String(length=10), nullable=False, server_default="PRIVATE"),
        sa.Column("due_date", sa.DateTime(), nullable=True),
        sa.Column("current_step_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("custom", sa.JSON(), nullable=True),
        *_timestamps(),
        indexes=[
            ("ix_task_created_by", ["created_by"], False),
            ("ix_task_owner_id", ["owner_id"], False),
            ("ix_task_organization_id", ["organization_id"], False),
            ("ix_task_project_id", ["project_id"], False),
            ("ix_task_team_id", ["team_id"], False),
        ],
    )

    _create_table(
        inspector,
        "task_steps",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("task_id", sa.Integer(), sa.ForeignKey("task.id"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("due_at", sa.DateTime(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="OPEN"),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        indexes=[("ix_task_steps_task_id", ["task_id"], False)],
    )

    _create_table(
        inspector,
        "task_tags",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("task_id", sa.Integer(), sa.ForeignKey("task.id"), nullable=False),
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.UniqueConstraint("task_id", "name", name="uq_task_tag_name"),
        indexes=[
            ("ix_task_tags_task_id", ["task_id"], False),
            ("ix_task_tags_name", ["name"], False),
        ],
    )

    for association in ("task_helpers", "task_mentions", "task_participants"):
        _create_table(
            inspector,
            association,
            sa.Column("task_id", sa.Integer(), sa.ForeignKey("task.id"), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), primary_key=True),
        )

    _create_table(
        inspector,
        "activity_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("task_id", sa.Integer(), sa.ForeignKey("task.id"), nullable=False),
        sa.Column("actor_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("activity_type", sa.String(length=20), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        indexes=[("ix_activity_logs_task_id", ["task_id"], False)],
    )

    _create_table(
        inspector,
        "comments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("task_id", sa.Integer(), sa.ForeignKey("task.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("parent_id", sa.Integer(), sa.ForeignKey("comments.id"), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        *_timestamps(),
        indexes=[
            ("ix_comments_task_id", ["task_id"], False),
            ("ix_comments_user_id", ["user_id"], False),
            ("ix_comments_parent_id", ["parent_id"], False),
        ],
    )

    _create_table(
        inspector,
        "attachments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("task_id", sa.Integer(), sa.ForeignKey("task.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("filename", sa.String(length=255), nullable=False),
        sa.Column("stored_name", sa.String(length=255), nullable=False),
        sa.Column("url", sa.String(length=500), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        indexes=[("ix_attachments_task_id", ["task_id"], False)],
    )

    _create_table(
        inspector,
        "task_loops",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("task_id", sa.Integer(), sa.ForeignKey("task.id"), nullable=False),
        sa.Column("current_step", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("parallel", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint("task_id", name="uq_task_loops_task_id"),
    )

    _create_table(
        inspector,
        "loop_steps",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("loop_id", sa.Integer(), sa.ForeignKey("task_loops.id"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("assigned_to", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
        sa.Column("estimated_time", sa.Integer(), nullable=True),
        sa.Column("actual_time", sa.Integer(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("dependencies", sa.JSON(), nullable=False),
        indexes=[("ix_loop_steps_loop_id", ["loop_id"], False)],
    )

    _create_table(
        inspector,
        "loop_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("task_id", sa.Integer(), sa.ForeignKey("task.id"), nullable=False),
        sa.Column("step_index", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(length=20), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        indexes=[("ix_loop_history_task_id", ["task_id"], False)],
    )

    _create_table(
        inspector,
        "loop_templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("steps", sa.JSON(), nullable=False),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        *_timestamps(),
        indexes=[("ix_loop_templates_organization_id", ["organization_id"], False)],
    )

    _create_table(
        inspector,
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("task_id", sa.Integer(), sa.ForeignKey("task.id"), nullable=True),
        sa.Column("notification_type", sa.String(length=50), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("read_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        indexes=[
            ("ix_notifications_user_id", ["user_id"], False),
            ("ix_notifications_task_id", ["task_id"], False),
            ("ix_notifications_user_read", ["user_id", "read"], False),
        ],
    )

    _create_table(
        inspector,
        "invitations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("invited_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        sa.Column("token_hash", sa.String(length=64), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="USER"),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("token_hash", name="uq_invitations_token_hash"),
        indexes=[
            ("ix_invitations_email", ["email"], False),
            ("ix_invitations_organization_id", ["organization_id"], False),
        ],
    )

    _create_table(
        inspector,
        "otp_tokens",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("code_hash", sa.String(length=64), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ip", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        indexes=[("ix_otp_tokens_email", ["email"], False)],
    )

    _create_table(
        inspector,
        "rate_limits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(length=255), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("window_ends_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("key", name="uq_rate_limits_key"),
    )

    _create_table(
        inspector,
        "saved_searches",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("query", sa.Text(), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        indexes=[("ix_saved_searches_user_id", ["user_id"], False)],
    )

    _create_table(
        inspector,
        "objectives",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("date", sa.String(length=10), nullable=False),
        sa.Column("team_id", sa.Integer(), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("linked_task_ids", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=10), nullable=False, server_default="OPEN"),
        *_timestamps(),
        indexes=[
            ("ix_objectives_date", ["date"], False),
            ("ix_objectives_team_id", ["team_id"], False),
        ],
    )


TABLES = (
    "objectives",
    "saved_searches",
    "rate_limits",
    "otp_tokens",
    "invitations",
    "notifications",
    "loop_templates",
    "loop_history",
    "loop_steps",
    "task_loops",
    "attachments",
    "comments",
    "activity_logs",
    "task_participants",
    "task_mentions",
    "task_helpers",
    "task_tags",
    "task_steps",
    "task",
    "projects",
    "project_types",
    "push_subscriptions",
    "user",
    "teams",
    "organizations",
)


def downgrade():
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing = set(inspector.get_table_names())
    for name in TABLES:
        if name in existing:
            op.drop_table(name)
            print(f"[INFO] Dropped {name} table.")
