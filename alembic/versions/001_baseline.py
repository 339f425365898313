"""Baseline schema.

Creates users, refresh tokens, sessions, teams, payments, gamification,
subscription and notification tables.

Revision ID: 001_baseline
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

revision: str = "001_baseline"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def _user_fk(ondelete: str = "CASCADE") -> sa.Column:
    return sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete=ondelete), nullable=False)


def upgrade() -> None:
    """Create every table."""
    # --- Users ---
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(256), nullable=False),
        sa.Column("bio", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("failed_login_attempts", sa.Integer(), server_default="0", nullable=False),
        _ts("locked_until", nullable=True),
        _ts("last_login", nullable=True),
        sa.Column("login_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "refresh_tokens",
        sa.Column("id", sa.String(36), primary_key=True),
        _user_fk(),
        sa.Column("token_hash", sa.String(128), nullable=False),
        _ts("issued_at"),
        _ts("expires_at"),
        sa.Column("is_revoked", sa.Boolean(), server_default="false", nullable=False),
        _ts("revoked_at", nullable=True),
        sa.Column("replaced_by", sa.String(36), nullable=True),
    )
    op.create_index("ix_refresh_tokens_user_id", "refresh_tokens", ["user_id"])

    # --- Learning sessions ---
    op.create_table(
        "sessions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _ts("start_time"),
        _ts("end_time"),
        sa.Column("duration", sa.Integer(), nullable=False),
        sa.Column("max_participants", sa.Integer(), server_default="10", nullable=False),
        sa.Column("difficulty", sa.String(16), server_default="INTERMEDIATE", nullable=False),
        sa.Column("status", sa.String(16), server_default="SCHEDULED", nullable=False),
        sa.Column("meet_link", sa.String(512), nullable=True),
        sa.Column("google_event_id", sa.String(256), nullable=True),
        sa.Column(
            "created_by_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_sessions_start_time", "sessions", ["start_time"])
    op.create_table(
        "session_participants",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("session_id", sa.BigInteger(), sa.ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False),
        _user_fk(),
        sa.Column("role", sa.String(16), server_default="PARTICIPANT", nullable=False),
        sa.Column("status", sa.String(16), server_default="JOINED", nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_session_participants_session_user", "session_participants", ["session_id", "user_id"])
    op.create_table(
        "meeting_requests",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("session_id", sa.BigInteger(), sa.ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False),
        _user_fk(),
        sa.Column("status", sa.String(16), server_default="PENDING", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # --- Teams ---
    op.create_table(
        "teams",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(16), server_default="ACTIVE", nullable=False),
        sa.Column("max_members", sa.Integer(), server_default="5", nullable=False),
        sa.Column("join_fee", sa.Numeric(10, 2), server_default="0", nullable=False),
        sa.Column("is_private", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("max_members BETWEEN 2 AND 10", name="ck_teams_max_members"),
    )
    op.create_table(
        "team_members",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("team_id", sa.BigInteger(), sa.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False),
        _user_fk(),
        sa.Column("role", sa.String(16), server_default="MEMBER", nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("team_id", "user_id", name="uq_team_members_team_user"),
    )
    op.create_table(
        "team_payments",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("team_id", sa.BigInteger(), sa.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False),
        _user_fk(),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), server_default="KES", nullable=False),
        sa.Column("phone_number", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), server_default="PENDING", nullable=False),
        sa.Column("checkout_request_id", sa.String(128), nullable=True, unique=True),
        sa.Column("merchant_request_id", sa.String(128), nullable=True),
        sa.Column("mpesa_ref", sa.String(64), nullable=True),
        sa.Column("result_desc", sa.String(512), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        _ts("completed_at", nullable=True),
    )
    op.create_table(
        "messages",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("team_id", sa.BigInteger(), sa.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sender_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_messages_team_sent", "messages", ["team_id", "sent_at"])

    # --- Gamification ---
    op.create_table(
        "challenges",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("goal_target", sa.Integer(), server_default="1", nullable=False),
        sa.Column("reward_points", sa.Integer(), server_default="100", nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("team_id", sa.BigInteger(), sa.ForeignKey("teams.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "user_challenges",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column(
            "challenge_id", sa.BigInteger(), sa.ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("progress", sa.Integer(), server_default="0", nullable=False),
        sa.Column("completed", sa.Boolean(), server_default="false", nullable=False),
        _ts("completed_at", nullable=True),
        sa.UniqueConstraint("user_id", "challenge_id", name="uq_user_challenges_user_challenge"),
    )
    op.create_table(
        "badges",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("slug", sa.String(64), nullable=False, unique=True),
        sa.Column("name", sa.String(128), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("image_url", sa.String(512), nullable=True),
    )
    op.create_table(
        "user_badges",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column("badge_id", sa.BigInteger(), sa.ForeignKey("badges.id", ondelete="CASCADE"), nullable=False),
        sa.Column("earned_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("user_id", "badge_id", name="uq_user_badges_user_badge"),
    )
    op.create_table(
        "skills",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(128), nullable=False, unique=True),
    )
    op.create_table(
        "user_skills",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column("skill_id", sa.BigInteger(), sa.ForeignKey("skills.id", ondelete="CASCADE"), nullable=False),
        sa.Column("level", sa.Integer(), server_default="1", nullable=False),
        sa.Column("progress", sa.Integer(), server_default="0", nullable=False),
        sa.UniqueConstraint("user_id", "skill_id", name="uq_user_skills_user_skill"),
    )

    # --- Subscriptions ---
    op.create_table(
        "subscription_plans",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(64), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price_monthly", sa.Numeric(10, 2), server_default="0", nullable=False),
        sa.Column("price_yearly", sa.Numeric(10, 2), server_default="0", nullable=False),
        sa.Column("max_sessions_per_week", sa.Integer(), server_default="-1", nullable=False),
        sa.Column("can_create_private_teams", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("has_priority_booking", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("has_advanced_analytics", sa.Boolean(), server_default="false", nullable=False),
    )
    op.create_table(
        "user_subscriptions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column(
            "plan_id",
            sa.BigInteger(),
            sa.ForeignKey("subscription_plans.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("billing_cycle", sa.String(16), server_default="MONTHLY", nullable=False),
        sa.Column("payment_method", sa.String(16), server_default="FREE", nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        _ts("end_date", nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default="true", nullable=False),
    )
    op.create_index("ix_user_subscriptions_user_active", "user_subscriptions", ["user_id", "is_active"])
    op.create_table(
        "subscription_payments",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column(
            "plan_id",
            sa.BigInteger(),
            sa.ForeignKey("subscription_plans.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), server_default="KES", nullable=False),
        sa.Column("phone_number", sa.String(16), nullable=False),
        sa.Column("payment_method", sa.String(16), server_default="MPESA", nullable=False),
        sa.Column("billing_cycle", sa.String(16), server_default="MONTHLY", nullable=False),
        sa.Column("status", sa.String(16), server_default="PENDING", nullable=False),
        sa.Column("checkout_request_id", sa.String(128), nullable=True, unique=True),
        sa.Column("merchant_request_id", sa.String(128), nullable=True),
        sa.Column("mpesa_ref", sa.String(64), nullable=True),
        sa.Column("result_desc", sa.String(512), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        _ts("completed_at", nullable=True),
    )

    # --- Notifications ---
    op.create_table(
        "notifications",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column("notification_type", sa.String(32), nullable=False),
        sa.Column("title", sa.String(256), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("related_entity_type", sa.String(32), nullable=True),
        sa.Column("related_entity_id", sa.BigInteger(), nullable=True),
        sa.Column("read", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_notifications_user_created", "notifications", ["user_id", "created_at"])


def downgrade() -> None:
    """Drop every table in reverse dependency order."""
    for table in (
        "notifications",
        "subscription_payments",
        "user_subscriptions",
        "subscription_plans",
        "user_skills",
        "skills",
        "user_badges",
        "badges",
        "user_challenges",
        "challenges",
        "messages",
        "team_payments",
        "team_members",
        "teams",
        "meeting_requests",
        "session_participants",
        "sessions",
        "refresh_tokens",
        "users",
    ):
        op.drop_table(table)
