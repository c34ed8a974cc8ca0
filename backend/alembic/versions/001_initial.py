"""Initial schema: users, provider credentials, oauth temp tokens, sync status,
backfill requests, raw activity tables, Garmin summaries, training sessions, audit log.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _user_fk() -> sa.Column:
    return sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)


def _activity_columns() -> list[sa.Column]:
    return [
        sa.Column("name", sa.String(length=512), nullable=True),
        sa.Column("type", sa.String(length=64), nullable=True),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("distance", sa.Float(), nullable=True),
        sa.Column("moving_time", sa.Integer(), nullable=True),
        sa.Column("elapsed_time", sa.Integer(), nullable=True),
        sa.Column("average_speed", sa.Float(), nullable=True),
        sa.Column("max_speed", sa.Float(), nullable=True),
        sa.Column("average_heartrate", sa.Float(), nullable=True),
        sa.Column("max_heartrate", sa.Float(), nullable=True),
        sa.Column("calories", sa.Float(), nullable=True),
        sa.Column("total_elevation_gain", sa.Float(), nullable=True),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "provider_credentials",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column("provider", sa.String(length=16), nullable=False),
        sa.Column("auth_scheme", sa.String(length=16), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("encrypted_secret", sa.Text(), nullable=True),
        sa.Column("consumer_key", sa.String(length=128), nullable=True),
        sa.Column("provider_user_id", sa.String(length=128), nullable=True),
        sa.Column("scope", sa.String(length=255), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.UniqueConstraint("user_id", "provider", name="uq_provider_credentials_user_provider"),
    )
    op.create_index("ix_provider_credentials_user_id", "provider_credentials", ["user_id"])
    op.create_index("ix_provider_credentials_access_token", "provider_credentials", ["access_token"])
    op.create_index("ix_provider_credentials_provider_user_id", "provider_credentials", ["provider_user_id"])

    op.create_table(
        "oauth_temp_tokens",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column("provider", sa.String(length=16), nullable=False),
        sa.Column("state", sa.String(length=128), nullable=False),
        sa.Column("code_verifier", sa.String(length=128), nullable=True),
        sa.Column("oauth_token", sa.String(length=255), nullable=True),
        sa.Column("encrypted_token_secret", sa.Text(), nullable=True),
        sa.Column("redirect_uri", sa.String(length=512), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index("ix_oauth_temp_tokens_user_id", "oauth_temp_tokens", ["user_id"])
    op.create_index("ix_oauth_temp_tokens_provider", "oauth_temp_tokens", ["provider"])
    op.create_index("ix_oauth_temp_tokens_state", "oauth_temp_tokens", ["state"])
    op.create_index("ix_oauth_temp_tokens_oauth_token", "oauth_temp_tokens", ["oauth_token"])
    op.create_index("ix_oauth_temp_tokens_created_at", "oauth_temp_tokens", ["created_at"])

    op.create_table(
        "sync_status",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column("provider", sa.String(length=16), nullable=False),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_activity_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_activities_synced", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="completed"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.UniqueConstraint("user_id", "provider", name="uq_sync_status_user_provider"),
    )
    op.create_index("ix_sync_status_user_id", "sync_status", ["user_id"])

    op.create_table(
        "backfill_requests",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column("summary_type", sa.String(length=32), nullable=False),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("activities_processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
    )
    op.create_index("ix_backfill_requests_user_id", "backfill_requests", ["user_id"])
    op.create_index("ix_backfill_requests_status", "backfill_requests", ["status"])

    op.create_table(
        "strava_activities",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column("strava_activity_id", sa.BigInteger(), nullable=False),
        *_activity_columns(),
        sa.UniqueConstraint("user_id", "strava_activity_id", name="uq_strava_activities_user_activity"),
    )
    op.create_index("ix_strava_activities_user_id", "strava_activities", ["user_id"])
    op.create_index("ix_strava_activities_start_date", "strava_activities", ["start_date"])
    op.create_index("ix_strava_activities_type", "strava_activities", ["type"])

    op.create_table(
        "garmin_activities",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column("garmin_activity_id", sa.BigInteger(), nullable=False),
        *_activity_columns(),
        sa.UniqueConstraint("user_id", "garmin_activity_id", name="uq_garmin_activities_user_activity"),
    )
    op.create_index("ix_garmin_activities_user_id", "garmin_activities", ["user_id"])
    op.create_index("ix_garmin_activities_start_date", "garmin_activities", ["start_date"])
    op.create_index("ix_garmin_activities_type", "garmin_activities", ["type"])

    op.create_table(
        "garmin_daily_summaries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column("summary_id", sa.String(length=128), nullable=False),
        sa.Column("calendar_date", sa.Date(), nullable=False),
        sa.Column("steps", sa.Integer(), nullable=True),
        sa.Column("active_kilocalories", sa.Integer(), nullable=True),
        sa.Column("resting_heart_rate", sa.Integer(), nullable=True),
        sa.Column("average_stress_level", sa.Integer(), nullable=True),
        sa.Column("raw", sa.JSON(), nullable=True),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", "summary_id", name="uq_garmin_daily_summaries_user_summary"),
    )
    op.create_index("ix_garmin_daily_summaries_user_id", "garmin_daily_summaries", ["user_id"])
    op.create_index("ix_garmin_daily_summaries_calendar_date", "garmin_daily_summaries", ["calendar_date"])

    op.create_table(
        "garmin_sleep_summaries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column("summary_id", sa.String(length=128), nullable=False),
        sa.Column("calendar_date", sa.Date(), nullable=False),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.Column("deep_sleep_seconds", sa.Integer(), nullable=True),
        sa.Column("light_sleep_seconds", sa.Integer(), nullable=True),
        sa.Column("rem_sleep_seconds", sa.Integer(), nullable=True),
        sa.Column("awake_seconds", sa.Integer(), nullable=True),
        sa.Column("raw", sa.JSON(), nullable=True),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", "summary_id", name="uq_garmin_sleep_summaries_user_summary"),
    )
    op.create_index("ix_garmin_sleep_summaries_user_id", "garmin_sleep_summaries", ["user_id"])
    op.create_index("ix_garmin_sleep_summaries_calendar_date", "garmin_sleep_summaries", ["calendar_date"])

    op.create_table(
        "training_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column("source", sa.String(length=16), nullable=False),
        sa.Column("source_activity_id", sa.BigInteger(), nullable=False),
        sa.Column("name", sa.String(length=512), nullable=False),
        sa.Column("activity_type", sa.String(length=64), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("distance", sa.Float(), nullable=True),
        sa.Column("average_pace", sa.Float(), nullable=True),
        sa.Column("average_speed", sa.Float(), nullable=True),
        sa.Column("average_heartrate", sa.Float(), nullable=True),
        sa.Column("max_heartrate", sa.Float(), nullable=True),
        sa.Column("calories", sa.Float(), nullable=True),
        sa.Column("elevation_gain", sa.Float(), nullable=True),
        sa.Column("performance_score", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.UniqueConstraint(
            "user_id", "source", "source_activity_id", name="uq_training_sessions_user_source_activity"
        ),
    )
    op.create_index("ix_training_sessions_user_id", "training_sessions", ["user_id"])
    op.create_index("ix_training_sessions_start_date", "training_sessions", ["start_date"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("resource", sa.String(length=50), nullable=False),
        sa.Column("resource_id", sa.String(length=50), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_log_user_created", "audit_log", ["user_id", "created_at"])
    op.create_index("ix_audit_log_action", "audit_log", ["action"])


def downgrade() -> None:
    for table in (
        "audit_log",
        "training_sessions",
        "garmin_sleep_summaries",
        "garmin_daily_summaries",
        "garmin_activities",
        "strava_activities",
        "backfill_requests",
        "sync_status",
        "oauth_temp_tokens",
        "provider_credentials",
        "users",
    ):
        op.drop_table(table)
