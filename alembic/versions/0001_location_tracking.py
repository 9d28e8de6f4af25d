"""location tracking tables

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("geofence_latitude", sa.Float(), nullable=False),
        sa.Column("geofence_longitude", sa.Float(), nullable=False),
        sa.Column("geofence_radius", sa.Float(), nullable=False),
        sa.Column("max_time_outside", sa.Integer()),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('upcoming', 'active', 'completed', 'cancelled')",
            name="check_event_status",
        ),
    )
    op.create_index("ix_events_id", "events", ["id"])
    op.create_index("ix_events_status", "events", ["status"])

    op.create_table(
        "attendance_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("participant_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("check_in_time", sa.DateTime()),
        sa.Column("check_out_time", sa.DateTime()),
        sa.Column("notes", sa.String(length=200)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('registered', 'checked-in', 'checked-out', 'absent')",
            name="check_attendance_log_status",
        ),
    )
    op.create_index("ix_attendance_logs_id", "attendance_logs", ["id"])
    op.create_index("ix_attendance_logs_event_id", "attendance_logs", ["event_id"])
    op.create_index("ix_attendance_logs_participant_id", "attendance_logs", ["participant_id"])

    op.create_table(
        "participant_location_statuses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("participant_id", sa.Integer(), nullable=False),
        sa.Column("attendance_log_id", sa.Integer(), sa.ForeignKey("attendance_logs.id"), nullable=False),
        sa.Column("current_latitude", sa.Float(), nullable=False),
        sa.Column("current_longitude", sa.Float(), nullable=False),
        sa.Column("current_accuracy", sa.Float(), nullable=False),
        sa.Column("current_location_at", sa.DateTime()),
        sa.Column("is_within_geofence", sa.Boolean(), nullable=False),
        sa.Column("distance_from_center", sa.Integer()),
        sa.Column("timer_active", sa.Boolean(), nullable=False),
        sa.Column("timer_reason", sa.String(length=20)),
        sa.Column("timer_start_time", sa.DateTime()),
        sa.Column("timer_session_start", sa.DateTime()),
        sa.Column("total_time_outside", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("last_location_update", sa.DateTime(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("event_id", "participant_id", name="uq_location_status_event_participant"),
        sa.CheckConstraint(
            "status IN ('inside', 'outside', 'warning', 'absent')",
            name="check_location_status",
        ),
        sa.CheckConstraint(
            "timer_reason IS NULL OR timer_reason IN ('outside', 'stale')",
            name="check_timer_reason",
        ),
    )
    op.create_index("ix_participant_location_statuses_id", "participant_location_statuses", ["id"])
    op.create_index("ix_participant_location_statuses_event_id", "participant_location_statuses", ["event_id"])
    op.create_index("ix_participant_location_statuses_participant_id", "participant_location_statuses", ["participant_id"])
    op.create_index("ix_participant_location_statuses_is_active", "participant_location_statuses", ["is_active"])

    op.create_table(
        "location_alerts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "location_status_id",
            sa.Integer(),
            sa.ForeignKey("participant_location_statuses.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.Column("acknowledged", sa.Boolean(), nullable=False),
        sa.CheckConstraint(
            "type IN ('left_geofence', 'returned', 'warning', 'exceeded_limit')",
            name="check_alert_type",
        ),
    )
    op.create_index("ix_location_alerts_id", "location_alerts", ["id"])
    op.create_index("ix_location_alerts_location_status_id", "location_alerts", ["location_status_id"])


def downgrade():
    op.drop_table("location_alerts")
    op.drop_table("participant_location_statuses")
    op.drop_table("attendance_logs")
    op.drop_table("events")
