"""init schema

Revision ID: 0001_init_schema
Revises:
Create Date: 2026-10-18

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_init_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "content",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("url", sa.Text()),
        sa.Column("description", sa.Text()),
        sa.Column("target_platforms", sa.JSON()),
        sa.Column("status", sa.String(length=32)),
        sa.Column("views", sa.Integer()),
        sa.Column("clicks", sa.Integer()),
        sa.Column("revenue", sa.Float()),
        sa.Column("target_rpm", sa.Float()),
        sa.Column("min_views_threshold", sa.Integer()),
        sa.Column("max_budget", sa.Float()),
        sa.Column("scheduled_promotion_time", sa.DateTime(timezone=True)),
        sa.Column("promotion_frequency", sa.String(length=32)),
        sa.Column("promotion_started_at", sa.DateTime(timezone=True)),
        sa.Column("optimized_promotion_settings", sa.JSON()),
        sa.Column("file_metadata", sa.JSON()),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_content_user_created", "content", ["user_id", "created_at"])
    op.create_table(
        "promotion_schedules",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("content_id", sa.Integer(), sa.ForeignKey("content.id"), nullable=False),
        sa.Column("platform", sa.String(length=32)),
        sa.Column("schedule_type", sa.String(length=32)),
        sa.Column("start_time", sa.DateTime(timezone=True)),
        sa.Column("end_time", sa.DateTime(timezone=True)),
        sa.Column("frequency", sa.String(length=32)),
        sa.Column("is_active", sa.Boolean()),
        sa.Column("status", sa.String(length=32)),
        sa.Column("budget", sa.Float()),
        sa.Column("target_metrics", sa.JSON()),
        sa.Column("platform_specific_settings", sa.JSON()),
        sa.Column("recurrence_pattern", sa.JSON()),
        sa.Column("max_occurrences", sa.Integer()),
        sa.Column(
            "parent_schedule_id",
            sa.Integer(),
            sa.ForeignKey("promotion_schedules.id"),
        ),
        sa.Column("timezone", sa.String(length=64)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
    )
    op.create_index(
        "ix_promotion_schedules_active_start",
        "promotion_schedules",
        ["is_active", "start_time"],
    )
    op.create_index(
        "ix_promotion_schedules_parent", "promotion_schedules", ["parent_schedule_id"]
    )
    op.create_table(
        "ab_tests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("content_id", sa.Integer(), sa.ForeignKey("content.id"), nullable=False),
        sa.Column("variants", sa.JSON()),
        sa.Column("start_date", sa.DateTime(timezone=True)),
        sa.Column("status", sa.String(length=32)),
        sa.Column("winner", sa.String(length=128)),
        sa.Column("completed_date", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
    )
    op.create_table(
        "analytics_snapshots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("content_id", sa.Integer(), sa.ForeignKey("content.id"), nullable=False),
        sa.Column("views", sa.Integer()),
        sa.Column("engagement_rate", sa.Float()),
        sa.Column("conversion_rate", sa.Float()),
        sa.Column("content_quality_score", sa.Float()),
        sa.Column("viral_potential", sa.Float()),
        sa.Column("revenue", sa.Float()),
        sa.Column("metrics_updated_at", sa.DateTime(timezone=True)),
    )


def downgrade() -> None:
    op.drop_table("analytics_snapshots")
    op.drop_table("ab_tests")
    op.drop_index("ix_promotion_schedules_parent", table_name="promotion_schedules")
    op.drop_index("ix_promotion_schedules_active_start", table_name="promotion_schedules")
    op.drop_table("promotion_schedules")
    op.drop_index("ix_content_user_created", table_name="content")
    op.drop_table("content")
