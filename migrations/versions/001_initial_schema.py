"""Initial schema: health_samples

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- health_samples (one row per user and timestamp) ---
    op.create_table(
        "health_samples",
        sa.Column("user_id", sa.Text, primary_key=True),
        sa.Column("timestamp_millis", sa.BigInteger, primary_key=True),
        sa.Column("heart_rate_bpm", sa.Float, nullable=True),
        sa.Column("step_count", sa.Integer, nullable=True),
        sa.Column("calories_kcal", sa.Float, nullable=True),
        sa.Column("distance_km", sa.Float, nullable=True),
        sa.Column("sleep_duration_minutes", sa.Integer, nullable=True),
        sa.Column("activity_label", sa.String(128), nullable=True),
        sa.Column("heart_points_count", sa.Integer, nullable=True),
        sa.Column("weight_kg", sa.Float, nullable=True),
        sa.Column("floors_climbed", sa.Float, nullable=True),
        sa.Column("move_minutes", sa.Integer, nullable=True),
        sa.Column("sleep_stage", sa.Integer, nullable=True),
        sa.Column("origin", sa.String(16), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        # Constraints
        sa.CheckConstraint("step_count >= 0", name="chk_step_count"),
        sa.CheckConstraint("sleep_duration_minutes >= 0", name="chk_sleep_duration"),
        sa.CheckConstraint("heart_rate_bpm >= 0", name="chk_heart_rate"),
        sa.CheckConstraint("sleep_stage BETWEEN 1 AND 6", name="chk_sleep_stage"),
    )

    # Keep updated_at current on raw SQL updates as well as ORM ones
    op.execute("""
        CREATE OR REPLACE FUNCTION touch_health_samples_updated_at()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at = now();
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER trg_health_samples_updated_at
        BEFORE UPDATE ON health_samples
        FOR EACH ROW EXECUTE FUNCTION touch_health_samples_updated_at();
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_health_samples_updated_at ON health_samples")
    op.execute("DROP FUNCTION IF EXISTS touch_health_samples_updated_at")
    op.drop_table("health_samples")
