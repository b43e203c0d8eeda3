"""SQLAlchemy ORM model for the local sample store.

Tables:
- health_samples: one row per (user_id, timestamp_millis), nullable metric columns
"""

from datetime import UTC, datetime

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from vitals.domain.models import RecordOrigin, SampleRecord


class Base(DeclarativeBase):
    pass


class HealthSampleModel(Base):
    __tablename__ = "health_samples"

    # Identity
    user_id: Mapped[str] = mapped_column(Text, primary_key=True)
    timestamp_millis: Mapped[int] = mapped_column(BigInteger, primary_key=True)

    # Measurements
    heart_rate_bpm: Mapped[float | None] = mapped_column(Float, nullable=True)
    step_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    calories_kcal: Mapped[float | None] = mapped_column(Float, nullable=True)
    distance_km: Mapped[float | None] = mapped_column(Float, nullable=True)
    sleep_duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    activity_label: Mapped[str | None] = mapped_column(String(128), nullable=True)
    heart_points_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    weight_kg: Mapped[float | None] = mapped_column(Float, nullable=True)
    floors_climbed: Mapped[float | None] = mapped_column(Float, nullable=True)
    move_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sleep_stage: Mapped[int | None] = mapped_column(Integer, nullable=True)
    origin: Mapped[str | None] = mapped_column(String(16), nullable=True)

    # Temporal
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        CheckConstraint("step_count >= 0", name="chk_step_count"),
        CheckConstraint("sleep_duration_minutes >= 0", name="chk_sleep_duration"),
        CheckConstraint("heart_rate_bpm >= 0", name="chk_heart_rate"),
        CheckConstraint("sleep_stage BETWEEN 1 AND 6", name="chk_sleep_stage"),
    )

    def to_record(self) -> SampleRecord:
        return SampleRecord(
            user_id=self.user_id,
            timestamp_millis=self.timestamp_millis,
            heart_rate_bpm=self.heart_rate_bpm,
            step_count=self.step_count,
            calories_kcal=self.calories_kcal,
            distance_km=self.distance_km,
            sleep_duration_minutes=self.sleep_duration_minutes,
            activity_label=self.activity_label,
            heart_points_count=self.heart_points_count,
            weight_kg=self.weight_kg,
            floors_climbed=self.floors_climbed,
            move_minutes=self.move_minutes,
            sleep_stage=self.sleep_stage,
            origin=RecordOrigin(self.origin) if self.origin else None,
        )
