from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow
    )


class Content(Base, TimestampMixin):
    __tablename__ = "content"
    __table_args__ = (Index("ix_content_user_created", "user_id", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    url: Mapped[Optional[str]] = mapped_column(Text)
    description: Mapped[str] = mapped_column(Text, default="")
    target_platforms: Mapped[list] = mapped_column(JSON, default=list)
    status: Mapped[str] = mapped_column(String(32), default="pending")
    views: Mapped[int] = mapped_column(Integer, default=0)
    clicks: Mapped[int] = mapped_column(Integer, default=0)
    revenue: Mapped[float] = mapped_column(Float, default=0.0)
    target_rpm: Mapped[float] = mapped_column(Float, default=900000)
    min_views_threshold: Mapped[int] = mapped_column(Integer, default=2000000)
    max_budget: Mapped[float] = mapped_column(Float, default=1000)
    scheduled_promotion_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True)
    )
    promotion_frequency: Mapped[str] = mapped_column(String(32), default="once")
    promotion_started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True)
    )
    optimized_promotion_settings: Mapped[Optional[dict]] = mapped_column(JSON)
    file_metadata: Mapped[Optional[dict]] = mapped_column(JSON)

    schedules: Mapped[list[PromotionSchedule]] = relationship(back_populates="content")
    analytics: Mapped[list[AnalyticsSnapshot]] = relationship(
        back_populates="content", cascade="all, delete-orphan"
    )


class PromotionSchedule(Base, TimestampMixin):
    __tablename__ = "promotion_schedules"
    __table_args__ = (
        Index("ix_promotion_schedules_active_start", "is_active", "start_time"),
        Index("ix_promotion_schedules_parent", "parent_schedule_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    content_id: Mapped[int] = mapped_column(ForeignKey("content.id"), nullable=False)
    platform: Mapped[str] = mapped_column(String(32), default="all")
    schedule_type: Mapped[str] = mapped_column(String(32), default="specific")
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    frequency: Mapped[str] = mapped_column(String(32), default="once")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    status: Mapped[str] = mapped_column(String(32), default="scheduled")
    budget: Mapped[float] = mapped_column(Float, default=0)
    target_metrics: Mapped[dict] = mapped_column(JSON, default=dict)
    platform_specific_settings: Mapped[dict] = mapped_column(JSON, default=dict)
    recurrence_pattern: Mapped[Optional[dict]] = mapped_column(JSON)
    max_occurrences: Mapped[Optional[int]] = mapped_column(Integer)
    parent_schedule_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("promotion_schedules.id")
    )
    timezone: Mapped[str] = mapped_column(String(64), default="UTC")
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    content: Mapped[Content] = relationship(back_populates="schedules")


class ABTest(Base, TimestampMixin):
    __tablename__ = "ab_tests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    content_id: Mapped[int] = mapped_column(ForeignKey("content.id"), nullable=False)
    variants: Mapped[list] = mapped_column(JSON, default=list)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String(32), default="active")
    winner: Mapped[Optional[str]] = mapped_column(String(128))
    completed_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class AnalyticsSnapshot(Base):
    __tablename__ = "analytics_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    content_id: Mapped[int] = mapped_column(ForeignKey("content.id"), nullable=False)
    views: Mapped[int] = mapped_column(Integer, default=0)
    engagement_rate: Mapped[Optional[float]] = mapped_column(Float)
    conversion_rate: Mapped[Optional[float]] = mapped_column(Float)
    content_quality_score: Mapped[Optional[float]] = mapped_column(Float)
    viral_potential: Mapped[Optional[float]] = mapped_column(Float)
    revenue: Mapped[float] = mapped_column(Float, default=0.0)
    metrics_updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow
    )

    content: Mapped[Content] = relationship(back_populates="analytics")
