from __future__ import annotations

import functools
import os
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, List, Optional, TypeVar

from sqlalchemy import case, desc, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models, schemas
from .errors import NotFound, StoreUnavailable

F = TypeVar("F", bound=Callable[..., Any])


def store_operation(func_: F) -> F:
    @functools.wraps(func_)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func_(*args, **kwargs)
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"{func_.__name__}_failed") from exc

    return wrapper  # type: ignore[return-value]


@dataclass
class ScheduleTotals:
    total: int
    active: int
    budget: float


@dataclass
class PromotedContentTotals:
    count: int
    revenue: float
    views: int


def _naive(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class DatabaseStore:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.jwt_secret_key = os.getenv("JWT_SECRET_KEY", "change_me")
        self.jwt_algorithm = os.getenv("JWT_ALGORITHM", "HS256")

    @contextmanager
    def batch(self) -> Iterator[None]:
        """All writes inside the block land together or not at all."""
        try:
            with self.session.begin_nested():
                yield
        except SQLAlchemyError as exc:
            raise StoreUnavailable("batch_failed") from exc

    # content

    @store_operation
    def create_content(self, user_id: str, fields: dict[str, Any]) -> schemas.Content:
        content = models.Content(user_id=user_id, **fields)
        self.session.add(content)
        self.session.flush()
        return self._to_content(content)

    @store_operation
    def get_content(self, content_id: int) -> schemas.Content:
        return self._to_content(self._require_content(content_id))

    @store_operation
    def list_content(
        self, user_id: Optional[str] = None, status: Optional[str] = None
    ) -> List[schemas.Content]:
        query = select(models.Content).order_by(desc(models.Content.created_at))
        if user_id is not None:
            query = query.where(models.Content.user_id == user_id)
        if status is not None:
            query = query.where(models.Content.status == status)
        return [self._to_content(row) for row in self.session.scalars(query)]

    @store_operation
    def get_latest_content_for_user(
        self, user_id: str, since: datetime
    ) -> Optional[schemas.Content]:
        content = self.session.scalar(
            select(models.Content)
            .where(
                models.Content.user_id == user_id,
                models.Content.created_at >= since,
            )
            .order_by(desc(models.Content.created_at))
            .limit(1)
        )
        return self._to_content(content) if content else None

    @store_operation
    def update_content(self, content_id: int, fields: dict[str, Any]) -> schemas.Content:
        content = self._require_content(content_id)
        for key, value in fields.items():
            setattr(content, key, value)
        self.session.add(content)
        self.session.flush()
        return self._to_content(content)

    @store_operation
    def increment_content_performance(
        self, content_id: int, views: int, clicks: int, revenue: float
    ) -> schemas.Content:
        content = self._require_content(content_id)
        content.views = (content.views or 0) + views
        content.clicks = (content.clicks or 0) + clicks
        content.revenue = (content.revenue or 0.0) + revenue
        self.session.flush()
        return self._to_content(content)

    @store_operation
    def delete_content(self, content_id: int) -> None:
        content = self._require_content(content_id)
        for test in self.session.scalars(
            select(models.ABTest).where(models.ABTest.content_id == content_id)
        ):
            self.session.delete(test)
        self.session.delete(content)
        self.session.flush()

    # analytics

    @store_operation
    def create_analytics_snapshot(
        self, content_id: int, payload: schemas.HistoricalData, collected_at: datetime
    ) -> schemas.AnalyticsSnapshot:
        self._require_content(content_id)
        snapshot = models.AnalyticsSnapshot(
            content_id=content_id,
            views=payload.views or 0,
            engagement_rate=payload.engagement_rate,
            conversion_rate=payload.conversion_rate,
            content_quality_score=payload.content_quality_score,
            viral_potential=payload.viral_potential,
            revenue=payload.revenue or 0.0,
            metrics_updated_at=collected_at,
        )
        self.session.add(snapshot)
        self.session.flush()
        return self._to_analytics(snapshot)

    @store_operation
    def get_latest_analytics(self, content_id: int) -> Optional[schemas.AnalyticsSnapshot]:
        snapshot = self.session.scalar(
            select(models.AnalyticsSnapshot)
            .where(models.AnalyticsSnapshot.content_id == content_id)
            .order_by(
                desc(models.AnalyticsSnapshot.metrics_updated_at),
                desc(models.AnalyticsSnapshot.id),
            )
            .limit(1)
        )
        return self._to_analytics(snapshot) if snapshot else None

    # promotion schedules

    @store_operation
    def create_schedule(
        self, content_id: int, fields: dict[str, Any]
    ) -> schemas.PromotionSchedule:
        schedule = models.PromotionSchedule(content_id=content_id, **fields)
        self.session.add(schedule)
        self.session.flush()
        return self._to_schedule(schedule)

    @store_operation
    def get_schedule(self, schedule_id: int) -> schemas.PromotionSchedule:
        return self._to_schedule(self._require_schedule(schedule_id))

    @store_operation
    def update_schedule(
        self, schedule_id: int, fields: dict[str, Any]
    ) -> schemas.PromotionSchedule:
        schedule = self._require_schedule(schedule_id)
        for key, value in fields.items():
            setattr(schedule, key, value)
        self.session.add(schedule)
        self.session.flush()
        return self._to_schedule(schedule)

    @store_operation
    def delete_schedule(self, schedule_id: int) -> None:
        self.session.delete(self._require_schedule(schedule_id))
        self.session.flush()

    @store_operation
    def list_content_schedules(self, content_id: int) -> List[schemas.PromotionSchedule]:
        schedules = self.session.scalars(
            select(models.PromotionSchedule)
            .where(models.PromotionSchedule.content_id == content_id)
            .order_by(models.PromotionSchedule.start_time, models.PromotionSchedule.id)
        )
        return [self._to_schedule(schedule) for schedule in schedules]

    @store_operation
    def list_child_schedules(self, parent_id: int) -> List[schemas.PromotionSchedule]:
        schedules = self.session.scalars(
            select(models.PromotionSchedule)
            .where(models.PromotionSchedule.parent_schedule_id == parent_id)
            .order_by(models.PromotionSchedule.start_time)
        )
        return [self._to_schedule(schedule) for schedule in schedules]

    @store_operation
    def count_occurrences(self, schedule_id: int) -> int:
        return int(
            self.session.scalar(
                select(func.count(models.PromotionSchedule.id)).where(
                    or_(
                        models.PromotionSchedule.id == schedule_id,
                        models.PromotionSchedule.parent_schedule_id == schedule_id,
                    )
                )
            )
            or 0
        )

    @store_operation
    def has_occurrence_at(self, root_id: int, start_time: datetime) -> bool:
        return bool(
            self.session.scalar(
                select(models.PromotionSchedule.id).where(
                    or_(
                        models.PromotionSchedule.id == root_id,
                        models.PromotionSchedule.parent_schedule_id == root_id,
                    ),
                    models.PromotionSchedule.start_time == start_time,
                )
            )
        )

    @store_operation
    def list_active_schedules(
        self,
        now: datetime,
        platform: Optional[str] = None,
        min_budget: Optional[float] = None,
        max_budget: Optional[float] = None,
    ) -> List[schemas.PromotionSchedule]:
        query = (
            select(models.PromotionSchedule)
            .where(
                models.PromotionSchedule.is_active.is_(True),
                models.PromotionSchedule.start_time <= now,
            )
            .order_by(models.PromotionSchedule.start_time)
        )
        if platform is not None:
            query = query.where(models.PromotionSchedule.platform == platform)
        if min_budget is not None:
            query = query.where(models.PromotionSchedule.budget >= min_budget)
        if max_budget is not None:
            query = query.where(models.PromotionSchedule.budget <= max_budget)
        return [self._to_schedule(schedule) for schedule in self.session.scalars(query)]

    @store_operation
    def list_ended_active_schedules(self, now: datetime) -> List[schemas.PromotionSchedule]:
        schedules = self.session.scalars(
            select(models.PromotionSchedule)
            .where(
                models.PromotionSchedule.is_active.is_(True),
                models.PromotionSchedule.end_time.is_not(None),
                models.PromotionSchedule.end_time <= now,
            )
            .order_by(models.PromotionSchedule.end_time)
        )
        return [self._to_schedule(schedule) for schedule in schedules]

    # promotion reporting

    @store_operation
    def summarize_schedules(self) -> ScheduleTotals:
        schedule = models.PromotionSchedule
        total, active, budget = self.session.execute(
            select(
                func.count(schedule.id),
                func.coalesce(func.sum(case((schedule.is_active.is_(True), 1), else_=0)), 0),
                func.coalesce(func.sum(schedule.budget), 0.0),
            )
        ).one()
        return ScheduleTotals(total=int(total), active=int(active), budget=float(budget))

    @store_operation
    def summarize_promoted_content(self) -> PromotedContentTotals:
        content = models.Content
        count, revenue, views = self.session.execute(
            select(
                func.count(content.id),
                func.coalesce(func.sum(content.revenue), 0.0),
                func.coalesce(func.sum(content.views), 0),
            ).where(content.promotion_started_at.is_not(None))
        ).one()
        return PromotedContentTotals(count=int(count), revenue=float(revenue), views=int(views))

    @store_operation
    def list_top_earning_schedules(
        self, limit: int
    ) -> List[tuple[schemas.PromotionSchedule, schemas.Content]]:
        rows = self.session.execute(
            select(models.PromotionSchedule, models.Content)
            .join(models.Content, models.Content.id == models.PromotionSchedule.content_id)
            .where(models.Content.revenue > 0)
            .order_by(desc(models.Content.revenue), models.PromotionSchedule.id)
            .limit(limit)
        )
        return [
            (self._to_schedule(schedule), self._to_content(content))
            for schedule, content in rows
        ]

    # ab tests

    @store_operation
    def create_ab_test(
        self, content_id: int, variants: list[dict[str, Any]], start_date: datetime
    ) -> schemas.ABTest:
        test = models.ABTest(
            content_id=content_id,
            variants=variants,
            start_date=start_date,
            status="active",
        )
        self.session.add(test)
        self.session.flush()
        return self._to_ab_test(test)

    @store_operation
    def get_ab_test(self, test_id: int, for_update: bool = False) -> schemas.ABTest:
        query = select(models.ABTest).where(models.ABTest.id == test_id)
        if for_update:
            query = query.with_for_update()
        test = self.session.scalar(query)
        if not test:
            raise NotFound("ab_test_not_found")
        return self._to_ab_test(test)

    @store_operation
    def update_ab_test(self, test_id: int, fields: dict[str, Any]) -> schemas.ABTest:
        test = self.session.get(models.ABTest, test_id)
        if not test:
            raise NotFound("ab_test_not_found")
        for key, value in fields.items():
            setattr(test, key, value)
        self.session.add(test)
        self.session.flush()
        return self._to_ab_test(test)

    # helpers

    def _require_content(self, content_id: int) -> models.Content:
        content = self.session.get(models.Content, content_id)
        if not content:
            raise NotFound("content_not_found")
        return content

    def _require_schedule(self, schedule_id: int) -> models.PromotionSchedule:
        schedule = self.session.get(models.PromotionSchedule, schedule_id)
        if not schedule:
            raise NotFound("schedule_not_found")
        return schedule

    @staticmethod
    def _to_content(content: models.Content) -> schemas.Content:
        return schemas.Content(
            id=content.id,
            user_id=content.user_id,
            title=content.title,
            type=content.type,
            url=content.url,
            description=content.description or "",
            target_platforms=list(content.target_platforms or []),
            status=content.status,
            views=content.views or 0,
            clicks=content.clicks or 0,
            revenue=content.revenue or 0.0,
            target_rpm=content.target_rpm,
            min_views_threshold=content.min_views_threshold,
            max_budget=content.max_budget,
            scheduled_promotion_time=_naive(content.scheduled_promotion_time),
            promotion_frequency=content.promotion_frequency or "once",
            promotion_started_at=_naive(content.promotion_started_at),
            optimized_promotion_settings=content.optimized_promotion_settings,
            file_metadata=content.file_metadata,
            created_at=_naive(content.created_at),
            updated_at=_naive(content.updated_at),
        )

    @staticmethod
    def _to_schedule(schedule: models.PromotionSchedule) -> schemas.PromotionSchedule:
        return schemas.PromotionSchedule(
            id=schedule.id,
            content_id=schedule.content_id,
            platform=schedule.platform,
            schedule_type=schedule.schedule_type,
            start_time=_naive(schedule.start_time),
            end_time=_naive(schedule.end_time),
            frequency=schedule.frequency,
            is_active=schedule.is_active,
            status=schedule.status,
            budget=schedule.budget or 0,
            target_metrics=dict(schedule.target_metrics or {}),
            platform_specific_settings=dict(schedule.platform_specific_settings or {}),
            recurrence_pattern=schedule.recurrence_pattern,
            max_occurrences=schedule.max_occurrences,
            parent_schedule_id=schedule.parent_schedule_id,
            timezone=schedule.timezone or "UTC",
            completed_at=_naive(schedule.completed_at),
            created_at=_naive(schedule.created_at),
            updated_at=_naive(schedule.updated_at),
        )

    @staticmethod
    def _to_ab_test(test: models.ABTest) -> schemas.ABTest:
        return schemas.ABTest(
            id=test.id,
            content_id=test.content_id,
            variants=[schemas.Variant.model_validate(item) for item in test.variants or []],
            start_date=_naive(test.start_date),
            status=test.status,
            winner=test.winner,
            completed_date=_naive(test.completed_date),
        )

    @staticmethod
    def _to_analytics(snapshot: models.AnalyticsSnapshot) -> schemas.AnalyticsSnapshot:
        return schemas.AnalyticsSnapshot(
            id=snapshot.id,
            content_id=snapshot.content_id,
            views=snapshot.views,
            engagement_rate=snapshot.engagement_rate,
            conversion_rate=snapshot.conversion_rate,
            content_quality_score=snapshot.content_quality_score,
            viral_potential=snapshot.viral_potential,
            revenue=snapshot.revenue,
            metrics_updated_at=_naive(snapshot.metrics_updated_at),
        )
