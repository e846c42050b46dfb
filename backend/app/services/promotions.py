from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import (
    Any,
    Dict,
    Generic,
    List,
    Mapping,
    Optional,
    Sequence,
    Type,
    TypeVar,
    Union,
)

from dateutil.relativedelta import relativedelta
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .. import schemas
from ..clock import Clock, SystemClock
from ..errors import NotFound, StoreUnavailable, ValidationError
from ..observability import (
    get_logger,
    increment_metric,
    log_event,
    set_metric_gauge,
    traced,
)
from ..storage_db import DatabaseStore
from .recommendations import RecommendationGenerator
from .rpm_model import RPMBudgetModel, round_half_up

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

ScheduleInput = Union[schemas.PromotionScheduleCreate, Mapping[str, Any]]
ScheduleUpdateInput = Union[schemas.PromotionScheduleUpdate, Mapping[str, Any]]

FREQUENCY_STEPS: Dict[str, Union[timedelta, relativedelta]] = {
    "hourly": timedelta(hours=1),
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
    "biweekly": timedelta(days=14),
    "monthly": relativedelta(months=1),
    "quarterly": relativedelta(months=3),
}

# Keys of a winning A/B variant that never move an existing schedule window.
WINDOW_FIELDS = ("start_time", "end_time")
CLEARABLE_FIELDS = ("end_time", "recurrence_pattern", "max_occurrences")
SCHEDULE_FIELDS = frozenset(schemas.PromotionScheduleUpdate.model_fields)
# Keys added by experiments that survive a platform change.
TAG_FIELDS = ("ab_test_id", "variant_id")

TOP_PROMOTIONS_LIMIT = 10
IMMEDIATE_PROMOTION_BUDGET = 1000
IMMEDIATE_PROMOTION_TARGETS = {"target_views": 1000000, "target_rpm": 1000}


@dataclass(frozen=True)
class Lookup(Generic[T]):
    """Result of a best-effort read: ``error`` is set when the store failed."""

    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.error is None


def _validation_reason(exc: PydanticValidationError) -> str:
    error = exc.errors()[0]
    if error.get("loc"):
        return f"invalid_{error['loc'][0]}"
    cause = error.get("ctx", {}).get("error")
    return str(cause) if cause else "invalid_payload"


def parse_payload(model: Type[M], data: Union[M, Mapping[str, Any]]) -> M:
    """Validates a request payload, reporting failures as ``ValidationError``."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(dict(data))
    except PydanticValidationError as exc:
        raise ValidationError(_validation_reason(exc)) from exc


def parse_schedule(data: ScheduleInput) -> schemas.PromotionScheduleCreate:
    return parse_payload(schemas.PromotionScheduleCreate, data)


class PromotionService:
    """Creates, advances and retires promotion schedules for content."""

    def __init__(
        self,
        store: DatabaseStore,
        model: Optional[RPMBudgetModel] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.store = store
        self.clock = clock or SystemClock()
        self.model = model or RPMBudgetModel(self.clock)
        self.recommendations = RecommendationGenerator(self.model)
        self.logger = get_logger("promotions")

    @traced("promotions.schedule")
    def schedule_promotion(
        self,
        content_id: int,
        schedule_data: ScheduleInput,
        tags: Optional[Dict[str, Any]] = None,
    ) -> schemas.PromotionSchedule:
        data = parse_schedule(schedule_data)
        content = self.store.get_content(content_id)
        fields = data.model_dump()
        if data.platform_specific_settings is None:
            fields["platform_specific_settings"] = self.optimize_platform_settings(
                content, data.platform
            )
        if tags:
            fields["platform_specific_settings"] = {
                **fields["platform_specific_settings"],
                **tags,
            }
        if data.budget is None:
            historical = self.load_historical_data(content_id)
            fields["budget"] = self.model.estimate_budget(
                content, data.platform, historical.value
            )
        fields["status"] = "scheduled"
        schedule = self.store.create_schedule(content_id, fields)
        increment_metric(
            "promotion_schedules_created_total", tags={"platform": schedule.platform}
        )
        log_event(
            self.logger,
            "promotion_scheduled",
            content_id=content_id,
            schedule_id=schedule.id,
            platform=schedule.platform,
            frequency=schedule.frequency,
            budget=schedule.budget,
        )
        if schedule.frequency != "once":
            self.create_next_recurrence(schedule)
        return schedule

    def optimize_platform_settings(
        self, content: schemas.Content, platform: str
    ) -> Dict[str, Any]:
        if platform == "youtube":
            return {
                "optimal_time": "15:00-17:00",
                "target_cpm": self.model.estimate_rpm(content.type, "youtube") / 1000,
                "audience_targeting": ["related_content", "demographic"],
            }
        if platform == "tiktok":
            return {
                "optimal_time": "19:00-21:00",
                "hashtag_strategy": "trending",
                "video_length": "15-60s",
            }
        if platform == "instagram":
            return {
                "optimal_time": "11:00-13:00,19:00-21:00",
                "story_duration": "24h",
                "carousel_slides": 3,
            }
        if platform == "facebook":
            return {
                "optimal_time": "09:00-11:00,13:00-15:00",
                "boost_duration": "7d",
                "targeting": ["interests", "location"],
            }
        return {"optimal_time": "12:00-14:00"}

    @staticmethod
    def calculate_next_promotion_time(
        start_time: datetime,
        frequency: str,
        recurrence_pattern: Union[schemas.RecurrencePattern, Mapping[str, Any], None] = None,
    ) -> Optional[datetime]:
        """Returns the start of the occurrence after ``start_time``.

        Month steps land on the same day of the month, clamped to the last
        day when the target month is shorter.
        """
        if recurrence_pattern is not None:
            pattern = schemas.RecurrencePattern.model_validate(recurrence_pattern)
            if pattern.unit == "days":
                return start_time + timedelta(days=pattern.interval)
            if pattern.unit == "weeks":
                return start_time + timedelta(weeks=pattern.interval)
            return start_time + relativedelta(months=pattern.interval)
        step = FREQUENCY_STEPS.get(frequency)
        if step is None:
            return None
        return start_time + step

    def get_occurrence_count(self, schedule_id: int) -> int:
        return self.store.count_occurrences(schedule_id)

    def create_next_recurrence(
        self, schedule: schemas.PromotionSchedule
    ) -> Optional[schemas.PromotionSchedule]:
        next_start = self.calculate_next_promotion_time(
            schedule.start_time, schedule.frequency, schedule.recurrence_pattern
        )
        if next_start is None:
            return None
        root_id = schedule.parent_schedule_id or schedule.id
        if schedule.max_occurrences is not None:
            occurrences = self.get_occurrence_count(root_id)
            if occurrences >= schedule.max_occurrences:
                increment_metric("promotion_recurrence_capped_total")
                log_event(
                    self.logger,
                    "recurrence_cap_reached",
                    schedule_id=schedule.id,
                    root_schedule_id=root_id,
                    occurrences=occurrences,
                    max_occurrences=schedule.max_occurrences,
                )
                return None
        if self.store.has_occurrence_at(root_id, next_start):
            return None
        end_time = None
        if schedule.end_time is not None:
            end_time = next_start + (schedule.end_time - schedule.start_time)
        child = self.store.create_schedule(
            schedule.content_id,
            {
                "platform": schedule.platform,
                "schedule_type": schedule.schedule_type,
                "start_time": next_start,
                "end_time": end_time,
                "frequency": schedule.frequency,
                "is_active": schedule.is_active,
                "status": "scheduled",
                "budget": schedule.budget,
                "target_metrics": dict(schedule.target_metrics),
                "platform_specific_settings": dict(schedule.platform_specific_settings),
                "recurrence_pattern": (
                    schedule.recurrence_pattern.model_dump()
                    if schedule.recurrence_pattern
                    else None
                ),
                "max_occurrences": schedule.max_occurrences,
                "parent_schedule_id": root_id,
                "timezone": schedule.timezone,
            },
        )
        log_event(
            self.logger,
            "recurrence_created",
            schedule_id=child.id,
            root_schedule_id=root_id,
            content_id=child.content_id,
            start_time=next_start.isoformat(),
        )
        return child

    @traced("promotions.process_completed")
    def process_completed_promotions(self) -> int:
        now = self.clock.now()
        ended = self.store.list_ended_active_schedules(now)
        with self.store.batch():
            for schedule in ended:
                self.store.update_schedule(
                    schedule.id,
                    {"is_active": False, "status": "completed", "completed_at": now},
                )
        for schedule in ended:
            if schedule.frequency != "once":
                self.create_next_recurrence(schedule)
        increment_metric("promotions_completed_total", value=len(ended))
        set_metric_gauge("promotions_completed_last_sweep", len(ended))
        log_event(self.logger, "completed_promotions_processed", processed=len(ended))
        return len(ended)

    def get_content_promotion_schedules(
        self, content_id: int
    ) -> List[schemas.PromotionSchedule]:
        return self.store.list_content_schedules(content_id)

    @traced("promotions.update")
    def update_promotion_schedule(
        self, schedule_id: int, updates: ScheduleUpdateInput
    ) -> schemas.PromotionSchedule:
        current = self.store.get_schedule(schedule_id)
        data = parse_payload(schemas.PromotionScheduleUpdate, updates)
        fields = {
            key: value
            for key, value in data.model_dump(exclude_unset=True).items()
            if value is not None or key in CLEARABLE_FIELDS
        }
        start_time = fields.get("start_time") or current.start_time
        end_time = fields["end_time"] if "end_time" in fields else current.end_time
        if end_time is not None and end_time <= start_time:
            raise ValidationError("end_time_before_start_time")
        if not fields:
            return current
        schedule = self.store.update_schedule(schedule_id, fields)
        log_event(
            self.logger,
            "promotion_schedule_updated",
            schedule_id=schedule_id,
            fields=sorted(fields),
        )
        return schedule

    @traced("promotions.delete")
    def delete_promotion_schedule(self, schedule_id: int) -> None:
        self.store.get_schedule(schedule_id)
        children = self.store.list_child_schedules(schedule_id)
        with self.store.batch():
            for child in children:
                self.store.delete_schedule(child.id)
            self.store.delete_schedule(schedule_id)
        increment_metric("promotion_schedules_deleted_total", value=1 + len(children))
        log_event(
            self.logger,
            "promotion_schedule_deleted",
            schedule_id=schedule_id,
            children_deleted=len(children),
        )

    def get_active_promotions(
        self, filters: Optional[schemas.ActivePromotionFilters] = None
    ) -> List[schemas.ActivePromotion]:
        filters = filters or schemas.ActivePromotionFilters()
        schedules = self.store.list_active_schedules(
            self.clock.now(),
            platform=filters.platform,
            min_budget=filters.min_budget,
            max_budget=filters.max_budget,
        )
        promotions: List[schemas.ActivePromotion] = []
        for schedule in schedules:
            try:
                content = self.store.get_content(schedule.content_id)
            except NotFound:
                continue
            if filters.content_type and content.type != filters.content_type:
                continue
            promotions.append(
                schemas.ActivePromotion(**schedule.model_dump(), content=content)
            )
        return promotions

    def load_historical_data(self, content_id: int) -> Lookup[schemas.AnalyticsSnapshot]:
        try:
            with self.store.batch():
                snapshot = self.store.get_latest_analytics(content_id)
        except StoreUnavailable as exc:
            increment_metric("historical_data_unavailable_total")
            log_event(
                self.logger,
                "historical_data_unavailable",
                level=logging.WARNING,
                content_id=content_id,
                reason=exc.reason,
            )
            return Lookup(error=exc.reason)
        return Lookup(value=snapshot)

    @traced("promotions.analytics")
    def get_promotion_analytics(self, schedule_id: int) -> schemas.PromotionAnalytics:
        schedule = self.store.get_schedule(schedule_id)
        try:
            content = self.store.get_content(schedule.content_id)
        except NotFound:
            content = None
        historical = self.load_historical_data(schedule.content_id)
        performance = self._performance(schedule, historical.value)
        recommendations: List[schemas.Recommendation] = []
        if content is not None:
            recommendations = self.recommendations.generate_recommendations(
                content, historical.value
            )
        return schemas.PromotionAnalytics(
            schedule=schedule,
            content=content,
            analytics=performance,
            recommendations=recommendations,
        )

    @staticmethod
    def _performance(
        schedule: schemas.PromotionSchedule,
        snapshot: Optional[schemas.AnalyticsSnapshot],
    ) -> schemas.PromotionPerformance:
        if snapshot is None:
            return schemas.PromotionPerformance()
        views = snapshot.views or 0
        revenue = snapshot.revenue or 0.0
        cost_per_view = schedule.budget / views if views > 0 else None
        roi = (revenue - schedule.budget) / schedule.budget if schedule.budget > 0 else None
        return schemas.PromotionPerformance(
            views=views,
            engagement_rate=snapshot.engagement_rate,
            conversion_rate=snapshot.conversion_rate,
            revenue=revenue,
            cost_per_view=cost_per_view,
            roi=roi,
            data_available=True,
        )

    @traced("promotions.performance")
    def get_promotion_performance(
        self, limit: int = TOP_PROMOTIONS_LIMIT
    ) -> schemas.PromotionPerformanceReport:
        """Platform-wide promotion totals plus the highest earning schedules.

        A schedule counts as completed once it is no longer active. Revenue
        and views come from content that has started promoting.
        """
        schedules = self.store.summarize_schedules()
        promoted = self.store.summarize_promoted_content()
        completed = schedules.total - schedules.active
        avg_roi = promoted.revenue / (schedules.budget or 1) if promoted.count else 0.0
        success_rate = (
            round_half_up(completed / schedules.total * 100) if schedules.total else 0
        )
        top = [
            schemas.TopPromotion(
                promotion_id=schedule.id,
                content_title=content.title,
                platform=schedule.platform,
                budget=schedule.budget,
                revenue=content.revenue,
                views=content.views,
                roi=content.revenue / schedule.budget if schedule.budget > 0 else 0.0,
            )
            for schedule, content in self.store.list_top_earning_schedules(limit)
        ]
        return schemas.PromotionPerformanceReport(
            promotion_metrics=schemas.PromotionMetrics(
                active_promotions=schedules.active,
                completed_promotions=completed,
                total_promotions=schedules.total,
                total_revenue_from_promotions=promoted.revenue,
                total_views_from_promotions=promoted.views,
                avg_roi=avg_roi,
                promotion_success_rate=success_rate,
            ),
            top_performing_promotions=top,
        )

    @traced("promotions.start_now")
    def start_promotion_now(self, content_id: int) -> schemas.PromotionSchedule:
        """Schedules a one-off promotion across all platforms starting now."""
        now = self.clock.now()
        content = self.store.get_content(content_id)
        with self.store.batch():
            schedule = self.schedule_promotion(
                content_id,
                {
                    "platform": "all",
                    "schedule_type": "specific",
                    "start_time": now,
                    "frequency": "once",
                    "is_active": True,
                    "budget": IMMEDIATE_PROMOTION_BUDGET,
                    "target_metrics": IMMEDIATE_PROMOTION_TARGETS,
                },
            )
            if content.promotion_started_at is None:
                self.store.update_content(content_id, {"promotion_started_at": now})
        return schedule

    @traced("promotions.bulk_schedule")
    def bulk_schedule_promotions(
        self, content_ids: Sequence[int], template: ScheduleInput
    ) -> List[schemas.BulkScheduleResult]:
        results: List[schemas.BulkScheduleResult] = []
        for content_id in content_ids:
            try:
                schedule = self.schedule_promotion(content_id, template)
            except (NotFound, ValidationError) as exc:
                results.append(
                    schemas.BulkScheduleResult(
                        content_id=content_id, success=False, error=exc.reason
                    )
                )
                continue
            results.append(
                schemas.BulkScheduleResult(
                    content_id=content_id, success=True, schedule=schedule
                )
            )
        log_event(
            self.logger,
            "bulk_schedule_completed",
            requested=len(content_ids),
            succeeded=sum(1 for item in results if item.success),
        )
        return results

    def apply_settings_to_future_schedules(
        self, content_id: int, settings: Mapping[str, Any]
    ) -> List[schemas.PromotionSchedule]:
        """Moves every not-yet-started schedule onto ``settings``.

        Keys that are schedule columns update the column. Any other key is
        merged into ``platform_specific_settings``, which is rebuilt for the
        new platform when the platform changes.
        """
        columns = {
            key: value
            for key, value in settings.items()
            if key in SCHEDULE_FIELDS and key not in WINDOW_FIELDS
        }
        extras = {key: value for key, value in settings.items() if key not in SCHEDULE_FIELDS}
        now = self.clock.now()
        content: Optional[schemas.Content] = None
        updated = []
        for schedule in self.get_content_promotion_schedules(content_id):
            if schedule.start_time <= now:
                continue
            current = schedule.platform_specific_settings or {}
            platform = columns.get("platform") or schedule.platform
            if columns.get("platform_specific_settings") is not None:
                base = dict(columns["platform_specific_settings"])
            elif platform != schedule.platform:
                content = content or self.store.get_content(content_id)
                base = self.optimize_platform_settings(content, platform)
                base.update({key: current[key] for key in TAG_FIELDS if key in current})
            else:
                base = dict(current)
            updates = {**columns, "platform_specific_settings": {**base, **extras}}
            updated.append(self.update_promotion_schedule(schedule.id, updates))
        return updated
