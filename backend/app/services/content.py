from __future__ import annotations

import base64
import logging
import os
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional, Union

from .. import schemas
from ..clock import Clock
from ..errors import NotFound, StoreUnavailable, ValidationError
from ..observability import get_logger, increment_metric, log_event, traced
from ..storage_db import DatabaseStore
from .promotions import PromotionService, parse_payload
from .recommendations import RecommendationGenerator
from .roi import ROIEstimator

CREATOR_PAYOUT_RATE = 0.01

FREQUENCY_OPTIONS = (
    ("once", "One-time", "Promote once at specified time"),
    ("hourly", "Hourly", "Promote every hour"),
    ("daily", "Daily", "Promote every day"),
    ("weekly", "Weekly", "Promote every week"),
    ("biweekly", "Bi-weekly", "Promote every two weeks"),
    ("monthly", "Monthly", "Promote every month"),
    ("quarterly", "Quarterly", "Promote every quarter"),
)
PLATFORM_LABELS = {
    "youtube": "YouTube",
    "tiktok": "TikTok",
    "instagram": "Instagram",
    "facebook": "Facebook",
    "twitter": "Twitter",
    "linkedin": "LinkedIn",
    "pinterest": "Pinterest",
}


def _cooldown_from_env() -> int:
    return int(os.getenv("UPLOAD_COOLDOWN_DAYS", "0"))


class ContentService:
    def __init__(
        self,
        store: DatabaseStore,
        promotions: PromotionService,
        recommendations: Optional[RecommendationGenerator] = None,
        clock: Optional[Clock] = None,
        upload_cooldown_days: Optional[int] = None,
    ) -> None:
        self.store = store
        self.promotions = promotions
        self.clock = clock or promotions.clock
        self.recommendations = recommendations or RecommendationGenerator(promotions.model)
        self.roi = ROIEstimator(promotions.model)
        self.upload_cooldown_days = (
            _cooldown_from_env() if upload_cooldown_days is None else upload_cooldown_days
        )
        self.logger = get_logger("content")

    @traced("content.create")
    def create_content(
        self,
        user_id: str,
        payload: Union[schemas.ContentCreate, Mapping[str, Any]],
    ) -> schemas.UploadResult:
        data = parse_payload(schemas.ContentCreate, payload)
        url = data.url
        if data.type == "article":
            if not data.article_text:
                raise ValidationError("article_text_required")
            encoded = base64.b64encode(data.article_text.encode("utf-8")).decode("ascii")
            url = f"data:text/plain;base64,{encoded}"
        elif not url:
            raise ValidationError("url_required")
        self.ensure_upload_allowed(user_id)

        now = self.clock.now()
        content = self.store.create_content(
            user_id,
            {
                "title": data.title,
                "type": data.type,
                "url": url,
                "description": data.description,
                "target_platforms": list(data.target_platforms),
                "status": "pending",
                "scheduled_promotion_time": data.scheduled_promotion_time,
                "promotion_frequency": data.promotion_frequency,
                "promotion_started_at": None if data.scheduled_promotion_time else now,
                "target_rpm": data.target_rpm,
                "min_views_threshold": data.min_views_threshold,
                "max_budget": data.max_budget,
                "file_metadata": data.file_metadata,
                "created_at": now,
                "updated_at": now,
            },
        )
        schedule = None
        if data.scheduled_promotion_time:
            schedule = self.promotions.schedule_promotion(
                content.id,
                {
                    "platform": "all",
                    "schedule_type": (
                        "specific" if data.promotion_frequency == "once" else "recurring"
                    ),
                    "start_time": data.scheduled_promotion_time,
                    "frequency": data.promotion_frequency,
                    "is_active": True,
                    "budget": data.max_budget,
                    "target_metrics": {
                        "target_views": data.min_views_threshold,
                        "target_rpm": data.target_rpm,
                    },
                },
            )
        recommendations = self.recommendations.generate_recommendations(content)
        increment_metric("content_uploaded_total", tags={"type": data.type})
        log_event(
            self.logger,
            "content_uploaded",
            content_id=content.id,
            user_id=user_id,
            content_type=data.type,
            scheduled=schedule is not None,
        )
        return schemas.UploadResult(
            message=(
                "Content uploaded and scheduled for promotion"
                if schedule
                else "Content uploaded successfully"
            ),
            content=content,
            promotion_schedule=schedule,
            optimization_recommendations=recommendations,
            optimal_rpm=data.target_rpm,
            creator_payout=data.min_views_threshold * data.target_rpm / 1e6 * CREATOR_PAYOUT_RATE,
        )

    def ensure_upload_allowed(self, user_id: str) -> None:
        if self.upload_cooldown_days <= 0:
            return
        since = self.clock.now() - timedelta(days=self.upload_cooldown_days)
        try:
            with self.store.batch():
                latest = self.store.get_latest_content_for_user(user_id, since)
        except StoreUnavailable as exc:
            log_event(
                self.logger,
                "upload_cooldown_check_failed",
                level=logging.WARNING,
                user_id=user_id,
                reason=exc.reason,
            )
            return
        if latest is not None:
            log_event(
                self.logger,
                "upload_rejected_cooldown",
                user_id=user_id,
                last_upload=latest.created_at.isoformat() if latest.created_at else None,
            )
            raise ValidationError("upload_cooldown_active")

    def get_content(self, content_id: int, principal: schemas.Principal) -> schemas.Content:
        content = self.store.get_content(content_id)
        if not principal.is_admin and content.user_id != principal.user_id:
            raise NotFound("content_not_found")
        return content

    def list_content(
        self, principal: schemas.Principal, status: Optional[str] = None
    ) -> List[schemas.Content]:
        return self.store.list_content(user_id=principal.user_id, status=status)

    def list_all_content(self, status: Optional[str] = None) -> List[schemas.Content]:
        return self.store.list_content(status=status)

    def require_schedule_access(
        self, schedule_id: int, principal: schemas.Principal
    ) -> schemas.PromotionSchedule:
        schedule = self.store.get_schedule(schedule_id)
        try:
            self.get_content(schedule.content_id, principal)
        except NotFound as exc:
            raise NotFound("schedule_not_found") from exc
        return schedule

    def approve_content(self, content_id: int) -> schemas.Content:
        return self._set_status(content_id, "approved")

    def decline_content(self, content_id: int) -> schemas.Content:
        return self._set_status(content_id, "declined")

    def _set_status(self, content_id: int, status: str) -> schemas.Content:
        content = self.store.update_content(
            content_id, {"status": status, "updated_at": self.clock.now()}
        )
        log_event(self.logger, "content_status_changed", content_id=content_id, status=status)
        return content

    def _status_fields(self, status: str, keep_promotion_time: bool) -> Dict[str, Any]:
        now = self.clock.now()
        fields: Dict[str, Any] = {"status": status, "updated_at": now}
        if status == "published" and not keep_promotion_time:
            fields["promotion_started_at"] = now
            fields["scheduled_promotion_time"] = None
        return fields

    def update_status(
        self,
        content_id: int,
        principal: schemas.Principal,
        update: Union[schemas.ContentStatusUpdate, Mapping[str, Any]],
    ) -> schemas.Content:
        data = parse_payload(schemas.ContentStatusUpdate, update)
        self.get_content(content_id, principal)
        content = self.store.update_content(
            content_id, self._status_fields(data.status, data.keep_promotion_time)
        )
        log_event(
            self.logger, "content_status_changed", content_id=content_id, status=data.status
        )
        return content

    def bulk_update_status(
        self,
        principal: schemas.Principal,
        update: Union[schemas.BulkStatusUpdate, Mapping[str, Any]],
    ) -> List[schemas.Content]:
        """Updates the caller's items among ``content_ids``; others are skipped."""
        data = parse_payload(schemas.BulkStatusUpdate, update)
        targets = []
        for content_id in data.content_ids:
            try:
                targets.append(self.get_content(content_id, principal).id)
            except NotFound:
                continue
        updated = []
        with self.store.batch():
            for content_id in targets:
                updated.append(
                    self.store.update_content(
                        content_id, self._status_fields(data.status, False)
                    )
                )
        log_event(
            self.logger,
            "content_status_bulk_changed",
            status=data.status,
            requested=len(data.content_ids),
            updated=len(updated),
        )
        return updated

    def update_content(
        self,
        content_id: int,
        principal: schemas.Principal,
        updates: Union[schemas.ContentUpdate, Mapping[str, Any]],
    ) -> schemas.Content:
        data = parse_payload(schemas.ContentUpdate, updates)
        current = self.get_content(content_id, principal)
        fields = {
            key: value
            for key, value in data.model_dump(exclude_unset=True).items()
            if value is not None
        }
        if not fields:
            return current
        fields["updated_at"] = self.clock.now()
        return self.store.update_content(content_id, fields)

    @traced("content.delete")
    def delete_content(self, content_id: int, principal: schemas.Principal) -> None:
        self.get_content(content_id, principal)
        schedules = self.store.list_content_schedules(content_id)
        children = [item for item in schedules if item.parent_schedule_id is not None]
        roots = [item for item in schedules if item.parent_schedule_id is None]
        with self.store.batch():
            for schedule in children + roots:
                self.store.delete_schedule(schedule.id)
            self.store.delete_content(content_id)
        increment_metric("content_deleted_total")
        log_event(
            self.logger,
            "content_deleted",
            content_id=content_id,
            schedules_deleted=len(schedules),
        )

    @traced("content.promote")
    def promote_now(
        self, content_id: int, principal: schemas.Principal
    ) -> schemas.PromotionStarted:
        self.get_content(content_id, principal)
        schedule = self.promotions.start_promotion_now(content_id)
        log_event(
            self.logger,
            "content_promotion_started",
            content_id=content_id,
            schedule_id=schedule.id,
        )
        return schemas.PromotionStarted(
            message="Promotion started successfully", promotion=schedule
        )

    def record_performance(
        self,
        content_id: int,
        principal: schemas.Principal,
        update: Union[schemas.PerformanceUpdate, Mapping[str, Any]],
    ) -> schemas.Content:
        data = parse_payload(schemas.PerformanceUpdate, update)
        self.get_content(content_id, principal)
        with self.store.batch():
            content = self.store.increment_content_performance(
                content_id, views=data.views, clicks=data.clicks, revenue=data.revenue
            )
            self.store.create_analytics_snapshot(
                content_id,
                schemas.HistoricalData(
                    views=content.views,
                    engagement_rate=data.engagement_rate,
                    conversion_rate=data.conversion_rate,
                    content_quality_score=data.content_quality_score,
                    viral_potential=data.viral_potential,
                    revenue=content.revenue,
                ),
                self.clock.now(),
            )
        log_event(
            self.logger,
            "content_performance_recorded",
            content_id=content_id,
            views=data.views,
            revenue=data.revenue,
        )
        return content

    @traced("content.optimization")
    def get_optimization(
        self, content_id: int, principal: schemas.Principal
    ) -> schemas.OptimizationReport:
        content = self.get_content(content_id, principal)
        historical = self.promotions.load_historical_data(content_id)
        platforms = list(content.target_platforms or schemas.DEFAULT_PLATFORMS)
        return schemas.OptimizationReport(
            recommendations=self.recommendations.generate_recommendations(
                content, historical.value
            ),
            platform_optimization=self.roi.optimize_promotion_plan(
                content, platforms, historical.value
            ),
            current_metrics={
                "target_rpm": content.target_rpm,
                "min_views_threshold": content.min_views_threshold,
                "max_budget": content.max_budget,
            },
            historical_data_available=historical.available,
        )

    def get_scheduling_options(
        self, content_id: int, principal: schemas.Principal
    ) -> schemas.SchedulingOptions:
        content = self.get_content(content_id, principal)
        model = self.promotions.model
        return schemas.SchedulingOptions(
            frequencies=[
                schemas.FrequencyOption(value=value, label=label, description=description)
                for value, label, description in FREQUENCY_OPTIONS
            ],
            platforms=[
                schemas.PlatformOption(
                    value=platform,
                    label=label,
                    optimal_times=[
                        window.strip()
                        for window in model.optimal_posting_time(platform).split(",")
                    ],
                )
                for platform, label in PLATFORM_LABELS.items()
            ],
            default_settings={
                "budget": model.estimate_budget(content, "all"),
                "target_metrics": {
                    "target_views": content.min_views_threshold or 1000000,
                    "target_rpm": content.target_rpm or 900000,
                },
            },
        )

    def estimate_rates(
        self, content_id: int, principal: schemas.Principal, platform: str
    ) -> schemas.RateEstimate:
        content = self.get_content(content_id, principal)
        historical = self.promotions.load_historical_data(content_id)
        model = self.promotions.model
        return schemas.RateEstimate(
            platform=platform,
            estimated_rpm=model.estimate_rpm(content.type, platform, historical.value),
            estimated_budget=model.estimate_budget(content, platform, historical.value),
            optimal_posting_time=model.optimal_posting_time(platform),
        )

    def estimate_roi(
        self,
        content_id: int,
        principal: schemas.Principal,
        platform: str,
        budget: float,
        risk_profile: str = "moderate",
    ) -> schemas.ROIEstimate:
        content = self.get_content(content_id, principal)
        historical = self.promotions.load_historical_data(content_id)
        return self.roi.estimate_roi(
            content, platform, budget, risk_profile, historical.value
        )
