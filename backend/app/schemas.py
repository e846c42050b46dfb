from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, Field, model_validator


def _to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


UtcDatetime = Annotated[datetime, AfterValidator(_to_naive_utc)]

Platform = Literal[
    "youtube", "tiktok", "instagram", "twitter", "facebook", "linkedin", "pinterest"
]
SchedulePlatform = Literal[
    "youtube",
    "tiktok",
    "instagram",
    "twitter",
    "facebook",
    "linkedin",
    "pinterest",
    "all",
]
ContentType = Literal["video", "audio", "image", "article", "story", "reel", "short"]
ContentStatus = Literal[
    "pending", "approved", "declined", "published", "paused", "archived"
]
OwnerStatus = Literal["published", "paused", "archived"]
ScheduleType = Literal["specific", "recurring", "continuous"]
Frequency = Literal[
    "once", "hourly", "daily", "weekly", "biweekly", "monthly", "quarterly"
]
ScheduleStatus = Literal["scheduled", "completed"]
RiskProfile = Literal["conservative", "moderate", "aggressive"]
RiskLevel = Literal["very_low", "low", "moderate", "high", "very_high"]
TestStatus = Literal["active", "completed"]

DEFAULT_PLATFORMS = ["youtube", "tiktok", "instagram"]


class HistoricalData(BaseModel):
    views: Optional[int] = None
    engagement_rate: Optional[float] = None
    conversion_rate: Optional[float] = None
    content_quality_score: Optional[float] = None
    viral_potential: Optional[float] = None
    revenue: Optional[float] = None


class ContentCreate(BaseModel):
    title: str = Field(..., min_length=1)
    type: ContentType
    url: Optional[str] = None
    description: str = ""
    article_text: Optional[str] = None
    target_platforms: List[Platform] = Field(default_factory=lambda: list(DEFAULT_PLATFORMS))
    scheduled_promotion_time: Optional[UtcDatetime] = None
    promotion_frequency: Frequency = "once"
    target_rpm: float = Field(900000, gt=0)
    min_views_threshold: int = Field(2000000, ge=0)
    max_budget: float = Field(1000, gt=0)
    file_metadata: Optional[Dict[str, Any]] = None


class Content(BaseModel):
    id: int
    user_id: str
    title: str
    type: ContentType
    url: Optional[str] = None
    description: str = ""
    target_platforms: List[str] = Field(default_factory=lambda: list(DEFAULT_PLATFORMS))
    status: ContentStatus = "pending"
    views: int = 0
    clicks: int = 0
    revenue: float = 0.0
    target_rpm: Optional[float] = 900000
    min_views_threshold: Optional[int] = 2000000
    max_budget: Optional[float] = 1000
    scheduled_promotion_time: Optional[datetime] = None
    promotion_frequency: Frequency = "once"
    promotion_started_at: Optional[datetime] = None
    optimized_promotion_settings: Optional[Dict[str, Any]] = None
    file_metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ContentUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    url: Optional[str] = None
    description: Optional[str] = None
    target_platforms: Optional[List[Platform]] = None
    scheduled_promotion_time: Optional[UtcDatetime] = None
    promotion_frequency: Optional[Frequency] = None
    target_rpm: Optional[float] = Field(None, gt=0)
    min_views_threshold: Optional[int] = Field(None, ge=0)
    max_budget: Optional[float] = Field(None, gt=0)


class ContentStatusUpdate(BaseModel):
    status: OwnerStatus
    keep_promotion_time: bool = False


class BulkStatusUpdate(BaseModel):
    content_ids: List[int] = Field(..., min_length=1)
    status: OwnerStatus


class PerformanceUpdate(BaseModel):
    views: int = Field(0, ge=0)
    clicks: int = Field(0, ge=0)
    revenue: float = Field(0.0, ge=0)
    engagement_rate: Optional[float] = Field(None, ge=0)
    conversion_rate: Optional[float] = Field(None, ge=0)
    content_quality_score: Optional[float] = None
    viral_potential: Optional[float] = None


class AnalyticsSnapshot(HistoricalData):
    id: int
    content_id: int
    metrics_updated_at: datetime


class RecurrencePattern(BaseModel):
    type: Literal["custom"] = "custom"
    unit: Literal["days", "weeks", "months"]
    interval: int = Field(..., ge=1)


class TargetMetrics(BaseModel):
    target_views: Optional[int] = Field(None, ge=0)
    target_rpm: Optional[float] = Field(None, ge=0)


class PromotionScheduleCreate(BaseModel):
    platform: SchedulePlatform = "all"
    schedule_type: ScheduleType = "specific"
    start_time: UtcDatetime
    end_time: Optional[UtcDatetime] = None
    frequency: Frequency = "once"
    is_active: bool = True
    budget: Optional[float] = Field(None, ge=0)
    target_metrics: TargetMetrics = Field(default_factory=TargetMetrics)
    platform_specific_settings: Optional[Dict[str, Any]] = None
    recurrence_pattern: Optional[RecurrencePattern] = None
    max_occurrences: Optional[int] = Field(None, ge=1)
    timezone: str = "UTC"

    @model_validator(mode="after")
    def check_window(self) -> "PromotionScheduleCreate":
        if self.end_time is not None and self.end_time <= self.start_time:
            raise ValueError("end_time_before_start_time")
        return self


class PromotionScheduleUpdate(BaseModel):
    platform: Optional[SchedulePlatform] = None
    schedule_type: Optional[ScheduleType] = None
    start_time: Optional[UtcDatetime] = None
    end_time: Optional[UtcDatetime] = None
    frequency: Optional[Frequency] = None
    is_active: Optional[bool] = None
    budget: Optional[float] = Field(None, ge=0)
    target_metrics: Optional[TargetMetrics] = None
    platform_specific_settings: Optional[Dict[str, Any]] = None
    recurrence_pattern: Optional[RecurrencePattern] = None
    max_occurrences: Optional[int] = Field(None, ge=1)
    timezone: Optional[str] = None


class PromotionSchedule(BaseModel):
    id: int
    content_id: int
    platform: str
    schedule_type: ScheduleType
    start_time: datetime
    end_time: Optional[datetime] = None
    frequency: Frequency
    is_active: bool
    status: ScheduleStatus = "scheduled"
    budget: float
    target_metrics: Dict[str, Any] = Field(default_factory=dict)
    platform_specific_settings: Dict[str, Any] = Field(default_factory=dict)
    recurrence_pattern: Optional[RecurrencePattern] = None
    max_occurrences: Optional[int] = None
    parent_schedule_id: Optional[int] = None
    timezone: str = "UTC"
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ActivePromotion(PromotionSchedule):
    content: Content


class ActivePromotionFilters(BaseModel):
    platform: Optional[SchedulePlatform] = None
    content_type: Optional[ContentType] = None
    min_budget: Optional[float] = None
    max_budget: Optional[float] = None


class Recommendation(BaseModel):
    type: Literal[
        "rpm_optimization",
        "budget_reallocation",
        "content_optimization",
        "platform_expansion",
        "timing_optimization",
    ]
    message: str
    impact: Literal["high", "medium", "low"]
    action: str
    platform: Optional[str] = None
    current_rpm: Optional[float] = None
    recommended_rpm: Optional[int] = None
    estimated_impact: Optional[str] = None
    platform_breakdown: Optional[Dict[str, int]] = None
    potential_reach: Optional[str] = None
    optimal_times: Optional[Dict[str, str]] = None


class ROIEstimate(BaseModel):
    expected_views: int
    expected_revenue: float
    roi: float
    roi_percentage: str
    confidence: float
    risk_profile: RiskProfile
    risk_level: RiskLevel


class PlatformPlan(BaseModel):
    platform: str
    recommended_budget: int
    expected_views: int
    expected_revenue: float
    expected_roi: str
    confidence_score: float
    optimal_posting_time: str
    priority: float
    risk_level: RiskLevel


class PromotionPerformance(BaseModel):
    views: int = 0
    engagement_rate: Optional[float] = None
    conversion_rate: Optional[float] = None
    revenue: float = 0.0
    cost_per_view: Optional[float] = None
    roi: Optional[float] = None
    data_available: bool = False


class PromotionAnalytics(BaseModel):
    schedule: PromotionSchedule
    content: Optional[Content] = None
    analytics: PromotionPerformance
    recommendations: List[Recommendation] = Field(default_factory=list)


class BulkScheduleRequest(BaseModel):
    content_ids: List[int] = Field(..., min_length=1)
    schedule_template: Dict[str, Any]


class BulkScheduleResult(BaseModel):
    content_id: int
    success: bool
    schedule: Optional[PromotionSchedule] = None
    error: Optional[str] = None


class OptimizationReport(BaseModel):
    recommendations: List[Recommendation]
    platform_optimization: List[PlatformPlan]
    current_metrics: Dict[str, Optional[float]]
    historical_data_available: bool = True


class UploadResult(BaseModel):
    message: str
    content: Content
    promotion_schedule: Optional[PromotionSchedule] = None
    optimization_recommendations: List[Recommendation] = Field(default_factory=list)
    optimal_rpm: float
    creator_payout: float


class FrequencyOption(BaseModel):
    value: Frequency
    label: str
    description: str


class PlatformOption(BaseModel):
    value: Platform
    label: str
    optimal_times: List[str]


class SchedulingOptions(BaseModel):
    frequencies: List[FrequencyOption]
    platforms: List[PlatformOption]
    default_settings: Dict[str, Any]


class VariantMetrics(BaseModel):
    views: float = 0
    engagement: float = 0
    conversions: float = 0
    revenue: float = 0


class VariantCreate(BaseModel):
    id: str = Field(..., min_length=1)
    promotion_settings: Dict[str, Any] = Field(default_factory=dict)


class Variant(VariantCreate):
    metrics: VariantMetrics = Field(default_factory=VariantMetrics)


class ABTestCreate(BaseModel):
    content_id: int
    variants: List[VariantCreate]


class ABTest(BaseModel):
    id: int
    content_id: int
    variants: List[Variant]
    start_date: datetime
    status: TestStatus = "active"
    winner: Optional[str] = None
    completed_date: Optional[datetime] = None


class VariantMetricsUpdate(BaseModel):
    views: Optional[float] = Field(None, ge=0)
    engagement: Optional[float] = Field(None, ge=0)
    conversions: Optional[float] = Field(None, ge=0)
    revenue: Optional[float] = Field(None, ge=0)


class VariantScore(BaseModel):
    variant_id: str
    score: float


class TestRecommendation(BaseModel):
    type: str
    message: str


class TestInsights(BaseModel):
    confidence_level: int
    improvements: Dict[str, Optional[float]]
    recommendations: List[TestRecommendation] = Field(default_factory=list)


class ABTestResults(ABTest):
    insights: TestInsights


class Principal(BaseModel):
    user_id: str
    roles: List[str] = Field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles


class RateEstimate(BaseModel):
    platform: str
    estimated_rpm: int
    estimated_budget: int
    optimal_posting_time: str


class ProcessedPromotions(BaseModel):
    message: str
    processed_count: int


class PromotionStarted(BaseModel):
    message: str
    promotion: PromotionSchedule


class PromotionMetrics(BaseModel):
    active_promotions: int
    completed_promotions: int
    total_promotions: int
    total_revenue_from_promotions: float
    total_views_from_promotions: int
    avg_roi: float
    promotion_success_rate: int


class TopPromotion(BaseModel):
    promotion_id: int
    content_title: str
    platform: str
    budget: float
    revenue: float
    views: int
    roi: float


class PromotionPerformanceReport(BaseModel):
    promotion_metrics: PromotionMetrics
    top_performing_promotions: List[TopPromotion] = Field(default_factory=list)
