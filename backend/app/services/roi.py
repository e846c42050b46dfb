from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from .. import schemas
from ..errors import ConfigurationError, ValidationError
from .rpm_model import RPMBudgetModel, clamp, round_half_up

BASE_VIEWS = 1000000
REFERENCE_HISTORICAL_VIEWS = 500000
DEFAULT_TARGET_RPM = 900000

VIEW_PLATFORM_MULTIPLIERS: Dict[str, float] = {
    "youtube": 1.5,
    "tiktok": 1.8,
    "instagram": 1.3,
    "twitter": 1.0,
    "facebook": 1.4,
    "linkedin": 1.2,
    "pinterest": 1.6,
}

VIEW_TYPE_MULTIPLIERS: Dict[str, float] = {
    "video": 1.5,
    "image": 1.0,
    "article": 0.7,
    "story": 1.2,
    "reel": 1.8,
    "short": 2.0,
}

RISK_MULTIPLIERS: Dict[str, float] = {
    "conservative": 0.7,
    "moderate": 1.0,
    "aggressive": 1.3,
}

PLATFORM_CONFIDENCE: Dict[str, float] = {
    "youtube": 0.8,
    "tiktok": 0.7,
    "instagram": 0.75,
    "facebook": 0.8,
    "twitter": 0.65,
    "linkedin": 0.85,
    "pinterest": 0.7,
}
DEFAULT_PLATFORM_CONFIDENCE = 0.7


class ROIEstimator:
    """Expected reach, return and risk for a budget spent on one platform."""

    def __init__(self, model: RPMBudgetModel) -> None:
        self.model = model

    def expected_views(
        self,
        content: schemas.Content,
        platform: str,
        historical_data: Optional[schemas.HistoricalData] = None,
    ) -> int:
        views = float(BASE_VIEWS)
        views *= VIEW_PLATFORM_MULTIPLIERS.get(platform, 1.0)
        views *= VIEW_TYPE_MULTIPLIERS.get(content.type, 1.0)
        if content.title and len(content.title) > 20:
            views *= 1.2
        if content.description and len(content.description) > 100:
            views *= 1.1
        if historical_data and historical_data.views:
            views *= clamp(historical_data.views / REFERENCE_HISTORICAL_VIEWS, 0.5, 2.0)
        return round_half_up(views)

    def estimate_roi(
        self,
        content: schemas.Content,
        platform: str,
        budget: float,
        risk_profile: str = "moderate",
        historical_data: Optional[schemas.HistoricalData] = None,
    ) -> schemas.ROIEstimate:
        if risk_profile not in RISK_MULTIPLIERS:
            raise ValidationError("unknown_risk_profile")
        expected_views = self.expected_views(content, platform, historical_data)
        target_rpm = content.target_rpm or DEFAULT_TARGET_RPM
        expected_revenue = expected_views / 1e6 * target_rpm * RISK_MULTIPLIERS[risk_profile]
        roi = self.roi(expected_revenue, budget)
        confidence = self.confidence(platform, historical_data)
        return schemas.ROIEstimate(
            expected_views=expected_views,
            expected_revenue=expected_revenue,
            roi=roi,
            roi_percentage=f"{roi * 100:.1f}",
            confidence=confidence,
            risk_profile=risk_profile,
            risk_level=self.risk_level(roi, confidence),
        )

    @staticmethod
    def roi(revenue: float, budget: float) -> float:
        if budget <= 0:
            raise ConfigurationError("budget_must_be_positive")
        return (revenue - budget) / budget

    @staticmethod
    def confidence(
        platform: str, historical_data: Optional[schemas.HistoricalData] = None
    ) -> float:
        score = 0.7
        if historical_data:
            if historical_data.views and historical_data.views > 1000:
                score += 0.1
            if historical_data.conversion_rate and historical_data.conversion_rate > 0.01:
                score += 0.1
            if historical_data.engagement_rate and historical_data.engagement_rate > 0.08:
                score += 0.1
        score *= PLATFORM_CONFIDENCE.get(platform, DEFAULT_PLATFORM_CONFIDENCE)
        return clamp(score, 0.5, 0.95)

    @staticmethod
    def risk_level(roi: float, confidence: float) -> str:
        if roi > 2.0 and confidence > 0.8:
            return "very_low"
        if roi > 1.5 and confidence > 0.7:
            return "low"
        if roi > 1.0 and confidence > 0.6:
            return "moderate"
        if roi > 0.5 and confidence > 0.5:
            return "high"
        return "very_high"

    @staticmethod
    def priority_score(roi: float, confidence: float) -> float:
        return (roi * 0.7 + confidence * 0.3) * 100

    def optimize_promotion_plan(
        self,
        content: schemas.Content,
        platforms: Sequence[str],
        historical_data: Optional[schemas.HistoricalData] = None,
    ) -> List[schemas.PlatformPlan]:
        """Builds one plan entry per platform, highest priority first."""
        plans: List[schemas.PlatformPlan] = []
        for platform in platforms:
            budget = self.model.estimate_budget(content, platform, historical_data)
            estimate = self.estimate_roi(
                content, platform, budget, historical_data=historical_data
            )
            plans.append(
                schemas.PlatformPlan(
                    platform=platform,
                    recommended_budget=budget,
                    expected_views=estimate.expected_views,
                    expected_revenue=estimate.expected_revenue,
                    expected_roi=estimate.roi_percentage,
                    confidence_score=estimate.confidence,
                    optimal_posting_time=self.model.optimal_posting_time(platform),
                    priority=self.priority_score(estimate.roi, estimate.confidence),
                    risk_level=estimate.risk_level,
                )
            )
        plans.sort(key=lambda plan: plan.priority, reverse=True)
        return plans
