from __future__ import annotations

from typing import Dict, List, Optional

from .. import schemas
from .rpm_model import RPMBudgetModel, round_half_up

DEFAULT_CURRENT_RPM = 900000
RPM_UPLIFT_THRESHOLD = 1.15
BUDGET_OVERSHOOT_THRESHOLD = 1.2
MIN_TITLE_LENGTH = 20
MIN_DESCRIPTION_LENGTH = 50
CORE_PLATFORMS = ("youtube", "tiktok", "instagram")


class RecommendationGenerator:
    def __init__(self, model: RPMBudgetModel) -> None:
        self.model = model

    def generate_recommendations(
        self,
        content: schemas.Content,
        analytics_data: Optional[schemas.HistoricalData] = None,
    ) -> List[schemas.Recommendation]:
        platforms = list(content.target_platforms or schemas.DEFAULT_PLATFORMS)
        recommendations: List[schemas.Recommendation] = []
        recommendations.extend(self._rpm_recommendations(content, platforms, analytics_data))
        budget = self._budget_recommendation(content, platforms, analytics_data)
        if budget:
            recommendations.append(budget)
        recommendations.extend(self._content_recommendations(content))
        for platform in CORE_PLATFORMS:
            if platform in platforms:
                continue
            recommendations.append(
                schemas.Recommendation(
                    type="platform_expansion",
                    platform=platform,
                    message=f"Add {platform} to target platforms for additional reach",
                    impact="medium",
                    action="add_platform",
                    potential_reach=self.model.reach_potential(platform),
                )
            )
        recommendations.append(
            schemas.Recommendation(
                type="timing_optimization",
                message="Optimize posting schedule based on platform peak hours",
                impact="medium",
                action="optimize_schedule",
                optimal_times=self.model.optimal_posting_times(platforms),
            )
        )
        return recommendations

    def _rpm_recommendations(
        self,
        content: schemas.Content,
        platforms: List[str],
        analytics_data: Optional[schemas.HistoricalData],
    ) -> List[schemas.Recommendation]:
        current_rpm = content.target_rpm or DEFAULT_CURRENT_RPM
        items = []
        for platform in platforms:
            optimal_rpm = self.model.estimate_rpm(content.type, platform, analytics_data)
            if optimal_rpm <= current_rpm * RPM_UPLIFT_THRESHOLD:
                continue
            delta = optimal_rpm - current_rpm
            items.append(
                schemas.Recommendation(
                    type="rpm_optimization",
                    platform=platform,
                    message=(
                        f"Increase {platform} target RPM from {current_rpm:,.0f} "
                        f"to {optimal_rpm:,}"
                    ),
                    impact="high",
                    action="update_target_rpm",
                    current_rpm=current_rpm,
                    recommended_rpm=optimal_rpm,
                    estimated_impact=(
                        f"+{round_half_up(delta / 1000)}k revenue per million views"
                    ),
                )
            )
        return items

    def _budget_recommendation(
        self,
        content: schemas.Content,
        platforms: List[str],
        analytics_data: Optional[schemas.HistoricalData],
    ) -> Optional[schemas.Recommendation]:
        if not content.max_budget:
            return None
        breakdown: Dict[str, int] = {
            platform: self.model.estimate_budget(content, platform, analytics_data)
            for platform in platforms
        }
        total = sum(breakdown.values())
        if total <= content.max_budget * BUDGET_OVERSHOOT_THRESHOLD:
            return None
        return schemas.Recommendation(
            type="budget_reallocation",
            message=(
                "Reallocate budget across platforms for better ROI. "
                f"Current: ${content.max_budget:g}, Recommended: ${total}"
            ),
            impact="high",
            action="reallocate_budget",
            platform_breakdown=breakdown,
        )

    @staticmethod
    def _content_recommendations(content: schemas.Content) -> List[schemas.Recommendation]:
        items = []
        if content.title and len(content.title) < MIN_TITLE_LENGTH:
            items.append(
                schemas.Recommendation(
                    type="content_optimization",
                    message=(
                        "Consider making title more descriptive "
                        "(20+ characters for better engagement)"
                    ),
                    impact="medium",
                    action="improve_title",
                )
            )
        if not content.description or len(content.description) < MIN_DESCRIPTION_LENGTH:
            items.append(
                schemas.Recommendation(
                    type="content_optimization",
                    message=(
                        "Add detailed description "
                        "(50+ characters for better SEO and engagement)"
                    ),
                    impact="medium",
                    action="add_description",
                )
            )
        return items
