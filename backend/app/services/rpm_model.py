from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Optional, Sequence

from .. import schemas
from ..clock import Clock, SystemClock

DEFAULT_BASE_RPM = 600000
DEFAULT_BASE_BUDGET = 200
REFERENCE_RPM = 900000
REFERENCE_VIEWS = 1000000
DEFAULT_POSTING_TIME = "12:00-14:00"

BASE_RPM: Dict[str, int] = {
    "youtube": 800000,
    "tiktok": 600000,
    "instagram": 700000,
    "twitter": 500000,
    "facebook": 650000,
    "linkedin": 750000,
    "pinterest": 550000,
}

RPM_TYPE_MULTIPLIERS: Dict[str, float] = {
    "video": 1.2,
    "image": 1.0,
    "article": 0.8,
    "story": 1.1,
    "reel": 1.3,
    "short": 1.4,
}

# (pivot engagement rate, slope) per platform: 1 + (rate - pivot) * slope
ENGAGEMENT_CURVES: Dict[str, tuple[float, float]] = {
    "youtube": (0.1, 0.8),
    "tiktok": (0.15, 1.2),
    "instagram": (0.08, 0.9),
    "twitter": (0.05, 0.6),
    "facebook": (0.06, 0.7),
    "linkedin": (0.04, 0.5),
    "pinterest": (0.12, 1.0),
}
DEFAULT_ENGAGEMENT_CURVE = (0.1, 0.5)

SEASONAL_PATTERNS: Dict[str, Sequence[float]] = {
    "youtube": (1.1, 1.0, 1.0, 0.9, 0.9, 0.8, 0.8, 0.9, 1.0, 1.1, 1.2, 1.2),
    "tiktok": (1.0, 0.9, 1.0, 1.1, 1.2, 1.3, 1.2, 1.1, 1.0, 0.9, 0.8, 0.9),
    "instagram": (1.0, 0.9, 1.0, 1.1, 1.1, 1.0, 1.0, 1.1, 1.2, 1.1, 1.0, 1.2),
    "facebook": (1.1, 1.0, 0.9, 0.8, 0.9, 1.0, 1.1, 1.2, 1.1, 1.0, 1.1, 1.2),
    "twitter": (1.0, 1.0, 1.1, 1.1, 1.0, 0.9, 0.8, 0.9, 1.0, 1.1, 1.2, 1.1),
    "linkedin": (0.9, 1.0, 1.1, 1.2, 1.1, 1.0, 0.8, 0.9, 1.1, 1.2, 1.1, 0.9),
    "pinterest": (1.2, 1.1, 1.0, 0.9, 0.8, 0.9, 1.0, 1.1, 1.2, 1.3, 1.2, 1.3),
}

BASE_BUDGET: Dict[str, int] = {
    "youtube": 300,
    "tiktok": 200,
    "instagram": 250,
    "twitter": 150,
    "facebook": 280,
    "linkedin": 320,
    "pinterest": 180,
}

TIME_OF_DAY_PATTERNS: Dict[str, Sequence[float]] = {
    "youtube": (
        0.8, 0.7, 0.6, 0.5, 0.6, 0.8, 1.2, 1.4, 1.6, 1.8, 1.9, 2.0,
        1.8, 1.6, 1.4, 1.2, 1.4, 1.6, 1.8, 2.0, 1.8, 1.6, 1.4, 1.2,
    ),
    "tiktok": (
        1.2, 1.1, 1.0, 0.9, 0.8, 0.9, 1.1, 1.3, 1.5, 1.6, 1.7, 1.8,
        1.6, 1.4, 1.2, 1.1, 1.2, 1.4, 1.6, 1.8, 2.0, 1.8, 1.6, 1.4,
    ),
    "instagram": (
        0.9, 0.8, 0.7, 0.6, 0.7, 0.9, 1.2, 1.4, 1.6, 1.7, 1.8, 1.9,
        1.7, 1.5, 1.3, 1.2, 1.3, 1.5, 1.7, 1.9, 1.8, 1.6, 1.4, 1.1,
    ),
    "facebook": (
        1.0, 0.9, 0.8, 0.7, 0.8, 1.0, 1.3, 1.5, 1.7, 1.8, 1.7, 1.6,
        1.4, 1.2, 1.1, 1.0, 1.1, 1.3, 1.5, 1.7, 1.6, 1.4, 1.2, 1.0,
    ),
}

OPTIMAL_POSTING_TIMES: Dict[str, str] = {
    "youtube": "15:00-17:00",
    "tiktok": "19:00-21:00",
    "instagram": "11:00-13:00, 19:00-21:00",
    "facebook": "09:00-11:00, 13:00-15:00",
    "twitter": "08:00-10:00, 16:00-18:00",
    "linkedin": "08:00-10:00, 17:00-19:00",
    "pinterest": "14:00-16:00, 20:00-22:00",
}

REACH_POTENTIALS: Dict[str, str] = {
    "youtube": "2.5B+ monthly users",
    "tiktok": "1.2B+ monthly users",
    "instagram": "2.0B+ monthly users",
    "facebook": "3.0B+ monthly users",
    "twitter": "500M+ monthly users",
    "linkedin": "900M+ monthly users",
    "pinterest": "450M+ monthly users",
}


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def round_half_up(value: float) -> int:
    """Rounds .5 away from zero instead of Python's banker's rounding."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def round_half_up_to(value: float, places: int) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


class RPMBudgetModel:
    """Revenue-per-million and budget heuristics for a piece of content.

    Month and hour come from the injected clock so the seasonal and
    time-of-day factors are reproducible under a fixed clock.
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self.clock = clock or SystemClock()

    def estimate_rpm(
        self,
        content_type: str,
        platform: str,
        historical_data: Optional[schemas.HistoricalData] = None,
    ) -> int:
        historical = historical_data or schemas.HistoricalData()
        rpm = float(BASE_RPM.get(platform, DEFAULT_BASE_RPM))
        rpm *= RPM_TYPE_MULTIPLIERS.get(content_type, 1.0)
        if historical.engagement_rate:
            rpm *= clamp(
                self.engagement_multiplier(historical.engagement_rate, platform), 0.7, 1.8
            )
        rpm *= self.seasonal_multiplier(self.clock.now().month - 1, platform)
        if historical.content_quality_score:
            rpm *= clamp(historical.content_quality_score, 0.8, 1.3)
        if historical.viral_potential:
            rpm *= clamp(historical.viral_potential, 0.9, 1.5)
        return round_half_up(rpm)

    def estimate_budget(
        self,
        content: schemas.Content,
        platform: str,
        historical_data: Optional[schemas.HistoricalData] = None,
    ) -> int:
        historical = historical_data or schemas.HistoricalData()
        budget = float(BASE_BUDGET.get(platform, DEFAULT_BASE_BUDGET))
        if content.target_rpm:
            budget *= clamp(content.target_rpm / REFERENCE_RPM, 0.5, 2.0)
        if content.min_views_threshold:
            budget *= clamp(content.min_views_threshold / REFERENCE_VIEWS, 0.8, 1.5)
        if historical.conversion_rate:
            conversion_multiplier = 1 + (historical.conversion_rate - 0.02) * 10
            budget *= clamp(conversion_multiplier, 0.7, 1.5)
        budget *= self.time_of_day_multiplier(self.clock.now().hour, platform)
        return max(0, round_half_up(budget))

    @staticmethod
    def engagement_multiplier(engagement_rate: float, platform: str) -> float:
        pivot, slope = ENGAGEMENT_CURVES.get(platform, DEFAULT_ENGAGEMENT_CURVE)
        return 1 + (engagement_rate - pivot) * slope

    @staticmethod
    def seasonal_multiplier(month_index: int, platform: str) -> float:
        return _lookup(SEASONAL_PATTERNS, platform, month_index)

    @staticmethod
    def time_of_day_multiplier(hour: int, platform: str) -> float:
        return _lookup(TIME_OF_DAY_PATTERNS, platform, hour)

    @staticmethod
    def optimal_posting_time(platform: str) -> str:
        return OPTIMAL_POSTING_TIMES.get(platform, DEFAULT_POSTING_TIME)

    def optimal_posting_times(self, platforms: Sequence[str]) -> Dict[str, str]:
        return {platform: self.optimal_posting_time(platform) for platform in platforms}

    @staticmethod
    def reach_potential(platform: str) -> str:
        return REACH_POTENTIALS.get(platform, "Unknown reach")


def _lookup(table: Dict[str, Sequence[float]], platform: str, index: int) -> float:
    pattern = table.get(platform)
    if not pattern or not 0 <= index < len(pattern):
        return 1.0
    return pattern[index]

