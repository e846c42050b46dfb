import pytest

from backend.app import schemas
from backend.app.errors import ConfigurationError, ValidationError
from backend.app.services.roi import ROIEstimator


def _content(**overrides):
    fields = {"id": 1, "user_id": "creator-1", "title": "Short", "type": "video"}
    fields.update(overrides)
    return schemas.Content(**fields)


@pytest.fixture
def estimator(model):
    return ROIEstimator(model)


def test_roi_ratio():
    assert ROIEstimator.roi(2000, 1000) == 1.0
    assert ROIEstimator.roi(500, 1000) == -0.5


@pytest.mark.parametrize("budget", [0, -10])
def test_roi_rejects_non_positive_budget(budget):
    with pytest.raises(ConfigurationError) as exc_info:
        ROIEstimator.roi(1000, budget)
    assert exc_info.value.reason == "budget_must_be_positive"


def test_expected_views_multipliers(estimator):
    assert estimator.expected_views(_content(), "youtube") == 2250000
    long_title = _content(title="A title that is longer than twenty characters")
    assert estimator.expected_views(long_title, "youtube") == 2700000


def test_expected_views_scales_with_history(estimator):
    historical = schemas.HistoricalData(views=2000000)
    assert estimator.expected_views(_content(), "youtube", historical) == 4500000
    historical = schemas.HistoricalData(views=10)
    assert estimator.expected_views(_content(), "youtube", historical) == 1125000


def test_estimate_roi_moderate(estimator):
    estimate = estimator.estimate_roi(_content(), "youtube", 1000)
    assert estimate.expected_views == 2250000
    assert estimate.expected_revenue == pytest.approx(2025000)
    assert estimate.roi == pytest.approx(2024.0)
    assert estimate.roi_percentage == "202400.0"
    assert estimate.risk_profile == "moderate"


def test_estimate_roi_risk_profiles_scale_revenue(estimator):
    conservative = estimator.estimate_roi(_content(), "youtube", 1000, "conservative")
    aggressive = estimator.estimate_roi(_content(), "youtube", 1000, "aggressive")
    assert conservative.expected_revenue == pytest.approx(2025000 * 0.7)
    assert aggressive.expected_revenue == pytest.approx(2025000 * 1.3)


def test_estimate_roi_rejects_unknown_profile(estimator):
    with pytest.raises(ValidationError) as exc_info:
        estimator.estimate_roi(_content(), "youtube", 1000, "reckless")
    assert exc_info.value.reason == "unknown_risk_profile"


def test_estimate_roi_rejects_zero_budget(estimator):
    with pytest.raises(ConfigurationError):
        estimator.estimate_roi(_content(), "youtube", 0)


def test_confidence_bounds():
    rich = schemas.HistoricalData(views=5000, conversion_rate=0.05, engagement_rate=0.1)
    assert ROIEstimator.confidence("linkedin", rich) == pytest.approx(0.85)
    assert ROIEstimator.confidence("twitter") == 0.5
    assert ROIEstimator.confidence("youtube") == pytest.approx(0.56)


@pytest.mark.parametrize(
    "roi,confidence,expected",
    [
        (2.5, 0.9, "very_low"),
        (1.8, 0.75, "low"),
        (1.2, 0.65, "moderate"),
        (0.6, 0.55, "high"),
        (0.1, 0.9, "very_high"),
    ],
)
def test_risk_level(roi, confidence, expected):
    assert ROIEstimator.risk_level(roi, confidence) == expected


def test_priority_score():
    assert ROIEstimator.priority_score(1.0, 0.5) == pytest.approx(85.0)


def test_optimize_promotion_plan_sorted_by_priority(estimator):
    plans = estimator.optimize_promotion_plan(
        _content(), ["youtube", "tiktok", "instagram", "linkedin"]
    )
    assert sorted(plan.platform for plan in plans) == [
        "instagram",
        "linkedin",
        "tiktok",
        "youtube",
    ]
    priorities = [plan.priority for plan in plans]
    assert priorities == sorted(priorities, reverse=True)
    youtube = next(plan for plan in plans if plan.platform == "youtube")
    assert youtube.recommended_budget == 855
    assert youtube.optimal_posting_time == "15:00-17:00"
