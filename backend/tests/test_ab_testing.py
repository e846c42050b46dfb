from datetime import timedelta

import pytest

from backend.app import schemas
from backend.app.errors import NotFound, ValidationError
from backend.app.services.ab_testing import ABTestingService

VARIANTS = [
    {"id": "A", "promotion_settings": {"platform": "youtube", "budget": 300}},
    {
        "id": "B",
        "promotion_settings": {
            "platform": "tiktok",
            "budget": 500,
            "target_audience": "gen-z",
        },
    },
]


def _test_record(clock, days, views_a, views_b, **fields):
    return schemas.ABTest(
        id=1,
        content_id=1,
        start_date=clock.now() - timedelta(days=days),
        variants=[
            schemas.Variant(id="A", metrics=schemas.VariantMetrics(views=views_a)),
            schemas.Variant(id="B", metrics=schemas.VariantMetrics(views=views_b)),
        ],
        **fields,
    )


@pytest.fixture
def ab_test(ab_testing, make_content):
    content = make_content()
    return ab_testing.create_test(content.id, VARIANTS)


def test_create_test_schedules_each_variant(ab_testing, ab_test, store, clock):
    assert ab_test.status == "active"
    assert ab_test.start_date == clock.now()
    assert [variant.id for variant in ab_test.variants] == ["A", "B"]
    assert all(variant.metrics.views == 0 for variant in ab_test.variants)

    schedules = store.list_content_schedules(ab_test.content_id)
    assert len(schedules) == 2
    tags = {item.platform_specific_settings["variant_id"] for item in schedules}
    assert tags == {"A", "B"}
    assert {item.platform_specific_settings["ab_test_id"] for item in schedules} == {
        ab_test.id
    }
    assert sorted(item.budget for item in schedules) == [300, 500]


def test_create_test_requires_two_variants(ab_testing, make_content, store):
    content = make_content()
    with pytest.raises(ValidationError) as exc_info:
        ab_testing.create_test(content.id, VARIANTS[:1])
    assert exc_info.value.reason == "at_least_two_variants_required"
    assert store.list_content_schedules(content.id) == []


def test_create_test_rejects_duplicate_ids(ab_testing, make_content):
    content = make_content()
    with pytest.raises(ValidationError) as exc_info:
        ab_testing.create_test(content.id, [VARIANTS[0], VARIANTS[0]])
    assert exc_info.value.reason == "duplicate_variant_id"


def test_create_test_rejects_invalid_variant_settings(ab_testing, make_content, store):
    content = make_content()
    bad = {"id": "C", "promotion_settings": {"platform": "myspace"}}
    with pytest.raises(ValidationError) as exc_info:
        ab_testing.create_test(content.id, [VARIANTS[0], bad])
    assert exc_info.value.reason == "invalid_platform"
    assert store.list_content_schedules(content.id) == []


def test_create_test_missing_content(ab_testing):
    with pytest.raises(NotFound):
        ab_testing.create_test(999, VARIANTS)


@pytest.mark.parametrize(
    "days,views_a,views_b,expected",
    [
        (3, 5000, 5000, False),
        (10, 400, 500, False),
        (8, 700, 800, True),
        (1, 2500, 2500, False),
        (7, 500, 500, True),
    ],
)
def test_should_determine_winner(ab_testing, clock, days, views_a, views_b, expected):
    record = _test_record(clock, days, views_a, views_b)
    assert ab_testing.should_determine_winner(record) is expected


def test_calculate_variant_score():
    metrics = schemas.VariantMetrics(views=100, engagement=50, conversions=10, revenue=200)
    assert ABTestingService.calculate_variant_score(metrics) == pytest.approx(87.0)


def test_update_metrics_merges_fields(ab_testing, ab_test):
    ab_testing.update_test_metrics(ab_test.id, "A", {"views": 120, "revenue": 40})
    updated = ab_testing.update_test_metrics(ab_test.id, "A", {"engagement": 7})

    metrics = updated.variants[0].metrics
    assert (metrics.views, metrics.engagement, metrics.revenue) == (120, 7, 40)
    assert updated.variants[1].metrics.views == 0
    assert updated.status == "active"


def test_update_metrics_unknown_variant_or_test(ab_testing, ab_test):
    with pytest.raises(NotFound) as exc_info:
        ab_testing.update_test_metrics(ab_test.id, "Z", {"views": 1})
    assert exc_info.value.reason == "variant_not_found"
    with pytest.raises(NotFound) as exc_info:
        ab_testing.update_test_metrics(999, "A", {"views": 1})
    assert exc_info.value.reason == "ab_test_not_found"


def test_update_metrics_rejects_negative_values(ab_testing, ab_test):
    with pytest.raises(ValidationError) as exc_info:
        ab_testing.update_test_metrics(ab_test.id, "A", {"views": -1})
    assert exc_info.value.reason == "invalid_views"


def test_winner_is_determined_automatically(ab_testing, ab_test, clock):
    clock.advance(timedelta(days=8))
    ab_testing.update_test_metrics(ab_test.id, "A", {"views": 600})
    finished = ab_testing.update_test_metrics(ab_test.id, "B", {"views": 900})

    assert finished.status == "completed"
    assert finished.winner == "B"
    assert finished.completed_date == clock.now()


def test_determine_winner_picks_highest_score(ab_testing, ab_test, store, clock):
    ab_testing.update_test_metrics(ab_test.id, "A", {"views": 400})
    ab_testing.update_test_metrics(ab_test.id, "B", {"views": 600})
    clock.advance(timedelta(days=8))
    future = ab_testing.promotions.schedule_promotion(
        ab_test.content_id,
        {"platform": "youtube", "start_time": clock.now() + timedelta(days=2), "budget": 50},
    )

    winner = ab_testing.determine_winner(ab_test.id)

    assert winner.variant_id == "B"
    assert winner.score == pytest.approx(180.0)
    content = store.get_content(ab_test.content_id)
    assert content.optimized_promotion_settings == VARIANTS[1]["promotion_settings"]
    moved = store.get_schedule(future.id)
    assert moved.platform == "tiktok"
    assert moved.budget == 500
    assert moved.start_time == future.start_time
    assert moved.platform_specific_settings["target_audience"] == "gen-z"
    assert moved.platform_specific_settings["hashtag_strategy"] == "trending"
    assert "target_cpm" not in moved.platform_specific_settings


@pytest.mark.parametrize("days,views_b", [(0, 10), (0, 5000), (10, 999)])
def test_determine_winner_requires_duration_and_views(
    ab_testing, ab_test, store, clock, days, views_b
):
    ab_testing.update_test_metrics(ab_test.id, "B", {"views": views_b})
    clock.advance(timedelta(days=days))

    with pytest.raises(ValidationError) as exc_info:
        ab_testing.determine_winner(ab_test.id)
    assert exc_info.value.reason == "winner_conditions_not_met"

    unchanged = store.get_ab_test(ab_test.id)
    assert unchanged.status == "active"
    assert unchanged.winner is None
    assert store.get_content(ab_test.content_id).optimized_promotion_settings is None


def test_exact_tie_goes_to_first_variant(ab_testing, ab_test, clock):
    ab_testing.update_test_metrics(ab_test.id, "A", {"views": 500, "revenue": 10})
    ab_testing.update_test_metrics(ab_test.id, "B", {"views": 500, "revenue": 10})
    clock.advance(timedelta(days=8))
    assert ab_testing.determine_winner(ab_test.id).variant_id == "A"


def test_completed_test_is_frozen(ab_testing, ab_test, clock):
    ab_testing.update_test_metrics(ab_test.id, "B", {"views": 1000})
    clock.advance(timedelta(days=8))
    first = ab_testing.determine_winner(ab_test.id)

    with pytest.raises(ValidationError) as exc_info:
        ab_testing.update_test_metrics(ab_test.id, "A", {"views": 5000})
    assert exc_info.value.reason == "ab_test_completed"

    again = ab_testing.determine_winner(ab_test.id)
    assert again == first
    assert ab_testing.store.get_ab_test(ab_test.id).winner == "B"


def test_insights_compare_winner_with_others(ab_testing, clock):
    record = _test_record(clock, 8, 200, 300, status="completed", winner="B")
    record.variants[1].promotion_settings = {"platform": "tiktok", "target_audience": "x"}

    insights = ab_testing.generate_insights(record)

    assert insights.confidence_level == 95
    assert insights.improvements["views"] == pytest.approx(50.0)
    assert insights.improvements["revenue"] is None
    assert [item.type for item in insights.recommendations] == ["platform", "audience"]


def test_insights_without_winner(ab_testing, clock):
    insights = ab_testing.generate_insights(_test_record(clock, 1, 10, 20))
    assert insights.improvements == {
        "views": 0.0,
        "engagement": 0.0,
        "conversions": 0.0,
        "revenue": 0.0,
    }
    assert insights.recommendations == []


def test_get_test_results(ab_testing, ab_test):
    results = ab_testing.get_test_results(ab_test.id)
    assert results.id == ab_test.id
    assert results.insights.confidence_level == 95
    with pytest.raises(NotFound):
        ab_testing.get_test_results(999)
