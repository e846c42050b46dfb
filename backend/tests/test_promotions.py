from datetime import datetime, timedelta

import pytest

from backend.app import schemas
from backend.app.errors import NotFound, StoreUnavailable, ValidationError
from backend.app.observability import get_metrics_snapshot
from backend.app.services.promotions import PromotionService

calc = PromotionService.calculate_next_promotion_time


@pytest.mark.parametrize(
    "start,frequency,expected",
    [
        (datetime(2024, 3, 1, 9), "hourly", datetime(2024, 3, 1, 10)),
        (datetime(2024, 3, 1, 9), "daily", datetime(2024, 3, 2, 9)),
        (datetime(2024, 3, 1, 9), "weekly", datetime(2024, 3, 8, 9)),
        (datetime(2024, 3, 1, 9), "biweekly", datetime(2024, 3, 15, 9)),
        (datetime(2024, 1, 31, 9), "monthly", datetime(2024, 2, 29, 9)),
        (datetime(2024, 11, 30, 9), "quarterly", datetime(2025, 2, 28, 9)),
    ],
)
def test_next_promotion_time(start, frequency, expected):
    assert calc(start, frequency) == expected


def test_next_promotion_time_once_and_unknown():
    assert calc(datetime(2024, 3, 1), "once") is None
    assert calc(datetime(2024, 3, 1), "fortnightly") is None


def test_next_promotion_time_custom_pattern_wins():
    start = datetime(2024, 3, 1, 9)
    pattern = {"type": "custom", "unit": "weeks", "interval": 3}
    assert calc(start, "daily", pattern) == datetime(2024, 3, 22, 9)
    assert calc(start, "once", {"unit": "months", "interval": 2}) == datetime(2024, 5, 1, 9)


def test_schedule_promotion_fills_budget_and_settings(promotions, make_content, schedule_data):
    content = make_content()
    schedule = promotions.schedule_promotion(content.id, schedule_data())

    assert schedule.status == "scheduled"
    assert schedule.is_active
    assert schedule.budget == 855
    assert schedule.platform_specific_settings["target_cpm"] == 960.0
    assert schedule.platform_specific_settings["optimal_time"] == "15:00-17:00"
    assert schedule.parent_schedule_id is None
    assert [item.id for item in promotions.get_content_promotion_schedules(content.id)] == [
        schedule.id
    ]


def test_schedule_promotion_keeps_explicit_values(promotions, make_content, schedule_data):
    content = make_content()
    schedule = promotions.schedule_promotion(
        content.id,
        schedule_data(
            platform="tiktok", budget=0, platform_specific_settings={"hashtags": ["#launch"]}
        ),
    )
    assert schedule.budget == 0
    assert schedule.platform_specific_settings == {"hashtags": ["#launch"]}


def test_schedule_promotion_missing_content(promotions, schedule_data):
    with pytest.raises(NotFound) as exc_info:
        promotions.schedule_promotion(999, schedule_data())
    assert exc_info.value.reason == "content_not_found"


@pytest.mark.parametrize(
    "overrides,reason",
    [
        ({"platform": "myspace"}, "invalid_platform"),
        ({"budget": -5}, "invalid_budget"),
        ({"frequency": "yearly"}, "invalid_frequency"),
        ({"start_time": None}, "invalid_start_time"),
        ({"max_occurrences": 0}, "invalid_max_occurrences"),
    ],
)
def test_schedule_promotion_rejects_invalid_payload(
    promotions, make_content, schedule_data, overrides, reason
):
    content = make_content()
    with pytest.raises(ValidationError) as exc_info:
        promotions.schedule_promotion(content.id, schedule_data(**overrides))
    assert exc_info.value.reason == reason
    assert promotions.get_content_promotion_schedules(content.id) == []


def test_schedule_promotion_rejects_inverted_window(
    promotions, make_content, schedule_data, clock
):
    content = make_content()
    data = schedule_data(end_time=clock.now())
    with pytest.raises(ValidationError) as exc_info:
        promotions.schedule_promotion(content.id, data)
    assert exc_info.value.reason == "end_time_before_start_time"


def test_recurring_schedule_creates_first_child(promotions, make_content, schedule_data):
    content = make_content()
    root = promotions.schedule_promotion(content.id, schedule_data(frequency="weekly"))

    schedules = promotions.get_content_promotion_schedules(content.id)
    assert len(schedules) == 2
    child = schedules[1]
    assert child.parent_schedule_id == root.id
    assert child.start_time == root.start_time + timedelta(days=7)
    assert child.end_time is None
    assert child.budget == root.budget
    assert promotions.get_occurrence_count(root.id) == 2


def test_once_schedule_creates_no_child(promotions, make_content, schedule_data):
    content = make_content()
    root = promotions.schedule_promotion(content.id, schedule_data())
    assert promotions.create_next_recurrence(root) is None
    assert promotions.get_occurrence_count(root.id) == 1


def test_max_occurrences_caps_chain(promotions, make_content, schedule_data, clock):
    content = make_content()
    start = clock.now() + timedelta(hours=23)
    root = promotions.schedule_promotion(
        content.id,
        schedule_data(
            frequency="daily",
            start_time=start,
            end_time=start + timedelta(hours=1),
            max_occurrences=2,
        ),
    )
    assert promotions.get_occurrence_count(root.id) == 2

    clock.advance(timedelta(days=5))
    assert promotions.process_completed_promotions() == 2
    assert promotions.process_completed_promotions() == 0
    assert promotions.get_occurrence_count(root.id) == 2
    snapshot = {item["name"]: item for item in get_metrics_snapshot()}
    assert snapshot["promotion_recurrence_capped_total"]["value"] >= 1


def test_completion_sweep_advances_chain_once(promotions, make_content, schedule_data, clock):
    content = make_content()
    start = clock.now() + timedelta(hours=1)
    root = promotions.schedule_promotion(
        content.id,
        schedule_data(frequency="daily", start_time=start, end_time=start + timedelta(hours=1)),
    )
    assert promotions.get_occurrence_count(root.id) == 2

    clock.advance(timedelta(hours=3))
    assert promotions.process_completed_promotions() == 1
    # The next occurrence already exists, so no duplicate is created.
    assert promotions.get_occurrence_count(root.id) == 2
    completed = promotions.store.get_schedule(root.id)
    assert completed.status == "completed"
    assert not completed.is_active
    assert completed.completed_at == clock.now()

    clock.advance(timedelta(days=1))
    assert promotions.process_completed_promotions() == 1
    schedules = promotions.get_content_promotion_schedules(content.id)
    assert len(schedules) == 3
    assert {item.parent_schedule_id for item in schedules[1:]} == {root.id}
    assert schedules[2].start_time == start + timedelta(days=2)
    assert schedules[2].end_time == start + timedelta(days=2, hours=1)


def test_delete_schedule_cascades_to_children(promotions, make_content, schedule_data):
    content = make_content()
    root = promotions.schedule_promotion(content.id, schedule_data(frequency="daily"))
    first_child = promotions.get_content_promotion_schedules(content.id)[1]
    promotions.create_next_recurrence(first_child)
    assert promotions.get_occurrence_count(root.id) == 3

    promotions.delete_promotion_schedule(root.id)

    assert promotions.get_content_promotion_schedules(content.id) == []
    with pytest.raises(NotFound):
        promotions.store.get_schedule(root.id)


def test_delete_schedule_is_atomic(promotions, make_content, schedule_data, monkeypatch):
    content = make_content()
    root = promotions.schedule_promotion(content.id, schedule_data(frequency="daily"))
    promotions.create_next_recurrence(promotions.get_content_promotion_schedules(content.id)[1])
    store = promotions.store
    original = store.delete_schedule
    calls = []

    def flaky_delete(schedule_id):
        calls.append(schedule_id)
        if len(calls) == 2:
            raise StoreUnavailable("delete_schedule_failed")
        return original(schedule_id)

    monkeypatch.setattr(store, "delete_schedule", flaky_delete)
    with pytest.raises(StoreUnavailable):
        promotions.delete_promotion_schedule(root.id)

    assert store.count_occurrences(root.id) == 3


def test_delete_missing_schedule(promotions):
    with pytest.raises(NotFound) as exc_info:
        promotions.delete_promotion_schedule(404)
    assert exc_info.value.reason == "schedule_not_found"


def test_update_promotion_schedule(promotions, make_content, schedule_data):
    content = make_content()
    schedule = promotions.schedule_promotion(content.id, schedule_data())

    updated = promotions.update_promotion_schedule(
        schedule.id, {"budget": 400, "platform": None}
    )
    assert updated.budget == 400
    assert updated.platform == "youtube"

    with pytest.raises(ValidationError) as exc_info:
        promotions.update_promotion_schedule(
            schedule.id, {"end_time": schedule.start_time - timedelta(hours=1)}
        )
    assert exc_info.value.reason == "end_time_before_start_time"

    with pytest.raises(NotFound):
        promotions.update_promotion_schedule(999, {"budget": 1})


def test_active_promotions_filters(promotions, make_content, schedule_data, clock):
    video = make_content()
    image = make_content(type="image", title="Poster")
    promotions.schedule_promotion(video.id, schedule_data(start_time=clock.now(), budget=100))
    promotions.schedule_promotion(
        image.id, schedule_data(start_time=clock.now(), platform="tiktok", budget=900)
    )
    promotions.schedule_promotion(video.id, schedule_data(budget=50))

    active = promotions.get_active_promotions()
    assert len(active) == 2
    assert active[0].content.id in {video.id, image.id}

    by_type = promotions.get_active_promotions(
        schemas.ActivePromotionFilters(content_type="image")
    )
    assert [item.content_id for item in by_type] == [image.id]

    by_budget = promotions.get_active_promotions(
        schemas.ActivePromotionFilters(min_budget=200, platform="tiktok")
    )
    assert [item.budget for item in by_budget] == [900]


def test_promotion_analytics_without_history(promotions, make_content, schedule_data):
    content = make_content()
    schedule = promotions.schedule_promotion(content.id, schedule_data(budget=500))

    analytics = promotions.get_promotion_analytics(schedule.id)
    assert analytics.content.id == content.id
    assert not analytics.analytics.data_available
    assert analytics.analytics.cost_per_view is None
    assert analytics.recommendations


def test_promotion_analytics_with_history(promotions, make_content, schedule_data, clock):
    content = make_content()
    schedule = promotions.schedule_promotion(content.id, schedule_data(budget=500))
    promotions.store.create_analytics_snapshot(
        content.id, schemas.HistoricalData(views=10000, revenue=1500), clock.now()
    )

    performance = promotions.get_promotion_analytics(schedule.id).analytics
    assert performance.data_available
    assert performance.views == 10000
    assert performance.cost_per_view == pytest.approx(0.05)
    assert performance.roi == pytest.approx(2.0)


def test_historical_lookup_failure_degrades(promotions, make_content, schedule_data, monkeypatch):
    content = make_content()
    schedule = promotions.schedule_promotion(content.id, schedule_data(budget=500))

    def broken(content_id):
        raise StoreUnavailable("get_latest_analytics_failed")

    monkeypatch.setattr(promotions.store, "get_latest_analytics", broken)

    lookup = promotions.load_historical_data(content.id)
    assert not lookup.available
    assert lookup.error == "get_latest_analytics_failed"
    analytics = promotions.get_promotion_analytics(schedule.id)
    assert not analytics.analytics.data_available

    # Budget estimation still works without history.
    estimated = promotions.schedule_promotion(content.id, schedule_data())
    assert estimated.budget == 855


def test_bulk_schedule_reports_per_item(promotions, make_content, schedule_data):
    first = make_content()
    second = make_content()

    results = promotions.bulk_schedule_promotions(
        [first.id, 999, second.id], schedule_data(budget=100)
    )
    assert [item.success for item in results] == [True, False, True]
    assert results[1].error == "content_not_found"
    assert results[0].schedule.content_id == first.id


def test_bulk_schedule_invalid_template(promotions, make_content, schedule_data):
    content = make_content()
    results = promotions.bulk_schedule_promotions(
        [content.id], schedule_data(platform="myspace")
    )
    assert results[0].error == "invalid_platform"


def test_bulk_schedule_propagates_store_failure(
    promotions, make_content, schedule_data, monkeypatch
):
    content = make_content()

    def broken(content_id, fields):
        raise StoreUnavailable("create_schedule_failed")

    monkeypatch.setattr(promotions.store, "create_schedule", broken)
    with pytest.raises(StoreUnavailable):
        promotions.bulk_schedule_promotions([content.id], schedule_data(budget=100))


def test_apply_settings_skips_started_schedules(promotions, make_content, schedule_data, clock):
    content = make_content()
    started = promotions.schedule_promotion(
        content.id, schedule_data(start_time=clock.now(), budget=100)
    )
    future = promotions.schedule_promotion(content.id, schedule_data(budget=100))

    updated = promotions.apply_settings_to_future_schedules(
        content.id,
        {"budget": 750, "platform": "tiktok", "start_time": clock.now() + timedelta(days=30)},
    )
    assert [item.id for item in updated] == [future.id]
    assert updated[0].budget == 750
    assert updated[0].platform == "tiktok"
    assert updated[0].start_time == future.start_time
    assert promotions.store.get_schedule(started.id).budget == 100


def test_apply_settings_merges_extra_keys_and_keeps_tags(
    promotions, make_content, schedule_data
):
    content = make_content()
    tagged = promotions.schedule_promotion(
        content.id, schedule_data(budget=100), tags={"ab_test_id": 7, "variant_id": "A"}
    )

    updated = promotions.apply_settings_to_future_schedules(
        content.id, {"platform": "instagram", "tone": "casual"}
    )

    assert [item.id for item in updated] == [tagged.id]
    settings = promotions.store.get_schedule(tagged.id).platform_specific_settings
    assert settings["carousel_slides"] == 3
    assert settings["tone"] == "casual"
    assert (settings["ab_test_id"], settings["variant_id"]) == (7, "A")
    assert "target_cpm" not in settings


def test_apply_settings_same_platform_keeps_existing_settings(
    promotions, make_content, schedule_data
):
    content = make_content()
    future = promotions.schedule_promotion(content.id, schedule_data(budget=100))

    promotions.apply_settings_to_future_schedules(content.id, {"target_audience": "gen-z"})

    settings = promotions.store.get_schedule(future.id).platform_specific_settings
    assert settings["target_audience"] == "gen-z"
    assert settings["target_cpm"] == 960.0


def test_completion_sweep_is_atomic(
    promotions, make_content, schedule_data, clock, monkeypatch
):
    store = promotions.store
    start = clock.now() + timedelta(hours=1)
    roots = []
    for _ in range(2):
        content = make_content()
        root = promotions.schedule_promotion(
            content.id,
            schedule_data(
                frequency="daily", start_time=start, end_time=start + timedelta(hours=1)
            ),
        )
        # Drop the pre-created occurrence so a completed sweep would add one.
        store.delete_schedule(promotions.get_content_promotion_schedules(content.id)[1].id)
        roots.append(root)
    clock.advance(timedelta(hours=3))

    original = store.update_schedule
    calls = []

    def flaky_update(schedule_id, fields):
        calls.append(schedule_id)
        if len(calls) == 2:
            raise StoreUnavailable("update_schedule_failed")
        return original(schedule_id, fields)

    monkeypatch.setattr(store, "update_schedule", flaky_update)
    with pytest.raises(StoreUnavailable):
        promotions.process_completed_promotions()

    for root in roots:
        unchanged = store.get_schedule(root.id)
        assert unchanged.is_active
        assert unchanged.status == "scheduled"
        assert unchanged.completed_at is None
        assert store.count_occurrences(root.id) == 1

    monkeypatch.undo()
    assert promotions.process_completed_promotions() == 2
    assert [store.count_occurrences(root.id) for root in roots] == [2, 2]


def test_promotion_performance_report(promotions, make_content, schedule_data, clock):
    earning = make_content(
        title="Earning clip", revenue=500.0, views=1000, promotion_started_at=clock.now()
    )
    idle = make_content(title="Idle clip")
    first = promotions.schedule_promotion(
        earning.id, schedule_data(start_time=clock.now(), budget=100)
    )
    ended = promotions.schedule_promotion(
        earning.id,
        schedule_data(
            start_time=clock.now() - timedelta(hours=2),
            end_time=clock.now() - timedelta(hours=1),
            budget=150,
        ),
    )
    promotions.schedule_promotion(idle.id, schedule_data(budget=250))
    assert promotions.process_completed_promotions() == 1

    report = promotions.get_promotion_performance()

    metrics = report.promotion_metrics
    assert (metrics.active_promotions, metrics.completed_promotions) == (2, 1)
    assert metrics.total_promotions == 3
    assert metrics.total_revenue_from_promotions == 500.0
    assert metrics.total_views_from_promotions == 1000
    assert metrics.avg_roi == pytest.approx(1.0)
    assert metrics.promotion_success_rate == 33
    assert [item.promotion_id for item in report.top_performing_promotions] == [
        first.id,
        ended.id,
    ]
    top = report.top_performing_promotions[0]
    assert (top.content_title, top.platform, top.budget) == ("Earning clip", "youtube", 100)
    assert top.roi == pytest.approx(5.0)


def test_promotion_performance_report_when_empty(promotions):
    report = promotions.get_promotion_performance()
    assert report.promotion_metrics.total_promotions == 0
    assert report.promotion_metrics.avg_roi == 0.0
    assert report.promotion_metrics.promotion_success_rate == 0
    assert report.top_performing_promotions == []


def test_promotion_success_rate_rounds_half_up(promotions, make_content, schedule_data, clock):
    content = make_content()
    window = {
        "start_time": clock.now() - timedelta(hours=2),
        "end_time": clock.now() - timedelta(hours=1),
    }
    for _ in range(7):
        promotions.schedule_promotion(content.id, schedule_data(**window, budget=1))
    promotions.process_completed_promotions()
    promotions.schedule_promotion(content.id, schedule_data(budget=1))
    # 7 of 8 completed is 87.5%.
    assert promotions.get_promotion_performance().promotion_metrics.promotion_success_rate == 88


def test_top_promotions_are_capped(promotions, make_content, schedule_data):
    content = make_content(revenue=10.0)
    for _ in range(12):
        promotions.schedule_promotion(content.id, schedule_data(budget=0))

    top = promotions.get_promotion_performance().top_performing_promotions
    assert len(top) == 10
    assert all(item.roi == 0.0 for item in top)


def test_start_promotion_now(promotions, make_content, clock):
    content = make_content()

    schedule = promotions.start_promotion_now(content.id)

    assert schedule.platform == "all"
    assert schedule.frequency == "once"
    assert schedule.start_time == clock.now()
    assert schedule.budget == 1000
    assert schedule.target_metrics == {"target_views": 1000000, "target_rpm": 1000}
    assert promotions.store.get_content(content.id).promotion_started_at == clock.now()
    assert promotions.get_occurrence_count(schedule.id) == 1
