from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from .. import schemas
from ..clock import Clock
from ..errors import NotFound, ValidationError
from ..observability import get_logger, increment_metric, log_event, traced
from ..storage_db import DatabaseStore
from .promotions import PromotionService, parse_payload, parse_schedule
from .rpm_model import round_half_up_to

MIN_TEST_DURATION = timedelta(days=7)
MIN_TOTAL_VIEWS = 1000
CONFIDENCE_LEVEL = 95
METRIC_NAMES = ("views", "engagement", "conversions", "revenue")
SCORE_WEIGHTS = {"views": 0.3, "engagement": 0.3, "conversions": 0.2, "revenue": 0.2}

VariantInput = Union[schemas.VariantCreate, Mapping[str, Any]]
MetricsInput = Union[schemas.VariantMetricsUpdate, Mapping[str, Any]]


class ABTestingService:
    """Runs promotion variants side by side and promotes the best one."""

    def __init__(
        self,
        store: DatabaseStore,
        promotions: PromotionService,
        clock: Optional[Clock] = None,
    ) -> None:
        self.store = store
        self.promotions = promotions
        self.clock = clock or promotions.clock
        self.logger = get_logger("ab_testing")

    @traced("ab_testing.create")
    def create_test(
        self, content_id: int, variants: Sequence[VariantInput]
    ) -> schemas.ABTest:
        parsed = [parse_payload(schemas.VariantCreate, item) for item in variants]
        if len(parsed) < 2:
            raise ValidationError("at_least_two_variants_required")
        ids = [variant.id for variant in parsed]
        if len(set(ids)) != len(ids):
            raise ValidationError("duplicate_variant_id")
        now = self.clock.now()
        schedules = []
        for variant in parsed:
            settings = {"start_time": now, **variant.promotion_settings}
            schedules.append((variant.id, parse_schedule(settings)))
        self.store.get_content(content_id)
        with self.store.batch():
            test = self.store.create_ab_test(
                content_id,
                [
                    schemas.Variant(
                        id=variant.id, promotion_settings=variant.promotion_settings
                    ).model_dump()
                    for variant in parsed
                ],
                now,
            )
            for variant_id, schedule in schedules:
                self.promotions.schedule_promotion(
                    content_id,
                    schedule,
                    tags={"ab_test_id": test.id, "variant_id": variant_id},
                )
        increment_metric("ab_tests_created_total")
        log_event(
            self.logger,
            "ab_test_created",
            test_id=test.id,
            content_id=content_id,
            variants=ids,
        )
        return test

    @traced("ab_testing.update_metrics")
    def update_test_metrics(
        self, test_id: int, variant_id: str, metrics: MetricsInput
    ) -> schemas.ABTest:
        update = parse_payload(schemas.VariantMetricsUpdate, metrics)
        # Row lock serializes concurrent merges into the same test.
        test = self.store.get_ab_test(test_id, for_update=True)
        if test.status == "completed":
            raise ValidationError("ab_test_completed")
        variants = [variant.model_dump() for variant in test.variants]
        for variant in variants:
            if variant["id"] == variant_id:
                variant["metrics"] = {
                    **variant["metrics"],
                    **update.model_dump(exclude_none=True),
                }
                break
        else:
            raise NotFound("variant_not_found")
        test = self.store.update_ab_test(test_id, {"variants": variants})
        log_event(
            self.logger,
            "ab_test_metrics_updated",
            test_id=test_id,
            variant_id=variant_id,
        )
        if self.should_determine_winner(test):
            self.determine_winner(test_id)
            test = self.store.get_ab_test(test_id)
        return test

    def should_determine_winner(self, test: schemas.ABTest) -> bool:
        elapsed = self.clock.now() - test.start_date
        total_views = sum(variant.metrics.views for variant in test.variants)
        return elapsed >= MIN_TEST_DURATION and total_views >= MIN_TOTAL_VIEWS

    @staticmethod
    def calculate_variant_score(metrics: schemas.VariantMetrics) -> float:
        return sum(getattr(metrics, name) * weight for name, weight in SCORE_WEIGHTS.items())

    @traced("ab_testing.determine_winner")
    def determine_winner(self, test_id: int) -> schemas.VariantScore:
        test = self.store.get_ab_test(test_id, for_update=True)
        scores = [
            schemas.VariantScore(
                variant_id=variant.id,
                score=self.calculate_variant_score(variant.metrics),
            )
            for variant in test.variants
        ]
        if test.status == "completed" and test.winner:
            return next(score for score in scores if score.variant_id == test.winner)
        if not self.should_determine_winner(test):
            raise ValidationError("winner_conditions_not_met")
        winner = scores[0]
        for candidate in scores[1:]:
            if candidate.score > winner.score:
                winner = candidate
        winning_variant = next(v for v in test.variants if v.id == winner.variant_id)
        with self.store.batch():
            self.store.update_ab_test(
                test_id,
                {
                    "status": "completed",
                    "winner": winner.variant_id,
                    "completed_date": self.clock.now(),
                },
            )
            self.apply_winning_settings(test.content_id, winning_variant)
        increment_metric("ab_tests_completed_total")
        log_event(
            self.logger,
            "ab_test_winner_determined",
            test_id=test_id,
            content_id=test.content_id,
            winner=winner.variant_id,
            score=winner.score,
        )
        return winner

    def apply_winning_settings(self, content_id: int, variant: schemas.Variant) -> None:
        self.store.update_content(
            content_id, {"optimized_promotion_settings": dict(variant.promotion_settings)}
        )
        self.promotions.apply_settings_to_future_schedules(
            content_id, variant.promotion_settings
        )

    def generate_insights(self, test: schemas.ABTest) -> schemas.TestInsights:
        improvements: Dict[str, Optional[float]] = {name: 0.0 for name in METRIC_NAMES}
        winning = next((v for v in test.variants if v.id == test.winner), None)
        if winning is None:
            return schemas.TestInsights(
                confidence_level=CONFIDENCE_LEVEL, improvements=improvements
            )
        others = [variant for variant in test.variants if variant.id != test.winner]
        for name in METRIC_NAMES:
            if not others:
                improvements[name] = None
                continue
            baseline = sum(getattr(v.metrics, name) for v in others) / len(others)
            if baseline == 0:
                improvements[name] = None
                continue
            change = (getattr(winning.metrics, name) - baseline) / baseline * 100
            improvements[name] = round_half_up_to(change, 2)
        return schemas.TestInsights(
            confidence_level=CONFIDENCE_LEVEL,
            improvements=improvements,
            recommendations=self._test_recommendations(winning),
        )

    @staticmethod
    def _test_recommendations(winning: schemas.Variant) -> List[schemas.TestRecommendation]:
        settings = winning.promotion_settings
        recommendations = []
        if settings.get("platform"):
            recommendations.append(
                schemas.TestRecommendation(
                    type="platform",
                    message=f"Focus promotion efforts on {settings['platform']}",
                )
            )
        if settings.get("target_audience"):
            recommendations.append(
                schemas.TestRecommendation(
                    type="audience",
                    message="Target similar demographic profiles for future promotions",
                )
            )
        return recommendations

    def get_test_results(self, test_id: int) -> schemas.ABTestResults:
        test = self.store.get_ab_test(test_id)
        return schemas.ABTestResults(
            **test.model_dump(), insights=self.generate_insights(test)
        )
