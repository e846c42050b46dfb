from __future__ import annotations

from collections.abc import Generator

from fastapi import Depends

from .clock import Clock, SystemClock
from .db import get_session
from .services.ab_testing import ABTestingService
from .services.content import ContentService
from .services.promotions import PromotionService
from .services.rpm_model import RPMBudgetModel
from .storage_db import DatabaseStore


def get_store() -> Generator[DatabaseStore, None, None]:
    with get_session() as session:
        yield DatabaseStore(session)


def get_clock() -> Clock:
    return SystemClock()


def get_promotion_service(
    store: DatabaseStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
) -> PromotionService:
    return PromotionService(store, RPMBudgetModel(clock), clock)


def get_content_service(
    store: DatabaseStore = Depends(get_store),
    promotions: PromotionService = Depends(get_promotion_service),
) -> ContentService:
    return ContentService(store, promotions)


def get_ab_testing_service(
    store: DatabaseStore = Depends(get_store),
    promotions: PromotionService = Depends(get_promotion_service),
) -> ABTestingService:
    return ABTestingService(store, promotions)
