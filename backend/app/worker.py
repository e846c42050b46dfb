from __future__ import annotations

import asyncio
import os
from typing import Any

from arq import cron
from arq.connections import RedisSettings

from .clock import SystemClock
from .db import get_session
from .observability import configure_logging, get_logger, log_event
from .services.promotions import PromotionService
from .services.rpm_model import RPMBudgetModel
from .storage_db import DatabaseStore

SWEEP_MINUTES = int(os.getenv("PROMOTION_SWEEP_MINUTES", "5"))


def _sweep_sync() -> int:
    clock = SystemClock()
    with get_session() as session:
        service = PromotionService(DatabaseStore(session), RPMBudgetModel(clock), clock)
        return service.process_completed_promotions()


async def sweep_completed_promotions(ctx: dict[str, Any]) -> int:
    processed = await asyncio.to_thread(_sweep_sync)
    log_event(get_logger("worker"), "promotion_sweep_finished", processed=processed)
    return processed


async def startup(ctx: dict[str, Any]) -> None:
    configure_logging()


class WorkerSettings:
    redis_settings = RedisSettings.from_dsn(
        os.getenv("REDIS_URL", "redis://localhost:6379/0")
    )
    queue_name = os.getenv("ARQ_QUEUE_NAME", "autopromote")
    on_startup = startup
    functions = [sweep_completed_promotions]
    cron_jobs = [
        cron(
            sweep_completed_promotions,
            minute=set(range(0, 60, max(1, SWEEP_MINUTES))),
        )
    ]
