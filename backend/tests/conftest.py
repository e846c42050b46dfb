from __future__ import annotations

import os

os.environ["DATABASE_URL"] = "sqlite://"

from datetime import datetime, timedelta  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from backend.app.clock import FixedClock  # noqa: E402
from backend.app.db import init_db  # noqa: E402
from backend.app.observability import reset_metrics  # noqa: E402
from backend.app.services.ab_testing import ABTestingService  # noqa: E402
from backend.app.services.content import ContentService  # noqa: E402
from backend.app.services.promotions import PromotionService  # noqa: E402
from backend.app.services.rpm_model import RPMBudgetModel  # noqa: E402
from backend.app.storage_db import DatabaseStore  # noqa: E402

NOW = datetime(2024, 3, 15, 10, 0)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite needs manual BEGIN for SAVEPOINT to work.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    session = sessionmaker(bind=engine, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def store(session):
    return DatabaseStore(session)


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def model(clock):
    return RPMBudgetModel(clock)


@pytest.fixture
def promotions(store, model, clock):
    return PromotionService(store, model, clock)


@pytest.fixture
def content_service(store, promotions, clock):
    return ContentService(store, promotions, clock=clock, upload_cooldown_days=0)


@pytest.fixture
def ab_testing(store, promotions, clock):
    return ABTestingService(store, promotions, clock)


@pytest.fixture(autouse=True)
def clean_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def make_content(store, clock):
    def factory(user_id: str = "creator-1", **overrides):
        fields = {
            "title": "Spring launch walkthrough video",
            "type": "video",
            "url": "https://cdn.example.com/launch.mp4",
            "description": "",
            "target_platforms": ["youtube", "tiktok", "instagram"],
            "status": "pending",
            "created_at": clock.now(),
            "updated_at": clock.now(),
        }
        fields.update(overrides)
        return store.create_content(user_id, fields)

    return factory


@pytest.fixture
def schedule_data(clock):
    def factory(**overrides):
        data = {
            "platform": "youtube",
            "start_time": clock.now() + timedelta(days=1),
            "frequency": "once",
        }
        data.update(overrides)
        return data

    return factory
