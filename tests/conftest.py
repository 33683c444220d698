"""Shared fixtures: in-memory SQLite store, fixed clock and a scripted gateway."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.pool import StaticPool

from pushsched.common.config import RunConfig, load_settings
from pushsched.common.db import Base, create_session_factory
from pushsched.services.scheduler.store import JobStore


NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class ScriptedGateway:
    """Gateway double: returns or raises the scripted outcomes in order."""

    def __init__(self, *outcomes, default="projects/demo/messages/0") -> None:
        self.outcomes = list(outcomes)
        self.default = default
        self.sent = []

    async def send(self, message):
        self.sent.append(message)
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class StalePageStore(JobStore):
    """Store view that returns a due page read before another worker touched it."""

    def __init__(self, session_factory, page) -> None:
        super().__init__(session_factory)
        self.page = page

    def find_due(self, now, limit):
        return self.page[:limit]


class PauseRecorder:
    def __init__(self) -> None:
        self.pauses: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.pauses.append(seconds)


@pytest.fixture(autouse=True)
def _fresh_settings():
    load_settings.cache_clear()
    yield
    load_settings.cache_clear()


@pytest.fixture
def session_factory():
    factory = create_session_factory(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    engine = factory.kw["bind"]
    Base.metadata.create_all(engine)
    yield factory
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return JobStore(session_factory)


@pytest.fixture
def add_job(store):
    """Insert a due, queued job; keyword overrides replace the defaults."""

    def _add(**overrides) -> str:
        fields = {
            "title": "X",
            "body": "Y",
            "topic": "news",
            "schedule_time": NOW - timedelta(seconds=1),
        }
        fields.update(overrides)
        return store.add_job(**fields)

    return _add


@pytest.fixture
def count_rows(session_factory):
    def _count(model) -> int:
        with session_factory() as db:
            return db.execute(select(func.count()).select_from(model)).scalar_one()

    return _count


@pytest.fixture
def run_config():
    return RunConfig(retry_pause_seconds=0.2)
