import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401
from app.database import Base
from app.realtime import RealtimeHub
from app.repo import SqlGateway
from app.services.events import EventBus
from app.services.letters import LetterEngine
from app.services.matches import MatchEngine


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FrozenClock(datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def session_factory():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    engine.dispose()


@pytest.fixture
def hub():
    return RealtimeHub()


@pytest.fixture
def gateway(session_factory, hub):
    return SqlGateway(session_factory, hub=hub)


@pytest.fixture
def bus():
    return EventBus(keep_history=True)


@pytest.fixture
def matches(gateway, bus, clock):
    return MatchEngine(gateway, bus, clock=clock)


@pytest.fixture
def letters(gateway, matches, clock):
    return LetterEngine(gateway, matches, clock=clock)


@pytest.fixture
def make_profile(gateway):
    def _make(first_name="Alex", **overrides):
        record = {
            "id": str(uuid.uuid4()),
            "first_name": first_name,
            "age": 25,
            "gender": "woman",
            "city": "Austin",
            "mental_tags": [],
            "looking_for": ["relationship"],
            "is_active": True,
            "subscription_ended": False,
        }
        record.update(overrides)
        return gateway.insert("profiles", record)

    return _make
