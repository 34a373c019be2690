"""Shared test fixtures: in-memory database, store, site context and services."""

from __future__ import annotations

from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.analytics_engine.config import Settings
from src.analytics_engine.database import init_db
from src.analytics_engine.models import Goal
from src.analytics_engine.schemas.context import SiteContext
from src.analytics_engine.schemas.tracking import VisitorSignals
from src.analytics_engine.services.notifications import ConversionNotifier, GoalConverted
from src.analytics_engine.services.store import SqlAlchemyStore
from src.analytics_engine.services.tracking import TrackingService

from tests.user_agents import CHROME_DESKTOP_UA


@pytest.fixture()
def engine():
    """Fresh in-memory SQLite schema for each test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def store(db) -> SqlAlchemyStore:
    return SqlAlchemyStore(db)


@pytest.fixture()
def site() -> SiteContext:
    return SiteContext(site_id=1)


@pytest.fixture()
def settings() -> Settings:
    return Settings(_env_file=None, DATABASE_URL="sqlite://", QUEUE_PROCESSING=False)


@pytest.fixture()
def received() -> list[GoalConverted]:
    return []


@pytest.fixture()
def notifier(received) -> ConversionNotifier:
    notifier = ConversionNotifier()
    notifier.subscribe(received.append)
    return notifier


@pytest.fixture()
def tracking(store, settings, notifier) -> TrackingService:
    return TrackingService(store, settings=settings, notifier=notifier)


@pytest.fixture()
def signals() -> VisitorSignals:
    return VisitorSignals(
        user_agent=CHROME_DESKTOP_UA,
        ip_address="203.0.113.42",
        screen_resolution="1920x1080",
        timezone="Europe/Berlin",
        language="de-DE",
    )


@pytest.fixture()
def make_goal(store):
    """Factory that persists a goal and returns it."""

    def _make(type: str, conditions: dict[str, Any] | None = None, **kwargs: Any) -> Goal:
        goal = Goal(
            name=kwargs.pop("name", f"{type} goal"),
            type=type,
            conditions=conditions or {},
            **kwargs,
        )
        store.add_goal(goal)
        store.commit()
        return goal

    return _make
