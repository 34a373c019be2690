"""Tests for the scheduled session sweep and retention cleanup."""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import timedelta

import pytest

from src.analytics_engine.config import Settings
from src.analytics_engine.models import PageView, Visitor, WebSession
from src.analytics_engine.models.base import utcnow
from src.analytics_engine.schemas.tracking import PageViewPayload
from src.analytics_engine.services import scheduler as scheduler_module
from src.analytics_engine.services.scheduler import (
    run_retention_cleanup_tick,
    run_session_sweep_tick,
    shutdown_scheduler,
    start_scheduler,
)
from src.analytics_engine.services.task_queue import JOB_PAGEVIEW, InMemoryTaskQueue


@pytest.fixture()
def stale_session(tracking, signals, site, db):
    page_view = tracking.track_page_view(PageViewPayload(path="/", session_token="tok-1", signals=signals), site)
    session = db.get(WebSession, page_view.session_id)
    session.last_activity_at = utcnow() - timedelta(minutes=45)
    db.commit()
    return session


class TestSweepTick:
    def test_finalizes_expired_sessions(self, stale_session, session_factory, settings):
        result = run_session_sweep_tick(session_factory=session_factory, settings=settings)

        assert result == {"sessions_finalized": 1, "tasks_processed": 0}
        db = session_factory()
        try:
            session = db.get(WebSession, stale_session.id)
            assert session.ended_at is not None
            assert session.active_token is None
        finally:
            db.close()

    def test_nothing_to_do(self, session_factory, settings):
        assert run_session_sweep_tick(session_factory=session_factory, settings=settings) == {
            "sessions_finalized": 0,
            "tasks_processed": 0,
        }

    def test_drains_task_queue(self, session_factory, settings, signals, site):
        task_queue = InMemoryTaskQueue()
        payload = PageViewPayload(path="/queued", signals=signals)
        task_queue.enqueue(JOB_PAGEVIEW, {"site": asdict(site), "data": payload.model_dump(mode="json")})

        result = run_session_sweep_tick(session_factory=session_factory, settings=settings, task_queue=task_queue)

        assert result["tasks_processed"] == 1
        db = session_factory()
        try:
            assert db.query(PageView).one().path == "/queued"
        finally:
            db.close()


class TestRetentionTick:
    def test_deletes_expired_data(self, stale_session, session_factory, settings, db):
        stale_session.started_at = utcnow() - timedelta(days=100)
        stale_session.last_activity_at = stale_session.started_at
        stale_session.visitor.last_seen_at = stale_session.started_at
        for page_view in db.query(PageView):
            page_view.created_at = stale_session.started_at
        db.commit()

        result = run_retention_cleanup_tick(session_factory=session_factory, settings=settings)

        assert result["page_views"] == 1
        assert result["sessions"] == 1
        assert result["visitors"] == 1
        check = session_factory()
        try:
            assert check.query(Visitor).count() == 0
        finally:
            check.close()

    def test_disabled_retention_keeps_everything(self, stale_session, session_factory):
        settings = Settings(_env_file=None, DATABASE_URL="sqlite://", RETENTION_DAYS=0)
        assert run_retention_cleanup_tick(session_factory=session_factory, settings=settings) == {}

    def test_errors_are_logged(self, session_factory, settings, monkeypatch, caplog):
        def explode(self, retention_days, site=None):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(scheduler_module.DataDeletionService, "cleanup_old_data", explode)

        with caplog.at_level(logging.ERROR):
            assert run_retention_cleanup_tick(session_factory=session_factory, settings=settings) == {}
        assert "Error in retention cleanup" in caplog.text


class TestSchedulerLifecycle:
    def test_disabled_does_not_start(self):
        settings = Settings(_env_file=None, DATABASE_URL="sqlite://", SESSION_SWEEP_ENABLED=False, RETENTION_DAYS=0)
        assert start_scheduler(settings) is None
        assert scheduler_module.scheduler is None

    def test_start_and_shutdown(self):
        settings = Settings(_env_file=None, DATABASE_URL="sqlite://", SESSION_SWEEP_INTERVAL_MINUTES=10)
        try:
            started = start_scheduler(settings)
            assert started is not None
            assert started.get_job("session_sweeper") is not None
            assert started.get_job("retention_cleanup") is not None
            assert start_scheduler(settings) is started
        finally:
            shutdown_scheduler()
        assert scheduler_module.scheduler is None

    def test_retention_only(self):
        settings = Settings(_env_file=None, DATABASE_URL="sqlite://", SESSION_SWEEP_ENABLED=False, RETENTION_DAYS=30)
        try:
            started = start_scheduler(settings)
            assert started.get_job("session_sweeper") is None
            assert started.get_job("retention_cleanup") is not None
        finally:
            shutdown_scheduler()
