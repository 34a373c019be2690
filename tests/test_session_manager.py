"""Tests for session lifecycle and referrer classification."""

from __future__ import annotations

from datetime import timedelta

import pytest

from src.analytics_engine.exceptions import TrackingError
from src.analytics_engine.models import PageView, ReferrerType, Visitor, WebSession
from src.analytics_engine.models.base import utcnow
from src.analytics_engine.schemas.context import SiteContext
from src.analytics_engine.schemas.tracking import SessionPayload, UtmParams
from src.analytics_engine.services.session_manager import (
    SessionManager,
    classify_referrer,
    referrer_domain,
)
from src.analytics_engine.services.visitor_resolver import VisitorResolver


@pytest.fixture()
def manager(store) -> SessionManager:
    return SessionManager(store, timeout_minutes=30)


@pytest.fixture()
def visitor(store, signals, site) -> Visitor:
    return VisitorResolver(store).resolve(signals, site)


def add_page_view(store, session: WebSession, path: str) -> PageView:
    return store.add_page_view(
        PageView(site_id=session.site_id, session_id=session.id, visitor_id=session.visitor_id, path=path)
    )


def age(session: WebSession, minutes: int) -> None:
    past = utcnow() - timedelta(minutes=minutes)
    session.started_at = past
    session.last_activity_at = past


# ── Referrer classification ──────────────────────────────────────


class TestClassifyReferrer:
    @pytest.mark.parametrize(
        "referrer,medium,expected",
        [
            ("https://www.google.com/search?q=x", "cpc", ReferrerType.PAID),
            ("https://www.google.com/search?q=x", None, ReferrerType.ORGANIC),
            (None, None, ReferrerType.DIRECT),
            ("", None, ReferrerType.DIRECT),
            ("https://t.co/abc", "social", ReferrerType.SOCIAL),
            ("https://www.facebook.com/", None, ReferrerType.SOCIAL),
            (None, "email", ReferrerType.EMAIL),
            (None, "paid-social", ReferrerType.PAID),
            ("https://blog.example.org/post", None, ReferrerType.REFERRAL),
        ],
    )
    def test_classification(self, referrer, medium, expected):
        assert classify_referrer(referrer, medium) == expected

    def test_custom_search_engine_list(self):
        assert classify_referrer("https://search.ecosia.org/", None, search_engines=["ecosia"]) == ReferrerType.ORGANIC
        assert classify_referrer("https://www.google.com/", None, search_engines=["ecosia"]) == ReferrerType.REFERRAL

    def test_referrer_domain(self):
        assert referrer_domain("https://news.ycombinator.com/item?id=1") == "news.ycombinator.com"
        assert referrer_domain("not a url") is None
        assert referrer_domain(None) is None


# ── Creation ─────────────────────────────────────────────────────


class TestGetOrCreate:
    def test_creates_session_and_counts_it(self, manager, visitor, site, db):
        source = UtmParams(utm_source="newsletter", utm_medium="email", utm_campaign="launch")

        session = manager.get_or_create("tok-1", visitor, site, source)

        assert session.session_token == "tok-1"
        assert session.active_token == "tok-1"
        assert session.visitor_id == visitor.id
        assert session.referrer_type == ReferrerType.EMAIL.value
        assert session.utm_campaign == "launch"
        assert session.is_bounce is True
        db.refresh(visitor)
        assert visitor.total_sessions == 1

    def test_active_session_is_reused(self, manager, visitor, site, db):
        first = manager.get_or_create("tok-1", visitor, site)
        second = manager.get_or_create("tok-1", visitor, site)

        assert first.id == second.id
        assert db.query(WebSession).count() == 1
        db.refresh(visitor)
        assert visitor.total_sessions == 1

    def test_expired_token_starts_a_new_session(self, manager, visitor, site, db):
        old = manager.get_or_create("tok-1", visitor, site)
        age(old, 45)
        db.flush()
        last_activity = old.last_activity_at

        new = manager.get_or_create("tok-1", visitor, site)

        assert new.id != old.id
        assert new.session_token == old.session_token == "tok-1"
        assert old.ended_at == last_activity
        assert old.active_token is None
        assert manager.find_by_token("tok-1", site).id == new.id
        db.refresh(visitor)
        assert visitor.total_sessions == 2

    def test_same_token_on_other_site_is_separate(self, manager, visitor, site):
        first = manager.get_or_create("tok-1", visitor, site)
        other = manager.get_or_create("tok-1", visitor, SiteContext(site_id=2))
        assert first.id != other.id

    def test_create_uses_entry_path_and_referrer(self, manager, visitor, site):
        payload = SessionPayload(
            session_token="tok-2",
            entry_path="/landing",
            referrer="https://www.bing.com/search?q=analytics",
        )

        session = manager.create(payload, visitor, site)

        assert session.entry_page == "/landing"
        assert session.referrer_domain == "www.bing.com"
        assert session.referrer_type == ReferrerType.ORGANIC.value

    def test_concurrent_create_adopts_winner(self, manager, store, visitor, site, monkeypatch):
        winner = manager.get_or_create("tok-race", visitor, site)

        # Both lookups miss as if the other writer had not committed yet
        original = store.find_open_session
        calls = []

        def racing_lookup(token, site_id):
            calls.append(token)
            if len(calls) <= 2:
                return None
            return original(token, site_id)

        monkeypatch.setattr(store, "find_open_session", racing_lookup)

        session = manager.get_or_create("tok-race", visitor, site)

        assert session.id == winner.id

    def test_ignored_insert_without_winner_raises(self, manager, store, visitor, site, monkeypatch):
        monkeypatch.setattr(store, "insert_session", lambda values: None)

        with pytest.raises(TrackingError):
            manager.get_or_create("tok-lost", visitor, site)

    def test_expired_session_is_handed_to_on_expire(self, store, visitor, site, db):
        closed = []
        manager = SessionManager(store, timeout_minutes=30, on_expire=closed.append)
        old = manager.get_or_create("tok-1", visitor, site)
        age(old, 45)
        db.flush()

        manager.get_or_create("tok-1", visitor, site)

        assert closed == [old]
        assert old.ended_at is not None


# ── Activity and expiry ──────────────────────────────────────────


class TestActivity:
    def test_record_page_view_updates_counters(self, manager, visitor, site):
        session = manager.get_or_create("tok-1", visitor, site)

        manager.record_page_view(session, "/home", title="Home")
        assert session.entry_page == "/home"
        assert session.landing_page_title == "Home"
        assert session.is_bounce is True

        manager.record_page_view(session, "/pricing")
        assert session.page_count == 2
        assert session.exit_page == "/pricing"
        assert session.is_bounce is False

    def test_extend(self, manager, visitor, site):
        session = manager.get_or_create("tok-1", visitor, site)
        age(session, 10)

        assert manager.extend("tok-1", site) is True
        assert session.last_activity_at > utcnow() - timedelta(minutes=1)
        assert session.duration >= 600

    def test_extend_unknown_or_expired(self, manager, visitor, site):
        assert manager.extend("missing", site) is False
        session = manager.get_or_create("tok-1", visitor, site)
        age(session, 31)
        assert manager.extend("tok-1", site) is False

    def test_is_expired(self, manager, visitor, site):
        session = manager.get_or_create("tok-1", visitor, site)
        assert manager.is_expired(session) is False
        assert manager.is_expired(session, now=utcnow() + timedelta(minutes=31)) is True

    def test_expired_sessions_lists_only_stale_open_ones(self, manager, visitor, site, db):
        stale = manager.get_or_create("stale", visitor, site)
        manager.get_or_create("fresh", visitor, site)
        age(stale, 40)
        db.flush()

        assert [s.id for s in manager.expired_sessions(site)] == [stale.id]
        assert manager.expired_sessions(SiteContext(site_id=2)) == []


# ── Finalization ─────────────────────────────────────────────────


class TestEnd:
    def test_single_page_view_is_bounce(self, manager, store, visitor, site):
        session = manager.get_or_create("tok-1", visitor, site)
        add_page_view(store, session, "/only")

        assert manager.end("tok-1", site) is True
        assert session.page_count == 1
        assert session.is_bounce is True
        assert session.ended_at is not None
        assert session.active_token is None

    def test_two_page_views_is_not_bounce(self, manager, store, visitor, site):
        session = manager.get_or_create("tok-1", visitor, site)
        add_page_view(store, session, "/a")
        add_page_view(store, session, "/b")

        manager.end("tok-1", site, {"exit_page": "/b"})

        assert session.page_count == 2
        assert session.is_bounce is False
        assert session.exit_page == "/b"

    def test_duration_is_derived_from_start(self, manager, visitor, site):
        session = manager.get_or_create("tok-1", visitor, site)
        started = session.started_at

        manager.finalize(session, ended_at=started + timedelta(seconds=95))

        assert session.duration == 95

    def test_end_unknown_token(self, manager, site):
        assert manager.end("missing", site) is False

    def test_ending_twice_keeps_first_end(self, manager, visitor, site):
        session = manager.get_or_create("tok-1", visitor, site)
        manager.end("tok-1", site)
        first_end = session.ended_at

        assert manager.end("tok-1", site) is True
        assert session.ended_at == first_end

    def test_token_reusable_after_end(self, manager, visitor, site, db):
        ended = manager.get_or_create("tok-1", visitor, site)
        manager.end("tok-1", site)

        fresh = manager.get_or_create("tok-1", visitor, site)

        assert fresh.id != ended.id
        assert db.query(WebSession).count() == 2
