"""Tests for fingerprinting and visitor resolution."""

from __future__ import annotations

import pytest

from src.analytics_engine.exceptions import TrackingError
from src.analytics_engine.models import Visitor
from src.analytics_engine.schemas.context import SiteContext
from src.analytics_engine.schemas.tracking import VisitorSignals
from src.analytics_engine.services.visitor_resolver import VisitorResolver, generate_fingerprint

from tests.user_agents import CHROME_DESKTOP_UA, IPHONE_UA


@pytest.fixture()
def resolver(store) -> VisitorResolver:
    return VisitorResolver(store)


# ── Fingerprints ─────────────────────────────────────────────────


class TestFingerprint:
    def test_deterministic_and_short(self, signals):
        fp = generate_fingerprint(signals)
        assert fp == generate_fingerprint(signals.model_copy())
        assert len(fp) == 16
        assert all(c in "0123456789abcdef" for c in fp)

    def test_independent_of_field_order(self):
        a = VisitorSignals(user_agent="UA", timezone="UTC", language="en")
        b = VisitorSignals(language="en", timezone="UTC", user_agent="UA")
        assert generate_fingerprint(a) == generate_fingerprint(b)

    def test_changes_when_a_signal_changes(self, signals):
        other = signals.model_copy(update={"timezone": "Asia/Tokyo"})
        assert generate_fingerprint(signals) != generate_fingerprint(other)

    def test_ip_and_geo_do_not_contribute(self, signals):
        other = signals.model_copy(update={"ip_address": "198.51.100.1", "country": "FR"})
        assert generate_fingerprint(signals) == generate_fingerprint(other)

    def test_no_signals_gives_none(self):
        assert generate_fingerprint(VisitorSignals()) is None

    def test_below_minimum_gives_none(self):
        assert generate_fingerprint(VisitorSignals(language="en"), min_signals=2) is None


# ── Resolution ───────────────────────────────────────────────────


class TestResolve:
    def test_creates_visitor_with_device_and_anonymized_ip(self, resolver, signals, site, db):
        visitor = resolver.resolve(signals, site)

        assert visitor.id
        assert visitor.site_id == 1
        assert visitor.fingerprint == generate_fingerprint(signals)
        assert visitor.ip_address == "203.0.113.0"
        assert visitor.device_type == "desktop"
        assert visitor.browser == "Chrome"
        assert (visitor.screen_width, visitor.screen_height) == (1920, 1080)
        assert db.query(Visitor).count() == 1

    def test_same_signals_resolve_to_same_visitor(self, resolver, signals, site, db):
        first = resolver.resolve(signals, site)
        second = resolver.resolve(signals, site)
        assert first.id == second.id
        assert db.query(Visitor).count() == 1

    def test_fingerprints_are_scoped_per_site(self, resolver, signals, site):
        first = resolver.resolve(signals, site)
        other = resolver.resolve(signals, SiteContext(site_id=2))
        assert first.id != other.id

    def test_explicit_id_wins_over_fingerprint(self, resolver, signals, site):
        known = resolver.resolve(signals, site)
        different = VisitorSignals(visitor_id=known.id, user_agent=IPHONE_UA, language="en-US")

        visitor = resolver.resolve(different, site)

        assert visitor.id == known.id
        assert visitor.device_type == "mobile"
        assert visitor.language == "en-US"

    def test_unknown_explicit_id_falls_back_to_fingerprint(self, resolver, signals, site):
        known = resolver.resolve(signals, site)
        visitor = resolver.resolve(signals.model_copy(update={"visitor_id": "nope"}), site)
        assert visitor.id == known.id

    def test_geo_only_backfills(self, resolver, signals, site):
        resolver.resolve(signals.model_copy(update={"country": "DE"}), site)
        visitor = resolver.resolve(
            signals.model_copy(update={"country": "FR", "city": "Berlin"}), site
        )
        assert visitor.country == "DE"
        assert visitor.city == "Berlin"

    def test_no_signals_always_creates(self, resolver, site, db):
        resolver.resolve(VisitorSignals(), site)
        resolver.resolve(VisitorSignals(), site)
        assert db.query(Visitor).count() == 2

    def test_resolve_by_id_respects_site(self, resolver, signals, site):
        visitor = resolver.resolve(signals, site)
        assert resolver.resolve_by_id(visitor.id, site).id == visitor.id
        assert resolver.resolve_by_id(visitor.id, SiteContext(site_id=9)) is None
        assert resolver.resolve_by_id("", site) is None


class TestCounters:
    def test_increment_counter(self, resolver, signals, site, db):
        visitor = resolver.resolve(signals, site)
        resolver.increment_counter(visitor, "pageviews", 3)
        resolver.increment_counter(visitor, "events")
        db.refresh(visitor)
        assert visitor.total_pageviews == 3
        assert visitor.total_events == 1

    def test_unknown_counter_raises(self, resolver, signals, site):
        visitor = resolver.resolve(signals, site)
        with pytest.raises(ValueError):
            resolver.increment_counter(visitor, "clicks")


# ── Concurrent creates ───────────────────────────────────────────


class TestConcurrentCreate:
    def test_losing_insert_reuses_winner(self, resolver, store, signals, site, db, monkeypatch):
        fingerprint = generate_fingerprint(signals)
        winner = store.insert_visitor({"site_id": site.site_id, "fingerprint": fingerprint})
        db.commit()

        # The lookup misses once, as if the other request committed just after it
        original = store.find_visitor_by_fingerprint
        calls = []

        def racing_lookup(fp, site_id):
            calls.append(fp)
            if len(calls) == 1:
                return None
            return original(fp, site_id)

        monkeypatch.setattr(store, "find_visitor_by_fingerprint", racing_lookup)

        visitor = resolver.resolve(signals, site)

        assert visitor.id == winner.id
        assert visitor.browser == "Chrome"
        assert len(calls) == 2
        assert db.query(Visitor).count() == 1

    def test_ignored_insert_without_row_raises(self, resolver, store, signals, site, monkeypatch):
        monkeypatch.setattr(store, "insert_visitor", lambda values: None)

        with pytest.raises(TrackingError):
            resolver.resolve(signals, site)

    def test_two_sessions_interleaved(self, tmp_path, signals, site):
        from sqlalchemy import create_engine
        from sqlalchemy.orm import sessionmaker

        from src.analytics_engine.database import init_db
        from src.analytics_engine.services.store import SqlAlchemyStore

        engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}")
        init_db(engine)
        factory = sessionmaker(bind=engine, expire_on_commit=False)
        db_a, db_b = factory(), factory()
        try:
            store_a, store_b = SqlAlchemyStore(db_a), SqlAlchemyStore(db_b)
            fingerprint = generate_fingerprint(signals)

            assert store_a.find_visitor_by_fingerprint(fingerprint, site.site_id) is None
            assert store_b.find_visitor_by_fingerprint(fingerprint, site.site_id) is None
            db_a.rollback()
            db_b.rollback()

            a = VisitorResolver(store_a).resolve(signals, site)
            db_a.commit()

            # B already decided to create; its insert is ignored and it adopts A's row
            values = {"site_id": site.site_id, "fingerprint": fingerprint}
            assert store_b.insert_visitor(values) is None
            b = VisitorResolver(store_b).resolve(signals, site)
            db_b.commit()

            assert a.id == b.id
            assert db_a.query(Visitor).count() == 1
        finally:
            db_a.close()
            db_b.close()
            engine.dispose()
