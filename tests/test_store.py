"""Tests for the SQLAlchemy store beyond what the services exercise."""

from __future__ import annotations

from datetime import datetime, timezone

from src.analytics_engine.models import AnalyticsEvent, GoalType
from src.analytics_engine.schemas.context import SiteContext
from src.analytics_engine.services.store import AnalyticsStore, SqlAlchemyStore


def test_implements_protocol(store):
    assert isinstance(store, AnalyticsStore)


# ── Goals ────────────────────────────────────────────────────────


class TestGoals:
    def test_active_goals_by_type_and_site(self, store, make_goal, site):
        everywhere = make_goal("pageview", {"path_exact": "/"})
        mine = make_goal("event", {"event_name": "x"}, site_id=1)
        make_goal("event", {"event_name": "x"}, site_id=2)
        make_goal("duration", {"min_seconds": 5})

        goals = store.active_goals([GoalType.PAGEVIEW, GoalType.EVENT], site)

        assert [g.id for g in goals] == [everywhere.id, mine.id]

    def test_tenant_scoping_keeps_shared_goals(self, db, make_goal):
        shared = make_goal("event", {}, site_id=1)
        acme = make_goal("event", {}, site_id=1, tenant_id="acme")
        make_goal("event", {}, site_id=1, tenant_id="globex")

        store = SqlAlchemyStore(db, multi_tenant=True)
        goals = store.active_goals([GoalType.EVENT], SiteContext(site_id=1, tenant_id="acme"))

        assert [g.id for g in goals] == [shared.id, acme.id]

    def test_find_by_name_and_toggle(self, store, make_goal, site):
        goal = make_goal("event", {"event_name": "signup"}, name="Signup")

        assert store.find_goal_by_name("Signup", site_id=1).id == goal.id
        assert store.find_goal_by_name("Nope") is None

        assert store.set_goal_active(goal.id, False) is True
        assert store.active_goals([GoalType.EVENT], site) == []
        assert store.set_goal_active(9999, True) is False


# ── Reporting queries ────────────────────────────────────────────


class TestReporting:
    def test_events_in_range_filters(self, store):
        visitor = store.insert_visitor({"site_id": 1})
        when = datetime(2026, 3, 5, 12, tzinfo=timezone.utc)
        for name, category, site_id in [("click", "engagement", 1), ("purchase", "ecommerce", 1), ("click", "engagement", 2)]:
            store.add_event(AnalyticsEvent(
                site_id=site_id, visitor_id=visitor.id, name=name, category=category, created_at=when,
            ))

        start = datetime(2026, 3, 1, tzinfo=timezone.utc)
        end = datetime(2026, 3, 31, tzinfo=timezone.utc)
        assert len(store.events_in_range(start, end)) == 3
        assert len(store.events_in_range(start, end, site_id=1)) == 2
        assert [e.name for e in store.events_in_range(start, end, site_id=1, category="ecommerce")] == ["purchase"]
        assert store.events_in_range(start, datetime(2026, 3, 2, tzinfo=timezone.utc)) == []

    def test_list_conversions_empty(self, store):
        assert store.list_conversions() == []
        assert store.conversion_exists(1) is False
