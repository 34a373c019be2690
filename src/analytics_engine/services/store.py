"""AnalyticsStore protocol and its SQLAlchemy implementation.

The engine services only talk to the protocol. Uniqueness races are settled
here with insert-or-ignore: the losing writer gets ``None`` back and re-reads
the row that won.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, runtime_checkable

from sqlalchemy import and_, delete, func, insert, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.analytics_engine.models import (
    AnalyticsEvent,
    Conversion,
    Goal,
    GoalType,
    PageView,
    Visitor,
    WebSession,
)
from src.analytics_engine.models.base import new_uuid
from src.analytics_engine.schemas.context import SiteContext

logger = logging.getLogger(__name__)

VISITOR_COUNTERS = {
    "sessions": "total_sessions",
    "pageviews": "total_pageviews",
    "events": "total_events",
}

SESSION_ATTRIBUTION_COLUMNS = (
    "referrer",
    "referrer_domain",
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
)


def _not_referenced(column, *references) -> List[Any]:
    return [column.not_in(select(ref).where(ref.is_not(None))) for ref in references]


@runtime_checkable
class AnalyticsStore(Protocol):
    """Persistence operations the tracking engine needs."""

    # visitors
    def get_visitor(self, visitor_id: str, site_id: int) -> Optional[Visitor]: ...
    def find_visitor_by_fingerprint(self, fingerprint: str, site_id: int) -> Optional[Visitor]: ...
    def insert_visitor(self, values: Dict[str, Any]) -> Optional[Visitor]: ...
    def increment_visitor_counter(self, visitor_id: str, kind: str, amount: int = 1) -> None: ...

    # sessions and page views
    def get_session(self, session_id: str) -> Optional[WebSession]: ...
    def find_session_by_token(self, token: str, site_id: int) -> Optional[WebSession]: ...
    def find_open_session(self, token: str, site_id: int) -> Optional[WebSession]: ...
    def insert_session(self, values: Dict[str, Any]) -> Optional[WebSession]: ...
    def expired_sessions(self, cutoff: datetime, site_id: Optional[int] = None, limit: int = 100) -> List[WebSession]: ...
    def add_page_view(self, page_view: PageView) -> PageView: ...
    def count_page_views(self, session_id: str) -> int: ...
    def latest_page_view(self, session_id: str, path: str) -> Optional[PageView]: ...
    def add_event(self, event: AnalyticsEvent) -> AnalyticsEvent: ...

    # goals and conversions
    def active_goals(self, types: Iterable[GoalType], site: SiteContext) -> List[Goal]: ...
    def get_goal(self, goal_id: int) -> Optional[Goal]: ...
    def find_goal_by_name(self, name: str, site_id: Optional[int] = None) -> Optional[Goal]: ...
    def add_goal(self, goal: Goal) -> Goal: ...
    def set_goal_active(self, goal_id: int, active: bool) -> bool: ...
    def conversion_exists(self, goal_id: int, session_id: Optional[str] = None, visitor_id: Optional[str] = None) -> bool: ...
    def insert_conversion(self, values: Dict[str, Any]) -> Optional[Conversion]: ...
    def list_conversions(self, goal_id: Optional[int] = None, site_id: Optional[int] = None) -> List[Conversion]: ...

    # reporting
    def events_in_range(
        self,
        start: datetime,
        end: datetime,
        site_id: Optional[int] = None,
        name: Optional[str] = None,
        category: Optional[str] = None,
    ) -> List[AnalyticsEvent]: ...
    def page_views_in_range(self, start: datetime, end: datetime, site_id: Optional[int] = None) -> List[PageView]: ...
    def count_active_visitors(self, site_id: int, since: datetime) -> int: ...

    # retention and erasure
    def delete_older_than(
        self,
        cutoff: datetime,
        site_id: Optional[int] = None,
        tenant_id: Optional[str] = None,
    ) -> Dict[str, int]: ...
    def visitors_by_fingerprint(self, fingerprint: str, site_id: Optional[int] = None) -> List[Visitor]: ...
    def visitor_data_counts(self, visitor_id: str) -> Dict[str, int]: ...
    def delete_visitor_data(self, visitor_id: str) -> Dict[str, int]: ...
    def clear_session_attribution(self, visitor_id: str) -> int: ...

    # unit of work
    def flush(self) -> None: ...
    def commit(self) -> None: ...
    def rollback(self) -> None: ...


class SqlAlchemyStore:
    """AnalyticsStore backed by a SQLAlchemy session."""

    def __init__(self, db: Session, multi_tenant: bool = False):
        self.db = db
        self.multi_tenant = multi_tenant

    # ── Insert-or-ignore ─────────────────────────────────────────────

    def _insert_or_ignore(self, model, values: Dict[str, Any], conflict_columns: Sequence[str]) -> bool:
        """Insert one row, returning False when a unique constraint already holds it."""
        table = model.__table__
        dialect = self.db.get_bind().dialect.name

        if dialect == "sqlite":
            stmt = sqlite.insert(table).values(**values).on_conflict_do_nothing(index_elements=list(conflict_columns))
        elif dialect == "postgresql":
            stmt = postgresql.insert(table).values(**values).on_conflict_do_nothing(index_elements=list(conflict_columns))
        else:
            try:
                with self.db.begin_nested():
                    self.db.execute(insert(table).values(**values))
                return True
            except IntegrityError:
                logger.debug(f"Insert into {table.name} lost a uniqueness race on {list(conflict_columns)}")
                return False

        result = self.db.execute(stmt)
        if result.rowcount == 0:
            logger.debug(f"Insert into {table.name} lost a uniqueness race on {list(conflict_columns)}")
            return False
        return True

    # ── Visitors ─────────────────────────────────────────────────────

    def get_visitor(self, visitor_id: str, site_id: int) -> Optional[Visitor]:
        stmt = select(Visitor).where(and_(Visitor.id == visitor_id, Visitor.site_id == site_id))
        return self.db.execute(stmt).scalar_one_or_none()

    def find_visitor_by_fingerprint(self, fingerprint: str, site_id: int) -> Optional[Visitor]:
        stmt = select(Visitor).where(and_(Visitor.fingerprint == fingerprint, Visitor.site_id == site_id))
        return self.db.execute(stmt).scalar_one_or_none()

    def insert_visitor(self, values: Dict[str, Any]) -> Optional[Visitor]:
        values = dict(values)
        values.setdefault("id", new_uuid())
        self.db.flush()
        if not self._insert_or_ignore(Visitor, values, ("site_id", "fingerprint")):
            return None
        return self.db.get(Visitor, values["id"])

    def increment_visitor_counter(self, visitor_id: str, kind: str, amount: int = 1) -> None:
        column_name = VISITOR_COUNTERS.get(kind)
        if column_name is None:
            raise ValueError(f"Unknown visitor counter: {kind}")
        column = getattr(Visitor, column_name)
        self.db.execute(
            update(Visitor)
            .where(Visitor.id == visitor_id)
            .values({column_name: column + amount})
        )

    # ── Sessions and page views ──────────────────────────────────────

    def get_session(self, session_id: str) -> Optional[WebSession]:
        return self.db.get(WebSession, session_id)

    def find_session_by_token(self, token: str, site_id: int) -> Optional[WebSession]:
        """Most recent session carrying the token, open or not."""
        stmt = select(WebSession).where(
            and_(WebSession.session_token == token, WebSession.site_id == site_id)
        ).order_by(WebSession.started_at.desc()).limit(1)
        return self.db.execute(stmt).scalars().first()

    def find_open_session(self, token: str, site_id: int) -> Optional[WebSession]:
        stmt = select(WebSession).where(
            and_(WebSession.active_token == token, WebSession.site_id == site_id)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def insert_session(self, values: Dict[str, Any]) -> Optional[WebSession]:
        values = dict(values)
        values.setdefault("id", new_uuid())
        values.setdefault("active_token", values.get("session_token"))
        self.db.flush()
        if not self._insert_or_ignore(WebSession, values, ("site_id", "active_token")):
            return None
        return self.db.get(WebSession, values["id"])

    def expired_sessions(self, cutoff: datetime, site_id: Optional[int] = None, limit: int = 100) -> List[WebSession]:
        conditions = [WebSession.ended_at.is_(None), WebSession.last_activity_at < cutoff]
        if site_id is not None:
            conditions.append(WebSession.site_id == site_id)
        stmt = select(WebSession).where(and_(*conditions)).order_by(WebSession.last_activity_at).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def add_page_view(self, page_view: PageView) -> PageView:
        self.db.add(page_view)
        self.db.flush()
        return page_view

    def count_page_views(self, session_id: str) -> int:
        stmt = select(func.count(PageView.id)).where(PageView.session_id == session_id)
        return self.db.execute(stmt).scalar() or 0

    def latest_page_view(self, session_id: str, path: str) -> Optional[PageView]:
        stmt = select(PageView).where(
            and_(PageView.session_id == session_id, PageView.path == path)
        ).order_by(PageView.created_at.desc(), PageView.id.desc()).limit(1)
        return self.db.execute(stmt).scalars().first()

    def add_event(self, event: AnalyticsEvent) -> AnalyticsEvent:
        self.db.add(event)
        self.db.flush()
        return event

    # ── Goals ────────────────────────────────────────────────────────

    def active_goals(self, types: Iterable[GoalType], site: SiteContext) -> List[Goal]:
        """Active goals of the given types for the site, plus goals that apply to every site."""
        type_values = [GoalType(t).value for t in types]
        conditions = [
            Goal.is_active.is_(True),
            Goal.type.in_(type_values),
            or_(Goal.site_id == site.site_id, Goal.site_id.is_(None)),
        ]
        if self.multi_tenant and site.tenant_id is not None:
            conditions.append(or_(Goal.tenant_id == site.tenant_id, Goal.tenant_id.is_(None)))
        stmt = select(Goal).where(and_(*conditions)).order_by(Goal.id)
        return list(self.db.execute(stmt).scalars().all())

    def get_goal(self, goal_id: int) -> Optional[Goal]:
        return self.db.get(Goal, goal_id)

    def find_goal_by_name(self, name: str, site_id: Optional[int] = None) -> Optional[Goal]:
        stmt = select(Goal).where(Goal.name == name)
        if site_id is not None:
            stmt = stmt.where(or_(Goal.site_id == site_id, Goal.site_id.is_(None)))
        return self.db.execute(stmt.order_by(Goal.id).limit(1)).scalars().first()

    def add_goal(self, goal: Goal) -> Goal:
        self.db.add(goal)
        self.db.flush()
        return goal

    def set_goal_active(self, goal_id: int, active: bool) -> bool:
        goal = self.get_goal(goal_id)
        if goal is None:
            return False
        goal.is_active = active
        self.db.flush()
        return True

    # ── Conversions ──────────────────────────────────────────────────

    def conversion_exists(self, goal_id: int, session_id: Optional[str] = None, visitor_id: Optional[str] = None) -> bool:
        if session_id is not None:
            condition = Conversion.session_id == session_id
        elif visitor_id is not None:
            condition = Conversion.visitor_id == visitor_id
        else:
            return False
        stmt = select(Conversion.id).where(and_(Conversion.goal_id == goal_id, condition)).limit(1)
        return self.db.execute(stmt).first() is not None

    def insert_conversion(self, values: Dict[str, Any]) -> Optional[Conversion]:
        self.db.flush()
        if not self._insert_or_ignore(Conversion, values, ("goal_id", "dedupe_key")):
            return None
        stmt = select(Conversion).where(
            and_(Conversion.goal_id == values["goal_id"], Conversion.dedupe_key == values["dedupe_key"])
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_conversions(self, goal_id: Optional[int] = None, site_id: Optional[int] = None) -> List[Conversion]:
        stmt = select(Conversion)
        if goal_id is not None:
            stmt = stmt.where(Conversion.goal_id == goal_id)
        if site_id is not None:
            stmt = stmt.where(Conversion.site_id == site_id)
        return list(self.db.execute(stmt.order_by(Conversion.id)).scalars().all())

    # ── Reporting ────────────────────────────────────────────────────

    def events_in_range(
        self,
        start: datetime,
        end: datetime,
        site_id: Optional[int] = None,
        name: Optional[str] = None,
        category: Optional[str] = None,
    ) -> List[AnalyticsEvent]:
        conditions = [AnalyticsEvent.created_at >= start, AnalyticsEvent.created_at <= end]
        if site_id is not None:
            conditions.append(AnalyticsEvent.site_id == site_id)
        if name is not None:
            conditions.append(AnalyticsEvent.name == name)
        if category is not None:
            conditions.append(AnalyticsEvent.category == category)
        stmt = select(AnalyticsEvent).where(and_(*conditions)).order_by(AnalyticsEvent.created_at)
        return list(self.db.execute(stmt).scalars().all())

    def page_views_in_range(self, start: datetime, end: datetime, site_id: Optional[int] = None) -> List[PageView]:
        conditions = [PageView.created_at >= start, PageView.created_at <= end]
        if site_id is not None:
            conditions.append(PageView.site_id == site_id)
        stmt = select(PageView).where(and_(*conditions)).order_by(PageView.created_at)
        return list(self.db.execute(stmt).scalars().all())

    def count_active_visitors(self, site_id: int, since: datetime) -> int:
        stmt = select(func.count(func.distinct(WebSession.visitor_id))).where(
            and_(
                WebSession.site_id == site_id,
                WebSession.ended_at.is_(None),
                WebSession.last_activity_at >= since,
            )
        )
        return self.db.execute(stmt).scalar() or 0

    # ── Retention and erasure ────────────────────────────────────────

    def _delete(self, model, *conditions) -> int:
        stmt = delete(model).where(and_(*conditions)).execution_options(synchronize_session=False)
        return self.db.execute(stmt).rowcount or 0

    def delete_older_than(
        self,
        cutoff: datetime,
        site_id: Optional[int] = None,
        tenant_id: Optional[str] = None,
    ) -> Dict[str, int]:
        """Delete tracking rows older than ``cutoff``, children first.

        Rows still referenced by newer rows are kept until those age out too.
        Visitors go only once nothing points at them anymore.
        """
        def scope(model) -> List[Any]:
            conditions = []
            if site_id is not None:
                conditions.append(model.site_id == site_id)
            if tenant_id is not None:
                conditions.append(model.tenant_id == tenant_id)
            return conditions

        deleted = {}
        deleted["conversions"] = self._delete(Conversion, Conversion.created_at < cutoff, *scope(Conversion))
        deleted["events"] = self._delete(
            AnalyticsEvent,
            AnalyticsEvent.created_at < cutoff,
            *_not_referenced(AnalyticsEvent.id, Conversion.event_id),
            *scope(AnalyticsEvent),
        )
        deleted["page_views"] = self._delete(
            PageView,
            PageView.created_at < cutoff,
            *_not_referenced(PageView.id, AnalyticsEvent.page_view_id, Conversion.page_view_id),
            *scope(PageView),
        )
        deleted["sessions"] = self._delete(
            WebSession,
            WebSession.started_at < cutoff,
            *_not_referenced(WebSession.id, PageView.session_id, AnalyticsEvent.session_id, Conversion.session_id),
            *scope(WebSession),
        )
        deleted["visitors"] = self._delete(
            Visitor,
            Visitor.last_seen_at < cutoff,
            *_not_referenced(
                Visitor.id,
                WebSession.visitor_id,
                PageView.visitor_id,
                AnalyticsEvent.visitor_id,
                Conversion.visitor_id,
            ),
            *scope(Visitor),
        )
        return deleted

    def visitors_by_fingerprint(self, fingerprint: str, site_id: Optional[int] = None) -> List[Visitor]:
        conditions = [Visitor.fingerprint == fingerprint]
        if site_id is not None:
            conditions.append(Visitor.site_id == site_id)
        stmt = select(Visitor).where(and_(*conditions)).order_by(Visitor.first_seen_at)
        return list(self.db.execute(stmt).scalars().all())

    def visitor_data_counts(self, visitor_id: str) -> Dict[str, int]:
        def count(model) -> int:
            stmt = select(func.count()).select_from(model).where(model.visitor_id == visitor_id)
            return self.db.execute(stmt).scalar() or 0

        return {
            "sessions": count(WebSession),
            "page_views": count(PageView),
            "events": count(AnalyticsEvent),
            "conversions": count(Conversion),
        }

    def delete_visitor_data(self, visitor_id: str) -> Dict[str, int]:
        """Delete a visitor and everything recorded for it or inside its sessions."""
        session_ids = select(WebSession.id).where(WebSession.visitor_id == visitor_id)
        self.db.flush()

        deleted = {}
        deleted["conversions"] = self._delete(
            Conversion, or_(Conversion.visitor_id == visitor_id, Conversion.session_id.in_(session_ids))
        )
        deleted["events"] = self._delete(
            AnalyticsEvent, or_(AnalyticsEvent.visitor_id == visitor_id, AnalyticsEvent.session_id.in_(session_ids))
        )
        deleted["page_views"] = self._delete(
            PageView, or_(PageView.visitor_id == visitor_id, PageView.session_id.in_(session_ids))
        )
        deleted["sessions"] = self._delete(WebSession, WebSession.visitor_id == visitor_id)
        deleted["visitors"] = self._delete(Visitor, Visitor.id == visitor_id)
        return deleted

    def clear_session_attribution(self, visitor_id: str) -> int:
        """Null referrer and UTM fields on every session of the visitor."""
        result = self.db.execute(
            update(WebSession)
            .where(WebSession.visitor_id == visitor_id)
            .values({column: None for column in SESSION_ATTRIBUTION_COLUMNS})
        )
        return result.rowcount or 0

    # ── Unit of work ─────────────────────────────────────────────────

    def flush(self) -> None:
        self.db.flush()

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
