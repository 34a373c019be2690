"""Tracking facade - the request-time boundary of the analytics engine.

Every public ``track_*`` / session method here swallows failures: the
transaction is rolled back, the error logged, and a neutral value returned.
Nothing that goes wrong while tracking is visible to the site visitor.
"""
import logging
import re
from dataclasses import asdict
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from src.analytics_engine.config import Settings, get_settings
from src.analytics_engine.models import AnalyticsEvent, PageView, Visitor, WebSession
from src.analytics_engine.models.base import utcnow
from src.analytics_engine.schemas.context import SiteContext
from src.analytics_engine.schemas.tracking import (
    EventPayload,
    PageViewPayload,
    PageViewUpdatePayload,
    SessionPayload,
    VisitorSignals,
)
from src.analytics_engine.services.device_classifier import DeviceClassifier
from src.analytics_engine.services.event_categories import infer_category, missing_recommended_properties
from src.analytics_engine.services.goal_matcher import GoalMatcher
from src.analytics_engine.services.ip_anonymizer import IpAnonymizer
from src.analytics_engine.services.notifications import ConversionNotifier
from src.analytics_engine.services.session_manager import SessionManager
from src.analytics_engine.services.store import AnalyticsStore
from src.analytics_engine.services.task_queue import JOB_EVENT, JOB_PAGEVIEW, TaskQueue
from src.analytics_engine.services.visitor_resolver import VisitorResolver

logger = logging.getLogger(__name__)

OPT_OUT_HEADERS = ("dnt", "sec-gpc")


def limit_properties(properties: Optional[Mapping[str, Any]], max_keys: int, max_value_length: int) -> Dict[str, Any]:
    """Keep the first ``max_keys`` properties and truncate long string values."""
    if not properties:
        return {}

    limited: Dict[str, Any] = {}
    for key, value in properties.items():
        if len(limited) >= max_keys:
            logger.debug(f"Dropping event properties beyond the first {max_keys}")
            break
        if isinstance(value, str) and len(value) > max_value_length:
            value = value[:max_value_length]
        limited[key] = value
    return limited


def clamp_scroll_depth(value: int) -> int:
    return min(100, max(0, int(value)))


class TrackingService:
    def __init__(
        self,
        store: AnalyticsStore,
        settings: Optional[Settings] = None,
        notifier: Optional[ConversionNotifier] = None,
        queue: Optional[TaskQueue] = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.notifier = notifier or ConversionNotifier()
        self.queue = queue if self.settings.QUEUE_PROCESSING else None

        self.device_classifier = DeviceClassifier(self.settings.extra_bot_pattern_list)
        self.ip_anonymizer = IpAnonymizer(enabled=self.settings.ANONYMIZE_IP)
        self.visitors = VisitorResolver(
            store,
            device_classifier=self.device_classifier,
            ip_anonymizer=self.ip_anonymizer,
            min_signals=self.settings.FINGERPRINT_MIN_SIGNALS,
        )
        self.sessions = SessionManager(
            store,
            timeout_minutes=self.settings.SESSION_TIMEOUT_MINUTES,
            search_engines=self.settings.search_engine_list,
            social_networks=self.settings.social_network_list,
            on_expire=self._session_expired,
        )
        self.goals = GoalMatcher(
            store,
            notifier=self.notifier,
            allow_multiple_per_session=self.settings.ALLOW_MULTIPLE_CONVERSIONS_PER_SESSION,
        )

    # ── Privacy gate ─────────────────────────────────────────────────

    def can_track(self, signals: Optional[VisitorSignals] = None, headers: Optional[Mapping[str, str]] = None) -> bool:
        if not self.settings.ANALYTICS_ENABLED:
            return False

        if self.settings.RESPECT_DNT and headers:
            lowered = {k.lower(): v for k, v in headers.items()}
            if any(str(lowered.get(name, "")).strip() == "1" for name in OPT_OUT_HEADERS):
                return False

        signals = signals or VisitorSignals()

        if signals.ip_address and signals.ip_address in self.settings.excluded_ip_list:
            return False

        user_agent = signals.user_agent or ""
        for pattern in self.settings.excluded_user_agent_list:
            try:
                if re.search(pattern, user_agent):
                    return False
            except re.error as e:
                logger.warning(f"Ignoring invalid excluded user agent pattern {pattern!r}: {e}")

        if self.device_classifier.is_bot(user_agent):
            return False

        return True

    # ── Page views ───────────────────────────────────────────────────

    def track_page_view(
        self,
        payload: PageViewPayload,
        site: SiteContext,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Optional[PageView]:
        """Record a page view, or queue it. Returns the stored row when processed inline."""
        try:
            if not self.can_track(payload.signals, headers):
                return None

            if self.queue is not None:
                self.queue.enqueue(JOB_PAGEVIEW, {"site": asdict(site), "data": payload.model_dump(mode="json")})
                return None

            page_view = self.record_page_view(payload, site)
            self.store.commit()
            return page_view
        except Exception:
            self.store.rollback()
            logger.exception(f"Analytics tracking error (pageview) for path {payload.path}")
            return None

    def record_page_view(self, payload: PageViewPayload, site: SiteContext) -> PageView:
        visitor = self.visitors.resolve(payload.signals, site)

        session = None
        if payload.session_token:
            session = self.sessions.get_or_create(payload.session_token, visitor, site, source=payload)

        page_view = self.store.add_page_view(PageView(
            site_id=site.site_id,
            tenant_id=site.tenant_id,
            session_id=session.id if session is not None else None,
            visitor_id=visitor.id,
            path=payload.path,
            title=payload.title,
            referrer=payload.referrer,
            query_string=payload.query_string,
            load_time=payload.load_time,
            custom_data=payload.custom_data,
        ))

        if session is not None:
            self.sessions.record_page_view(session, payload.path, payload.title)

        self.visitors.increment_counter(visitor, "pageviews")
        self.goals.match_page_view(page_view, session, visitor, site)
        return page_view

    def update_page_view(self, payload: PageViewUpdatePayload, site: SiteContext) -> bool:
        """Engagement update for the latest view of a path in an active session."""
        try:
            session = self.sessions.find_active(payload.session_token, site)
            if session is None:
                return False

            page_view = self.store.latest_page_view(session.id, payload.path)
            if page_view is None:
                return False

            changed = False
            if payload.time_on_page is not None:
                page_view.time_on_page = int(payload.time_on_page)
                changed = True
            if payload.engaged_time is not None:
                page_view.engaged_time = int(payload.engaged_time)
                changed = True
            if payload.scroll_depth is not None:
                page_view.scroll_depth = clamp_scroll_depth(payload.scroll_depth)
                changed = True

            if changed:
                self.store.commit()
            return changed
        except Exception:
            self.store.rollback()
            logger.exception(f"Analytics tracking error (update pageview) for session {payload.session_token}")
            return False

    # ── Events ───────────────────────────────────────────────────────

    def track_event(
        self,
        payload: EventPayload,
        site: SiteContext,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Optional[AnalyticsEvent]:
        try:
            if not self.can_track(payload.signals, headers):
                return None

            if self.queue is not None:
                self.queue.enqueue(JOB_EVENT, {"site": asdict(site), "data": payload.model_dump(mode="json")})
                return None

            event = self.record_event(payload, site)
            self.store.commit()
            return event
        except Exception:
            self.store.rollback()
            logger.exception(f"Analytics tracking error (event) for {payload.name}")
            return None

    def record_event(self, payload: EventPayload, site: SiteContext) -> AnalyticsEvent:
        session = None
        visitor: Optional[Visitor] = None

        if payload.session_token:
            session = self.sessions.find_active(payload.session_token, site)
            if session is not None:
                self.sessions.extend(payload.session_token, site)
                visitor = session.visitor

        if visitor is None:
            visitor = self._find_visitor(payload.signals, site)

        properties = limit_properties(
            payload.properties,
            self.settings.MAX_EVENT_PROPERTIES,
            self.settings.MAX_PROPERTY_VALUE_LENGTH,
        )
        missing_recommended_properties(payload.name, properties)

        event = self.store.add_event(AnalyticsEvent(
            site_id=site.site_id,
            tenant_id=site.tenant_id,
            session_id=session.id if session is not None else None,
            visitor_id=visitor.id if visitor is not None else None,
            page_view_id=payload.page_view_id,
            name=payload.name,
            category=payload.category or infer_category(payload.name),
            action=payload.action,
            label=payload.label,
            properties=properties,
            value=payload.value,
            source_package=payload.source_package,
            path=payload.path,
        ))

        if visitor is not None:
            self.visitors.increment_counter(visitor, "events")

        self.goals.match_event(event, session, visitor, site)
        return event

    def _find_visitor(self, signals: VisitorSignals, site: SiteContext) -> Optional[Visitor]:
        """Existing visitor for an event; events never create visitors."""
        if signals.visitor_id:
            visitor = self.visitors.resolve_by_id(signals.visitor_id, site)
            if visitor is not None:
                return visitor
        fingerprint = self.visitors.generate_fingerprint(signals)
        if fingerprint is None:
            return None
        return self.store.find_visitor_by_fingerprint(fingerprint, site.site_id)

    # ── Sessions ─────────────────────────────────────────────────────

    def start_session(
        self,
        payload: SessionPayload,
        site: SiteContext,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Optional[WebSession]:
        try:
            if not self.can_track(payload.signals, headers):
                return None

            visitor = self.visitors.resolve(payload.signals, site)
            session = self.sessions.create(payload, visitor, site)
            self.store.commit()
            return session
        except Exception:
            self.store.rollback()
            logger.exception(f"Analytics tracking error (start session) for token {payload.session_token}")
            return None

    def end_session(self, token: str, site: SiteContext, final_data: Optional[Dict[str, Any]] = None) -> bool:
        """Finalize the session and evaluate duration and pages-per-session goals."""
        try:
            if not self.sessions.end(token, site, final_data):
                return False

            session = self.sessions.find_by_token(token, site)
            if session is not None:
                self.goals.match_session(session, site)
            self.store.commit()
            return True
        except Exception:
            self.store.rollback()
            logger.exception(f"Analytics tracking error (end session) for token {token}")
            return False

    def extend_session(self, token: str, site: SiteContext) -> bool:
        try:
            extended = self.sessions.extend(token, site)
            if extended:
                self.store.commit()
            return extended
        except Exception:
            self.store.rollback()
            logger.exception(f"Analytics tracking error (extend session) for token {token}")
            return False

    def _session_expired(self, session: WebSession) -> None:
        self.goals.match_session(session, SiteContext(session.site_id, session.tenant_id))

    def sweep_expired_sessions(self, limit: int = 100) -> int:
        """Close timed-out sessions and run session goals on them."""
        finalized = 0
        for session in self.sessions.expired_sessions(limit=limit):
            try:
                self.sessions.finalize(session, ended_at=session.last_activity_at)
                self._session_expired(session)
                self.store.commit()
                finalized += 1
            except Exception:
                self.store.rollback()
                logger.exception(f"Failed to finalize expired session {session.id}")
        return finalized

    # ── Batches ──────────────────────────────────────────────────────

    def process_batch(
        self,
        items: List[Dict[str, Any]],
        site: SiteContext,
        signals: Optional[VisitorSignals] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> int:
        """Track ``{"type": "pageview"|"event", "data": {...}}`` items; returns how many were accepted.

        Request level ``signals`` apply to items that carry none of their own.
        """
        accepted = 0
        for item in items:
            item_type = item.get("type", "") if isinstance(item, Mapping) else ""
            data = dict(item.get("data") or {}) if isinstance(item, Mapping) else {}
            if signals is not None and "signals" not in data:
                data["signals"] = signals.model_dump()

            try:
                if item_type == JOB_PAGEVIEW:
                    result = self.track_page_view(PageViewPayload.model_validate(data), site, headers)
                elif item_type == JOB_EVENT:
                    result = self.track_event(EventPayload.model_validate(data), site, headers)
                else:
                    logger.warning(f"Skipping batch item with unknown type {item_type!r}")
                    continue
            except ValidationError as e:
                logger.warning(f"Skipping invalid {item_type} batch item: {e.error_count()} errors")
                continue

            if result is not None or self.queue is not None:
                accepted += 1
        return accepted

    # ── Real-time ────────────────────────────────────────────────────

    def count_active_visitors(self, site: SiteContext, window_minutes: Optional[int] = None) -> int:
        """Distinct visitors with an open session active inside the window. Never cached."""
        minutes = self.settings.REALTIME_WINDOW_MINUTES if window_minutes is None else window_minutes
        return self.store.count_active_visitors(site.site_id, utcnow() - timedelta(minutes=minutes))
