"""Session lifecycle - creation, heartbeat, page counting and finalization"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

from src.analytics_engine.config import DEFAULT_SEARCH_ENGINES, DEFAULT_SOCIAL_NETWORKS
from src.analytics_engine.exceptions import TrackingError
from src.analytics_engine.models import ReferrerType, Visitor, WebSession
from src.analytics_engine.models.base import utcnow
from src.analytics_engine.schemas.context import SiteContext
from src.analytics_engine.schemas.tracking import SessionPayload, UtmParams
from src.analytics_engine.services.store import AnalyticsStore

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MINUTES = 30

PAID_MEDIUMS = ("cpc", "ppc", "paid")
MEDIUM_KEYWORDS = [
    (ReferrerType.SOCIAL, ("social",)),
    (ReferrerType.EMAIL, ("email",)),
    (ReferrerType.ORGANIC, ("organic",)),
]


def referrer_domain(referrer: Optional[str]) -> Optional[str]:
    if not referrer:
        return None
    try:
        host = urlparse(referrer).hostname
    except ValueError:
        return None
    return host or None


def classify_referrer(
    referrer: Optional[str],
    utm_medium: Optional[str] = None,
    search_engines: Optional[List[str]] = None,
    social_networks: Optional[List[str]] = None,
) -> ReferrerType:
    """UTM medium wins over the referrer host; no referrer at all is direct."""
    if search_engines is None:
        search_engines = DEFAULT_SEARCH_ENGINES.split(",")
    if social_networks is None:
        social_networks = DEFAULT_SOCIAL_NETWORKS.split(",")

    if utm_medium:
        medium = utm_medium.lower()
        if any(keyword in medium for keyword in PAID_MEDIUMS):
            return ReferrerType.PAID
        for referrer_type, keywords in MEDIUM_KEYWORDS:
            if any(keyword in medium for keyword in keywords):
                return referrer_type

    if not referrer:
        return ReferrerType.DIRECT

    host = (referrer_domain(referrer) or "").lower()

    if any(engine in host for engine in search_engines):
        return ReferrerType.ORGANIC

    if any(network in host for network in social_networks):
        return ReferrerType.SOCIAL

    return ReferrerType.REFERRAL


class SessionManager:
    def __init__(
        self,
        store: AnalyticsStore,
        timeout_minutes: int = DEFAULT_TIMEOUT_MINUTES,
        search_engines: Optional[List[str]] = None,
        social_networks: Optional[List[str]] = None,
        on_expire: Optional[Callable[[WebSession], None]] = None,
    ):
        self.store = store
        self.timeout_minutes = timeout_minutes
        self.search_engines = search_engines
        self.social_networks = social_networks
        # called with each session closed because its token came back after the timeout
        self.on_expire = on_expire

    def classify_referrer(self, referrer: Optional[str], utm_medium: Optional[str] = None) -> ReferrerType:
        return classify_referrer(referrer, utm_medium, self.search_engines, self.social_networks)

    # ── Lookup ───────────────────────────────────────────────────────

    def find_by_token(self, token: str, site: SiteContext) -> Optional[WebSession]:
        return self.store.find_session_by_token(token, site.site_id)

    def find_active(self, token: str, site: SiteContext) -> Optional[WebSession]:
        session = self.store.find_open_session(token, site.site_id)
        if session is None or self.is_expired(session):
            return None
        return session

    def is_expired(self, session: WebSession, now: Optional[datetime] = None) -> bool:
        if session.ended_at is not None or session.last_activity_at is None:
            return True
        now = now or utcnow()
        return session.last_activity_at < now - timedelta(minutes=self.timeout_minutes)

    def expired_sessions(self, site: Optional[SiteContext] = None, limit: int = 100) -> List[WebSession]:
        cutoff = utcnow() - timedelta(minutes=self.timeout_minutes)
        site_id = site.site_id if site is not None else None
        return self.store.expired_sessions(cutoff, site_id=site_id, limit=limit)

    # ── Creation ─────────────────────────────────────────────────────

    def get_or_create(
        self,
        token: str,
        visitor: Visitor,
        site: SiteContext,
        source: Optional[UtmParams] = None,
    ) -> WebSession:
        """Active session for the token, touched; otherwise a fresh one.

        ``source`` carries the referrer and UTM fields of the request that
        opened the session.
        """
        session = self.find_active(token, site)
        if session is not None:
            session.last_activity_at = utcnow()
            self.store.flush()
            return session

        return self._open(token, visitor, site, source, entry_path=None)

    def create(self, data: SessionPayload, visitor: Visitor, site: SiteContext) -> WebSession:
        active = self.find_active(data.session_token, site)
        if active is not None:
            return active
        return self._open(data.session_token, visitor, site, data, entry_path=data.entry_path)

    def _open(
        self,
        token: str,
        visitor: Visitor,
        site: SiteContext,
        source: Optional[UtmParams],
        entry_path: Optional[str],
    ) -> WebSession:
        stale = self.store.find_open_session(token, site.site_id)
        if stale is not None:
            logger.info(f"Session {stale.id} timed out, starting a new one for token {token}")
            self.finalize(stale, ended_at=stale.last_activity_at)
            if self.on_expire is not None:
                self.on_expire(stale)

        referrer = getattr(source, "referrer", None)
        utm_medium = source.utm_medium if source is not None else None
        now = utcnow()
        values: Dict[str, Any] = {
            "site_id": site.site_id,
            "tenant_id": site.tenant_id or visitor.tenant_id,
            "visitor_id": visitor.id,
            "session_token": token,
            "active_token": token,
            "started_at": now,
            "last_activity_at": now,
            "duration": 0,
            "entry_page": entry_path or "/",
            "page_count": 0,
            "is_bounce": True,
            "referrer": referrer,
            "referrer_domain": referrer_domain(referrer),
            "referrer_type": self.classify_referrer(referrer, utm_medium).value,
        }
        if source is not None:
            values.update({
                "utm_source": source.utm_source,
                "utm_medium": source.utm_medium,
                "utm_campaign": source.utm_campaign,
                "utm_term": source.utm_term,
                "utm_content": source.utm_content,
            })

        session = self.store.insert_session(values)
        if session is None:
            winner = self.store.find_open_session(token, site.site_id)
            if winner is None:
                raise TrackingError(f"Session insert for token {token} was ignored but no open session exists")
            logger.debug(f"Reusing session {winner.id} after concurrent create")
            winner.last_activity_at = utcnow()
            self.store.flush()
            return winner

        self.store.increment_visitor_counter(visitor.id, "sessions")
        return session

    # ── Activity ─────────────────────────────────────────────────────

    def record_page_view(self, session: WebSession, path: str, title: Optional[str] = None) -> None:
        now = utcnow()
        session.page_count = (session.page_count or 0) + 1
        session.last_activity_at = now
        session.exit_page = path
        session.is_bounce = session.page_count <= 1
        session.duration = session.calculate_duration(now)

        if session.page_count == 1:
            session.entry_page = path
            if title is not None:
                session.landing_page_title = title

        self.store.flush()

    def extend(self, token: str, site: SiteContext) -> bool:
        session = self.find_active(token, site)
        if session is None:
            return False

        now = utcnow()
        session.last_activity_at = now
        session.duration = session.calculate_duration(now)
        self.store.flush()
        return True

    # ── Finalization ─────────────────────────────────────────────────

    def end(self, token: str, site: SiteContext, final_data: Optional[Dict[str, Any]] = None) -> bool:
        """Close the session for the token. Ending an already closed session is a no-op."""
        session = self.store.find_open_session(token, site.site_id) or self.find_by_token(token, site)
        if session is None:
            return False

        if session.ended_at is None:
            self.finalize(session, final_data)
        return True

    def finalize(
        self,
        session: WebSession,
        final_data: Optional[Dict[str, Any]] = None,
        ended_at: Optional[datetime] = None,
    ) -> WebSession:
        """Recompute metrics from persisted page views and close the session."""
        final_data = final_data or {}
        ended_at = ended_at or utcnow()

        page_count = self.store.count_page_views(session.id)
        session.page_count = page_count
        session.is_bounce = page_count <= 1
        session.duration = session.calculate_duration(ended_at)
        session.ended_at = ended_at
        session.exit_page = final_data.get("exit_page") or final_data.get("path") or session.exit_page
        session.active_token = None

        self.store.flush()
        return session
