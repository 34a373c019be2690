"""Visitor identity resolution - explicit id, then fingerprint, then create"""
import hashlib
import json
import logging
from typing import Any, Dict, Optional

from src.analytics_engine.exceptions import TrackingError
from src.analytics_engine.models import Visitor
from src.analytics_engine.models.base import utcnow
from src.analytics_engine.schemas.context import SiteContext
from src.analytics_engine.schemas.tracking import VisitorSignals
from src.analytics_engine.services.device_classifier import DeviceClassifier
from src.analytics_engine.services.ip_anonymizer import IpAnonymizer
from src.analytics_engine.services.store import AnalyticsStore

logger = logging.getLogger(__name__)

FINGERPRINT_LENGTH = 16


def generate_fingerprint(signals: VisitorSignals, min_signals: int = 1) -> Optional[str]:
    """Stable hash of the coarse client signals, or None when too few are present.

    Only user agent, screen resolution, timezone and language are used; no
    canvas or WebGL style probing.
    """
    data = signals.fingerprint_data()
    if not data or len(data) < min_signals:
        return None

    payload = json.dumps(dict(sorted(data.items())), ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


class VisitorResolver:
    def __init__(
        self,
        store: AnalyticsStore,
        device_classifier: Optional[DeviceClassifier] = None,
        ip_anonymizer: Optional[IpAnonymizer] = None,
        min_signals: int = 1,
    ):
        self.store = store
        self.device_classifier = device_classifier or DeviceClassifier()
        self.ip_anonymizer = ip_anonymizer or IpAnonymizer()
        self.min_signals = min_signals

    def generate_fingerprint(self, signals: VisitorSignals) -> Optional[str]:
        return generate_fingerprint(signals, self.min_signals)

    def resolve(self, signals: VisitorSignals, site: SiteContext) -> Visitor:
        fingerprint = self.generate_fingerprint(signals)
        visitor = self._find_existing(signals, fingerprint, site)
        if visitor is not None:
            return self._update_visitor(visitor, signals)

        visitor = self.store.insert_visitor(self._new_visitor_values(signals, fingerprint, site))
        if visitor is not None:
            logger.debug(f"Created visitor {visitor.id} for site {site.site_id}")
            return visitor

        # Another request created the same fingerprint first
        winner = self.store.find_visitor_by_fingerprint(fingerprint, site.site_id)
        if winner is None:
            raise TrackingError(f"Visitor insert for fingerprint {fingerprint} was ignored but no row exists")
        logger.debug(f"Reusing visitor {winner.id} after concurrent create on site {site.site_id}")
        return self._update_visitor(winner, signals)

    def resolve_by_id(self, visitor_id: str, site: SiteContext) -> Optional[Visitor]:
        if not visitor_id:
            return None
        return self.store.get_visitor(visitor_id, site.site_id)

    def increment_counter(self, visitor: Visitor, kind: str, amount: int = 1) -> None:
        self.store.increment_visitor_counter(visitor.id, kind, amount)

    def _find_existing(
        self,
        signals: VisitorSignals,
        fingerprint: Optional[str],
        site: SiteContext,
    ) -> Optional[Visitor]:
        if signals.visitor_id:
            visitor = self.resolve_by_id(signals.visitor_id, site)
            if visitor is not None:
                return visitor

        if fingerprint is not None:
            return self.store.find_visitor_by_fingerprint(fingerprint, site.site_id)

        return None

    def _new_visitor_values(
        self,
        signals: VisitorSignals,
        fingerprint: Optional[str],
        site: SiteContext,
    ) -> Dict[str, Any]:
        device = self.device_classifier.classify(signals.user_agent)
        screen_width, screen_height = signals.screen_size()
        now = utcnow()
        return {
            "site_id": site.site_id,
            "tenant_id": site.tenant_id,
            "fingerprint": fingerprint,
            "first_seen_at": now,
            "last_seen_at": now,
            "ip_address": self.ip_anonymizer.anonymize(signals.ip_address),
            "user_agent": signals.user_agent,
            "country": signals.country,
            "region": signals.region,
            "city": signals.city,
            "device_type": device.device_type,
            "browser": device.browser,
            "browser_version": device.browser_version,
            "os": device.os,
            "os_version": device.os_version,
            "screen_width": screen_width,
            "screen_height": screen_height,
            "language": signals.language,
            "timezone": signals.timezone,
            "created_at": now,
            "updated_at": now,
        }

    def _update_visitor(self, visitor: Visitor, signals: VisitorSignals) -> Visitor:
        visitor.last_seen_at = utcnow()

        if signals.ip_address:
            visitor.ip_address = self.ip_anonymizer.anonymize(signals.ip_address)

        if signals.user_agent and signals.user_agent != visitor.user_agent:
            device = self.device_classifier.classify(signals.user_agent)
            visitor.user_agent = signals.user_agent
            visitor.device_type = device.device_type
            visitor.browser = device.browser
            visitor.browser_version = device.browser_version
            visitor.os = device.os
            visitor.os_version = device.os_version

        if signals.language:
            visitor.language = signals.language
        if signals.timezone:
            visitor.timezone = signals.timezone

        screen_width, screen_height = signals.screen_size()
        if screen_width is not None:
            visitor.screen_width = screen_width
            visitor.screen_height = screen_height

        # Geo fields only fill gaps
        if signals.country and not visitor.country:
            visitor.country = signals.country
        if signals.region and not visitor.region:
            visitor.region = signals.region
        if signals.city and not visitor.city:
            visitor.city = signals.city

        self.store.flush()
        return visitor
