"""Visitor data erasure, anonymization and retention cleanup"""
import logging
import secrets
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional

from src.analytics_engine.models import DeviceType, Visitor
from src.analytics_engine.models.base import utcnow
from src.analytics_engine.schemas.context import SiteContext
from src.analytics_engine.services.store import AnalyticsStore

logger = logging.getLogger(__name__)

ANONYMOUS_PREFIX = "anonymous_"

ANONYMIZED_VISITOR_FIELDS = (
    "ip_address",
    "user_agent",
    "country",
    "region",
    "city",
    "browser",
    "browser_version",
    "os",
    "os_version",
    "screen_width",
    "screen_height",
    "language",
    "timezone",
)

SUMMARY_KEYS = {
    "sessions": "session_count",
    "page_views": "page_view_count",
    "events": "event_count",
    "conversions": "conversion_count",
}


def short_fingerprint(fingerprint: str) -> str:
    return f"{fingerprint[:8]}..."


class DataDeletionService:
    """Right-to-erasure operations keyed by fingerprint.

    Without a site the operations cover the fingerprint on every site.
    """

    def __init__(self, store: AnalyticsStore):
        self.store = store

    def _visitors(self, fingerprint: str, site: Optional[SiteContext]) -> List[Visitor]:
        return self.store.visitors_by_fingerprint(fingerprint, site.site_id if site is not None else None)

    def has_visitor_data(self, fingerprint: str, site: Optional[SiteContext] = None) -> bool:
        return bool(self._visitors(fingerprint, site))

    def data_summary(self, fingerprint: str, site: Optional[SiteContext] = None) -> Dict[str, Any]:
        visitors = self._visitors(fingerprint, site)
        if not visitors:
            return {"exists": False}

        summary: Dict[str, Any] = {
            "exists": True,
            "first_seen": min(v.first_seen_at for v in visitors).isoformat(),
            "last_seen": max(v.last_seen_at for v in visitors).isoformat(),
        }
        summary.update({key: 0 for key in SUMMARY_KEYS.values()})
        for visitor in visitors:
            for kind, count in self.store.visitor_data_counts(visitor.id).items():
                summary[SUMMARY_KEYS[kind]] += count
        return summary

    def delete_visitor_data(self, fingerprint: str, site: Optional[SiteContext] = None) -> Dict[str, Any]:
        """Delete the visitor with all sessions, page views, events and conversions in one transaction."""
        try:
            visitors = self._visitors(fingerprint, site)
            if not visitors:
                return {"success": False, "error": "Visitor not found."}

            deleted: Dict[str, int] = {}
            for visitor in visitors:
                for kind, count in self.store.delete_visitor_data(visitor.id).items():
                    deleted[kind] = deleted.get(kind, 0) + count
            self.store.commit()
        except Exception:
            self.store.rollback()
            logger.exception(f"Failed to delete data for visitor {short_fingerprint(fingerprint)}")
            return {"success": False, "error": "Failed to delete visitor data."}

        logger.info(f"Deleted data for visitor {short_fingerprint(fingerprint)}: {deleted}")
        return {"success": True, "deleted": deleted, "deleted_at": utcnow().isoformat()}

    def anonymize_visitor_data(self, fingerprint: str, site: Optional[SiteContext] = None) -> Dict[str, Any]:
        """Keep the rows for aggregate reports but drop everything that identifies the visitor."""
        try:
            visitors = self._visitors(fingerprint, site)
            if not visitors:
                return {"success": False, "error": "Visitor not found."}

            sessions = 0
            for visitor in visitors:
                visitor.fingerprint = f"{ANONYMOUS_PREFIX}{secrets.token_hex(16)}"
                for field in ANONYMIZED_VISITOR_FIELDS:
                    setattr(visitor, field, None)
                visitor.device_type = DeviceType.OTHER.value
                sessions += self.store.clear_session_attribution(visitor.id)
            self.store.commit()
        except Exception:
            self.store.rollback()
            logger.exception(f"Failed to anonymize data for visitor {short_fingerprint(fingerprint)}")
            return {"success": False, "error": "Failed to anonymize visitor data."}

        logger.info(f"Anonymized visitor {short_fingerprint(fingerprint)} and {sessions} sessions")
        return {
            "success": True,
            "anonymized": {"visitors": len(visitors), "sessions_anonymized": sessions},
            "anonymized_at": utcnow().isoformat(),
        }

    def delete_multiple_visitors(self, fingerprints: Iterable[str], site: Optional[SiteContext] = None) -> Dict[str, Any]:
        details = {fingerprint: self.delete_visitor_data(fingerprint, site) for fingerprint in fingerprints}
        successful = sum(1 for result in details.values() if result["success"])
        return {
            "total": len(details),
            "successful": successful,
            "failed": len(details) - successful,
            "details": details,
        }

    # ── Retention ────────────────────────────────────────────────────

    def cleanup_old_data(self, retention_days: int, site: Optional[SiteContext] = None) -> Dict[str, int]:
        """Delete tracking data older than ``retention_days``; 0 disables cleanup."""
        if retention_days <= 0:
            logger.info("Data retention is disabled - nothing to clean up")
            return {}

        cutoff = utcnow() - timedelta(days=retention_days)
        deleted = self.store.delete_older_than(
            cutoff,
            site_id=site.site_id if site is not None else None,
            tenant_id=site.tenant_id if site is not None else None,
        )
        self.store.commit()

        for kind, count in deleted.items():
            logger.info(f"Deleted {count} {kind} older than {cutoff:%Y-%m-%d}")
        return deleted
