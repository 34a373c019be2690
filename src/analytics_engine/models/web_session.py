"""WebSession model - one visit of a visitor, keyed by the client session token"""
import enum
from datetime import datetime
from typing import Optional
from sqlalchemy import String, Integer, Boolean, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.analytics_engine.models.base import Base, UTCDateTime, new_uuid, utcnow


class ReferrerType(str, enum.Enum):
    DIRECT = "direct"
    ORGANIC = "organic"
    PAID = "paid"
    SOCIAL = "social"
    EMAIL = "email"
    REFERRAL = "referral"


class WebSession(Base):
    __tablename__ = "analytics_sessions"
    __table_args__ = (
        UniqueConstraint("site_id", "active_token", name="uq_analytics_sessions_site_active_token"),
        Index("ix_analytics_sessions_site_visitor", "site_id", "visitor_id"),
        Index("ix_analytics_sessions_site_started", "site_id", "started_at"),
        Index("ix_analytics_sessions_site_ended", "site_id", "ended_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    site_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    visitor_id: Mapped[str] = mapped_column(String(36), ForeignKey("analytics_visitors.id"), nullable=False)
    session_token: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # Holds the token while the session is open, cleared on end so the token can start a new session.
    active_token: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    last_activity_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    ended_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    entry_page: Mapped[str] = mapped_column(String(2048), nullable=False, default="/")
    exit_page: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    landing_page_title: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    page_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_bounce: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    referrer: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    referrer_domain: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    referrer_type: Mapped[str] = mapped_column(String(20), nullable=False, default=ReferrerType.DIRECT.value)
    utm_source: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    utm_medium: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    utm_campaign: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    utm_term: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    utm_content: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    visitor = relationship("Visitor", backref="sessions")

    def calculate_duration(self, now: Optional[datetime] = None) -> int:
        """Seconds since start; always derived, never accumulated."""
        now = now or utcnow()
        return max(0, int((now - self.started_at).total_seconds()))
