"""AnalyticsEvent model - custom events tracked by the site"""
from datetime import datetime
from typing import Optional, Any
from sqlalchemy import String, Integer, Float, ForeignKey, Index, JSON
from sqlalchemy.orm import Mapped, mapped_column

from src.analytics_engine.models.base import Base, UTCDateTime, utcnow


class AnalyticsEvent(Base):
    __tablename__ = "analytics_events"
    __table_args__ = (
        Index("ix_analytics_events_site_name", "site_id", "name"),
        Index("ix_analytics_events_site_session", "site_id", "session_id"),
        Index("ix_analytics_events_site_created", "site_id", "created_at"),
        Index("ix_analytics_events_name_created", "name", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    site_id: Mapped[int] = mapped_column(Integer, nullable=False)
    session_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("analytics_sessions.id"), nullable=True)
    visitor_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("analytics_visitors.id"), nullable=True)
    page_view_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("analytics_page_views.id"), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    action: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    label: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    properties: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    value: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    source_package: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    path: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
