"""PageView model - a single page impression inside a session"""
from datetime import datetime
from typing import Optional, Any
from sqlalchemy import String, Integer, ForeignKey, Index, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.analytics_engine.models.base import Base, UTCDateTime, utcnow


class PageView(Base):
    __tablename__ = "analytics_page_views"
    __table_args__ = (
        Index("ix_analytics_page_views_site_session", "site_id", "session_id"),
        Index("ix_analytics_page_views_site_visitor", "site_id", "visitor_id"),
        Index("ix_analytics_page_views_site_created", "site_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    site_id: Mapped[int] = mapped_column(Integer, nullable=False)
    session_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("analytics_sessions.id"), nullable=True)
    visitor_id: Mapped[str] = mapped_column(String(36), ForeignKey("analytics_visitors.id"), nullable=False)
    path: Mapped[str] = mapped_column(String(2048), nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    referrer: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    query_string: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    time_on_page: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    engaged_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    scroll_depth: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    load_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    custom_data: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    session = relationship("WebSession", backref="page_views")
