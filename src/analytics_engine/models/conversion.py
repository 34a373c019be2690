"""Conversion model - a recorded goal completion"""
import json
from datetime import datetime
from typing import Optional, Any, Dict
from sqlalchemy import String, Integer, Float, Text, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.analytics_engine.models.base import Base, UTCDateTime, utcnow


class Conversion(Base):
    __tablename__ = "analytics_conversions"
    __table_args__ = (
        UniqueConstraint("goal_id", "dedupe_key", name="uq_analytics_conversions_goal_dedupe"),
        Index("ix_analytics_conversions_site_goal", "site_id", "goal_id"),
        Index("ix_analytics_conversions_goal_created", "goal_id", "created_at"),
        Index("ix_analytics_conversions_goal_session", "goal_id", "session_id"),
        Index("ix_analytics_conversions_goal_visitor", "goal_id", "visitor_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    site_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    goal_id: Mapped[int] = mapped_column(Integer, ForeignKey("analytics_goals.id"), nullable=False)
    session_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("analytics_sessions.id"), nullable=True)
    visitor_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("analytics_visitors.id"), nullable=True)
    event_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("analytics_events.id"), nullable=True)
    page_view_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("analytics_page_views.id"), nullable=True)
    value: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    meta_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    dedupe_key: Mapped[str] = mapped_column(String(80), nullable=False)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    goal = relationship("Goal", backref="conversions")

    @property
    def meta(self) -> Dict[str, Any]:
        if not self.meta_json:
            return {}
        try:
            return json.loads(self.meta_json)
        except (json.JSONDecodeError, TypeError):
            return {}
