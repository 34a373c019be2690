"""Goal model - conversion goals and their optional funnel steps"""
import enum
from datetime import datetime
from typing import Optional, Any
from sqlalchemy import String, Integer, Boolean, Float, Text, Index, JSON
from sqlalchemy.orm import Mapped, mapped_column

from src.analytics_engine.models.base import Base, UTCDateTime, utcnow


class GoalType(str, enum.Enum):
    EVENT = "event"
    PAGEVIEW = "pageview"
    DURATION = "duration"
    PAGES_PER_SESSION = "pages_per_session"


class GoalValueType(str, enum.Enum):
    NONE = "none"
    FIXED = "fixed"
    DYNAMIC = "dynamic"


SESSION_GOAL_TYPES = (GoalType.DURATION, GoalType.PAGES_PER_SESSION)


class Goal(Base):
    __tablename__ = "analytics_goals"
    __table_args__ = (
        Index("ix_analytics_goals_site_active", "site_id", "is_active"),
        Index("ix_analytics_goals_site_type", "site_id", "type"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    site_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    conditions: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    value_type: Mapped[str] = mapped_column(String(20), nullable=False, default=GoalValueType.NONE.value)
    fixed_value: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    dynamic_value_path: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    funnel_steps: Mapped[Optional[list[dict[str, Any]]]] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )

    @property
    def goal_type(self) -> Optional[GoalType]:
        try:
            return GoalType(self.type)
        except ValueError:
            return None
