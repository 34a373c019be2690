"""Database models"""
from src.analytics_engine.models.base import Base
from src.analytics_engine.models.visitor import Visitor, DeviceType
from src.analytics_engine.models.web_session import WebSession, ReferrerType
from src.analytics_engine.models.page_view import PageView
from src.analytics_engine.models.analytics_event import AnalyticsEvent
from src.analytics_engine.models.goal import Goal, GoalType, GoalValueType
from src.analytics_engine.models.conversion import Conversion

__all__ = [
    "Base", "Visitor", "DeviceType", "WebSession", "ReferrerType", "PageView",
    "AnalyticsEvent", "Goal", "GoalType", "GoalValueType", "Conversion",
]
