"""Goal matching and de-duplicated conversion recording"""
import json
import logging
import re
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from src.analytics_engine.exceptions import ConditionError
from src.analytics_engine.models import (
    AnalyticsEvent,
    Conversion,
    Goal,
    GoalType,
    GoalValueType,
    PageView,
    Visitor,
    WebSession,
)
from src.analytics_engine.models.base import new_uuid
from src.analytics_engine.models.goal import SESSION_GOAL_TYPES
from src.analytics_engine.schemas.context import SiteContext
from src.analytics_engine.services import conditions as cond
from src.analytics_engine.services.notifications import ConversionNotifier, GoalConverted
from src.analytics_engine.services.store import AnalyticsStore

logger = logging.getLogger(__name__)

Trigger = Union[AnalyticsEvent, PageView, WebSession]


def wildcard_match(pattern: str, value: str) -> bool:
    """Whole-string match where ``*`` stands for any run of characters."""
    regex = ".*".join(re.escape(part) for part in pattern.split("*"))
    return re.fullmatch(regex, value, flags=re.DOTALL) is not None


def _regex_search(pattern: Any, value: str) -> bool:
    if not isinstance(pattern, str):
        raise ConditionError("'path_regex' expects a pattern string")
    try:
        return re.search(pattern, value) is not None
    except re.error as e:
        raise ConditionError(f"invalid path_regex {pattern!r}: {e}") from e


# First rule present on a pageview goal decides the match
PATH_RULES: List[Tuple[str, Callable[[Any, str], bool]]] = [
    ("path_exact", lambda expected, path: path == expected),
    ("path_pattern", lambda expected, path: wildcard_match(str(expected), path)),
    ("path_regex", _regex_search),
    ("path_contains", lambda expected, path: str(expected) in path),
    ("path_starts_with", lambda expected, path: path.startswith(str(expected))),
    ("path_ends_with", lambda expected, path: path.endswith(str(expected))),
]


def event_conditions_match(conditions: Mapping[str, Any], event: AnalyticsEvent) -> bool:
    if conditions.get("event_name") is not None and event.name != conditions["event_name"]:
        return False

    if conditions.get("event_category") is not None and event.category != conditions["event_category"]:
        return False

    if not cond.match_property_equalities(conditions.get("property_matches"), event.properties):
        return False

    if not cond.evaluate(conditions.get("properties"), event.properties):
        return False

    min_value = conditions.get("min_value")
    if min_value is not None:
        threshold = cond.to_number(min_value)
        if threshold is None:
            raise ConditionError(f"min_value must be numeric, got {min_value!r}")
        if event.value is None or event.value < threshold:
            return False

    return True


def page_view_conditions_match(conditions: Mapping[str, Any], page_view: PageView) -> bool:
    path = page_view.path or ""
    for key, rule in PATH_RULES:
        if conditions.get(key) is not None:
            return rule(conditions[key], path)
    return False


def _threshold(conditions: Mapping[str, Any], key: str) -> float:
    raw = conditions.get(key, 0)
    value = cond.to_number(raw if raw is not None else 0)
    if value is None:
        raise ConditionError(f"{key} must be numeric, got {raw!r}")
    return value


def duration_conditions_match(conditions: Mapping[str, Any], session: WebSession) -> bool:
    return (session.duration or 0) >= _threshold(conditions, "min_seconds")


def pages_conditions_match(conditions: Mapping[str, Any], session: WebSession) -> bool:
    return (session.page_count or 0) >= _threshold(conditions, "min_pages")


GOAL_MATCHERS: Dict[GoalType, Tuple[type, Callable[[Mapping[str, Any], Any], bool]]] = {
    GoalType.EVENT: (AnalyticsEvent, event_conditions_match),
    GoalType.PAGEVIEW: (PageView, page_view_conditions_match),
    GoalType.DURATION: (WebSession, duration_conditions_match),
    GoalType.PAGES_PER_SESSION: (WebSession, pages_conditions_match),
}


def extract_metadata(trigger: Trigger) -> Dict[str, Any]:
    if isinstance(trigger, AnalyticsEvent):
        return {
            "trigger_type": "event",
            "event_name": trigger.name,
            "event_category": trigger.category,
            "event_properties": trigger.properties,
            "event_value": trigger.value,
        }

    if isinstance(trigger, PageView):
        return {
            "trigger_type": "pageview",
            "path": trigger.path,
            "title": trigger.title,
        }

    return {
        "trigger_type": "session",
        "duration": trigger.duration,
        "page_count": trigger.page_count,
        "entry_page": trigger.entry_page,
        "exit_page": trigger.exit_page,
    }


class GoalMatcher:
    """Evaluates active goals against tracked data and records conversions.

    Evaluation never raises: a goal with a malformed condition is logged and
    treated as a non-match. Recording is idempotent per goal and session
    (or visitor, when there is no session) unless multiple conversions per
    session are allowed.
    """

    def __init__(
        self,
        store: AnalyticsStore,
        notifier: Optional[ConversionNotifier] = None,
        allow_multiple_per_session: bool = False,
    ):
        self.store = store
        self.notifier = notifier or ConversionNotifier()
        self.allow_multiple_per_session = allow_multiple_per_session

    def matches(self, goal: Goal, subject: Trigger) -> bool:
        goal_type = goal.goal_type
        if goal_type is None:
            logger.warning(f"Goal {goal.id} has unknown type {goal.type!r}")
            return False

        subject_class, matcher = GOAL_MATCHERS[goal_type]
        if not isinstance(subject, subject_class):
            return False

        conditions = goal.conditions or {}
        if not isinstance(conditions, Mapping):
            logger.warning(f"Goal {goal.id} conditions must be an object, got {type(conditions).__name__}")
            return False

        try:
            return matcher(conditions, subject)
        except (ConditionError, TypeError, ValueError) as e:
            logger.warning(f"Goal {goal.id} ({goal.name}) has a malformed condition: {e}")
            return False

    def calculate_value(self, goal: Goal, subject: Trigger) -> Optional[float]:
        if goal.value_type == GoalValueType.FIXED.value:
            return goal.fixed_value

        if goal.value_type == GoalValueType.DYNAMIC.value:
            if not goal.dynamic_value_path or not isinstance(subject, AnalyticsEvent):
                return None
            return cond.to_number(cond.get_path(subject.properties or {}, goal.dynamic_value_path))

        return None

    def extract_metadata(self, trigger: Trigger) -> Dict[str, Any]:
        return extract_metadata(trigger)

    def _dedupe_key(self, session: Optional[WebSession], visitor: Optional[Visitor]) -> str:
        if self.allow_multiple_per_session:
            return f"multi:{new_uuid()}"
        if session is not None:
            return f"session:{session.id}"
        if visitor is not None:
            return f"visitor:{visitor.id}"
        return f"anonymous:{new_uuid()}"

    def record_conversion(
        self,
        goal: Goal,
        trigger: Trigger,
        session: Optional[WebSession],
        visitor: Optional[Visitor],
        site: Optional[SiteContext] = None,
    ) -> Optional[Conversion]:
        """Record a conversion unless one already exists; returns None for duplicates."""
        if not self.allow_multiple_per_session:
            already = self.store.conversion_exists(
                goal.id,
                session_id=session.id if session is not None else None,
                visitor_id=visitor.id if visitor is not None else None,
            )
            if already:
                logger.debug(f"Skipping duplicate conversion: goal={goal.id}, session={session.id if session else None}")
                return None

        metadata = extract_metadata(trigger)
        conversion = self.store.insert_conversion({
            "site_id": site.site_id if site is not None else goal.site_id,
            "tenant_id": (site.tenant_id if site is not None else None) or goal.tenant_id,
            "goal_id": goal.id,
            "session_id": session.id if session is not None else None,
            "visitor_id": visitor.id if visitor is not None else None,
            "event_id": trigger.id if isinstance(trigger, AnalyticsEvent) else None,
            "page_view_id": trigger.id if isinstance(trigger, PageView) else None,
            "value": self.calculate_value(goal, trigger),
            "meta_json": json.dumps(metadata, ensure_ascii=False, default=str),
            "dedupe_key": self._dedupe_key(session, visitor),
        })
        if conversion is None:
            logger.debug(f"Conversion for goal {goal.id} already recorded by a concurrent request")
            return None

        logger.info(f"Goal converted: goal={goal.id} ({goal.name}), conversion={conversion.id}")
        self.notifier.publish(GoalConverted(
            conversion_id=conversion.id,
            goal_id=goal.id,
            goal_name=goal.name,
            site_id=conversion.site_id,
            session_id=conversion.session_id,
            visitor_id=conversion.visitor_id,
            value=conversion.value,
            occurred_at=conversion.created_at,
            metadata=metadata,
        ))
        return conversion

    def _match_goals(
        self,
        goal_types,
        subject: Trigger,
        session: Optional[WebSession],
        visitor: Optional[Visitor],
        site: SiteContext,
    ) -> List[Conversion]:
        conversions = []
        for goal in self.store.active_goals(goal_types, site):
            if not self.matches(goal, subject):
                continue
            conversion = self.record_conversion(goal, subject, session, visitor, site)
            if conversion is not None:
                conversions.append(conversion)
        return conversions

    def match_event(
        self,
        event: AnalyticsEvent,
        session: Optional[WebSession],
        visitor: Optional[Visitor],
        site: SiteContext,
    ) -> List[Conversion]:
        return self._match_goals([GoalType.EVENT], event, session, visitor, site)

    def match_page_view(
        self,
        page_view: PageView,
        session: Optional[WebSession],
        visitor: Optional[Visitor],
        site: SiteContext,
    ) -> List[Conversion]:
        return self._match_goals([GoalType.PAGEVIEW], page_view, session, visitor, site)

    def match_session(self, session: WebSession, site: SiteContext) -> List[Conversion]:
        return self._match_goals(SESSION_GOAL_TYPES, session, session, session.visitor, site)
