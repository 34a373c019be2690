"""Funnel analysis over stored events and page views"""
import logging
import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from src.analytics_engine.exceptions import ConditionError
from src.analytics_engine.models import Goal
from src.analytics_engine.schemas.context import DateRange, SiteContext
from src.analytics_engine.services import conditions as cond
from src.analytics_engine.services.goal_matcher import wildcard_match
from src.analytics_engine.services.store import AnalyticsStore

logger = logging.getLogger(__name__)

# (visitor_id, reached_at) pairs, oldest first
StepHits = List[Tuple[str, datetime]]


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 2)


def page_view_step_matches(step: Mapping[str, Any], path: str) -> bool:
    """Every path rule present on the step must hold."""
    exact = step.get("path_exact", step.get("path"))
    if exact is not None and path != exact:
        return False
    if step.get("path_pattern") is not None and not wildcard_match(str(step["path_pattern"]), path):
        return False
    if step.get("path_contains") is not None and str(step["path_contains"]) not in path:
        return False
    if step.get("path_starts_with") is not None and not path.startswith(str(step["path_starts_with"])):
        return False
    if step.get("path_ends_with") is not None and not path.endswith(str(step["path_ends_with"])):
        return False
    if step.get("path_regex") is not None:
        try:
            if re.search(step["path_regex"], path) is None:
                return False
        except (re.error, TypeError) as e:
            raise ConditionError(f"invalid path_regex {step['path_regex']!r}: {e}") from e
    return True


class FunnelAnalyzer:
    """Step-by-step visitor counts for a goal's funnel.

    By default every step is counted independently within the range. In
    strict mode a visitor only counts for a step if they reached the
    previous step first (at or before the time of this step).
    """

    def __init__(
        self,
        store: AnalyticsStore,
        site: Optional[SiteContext] = None,
        strict: bool = False,
        multi_tenant: bool = False,
    ):
        self.store = store
        self.site = site
        self.strict = strict
        self.multi_tenant = multi_tenant

    def analyze(self, goal: Goal, date_range: DateRange, strict: Optional[bool] = None) -> Dict[str, Any]:
        steps = goal.funnel_steps or []
        if not steps:
            raise ValueError(f"Goal {goal.id} does not have funnel steps defined")

        strict = self.strict if strict is None else strict
        counts = self._step_counts(steps, date_range, strict)

        results = []
        previous_count = 0
        for index, (step, count) in enumerate(zip(steps, counts)):
            results.append({
                "step": index + 1,
                "name": step.get("name") or f"Step {index + 1}",
                "type": step.get("type", "unknown"),
                "visitors": count,
                "conversion_rate": 100.0 if previous_count == 0 else _rate(count, previous_count),
                "dropoff_rate": 0.0 if previous_count == 0 else _rate(previous_count - count, previous_count),
                "dropoff_count": max(0, previous_count - count),
            })
            previous_count = count

        first = results[0]["visitors"]
        last = results[-1]["visitors"]

        return {
            "goal_id": goal.id,
            "goal_name": goal.name,
            "date_range": date_range.to_dict(),
            "strict": strict,
            "steps": results,
            "total_steps": len(results),
            "overall_conversion": _rate(last, first) if first > 0 else 0.0,
            "total_dropoff": first - last,
            "entry_visitors": first,
            "completed_visitors": last,
        }

    def compare(self, goal: Goal, current_range: DateRange, previous_range: DateRange) -> Dict[str, Any]:
        current = self.analyze(goal, current_range)
        previous = self.analyze(goal, previous_range)

        current_overall = current["overall_conversion"]
        previous_overall = previous["overall_conversion"]

        if previous_overall > 0:
            change = round((current_overall - previous_overall) / previous_overall * 100, 2)
        else:
            change = 100.0 if current_overall > 0 else 0.0

        if change > 0:
            trend = "up"
        elif change < 0:
            trend = "down"
        else:
            trend = "stable"

        return {
            "current": current,
            "previous": previous,
            "change": change,
            "change_absolute": round(current_overall - previous_overall, 2),
            "trend": trend,
            "step_changes": self._step_changes(current["steps"], previous["steps"]),
        }

    def get_bottlenecks(self, goal: Goal, date_range: DateRange, limit: int = 3) -> List[Dict[str, Any]]:
        """Steps after the entry step with the worst drop-off first."""
        analysis = self.analyze(goal, date_range)
        steps = [step for step in analysis["steps"] if step["step"] > 1]
        steps.sort(key=lambda step: step["dropoff_rate"], reverse=True)
        return steps[:limit]

    # ── Step evaluation ──────────────────────────────────────────────

    def _step_counts(self, steps: List[Dict[str, Any]], date_range: DateRange, strict: bool) -> List[int]:
        if not strict:
            return [len({visitor_id for visitor_id, _ in self._step_hits(step, date_range)}) for step in steps]

        counts = []
        reached: Optional[Dict[str, datetime]] = None
        for step in steps:
            current: Dict[str, datetime] = {}
            for visitor_id, at in self._step_hits(step, date_range):
                if visitor_id in current:
                    continue
                if reached is None or (visitor_id in reached and at >= reached[visitor_id]):
                    current[visitor_id] = at
            counts.append(len(current))
            reached = current
        return counts

    def _step_hits(self, step: Mapping[str, Any], date_range: DateRange) -> StepHits:
        step_type = step.get("type", "event")
        try:
            if step_type == "event":
                return self._event_hits(step, date_range)
            if step_type == "pageview":
                return self._page_view_hits(step, date_range)
        except ConditionError as e:
            logger.warning(f"Funnel step {step.get('name')!r} has a malformed condition: {e}")
            return []

        logger.warning(f"Funnel step {step.get('name')!r} has unknown type {step_type!r}")
        return []

    def _site_id(self) -> Optional[int]:
        return self.site.site_id if self.site is not None else None

    def _in_tenant(self, rows: Iterable[Any]) -> Iterable[Any]:
        if not self.multi_tenant or self.site is None or self.site.tenant_id is None:
            return rows
        return (row for row in rows if row.tenant_id in (self.site.tenant_id, None))

    def _event_hits(self, step: Mapping[str, Any], date_range: DateRange) -> StepHits:
        events = self.store.events_in_range(
            date_range.start,
            date_range.end,
            site_id=self._site_id(),
            name=step.get("event_name"),
            category=step.get("event_category"),
        )
        hits = []
        for event in self._in_tenant(events):
            if event.visitor_id is None:
                continue
            if not cond.match_property_equalities(step.get("property_matches"), event.properties):
                continue
            if not cond.evaluate(step.get("properties"), event.properties):
                continue
            hits.append((event.visitor_id, event.created_at))
        return hits

    def _page_view_hits(self, step: Mapping[str, Any], date_range: DateRange) -> StepHits:
        page_views = self.store.page_views_in_range(date_range.start, date_range.end, site_id=self._site_id())
        return [
            (page_view.visitor_id, page_view.created_at)
            for page_view in self._in_tenant(page_views)
            if page_view.visitor_id is not None and page_view_step_matches(step, page_view.path or "")
        ]

    def _step_changes(self, current_steps: List[Dict[str, Any]], previous_steps: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        changes = []
        for index, current_step in enumerate(current_steps):
            previous_step = previous_steps[index] if index < len(previous_steps) else {}
            current_rate = current_step.get("conversion_rate", 0)
            previous_rate = previous_step.get("conversion_rate", 0)
            previous_visitors = previous_step.get("visitors", 0)
            changes.append({
                "step": current_step["step"],
                "name": current_step["name"],
                "current_rate": current_rate,
                "previous_rate": previous_rate,
                "rate_change": round(current_rate - previous_rate, 2),
                "current_visitors": current_step["visitors"],
                "previous_visitors": previous_visitors,
                "visitor_change": current_step["visitors"] - previous_visitors,
            })
        return changes
