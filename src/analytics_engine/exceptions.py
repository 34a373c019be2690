"""Analytics engine exceptions"""


class AnalyticsError(Exception):
    pass


class TrackingError(AnalyticsError):
    """Store state the tracking pipeline cannot recover from; the track_* entry points log and swallow it."""


class ConditionError(AnalyticsError):
    """Malformed goal or funnel condition (unknown operator, bad regex, bad node)."""
