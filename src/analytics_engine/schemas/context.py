"""Explicit site context and reporting date ranges"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


@dataclass(frozen=True)
class SiteContext:
    site_id: int
    tenant_id: Optional[str] = None


@dataclass(frozen=True)
class DateRange:
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError("DateRange start must not be after end")

    @classmethod
    def for_dates(cls, start: date, end: date) -> "DateRange":
        return cls(
            datetime.combine(start, time.min).replace(tzinfo=timezone.utc),
            datetime.combine(end, time.max).replace(tzinfo=timezone.utc),
        )

    @classmethod
    def last_days(cls, days: int, today: Optional[date] = None) -> "DateRange":
        today = today or datetime.now(timezone.utc).date()
        return cls.for_dates(today - timedelta(days=days), today)

    @classmethod
    def today(cls) -> "DateRange":
        today = datetime.now(timezone.utc).date()
        return cls.for_dates(today, today)

    @classmethod
    def from_strings(cls, start: str, end: str) -> "DateRange":
        return cls.for_dates(date.fromisoformat(start), date.fromisoformat(end))

    @property
    def days(self) -> int:
        return (self.end.date() - self.start.date()).days + 1

    def previous_period(self) -> "DateRange":
        """Range of equal length ending right before this one starts."""
        length = self.end - self.start
        end = self.start - timedelta(microseconds=1)
        return DateRange(end - length, end)

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end

    def to_dict(self) -> dict:
        return {"start": self.start.date().isoformat(), "end": self.end.date().isoformat()}
