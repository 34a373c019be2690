"""Tracking payload schemas handed over by the HTTP boundary"""
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator


class VisitorSignals(BaseModel):
    """Coarse client signals used to recognize a visitor."""
    visitor_id: Optional[str] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    screen_resolution: Optional[str] = None
    timezone: Optional[str] = None
    language: Optional[str] = None
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None

    @field_validator("screen_resolution")
    @classmethod
    def normalize_resolution(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().lower()
        return v or None

    def fingerprint_data(self) -> Dict[str, str]:
        data = {
            "user_agent": self.user_agent,
            "screen_resolution": self.screen_resolution,
            "timezone": self.timezone,
            "language": self.language,
        }
        return {k: v for k, v in data.items() if v is not None and v != ""}

    def screen_size(self) -> tuple[Optional[int], Optional[int]]:
        if not self.screen_resolution:
            return None, None
        parts = self.screen_resolution.split("x")
        if len(parts) != 2:
            return None, None
        try:
            return int(parts[0]), int(parts[1])
        except ValueError:
            return None, None


class UtmParams(BaseModel):
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_term: Optional[str] = None
    utm_content: Optional[str] = None


class SessionPayload(UtmParams):
    session_token: str
    entry_path: Optional[str] = None
    referrer: Optional[str] = None
    signals: VisitorSignals = Field(default_factory=VisitorSignals)


class PageViewPayload(UtmParams):
    path: str
    title: Optional[str] = None
    referrer: Optional[str] = None
    query_string: Optional[str] = None
    session_token: Optional[str] = None
    load_time: Optional[int] = None
    custom_data: Optional[Dict[str, Any]] = None
    signals: VisitorSignals = Field(default_factory=VisitorSignals)


class PageViewUpdatePayload(BaseModel):
    session_token: str
    path: str
    time_on_page: Optional[int] = None
    engaged_time: Optional[int] = None
    scroll_depth: Optional[int] = None


class EventPayload(BaseModel):
    name: str
    category: Optional[str] = None
    action: Optional[str] = None
    label: Optional[str] = None
    properties: Dict[str, Any] = Field(default_factory=dict)
    value: Optional[float] = None
    path: Optional[str] = None
    source_package: Optional[str] = None
    session_token: Optional[str] = None
    page_view_id: Optional[int] = None
    signals: VisitorSignals = Field(default_factory=VisitorSignals)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("event name must not be empty")
        return v
