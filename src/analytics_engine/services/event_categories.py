"""Known event names, their categories and recommended properties"""
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

FORMS = "forms"
ECOMMERCE = "ecommerce"
BOOKING = "booking"
ENGAGEMENT = "engagement"

# Core events (page_view, session_start, session_end) carry no category
KNOWN_EVENTS: Dict[str, Optional[str]] = {
    "page_view": None,
    "session_start": None,
    "session_end": None,
    "click": ENGAGEMENT,
    "scroll": ENGAGEMENT,
    "search": ENGAGEMENT,
    "download": ENGAGEMENT,
    "outbound_link": ENGAGEMENT,
    "video_play": ENGAGEMENT,
    "video_complete": ENGAGEMENT,
    "form_view": FORMS,
    "form_start": FORMS,
    "form_submitted": FORMS,
    "form_error": FORMS,
    "product_view": ECOMMERCE,
    "add_to_cart": ECOMMERCE,
    "remove_from_cart": ECOMMERCE,
    "begin_checkout": ECOMMERCE,
    "add_payment_info": ECOMMERCE,
    "purchase": ECOMMERCE,
    "refund": ECOMMERCE,
    "service_view": BOOKING,
    "booking_start": BOOKING,
    "time_selected": BOOKING,
    "booking_created": BOOKING,
    "booking_cancelled": BOOKING,
}

PREFIX_CATEGORIES: List[Tuple[str, str]] = [
    ("form_", FORMS),
    ("product_", ECOMMERCE),
    ("booking_", BOOKING),
    ("service_", BOOKING),
    ("video_", ENGAGEMENT),
]

RECOMMENDED_PROPERTIES: Dict[str, Tuple[str, ...]] = {
    "form_view": ("form_id",),
    "form_start": ("form_id",),
    "form_submitted": ("form_id",),
    "form_error": ("form_id", "error_type"),
    "purchase": ("order_id", "total"),
    "refund": ("order_id",),
    "product_view": ("product_id",),
    "add_to_cart": ("product_id",),
    "remove_from_cart": ("product_id",),
    "booking_created": ("booking_id", "service_id"),
    "booking_cancelled": ("booking_id",),
    "service_view": ("service_id",),
    "booking_start": ("service_id",),
    "time_selected": ("service_id", "datetime"),
    "download": ("file_name",),
    "outbound_link": ("url",),
    "search": ("query",),
    "scroll": ("depth",),
    "video_play": ("video_id",),
    "video_complete": ("video_id",),
}


def infer_category(event_name: str) -> Optional[str]:
    if event_name in KNOWN_EVENTS:
        return KNOWN_EVENTS[event_name]

    for prefix, category in PREFIX_CATEGORIES:
        if event_name.startswith(prefix):
            return category

    return None


def missing_recommended_properties(event_name: str, properties: Optional[Mapping[str, Any]]) -> List[str]:
    """Recommended properties absent from a known event. Logged, never enforced."""
    properties = properties or {}
    missing = [key for key in RECOMMENDED_PROPERTIES.get(event_name, ()) if properties.get(key) is None]
    if missing:
        logger.warning(f"Event {event_name} is missing recommended properties: {', '.join(missing)}")
    return missing
