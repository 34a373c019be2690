"""User-agent classification - device type, browser, OS and bot detection"""
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from src.analytics_engine.models.visitor import DeviceType


BOT_SIGNATURES: Dict[str, str] = {
    "googlebot": "Googlebot",
    "bingbot": "Bingbot",
    "slurp": "Yahoo! Slurp",
    "duckduckbot": "DuckDuckBot",
    "baiduspider": "Baiduspider",
    "yandexbot": "YandexBot",
    "facebookexternalhit": "Facebook",
    "twitterbot": "Twitter",
    "linkedinbot": "LinkedIn",
    "applebot": "Applebot",
    "semrushbot": "SEMRush",
    "ahrefsbot": "Ahrefs",
    "mj12bot": "Majestic",
    "dotbot": "DotBot",
    "petalbot": "PetalBot",
    "bot": "Bot",
    "crawler": "Crawler",
    "spider": "Spider",
    "scraper": "Scraper",
}

TABLET_RE = re.compile(r"tablet|ipad|playbook|silk")
MOBILE_RE = re.compile(r"mobile|android|iphone|ipod|blackberry|opera mini|iemobile")

# Order matters: UA strings carry overlapping tokens (Edge and Opera also say "Chrome").
BROWSER_RULES: List[Tuple[str, Tuple[str, ...]]] = [
    ("Edge", ("edg",)),
    ("Opera", ("opr", "opera")),
    ("Chrome", ("chrome", "crios")),
    ("Safari", ("safari",)),
    ("Firefox", ("firefox", "fxios")),
    ("Internet Explorer", ("msie", "trident")),
    ("Samsung Browser", ("samsungbrowser",)),
]

BROWSER_VERSION_PATTERNS = [
    re.compile(r"Edg/([0-9.]+)"),
    re.compile(r"OPR/([0-9.]+)"),
    re.compile(r"Chrome/([0-9.]+)"),
    re.compile(r"Version/([0-9.]+).*Safari"),
    re.compile(r"Firefox/([0-9.]+)"),
    re.compile(r"MSIE ([0-9.]+)"),
    re.compile(r"rv:([0-9.]+)"),
]

OS_RULES: List[Tuple[str, Tuple[str, ...]]] = [
    ("iOS", ("iphone", "ipad", "ipod")),
    ("Android", ("android",)),
    ("Windows", ("windows",)),
    ("macOS", ("mac os x", "macintosh")),
    ("Linux", ("linux",)),
    ("Chrome OS", ("cros",)),
]

OS_VERSION_PATTERNS = [
    re.compile(r"Windows NT ([0-9.]+)"),
    re.compile(r"Mac OS X ([0-9_.]+)"),
    re.compile(r"Android ([0-9.]+)"),
    re.compile(r"iPhone OS ([0-9_]+)"),
    re.compile(r"CPU OS ([0-9_]+)"),
]


@dataclass(frozen=True)
class DeviceInfo:
    device_type: str
    browser: Optional[str] = None
    browser_version: Optional[str] = None
    os: Optional[str] = None
    os_version: Optional[str] = None
    is_bot: bool = False
    bot_name: Optional[str] = None

    @classmethod
    def unknown(cls) -> "DeviceInfo":
        return cls(device_type=DeviceType.OTHER.value)

    @classmethod
    def bot(cls, name: Optional[str]) -> "DeviceInfo":
        return cls(device_type=DeviceType.OTHER.value, is_bot=True, bot_name=name or "Unknown Bot")


def _first_match(patterns: List[re.Pattern], user_agent: str) -> Optional[str]:
    for pattern in patterns:
        match = pattern.search(user_agent)
        if match:
            return match.group(1).replace("_", ".")
    return None


class DeviceClassifier:
    """Heuristic UA parser. Never raises; unusable input classifies as unknown."""

    def __init__(self, extra_bot_patterns: Optional[List[str]] = None):
        self._bot_signatures = dict(BOT_SIGNATURES)
        for pattern in extra_bot_patterns or []:
            self._bot_signatures.setdefault(pattern.lower(), pattern)

    def classify(self, user_agent: Optional[str]) -> DeviceInfo:
        if not user_agent:
            return DeviceInfo.unknown()

        ua_lower = user_agent.lower()
        bot_name = self._detect_bot(ua_lower)
        if bot_name is not None:
            return DeviceInfo.bot(bot_name)

        return DeviceInfo(
            device_type=self._detect_device_type(ua_lower),
            browser=self._detect_browser(ua_lower),
            browser_version=_first_match(BROWSER_VERSION_PATTERNS, user_agent),
            os=self._detect_os(ua_lower),
            os_version=_first_match(OS_VERSION_PATTERNS, user_agent),
        )

    def is_bot(self, user_agent: Optional[str]) -> bool:
        if not user_agent:
            return False
        return self._detect_bot(user_agent.lower()) is not None

    def device_type(self, user_agent: Optional[str]) -> str:
        if not user_agent:
            return DeviceType.OTHER.value
        return self._detect_device_type(user_agent.lower())

    def _detect_bot(self, ua_lower: str) -> Optional[str]:
        for pattern, name in self._bot_signatures.items():
            if pattern in ua_lower:
                return name
        return None

    def _detect_device_type(self, ua_lower: str) -> str:
        if TABLET_RE.search(ua_lower):
            return DeviceType.TABLET.value

        if MOBILE_RE.search(ua_lower):
            # Android tablets report "android" without the "mobile" token
            if "android" in ua_lower and "mobile" not in ua_lower:
                return DeviceType.TABLET.value
            return DeviceType.MOBILE.value

        return DeviceType.DESKTOP.value

    def _detect_browser(self, ua_lower: str) -> Optional[str]:
        for name, tokens in BROWSER_RULES:
            if any(token in ua_lower for token in tokens):
                return name
        return None

    def _detect_os(self, ua_lower: str) -> Optional[str]:
        for name, tokens in OS_RULES:
            if any(token in ua_lower for token in tokens):
                return name
        return None
