# link-analytics-service/classifiers.py
"""
User-agent and referrer classification.

Rules are ordered (predicate, label) pairs evaluated top to bottom; the first
match wins. Order matters: Android tablets report "android" and therefore count
as Mobile, Chrome user agents also contain "Safari", Edge and Opera also
contain "Chrome".
"""
from typing import Callable, List, Optional, Tuple
from urllib.parse import urlparse

Rule = Tuple[Callable[[str], bool], str]

UNKNOWN = "Unknown"
DIRECT = "Direct"


def _contains_any(*needles: str) -> Callable[[str], bool]:
    return lambda ua: any(needle in ua for needle in needles)


DEVICE_RULES: List[Rule] = [
    (_contains_any("mobile", "android", "iphone"), "Mobile"),
    (_contains_any("tablet", "ipad"), "Tablet"),
    (_contains_any("kindle", "e-reader"), "E-Reader"),
]
DEFAULT_DEVICE = "Desktop"

BROWSER_RULES: List[Rule] = [
    (_contains_any("edg"), "Edge"),
    (_contains_any("opr/", "opera"), "Opera"),
    (_contains_any("samsungbrowser"), "Samsung Internet"),
    (_contains_any("chrome", "crios"), "Chrome"),
    (_contains_any("firefox", "fxios"), "Firefox"),
    (lambda ua: "safari" in ua and "chrome" not in ua, "Safari"),
    (_contains_any("msie", "trident"), "Internet Explorer"),
]
DEFAULT_BROWSER = "Other"


def _classify(user_agent: Optional[str], rules: List[Rule], default: str) -> str:
    if not user_agent or not user_agent.strip():
        return UNKNOWN
    ua = user_agent.lower()
    for predicate, label in rules:
        if predicate(ua):
            return label
    return default


def classify_device(user_agent: Optional[str]) -> str:
    return _classify(user_agent, DEVICE_RULES, DEFAULT_DEVICE)


def classify_browser(user_agent: Optional[str]) -> str:
    return _classify(user_agent, BROWSER_RULES, DEFAULT_BROWSER)


def normalize_referrer(referrer: Optional[str]) -> str:
    """
    Reduces a referrer URL to its host without a leading "www.".
    Empty referrers are reported as "Direct"; values without a host are kept as-is.
    """
    if not referrer or not referrer.strip() or referrer == DIRECT:
        return DIRECT
    host = urlparse(referrer.strip()).hostname
    if not host:
        return referrer.strip()
    if host.startswith("www."):
        host = host[len("www."):]
    return host


def normalize_country(country: Optional[str]) -> str:
    if not country or not country.strip():
        return UNKNOWN
    return country
