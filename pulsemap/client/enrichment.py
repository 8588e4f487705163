from __future__ import annotations

import logging
from typing import Callable, Mapping, Optional
from urllib.parse import urlparse

from pydantic import ValidationError

from ..events import LocationSignal, SourceType, TrafficSource, utcnow
from .platform import DeliveryError

logger = logging.getLogger(__name__)

LOCATION_PATH = "/api/analytics/location"

CLICK_ID_PARAMS = ("gclid", "fbclid")
WEBMAIL_DOMAINS = ("mail.google.com", "outlook.live.com", "outlook.office.com", "mail.yahoo.com")
SOCIAL_DOMAINS = ("facebook.com", "fb.com", "linkedin.com", "instagram.com", "twitter.com", "t.co", "x.com", "zalo.me")
SEARCH_ENGINES = ("google.com", "bing.com", "coccoc.com", "baidu.com")

# substring of host -> display name, first match wins
SOURCE_NAMES = (
    ("facebook", "Facebook"),
    ("linkedin", "LinkedIn"),
    ("instagram", "Instagram"),
    ("twitter", "Twitter"),
    ("zalo", "Zalo"),
    ("google", "Google"),
    ("bing", "Bing"),
    ("coccoc", "Coc Coc"),
    ("baidu", "Baidu"),
)


def _host_matches(host: str, domains) -> bool:
    return any(host == d or host.endswith("." + d) for d in domains)


def _is_search_results(host: str, path: str) -> bool:
    # google.com/search, bing.com/search, baidu.com/s?wd=, coccoc.com/search
    if "search" in path:
        return True
    return host.endswith("baidu.com") and path.rstrip("/") == "/s"


def detect_source_type(referrer: str, params: Mapping[str, str], current_host: str) -> SourceType:
    medium = (params.get("utm_medium") or "").lower()
    if any(p in params for p in CLICK_ID_PARAMS) or medium == "cpc":
        return "paid"

    try:
        ref = urlparse(referrer) if referrer else None
        host = (ref.hostname or "").lower() if ref else ""
    except ValueError:
        # malformed referrer, e.g. an unclosed IPv6 bracket
        ref, host = None, ""

    if medium == "email" or _host_matches(host, WEBMAIL_DOMAINS):
        return "email"
    if _host_matches(host, SOCIAL_DOMAINS):
        return "social"
    if _host_matches(host, SEARCH_ENGINES) and _is_search_results(host, ref.path if ref else ""):
        return "organic"
    if host and host != (current_host or "").lower():
        return "referral"
    return "direct"


def source_name(referrer: str) -> str:
    if not referrer:
        return "direct"
    try:
        host = urlparse(referrer).hostname
    except ValueError:
        return "unknown"
    if not host:
        return "unknown"
    for needle, name in SOURCE_NAMES:
        if needle in host:
            return name
    return host


def classify_source(referrer: str, params: Mapping[str, str], session_id: str,
                    landing_page: str, current_host: str = "") -> TrafficSource:
    """
    Pure, deterministic traffic-source classification. Rules, first match wins:

      paid     - gclid/fbclid present or utm_medium=cpc
      email    - utm_medium=email or a webmail referrer
      social   - social network referrer
      organic  - search engine referrer on a results page
      referral - any other referrer from a different host
      direct   - everything else
    """
    return TrafficSource(
        session_id=session_id,
        source_type=detect_source_type(referrer, params, current_host),
        source_name=source_name(referrer),
        medium=params.get("utm_medium") or "none",
        campaign=params.get("utm_campaign") or None,
        referrer_url=referrer or None,
        landing_page=landing_page,
    )


class EnrichmentResolver:
    """Traffic-source classification and fire-and-forget location lookup."""

    def __init__(self, transport, events, path: str = LOCATION_PATH):
        self.transport = transport
        self.events = events
        self.path = path

    def classify_source(self, referrer, params, session_id, landing_page, current_host=""):
        return classify_source(referrer, params, session_id, landing_page, current_host)

    def request_location(self, session_id: str, on_resolved: Callable[[LocationSignal], None]) -> None:
        """
        Schedule the lookup on the host's deferred queue and return immediately.
        ``on_resolved`` is called only if the lookup succeeds.
        """
        self.events.defer(lambda: self._resolve(session_id, on_resolved))

    def _resolve(self, session_id, on_resolved) -> Optional[LocationSignal]:
        try:
            data = self.transport.get_json(self.path)
            signal = LocationSignal.model_validate(data)
        except (DeliveryError, ValidationError) as e:
            logger.warning("[enrichment] location lookup failed: %s", e)
            return None
        signal = signal.model_copy(update={"session_id": session_id, "timestamp": utcnow()})
        on_resolved(signal)
        return signal
