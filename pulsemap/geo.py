from __future__ import annotations

import hashlib
import logging
import re
from typing import Any, Dict, Mapping, Optional

import requests

from .config import settings

logger = logging.getLogger(__name__)

MOBILE_UA = re.compile(r"mobile|android|iphone|ipad|phone", re.IGNORECASE)

UNKNOWN_LOCATION = {
    "countryCode": "unknown",
    "countryName": "unknown",
    "region": "unknown",
    "city": "unknown",
    "latitude": 0,
    "longitude": 0,
    "timezone": "unknown",
    "isp": "unknown",
    "organization": "unknown",
    "isVpn": False,
}


def client_ip(headers: Mapping[str, str], peer: Optional[str] = None) -> str:
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return peer or "127.0.0.1"


def hash_ip(ip: str) -> str:
    return hashlib.sha256(ip.encode("utf-8")).hexdigest()


def is_mobile_agent(user_agent: str) -> bool:
    return bool(MOBILE_UA.search(user_agent or ""))


class GeoLookup:
    """Resolves an address through an ipapi.co-style JSON service."""

    def __init__(self, url_template: str = settings.geoip_url_template,
                 timeout: float = settings.geoip_timeout_seconds, session=None):
        self.url_template = url_template
        self.timeout = timeout
        self.http = session or requests.Session()

    def lookup(self, ip: str) -> Dict[str, Any]:
        try:
            resp = self.http.get(self.url_template.format(ip=ip), timeout=self.timeout,
                                 headers={"User-Agent": "pulsemap/0.1"})
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("[geo] lookup failed for %s: %s", hash_ip(ip)[:12], e)
            return dict(UNKNOWN_LOCATION)
        if not isinstance(data, dict) or data.get("error"):
            return dict(UNKNOWN_LOCATION)
        return {
            "countryCode": data.get("country_code") or "unknown",
            "countryName": data.get("country_name") or "unknown",
            "region": data.get("region") or "unknown",
            "city": data.get("city") or "unknown",
            "latitude": data.get("latitude") or 0,
            "longitude": data.get("longitude") or 0,
            "timezone": data.get("timezone") or "unknown",
            "isp": data.get("org") or "unknown",
            "organization": data.get("org") or "unknown",
            # ipapi.co has no VPN signal
            "isVpn": False,
        }
