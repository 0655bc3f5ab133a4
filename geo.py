# link-analytics-service/geo.py
"""
Best-effort client address and country resolution for hit records.

Nothing in here raises to the caller: unusable addresses map to LOCAL_LABEL and
every lookup failure (including the overall timeout) maps to UNKNOWN_LABEL.
"""
import asyncio
import ipaddress
import logging
from typing import Any, Callable, List, Optional, Tuple

import httpx
from config import get_settings
from fastapi import Request

logger = logging.getLogger(__name__)

LOCAL_LABEL = "Local/Private"
UNKNOWN_LABEL = "Unknown"

CLIENT_IP_HEADERS = [
    "x-forwarded-for",
    "x-real-ip",
    "client-ip",
    "x-forwarded",
    "forwarded-for",
    "forwarded",
]

GeoService = Tuple[str, str, Callable[[dict], Optional[str]]]

GEO_SERVICES: List[GeoService] = [
    (
        "ipapi",
        "http://ip-api.com/json/{ip}?fields=status,country,countryCode",
        lambda data: data.get("country") if data.get("status") == "success" else None,
    ),
    ("ipinfo", "https://ipinfo.io/{ip}/json", lambda data: data.get("country")),
    ("geojs", "https://get.geojs.io/v1/ip/geo/{ip}.json", lambda data: data.get("country")),
]


def is_public_ip(value: Optional[str]) -> bool:
    if not value:
        return False
    try:
        address = ipaddress.ip_address(value)
    except ValueError:
        return False
    return not (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_reserved
        or address.is_multicast
        or address.is_unspecified
    )


def _first_entry(header_value: str) -> str:
    entry = header_value.split(",")[0].strip()
    # RFC 7239 style: `for=1.2.3.4;proto=https`
    if entry.lower().startswith("for="):
        entry = entry[4:].split(";")[0].strip().strip('"')
    return entry


def get_client_ip(request: Request) -> Optional[str]:
    """
    Picks the first public address advertised by proxy headers,
    falling back to the socket peer.
    """
    for header in CLIENT_IP_HEADERS:
        value = request.headers.get(header)
        if not value:
            continue
        candidate = _first_entry(value)
        if is_public_ip(candidate):
            return candidate
    return request.client.host if request.client else None


async def _query_services(ip: str, client: httpx.AsyncClient) -> Optional[str]:
    for name, url, extract in GEO_SERVICES:
        try:
            response = await client.get(url.format(ip=ip))
            response.raise_for_status()
            data: Any = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(
                "Geolocation service failed",
                extra={"service": name, "ip": ip, "error": str(e)},
            )
            continue

        country = extract(data) if isinstance(data, dict) else None
        if country:
            logger.debug(
                "Geolocation resolved",
                extra={"service": name, "ip": ip, "country": country},
            )
            return country
    return None


async def lookup_country(
    ip: Optional[str],
    transport: Optional[httpx.AsyncBaseTransport] = None,
    timeout: Optional[float] = None,
) -> str:
    """
    Resolves the country of `ip`.
    The whole service chain is bounded by `timeout` (GEO_TIMEOUT by default).
    """
    if not is_public_ip(ip):
        return LOCAL_LABEL

    settings = get_settings()
    if not settings.geo_enabled:
        return UNKNOWN_LABEL
    timeout = settings.geo_timeout if timeout is None else timeout

    try:
        async with httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={"User-Agent": "Mozilla/5.0 (compatible; link-analytics-service/1.0)"},
        ) as client:
            country = await asyncio.wait_for(_query_services(ip, client), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Geolocation lookup timed out", extra={"ip": ip, "timeout": timeout})
        return UNKNOWN_LABEL
    except Exception as e:
        logger.warning("Geolocation lookup failed", extra={"ip": ip, "error": str(e)})
        return UNKNOWN_LABEL

    if not country:
        logger.warning("All geolocation services failed", extra={"ip": ip})
        return UNKNOWN_LABEL
    return country
