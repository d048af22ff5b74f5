"""Geolocation cache — resolves the player's rough location from their IP.

One lookup per process against ip-api.com, with ipwho.is as a fallback.
The result is cached in memory only; readers get ``None`` until the
background lookup finishes (or forever, if both services fail).

Pure stdlib (urllib.request + json + threading).
"""

from __future__ import annotations

import http.client
import json
import logging
import threading
import urllib.error
import urllib.request
from typing import NamedTuple

log = logging.getLogger("sentient.geolocation")

IP_API_URL = (
    "http://ip-api.com/json/"
    "?fields=status,message,country,regionName,city,lat,lon,timezone,isp,query"
)
IPWHOIS_URL = "https://ipwho.is/"
_USER_AGENT = "SentientCoolplayer/1.0"


class GeoSnapshot(NamedTuple):
    ip: str = ""
    city: str = ""
    region: str = ""
    country: str = ""
    timezone: str = ""
    lat: float = 0.0
    lon: float = 0.0

    def short_location(self) -> str:
        """"City, Region" or whatever subset is known."""
        if self.city and self.region:
            return f"{self.city}, {self.region}"
        return self.city or self.region or self.country or "Unknown"

    def full_location(self) -> str:
        parts = [p for p in (self.city, self.region, self.country) if p]
        return ", ".join(parts) if parts else "Unknown"


def _http_get_json(url: str, timeout: float) -> dict | None:
    req = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
    with urllib.request.urlopen(req, timeout=timeout) as resp:
        if resp.status != 200:
            return None
        return json.loads(resp.read().decode("utf-8"))


def _nested_str(data: dict, *keys: str) -> str:
    """First string found under *keys*; nested dicts yield their isp/name/id."""
    for key in keys:
        value = data.get(key)
        if isinstance(value, dict):
            for nested in ("isp", "name", "id"):
                if nested in value:
                    return str(value[nested])
        elif value is not None:
            return str(value)
    return ""


def parse_ip_api(data: dict) -> GeoSnapshot | None:
    if data.get("status") != "success":
        return None
    return GeoSnapshot(
        ip=_nested_str(data, "query"),
        city=_nested_str(data, "city"),
        region=_nested_str(data, "regionName"),
        country=_nested_str(data, "country"),
        timezone=_nested_str(data, "timezone"),
        lat=float(data.get("lat", 0.0) or 0.0),
        lon=float(data.get("lon", 0.0) or 0.0),
    )


def parse_ipwhois(data: dict) -> GeoSnapshot | None:
    if not data.get("success"):
        return None
    return GeoSnapshot(
        ip=_nested_str(data, "ip"),
        city=_nested_str(data, "city"),
        region=_nested_str(data, "region"),
        country=_nested_str(data, "country"),
        timezone=_nested_str(data, "timezone"),
        lat=float(data.get("latitude", 0.0) or 0.0),
        lon=float(data.get("longitude", 0.0) or 0.0),
    )


class GeoLocator:
    """Eventually-populated, read-only geolocation cache."""

    _SOURCES = (
        (IP_API_URL, parse_ip_api),
        (IPWHOIS_URL, parse_ipwhois),
    )

    def __init__(self, timeout: float = 8.0) -> None:
        self._timeout = timeout
        self._lock = threading.Lock()
        self._cached: GeoSnapshot | None = None
        self._thread: threading.Thread | None = None

    def cached(self) -> GeoSnapshot | None:
        with self._lock:
            return self._cached

    def fetch(self) -> GeoSnapshot | None:
        """Synchronous lookup; caches and returns the first good answer."""
        for url, parser in self._SOURCES:
            try:
                data = _http_get_json(url, self._timeout)
                snapshot = parser(data) if isinstance(data, dict) else None
            except (urllib.error.URLError, http.client.HTTPException, TimeoutError,
                    OSError, ValueError, TypeError) as exc:
                log.debug("Geo endpoint %s failed: %s", url, exc)
                continue
            if snapshot is not None:
                with self._lock:
                    self._cached = snapshot
                log.info("Location resolved: %s", snapshot.short_location())
                return snapshot
        log.warning("Geolocation lookup failed on all endpoints")
        return None

    def fetch_async(self) -> threading.Thread | None:
        """Start the background lookup once; later calls are no-ops."""
        with self._lock:
            if self._cached is not None:
                return None
            if self._thread is not None and self._thread.is_alive():
                return self._thread
            self._thread = threading.Thread(target=self.fetch, name="geo-lookup", daemon=True)
            thread = self._thread
        thread.start()
        return thread
