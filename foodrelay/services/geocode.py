# foodrelay/services/geocode.py
from __future__ import annotations
import logging
import uuid
from typing import Tuple

import httpx

from foodrelay.core.config import settings
from foodrelay.core.errors import DispatchError

log = logging.getLogger(__name__)

class GeocodeError(DispatchError):
    pass

def request_headers() -> dict:
    # fresh id per outbound call
    return {"X-Request-Id": str(uuid.uuid4())}

async def geocode_address(address: str, language: str = "en") -> Tuple[float, float]:
    """
    Returns (lat, lng). Raises GeocodeError on failure.
    Provider is picked by GEOCODER = olamaps | nominatim | google | opencage.
    """
    a = (address or "").strip()
    if not a:
        raise GeocodeError("Empty address")

    provider = settings.geocoder.lower()
    try:
        async with httpx.AsyncClient(timeout=settings.http_timeout) as c:
            if provider == "olamaps":
                return await _olamaps(c, a, language)
            if provider == "google":
                return await _google(c, a)
            if provider == "opencage":
                return await _opencage(c, a)
            return await _nominatim(c, a)
    except httpx.HTTPError as ex:
        log.warning("geocode via %s failed for %r: %s", provider, a, ex)
        raise GeocodeError(f"Failed to fetch geocode: {ex}")

async def _olamaps(c: httpx.AsyncClient, a: str, language: str) -> Tuple[float, float]:
    if not settings.ola_maps_api_key:
        raise GeocodeError("OLA_MAPS_API_KEY not set")
    r = await c.get(
        "https://api.olamaps.io/places/v1/geocode",
        params={"address": a, "language": language, "api_key": settings.ola_maps_api_key},
        headers=request_headers(),
    )
    r.raise_for_status()
    results = r.json().get("geocodingResults") or []
    loc = ((results[0] if results else {}).get("geometry") or {}).get("location") or {}
    if loc.get("lat") is None or loc.get("lng") is None:
        raise GeocodeError(f"Geocode not found for address: {a}", status_code=404)
    return float(loc["lat"]), float(loc["lng"])

async def _google(c: httpx.AsyncClient, a: str) -> Tuple[float, float]:
    if not settings.google_maps_key:
        raise GeocodeError("GOOGLE_MAPS_KEY not set")
    r = await c.get(
        "https://maps.googleapis.com/maps/api/geocode/json",
        params={"address": a, "key": settings.google_maps_key},
        headers=request_headers(),
    )
    r.raise_for_status()
    js = r.json()
    if not js.get("results"):
        raise GeocodeError(f"Geocode not found for address: {a}", status_code=404)
    loc = js["results"][0]["geometry"]["location"]
    return float(loc["lat"]), float(loc["lng"])

async def _opencage(c: httpx.AsyncClient, a: str) -> Tuple[float, float]:
    if not settings.opencage_key:
        raise GeocodeError("OPENCAGE_KEY not set")
    r = await c.get(
        "https://api.opencagedata.com/geocode/v1/json",
        params={"q": a, "key": settings.opencage_key, "limit": 1},
        headers=request_headers(),
    )
    r.raise_for_status()
    js = r.json()
    if not js.get("results"):
        raise GeocodeError(f"Geocode not found for address: {a}", status_code=404)
    g = js["results"][0]["geometry"]
    return float(g["lat"]), float(g["lng"])

async def _nominatim(c: httpx.AsyncClient, a: str) -> Tuple[float, float]:
    # Nominatim policy: identify with a UA + contact
    headers = request_headers()
    headers["User-Agent"] = f"FoodRelay/1.0 (+{settings.admin_contact})"
    r = await c.get(
        "https://nominatim.openstreetmap.org/search",
        params={"q": a, "format": "json", "limit": 1},
        headers=headers,
    )
    r.raise_for_status()
    js = r.json()
    if not js:
        raise GeocodeError(f"Geocode not found for address: {a}", status_code=404)
    return float(js[0]["lat"]), float(js[0]["lon"])
