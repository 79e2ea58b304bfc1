# foodrelay/services/routing.py
import logging
from typing import Tuple

import httpx

from foodrelay.core.config import settings
from foodrelay.services.geo import haversine_km
from foodrelay.services.geocode import request_headers

log = logging.getLogger(__name__)

Point = Tuple[float, float]  # (lat, lng)

def internal_plan(origin: Point, destination: Point) -> dict:
    """
    Offline fallback: straight-line distance and an ETA at ~25 km/h.
    """
    dist = haversine_km(origin[0], origin[1], destination[0], destination[1])
    return {
        "distance_km": round(dist, 3),
        "duration_min": round((dist / 25.0) * 60.0, 1),
        "source": "internal",
    }

async def osrm_plan(origin: Point, destination: Point) -> dict:
    """
    OSRM public instance (free). No key needed.
    """
    coords = f"{origin[1]},{origin[0]};{destination[1]},{destination[0]}"
    url = f"{settings.osrm_base_url}/route/v1/driving/{coords}"
    params = {"overview": "false", "steps": "false"}

    async with httpx.AsyncClient(timeout=settings.http_timeout) as c:
        r = await c.get(url, params=params, headers=request_headers())
        r.raise_for_status()
        data = r.json()

    if not data.get("routes"):
        return internal_plan(origin, destination)
    route = data["routes"][0]
    return {
        "distance_km": round(route["distance"] / 1000, 3),
        "duration_min": round(route["duration"] / 60, 1),
        "source": "osrm",
    }

async def olamaps_plan(origin: Point, destination: Point) -> dict:
    if not settings.ola_maps_api_key:
        return await osrm_plan(origin, destination)
    params = {
        "origin": f"{origin[0]},{origin[1]}",
        "destination": f"{destination[0]},{destination[1]}",
        "api_key": settings.ola_maps_api_key,
    }
    async with httpx.AsyncClient(timeout=settings.http_timeout) as c:
        r = await c.post("https://api.olamaps.io/routing/v1/directions",
                         params=params, headers=request_headers())
        r.raise_for_status()
        data = r.json()

    routes = data.get("routes") or []
    if not routes or not routes[0].get("legs"):
        return internal_plan(origin, destination)
    leg = routes[0]["legs"][0]
    return {
        "distance_km": round(float(leg["distance"]) / 1000, 3),
        "duration_min": round(float(leg["duration"]) / 60, 1),
        "source": "olamaps",
    }

async def travel_info(origin: Point, destination: Point) -> dict:
    """Best available estimate; provider outages degrade to the offline estimate."""
    try:
        if settings.geocoder.lower() == "olamaps":
            return await olamaps_plan(origin, destination)
        return await osrm_plan(origin, destination)
    except (httpx.HTTPError, KeyError, ValueError) as ex:
        log.warning("routing provider failed, using straight-line estimate: %s", ex)
        return internal_plan(origin, destination)
