# foodrelay/services/geo.py
from math import radians, sin, cos, asin, sqrt
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from foodrelay.services.geocode import GeocodeError

# Same sphere MongoDB's $centerSphere is fed with, so both repos agree.
EARTH_RADIUS_KM = 6378.1
BOUNDARY_EPS_KM = 1e-9

def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    dlat = radians(lat2 - lat1)
    dlng = radians(lng2 - lng1)
    a = sin(dlat/2)**2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(dlng/2)**2
    return 2 * EARTH_RADIUS_KM * asin(min(1.0, sqrt(a)))

def within_radius(center: Tuple[float, float], point: Tuple[float, float], radius_km: float) -> bool:
    """Boundary-inclusive spherical containment."""
    return haversine_km(center[0], center[1], point[0], point[1]) <= radius_km + BOUNDARY_EPS_KM

def geo_point(lat: float, lng: float) -> Dict[str, Any]:
    return {"type": "Point", "coordinates": [float(lng), float(lat)]}

def valid_coords(lat, lng) -> bool:
    try:
        lat = float(lat); lng = float(lng)
    except (TypeError, ValueError):
        return False
    if lat == 0.0 and lng == 0.0:
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0

def location_of(doc: Optional[Dict[str, Any]]) -> Optional[Tuple[float, float]]:
    loc = (doc or {}).get("location") or {}
    if valid_coords(loc.get("lat"), loc.get("lng")):
        return float(loc["lat"]), float(loc["lng"])
    return None


async def ensure_location_and_geo(
    doc: Dict[str, Any],
    geocode: Callable[[str], Awaitable[Tuple[float, float]]],
) -> Dict[str, Any]:
    """
    Normalise ``location`` and derive ``geo`` on a document about to be stored.
    Invalid coordinates fall back to geocoding ``address``; a failed geocode
    leaves no ``geo`` behind and records ``_geocode_error``.
    """
    addr = (doc.get("address") or "").strip()
    loc = doc.get("location") or {}
    lat = loc.get("lat"); lng = loc.get("lng")

    if not valid_coords(lat, lng):
        if addr:
            try:
                glat, glng = await geocode(addr)
                doc["location"] = {"lat": float(glat), "lng": float(glng)}
                doc["geo"] = geo_point(glat, glng)
                doc.pop("_geocode_error", None)
                return doc
            except GeocodeError as ex:
                # never store a bogus [0,0] point
                doc["_geocode_error"] = ex.message
                doc.pop("geo", None)
                doc["location"] = None
                return doc
        doc.pop("geo", None)
        doc["location"] = None
        return doc

    lat = float(lat); lng = float(lng)
    doc["location"] = {"lat": lat, "lng": lng}
    doc["geo"] = geo_point(lat, lng)
    doc.pop("_geocode_error", None)
    return doc
