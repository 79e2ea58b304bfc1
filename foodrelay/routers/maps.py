from typing import Tuple

from fastapi import APIRouter, Depends, Query

from foodrelay.core.errors import ValidationError
from foodrelay.deps import get_geocoder
from foodrelay.schemas import GeocodeOut, TravelInfoIn, TravelInfoOut
from foodrelay.services.geo import valid_coords
from foodrelay.services.routing import travel_info

router = APIRouter(prefix="/maps", tags=["maps"])

def _parse_coords(s: str):
    parts = [p.strip() for p in s.split(",")]
    if len(parts) != 2:
        return None
    try:
        lat, lng = float(parts[0]), float(parts[1])
    except ValueError:
        return None
    return (lat, lng) if valid_coords(lat, lng) else None

async def _resolve(s: str, geocode) -> Tuple[float, float]:
    s = (s or "").strip()
    if not s:
        raise ValidationError("Origin and destination are required")
    return _parse_coords(s) or await geocode(s)

@router.get("/geocode", response_model=GeocodeOut)
async def get_geocode(address: str = Query(..., min_length=1), language: str = "en",
                      geocode=Depends(get_geocoder)):
    lat, lng = await geocode(address, language)
    return {"lat": lat, "lng": lng}

@router.post("/travel-info", response_model=TravelInfoOut)
async def get_travel_info(body: TravelInfoIn, geocode=Depends(get_geocoder)):
    origin = await _resolve(body.origin, geocode)
    destination = await _resolve(body.destination, geocode)
    return await travel_info(origin, destination)
