# foodrelay/services/food_items.py
import logging
from datetime import datetime, timezone

from foodrelay.core.errors import ConflictError, NotFoundError
from foodrelay.services.geo import ensure_location_and_geo, location_of
from foodrelay.services.notifier import send_many

log = logging.getLogger(__name__)

def _utcnow():
    return datetime.now(timezone.utc)

def serialize(doc: dict) -> dict:
    out = {k: v for k, v in doc.items() if k not in ("_id", "geo", "_geocode_error")}
    out["id"] = doc["_id"]
    return out


async def create_food_item(donor_id: str, payload: dict, repo, geocode, matcher) -> tuple[dict, bool]:
    """
    Store a new item and kick off the proximity search from its location
    (the donor's location unless the item carries its own).
    Returns (item, search_started).
    """
    donor = await repo.get_account("donor", donor_id)
    if not donor:
        raise NotFoundError("Food donor not found")

    doc = dict(payload)
    if doc.get("location") or doc.get("address"):
        doc = await ensure_location_and_geo(doc, geocode)
    if not doc.get("location"):
        doc["location"] = donor.get("location")
        doc["address"] = doc.get("address") or donor.get("address")
    doc.pop("geo", None)
    doc.update({
        "donor_id": donor_id,
        "status": "available",
        "claimed_by": None,
        "created_at": _utcnow(),
    })
    item = await repo.create_food_item(doc)

    point = location_of(item)
    started = False
    if point:
        started = matcher.start(item["_id"], point[0], point[1])
    else:
        log.warning("food item %s has no usable location; NGOs will not be notified", item["_id"])
    return item, started


async def register_interest(ngo_id: str, food_item_id: str, repo, mailer, matcher) -> tuple[dict, bool]:
    """
    An NGO claims an available item. Idempotent for the same NGO.
    Returns (item, search_cancelled).
    """
    ngo = await repo.get_account("ngo", ngo_id)
    if not ngo:
        raise NotFoundError("NGO not found")
    item = await repo.get_food_item(food_item_id)
    if not item:
        raise NotFoundError("Food item not found")

    if item.get("claimed_by") == ngo_id and item["status"] in ("claimed", "reserved"):
        return item, False

    claimed = await repo.cas_food_item(
        food_item_id,
        {"status": "available"},
        {"status": "claimed", "claimed_by": ngo_id, "claimed_at": _utcnow()},
    )
    if not claimed:
        raise ConflictError("Food item is no longer available")

    cancelled = matcher.cancel(food_item_id)
    log.info("ngo %s claimed food item %s (search cancelled=%s)", ngo_id, food_item_id, cancelled)

    donor = await repo.get_account("donor", claimed["donor_id"])
    if donor and donor.get("email"):
        body = (
            f"Hello {donor.get('name') or donor.get('username')},\n\n"
            f"{ngo.get('name') or ngo.get('username')} has registered interest in your food item "
            f"\"{claimed.get('description', '')}\".\n"
            f"You can reach them at {ngo.get('contact_info') or ngo.get('email')}."
        )
        await send_many(mailer, [donor["email"]], "An NGO is interested in your donation", body)
    return claimed, cancelled
