# foodrelay/services/deliveries.py
"""
Delivery tracker.

A delivery ties one food item to the NGO collecting it. Status only moves
forward (Pending -> Started -> Completed/Failed); every move is a
compare-and-swap on (status, version) so concurrent updates cannot both win.
Donor / NGO / food item are weak references joined at read time; a dangling
reference yields null fields in the view, never an error.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from pymongo.errors import PyMongoError

from foodrelay.core.config import settings
from foodrelay.core.errors import (
    ConflictError, DispatchError, ForbiddenError, NotFoundError, ValidationError,
)
from foodrelay.core.security import Principal, generate_code, hash_password, verify_password
from foodrelay.core.states import DELIVERY_STATES, can_transition
from foodrelay.services.geo import location_of
from foodrelay.services.outbox import enqueue_email

log = logging.getLogger(__name__)

PICKUP_SUBJECT = "Your food pickup code"

def _utcnow():
    return datetime.now(timezone.utc)

def _event(src: Optional[str], dst: str, principal: Optional[Principal] = None, note: Optional[str] = None) -> dict:
    return {
        "at": _utcnow(),
        "by": principal.id if principal else None,
        "role": principal.role if principal else None,
        "from_status": src,
        "to_status": dst,
        "note": note,
    }

def _latlng(doc: Optional[dict]) -> Optional[dict]:
    point = location_of(doc)
    return {"lat": point[0], "lng": point[1]} if point else None

def serialize(doc: dict) -> dict:
    return {
        "id": doc["_id"],
        "ngo_id": doc["ngo_id"],
        "donor_id": doc["donor_id"],
        "food_item_id": doc["food_item_id"],
        "status": doc["status"],
        "version": doc["version"],
        "created_at": doc["created_at"],
        "updated_at": doc.get("updated_at"),
    }

def pickup_body(ngo: dict, donor: dict, item: dict, code: str) -> str:
    return (
        f"Hello {ngo.get('name') or ngo.get('username')},\n\n"
        f"Your pickup of \"{item.get('description', '')}\" ({item.get('quantity', '')}) "
        f"from {donor.get('name') or donor.get('username')} has been scheduled.\n"
        f"Share this code with the donor at pickup: {code}\n"
    )


async def _reserve(repo, item_id: str, ngo_id: str) -> Optional[dict]:
    fields = {"status": "reserved", "claimed_by": ngo_id}
    reserved = await repo.cas_food_item(item_id, {"status": "available"}, fields)
    if reserved:
        return {"status": "available", "claimed_by": None}
    reserved = await repo.cas_food_item(item_id, {"status": "claimed", "claimed_by": ngo_id}, fields)
    if reserved:
        return {"status": "claimed", "claimed_by": ngo_id}
    return None


async def start_delivery(ngo_id, donor_id, food_item_id, repo, mailer, matcher=None) -> dict:
    ids = [ngo_id, donor_id, food_item_id]
    if any(not isinstance(x, str) or not x.strip() for x in ids):
        raise ValidationError("Required fields are missing")
    ngo_id, donor_id, food_item_id = (x.strip() for x in ids)

    ngo = await repo.get_account("ngo", ngo_id)
    if not ngo:
        raise NotFoundError("NGO not found")
    donor = await repo.get_account("donor", donor_id)
    if not donor:
        raise NotFoundError("Food donor not found")
    item = await repo.get_food_item(food_item_id)
    if not item:
        raise NotFoundError("Food item not found")

    if item.get("donor_id") != donor_id:
        raise ConflictError("Food item does not belong to this donor")
    if await repo.find_active_delivery(food_item_id):
        raise ConflictError("A delivery is already in progress for this food item")

    previous = await _reserve(repo, food_item_id, ngo_id)
    if previous is None:
        raise ConflictError("Food item is not available to this NGO")

    code = generate_code()
    now = _utcnow()
    doc = {
        "ngo_id": ngo_id,
        "donor_id": donor_id,
        "food_item_id": food_item_id,
        "status": "Pending",
        "version": 1,
        "pickup_code_hash": hash_password(code),
        "history": [_event(None, "Pending", note="created")],
        "created_at": now,
        "updated_at": now,
    }
    try:
        delivery = await repo.create_delivery(doc)
    except PyMongoError:
        # compensate: hand the item back
        await repo.cas_food_item(food_item_id, {"status": "reserved", "claimed_by": ngo_id}, previous)
        raise

    if matcher is not None:
        matcher.cancel(food_item_id)

    body = pickup_body(ngo, donor, item, code)
    sent = True
    try:
        await mailer.send(ngo.get("email"), PICKUP_SUBJECT, body)
    except DispatchError as ex:
        sent = False
        log.warning("pickup code for delivery %s queued for retry: %s", delivery["_id"], ex.message)
        await enqueue_email(repo, ngo.get("email"), PICKUP_SUBJECT, body,
                            max_attempts=settings.outbox_max_attempts, last_error=ex.message)

    log.info("delivery %s started: food item %s, donor %s -> ngo %s", delivery["_id"], food_item_id, donor_id, ngo_id)
    return {
        "delivery": serialize(delivery),
        "donor_location": _latlng(donor),
        "ngo_location": _latlng(ngo),
        "donor_username": donor.get("username"),
        "ngo_username": ngo.get("username"),
        "pickup_code_sent": sent,
    }


def history_view(row: dict) -> dict:
    donor = row.get("donor")
    ngo = row.get("ngo")
    item = row.get("food_item")
    donor_name = None
    if donor is not None:
        donor_name = donor.get("name") or donor.get("username")
    return {
        "id": row["_id"],
        "status": row["status"],
        "food_item_id": row["food_item_id"],
        "food_description": item.get("description") if item is not None else None,
        "donor_username": donor.get("username") if donor is not None else None,
        "donor_name": donor_name,
        "donor_location": _latlng(donor),
        "ngo_name": ngo.get("name") if ngo is not None else None,
        "ngo_location": _latlng(ngo),
        "delivery_date": row["created_at"],
    }

async def get_history(ngo_id, repo) -> List[dict]:
    if not isinstance(ngo_id, str) or not ngo_id.strip():
        raise ValidationError("ngoId is required")
    rows = await repo.delivery_history(ngo_id.strip())
    return [history_view(r) for r in rows]


async def get_delivery(delivery_id: str, principal: Principal, repo) -> dict:
    delivery = await repo.get_delivery(delivery_id)
    if not delivery:
        raise NotFoundError("Delivery not found")
    _ensure_party(delivery, principal)
    return delivery

def _ensure_party(delivery: dict, principal: Principal) -> None:
    owner = delivery["ngo_id"] if principal.is_ngo else delivery["donor_id"]
    if owner != principal.id:
        raise ForbiddenError("Not a party to this delivery")


async def _settle_food_item(repo, delivery: dict, matcher=None) -> None:
    item_id = delivery["food_item_id"]
    if delivery["status"] == "Completed":
        await repo.cas_food_item(item_id, {"status": "reserved"}, {"status": "delivered", "delivered_at": _utcnow()})
    elif delivery["status"] == "Failed":
        released = await repo.cas_food_item(item_id, {"status": "reserved"}, {"status": "available", "claimed_by": None})
        point = location_of(released)
        if released and point and matcher is not None:
            # offer the item again, skipping NGOs that already heard about it
            matcher.start(item_id, point[0], point[1], exclude=matcher.notified_for(item_id))
            log.info("food item %s released by failed delivery %s; search restarted", item_id, delivery["_id"])

async def transition(delivery_id: str, to_status: str, version: int, principal: Principal, repo,
                     note: Optional[str] = None, matcher=None) -> dict:
    if to_status not in DELIVERY_STATES:
        raise ValidationError("Invalid status")
    delivery = await get_delivery(delivery_id, principal, repo)

    src = delivery["status"]
    if (src, to_status) == ("Pending", "Started"):
        raise ValidationError("Pickup code required; use confirm-pickup")
    if not can_transition(src, to_status, principal.role):
        raise ConflictError(f"Transition {src} -> {to_status} not allowed")

    updated = await repo.transition_delivery(delivery_id, src, to_status, version, _event(src, to_status, principal, note))
    if not updated:
        raise ConflictError("Version conflict. Refresh and retry.")
    await _settle_food_item(repo, updated, matcher)
    log.info("delivery %s: %s -> %s by %s %s", delivery_id, src, to_status, principal.role, principal.id)
    return updated

async def confirm_pickup(delivery_id: str, code: str, principal: Principal, repo) -> dict:
    delivery = await get_delivery(delivery_id, principal, repo)
    if not principal.is_ngo:
        raise ForbiddenError("Only the collecting NGO can confirm pickup")
    if delivery["status"] != "Pending":
        raise ConflictError(f"Delivery is already {delivery['status']}")
    if not verify_password((code or "").strip(), delivery.get("pickup_code_hash", "")):
        raise ValidationError("Invalid pickup code")

    updated = await repo.transition_delivery(
        delivery_id, "Pending", "Started", delivery["version"],
        _event("Pending", "Started", principal, "pickup confirmed"),
    )
    if not updated:
        raise ConflictError("Version conflict. Refresh and retry.")
    log.info("delivery %s picked up", delivery_id)
    return updated
