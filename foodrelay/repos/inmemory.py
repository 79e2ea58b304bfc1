# foodrelay/repos/inmemory.py
import copy
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId

from foodrelay.core.errors import ConflictError
from foodrelay.core.states import ACTIVE_DELIVERY_STATES
from foodrelay.services.geo import location_of, within_radius

def _id() -> str:
    return str(ObjectId())

def _matches(doc: dict, expect: Dict[str, Any]) -> bool:
    # scalar -> equality, list -> membership
    for k, v in expect.items():
        if isinstance(v, (list, tuple, set)):
            if doc.get(k) not in v:
                return False
        elif doc.get(k) != v:
            return False
    return True

def _newest_first(doc: dict):
    return (doc.get("created_at") or datetime.min.replace(tzinfo=timezone.utc), doc["_id"])


class InMemoryRepo:
    """Dict-backed store with the same contract as MongoRepo."""

    def __init__(self):
        self.accounts: Dict[str, Dict[str, dict]] = {"donor": {}, "ngo": {}}
        self.food_items: Dict[str, dict] = {}
        self.deliveries: Dict[str, dict] = {}
        self.outbox: Dict[str, dict] = {}
        self.resets: Dict[tuple, dict] = {}

    async def ensure_indexes(self) -> None:
        return None

    async def close(self) -> None:
        return None

    # Accounts
    async def create_account(self, role: str, doc: dict) -> dict:
        for other in self.accounts[role].values():
            if other["username"] == doc["username"] or other["email"] == doc["email"]:
                raise ConflictError("Account with this username or email already exists")
        doc = copy.deepcopy(doc)
        doc.setdefault("_id", _id())
        self.accounts[role][doc["_id"]] = doc
        return copy.deepcopy(doc)

    async def get_account(self, role: str, account_id: str) -> Optional[dict]:
        doc = self.accounts.get(role, {}).get(account_id)
        return copy.deepcopy(doc) if doc else None

    async def find_account(self, role: str, username: str | None = None,
                           email: str | None = None) -> Optional[dict]:
        for doc in self.accounts.get(role, {}).values():
            if (username and doc["username"] == username) or (email and doc["email"] == email):
                return copy.deepcopy(doc)
        return None

    async def update_account(self, role: str, account_id: str, fields: dict) -> Optional[dict]:
        doc = self.accounts.get(role, {}).get(account_id)
        if not doc:
            return None
        for other in self.accounts[role].values():
            if other["_id"] == account_id:
                continue
            if fields.get("email") and other["email"] == fields["email"]:
                raise ConflictError("Account with this username or email already exists")
        fields = dict(fields)
        if "geo" in fields and fields["geo"] is None:
            del fields["geo"]
            doc.pop("geo", None)
        doc.update(copy.deepcopy(fields))
        return copy.deepcopy(doc)

    async def list_accounts(self, role: str) -> List[dict]:
        return [copy.deepcopy(d) for d in sorted(self.accounts.get(role, {}).values(), key=_newest_first, reverse=True)]

    async def ngos_within(self, lat: float, lng: float, radius_km: float) -> List[dict]:
        out = []
        for doc in self.accounts["ngo"].values():
            point = location_of(doc)
            if point and within_radius((lat, lng), point, radius_km):
                out.append(copy.deepcopy(doc))
        return out

    # Food items
    async def create_food_item(self, doc: dict) -> dict:
        doc = copy.deepcopy(doc)
        doc.setdefault("_id", _id())
        self.food_items[doc["_id"]] = doc
        return copy.deepcopy(doc)

    async def get_food_item(self, item_id: str) -> Optional[dict]:
        doc = self.food_items.get(item_id)
        return copy.deepcopy(doc) if doc else None

    async def list_food_items(self, donor_id: str | None = None, status: str | None = None) -> List[dict]:
        items = [d for d in self.food_items.values()
                 if (donor_id is None or d.get("donor_id") == donor_id)
                 and (status is None or d.get("status") == status)]
        return [copy.deepcopy(d) for d in sorted(items, key=_newest_first, reverse=True)]

    async def cas_food_item(self, item_id: str, expect: Dict[str, Any], fields: dict) -> Optional[dict]:
        doc = self.food_items.get(item_id)
        if not doc or not _matches(doc, expect):
            return None
        doc.update(copy.deepcopy(fields))
        return copy.deepcopy(doc)

    # Deliveries
    async def create_delivery(self, doc: dict) -> dict:
        doc = copy.deepcopy(doc)
        doc.setdefault("_id", _id())
        self.deliveries[doc["_id"]] = doc
        return copy.deepcopy(doc)

    async def get_delivery(self, delivery_id: str) -> Optional[dict]:
        doc = self.deliveries.get(delivery_id)
        return copy.deepcopy(doc) if doc else None

    async def find_active_delivery(self, food_item_id: str) -> Optional[dict]:
        for doc in self.deliveries.values():
            if doc["food_item_id"] == food_item_id and doc["status"] in ACTIVE_DELIVERY_STATES:
                return copy.deepcopy(doc)
        return None

    async def transition_delivery(self, delivery_id: str, src: str, dst: str, version: int,
                                  event: dict, fields: dict | None = None) -> Optional[dict]:
        doc = self.deliveries.get(delivery_id)
        if not doc or doc["status"] != src or doc["version"] != version:
            return None
        doc.update(copy.deepcopy(fields or {}))
        doc["status"] = dst
        doc["version"] = version + 1
        doc["updated_at"] = event["at"]
        doc.setdefault("history", []).append(copy.deepcopy(event))
        return copy.deepcopy(doc)

    async def delivery_history(self, ngo_id: str) -> List[dict]:
        rows = []
        for d in sorted(self.deliveries.values(), key=_newest_first, reverse=True):
            if d["ngo_id"] != ngo_id:
                continue
            row = copy.deepcopy(d)
            row["donor"] = copy.deepcopy(self.accounts["donor"].get(d["donor_id"]))
            row["ngo"] = copy.deepcopy(self.accounts["ngo"].get(d["ngo_id"]))
            row["food_item"] = copy.deepcopy(self.food_items.get(d["food_item_id"]))
            rows.append(row)
        return rows

    # Outbox
    async def enqueue_outbox(self, doc: dict) -> dict:
        doc = copy.deepcopy(doc)
        doc.setdefault("_id", _id())
        self.outbox[doc["_id"]] = doc
        return copy.deepcopy(doc)

    async def claim_outbox(self, now: datetime) -> Optional[dict]:
        due = [m for m in self.outbox.values() if m["status"] == "pending" and m["next_try_at"] <= now]
        if not due:
            return None
        rec = min(due, key=lambda m: m["next_try_at"])
        rec["status"] = "delivering"
        return copy.deepcopy(rec)

    async def update_outbox(self, message_id: str, fields: dict) -> None:
        if message_id in self.outbox:
            self.outbox[message_id].update(copy.deepcopy(fields))

    async def list_outbox(self, status: str | None = None) -> List[dict]:
        return [copy.deepcopy(m) for m in self.outbox.values() if status is None or m["status"] == status]

    # Password resets
    async def put_reset(self, role: str, email: str, code_hash: str, expires_at: datetime) -> None:
        self.resets[(role, email)] = {"role": role, "email": email, "code_hash": code_hash, "expires_at": expires_at}

    async def get_reset(self, role: str, email: str) -> Optional[dict]:
        doc = self.resets.get((role, email))
        return copy.deepcopy(doc) if doc else None

    async def delete_reset(self, role: str, email: str) -> None:
        self.resets.pop((role, email), None)
