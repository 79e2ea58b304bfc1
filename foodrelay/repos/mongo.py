# foodrelay/repos/mongo.py
from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING, GEOSPHERE, ReturnDocument
from pymongo.errors import DuplicateKeyError

from foodrelay.core.errors import ConflictError
from foodrelay.core.states import ACTIVE_DELIVERY_STATES
from foodrelay.services.geo import EARTH_RADIUS_KM

ACCOUNT_COLLECTIONS = {"donor": "fooddonors", "ngo": "ngos"}

def _id() -> str:
    return str(ObjectId())

def _filter(expect: Dict[str, Any]) -> dict:
    return {k: ({"$in": list(v)} if isinstance(v, (list, tuple, set)) else v) for k, v in expect.items()}


class MongoRepo:
    """Motor-backed store. Ids are ObjectId hex strings kept in ``_id``."""

    def __init__(self, uri: str, db_name: str):
        # tz_aware keeps datetimes comparable with the in-memory repo
        self.client = AsyncIOMotorClient(uri, tz_aware=True)
        self.db = self.client[db_name]

    def _accounts(self, role: str):
        return self.db[ACCOUNT_COLLECTIONS[role]]

    async def ensure_indexes(self) -> None:
        async def ensure_index(col, keys, name: str, **kwargs):
            existing = [ix["name"] async for ix in col.list_indexes()]
            if name in existing:
                return
            await col.create_index(keys, name=name, **kwargs)

        for role in ACCOUNT_COLLECTIONS:
            col = self._accounts(role)
            await ensure_index(col, [("username", ASCENDING)], "username_1", unique=True)
            await ensure_index(col, [("email", ASCENDING)], "email_1", unique=True)
        await ensure_index(self.db.ngos, [("geo", GEOSPHERE)], "geo_2dsphere")
        await ensure_index(self.db.fooditems, [("donor_id", ASCENDING)], "donor_id_1")
        await ensure_index(self.db.fooditems, [("status", ASCENDING)], "status_1")
        await ensure_index(self.db.deliveries, [("ngo_id", ASCENDING), ("created_at", DESCENDING)], "ngo_id_1_created_at_-1")
        await ensure_index(self.db.deliveries, [("food_item_id", ASCENDING), ("status", ASCENDING)], "food_item_id_1_status_1")
        await ensure_index(self.db.outbox, [("status", ASCENDING), ("next_try_at", ASCENDING)], "status_1_next_try_at_1")
        await ensure_index(self.db.password_resets, [("role", ASCENDING), ("email", ASCENDING)], "role_1_email_1", unique=True)

    async def close(self) -> None:
        self.client.close()

    # Accounts
    async def create_account(self, role: str, doc: dict) -> dict:
        doc = dict(doc)
        doc.setdefault("_id", _id())
        try:
            await self._accounts(role).insert_one(doc)
        except DuplicateKeyError:
            raise ConflictError("Account with this username or email already exists")
        return doc

    async def get_account(self, role: str, account_id: str) -> Optional[dict]:
        if role not in ACCOUNT_COLLECTIONS:
            return None
        return await self._accounts(role).find_one({"_id": account_id})

    async def find_account(self, role: str, username: str | None = None,
                           email: str | None = None) -> Optional[dict]:
        conds = []
        if username:
            conds.append({"username": username})
        if email:
            conds.append({"email": email})
        if not conds:
            return None
        return await self._accounts(role).find_one({"$or": conds})

    async def update_account(self, role: str, account_id: str, fields: dict) -> Optional[dict]:
        fields = dict(fields)
        update: Dict[str, Any] = {}
        if "geo" in fields and fields["geo"] is None:
            # drop the field rather than storing a null point
            del fields["geo"]
            update["$unset"] = {"geo": ""}
        if fields:
            update["$set"] = fields
        try:
            return await self._accounts(role).find_one_and_update(
                {"_id": account_id}, update, return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError:
            raise ConflictError("Account with this username or email already exists")

    async def list_accounts(self, role: str) -> List[dict]:
        return [d async for d in self._accounts(role).find().sort([("created_at", DESCENDING), ("_id", DESCENDING)])]

    async def ngos_within(self, lat: float, lng: float, radius_km: float) -> List[dict]:
        q = {"geo": {"$geoWithin": {"$centerSphere": [[lng, lat], radius_km / EARTH_RADIUS_KM]}}}
        return [d async for d in self.db.ngos.find(q)]

    # Food items
    async def create_food_item(self, doc: dict) -> dict:
        doc = dict(doc)
        doc.setdefault("_id", _id())
        await self.db.fooditems.insert_one(doc)
        return doc

    async def get_food_item(self, item_id: str) -> Optional[dict]:
        return await self.db.fooditems.find_one({"_id": item_id})

    async def list_food_items(self, donor_id: str | None = None, status: str | None = None) -> List[dict]:
        q: Dict[str, Any] = {}
        if donor_id is not None:
            q["donor_id"] = donor_id
        if status is not None:
            q["status"] = status
        cur = self.db.fooditems.find(q).sort([("created_at", DESCENDING), ("_id", DESCENDING)])
        return [d async for d in cur]

    async def cas_food_item(self, item_id: str, expect: Dict[str, Any], fields: dict) -> Optional[dict]:
        return await self.db.fooditems.find_one_and_update(
            {"_id": item_id, **_filter(expect)},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )

    # Deliveries
    async def create_delivery(self, doc: dict) -> dict:
        doc = dict(doc)
        doc.setdefault("_id", _id())
        await self.db.deliveries.insert_one(doc)
        return doc

    async def get_delivery(self, delivery_id: str) -> Optional[dict]:
        return await self.db.deliveries.find_one({"_id": delivery_id})

    async def find_active_delivery(self, food_item_id: str) -> Optional[dict]:
        return await self.db.deliveries.find_one(
            {"food_item_id": food_item_id, "status": {"$in": ACTIVE_DELIVERY_STATES}}
        )

    async def transition_delivery(self, delivery_id: str, src: str, dst: str, version: int,
                                  event: dict, fields: dict | None = None) -> Optional[dict]:
        return await self.db.deliveries.find_one_and_update(
            {"_id": delivery_id, "status": src, "version": version},
            {
                "$set": {**(fields or {}), "status": dst, "updated_at": event["at"]},
                "$inc": {"version": 1},
                "$push": {"history": event},
            },
            return_document=ReturnDocument.AFTER,
        )

    async def delivery_history(self, ngo_id: str) -> List[dict]:
        pipeline = [
            {"$match": {"ngo_id": ngo_id}},
            {"$sort": {"created_at": -1, "_id": -1}},
            {"$lookup": {"from": "fooddonors", "localField": "donor_id", "foreignField": "_id", "as": "donor"}},
            {"$lookup": {"from": "ngos", "localField": "ngo_id", "foreignField": "_id", "as": "ngo"}},
            {"$lookup": {"from": "fooditems", "localField": "food_item_id", "foreignField": "_id", "as": "food_item"}},
            {"$addFields": {
                "donor": {"$arrayElemAt": ["$donor", 0]},
                "ngo": {"$arrayElemAt": ["$ngo", 0]},
                "food_item": {"$arrayElemAt": ["$food_item", 0]},
            }},
        ]
        return [d async for d in self.db.deliveries.aggregate(pipeline)]

    # Outbox
    async def enqueue_outbox(self, doc: dict) -> dict:
        doc = dict(doc)
        doc.setdefault("_id", _id())
        await self.db.outbox.insert_one(doc)
        return doc

    async def claim_outbox(self, now: datetime) -> Optional[dict]:
        return await self.db.outbox.find_one_and_update(
            {"status": "pending", "next_try_at": {"$lte": now}},
            {"$set": {"status": "delivering"}},
            sort=[("next_try_at", ASCENDING)],
            return_document=ReturnDocument.AFTER,
        )

    async def update_outbox(self, message_id: str, fields: dict) -> None:
        await self.db.outbox.update_one({"_id": message_id}, {"$set": fields})

    async def list_outbox(self, status: str | None = None) -> List[dict]:
        q = {"status": status} if status else {}
        return [m async for m in self.db.outbox.find(q)]

    # Password resets
    async def put_reset(self, role: str, email: str, code_hash: str, expires_at: datetime) -> None:
        await self.db.password_resets.update_one(
            {"role": role, "email": email},
            {"$set": {"code_hash": code_hash, "expires_at": expires_at}},
            upsert=True,
        )

    async def get_reset(self, role: str, email: str) -> Optional[dict]:
        return await self.db.password_resets.find_one({"role": role, "email": email})

    async def delete_reset(self, role: str, email: str) -> None:
        await self.db.password_resets.delete_one({"role": role, "email": email})
