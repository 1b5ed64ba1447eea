from __future__ import annotations
from typing import Any, Optional
from datetime import datetime, timezone
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from config import settings

# Collection names
PRODUCTS = "products"
ORDERS = "orders"
CUSTOMERS = "customers"
BANNERS = "banners"
TESTIMONIALS = "testimonials"
USERS = "users"

_client: Optional[AsyncIOMotorClient] = None
_db: Optional[AsyncIOMotorDatabase] = None


async def get_db() -> AsyncIOMotorDatabase:
    global _client, _db
    if _db is None:
        _client = AsyncIOMotorClient(settings.DATABASE_URL, tz_aware=True)
        _db = _client[settings.DATABASE_NAME]
    return _db


def to_public(doc: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def _object_id(doc_id: str) -> Optional[ObjectId]:
    return ObjectId(doc_id) if ObjectId.is_valid(doc_id) else None


class DocumentStore:
    """Thin async wrapper over the document database.

    Every method takes a collection name and works with plain dicts; ids go in
    and come out as strings. Driver errors (``PyMongoError``) propagate to the
    caller, which decides how to surface them.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def create(self, collection: str, data: dict[str, Any]) -> dict[str, Any]:
        now = datetime.now(timezone.utc)
        payload = {**data, "created_at": data.get("created_at") or now, "updated_at": now}
        payload.pop("id", None)
        result = await self.db[collection].insert_one(payload)
        inserted = await self.db[collection].find_one({"_id": result.inserted_id})
        return to_public(inserted) or {}

    async def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        oid = _object_id(doc_id)
        if oid is None:
            return None
        return to_public(await self.db[collection].find_one({"_id": oid}))

    async def find_one(self, collection: str, filter_dict: dict[str, Any]) -> Optional[dict[str, Any]]:
        return to_public(await self.db[collection].find_one(filter_dict))

    async def find(
        self,
        collection: str,
        filter_dict: dict[str, Any] | None = None,
        sort: list[tuple[str, int]] | None = None,
        limit: int = 0,
    ) -> list[dict[str, Any]]:
        cursor = self.db[collection].find(filter_dict or {})
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        return [to_public(d) async for d in cursor]

    async def update(self, collection: str, doc_id: str, changes: dict[str, Any]) -> Optional[dict[str, Any]]:
        oid = _object_id(doc_id)
        if oid is None:
            return None
        changes = {k: v for k, v in changes.items() if k not in ("id", "_id", "created_at")}
        changes["updated_at"] = datetime.now(timezone.utc)
        result = await self.db[collection].update_one({"_id": oid}, {"$set": changes})
        if result.matched_count == 0:
            return None
        return to_public(await self.db[collection].find_one({"_id": oid}))

    # Array fields are changed in place with single-document atomic operators,
    # so concurrent writers never overwrite each other's elements.

    async def _modify_array(
        self, collection: str, doc_id: str, field: str, match: Optional[dict[str, Any]], update: dict[str, Any],
    ) -> Optional[dict[str, Any]]:
        oid = _object_id(doc_id)
        if oid is None:
            return None
        query: dict[str, Any] = {"_id": oid}
        if match is not None:
            query[field] = {"$elemMatch": match}
        update.setdefault("$set", {})["updated_at"] = datetime.now(timezone.utc)
        result = await self.db[collection].update_one(query, update)
        if result.matched_count == 0:
            return None
        return to_public(await self.db[collection].find_one({"_id": oid}))

    async def push(self, collection: str, doc_id: str, field: str, value: Any) -> Optional[dict[str, Any]]:
        """Append ``value`` to the array ``field``; None when the document is missing."""
        return await self._modify_array(collection, doc_id, field, None, {"$push": {field: value}})

    async def update_in_array(
        self, collection: str, doc_id: str, field: str, match: dict[str, Any], changes: dict[str, Any],
    ) -> Optional[dict[str, Any]]:
        """Set ``changes`` on the first element of ``field`` matching ``match``.

        Returns None when the document or the element is missing.
        """
        sets = {f"{field}.$.{key}": value for key, value in changes.items()}
        return await self._modify_array(collection, doc_id, field, match, {"$set": sets})

    async def pull(self, collection: str, doc_id: str, field: str, match: dict[str, Any]) -> Optional[dict[str, Any]]:
        """Remove the elements of ``field`` matching ``match``; None when nothing matched."""
        return await self._modify_array(collection, doc_id, field, match, {"$pull": {field: match}})

    async def delete(self, collection: str, doc_id: str) -> bool:
        oid = _object_id(doc_id)
        if oid is None:
            return False
        result = await self.db[collection].delete_one({"_id": oid})
        return result.deleted_count > 0

    async def count(self, collection: str, filter_dict: dict[str, Any] | None = None) -> int:
        return await self.db[collection].count_documents(filter_dict or {})

    async def collection_names(self) -> list[str]:
        return await self.db.list_collection_names()


async def get_store() -> DocumentStore:
    return DocumentStore(await get_db())
