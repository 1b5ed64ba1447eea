import asyncio
import copy
import re
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo.errors import PyMongoError

from auth import SessionRegistry
from config import settings
from database import get_store
from main import app
from storage import LocalBlobStorage, get_blob_storage

ADMIN_EMAIL = "admin@vapex.test"


def _lookup(doc: dict[str, Any], dotted: str) -> Any:
    value: Any = doc
    for part in dotted.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _matches(doc: dict[str, Any], filt: dict[str, Any]) -> bool:
    for key, expected in filt.items():
        actual = _lookup(doc, key)
        if isinstance(expected, dict) and "$regex" in expected:
            flags = re.IGNORECASE if "i" in expected.get("$options", "") else 0
            if not isinstance(actual, str) or not re.search(expected["$regex"], actual, flags):
                return False
        elif actual != expected:
            return False
    return True


class MemoryStore:
    """In-memory stand-in for DocumentStore used by the tests.

    ``fail_on`` is called with ``(collection, data)`` before every create; when
    it returns True the write raises ``PyMongoError``. Reads and writes yield to
    the event loop first, as a network round trip would.
    """

    def __init__(self):
        self.collections: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self.fail_on: Optional[Callable[[str, dict[str, Any]], bool]] = None
        self.create_calls: list[str] = []

    def _public(self, doc_id: str, doc: dict[str, Any]) -> dict[str, Any]:
        return {**copy.deepcopy(doc), "id": doc_id}

    def insert(self, collection: str, data: dict[str, Any]) -> str:
        now = datetime.now(timezone.utc)
        doc_id = str(ObjectId())
        doc = copy.deepcopy({**data, "created_at": data.get("created_at") or now, "updated_at": now})
        doc.pop("id", None)
        self.collections[collection][doc_id] = doc
        return doc_id

    def docs(self, collection: str) -> list[dict[str, Any]]:
        return [self._public(i, d) for i, d in self.collections[collection].items()]

    async def create(self, collection: str, data: dict[str, Any]) -> dict[str, Any]:
        self.create_calls.append(collection)
        if self.fail_on and self.fail_on(collection, data):
            raise PyMongoError("simulated write failure")
        doc_id = self.insert(collection, data)
        return self._public(doc_id, self.collections[collection][doc_id])

    async def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        await asyncio.sleep(0)
        doc = self.collections[collection].get(doc_id)
        return self._public(doc_id, doc) if doc is not None else None

    async def find_one(self, collection: str, filter_dict: dict[str, Any]) -> Optional[dict[str, Any]]:
        docs = await self.find(collection, filter_dict)
        return docs[0] if docs else None

    async def find(self, collection, filter_dict=None, sort=None, limit=0):
        docs = [self._public(i, d) for i, d in self.collections[collection].items() if _matches(d, filter_dict or {})]
        for field, direction in reversed(sort or []):
            docs.sort(key=lambda d: (d.get(field) is not None, d.get(field) or 0), reverse=direction < 0)
        return docs[:limit] if limit else docs

    async def update(self, collection: str, doc_id: str, changes: dict[str, Any]) -> Optional[dict[str, Any]]:
        await asyncio.sleep(0)
        doc = self.collections[collection].get(doc_id)
        if doc is None:
            return None
        changes = {k: v for k, v in changes.items() if k not in ("id", "_id", "created_at")}
        doc.update(copy.deepcopy(changes))
        doc["updated_at"] = datetime.now(timezone.utc)
        return self._public(doc_id, doc)

    def _element_index(self, doc: dict[str, Any], field: str, match: dict[str, Any]) -> Optional[int]:
        for i, element in enumerate(doc.get(field) or []):
            if isinstance(element, dict) and all(element.get(k) == v for k, v in match.items()):
                return i
        return None

    async def push(self, collection, doc_id, field, value):
        await asyncio.sleep(0)
        doc = self.collections[collection].get(doc_id)
        if doc is None:
            return None
        doc.setdefault(field, []).append(copy.deepcopy(value))
        doc["updated_at"] = datetime.now(timezone.utc)
        return self._public(doc_id, doc)

    async def update_in_array(self, collection, doc_id, field, match, changes):
        await asyncio.sleep(0)
        doc = self.collections[collection].get(doc_id)
        index = self._element_index(doc, field, match) if doc is not None else None
        if index is None:
            return None
        doc[field][index].update(copy.deepcopy(changes))
        doc["updated_at"] = datetime.now(timezone.utc)
        return self._public(doc_id, doc)

    async def pull(self, collection, doc_id, field, match):
        await asyncio.sleep(0)
        doc = self.collections[collection].get(doc_id)
        if doc is None or self._element_index(doc, field, match) is None:
            return None
        doc[field] = [
            e for e in doc[field] if not (isinstance(e, dict) and all(e.get(k) == v for k, v in match.items()))
        ]
        doc["updated_at"] = datetime.now(timezone.utc)
        return self._public(doc_id, doc)

    async def delete(self, collection: str, doc_id: str) -> bool:
        return self.collections[collection].pop(doc_id, None) is not None

    async def count(self, collection: str, filter_dict=None) -> int:
        return len(await self.find(collection, filter_dict))

    async def collection_names(self) -> list[str]:
        return [name for name, docs in self.collections.items() if docs]


def product_doc(**overrides: Any) -> dict[str, Any]:
    doc = {
        "name": "Caliburn G2",
        "description": "Refillable pod kit",
        "price": 1999.0,
        "sale_price": None,
        "stock": 20,
        "category": "PODKITS",
        "brand": "Uwell",
        "image_url": "https://cdn.example.com/caliburn.jpg",
        "images": [],
        "flavors": [],
        "variants": [],
        "ratings": [],
        "featured": False,
        "most_selling": False,
    }
    doc.update(overrides)
    return doc


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def client(store, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_EMAILS", ADMIN_EMAIL)
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_blob_storage] = lambda: LocalBlobStorage(tmp_path, "http://testserver")
    app.state.sessions = SessionRegistry()
    yield TestClient(app)
    app.dependency_overrides.clear()


def register(client: TestClient, email: str, name: str = "Shopper", password: str = "secret123") -> dict[str, str]:
    resp = client.post("/api/auth/register", json={"email": email, "password": password, "name": name})
    assert resp.status_code == 201, resp.text
    return {"Authorization": f"Bearer {resp.json()['token']}"}


@pytest.fixture
def admin_headers(client):
    return register(client, ADMIN_EMAIL, name="Store Admin")


@pytest.fixture
def user_headers(client):
    return register(client, "ravi@example.com", name="Ravi")
