"""
Document store access.

Two stores share the same small method set so the rest of the app can build
MongoDB-style queries without caring where the data lives:

- MongoStore talks to a real MongoDB through pymongo
- MemoryStore keeps documents in process and interprets the query subset the
  app uses ($in, $nin, $ne, $or, $and, $regex and dotted paths)

The store is picked once from DATABASE_URL / DATABASE_NAME. Without them the
app runs on the in-memory store.
"""

import copy
import logging
import os
import re
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from errors import InvalidIdError, StoreError

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

POEMS = "poem"
USERS = "user"

Query = Dict[str, Any]
Sort = Sequence[Tuple[str, int]]

_HEX_ID = re.compile(r"^[0-9a-f]{32}$")


@contextmanager
def _driver_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except PyMongoError as exc:
        logger.error("MongoDB %s failed: %s", operation, exc)
        raise StoreError(f"Database {operation} failed", {"reason": str(exc)}) from exc


class MongoStore:
    mode = "mongo"

    def __init__(self, db):
        self.db = db

    def to_id(self, value: Any) -> ObjectId:
        if isinstance(value, ObjectId):
            return value
        try:
            return ObjectId(value)
        except (InvalidId, TypeError):
            raise InvalidIdError(str(value))

    def is_id(self, value: str) -> bool:
        return ObjectId.is_valid(value)

    def count(self, collection: str, query: Optional[Query] = None) -> int:
        with _driver_errors("count"):
            return self.db[collection].count_documents(query or {})

    def find(
        self,
        collection: str,
        query: Optional[Query] = None,
        projection: Optional[Dict[str, int]] = None,
        sort: Optional[Sort] = None,
        skip: int = 0,
        limit: int = 0,
    ) -> List[dict]:
        with _driver_errors("find"):
            cursor = self.db[collection].find(query or {}, projection)
            if sort:
                cursor = cursor.sort(list(sort))
            if skip:
                cursor = cursor.skip(skip)
            if limit:
                cursor = cursor.limit(limit)
            return list(cursor)

    def find_one(self, collection: str, query: Query) -> Optional[dict]:
        with _driver_errors("find_one"):
            return self.db[collection].find_one(query)

    def sample(self, collection: str, query: Query, size: int, rng=None) -> List[dict]:
        # $sample draws server side; rng only drives the in-memory store
        with _driver_errors("aggregate"):
            return list(self.db[collection].aggregate([
                {"$match": query},
                {"$sample": {"size": size}},
            ]))

    def insert_one(self, collection: str, doc: dict) -> str:
        with _driver_errors("insert"):
            return str(self.db[collection].insert_one(doc).inserted_id)

    def update_one(self, collection: str, query: Query, update: Dict[str, Any]) -> bool:
        with _driver_errors("update"):
            return self.db[collection].update_one(query, update).matched_count > 0

    def delete_one(self, collection: str, query: Query) -> bool:
        with _driver_errors("delete"):
            return self.db[collection].delete_one(query).deleted_count > 0


# In-memory store

def _values(doc: Any, path: str) -> List[Any]:
    current = [doc]
    for part in path.split("."):
        nxt: List[Any] = []
        for item in current:
            if isinstance(item, dict):
                if part in item:
                    nxt.append(item[part])
            elif isinstance(item, list):
                for el in item:
                    if isinstance(el, dict) and part in el:
                        nxt.append(el[part])
        current = nxt
    out: List[Any] = []
    for v in current:
        if isinstance(v, list):
            out.extend(v)
        else:
            out.append(v)
    return out


def _match_condition(values: List[Any], cond: Any) -> bool:
    if isinstance(cond, dict) and any(k.startswith("$") for k in cond):
        flags = re.I if "i" in cond.get("$options", "") else 0
        for op, arg in cond.items():
            if op == "$in":
                ok = any(v == a for v in values for a in arg)
            elif op == "$nin":
                ok = not any(v == a for v in values for a in arg)
            elif op == "$ne":
                ok = all(v != arg for v in values)
            elif op == "$regex":
                ok = any(isinstance(v, str) and re.search(arg, v, flags) for v in values)
            elif op == "$options":
                continue
            else:
                raise StoreError("Unsupported query operator", {"operator": op})
            if not ok:
                return False
        return True
    return any(v == cond for v in values)


def matches(doc: dict, query: Optional[Query]) -> bool:
    for key, cond in (query or {}).items():
        if key == "$or":
            if not any(matches(doc, sub) for sub in cond):
                return False
        elif key == "$and":
            if not all(matches(doc, sub) for sub in cond):
                return False
        elif not _match_condition(_values(doc, key), cond):
            return False
    return True


def _set_path(doc: dict, path: str, value: Any) -> None:
    parts = path.split(".")
    for part in parts[:-1]:
        doc = doc.setdefault(part, {})
    doc[parts[-1]] = value


class MemoryStore:
    mode = "memory"

    def __init__(self, collections: Optional[Dict[str, List[dict]]] = None):
        self.collections: Dict[str, List[dict]] = collections or {}

    def _docs(self, collection: str) -> List[dict]:
        return self.collections.setdefault(collection, [])

    def to_id(self, value: Any) -> str:
        if isinstance(value, str) and _HEX_ID.match(value):
            return value
        raise InvalidIdError(str(value))

    def is_id(self, value: str) -> bool:
        return bool(_HEX_ID.match(value))

    def count(self, collection: str, query: Optional[Query] = None) -> int:
        return len([d for d in self._docs(collection) if matches(d, query)])

    def find(
        self,
        collection: str,
        query: Optional[Query] = None,
        projection: Optional[Dict[str, int]] = None,
        sort: Optional[Sort] = None,
        skip: int = 0,
        limit: int = 0,
    ) -> List[dict]:
        items = [d for d in self._docs(collection) if matches(d, query)]
        for field, direction in reversed(list(sort or [])):
            def sort_key(d: dict, field: str = field):
                vals = _values(d, field)
                v = vals[0] if vals else None
                return (v is not None, v if v is not None else 0)
            items.sort(key=sort_key, reverse=direction < 0)
        items = items[skip:]
        if limit:
            items = items[:limit]
        if projection:
            keep = set(projection) | {"_id"}
            items = [{k: v for k, v in d.items() if k in keep} for d in items]
        return copy.deepcopy(items)

    def find_one(self, collection: str, query: Query) -> Optional[dict]:
        found = self.find(collection, query, limit=1)
        return found[0] if found else None

    def sample(self, collection: str, query: Query, size: int, rng) -> List[dict]:
        items = [d for d in self._docs(collection) if matches(d, query)]
        return copy.deepcopy(rng.sample(items, min(size, len(items))))

    def insert_one(self, collection: str, doc: dict) -> str:
        new_id = doc.get("_id") or uuid.uuid4().hex
        self._docs(collection).append({**copy.deepcopy(doc), "_id": new_id})
        return new_id

    def update_one(self, collection: str, query: Query, update: Dict[str, Any]) -> bool:
        for doc in self._docs(collection):
            if not matches(doc, query):
                continue
            for op, fields in update.items():
                for key, value in fields.items():
                    if op == "$set":
                        _set_path(doc, key, copy.deepcopy(value))
                    elif op == "$inc":
                        doc[key] = doc.get(key, 0) + value
                    elif op == "$push":
                        doc.setdefault(key, []).append(copy.deepcopy(value))
                    elif op == "$pull":
                        if isinstance(value, dict):
                            doc[key] = [el for el in doc.get(key, []) if not (isinstance(el, dict) and matches(el, value))]
                        else:
                            doc[key] = [el for el in doc.get(key, []) if el != value]
                    else:
                        raise StoreError("Unsupported update operator", {"operator": op})
            return True
        return False

    def delete_one(self, collection: str, query: Query) -> bool:
        docs = self._docs(collection)
        for i, doc in enumerate(docs):
            if matches(doc, query):
                del docs[i]
                return True
        return False


# Wiring

def create_store():
    if DATABASE_URL and DATABASE_NAME:
        logger.info("Using MongoDB database %s", DATABASE_NAME)
        client = MongoClient(DATABASE_URL)
        return MongoStore(client[DATABASE_NAME])
    logger.warning("DATABASE_URL/DATABASE_NAME not set, using in-memory store")
    return MemoryStore()


_store = None


def get_store():
    global _store
    if _store is None:
        _store = create_store()
    return _store


# Document helpers

def serialize(doc: Any) -> Any:
    if isinstance(doc, dict):
        out = {}
        for k, v in doc.items():
            if k == "_id":
                out["id"] = str(v)
            else:
                out[k] = serialize(v)
        return out
    if isinstance(doc, list):
        return [serialize(v) for v in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        return doc.isoformat()
    return doc


def populate_poets(store, poems: List[dict]) -> List[dict]:
    """Swap each poem's poet reference for the poet's display fields."""
    refs = []
    for poem in poems:
        ref = poem.get("poet")
        if ref is not None and not isinstance(ref, dict) and ref not in refs:
            refs.append(ref)
    users: Dict[str, dict] = {}
    if refs:
        found = store.find(
            USERS,
            {"_id": {"$in": refs}},
            projection={"name": 1, "slug": 1, "profilePicture": 1},
        )
        users = {str(u["_id"]): u for u in found}
    for poem in poems:
        ref = poem.get("poet")
        if isinstance(ref, dict):
            continue
        user = users.get(str(ref)) if ref is not None else None
        poem["poet"] = {
            "id": str(user["_id"]),
            "name": user.get("name"),
            "slug": user.get("slug"),
            "profilePicture": user.get("profilePicture"),
        } if user else None
    return poems
