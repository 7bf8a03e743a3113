"""
Database access for the Marketplace API

MongoDB holds two collections:
- kv_store: the generic key-value space ({"_id": key, "value": <json>})
- identity: credentials owned by the auth layer (see auth.py)

All marketplace records (users:, products:, orders:, user_products:,
user_orders:) live in kv_store and are only touched through the kv_*
helpers below.
"""
import os
import re
from typing import Any, List, Optional

from pymongo import MongoClient, ReturnDocument

from errors import DatabaseError

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "marketplace")

KV_COLLECTION = "kv_store"

client = MongoClient(DATABASE_URL) if DATABASE_URL else None
db = client[DATABASE_NAME] if client is not None else None


def get_db():
    if db is None:
        raise DatabaseError("Database not configured", operation="connect")
    return db


def _kv():
    return get_db()[KV_COLLECTION]


def kv_get(key: str) -> Optional[Any]:
    doc = _kv().find_one({"_id": key})
    return doc["value"] if doc else None


def kv_set(key: str, value: Any) -> None:
    _kv().replace_one({"_id": key}, {"_id": key, "value": value}, upsert=True)


def kv_delete(key: str) -> None:
    _kv().delete_one({"_id": key})


def kv_get_by_prefix(prefix: str) -> List[Any]:
    docs = _kv().find({"_id": {"$regex": "^" + re.escape(prefix)}})
    return [d["value"] for d in docs]


def kv_mget(keys: List[str]) -> List[Optional[Any]]:
    """Fetch many keys at once, preserving order. Missing keys come back as None."""
    if not keys:
        return []
    found = {d["_id"]: d["value"] for d in _kv().find({"_id": {"$in": list(keys)}})}
    return [found.get(k) for k in keys]


# Index lists are updated with single-document operators so two writers
# appending to the same list never overwrite each other. $addToSet keeps
# ids unique, so an order bought from oneself is listed once, not twice.

def kv_append(key: str, item: Any) -> List[Any]:
    doc = _kv().find_one_and_update(
        {"_id": key},
        {"$addToSet": {"value": item}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return doc["value"]


def kv_remove(key: str, item: Any) -> List[Any]:
    doc = _kv().find_one_and_update(
        {"_id": key},
        {"$pull": {"value": item}},
        return_document=ReturnDocument.AFTER,
    )
    return doc["value"] if doc else []


def identities():
    return get_db()["identity"]


def ensure_indexes() -> None:
    identities().create_index("email", unique=True)
