"""
Database helpers

Connects to MongoDB from DATABASE_URL / DATABASE_NAME and exposes the small
set of storage operations the rest of the app relies on. The stock
procedures are single conditional updates so concurrent checkouts can never
drive a size below zero.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

from config import DATABASE_NAME, DATABASE_URL

db: Optional[Database] = None

if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]


def utcnow() -> datetime:
    # pymongo hands back naive UTC datetimes, so store and compare the same way
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_object_id(value: str) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if not value or not ObjectId.is_valid(value):
        return None
    return ObjectId(value)


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
    return doc


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(exclude={"id"})
    else:
        data_dict = dict(data)
    now = utcnow()
    if not data_dict.get("created_at"):
        data_dict["created_at"] = now
    data_dict["updated_at"] = now
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(database: Database, collection_name: str, filter_dict: Optional[dict] = None,
                  limit: Optional[int] = None, sort: Optional[list] = None) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return [serialize_doc(d) for d in cursor]


def decrement_stock(database: Database, product_id: str, size_label: str, quantity: int) -> bool:
    """Take ``quantity`` units from a size. Returns False, leaving the row
    untouched, when the size does not exist or holds fewer units."""
    res = database["product_size"].update_one(
        {"product_id": product_id, "size_label": size_label, "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity}, "$set": {"updated_at": utcnow()}},
    )
    return res.modified_count == 1


def increment_stock(database: Database, product_id: str, size_label: str, quantity: int) -> bool:
    res = database["product_size"].update_one(
        {"product_id": product_id, "size_label": size_label},
        {"$inc": {"stock": quantity}, "$set": {"updated_at": utcnow()}},
    )
    return res.modified_count == 1


def increment_coupon_usage(database: Database, coupon_id: str) -> None:
    database["coupon"].update_one(
        {"_id": to_object_id(coupon_id)},
        {"$inc": {"used_count": 1}, "$set": {"updated_at": utcnow()}},
    )
