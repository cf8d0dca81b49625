from datetime import datetime
from typing import Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId

ABSENT_FILTER_VALUES = {"", "undefined", "null"}


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def normalize_object_id_value(value):
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def normalize_tag_filter(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    candidate = str(value).strip()
    if candidate in ABSENT_FILTER_VALUES:
        return None
    return candidate


def serialize_value(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat() + "Z"
    if isinstance(value, dict):
        return {str(key): serialize_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_value(item) for item in value]
    return value


def serialize_document(document) -> Optional[Dict]:
    """Return a JSON-safe copy of a stored document, or ``None``."""
    if not document:
        return None
    return serialize_value(document)


def serialize_insert_result(result) -> Dict:
    return {
        "acknowledged": bool(result.acknowledged),
        "insertedId": serialize_value(result.inserted_id),
    }


def serialize_update_result(result) -> Dict:
    upserted_id = result.upserted_id
    return {
        "acknowledged": bool(result.acknowledged),
        "matchedCount": result.matched_count,
        "modifiedCount": result.modified_count,
        "upsertedCount": 1 if upserted_id is not None else 0,
        "upsertedId": serialize_value(upserted_id),
    }
