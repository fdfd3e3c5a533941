from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId

from chatrelay.errors import NotFoundError, ValidationError


def to_object_id(value: Any, kind: str = "document") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise NotFoundError(f"{kind} not found")


def utc_now() -> datetime:
    # BSON dates carry millisecond precision; keep cursors exact
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond - now.microsecond % 1000)


def as_utc(ts: datetime) -> datetime:
    # Mongo hands back naive UTC unless the client is tz_aware
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def encode_cursor(doc: Dict[str, Any], field: str) -> str:
    # Cursor format: timestamp_ms:object_id_hex
    ts = as_utc(doc[field])
    ts_ms = int(ts.replace(microsecond=0).timestamp()) * 1000 + ts.microsecond // 1000
    return f"{ts_ms}:{doc['_id']}"


def decode_cursor(cursor: str) -> Tuple[datetime, ObjectId]:
    try:
        ts_str, oid_hex = cursor.split(":", 1)
        ts_ms = int(ts_str)
        ts = datetime.fromtimestamp(ts_ms // 1000, tz=timezone.utc).replace(microsecond=(ts_ms % 1000) * 1000)
        return ts, ObjectId(oid_hex)
    except (ValueError, OverflowError, OSError, InvalidId, TypeError):
        raise ValidationError("Invalid cursor")


def keyset_before(field: str, cursor: Optional[str]) -> Dict[str, Any]:
    """Filter selecting documents strictly after ``cursor`` in (field, _id) descending order."""
    if not cursor:
        return {}
    ts, oid = decode_cursor(cursor)
    return {
        "$or": [
            {field: {"$lt": ts}},
            {field: ts, "_id": {"$lt": oid}},
        ]
    }


def with_str_id(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is not None:
        doc["_id"] = str(doc.get("_id"))
    return doc
