# store_backend/shared/utils.py

# This file contains common utility functions used across the backend.

import math
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from bson import ObjectId
from bson.errors import InvalidId


def utcnow() -> datetime:
    """Naive UTC 'now', matching what pymongo hands back for stored dates."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalizes an aware datetime to naive UTC so it compares with stored dates."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Converts a string (or ObjectId) to ObjectId, returning None when it is not a valid id."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def days_until(end: Optional[datetime], now: datetime) -> int:
    """Whole days (rounded up) from now until end, never negative."""
    if end is None:
        return 0
    remaining = (end - now) / timedelta(days=1)
    return max(0, math.ceil(remaining))


def serialize_document(value: Any) -> Any:
    """Recursively converts ObjectId values to strings and datetimes to ISO strings for JSON responses."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: serialize_document(item) for key, item in value.items()}
    if isinstance(value, list):
        return [serialize_document(item) for item in value]
    return value
