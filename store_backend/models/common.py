# store_backend/models/common.py

# Shared pieces for the MongoDB document models.

from typing import Annotated, Any

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BeforeValidator, PlainSerializer


def _coerce_object_id(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return ObjectId(value)
        except InvalidId:
            raise ValueError(f"Invalid ObjectId: {value}") from None
    return value


# --- Custom Type for handling MongoDB ObjectId ---
# Accepts an ObjectId or its hex string, keeps an ObjectId for MongoDB,
# and exports it as a string in JSON.
PyObjectId = Annotated[
    ObjectId,
    BeforeValidator(_coerce_object_id),
    PlainSerializer(str, return_type=str, when_used="json"),
]

# Model configuration shared by every document model
DOCUMENT_MODEL_CONFIG = {
    "populate_by_name": True,
    "arbitrary_types_allowed": True,
    "use_enum_values": True,
}
