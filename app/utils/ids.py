from typing import Any, Optional

from bson import ObjectId


def parse_object_id(value: Any) -> Optional[ObjectId]:
    """ObjectId for a valid id string (or ObjectId), None otherwise."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None
