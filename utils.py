"""Utility functions for id handling, JSON serialization and filename safety."""
import re
import logging
import datetime
from pathlib import Path
from typing import Any, Iterable, List, Optional, Tuple

from bson.objectid import ObjectId
from fastapi import HTTPException, status

logger = logging.getLogger(__name__)

_OBJECTID_RE = re.compile(r'^[0-9a-fA-F]{24}$')


def utc_now() -> datetime.datetime:
    """Naive UTC timestamp, the form MongoDB hands back on reads."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


# ============================================================================
# ObjectId Handling
# ============================================================================

def validate_objectid(oid_string: str, field_name: str = "id") -> Tuple[bool, Optional[str]]:
    """
    Validate that a string is a well-formed MongoDB ObjectId.

    Returns:
        (True, None) when valid, (False, error_message) otherwise.
    """
    if not oid_string:
        return False, f"{field_name} is required"

    if not isinstance(oid_string, str):
        return False, f"{field_name} must be a string"

    if not _OBJECTID_RE.match(oid_string):
        return False, f"Invalid {field_name} format"

    return True, None


def safe_objectid(oid_string: str, field_name: str = "id") -> ObjectId:
    """
    Convert a string from a request body to an ObjectId.

    Raises:
        HTTPException: 400 if the string is not a valid ObjectId
    """
    is_valid, error_message = validate_objectid(oid_string, field_name)
    if not is_valid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error_message or f"Invalid {field_name}")
    return ObjectId(oid_string)


def safe_objectid_list(values: Optional[Iterable[str]], field_name: str = "ids") -> List[ObjectId]:
    """Convert a list of id strings, preserving order and dropping duplicates."""
    result: List[ObjectId] = []
    for value in values or []:
        oid = safe_objectid(value, field_name)
        if oid not in result:
            result.append(oid)
    return result


def object_id_or_404(oid_string: str, detail: str) -> ObjectId:
    """
    Convert a path parameter to an ObjectId. A malformed id can never match a
    document, so it is reported the same way as a missing one.
    """
    is_valid, _ = validate_objectid(oid_string)
    if not is_valid:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
    return ObjectId(oid_string)


def same_id(left: Any, right: Any) -> bool:
    """Compare two ids that may be ObjectIds, strings or None."""
    if left is None or right is None:
        return False
    return str(left) == str(right)


def contains_id(values: Optional[Iterable[Any]], target: Any) -> bool:
    return any(same_id(value, target) for value in values or [])


# ============================================================================
# Filenames
# ============================================================================

def sanitize_filename(filename: str) -> str:
    """
    Sanitize a filename to prevent path traversal when it is used as part of
    an object key.

    Raises:
        ValueError: if nothing is left after sanitizing
    """
    safe_name = Path(filename).name
    safe_name = safe_name.strip('. ')
    safe_name = re.sub(r"[^A-Za-z0-9._-]", "_", safe_name)

    if not safe_name:
        raise ValueError("Filename is invalid after sanitization")

    return safe_name


# ============================================================================
# JSON Serialization
# ============================================================================

def make_json_serializable(obj: Any) -> Any:
    """Recursively converts MongoDB objects (datetime, ObjectId, etc.) to JSON-serializable types."""
    if isinstance(obj, datetime.datetime):
        return obj.isoformat()
    elif isinstance(obj, dict):
        return {key: make_json_serializable(value) for key, value in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [make_json_serializable(item) for item in obj]
    elif isinstance(obj, (datetime.date, datetime.time)):
        return obj.isoformat()
    elif isinstance(obj, ObjectId):
        return str(obj)
    elif isinstance(obj, bytes):
        # Never leak raw binary (password hashes) into responses
        return None
    elif hasattr(obj, '__str__') and not isinstance(obj, (str, int, float, bool, type(None))):
        try:
            return str(obj)
        except Exception:
            return repr(obj)
    return obj
