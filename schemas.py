"""
JSON Schema validation for request bodies.

Every handler that accepts a JSON body runs it through `validate_payload`
before touching the database, so malformed input is always a 400 with a
human-readable message.
"""
import datetime
import logging
from typing import Any, Dict, Optional, Tuple

from fastapi import HTTPException, Request, status
from jsonschema import validate, ValidationError, SchemaError

logger = logging.getLogger(__name__)

HEX_COLOR_PATTERN = r"^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{4}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$"
EMAIL_PATTERN = r"^\w+([\.+-]?\w+)*@\w+([\.-]?\w+)*(\.\w{2,})+$"
# At least 6 characters, one letter and one digit
PASSWORD_PATTERN = r"^(?=.*[A-Za-z])(?=.*\d).{6,}$"
OBJECT_ID_PATTERN = r"^[0-9a-fA-F]{24}$"

USER_ROLES = ["admin", "operator", "user"]
OPERATOR_ROLES = ["general", "activity", "assistant"]
TICKET_ROLES = ["assistente", "operador", "administrador"]
FILE_TYPES = ["image", "document", "video", "other"]
RATABLE_KINDS = ["Event", "Activity"]
FILE_TARGET_KINDS = ["Event", "Activity", "User"]

_COLOR = {"type": "string", "pattern": HEX_COLOR_PATTERN}
_TEXT = {"type": "string"}
_OBJECT_ID = {"type": "string", "pattern": OBJECT_ID_PATTERN}
_OBJECT_ID_LIST = {"type": "array", "items": _OBJECT_ID}

# Friendly messages for fields whose raw jsonschema error is unreadable
_PATTERN_MESSAGES = {
    "email": "Please provide a valid email",
    "password": "Password must have at least 6 characters, one letter and one number",
}

USER_REGISTER_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "email": {"type": "string", "pattern": EMAIL_PATTERN},
        "password": {"type": "string", "pattern": PASSWORD_PATTERN},
        "role": {"type": "string", "enum": USER_ROLES},
        "phone": _TEXT,
    },
    "required": ["name", "email", "password"],
}

USER_LOGIN_SCHEMA = {
    "type": "object",
    "properties": {
        "email": {"type": "string", "minLength": 1},
        "password": {"type": "string", "minLength": 1},
    },
    "required": ["email", "password"],
}

PROFILE_UPDATE_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "email": {"type": "string", "pattern": EMAIL_PATTERN},
        "phone": _TEXT,
        "password": {"type": "string", "pattern": PASSWORD_PATTERN},
    },
}

USER_ADMIN_UPDATE_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "email": {"type": "string", "pattern": EMAIL_PATTERN},
        "role": {"type": "string", "enum": USER_ROLES},
        "phone": _TEXT,
        "verified": {"type": "boolean"},
        "permissions": {
            "type": "object",
            "properties": {
                "isAssistant": {"type": "boolean"},
                "isOperator": {"type": "boolean"},
            },
            "additionalProperties": False,
        },
    },
}

_EVENT_PROPERTIES = {
    "title": {"type": "string", "minLength": 1},
    "subtitle": _TEXT,
    "description": _TEXT,
    "place": _TEXT,
    "dateStart": _TEXT,
    "timeStart": _TEXT,
    "dateEnd": _TEXT,
    "timeEnd": _TEXT,
    "isPublic": {"type": "boolean"},
    "infoColor": _COLOR,
    "bgColor": _COLOR,
    "starColor": _COLOR,
}

EVENT_CREATE_SCHEMA = {
    "type": "object",
    "properties": _EVENT_PROPERTIES,
    "required": ["title"],
}

EVENT_UPDATE_SCHEMA = {
    "type": "object",
    "properties": _EVENT_PROPERTIES,
}

OPERATOR_ADD_SCHEMA = {
    "type": "object",
    "properties": {
        "userId": _OBJECT_ID,
        "role": {"type": "string", "enum": OPERATOR_ROLES},
        "activities": _OBJECT_ID_LIST,
    },
    "required": ["userId", "role"],
}

USER_REFERENCE_SCHEMA = {
    "type": "object",
    "properties": {"userId": _OBJECT_ID},
    "required": ["userId"],
}

_ACTIVITY_PROPERTIES = {
    "title": {"type": "string", "minLength": 1},
    "subtitle": _TEXT,
    "description": _TEXT,
    "organization": _TEXT,
    "date": _TEXT,
    "time": _TEXT,
    "place": _TEXT,
    "ticketType": {"type": "integer", "minimum": 0},
    "seats": {"type": "integer", "minimum": 0},
    "infoColor": _COLOR,
    "bgColor": _COLOR,
    "starColor": _COLOR,
}

ACTIVITY_CREATE_SCHEMA = {
    "type": "object",
    "properties": _ACTIVITY_PROPERTIES,
    "required": ["title"],
}

ACTIVITY_UPDATE_SCHEMA = {
    "type": "object",
    "properties": _ACTIVITY_PROPERTIES,
}

_TICKET_PROPERTIES = {
    "type": {"type": "integer", "minimum": 0},
    "title": {"type": "string", "minLength": 1},
    "event": _OBJECT_ID,
    "role": {"type": "string", "enum": TICKET_ROLES},
    "price": {"type": "number", "minimum": 0},
    "description": _TEXT,
    "user": _OBJECT_ID,
    "activities": _OBJECT_ID_LIST,
}

TICKET_CREATE_SCHEMA = {
    "type": "object",
    "properties": _TICKET_PROPERTIES,
    "required": ["title", "event", "user"],
}

TICKET_UPDATE_SCHEMA = {
    "type": "object",
    "properties": {k: v for k, v in _TICKET_PROPERTIES.items() if k not in ("event", "user")},
}

CALIFICATION_CREATE_SCHEMA = {
    "type": "object",
    "properties": {
        "rating": {"type": "number", "minimum": 1, "maximum": 5},
        "comment": _TEXT,
        "target": _OBJECT_ID,
        "targetModel": {"type": "string", "enum": RATABLE_KINDS},
    },
    "required": ["rating", "target", "targetModel"],
}

CALIFICATION_UPDATE_SCHEMA = {
    "type": "object",
    "properties": {
        "rating": {"type": "number", "minimum": 1, "maximum": 5},
        "comment": _TEXT,
    },
}

WITNESS_CREATE_SCHEMA = {
    "type": "object",
    "properties": {
        "witness": _OBJECT_ID,
        "target": _OBJECT_ID,
        "targetModel": {"type": "string", "enum": RATABLE_KINDS},
    },
    "required": ["witness", "target", "targetModel"],
}

FILE_METADATA_SCHEMA = {
    "type": "object",
    "properties": {
        "title": _TEXT,
        "description": _TEXT,
        "type": {"type": "string", "enum": FILE_TYPES},
        "target": {"anyOf": [_OBJECT_ID, {"type": "null"}]},
        "targetModel": {"enum": FILE_TARGET_KINDS + [None]},
    },
}

MAIN_COLOR_FIELDS = ["infoColor", "bgColor", "linkColor", "btnColor", "secColor", "starColor"]

MAIN_UPDATE_SCHEMA = {
    "type": "object",
    "properties": {
        "title": {"type": "string", "minLength": 1},
        "subtitle": _TEXT,
        "welcome": _TEXT,
        "company": _TEXT,
        "infoMail": _TEXT,
        "infoPhone": _TEXT,
        **{field: _COLOR for field in MAIN_COLOR_FIELDS},
    },
}


def _describe_error(error: ValidationError) -> str:
    field = ".".join(str(p) for p in error.absolute_path) if error.absolute_path else None

    if error.validator == "required":
        return error.message
    if field and error.validator == "pattern":
        if field in _PATTERN_MESSAGES:
            return _PATTERN_MESSAGES[field]
        if error.schema.get("pattern") == HEX_COLOR_PATTERN:
            return f"Field '{field}' must be a valid hexadecimal color"
        if error.schema.get("pattern") == OBJECT_ID_PATTERN:
            return f"Field '{field}' must be a valid id"
    if field:
        return f"Field '{field}': {error.message}"
    return error.message


def check_payload(data: Any, schema: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate data against a JSON Schema.

    Returns:
        (True, None) if valid, otherwise (False, human-readable message).
    """
    try:
        validate(instance=data, schema=schema)
        return True, None
    except ValidationError as e:
        return False, _describe_error(e)
    except SchemaError as e:
        logger.error(f"Schema error (this is a bug): {e}")
        return False, f"Internal schema validation error: {e}"


def validate_payload(data: Any, schema: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a request body, raising a 400 HTTPException when it does not conform."""
    if not isinstance(data, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Request body must be a JSON object")
    is_valid, error_message = check_payload(data, schema)
    if not is_valid:
        logger.info(f"Rejected request body: {error_message}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error_message)
    return data


def parse_date(value: Optional[str], field_name: str) -> Optional[datetime.datetime]:
    """Parse an ISO 8601 date or datetime string from a request body."""
    if value is None or value == "":
        return None
    try:
        parsed = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Field '{field_name}' must be an ISO 8601 date",
        )
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    return parsed


async def read_json_body(request: Request, schema: Dict[str, Any]) -> Dict[str, Any]:
    """Parse the request body as JSON and validate it against a schema."""
    try:
        data = await request.json()
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Request body must be valid JSON")
    return validate_payload(data, schema)
