"""
Audit trail for every mutable entity.

Each change is written twice:
  - onto the entity itself: changedBy / changedDate / changedType plus a
    capped `changedHistory` tail (the most recent HISTORY_EMBED_LIMIT entries);
  - into the `change_history` collection, one document per change, which is
    the complete and unbounded log.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from config import HISTORY_EMBED_LIMIT
from utils import utc_now

logger = logging.getLogger(__name__)

HISTORY_COLLECTION = "change_history"

CREATE = "create"
UPDATE = "update"
DELETE = "delete"


def changed_type_for(change_type: str) -> str:
    """Collapse a custom label (add-operator, update-logo, ...) to create/update/delete."""
    if change_type in (CREATE, DELETE):
        return change_type
    return UPDATE


def history_entry(actor_id: Any, change_type: str, when=None) -> Dict[str, Any]:
    return {"date": when or utc_now(), "user": actor_id, "changeType": change_type}


def creation_fields(actor_id: Any, soft_deletable: bool = True) -> Dict[str, Any]:
    """Audit fields every newly created entity starts with."""
    now = utc_now()
    fields = {
        "createdAt": now,
        "changedDate": now,
        "changedBy": actor_id,
        "changedType": CREATE,
        "changedHistory": [history_entry(actor_id, CREATE, now)],
    }
    if soft_deletable:
        fields["isDeleted"] = False
    return fields


def change_update(actor_id: Any, change_type: str,
                  set_fields: Optional[Mapping[str, Any]] = None,
                  extra: Optional[Mapping[str, Mapping[str, Any]]] = None) -> Dict[str, Any]:
    """
    Build a MongoDB update document that applies `set_fields`, any extra
    operators (e.g. {"$push": {"photos": ...}}) and the audit stamp.
    """
    now = utc_now()
    update: Dict[str, Dict[str, Any]] = {
        "$set": {
            **(set_fields or {}),
            "changedDate": now,
            "changedBy": actor_id,
            "changedType": changed_type_for(change_type),
        },
        "$push": {
            "changedHistory": {
                "$each": [history_entry(actor_id, change_type, now)],
                "$slice": -HISTORY_EMBED_LIMIT,
            },
        },
    }
    for operator, fields in (extra or {}).items():
        update.setdefault(operator, {}).update(fields)
    return update


async def record(db: AsyncIOMotorDatabase, entity_kind: str, entity_id: Any,
                 actor_id: Any, change_type: str) -> None:
    """Append one entry to the change_history log."""
    await db[HISTORY_COLLECTION].insert_one({
        "entity_kind": entity_kind,
        "entity_id": entity_id,
        "date": utc_now(),
        "user": actor_id,
        "changeType": change_type,
    })
    logger.info(f"{entity_kind} {entity_id}: '{change_type}' by {actor_id}")


async def insert_entity(db: AsyncIOMotorDatabase, collection: str, entity_kind: str,
                        document: Dict[str, Any], actor_id: Any,
                        soft_deletable: bool = True) -> Dict[str, Any]:
    """Insert a new entity stamped with its creation audit fields."""
    document = {**document, **creation_fields(actor_id, soft_deletable)}
    result = await db[collection].insert_one(document)
    document["_id"] = result.inserted_id
    await record(db, entity_kind, result.inserted_id, actor_id, CREATE)
    return document


async def apply_change(db: AsyncIOMotorDatabase, collection: str, entity_kind: str,
                       entity_filter: Dict[str, Any], actor_id: Any, change_type: str,
                       set_fields: Optional[Mapping[str, Any]] = None,
                       extra: Optional[Mapping[str, Mapping[str, Any]]] = None) -> Optional[Dict[str, Any]]:
    """
    Apply an audited update to one entity and return the updated document,
    or None when nothing matched the filter.
    """
    updated = await db[collection].find_one_and_update(
        entity_filter,
        change_update(actor_id, change_type, set_fields, extra),
        return_document=ReturnDocument.AFTER,
    )
    if updated is not None:
        await record(db, entity_kind, updated["_id"], actor_id, change_type)
    return updated


async def soft_delete(db: AsyncIOMotorDatabase, collection: str, entity_kind: str,
                      entity_id: Any, actor_id: Any) -> Optional[Dict[str, Any]]:
    """Mark a live entity as deleted. Returns None if it was already gone."""
    return await apply_change(
        db, collection, entity_kind,
        {"_id": entity_id, "isDeleted": False},
        actor_id, DELETE,
        set_fields={"isDeleted": True},
    )


async def history_for(db: AsyncIOMotorDatabase, entity_kind: str, entity_id: Any) -> List[Dict[str, Any]]:
    """Full change log for one entity, oldest first."""
    cursor = db[HISTORY_COLLECTION].find(
        {"entity_kind": entity_kind, "entity_id": entity_id},
        {"_id": 0},
    ).sort("date", 1)
    return await cursor.to_list(length=None)
