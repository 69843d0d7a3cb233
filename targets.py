"""
Polymorphic target references.

Califications, Witnesses and Files point at an Event, an Activity or a User.
The pair is stored as {"kind": ..., "id": ...} and always resolved through
TARGET_COLLECTIONS, so a reference can only ever reach a known collection
and deleted targets behave exactly like missing ones.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from bson.objectid import ObjectId
from fastapi import HTTPException, status
from motor.motor_asyncio import AsyncIOMotorDatabase

from utils import object_id_or_404

logger = logging.getLogger(__name__)

TARGET_COLLECTIONS: Dict[str, str] = {
    "Event": "events",
    "Activity": "activities",
    "User": "users",
}

_NOT_FOUND = {
    "Event": "Event not found",
    "Activity": "Activity not found",
    "User": "User not found",
}


@dataclass(frozen=True)
class TargetRef:
    kind: str
    id: ObjectId

    @classmethod
    def parse(cls, kind: str, raw_id: str, allowed=None) -> "TargetRef":
        """Build a reference from request input; unknown kinds are a 400."""
        allowed = allowed or TARGET_COLLECTIONS.keys()
        if kind not in allowed:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Target model must be one of: {', '.join(allowed)}",
            )
        return cls(kind=kind, id=object_id_or_404(raw_id, _NOT_FOUND[kind]))

    @classmethod
    def from_document(cls, stored: Optional[Mapping[str, Any]]) -> Optional["TargetRef"]:
        if not stored or not stored.get("kind"):
            return None
        return cls(kind=stored["kind"], id=stored["id"])

    def to_document(self) -> Dict[str, Any]:
        return {"kind": self.kind, "id": self.id}

    def match(self, field: str = "target") -> Dict[str, Any]:
        """Query filter selecting documents whose `field` references this target."""
        return {f"{field}.kind": self.kind, f"{field}.id": self.id}

    @property
    def collection(self) -> str:
        return TARGET_COLLECTIONS[self.kind]

    @property
    def not_found_message(self) -> str:
        return _NOT_FOUND[self.kind]


async def find_target(db: AsyncIOMotorDatabase, ref: TargetRef) -> Optional[Dict[str, Any]]:
    return await db[ref.collection].find_one({"_id": ref.id, "isDeleted": False})


async def resolve_target(db: AsyncIOMotorDatabase, ref: TargetRef) -> Dict[str, Any]:
    """Return the live target document or raise 404."""
    target = await find_target(db, ref)
    if target is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=ref.not_found_message)
    return target


async def find_parent_event(db: AsyncIOMotorDatabase, activity_id: Any) -> Optional[Dict[str, Any]]:
    """First live event listing this activity."""
    return await db.events.find_one({"activities": activity_id, "isDeleted": False})


async def require_parent_event(db: AsyncIOMotorDatabase, activity_id: Any) -> Dict[str, Any]:
    event = await find_parent_event(db, activity_id)
    if event is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Associated event not found")
    return event


async def owning_event(db: AsyncIOMotorDatabase, ref: TargetRef,
                       target: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
    """The event whose operators govern a target: itself, or an activity's parent."""
    if ref.kind == "Event":
        return dict(target)
    if ref.kind == "Activity":
        return await require_parent_event(db, ref.id)
    return None


async def with_live_targets(db: AsyncIOMotorDatabase, records):
    """Drop records whose target has been deleted. Records without a target are kept."""
    live = []
    for record in records:
        ref = TargetRef.from_document(record.get("target"))
        if ref is None or await find_target(db, ref) is not None:
            live.append(record)
    return live
