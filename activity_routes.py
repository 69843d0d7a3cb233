"""
Activities: the nested collection under an event, the flat /api/activities
resource, activity witnesses and the seat counter endpoints.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorDatabase

import audit
import seats
from authz_provider import (
    CREATE_ACTIVITY,
    MANAGE_ACTIVITY,
    MANAGE_EVENT,
    MANAGE_WITNESSES,
    VIEW,
    AuthorizationProvider,
    ResourceScope,
)
from core_deps import (
    get_authz_provider,
    get_current_user,
    get_db,
    get_optional_user,
    load_live,
    populate,
    require_admin,
)
from event_routes import load_event
from schemas import (
    ACTIVITY_CREATE_SCHEMA,
    ACTIVITY_UPDATE_SCHEMA,
    USER_REFERENCE_SCHEMA,
    parse_date,
    read_json_body,
)
from targets import TargetRef, require_parent_event
from utils import contains_id, make_json_serializable, object_id_or_404, safe_objectid
from witness_routes import find_witness_record, record_witness, remove_witness

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/activities", tags=["Activities"])
event_activities_router = APIRouter(prefix="/api/events/{event_id}/activities", tags=["Activities"])

ENTITY = "Activity"
ACTIVITY_NOT_FOUND = "Activity not found"

_ACTIVITY_TEXT_FIELDS = ("title", "subtitle", "description", "organization", "time", "place",
                         "infoColor", "bgColor", "starColor")


async def load_activity(db: AsyncIOMotorDatabase, activity_id: str) -> Dict[str, Any]:
    return await load_live(db, "activities", activity_id, ACTIVITY_NOT_FOUND)


async def activity_scope(db: AsyncIOMotorDatabase, activity: Dict[str, Any]) -> ResourceScope:
    """Authorization scope of an activity: its parent event, narrowed to this activity."""
    event = await require_parent_event(db, activity["_id"])
    return ResourceScope.for_event(event, activity_id=activity["_id"])


# --- Nested under an event ---


@event_activities_router.post("", name="create_activity")
async def create_activity(
    event_id: str,
    request: Request,
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    authz: AuthorizationProvider = Depends(get_authz_provider),
):
    event = await load_event(db, event_id)
    authz.require(user, ResourceScope.for_event(event), CREATE_ACTIVITY,
                  detail="You do not have permission to create activities in this event")
    data = await read_json_body(request, ACTIVITY_CREATE_SCHEMA)

    document = {
        "ticketType": data.get("ticketType", 0),
        "title": data["title"],
        "subtitle": data.get("subtitle", ""),
        "description": data.get("description", ""),
        "organization": data.get("organization", ""),
        "date": parse_date(data.get("date"), "date"),
        "time": data.get("time", ""),
        "place": data.get("place", ""),
        "infoColor": data.get("infoColor", "#000000"),
        "bgColor": data.get("bgColor", "#FFFFFF"),
        "starColor": data.get("starColor", "#FFD700"),
        "seats": data.get("seats", 0),
        "takenSeats": 0,
        "califications": [],
        "witnesses": [],
    }
    activity = await audit.insert_entity(db, "activities", ENTITY, document, user["_id"])
    await audit.apply_change(
        db, "events", "Event", {"_id": event["_id"]}, user["_id"], "add-activity",
        extra={"$push": {"activities": activity["_id"]}},
    )
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=make_json_serializable(activity))


@event_activities_router.get("", name="list_event_activities")
async def list_event_activities(
    event_id: str,
    user: Optional[Dict[str, Any]] = Depends(get_optional_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    authz: AuthorizationProvider = Depends(get_authz_provider),
):
    event = await load_event(db, event_id)
    authz.require(user, ResourceScope.for_event(event), VIEW,
                  detail="You do not have permission to view the activities of this event")

    activities = await db.activities.find(
        {"_id": {"$in": event.get("activities") or []}, "isDeleted": False}
    ).sort([("date", 1), ("time", 1)]).to_list(length=None)
    return make_json_serializable(activities)


# --- Flat resource ---


@router.get("/{activity_id}", name="get_activity")
async def get_activity(
    activity_id: str,
    user: Optional[Dict[str, Any]] = Depends(get_optional_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    authz: AuthorizationProvider = Depends(get_authz_provider),
):
    activity = await load_activity(db, activity_id)
    authz.require(user, await activity_scope(db, activity), VIEW,
                  detail="You do not have permission to view this activity")

    activity["califications"] = await populate(db, "califications", activity.get("califications"))
    activity["witnesses"] = await populate(db, "users", activity.get("witnesses"), {"name": 1, "email": 1})
    return make_json_serializable(activity)


@router.put("/{activity_id}", name="update_activity")
async def update_activity(
    activity_id: str,
    request: Request,
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    authz: AuthorizationProvider = Depends(get_authz_provider),
):
    activity = await load_activity(db, activity_id)
    scope = await activity_scope(db, activity)
    authz.require(user, scope, MANAGE_ACTIVITY,
                  detail="You do not have permission to update this activity")
    data = await read_json_body(request, ACTIVITY_UPDATE_SCHEMA)

    changes: Dict[str, Any] = {}
    for field in _ACTIVITY_TEXT_FIELDS:
        if data.get(field):
            changes[field] = data[field]
    if data.get("date"):
        changes["date"] = parse_date(data["date"], "date")
    if "ticketType" in data:
        authz.require(user, scope, MANAGE_EVENT,
                      detail="Only event managers can change the ticket type")
        changes["ticketType"] = data["ticketType"]

    entity_filter: Dict[str, Any] = {"_id": activity["_id"], "isDeleted": False}
    if "seats" in data:
        changes["seats"] = data["seats"]
        if data["seats"] > 0:
            # Capacity may not drop below the seats already taken
            entity_filter["takenSeats"] = {"$lte": data["seats"]}

    updated = await audit.apply_change(
        db, "activities", ENTITY, entity_filter, user["_id"], audit.UPDATE, set_fields=changes,
    )
    if updated is None:
        if await db.activities.find_one({"_id": activity["_id"], "isDeleted": False}, {"_id": 1}):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Seats cannot be lower than the seats already taken",
            )
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=ACTIVITY_NOT_FOUND)
    return make_json_serializable(updated)


@router.delete("/{activity_id}", name="delete_activity")
async def delete_activity(
    activity_id: str,
    admin: Dict[str, Any] = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    activity = await load_activity(db, activity_id)
    await audit.soft_delete(db, "activities", ENTITY, activity["_id"], admin["_id"])
    return {"message": "Activity removed"}


# --- Witnesses ---


@router.post("/{activity_id}/witnesses", name="add_activity_witness")
async def add_activity_witness(
    activity_id: str,
    request: Request,
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    authz: AuthorizationProvider = Depends(get_authz_provider),
):
    activity = await load_activity(db, activity_id)
    authz.require(user, await activity_scope(db, activity), MANAGE_WITNESSES,
                  detail="You do not have permission to add witnesses to this activity")
    data = await read_json_body(request, USER_REFERENCE_SCHEMA)
    witness_id = safe_objectid(data["userId"], "userId")

    if await db.users.find_one({"_id": witness_id, "isDeleted": False}, {"_id": 1}) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    _, updated = await record_witness(db, TargetRef("Activity", activity["_id"]), witness_id, user["_id"])
    if updated is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=ACTIVITY_NOT_FOUND)
    return make_json_serializable({"message": "Witness added", "witnesses": updated.get("witnesses", [])})


@router.delete("/{activity_id}/witnesses/{user_id}", name="remove_activity_witness")
async def remove_activity_witness(
    activity_id: str,
    user_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    authz: AuthorizationProvider = Depends(get_authz_provider),
):
    activity = await load_activity(db, activity_id)
    authz.require(user, await activity_scope(db, activity), MANAGE_WITNESSES,
                  detail="You do not have permission to remove witnesses from this activity")
    witness_id = object_id_or_404(user_id, "Witness not found")
    ref = TargetRef("Activity", activity["_id"])

    record = await find_witness_record(db, ref, witness_id)
    if record is not None:
        updated = await remove_witness(db, ref, record, user["_id"])
    elif contains_id(activity.get("witnesses"), witness_id):
        # Bare id left by data written without a Witness record
        updated = await audit.apply_change(
            db, "activities", ENTITY, {"_id": activity["_id"], "isDeleted": False},
            user["_id"], "remove-witness", extra={"$pull": {"witnesses": witness_id}},
        )
    else:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Witness not found")
    if updated is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=ACTIVITY_NOT_FOUND)
    return make_json_serializable({"message": "Witness removed", "witnesses": updated.get("witnesses", [])})


# --- Seats ---


def _seat_response(message: str, activity: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "message": message,
        "takenSeats": activity.get("takenSeats", 0),
        "availableSeats": seats.available_seats(activity),
    }


@router.put("/{activity_id}/seats/increment", name="increment_taken_seats")
async def increment_taken_seats(
    activity_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    activity = await load_activity(db, activity_id)
    updated = await seats.reserve_seat(db, activity["_id"])
    logger.info(f"Seat taken on activity {activity['_id']} by {user['_id']} ({updated.get('takenSeats')} taken).")
    return _seat_response("Seat reserved", updated)


@router.put("/{activity_id}/seats/decrement", name="decrement_taken_seats")
async def decrement_taken_seats(
    activity_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    activity = await load_activity(db, activity_id)
    updated = await seats.release_seat(db, activity["_id"])
    logger.info(f"Seat released on activity {activity['_id']} by {user['_id']} ({updated.get('takenSeats')} taken).")
    return _seat_response("Seat released", updated)
