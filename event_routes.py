"""
Events: CRUD, image uploads and management of the operator and assistant
lists that drive authorization for everything inside an event.
"""
import logging
from typing import Any, Dict, List, Optional

from bson.objectid import ObjectId
from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile, status
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorDatabase

import audit
from authz_provider import (
    CONTRIBUTE_PHOTOS,
    MANAGE_ASSISTANTS,
    MANAGE_EVENT,
    VIEW,
    AuthorizationProvider,
    ResourceScope,
    is_assistant,
    is_operator,
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
from object_storage import (
    EVENT_PHOTO_POLICY,
    GALLERY_POLICY,
    LOGO_POLICY,
    MAX_GALLERY_PHOTOS,
    ObjectStore,
    get_object_store,
)
from schemas import (
    EVENT_CREATE_SCHEMA,
    EVENT_UPDATE_SCHEMA,
    OPERATOR_ADD_SCHEMA,
    USER_REFERENCE_SCHEMA,
    parse_date,
    read_json_body,
)
from utils import make_json_serializable, object_id_or_404, safe_objectid, safe_objectid_list

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/events", tags=["Events"])

ENTITY = "Event"
EVENT_NOT_FOUND = "Event not found"

USER_SUMMARY = {"name": 1, "email": 1}
ACTIVITY_SUMMARY = {"title": 1, "date": 1, "time": 1, "place": 1}

_EVENT_TEXT_FIELDS = ("title", "subtitle", "description", "place", "timeStart", "timeEnd")
_EVENT_COLOR_FIELDS = ("infoColor", "bgColor", "starColor")


def new_event_document(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "title": data["title"],
        "subtitle": data.get("subtitle", ""),
        "description": data.get("description", ""),
        "place": data.get("place", ""),
        "dateStart": parse_date(data.get("dateStart"), "dateStart"),
        "timeStart": data.get("timeStart", ""),
        "dateEnd": parse_date(data.get("dateEnd"), "dateEnd"),
        "timeEnd": data.get("timeEnd", ""),
        "isPublic": data.get("isPublic", True),
        "logo": "",
        "mainImage": "",
        "photos": [],
        "infoColor": data.get("infoColor", "#000000"),
        "bgColor": data.get("bgColor", "#FFFFFF"),
        "starColor": data.get("starColor", "#FFD700"),
        "activities": [],
        "califications": [],
        "witnesses": [],
        "assistants": [],
        "operators": [],
    }


async def load_event(db: AsyncIOMotorDatabase, event_id: str) -> Dict[str, Any]:
    return await load_live(db, "events", event_id, EVENT_NOT_FOUND)


async def _update_event(db: AsyncIOMotorDatabase, event: Dict[str, Any], actor: Dict[str, Any],
                        change_type: str, set_fields=None, extra=None) -> Dict[str, Any]:
    updated = await audit.apply_change(
        db, "events", ENTITY, {"_id": event["_id"], "isDeleted": False},
        actor["_id"], change_type, set_fields=set_fields, extra=extra,
    )
    if updated is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=EVENT_NOT_FOUND)
    return updated


# --- CRUD ---


@router.post("", name="create_event")
async def create_event(
    request: Request,
    admin: Dict[str, Any] = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    data = await read_json_body(request, EVENT_CREATE_SCHEMA)
    event = await audit.insert_entity(db, "events", ENTITY, new_event_document(data), admin["_id"])
    logger.info(f"Event '{event['title']}' created by {admin.get('email')}.")
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=make_json_serializable(event))


@router.get("", name="list_events")
async def list_events(
    user: Optional[Dict[str, Any]] = Depends(get_optional_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    query: Dict[str, Any] = {"isDeleted": False}
    if not user:
        query["isPublic"] = True
    elif user.get("role") == "user":
        query["$or"] = [
            {"isPublic": True},
            {"assistants": user["_id"]},
            {"operators.user": user["_id"]},
        ]

    events = await db.events.find(query).sort("dateStart", 1).to_list(length=None)
    for event in events:
        event["activities"] = await populate(db, "activities", event.get("activities"), ACTIVITY_SUMMARY)
    return make_json_serializable(events)


@router.get("/{event_id}", name="get_event")
async def get_event(
    event_id: str,
    user: Optional[Dict[str, Any]] = Depends(get_optional_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    authz: AuthorizationProvider = Depends(get_authz_provider),
):
    event = await load_event(db, event_id)
    authz.require(user, ResourceScope.for_event(event), VIEW,
                  detail="You do not have permission to view this event")

    event["activities"] = await populate(db, "activities", event.get("activities"))
    event["califications"] = await populate(db, "califications", event.get("califications"))
    event["witnesses"] = await populate(db, "witnesses", event.get("witnesses"))
    event["assistants"] = await populate(db, "users", event.get("assistants"), USER_SUMMARY)

    operator_users = await populate(
        db, "users", [op.get("user") for op in event.get("operators") or []], USER_SUMMARY
    )
    by_id = {str(u["_id"]): u for u in operator_users}
    for op in event.get("operators") or []:
        op["user"] = by_id.get(str(op.get("user")), op.get("user"))

    return make_json_serializable(event)


@router.put("/{event_id}", name="update_event")
async def update_event(
    event_id: str,
    request: Request,
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    authz: AuthorizationProvider = Depends(get_authz_provider),
):
    event = await load_event(db, event_id)
    authz.require(user, ResourceScope.for_event(event), MANAGE_EVENT,
                  detail="You do not have permission to update this event")
    data = await read_json_body(request, EVENT_UPDATE_SCHEMA)

    changes: Dict[str, Any] = {}
    for field in _EVENT_TEXT_FIELDS + _EVENT_COLOR_FIELDS:
        if data.get(field):
            changes[field] = data[field]
    for field in ("dateStart", "dateEnd"):
        if data.get(field):
            changes[field] = parse_date(data[field], field)
    if "isPublic" in data and user.get("role") == "admin":
        changes["isPublic"] = data["isPublic"]

    updated = await _update_event(db, event, user, audit.UPDATE, set_fields=changes)
    return make_json_serializable(updated)


@router.delete("/{event_id}", name="delete_event")
async def delete_event(
    event_id: str,
    admin: Dict[str, Any] = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    event = await load_event(db, event_id)
    await audit.soft_delete(db, "events", ENTITY, event["_id"], admin["_id"])
    return {"message": "Event removed"}


# --- Images ---


@router.post("/{event_id}/logo", name="upload_event_logo")
async def upload_event_logo(
    event_id: str,
    logo: UploadFile = File(...),
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    authz: AuthorizationProvider = Depends(get_authz_provider),
    store: ObjectStore = Depends(get_object_store),
):
    event = await load_event(db, event_id)
    authz.require(user, ResourceScope.for_event(event), MANAGE_EVENT,
                  detail="You do not have permission to update this event")

    stored = await store.store(logo, LOGO_POLICY)
    updated = await _update_event(db, event, user, "update-logo", set_fields={"logo": stored.url})
    return {"message": "Logo uploaded", "logoUrl": updated["logo"]}


@router.post("/{event_id}/mainImage", name="upload_event_main_image")
async def upload_event_main_image(
    event_id: str,
    photo: UploadFile = File(...),
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    authz: AuthorizationProvider = Depends(get_authz_provider),
    store: ObjectStore = Depends(get_object_store),
):
    event = await load_event(db, event_id)
    authz.require(user, ResourceScope.for_event(event), MANAGE_EVENT,
                  detail="You do not have permission to update this event")

    stored = await store.store(photo, EVENT_PHOTO_POLICY)
    updated = await _update_event(db, event, user, "update-main-image", set_fields={"mainImage": stored.url})
    return {"message": "Main image uploaded", "mainImageUrl": updated["mainImage"]}


@router.post("/{event_id}/photos", name="upload_event_photos")
async def upload_event_photos(
    event_id: str,
    photos: List[UploadFile] = File(...),
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    authz: AuthorizationProvider = Depends(get_authz_provider),
    store: ObjectStore = Depends(get_object_store),
):
    event = await load_event(db, event_id)
    authz.require(user, ResourceScope.for_event(event), CONTRIBUTE_PHOTOS,
                  detail="You do not have permission to upload photos to this event")

    if not photos:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Please upload at least one photo")
    if len(photos) > MAX_GALLERY_PHOTOS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"At most {MAX_GALLERY_PHOTOS} photos can be uploaded at once",
        )

    urls = [(await store.store(photo, GALLERY_POLICY)).url for photo in photos]
    await _update_event(db, event, user, "upload-photos", extra={"$push": {"photos": {"$each": urls}}})
    return {"message": "Photos uploaded", "photos": urls}


# --- Operators ---


@router.post("/{event_id}/operators", name="add_operator")
async def add_operator(
    event_id: str,
    request: Request,
    admin: Dict[str, Any] = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    event = await load_event(db, event_id)
    data = await read_json_body(request, OPERATOR_ADD_SCHEMA)
    user_id = safe_objectid(data["userId"], "userId")

    if await db.users.find_one({"_id": user_id, "isDeleted": False}, {"_id": 1}) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if is_operator(user_id, event.get("operators")):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User is already an operator of this event")

    entry = {
        "user": user_id,
        "role": data["role"],
        "activities": safe_objectid_list(data.get("activities"), "activities"),
    }
    updated = await _update_event(db, event, admin, "add-operator", extra={"$push": {"operators": entry}})
    logger.info(f"Operator {user_id} ({data['role']}) added to event {event['_id']}.")
    return make_json_serializable({"message": "Operator added", "operators": updated.get("operators", [])})


@router.delete("/{event_id}/operators/{user_id}", name="remove_operator")
async def remove_operator(
    event_id: str,
    user_id: str,
    admin: Dict[str, Any] = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    event = await load_event(db, event_id)
    if not is_operator(user_id, event.get("operators")):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Operator not found")

    oid = object_id_or_404(user_id, "Operator not found")
    updated = await _update_event(db, event, admin, "remove-operator",
                                  extra={"$pull": {"operators": {"user": oid}}})
    return make_json_serializable({"message": "Operator removed", "operators": updated.get("operators", [])})


# --- Assistants ---


@router.post("/{event_id}/assistants", name="add_assistant")
async def add_assistant(
    event_id: str,
    request: Request,
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    authz: AuthorizationProvider = Depends(get_authz_provider),
):
    event = await load_event(db, event_id)
    authz.require(user, ResourceScope.for_event(event), MANAGE_ASSISTANTS,
                  detail="You do not have permission to add assistants to this event")
    data = await read_json_body(request, USER_REFERENCE_SCHEMA)
    assistant_id = safe_objectid(data["userId"], "userId")

    if is_assistant(assistant_id, event.get("assistants")):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User is already an assistant of this event")
    if await db.users.find_one({"_id": assistant_id, "isDeleted": False}, {"_id": 1}) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    updated = await _update_event(db, event, user, "add-assistant",
                                  extra={"$addToSet": {"assistants": assistant_id}})
    return make_json_serializable({"message": "Assistant added", "assistants": updated.get("assistants", [])})


@router.delete("/{event_id}/assistants/{user_id}", name="remove_assistant")
async def remove_assistant(
    event_id: str,
    user_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    authz: AuthorizationProvider = Depends(get_authz_provider),
):
    event = await load_event(db, event_id)
    authz.require(user, ResourceScope.for_event(event), MANAGE_ASSISTANTS,
                  detail="You do not have permission to remove assistants from this event")
    if not is_assistant(user_id, event.get("assistants")):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Assistant not found")

    updated = await _update_event(db, event, user, "remove-assistant",
                                  extra={"$pull": {"assistants": ObjectId(user_id)}})
    return make_json_serializable({"message": "Assistant removed", "assistants": updated.get("assistants", [])})
