"""
Califications (ratings) left by participants on an event or an activity.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorDatabase

import audit
from authz_provider import OWN, VIEW, AuthorizationProvider, ResourceScope, is_assistant
from core_deps import get_authz_provider, get_current_user, get_db, get_optional_user, load_live, populate_one
from schemas import (
    CALIFICATION_CREATE_SCHEMA,
    CALIFICATION_UPDATE_SCHEMA,
    RATABLE_KINDS,
    read_json_body,
)
from targets import TargetRef, owning_event, resolve_target
from utils import contains_id, make_json_serializable

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/califications", tags=["Califications"])

ENTITY = "Calification"
CALIFICATION_NOT_FOUND = "Calification not found"


async def can_rate(db: AsyncIOMotorDatabase, user: Dict[str, Any], ref: TargetRef,
                   target: Dict[str, Any]) -> bool:
    """
    Admins may always rate. Otherwise an event needs the user among its
    assistants; an activity needs the user among its witnesses or among the
    assistants of any live event listing it.
    """
    if user.get("role") == "admin":
        return True
    if ref.kind == "Event":
        return is_assistant(user["_id"], target.get("assistants"))
    if contains_id(target.get("witnesses"), user["_id"]):
        return True
    attended = await db.events.find_one(
        {"activities": ref.id, "assistants": user["_id"], "isDeleted": False}, {"_id": 1}
    )
    return attended is not None


async def load_calification(db: AsyncIOMotorDatabase, calification_id: str) -> Dict[str, Any]:
    """A live calification whose target is live as well."""
    calification = await load_live(db, "califications", calification_id, CALIFICATION_NOT_FOUND)
    ref = TargetRef.from_document(calification.get("target"))
    if ref is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=CALIFICATION_NOT_FOUND)
    await resolve_target(db, ref)
    return calification


def rating_stats(califications) -> Dict[str, Any]:
    total = len(califications)
    average = sum(c.get("rating", 0) for c in califications) / total if total else 0
    return {"totalRatings": total, "averageRating": round(average, 1)}


@router.post("", name="create_calification")
async def create_calification(
    request: Request,
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    data = await read_json_body(request, CALIFICATION_CREATE_SCHEMA)
    ref = TargetRef.parse(data["targetModel"], data["target"], allowed=RATABLE_KINDS)
    target = await resolve_target(db, ref)

    if not await can_rate(db, user, ref, target):
        logger.warning(f"User {user['_id']} tried to rate {ref.kind} {ref.id} without participating.")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"You cannot rate this {ref.kind.lower()} because you are not a participant",
        )

    duplicate = await db.califications.find_one(
        {"calificator": user["_id"], **ref.match(), "isDeleted": False}, {"_id": 1}
    )
    if duplicate:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"You have already rated this {ref.kind.lower()}",
        )

    document = {
        "calificator": user["_id"],
        "rating": data["rating"],
        "comment": data.get("comment", ""),
        "target": ref.to_document(),
    }
    calification = await audit.insert_entity(db, "califications", ENTITY, document, user["_id"])
    await db[ref.collection].update_one({"_id": ref.id}, {"$push": {"califications": calification["_id"]}})
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=make_json_serializable(calification))


@router.get("/{target_model}/{target_id}", name="list_target_califications")
async def list_target_califications(
    target_model: str,
    target_id: str,
    user: Optional[Dict[str, Any]] = Depends(get_optional_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    authz: AuthorizationProvider = Depends(get_authz_provider),
):
    ref = TargetRef.parse(target_model, target_id, allowed=RATABLE_KINDS)
    target = await resolve_target(db, ref)
    event = await owning_event(db, ref, target)
    authz.require(user, ResourceScope.for_event(event), VIEW,
                  detail="You do not have permission to view the califications of this target")

    califications = await db.califications.find(
        {**ref.match(), "isDeleted": False}
    ).sort("createdAt", -1).to_list(length=None)
    for calification in califications:
        calification["calificator"] = await populate_one(db, "users", calification.get("calificator"), {"name": 1})

    return make_json_serializable({"califications": califications, "stats": rating_stats(califications)})


@router.get("/{calification_id}", name="get_calification")
async def get_calification(
    calification_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    authz: AuthorizationProvider = Depends(get_authz_provider),
):
    calification = await load_calification(db, calification_id)
    authz.require(user, ResourceScope.owned_by(calification.get("calificator")), OWN,
                  detail="You do not have permission to view this calification")
    calification["calificator"] = await populate_one(db, "users", calification.get("calificator"), {"name": 1})
    return make_json_serializable(calification)


@router.put("/{calification_id}", name="update_calification")
async def update_calification(
    calification_id: str,
    request: Request,
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    authz: AuthorizationProvider = Depends(get_authz_provider),
):
    calification = await load_calification(db, calification_id)
    authz.require(user, ResourceScope.owned_by(calification.get("calificator")), OWN,
                  detail="You do not have permission to update this calification")
    data = await read_json_body(request, CALIFICATION_UPDATE_SCHEMA)

    changes = {field: data[field] for field in ("rating", "comment") if field in data}
    updated = await audit.apply_change(
        db, "califications", ENTITY, {"_id": calification["_id"], "isDeleted": False},
        user["_id"], audit.UPDATE, set_fields=changes,
    )
    if updated is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=CALIFICATION_NOT_FOUND)
    return make_json_serializable(updated)


@router.delete("/{calification_id}", name="delete_calification")
async def delete_calification(
    calification_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    authz: AuthorizationProvider = Depends(get_authz_provider),
):
    calification = await load_calification(db, calification_id)
    authz.require(user, ResourceScope.owned_by(calification.get("calificator")), OWN,
                  detail="You do not have permission to delete this calification")

    await audit.soft_delete(db, "califications", ENTITY, calification["_id"], user["_id"])
    ref = TargetRef.from_document(calification.get("target"))
    await db[ref.collection].update_one({"_id": ref.id}, {"$pull": {"califications": calification["_id"]}})
    return {"message": "Calification removed"}
