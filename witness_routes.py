"""
Witness records: proof that a user took part in an event or an activity,
which is what later allows that user to rate it.
"""
import logging
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorDatabase

import audit
from authz_provider import MANAGE_WITNESSES, OPERATE, AuthorizationProvider, ResourceScope
from core_deps import get_authz_provider, get_current_user, get_db, load_live, populate_one, require_admin
from event_routes import USER_SUMMARY
from schemas import RATABLE_KINDS, WITNESS_CREATE_SCHEMA, read_json_body
from targets import TargetRef, owning_event, resolve_target, with_live_targets
from utils import make_json_serializable, object_id_or_404, safe_objectid

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/witnesses", tags=["Witnesses"])

ENTITY = "Witness"
WITNESS_NOT_FOUND = "Witness not found"


async def witness_scope(db: AsyncIOMotorDatabase, ref: TargetRef, target: Dict[str, Any]) -> ResourceScope:
    event = await owning_event(db, ref, target)
    return ResourceScope.for_event(event, activity_id=ref.id if ref.kind == "Activity" else None)


def _target_link(ref: TargetRef, record: Dict[str, Any]) -> Any:
    """
    What a witness record adds to its target's `witnesses` list: activities
    keep user ids (shared with the activity witness endpoints), events keep
    the witness record ids.
    """
    return record["witness"] if ref.kind == "Activity" else record["_id"]


async def find_witness_record(db: AsyncIOMotorDatabase, ref: TargetRef, witness_id: Any) -> Optional[Dict[str, Any]]:
    return await db.witnesses.find_one({"witness": witness_id, **ref.match(), "isDeleted": False})


async def record_witness(db: AsyncIOMotorDatabase, ref: TargetRef, witness_id: Any,
                         actor_id: Any) -> Tuple[Dict[str, Any], Optional[Dict[str, Any]]]:
    """
    Create the Witness record and link it on the target. Both witness
    endpoints write through here. Returns the record and the updated target.
    """
    if await find_witness_record(db, ref, witness_id) is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"This user is already a witness of this {ref.kind.lower()}",
        )
    record = await audit.insert_entity(
        db, "witnesses", ENTITY, {"witness": witness_id, "target": ref.to_document()}, actor_id
    )
    target = await audit.apply_change(
        db, ref.collection, ref.kind, {"_id": ref.id, "isDeleted": False},
        actor_id, "add-witness", extra={"$addToSet": {"witnesses": _target_link(ref, record)}},
    )
    logger.info(f"User {witness_id} recorded as witness of {ref.kind} {ref.id}.")
    return record, target


async def remove_witness(db: AsyncIOMotorDatabase, ref: TargetRef, record: Dict[str, Any],
                         actor_id: Any) -> Optional[Dict[str, Any]]:
    """Soft-delete a Witness record and unlink it from its target. Returns the updated target."""
    await audit.soft_delete(db, "witnesses", ENTITY, record["_id"], actor_id)
    return await audit.apply_change(
        db, ref.collection, ref.kind, {"_id": ref.id, "isDeleted": False},
        actor_id, "remove-witness", extra={"$pull": {"witnesses": _target_link(ref, record)}},
    )


async def _populate_witnesses(db: AsyncIOMotorDatabase, records):
    for record in records:
        record["witness"] = await populate_one(db, "users", record.get("witness"), USER_SUMMARY)
    return records


@router.post("", name="create_witness")
async def create_witness(
    request: Request,
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    authz: AuthorizationProvider = Depends(get_authz_provider),
):
    data = await read_json_body(request, WITNESS_CREATE_SCHEMA)
    witness_id = safe_objectid(data["witness"], "witness")
    if await db.users.find_one({"_id": witness_id, "isDeleted": False}, {"_id": 1}) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    ref = TargetRef.parse(data["targetModel"], data["target"], allowed=RATABLE_KINDS)
    target = await resolve_target(db, ref)
    authz.require(user, await witness_scope(db, ref, target), MANAGE_WITNESSES,
                  detail=f"You do not have permission to add witnesses to this {ref.kind.lower()}")

    record, _ = await record_witness(db, ref, witness_id, user["_id"])
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=make_json_serializable(record))


@router.get("", name="list_witnesses")
async def list_witnesses(
    admin: Dict[str, Any] = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    records = await db.witnesses.find({"isDeleted": False}).sort("createdAt", -1).to_list(length=None)
    records = await with_live_targets(db, records)
    return make_json_serializable(await _populate_witnesses(db, records))


@router.get("/user/{user_id}", name="list_user_witnesses")
async def list_user_witnesses(
    user_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    witness_id = object_id_or_404(user_id, "User not found")
    if witness_id != user["_id"] and user.get("role") != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    records = await db.witnesses.find({"witness": witness_id, "isDeleted": False}).sort("createdAt", -1).to_list(length=None)
    live = []
    for record in records:
        ref = TargetRef.from_document(record.get("target"))
        target = await db[ref.collection].find_one({"_id": ref.id, "isDeleted": False}, {"title": 1})
        if target is not None:
            record["target"] = {**ref.to_document(), "title": target.get("title")}
            live.append(record)
    return make_json_serializable(live)


@router.get("/{target_model}/{target_id}", name="list_target_witnesses")
async def list_target_witnesses(
    target_model: str,
    target_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    authz: AuthorizationProvider = Depends(get_authz_provider),
):
    ref = TargetRef.parse(target_model, target_id, allowed=RATABLE_KINDS)
    target = await resolve_target(db, ref)
    authz.require(user, await witness_scope(db, ref, target), OPERATE,
                  detail="You do not have permission to view the witnesses of this target")

    records = await db.witnesses.find({**ref.match(), "isDeleted": False}).sort("createdAt", -1).to_list(length=None)
    return make_json_serializable(await _populate_witnesses(db, records))


@router.delete("/{witness_id}", name="delete_witness")
async def delete_witness(
    witness_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    authz: AuthorizationProvider = Depends(get_authz_provider),
):
    record = await load_live(db, "witnesses", witness_id, WITNESS_NOT_FOUND)
    ref = TargetRef.from_document(record.get("target"))
    target = await resolve_target(db, ref)
    authz.require(user, await witness_scope(db, ref, target), MANAGE_WITNESSES,
                  detail="You do not have permission to remove this witness")

    await remove_witness(db, ref, record, user["_id"])
    return {"message": "Witness removed"}
