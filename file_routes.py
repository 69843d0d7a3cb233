"""
Uploaded files (documents, images, videos) kept in object storage, with
their metadata and an optional link to an event, activity or user.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorDatabase

import audit
from authz_provider import OWN, AuthorizationProvider, ResourceScope
from core_deps import get_authz_provider, get_current_user, get_db, load_live, populate_one, require_admin
from object_storage import FILE_POLICY, ObjectStore, get_object_store, infer_file_type
from schemas import FILE_METADATA_SCHEMA, FILE_TARGET_KINDS, read_json_body, validate_payload
from targets import TargetRef, resolve_target, with_live_targets
from utils import make_json_serializable, object_id_or_404

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/files", tags=["Files"])

ENTITY = "File"
FILE_NOT_FOUND = "File not found"


async def _target_from_input(db: AsyncIOMotorDatabase, target: Optional[str],
                             target_model: Optional[str]) -> Optional[TargetRef]:
    """Parse and resolve an optional target; both parts must be given together."""
    if not target and not target_model:
        return None
    if not target or not target_model:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="target and targetModel must be provided together",
        )
    ref = TargetRef.parse(target_model, target, allowed=FILE_TARGET_KINDS)
    await resolve_target(db, ref)
    return ref


async def load_file(db: AsyncIOMotorDatabase, file_id: str) -> Dict[str, Any]:
    """A live file record; a file linked to a deleted target is gone too."""
    record = await load_live(db, "files", file_id, FILE_NOT_FOUND)
    ref = TargetRef.from_document(record.get("target"))
    if ref is not None:
        await resolve_target(db, ref)
    return record


async def _with_owner(db: AsyncIOMotorDatabase, records):
    for record in records:
        record["owner"] = await populate_one(db, "users", record.get("owner"), {"name": 1})
    return records


@router.post("", name="upload_file")
async def upload_file(
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    type: Optional[str] = Form(None),
    target: Optional[str] = Form(None),
    targetModel: Optional[str] = Form(None),
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    store: ObjectStore = Depends(get_object_store),
):
    metadata = {
        key: value for key, value in {
            "title": title, "description": description, "type": type,
            "target": target, "targetModel": targetModel,
        }.items() if value
    }
    validate_payload(metadata, FILE_METADATA_SCHEMA)
    ref = await _target_from_input(db, target, targetModel)

    stored = await store.store(file, FILE_POLICY)
    document = {
        "location": stored.url,
        "title": title or file.filename,
        "description": description or "",
        "type": type or infer_file_type(file.content_type),
        "owner": user["_id"],
        "target": ref.to_document() if ref else None,
        "publicId": stored.public_id,
        "size": stored.size,
        "format": stored.format,
    }
    record = await audit.insert_entity(db, "files", ENTITY, document, user["_id"])
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=make_json_serializable(record))


@router.get("", name="list_files")
async def list_files(
    admin: Dict[str, Any] = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    records = await db.files.find({"isDeleted": False}).sort("createdAt", -1).to_list(length=None)
    records = await with_live_targets(db, records)
    return make_json_serializable(await _with_owner(db, records))


@router.get("/owner/{user_id}", name="list_owner_files")
async def list_owner_files(
    user_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    owner_id = object_id_or_404(user_id, "User not found")
    if owner_id != user["_id"] and user.get("role") != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have permission to view the files of this user",
        )
    records = await db.files.find({"owner": owner_id, "isDeleted": False}).sort("createdAt", -1).to_list(length=None)
    return make_json_serializable(await with_live_targets(db, records))


@router.get("/target/{target_model}/{target_id}", name="list_target_files")
async def list_target_files(
    target_model: str,
    target_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    ref = TargetRef.parse(target_model, target_id, allowed=FILE_TARGET_KINDS)
    if ref.kind == "User" and ref.id != user["_id"] and user.get("role") != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You do not have permission to view these files")
    await resolve_target(db, ref)

    records = await db.files.find({**ref.match(), "isDeleted": False}).sort("createdAt", -1).to_list(length=None)
    return make_json_serializable(await _with_owner(db, records))


@router.get("/{file_id}", name="get_file")
async def get_file(
    file_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    authz: AuthorizationProvider = Depends(get_authz_provider),
):
    record = await load_file(db, file_id)
    authz.require(user, ResourceScope.owned_by(record.get("owner")), OWN,
                  detail="You do not have permission to view this file")
    record["owner"] = await populate_one(db, "users", record.get("owner"), {"name": 1})
    return make_json_serializable(record)


@router.put("/{file_id}", name="update_file")
async def update_file(
    file_id: str,
    request: Request,
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    authz: AuthorizationProvider = Depends(get_authz_provider),
):
    record = await load_file(db, file_id)
    authz.require(user, ResourceScope.owned_by(record.get("owner")), OWN,
                  detail="You do not have permission to update this file")
    data = await read_json_body(request, FILE_METADATA_SCHEMA)

    changes: Dict[str, Any] = {}
    if data.get("title"):
        changes["title"] = data["title"]
    if "description" in data:
        changes["description"] = data["description"]
    if data.get("type"):
        changes["type"] = data["type"]
    if "target" in data or "targetModel" in data:
        ref = await _target_from_input(db, data.get("target"), data.get("targetModel"))
        changes["target"] = ref.to_document() if ref else None

    updated = await audit.apply_change(
        db, "files", ENTITY, {"_id": record["_id"], "isDeleted": False},
        user["_id"], audit.UPDATE, set_fields=changes,
    )
    if updated is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=FILE_NOT_FOUND)
    return make_json_serializable(updated)


@router.delete("/{file_id}", name="delete_file")
async def delete_file(
    file_id: str,
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    authz: AuthorizationProvider = Depends(get_authz_provider),
    store: ObjectStore = Depends(get_object_store),
):
    record = await load_file(db, file_id)
    authz.require(user, ResourceScope.owned_by(record.get("owner")), OWN,
                  detail="You do not have permission to delete this file")

    if record.get("publicId"):
        await store.delete(record["publicId"])
    await audit.soft_delete(db, "files", ENTITY, record["_id"], user["_id"])
    return {"message": "File removed"}
