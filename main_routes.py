"""
Site configuration (branding, colors, contact details) and the admin-only
change log lookup.
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile, status
from motor.motor_asyncio import AsyncIOMotorDatabase

import audit
from core_deps import get_db, require_admin
from database import get_or_create_main_config
from object_storage import LOGO_POLICY, ObjectStore, get_object_store
from schemas import MAIN_UPDATE_SCHEMA, read_json_body
from targets import TARGET_COLLECTIONS
from utils import make_json_serializable, object_id_or_404

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/main", tags=["Main"])
audit_router = APIRouter(prefix="/api/audit", tags=["Audit"])

ENTITY = "Main"

# Entity kinds whose change log can be queried, and where they live
AUDITED_COLLECTIONS: Dict[str, str] = {
    **TARGET_COLLECTIONS,
    "Ticket": "tickets",
    "Calification": "califications",
    "Witness": "witnesses",
    "File": "files",
    "Main": "main_config",
}


async def _update_main(db: AsyncIOMotorDatabase, admin: Dict[str, Any], change_type: str,
                       changes: Dict[str, Any]) -> Dict[str, Any]:
    config_doc = await get_or_create_main_config(db)
    updated = await audit.apply_change(
        db, "main_config", ENTITY, {"_id": config_doc["_id"]},
        admin["_id"], change_type, set_fields=changes,
    )
    return updated


@router.get("", name="get_main_config")
async def get_main_config(db: AsyncIOMotorDatabase = Depends(get_db)):
    return make_json_serializable(await get_or_create_main_config(db))


@router.put("", name="update_main_config")
async def update_main_config(
    request: Request,
    admin: Dict[str, Any] = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    data = await read_json_body(request, MAIN_UPDATE_SCHEMA)
    changes = {field: value for field, value in data.items() if field in MAIN_UPDATE_SCHEMA["properties"]}
    updated = await _update_main(db, admin, audit.UPDATE, changes)
    logger.info(f"Main configuration updated by {admin.get('email')} ({', '.join(data) or 'no fields'}).")
    return make_json_serializable(updated)


@router.post("/logo", name="upload_main_logo")
async def upload_main_logo(
    logo: UploadFile = File(...),
    admin: Dict[str, Any] = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
    store: ObjectStore = Depends(get_object_store),
):
    stored = await store.store(logo, LOGO_POLICY)
    updated = await _update_main(db, admin, "update-logo", {"logo": stored.url})
    return {"message": "Logo uploaded", "logoUrl": updated["logo"]}


@audit_router.get("/{kind}/{entity_id}", name="get_change_history")
async def get_change_history(
    kind: str,
    entity_id: str,
    admin: Dict[str, Any] = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    if kind not in AUDITED_COLLECTIONS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Kind must be one of: {', '.join(AUDITED_COLLECTIONS)}",
        )
    oid = object_id_or_404(entity_id, f"{kind} not found")
    if await db[AUDITED_COLLECTIONS[kind]].find_one({"_id": oid}, {"_id": 1}) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{kind} not found")

    return make_json_serializable(await audit.history_for(db, kind, oid))
