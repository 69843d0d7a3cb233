"""
User accounts: registration, login, the caller's own profile and the admin
user management endpoints.
"""
import logging
from typing import Any, Dict, Mapping, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

import audit
from core_deps import (
    USER_PUBLIC_PROJECTION,
    generate_token,
    get_current_user,
    get_db,
    get_optional_user,
    load_live,
    require_admin,
)
from database import check_password, hash_password
from rate_limit import limiter, LOGIN_POST_LIMIT, REGISTER_POST_LIMIT
from schemas import (
    PROFILE_UPDATE_SCHEMA,
    USER_ADMIN_UPDATE_SCHEMA,
    USER_LOGIN_SCHEMA,
    USER_REGISTER_SCHEMA,
    read_json_body,
)
from utils import make_json_serializable, utc_now

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["Users"])

ENTITY = "User"


def _session_payload(user: Mapping[str, Any], include_permissions: bool = True) -> Dict[str, Any]:
    payload = {
        "_id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "role": user.get("role"),
    }
    if include_permissions:
        payload["permissions"] = user.get("permissions") or {}
    payload["token"] = generate_token(user["_id"])
    return payload


async def _ensure_email_free(db: AsyncIOMotorDatabase, email: str, exclude_id: Any = None) -> None:
    query: Dict[str, Any] = {"email": email}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    if await db.users.find_one(query, {"_id": 1}):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User already exists")


@router.post("", name="register_user")
@limiter.limit(REGISTER_POST_LIMIT)
async def register_user(
    request: Request,
    caller: Optional[Dict[str, Any]] = Depends(get_optional_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    data = await read_json_body(request, USER_REGISTER_SCHEMA)
    email = data["email"].strip().lower()
    await _ensure_email_free(db, email)

    # Only an authenticated admin may hand out a role other than "user"
    role = "user"
    if caller and caller.get("role") == "admin" and data.get("role"):
        role = data["role"]

    document = {
        "name": data["name"].strip(),
        "email": email,
        "password_hash": hash_password(data["password"]),
        "role": role,
        "permissions": {"isAssistant": False, "isOperator": role == "operator"},
        "phone": data.get("phone", ""),
        "tickets": [],
        "verified": False,
        "lastSession": None,
    }
    try:
        user = await audit.insert_entity(
            db, "users", ENTITY, document, caller["_id"] if caller else None
        )
    except DuplicateKeyError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User already exists")

    logger.info(f"New user registered: {email} (ID: {user['_id']}, role: {role})")
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=_session_payload(user, include_permissions=False),
    )


@router.post("/login", name="login_user")
@limiter.limit(LOGIN_POST_LIMIT)
async def login_user(request: Request, db: AsyncIOMotorDatabase = Depends(get_db)):
    data = await read_json_body(request, USER_LOGIN_SCHEMA)
    email = data["email"].strip().lower()

    user = await db.users.find_one({"email": email, "isDeleted": False})
    if not user or not check_password(data["password"], user.get("password_hash")):
        logger.warning(f"Failed login attempt for email: {email}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")

    await db.users.update_one({"_id": user["_id"]}, {"$set": {"lastSession": utc_now()}})
    logger.info(f"Successful login for user: {email}")
    return _session_payload(user)


@router.get("/profile", name="get_profile")
async def get_profile(user: Dict[str, Any] = Depends(get_current_user)):
    return make_json_serializable(user)


@router.put("/profile", name="update_profile")
async def update_profile(
    request: Request,
    user: Dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    data = await read_json_body(request, PROFILE_UPDATE_SCHEMA)
    changes: Dict[str, Any] = {}
    if data.get("name"):
        changes["name"] = data["name"].strip()
    if data.get("email"):
        changes["email"] = data["email"].strip().lower()
        await _ensure_email_free(db, changes["email"], exclude_id=user["_id"])
    if "phone" in data:
        changes["phone"] = data["phone"]
    if data.get("password"):
        changes["password_hash"] = hash_password(data["password"])

    updated = await audit.apply_change(
        db, "users", ENTITY, {"_id": user["_id"], "isDeleted": False},
        user["_id"], audit.UPDATE, set_fields=changes,
    )
    if updated is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return _session_payload(updated)


@router.get("", name="list_users")
async def list_users(
    admin: Dict[str, Any] = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    users = await db.users.find({"isDeleted": False}, USER_PUBLIC_PROJECTION).sort("name", 1).to_list(length=None)
    return make_json_serializable(users)


@router.get("/{user_id}", name="get_user")
async def get_user(
    user_id: str,
    admin: Dict[str, Any] = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    user = await load_live(db, "users", user_id, "User not found", USER_PUBLIC_PROJECTION)
    return make_json_serializable(user)


@router.put("/{user_id}", name="update_user")
async def update_user(
    user_id: str,
    request: Request,
    admin: Dict[str, Any] = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    user = await load_live(db, "users", user_id, "User not found", {"_id": 1, "permissions": 1})
    data = await read_json_body(request, USER_ADMIN_UPDATE_SCHEMA)

    changes: Dict[str, Any] = {}
    for field in ("name", "role", "phone", "verified"):
        if field in data:
            changes[field] = data[field]
    if data.get("email"):
        changes["email"] = data["email"].strip().lower()
        await _ensure_email_free(db, changes["email"], exclude_id=user["_id"])
    if "permissions" in data or "role" in data:
        permissions = {**(user.get("permissions") or {}), **data.get("permissions", {})}
        if "role" in data:
            # isOperator always follows the role, as on registration
            permissions["isOperator"] = data["role"] == "operator"
        changes["permissions"] = permissions

    updated = await audit.apply_change(
        db, "users", ENTITY, {"_id": user["_id"], "isDeleted": False},
        admin["_id"], audit.UPDATE, set_fields=changes,
    )
    if updated is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    updated.pop("password_hash", None)
    return make_json_serializable(updated)


@router.delete("/{user_id}", name="delete_user")
async def delete_user(
    user_id: str,
    admin: Dict[str, Any] = Depends(require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    user = await load_live(db, "users", user_id, "User not found", {"_id": 1})
    await audit.soft_delete(db, "users", ENTITY, user["_id"], admin["_id"])
    return {"message": "User removed"}
