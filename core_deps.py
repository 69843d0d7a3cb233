# core_deps.py
# ================================================================================
# Shared FastAPI dependencies: database handle, bearer-token authentication,
# the admin gate and the authorization provider. Route modules import from
# here instead of from main.py to avoid circular imports.
# ================================================================================

import logging
import datetime
from typing import Any, Dict, List, Optional

import jwt
from bson.objectid import ObjectId
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from motor.motor_asyncio import AsyncIOMotorDatabase

from authz_provider import AuthorizationProvider
from config import JWT_ALGORITHM, JWT_SECRET, TOKEN_EXPIRY_DAYS
from utils import object_id_or_404, utc_now, validate_objectid

logger = logging.getLogger(__name__)

# auto_error=False so a missing header yields our own 401 body instead of 403
_bearer_scheme = HTTPBearer(auto_error=False)

# Never hand the password hash to handlers
USER_PUBLIC_PROJECTION = {"password_hash": 0}


def generate_token(user_id: Any) -> str:
    """Sign a bearer token carrying the user id."""
    payload = {
        "id": str(user_id),
        "iat": utc_now(),
        "exp": utc_now() + datetime.timedelta(days=TOKEN_EXPIRY_DAYS),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode and validate a bearer token. Returns None if it is unusable."""
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.info("decode_token: Authentication token has expired.")
        return None
    except jwt.InvalidTokenError as e:
        logger.warning(f"decode_token: Invalid JWT token presented: {e}")
        return None


# --- Database & AuthZ ---


async def get_db(request: Request) -> AsyncIOMotorDatabase:
    """FastAPI Dependency: the Motor database set up in lifespan."""
    db = getattr(request.app.state, "mongo_db", None)
    if db is None:
        logger.critical("❌ get_db: MongoDB handle not found on app.state!")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database connection is not available",
        )
    return db


async def get_authz_provider(request: Request) -> AuthorizationProvider:
    """FastAPI Dependency: the shared AuthZ provider from app.state."""
    provider = getattr(request.app.state, "authz_provider", None)
    if not provider:
        logger.critical("❌ get_authz_provider: AuthZ provider not found on app.state!")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server configuration error: Authorization engine not loaded.",
        )
    return provider


# --- Authentication ---


async def _user_from_credentials(
    credentials: Optional[HTTPAuthorizationCredentials],
    db: AsyncIOMotorDatabase,
) -> Optional[Dict[str, Any]]:
    if credentials is None:
        return None

    payload = decode_token(credentials.credentials)
    if not payload:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authorized, invalid token")

    user_id = payload.get("id")
    is_valid, _ = validate_objectid(user_id)
    if not is_valid:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authorized, invalid token")

    user = await db.users.find_one(
        {"_id": ObjectId(user_id), "isDeleted": False},
        USER_PUBLIC_PROJECTION,
    )
    if not user:
        logger.info(f"Token presented for unknown or deleted user '{user_id}'.")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authorized, invalid token")
    return user


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> Optional[Dict[str, Any]]:
    """
    FastAPI Dependency for public routes: the caller if a token was sent,
    None for anonymous callers. A token that is sent but invalid is still a 401.
    """
    return await _user_from_credentials(credentials, db)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> Dict[str, Any]:
    """FastAPI Dependency: the authenticated caller, 401 otherwise."""
    user = await _user_from_credentials(credentials, db)
    if user is None:
        logger.debug("get_current_user: No bearer token provided.")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authorized, no token provided")
    return user


async def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    """FastAPI Dependency: enforces the admin role."""
    if user.get("role") != "admin":
        logger.warning(f"require_admin: Admin access DENIED for user '{user.get('email')}'.")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized, administrator role required",
        )
    return user


# --- Document lookups shared by the route modules ---


async def load_live(
    db: AsyncIOMotorDatabase,
    collection: str,
    raw_id: str,
    detail: str,
    projection: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Fetch one non-deleted document by its id string. Malformed, missing and
    soft-deleted ids are all the same 404.
    """
    oid = object_id_or_404(raw_id, detail)
    document = await db[collection].find_one({"_id": oid, "isDeleted": False}, projection)
    if document is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
    return document


async def populate(
    db: AsyncIOMotorDatabase,
    collection: str,
    ids: Optional[List[Any]],
    projection: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    """Live documents for a list of ids, in the order of the list."""
    ids = list(ids or [])
    if not ids:
        return []
    found = await db[collection].find({"_id": {"$in": ids}, "isDeleted": False}, projection).to_list(length=None)
    by_id = {str(doc["_id"]): doc for doc in found}
    return [by_id[str(i)] for i in ids if str(i) in by_id]


async def populate_one(
    db: AsyncIOMotorDatabase,
    collection: str,
    oid: Any,
    projection: Optional[Dict[str, Any]] = None,
) -> Any:
    """The live document for an id, or the bare id when it is gone."""
    if oid is None:
        return None
    document = await db[collection].find_one({"_id": oid, "isDeleted": False}, projection)
    return document if document is not None else oid
