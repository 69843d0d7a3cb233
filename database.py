"""Database initialization, indexing, and seeding functions."""
import asyncio
import logging
from typing import Any, Dict

import bcrypt
from fastapi import FastAPI
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from audit import CREATE, HISTORY_COLLECTION, creation_fields, record
from config import ADMIN_EMAIL_DEFAULT, ADMIN_NAME_DEFAULT, ADMIN_PASSWORD_DEFAULT

logger = logging.getLogger(__name__)

DB_TIMEOUT = 15.0
MAIN_CONFIG_KEY = "main"

MAIN_CONFIG_DEFAULTS: Dict[str, Any] = {
    "logo": "",
    "title": "Event App",
    "subtitle": "Gestión de eventos",
    "welcome": "Bienvenido a Event App",
    "infoColor": "#000000",
    "bgColor": "#FFFFFF",
    "linkColor": "#0000FF",
    "btnColor": "#007BFF",
    "secColor": "#6C757D",
    "starColor": "#FFD700",
    "company": "Mi Empresa",
    "infoMail": "info@miempresa.com",
    "infoPhone": "+1234567890",
}


def hash_password(password: str) -> bytes:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())


def check_password(password: str, password_hash: Any) -> bool:
    if not password_hash:
        return False
    if isinstance(password_hash, str):
        password_hash = password_hash.encode("utf-8")
    return bcrypt.checkpw(password.encode("utf-8"), password_hash)


async def ensure_db_indices(db: AsyncIOMotorDatabase):
    """Ensure core MongoDB indexes exist."""
    try:
        await db.users.create_index("email", unique=True, background=True)
        await db.main_config.create_index("key", unique=True, background=True)
        await db.events.create_index([("isDeleted", 1), ("dateStart", 1)], background=True)
        await db.events.create_index("activities", background=True)
        await db.events.create_index("operators.user", background=True)
        await db.activities.create_index("isDeleted", background=True)
        await db.tickets.create_index([("event", 1), ("isDeleted", 1)], background=True)
        await db.tickets.create_index("user", background=True)
        await db.califications.create_index(
            [("calificator", 1), ("target.kind", 1), ("target.id", 1)], background=True
        )
        await db.witnesses.create_index([("target.kind", 1), ("target.id", 1)], background=True)
        await db.files.create_index("owner", background=True)
        await db[HISTORY_COLLECTION].create_index(
            [("entity_kind", 1), ("entity_id", 1), ("date", 1)], background=True
        )
        logger.info("✔️ Core MongoDB indexes ensured (users.email, events, tickets, califications, change_history).")
    except Exception as e:
        logger.error(f"⚠️ Failed to ensure core MongoDB indexes: {e}", exc_info=True)


async def seed_admin(app: FastAPI):
    """Create the default administrator when no admin user exists."""
    db: AsyncIOMotorDatabase = app.state.mongo_db

    try:
        existing = await asyncio.wait_for(
            db.users.find_one({"role": "admin", "isDeleted": False}, {"_id": 1}),
            timeout=DB_TIMEOUT,
        )
    except asyncio.TimeoutError:
        logger.critical(f"❌ CRITICAL: Timed out after {DB_TIMEOUT}s while looking for admin users.")
        raise

    if existing:
        logger.info("Admin user already present. Skipping admin seeding.")
        return

    logger.warning("⚠️ No admin user found. Seeding default administrator...")
    email = ADMIN_EMAIL_DEFAULT.lower()
    document = {
        "name": ADMIN_NAME_DEFAULT,
        "email": email,
        "password_hash": hash_password(ADMIN_PASSWORD_DEFAULT),
        "role": "admin",
        "permissions": {"isAssistant": False, "isOperator": False},
        "phone": "",
        "tickets": [],
        "verified": True,
        "lastSession": None,
        **creation_fields(None),
    }
    try:
        await asyncio.wait_for(db.users.insert_one(document), timeout=DB_TIMEOUT)
    except asyncio.TimeoutError:
        logger.critical(f"❌ CRITICAL: Timed out seeding default admin user '{email}'.")
        raise
    logger.warning(f"⚠️ Default admin user '{email}' created.")
    logger.warning("⚠️ IMPORTANT: Change the default admin password immediately!")


async def get_or_create_main_config(db: AsyncIOMotorDatabase) -> Dict[str, Any]:
    """
    Return the site configuration singleton, creating it with defaults on first use.

    Creation is an upsert on MAIN_CONFIG_KEY, so concurrent first reads settle
    on one document.
    """
    singleton = {"key": MAIN_CONFIG_KEY}
    config_doc = await db.main_config.find_one(singleton)
    if config_doc:
        return config_doc

    try:
        result = await db.main_config.update_one(
            singleton,
            {"$setOnInsert": {**MAIN_CONFIG_DEFAULTS, **creation_fields(None, soft_deletable=False)}},
            upsert=True,
        )
    except DuplicateKeyError:
        # Another request created it between the read and the upsert
        result = None
    if result is not None and result.upserted_id is not None:
        await record(db, "Main", result.upserted_id, None, CREATE)
        logger.info("Main configuration created with default values.")
    return await db.main_config.find_one(singleton)
