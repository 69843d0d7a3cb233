"""Startup and shutdown: everything the handlers later find on app.state."""
import os
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from motor.motor_asyncio import AsyncIOMotorClient

from config import (
    B2_APPLICATION_KEY,
    B2_APPLICATION_KEY_ID,
    B2_BUCKET_NAME,
    B2_ENABLED,
    B2Api,
    B2Error,
    DB_NAME,
    InMemoryAccountInfo,
    MONGO_URI,
)
from authz_factory import create_authz_provider
from database import ensure_db_indices, get_or_create_main_config, seed_admin
from object_storage import B2ObjectStore

logger = logging.getLogger(__name__)

_b2_init_lock = asyncio.Lock()


async def init_object_store(app: FastAPI) -> None:
    """Authorize against B2 and put a B2ObjectStore on app.state (None when storage is off)."""
    app.state.object_store = None
    if not B2_ENABLED:
        logger.warning("⚠️ Object storage not configured. Uploads are disabled.")
        return

    async with _b2_init_lock:
        try:
            api = B2Api(InMemoryAccountInfo())
            await asyncio.to_thread(api.authorize_account, "production", B2_APPLICATION_KEY_ID, B2_APPLICATION_KEY)
            bucket = await asyncio.to_thread(api.get_bucket_by_name, B2_BUCKET_NAME)
        except B2Error as e:
            logger.error(f"❌ B2 authorization failed, uploads stay disabled: {e}", exc_info=True)
            return

    app.state.object_store = B2ObjectStore(api, bucket)
    logger.info(f"✔️ Object storage ready on bucket '{B2_BUCKET_NAME}'.")


async def connect_mongo(app: FastAPI) -> None:
    max_pool_size = int(os.getenv("MONGO_MAX_POOL_SIZE", "50"))
    min_pool_size = int(os.getenv("MONGO_MIN_POOL_SIZE", "5"))

    logger.info(f"Connecting to MongoDB at '{MONGO_URI}'...")
    try:
        client = AsyncIOMotorClient(
            MONGO_URI,
            serverSelectionTimeoutMS=5000,
            appname="EventAPI",
            maxPoolSize=max_pool_size,
            minPoolSize=min_pool_size,
            retryWrites=True,
            retryReads=True,
        )
        await client.admin.command("ping")
    except Exception as e:
        logger.critical(f"❌ CRITICAL ERROR: Cannot reach MongoDB: {e}", exc_info=True)
        raise RuntimeError(f"MongoDB connection failed: {e}") from e

    app.state.mongo_client = client
    app.state.mongo_db = client[DB_NAME]
    logger.info(f"✔️ MongoDB connected (database '{DB_NAME}', pool {min_pool_size}-{max_pool_size}).")


async def init_authz(app: FastAPI) -> None:
    provider_name = os.getenv("AUTHZ_PROVIDER", "operator_roles").lower()
    try:
        app.state.authz_provider = await create_authz_provider(provider_name, {"db_name": DB_NAME})
    except Exception as e:
        logger.critical(f"❌ CRITICAL ERROR: AuthZ provider '{provider_name}' could not be created: {e}", exc_info=True)
        raise RuntimeError(f"Authorization provider initialization failed: {e}") from e
    logger.info(f"✔️ Authorization provider '{provider_name}' active.")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Starting Event API...")

    await init_object_store(app)
    await connect_mongo(app)
    await init_authz(app)

    db = app.state.mongo_db
    try:
        await ensure_db_indices(db)
        await seed_admin(app)
        await get_or_create_main_config(db)
    except Exception as e:
        # Not fatal: the main config is also created on its first read
        logger.error(f"⚠️ Database bootstrap incomplete: {e}", exc_info=True)

    logger.info("✔️ Event API ready.")
    try:
        yield
    finally:
        logger.info("🛑 Shutting down Event API...")
        client = getattr(app.state, "mongo_client", None)
        if client is not None:
            client.close()
        logger.info("✔️ Shutdown complete.")
