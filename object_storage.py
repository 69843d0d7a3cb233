"""
Object storage for uploaded files (logos, photos, documents).

The API only relies on a two-method contract:

    store(upload) -> StoredObject(url, public_id, size, format)
    delete(public_id)

`B2ObjectStore` implements it on Backblaze B2 through the native b2sdk.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Iterable, Optional, Protocol

from fastapi import HTTPException, Request, UploadFile, status

from config import B2Error
from utils import sanitize_filename

logger = logging.getLogger(__name__)

MB = 1024 * 1024


@dataclass(frozen=True)
class StoredObject:
    url: str
    public_id: str
    size: int
    format: str


@dataclass(frozen=True)
class UploadPolicy:
    """Where an upload goes and what it may contain."""
    folder: str
    allowed_formats: Iterable[str]
    max_bytes: int
    allowed_mime_prefixes: Iterable[str] = ()


LOGO_POLICY = UploadPolicy("logos", ("jpg", "jpeg", "png"), 2 * MB, ("image/",))
EVENT_PHOTO_POLICY = UploadPolicy("events", ("jpg", "jpeg", "png"), 5 * MB, ("image/",))
GALLERY_POLICY = UploadPolicy("gallery", ("jpg", "jpeg", "png"), 5 * MB, ("image/",))
FILE_POLICY = UploadPolicy(
    "files",
    ("jpg", "jpeg", "png", "pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx"),
    10 * MB,
)
MAX_GALLERY_PHOTOS = 10


class ObjectStore(Protocol):
    async def store(self, upload: UploadFile, policy: UploadPolicy) -> StoredObject:
        ...

    async def delete(self, public_id: str) -> None:
        ...


def file_extension(filename: Optional[str]) -> str:
    return PurePosixPath(filename or "").suffix.lower().lstrip(".")


def infer_file_type(content_type: Optional[str]) -> str:
    """Map a MIME type to one of the File.type values."""
    content_type = content_type or ""
    if content_type.startswith("image/"):
        return "image"
    if content_type == "application/pdf":
        return "document"
    if content_type.startswith("video/"):
        return "video"
    return "other"


async def read_upload(upload: UploadFile, policy: UploadPolicy) -> bytes:
    """Read an upload after checking its format and size against the policy."""
    extension = file_extension(upload.filename)
    if extension not in policy.allowed_formats:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Only these formats are allowed: {', '.join(policy.allowed_formats)}",
        )
    prefixes = tuple(policy.allowed_mime_prefixes)
    if prefixes and not (upload.content_type or "").startswith(prefixes):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Only these formats are allowed: {', '.join(policy.allowed_formats)}",
        )

    data = await upload.read(policy.max_bytes + 1)
    if len(data) > policy.max_bytes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File too large (max {policy.max_bytes // MB} MB)",
        )
    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Uploaded file is empty")
    return data


class B2ObjectStore:
    """ObjectStore on a Backblaze B2 bucket. Blocking SDK calls run in a thread pool."""

    def __init__(self, b2_api, b2_bucket, key_prefix: str = "event-app"):
        self._api = b2_api
        self._bucket = b2_bucket
        self._prefix = key_prefix

    async def store(self, upload: UploadFile, policy: UploadPolicy) -> StoredObject:
        data = await read_upload(upload, policy)
        safe_name = sanitize_filename(upload.filename or "upload")
        key = f"{self._prefix}/{policy.folder}/{uuid.uuid4().hex}-{safe_name}"

        try:
            file_version = await asyncio.to_thread(
                self._bucket.upload_bytes, data, key,
                content_type=upload.content_type or "b2/x-auto",
            )
            url = await asyncio.to_thread(
                self._api.get_download_url_for_file_name, self._bucket.name, key,
            )
        except B2Error as e:
            logger.error(f"B2 upload failed for '{key}': {e}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="File storage is currently unavailable",
            )

        logger.info(f"Uploaded '{key}' to B2 ({len(data)} bytes).")
        # B2 deletes need both the name and the version id
        public_id = f"{key}::{file_version.id_}"
        return StoredObject(url=url, public_id=public_id, size=len(data), format=file_extension(safe_name))

    async def delete(self, public_id: str) -> None:
        key, _, version_id = public_id.partition("::")
        try:
            await asyncio.to_thread(self._bucket.delete_file_version, version_id, key)
            logger.info(f"Deleted '{key}' from B2.")
        except B2Error as e:
            logger.error(f"B2 delete failed for '{key}': {e}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="File storage is currently unavailable",
            )


def get_object_store(request: Request) -> ObjectStore:
    """FastAPI Dependency: the object store created during startup."""
    store = getattr(request.app.state, "object_store", None)
    if store is None:
        logger.error("Upload attempted but no object store is configured.")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="File uploads are disabled on this server",
        )
    return store
