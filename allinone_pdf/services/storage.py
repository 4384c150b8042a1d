from __future__ import annotations

import asyncio
import inspect
import logging
import mimetypes
import uuid
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any, Iterable, Optional

from supabase import AsyncClient, acreate_client

from ..schemas.files import ResourceClass, StoredObject
from ..server.settings import settings


logger = logging.getLogger(__name__)


class StorageNotConfigured(RuntimeError):
    pass


@dataclass
class StorageConfig:
    url: Optional[str]
    service_key: Optional[str]
    bucket: Optional[str]
    signed_url_expires_secs: int
    public_images: bool


class SupabaseStorage:
    """Object storage for conversion inputs and outputs on Supabase Storage.

    Object ids are bucket paths shaped like ``<folder>/<resource class>/<uuid><ext>``,
    so an id alone is enough to re-sign a URL, download, or delete the object.

    The async Supabase client is created on first use; concurrent first calls
    share a single initialization.
    """

    def __init__(self, *, url: Optional[str] = None, service_key: Optional[str] = None,
                 bucket: Optional[str] = None, signed_url_expires_secs: Optional[int] = None,
                 public_images: Optional[bool] = None) -> None:
        self._cfg = StorageConfig(
            url=url or settings.SUPABASE_URL,
            service_key=service_key or settings.SUPABASE_SERVICE_KEY,
            bucket=bucket or settings.SUPABASE_STORAGE_BUCKET,
            signed_url_expires_secs=(
                settings.SUPABASE_SIGNED_URL_EXPIRES_SECS if signed_url_expires_secs is None else signed_url_expires_secs
            ),
            public_images=settings.SUPABASE_PUBLIC_IMAGES if public_images is None else public_images,
        )
        self._client: Optional[AsyncClient] = None
        self._init_lock = asyncio.Lock()

    @property
    def configured(self) -> bool:
        return bool(self._cfg.url and self._cfg.service_key and self._cfg.bucket)

    @property
    def bucket(self) -> str:
        if not self._cfg.bucket:
            raise StorageNotConfigured("SUPABASE_STORAGE_BUCKET not configured")
        return self._cfg.bucket

    async def _ensure_client(self) -> AsyncClient:
        if self._client is not None:
            return self._client
        async with self._init_lock:
            if self._client is None:
                if not self.configured:
                    raise StorageNotConfigured(
                        "Storage is not configured. Set SUPABASE_URL, SUPABASE_SERVICE_KEY and SUPABASE_STORAGE_BUCKET."
                    )
                self._client = await acreate_client(self._cfg.url, self._cfg.service_key)
                logger.info("Storage client configured for bucket %s", self._cfg.bucket)
        return self._client

    async def _files(self) -> Any:
        client = await self._ensure_client()
        return client.storage.from_(self.bucket)

    async def upload(self, data: bytes, *, folder: str, resource_class: ResourceClass = "raw",
                     filename: Optional[str] = None, content_type: Optional[str] = None) -> StoredObject:
        ext = PurePosixPath(filename).suffix.lower() if filename else ""
        path = f"{folder.strip('/')}/{resource_class}/{uuid.uuid4().hex}{ext}"
        content_type = content_type or (mimetypes.guess_type(filename)[0] if filename else None) or "application/octet-stream"

        files = await self._files()
        # storage3 sends file_options as request headers, so values must be strings
        await files.upload(path, bytes(data), {"content-type": content_type, "upsert": "false"})
        url = await self.retrieval_url(path, resource_class)
        logger.info("Uploaded %s (%d bytes, %s)", path, len(data), resource_class)
        return StoredObject(id=path, retrieval_url=url, resource_class=resource_class, size=len(data))

    async def retrieval_url(self, public_id: str, resource_class: Optional[ResourceClass] = None) -> str:
        resource_class = resource_class or resource_class_of(public_id)
        if resource_class == "image" and self._cfg.public_images:
            return await self.public_url(public_id)
        return await self.signed_url(public_id)

    async def signed_url(self, public_id: str, *, expires_in: Optional[int] = None) -> str:
        files = await self._files()
        ttl = int(expires_in or self._cfg.signed_url_expires_secs)
        result = await files.create_signed_url(public_id, ttl)
        # result may be dict like { 'signedURL': 'https://...' } or {'signedUrl': ...} depending on version
        url = None
        if isinstance(result, dict):
            for key in ("signedURL", "signedUrl", "signed_url", "url"):
                val = result.get(key)
                if isinstance(val, str) and val:
                    url = val
                    break
        elif isinstance(result, str):
            url = result
        if not url:
            raise RuntimeError(f"Failed to obtain a signed URL for {public_id}")
        return url

    async def public_url(self, public_id: str) -> str:
        files = await self._files()
        result = files.get_public_url(public_id)
        if inspect.isawaitable(result):
            result = await result
        if not isinstance(result, str) or not result:
            raise RuntimeError(f"Failed to obtain a public URL for {public_id}")
        return result

    async def download(self, public_id: str) -> bytes:
        files = await self._files()
        return bytes(await files.download(public_id))

    async def delete(self, public_id: str) -> None:
        await self.delete_many([public_id])

    async def delete_many(self, public_ids: Iterable[str]) -> bool:
        """Remove objects; failures are logged, never raised. Missing ids are ignored.

        Returns False when the storage call failed, so callers can retry later.
        """
        ids = [pid for pid in dict.fromkeys(public_ids) if pid]
        if not ids:
            return True
        try:
            files = await self._files()
            await files.remove(ids)
        except Exception:
            logger.warning("Failed to delete %d object(s) from storage: %s", len(ids), ids, exc_info=True)
            return False
        logger.info("Deleted %d object(s) from storage", len(ids))
        return True


def resource_class_of(public_id: str) -> ResourceClass:
    """Read the resource class back out of an id; ids from elsewhere default to raw."""
    parts = PurePosixPath(public_id).parts
    if len(parts) >= 2 and parts[-2] == "image":
        return "image"
    return "raw"


_storage: Optional[SupabaseStorage] = None


def get_storage() -> SupabaseStorage:
    global _storage
    if _storage is None:
        _storage = SupabaseStorage()
    return _storage
