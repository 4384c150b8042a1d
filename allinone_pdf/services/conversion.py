from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from ..schemas.files import ConversionResponse, FileRecord, ProcessedFile, StoredObject
from ..server.settings import settings
from .cleanup import CleanupScheduler, get_cleanup_scheduler
from .storage import StorageNotConfigured, SupabaseStorage, get_storage


logger = logging.getLogger(__name__)


class ConversionFailed(RuntimeError):
    pass


def guest_folder() -> str:
    return f"{settings.STORAGE_ROOT_FOLDER}/temp"


def storage_folder(authenticated: bool, kind: Optional[str] = None) -> str:
    """Folder hint for storage lifecycle policies.

    Everything a guest stores lives under `guest_folder()`; authenticated
    objects never do.
    """
    if authenticated:
        return f"{settings.STORAGE_ROOT_FOLDER}/{kind or 'outputs'}"
    return f"{guest_folder()}/{kind}" if kind else guest_folder()


def is_guest_owned(public_id: str) -> bool:
    return public_id.startswith(guest_folder() + "/")


async def persist_all(
    storage: SupabaseStorage,
    items: Sequence[ProcessedFile],
    *,
    folder: str,
) -> List[StoredObject]:
    """Upload every item concurrently; all succeed or none remain stored.

    If any upload fails, the siblings that did succeed are removed before
    `ConversionFailed` is raised. `StorageNotConfigured` propagates unchanged.
    """
    results = await asyncio.gather(
        *(
            storage.upload(
                item.buffer,
                folder=folder,
                resource_class=item.resource_class,
                filename=item.filename,
                content_type=item.mime_hint,
            )
            for item in items
        ),
        return_exceptions=True,
    )
    failures = [r for r in results if isinstance(r, BaseException)]
    if failures:
        stored = [r.id for r in results if isinstance(r, StoredObject)]
        logger.error("%d of %d upload(s) failed", len(failures), len(items), exc_info=failures[0])
        await storage.delete_many(stored)
        # Misconfiguration is not a conversion failure; let it surface as 503
        unconfigured = [f for f in failures if isinstance(f, StorageNotConfigured)]
        if unconfigured:
            raise unconfigured[0]
        raise ConversionFailed("Conversion failed") from failures[0]
    return list(results)


async def handle_conversion(
    processed: Union[ProcessedFile, Sequence[ProcessedFile]],
    *,
    authenticated: bool,
    input_public_ids: Sequence[str] = (),
    storage: Optional[SupabaseStorage] = None,
    scheduler: Optional[CleanupScheduler] = None,
) -> Dict[str, Any]:
    """Persist transformation output and build the client response.

    A single `ProcessedFile` answers with ``{"message", "file"}``; a sequence
    answers with ``{"message", "files"}`` in input order. For guests, the
    outputs and any guest-owned `input_public_ids` are scheduled for deletion after
    ``GUEST_RETENTION_SECONDS``.
    """
    storage = storage or get_storage()
    scheduler = scheduler or get_cleanup_scheduler()

    single = isinstance(processed, ProcessedFile)
    items: List[ProcessedFile] = [processed] if single else list(processed)
    if not items:
        raise ValueError("handle_conversion requires at least one processed file")

    stored = await persist_all(storage, items, folder=storage_folder(authenticated))

    records = [
        FileRecord(public_id=obj.id, original_name=item.filename, url=obj.retrieval_url, size=len(item.buffer))
        for item, obj in zip(items, stored)
    ]

    if not authenticated:
        # Inputs are only reclaimed when a guest put them there
        owned_inputs = [pid for pid in input_public_ids if is_guest_owned(pid)]
        await scheduler.schedule([obj.id for obj in stored] + owned_inputs)

    if single:
        response = ConversionResponse(message="Conversion successful", file=records[0])
    else:
        response = ConversionResponse(message="Conversion successful", files=records)
    return response.model_dump(by_alias=True, exclude_none=True)
