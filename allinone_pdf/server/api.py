from __future__ import annotations

import logging
import mimetypes
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile
from pydantic import ValidationError
from starlette.background import BackgroundTask
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile as FormFile
from starlette.responses import StreamingResponse

from .. import tools  # noqa: F401  populates the tool registry
from ..schemas.files import ProcessedFile, UploadRecord, UploadResponse
from ..services.cleanup import CleanupScheduler, get_cleanup_scheduler
from ..services.conversion import ConversionFailed, handle_conversion, persist_all, storage_folder
from ..services.download import DownloadError, attachment_headers, download_filename, guess_media_type, open_download
from ..services.storage import StorageNotConfigured, SupabaseStorage, get_storage
from ..tools.base import InputFile, ToolInputError
from ..tools.registry import get_tool_class, list_tool_specs
from .middleware import get_current_user
from .settings import settings


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

ALLOWED_UPLOAD_TYPES = {
    "application/pdf",
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "text/plain",
}


def _mime(upload: FormFile) -> Optional[str]:
    if not upload.content_type:
        return None
    return upload.content_type.split(";", 1)[0].strip().lower() or None


def _split_ids(raw: str) -> List[str]:
    return [pid.strip() for pid in str(raw).split(",") if pid.strip()]


def _validation_message(ex: ValidationError) -> str:
    err = ex.errors()[0]
    loc = ".".join(str(part) for part in err.get("loc", ()))
    return f"{loc}: {err.get('msg')}" if loc else str(err.get("msg"))


async def _read_upload(upload: FormFile) -> bytes:
    if upload.size is not None and upload.size > settings.MAX_FILE_SIZE:
        raise HTTPException(status_code=413, detail="File too large")
    data = await upload.read()
    if len(data) > settings.MAX_FILE_SIZE:
        raise HTTPException(status_code=413, detail="File too large")
    return data


async def _load_stored_inputs(storage: SupabaseStorage, public_ids: List[str]) -> List[InputFile]:
    inputs: List[InputFile] = []
    for pid in public_ids:
        try:
            data = await storage.download(pid)
        except StorageNotConfigured:
            raise
        except Exception as ex:
            logger.warning("Could not load input %s: %s", pid, ex)
            raise HTTPException(status_code=404, detail=f"Input file not found or expired: {pid}")
        name = pid.rsplit("/", 1)[-1]
        inputs.append(InputFile(data=data, filename=name, content_type=mimetypes.guess_type(name)[0]))
    return inputs


# ---------------------------------------------------------------------------
# Conversion tools
# ---------------------------------------------------------------------------


@router.get("/convert/tools")
async def get_tools():
    return {"tools": list_tool_specs()}


@router.get("/convert/download")
async def download(
    public_id: Optional[str] = Query(default=None, alias="publicId"),
    url: Optional[str] = None,
    filename: Optional[str] = None,
    storage: SupabaseStorage = Depends(get_storage),
):
    try:
        stream = await open_download(storage, public_id=public_id, url=url, allowed_hosts=settings.download_hosts())
    except DownloadError as ex:
        raise HTTPException(status_code=ex.status_code, detail=str(ex))

    name = download_filename(filename, public_id, url)
    headers = attachment_headers(name)
    length = stream.response.headers.get("content-length")
    if length:
        headers["Content-Length"] = length
    return StreamingResponse(
        stream.iter_bytes(),
        media_type=guess_media_type(name, stream.content_type),
        headers=headers,
        background=BackgroundTask(stream.aclose),
    )


@router.post("/convert/{slug}")
async def convert(
    slug: str,
    request: Request,
    user: Optional[Dict[str, Any]] = Depends(get_current_user),
    storage: SupabaseStorage = Depends(get_storage),
    scheduler: CleanupScheduler = Depends(get_cleanup_scheduler),
):
    tool_cls = get_tool_class(slug)
    if tool_cls is None:
        raise HTTPException(status_code=404, detail=f"Unknown tool: {slug}")

    params: Dict[str, Any] = {k: v for k, v in request.query_params.items() if k != "publicIds"}
    public_ids: List[str] = []
    for raw in request.query_params.getlist("publicIds"):
        public_ids.extend(_split_ids(raw))

    inputs: List[InputFile] = []
    async with request.form(max_files=settings.MAX_FILES, max_fields=100) as form:
        for key, value in form.multi_items():
            if isinstance(value, FormFile):
                if key in ("file", "files"):
                    inputs.append(InputFile(data=await _read_upload(value), filename=value.filename or "upload", content_type=_mime(value)))
            elif key == "publicIds":
                public_ids.extend(_split_ids(value))
            else:
                params[key] = value

    try:
        tool = tool_cls(slug, params)
    except ValidationError as ex:
        raise HTTPException(status_code=400, detail=_validation_message(ex))

    if public_ids:
        inputs.extend(await _load_stored_inputs(storage, public_ids))

    try:
        tool.check_inputs(inputs)
        output = await run_in_threadpool(tool.run, inputs)
    except ToolInputError as ex:
        raise HTTPException(status_code=400, detail=str(ex))
    except Exception:
        logger.exception("%s failed", slug)
        raise HTTPException(status_code=500, detail=f"{slug} failed")
    if isinstance(output, list) and not output:
        raise HTTPException(status_code=400, detail="Conversion produced no output")

    return await handle_conversion(
        output,
        authenticated=user is not None,
        input_public_ids=public_ids,
        storage=storage,
        scheduler=scheduler,
    )


# ---------------------------------------------------------------------------
# Direct uploads
# ---------------------------------------------------------------------------


async def _store_uploads(
    uploads: List[UploadFile],
    *,
    authenticated: bool,
    storage: SupabaseStorage,
    scheduler: CleanupScheduler,
) -> List[UploadRecord]:
    for upload in uploads:
        if _mime(upload) not in ALLOWED_UPLOAD_TYPES:
            raise HTTPException(status_code=400, detail=f"Invalid file type: {upload.filename}")
    items = [
        ProcessedFile(buffer=await _read_upload(upload), filename=upload.filename or "upload", mime_hint=_mime(upload))
        for upload in uploads
    ]
    try:
        stored = await persist_all(storage, items, folder=storage_folder(authenticated, "uploads"))
    except ConversionFailed:
        raise HTTPException(status_code=500, detail="Upload failed")

    if not authenticated:
        await scheduler.schedule([obj.id for obj in stored])

    return [
        UploadRecord(public_id=obj.id, original_name=item.filename, url=obj.retrieval_url, size=len(item.buffer), mimetype=item.mime_hint)
        for item, obj in zip(items, stored)
    ]


@router.post("/upload/single", status_code=201)
async def upload_single(
    file: Optional[UploadFile] = File(default=None),
    user: Optional[Dict[str, Any]] = Depends(get_current_user),
    storage: SupabaseStorage = Depends(get_storage),
    scheduler: CleanupScheduler = Depends(get_cleanup_scheduler),
):
    if file is None:
        raise HTTPException(status_code=400, detail="No file provided")
    authenticated = user is not None
    records = await _store_uploads([file], authenticated=authenticated, storage=storage, scheduler=scheduler)
    body = UploadResponse(message="File uploaded successfully", file=records[0], is_authenticated=authenticated)
    return body.model_dump(by_alias=True, exclude_none=True)


@router.post("/upload/multiple", status_code=201)
async def upload_multiple(
    files: Optional[List[UploadFile]] = File(default=None),
    user: Optional[Dict[str, Any]] = Depends(get_current_user),
    storage: SupabaseStorage = Depends(get_storage),
    scheduler: CleanupScheduler = Depends(get_cleanup_scheduler),
):
    if not files:
        raise HTTPException(status_code=400, detail="No files provided")
    if len(files) > settings.MAX_FILES:
        raise HTTPException(status_code=400, detail=f"At most {settings.MAX_FILES} files per request")
    authenticated = user is not None
    records = await _store_uploads(files, authenticated=authenticated, storage=storage, scheduler=scheduler)
    body = UploadResponse(message="Files uploaded successfully", files=records, is_authenticated=authenticated)
    return body.model_dump(by_alias=True, exclude_none=True)


@router.delete("/upload/{public_id:path}")
async def delete_upload(public_id: str, storage: SupabaseStorage = Depends(get_storage)):
    # Storage deletion never raises; unknown ids are a no-op
    await storage.delete(public_id)
    return {"message": "File deleted successfully"}
