from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional
from urllib.parse import quote, urlparse

import httpx

from . import http as http_service
from .storage import StorageNotConfigured, SupabaseStorage


logger = logging.getLogger(__name__)


class DownloadError(RuntimeError):
    def __init__(self, message: str, status_code: int = 502) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class StoredFileStream:
    """An open upstream response; `aclose` must run once the body is consumed."""

    response: httpx.Response
    client: httpx.AsyncClient

    @property
    def content_type(self) -> Optional[str]:
        return self.response.headers.get("content-type")

    def iter_bytes(self) -> AsyncIterator[bytes]:
        return self.response.aiter_bytes()

    async def aclose(self) -> None:
        await self.response.aclose()
        await self.client.aclose()


def _check_host(url: str, allowed_hosts: List[str]) -> None:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise DownloadError("Invalid download URL", status_code=400)
    if allowed_hosts and parsed.hostname not in allowed_hosts:
        raise DownloadError("Download URL host is not allowed", status_code=400)


async def open_download(
    storage: SupabaseStorage,
    *,
    public_id: Optional[str] = None,
    url: Optional[str] = None,
    allowed_hosts: Optional[List[str]] = None,
) -> StoredFileStream:
    """Open a single streaming fetch of a stored file.

    An id always gets a freshly signed URL, so links that expired since the
    conversion still work. A raw URL is fetched as-is.
    """
    if public_id:
        try:
            target = await storage.signed_url(public_id)
        except StorageNotConfigured:
            raise
        except Exception as ex:
            logger.warning("Could not sign %s: %s", public_id, ex)
            raise DownloadError("File not found or expired", status_code=404) from ex
    elif url:
        _check_host(url, allowed_hosts or [])
        target = url
    else:
        raise DownloadError("publicId or url is required", status_code=400)

    client = http_service.create_http_client()
    try:
        response = await client.send(client.build_request("GET", target), stream=True)
    except httpx.HTTPError as ex:
        await client.aclose()
        logger.warning("Download fetch failed for %s: %s", public_id or url, ex)
        raise DownloadError("Failed to download file") from ex

    if not response.is_success:
        status = response.status_code
        await response.aclose()
        await client.aclose()
        logger.warning("Download fetch for %s returned %d", public_id or url, status)
        if status == 404:
            raise DownloadError("File not found or expired", status_code=404)
        raise DownloadError("Failed to download file")

    return StoredFileStream(response=response, client=client)


def attachment_headers(filename: str) -> dict:
    encoded = quote(filename)
    if encoded != filename:
        disposition = f"attachment; filename*=utf-8''{encoded}"
    else:
        disposition = f'attachment; filename="{filename}"'
    return {"Content-Disposition": disposition}


def guess_media_type(filename: str, upstream: Optional[str] = None) -> str:
    # Storage often reports octet-stream for everything; the filename is a better hint then
    if upstream and not upstream.startswith("application/octet-stream"):
        return upstream
    return mimetypes.guess_type(filename)[0] or upstream or "application/octet-stream"


def download_filename(filename: Optional[str], public_id: Optional[str], url: Optional[str]) -> str:
    if filename:
        return filename.replace('"', "").replace("\r", "").replace("\n", "")
    source = public_id or urlparse(url or "").path
    return source.rsplit("/", 1)[-1] or "download"
