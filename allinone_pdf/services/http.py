from __future__ import annotations

import httpx

from ..server.settings import settings


def create_http_client() -> httpx.AsyncClient:
    # Signed storage URLs may redirect to a CDN edge
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.HTTP_TIMEOUT_SECS, connect=10.0),
        follow_redirects=True,
    )
