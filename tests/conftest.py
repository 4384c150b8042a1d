import asyncio
import os
import pathlib
import sys
import time
import uuid
from typing import Callable, Dict, Generator, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

# Ensure project root is on sys.path so `import allinone_pdf...` works
PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Use a file-based SQLite DB for stability across connections.
# Set before any test module imports allinone_pdf so the engine binds to it.
TEST_DB_PATH = pathlib.Path(__file__).parent / "test.db"
if TEST_DB_PATH.exists():
    TEST_DB_PATH.unlink()
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{TEST_DB_PATH.absolute()}"
os.environ["JWT_SECRET"] = "test-secret-for-hs256-signing-0123456789"
# Keep storage unconfigured; tests inject MemoryStorage instead
os.environ["SUPABASE_URL"] = ""
os.environ["SUPABASE_SERVICE_KEY"] = ""
os.environ["DOWNLOAD_ALLOWED_HOSTS"] = ""

SIGNED_HOST = "storage.test"

from allinone_pdf.schemas.files import StoredObject  # noqa: E402


class MemoryStorage:
    """In-memory stand-in for SupabaseStorage.

    Signed URLs carry a counter token; `revoke` marks one as expired so the
    mock HTTP transport rejects it the way the real storage would.
    """

    def __init__(self):
        self.bucket = "test-bucket"
        self.configured = True
        self.objects: Dict[str, bytes] = {}
        self.content_types: Dict[str, Optional[str]] = {}
        self.deleted: List[str] = []
        self.revoked: set = set()
        self.fail_on: Optional[Callable[[Optional[str]], bool]] = None
        self.fail_delete = False
        self._tokens = 0

    async def upload(self, data, *, folder, resource_class="raw", filename=None, content_type=None):
        if self.fail_on is not None and self.fail_on(filename):
            raise RuntimeError("storage unavailable")
        ext = pathlib.PurePath(filename or "").suffix.lower()
        path = f"{folder}/{resource_class}/{uuid.uuid4().hex}{ext}"
        self.objects[path] = bytes(data)
        self.content_types[path] = content_type
        url = await self.retrieval_url(path, resource_class)
        return StoredObject(id=path, retrieval_url=url, resource_class=resource_class, size=len(data))

    async def retrieval_url(self, public_id, resource_class=None):
        return await self.signed_url(public_id)

    async def signed_url(self, public_id, *, expires_in=None):
        if public_id not in self.objects:
            raise RuntimeError("Object not found")
        self._tokens += 1
        return f"https://{SIGNED_HOST}/signed/{public_id}?token={self._tokens}"

    async def download(self, public_id):
        if public_id not in self.objects:
            raise RuntimeError("Object not found")
        return self.objects[public_id]

    async def delete(self, public_id):
        await self.delete_many([public_id])

    async def delete_many(self, public_ids):
        if self.fail_delete:
            return False
        for pid in public_ids:
            self.deleted.append(pid)
            self.objects.pop(pid, None)
        return True

    def revoke(self, url: str) -> None:
        self.revoked.add(url)


def _storage_handler(storage: MemoryStorage) -> Callable[[httpx.Request], httpx.Response]:
    def _handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if request.url.host != SIGNED_HOST or "/signed/" not in url:
            return httpx.Response(404)
        if url in storage.revoked:
            return httpx.Response(400, json={"error": "InvalidJWT", "message": "exp claim timestamp check failed"})
        path = request.url.path.split("/signed/", 1)[1]
        if path not in storage.objects:
            return httpx.Response(404, json={"error": "not_found"})
        return httpx.Response(
            200,
            content=storage.objects[path],
            headers={"content-type": storage.content_types.get(path) or "application/octet-stream"},
        )

    return _handler


@pytest.fixture()
def storage(monkeypatch) -> MemoryStorage:
    import allinone_pdf.services.http as http_service

    mock_storage = MemoryStorage()
    transport = httpx.MockTransport(_storage_handler(mock_storage))
    monkeypatch.setattr(http_service, "create_http_client", lambda: httpx.AsyncClient(transport=transport))
    return mock_storage


@pytest.fixture()
def db() -> None:
    from sqlalchemy import delete

    from allinone_pdf.db.models import ScheduledDeletion
    from allinone_pdf.db.session import SessionFactory, create_tables

    async def _reset():
        await create_tables()
        async with SessionFactory() as session:
            await session.execute(delete(ScheduledDeletion))
            await session.commit()

    asyncio.run(_reset())


@pytest.fixture()
def scheduler(storage, db):
    from allinone_pdf.services.cleanup import CleanupScheduler

    return CleanupScheduler(storage_factory=lambda: storage)


@pytest.fixture(scope="session")
def client() -> Generator[TestClient, None, None]:
    from allinone_pdf.server.main import app

    with TestClient(app) as c:
        # Give startup hooks a moment if needed (table creation)
        time.sleep(0.05)
        yield c


@pytest.fixture()
def api(client, storage, scheduler) -> Generator[TestClient, None, None]:
    """The session client wired to this test's storage and cleanup scheduler."""
    from allinone_pdf.services.cleanup import get_cleanup_scheduler
    from allinone_pdf.services.storage import get_storage

    app = client.app
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_cleanup_scheduler] = lambda: scheduler
    try:
        yield client
    finally:
        app.dependency_overrides.clear()
        # Timers live on the client's event loop; stop them before it is reused
        client.portal.call(scheduler.shutdown)


@pytest.fixture()
def auth_header() -> Dict[str, str]:
    import jwt

    token = jwt.encode({"id": "user-1", "email": "user@example.com", "role": "user"}, "test-secret-for-hs256-signing-0123456789", algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}
