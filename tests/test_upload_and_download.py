from __future__ import annotations

import io
import time

from PIL import Image


def _png(color=(255, 0, 0)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (4, 4), color).save(buf, format="PNG")
    return buf.getvalue()


def test_guest_single_upload(api, storage, scheduler):
    r = api.post("/api/upload/single", files={"file": ("note.txt", b"hello", "text/plain")})
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["message"] == "File uploaded successfully"
    assert body["isAuthenticated"] is False
    record = body["file"]
    assert record["size"] == 5
    assert record["originalName"] == "note.txt"
    assert record["mimetype"] == "text/plain"
    assert "/temp/uploads/raw/" in record["publicId"]
    assert storage.objects[record["publicId"]] == b"hello"
    assert scheduler.pending == 1


def test_authenticated_multiple_upload_is_retained(api, storage, scheduler, auth_header, monkeypatch):
    from allinone_pdf.server.settings import settings

    monkeypatch.setattr(settings, "GUEST_RETENTION_SECONDS", 0.2)
    files = [("files", (f"img{i}.png", _png(), "image/png")) for i in range(3)]
    r = api.post("/api/upload/multiple", files=files, headers=auth_header)
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["isAuthenticated"] is True
    ids = [f["publicId"] for f in body["files"]]
    assert len(ids) == 3
    assert all("/uploads/image/" in pid and "/temp/" not in pid for pid in ids)
    assert scheduler.pending == 0
    time.sleep(0.4)
    assert all(pid in storage.objects for pid in ids)


def test_upload_rejects_unknown_type(api, storage):
    r = api.post("/api/upload/single", files={"file": ("run.exe", b"MZ", "application/x-msdownload")})
    assert r.status_code == 400
    assert r.json() == {"message": "Invalid file type: run.exe"}
    assert storage.objects == {}


def test_upload_without_file(api):
    r = api.post("/api/upload/single")
    assert r.status_code == 400
    assert r.json() == {"message": "No file provided"}


def test_delete_is_idempotent(api, storage):
    r = api.post("/api/upload/single", files={"file": ("note.txt", b"hello", "text/plain")})
    pid = r.json()["file"]["publicId"]

    r = api.delete(f"/api/upload/{pid}")
    assert r.status_code == 200
    assert r.json() == {"message": "File deleted successfully"}
    assert pid not in storage.objects

    r = api.delete(f"/api/upload/{pid}")
    assert r.status_code == 200


def test_download_by_public_id_survives_expired_url(api, storage):
    r = api.post("/api/upload/single", files={"file": ("report.pdf", b"%PDF-1.4 fake", "application/pdf")})
    record = r.json()["file"]
    storage.revoke(record["url"])

    # The stale URL no longer works upstream
    r = api.get("/api/convert/download", params={"url": record["url"]})
    assert r.status_code == 502
    assert r.json() == {"message": "Failed to download file"}

    r = api.get("/api/convert/download", params={"publicId": record["publicId"], "filename": "report.pdf"})
    assert r.status_code == 200
    assert r.content == b"%PDF-1.4 fake"
    assert r.headers["content-disposition"] == 'attachment; filename="report.pdf"'
    assert r.headers["content-type"].startswith("application/pdf")


def test_download_by_url(api, storage):
    r = api.post("/api/upload/single", files={"file": ("note.txt", b"hello", "text/plain")})
    url = r.json()["file"]["url"]
    r = api.get("/api/convert/download", params={"url": url})
    assert r.status_code == 200
    assert r.content == b"hello"
    # Filename falls back to the last path segment of the URL
    assert r.headers["content-disposition"].startswith('attachment; filename="')
    assert r.headers["content-disposition"].endswith('.txt"')


def test_download_non_ascii_filename(api, storage):
    r = api.post("/api/upload/single", files={"file": ("note.txt", b"hello", "text/plain")})
    pid = r.json()["file"]["publicId"]
    r = api.get("/api/convert/download", params={"publicId": pid, "filename": "résumé.txt"})
    assert r.status_code == 200
    assert r.headers["content-disposition"] == "attachment; filename*=utf-8''r%C3%A9sum%C3%A9.txt"


def test_download_requires_id_or_url(api):
    r = api.get("/api/convert/download")
    assert r.status_code == 400
    assert r.json() == {"message": "publicId or url is required"}


def test_download_unknown_id_is_404(api):
    r = api.get("/api/convert/download", params={"publicId": "allinone-pdf/temp/raw/gone.pdf"})
    assert r.status_code == 404
    assert r.json() == {"message": "File not found or expired"}


def test_download_rejects_foreign_host(api, monkeypatch):
    from allinone_pdf.server.settings import settings

    monkeypatch.setattr(settings, "DOWNLOAD_ALLOWED_HOSTS", ["storage.test"])
    r = api.get("/api/convert/download", params={"url": "https://evil.example.com/file.pdf"})
    assert r.status_code == 400
    assert r.json() == {"message": "Download URL host is not allowed"}
