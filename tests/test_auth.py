from __future__ import annotations

import time

import jwt


def _upload(api, headers=None):
    return api.post("/api/upload/single", files={"file": ("note.txt", b"hello", "text/plain")}, headers=headers or {})


def test_valid_token_is_authenticated(api, auth_header):
    r = _upload(api, auth_header)
    assert r.status_code == 201
    assert r.json()["isAuthenticated"] is True


def test_sub_claim_is_accepted(api):
    token = jwt.encode({"sub": "user-2"}, "test-secret-for-hs256-signing-0123456789", algorithm="HS256")
    r = _upload(api, {"Authorization": f"Bearer {token}"})
    assert r.json()["isAuthenticated"] is True


def test_expired_token_falls_back_to_guest(api):
    token = jwt.encode({"id": "user-1", "exp": int(time.time()) - 60}, "test-secret-for-hs256-signing-0123456789", algorithm="HS256")
    r = _upload(api, {"Authorization": f"Bearer {token}"})
    assert r.status_code == 201
    assert r.json()["isAuthenticated"] is False


def test_wrong_secret_falls_back_to_guest(api):
    token = jwt.encode({"id": "user-1"}, "another-secret-that-is-long-enough", algorithm="HS256")
    r = _upload(api, {"Authorization": f"Bearer {token}"})
    assert r.json()["isAuthenticated"] is False


def test_token_without_user_id_is_guest(api):
    token = jwt.encode({"email": "x@example.com"}, "test-secret-for-hs256-signing-0123456789", algorithm="HS256")
    r = _upload(api, {"Authorization": f"Bearer {token}"})
    assert r.json()["isAuthenticated"] is False
