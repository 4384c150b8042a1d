from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import jwt
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from .settings import settings


logger = logging.getLogger(__name__)


def add_cors(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )


class _OptionalAuthMiddleware(BaseHTTPMiddleware):
    """Decode an optional bearer JWT and attach the user to request.state.user.

    Missing, malformed, expired or unverifiable tokens leave request.state.user
    as None: every endpoint stays usable by guests.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        user: Optional[Dict[str, Any]] = None
        auth_header = request.headers.get("authorization")
        if auth_header and auth_header.lower().startswith("bearer "):
            token = auth_header.split(" ", 1)[1].strip()
            try:
                user = _extract_user(_verify_jwt(token))
            except jwt.PyJWTError as ex:
                logger.debug("Ignoring invalid bearer token: %s", ex)
                user = None
        request.state.user = user
        return await call_next(request)


def _verify_jwt(token: str) -> Dict[str, Any]:
    if not settings.JWT_SECRET:
        raise jwt.InvalidTokenError("JWT_SECRET not configured")
    options = {"verify_aud": bool(settings.JWT_AUDIENCE)}
    return jwt.decode(
        token,
        settings.JWT_SECRET,
        algorithms=[settings.JWT_ALGORITHM],
        audience=settings.JWT_AUDIENCE,
        options=options,
    )


def _extract_user(decoded: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    user_id = str(decoded.get("id") or decoded.get("sub") or "").strip()
    if not user_id:
        return None
    return {"id": user_id, "email": decoded.get("email"), "role": decoded.get("role"), "claims": decoded}


def add_auth(app: FastAPI) -> None:
    app.add_middleware(_OptionalAuthMiddleware)


def get_current_user(request: Request) -> Optional[Dict[str, Any]]:
    return getattr(request.state, "user", None)
