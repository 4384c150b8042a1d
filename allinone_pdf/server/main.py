from __future__ import annotations

import logging
import logging.config
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..db.session import create_tables
from ..services.cleanup import get_cleanup_scheduler
from ..services.conversion import ConversionFailed
from ..services.storage import StorageNotConfigured, get_storage
from .api import router as api_router
from .middleware import add_auth, add_cors
from .settings import settings


# Configure application logging to stdout so it appears in container logs
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {"format": "%(asctime)s %(levelname)s [%(name)s] %(message)s"}
    },
    "handlers": {
        "default": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "stream": "ext://sys.stdout",
        }
    },
    "loggers": {
        "uvicorn": {"handlers": ["default"], "level": "INFO", "propagate": False},
        "uvicorn.error": {"handlers": ["default"], "level": "INFO", "propagate": False},
        "uvicorn.access": {"handlers": ["default"], "level": "INFO", "propagate": False},
        "allinone_pdf": {"handlers": ["default"], "level": settings.LOG_LEVEL, "propagate": False},
        "": {"handlers": ["default"], "level": "WARNING"},  # root logger
    },
}

logging.config.dictConfig(LOGGING)

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str, headers=None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message}, headers=headers)


def add_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        detail = errors[0].get("msg") if errors else "Invalid request"
        return _error(400, f"Invalid request: {detail}")

    @app.exception_handler(StorageNotConfigured)
    async def storage_not_configured(request: Request, exc: StorageNotConfigured):
        logger.error("Storage unavailable: %s", exc)
        return _error(503, "Storage is not configured")

    @app.exception_handler(ConversionFailed)
    async def conversion_failed(request: Request, exc: ConversionFailed):
        return _error(500, "Conversion failed")

    @app.exception_handler(Exception)
    async def unhandled(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error(500, "Internal server error")


def create_app() -> FastAPI:
    app = FastAPI(title="All-in-one PDF Backend")
    app.include_router(api_router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    add_error_handlers(app)
    add_auth(app)
    add_cors(app)

    @app.on_event("startup")
    async def on_startup():
        await create_tables()
        if not get_storage().configured:
            logger.warning("Storage is not configured; uploads and signed URLs will fail until SUPABASE_* is set")
        if not settings.JWT_SECRET:
            logger.warning("JWT_SECRET is not set; every request is treated as a guest")
        await get_cleanup_scheduler().restore()

    @app.on_event("shutdown")
    async def on_shutdown():
        await get_cleanup_scheduler().shutdown()

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("allinone_pdf.server.main:app", host="0.0.0.0", port=settings.PORT, reload=True)
