from __future__ import annotations

import os
from typing import List
from urllib.parse import urlparse

from dotenv import load_dotenv

# Load default .env and optional ENV_FILE override for local runs
load_dotenv()
env_file_override = os.getenv("ENV_FILE")
if env_file_override:
    load_dotenv(env_file_override, override=False)


def _csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    def __init__(self) -> None:
        # Core
        self.DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./allinone_pdf.db")
        self.PORT: int = int(os.getenv("PORT", "5000"))
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

        # Storage (Supabase)
        self.SUPABASE_URL: str | None = os.getenv("SUPABASE_URL")
        self.SUPABASE_SERVICE_KEY: str | None = os.getenv("SUPABASE_SERVICE_KEY")
        self.SUPABASE_STORAGE_BUCKET: str = os.getenv("SUPABASE_STORAGE_BUCKET", "allinone-pdf")
        self.SUPABASE_SIGNED_URL_EXPIRES_SECS: int = int(os.getenv("SUPABASE_SIGNED_URL_EXPIRES_SECS", "3600"))
        # Only enable when the bucket serves objects publicly
        self.SUPABASE_PUBLIC_IMAGES: bool = _flag(os.getenv("SUPABASE_PUBLIC_IMAGES", "false"))
        self.STORAGE_ROOT_FOLDER: str = os.getenv("STORAGE_ROOT_FOLDER", "allinone-pdf").strip("/")

        # Guest outputs are removed from storage after this many seconds
        self.GUEST_RETENTION_SECONDS: float = float(os.getenv("GUEST_RETENTION_SECONDS", "300"))

        # Uploads
        self.MAX_FILE_SIZE: int = int(os.getenv("MAX_FILE_SIZE", "104857600"))
        self.MAX_FILES: int = int(os.getenv("MAX_FILES", "20"))

        # Download proxy
        self.HTTP_TIMEOUT_SECS: float = float(os.getenv("HTTP_TIMEOUT_SECS", "30"))
        self.DOWNLOAD_ALLOWED_HOSTS: List[str] = _csv(os.getenv("DOWNLOAD_ALLOWED_HOSTS", ""))

        # CORS
        self.FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:3000")
        cors_origins_csv = os.getenv("CORS_ORIGINS", "")
        self.CORS_ORIGINS: List[str] = list(dict.fromkeys([self.FRONTEND_URL, "http://localhost:3000", *_csv(cors_origins_csv)]))

        # Auth (bearer JWT); without a secret every request is treated as a guest
        self.JWT_SECRET: str | None = os.getenv("JWT_SECRET")
        self.JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_AUDIENCE: str | None = os.getenv("JWT_AUDIENCE") or None

    @property
    def storage_host(self) -> str | None:
        if not self.SUPABASE_URL:
            return None
        return urlparse(self.SUPABASE_URL).hostname

    def download_hosts(self) -> List[str]:
        # Empty means any host is accepted (local development)
        hosts = list(self.DOWNLOAD_ALLOWED_HOSTS)
        if self.storage_host and self.storage_host not in hosts:
            hosts.append(self.storage_host)
        return hosts


settings = Settings()
