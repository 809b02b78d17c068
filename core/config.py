"""Environment-driven settings and collaborator factories.

`.env` in the working directory is loaded once on import; real environment
variables win over it.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import List, Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from core.analytics import DEFAULT_BASE_URL, AnalyticsClient
from core.session import CredentialsProvider, UserAccount
from core.store import (
    MemoryObjectStorage,
    MemoryRecordStore,
    ObjectStorage,
    RecordStore,
    SupabaseObjectStorage,
    SupabaseRecordStore,
)

load_dotenv()

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class Settings(BaseModel):
    app_env: str = "development"
    log_level: str = "INFO"
    allowed_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

    analytics_base_url: str = DEFAULT_BASE_URL
    analytics_api_key: Optional[str] = None
    analytics_api_version: str = "v1"

    storage_backend: Literal["memory", "supabase"] = "memory"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    upload_bucket: str = "uploads"
    max_upload_mb: float = Field(default=10.0, gt=0)
    processing_timeout_seconds: Optional[float] = Field(default=None, gt=0)
    pipeline_idle_seconds: float = Field(default=1800.0, gt=0)
    max_pipelines_per_user: int = Field(default=5, ge=1)

    demo_user_email: str = "admin@example.com"
    demo_user_password: str = "password123"

    @property
    def origins(self) -> List[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    @classmethod
    def load(cls) -> "Settings":
        timeout = os.getenv("PROCESSING_TIMEOUT_SECONDS")
        return cls(
            app_env=os.getenv("APP_ENV", "development"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            allowed_origins=os.getenv("ALLOWED_ORIGINS", cls.model_fields["allowed_origins"].default),
            analytics_base_url=os.getenv("ANALYTICS_BASE_URL", DEFAULT_BASE_URL),
            analytics_api_key=os.getenv("ANALYTICS_API_KEY") or os.getenv("DEEPSEEK_API_KEY"),
            analytics_api_version=os.getenv("ANALYTICS_API_VERSION", "v1"),
            storage_backend=os.getenv("STORAGE_BACKEND", "memory").lower(),
            supabase_url=os.getenv("SUPABASE_URL"),
            supabase_key=os.getenv("SUPABASE_KEY"),
            upload_bucket=os.getenv("UPLOAD_BUCKET", "uploads"),
            max_upload_mb=float(os.getenv("MAX_UPLOAD_MB", "10")),
            processing_timeout_seconds=float(timeout) if timeout else None,
            pipeline_idle_seconds=float(os.getenv("PIPELINE_IDLE_SECONDS", "1800")),
            max_pipelines_per_user=int(os.getenv("MAX_PIPELINES_PER_USER", "5")),
            demo_user_email=os.getenv("DEMO_USER_EMAIL", "admin@example.com"),
            demo_user_password=os.getenv("DEMO_USER_PASSWORD", "password123"),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.load()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def _require_supabase(settings: Settings) -> None:
    if not settings.supabase_url or not settings.supabase_key:
        raise ValueError("STORAGE_BACKEND=supabase needs SUPABASE_URL and SUPABASE_KEY")


def build_record_store(settings: Settings) -> RecordStore:
    if settings.storage_backend == "supabase":
        _require_supabase(settings)
        return SupabaseRecordStore(settings.supabase_url, settings.supabase_key)
    return MemoryRecordStore()


def build_object_storage(settings: Settings) -> ObjectStorage:
    if settings.storage_backend == "supabase":
        _require_supabase(settings)
        return SupabaseObjectStorage(settings.supabase_url, settings.supabase_key)
    return MemoryObjectStorage()


def build_analytics_client(settings: Settings) -> AnalyticsClient:
    return AnalyticsClient(
        settings.analytics_api_key,
        base_url=settings.analytics_base_url,
        api_version=settings.analytics_api_version,
    )


def build_credentials_provider(settings: Settings) -> CredentialsProvider:
    return CredentialsProvider(
        [UserAccount.with_password("1", "Admin User", settings.demo_user_email, settings.demo_user_password)]
    )
