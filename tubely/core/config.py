from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Secrets(BaseSettings):
    """Secrets configuration, loaded from the environment or a secrets management service."""

    model_config = SettingsConfigDict(
        env_prefix="TUBELY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    jwt_secret: str = Field(default="change-me", description="Signing secret for bearer token validation.")
    aws_access_key_id: Optional[str] = Field(default=None, description="Static S3 access key (falls back to the boto3 chain).")
    aws_secret_access_key: Optional[str] = Field(default=None, description="Static S3 secret key.")


class Settings(BaseSettings):
    """Centralised runtime configuration for the Tubely ingest service."""

    model_config = SettingsConfigDict(
        env_prefix="TUBELY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "Tubely API"
    environment: str = Field(default="development", description="Deployment environment label.")
    version: str = Field(default="0.1.0", description="API version for metadata and OpenAPI.")
    log_level: str = Field(default="info")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./tubely.db",
        description="SQLAlchemy compatible DSN.",
    )

    staging_root: Path = Field(
        default_factory=lambda: Path("staging"),
        description="Scratch directory for staged and processed uploads.",
    )
    staging_sweep_age_s: int = Field(
        default=6 * 3600,
        description="Staged files older than this are removed at startup.",
    )

    storage_backend: Literal["local", "s3"] = Field(default="local", description="Active object store implementation.")
    local_storage_base_path: Path = Field(
        default_factory=lambda: Path("objects"),
        description="Root directory for the local object store backend.",
    )
    s3_bucket: Optional[str] = None
    s3_region: str = Field(default="us-east-1")
    s3_endpoint_url: Optional[str] = Field(default=None, description="Custom endpoint for S3-compatible stores (MinIO).")

    max_upload_size_bytes: int = Field(default=1 << 30, description="Hard limit for video uploads.")
    accepted_video_types: dict[str, str] = Field(
        default_factory=lambda: {"video/mp4": "mp4"},
        description="Accepted upload content types mapped to the stored container extension.",
    )
    presign_ttl_seconds: int = Field(default=5 * 60, description="Lifetime of presigned video URLs.")

    ffprobe_binary: str = Field(default="ffprobe")
    ffmpeg_binary: str = Field(default="ffmpeg")
    subprocess_timeout_s: Optional[float] = Field(
        default=600.0,
        description="Upper bound for a single ffprobe/ffmpeg invocation; None disables it.",
    )

    jwt_algorithm: str = Field(default="HS256", description="Algorithm used for JWT tokens.")
    jwt_issuer: Optional[str] = None
    jwt_audience: Optional[str] = None

    secrets: Secrets = Field(default_factory=Secrets, description="Holds sensitive configuration.")

    @property
    def environment_lower(self) -> str:
        return self.environment.lower()

    def extension_for(self, content_type: str) -> str | None:
        return self.accepted_video_types.get(content_type.lower())


@lru_cache()
def get_settings() -> Settings:
    load_dotenv(".env", override=False)

    _ENV_ALIAS_MAP = {
        "TUBELY_ENV": "TUBELY_ENVIRONMENT",
        "TUBELY_DB_URL": "TUBELY_DATABASE_URL",
    }

    for source, target in _ENV_ALIAS_MAP.items():
        value = os.getenv(source)
        if value:
            os.environ[target] = value

    settings = Settings()
    secrets = Secrets()

    if settings.environment_lower == "production" and secrets.jwt_secret == "change-me":
        raise ValueError("Production environment must have a non-default JWT secret.")
    if settings.storage_backend == "s3" and not settings.s3_bucket:
        raise ValueError("TUBELY_S3_BUCKET is required when the s3 storage backend is selected.")

    settings.secrets = secrets
    return settings


__all__ = ["Secrets", "Settings", "get_settings"]
