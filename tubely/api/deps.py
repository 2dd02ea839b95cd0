from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tubely.core.auth import AuthContext, get_auth_context
from tubely.core.config import Settings, get_settings
from tubely.core.storage import ObjectStore
from tubely.db.repository import VideoRepository
from tubely.ingest.aspect import FFprobeProbe
from tubely.ingest.faststart import FFmpegFaststartOptimizer
from tubely.ingest.staging import StagingArea
from tubely.services.ingest_service import IngestService


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    session_factory = request.app.state.session_factory
    if not isinstance(session_factory, async_sessionmaker):  # pragma: no cover - defensive
        raise RuntimeError("session_factory_not_configured")
    async with session_factory() as session:
        yield session


def get_object_store(request: Request) -> ObjectStore:
    store: ObjectStore = request.app.state.object_store
    return store


def get_staging_area(request: Request) -> StagingArea:
    staging: StagingArea = request.app.state.staging
    return staging


def get_app_settings() -> Settings:
    return get_settings()


def get_media_probe(settings: Settings = Depends(get_app_settings)) -> FFprobeProbe:
    return FFprobeProbe(settings.ffprobe_binary, timeout_s=settings.subprocess_timeout_s)


def get_stream_optimizer(settings: Settings = Depends(get_app_settings)) -> FFmpegFaststartOptimizer:
    return FFmpegFaststartOptimizer(settings.ffmpeg_binary, timeout_s=settings.subprocess_timeout_s)


async def get_ingest_service(
    session: AsyncSession = Depends(get_session),
    store: ObjectStore = Depends(get_object_store),
    staging: StagingArea = Depends(get_staging_area),
    probe: FFprobeProbe = Depends(get_media_probe),
    optimizer: FFmpegFaststartOptimizer = Depends(get_stream_optimizer),
    settings: Settings = Depends(get_app_settings),
) -> AsyncIterator[IngestService]:
    service = IngestService(settings, VideoRepository(session), store, staging, probe, optimizer)
    yield service


IngestServiceDependency = Annotated[IngestService, Depends(get_ingest_service)]
AuthDependency = Annotated[AuthContext, Depends(get_auth_context)]


__all__ = [
    "get_session",
    "get_object_store",
    "get_staging_area",
    "get_app_settings",
    "get_media_probe",
    "get_stream_optimizer",
    "get_ingest_service",
    "IngestServiceDependency",
    "AuthDependency",
]
