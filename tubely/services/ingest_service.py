from __future__ import annotations

import asyncio
import enum
import re
import secrets
from dataclasses import replace
from typing import Optional

from tubely.core.config import Settings
from tubely.core.errors import Forbidden, IngestError, NotFound, ValidationFailure
from tubely.core.logging import get_logger
from tubely.core.storage import ObjectStore
from tubely.db.repository import AssetRecord, RecordStore
from tubely.ingest.aspect import AspectClass, MediaProbe, classify_geometry
from tubely.ingest.faststart import StreamOptimizer
from tubely.ingest.staging import StagingArea, UploadSource

ASSET_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class IngestState(str, enum.Enum):
    validated = "validated"
    authorized = "authorized"
    staged = "staged"
    classified = "classified"
    optimized = "optimized"
    uploaded = "uploaded"
    recorded = "recorded"
    failed = "failed"


def build_storage_key(aspect: AspectClass, extension: str) -> str:
    return f"{aspect.value}/{secrets.token_hex(16)}.{extension}"


def normalise_content_type(value: str | None) -> str:
    if not value:
        return ""
    return value.split(";", 1)[0].strip().lower()


class IngestService:
    """Takes one uploaded video from the request to durable storage.

    A run is strictly sequential: validate, authorize, stage, classify,
    optimize, upload, record. The video record is only written after the
    upload succeeded, and every staged or processed file is removed before
    ``ingest`` returns or raises. Blocking work (ffprobe, ffmpeg, object
    uploads) runs in a worker thread so concurrent runs keep progressing.
    """

    def __init__(
        self,
        settings: Settings,
        records: RecordStore,
        store: ObjectStore,
        staging: StagingArea,
        probe: MediaProbe,
        optimizer: StreamOptimizer,
    ):
        self.settings = settings
        self.records = records
        self.store = store
        self.staging = staging
        self.probe = probe
        self.optimizer = optimizer
        self.logger = get_logger(component="ingest_service")

    def validate(self, asset_id: str, content_type: str | None, declared_size: Optional[int]) -> str:
        """Reject malformed requests before anything is read or written.

        Returns:
            The container extension for the accepted content type.
        """
        if not asset_id or not ASSET_ID_PATTERN.match(asset_id):
            raise ValidationFailure("invalid video id")
        extension = self.settings.extension_for(normalise_content_type(content_type))
        if extension is None:
            raise ValidationFailure(f"unsupported video content type: {content_type or 'missing'}")
        if declared_size is not None and declared_size > self.settings.max_upload_size_bytes:
            raise ValidationFailure("video file too big")
        return extension

    async def ingest(
        self,
        asset_id: str,
        owner_principal: str,
        upload: UploadSource,
        declared_content_type: str | None,
        *,
        declared_size: Optional[int] = None,
    ) -> AssetRecord:
        logger = self.logger.bind(asset_id=asset_id, owner=owner_principal)
        state: IngestState | None = None

        def advance(next_state: IngestState, **fields: object) -> None:
            nonlocal state
            state = next_state
            logger.info("ingest_state", state=next_state.value, **fields)

        content_type = normalise_content_type(declared_content_type)
        try:
            extension = self.validate(asset_id, content_type, declared_size)
            advance(IngestState.validated)

            record = await self.records.get(asset_id)
            if record is None:
                raise NotFound("video not found")
            if record.owner_principal != owner_principal:
                raise Forbidden("user is not the owner of this video")
            advance(IngestState.authorized)

            with self.staging.acquire(asset_id) as run:
                logger = logger.bind(run_token=run.token)
                staged = run.path(f".{extension}")
                size = await run.write_upload(staged, upload, max_bytes=self.settings.max_upload_size_bytes)
                advance(IngestState.staged, size_bytes=size)

                geometry = await asyncio.to_thread(self.probe.probe, staged)
                aspect = classify_geometry(geometry)
                advance(IngestState.classified, width=geometry.width, height=geometry.height, aspect=aspect.value)

                key = build_storage_key(aspect, extension)
                processed = run.track(self.optimizer.output_path(staged))
                await asyncio.to_thread(self.optimizer.optimize, staged, processed)
                advance(IngestState.optimized)

                reference = await asyncio.to_thread(self.store.upload, processed, key, content_type=content_type)
                advance(IngestState.uploaded, key=key)

                updated = replace(record, storage_reference=reference)
                await self.records.update(updated)
                advance(IngestState.recorded)
        except IngestError as exc:
            log = logger.warning if exc.client_fault else logger.error
            log(
                "ingest_failed",
                state=IngestState.failed.value,
                last_state=state.value if state else None,
                code=exc.code,
                error=str(exc),
                diagnostics=exc.diagnostics,
            )
            raise
        except Exception:
            logger.exception("ingest_crashed", last_state=state.value if state else None)
            raise

        try:
            return self.resolve(updated)
        except IngestError as exc:
            # the upload is committed; only the read URL is missing
            logger.warning("ingest_resolve_failed", code=exc.code, error=str(exc), diagnostics=exc.diagnostics)
            return replace(updated, storage_reference=None)

    def resolve(self, record: AssetRecord) -> AssetRecord:
        """Return a copy of ``record`` whose storage reference is directly fetchable.

        Records without a reference are returned unchanged. A reference the
        store cannot presign is dropped rather than leaked to the caller. The
        persisted record is never touched.
        """
        if not record.storage_reference:
            return record
        presigned = self.store.presign_reference(record.storage_reference, ttl_s=self.settings.presign_ttl_seconds)
        if presigned is None:
            self.logger.warning(
                "storage_reference_unresolvable",
                asset_id=record.id,
                reference=record.storage_reference,
            )
            return replace(record, storage_reference=None)
        return replace(record, storage_reference=presigned.url)


__all__ = ["IngestService", "IngestState", "build_storage_key", "normalise_content_type", "ASSET_ID_PATTERN"]
