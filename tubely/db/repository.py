from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from tubely.db.models import Video


@dataclass(slots=True)
class AssetRecord:
    """The slice of a video row the ingest pipeline reads and writes."""

    id: str
    owner_principal: str
    storage_reference: Optional[str] = None


class RecordStore(Protocol):
    async def get(self, asset_id: str) -> AssetRecord | None: ...

    async def update(self, record: AssetRecord) -> None: ...


class VideoRepository:
    """Record store backed by the ``videos`` table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, asset_id: str) -> AssetRecord | None:
        video = await self.session.get(Video, asset_id)
        if video is None:
            return None
        return AssetRecord(id=video.id, owner_principal=video.user_id, storage_reference=video.video_url)

    async def update(self, record: AssetRecord) -> None:
        video = await self.session.get(Video, record.id)
        if video is None:
            raise LookupError(record.id)
        video.video_url = record.storage_reference
        await self.session.commit()


__all__ = ["AssetRecord", "RecordStore", "VideoRepository"]
