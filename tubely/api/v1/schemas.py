from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from tubely.db.repository import AssetRecord


class HealthResponse(BaseModel):
    status: str = Field(default="ok", description="Health status indicator.")
    time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class VideoResponse(BaseModel):
    id: str = Field(..., json_schema_extra={"example": "b3c1d7a2-4b8e-4a57-9f0e-2f7c3d1a9e10"})
    user_id: str
    video_url: Optional[str] = Field(
        default=None,
        description="Short-lived presigned URL for the processed video, absent until an upload completes.",
    )

    @classmethod
    def from_record(cls, record: AssetRecord) -> "VideoResponse":
        return cls(id=record.id, user_id=record.owner_principal, video_url=record.storage_reference)


class ErrorResponse(BaseModel):
    detail: str


__all__ = ["HealthResponse", "VideoResponse", "ErrorResponse"]
