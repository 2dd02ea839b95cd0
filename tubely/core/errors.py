"""Typed failures raised by the ingest pipeline.

Client faults (bad input, unknown video, wrong owner) carry a message that is
safe to return to the caller. Server faults keep the subprocess or transport
diagnostics on the exception for logging and expose only a generic
``public_message``.
"""

from __future__ import annotations

from typing import Optional


class IngestError(Exception):
    code = "ingest_failed"
    client_fault = False
    public_message = "video processing failed"

    def __init__(self, message: str | None = None, *, diagnostics: Optional[str] = None) -> None:
        super().__init__(message or self.public_message)
        self.diagnostics = diagnostics

    @property
    def detail(self) -> str:
        if self.client_fault:
            return str(self)
        return self.public_message


def output_text(value: bytes | str | None) -> str | None:
    """Decode captured subprocess output for use as diagnostics."""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class ValidationFailure(IngestError):
    code = "validation_failed"
    client_fault = True
    public_message = "invalid upload"


class NotFound(IngestError):
    code = "video_not_found"
    client_fault = True
    public_message = "video not found"


class Forbidden(IngestError):
    code = "not_video_owner"
    client_fault = True
    public_message = "user is not the owner of this video"


class ProbeFailure(IngestError):
    code = "probe_failed"
    public_message = "failed to analyze video file"


class InvalidMediaMetadata(IngestError):
    code = "invalid_media_metadata"
    public_message = "video file has no usable video stream"


class OptimizationFailure(IngestError):
    code = "optimization_failed"
    public_message = "failed to process video file"


class RelocationFailure(IngestError):
    code = "relocation_failed"
    public_message = "failed to store video file"


class StorageIOFailure(IngestError):
    code = "staging_io_failed"
    public_message = "failed to stage video file"


__all__ = [
    "IngestError",
    "output_text",
    "ValidationFailure",
    "NotFound",
    "Forbidden",
    "ProbeFailure",
    "InvalidMediaMetadata",
    "OptimizationFailure",
    "RelocationFailure",
    "StorageIOFailure",
]
