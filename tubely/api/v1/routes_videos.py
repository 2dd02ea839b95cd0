from __future__ import annotations

from fastapi import APIRouter, File, HTTPException, UploadFile, status

from tubely.api import deps
from tubely.core.errors import Forbidden, IngestError, NotFound, ValidationFailure

from . import schemas


router = APIRouter(prefix="/videos", tags=["videos"])

_STATUS_BY_ERROR: dict[type[IngestError], int] = {
    ValidationFailure: status.HTTP_400_BAD_REQUEST,
    NotFound: status.HTTP_404_NOT_FOUND,
    Forbidden: status.HTTP_403_FORBIDDEN,
}

_ERROR_RESPONSES: dict[int | str, dict] = {
    code: {"model": schemas.ErrorResponse} for code in (400, 401, 403, 404, 500)
}


def _to_http(exc: IngestError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR.items():
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.detail)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.detail)


@router.post("/{video_id}/upload", response_model=schemas.VideoResponse, responses=_ERROR_RESPONSES)
async def upload_video(
    video_id: str,
    service: deps.IngestServiceDependency,
    context: deps.AuthDependency,
    video: UploadFile = File(...),
) -> schemas.VideoResponse:
    try:
        record = await service.ingest(
            video_id,
            context.user_id,
            video,
            video.content_type,
            declared_size=video.size,
        )
    except IngestError as exc:
        raise _to_http(exc) from exc
    finally:
        await video.close()
    return schemas.VideoResponse.from_record(record)


@router.get("/{video_id}", response_model=schemas.VideoResponse, responses=_ERROR_RESPONSES)
async def get_video(
    video_id: str,
    service: deps.IngestServiceDependency,
    context: deps.AuthDependency,
) -> schemas.VideoResponse:
    record = await service.records.get(video_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="video not found")
    if record.owner_principal != context.user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="user is not the owner of this video")
    try:
        resolved = service.resolve(record)
    except IngestError as exc:
        raise _to_http(exc) from exc
    return schemas.VideoResponse.from_record(resolved)


__all__ = ["router"]
