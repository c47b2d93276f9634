from typing import Optional

from fastapi import APIRouter, Depends, File, Header, HTTPException, Query, Request, UploadFile, status
from fastapi.responses import RedirectResponse, StreamingResponse
from pydantic import BaseModel
from starlette.background import BackgroundTask

from src.database.schemas.metadata import PresignedUrl, TranscodeTicket, Variant, VideoPage
from src.services.video_pipeline import VideoPipeline

router = APIRouter()


class TranscodeRequest(BaseModel):
    preset: Optional[str] = None


def get_owner_id(x_owner_id: Optional[str] = Header(default=None)) -> str:
    """Owner id injected by the upstream auth layer."""
    if not x_owner_id or not x_owner_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return x_owner_id.strip()


def get_pipeline(request: Request) -> VideoPipeline:
    return request.app.state.pipeline


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes")


@router.post("/upload", status_code=status.HTTP_201_CREATED)
async def upload_video(
    file: UploadFile = File(...),
    owner_id: str = Depends(get_owner_id),
    pipeline: VideoPipeline = Depends(get_pipeline),
):
    try:
        record = await pipeline.ingest(owner_id, file)
    finally:
        await file.close()
    return {"video_id": record.id}


@router.get("", response_model=VideoPage)
async def list_videos(
    page: int = Query(1),
    limit: int = Query(10),
    owner_id: str = Depends(get_owner_id),
    pipeline: VideoPipeline = Depends(get_pipeline),
):
    return await pipeline.list_videos(owner_id, page=page, limit=limit)


@router.get("/{video_id}")
async def get_video(
    video_id: str,
    owner_id: str = Depends(get_owner_id),
    pipeline: VideoPipeline = Depends(get_pipeline),
):
    video = await pipeline.get_video(video_id, owner_id)
    return {"video": video.model_dump(mode="json")}


@router.get("/{video_id}/stream")
async def stream_video(
    video_id: str,
    variant: str = Query(Variant.ORIGINAL.value),
    download: Optional[str] = Query(None),
    range_header: Optional[str] = Header(default=None, alias="Range"),
    owner_id: str = Depends(get_owner_id),
    pipeline: VideoPipeline = Depends(get_pipeline),
):
    stream = await pipeline.stream(
        video_id,
        owner_id,
        variant=variant,
        byte_range=range_header,
        as_download=_flag(download, False),
    )
    return StreamingResponse(
        stream.body,
        status_code=stream.status_code,
        headers=stream.headers,
        background=BackgroundTask(stream.close),
    )


@router.post("/{video_id}/transcode", status_code=status.HTTP_202_ACCEPTED, response_model=TranscodeTicket)
async def transcode_video(
    video_id: str,
    body: Optional[TranscodeRequest] = None,
    owner_id: str = Depends(get_owner_id),
    pipeline: VideoPipeline = Depends(get_pipeline),
):
    preset = body.preset if body else None
    return await pipeline.request_transcode(video_id, owner_id, preset)


@router.get("/{video_id}/thumbnail")
async def get_thumbnail(
    video_id: str,
    owner_id: str = Depends(get_owner_id),
    pipeline: VideoPipeline = Depends(get_pipeline),
):
    url = await pipeline.thumbnail_url(video_id, owner_id)
    return RedirectResponse(url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)


@router.get("/{video_id}/presigned", response_model=PresignedUrl)
async def get_presigned_url(
    video_id: str,
    variant: str = Query(Variant.ORIGINAL.value),
    download: Optional[str] = Query(None),
    owner_id: str = Depends(get_owner_id),
    pipeline: VideoPipeline = Depends(get_pipeline),
):
    return await pipeline.presigned_url(video_id, owner_id, variant=variant, download=_flag(download, True))


@router.delete("/{video_id}")
async def delete_video(
    video_id: str,
    owner_id: str = Depends(get_owner_id),
    pipeline: VideoPipeline = Depends(get_pipeline),
):
    await pipeline.delete(video_id, owner_id)
    return {"message": "Video deleted"}
