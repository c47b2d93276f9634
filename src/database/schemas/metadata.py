from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VideoStatus(str, Enum):
    UPLOADED = "uploaded"
    TRANSCODING = "transcoding"
    READY = "ready"
    FAILED = "failed"


class Variant(str, Enum):
    ORIGINAL = "original"
    TRANSCODED = "transcoded"


class VideoMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    id: str = Field(..., alias="_id")
    owner_id: str
    original_filename: str
    s3_key: Optional[str] = None

    status: VideoStatus = VideoStatus.UPLOADED
    mime_type: Optional[str] = None
    format: Optional[str] = None
    file_size: Optional[int] = None   # bytes
    duration: Optional[float] = None  # seconds
    width: Optional[int] = None
    height: Optional[int] = None

    thumbnail_s3_key: Optional[str] = None

    # Set only while status == ready
    transcoded_s3_key: Optional[str] = None
    transcoded_filename: Optional[str] = None

    transcode_job_id: Optional[str] = None
    transcode_preset: Optional[str] = None
    transcode_started_at: Optional[datetime] = None
    transcode_error: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def to_document(self) -> dict:
        """Mongo document form (``_id`` key, enums as strings)."""
        return self.model_dump(by_alias=True)


class VideoOut(BaseModel):
    """Client-facing view of a record; thumbnail URLs are signed per request."""
    id: str
    owner_id: str
    original_filename: str
    status: str
    mime_type: Optional[str] = None
    format: Optional[str] = None
    file_size: Optional[int] = None
    duration: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    s3_key: Optional[str] = None
    thumbnail_s3_key: Optional[str] = None
    transcoded_s3_key: Optional[str] = None
    transcoded_filename: Optional[str] = None
    transcode_preset: Optional[str] = None
    transcode_error: Optional[str] = None
    thumbnail_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: VideoMetadata, thumbnail_url: Optional[str] = None) -> "VideoOut":
        data = record.model_dump(exclude={"transcode_job_id", "transcode_started_at"})
        return cls(**data, thumbnail_url=thumbnail_url)


class VideoPage(BaseModel):
    page: int
    limit: int
    total: int
    items: List[VideoOut]


class PresignedUrl(BaseModel):
    url: str
    expires_in: int
    variant: Variant
    download: bool


class TranscodeTicket(BaseModel):
    video_id: str
    job_id: str
    preset: str
    status: VideoStatus
    accepted: bool
