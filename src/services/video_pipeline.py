"""Video ingestion, metadata and delivery.

``VideoPipeline`` owns the record state machine::

    uploaded -> transcoding -> ready | failed
    failed -> transcoding, ready -> transcoding

Every lookup is scoped by (video id, owner id); a record that belongs to
someone else is reported exactly like a missing one.
"""

import asyncio
import logging
import mimetypes
import os
import re
import tempfile
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Dict, Iterator, List, Optional, Tuple
from urllib.parse import quote
from uuid import uuid4

from src.core.cache import ResponseCache, metadata_key, presigned_key
from src.core.config import Settings
from src.core.errors import (
    FileTooLarge,
    InvalidInput,
    NotFound,
    ObjectNotFound,
    StorageError,
    ThumbnailError,
    TranscodeError,
    TranscodePending,
    UnsupportedPreset,
    VideoPipelineError,
)
from src.core.storage import attachment_disposition
from src.database.schemas.metadata import (
    PresignedUrl,
    TranscodeTicket,
    Variant,
    VideoMetadata,
    VideoOut,
    VideoPage,
    VideoStatus,
    utcnow,
)
from src.services.transcode_runner import TranscodeJob
from src.utils.naming import join_key, original_filename_for

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024  # 1 MB
MAX_PAGE_SIZE = 50
DEFAULT_PRESET = "720p"
RANGE_PATTERN = re.compile(r"^bytes=(\d*)-(\d*)$")


@dataclass
class VideoStream:
    body: Iterator[bytes]
    status_code: int
    headers: Dict[str, str]
    close: Callable[[], None] = field(default=lambda: None, repr=False)


def parse_range(value: Optional[str]) -> Optional[str]:
    """Validates a single-range ``Range`` header; returns None for no range."""
    if value is None or not value.strip():
        return None
    value = value.strip()
    match = RANGE_PATTERN.match(value)
    if not match:
        raise InvalidInput(f"Malformed Range header: {value}", "INVALID_RANGE")
    start, end = match.groups()
    if not start and not end:
        raise InvalidInput(f"Malformed Range header: {value}", "INVALID_RANGE")
    if start and end and int(end) < int(start):
        raise InvalidInput(f"Range end precedes start: {value}", "INVALID_RANGE")
    return value


def as_variant(value) -> Variant:
    try:
        return Variant(value)
    except ValueError:
        raise InvalidInput(f"Unknown variant: {value}", "INVALID_VARIANT")


def resolve_variant(record: VideoMetadata, variant) -> Tuple[str, str]:
    """Storage key and download filename for one variant of a record."""
    variant = as_variant(variant)

    if variant == Variant.TRANSCODED:
        if record.status != VideoStatus.READY or not record.transcoded_s3_key:
            raise TranscodePending()
        filename = record.transcoded_filename or os.path.basename(record.transcoded_s3_key)
        return record.transcoded_s3_key, filename

    if not record.s3_key:
        raise NotFound("Original video missing")
    return record.s3_key, original_filename_for(record.original_filename, record.id)


class VideoPipeline:
    def __init__(
        self,
        settings: Settings,
        store,
        objects,
        prober,
        thumbnailer,
        queue,
        cache: Optional[ResponseCache] = None,
    ):
        self.settings = settings
        self.store = store
        self.objects = objects
        self.prober = prober
        self.thumbnailer = thumbnailer
        self.queue = queue
        self.cache = cache

    # ---------- Upload ----------

    async def ingest(self, owner_id: str, upload) -> VideoMetadata:
        """
        Stores an uploaded video and creates its record.

        Args:
            owner_id (str): Authenticated uploader
            upload: Starlette ``UploadFile`` (filename, content_type, async read)

        Returns:
            VideoMetadata: The new record, status ``uploaded``

        Raises:
            InvalidInput: Non-video content type, empty or oversized file
            ProbeError: The file is not a readable media container
            ThumbnailError: Extraction failed and THUMBNAIL_REQUIRED is set
        """
        original_name = upload.filename or ""
        content_type = upload.content_type or ""
        if not content_type.startswith("video/"):
            raise InvalidInput("Only video files are allowed", "INVALID_FILE_TYPE")

        video_id = uuid4().hex
        stored_filename = original_filename_for(original_name, video_id)
        raw_key = join_key(self.settings.S3_RAW_PREFIX, video_id, stored_filename)
        thumb_key = join_key(self.settings.S3_THUMBNAIL_PREFIX, video_id, f"{video_id}.jpg")

        with tempfile.TemporaryDirectory(prefix="video-pipeline-") as temp_dir:
            video_path = os.path.join(temp_dir, stored_filename)
            size = await self._write_upload(upload, video_path)

            info = await asyncio.to_thread(self.prober.probe, video_path)
            thumbnail_path = await self._extract_thumbnail(
                video_path, os.path.join(temp_dir, f"{video_id}.jpg"), info.duration
            )

            uploaded: List[str] = []
            try:
                await asyncio.to_thread(
                    self.objects.put_file,
                    raw_key,
                    video_path,
                    content_type,
                    {"originalfilename": quote(original_name)},
                )
                uploaded.append(raw_key)
                if thumbnail_path:
                    await asyncio.to_thread(
                        self.objects.put_file, thumb_key, thumbnail_path, "image/jpeg", {"videoid": video_id}
                    )
                    uploaded.append(thumb_key)

                record = VideoMetadata(
                    id=video_id,
                    owner_id=owner_id,
                    original_filename=original_name or stored_filename,
                    s3_key=raw_key,
                    status=VideoStatus.UPLOADED,
                    mime_type=content_type,
                    format=info.format,
                    file_size=size,
                    duration=info.duration,
                    width=info.width,
                    height=info.height,
                    thumbnail_s3_key=thumb_key if thumbnail_path else None,
                )
                await self.store.put(record)
            except VideoPipelineError:
                await self._delete_objects(uploaded)
                raise

        logger.info(f"Uploaded video {video_id} for owner {owner_id} ({size} bytes)")
        return record

    async def _write_upload(self, upload, destination: str) -> int:
        max_bytes = self.settings.max_upload_bytes
        size = 0
        with open(destination, "wb") as f:
            while chunk := await upload.read(CHUNK_SIZE):
                size += len(chunk)
                if size > max_bytes:
                    raise FileTooLarge(f"File exceeds {self.settings.LIMIT_FILE_SIZE_MB} MB.")
                f.write(chunk)
        if size == 0:
            raise InvalidInput("Uploaded file is empty", "EMPTY_FILE")
        return size

    async def _extract_thumbnail(self, video_path: str, output_path: str, duration: Optional[float]) -> Optional[str]:
        try:
            return await asyncio.to_thread(
                self.thumbnailer.extract, video_path, output_path, self.settings.THUMBNAIL_PRESET, duration
            )
        except ThumbnailError as exc:
            if self.settings.THUMBNAIL_REQUIRED:
                raise
            logger.warning(f"Continuing upload without thumbnail: {exc.message}")
            return None

    # ---------- Reads ----------

    async def get_one(self, video_id: str, owner_id: str) -> VideoMetadata:
        record = await self.store.get(video_id, owner_id)
        if record is None:
            raise NotFound()
        return record

    async def get_video(self, video_id: str, owner_id: str) -> VideoOut:
        """Record with a freshly signed thumbnail URL, cached briefly."""
        cache_key = metadata_key(owner_id, video_id)
        cached = await self._cache_get(cache_key)
        if cached:
            return VideoOut.model_validate(cached)

        video = await self._to_out(await self.get_one(video_id, owner_id))
        await self._cache_set(cache_key, video.model_dump(mode="json"))
        return video

    async def list_videos(self, owner_id: str, page: int = 1, limit: int = 10) -> VideoPage:
        page = max(1, page)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)

        records = await self.store.list_by_owner(owner_id)
        records.sort(key=lambda r: r.created_at, reverse=True)
        offset = (page - 1) * limit
        items = await asyncio.gather(*(self._to_out(r) for r in records[offset:offset + limit]))
        return VideoPage(page=page, limit=limit, total=len(records), items=list(items))

    async def thumbnail_url(self, video_id: str, owner_id: str) -> str:
        record = await self.get_one(video_id, owner_id)
        if not record.thumbnail_s3_key:
            raise NotFound("Thumbnail not generated")
        return await asyncio.to_thread(
            self.objects.sign_url,
            record.thumbnail_s3_key,
            self.settings.PRESIGNED_TTL_SECONDS,
            content_type="image/jpeg",
        )

    async def _to_out(self, record: VideoMetadata) -> VideoOut:
        thumbnail_url = None
        if record.thumbnail_s3_key:
            try:
                thumbnail_url = await asyncio.to_thread(
                    self.objects.sign_url,
                    record.thumbnail_s3_key,
                    self.settings.PRESIGNED_TTL_SECONDS,
                    content_type="image/jpeg",
                )
            except StorageError as exc:
                logger.warning(f"Could not sign thumbnail for {record.id}: {exc.message}")
        return VideoOut.from_record(record, thumbnail_url)

    # ---------- Delivery ----------

    async def stream(
        self,
        video_id: str,
        owner_id: str,
        variant=Variant.ORIGINAL,
        byte_range: Optional[str] = None,
        as_download: bool = False,
    ) -> VideoStream:
        """Opens a (possibly partial) read of one variant without buffering it."""
        byte_range = parse_range(byte_range)
        record = await self.get_one(video_id, owner_id)
        key, filename = resolve_variant(record, variant)

        try:
            obj = await asyncio.to_thread(
                self.objects.get, key, byte_range, filename if as_download else None
            )
        except ObjectNotFound:
            raise NotFound("Video file missing in storage")

        headers = {
            "Content-Type": obj.content_type or record.mime_type or "application/octet-stream",
            "Accept-Ranges": "bytes",
        }
        if obj.content_length is not None:
            headers["Content-Length"] = str(obj.content_length)
        if obj.content_range:
            headers["Content-Range"] = obj.content_range
        if as_download:
            headers["Content-Disposition"] = obj.content_disposition or attachment_disposition(filename)

        return VideoStream(
            body=obj.body,
            status_code=206 if obj.partial else 200,
            headers=headers,
            close=obj.close,
        )

    async def presigned_url(
        self,
        video_id: str,
        owner_id: str,
        variant=Variant.ORIGINAL,
        download: bool = True,
    ) -> PresignedUrl:
        variant = as_variant(variant)
        cache_key = presigned_key(owner_id, video_id, variant.value, download)
        cached = await self._cache_get(cache_key)
        if cached:
            return PresignedUrl.model_validate(cached)

        record = await self.get_one(video_id, owner_id)
        key, filename = resolve_variant(record, variant)
        if variant == Variant.TRANSCODED:
            content_type = "video/mp4"
        else:
            content_type = record.mime_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"

        ttl = self.settings.PRESIGNED_TTL_SECONDS
        url = await asyncio.to_thread(
            self.objects.sign_url,
            key,
            ttl,
            download=download,
            filename=filename,
            content_type=content_type,
        )
        payload = PresignedUrl(url=url, expires_in=ttl, variant=variant, download=download)
        await self._cache_set(cache_key, payload.model_dump(mode="json"))
        return payload

    # ---------- Transcode ----------

    async def request_transcode(self, video_id: str, owner_id: str, preset: Optional[str] = None) -> TranscodeTicket:
        """
        Moves the record to ``transcoding`` and hands the encode to the queue.

        Returns as soon as the state has flipped. A video already being
        transcoded by a live job is not encoded twice; the running job is
        reported with ``accepted=False``.
        """
        name = (preset or DEFAULT_PRESET).strip().lower()
        if name not in self.settings.FFMPEG_PRESETS:
            raise UnsupportedPreset(f"Unsupported preset: {preset}")

        record = await self.get_one(video_id, owner_id)
        resolve_variant(record, Variant.ORIGINAL)

        job_id = uuid4().hex
        stale_before = utcnow() - timedelta(seconds=self.settings.stale_claim_seconds)
        previous = await self.store.claim_transcode(video_id, owner_id, job_id, name, stale_before)
        if previous is None:
            current = await self.get_one(video_id, owner_id)
            logger.info(f"Transcode already running for {video_id} (job {current.transcode_job_id})")
            return TranscodeTicket(
                video_id=video_id,
                job_id=current.transcode_job_id or "",
                preset=current.transcode_preset or name,
                status=current.status,
                accepted=False,
            )

        job = TranscodeJob(
            video_id=video_id,
            owner_id=owner_id,
            job_id=job_id,
            preset=name,
            previous_key=previous.transcoded_s3_key,
        )
        try:
            await asyncio.to_thread(self.queue.submit, job)
        except Exception as exc:
            logger.exception(f"Could not queue transcode for {video_id}")
            await self.store.fail_transcode(video_id, owner_id, job_id, f"Could not queue transcode: {exc}")
            raise TranscodeError("Could not start transcode") from exc
        finally:
            await self._invalidate(owner_id, video_id)

        logger.info(f"Transcode {job_id} queued for {video_id} with preset {name}")
        return TranscodeTicket(
            video_id=video_id,
            job_id=job_id,
            preset=name,
            status=VideoStatus.TRANSCODING,
            accepted=True,
        )

    # ---------- Delete ----------

    async def delete(self, video_id: str, owner_id: str) -> None:
        """Removes stored objects (best effort) and then the record."""
        record = await self.get_one(video_id, owner_id)
        keys = [k for k in (record.s3_key, record.transcoded_s3_key, record.thumbnail_s3_key) if k]
        await self._delete_objects(keys)
        await self.store.delete(video_id, owner_id)
        await self._invalidate(owner_id, video_id)
        logger.info(f"Deleted video {video_id} for owner {owner_id}")

    async def _delete_objects(self, keys: List[str]) -> None:
        async def _delete(key: str) -> None:
            try:
                await asyncio.to_thread(self.objects.delete, key)
            except StorageError as exc:
                logger.warning(f"Failed to delete {key} from S3: {exc.message}")

        await asyncio.gather(*(_delete(key) for key in keys))

    # ---------- Cache ----------

    def _cache_ttl(self) -> int:
        return min(self.settings.CACHE_TTL_SECONDS, self.settings.PRESIGNED_TTL_SECONDS)

    async def _cache_get(self, key: str):
        if self.cache is None:
            return None
        return await self.cache.get(key)

    async def _cache_set(self, key: str, value) -> None:
        if self.cache is not None:
            await self.cache.set(key, value, self._cache_ttl())

    async def _invalidate(self, owner_id: str, video_id: str) -> None:
        if self.cache is not None:
            await self.cache.delete_video(owner_id, video_id)
