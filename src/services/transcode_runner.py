"""Worker-side execution of one transcode job."""

import logging
import os
import tempfile
from dataclasses import asdict, dataclass
from typing import Optional, Set, Tuple

from src.core.config import Settings
from src.core.errors import StorageError, TranscodeError
from src.database.schemas.metadata import VideoMetadata, VideoStatus
from src.utils.naming import join_key, original_filename_for, transcoded_filename_for

logger = logging.getLogger(__name__)


@dataclass
class TranscodeJob:
    video_id: str
    owner_id: str
    job_id: str
    preset: str
    previous_key: Optional[str] = None

    def to_payload(self) -> dict:
        return asdict(self)


class TranscodeRunner:
    def __init__(self, store, objects, transcoder, settings: Settings, cache=None):
        self.store = store
        self.objects = objects
        self.transcoder = transcoder
        self.settings = settings
        self.cache = cache

    def output_for(self, record: VideoMetadata, preset: str) -> Tuple[str, str]:
        """Filename and storage key an encode of ``record`` with ``preset`` writes."""
        name = transcoded_filename_for(record.original_filename, record.id, preset)
        return name, join_key(self.settings.S3_TRANSCODED_PREFIX, record.id, name)

    def run(self, job: TranscodeJob) -> Optional[VideoMetadata]:
        """
        Downloads the original, encodes it and records the result.

        The record only becomes ``ready`` after the upload of the encoded
        file has returned. Returns the updated record, or None when the job
        was superseded or the video deleted while it ran.

        Raises:
            TranscodeError: After marking the record ``failed``
        """
        record = self.store.get(job.video_id, job.owner_id)
        if record is None or record.status != VideoStatus.TRANSCODING or record.transcode_job_id != job.job_id:
            logger.info(f"Skipping transcode {job.job_id} for {job.video_id}: superseded or deleted")
            return None

        output_name, output_key = self.output_for(record, job.preset)

        try:
            preset = self.settings.FFMPEG_PRESETS.get(job.preset)
            if preset is None:
                raise TranscodeError(f"Unknown preset: {job.preset}")
            if not record.s3_key:
                raise TranscodeError("Original video missing")

            with tempfile.TemporaryDirectory(prefix="video-pipeline-") as temp_dir:
                input_path = os.path.join(temp_dir, original_filename_for(record.original_filename, job.video_id))
                output_path = os.path.join(temp_dir, f"out-{output_name}")

                self.objects.download(record.s3_key, input_path)
                logger.info(f"Transcoding {job.video_id} to {job.preset} (job {job.job_id})")
                self.transcoder.transcode(
                    input_path,
                    output_path,
                    preset,
                    timeout=self.settings.TRANSCODE_TIMEOUT_SECONDS,
                )
                self.objects.put_file(output_key, output_path, "video/mp4", metadata={"source": record.s3_key})
        except Exception as exc:
            logger.exception(f"Transcode failed for video {job.video_id} (job {job.job_id})")
            self.store.fail_transcode(job.video_id, job.owner_id, job.job_id, str(exc))
            self._discard(job.previous_key)
            self._invalidate(job)
            if isinstance(exc, TranscodeError):
                raise
            raise TranscodeError(f"Transcoding failed: {exc}") from exc

        updated = self.store.complete_transcode(job.video_id, job.owner_id, job.job_id, output_key, output_name)
        if updated is None:
            current = self.store.get(job.video_id, job.owner_id)
            if current is None:
                self._discard(output_key)
                self._discard(job.previous_key)
            elif output_key not in self._keys_in_use(current):
                self._discard(output_key)
            return None

        if job.previous_key and job.previous_key != output_key:
            self._discard(job.previous_key)
        self._invalidate(job)
        logger.info(f"Transcode {job.job_id} finished: {output_key}")
        return updated

    def _keys_in_use(self, record: VideoMetadata) -> Set[str]:
        """Transcoded keys the record points at or its running job will write."""
        keys = {record.transcoded_s3_key}
        if record.status == VideoStatus.TRANSCODING and record.transcode_preset:
            keys.add(self.output_for(record, record.transcode_preset)[1])
        return keys

    def _invalidate(self, job: TranscodeJob) -> None:
        if self.cache is not None:
            self.cache.delete_video(job.owner_id, job.video_id)

    def _discard(self, key: Optional[str]) -> None:
        if not key:
            return
        try:
            self.objects.delete(key)
        except StorageError as exc:
            logger.warning(f"Failed to delete {key} from S3: {exc.message}")
