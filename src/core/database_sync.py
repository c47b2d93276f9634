import logging
from typing import Optional

from pymongo import MongoClient, ReturnDocument
from pymongo.errors import PyMongoError

from src.core.config import Settings
from src.database.collections import failed_update, job_filter, owner_filter, ready_update, storage_error
from src.database.schemas.metadata import VideoMetadata

logger = logging.getLogger(__name__)


class SyncMetadataStore:
    """Blocking view of the video collection used by the Celery worker.

    Completion and failure writes only land while the record is still
    ``transcoding`` under the same job id; a superseded job or a deleted
    record makes them no-ops that return None.
    """

    def __init__(self, collection=None):
        self.client = None
        self.collection = collection

    def connect(self, settings: Settings) -> None:
        if self.collection is not None:
            return  # already connected

        self.client = MongoClient(settings.MONGO_URI, tz_aware=True)
        self.collection = self.client[settings.MONGO_DB][settings.MONGO_COLLECTION]
        logger.info("Worker MongoDB connected: %s.%s", settings.MONGO_DB, settings.MONGO_COLLECTION)

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
        self.client = None
        self.collection = None

    def _require_collection(self):
        if self.collection is None:
            raise RuntimeError("MongoDB (sync) not initialized")
        return self.collection

    def get(self, video_id: str, owner_id: str) -> Optional[VideoMetadata]:
        try:
            doc = self._require_collection().find_one(owner_filter(video_id, owner_id))
        except PyMongoError as exc:
            raise storage_error("lookup", exc) from exc
        return VideoMetadata.model_validate(doc) if doc else None

    def complete_transcode(
        self,
        video_id: str,
        owner_id: str,
        job_id: str,
        transcoded_key: str,
        transcoded_filename: str,
    ) -> Optional[VideoMetadata]:
        try:
            doc = self._require_collection().find_one_and_update(
                job_filter(video_id, owner_id, job_id),
                ready_update(transcoded_key, transcoded_filename),
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as exc:
            raise storage_error("update", exc) from exc

        if doc is None:
            logger.warning(f"Transcode {job_id} finished but video {video_id} is no longer owned by it")
            return None
        logger.info(f"Video status updated | video_id={video_id} | status=ready | key={transcoded_key}")
        return VideoMetadata.model_validate(doc)

    def fail_transcode(self, video_id: str, owner_id: str, job_id: str, error: str) -> Optional[VideoMetadata]:
        try:
            doc = self._require_collection().find_one_and_update(
                job_filter(video_id, owner_id, job_id),
                failed_update(error),
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as exc:
            raise storage_error("update", exc) from exc

        if doc is None:
            logger.warning(f"Transcode {job_id} failed but video {video_id} is no longer owned by it")
            return None
        logger.info(f"Video status updated | video_id={video_id} | status=failed")
        return VideoMetadata.model_validate(doc)
