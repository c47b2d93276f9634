import logging
from datetime import datetime
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from .config import Settings
from src.database.collections import (
    VIDEO_INDEXES,
    claim_filter,
    claim_update,
    failed_update,
    job_filter,
    owner_filter,
    set_fields,
    storage_error,
)
from src.database.schemas.metadata import VideoMetadata

logger = logging.getLogger(__name__)


class MetadataStore:
    """Video records in MongoDB, keyed by (video id, owner id)."""

    def __init__(self, collection):
        self.collection = collection

    @classmethod
    def from_settings(cls, settings: Settings) -> "MetadataStore":
        client = AsyncIOMotorClient(settings.MONGO_URI, tz_aware=True)
        store = cls(client[settings.MONGO_DB][settings.MONGO_COLLECTION])
        store.client = client
        return store

    async def ensure_indexes(self) -> None:
        try:
            await self.collection.create_indexes(VIDEO_INDEXES)
        except PyMongoError as exc:
            raise storage_error("index creation", exc) from exc

    def close(self) -> None:
        client = getattr(self, "client", None)
        if client is not None:
            client.close()

    async def put(self, record: VideoMetadata) -> None:
        try:
            await self.collection.insert_one(record.to_document())
        except PyMongoError as exc:
            raise storage_error("insert", exc) from exc

    async def get(self, video_id: str, owner_id: str) -> Optional[VideoMetadata]:
        try:
            doc = await self.collection.find_one(owner_filter(video_id, owner_id))
        except PyMongoError as exc:
            raise storage_error("lookup", exc) from exc
        return VideoMetadata.model_validate(doc) if doc else None

    async def update(self, video_id: str, owner_id: str, fields: dict) -> Optional[VideoMetadata]:
        try:
            doc = await self.collection.find_one_and_update(
                owner_filter(video_id, owner_id),
                set_fields(fields),
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as exc:
            raise storage_error("update", exc) from exc
        return VideoMetadata.model_validate(doc) if doc else None

    async def delete(self, video_id: str, owner_id: str) -> bool:
        try:
            result = await self.collection.delete_one(owner_filter(video_id, owner_id))
        except PyMongoError as exc:
            raise storage_error("delete", exc) from exc
        return result.deleted_count == 1

    async def list_by_owner(self, owner_id: str) -> List[VideoMetadata]:
        records = []
        try:
            async for doc in self.collection.find({"owner_id": owner_id}):
                records.append(VideoMetadata.model_validate(doc))
        except PyMongoError as exc:
            raise storage_error("listing", exc) from exc
        return records

    async def claim_transcode(
        self,
        video_id: str,
        owner_id: str,
        job_id: str,
        preset: str,
        stale_before: datetime,
    ) -> Optional[VideoMetadata]:
        """Atomically moves the record to ``transcoding`` under ``job_id``.

        Returns the record as it was before the claim, or None when another
        live job already owns it (or the record does not exist).
        """
        try:
            doc = await self.collection.find_one_and_update(
                claim_filter(video_id, owner_id, stale_before),
                claim_update(job_id, preset),
                return_document=ReturnDocument.BEFORE,
            )
        except PyMongoError as exc:
            raise storage_error("transcode claim", exc) from exc
        return VideoMetadata.model_validate(doc) if doc else None

    async def fail_transcode(self, video_id: str, owner_id: str, job_id: str, error: str) -> Optional[VideoMetadata]:
        try:
            doc = await self.collection.find_one_and_update(
                job_filter(video_id, owner_id, job_id),
                failed_update(error),
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as exc:
            raise storage_error("update", exc) from exc
        return VideoMetadata.model_validate(doc) if doc else None
