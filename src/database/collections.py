"""Filters and update documents for the ``videos`` collection.

Both the request-path store (motor) and the worker store (pymongo) build
their queries here so the two drivers agree on the access-control boundary
and the transcode state machine.
"""
from datetime import datetime
from typing import Optional

from pymongo import ASCENDING, DESCENDING, IndexModel
from pymongo.errors import ConnectionFailure, PyMongoError

from src.core.errors import StorageError
from src.database.schemas.metadata import VideoStatus, utcnow

VIDEO_INDEXES = [
    IndexModel([("owner_id", ASCENDING), ("created_at", DESCENDING)], name="owner_created_at"),
]

# Fields fixed at upload time; partial updates may not touch them.
IMMUTABLE_FIELDS = frozenset({
    "_id", "id", "owner_id", "original_filename", "mime_type", "format",
    "file_size", "duration", "width", "height", "s3_key", "thumbnail_s3_key",
    "created_at",
})


def owner_filter(video_id: str, owner_id: str) -> dict:
    return {"_id": video_id, "owner_id": owner_id}


def set_fields(fields: dict) -> dict:
    blocked = IMMUTABLE_FIELDS.intersection(fields)
    if blocked:
        raise ValueError(f"Immutable fields cannot be updated: {sorted(blocked)}")
    return {"$set": {**fields, "updated_at": utcnow()}}


def claim_filter(video_id: str, owner_id: str, stale_before: datetime) -> dict:
    """Matches a record that no live transcode job owns."""
    return {
        **owner_filter(video_id, owner_id),
        "$or": [
            {"status": {"$ne": VideoStatus.TRANSCODING.value}},
            {"transcode_started_at": {"$lt": stale_before}},
            {"transcode_started_at": None},
        ],
    }


def claim_update(job_id: str, preset: str) -> dict:
    now = utcnow()
    return {
        "$set": {
            "status": VideoStatus.TRANSCODING.value,
            "transcode_job_id": job_id,
            "transcode_preset": preset,
            "transcode_started_at": now,
            "transcode_error": None,
            "transcoded_s3_key": None,
            "transcoded_filename": None,
            "updated_at": now,
        }
    }


def job_filter(video_id: str, owner_id: str, job_id: str) -> dict:
    """Matches a record still transcoding under ``job_id``."""
    return {
        **owner_filter(video_id, owner_id),
        "status": VideoStatus.TRANSCODING.value,
        "transcode_job_id": job_id,
    }


def ready_update(transcoded_key: str, transcoded_filename: str) -> dict:
    return {
        "$set": {
            "status": VideoStatus.READY.value,
            "transcoded_s3_key": transcoded_key,
            "transcoded_filename": transcoded_filename,
            "transcode_error": None,
            "updated_at": utcnow(),
        }
    }


def failed_update(error: Optional[str]) -> dict:
    return {
        "$set": {
            "status": VideoStatus.FAILED.value,
            "transcoded_s3_key": None,
            "transcoded_filename": None,
            "transcode_error": error,
            "updated_at": utcnow(),
        }
    }


def storage_error(action: str, exc: PyMongoError) -> StorageError:
    transient = isinstance(exc, ConnectionFailure) or exc.has_error_label("RetryableWriteError")
    return StorageError(f"Metadata store {action} failed: {exc}", transient=transient)
