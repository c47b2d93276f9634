from fastapi import Request, status
from fastapi.responses import JSONResponse
import logging

logger = logging.getLogger(__name__)


class VideoPipelineError(Exception):
    """Base exception for the video pipeline"""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str = "Internal error", error_code: str = None):
        self.message = message
        if error_code:
            self.error_code = error_code
        super().__init__(self.message)


class NotFound(VideoPipelineError):
    """Record or object absent, or owned by someone else"""
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND"

    def __init__(self, message: str = "Video not found", error_code: str = None):
        super().__init__(message, error_code)


class TranscodePending(VideoPipelineError):
    status_code = status.HTTP_409_CONFLICT
    error_code = "TRANSCODE_PENDING"

    def __init__(self, message: str = "Transcoded file not yet available"):
        super().__init__(message)


class InvalidInput(VideoPipelineError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "INVALID_INPUT"


class UnsupportedPreset(InvalidInput):
    error_code = "UNSUPPORTED_PRESET"


class FileTooLarge(InvalidInput):
    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
    error_code = "FILE_TOO_LARGE"


class RangeNotSatisfiable(InvalidInput):
    status_code = status.HTTP_416_REQUESTED_RANGE_NOT_SATISFIABLE
    error_code = "RANGE_NOT_SATISFIABLE"


class ProbeError(VideoPipelineError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    error_code = "PROBE_FAILED"


class ThumbnailError(VideoPipelineError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    error_code = "THUMBNAIL_FAILED"


class TranscodeError(VideoPipelineError):
    error_code = "TRANSCODE_FAILED"


class StorageError(VideoPipelineError):
    """Object store or metadata store I/O failure.

    ``transient`` tells callers whether retrying the same call can succeed
    (throttling, 5xx, connection errors) or not (auth, bad bucket).
    """
    status_code = status.HTTP_502_BAD_GATEWAY
    error_code = "STORAGE_ERROR"

    def __init__(self, message: str = "Storage failure", transient: bool = False, error_code: str = None):
        super().__init__(message, error_code)
        self.transient = transient
        if transient:
            self.status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class ObjectNotFound(StorageError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "OBJECT_NOT_FOUND"

    def __init__(self, key: str):
        super().__init__(f"Object not found: {key}")
        self.key = key


async def video_pipeline_exception_handler(request: Request, exc: VideoPipelineError):
    """Render pipeline errors as {error_code, message}"""
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error_code": exc.error_code, "message": exc.message},
    )
