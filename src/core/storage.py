"""S3 object store gateway."""

import logging
from dataclasses import dataclass, field
from typing import BinaryIO, Dict, Iterator, Optional, Union

import boto3
from boto3.exceptions import Boto3Error
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError, HTTPClientError
from botocore.exceptions import ConnectionError as BotoConnectionError
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from src.core.config import Settings
from src.core.errors import ObjectNotFound, RangeNotSatisfiable, StorageError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024  # 1 MB

NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404"}
TRANSIENT_CODES = {
    "SlowDown",
    "RequestTimeout",
    "InternalError",
    "ServiceUnavailable",
    "Throttling",
    "ThrottlingException",
}


@dataclass
class ObjectStream:
    """A (possibly partial) read of one object; ``body`` yields chunks lazily."""
    body: Iterator[bytes]
    content_length: Optional[int] = None
    content_type: Optional[str] = None
    content_range: Optional[str] = None
    content_disposition: Optional[str] = None
    partial: bool = False
    _raw: object = field(default=None, repr=False)

    def close(self) -> None:
        if self._raw is not None:
            self._raw.close()


def attachment_disposition(filename: str) -> str:
    safe_name = filename.replace('"', "")
    return f'attachment; filename="{safe_name}"'


def translate_error(exc: Exception, key: str) -> StorageError:
    """Maps boto errors onto the storage error taxonomy."""
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = str(error.get("Code", ""))
        http_status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 0
        if code in NOT_FOUND_CODES:
            return ObjectNotFound(key)
        if code == "InvalidRange":
            return RangeNotSatisfiable(f"Requested range not satisfiable for {key}")
        transient = code in TRANSIENT_CODES or http_status >= 500
        return StorageError(f"S3 {code or 'error'} for {key}: {error.get('Message', exc)}", transient=transient)
    if isinstance(exc, (BotoConnectionError, HTTPClientError)):
        return StorageError(f"S3 unreachable for {key}: {exc}", transient=True)
    return StorageError(f"S3 failure for {key}: {exc}")


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, StorageError) and exc.transient


storage_retry = retry(
    retry=retry_if_exception(_is_transient),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    reraise=True,
)


class ObjectStore:
    def __init__(self, client, bucket: str):
        if not bucket:
            raise ValueError("An S3 bucket name is required")
        self.client = client
        self.bucket = bucket

    @classmethod
    def from_settings(cls, settings: Settings) -> "ObjectStore":
        client = boto3.client(
            "s3",
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
            region_name=settings.AWS_REGION,
            endpoint_url=settings.AWS_S3_ENDPOINT_URL,
            config=BotoConfig(signature_version="s3v4"),
        )
        return cls(client, settings.AWS_S3_BUCKET)

    def _call(self, key: str, operation: str, **params):
        try:
            return getattr(self.client, operation)(Bucket=self.bucket, Key=key, **params)
        except (BotoCoreError, ClientError, Boto3Error) as exc:
            raise translate_error(exc, key) from exc

    @storage_retry
    def put(
        self,
        key: str,
        body: Union[bytes, BinaryIO],
        content_type: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        self._call(key, "put_object", Body=body, ContentType=content_type, Metadata=metadata or {})

    @storage_retry
    def put_file(self, key: str, path: str, content_type: str, metadata: Optional[Dict[str, str]] = None) -> None:
        with open(path, "rb") as f:
            self._call(key, "put_object", Body=f, ContentType=content_type, Metadata=metadata or {})
        logger.info(f"Uploaded {path} to s3://{self.bucket}/{key}")

    @storage_retry
    def get(self, key: str, byte_range: Optional[str] = None, download_filename: Optional[str] = None) -> ObjectStream:
        params = {}
        if byte_range:
            params["Range"] = byte_range
        if download_filename:
            params["ResponseContentDisposition"] = attachment_disposition(download_filename)
        response = self._call(key, "get_object", **params)
        raw = response["Body"]
        content_range = response.get("ContentRange")
        return ObjectStream(
            body=raw.iter_chunks(CHUNK_SIZE),
            content_length=response.get("ContentLength"),
            content_type=response.get("ContentType"),
            content_range=content_range,
            content_disposition=response.get("ContentDisposition"),
            partial=content_range is not None,
            _raw=raw,
        )

    @storage_retry
    def download(self, key: str, destination: str) -> None:
        try:
            self.client.download_file(Bucket=self.bucket, Key=key, Filename=destination)
        except (BotoCoreError, ClientError, Boto3Error) as exc:
            raise translate_error(exc, key) from exc

    @storage_retry
    def delete(self, key: str) -> None:
        self._call(key, "delete_object")

    def sign_url(
        self,
        key: str,
        ttl_seconds: int,
        download: bool = False,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
        method: str = "get_object",
    ) -> str:
        """Time-limited URL for direct client access.

        ``method`` is ``get_object`` for reads or ``put_object`` for writes.
        """
        params = {"Bucket": self.bucket, "Key": key}
        if method == "get_object":
            if download and filename:
                params["ResponseContentDisposition"] = attachment_disposition(filename)
            if content_type:
                params["ResponseContentType"] = content_type
        elif method == "put_object":
            if content_type:
                params["ContentType"] = content_type
        else:
            raise ValueError(f"Unsupported presign method: {method}")
        try:
            return self.client.generate_presigned_url(ClientMethod=method, Params=params, ExpiresIn=ttl_seconds)
        except (BotoCoreError, ClientError) as exc:
            raise translate_error(exc, key) from exc
