"""In-memory doubles for MongoDB collections, S3 and the ffmpeg tools."""

import copy
import os
import re
import threading
from typing import Dict, List, Optional

from pymongo import ReturnDocument

from src.core.errors import ObjectNotFound, ProbeError, StorageError, ThumbnailError, TranscodeError
from src.core.storage import ObjectStream, attachment_disposition
from src.utils.ffmpeg import MediaInfo


def matches(doc: dict, query: dict) -> bool:
    """Evaluates the subset of the Mongo query language the stores use."""
    for key, cond in query.items():
        if key == "$or":
            if not any(matches(doc, sub) for sub in cond):
                return False
        elif isinstance(cond, dict):
            value = doc.get(key)
            for op, arg in cond.items():
                if op == "$ne" and value == arg:
                    return False
                if op == "$lt" and (value is None or not value < arg):
                    return False
        elif doc.get(key) != cond:
            return False
    return True


class DeleteResult:
    def __init__(self, deleted_count: int):
        self.deleted_count = deleted_count


class FakeCollection:
    """Blocking collection; shares ``docs`` with an ``AsyncFakeCollection``."""

    def __init__(self, docs: Optional[Dict[str, dict]] = None):
        self.docs = docs if docs is not None else {}
        self.lock = threading.Lock()
        self.indexes = []

    def insert_one(self, doc: dict):
        with self.lock:
            self.docs[doc["_id"]] = copy.deepcopy(doc)

    def find_one(self, query: dict):
        with self.lock:
            for doc in self.docs.values():
                if matches(doc, query):
                    return copy.deepcopy(doc)
        return None

    def find(self, query: dict) -> List[dict]:
        with self.lock:
            return [copy.deepcopy(doc) for doc in self.docs.values() if matches(doc, query)]

    def find_one_and_update(self, query: dict, update: dict, return_document=ReturnDocument.BEFORE):
        with self.lock:
            for doc in self.docs.values():
                if matches(doc, query):
                    before = copy.deepcopy(doc)
                    doc.update(copy.deepcopy(update["$set"]))
                    return copy.deepcopy(doc) if return_document == ReturnDocument.AFTER else before
        return None

    def delete_one(self, query: dict) -> DeleteResult:
        with self.lock:
            for key, doc in list(self.docs.items()):
                if matches(doc, query):
                    del self.docs[key]
                    return DeleteResult(1)
        return DeleteResult(0)


class _AsyncCursor:
    def __init__(self, docs: List[dict]):
        self._docs = iter(docs)

    def __aiter__(self):
        return self

    async def __anext__(self):
        try:
            return next(self._docs)
        except StopIteration:
            raise StopAsyncIteration


class AsyncFakeCollection:
    """motor-shaped view over a ``FakeCollection``."""

    def __init__(self, sync: FakeCollection):
        self.sync = sync

    async def create_indexes(self, indexes):
        self.sync.indexes.extend(indexes)
        return [index.document["name"] for index in indexes]

    async def insert_one(self, doc):
        return self.sync.insert_one(doc)

    async def find_one(self, query):
        return self.sync.find_one(query)

    def find(self, query):
        return _AsyncCursor(self.sync.find(query))

    async def find_one_and_update(self, query, update, return_document=ReturnDocument.BEFORE):
        return self.sync.find_one_and_update(query, update, return_document=return_document)

    async def delete_one(self, query):
        return self.sync.delete_one(query)


class _Body:
    def __init__(self, chunks):
        self.chunks = chunks
        self.closed = False

    def close(self):
        self.closed = True


class FakeObjectStore:
    """Dict-backed stand-in for ``ObjectStore``."""

    def __init__(self):
        self.objects: Dict[str, dict] = {}
        self.fail_delete = set()
        self.deleted: List[str] = []
        self.opened: List[_Body] = []

    def put(self, key, body, content_type, metadata=None):
        data = body if isinstance(body, bytes) else body.read()
        self.objects[key] = {"data": data, "content_type": content_type, "metadata": dict(metadata or {})}

    def put_file(self, key, path, content_type, metadata=None):
        with open(path, "rb") as f:
            self.put(key, f.read(), content_type, metadata)

    def get(self, key, byte_range=None, download_filename=None):
        obj = self._require(key)
        data = obj["data"]
        content_range = None
        if byte_range:
            start, end = re.match(r"bytes=(\d*)-(\d*)", byte_range).groups()
            if start == "":
                first = max(len(data) - int(end), 0)
                last = len(data) - 1
            else:
                first = int(start)
                last = min(int(end), len(data) - 1) if end else len(data) - 1
            content_range = f"bytes {first}-{last}/{len(data)}"
            data = data[first:last + 1]
        body = _Body([data])
        self.opened.append(body)
        return ObjectStream(
            body=iter(body.chunks),
            content_length=len(data),
            content_type=obj["content_type"],
            content_range=content_range,
            content_disposition=attachment_disposition(download_filename) if download_filename else None,
            partial=content_range is not None,
            _raw=body,
        )

    def download(self, key, destination):
        with open(destination, "wb") as f:
            f.write(self._require(key)["data"])

    def delete(self, key):
        if key in self.fail_delete:
            raise StorageError(f"S3 AccessDenied for {key}")
        self.objects.pop(key, None)
        self.deleted.append(key)

    def sign_url(self, key, ttl_seconds, download=False, filename=None, content_type=None, method="get_object"):
        url = f"https://signed.example/{key}?ttl={ttl_seconds}"
        if download and filename:
            url += f"&filename={filename}"
        if content_type:
            url += f"&type={content_type}"
        return url

    def _require(self, key):
        if key not in self.objects:
            raise ObjectNotFound(key)
        return self.objects[key]


class FakeProber:
    def __init__(self, info: Optional[MediaInfo] = None, error: Optional[str] = None):
        self.info = info or MediaInfo(format="mov,mp4,m4a,3gp,3g2,mj2", duration=10.0, width=1280, height=720)
        self.error = error
        self.calls = []

    def probe(self, path):
        self.calls.append(path)
        if self.error:
            raise ProbeError(self.error)
        return self.info


class FakeThumbnailer:
    def __init__(self, fail: bool = False):
        self.fail = fail

    def extract(self, video_path, output_path, options, duration=None):
        if self.fail:
            raise ThumbnailError("Thumbnail extraction failed: no frame")
        with open(output_path, "wb") as f:
            f.write(b"\xff\xd8jpeg")
        return output_path


class FakeTranscoder:
    def __init__(self, fail: bool = False, on_run=None):
        self.fail = fail
        self.on_run = on_run
        self.calls = []

    def transcode(self, source_path, output_path, preset, timeout=None):
        self.calls.append((os.path.basename(source_path), preset, timeout))
        if self.on_run:
            self.on_run()
        if self.fail:
            raise TranscodeError("FFmpeg failed to transcode: boom")
        with open(output_path, "wb") as f:
            f.write(b"encoded")
        return output_path


class RecordingQueue:
    def __init__(self, error: Optional[Exception] = None):
        self.jobs = []
        self.error = error

    def submit(self, job):
        if self.error:
            raise self.error
        self.jobs.append(job)
        return job.job_id


class FakeRedis:
    def __init__(self):
        self.values = {}
        self.ttls = {}
        self.closed = False

    async def get(self, key):
        return self.values.get(key)

    async def set(self, key, value, ex=None):
        self.values[key] = value
        self.ttls[key] = ex

    async def delete(self, *keys):
        for key in keys:
            self.values.pop(key, None)

    async def aclose(self):
        self.closed = True
