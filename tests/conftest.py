import io

import pytest
from starlette.datastructures import Headers, UploadFile

from src.core.cache import ResponseCache
from src.core.config import Settings
from src.core.database import MetadataStore
from src.core.database_sync import SyncMetadataStore
from src.services.transcode_runner import TranscodeRunner
from src.services.video_pipeline import VideoPipeline
from tests.fakes import (
    AsyncFakeCollection,
    FakeCollection,
    FakeObjectStore,
    FakeProber,
    FakeRedis,
    FakeThumbnailer,
    FakeTranscoder,
    RecordingQueue,
)


@pytest.fixture
def settings():
    return Settings(
        AWS_S3_BUCKET="test-bucket",
        AWS_REGION="us-east-1",
        PRESIGNED_TTL_SECONDS=900,
        LIMIT_FILE_SIZE_MB=1,
        THUMBNAIL_REQUIRED=False,
        TRANSCODE_TIMEOUT_SECONDS=60,
        CACHE_TTL_SECONDS=30,
    )


@pytest.fixture
def collection():
    return FakeCollection()


@pytest.fixture
def store(collection):
    return MetadataStore(AsyncFakeCollection(collection))


@pytest.fixture
def sync_store(collection):
    return SyncMetadataStore(collection)


@pytest.fixture
def objects():
    return FakeObjectStore()


@pytest.fixture
def prober():
    return FakeProber()


@pytest.fixture
def thumbnailer():
    return FakeThumbnailer()


@pytest.fixture
def transcoder():
    return FakeTranscoder()


@pytest.fixture
def queue():
    return RecordingQueue()


@pytest.fixture
def redis_client():
    return FakeRedis()


@pytest.fixture
def cache(redis_client):
    return ResponseCache(redis_client, default_ttl=30)


@pytest.fixture
def pipeline(settings, store, objects, prober, thumbnailer, queue, cache):
    return VideoPipeline(
        settings=settings,
        store=store,
        objects=objects,
        prober=prober,
        thumbnailer=thumbnailer,
        queue=queue,
        cache=cache,
    )


@pytest.fixture
def runner(settings, sync_store, objects, transcoder):
    return TranscodeRunner(store=sync_store, objects=objects, transcoder=transcoder, settings=settings)


@pytest.fixture
def make_upload():
    def _make(data=b"\x00\x00\x00\x18ftypqt  " + b"x" * 1000, filename="clip.mov", content_type="video/quicktime"):
        return UploadFile(
            file=io.BytesIO(data),
            filename=filename,
            headers=Headers({"content-type": content_type}),
        )
    return _make
