import logging

from celery import Celery
from celery.signals import worker_process_init, worker_process_shutdown

from src.core.cache import SyncCacheInvalidator
from src.core.config import Settings, settings
from src.core.database_sync import SyncMetadataStore
from src.core.storage import ObjectStore
from src.services.transcode_runner import TranscodeRunner
from src.utils.ffmpeg import Transcoder

logger = logging.getLogger(__name__)

celery_app = Celery(
    "video_pipeline",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)


class WorkerRuntime:
    """Gateways owned by one worker process."""

    def __init__(self):
        self.store = SyncMetadataStore()
        self.cache = None
        self.runner = None

    def start(self, config: Settings) -> TranscodeRunner:
        if self.runner is not None:
            return self.runner  # already started

        config.validate()
        self.store.connect(config)
        if config.CACHE_URL:
            self.cache = SyncCacheInvalidator.from_url(config.CACHE_URL)
        self.runner = TranscodeRunner(
            store=self.store,
            objects=ObjectStore.from_settings(config),
            transcoder=Transcoder(),
            settings=config,
            cache=self.cache,
        )
        return self.runner

    def stop(self) -> None:
        self.store.close()
        if self.cache is not None:
            self.cache.close()
            self.cache = None
        self.runner = None


worker_runtime = WorkerRuntime()


@worker_process_init.connect
def init_worker(**kwargs):
    worker_runtime.start(settings)
    logger.info(f"Transcode worker ready | bucket={settings.AWS_S3_BUCKET}")


@worker_process_shutdown.connect
def shutdown_worker(**kwargs):
    worker_runtime.stop()


# Auto-discover tasks inside src/app_celery
celery_app.autodiscover_tasks(["src.app_celery"])
