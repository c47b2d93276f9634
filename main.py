import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.routes_videos import router as videos_router
from src.app_celery.tasks import CeleryTranscodeQueue
from src.core.cache import ResponseCache
from src.core.config import settings
from src.core.database import MetadataStore
from src.core.errors import VideoPipelineError, video_pipeline_exception_handler
from src.core.storage import ObjectStore
from src.services.video_pipeline import VideoPipeline
from src.utils.ffmpeg import MediaProber, ThumbnailExtractor

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings.validate()

    store = MetadataStore.from_settings(settings)
    await store.ensure_indexes()
    cache = ResponseCache.from_url(settings.CACHE_URL, settings.CACHE_TTL_SECONDS) if settings.CACHE_URL else None

    app.state.pipeline = VideoPipeline(
        settings=settings,
        store=store,
        objects=ObjectStore.from_settings(settings),
        prober=MediaProber(),
        thumbnailer=ThumbnailExtractor(),
        queue=CeleryTranscodeQueue(),
        cache=cache,
    )
    logger.info(f"Video service ready | bucket={settings.AWS_S3_BUCKET} | region={settings.AWS_REGION}")

    yield

    if cache is not None:
        await cache.close()
    store.close()


app = FastAPI(title="Video Pipeline", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CLIENT_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Length", "Content-Range", "Content-Disposition"],
)

app.add_exception_handler(VideoPipelineError, video_pipeline_exception_handler)
app.include_router(videos_router, prefix="/videos", tags=["videos"])


@app.get("/")
async def root():
    return {"message": "Video pipeline API"}


@app.get("/health")
async def health():
    return {"status": "ok", "region": settings.AWS_REGION}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=settings.PORT)
