import logging

from src.app_celery.celery_app import celery_app, worker_runtime
from src.core.config import settings
from src.services.transcode_runner import TranscodeJob

logger = logging.getLogger(__name__)


# SoftTimeLimitExceeded surfaces inside the runner, which marks the record failed;
# the hard limit only backs it up.
@celery_app.task(
    name="transcode_video",
    soft_time_limit=settings.transcode_soft_time_limit,
    time_limit=settings.transcode_time_limit,
)
def transcode_video(**payload):
    job = TranscodeJob(**payload)
    runner = worker_runtime.start(settings)

    record = runner.run(job)
    if record is None:
        return {"video_id": job.video_id, "job_id": job.job_id, "status": "superseded"}

    logger.info(f"Transcode task done | video_id={job.video_id} | status={record.status}")
    return {
        "video_id": job.video_id,
        "job_id": job.job_id,
        "status": record.status,
        "transcoded_s3_key": record.transcoded_s3_key,
    }


class CeleryTranscodeQueue:
    """Submits transcode jobs to the Celery worker; the task id is the job id."""

    def __init__(self, task=transcode_video):
        self.task = task

    def submit(self, job: TranscodeJob) -> str:
        result = self.task.apply_async(kwargs=job.to_payload(), task_id=job.job_id)
        return result.id
