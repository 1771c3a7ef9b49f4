import logging

from celery import shared_task

from .exceptions import ConflictError
from .fetcher import SourceLocator
from .models import Job
from .pipeline import TranscodePipeline

logger = logging.getLogger(__name__)


@shared_task(bind=True)
def transcode_job(self, job_id: str):
    """Run the pipeline for a job recorded by the async endpoint."""
    try:
        job = Job.objects.get(pk=job_id)
    except Job.DoesNotExist:
        logger.warning("Job %s vanished before the worker picked it up", job_id)
        return None

    source = SourceLocator(url=job.source_url, headers=job.source_headers or {})
    try:
        result = TranscodePipeline().run(job_id, source)
    except ConflictError:
        # Another run owns the job; it will commit the outcome.
        logger.info("Job %s already in flight, skipping duplicate task", job_id)
        return None

    return {
        "job_id": job_id,
        "state": result.state.value,
        "manifest_url": result.manifest_url,
        "error": result.error.as_dict() if result.error else None,
    }
