from __future__ import annotations

import logging

from django.db import DatabaseError, transaction

from .exceptions import CommitError
from .fetcher import SourceLocator
from .models import Job

logger = logging.getLogger(__name__)

ERROR_DETAIL_LIMIT = 4000


class JobRecordStore:
    """Narrow get/update capability over the ``Job`` table."""

    def get_record(self, job_id: str) -> Job:
        try:
            return Job.objects.get(pk=job_id)
        except Job.DoesNotExist:
            raise CommitError("NotFound", f"no job record for {job_id!r}")
        except DatabaseError as exc:
            raise CommitError("StoreFailure", f"cannot read job {job_id!r}: {exc}") from exc

    def update_record(self, job_id: str, fields: dict) -> Job:
        try:
            with transaction.atomic():
                job = Job.objects.select_for_update().get(pk=job_id)
                for name, value in fields.items():
                    setattr(job, name, value)
                job.save(update_fields=[*fields, "updated_at"])
                return job
        except Job.DoesNotExist:
            raise CommitError("NotFound", f"no job record for {job_id!r}")
        except DatabaseError as exc:
            raise CommitError("StoreFailure", f"cannot update job {job_id!r}: {exc}") from exc

    def create_or_reset(self, job_id: str, source: SourceLocator) -> Job:
        try:
            job, _ = Job.objects.update_or_create(
                pk=job_id,
                defaults={
                    "source_url": source.url,
                    "source_headers": dict(source.headers or {}),
                    "status": Job.Status.PROCESSING,
                    "stage": "",
                    "transcoded_url": "",
                    "error_kind": "",
                    "error_detail": "",
                },
            )
            return job
        except DatabaseError as exc:
            raise CommitError("StoreFailure", f"cannot create job {job_id!r}: {exc}") from exc


class JobCommitter:
    def __init__(self, store: JobRecordStore | None = None) -> None:
        self.store = store or JobRecordStore()

    def start(self, job_id: str, source: SourceLocator) -> Job:
        """Mark the job as processing with a clean result; called once the workspace is held."""
        return self.store.create_or_reset(job_id, source)

    def mark_stage(self, job_id: str, stage: str) -> Job:
        return self.store.update_record(job_id, {"stage": stage})

    def commit(self, job_id: str, manifest_url: str) -> Job:
        """The durability boundary: only after this returns may success be reported."""
        job = self.store.update_record(job_id, {
            "status": Job.Status.READY,
            "stage": "READY",
            "transcoded_url": manifest_url,
            "error_kind": "",
            "error_detail": "",
        })
        logger.info("Job %s ready: %s", job_id, manifest_url)
        return job

    def commit_failure(self, job_id: str, error_kind: str, error_detail: str) -> Job:
        job = self.store.update_record(job_id, {
            "status": Job.Status.FAILED,
            "stage": "FAILED",
            "error_kind": error_kind,
            "error_detail": (error_detail or error_kind)[:ERROR_DETAIL_LIMIT],
        })
        logger.info("Job %s failed: %s", job_id, error_kind)
        return job
