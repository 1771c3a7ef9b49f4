"""
Per-job orchestration.

    PENDING -> FETCHING -> TRANSCODING -> PACKAGING -> COMMITTING -> READY
         \________\___________\_____________\____________\-----> FAILED

A stage runs only after the previous one returned; any stage error moves the
run to FAILED, records the error on the job, and the workspace is released on
every way out of :meth:`TranscodePipeline.run`.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Callable

from django.conf import settings

from .assembler import PackageAssembler
from .deadlines import Deadline
from .engine import transcode
from .exceptions import CommitError, ConflictError, PipelineError, WorkspaceError
from .fetcher import SourceLocator, fetch
from .models import Job
from .records import JobCommitter
from .s3 import RemoteStore
from .workspace import WorkspaceManager, get_workspace_manager

logger = logging.getLogger(__name__)


class PipelineState(str, enum.Enum):
    PENDING = "PENDING"
    FETCHING = "FETCHING"
    TRANSCODING = "TRANSCODING"
    PACKAGING = "PACKAGING"
    COMMITTING = "COMMITTING"
    READY = "READY"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineState.READY, PipelineState.FAILED)


TRANSITIONS = {
    PipelineState.PENDING: {PipelineState.FETCHING, PipelineState.FAILED},
    PipelineState.FETCHING: {PipelineState.TRANSCODING, PipelineState.FAILED},
    PipelineState.TRANSCODING: {PipelineState.PACKAGING, PipelineState.FAILED},
    PipelineState.PACKAGING: {PipelineState.COMMITTING, PipelineState.FAILED},
    PipelineState.COMMITTING: {PipelineState.READY, PipelineState.FAILED},
    PipelineState.READY: set(),
    PipelineState.FAILED: set(),
}


@dataclass
class PipelineResult:
    job_id: str
    state: PipelineState = PipelineState.PENDING
    manifest_url: str | None = None
    error: PipelineError | None = None
    job: Job | None = None

    @property
    def ok(self) -> bool:
        return self.state is PipelineState.READY

    def advance(self, new_state: PipelineState) -> None:
        if new_state not in TRANSITIONS[self.state]:
            raise RuntimeError(f"illegal transition {self.state.value} -> {new_state.value} for job {self.job_id}")
        logger.info("Job %s: %s -> %s", self.job_id, self.state.value, new_state.value)
        self.state = new_state


class TranscodePipeline:
    def __init__(
        self,
        *,
        workspaces: WorkspaceManager | None = None,
        remote_store: RemoteStore | None = None,
        committer: JobCommitter | None = None,
        fetcher: Callable = fetch,
        engine: Callable = transcode,
        job_timeout: float | None = None,
    ) -> None:
        self.workspaces = workspaces or get_workspace_manager()
        self.assembler = PackageAssembler(remote_store or RemoteStore())
        self.committer = committer or JobCommitter()
        self.fetch = fetcher
        self.transcode = engine
        self.job_timeout = job_timeout if job_timeout is not None else settings.JOB_TIMEOUT

    def run(self, job_id: str, source: SourceLocator) -> PipelineResult:
        """
        Run one job to a terminal state.

        Raises ``ConflictError`` without touching the job record when another
        run holds the job. Stage failures are returned in the result; anything
        unexpected is recorded as a failure and re-raised.
        """
        result = PipelineResult(job_id=job_id)
        try:
            workspace = self.workspaces.allocate(job_id)
        except ConflictError:
            raise
        except WorkspaceError as exc:
            self._start_record(result, source)
            return self._fail(result, exc)

        try:
            deadline = Deadline(self.job_timeout) if self.job_timeout else Deadline.unbounded()
            self.committer.start(job_id, source)

            self._enter(result, PipelineState.FETCHING)
            raw_media = self.fetch(source, workspace, deadline)

            self._enter(result, PipelineState.TRANSCODING)
            package = self.transcode(raw_media, workspace, deadline)

            self._enter(result, PipelineState.PACKAGING)
            manifest_url = self.assembler.assemble(package, workspace, deadline)

            self._enter(result, PipelineState.COMMITTING)
            result.job = self.committer.commit(job_id, manifest_url)
            result.manifest_url = manifest_url
            result.advance(PipelineState.READY)
            return result
        except PipelineError as exc:
            return self._fail(result, exc)
        except Exception as exc:
            logger.exception("Unexpected error in job %s during %s", job_id, result.state.value)
            self._fail(result, PipelineError("Internal", f"{type(exc).__name__}: {exc}"))
            raise
        finally:
            workspace.release()

    def _enter(self, result: PipelineResult, state: PipelineState) -> None:
        result.advance(state)
        self.committer.mark_stage(result.job_id, state.value)

    def _start_record(self, result: PipelineResult, source: SourceLocator) -> None:
        try:
            self.committer.start(result.job_id, source)
        except CommitError:
            logger.exception("Could not create record for job %s", result.job_id)

    def _fail(self, result: PipelineResult, error: PipelineError) -> PipelineResult:
        failed_in = result.state.value
        result.error = error
        result.advance(PipelineState.FAILED)
        logger.warning("Job %s failed in %s: %s", result.job_id, failed_in, error)
        try:
            result.job = self.committer.commit_failure(result.job_id, error.qualified_kind, error.detail)
        except CommitError:
            # Nothing left to record the failure in; the caller still gets the error.
            logger.exception("Could not record failure of job %s", result.job_id)
        return result
