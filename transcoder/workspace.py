"""Per-job scratch directories.

Each job gets ``<root>/<slug>-<hash>/`` with an ``input/`` slot for the source
file and an ``output/`` directory for the engine. The allocation table plus an
exclusive ``mkdir`` keep at most one live workspace per job id, within this
process and across workers sharing the same disk.
"""

from __future__ import annotations

import hashlib
import logging
import shutil
import threading
from dataclasses import dataclass, field
from pathlib import Path

from django.conf import settings
from django.utils.text import slugify

from .exceptions import ConflictError, WorkspaceError

logger = logging.getLogger(__name__)

INPUT_NAME = "source"


def workspace_key(job_id: str) -> str:
    """Deterministic, filesystem-safe directory name for a job id.

    The hash suffix keeps ids that slugify to the same text ("a/b", "a b")
    in separate directories.
    """
    digest = hashlib.sha256(job_id.encode("utf-8")).hexdigest()[:16]
    slug = slugify(job_id)[:48] or "job"
    return f"{slug}-{digest}"


@dataclass
class Workspace:
    job_id: str
    key: str
    path: Path
    manager: "WorkspaceManager" = field(repr=False, compare=False)

    @property
    def input_dir(self) -> Path:
        return self.path / "input"

    @property
    def input_path(self) -> Path:
        return self.input_dir / INPUT_NAME

    @property
    def output_dir(self) -> Path:
        return self.path / "output"

    def release(self) -> None:
        self.manager.release(self)

    def __enter__(self) -> "Workspace":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class WorkspaceManager:
    def __init__(self, root: Path | str | None = None) -> None:
        self.root = Path(root if root is not None else settings.TRANSCODER_WORKSPACE_ROOT)
        self._active: dict[str, Path] = {}
        self._lock = threading.Lock()

    def path_for(self, job_id: str) -> Path:
        return self.root / workspace_key(job_id)

    def is_active(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._active

    def allocate(self, job_id: str) -> Workspace:
        path = self.path_for(job_id)
        with self._lock:
            if job_id in self._active:
                raise ConflictError(f"job {job_id!r} already has an active workspace")
            try:
                self.root.mkdir(parents=True, exist_ok=True)
                # Exclusive create: a leftover or another worker's directory is a conflict.
                path.mkdir()
            except FileExistsError:
                raise ConflictError(f"workspace {path} already exists for job {job_id!r}")
            except OSError as exc:
                raise WorkspaceError("IOFailure", f"cannot create workspace {path}: {exc}") from exc
            self._active[job_id] = path

        try:
            (path / "input").mkdir()
            (path / "output").mkdir()
        except OSError as exc:
            self._remove(job_id, path)
            raise WorkspaceError("IOFailure", f"cannot prepare workspace {path}: {exc}") from exc

        logger.info("Allocated workspace %s for job %s", path, job_id)
        return Workspace(job_id=job_id, key=path.name, path=path, manager=self)

    def release(self, workspace: Workspace) -> None:
        """Remove the workspace tree. Safe to call more than once."""
        self._remove(workspace.job_id, workspace.path)

    def _remove(self, job_id: str, path: Path) -> None:
        # Delete before unregistering so a new allocation never sees stale files.
        shutil.rmtree(path, ignore_errors=True)
        if path.exists():
            logger.error("Workspace %s for job %s could not be fully removed", path, job_id)
        with self._lock:
            if self._active.get(job_id) == path:
                del self._active[job_id]
                logger.info("Released workspace %s for job %s", path, job_id)


_default_manager: WorkspaceManager | None = None
_default_lock = threading.Lock()


def get_workspace_manager() -> WorkspaceManager:
    """Process-wide manager; the allocation table must be shared by all requests."""
    global _default_manager
    with _default_lock:
        if _default_manager is None:
            _default_manager = WorkspaceManager()
        return _default_manager
