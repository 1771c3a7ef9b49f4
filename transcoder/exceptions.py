"""Error taxonomy for the transcode pipeline.

Every stage failure is a :class:`PipelineError` subclass carrying a ``kind``
(one of the subclass' ``kinds``) and diagnostic ``detail`` text. The qualified
kind (``"TranscodeError.EngineFailure"``) is what lands in the job record and
in HTTP error bodies.

Malformed requests never reach the pipeline; they are rejected by the DRF
serializers with ``rest_framework.exceptions.ValidationError`` (HTTP 400).
"""

from __future__ import annotations


class PipelineError(Exception):
    category = "PipelineError"
    kinds: tuple[str, ...] = ("Internal",)

    def __init__(self, kind: str, detail: str = "") -> None:
        if kind not in self.kinds:
            raise ValueError(f"{self.category} has no kind {kind!r}")
        super().__init__(f"{self.category}.{kind}: {detail}" if detail else f"{self.category}.{kind}")
        self.kind = kind
        self.detail = detail

    @property
    def qualified_kind(self) -> str:
        return f"{self.category}.{self.kind}"

    def as_dict(self) -> dict:
        return {"kind": self.qualified_kind, "detail": self.detail}


class WorkspaceError(PipelineError):
    category = "WorkspaceError"
    kinds = ("AlreadyExists", "IOFailure")


class ConflictError(WorkspaceError):
    """A pipeline for this job id is already in flight."""

    category = "ConflictError"
    kinds = ("AlreadyExists",)

    def __init__(self, detail: str = "") -> None:
        super().__init__("AlreadyExists", detail)


class FetchError(PipelineError):
    category = "FetchError"
    kinds = ("Network", "Auth", "IO", "Timeout")


class TranscodeError(PipelineError):
    category = "TranscodeError"
    kinds = ("EngineFailure", "Timeout", "MissingManifest")

    def __init__(self, kind: str, detail: str = "", *, exit_code: int | None = None) -> None:
        super().__init__(kind, detail)
        self.exit_code = exit_code

    def as_dict(self) -> dict:
        data = super().as_dict()
        if self.exit_code is not None:
            data["exitCode"] = self.exit_code
        return data


class AssembleError(PipelineError):
    category = "AssembleError"
    kinds = ("UploadFailure", "RewriteFailure")

    def __init__(self, kind: str, detail: str = "", *, filename: str | None = None) -> None:
        super().__init__(kind, detail)
        self.filename = filename

    def as_dict(self) -> dict:
        data = super().as_dict()
        if self.filename:
            data["filename"] = self.filename
        return data


class CommitError(PipelineError):
    """Record store unreachable or rejected the write."""

    category = "CommitError"
    kinds = ("StoreFailure", "NotFound")
