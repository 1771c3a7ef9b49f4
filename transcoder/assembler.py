"""
Publish an HLS package: upload segments, point the manifest at them, upload
the manifest.

Object keys are derived from the workspace key and the segment filename, so a
retried job overwrites its own objects instead of piling up new ones. When an
attempt fails after some segments were uploaded, those objects are deleted on
a best-effort basis.
"""

from __future__ import annotations

import logging
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from pathlib import Path

from django.conf import settings

from .deadlines import Deadline
from .engine import MANIFEST_SUFFIXES, SEGMENT_SUFFIXES, Package
from .exceptions import AssembleError
from .manifest import rewrite_manifest, segment_references
from .s3 import RemoteAsset, RemoteStore, RemoteStoreError, output_key
from .workspace import Workspace

logger = logging.getLogger(__name__)

PUBLISHED_MANIFEST_NAME = "index.m3u8"


def classify_outputs(output_dir: Path) -> tuple[Path, dict[str, Path]]:
    """Return (manifest, {segment filename: path}) for the engine output directory."""
    manifests = []
    segments = {}
    for entry in sorted(output_dir.iterdir()):
        if not entry.is_file():
            continue
        suffix = entry.suffix.lower()
        if suffix in MANIFEST_SUFFIXES:
            manifests.append(entry)
        elif suffix in SEGMENT_SUFFIXES:
            segments[entry.name] = entry
        else:
            logger.debug("Ignoring unexpected engine output %s", entry.name)

    if len(manifests) != 1:
        raise AssembleError("RewriteFailure", f"expected exactly one manifest, found {len(manifests)}")
    return manifests[0], segments


def check_references(references: list[str], segments: dict[str, Path]) -> None:
    """Manifest references and produced segment files must match one to one."""
    seen = set()
    for ref in references:
        if ref in seen:
            raise AssembleError("RewriteFailure", f"segment {ref!r} referenced twice", filename=ref)
        seen.add(ref)
        if ref not in segments:
            raise AssembleError("RewriteFailure", f"manifest references missing segment {ref!r}", filename=ref)

    unreferenced = sorted(set(segments) - seen)
    if unreferenced:
        raise AssembleError(
            "RewriteFailure",
            f"segments not referenced by manifest: {', '.join(unreferenced)}",
            filename=unreferenced[0],
        )


class PackageAssembler:
    def __init__(self, remote_store: RemoteStore, *, concurrency: int | None = None) -> None:
        self.remote_store = remote_store
        self.concurrency = max(1, concurrency or settings.UPLOAD_CONCURRENCY)

    def assemble(self, package: Package, workspace: Workspace, deadline: Deadline | None = None) -> str:
        deadline = deadline or Deadline.unbounded()
        manifest_path, segments = classify_outputs(package.manifest.parent)
        manifest_text = manifest_path.read_text(encoding="utf-8")
        references = segment_references(manifest_text)
        check_references(references, segments)

        uploaded: dict[str, RemoteAsset] = {}
        try:
            self._upload_segments(references, segments, workspace, deadline, uploaded)

            segment_map = {name: uploaded[name].address for name in references}
            rewritten = rewrite_manifest(manifest_text, segment_map)

            published = workspace.path / PUBLISHED_MANIFEST_NAME
            published.write_text(rewritten, encoding="utf-8")
            if deadline.expired:
                raise AssembleError("UploadFailure", "job deadline expired before manifest upload",
                                    filename=PUBLISHED_MANIFEST_NAME)
            try:
                asset = self.remote_store.upload(published, output_key(workspace.key, PUBLISHED_MANIFEST_NAME))
            except RemoteStoreError as exc:
                raise AssembleError("UploadFailure", str(exc), filename=PUBLISHED_MANIFEST_NAME) from exc
        except AssembleError:
            self._discard(uploaded.values())
            raise

        logger.info("Published manifest for job %s with %d segments: %s",
                    workspace.job_id, len(references), asset.address)
        return asset.address

    def _upload_segments(self, references, segments, workspace, deadline, uploaded) -> None:
        if not references:
            return

        workers = min(self.concurrency, len(references))
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"upload-{workspace.key[:16]}")
        futures: dict[Future, str] = {}
        try:
            for name in references:
                key = output_key(workspace.key, name)
                futures[executor.submit(self.remote_store.upload, segments[name], key)] = name

            done, pending = wait(futures, timeout=deadline.remaining(), return_when=FIRST_EXCEPTION)
            for future in done:
                if future.exception() is None:
                    uploaded[futures[future]] = future.result()

            for future in done:
                exc = future.exception()
                if exc is not None:
                    name = futures[future]
                    raise AssembleError("UploadFailure", f"upload of {name} failed: {exc}", filename=name) from exc

            if pending:
                name = futures[next(iter(pending))]
                raise AssembleError("UploadFailure", "job deadline expired during segment upload", filename=name)
        finally:
            executor.shutdown(wait=True, cancel_futures=True)
            # Uploads already running when we gave up still finished; record them for cleanup.
            for future, name in futures.items():
                if name not in uploaded and future.done() and not future.cancelled() and future.exception() is None:
                    uploaded[name] = future.result()

        logger.info("Uploaded %d segments for job %s", len(uploaded), workspace.job_id)

    def _discard(self, assets) -> None:
        for asset in assets:
            try:
                self.remote_store.delete(asset.id)
            except RemoteStoreError:
                logger.warning("Could not delete orphaned object %s", asset.id, exc_info=True)
