"""ffmpeg invocation: stream-copy the source into an HLS package."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from django.conf import settings

from .deadlines import Deadline
from .exceptions import TranscodeError
from .fetcher import RawMedia
from .manifest import segment_references
from .workspace import Workspace

logger = logging.getLogger(__name__)

MANIFEST_NAME = "output.m3u8"
SEGMENT_PATTERN = "seg%d.ts"
MANIFEST_SUFFIXES = {".m3u8"}
SEGMENT_SUFFIXES = {".ts", ".m2ts"}

# Enough stderr to diagnose a failure without bloating the job record.
DIAGNOSTICS_LIMIT = 4000


@dataclass(frozen=True)
class Package:
    manifest: Path
    segments: tuple[Path, ...]   # playback order


def build_command(input_path: Path, output_dir: Path, *, segment_seconds: int | None = None,
                  ffmpeg_path: str | None = None) -> list[str]:
    """Argument vector for the engine; paths are discrete arguments, never shell text."""
    return [
        ffmpeg_path or settings.FFMPEG_PATH,
        "-hide_banner",
        "-nostdin",
        "-y",
        "-i", str(input_path),
        "-c", "copy",
        "-start_number", "0",
        "-hls_time", str(segment_seconds or settings.HLS_SEGMENT_SECONDS),
        "-hls_list_size", "0",
        "-hls_segment_filename", str(output_dir / SEGMENT_PATTERN),
        "-f", "hls",
        str(output_dir / MANIFEST_NAME),
    ]


def _tail(data: bytes) -> str:
    text = data.decode("utf-8", errors="ignore") if data else ""
    return text[-DIAGNOSTICS_LIMIT:]


def transcode(raw_media: RawMedia, workspace: Workspace, deadline: Deadline | None = None) -> Package:
    deadline = deadline or Deadline.unbounded()
    timeout = deadline.clip(settings.TRANSCODE_TIMEOUT)
    if timeout is not None and timeout <= 0:
        raise TranscodeError("Timeout", "job deadline expired before transcoding started")

    output_dir = workspace.output_dir
    output_dir.mkdir(parents=True, exist_ok=True)
    cmd = build_command(raw_media.path, output_dir)
    logger.info("Running engine for job %s: %s", workspace.job_id, cmd)

    try:
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=str(workspace.path),
        )
    except OSError as exc:
        raise TranscodeError("EngineFailure", f"cannot start engine {cmd[0]!r}: {exc}") from exc

    try:
        _, stderr = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        proc.kill()
        _, stderr = proc.communicate()
        logger.warning("Engine timed out after %ss for job %s", timeout, workspace.job_id)
        raise TranscodeError("Timeout", f"engine exceeded {timeout:.0f}s; {_tail(stderr)}".strip())
    except BaseException:
        # Interrupted (worker shutdown, task revoked): never leave ffmpeg running.
        proc.kill()
        proc.wait()
        raise

    if proc.returncode != 0:
        logger.warning("Engine exited %s for job %s", proc.returncode, workspace.job_id)
        raise TranscodeError("EngineFailure", _tail(stderr) or f"engine exited {proc.returncode}",
                             exit_code=proc.returncode)

    manifests = [p for p in output_dir.iterdir() if p.suffix.lower() in MANIFEST_SUFFIXES]
    if len(manifests) != 1:
        raise TranscodeError("MissingManifest",
                             f"expected one manifest in output, found {len(manifests)}")

    manifest = manifests[0]
    order = segment_references(manifest.read_text(encoding="utf-8"))
    segments = tuple(
        output_dir / name for name in order
        if Path(name).name == name and (output_dir / name).is_file()
    )
    logger.info("Engine produced %d segments for job %s", len(segments), workspace.job_id)
    return Package(manifest=manifest, segments=segments)
