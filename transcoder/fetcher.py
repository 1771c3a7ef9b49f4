"""Streamed download of the source media into a job workspace."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

import requests
from django.conf import settings

from .deadlines import Deadline
from .exceptions import FetchError
from .workspace import Workspace

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceLocator:
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class RawMedia:
    path: Path
    size: int
    content_type: str | None = None


def fetch(source: SourceLocator, workspace: Workspace, deadline: Deadline | None = None) -> RawMedia:
    """
    Download ``source`` into the workspace input slot.

    Bytes go to ``<input>.part`` and are renamed into place only after the
    whole body arrived, so a failed or timed-out download leaves nothing in the
    input slot.
    """
    deadline = deadline or Deadline.unbounded()
    budget = deadline.clip(settings.FETCH_TIMEOUT)
    if budget is not None and budget <= 0:
        raise FetchError("Timeout", "job deadline expired before download started")
    started = time.monotonic()

    target = workspace.input_path
    partial = target.with_name(target.name + ".part")
    target.parent.mkdir(parents=True, exist_ok=True)

    logger.info("Downloading %s for job %s", source.url, workspace.job_id)
    try:
        response = requests.get(
            source.url,
            headers=dict(source.headers or {}),
            stream=True,
            timeout=(settings.FETCH_CONNECT_TIMEOUT, budget),
        )
    except requests.Timeout as exc:
        raise FetchError("Timeout", f"timed out connecting to {source.url}: {exc}") from exc
    except requests.RequestException as exc:
        raise FetchError("Network", f"request to {source.url} failed: {exc}") from exc

    try:
        if response.status_code in (401, 403):
            raise FetchError("Auth", f"source rejected credentials: HTTP {response.status_code}")
        if not 200 <= response.status_code < 300:
            raise FetchError("Network", f"unexpected HTTP {response.status_code} from {source.url}")

        size = 0
        with open(partial, "wb") as f:
            for chunk in response.iter_content(chunk_size=settings.FETCH_CHUNK_SIZE):
                if budget is not None and time.monotonic() - started > budget:
                    raise FetchError("Timeout", f"download exceeded {budget:.0f}s")
                if chunk:
                    f.write(chunk)
                    size += len(chunk)
        partial.replace(target)
    except FetchError:
        partial.unlink(missing_ok=True)
        raise
    except requests.Timeout as exc:
        partial.unlink(missing_ok=True)
        raise FetchError("Timeout", f"read timed out: {exc}") from exc
    except requests.RequestException as exc:
        partial.unlink(missing_ok=True)
        raise FetchError("Network", f"download interrupted: {exc}") from exc
    except OSError as exc:
        partial.unlink(missing_ok=True)
        raise FetchError("IO", f"cannot write {partial}: {exc}") from exc
    finally:
        response.close()

    logger.info("Downloaded %d bytes for job %s", size, workspace.job_id)
    return RawMedia(path=target, size=size, content_type=response.headers.get("content-type"))
