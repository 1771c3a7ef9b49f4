"""
Line-oriented HLS media playlist handling.

In an M3U8 playlist every line is one of:
  - a tag or comment, starting with ``#``
  - blank
  - a URI: the segment reference for the preceding ``#EXTINF``

Only URI lines are segment references, and a reference is rewritten only when
the whole token equals a key of the segment map. ``seg1.ts`` therefore never
touches ``seg10.ts``.
"""

from __future__ import annotations

import re
from typing import Iterator, Mapping
from urllib.parse import urlsplit

from .exceptions import AssembleError


_LINE_BREAK = re.compile(r"(\r\n|\n|\r)")


def _lines(text: str) -> Iterator[tuple[str, str]]:
    """Yield (content, line ending) pairs. Only CR, LF and CRLF end a line."""
    parts = _LINE_BREAK.split(text)
    for i in range(0, len(parts), 2):
        content = parts[i]
        ending = parts[i + 1] if i + 1 < len(parts) else ""
        if content or ending:
            yield content, ending


def is_reference(content: str) -> bool:
    stripped = content.strip()
    return bool(stripped) and not stripped.startswith("#")


def is_absolute(token: str) -> bool:
    parts = urlsplit(token)
    return bool(parts.scheme and parts.netloc)


def segment_references(text: str) -> list[str]:
    """Segment reference tokens in playback order."""
    refs = []
    for content, _ in _lines(text):
        if is_reference(content):
            refs.append(content.strip())
    return refs


def rewrite_manifest(text: str, segment_map: Mapping[str, str]) -> str:
    """
    Replace each local segment reference with its uploaded address.

    Already-absolute references are left as they are, which makes the rewrite
    idempotent. Any other reference missing from ``segment_map`` raises
    ``AssembleError(RewriteFailure)``.
    """
    out = []
    for content, ending in _lines(text):
        line = content + ending
        if not is_reference(content):
            out.append(line)
            continue

        token = content.strip()
        if token in segment_map:
            leading = content[: len(content) - len(content.lstrip())]
            out.append(f"{leading}{segment_map[token]}{ending}")
        elif is_absolute(token):
            out.append(line)
        else:
            raise AssembleError(
                "RewriteFailure",
                f"manifest references {token!r} which was never uploaded",
                filename=token,
            )
    return "".join(out)
