"""Test doubles shared by the transcoder tests."""

import stat
import sys
import threading
import time
from pathlib import Path

import boto3
from botocore.stub import Stubber

from transcoder.engine import Package
from transcoder.fetcher import RawMedia
from transcoder.s3 import RemoteAsset, RemoteStoreError

BASE_ADDRESS = "https://cdn.example.com/hls-output"


def stubbed_s3_client():
    """Real boto3 S3 client whose requests are answered by a Stubber."""
    client = boto3.client(
        "s3", region_name="us-east-1", aws_access_key_id="test", aws_secret_access_key="test",
    )
    return client, Stubber(client)


class FakeRemoteStore:
    """In-memory stand-in for RemoteStore; thread-safe like the boto3 client."""

    def __init__(self, fail_on=None, delay=0.0):
        self.fail_on = set(fail_on or ())
        self.delay = delay
        self.objects = {}
        self.upload_order = []
        self.deleted = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def object_url(self, key):
        return f"{BASE_ADDRESS}/{key}"

    def upload(self, local_path, name):
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            if Path(name).name in self.fail_on:
                raise RemoteStoreError(f"simulated failure for {name}")
            data = Path(local_path).read_bytes()
            with self._lock:
                self.objects[name] = data
                self.upload_order.append(name)
            return RemoteAsset(id=name, address=self.object_url(name))
        finally:
            with self._lock:
                self.in_flight -= 1

    def delete(self, key):
        with self._lock:
            self.objects.pop(key, None)
            self.deleted.append(key)

    def manifest_text(self):
        keys = [k for k in self.objects if k.endswith(".m3u8")]
        assert len(keys) == 1, keys
        return self.objects[keys[0]].decode("utf-8")


def write_playlist(output_dir, names, *, target_duration=10, manifest_name="output.m3u8"):
    """Write an ffmpeg-style VOD playlist plus one small file per segment."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    lines = [
        "#EXTM3U",
        "#EXT-X-VERSION:3",
        f"#EXT-X-TARGETDURATION:{target_duration}",
        "#EXT-X-MEDIA-SEQUENCE:0",
    ]
    for name in names:
        lines.append(f"#EXTINF:{target_duration}.000000,")
        lines.append(name)
        (output_dir / name).write_bytes(f"segment {name}".encode())
    lines.append("#EXT-X-ENDLIST")
    manifest = output_dir / manifest_name
    manifest.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return manifest


FAKE_ENGINE = '''\
import sys, time
from pathlib import Path

MODE = {mode!r}
SEGMENTS = {segments!r}

args = sys.argv[1:]
manifest = Path(args[-1])
pattern = args[args.index("-hls_segment_filename") + 1]

if MODE == "sleep":
    time.sleep(60)
if MODE == "corrupt":
    sys.stderr.write("Invalid data found when processing input\\n")
    sys.exit(1)
if MODE == "silent":
    sys.exit(0)

lines = ["#EXTM3U", "#EXT-X-VERSION:3", "#EXT-X-TARGETDURATION:10", "#EXT-X-MEDIA-SEQUENCE:0"]
for i in range(SEGMENTS):
    seg = Path(pattern.replace("%d", str(i)))
    seg.write_bytes(b"ts" * 10)
    lines += ["#EXTINF:10.000000,", seg.name]
lines.append("#EXT-X-ENDLIST")
manifest.write_text("\\n".join(lines) + "\\n")
'''


def write_fake_engine(directory, mode="ok", segments=3):
    """Create an executable that behaves like ffmpeg's HLS muxer for the given mode."""
    path = Path(directory) / f"fake-ffmpeg-{mode}"
    path.write_text(f"#!{sys.executable}\n" + FAKE_ENGINE.format(mode=mode, segments=segments))
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


def tree_files(path):
    path = Path(path)
    if not path.exists():
        return []
    return list(path.rglob("*"))


def fake_fetch(source, workspace, deadline=None):
    workspace.input_path.write_bytes(b"raw media")
    return RawMedia(path=workspace.input_path, size=9)


def fake_engine(names):
    """Engine stand-in that writes a playlist with the given segment names."""
    def run(raw_media, workspace, deadline=None):
        manifest = write_playlist(workspace.output_dir, names)
        return Package(manifest=manifest, segments=tuple(workspace.output_dir / n for n in names))
    return run
