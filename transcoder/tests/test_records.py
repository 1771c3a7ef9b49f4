"""
Tests for transcoder/records.py
"""

from unittest.mock import patch

from django.db import DatabaseError
from django.test import TestCase

from transcoder.exceptions import CommitError
from transcoder.fetcher import SourceLocator
from transcoder.models import Job
from transcoder.records import ERROR_DETAIL_LIMIT, JobCommitter, JobRecordStore


class JobCommitterTest(TestCase):
    def setUp(self):
        self.committer = JobCommitter()
        self.source = SourceLocator(url="https://storage.example.com/raw.mp4", headers={"X-Key": "k"})

    def test_start_creates_processing_record(self):
        job = self.committer.start("job-42", self.source)

        self.assertEqual(job.status, Job.Status.PROCESSING)
        self.assertEqual(job.source_headers, {"X-Key": "k"})

    def test_start_resets_previous_outcome(self):
        Job.objects.create(job_id="job-42", source_url="https://old.example.com/a.mp4",
                           status=Job.Status.FAILED, error_kind="FetchError.Network", error_detail="boom")

        job = self.committer.start("job-42", self.source)

        self.assertEqual(job.status, Job.Status.PROCESSING)
        self.assertEqual(job.error_detail, "")
        self.assertEqual(job.source_url, self.source.url)

    def test_commit_marks_ready(self):
        self.committer.start("job-42", self.source)

        self.committer.commit("job-42", "https://cdn.example.com/index.m3u8")

        job = Job.objects.get(pk="job-42")
        self.assertEqual(job.status, Job.Status.READY)
        self.assertEqual(job.transcoded_url, "https://cdn.example.com/index.m3u8")
        self.assertTrue(job.is_terminal)

    def test_commit_failure_truncates_detail(self):
        self.committer.start("job-42", self.source)

        self.committer.commit_failure("job-42", "TranscodeError.EngineFailure", "x" * (ERROR_DETAIL_LIMIT + 100))

        job = Job.objects.get(pk="job-42")
        self.assertEqual(job.status, Job.Status.FAILED)
        self.assertEqual(job.error_kind, "TranscodeError.EngineFailure")
        self.assertEqual(len(job.error_detail), ERROR_DETAIL_LIMIT)

    def test_commit_failure_without_detail_uses_kind(self):
        self.committer.start("job-42", self.source)

        job = self.committer.commit_failure("job-42", "FetchError.Timeout", "")

        self.assertEqual(job.error_detail, "FetchError.Timeout")

    def test_commit_unknown_job_is_not_found(self):
        with self.assertRaises(CommitError) as ctx:
            self.committer.commit("missing", "https://cdn.example.com/index.m3u8")

        self.assertEqual(ctx.exception.kind, "NotFound")


class JobRecordStoreTest(TestCase):
    def test_get_record(self):
        Job.objects.create(job_id="job-1", source_url="https://example.com/a.mp4")

        self.assertEqual(JobRecordStore().get_record("job-1").job_id, "job-1")

    def test_get_missing_record(self):
        with self.assertRaises(CommitError) as ctx:
            JobRecordStore().get_record("nope")

        self.assertEqual(ctx.exception.kind, "NotFound")

    @patch("transcoder.records.Job.objects.select_for_update")
    def test_database_error_is_store_failure(self, mock_select):
        mock_select.side_effect = DatabaseError("connection lost")

        with self.assertRaises(CommitError) as ctx:
            JobRecordStore().update_record("job-1", {"status": Job.Status.READY})

        self.assertEqual(ctx.exception.kind, "StoreFailure")
