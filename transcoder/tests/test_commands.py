"""
Tests for the cleanup_workspaces management command
"""

import os
import tempfile
import time
from io import StringIO
from pathlib import Path
from unittest.mock import patch

from django.core.management import call_command
from django.test import TestCase, override_settings

from transcoder.models import Job
from transcoder.workspace import WorkspaceManager


class CleanupWorkspacesCommandTest(TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.manager = WorkspaceManager(Path(self.tmp.name))
        patcher = patch(
            "transcoder.management.commands.cleanup_workspaces.get_workspace_manager",
            return_value=self.manager,
        )
        patcher.start()
        self.addCleanup(patcher.stop)

        self.stale = self.manager.allocate("crashed-job").path
        old = time.time() - 3 * 3600
        os.utime(self.stale, (old, old))
        self.fresh = self.manager.allocate("running-job").path

    def tearDown(self):
        self.tmp.cleanup()

    def test_removes_only_old_workspaces(self):
        out = StringIO()
        call_command("cleanup_workspaces", "--max-age", "120", stdout=out)

        self.assertFalse(self.stale.exists())
        self.assertTrue(self.fresh.exists())
        self.assertIn("Deleted 1 of 1", out.getvalue())

    def test_dry_run_keeps_everything(self):
        out = StringIO()
        call_command("cleanup_workspaces", "--dry-run", stdout=out)

        self.assertTrue(self.stale.exists())
        self.assertIn("DRY RUN", out.getvalue())

    def test_nothing_to_clean(self):
        out = StringIO()
        call_command("cleanup_workspaces", "--max-age", "100000", stdout=out)

        self.assertIn("No workspaces older than", out.getvalue())

    def test_marks_abandoned_job_failed(self):
        Job.objects.create(job_id="crashed-job", source_url="https://example.com/a.mp4",
                           status=Job.Status.PROCESSING, stage="TRANSCODING")
        Job.objects.create(job_id="running-job", source_url="https://example.com/b.mp4",
                           status=Job.Status.PROCESSING, stage="FETCHING")
        out = StringIO()

        call_command("cleanup_workspaces", stdout=out)

        crashed = Job.objects.get(pk="crashed-job")
        self.assertEqual(crashed.status, Job.Status.FAILED)
        self.assertEqual(crashed.error_kind, "PipelineError.Internal")
        self.assertEqual(crashed.error_detail, "worker abandoned workspace")
        self.assertEqual(Job.objects.get(pk="running-job").status, Job.Status.PROCESSING)
        self.assertIn("Marked job crashed-job failed", out.getvalue())

    def test_dry_run_leaves_records_alone(self):
        Job.objects.create(job_id="crashed-job", source_url="https://example.com/a.mp4",
                           status=Job.Status.PROCESSING)

        call_command("cleanup_workspaces", "--dry-run", stdout=StringIO())

        self.assertEqual(Job.objects.get(pk="crashed-job").status, Job.Status.PROCESSING)

    @override_settings(JOB_TIMEOUT=1800)
    def test_warns_when_max_age_is_below_job_timeout(self):
        out = StringIO()

        call_command("cleanup_workspaces", "--max-age", "10", "--dry-run", stdout=out)

        self.assertIn("shorter than JOB_TIMEOUT", out.getvalue())
