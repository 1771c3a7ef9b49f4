"""
Management command to clean up abandoned job workspaces.

A worker that is killed mid-job (OOM, SIGKILL, host reboot) cannot release
its workspace, and a leftover directory blocks new runs of that job id.
"""
from datetime import timedelta
import shutil
import time

from django.conf import settings
from django.core.management.base import BaseCommand

from transcoder.exceptions import CommitError
from transcoder.models import Job
from transcoder.records import JobCommitter
from transcoder.workspace import get_workspace_manager, workspace_key

ABANDONED_DETAIL = "worker abandoned workspace"


class Command(BaseCommand):
    help = 'Remove job workspaces left behind by crashed workers'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be deleted without actually deleting'
        )
        parser.add_argument(
            '--max-age',
            type=int,
            default=120,
            help='Minutes since last modification before a workspace counts as abandoned (default: 120)'
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        max_age = timedelta(minutes=options['max_age'])
        manager = get_workspace_manager()
        root = manager.root

        if not root.exists():
            self.stdout.write(self.style.SUCCESS("No workspace root found"))
            return

        if max_age.total_seconds() < settings.JOB_TIMEOUT:
            self.stdout.write(self.style.WARNING(
                f"--max-age is shorter than JOB_TIMEOUT ({settings.JOB_TIMEOUT}s); "
                "workspaces of running jobs may be removed"
            ))

        now = time.time()
        stale = []
        for path in sorted(p for p in root.iterdir() if p.is_dir()):
            age = timedelta(seconds=now - path.stat().st_mtime)
            if age > max_age:
                stale.append((path, age))

        if not stale:
            self.stdout.write(self.style.SUCCESS(
                f"No workspaces older than {options['max_age']} minutes"
            ))
            return

        for path, age in stale:
            size = sum(f.stat().st_size for f in path.rglob('*') if f.is_file())
            age_str = str(age).split('.')[0]  # Remove microseconds
            self.stdout.write(f"{path.name:70} | Age: {age_str:15} | Size: {size / (1024 * 1024):6.1f} MB")

        if dry_run:
            self.stdout.write(self.style.WARNING(f"DRY RUN: Would delete {len(stale)} workspace(s)"))
            return

        # Directory names are one-way hashes of job ids; match them against running jobs.
        running = {
            workspace_key(job_id): job_id
            for job_id in Job.objects.filter(status=Job.Status.PROCESSING).values_list("job_id", flat=True)
        }
        committer = JobCommitter()

        deleted = 0
        for path, _ in stale:
            try:
                shutil.rmtree(path)
            except OSError as e:
                self.stdout.write(self.style.ERROR(f"Failed to delete {path.name}: {e}"))
                continue
            deleted += 1

            job_id = running.get(path.name)
            if job_id is None:
                continue
            try:
                committer.commit_failure(job_id, "PipelineError.Internal", ABANDONED_DETAIL)
            except CommitError as e:
                self.stdout.write(self.style.ERROR(f"Failed to mark job {job_id} failed: {e}"))
                continue
            self.stdout.write(f"Marked job {job_id} failed")

        self.stdout.write(self.style.SUCCESS(f"Deleted {deleted} of {len(stale)} workspace(s)"))
