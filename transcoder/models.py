from django.db import models


class Job(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending"
        PROCESSING = "processing"
        READY = "ready"
        FAILED = "failed"

    # Caller-supplied identity; one pipeline run at a time holds it.
    job_id = models.CharField(primary_key=True, max_length=255)
    source_url = models.URLField(max_length=2048)
    source_headers = models.JSONField(default=dict, blank=True)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    stage = models.CharField(max_length=16, blank=True, default="")     # last orchestrator state
    transcoded_url = models.URLField(max_length=2048, blank=True, default="")
    error_kind = models.CharField(max_length=64, blank=True, default="")
    error_detail = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.job_id} ({self.status})"

    @property
    def is_terminal(self) -> bool:
        return self.status in (self.Status.READY, self.Status.FAILED)
