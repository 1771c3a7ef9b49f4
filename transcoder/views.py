import logging

from django.db import IntegrityError, transaction
from rest_framework import status, views
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from .exceptions import ConflictError, PipelineError
from .models import Job
from .pipeline import TranscodePipeline
from .serializers import JobSerializer, TranscodeRequestSerializer
from .tasks import transcode_job
from .workspace import get_workspace_manager

logger = logging.getLogger(__name__)

# A record in either state has a pipeline queued or running for it.
IN_FLIGHT = (Job.Status.PENDING, Job.Status.PROCESSING)


def conflict_response(job_id: str) -> Response:
    return Response(
        {"error": "Job already in flight", "details": {"kind": "ConflictError.AlreadyExists", "jobId": job_id}},
        status=status.HTTP_409_CONFLICT,
    )


def failure_response(error: PipelineError) -> Response:
    return Response(
        {"error": "Transcoding failed", "details": error.as_dict()},
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def is_queued_or_running(job_id: str) -> bool:
    return Job.objects.filter(pk=job_id, status__in=IN_FLIGHT).exists()


class TranscodeView(views.APIView):
    """
    Runs the whole pipeline inside the request and answers once the job
    record is committed: 200 with the manifest URL, or 500 with the failure.
    """
    permission_classes = [AllowAny]
    authentication_classes = []

    # Overridable in tests; built per request so clients are never module globals.
    pipeline_factory = TranscodePipeline

    def post(self, request):
        ser = TranscodeRequestSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        job_id = ser.validated_data["jobId"]

        # Queued by the async endpoint but not yet picked up by a worker.
        if is_queued_or_running(job_id):
            return conflict_response(job_id)

        try:
            result = self.pipeline_factory().run(job_id, ser.to_source())
        except ConflictError:
            return conflict_response(job_id)
        except Exception as exc:
            # run() already recorded the job as failed and logged the traceback.
            return failure_response(PipelineError("Internal", f"{type(exc).__name__}: {exc}"))

        if not result.ok:
            return failure_response(result.error)

        return Response({
            "message": "Transcoding complete",
            "manifestUrl": result.manifest_url,
            "job": JobSerializer(result.job).data,
        })


class TranscodeAsyncView(views.APIView):
    """
    Records the job as pending and hands it to a Celery worker; poll
    /jobs/<job_id>/ for the outcome.
    """
    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request):
        ser = TranscodeRequestSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        job_id = ser.validated_data["jobId"]
        source = ser.to_source()

        if get_workspace_manager().path_for(job_id).exists():
            return conflict_response(job_id)

        try:
            with transaction.atomic():
                # Row lock: of two requests for the same job only one gets to enqueue it.
                job = Job.objects.select_for_update().filter(pk=job_id).first()
                created = job is None
                if created:
                    job = Job(job_id=job_id)
                elif job.status in IN_FLIGHT:
                    return conflict_response(job_id)
                job.source_url = source.url
                job.source_headers = dict(source.headers)
                job.status = Job.Status.PENDING
                job.stage = ""
                job.transcoded_url = ""
                job.error_kind = ""
                job.error_detail = ""
                job.save(force_insert=created)
        except IntegrityError:
            # A concurrent request inserted the record first.
            return conflict_response(job_id)

        transcode_job.delay(job_id)  # queue background processing
        return Response({"jobId": job_id}, status=status.HTTP_202_ACCEPTED)


class JobDetailView(views.APIView):
    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request, job_id):
        try:
            job = Job.objects.get(pk=job_id)
        except Job.DoesNotExist:
            return Response({"detail": "Not found"}, status=404)
        return Response(JobSerializer(job).data)
