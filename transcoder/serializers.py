from rest_framework import serializers

from .fetcher import SourceLocator
from .models import Job


class JobSerializer(serializers.ModelSerializer):
    jobId = serializers.CharField(source="job_id", read_only=True)
    sourceUrl = serializers.CharField(source="source_url", read_only=True)
    transcodedUrl = serializers.CharField(source="transcoded_url", read_only=True)
    errorKind = serializers.CharField(source="error_kind", read_only=True)
    errorDetail = serializers.CharField(source="error_detail", read_only=True)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)
    updatedAt = serializers.DateTimeField(source="updated_at", read_only=True)

    class Meta:
        model = Job
        # source_headers may carry credentials; never echo them back.
        fields = [
            "jobId",
            "sourceUrl",
            "status",
            "stage",
            "transcodedUrl",
            "errorKind",
            "errorDetail",
            "createdAt",
            "updatedAt",
        ]


class SourceLocatorSerializer(serializers.Serializer):
    url = serializers.URLField(max_length=2048)
    headers = serializers.DictField(child=serializers.CharField(allow_blank=True), required=False)


class TranscodeRequestSerializer(serializers.Serializer):
    jobId = serializers.CharField(max_length=255)
    sourceLocator = SourceLocatorSerializer()

    def to_source(self) -> SourceLocator:
        data = self.validated_data["sourceLocator"]
        return SourceLocator(url=data["url"], headers=data.get("headers") or {})
