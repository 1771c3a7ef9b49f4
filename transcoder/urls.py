from django.urls import path
from .views import JobDetailView, TranscodeAsyncView, TranscodeView

urlpatterns = [
    path("transcode", TranscodeView.as_view(), name="transcode"),
    path("transcode/async", TranscodeAsyncView.as_view(), name="transcode_async"),
    path("jobs/<str:job_id>/", JobDetailView.as_view(), name="job_detail"),
]
