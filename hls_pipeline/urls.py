from django.urls import include, path

urlpatterns = [
    path("", include("transcoder.urls")),
]
