from pathlib import Path
import os
from dotenv import load_dotenv
from django.core.exceptions import ImproperlyConfigured

# -----------------------------------------------------
# Helpers
# -----------------------------------------------------
def env(name: str, default=None, *, required: bool = False):
    val = os.getenv(name, default)
    if required and (val is None or (isinstance(val, str) and val.strip() == "")):
        raise ImproperlyConfigured(f"Missing required environment variable: {name}")
    return val

def env_bool(name: str, default: bool = False) -> bool:
    return str(os.getenv(name, str(default))).lower() in {"1", "true", "yes", "on"}

def env_int(name: str, default: int) -> int:
    raw = env(name, str(default))
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ImproperlyConfigured(f"Environment variable {name} must be an integer, got {raw!r}")

# -----------------------------------------------------
# Paths & basics
# -----------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

DEBUG = env_bool("DEBUG", False)

# In production (DEBUG=False) you must set a strong secret in .env
SECRET_KEY = env("DJANGO_SECRET_KEY", "dev-only-secret-key-change-me", required=not DEBUG)

# Keep hosts explicit by default
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "127.0.0.1,localhost,testserver").split(",") if h.strip()]

# -----------------------------------------------------
# Applications
# -----------------------------------------------------
INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.staticfiles",

    # Third-party
    "rest_framework",

    # Local
    "transcoder",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "hls_pipeline.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
            ],
        },
    },
]

WSGI_APPLICATION = "hls_pipeline.wsgi.application"

# -----------------------------------------------------
# Database (Postgres if DB_* env vars set, else SQLite)
# -----------------------------------------------------
if os.getenv("DB_HOST"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": env("DB_NAME", "hls_pipeline"),
            "USER": env("DB_USER", "media_user"),
            "PASSWORD": env("DB_PASSWORD", ""),
            "HOST": env("DB_HOST", "127.0.0.1"),
            "PORT": env("DB_PORT", "5432"),
            "CONN_MAX_AGE": int(env("DB_CONN_MAX_AGE", "60")),  # keep-alive
            "OPTIONS": {
                **({"sslmode": os.getenv("DB_SSLMODE")} if os.getenv("DB_SSLMODE") else {})
            },
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }

# -----------------------------------------------------
# Internationalization
# -----------------------------------------------------
LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

# -----------------------------------------------------
# Static
# -----------------------------------------------------
STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

# -----------------------------------------------------
# Django REST Framework
# -----------------------------------------------------
REST_FRAMEWORK = {
    "DEFAULT_RENDERER_CLASSES": [
        "rest_framework.renderers.JSONRenderer",
    ],
    "DEFAULT_PARSER_CLASSES": [
        "rest_framework.parsers.JSONParser",
    ],
    # The transcode surface is unauthenticated; auth lives in front of this service.
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.AllowAny"],
    "UNAUTHENTICATED_USER": None,
}

# -----------------------------------------------------
# Logging
# -----------------------------------------------------
LOG_LEVEL = env("LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
        },
    },
    "loggers": {
        "transcoder": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
        "django": {
            "handlers": ["console"],
            "level": "WARNING",
        },
    },
}

# -----------------------------------------------------
# Celery / Redis
# -----------------------------------------------------
CELERY_BROKER_URL = env("CELERY_BROKER_URL", "redis://127.0.0.1:6379/0")
CELERY_RESULT_BACKEND = env("CELERY_RESULT_BACKEND", "redis://127.0.0.1:6379/0")
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_TIME_LIMIT = env_int("CELERY_TASK_TIME_LIMIT", 60 * 35)  # seconds, above JOB_TIMEOUT
CELERY_TASK_ALWAYS_EAGER = env_bool("CELERY_TASK_ALWAYS_EAGER", False)

# -----------------------------------------------------
# Default PK type
# -----------------------------------------------------
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# -----------------------------------------------------
# S3 / MinIO (env-driven; no hardcoded secrets)
# -----------------------------------------------------
S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL") or "http://127.0.0.1:9000"  # fine for local
S3_PUBLIC_ENDPOINT = os.getenv("S3_PUBLIC_ENDPOINT", S3_ENDPOINT_URL)
S3_REGION = os.getenv("S3_REGION", "us-east-1")
S3_OUTPUT_BUCKET = os.getenv("S3_OUTPUT_BUCKET", "hls-output")
S3_OUTPUT_PREFIX = os.getenv("S3_OUTPUT_PREFIX", "transcoded").strip("/")
S3_ACCESS_KEY = os.getenv("S3_ACCESS_KEY")          # set in .env for local
S3_SECRET_KEY = os.getenv("S3_SECRET_KEY")          # set in .env for local
S3_CONNECT_TIMEOUT = env_int("S3_CONNECT_TIMEOUT", 10)
S3_READ_TIMEOUT = env_int("S3_READ_TIMEOUT", 60)

# -----------------------------------------------------
# Transcoding pipeline
# -----------------------------------------------------
TRANSCODER_WORKSPACE_ROOT = Path(env("TRANSCODER_WORKSPACE_ROOT", str(BASE_DIR / "workspaces")))
FFMPEG_PATH = env("FFMPEG_PATH", "ffmpeg")
HLS_SEGMENT_SECONDS = env_int("HLS_SEGMENT_SECONDS", 10)

FETCH_CONNECT_TIMEOUT = env_int("FETCH_CONNECT_TIMEOUT", 10)     # seconds
FETCH_TIMEOUT = env_int("FETCH_TIMEOUT", 300)                    # wall clock, seconds
FETCH_CHUNK_SIZE = env_int("FETCH_CHUNK_SIZE", 1024 * 1024)      # bytes

TRANSCODE_TIMEOUT = env_int("TRANSCODE_TIMEOUT", 60 * 15)        # seconds
UPLOAD_CONCURRENCY = env_int("UPLOAD_CONCURRENCY", 4)
JOB_TIMEOUT = env_int("JOB_TIMEOUT", 60 * 30)                    # whole pipeline, seconds
