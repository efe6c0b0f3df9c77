import logging
import os
from pathlib import Path

import structlog
from sentry_sdk import init as sentry_init
from sentry_sdk.integrations.django import DjangoIntegration

from config.logging import add_request_context, add_service_info, pii_redactor

BASE_DIR = Path(__file__).resolve().parents[2]

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "changeme")
DEBUG = os.getenv("DJANGO_DEBUG", "true").lower() == "true"
ALLOWED_HOSTS = os.getenv("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1").split(",")

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "drf_spectacular",
    # Project apps
    "edc",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
    "config.middleware.RequestIDMiddleware",
]

ROOT_URLCONF = "config.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "config.wsgi.application"
ASGI_APPLICATION = "config.asgi.application"

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": os.getenv("POSTGRES_DB", "edc"),
        "USER": os.getenv("POSTGRES_USER", "edc"),
        "PASSWORD": os.getenv("POSTGRES_PASSWORD", "changeme"),
        "HOST": os.getenv("POSTGRES_HOST", "postgres"),
        "PORT": os.getenv("POSTGRES_PORT", "5432"),
        # Bounds waits on the audit chain-head row lock
        "OPTIONS": {"options": "-c lock_timeout=" + os.getenv("POSTGRES_LOCK_TIMEOUT", "10s")},
    }
}

AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
        "rest_framework.authentication.BasicAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.IsAuthenticated"],
    "DEFAULT_PARSER_CLASSES": [
        "rest_framework.parsers.JSONParser",
        "rest_framework.parsers.FormParser",
        "rest_framework.parsers.MultiPartParser",
    ],
    "DEFAULT_THROTTLE_CLASSES": [
        "rest_framework.throttling.AnonRateThrottle",
        "rest_framework.throttling.UserRateThrottle",
    ],
    "DEFAULT_THROTTLE_RATES": {
        "anon": os.getenv("THROTTLE_RATE_ANON", "100/hour"),
        "user": os.getenv("THROTTLE_RATE_USER", "1000/hour"),
    },
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
}

# OpenAPI / Swagger documentation settings
SPECTACULAR_SETTINGS = {
    "TITLE": "EDC API",
    "DESCRIPTION": "Clinical trial data capture with schema validation and a hash-chained audit trail",
    "VERSION": "1.0.0",
    "SERVE_INCLUDE_SCHEMA": False,
    "COMPONENT_SPLIT_REQUEST": True,
}

# Structlog logging configuration with request context and PII redaction
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
AUDIT_PII_POLICY = os.getenv("AUDIT_PII_POLICY", "mask")  # mask or drop
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

# Convert string log level to int for structlog
_LOG_LEVEL_INT = getattr(logging, LOG_LEVEL.upper(), logging.INFO)

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        add_service_info,
        add_request_context,
        pii_redactor,
        structlog.processors.EventRenamer("message"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(_LOG_LEVEL_INT),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "INFO",
    },
}

SENTRY_DSN = os.getenv("SENTRY_DSN")
SENTRY_ENVIRONMENT = os.getenv("SENTRY_ENVIRONMENT", ENVIRONMENT)
if SENTRY_DSN:
    sentry_init(
        dsn=SENTRY_DSN,
        integrations=[DjangoIntegration()],
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.0")),
        environment=SENTRY_ENVIRONMENT,
        send_default_pii=False,  # Case report data must never leave the site
    )

SECURE_BROWSER_XSS_FILTER = True
SECURE_CONTENT_TYPE_NOSNIFF = True
X_FRAME_OPTIONS = "DENY"

# Field-Level Encryption (case records, requester contact details)
# Generate keys with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
FIELD_ENCRYPTION_KEYS = os.getenv("FIELD_ENCRYPTION_KEYS", "").split(",")
FIELD_ENCRYPTION_KEYS = [k.strip() for k in FIELD_ENCRYPTION_KEYS if k.strip()]

if not DEBUG and not FIELD_ENCRYPTION_KEYS:
    import warnings

    warnings.warn("FIELD_ENCRYPTION_KEYS not set! Case records cannot be stored.")

# Audit trail
# Generate key with: python -c "import secrets; print(secrets.token_hex(32))"
AUDIT_SIGNING_KEY = os.getenv("AUDIT_SIGNING_KEY", "")
# Upper bound (seconds) an append waits for the chain lock before failing
AUDIT_APPEND_LOCK_TIMEOUT = float(os.getenv("AUDIT_APPEND_LOCK_TIMEOUT", "5"))
# Users in this group may query, verify and export the audit trail
AUDIT_VIEWER_GROUP = os.getenv("AUDIT_VIEWER_GROUP", "audit_viewer")

if not DEBUG and not AUDIT_SIGNING_KEY:
    import warnings

    warnings.warn(
        "AUDIT_SIGNING_KEY not set! Audit entries will be hash-chained but not signed."
    )

# GDPR data-subject requests
DSAR_RESPONSE_DAYS = int(os.getenv("DSAR_RESPONSE_DAYS", "30"))
DSAR_MAX_EXTENSION_DAYS = int(os.getenv("DSAR_MAX_EXTENSION_DAYS", "60"))
