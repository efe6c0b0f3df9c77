from .base import *  # noqa: F401,F403

# Test signing key for audit trail signatures
AUDIT_SIGNING_KEY = "test-signing-key-for-audit-logs"

# Test encryption key - only for tests!
FIELD_ENCRYPTION_KEYS = ["0YWTBYHQnZek-VOlZPk-a2j8nHm0WqkhHpPHH9k6oVQ="]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

DEBUG = True

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

# Disable rate limiting in tests
REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []  # noqa: F405
