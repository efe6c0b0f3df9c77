"""
Production settings with strict security hardening.

These settings enforce HTTPS, secure cookies, HSTS, and require the
encryption and audit signing keys to be present.

Usage:
    Set DJANGO_SETTINGS_MODULE=config.settings.production in production.
"""

from .base import *  # noqa: F401,F403

# Force DEBUG off in production
DEBUG = False

# Require SECRET_KEY to be set (fail-fast if not configured)
if SECRET_KEY == "changeme":  # noqa: F405
    raise ValueError("DJANGO_SECRET_KEY must be set in production")

if not FIELD_ENCRYPTION_KEYS:  # noqa: F405
    raise ValueError("FIELD_ENCRYPTION_KEYS must be set in production")

if not AUDIT_SIGNING_KEY:  # noqa: F405
    raise ValueError("AUDIT_SIGNING_KEY must be set in production")

# HTTPS enforcement
SECURE_SSL_REDIRECT = True
SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")

# HSTS (HTTP Strict Transport Security)
SECURE_HSTS_SECONDS = 31536000  # 1 year
SECURE_HSTS_INCLUDE_SUBDOMAINS = True
SECURE_HSTS_PRELOAD = True

# Secure cookies
SESSION_COOKIE_SECURE = True
SESSION_COOKIE_HTTPONLY = True
SESSION_COOKIE_SAMESITE = "Lax"

CSRF_COOKIE_SECURE = True
CSRF_COOKIE_HTTPONLY = True
CSRF_COOKIE_SAMESITE = "Lax"
