"""
Authentication audit events.

Successful and failed logins must be recorded before the attempt is allowed
to complete: when the audit trail is unavailable the handlers raise
AuditTrailUnavailable, which aborts the login. Logouts are recorded but
never blocked.
"""

import structlog
from django.contrib.auth.signals import user_logged_in, user_logged_out, user_login_failed
from django.dispatch import receiver

from edc.audit import STATUS_FAILURE, STATUS_SUCCESS, log_audit, require_recorded
from edc.exceptions import AuditTrailUnavailable

logger = structlog.get_logger(__name__)


def _client_detail(request) -> str:
    if request is None:
        return ""
    return f"path={request.path}"


@receiver(user_logged_in)
def audit_login(sender, request, user, **kwargs):
    username = user.get_username()
    try:
        require_recorded(
            log_audit("LOGIN", "auth", STATUS_SUCCESS, _client_detail(request), user_id=username)
        )
    except AuditTrailUnavailable:
        # Undo the session created by login()
        if request is not None and hasattr(request, "session"):
            request.session.flush()
        raise


@receiver(user_login_failed)
def audit_login_failed(sender, credentials, request=None, **kwargs):
    username = credentials.get("username") or credentials.get("email") or "unknown"
    require_recorded(
        log_audit("LOGIN_FAILED", "auth", STATUS_FAILURE, _client_detail(request), user_id=username)
    )
    logger.warning("login_failed", username=username)


@receiver(user_logged_out)
def audit_logout(sender, request, user, **kwargs):
    username = user.get_username() if user is not None else "anonymous"
    log_audit("LOGOUT", "auth", STATUS_SUCCESS, _client_detail(request), user_id=username)
